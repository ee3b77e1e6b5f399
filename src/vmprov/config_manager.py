"""Configuration management module.

This module handles persistent configuration storage using TOML format.
Stores metadata probe settings, the package list, and log file locations.

Security:
- Config file permissions: 0600 (owner read/write only)
- Atomic writes (temp file + rename)
- Values validated on load
"""

import logging
import os
from dataclasses import asdict, dataclass, field
from pathlib import Path
from typing import Any

try:
    import tomli  # type: ignore[import]
except ImportError:
    # Fallback for older Python versions
    try:
        import tomllib as tomli  # type: ignore[import]
    except ImportError as e:
        raise ImportError("toml library not available. Install with: pip install tomli") from e

try:
    import tomlkit
except ImportError as e:
    raise ImportError("tomlkit library not available. Install with: pip install tomlkit") from e

from vmprov.imds_client import DEFAULT_IMDS_HOST
from vmprov.package_installer import COMMON_PACKAGES
from vmprov.platform_detector import (
    AWS_METADATA_PATH,
    AzureMatch,
    DetectorConfig,
    PlatformIdentity,
)

logger = logging.getLogger(__name__)


class ConfigError(Exception):
    """Raised when configuration operations fail."""

    pass


@dataclass
class VmprovConfig:
    """vmprov configuration data."""

    connect_timeout_ms: int = 2000
    imds_host: str = DEFAULT_IMDS_HOST
    probe_order: list[str] = field(default_factory=lambda: ["aws", "azure"])
    azure_match: str = AzureMatch.SUBSTRING.value
    aws_metadata_path: str = AWS_METADATA_PATH
    packages: list[str] = field(default_factory=lambda: list(COMMON_PACKAGES))
    log_file: str = "vm_provisioning.log"
    error_log: str = "vm_provisioning_errors.log"
    skip_upgrade: bool = False
    install_cli: bool = True

    def __post_init__(self) -> None:
        self.validate()

    def validate(self) -> None:
        """Check values that would break a run.

        Raises:
            ConfigError: If any value is invalid
        """
        # TOML strings are iterable, so list fields must be checked as lists
        if not _is_string_list(self.probe_order):
            raise ConfigError("probe_order must be a list of platform names")
        if not _is_string_list(self.packages):
            raise ConfigError("packages must be a list of non-empty package names")
        if isinstance(self.connect_timeout_ms, bool) or not isinstance(
            self.connect_timeout_ms, int
        ):
            raise ConfigError("connect_timeout_ms must be an integer")
        for name in ("skip_upgrade", "install_cli"):
            if not isinstance(getattr(self, name), bool):
                raise ConfigError(f"{name} must be true or false")
        for name in ("imds_host", "azure_match", "aws_metadata_path", "log_file", "error_log"):
            value = getattr(self, name)
            if not isinstance(value, str) or not value:
                raise ConfigError(f"{name} must be a non-empty string")

        try:
            self.detector_config()
        except ValueError as e:
            raise ConfigError(f"Invalid detector settings: {e}") from e

    def detector_config(self) -> DetectorConfig:
        """Build the detector configuration from these settings."""
        return DetectorConfig(
            connect_timeout_ms=self.connect_timeout_ms,
            imds_host=self.imds_host,
            probe_order=tuple(PlatformIdentity(p.strip().lower()) for p in self.probe_order),
            azure_match=AzureMatch(self.azure_match),
            aws_metadata_path=self.aws_metadata_path,
        )

    def to_dict(self) -> dict[str, Any]:
        """Convert to dictionary, excluding None values."""
        data = asdict(self)
        # TOML has no null
        return {k: v for k, v in data.items() if v is not None}

    @classmethod
    def from_dict(cls, data: dict[str, Any]) -> "VmprovConfig":
        """Create from dictionary, ignoring unknown keys."""
        known = {k: v for k, v in data.items() if k in cls.__dataclass_fields__}
        unknown = sorted(set(data) - set(known))
        if unknown:
            logger.warning(f"Ignoring unknown config keys: {', '.join(unknown)}")
        try:
            return cls(**known)
        except TypeError as e:
            raise ConfigError(f"Invalid config: {e}") from e


def _is_string_list(value: Any) -> bool:
    return isinstance(value, list) and all(isinstance(v, str) and v.strip() for v in value)


class ConfigManager:
    """Manage the vmprov configuration file.

    Configuration is stored at ~/.vmprov/config.toml with secure permissions.
    """

    DEFAULT_CONFIG_DIR = Path.home() / ".vmprov"
    DEFAULT_CONFIG_FILE = DEFAULT_CONFIG_DIR / "config.toml"

    @classmethod
    def get_config_path(cls, custom_path: str | None = None) -> Path:
        """Get configuration file path.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            Path to config file

        Raises:
            ConfigError: If a custom path was given and does not exist
        """
        if custom_path:
            path = Path(custom_path).expanduser().resolve()
            if not path.exists():
                raise ConfigError(f"Config file not found: {path}")
            return path

        return cls.DEFAULT_CONFIG_FILE

    @classmethod
    def load_config(cls, custom_path: str | None = None) -> VmprovConfig:
        """Load configuration from file.

        Args:
            custom_path: Custom config file path (optional)

        Returns:
            VmprovConfig object (defaults when no file exists)

        Raises:
            ConfigError: If loading or validation fails
        """
        config_path = cls.get_config_path(custom_path)

        if not config_path.exists():
            logger.debug("Config file not found, using defaults")
            return VmprovConfig()

        try:
            with open(config_path, "rb") as f:
                data = tomli.load(f)  # type: ignore[attr-defined]
        except (OSError, ValueError) as e:
            raise ConfigError(f"Failed to load config: {e}") from e

        logger.debug(f"Loaded config from: {config_path}")
        return VmprovConfig.from_dict(data)

    @classmethod
    def save_config(cls, config: VmprovConfig, custom_path: str | None = None) -> Path:
        """Save configuration to file.

        Args:
            config: Configuration to save
            custom_path: Custom config file path (optional, may not exist yet)

        Returns:
            Path the configuration was written to

        Raises:
            ConfigError: If saving fails
        """
        if custom_path:
            config_path = Path(custom_path).expanduser().resolve()
        else:
            config_path = cls.DEFAULT_CONFIG_FILE

        temp_path = config_path.with_suffix(".tmp")
        try:
            config_path.parent.mkdir(parents=True, exist_ok=True)

            # Keep comments and formatting of an existing file
            if config_path.exists():
                with open(config_path) as f:
                    doc = tomlkit.load(f)
            else:
                doc = tomlkit.document()

            for key, value in config.to_dict().items():
                doc[key] = value

            with open(temp_path, "w") as f:
                tomlkit.dump(doc, f)

            os.chmod(temp_path, 0o600)
            temp_path.replace(config_path)

        except Exception as e:
            if temp_path.exists():
                temp_path.unlink()
            raise ConfigError(f"Failed to save config: {e}") from e

        logger.debug(f"Saved config to: {config_path}")
        return config_path


__all__ = ["ConfigError", "ConfigManager", "VmprovConfig"]
