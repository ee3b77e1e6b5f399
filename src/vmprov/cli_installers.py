"""Cloud CLI installation.

Philosophy:
- One installer per provider behind a common CliInstaller interface
- Vendor installers are downloaded over HTTPS and run as-is
- Never raises: every failure is reported as an InstallResult

Public API (the "studs"):
    InstallStatus: Installation status enum
    InstallResult: Installation result dataclass
    CliInstaller: Base class for provider installers
    AzureCliInstaller: Azure CLI via Microsoft's Debian bootstrap script
    AwsCliInstaller: AWS CLI v2 via the official zip bundle
    default_installers: Platform to installer mapping
"""

import logging
import platform
import shutil
import tempfile
from dataclasses import dataclass
from enum import Enum
from pathlib import Path

import requests

from vmprov.command_runner import CommandError, CommandRunner
from vmprov.platform_detector import PlatformIdentity

logger = logging.getLogger(__name__)


class InstallStatus(Enum):
    """Installation status."""

    SUCCESS = "success"
    FAILED = "failed"
    ALREADY_INSTALLED = "already_installed"
    SKIPPED = "skipped"


@dataclass
class InstallResult:
    """Result of installation attempt."""

    status: InstallStatus
    cli_path: Path | None = None
    error_message: str | None = None

    @property
    def ok(self) -> bool:
        return self.status in (InstallStatus.SUCCESS, InstallStatus.ALREADY_INSTALLED)


class InstallFailed(Exception):
    """Raised inside an installer when a step fails."""

    pass


class CliInstaller:
    """Base class for cloud CLI installers."""

    name: str = ""
    binary: str = ""
    platform: PlatformIdentity = PlatformIdentity.UNKNOWN

    DOWNLOAD_TIMEOUT = 120

    def __init__(self, runner: CommandRunner):
        self.runner = runner

    def cli_path(self) -> Path | None:
        """Path to the installed CLI binary, if it is on PATH."""
        found = shutil.which(self.binary)
        return Path(found) if found else None

    def is_installed(self) -> bool:
        return self.cli_path() is not None

    def install(self) -> InstallResult:
        """Install the CLI unless it is already present."""
        existing = self.cli_path()
        if existing:
            logger.info(f"{self.name} already installed at {existing}")
            return InstallResult(status=InstallStatus.ALREADY_INSTALLED, cli_path=existing)

        logger.info(f"Installing {self.name}...")

        try:
            self._install()
        except (InstallFailed, requests.RequestException, CommandError, OSError) as e:
            return self._failed(f"{e!s}")

        cli_path = self.cli_path()
        if cli_path is None:
            return self._failed(f"Installer finished but {self.binary} is not on PATH")

        logger.info(f"{self.name} installed.")
        return InstallResult(status=InstallStatus.SUCCESS, cli_path=cli_path)

    def _install(self) -> None:
        raise NotImplementedError

    def _failed(self, message: str) -> InstallResult:
        logger.error(f"Failed to install {self.name}: {message}")
        return InstallResult(status=InstallStatus.FAILED, error_message=message)

    def _run(self, command: list[str], **kwargs) -> None:
        result = self.runner.run(command, **kwargs)
        if not result.success:
            detail = result.stderr.strip() or result.stdout.strip()
            raise InstallFailed(f"{result.display} exited with {result.exit_code}: {detail[:200]}")


class AzureCliInstaller(CliInstaller):
    """Install the Azure CLI with Microsoft's Debian/Ubuntu script."""

    name = "Azure CLI"
    binary = "az"
    platform = PlatformIdentity.AZURE

    INSTALL_SCRIPT_URL = "https://aka.ms/InstallAzureCLIDeb"

    def _install(self) -> None:
        response = requests.get(self.INSTALL_SCRIPT_URL, timeout=self.DOWNLOAD_TIMEOUT)
        response.raise_for_status()

        script = response.text
        if not script.strip():
            raise InstallFailed("Downloaded installation script is empty")

        self._run(["bash", "-s"], input_text=script)


class AwsCliInstaller(CliInstaller):
    """Install AWS CLI v2 from the official bundle."""

    name = "AWS CLI"
    binary = "aws"
    platform = PlatformIdentity.AWS

    DOWNLOAD_URL = "https://awscli.amazonaws.com/awscli-exe-linux-{arch}.zip"
    ARCHITECTURES = {
        "x86_64": "x86_64",
        "amd64": "x86_64",
        "aarch64": "aarch64",
        "arm64": "aarch64",
    }

    def download_url(self) -> str:
        machine = platform.machine().lower()
        arch = self.ARCHITECTURES.get(machine)
        if arch is None:
            raise InstallFailed(f"Unsupported architecture for AWS CLI: {machine or 'unknown'}")
        return self.DOWNLOAD_URL.format(arch=arch)

    def _install(self) -> None:
        url = self.download_url()

        with tempfile.TemporaryDirectory(prefix="vmprov-awscli-") as tmp:
            tmp_dir = Path(tmp)
            bundle = tmp_dir / "awscliv2.zip"

            with requests.get(url, stream=True, timeout=self.DOWNLOAD_TIMEOUT) as response:
                response.raise_for_status()
                with open(bundle, "wb") as f:
                    for chunk in response.iter_content(chunk_size=1024 * 1024):
                        f.write(chunk)

            self._run(["unzip", "-q", str(bundle)], cwd=tmp_dir)
            self._run([str(tmp_dir / "aws" / "install")], cwd=tmp_dir)


def default_installers(runner: CommandRunner) -> dict[PlatformIdentity, CliInstaller]:
    """Map each supported platform to its CLI installer."""
    installers: list[CliInstaller] = [AwsCliInstaller(runner), AzureCliInstaller(runner)]
    return {installer.platform: installer for installer in installers}


__all__ = [
    "AwsCliInstaller",
    "AzureCliInstaller",
    "CliInstaller",
    "InstallFailed",
    "InstallResult",
    "InstallStatus",
    "default_installers",
]
