"""VM provisioning orchestration.

Runs the provisioning steps in order:
1. Refresh and upgrade system packages (fatal on failure)
2. Install the common package set (per-package failures are recorded)
3. Detect the cloud platform
4. Install the matching cloud CLI, or skip when the platform is unknown
"""

import logging
import time
from dataclasses import dataclass

from vmprov.cli_installers import CliInstaller, InstallResult, InstallStatus, default_installers
from vmprov.command_runner import CommandRunner
from vmprov.config_manager import VmprovConfig
from vmprov.package_installer import PackageInstaller, PackageInstallSummary, PackageResult
from vmprov.platform_detector import PlatformDetector, PlatformIdentity

logger = logging.getLogger(__name__)


class ProvisioningError(Exception):
    """Raised when provisioning cannot continue."""

    pass


@dataclass
class ProvisionSummary:
    """Outcome of a provisioning run."""

    platform: PlatformIdentity
    upgrade: PackageResult | None
    packages: PackageInstallSummary
    cli: InstallResult
    error_log: str
    total_duration: float

    @property
    def has_errors(self) -> bool:
        return (
            not self.packages.all_succeeded
            or self.cli.status is InstallStatus.FAILED
            or self.platform is PlatformIdentity.UNKNOWN
        )


class Provisioner:
    """Provision a Debian/Ubuntu VM."""

    def __init__(
        self,
        config: VmprovConfig,
        runner: CommandRunner | None = None,
        detector: PlatformDetector | None = None,
        installers: dict[PlatformIdentity, CliInstaller] | None = None,
    ):
        """Initialize provisioner.

        Args:
            config: Run configuration
            runner: Command runner shared by the installers
            detector: Platform detector (built from config when omitted)
            installers: Platform to CLI installer mapping
        """
        self.config = config
        self.runner = runner or CommandRunner()
        self._owns_detector = detector is None
        self.detector = detector or PlatformDetector(config.detector_config())
        self.installers = (
            installers if installers is not None else default_installers(self.runner)
        )
        self.package_installer = PackageInstaller(self.runner, config.packages)

    def run(self) -> ProvisionSummary:
        """Run every provisioning step.

        Returns:
            ProvisionSummary

        Raises:
            ProvisioningError: If the package refresh/upgrade fails
        """
        logger.info("Starting VM provisioning on Debian/Ubuntu...")
        start_time = time.time()

        upgrade = None
        if self.config.skip_upgrade:
            logger.info("Skipping package update and upgrade")
        else:
            upgrade = self.package_installer.refresh_and_upgrade()
            if not upgrade.success:
                logger.error("Failed to update and upgrade system packages.")
                raise ProvisioningError(upgrade.message)

        packages = self.package_installer.install_all()

        platform = self.detect_platform()
        cli = self.install_cli(platform)

        logger.info(
            f"Provisioning completed. Check '{self.config.error_log}' for any errors."
        )

        return ProvisionSummary(
            platform=platform,
            upgrade=upgrade,
            packages=packages,
            cli=cli,
            error_log=self.config.error_log,
            total_duration=time.time() - start_time,
        )

    def detect_platform(self) -> PlatformIdentity:
        logger.info("Detecting cloud platform...")
        try:
            platform = self.detector.detect()
        finally:
            if self._owns_detector:
                self.detector.close()
        logger.info(f"Detected platform: {platform.value}")
        return platform

    def install_cli(self, platform: PlatformIdentity) -> InstallResult:
        """Install the CLI for the detected platform."""
        if platform is PlatformIdentity.UNKNOWN:
            logger.error("Could not detect cloud platform. Skipping cloud CLI installation.")
            return InstallResult(status=InstallStatus.SKIPPED)

        if not self.config.install_cli:
            logger.info("Cloud CLI installation disabled")
            return InstallResult(status=InstallStatus.SKIPPED)

        installer = self.installers.get(platform)
        if installer is None:
            logger.error(f"No CLI installer registered for {platform.value}")
            return InstallResult(
                status=InstallStatus.SKIPPED,
                error_message=f"No CLI installer for {platform.value}",
            )

        return installer.install()


__all__ = ["ProvisionSummary", "Provisioner", "ProvisioningError"]
