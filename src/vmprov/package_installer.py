"""Package installer module.

Refreshes the apt index, upgrades the base image, and installs the common
package set one package at a time. A package that fails to install is
recorded and the loop moves on; only the refresh/upgrade step is fatal to
a provisioning run (the provisioner decides that).
"""

import logging
import time
from dataclasses import dataclass

from vmprov.command_runner import CommandError, CommandRunner

logger = logging.getLogger(__name__)

COMMON_PACKAGES = [
    "logrotate",
    "cron",
    "msmtp",
    "msmtp-mta",
    "mailutils",
    "git",
    "jq",
    "gnupg",
    "curl",
    "openssl",
    "base64",
    "diffutils",
]


@dataclass
class PackageResult:
    """Result of a single apt step."""

    package: str
    success: bool
    message: str
    duration: float


@dataclass
class PackageInstallSummary:
    """Summary of the package install loop."""

    total: int
    successful: list[PackageResult]
    failed: list[PackageResult]
    total_duration: float

    @property
    def success_count(self) -> int:
        return len(self.successful)

    @property
    def failure_count(self) -> int:
        return len(self.failed)

    @property
    def all_succeeded(self) -> bool:
        return self.failure_count == 0

    @property
    def failed_packages(self) -> list[str]:
        return [r.package for r in self.failed]


class PackageInstaller:
    """Install the common package set with apt-get."""

    def __init__(self, runner: CommandRunner, packages: list[str] | None = None):
        self.runner = runner
        self.packages = list(COMMON_PACKAGES if packages is None else packages)

    def refresh_and_upgrade(self) -> PackageResult:
        """Update package lists and upgrade installed packages.

        Returns:
            PackageResult named "system-packages"
        """
        name = "system-packages"
        logger.info("Updating and upgrading packages...")
        start_time = time.time()

        for command in (["apt-get", "update", "-y"], ["apt-get", "upgrade", "-y"]):
            try:
                result = self.runner.run(command)
            except CommandError as e:
                return PackageResult(name, False, str(e), time.time() - start_time)

            if not result.success:
                message = f"{result.display} failed: {result.stderr.strip()[:200]}"
                return PackageResult(name, False, message, time.time() - start_time)

        return PackageResult(
            name, True, "System packages updated successfully", time.time() - start_time
        )

    def install(self, package: str) -> PackageResult:
        """Install one package.

        Returns:
            PackageResult for the package
        """
        logger.info(f"Installing {package}...")
        start_time = time.time()

        try:
            result = self.runner.run(["apt-get", "install", "-y", package])
        except CommandError as e:
            logger.error(f"Failed to install {package}.")
            return PackageResult(package, False, str(e), time.time() - start_time)

        duration = time.time() - start_time
        if result.success:
            return PackageResult(package, True, "Installed", duration)

        logger.error(f"Failed to install {package}.")
        return PackageResult(
            package, False, f"apt-get exited with {result.exit_code}", duration
        )

    def install_all(self) -> PackageInstallSummary:
        """Install every configured package, continuing past failures.

        Returns:
            PackageInstallSummary with per-package results
        """
        logger.info("Installing common packages...")
        start_time = time.time()
        successful = []
        failed = []

        for package in self.packages:
            result = self.install(package)
            if result.success:
                successful.append(result)
            else:
                failed.append(result)

        summary = PackageInstallSummary(
            total=len(self.packages),
            successful=successful,
            failed=failed,
            total_duration=time.time() - start_time,
        )

        if summary.all_succeeded:
            logger.info(f"Installed {summary.success_count} packages")
        else:
            logger.warning(
                f"{summary.failure_count} of {summary.total} packages failed: "
                f"{', '.join(summary.failed_packages)}"
            )

        return summary


__all__ = ["COMMON_PACKAGES", "PackageInstallSummary", "PackageInstaller", "PackageResult"]
