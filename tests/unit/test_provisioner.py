"""Unit tests for the provisioning orchestration."""

from unittest.mock import Mock, patch

import pytest

from vmprov.cli_installers import CliInstaller, InstallResult, InstallStatus
from vmprov.config_manager import VmprovConfig
from vmprov.platform_detector import PlatformIdentity
from vmprov.provisioner import Provisioner, ProvisioningError


def _detector(platform):
    detector = Mock()
    detector.detect.return_value = platform
    return detector


def _installer(platform, status=InstallStatus.SUCCESS):
    installer = Mock(spec=CliInstaller)
    installer.platform = platform
    installer.install.return_value = InstallResult(status=status)
    return installer


@pytest.fixture
def installers():
    return {
        PlatformIdentity.AWS: _installer(PlatformIdentity.AWS),
        PlatformIdentity.AZURE: _installer(PlatformIdentity.AZURE),
    }


class TestProvisionerRun:
    """Test the full provisioning flow."""

    def test_aws_flow(self, recording_runner, installers):
        config = VmprovConfig(packages=["git", "jq"])
        provisioner = Provisioner(
            config,
            runner=recording_runner,
            detector=_detector(PlatformIdentity.AWS),
            installers=installers,
        )

        summary = provisioner.run()

        assert summary.platform == PlatformIdentity.AWS
        assert summary.upgrade.success
        assert summary.packages.success_count == 2
        assert summary.cli.status == InstallStatus.SUCCESS
        assert summary.has_errors is False
        installers[PlatformIdentity.AWS].install.assert_called_once()
        installers[PlatformIdentity.AZURE].install.assert_not_called()
        assert recording_runner.commands[:2] == [
            ["apt-get", "update", "-y"],
            ["apt-get", "upgrade", "-y"],
        ]

    def test_azure_flow(self, recording_runner, installers):
        provisioner = Provisioner(
            VmprovConfig(packages=[]),
            runner=recording_runner,
            detector=_detector(PlatformIdentity.AZURE),
            installers=installers,
        )

        summary = provisioner.run()

        assert summary.platform == PlatformIdentity.AZURE
        installers[PlatformIdentity.AZURE].install.assert_called_once()

    def test_unknown_platform_skips_cli(self, recording_runner, installers, caplog):
        provisioner = Provisioner(
            VmprovConfig(packages=[]),
            runner=recording_runner,
            detector=_detector(PlatformIdentity.UNKNOWN),
            installers=installers,
        )

        summary = provisioner.run()

        assert summary.cli.status == InstallStatus.SKIPPED
        assert summary.has_errors is True
        for installer in installers.values():
            installer.install.assert_not_called()
        assert "Could not detect cloud platform. Skipping cloud CLI installation." in caplog.text

    def test_upgrade_failure_aborts(self, failing_runner, installers, caplog):
        runner = failing_runner("apt-get update -y")
        detector = _detector(PlatformIdentity.AWS)
        provisioner = Provisioner(
            VmprovConfig(), runner=runner, detector=detector, installers=installers
        )

        with pytest.raises(ProvisioningError):
            provisioner.run()

        detector.detect.assert_not_called()
        assert runner.commands == [["apt-get", "update", "-y"]]
        assert "Failed to update and upgrade system packages." in caplog.text

    def test_skip_upgrade(self, recording_runner, installers):
        provisioner = Provisioner(
            VmprovConfig(packages=["git"], skip_upgrade=True),
            runner=recording_runner,
            detector=_detector(PlatformIdentity.AWS),
            installers=installers,
        )

        summary = provisioner.run()

        assert summary.upgrade is None
        assert recording_runner.commands == [["apt-get", "install", "-y", "git"]]

    def test_package_failures_do_not_abort(self, failing_runner, installers):
        provisioner = Provisioner(
            VmprovConfig(packages=["git", "base64"]),
            runner=failing_runner("base64"),
            detector=_detector(PlatformIdentity.AZURE),
            installers=installers,
        )

        summary = provisioner.run()

        assert summary.packages.failed_packages == ["base64"]
        assert summary.has_errors is True
        installers[PlatformIdentity.AZURE].install.assert_called_once()

    def test_install_cli_disabled(self, recording_runner, installers):
        provisioner = Provisioner(
            VmprovConfig(packages=[], install_cli=False),
            runner=recording_runner,
            detector=_detector(PlatformIdentity.AWS),
            installers=installers,
        )

        summary = provisioner.run()

        assert summary.platform == PlatformIdentity.AWS
        assert summary.cli.status == InstallStatus.SKIPPED
        installers[PlatformIdentity.AWS].install.assert_not_called()

    def test_failed_cli_install_reported(self, recording_runner):
        installers = {
            PlatformIdentity.AWS: _installer(PlatformIdentity.AWS, InstallStatus.FAILED)
        }
        provisioner = Provisioner(
            VmprovConfig(packages=[]),
            runner=recording_runner,
            detector=_detector(PlatformIdentity.AWS),
            installers=installers,
        )

        summary = provisioner.run()

        assert summary.cli.status == InstallStatus.FAILED
        assert summary.has_errors is True

    def test_missing_installer_for_platform(self, recording_runner):
        provisioner = Provisioner(
            VmprovConfig(packages=[]),
            runner=recording_runner,
            detector=_detector(PlatformIdentity.AZURE),
            installers={},
        )

        summary = provisioner.run()

        assert summary.cli.status == InstallStatus.SKIPPED
        assert "No CLI installer" in summary.cli.error_message

    def test_completion_message_names_error_log(self, recording_runner, installers, caplog):
        caplog.set_level("INFO", logger="vmprov")
        provisioner = Provisioner(
            VmprovConfig(packages=[], error_log="errors.log"),
            runner=recording_runner,
            detector=_detector(PlatformIdentity.AWS),
            installers=installers,
        )

        summary = provisioner.run()

        assert summary.error_log == "errors.log"
        assert "Provisioning completed. Check 'errors.log' for any errors." in caplog.text
        assert "Detected platform: aws" in caplog.text


class TestProvisionerDefaults:
    def test_builds_detector_from_config(self, recording_runner):
        config = VmprovConfig(imds_host="127.0.0.1:1", connect_timeout_ms=100)

        provisioner = Provisioner(config, runner=recording_runner)

        assert provisioner.detector.config.imds_host == "127.0.0.1:1"
        assert provisioner.detector.config.connect_timeout_ms == 100
        assert set(provisioner.installers) == {PlatformIdentity.AWS, PlatformIdentity.AZURE}

    def test_closes_detector_it_built(self, recording_runner, installers):
        with patch("vmprov.provisioner.PlatformDetector") as mock_detector:
            mock_detector.return_value.detect.return_value = PlatformIdentity.AWS
            provisioner = Provisioner(
                VmprovConfig(packages=[], skip_upgrade=True),
                runner=recording_runner,
                installers=installers,
            )

            provisioner.run()

        mock_detector.return_value.close.assert_called_once()

    def test_injected_detector_left_open(self, recording_runner, installers):
        detector = _detector(PlatformIdentity.AWS)
        provisioner = Provisioner(
            VmprovConfig(packages=[], skip_upgrade=True),
            runner=recording_runner,
            detector=detector,
            installers=installers,
        )

        provisioner.run()

        detector.close.assert_not_called()
