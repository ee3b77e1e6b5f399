"""vmprov command line interface.

Commands:
    detect      Print the cloud platform this host runs on
    provision   Install packages, detect the platform, install its CLI
    packages    List the packages a provisioning run installs
    config      Show or initialize the configuration file
"""

import json
import logging
import sys
from dataclasses import replace
from pathlib import Path
from typing import Any

import click
import tomlkit
from rich.console import Console
from rich.table import Table

from vmprov import __version__
from vmprov.cli_installers import InstallStatus
from vmprov.config_manager import ConfigError, ConfigManager, VmprovConfig
from vmprov.platform_detector import AzureMatch, PlatformDetector, PlatformIdentity
from vmprov.provision_logging import setup_logging, teardown_logging
from vmprov.provisioner import ProvisionSummary, Provisioner, ProvisioningError

logger = logging.getLogger(__name__)

# Exit code for `detect --fail-on-unknown`
EXIT_UNKNOWN_PLATFORM = 2


def _parse_probe_order(
    ctx: click.Context, param: click.Parameter, value: str | None
) -> list[str] | None:
    if value is None:
        return None
    order = [p.strip().lower() for p in value.split(",") if p.strip()]
    valid = {PlatformIdentity.AWS.value, PlatformIdentity.AZURE.value}
    invalid = [p for p in order if p not in valid]
    if invalid or not order:
        raise click.BadParameter(f"expected a comma-separated list of aws/azure, got {value!r}")
    return order


def _load_config(config_path: str | None, **overrides: Any) -> VmprovConfig:
    """Load the config file and apply command line overrides."""
    try:
        config = ConfigManager.load_config(config_path)
        changes = {k: v for k, v in overrides.items() if v is not None}
        return replace(config, **changes) if changes else config
    except ConfigError as e:
        raise click.ClickException(str(e)) from e


def detector_options(func):
    """Options shared by commands that run platform detection."""
    options = [
        click.option("--config", "config_path", help="Config file path"),
        click.option("--imds-host", help="Metadata host override (e.g. 127.0.0.1:8080)"),
        click.option("--timeout-ms", type=click.IntRange(min=1), help="Per-probe timeout"),
        click.option(
            "--probe-order",
            callback=_parse_probe_order,
            help="Comma-separated probe order, e.g. azure,aws",
        ),
        click.option(
            "--azure-match",
            type=click.Choice([m.value for m in AzureMatch]),
            help="Accept Azure on 'azure' in the body (substring) or any 2xx (status)",
        ),
    ]
    for option in reversed(options):
        func = option(func)
    return func


@click.group(invoke_without_command=True, context_settings={"help_option_names": ["--help", "-h"]})
@click.option("-v", "--verbose", is_flag=True, help="Show debug output")
@click.version_option(version=__version__)
@click.pass_context
def main(ctx: click.Context, verbose: bool) -> None:
    """vmprov - Debian/Ubuntu VM provisioning.

    Installs a common package set, detects whether the VM runs on AWS or
    Azure through the instance metadata service, and installs the matching
    cloud CLI.

    \b
    CONFIGURATION:
        Config file: ~/.vmprov/config.toml
        Create one with: vmprov config init
    """
    ctx.ensure_object(dict)
    ctx.obj["verbose"] = verbose

    logging.basicConfig(
        level=logging.DEBUG if verbose else logging.WARNING, format="%(message)s"
    )

    if ctx.invoked_subcommand is None:
        click.echo(ctx.get_help())
        ctx.exit(0)


@main.command()
@detector_options
@click.option("--json", "as_json", is_flag=True, help="Print {\"platform\": ...} as JSON")
@click.option(
    "--fail-on-unknown",
    is_flag=True,
    help=f"Exit with status {EXIT_UNKNOWN_PLATFORM} when no platform is detected",
)
def detect(
    config_path: str | None,
    imds_host: str | None,
    timeout_ms: int | None,
    probe_order: list[str] | None,
    azure_match: str | None,
    as_json: bool,
    fail_on_unknown: bool,
) -> None:
    """Detect the cloud platform (aws, azure or unknown)."""
    config = _load_config(
        config_path,
        imds_host=imds_host,
        connect_timeout_ms=timeout_ms,
        probe_order=probe_order,
        azure_match=azure_match,
    )

    detector = PlatformDetector(config.detector_config())
    try:
        platform = detector.detect()
    finally:
        detector.close()

    if as_json:
        click.echo(json.dumps({"platform": platform.value}))
    else:
        click.echo(platform.value)

    if fail_on_unknown and platform is PlatformIdentity.UNKNOWN:
        sys.exit(EXIT_UNKNOWN_PLATFORM)


@main.command()
@detector_options
@click.option("--log-file", help="Run log path (default: vm_provisioning.log)")
@click.option("--error-log", help="Error log path (default: vm_provisioning_errors.log)")
@click.option("--skip-upgrade", is_flag=True, help="Skip apt update/upgrade")
@click.option("--no-cli", "no_cli", is_flag=True, help="Do not install a cloud CLI")
@click.pass_context
def provision(
    ctx: click.Context,
    config_path: str | None,
    imds_host: str | None,
    timeout_ms: int | None,
    probe_order: list[str] | None,
    azure_match: str | None,
    log_file: str | None,
    error_log: str | None,
    skip_upgrade: bool,
    no_cli: bool,
) -> None:
    """Provision this VM.

    \b
    Steps:
        1. apt update and upgrade (aborts on failure)
        2. Install the common packages
        3. Detect the cloud platform
        4. Install the Azure CLI or AWS CLI
    """
    config = _load_config(
        config_path,
        imds_host=imds_host,
        connect_timeout_ms=timeout_ms,
        probe_order=probe_order,
        azure_match=azure_match,
        log_file=log_file,
        error_log=error_log,
        skip_upgrade=skip_upgrade or None,
        install_cli=False if no_cli else None,
    )

    try:
        handlers = setup_logging(config.log_file, config.error_log, verbose=ctx.obj["verbose"])
    except OSError as e:
        raise click.ClickException(f"Cannot open log files: {e}") from e

    try:
        summary = Provisioner(config).run()
    except ProvisioningError as e:
        logger.debug(f"Provisioning aborted: {e}")
        ctx.exit(1)
    finally:
        teardown_logging(handlers)

    _render_summary(summary)


def _render_summary(summary: ProvisionSummary) -> None:
    """Print a summary table of the run."""
    console = Console()
    table = Table(title="Provisioning summary", show_header=True, header_style="bold")
    table.add_column("Step")
    table.add_column("Result")

    if summary.upgrade is None:
        table.add_row("System packages", "[yellow]skipped[/yellow]")
    else:
        table.add_row("System packages", "[green]upgraded[/green]")

    packages = summary.packages
    if packages.all_succeeded:
        table.add_row("Packages", f"[green]{packages.success_count}/{packages.total}[/green]")
    else:
        table.add_row(
            "Packages",
            f"[red]{packages.success_count}/{packages.total}[/red] "
            f"(failed: {', '.join(packages.failed_packages)})",
        )

    table.add_row("Platform", summary.platform.value)

    cli_styles = {
        InstallStatus.SUCCESS: "green",
        InstallStatus.ALREADY_INSTALLED: "green",
        InstallStatus.SKIPPED: "yellow",
        InstallStatus.FAILED: "red",
    }
    style = cli_styles[summary.cli.status]
    table.add_row("Cloud CLI", f"[{style}]{summary.cli.status.value}[/{style}]")
    table.add_row("Duration", f"{summary.total_duration:.1f}s")

    console.print(table)


@main.command()
@click.option("--config", "config_path", help="Config file path")
def packages(config_path: str | None) -> None:
    """List the packages a provisioning run installs."""
    config = _load_config(config_path)
    for package in config.packages:
        click.echo(package)


@main.group(name="config")
def config_group() -> None:
    """Show or initialize the configuration file."""
    pass


@config_group.command(name="show")
@click.option("--config", "config_path", help="Config file path")
def config_show(config_path: str | None) -> None:
    """Print the effective configuration as TOML."""
    config = _load_config(config_path)
    click.echo(tomlkit.dumps(config.to_dict()), nl=False)


@config_group.command(name="init")
@click.option("--path", "target", help="Where to write (default: ~/.vmprov/config.toml)")
@click.option("--force", is_flag=True, help="Overwrite an existing file")
def config_init(target: str | None, force: bool) -> None:
    """Write a configuration file with default values."""
    destination = ConfigManager.DEFAULT_CONFIG_FILE if target is None else Path(target).expanduser()
    if destination.exists() and not force:
        raise click.ClickException(f"{destination} already exists (use --force to overwrite)")

    try:
        path = ConfigManager.save_config(VmprovConfig(), target)
    except ConfigError as e:
        raise click.ClickException(str(e)) from e

    click.echo(f"Wrote {path}")


if __name__ == "__main__":
    main()
