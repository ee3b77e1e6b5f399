"""Logging setup for provisioning runs.

A run writes two files, both truncated at the start of the run:
- the run log, with every step and command output
- the error log, with ERROR records only

Messages are mirrored to the console through rich. The handlers are
attached to the "vmprov" logger and returned to the caller, who owns them
and removes them with teardown_logging() when the run ends.
"""

import logging
from pathlib import Path

from rich.console import Console
from rich.logging import RichHandler

LOG_FORMAT = "%(asctime)s - %(name)s - %(levelname)s - %(message)s"
PACKAGE_LOGGER = "vmprov"


def setup_logging(
    log_file: str | Path,
    error_log: str | Path,
    verbose: bool = False,
    console: Console | None = None,
) -> list[logging.Handler]:
    """Attach run log, error log and console handlers.

    Args:
        log_file: Path of the run log
        error_log: Path of the error log
        verbose: Log DEBUG records (command output) as well
        console: Console to mirror messages to (default: stdout)

    Returns:
        The handlers that were installed
    """
    level = logging.DEBUG if verbose else logging.INFO
    formatter = logging.Formatter(LOG_FORMAT)

    run_handler = logging.FileHandler(log_file, mode="w")
    run_handler.setLevel(logging.DEBUG)
    run_handler.setFormatter(formatter)

    error_handler = logging.FileHandler(error_log, mode="w")
    error_handler.setLevel(logging.ERROR)
    error_handler.setFormatter(formatter)

    console_handler = RichHandler(
        console=console or Console(),
        level=level,
        show_time=False,
        show_path=False,
        markup=False,
    )

    handlers: list[logging.Handler] = [run_handler, error_handler, console_handler]

    package_logger = logging.getLogger(PACKAGE_LOGGER)
    package_logger.setLevel(logging.DEBUG)
    # Console output comes from our own handler, not the root logger
    package_logger.propagate = False
    for handler in handlers:
        package_logger.addHandler(handler)

    return handlers


def teardown_logging(handlers: list[logging.Handler]) -> None:
    """Detach and close handlers installed by setup_logging()."""
    package_logger = logging.getLogger(PACKAGE_LOGGER)
    for handler in handlers:
        package_logger.removeHandler(handler)
        handler.close()
    package_logger.propagate = True


__all__ = ["LOG_FORMAT", "setup_logging", "teardown_logging"]
