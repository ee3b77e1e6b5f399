"""Local command execution module.

Runs apt and vendor installer commands one at a time and returns a uniform
result object, so installers never have to deal with subprocess exceptions
directly.

Security:
- No shell=True (scripts are passed to bash on stdin)
- Timeout enforcement
- Non-interactive apt via DEBIAN_FRONTEND
"""

import logging
import os
import subprocess
import time
from dataclasses import dataclass
from pathlib import Path

logger = logging.getLogger(__name__)


class CommandError(Exception):
    """Raised when a command cannot be started at all."""

    pass


@dataclass
class CommandResult:
    """Result from local command execution."""

    command: list[str]
    success: bool
    stdout: str
    stderr: str
    exit_code: int
    duration: float = 0.0

    def get_output(self) -> str:
        """Get combined output."""
        if self.stdout and self.stderr:
            return f"{self.stdout}\n{self.stderr}"
        return self.stdout or self.stderr

    @property
    def display(self) -> str:
        return " ".join(self.command)


class CommandRunner:
    """Execute local commands with captured output.

    stdout is written to the run log at DEBUG level. stderr goes to the run
    log as well, and a failed command's stderr is logged at ERROR level so
    it also lands in the error log.
    """

    DEFAULT_TIMEOUT = 600  # apt upgrade on a fresh image can be slow

    def __init__(self, timeout: int = DEFAULT_TIMEOUT, env: dict[str, str] | None = None):
        self.timeout = timeout
        self.env = {**os.environ, "DEBIAN_FRONTEND": "noninteractive", **(env or {})}

    def run(
        self,
        command: list[str],
        *,
        input_text: str | None = None,
        cwd: Path | None = None,
        timeout: int | None = None,
    ) -> CommandResult:
        """Run a command and capture its output.

        Args:
            command: Argument vector
            input_text: Optional text fed to stdin
            cwd: Working directory
            timeout: Timeout override in seconds

        Returns:
            CommandResult (a timeout is reported as exit code 124)

        Raises:
            CommandError: If the executable does not exist or cannot start
        """
        timeout = timeout or self.timeout
        display = " ".join(command)
        logger.debug(f"Running: {display}")

        start_time = time.time()

        try:
            completed = subprocess.run(
                command,
                input=input_text,
                capture_output=True,
                text=True,
                cwd=cwd,
                env=self.env,
                timeout=timeout,
                check=False,
            )
        except subprocess.TimeoutExpired as e:
            duration = time.time() - start_time
            logger.error(f"Command timed out after {timeout}s: {display}")
            return CommandResult(
                command=command,
                success=False,
                stdout=_decode(e.stdout),
                stderr=_decode(e.stderr) or f"Timed out after {timeout}s",
                exit_code=124,
                duration=duration,
            )
        except OSError as e:
            raise CommandError(f"Cannot run {command[0]}: {e}") from e

        duration = time.time() - start_time
        result = CommandResult(
            command=command,
            success=completed.returncode == 0,
            stdout=completed.stdout or "",
            stderr=completed.stderr or "",
            exit_code=completed.returncode,
            duration=duration,
        )

        if result.stdout:
            logger.debug(result.stdout.rstrip())
        if result.stderr:
            if result.success:
                logger.debug(result.stderr.rstrip())
            else:
                logger.error(result.stderr.rstrip())

        return result


def _decode(output: str | bytes | None) -> str:
    if output is None:
        return ""
    if isinstance(output, bytes):
        return output.decode(errors="replace")
    return output


__all__ = ["CommandError", "CommandResult", "CommandRunner"]
