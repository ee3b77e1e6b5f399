"""
Shared test fixtures and configuration for vmprov tests.

This module provides common fixtures used across all test types:
- An isolated config directory (never touches ~/.vmprov)
- A scripted fake metadata service for the platform detector
- A recording command runner for the installers
"""

from dataclasses import dataclass, field
from pathlib import Path

import pytest
import requests

from vmprov.command_runner import CommandResult
from vmprov.imds_client import ImdsClient

# ============================================================================
# CONFIG FIXTURES
# ============================================================================


@pytest.fixture(autouse=True)
def isolated_config(tmp_path, monkeypatch):
    """Point ConfigManager at a temporary ~/.vmprov.

    CRITICAL PROTECTION: Tests should NEVER read or modify the real
    configuration of the machine running them.
    """
    from vmprov.config_manager import ConfigManager

    config_dir = tmp_path / ".vmprov"
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_DIR", config_dir)
    monkeypatch.setattr(ConfigManager, "DEFAULT_CONFIG_FILE", config_dir / "config.toml")
    return config_dir


# ============================================================================
# METADATA SERVICE FIXTURES
# ============================================================================


def make_response(status_code: int = 200, body: str = "") -> requests.Response:
    """Build a real requests.Response with the given status and body."""
    response = requests.Response()
    response.status_code = status_code
    response._content = body.encode()
    response.encoding = "utf-8"
    return response


class FakeImdsSession:
    """Stand-in for requests.Session scripted per (method, path).

    Routes map ("GET", "/latest/meta-data/") to either a Response or an
    exception instance to raise. Unrouted requests answer 404.
    """

    def __init__(self, routes=None):
        self.routes = dict(routes or {})
        self.calls = []

    def request(self, method, url, headers=None, timeout=None, allow_redirects=True):
        path = url.split("://", 1)[1]
        path = path[path.index("/") :]
        self.calls.append(
            {"method": method, "path": path, "headers": dict(headers or {}), "timeout": timeout}
        )

        outcome = self.routes.get((method, path), make_response(404, "Not Found"))
        if isinstance(outcome, Exception):
            raise outcome
        return outcome

    def close(self):
        pass

    def paths(self):
        return [(c["method"], c["path"]) for c in self.calls]


@pytest.fixture
def imds_response():
    """The make_response helper, for building scripted answers."""
    return make_response


@pytest.fixture
def fake_imds():
    """Factory building an ImdsClient backed by a FakeImdsSession."""

    def _build(routes=None, timeout_ms=1000):
        session = FakeImdsSession(routes)
        client = ImdsClient(host="169.254.169.254", timeout_ms=timeout_ms, session=session)
        return client, session

    return _build


# ============================================================================
# COMMAND RUNNER FIXTURES
# ============================================================================


@dataclass
class RecordingRunner:
    """Command runner that records commands and returns scripted results.

    failing: commands (joined by spaces) or package names that should fail.
    """

    failing: set = field(default_factory=set)
    commands: list = field(default_factory=list)
    calls: list = field(default_factory=list)

    def run(self, command, *, input_text=None, cwd=None, timeout=None):
        self.commands.append(list(command))
        self.calls.append({"command": list(command), "input_text": input_text, "cwd": cwd})
        joined = " ".join(command)
        failed = joined in self.failing or command[-1] in self.failing
        return CommandResult(
            command=list(command),
            success=not failed,
            stdout="" if failed else "ok",
            stderr="E: Unable to locate package" if failed else "",
            exit_code=100 if failed else 0,
        )


@pytest.fixture
def recording_runner():
    """A RecordingRunner where every command succeeds."""
    return RecordingRunner()


@pytest.fixture
def failing_runner():
    """Factory for a RecordingRunner whose listed commands or packages fail."""

    def _build(*failing):
        return RecordingRunner(failing=set(failing))

    return _build


@pytest.fixture
def log_paths(tmp_path) -> tuple[Path, Path]:
    """Run log and error log paths inside tmp_path."""
    return tmp_path / "vm_provisioning.log", tmp_path / "vm_provisioning_errors.log"
