"""
Shared test fixtures and configuration.
"""

import dataclasses
import sys
from pathlib import Path
from typing import Callable, List, Sequence

import pytest

from hostprep.commands import Command, CommandRunner
from hostprep.config import AppConfig


class SleepRecorder:
    """Stands in for time.sleep and remembers every requested delay."""

    def __init__(self) -> None:
        self.calls: List[float] = []

    def __call__(self, seconds: float) -> None:
        self.calls.append(seconds)


class FakeServices:
    """A ServiceManager that records requests instead of touching the host."""

    def __init__(self, ok: bool = True) -> None:
        self.ok = ok
        self.restarted: List[List[str]] = []
        self.enabled: List[str] = []

    def restart(self, names: Sequence[str]) -> bool:
        self.restarted.append(list(names))
        return self.ok

    def enable(self, name: str, now: bool = False) -> bool:
        self.enabled.append(name)
        return self.ok

    def unit_known(self, name: str) -> bool:
        return False


@pytest.fixture
def config(tmp_path: Path) -> AppConfig:
    """A config whose every path lives under tmp_path and that never waits."""
    root_home = tmp_path / "root"
    root_home.mkdir()
    return AppConfig(
        LOG_FILE=str(tmp_path / "hostprep.log"),
        RETRY_DELAY=0.5,
        COMMAND_TIMEOUT=30,
        LOCK_MAX_WAIT=0.0,
        LOCK_POLL_INTERVAL=1.0,
        OS_RELEASE=tmp_path / "os-release",
        ROOT_HOME=root_home,
        SSHD_CONFIG=tmp_path / "sshd_config",
        FAIL2BAN_JAIL=tmp_path / "fail2ban" / "jail.local",
        FAIL2BAN_MANUAL_LOG=tmp_path / "fail2ban-manual.log",
        JOURNALD_CONF=tmp_path / "journald.conf",
        JOURNAL_DIR=tmp_path / "journal",
        SYSCONFIG_DIR=tmp_path / "sysconfig",
    )


@pytest.fixture
def dry_config(config: AppConfig) -> AppConfig:
    return dataclasses.replace(config, DRY_RUN=True)


@pytest.fixture
def sleeps() -> SleepRecorder:
    return SleepRecorder()


@pytest.fixture
def runner(config: AppConfig, sleeps: SleepRecorder) -> CommandRunner:
    return CommandRunner(config, sleep=sleeps)


@pytest.fixture
def dry_runner(dry_config: AppConfig, sleeps: SleepRecorder) -> CommandRunner:
    return CommandRunner(dry_config, sleep=sleeps)


@pytest.fixture
def python_cmd() -> Callable[[str], Command]:
    """Build a Command that runs a Python snippet in a child interpreter."""

    def build(code: str) -> Command:
        return Command.of(sys.executable, "-c", code)

    return build


@pytest.fixture
def counting_cmd(tmp_path: Path, python_cmd) -> Callable[[int], Command]:
    """
    A command that records each spawn in ``tmp_path/spawns`` and exits 1
    until it has been spawned ``succeed_on`` times (0 = always fail).
    """
    counter = tmp_path / "spawns"

    def build(succeed_on: int = 0) -> Command:
        code = (
            "import pathlib, sys\n"
            f"p = pathlib.Path({str(counter)!r})\n"
            "n = len(p.read_text()) + 1 if p.exists() else 1\n"
            "p.write_text('x' * n)\n"
            f"sys.exit(0 if {succeed_on} and n >= {succeed_on} else 1)\n"
        )
        return python_cmd(code)

    return build


@pytest.fixture
def spawn_count(tmp_path: Path) -> Callable[[], int]:
    counter = tmp_path / "spawns"

    def count() -> int:
        return len(counter.read_text()) if counter.exists() else 0

    return count


@pytest.fixture
def fake_services() -> FakeServices:
    return FakeServices()
