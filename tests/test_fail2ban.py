"""
Tests for the Fail2Ban jail file and manual start-up.
"""

import subprocess
import sys
import time
from pathlib import Path

import psutil
import pytest

from hostprep.fail2ban import (
    Fail2BanConfigurator,
    find_fail2ban_server,
    render_jail,
    write_atomically,
)

EXPECTED_JAIL = (
    "[DEFAULT]\n"
    "bantime = 1h\n"
    "findtime = 10m\n"
    "maxretry = 5\n"
    "\n"
    "[sshd]\n"
    "enabled = true\n"
)


def test_render_jail(config):
    assert render_jail(config.FAIL2BAN_DEFAULTS) == EXPECTED_JAIL


class TestWriteAtomically:
    def test_writes_with_mode(self, tmp_path: Path):
        target = tmp_path / "fail2ban" / "jail.local"
        write_atomically(target, EXPECTED_JAIL, 0o644)
        assert target.read_text() == EXPECTED_JAIL
        assert target.stat().st_mode & 0o777 == 0o644

    def test_replaces_and_leaves_no_temp_files(self, tmp_path: Path):
        target = tmp_path / "jail.local"
        target.write_text("old")
        write_atomically(target, "new\n")
        assert target.read_text() == "new\n"
        assert [p.name for p in tmp_path.iterdir()] == ["jail.local"]


class TestFail2BanConfigurator:
    def test_write_jail(self, config, runner, fake_services):
        Fail2BanConfigurator(config, runner, None, fake_services).write_jail()
        assert config.FAIL2BAN_JAIL.read_text() == EXPECTED_JAIL

    def test_dry_run_writes_nothing(self, dry_config, dry_runner, fake_services):
        Fail2BanConfigurator(dry_config, dry_runner, None, fake_services).write_jail()
        assert not dry_config.FAIL2BAN_JAIL.exists()
        assert not dry_config.FAIL2BAN_JAIL.parent.exists()


class TestManualStart:
    def test_failing_client_is_not_success(
        self, config, runner, fake_services, python_cmd, monkeypatch
    ):
        configurator = Fail2BanConfigurator(config, runner, None, fake_services)
        monkeypatch.setattr(
            configurator, "manual_start_cmd", python_cmd("raise SystemExit(1)")
        )
        monkeypatch.setattr("hostprep.fail2ban.find_fail2ban_server", lambda exclude=(): 4242)

        assert configurator.start_manually() is False

    def test_clean_exit_with_running_server(
        self, config, runner, fake_services, python_cmd, monkeypatch
    ):
        configurator = Fail2BanConfigurator(config, runner, None, fake_services)
        monkeypatch.setattr(
            configurator, "manual_start_cmd", python_cmd("print('started')")
        )
        monkeypatch.setattr("hostprep.fail2ban.find_fail2ban_server", lambda exclude=(): 4242)

        assert configurator.start_manually() is True
        assert "started" in config.FAIL2BAN_MANUAL_LOG.read_text()

    def test_clean_exit_without_server(
        self, config, runner, fake_services, python_cmd, monkeypatch
    ):
        configurator = Fail2BanConfigurator(config, runner, None, fake_services)
        monkeypatch.setattr(configurator, "manual_start_cmd", python_cmd("pass"))
        monkeypatch.setattr("hostprep.fail2ban.find_fail2ban_server", lambda exclude=(): None)

        assert configurator.start_manually() is False

    def test_dry_run(self, dry_config, dry_runner, fake_services):
        configurator = Fail2BanConfigurator(dry_config, dry_runner, None, fake_services)
        assert configurator.start_manually() is True


class TestFindServer:
    @pytest.fixture
    def fake_server(self, tmp_path: Path):
        script = tmp_path / "fail2ban-server"
        script.write_text("import time\ntime.sleep(30)\n")
        return [sys.executable, str(script)]

    def test_running_server_is_found(self, fake_server):
        proc = subprocess.Popen(fake_server)
        try:
            assert find_fail2ban_server() == proc.pid
        finally:
            proc.kill()
            proc.wait()

    def test_excluded_pid_is_ignored(self, fake_server):
        proc = subprocess.Popen(fake_server)
        try:
            assert find_fail2ban_server(exclude={proc.pid}) != proc.pid
        finally:
            proc.kill()
            proc.wait()

    def test_zombie_is_not_a_server(self, fake_server):
        proc = subprocess.Popen(fake_server)
        try:
            proc.kill()
            deadline = time.time() + 5
            while psutil.Process(proc.pid).status() != psutil.STATUS_ZOMBIE:
                assert time.time() < deadline
                time.sleep(0.05)
            assert find_fail2ban_server() != proc.pid
        finally:
            proc.wait()
