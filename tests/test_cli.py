"""
Tests for the provision command: options, exit codes and signals.
"""

import signal
from pathlib import Path

import pytest
from click.testing import CliRunner

from hostprep import VERSION
from hostprep.cli import cli, execute, signal_handler
from hostprep.errors import ValidationRejected

OS_RELEASE = 'ID=ubuntu\nID_LIKE=debian\nVERSION_ID="24.04"\n'


class TestCLIGlobal:
    def test_help(self):
        result = CliRunner().invoke(cli, ["--help"])
        assert result.exit_code == 0
        assert "Bootstrap and harden a fresh Linux server" in result.output
        assert "--dry-run" in result.output

    def test_short_help(self):
        result = CliRunner().invoke(cli, ["-h"])
        assert result.exit_code == 0

    def test_version(self):
        result = CliRunner().invoke(cli, ["--version"])
        assert result.exit_code == 0
        assert VERSION in result.output

    def test_unknown_phase(self):
        result = CliRunner().invoke(cli, ["--phase", "everything"])
        assert result.exit_code == 2


class TestExitCodes:
    def test_non_root_exits_1(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr("os.geteuid", lambda: 1000)
        result = CliRunner().invoke(
            cli, ["--dry-run", "--log-file", str(tmp_path / "provision.log")]
        )
        assert result.exit_code == 1

    def test_log_file_is_private(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr("os.geteuid", lambda: 1000)
        log_file = tmp_path / "provision.log"
        CliRunner().invoke(cli, ["-n", "--log-file", str(log_file)])
        assert log_file.exists()
        assert log_file.stat().st_mode & 0o777 == 0o600

    def test_invalid_environment_is_a_usage_error(self, tmp_path: Path, monkeypatch):
        monkeypatch.setenv("PKG_RETRY_ATTEMPTS", "0")
        result = CliRunner().invoke(cli, ["--log-file", str(tmp_path / "provision.log")])
        assert result.exit_code == 2

    def test_validation_rejected_exits_1(self, config, monkeypatch):
        def reject(self, phase):
            raise ValidationRejected("/etc/ssh/sshd_config", "bad option", "/tmp/backup")

        monkeypatch.setattr("hostprep.provision.Provisioner.run", reject)
        assert execute(config, "all") == 1

    def test_keyboard_interrupt_exits_130(self, config, monkeypatch):
        def interrupt(self, phase):
            raise KeyboardInterrupt

        monkeypatch.setattr("hostprep.provision.Provisioner.run", interrupt)
        assert execute(config, "all") == 130

    def test_unexpected_error_exits_1(self, config, monkeypatch):
        def explode(self, phase):
            raise RuntimeError("boom")

        monkeypatch.setattr("hostprep.provision.Provisioner.run", explode)
        assert execute(config, "all") == 1

    def test_success_exits_0(self, config, monkeypatch):
        monkeypatch.setattr("hostprep.provision.Provisioner.run", lambda self, phase: None)
        assert execute(config, "bootstrap") == 0


def test_signal_handler_exit_code():
    with pytest.raises(SystemExit) as excinfo:
        signal_handler(signal.SIGTERM, None)
    assert excinfo.value.code == 128 + signal.SIGTERM


class TestDryRun:
    @pytest.fixture
    def ubuntu(self, dry_config, monkeypatch):
        dry_config.OS_RELEASE.write_text(OS_RELEASE)
        monkeypatch.setattr("os.geteuid", lambda: 0)
        return dry_config

    def test_clean_bootstrap_exits_0(self, ubuntu):
        assert execute(ubuntu, "bootstrap") == 0

    def test_clean_full_run_exits_0(self, ubuntu, tmp_path: Path, monkeypatch):
        monkeypatch.setattr(
            "hostprep.cli.AppConfig.from_env", lambda *args, **kwargs: ubuntu
        )
        log_file = tmp_path / "provision.log"
        result = CliRunner().invoke(cli, ["-n", "--log-file", str(log_file)])
        assert result.exit_code == 0, result.output
        assert "Summary" in result.output


class TestUnknownOptions:
    def test_warns_and_continues(self, tmp_path: Path, monkeypatch):
        monkeypatch.setattr("hostprep.cli.execute", lambda config, phase: 0)
        log_file = tmp_path / "provision.log"
        result = CliRunner().invoke(
            cli, ["--frobnicate", "-n", "--log-file", str(log_file)]
        )
        assert result.exit_code == 0
        assert "Unknown option: --frobnicate" in result.output
        assert "Unknown option: --frobnicate" in log_file.read_text()

    def test_known_options_still_apply(self, tmp_path: Path, monkeypatch):
        seen = {}

        def record(config, phase):
            seen["dry_run"] = config.DRY_RUN
            seen["phase"] = phase
            return 0

        monkeypatch.setattr("hostprep.cli.execute", record)
        result = CliRunner().invoke(
            cli,
            ["--bogus", "--dry-run", "--phase", "harden", "--log-file", str(tmp_path / "p.log")],
        )
        assert result.exit_code == 0
        assert seen == {"dry_run": True, "phase": "harden"}
