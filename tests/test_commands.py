"""
Tests for the command runner: dry-run, timeouts, retries and backoff.
"""

import sys
from pathlib import Path

import pytest

from hostprep.commands import (
    NOT_FOUND_EXIT_CODE,
    TIMEOUT_EXIT_CODE,
    Command,
    CommandRunner,
    RetryPolicy,
)
from hostprep.errors import ExhaustedRetries, PackageOperationFailure
from hostprep.locks import LockProbe


class TestCommand:
    def test_str_quotes_arguments(self):
        assert str(Command.of("echo", "a b")) == "echo 'a b'"

    def test_str_includes_env_prefix(self):
        cmd = Command.of(
            "apt-get", "install", "-y", env={"DEBIAN_FRONTEND": "noninteractive"}
        )
        assert str(cmd) == "DEBIAN_FRONTEND=noninteractive apt-get install -y"

    def test_add_appends_arguments_and_keeps_env(self):
        cmd = Command.of("dnf", "install", "-y", env={"A": "1"}) + ["fail2ban"]
        assert cmd.argv == ("dnf", "install", "-y", "fail2ban")
        assert dict(cmd.env) == {"A": "1"}

    def test_with_env_merges(self):
        cmd = Command.of("x", env={"A": "1"}).with_env({"B": "2"})
        assert dict(cmd.env) == {"A": "1", "B": "2"}

    def test_environment_none_without_overrides(self):
        assert Command.of("true").environment() is None

    def test_empty_command_rejected(self):
        with pytest.raises(ValueError):
            Command.of()


class TestRetryPolicy:
    def test_zero_attempts_rejected(self):
        with pytest.raises(ValueError):
            RetryPolicy(0)

    def test_linear_backoff(self):
        policy = RetryPolicy.linear(3, 5)
        assert [policy.backoff(a) for a in (1, 2)] == [5, 10]

    def test_exponential_backoff(self):
        policy = RetryPolicy.exponential(4, 1)
        assert [policy.backoff(a) for a in (1, 2, 3)] == [1, 2, 4]

    def test_constant_backoff(self):
        policy = RetryPolicy.constant(3, 2)
        assert policy.backoff(1) == policy.backoff(2) == 2

    def test_once(self):
        assert RetryPolicy.once().max_attempts == 1


class TestRun:
    def test_query_captures_output(self, runner, python_cmd):
        result = runner.query(python_cmd("print('hello')"))
        assert result.ok
        assert result.output.strip() == "hello"

    def test_env_overrides_reach_child(self, runner):
        cmd = Command.of(
            sys.executable,
            "-c",
            "import os; print(os.environ['HOSTPREP_TEST'])",
            env={"HOSTPREP_TEST": "value"},
        )
        assert runner.query(cmd).output.strip() == "value"

    def test_nonzero_exit(self, runner, python_cmd):
        result = runner.run(python_cmd("raise SystemExit(3)"))
        assert result.returncode == 3
        assert not result.ok

    def test_missing_executable(self, runner):
        result = runner.query(Command.of("hostprep-no-such-binary"))
        assert result.returncode == NOT_FOUND_EXIT_CODE

    def test_timeout_kills_child(self, config, sleeps, python_cmd):
        config.COMMAND_TIMEOUT = 1
        runner = CommandRunner(config, sleep=sleeps)
        result = runner.query(python_cmd("import time; time.sleep(30)"))
        assert result.returncode == TIMEOUT_EXIT_CODE


class TestDryRun:
    def test_run_never_spawns(self, dry_runner, counting_cmd, spawn_count):
        result = dry_runner.run(counting_cmd())
        assert result.ok
        assert result.simulated
        assert spawn_count() == 0

    def test_retry_never_spawns(self, dry_runner, counting_cmd, spawn_count, sleeps):
        result = dry_runner.run_with_retry(counting_cmd(), RetryPolicy.linear(3, 1))
        assert result.ok
        assert spawn_count() == 0
        assert sleeps.calls == []

    def test_query_still_runs(self, dry_runner, python_cmd):
        assert dry_runner.query(python_cmd("print('probe')")).output.strip() == "probe"

    def test_dry_run_leaves_stale_locks(self, dry_runner, counting_cmd, tmp_path: Path):
        lock = tmp_path / "lock"
        lock.write_text("")
        probe = LockProbe("test", (), (str(lock),))
        dry_runner.run_with_retry(counting_cmd(), probe=probe)
        assert lock.exists()


class TestRunWithRetry:
    @pytest.mark.parametrize("attempts", [1, 3])
    def test_always_failing_spawns_n_times(
        self, runner, counting_cmd, spawn_count, sleeps, attempts
    ):
        with pytest.raises(ExhaustedRetries) as excinfo:
            runner.run_with_retry(counting_cmd(), RetryPolicy.linear(attempts, 1))

        assert spawn_count() == attempts
        assert excinfo.value.attempts == attempts
        assert excinfo.value.last_exit_code == 1
        assert len(sleeps.calls) == attempts - 1

    def test_exhausted_retries_is_a_package_failure(self, runner, counting_cmd):
        with pytest.raises(PackageOperationFailure):
            runner.run_with_retry(counting_cmd(), RetryPolicy.once())

    def test_fail_fail_succeed(self, runner, counting_cmd, spawn_count, sleeps):
        result = runner.run_with_retry(counting_cmd(succeed_on=3), RetryPolicy.linear(3, 0.5))

        assert result.ok
        assert result.attempts == 3
        assert spawn_count() == 3
        assert sleeps.calls == [0.5, 1.0]
        assert sleeps.calls == sorted(sleeps.calls)

    def test_first_success_does_not_sleep(self, runner, counting_cmd, sleeps):
        result = runner.run_with_retry(counting_cmd(succeed_on=1))
        assert result.attempts == 1
        assert sleeps.calls == []

    def test_default_policy_follows_config(self, runner, counting_cmd, spawn_count, sleeps):
        with pytest.raises(ExhaustedRetries):
            runner.run_with_retry(counting_cmd())
        assert spawn_count() == 3
        assert sleeps.calls == [0.5, 1.0]

    def test_stale_lock_cleared_before_first_attempt(
        self, runner, counting_cmd, tmp_path: Path
    ):
        lock = tmp_path / "lock"
        lock.write_text("")
        probe = LockProbe("test", (), (str(lock),))
        result = runner.run_with_retry(counting_cmd(succeed_on=1), probe=probe)
        assert result.ok
        assert not lock.exists()
