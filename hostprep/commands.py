#!/usr/bin/env python3
"""
Command execution helpers.

Every external command of a provisioning run goes through CommandRunner: it
echoes the command, honours dry-run mode, bounds each child with a timeout and,
for package-manager calls, waits out lock contention and retries with backoff.
"""

import logging
import os
import shlex
import shutil
import subprocess
import time
from dataclasses import dataclass, field
from typing import Callable, Dict, Optional, Sequence, Tuple

from hostprep.config import AppConfig
from hostprep.errors import ExhaustedRetries
from hostprep.locks import LockProbe, wait_for_contention
from hostprep.ui import print_command, print_warning

logger = logging.getLogger(__name__)

TIMEOUT_EXIT_CODE = 124
NOT_FOUND_EXIT_CODE = 127


# ----------------------------------------------------------------
# Data Structures
# ----------------------------------------------------------------
@dataclass(frozen=True)
class Command:
    """An executable plus its arguments and optional environment overrides."""

    argv: Tuple[str, ...]
    env: Tuple[Tuple[str, str], ...] = ()

    @classmethod
    def of(cls, *argv: str, env: Optional[Dict[str, str]] = None) -> "Command":
        if not argv:
            raise ValueError("A command needs at least an executable")
        return cls(tuple(str(a) for a in argv), tuple(sorted((env or {}).items())))

    def __add__(self, extra: Sequence[str]) -> "Command":
        return Command(self.argv + tuple(str(a) for a in extra), self.env)

    def with_env(self, env: Dict[str, str]) -> "Command":
        merged = dict(self.env)
        merged.update(env)
        return Command(self.argv, tuple(sorted(merged.items())))

    @property
    def executable(self) -> str:
        return self.argv[0]

    def environment(self) -> Optional[Dict[str, str]]:
        """The child environment, or None to inherit ours unchanged."""
        if not self.env:
            return None
        env = os.environ.copy()
        env.update(dict(self.env))
        return env

    def __str__(self) -> str:
        prefix = " ".join(f"{k}={shlex.quote(v)}" for k, v in self.env)
        cmd = " ".join(shlex.quote(a) for a in self.argv)
        return f"{prefix} {cmd}" if prefix else cmd


@dataclass(frozen=True)
class ExitInfo:
    """Outcome of a finished (or simulated) command."""

    returncode: int
    output: str = ""
    attempts: int = 1
    simulated: bool = False

    @property
    def ok(self) -> bool:
        return self.returncode == 0


@dataclass(frozen=True)
class RetryPolicy:
    """How many times to run a command and how long to sleep between attempts."""

    max_attempts: int = 3
    backoff: Callable[[int], float] = field(default=lambda attempt: 0.0)

    def __post_init__(self) -> None:
        if self.max_attempts < 1:
            raise ValueError("max_attempts must be at least 1")

    @classmethod
    def linear(cls, max_attempts: int, delay: float) -> "RetryPolicy":
        """Sleep delay * attempt after each failed attempt."""
        return cls(max_attempts, lambda attempt: delay * attempt)

    @classmethod
    def constant(cls, max_attempts: int, delay: float) -> "RetryPolicy":
        return cls(max_attempts, lambda attempt: delay)

    @classmethod
    def exponential(cls, max_attempts: int, delay: float) -> "RetryPolicy":
        return cls(max_attempts, lambda attempt: delay * (2 ** (attempt - 1)))

    @classmethod
    def once(cls) -> "RetryPolicy":
        return cls(1)


# ----------------------------------------------------------------
# Command Execution Utilities
# ----------------------------------------------------------------
class CommandRunner:
    """Runs external commands with dry-run, timeout, contention and retry handling."""

    def __init__(
        self,
        config: AppConfig,
        sleep: Callable[[float], None] = time.sleep,
    ) -> None:
        self.config = config
        self.sleep = sleep
        self.default_policy = RetryPolicy.linear(
            config.RETRY_ATTEMPTS, config.RETRY_DELAY
        )

    @property
    def dry_run(self) -> bool:
        return self.config.DRY_RUN

    @staticmethod
    def command_exists(cmd: str) -> bool:
        """Check if a command exists in the system PATH."""
        return shutil.which(cmd) is not None

    def _spawn(self, cmd: Command, capture: bool) -> ExitInfo:
        logger.debug(f"Executing: {cmd}")
        try:
            result = subprocess.run(
                list(cmd.argv),
                env=cmd.environment(),
                stdout=subprocess.PIPE if capture else None,
                stderr=subprocess.STDOUT if capture else None,
                text=True,
                timeout=self.config.COMMAND_TIMEOUT,
                check=False,
            )
        except FileNotFoundError:
            logger.debug(f"Executable not found: {cmd.executable}")
            return ExitInfo(NOT_FOUND_EXIT_CODE, f"{cmd.executable}: command not found")
        except subprocess.TimeoutExpired as e:
            logger.error(
                f"Command timed out after {self.config.COMMAND_TIMEOUT} seconds: {cmd}"
            )
            output = e.output if isinstance(e.output, str) else ""
            return ExitInfo(TIMEOUT_EXIT_CODE, output)

        output = result.stdout or ""
        if result.returncode != 0:
            logger.debug(f"Command exited {result.returncode}: {cmd}")
        return ExitInfo(result.returncode, output)

    def query(self, cmd: Command) -> ExitInfo:
        """
        Run a read-only probe (e.g. ``dpkg -s``, ``ufw status``).

        Probes run even in dry-run mode, are never echoed and never retried.
        """
        return self._spawn(cmd, capture=True)

    def run(self, cmd: Command, capture: bool = False) -> ExitInfo:
        """Run a command once. In dry-run mode it is only echoed."""
        print_command(str(cmd))
        if self.dry_run:
            logger.debug(f"[dry-run] {cmd}")
            return ExitInfo(0, simulated=True)
        return self._spawn(cmd, capture)

    def run_with_retry(
        self,
        cmd: Command,
        policy: Optional[RetryPolicy] = None,
        probe: Optional[LockProbe] = None,
        capture: bool = False,
    ) -> ExitInfo:
        """
        Run a command until it succeeds or the retry policy is exhausted.

        Args:
            cmd: Command to execute
            policy: Retry policy; defaults to the configured package-manager policy
            probe: Lock probe to wait on before the first attempt
            capture: Capture output instead of streaming it to the terminal

        Returns:
            ExitInfo of the successful attempt

        Raises:
            ExhaustedRetries: If every attempt exited non-zero
        """
        policy = policy or self.default_policy
        print_command(str(cmd))

        if self.dry_run:
            logger.debug(f"[dry-run] {cmd}")
            return ExitInfo(0, simulated=True)

        if probe is not None:
            wait_for_contention(
                probe,
                max_wait=self.config.LOCK_MAX_WAIT,
                poll_interval=self.config.LOCK_POLL_INTERVAL,
                sleep=self.sleep,
            )

        result = ExitInfo(1)
        for attempt in range(1, policy.max_attempts + 1):
            result = self._spawn(cmd, capture)
            if result.ok:
                if attempt > 1:
                    logger.info(f"Command succeeded on attempt {attempt}: {cmd}")
                return ExitInfo(result.returncode, result.output, attempts=attempt)

            if attempt < policy.max_attempts:
                delay = policy.backoff(attempt)
                print_warning(
                    f"Command failed with exit {result.returncode} "
                    f"(attempt {attempt}/{policy.max_attempts}); retrying in {delay:g}s..."
                )
                self.sleep(delay)

        logger.error(f"Command failed after {policy.max_attempts} attempt(s): {cmd}")
        raise ExhaustedRetries(
            str(cmd), policy.max_attempts, result.returncode, result.output
        )
