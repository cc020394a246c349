#!/usr/bin/env python3
"""
Package-manager contention detection.

Package managers take an exclusive lock, so back-to-back installs collide with
anything else holding it (an update timer, cloud-init). Before a package
operation we poll the process table and the family's lock files until they are
clear or a deadline passes.
"""

import logging
import os
import time
from dataclasses import dataclass
from pathlib import Path
from typing import Callable, Iterable, Optional, Tuple

import psutil

from hostprep.ui import print_warning

logger = logging.getLogger(__name__)

PACKAGEKIT_PROCESSES: Tuple[str, ...] = ("packagekitd", "packagekit", "pkcon")


@dataclass(frozen=True)
class LockProbe:
    """Process names and lock files that signal a busy package manager."""

    name: str
    process_patterns: Tuple[str, ...] = ()
    lock_files: Tuple[str, ...] = ()

    def including(self, patterns: Iterable[str]) -> "LockProbe":
        return LockProbe(
            self.name, self.process_patterns + tuple(patterns), self.lock_files
        )


def _same_file(a: str, b: str) -> bool:
    try:
        return os.path.samefile(a, b)
    except OSError:
        return os.path.realpath(a) == os.path.realpath(b)


def is_path_held_by_a_process(path: str) -> bool:
    """Return True if any live process has ``path`` open."""
    if not os.path.exists(path):
        return False

    for proc in psutil.process_iter(["pid"]):
        try:
            for open_file in proc.open_files():
                if _same_file(open_file.path, path):
                    logger.debug(f"{path} is held by PID {proc.pid}")
                    return True
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return False


def find_contending_process(patterns: Iterable[str]) -> Optional[str]:
    """Return a description of the first running process matching a pattern, if any."""
    wanted = set(patterns)
    if not wanted:
        return None

    own_pid = os.getpid()
    for proc in psutil.process_iter(["pid", "name", "cmdline"]):
        try:
            if proc.info["pid"] == own_pid:
                continue
            names = {proc.info["name"] or ""}
            cmdline = proc.info["cmdline"] or []
            if cmdline:
                names.add(os.path.basename(cmdline[0]))
            matched = names & wanted
            if matched:
                return f"{matched.pop()} (PID {proc.info['pid']})"
        except (psutil.NoSuchProcess, psutil.AccessDenied, psutil.ZombieProcess):
            continue
    return None


def check_lock_files(lock_files: Iterable[str]) -> Optional[str]:
    """
    Return the first lock file held by a live process.

    Lock files that exist but are not held by anyone are stale and get removed.
    """
    for lock in lock_files:
        if not os.path.exists(lock):
            continue
        if is_path_held_by_a_process(lock):
            return f"lockfile:{lock}"
        print_warning(f"Ignoring stale package manager lock file: {lock}")
        try:
            Path(lock).unlink()
        except FileNotFoundError:
            pass
        except OSError as e:
            logger.warning(f"Could not remove stale lock file {lock}: {e}")
    return None


def wait_for_contention(
    probe: LockProbe,
    max_wait: float = 60.0,
    poll_interval: float = 5.0,
    sleep: Callable[[float], None] = time.sleep,
) -> bool:
    """
    Wait while another package-manager process or a held lock file is present.

    Returns:
        True once the package manager is free, False if it was still busy after
        ``max_wait`` seconds. A False return is not an error: the caller proceeds.
    """
    if poll_interval <= 0:
        raise ValueError("poll_interval must be positive")

    waited = 0.0
    while True:
        found = find_contending_process(probe.process_patterns)
        if found is None:
            found = check_lock_files(probe.lock_files)

        if found is None:
            return True

        if waited >= max_wait:
            print_warning(
                f"Package manager still busy ({found}) after {max_wait:g}s; continuing anyway."
            )
            return False

        print_warning(f"Package manager busy ({found}). Waiting {poll_interval:g}s...")
        sleep(poll_interval)
        waited += poll_interval
