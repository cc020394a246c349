#!/usr/bin/env python3
"""
Safe edits of line-oriented configuration files.

A mutation backs the target up, upserts a set of directives, asks an external
validator for a verdict and copies the backup back if the verdict is negative.
"""

import datetime
import logging
import os
import re
import shutil
from dataclasses import dataclass, field
from enum import Enum
from pathlib import Path
from typing import List, Optional, Sequence, Tuple, Union

from hostprep.commands import Command, CommandRunner
from hostprep.config import AppConfig
from hostprep.errors import ValidationRejected
from hostprep.ui import print_error, print_step, print_success

logger = logging.getLogger(__name__)

PathLike = Union[str, Path]


@dataclass(frozen=True)
class ConfigDirective:
    """A desired ``key value`` line in a config file."""

    key: str
    value: str

    def render(self, separator: str = " ") -> str:
        return f"{self.key}{separator}{self.value}"


class MutationState(str, Enum):
    UNMODIFIED = "unmodified"
    BACKED_UP = "backed_up"
    MUTATED = "mutated"
    VALIDATED = "validated"
    ROLLED_BACK = "rolled_back"


@dataclass
class ConfigMutation:
    """One validated edit of one config file."""

    target_file: Path
    backup_file: Path
    directives: List[ConfigDirective]
    validator: Command
    separator: str = " "
    state: MutationState = field(default=MutationState.UNMODIFIED)


def directives_from_pairs(pairs: Sequence[Tuple[str, str]]) -> List[ConfigDirective]:
    return [ConfigDirective(key, value) for key, value in pairs]


def timestamped_backup_path(
    target: PathLike, now: Optional[datetime.datetime] = None
) -> Path:
    """
    Return ``<target>.bak.<YYYYmmddHHMMSS>``.

    If that file already exists (two runs within the same second), a ``.1``,
    ``.2``, ... suffix is added so an earlier backup is never overwritten.
    """
    ts = (now or datetime.datetime.now()).strftime("%Y%m%d%H%M%S")
    base = Path(f"{target}.bak.{ts}")
    candidate = base
    n = 0
    while candidate.exists():
        n += 1
        candidate = Path(f"{base}.{n}")
    return candidate


def _copy_with_owner(src: Path, dst: Path) -> None:
    """Copy content, mode and timestamps, then ownership where we are allowed to."""
    shutil.copy2(src, dst)
    st = os.stat(src)
    try:
        os.chown(dst, st.st_uid, st.st_gid)
    except PermissionError:
        logger.debug(f"Could not preserve ownership on {dst}")


def upsert_lines(
    lines: List[str], directives: Sequence[ConfigDirective], separator: str = " "
) -> List[str]:
    """
    Apply directives to a list of lines (each ending in a newline, except maybe the last).

    Every line whose first word is the key (case-insensitive, leading whitespace
    allowed) is replaced; a key with no match is appended.
    """
    result = list(lines)
    for directive in directives:
        pattern = re.compile(rf"^\s*{re.escape(directive.key)}\b", re.IGNORECASE)
        new_line = directive.render(separator) + "\n"
        matched = False
        for i, line in enumerate(result):
            if pattern.match(line):
                result[i] = new_line
                matched = True
        if not matched:
            if result and not result[-1].endswith("\n"):
                result[-1] += "\n"
            result.append(new_line)
    return result


def upsert(
    file: PathLike, directives: Sequence[ConfigDirective], separator: str = " "
) -> None:
    """Upsert directives into a config file in place."""
    path = Path(file)
    with open(path, "r", encoding="utf-8", errors="surrogateescape", newline="") as f:
        lines = f.readlines()

    updated = upsert_lines(lines, directives, separator)
    if updated == lines:
        logger.debug(f"{path} already contains the requested directives")
        return

    # Truncating in place keeps the inode, mode and owner of the file.
    with open(path, "w", encoding="utf-8", errors="surrogateescape", newline="") as f:
        f.writelines(updated)
    logger.debug(f"Updated {path}: {', '.join(d.key for d in directives)}")


class ConfigMutator:
    """Applies ConfigMutations with backup, validation and rollback."""

    def __init__(self, config: AppConfig, runner: CommandRunner) -> None:
        self.config = config
        self.runner = runner

    def upsert(
        self,
        file: PathLike,
        directives: Sequence[ConfigDirective],
        separator: str = " ",
    ) -> None:
        """Upsert without validation (dry-run aware)."""
        if self.config.DRY_RUN:
            for directive in directives:
                print_step(f"[dry-run] {file}: {directive.render(separator)}")
            return
        upsert(file, directives, separator)

    def apply_with_validation(self, mutation: ConfigMutation) -> ConfigMutation:
        """
        Back up, mutate and validate a config file.

        Returns:
            The mutation in state VALIDATED (or UNMODIFIED in dry-run mode)

        Raises:
            ValidationRejected: If the validator failed; the target has been
                restored from the backup and the mutation is ROLLED_BACK
        """
        target = mutation.target_file
        if self.config.DRY_RUN:
            for directive in mutation.directives:
                print_step(f"[dry-run] {target}: {directive.render(mutation.separator)}")
            self.runner.run(mutation.validator)
            return mutation

        _copy_with_owner(target, mutation.backup_file)
        mutation.state = MutationState.BACKED_UP
        logger.info(f"Backed up {target} to {mutation.backup_file}")

        try:
            upsert(target, mutation.directives, mutation.separator)
        except OSError:
            mutation.state = MutationState.MUTATED
            self._rollback(mutation)
            raise
        mutation.state = MutationState.MUTATED

        result = self.runner.query(mutation.validator)
        if result.ok:
            mutation.state = MutationState.VALIDATED
            print_success(f"{target} passed validation ({mutation.validator})")
            return mutation

        print_error(f"New {target} failed validation; restoring backup.")
        self._rollback(mutation)
        raise ValidationRejected(
            str(target), result.output.strip(), str(mutation.backup_file)
        )

    def _rollback(self, mutation: ConfigMutation) -> None:
        _copy_with_owner(mutation.backup_file, mutation.target_file)
        mutation.state = MutationState.ROLLED_BACK
        logger.warning(
            f"Restored {mutation.target_file} from {mutation.backup_file}"
        )
