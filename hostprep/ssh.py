#!/usr/bin/env python3
"""
SSH daemon hardening.

Password and root logins are only switched off when root already has an
authorized key, so the operator cannot be locked out. The edit goes through the
validated mutator: ``sshd -t`` must accept the new file or it is rolled back.
"""

import logging
import os
import shutil
from pathlib import Path
from typing import Optional

from hostprep.commands import Command, CommandRunner
from hostprep.config import AppConfig
from hostprep.mutator import (
    ConfigMutation,
    ConfigMutator,
    directives_from_pairs,
    timestamped_backup_path,
)
from hostprep.services import ServiceManager
from hostprep.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)

SSH_SERVICE_NAMES = ["sshd", "ssh"]


def sshd_binary() -> str:
    """Locate sshd; it usually lives in sbin, which may not be on a sudo PATH."""
    return shutil.which("sshd") or shutil.which("sshd", path="/usr/sbin:/sbin") or "sshd"


class SSHHardener:
    def __init__(
        self,
        config: AppConfig,
        runner: CommandRunner,
        mutator: ConfigMutator,
        services: ServiceManager,
    ) -> None:
        self.config = config
        self.runner = runner
        self.mutator = mutator
        self.services = services
        self.backup_file: Optional[Path] = None

    def has_trusted_access(self) -> bool:
        """
        True when root has at least one authorized key.

        Creates ``~root/.ssh`` (0700) when it is missing.
        """
        ssh_dir = self.config.ROOT_HOME / ".ssh"
        if not ssh_dir.is_dir():
            print_warning(
                f"Directory {ssh_dir} does not exist. Creating it with secure permissions."
            )
            if not self.runner.dry_run:
                ssh_dir.mkdir(parents=True, exist_ok=True)
                os.chmod(ssh_dir, 0o700)

        keys = self.config.authorized_keys
        return keys.is_file() and keys.stat().st_size > 0

    def validator_for(self, target: Path) -> Command:
        return Command.of(sshd_binary(), "-t", "-f", str(target))

    def harden(self) -> bool:
        """
        Apply the SSH directives.

        Returns:
            True if sshd_config was hardened, False if the step was skipped

        Raises:
            ValidationRejected: If sshd refused the new configuration (rolled back)
        """
        keys = self.config.authorized_keys
        if not self.has_trusted_access():
            print_warning(
                f"No SSH keys found in {keys}. Skipping SSH hardening to avoid lockout."
            )
            return False
        print_success(f"SSH key(s) detected in {keys}. Proceeding with SSH hardening.")

        sshd_config = self.config.SSHD_CONFIG
        if not sshd_config.is_file():
            print_warning(f"sshd_config not found at {sshd_config}; skipping SSH hardening.")
            return False

        print_step("Applying SSH hardening (backup and config test included)...")
        mutation = ConfigMutation(
            target_file=sshd_config,
            backup_file=timestamped_backup_path(sshd_config),
            directives=directives_from_pairs(self.config.SSH_DIRECTIVES),
            validator=self.validator_for(sshd_config),
        )
        self.mutator.apply_with_validation(mutation)
        if not self.runner.dry_run:
            self.backup_file = mutation.backup_file

        print_step("sshd_config test passed. Restarting SSH service...")
        if not self.services.restart(SSH_SERVICE_NAMES):
            print_warning("Could not restart sshd/ssh; please restart SSH manually.")
        return True

    def secure_permissions(self) -> bool:
        """chmod 700 on root's home and .ssh, 600 on authorized_keys."""
        targets = [
            (self.config.ROOT_HOME, 0o700),
            (self.config.ROOT_HOME / ".ssh", 0o700),
        ]
        keys = self.config.authorized_keys
        if keys.is_file() and keys.stat().st_size > 0:
            targets.append((keys, 0o600))

        ok = True
        for path, mode in targets:
            if self.runner.dry_run:
                print_step(f"[dry-run] chmod {mode:o} {path}")
                continue
            try:
                os.chmod(path, mode)
            except OSError as e:
                print_warning(f"Could not chmod {path}: {e}")
                ok = False
        if ok:
            print_success(f"Adjusted permissions for {self.config.ROOT_HOME} and .ssh.")
        return ok
