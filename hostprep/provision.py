#!/usr/bin/env python3
"""
The provisioning sequence.

preflight -> update/upgrade -> baseline tools -> firewall -> Fail2Ban ->
SSH hardening -> permissions -> automatic updates -> journald.

Package and tool failures are logged and the run continues. A firewall that
cannot be put in place or an sshd_config that fails validation aborts the run.
"""

import logging
import os
import time
from typing import Callable, Dict, Optional, Union

from hostprep.bootstrap import SystemBootstrapper
from hostprep.commands import CommandRunner
from hostprep.config import AppConfig
from hostprep.errors import PreconditionFailure, SetupError
from hostprep.fail2ban import Fail2BanConfigurator
from hostprep.firewall import FirewallConfigurator
from hostprep.journald import JournaldConfigurator
from hostprep.mutator import ConfigMutator
from hostprep.osinfo import OsRelease, detect_os
from hostprep.packages import PackageManager, select_profile
from hostprep.services import ServiceManager
from hostprep.ssh import SSHHardener
from hostprep.ui import (
    NordColors,
    display_panel,
    print_error,
    print_section,
    print_status_report,
    print_step,
    print_success,
    print_warning,
)
from hostprep.updates import AutoUpdateConfigurator

logger = logging.getLogger(__name__)

PHASES = ("all", "bootstrap", "harden")

BOOTSTRAP_STEPS = ("system_update", "dependencies")
HARDEN_STEPS = (
    "firewall",
    "fail2ban",
    "ssh_hardening",
    "permissions",
    "auto_updates",
    "journald",
)

StepResult = Union[bool, None]


class Provisioner:
    """Runs the provisioning steps in order and tracks their status."""

    def __init__(
        self,
        config: AppConfig,
        runner: Optional[CommandRunner] = None,
        geteuid: Optional[Callable[[], int]] = None,
    ) -> None:
        self.config = config
        self.runner = runner or CommandRunner(config)
        self.mutator = ConfigMutator(config, self.runner)
        self.services = ServiceManager(self.runner)
        self.geteuid = geteuid or os.geteuid
        self.release: Optional[OsRelease] = None
        self.packages: Optional[PackageManager] = None
        self.ssh: Optional[SSHHardener] = None
        self.start_time = time.time()
        self.status: Dict[str, Dict[str, str]] = {
            "preflight": {"status": "pending", "message": ""},
        }

    # ----------------------------------------------------------------
    # Status tracking
    # ----------------------------------------------------------------
    def _set(self, step: str, status: str, message: str = "") -> None:
        self.status[step] = {"status": status, "message": message}

    def run_step(
        self, step: str, description: str, func: Callable[[], StepResult]
    ) -> StepResult:
        """
        Run one step, recording success/failure/skip.

        ``func`` returns True (success), False (failed, best-effort) or None
        (skipped). SetupError subclasses propagate: they are fatal.
        """
        print_section(description)
        self._set(step, "in_progress", f"{description} in progress...")
        start = time.time()
        try:
            result = func()
        except SetupError as e:
            self._set(step, "failed", str(e))
            logger.debug(f"{step}: aborted with {type(e).__name__}")
            raise

        elapsed = time.time() - start
        if result is None:
            message = self.status[step]["message"]
            if message.endswith("in progress..."):
                message = "Skipped"
            self._set(step, "skipped", message)
        elif result:
            self._set(step, "success", f"Completed in {elapsed:.2f}s")
        else:
            self._set(step, "failed", f"Failed after {elapsed:.2f}s (continued)")
            print_warning(f"{description} did not complete; continuing.")
        logger.debug(f"{step}: {self.status[step]['status']} ({elapsed:.2f}s)")
        return result

    # ----------------------------------------------------------------
    # Preflight
    # ----------------------------------------------------------------
    def preflight(self) -> bool:
        if self.geteuid() != 0:
            raise PreconditionFailure("This script must be run as root.")

        self.release = detect_os(self.config.OS_RELEASE)
        print_success(f"Detected OS: {self.release.describe()}")
        print_step(
            f"Dry run: {self.config.DRY_RUN}, Assume yes: {self.config.ASSUME_YES}"
        )

        profile = select_profile(self.release)
        self.packages = PackageManager(profile, self.runner, self.config)
        print_success(f"Using package manager: {profile.kind.value}")
        return True

    # ----------------------------------------------------------------
    # Bootstrap steps
    # ----------------------------------------------------------------
    def step_system_update(self) -> bool:
        return SystemBootstrapper(self.config, self.packages).update_system()

    def step_dependencies(self) -> bool:
        installed, failed = SystemBootstrapper(
            self.config, self.packages
        ).install_dependencies()
        msg = f"{len(installed)} installed, {len(failed)} failed"
        if failed:
            msg += f" ({', '.join(failed)})"
        self._set("dependencies", "in_progress", msg)
        return not failed

    # ----------------------------------------------------------------
    # Hardening steps
    # ----------------------------------------------------------------
    def step_firewall(self) -> bool:
        backend = FirewallConfigurator(
            self.config, self.runner, self.packages, self.services
        ).configure()
        print_success(f"Firewall configured with {backend}.")
        return True

    def step_fail2ban(self) -> bool:
        return Fail2BanConfigurator(
            self.config, self.runner, self.packages, self.services
        ).configure()

    def step_ssh_hardening(self) -> Optional[bool]:
        self.ssh = SSHHardener(self.config, self.runner, self.mutator, self.services)
        if self.ssh.harden():
            return True
        self._set("ssh_hardening", "in_progress", "No authorized_keys or sshd_config")
        return None

    def step_permissions(self) -> bool:
        ssh = self.ssh or SSHHardener(
            self.config, self.runner, self.mutator, self.services
        )
        return ssh.secure_permissions()

    def step_auto_updates(self) -> bool:
        return AutoUpdateConfigurator(
            self.runner, self.packages, self.services
        ).configure()

    def step_journald(self) -> Optional[bool]:
        return JournaldConfigurator(self.config, self.mutator, self.services).configure()

    # ----------------------------------------------------------------
    # Main sequence
    # ----------------------------------------------------------------
    def steps_for(self, phase: str) -> Dict[str, str]:
        descriptions = {
            "system_update": "System Update",
            "dependencies": "Baseline Tools",
            "firewall": "Firewall",
            "fail2ban": "Fail2Ban",
            "ssh_hardening": "SSH Hardening",
            "permissions": "Root SSH Permissions",
            "auto_updates": "Automatic Updates",
            "journald": "Journald Retention",
        }
        names = []
        if phase in ("all", "bootstrap"):
            names += BOOTSTRAP_STEPS
        if phase in ("all", "harden"):
            names += HARDEN_STEPS
        return {name: descriptions[name] for name in names}

    def run(self, phase: str = "all") -> None:
        """
        Run the provisioning sequence for ``phase`` ("all", "bootstrap" or "harden").

        Raises:
            PreconditionFailure, FirewallError, ValidationRejected: fatal errors
        """
        if phase not in PHASES:
            raise ValueError(f"Unknown phase {phase!r}")

        steps = self.steps_for(phase)
        for name in steps:
            self._set(name, "pending")

        try:
            self.run_step("preflight", "Pre-flight Checks", self.preflight)
            if phase == "harden":
                # Each install below needs fresh metadata.
                self.packages.update()
            for name, description in steps.items():
                self.run_step(name, description, getattr(self, f"step_{name}"))
        finally:
            print_status_report(self.status)

        self.final_message()

    def final_message(self) -> None:
        elapsed = time.time() - self.start_time
        minutes, seconds = divmod(int(elapsed), 60)
        lines = [f"Provisioning completed in {minutes}m {seconds}s (see messages above)."]

        if self.config.DRY_RUN:
            lines.append("This was a dry-run; no changes were applied.")
        else:
            lines.append(
                "Consider rebooting the system to finalize kernel/security updates."
            )

        if "ssh_hardening" in self.status:
            lines.append(
                "IMPORTANT: Before closing your session, verify you can open a new "
                "SSH connection from another terminal."
            )
            if self.ssh and self.ssh.backup_file:
                lines.append(
                    f"To revert SSH changes, restore the backup at: {self.ssh.backup_file}"
                )
            elif self.status["ssh_hardening"]["status"] == "skipped":
                lines.append(
                    "SSH hardening was skipped; no changes were made to sshd_config."
                )

        succeeded = [
            name.replace("_", " ")
            for name, data in self.status.items()
            if data["status"] == "success"
        ]
        if succeeded:
            lines.append("")
            lines.append("Steps believed to have succeeded: " + ", ".join(succeeded))

        failed = [name for name, data in self.status.items() if data["status"] == "failed"]
        style = NordColors.YELLOW if failed else NordColors.GREEN
        if failed:
            print_error(f"Best-effort steps that failed: {', '.join(failed)}")
        display_panel("\n".join(lines), style=style, title="Summary")
