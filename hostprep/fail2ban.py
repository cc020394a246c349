"""Fail2Ban installation, jail configuration and service start-up."""

import logging
import os
import subprocess
import tempfile
from pathlib import Path
from typing import Container, Dict, Optional

import psutil

from hostprep.commands import Command, CommandRunner
from hostprep.config import AppConfig
from hostprep.packages import PackageManager
from hostprep.services import ServiceManager
from hostprep.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)

# Seconds to wait for `fail2ban-client -x start` before checking for the server
MANUAL_START_WAIT = 5.0
SERVER_NAME = "fail2ban-server"


def find_fail2ban_server(exclude: Container[int] = ()) -> Optional[int]:
    """Return the PID of a live fail2ban-server process, if any."""
    for proc in psutil.process_iter(["pid", "name", "cmdline", "status"]):
        try:
            info = proc.info
            if info["pid"] in exclude or info["status"] == psutil.STATUS_ZOMBIE:
                continue
            cmdline = info["cmdline"] or []
            # Python entry points show up as `python3 /usr/bin/fail2ban-server`
            names = {info["name"] or ""} | {os.path.basename(a) for a in cmdline[:2]}
            if SERVER_NAME in names:
                return info["pid"]
        except (psutil.NoSuchProcess, psutil.AccessDenied):
            continue
    return None


def render_jail(defaults: Dict[str, str]) -> str:
    """Render jail.local: a [DEFAULT] section plus an enabled [sshd] jail."""
    lines = ["[DEFAULT]"]
    lines += [f"{key} = {value}" for key, value in defaults.items()]
    lines += ["", "[sshd]", "enabled = true", ""]
    return "\n".join(lines)


def write_atomically(path: Path, content: str, mode: int = 0o644) -> None:
    """Write to a temp file in the target directory, then rename it into place."""
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp = tempfile.mkstemp(dir=str(path.parent), prefix=f".{path.name}.")
    try:
        with os.fdopen(fd, "w") as f:
            f.write(content)
        os.chmod(tmp, mode)
        os.replace(tmp, path)
    except BaseException:
        if os.path.exists(tmp):
            os.unlink(tmp)
        raise


class Fail2BanConfigurator:
    manual_start_cmd = Command.of("fail2ban-client", "-x", "start")

    def __init__(
        self,
        config: AppConfig,
        runner: CommandRunner,
        packages: PackageManager,
        services: ServiceManager,
    ) -> None:
        self.config = config
        self.runner = runner
        self.packages = packages
        self.services = services

    def configure(self) -> bool:
        """Install (if needed), write jail.local and (re)start Fail2Ban."""
        print_step("Configuring Fail2Ban...")
        if not self.runner.command_exists("fail2ban-client"):
            self.packages.install("fail2ban", "fail2ban-client")

        if not (self.runner.command_exists("fail2ban-client") or self.runner.dry_run):
            print_warning("fail2ban-client not available; skipping fail2ban configuration.")
            return False

        self.write_jail()
        return self.start()

    def write_jail(self) -> None:
        jail = self.config.FAIL2BAN_JAIL
        content = render_jail(self.config.FAIL2BAN_DEFAULTS)
        if self.runner.dry_run:
            print_step(f"[dry-run] would write {jail}")
            return
        write_atomically(jail, content, 0o644)
        print_success(f"Wrote {jail}")

    def start(self) -> bool:
        if self.services.unit_known("fail2ban"):
            restarted = self.services.restart(["fail2ban"])
            if not restarted:
                print_warning("Could not restart fail2ban with systemd")
            self.services.enable("fail2ban")
            return restarted

        if self.services.has_service:
            if self.runner.run(Command.of("service", "fail2ban", "restart")).ok:
                return True
            print_warning("service fail2ban restart failed")
            return False

        print_warning("No service manager; attempting to start fail2ban via fail2ban-client")
        return self.start_manually()

    def start_manually(self) -> bool:
        """
        Start fail2ban without a service manager.

        Succeeds only if the client did not exit with an error and a
        fail2ban-server process is running afterwards.
        """
        cmd = self.manual_start_cmd
        log_path = self.config.FAIL2BAN_MANUAL_LOG
        if self.runner.dry_run:
            self.runner.run(cmd)
            return True

        with open(log_path, "ab") as log:
            child = subprocess.Popen(
                list(cmd.argv),
                stdout=log,
                stderr=subprocess.STDOUT,
                start_new_session=True,
            )
        try:
            returncode = child.wait(timeout=MANUAL_START_WAIT)
        except subprocess.TimeoutExpired:
            returncode = None
        if returncode:
            print_warning(
                f"fail2ban-client exited with status {returncode}. Check {log_path}"
            )
            return False

        if find_fail2ban_server(exclude={child.pid, os.getpid()}):
            print_success("fail2ban started (manual background start).")
            return True

        print_warning(
            f"Could not start fail2ban manually (no running process detected). Check {log_path}"
        )
        return False
