#!/usr/bin/env python3
"""
Firewall setup: UFW, then firewalld, then plain iptables.

Whatever the backend, inbound traffic is denied by default and the configured
TCP ports (22/80/443) are opened. Failing to open SSH, to set the default-deny
policy or to activate the firewall is fatal; anything else only warns.
"""

import logging
from typing import List

from hostprep.commands import Command, CommandRunner
from hostprep.config import AppConfig
from hostprep.errors import FirewallError
from hostprep.packages import PackageManager
from hostprep.services import ServiceManager
from hostprep.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)

FIREWALLD_SERVICES = {22: "ssh", 80: "http", 443: "https"}


class FirewallConfigurator:
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

    def _required(self, cmd: Command, what: str) -> None:
        if not self.runner.run(cmd).ok:
            raise FirewallError(f"Could not {what} ({cmd})")

    def _optional(self, cmd: Command, what: str) -> bool:
        if self.runner.run(cmd).ok:
            return True
        print_warning(f"Could not {what}.")
        return False

    def configure(self) -> str:
        """
        Configure whichever firewall backend is available.

        Returns:
            The backend that was configured ("ufw", "firewalld" or "iptables")

        Raises:
            FirewallError: If the core policy could not be applied
        """
        print_step("Configuring firewall...")
        if self.runner.command_exists("ufw"):
            self.configure_ufw()
            return "ufw"

        if self.runner.command_exists("firewall-cmd") or self.runner.command_exists(
            "systemctl"
        ):
            if self.configure_firewalld():
                return "firewalld"
            print_warning("firewalld not available; falling back to iptables.")

        self.configure_iptables()
        return "iptables"

    # ----------------------------------------------------------------
    # UFW
    # ----------------------------------------------------------------
    def configure_ufw(self) -> None:
        print_step("Using UFW...")
        self._required(
            Command.of("ufw", "default", "deny", "incoming"),
            "set UFW default incoming policy to deny",
        )
        self._optional(
            Command.of("ufw", "default", "allow", "outgoing"),
            "set UFW default outgoing policy to allow",
        )
        for port in self.config.FIREWALL_PORTS:
            cmd = Command.of("ufw", "allow", f"{port}/tcp")
            if port == self.config.SSH_PORT:
                self._required(cmd, f"allow SSH port {port}/tcp")
            else:
                self._optional(cmd, f"allow port {port}/tcp")

        status = self.runner.query(Command.of("ufw", "status"))
        if not status.ok or "inactive" in status.output.lower():
            self._required(Command.of("ufw", "--force", "enable"), "enable UFW")
        else:
            print_success("UFW is already active.")

    # ----------------------------------------------------------------
    # firewalld
    # ----------------------------------------------------------------
    def configure_firewalld(self) -> bool:
        """Returns False when firewalld cannot be obtained, so the caller can fall back."""
        print_step("Attempting to use firewalld...")
        available = self.runner.command_exists("firewall-cmd")
        if not available:
            installed = self.packages.install("firewalld", "firewall-cmd")
            available = self.runner.command_exists("firewall-cmd") or (
                installed and self.runner.dry_run
            )
        if not available:
            return False

        if not self.services.enable("firewalld", now=True):
            print_warning("Could not enable/start firewalld via systemctl.")

        if self.runner.run(Command.of("firewall-cmd", "--set-default-zone=public")).ok:
            print_success("Default zone set to public.")
        else:
            self._optional(
                Command.of("firewall-cmd", "--permanent", "--set-default-zone=public"),
                "set default zone to public (permanent)",
            )

        for port in self.config.FIREWALL_PORTS:
            service = FIREWALLD_SERVICES.get(port)
            rule = f"--add-service={service}" if service else f"--add-port={port}/tcp"
            if port == self.config.SSH_PORT:
                if not self.runner.run(Command.of("firewall-cmd", "--permanent", rule)).ok:
                    print_warning(
                        "Could not add ssh permanently; trying zone-specific add."
                    )
                    self._required(
                        Command.of("firewall-cmd", "--permanent", "--zone=public", rule),
                        f"allow SSH port {port}/tcp in firewalld",
                    )
            else:
                self._optional(
                    Command.of("firewall-cmd", "--permanent", rule),
                    f"add {service or port} to firewalld",
                )

        self._required(Command.of("firewall-cmd", "--reload"), "reload firewalld")
        return True

    # ----------------------------------------------------------------
    # iptables
    # ----------------------------------------------------------------
    def _append_rule(self, rule: List[str], what: str, required: bool) -> None:
        exists = self.runner.query(Command.of("iptables", "-C", *rule))
        if exists.ok:
            logger.debug(f"iptables rule already present: {' '.join(rule)}")
            return
        cmd = Command.of("iptables", "-A", *rule)
        if required:
            self._required(cmd, what)
        else:
            self._optional(cmd, what)

    def configure_iptables(self) -> None:
        print_step("No UFW/firewalld detected; using iptables fallback...")
        if not self.packages.install("iptables"):
            print_warning("iptables package may not be available.")

        # Accept rules go in before the DROP policy so the current session survives.
        self._append_rule(
            ["INPUT", "-i", "lo", "-j", "ACCEPT"], "accept loopback traffic", False
        )
        self._append_rule(
            ["INPUT", "-m", "conntrack", "--ctstate", "ESTABLISHED,RELATED", "-j", "ACCEPT"],
            "accept established connections",
            True,
        )
        for port in self.config.FIREWALL_PORTS:
            self._append_rule(
                ["INPUT", "-p", "tcp", "--dport", str(port), "-j", "ACCEPT"],
                f"allow port {port}/tcp",
                port == self.config.SSH_PORT,
            )

        self._required(
            Command.of("iptables", "-P", "INPUT", "DROP"), "set default INPUT policy"
        )
        self._optional(
            Command.of("iptables", "-P", "FORWARD", "DROP"), "set default FORWARD policy"
        )
        self._optional(
            Command.of("iptables", "-P", "OUTPUT", "ACCEPT"), "set default OUTPUT policy"
        )

        self.persist_iptables()
        print_success("iptables rules applied (best-effort).")

    def persist_iptables(self) -> None:
        sysconfig = self.config.SYSCONFIG_DIR
        if sysconfig.is_dir():
            if not self.runner.command_exists("iptables-save"):
                print_warning("iptables-save not found; rules will not survive a reboot.")
                return
            target = sysconfig / "iptables"
            if self.runner.dry_run:
                self.runner.run(Command.of("iptables-save"))
                return
            saved = self.runner.query(Command.of("iptables-save"))
            if not saved.ok:
                print_warning(f"Could not save {target}")
                return
            target.write_text(saved.output)
            logger.info(f"Saved iptables rules to {target}")
            return

        if not self.packages.install("iptables-persistent", "netfilter-persistent"):
            print_warning("Could not install iptables-persistent")
        if self.runner.command_exists("netfilter-persistent") or self.runner.dry_run:
            self._optional(
                Command.of("netfilter-persistent", "save"),
                "save iptables via netfilter-persistent",
            )
