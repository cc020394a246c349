"""Automatic security updates per package-manager family."""

import logging

from hostprep.commands import Command, CommandRunner
from hostprep.packages import PackageManager, PackageManagerKind
from hostprep.services import ServiceManager
from hostprep.ui import print_step, print_warning

logger = logging.getLogger(__name__)


class AutoUpdateConfigurator:
    def __init__(
        self, runner: CommandRunner, packages: PackageManager, services: ServiceManager
    ) -> None:
        self.runner = runner
        self.packages = packages
        self.services = services

    def configure(self) -> bool:
        print_step("Configuring automatic security updates...")
        kind = self.packages.kind

        if kind is PackageManagerKind.APT:
            if not self.packages.install("unattended-upgrades"):
                print_warning("unattended-upgrades not available")
                return False
            if self.runner.command_exists("dpkg-reconfigure") or self.runner.dry_run:
                return self.runner.run(
                    Command.of(
                        "dpkg-reconfigure",
                        "-plow",
                        "unattended-upgrades",
                        env={"DEBIAN_FRONTEND": "noninteractive"},
                    )
                ).ok
            return True

        if kind is PackageManagerKind.DNF:
            return self._install_and_enable("dnf-automatic", "dnf-automatic.timer")

        if kind is PackageManagerKind.YUM:
            return self._install_and_enable("yum-cron", "yum-cron")

        print_warning(f"Automatic updates support not implemented for {kind.value}")
        return False

    def _install_and_enable(self, package: str, unit: str) -> bool:
        if not self.packages.install(package):
            print_warning(f"{package} not available")
            return False
        if not self.services.enable(unit, now=True):
            print_warning(f"Could not enable {unit}")
            return False
        return True
