#!/usr/bin/env python3
"""
Package-manager profiles and the best-effort installer built on them.
"""

import logging
import shutil
from dataclasses import dataclass
from enum import Enum
from typing import Callable, Dict, Optional, Tuple

from hostprep.commands import Command, CommandRunner
from hostprep.config import AppConfig
from hostprep.errors import ExhaustedRetries, PreconditionFailure
from hostprep.locks import PACKAGEKIT_PROCESSES, LockProbe
from hostprep.osinfo import OsRelease
from hostprep.ui import print_step, print_success, print_warning

logger = logging.getLogger(__name__)

Which = Callable[[str], Optional[str]]


class PackageManagerKind(str, Enum):
    APT = "apt"
    DNF = "dnf"
    YUM = "yum"
    PACMAN = "pacman"
    APK = "apk"
    ZYPPER = "zypper"

    @property
    def is_rpm(self) -> bool:
        return self in (PackageManagerKind.DNF, PackageManagerKind.YUM)


@dataclass(frozen=True)
class PackageProfile:
    """Command templates for one package-manager family."""

    kind: PackageManagerKind
    update: Command
    upgrade: Command
    install: Command
    query: Command
    probe: LockProbe
    env: Tuple[Tuple[str, str], ...] = ()

    def install_command(self, package: str) -> Command:
        return (self.install + [package]).with_env(dict(self.env))

    def upgrade_command(self) -> Command:
        return self.upgrade.with_env(dict(self.env))

    def query_command(self, package: str) -> Command:
        return self.query + [package]


RPM_PROBE = LockProbe("rpm", ("dnf", "yum", "rpm"), ("/var/run/yum.pid",))

PROFILES: Dict[PackageManagerKind, PackageProfile] = {
    PackageManagerKind.APT: PackageProfile(
        kind=PackageManagerKind.APT,
        update=Command.of("apt-get", "update"),
        upgrade=Command.of("apt-get", "upgrade", "-y"),
        install=Command.of("apt-get", "install", "-y"),
        query=Command.of("dpkg", "-s"),
        probe=LockProbe(
            "apt",
            (
                "apt",
                "apt-get",
                "dpkg",
                "aptitude",
                "apt-key",
                "apt-fast",
                "unattended-upgr",
            ),
            (
                "/var/lib/dpkg/lock",
                "/var/lib/dpkg/lock-frontend",
                "/var/cache/apt/archives/lock",
                "/var/lib/apt/lists/lock",
            ),
        ),
        env=(("DEBIAN_FRONTEND", "noninteractive"),),
    ),
    PackageManagerKind.DNF: PackageProfile(
        kind=PackageManagerKind.DNF,
        update=Command.of("dnf", "makecache", "--refresh"),
        upgrade=Command.of("dnf", "upgrade", "-y"),
        install=Command.of("dnf", "install", "-y"),
        query=Command.of("rpm", "-q"),
        probe=RPM_PROBE,
    ),
    PackageManagerKind.YUM: PackageProfile(
        kind=PackageManagerKind.YUM,
        update=Command.of("yum", "makecache"),
        upgrade=Command.of("yum", "upgrade", "-y"),
        install=Command.of("yum", "install", "-y"),
        query=Command.of("rpm", "-q"),
        probe=RPM_PROBE,
    ),
    PackageManagerKind.PACMAN: PackageProfile(
        kind=PackageManagerKind.PACMAN,
        update=Command.of("pacman", "-Sy"),
        upgrade=Command.of("pacman", "-Syu", "--noconfirm"),
        install=Command.of("pacman", "-S", "--noconfirm"),
        query=Command.of("pacman", "-Qi"),
        probe=LockProbe(
            "pacman", ("pacman", "pacman-key"), ("/var/lib/pacman/db.lck",)
        ),
    ),
    PackageManagerKind.APK: PackageProfile(
        kind=PackageManagerKind.APK,
        update=Command.of("apk", "update"),
        upgrade=Command.of("apk", "upgrade"),
        install=Command.of("apk", "add", "--no-cache"),
        query=Command.of("apk", "info", "-e"),
        probe=LockProbe("apk", ("apk",), ("/lib/apk/db/lock",)),
    ),
    PackageManagerKind.ZYPPER: PackageProfile(
        kind=PackageManagerKind.ZYPPER,
        update=Command.of("zypper", "refresh"),
        upgrade=Command.of("zypper", "-n", "up"),
        install=Command.of("zypper", "-n", "in"),
        query=Command.of("rpm", "-q"),
        probe=LockProbe("zypper", ("zypper",), ("/var/run/zypp.pid",)),
    ),
}

# os-release ID -> package manager family. None means "dnf if present, else yum".
OS_FAMILIES: Dict[str, Optional[PackageManagerKind]] = {
    "ubuntu": PackageManagerKind.APT,
    "debian": PackageManagerKind.APT,
    "fedora": PackageManagerKind.DNF,
    "centos": None,
    "rhel": None,
    "amzn": None,
    "arch": PackageManagerKind.PACMAN,
    "manjaro": PackageManagerKind.PACMAN,
    "alpine": PackageManagerKind.APK,
    "suse": PackageManagerKind.ZYPPER,
    "sles": PackageManagerKind.ZYPPER,
}

# Fallback probing order when the OS is not recognised.
PATH_PROBES: Tuple[Tuple[str, PackageManagerKind], ...] = (
    ("apt-get", PackageManagerKind.APT),
    ("dnf", PackageManagerKind.DNF),
    ("yum", PackageManagerKind.YUM),
    ("pacman", PackageManagerKind.PACMAN),
    ("apk", PackageManagerKind.APK),
    ("zypper", PackageManagerKind.ZYPPER),
)


def _family_for(os_id: str) -> Tuple[bool, Optional[PackageManagerKind]]:
    if os_id.startswith("opensuse"):
        return True, PackageManagerKind.ZYPPER
    if os_id in OS_FAMILIES:
        return True, OS_FAMILIES[os_id]
    return False, None


def select_profile(release: OsRelease, which: Which = shutil.which) -> PackageProfile:
    """
    Pick the package-manager profile for a host.

    Raises:
        PreconditionFailure: If no supported package manager can be found
    """
    for candidate in release.candidates:
        known, kind = _family_for(candidate)
        if not known:
            continue
        if kind is None:
            kind = PackageManagerKind.DNF if which("dnf") else PackageManagerKind.YUM
        logger.debug(f"Matched os-release ID {candidate!r} to {kind.value}")
        return PROFILES[kind]

    for executable, kind in PATH_PROBES:
        if which(executable):
            logger.debug(f"Found {executable} on PATH; using {kind.value}")
            return PROFILES[kind]

    raise PreconditionFailure("No known package manager detected.")


class PackageManager:
    """Best-effort package operations for the selected profile."""

    def __init__(
        self,
        profile: PackageProfile,
        runner: CommandRunner,
        config: AppConfig,
        which: Which = shutil.which,
    ) -> None:
        self.profile = profile
        self.runner = runner
        self.config = config
        self.which = which
        self.probe = profile.probe
        if not config.IGNORE_PACKAGEKIT:
            self.probe = self.probe.including(PACKAGEKIT_PROCESSES)

    @property
    def kind(self) -> PackageManagerKind:
        return self.profile.kind

    def _run(self, cmd: Command) -> bool:
        try:
            self.runner.run_with_retry(cmd, probe=self.probe)
            return True
        except ExhaustedRetries as e:
            print_warning(str(e))
            return False

    def update(self) -> bool:
        """Refresh package metadata."""
        print_step("Updating package cache...")
        return self._run(self.profile.update)

    def upgrade(self) -> bool:
        """Upgrade installed packages."""
        print_step("Updating installed packages (upgrade)...")
        return self._run(self.profile.upgrade_command())

    def is_installed(self, package: str, check_cmd: Optional[str] = None) -> bool:
        if self.which(check_cmd or package):
            return True
        return self.runner.query(self.profile.query_command(package)).ok

    def ensure_epel(self) -> None:
        """Enable EPEL on dnf/yum hosts so packages like fail2ban become available."""
        if not self.kind.is_rpm:
            return

        if self.which("amazon-linux-extras"):
            print_step("Trying to enable EPEL via amazon-linux-extras...")
            self.runner.run(Command.of("amazon-linux-extras", "install", "epel", "-y"))

        print_step("Trying to install 'epel-release' to obtain additional packages...")
        if self._run(self.profile.install_command("epel-release")):
            print_success("epel-release installed (if it was available).")
        else:
            print_warning(
                "Failed to install epel-release automatically; "
                "you may need to enable EPEL manually."
            )
        self._run(Command.of(self.kind.value, "makecache"))

    def install(self, package: str, check_cmd: Optional[str] = None) -> bool:
        """
        Install a package unless it is already present.

        Returns:
            True if the package is (or, in dry-run mode, would be) installed
        """
        check_cmd = check_cmd or self.config.PACKAGE_CHECKS.get(package)
        if self.is_installed(package, check_cmd):
            print_success(f"{package} is already installed.")
            return True

        if package in ("fail2ban", "iptables-services") and self.kind.is_rpm:
            self.ensure_epel()

        print_step(f"Installing {package} ...")
        if self._run(self.profile.install_command(package)):
            print_success(f"{package} installed successfully.")
            return True

        print_warning(f"Installation of {package} failed (continuing).")
        return False
