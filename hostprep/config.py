#!/usr/bin/env python3
"""
Runtime configuration for a provisioning run.

A single AppConfig is built at startup (from CLI flags and environment
overrides) and handed to every component that needs it.
"""

import os
from dataclasses import dataclass, field, asdict
from pathlib import Path
from typing import Any, Dict, List, Mapping, Optional, Tuple

TRUTHY = {"1", "true", "yes", "on"}


def _env_int(environ: Mapping[str, str], name: str, default: int) -> int:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    try:
        return int(raw)
    except ValueError:
        raise ValueError(f"{name} must be an integer, got {raw!r}")


def _env_bool(environ: Mapping[str, str], name: str, default: bool) -> bool:
    raw = environ.get(name)
    if raw is None or not raw.strip():
        return default
    return raw.strip().lower() in TRUTHY


@dataclass
class AppConfig:
    """Configuration for the bootstrap and hardening process."""

    DRY_RUN: bool = False
    ASSUME_YES: bool = False

    # Logging
    LOG_FILE: str = "/var/log/hostprep.log"
    MAX_LOG_SIZE: int = 10 * 1024 * 1024  # 10MB

    # Command execution
    RETRY_ATTEMPTS: int = 3
    RETRY_DELAY: float = 5.0
    COMMAND_TIMEOUT: int = 1800
    LOCK_MAX_WAIT: float = 60.0
    LOCK_POLL_INTERVAL: float = 5.0
    IGNORE_PACKAGEKIT: bool = True

    # Paths
    OS_RELEASE: Path = field(default_factory=lambda: Path("/etc/os-release"))
    ROOT_HOME: Path = field(default_factory=lambda: Path("/root"))
    SSHD_CONFIG: Path = field(default_factory=lambda: Path("/etc/ssh/sshd_config"))
    FAIL2BAN_JAIL: Path = field(
        default_factory=lambda: Path("/etc/fail2ban/jail.local")
    )
    FAIL2BAN_MANUAL_LOG: Path = field(
        default_factory=lambda: Path("/var/log/fail2ban-manual.log")
    )
    JOURNALD_CONF: Path = field(
        default_factory=lambda: Path("/etc/systemd/journald.conf")
    )
    JOURNAL_DIR: Path = field(default_factory=lambda: Path("/var/log/journal"))
    SYSCONFIG_DIR: Path = field(default_factory=lambda: Path("/etc/sysconfig"))

    # Baseline tools installed by the bootstrap phase
    DEPENDENCIES: List[str] = field(
        default_factory=lambda: [
            "curl",
            "git",
            "vim",
            "fail2ban",
            "htop",
            "net-tools",
            "sysstat",
            "iotop",
        ]
    )

    # Package name -> command that proves it is installed
    PACKAGE_CHECKS: Dict[str, str] = field(
        default_factory=lambda: {
            "fail2ban": "fail2ban-client",
            "net-tools": "ifconfig",
            "sysstat": "iostat",
        }
    )

    # SSH hardening directives, applied in order
    SSH_DIRECTIVES: List[Tuple[str, str]] = field(
        default_factory=lambda: [
            ("PermitRootLogin", "no"),
            ("PasswordAuthentication", "no"),
            ("ChallengeResponseAuthentication", "no"),
            ("UsePAM", "yes"),
        ]
    )

    # Inbound TCP ports to allow
    FIREWALL_PORTS: List[int] = field(default_factory=lambda: [22, 80, 443])
    SSH_PORT: int = 22

    # Fail2Ban jail settings
    FAIL2BAN_DEFAULTS: Dict[str, str] = field(
        default_factory=lambda: {
            "bantime": "1h",
            "findtime": "10m",
            "maxretry": "5",
        }
    )

    JOURNAL_MAX_USE: str = "100M"

    @classmethod
    def from_env(
        cls,
        dry_run: bool = False,
        assume_yes: bool = False,
        log_file: Optional[str] = None,
        environ: Optional[Mapping[str, str]] = None,
    ) -> "AppConfig":
        """Build a config from CLI flags plus PKG_* / HOSTPREP_* environment overrides."""
        env = os.environ if environ is None else environ

        attempts = _env_int(env, "PKG_RETRY_ATTEMPTS", cls.RETRY_ATTEMPTS)
        if attempts < 1:
            raise ValueError("PKG_RETRY_ATTEMPTS must be at least 1")

        return cls(
            DRY_RUN=dry_run,
            ASSUME_YES=assume_yes,
            LOG_FILE=log_file or env.get("HOSTPREP_LOG_FILE") or cls.LOG_FILE,
            RETRY_ATTEMPTS=attempts,
            RETRY_DELAY=float(_env_int(env, "PKG_RETRY_DELAY", int(cls.RETRY_DELAY))),
            COMMAND_TIMEOUT=_env_int(
                env, "HOSTPREP_COMMAND_TIMEOUT", cls.COMMAND_TIMEOUT
            ),
            LOCK_MAX_WAIT=float(
                _env_int(env, "PKG_LOCK_MAX_WAIT", int(cls.LOCK_MAX_WAIT))
            ),
            LOCK_POLL_INTERVAL=float(
                _env_int(env, "PKG_LOCK_POLL_INTERVAL", int(cls.LOCK_POLL_INTERVAL))
            ),
            IGNORE_PACKAGEKIT=_env_bool(
                env, "PKG_IGNORE_PACKAGEKIT", cls.IGNORE_PACKAGEKIT
            ),
        )

    @property
    def authorized_keys(self) -> Path:
        return self.ROOT_HOME / ".ssh" / "authorized_keys"

    def to_dict(self) -> Dict[str, Any]:
        """Convert the config to a dictionary."""
        return asdict(self)
