"""Service-manager helpers (systemd first, SysV ``service`` as a fallback)."""

import logging
from typing import Sequence

from hostprep.commands import Command, CommandRunner

logger = logging.getLogger(__name__)


class ServiceManager:
    def __init__(self, runner: CommandRunner) -> None:
        self.runner = runner

    @property
    def has_systemctl(self) -> bool:
        return self.runner.command_exists("systemctl")

    @property
    def has_service(self) -> bool:
        return self.runner.command_exists("service")

    def unit_known(self, name: str) -> bool:
        """True if systemd lists a unit file matching ``name``."""
        if not self.has_systemctl:
            return False
        result = self.runner.query(Command.of("systemctl", "list-unit-files"))
        return name.lower() in result.output.lower()

    def restart(self, names: Sequence[str]) -> bool:
        """Restart the first of ``names`` that the service manager accepts."""
        if self.has_systemctl:
            for name in names:
                if self.runner.run(Command.of("systemctl", "restart", name)).ok:
                    return True
        if self.has_service:
            for name in names:
                if self.runner.run(Command.of("service", name, "restart")).ok:
                    return True
        logger.warning(f"Could not restart {' / '.join(names)}")
        return False

    def enable(self, name: str, now: bool = False) -> bool:
        if not self.has_systemctl:
            return False
        argv = ["systemctl", "enable"] + (["--now"] if now else []) + [name]
        return self.runner.run(Command.of(*argv)).ok
