"""Bound the systemd journal's disk usage."""

import logging
from typing import Callable, Optional

from hostprep.config import AppConfig
from hostprep.mutator import ConfigDirective, ConfigMutator
from hostprep.osinfo import init_system_is_systemd
from hostprep.services import ServiceManager
from hostprep.ui import print_step, print_warning

logger = logging.getLogger(__name__)


class JournaldConfigurator:
    def __init__(
        self,
        config: AppConfig,
        mutator: ConfigMutator,
        services: ServiceManager,
        is_systemd: Callable[[], bool] = init_system_is_systemd,
    ) -> None:
        self.config = config
        self.mutator = mutator
        self.services = services
        self.is_systemd = is_systemd

    def configure(self) -> Optional[bool]:
        """
        Set SystemMaxUse in journald.conf and restart journald.

        Returns:
            True if applied, False if journald could not be restarted, None if
            skipped (no systemd, no journald.conf)
        """
        if not self.is_systemd():
            logger.info("PID 1 is not systemd; skipping journald configuration.")
            return None

        print_step("Configuring persistent journald and limiting disk usage...")
        if not self.config.DRY_RUN:
            self.config.JOURNAL_DIR.mkdir(parents=True, exist_ok=True)

        conf = self.config.JOURNALD_CONF
        if not conf.is_file():
            print_warning(f"{conf} not found; skipping journald configuration.")
            return None

        self.mutator.upsert(
            conf,
            [ConfigDirective("SystemMaxUse", self.config.JOURNAL_MAX_USE)],
            separator="=",
        )
        if not self.services.restart(["systemd-journald"]):
            print_warning("Could not restart systemd-journald")
            return False
        return True
