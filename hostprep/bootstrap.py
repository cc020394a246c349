"""Bootstrap phase: refresh, upgrade and install the baseline toolset."""

import logging
from typing import List, Tuple

from hostprep.config import AppConfig
from hostprep.packages import PackageManager
from hostprep.ui import print_warning

logger = logging.getLogger(__name__)


class SystemBootstrapper:
    """Updates the system and installs baseline tools, all best-effort."""

    def __init__(self, config: AppConfig, packages: PackageManager) -> None:
        self.config = config
        self.packages = packages

    def update_system(self) -> bool:
        """Refresh metadata, then upgrade. Both steps are attempted."""
        updated = self.packages.update()
        upgraded = self.packages.upgrade()
        return updated and upgraded

    def install_dependencies(self) -> Tuple[List[str], List[str]]:
        """
        Install each baseline package individually.

        Returns:
            (installed, failed) package name lists
        """
        installed: List[str] = []
        failed: List[str] = []
        for pkg in self.config.DEPENDENCIES:
            if self.packages.install(pkg):
                installed.append(pkg)
            else:
                print_warning(f"Continuing despite installation failure of {pkg}.")
                failed.append(pkg)

        logger.info(f"{len(installed)} installed, {len(failed)} failed")
        return installed, failed
