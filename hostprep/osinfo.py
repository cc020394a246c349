"""Host identification: /etc/os-release and the init system."""

import logging
import shlex
from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Union

import psutil

from hostprep.errors import PreconditionFailure

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class OsRelease:
    id: str = "unknown"
    version_id: str = "unknown"
    id_like: List[str] = field(default_factory=list)
    pretty_name: str = ""

    @property
    def candidates(self) -> List[str]:
        """ID followed by each ID_LIKE entry, in lookup order."""
        return [self.id] + [i for i in self.id_like if i != self.id]

    def describe(self) -> str:
        like = " ".join(self.id_like)
        return f"{self.id} {self.version_id} (ID_LIKE={like})"


def parse_os_release(text: str) -> Dict[str, str]:
    """Parse shell-style KEY=value lines, honouring quotes and skipping comments."""
    fields: Dict[str, str] = {}
    for raw in text.splitlines():
        line = raw.strip()
        if not line or line.startswith("#") or "=" not in line:
            continue
        key, _, value = line.partition("=")
        try:
            parts = shlex.split(value)
        except ValueError:
            parts = [value.strip("\"'")]
        fields[key.strip()] = " ".join(parts)
    return fields


def detect_os(path: Union[str, Path] = "/etc/os-release") -> OsRelease:
    """
    Read the OS identity file.

    Raises:
        PreconditionFailure: If the file does not exist
    """
    path = Path(path)
    if not path.is_file():
        raise PreconditionFailure(
            f"{path} not found; unable to determine distribution."
        )

    fields = parse_os_release(path.read_text(errors="replace"))
    release = OsRelease(
        id=fields.get("ID", "").lower() or "unknown",
        version_id=fields.get("VERSION_ID") or "unknown",
        id_like=fields.get("ID_LIKE", "").lower().split(),
        pretty_name=fields.get("PRETTY_NAME", ""),
    )
    logger.debug(f"Parsed {path}: {release}")
    return release


def init_system_is_systemd() -> bool:
    """True when PID 1 is systemd."""
    try:
        return psutil.Process(1).name() == "systemd"
    except (psutil.NoSuchProcess, psutil.AccessDenied) as e:
        logger.debug(f"Could not inspect PID 1: {e}")
        return False
