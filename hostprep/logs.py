"""Logger setup: Rich console handler plus a plain-text log file."""

import datetime
import gzip
import logging
import os
import shutil
from pathlib import Path
from typing import Union

from rich.logging import RichHandler
from rich.text import Text

from hostprep.ui import ECHOED, console

LOGGER_NAME = "hostprep"


def rotate_log(log_file: Path, max_size: int) -> None:
    """Gzip the log aside and truncate it once it grows past max_size bytes."""
    if not log_file.is_file() or log_file.stat().st_size <= max_size:
        return

    ts = datetime.datetime.now().strftime("%Y%m%d%H%M%S")
    rotated = f"{log_file}.{ts}.gz"
    with open(log_file, "rb") as fin, gzip.open(rotated, "wb") as fout:
        shutil.copyfileobj(fin, fout)
    open(log_file, "w").close()
    console.print(Text(f"Rotated log file to {rotated}", style="debug"))


def setup_logging(
    log_file: Union[str, Path], max_size: int = 10 * 1024 * 1024
) -> logging.Logger:
    """Set up and configure the hostprep logger."""
    log_file = Path(log_file)

    logger = logging.getLogger(LOGGER_NAME)
    logger.setLevel(logging.DEBUG)
    logger.propagate = False

    # Remove any existing handlers
    for h in logger.handlers[:]:
        logger.removeHandler(h)
        h.close()

    # Rich console handler
    console_handler = RichHandler(console=console, rich_tracebacks=True, markup=False)
    console_handler.setLevel(logging.INFO)
    # print_* helpers already wrote these to the console
    console_handler.addFilter(lambda record: not getattr(record, ECHOED, False))
    logger.addHandler(console_handler)

    # File handler
    try:
        log_file.parent.mkdir(parents=True, exist_ok=True)
        rotate_log(log_file, max_size)
        file_handler = logging.FileHandler(log_file)
    except OSError as e:
        logger.warning(f"Could not open log file {log_file}: {e}; logging to console only")
        return logger

    file_handler.setLevel(logging.DEBUG)
    formatter = logging.Formatter(
        "%(asctime)s | %(levelname)s | %(message)s", "%Y-%m-%d %H:%M:%S"
    )
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    try:
        # Secure the log file
        os.chmod(str(log_file), 0o600)
    except OSError as e:
        logger.warning(f"Could not set permissions on log file {log_file}: {e}")

    logger.debug(f"Logging initialized: {log_file}")
    return logger
