"""
Local logging for babylog.

Two outputs, both under ``<babylog home>/logs``:

- ``local-YYYY-MM-DD.log``: the regular ``babylog`` logger output.
- ``sync-events-YYYY-MM-DD.log``: one line per sync event, e.g.
  ``drain | owner=100 | applied=3, retried=0, discarded=1``. These are easy
  to grep when a device reports missing records.
"""

import logging
from datetime import date
from pathlib import Path
from typing import Optional, Union

from babylog.utils import get_babylog_home, short_id

logger = logging.getLogger(__name__)

LOG_FORMAT = "%(asctime)s | %(levelname)s | %(name)s | %(message)s"


def _log_dir() -> Path:
    log_dir = get_babylog_home() / "logs"
    log_dir.mkdir(parents=True, exist_ok=True)
    return log_dir


def setup_babylog_logging(owner_id: Union[int, str, None] = None, level: str = "INFO") -> logging.Logger:
    """Configure the ``babylog`` logger with a daily file handler.

    Safe to call more than once; handlers are only added the first time.
    DEBUG additionally logs to the console.
    """
    logger = logging.getLogger("babylog")
    resolved = getattr(logging, str(level).upper(), None)
    if not isinstance(resolved, int):
        resolved = logging.INFO
    logger.setLevel(resolved)

    if any(isinstance(h, logging.FileHandler) for h in logger.handlers):
        return logger

    log_file = _log_dir() / f"local-{date.today().isoformat()}.log"
    formatter = logging.Formatter(LOG_FORMAT)

    file_handler = logging.FileHandler(log_file, encoding="utf-8")
    file_handler.setFormatter(formatter)
    logger.addHandler(file_handler)

    if resolved == logging.DEBUG:
        console = logging.StreamHandler()
        console.setFormatter(formatter)
        logger.addHandler(console)

    logger.debug(f"Logging initialised for owner={owner_id} at {log_file}")
    return logger


def log_sync_event(event_type: str, details: str, owner_id: Union[int, str] = "default") -> None:
    """Append one line to today's sync-events log.

    Best effort: an unwritable log directory is reported on the module logger
    and never interrupts the sync that produced the event.
    """
    line = f"{event_type} | owner={owner_id} | {details}\n"
    try:
        event_file = _log_dir() / f"sync-events-{date.today().isoformat()}.log"
        with open(event_file, "a", encoding="utf-8") as f:
            f.write(line)
    except OSError as e:
        logger.warning(f"Could not write sync event ({event_type}): {e}")


def log_drain(owner_id: Union[int, str], applied: int, retried: int, discarded: int) -> None:
    log_sync_event(
        "drain",
        f"applied={applied}, retried={retried}, discarded={discarded}",
        owner_id=owner_id,
    )


def log_discard(owner_id: Union[int, str], action: str, entry_id: str, reason: Optional[str]) -> None:
    log_sync_event(
        "discard",
        f"action={action}, id={short_id(entry_id)}, reason={reason}",
        owner_id=owner_id,
    )

