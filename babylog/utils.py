"""Small shared helpers for babylog."""

import os
from pathlib import Path


def get_babylog_home() -> Path:
    """Return the babylog data directory.

    Honours ``BABYLOG_DATA_DIR``; defaults to ``~/.babylog``.
    """
    env_dir = os.environ.get("BABYLOG_DATA_DIR")
    if env_dir:
        return Path(env_dir).expanduser()
    return Path.home() / ".babylog"


def short_id(value: str, length: int = 8) -> str:
    """Truncate an id for log lines."""
    if value is None:
        return "None"
    value = str(value)
    if len(value) <= length:
        return value
    return f"{value[:length]}..."
