"""
babylog - Offline-first baby activity journal with a per-owner sync backend.
"""

from .client import BabyLogClient
from .core import AccountService
from .session import OwnerSession

try:
    from importlib.metadata import version

    __version__ = version("babylog")
except Exception:
    __version__ = "0.0.0"

__all__ = ["AccountService", "BabyLogClient", "OwnerSession"]
