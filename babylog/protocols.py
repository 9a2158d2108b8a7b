"""
babylog Protocol Definitions
============================

Interface contracts shared between the server store, the client and the
transport layers.

Components and their roles:
- Record store:   Server-authoritative SQLite storage, one owner per row.
- Remote backend: Whatever the client talks to (HTTP or in-process).
- Offline queue:  Durable per-owner log of writes that couldn't reach the remote.
- Local store:    The client's own copy of one owner's records.

Error handling philosophy:
- Invalid input raises ValidationError (also a ValueError)
- A write against a record id owned by someone else raises OwnershipConflict
- Storage failures raise StorageError and are never swallowed
- Network timeouts, connection failures and 5xx responses raise
  TransientNetworkError; only the offline queue turns these into retries
"""

from __future__ import annotations

from typing import Any, Dict, List, Optional, Protocol, runtime_checkable

from babylog.types import AccountSnapshot, UpsertResult

# =============================================================================
# ERRORS
# =============================================================================


class BabyLogError(Exception):
    """Base for all babylog errors."""

    pass


class ValidationError(BabyLogError, ValueError):
    """Raised when a payload fails validation. Permanent: never retried."""

    pass


class OwnershipConflict(BabyLogError):
    """Raised when a record id already belongs to another owner. Permanent."""

    def __init__(self, message: str = "ID conflict with another user", record_id: Optional[str] = None):
        super().__init__(message)
        self.record_id = record_id


class StorageError(BabyLogError):
    """Raised on storage failures (sqlite errors, corrupt rows)."""

    pass


class TransientNetworkError(BabyLogError):
    """Raised when the remote could not be reached or failed temporarily."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


PERMANENT_ERRORS = (ValidationError, OwnershipConflict)


def is_permanent(error: BaseException) -> bool:
    """True for failures that retrying can never fix."""
    return isinstance(error, PERMANENT_ERRORS)


# =============================================================================
# REMOTE BACKEND PROTOCOL
# =============================================================================


@runtime_checkable
class RemoteBackend(Protocol):
    """What the client needs from the server.

    Every method raises ValidationError or OwnershipConflict for permanent
    failures and TransientNetworkError for anything worth retrying.
    """

    def get_snapshot(self, owner_id: int) -> AccountSnapshot: ...

    def save_activity(self, owner_id: int, activity: Dict[str, Any]) -> UpsertResult: ...

    def delete_activity(self, owner_id: int, activity_id: str) -> None: ...

    def save_custom_activity(self, owner_id: int, definition: Dict[str, Any]) -> UpsertResult: ...

    def delete_custom_activity(self, owner_id: int, definition_id: str) -> None: ...

    def save_growth_record(self, owner_id: int, record: Dict[str, Any]) -> UpsertResult: ...

    def delete_growth_record(self, owner_id: int, record_id: str) -> None: ...

    def save_profile(self, owner_id: int, profile: Dict[str, Any]) -> None: ...

    def save_settings(self, owner_id: int, patch: Dict[str, Any]) -> Dict[str, Any]: ...

    def export_account(self, owner_id: int) -> Dict[str, Any]: ...

    def import_account(self, owner_id: int, document: Dict[str, Any]) -> Dict[str, Any]: ...

    def delete_account(self, owner_id: int) -> None: ...


@runtime_checkable
class ConnectivityProbe(Protocol):
    """Reports whether the client currently believes it is online."""

    def is_online(self) -> bool: ...


class StaticConnectivity:
    """Connectivity flag flipped by the host application."""

    def __init__(self, online: bool = True):
        self._online = online

    def is_online(self) -> bool:
        return self._online

    def set_online(self, online: bool) -> None:
        self._online = online


__all__: List[str] = [
    "BabyLogError",
    "ValidationError",
    "OwnershipConflict",
    "StorageError",
    "TransientNetworkError",
    "PERMANENT_ERRORS",
    "is_permanent",
    "RemoteBackend",
    "ConnectivityProbe",
    "StaticConnectivity",
]
