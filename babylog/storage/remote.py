"""Remote backends the client can talk to.

- ``HttpRemote``: the babylog HTTP API over httpx.
- ``LocalRemote``: an :class:`~babylog.core.AccountService` in the same
  process (tests, single-device setups, the CLI's ``--db`` mode).

Both raise the same errors, so the queue and sync engine never care which
one they have:

- 403 / 409 -> OwnershipConflict
- other 4xx (except 408, 429) -> ValidationError
- 5xx, 408, 429, timeouts, connection errors -> TransientNetworkError
"""

import logging
from typing import Any, Dict, Optional

import httpx

from babylog.core import AccountService
from babylog.protocols import (
    ConnectivityProbe,
    OwnershipConflict,
    StorageError,
    TransientNetworkError,
    ValidationError,
)
from babylog.types import DEFAULT_REMOTE_TIMEOUT, AccountSnapshot, UpsertResult

logger = logging.getLogger(__name__)

OWNER_HEADER = "X-Owner-Id"

RETRYABLE_CLIENT_STATUSES = frozenset({408, 429})


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("error") or body.get("detail") or body)
    return str(body)


def raise_for_status(response: httpx.Response) -> None:
    """Map an HTTP error status onto a babylog error."""
    status = response.status_code
    if status < 400:
        return
    message = _error_message(response)
    if status in (403, 409):
        raise OwnershipConflict(message)
    if status in RETRYABLE_CLIENT_STATUSES or status >= 500:
        raise TransientNetworkError(f"Server returned {status}: {message}", status_code=status)
    raise ValidationError(message)


class HttpRemote:
    """RemoteBackend over the babylog HTTP API."""

    def __init__(
        self,
        base_url: str,
        timeout: float = DEFAULT_REMOTE_TIMEOUT,
        client: Optional[httpx.Client] = None,
    ):
        if not base_url:
            raise ValueError("base_url is required")
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._client = client or httpx.Client(timeout=timeout)

    def close(self) -> None:
        self._client.close()

    def _url(self, owner_id: int, path: str = "") -> str:
        return f"{self.base_url}/api/user/{owner_id}{path}"

    def _request(
        self,
        method: str,
        owner_id: int,
        path: str = "",
        json: Any = None,
        params: Optional[Dict[str, Any]] = None,
    ) -> Any:
        try:
            response = self._client.request(
                method,
                self._url(owner_id, path),
                json=json,
                params=params,
                headers={OWNER_HEADER: str(owner_id)},
                timeout=self.timeout,
            )
        except httpx.TimeoutException as e:
            raise TransientNetworkError(f"Request timed out: {e}") from e
        except httpx.TransportError as e:
            raise TransientNetworkError(f"Connection failed: {e}") from e

        raise_for_status(response)
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise TransientNetworkError(f"Malformed response from server: {e}") from e

    def is_reachable(self) -> bool:
        """Probe ``/health``; any failure means unreachable."""
        try:
            response = self._client.get(f"{self.base_url}/health", timeout=5.0)
        except httpx.HTTPError as e:
            logger.debug(f"Health check failed: {e}")
            return False
        return response.status_code == 200

    # === RemoteBackend ===

    def get_snapshot(self, owner_id: int) -> AccountSnapshot:
        return AccountSnapshot.from_dict(self._request("GET", owner_id) or {})

    def save_activity(self, owner_id: int, activity: Dict[str, Any]) -> UpsertResult:
        self._request("POST", owner_id, "/activity", json=activity)
        return UpsertResult(success=True)

    def delete_activity(self, owner_id: int, activity_id: str) -> None:
        self._request("POST", owner_id, "/activity/delete", json={"activityId": activity_id})

    def save_custom_activity(self, owner_id: int, definition: Dict[str, Any]) -> UpsertResult:
        self._request("POST", owner_id, "/custom-activity", json=definition)
        return UpsertResult(success=True)

    def delete_custom_activity(self, owner_id: int, definition_id: str) -> None:
        self._request(
            "POST", owner_id, "/custom-activity/delete", json={"customActivityId": definition_id}
        )

    def save_growth_record(self, owner_id: int, record: Dict[str, Any]) -> UpsertResult:
        self._request("POST", owner_id, "/growth", json=record)
        return UpsertResult(success=True)

    def delete_growth_record(self, owner_id: int, record_id: str) -> None:
        self._request("POST", owner_id, "/growth/delete", json={"recordId": record_id})

    def save_profile(self, owner_id: int, profile: Dict[str, Any]) -> None:
        self._request("POST", owner_id, "/profile", json={"profile": profile})

    def save_settings(self, owner_id: int, patch: Dict[str, Any]) -> Dict[str, Any]:
        body = self._request("POST", owner_id, "/settings", json={"settings": patch}) or {}
        return body.get("settings") or {}

    def get_activities(self, owner_id: int, limit: int = 50, before: Optional[str] = None):
        params: Dict[str, Any] = {"limit": limit}
        if before:
            params["before"] = before
        body = self._request("GET", owner_id, "/activities", params=params) or {}
        return body.get("activities", [])

    def export_account(self, owner_id: int) -> Dict[str, Any]:
        return self._request("GET", owner_id, "/export")

    def import_account(self, owner_id: int, document: Dict[str, Any]) -> Dict[str, Any]:
        return self._request("POST", owner_id, "/import", json=document) or {}

    def delete_account(self, owner_id: int) -> None:
        self._request("POST", owner_id, "/delete-all")


class LocalRemote:
    """RemoteBackend that calls an AccountService directly.

    Storage failures look like a 5xx would: transient. An optional
    connectivity probe makes every call fail transiently while offline.
    """

    def __init__(self, service: AccountService, connectivity: Optional[ConnectivityProbe] = None):
        self.service = service
        self.connectivity = connectivity

    def _call(self, fn, *args):
        if self.connectivity is not None and not self.connectivity.is_online():
            raise TransientNetworkError("Remote unreachable (offline)")
        try:
            return fn(*args)
        except StorageError as e:
            raise TransientNetworkError(f"Server storage failure: {e}") from e

    def get_snapshot(self, owner_id: int) -> AccountSnapshot:
        return self._call(self.service.get_account_snapshot, owner_id)

    def save_activity(self, owner_id: int, activity: Dict[str, Any]) -> UpsertResult:
        return self._call(self.service.save_activity, owner_id, activity)

    def delete_activity(self, owner_id: int, activity_id: str) -> None:
        self._call(self.service.delete_activity, owner_id, activity_id)

    def save_custom_activity(self, owner_id: int, definition: Dict[str, Any]) -> UpsertResult:
        return self._call(self.service.save_custom_activity, owner_id, definition)

    def delete_custom_activity(self, owner_id: int, definition_id: str) -> None:
        self._call(self.service.delete_custom_activity, owner_id, definition_id)

    def save_growth_record(self, owner_id: int, record: Dict[str, Any]) -> UpsertResult:
        return self._call(self.service.save_growth_record, owner_id, record)

    def delete_growth_record(self, owner_id: int, record_id: str) -> None:
        self._call(self.service.delete_growth_record, owner_id, record_id)

    def save_profile(self, owner_id: int, profile: Dict[str, Any]) -> None:
        self._call(self.service.save_profile, owner_id, profile)

    def save_settings(self, owner_id: int, patch: Dict[str, Any]) -> Dict[str, Any]:
        return self._call(self.service.save_settings, owner_id, patch)

    def export_account(self, owner_id: int) -> Dict[str, Any]:
        return self._call(self.service.export_account, owner_id)

    def import_account(self, owner_id: int, document: Dict[str, Any]) -> Dict[str, Any]:
        result = self._call(self.service.import_account, owner_id, document)
        return {
            "success": True,
            "imported": result.imported,
            "skipped": result.skipped,
            "conflicts": result.conflicts,
        }

    def delete_account(self, owner_id: int) -> None:
        self._call(self.service.delete_account, owner_id)
