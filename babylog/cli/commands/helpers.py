"""Shared helper functions for CLI commands."""

import json
import logging
import os
from typing import Any

from babylog.client import BabyLogClient
from babylog.core import AccountService
from babylog.protocols import RemoteBackend
from babylog.session import OwnerSession
from babylog.storage.remote import HttpRemote, LocalRemote
from babylog.validation import validate_owner_id

logger = logging.getLogger(__name__)


def print_json(data: Any) -> None:
    """Print data as formatted JSON."""
    print(json.dumps(data, indent=2, default=str))


def resolve_owner_id(args) -> int:
    """Owner id from ``--owner``, falling back to ``BABYLOG_OWNER_ID``."""
    raw = getattr(args, "owner", None) or os.environ.get("BABYLOG_OWNER_ID")
    if not raw:
        raise ValueError("No owner id: pass --owner or set BABYLOG_OWNER_ID")
    return validate_owner_id(raw)


def build_remote(args) -> RemoteBackend:
    """``--db`` talks to a record store in-process; otherwise HTTP."""
    db = getattr(args, "db", None)
    if db:
        logger.debug(f"Using in-process record store at {db}")
        return LocalRemote(AccountService(db))

    url = getattr(args, "url", None) or os.environ.get("BABYLOG_BACKEND_URL")
    if not url:
        raise ValueError("No backend configured: pass --url or --db, or set BABYLOG_BACKEND_URL")
    return HttpRemote(url)


def build_client(args, remote: RemoteBackend) -> BabyLogClient:
    session = OwnerSession(resolve_owner_id(args))
    return BabyLogClient(session, remote, db_path=getattr(args, "client_db", None))
