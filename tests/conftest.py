"""
Pytest fixtures and test configuration for babylog tests.
"""

import logging

import pytest

from babylog.client import BabyLogClient
from babylog.core import AccountService
from babylog.protocols import StaticConnectivity
from babylog.session import OwnerSession
from babylog.storage.local import LocalStateStore
from babylog.storage.queue import OfflineQueue
from babylog.storage.remote import LocalRemote
from babylog.storage.sqlite import SQLiteRecordStore

from factories import OWNER


@pytest.fixture(autouse=True)
def babylog_home(tmp_path, monkeypatch):
    """Keep logs and default databases inside the test's temp directory."""
    home = tmp_path / "home"
    monkeypatch.setenv("BABYLOG_DATA_DIR", str(home))
    logger = logging.getLogger("babylog")
    logger.handlers.clear()
    yield home
    logger.handlers.clear()


@pytest.fixture
def store(tmp_path):
    """Server record store on a temporary database."""
    s = SQLiteRecordStore(tmp_path / "server.db")
    yield s
    s.close()


@pytest.fixture
def service(store):
    return AccountService(store)


@pytest.fixture
def connectivity():
    return StaticConnectivity(online=True)


@pytest.fixture
def session(connectivity):
    return OwnerSession(OWNER, connectivity=connectivity)


@pytest.fixture
def remote(service, connectivity):
    """In-process remote that fails transiently while ``connectivity`` is offline."""
    return LocalRemote(service, connectivity=connectivity)


@pytest.fixture
def client_db(tmp_path):
    return tmp_path / "client.db"


@pytest.fixture
def queue(client_db):
    return OfflineQueue(client_db)


@pytest.fixture
def local_store(client_db):
    return LocalStateStore(client_db)


@pytest.fixture
def client(session, remote, client_db):
    return BabyLogClient(session, remote, db_path=client_db)
