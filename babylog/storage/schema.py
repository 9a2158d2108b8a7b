"""Database schema definitions for babylog.

Two databases share this module:

- The server store (``SERVER_SCHEMA``): users, activities, custom activities,
  growth records and notification schedules, one owner per row.
- The client file (``CLIENT_SCHEMA``): the offline mutation queue and the
  client's local copy of one or more owners' records.
"""

import logging
import sqlite3
from typing import Iterable

logger = logging.getLogger(__name__)

SCHEMA_VERSION = 1

# Owned multi-row tables and the column holding their owner id
OWNER_COLUMNS = {
    "activities": "telegram_id",
    "custom_activities": "telegram_id",
    "growth_records": "telegram_id",
    "notification_schedules": "user_id",
}

ALLOWED_TABLES = frozenset(
    {
        "users",
        "activities",
        "custom_activities",
        "growth_records",
        "notification_schedules",
        "offline_queue",
        "local_records",
        "local_singletons",
        "local_notices",
    }
)

ALLOWED_COLUMNS = frozenset(
    {
        "id",
        "telegram_id",
        "user_id",
        "chat_id",
        "type",
        "timestamp",
        "date",
        "data",
        "schedule_data",
        "next_run",
        "enabled",
        "profile_data",
        "settings_data",
        "created_at",
    }
)


def validate_table_name(table: str) -> str:
    """Validate table name against allowlist to prevent SQL injection.

    Raises:
        ValueError: If table name is not in allowlist
    """
    if table not in ALLOWED_TABLES:
        raise ValueError(f"Invalid table name: {table}")
    return table


def validate_column_names(columns: Iterable[str]) -> list:
    """Validate column names against the allowlist; returns them as a list."""
    checked = []
    for column in columns:
        if column not in ALLOWED_COLUMNS:
            raise ValueError(f"Invalid column name: {column}")
        checked.append(column)
    return checked


SERVER_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

CREATE TABLE IF NOT EXISTS users (
    telegram_id INTEGER PRIMARY KEY,
    profile_data TEXT DEFAULT '{}',
    settings_data TEXT DEFAULT '{}',
    created_at INTEGER DEFAULT (strftime('%s', 'now'))
);

CREATE TABLE IF NOT EXISTS activities (
    id TEXT PRIMARY KEY,
    telegram_id INTEGER NOT NULL,
    type TEXT NOT NULL,
    timestamp TEXT NOT NULL,
    data TEXT NOT NULL,
    created_at INTEGER DEFAULT (strftime('%s', 'now'))
);

CREATE TABLE IF NOT EXISTS custom_activities (
    id TEXT PRIMARY KEY,
    telegram_id INTEGER NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS growth_records (
    id TEXT PRIMARY KEY,
    telegram_id INTEGER NOT NULL,
    date TEXT NOT NULL,
    data TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS notification_schedules (
    id TEXT PRIMARY KEY,
    user_id INTEGER NOT NULL,
    chat_id INTEGER NOT NULL,
    type TEXT NOT NULL,
    schedule_data TEXT NOT NULL,
    next_run INTEGER,
    enabled INTEGER DEFAULT 1
);

CREATE INDEX IF NOT EXISTS idx_activities_telegram_id ON activities(telegram_id);
CREATE INDEX IF NOT EXISTS idx_activities_user_timestamp ON activities(telegram_id, timestamp DESC);
CREATE INDEX IF NOT EXISTS idx_custom_activities_telegram_id ON custom_activities(telegram_id);
CREATE INDEX IF NOT EXISTS idx_growth_records_telegram_id ON growth_records(telegram_id);
CREATE INDEX IF NOT EXISTS idx_growth_records_date ON growth_records(telegram_id, date DESC);
CREATE INDEX IF NOT EXISTS idx_schedules_user_id ON notification_schedules(user_id);
CREATE INDEX IF NOT EXISTS idx_schedules_next_run ON notification_schedules(next_run) WHERE enabled = 1;
"""

CLIENT_SCHEMA = """
CREATE TABLE IF NOT EXISTS schema_version (
    version INTEGER PRIMARY KEY
);

-- Offline mutation queue; seq gives insertion order
CREATE TABLE IF NOT EXISTS offline_queue (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    id TEXT NOT NULL UNIQUE,
    owner_id INTEGER NOT NULL,
    action TEXT NOT NULL,
    payload TEXT NOT NULL,
    timestamp INTEGER NOT NULL,
    attempts INTEGER DEFAULT 0,
    last_error TEXT
);
CREATE INDEX IF NOT EXISTS idx_offline_queue_owner ON offline_queue(owner_id, seq);

-- Local copy of collection records
CREATE TABLE IF NOT EXISTS local_records (
    owner_id INTEGER NOT NULL,
    family TEXT NOT NULL,
    record_id TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (owner_id, family, record_id)
);

-- Local copy of profile and settings
CREATE TABLE IF NOT EXISTS local_singletons (
    owner_id INTEGER NOT NULL,
    kind TEXT NOT NULL,
    data TEXT NOT NULL,
    PRIMARY KEY (owner_id, kind)
);

-- Writes the server refused after they were applied optimistically
CREATE TABLE IF NOT EXISTS local_notices (
    seq INTEGER PRIMARY KEY AUTOINCREMENT,
    owner_id INTEGER NOT NULL,
    action TEXT NOT NULL,
    record_id TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL
);
"""


def _init(conn: sqlite3.Connection, script: str) -> None:
    conn.executescript(script)
    cur = conn.execute("SELECT version FROM schema_version LIMIT 1")
    row = cur.fetchone()
    if row is None:
        conn.execute("INSERT INTO schema_version (version) VALUES (?)", (SCHEMA_VERSION,))
    elif row[0] != SCHEMA_VERSION:
        logger.info(f"Updating schema version {row[0]} -> {SCHEMA_VERSION}")
        conn.execute("UPDATE schema_version SET version = ?", (SCHEMA_VERSION,))


def init_server_db(conn: sqlite3.Connection) -> None:
    """Create the server tables if they don't exist."""
    _init(conn, SERVER_SCHEMA)


def init_client_db(conn: sqlite3.Connection) -> None:
    """Create the client queue and local-state tables if they don't exist."""
    _init(conn, CLIENT_SCHEMA)
