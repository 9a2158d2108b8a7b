"""Ownership-safe upsert.

The single write path for every owned multi-row record. The statement is::

    INSERT INTO t (cols..., owner) VALUES (...)
    ON CONFLICT(key) DO UPDATE SET c = excluded.c, ...
    WHERE t.owner = excluded.owner

so a row whose id already belongs to another owner is left untouched. When
nothing changed, the current owner of the key is looked up to tell a foreign
row apart from a no-op.
"""

import logging
import sqlite3
from typing import Any, List, Sequence

from babylog.protocols import StorageError
from babylog.storage.schema import validate_column_names, validate_table_name
from babylog.types import UpsertResult

logger = logging.getLogger(__name__)

CONFLICT_MESSAGE = "Operation failed: ID conflict with another user"


def upsert_owned(
    conn: sqlite3.Connection,
    table: str,
    columns: Sequence[str],
    values: Sequence[Any],
    conflict_key: str,
    update_columns: Sequence[str],
    owner_id: int,
    owner_column: str = "telegram_id",
) -> UpsertResult:
    """Insert a row for ``owner_id`` or update it if that owner already has it.

    Args:
        conn: Open connection; the caller owns the transaction.
        table: Target table (allowlisted).
        columns: Columns to write, excluding the owner column.
        values: Values matching ``columns``.
        conflict_key: Unique column identifying the row (usually ``id``).
        update_columns: Columns overwritten when the row already exists.
        owner_id: Owner the row must belong to.
        owner_column: Name of the owner column in ``table``.

    Returns:
        UpsertResult with success False when the key belongs to someone else.

    Raises:
        StorageError: On any sqlite failure.
        ValueError: On a table or column name outside the allowlist.
    """
    table = validate_table_name(table)
    columns = validate_column_names(columns)
    update_columns = validate_column_names(update_columns)
    conflict_key, owner_column = validate_column_names([conflict_key, owner_column])
    if len(columns) != len(values):
        raise ValueError(f"Column/value count mismatch for {table}: {len(columns)} != {len(values)}")
    if conflict_key not in columns:
        raise ValueError(f"Conflict key {conflict_key} must be one of the written columns")

    all_columns: List[str] = list(columns) + [owner_column]
    all_values: List[Any] = list(values) + [owner_id]
    placeholders = ", ".join("?" for _ in all_columns)
    update_set = ", ".join(f"{c} = excluded.{c}" for c in update_columns)

    sql = (
        f"INSERT INTO {table} ({', '.join(all_columns)}) VALUES ({placeholders}) "
        f"ON CONFLICT({conflict_key}) DO UPDATE SET {update_set} "
        f"WHERE {table}.{owner_column} = excluded.{owner_column}"
    )

    key_value = values[list(columns).index(conflict_key)]
    try:
        cur = conn.execute(sql, all_values)
        if cur.rowcount == 0:
            row = conn.execute(
                f"SELECT {owner_column} FROM {table} WHERE {conflict_key} = ?",
                (key_value,),
            ).fetchone()
            if row is not None and row[0] != owner_id:
                logger.warning(
                    f"Rejected write to {table} id={key_value}: owned by another user "
                    f"(requested by {owner_id})"
                )
                return UpsertResult(success=False, error=CONFLICT_MESSAGE)
    except sqlite3.Error as e:
        raise StorageError(f"Upsert into {table} failed: {e}") from e

    return UpsertResult(success=True)
