from logging import info, warning

from aiosqlite import connect
from orjson import JSONEncodeError, dumps

import configs
from security import (
    ValueKind,
    find_key_collisions,
    is_valid_for_storage,
    is_valid_id,
    is_valid_identifier,
    is_valid_query_params,
    kind_of,
    sanitize_for_storage,
)

# Writable fields per table; `id` and `created_at` are managed by SQLite.
TABLES = {
    "users": ("name", "email", "role"),
    "reviews": ("product_id", "user_id", "rating", "comment"),
    "orders": ("customer_name", "total", "status", "items", "seller_id"),
}

SCHEMA = (
    """
    CREATE TABLE IF NOT EXISTS users (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        name TEXT NOT NULL,
        email TEXT UNIQUE NOT NULL,
        role TEXT DEFAULT 'buyer',
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS reviews (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        product_id INTEGER NOT NULL,
        user_id INTEGER,
        rating INTEGER NOT NULL,
        comment TEXT,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
    """
    CREATE TABLE IF NOT EXISTS orders (
        id INTEGER PRIMARY KEY AUTOINCREMENT,
        customer_name TEXT NOT NULL,
        total REAL NOT NULL,
        status TEXT DEFAULT 'pending',
        items TEXT,
        seller_id INTEGER,
        created_at DATETIME DEFAULT CURRENT_TIMESTAMP
    )
    """,
)

WRITE_POLICIES = ("reject", "sanitize", "both")

# SQLite INTEGER is a signed 64-bit value.
SQLITE_INTEGER_MIN = -(2**63)
SQLITE_INTEGER_MAX = 2**63 - 1


def _row_factory(cursor, row) -> dict:
    return dict(zip([col[0] for col in cursor.description], row))


def require_table(table: str) -> str:
    """
    Gates a caller-supplied table name.

    Raises:
        ValueError: If the name is not a valid identifier.
        LookupError: If the name is valid but no such table exists.
    """
    if not is_valid_identifier(table):
        warning("Rejected table name")
        raise ValueError("Invalid table name")
    if table not in TABLES:
        raise LookupError(f"Unknown table: {table}")
    return table


def require_id(record_id: int | str) -> int:
    """Gates a caller-supplied record id and returns it as an int."""
    if not is_valid_id(record_id):
        warning("Rejected record id")
        raise ValueError("Invalid record id")
    if isinstance(record_id, str):
        return int(float(record_id))
    return int(record_id)


def require_criteria(table: str, criteria: dict) -> dict:
    """
    Gates filter criteria for `table`.

    Criteria must pass `is_valid_query_params`, name existing columns only
    and hold scalar values, since every pair becomes a `column = ?` condition.
    """
    if not is_valid_query_params(criteria):
        warning("Rejected filter criteria for %s", table)
        raise ValueError("Invalid filter criteria")

    columns = ("id",) + TABLES[table]
    for column, value in criteria.items():
        if column not in columns:
            raise ValueError(
                "No matching columns found in the schema for the given filters."
            )
        if kind_of(value) in (ValueKind.SEQUENCE, ValueKind.MAPPING):
            raise ValueError("Filter values must be scalars")
        _column_value(value)
    return criteria


def _column_value(value):
    """Returns `value` in a form SQLite can bind, or raises ValueError."""
    kind = kind_of(value)
    if kind in (ValueKind.SEQUENCE, ValueKind.MAPPING):
        try:
            return dumps(value).decode()
        except JSONEncodeError as err:
            raise ValueError("Unsupported value") from err
    if kind is ValueKind.NUMBER and isinstance(value, int):
        if not SQLITE_INTEGER_MIN <= value <= SQLITE_INTEGER_MAX:
            raise ValueError("Integer out of range")
    return value


def prepare_payload(table: str, data: dict, write_policy: str | None = None) -> dict:
    """
    Applies the write policy to a payload destined for `table`.

    Policies:
        reject: the payload must pass `is_valid_for_storage` with the table's
            field whitelist.
        sanitize: the payload is rewritten by `sanitize_for_storage`; payloads
            whose keys collide after sanitizing are refused.
        both: validate first, then sanitize.

    Nested sequences and mappings are encoded as JSON text.

    Args:
        table: A table name already gated by `require_table`.
        data: The payload.
        write_policy: Overrides `configs.write_policy`.

    Returns:
        A flat mapping of column names to SQLite-bindable values.
    """
    write_policy = write_policy or configs.write_policy
    if write_policy not in WRITE_POLICIES:
        raise ValueError(f"Unknown write policy: {write_policy}")
    fields = TABLES[table]

    if write_policy in ("reject", "both") and not is_valid_for_storage(data, fields):
        warning("Rejected payload for %s", table)
        raise ValueError("Invalid payload")

    if write_policy in ("sanitize", "both"):
        if kind_of(data) is not ValueKind.MAPPING or find_key_collisions(data):
            warning("Rejected payload for %s", table)
            raise ValueError("Invalid payload")
        data = sanitize_for_storage(data)
        if any(key not in fields for key in data):
            warning("Rejected payload for %s", table)
            raise ValueError("Invalid payload")

    if not data:
        raise ValueError("Empty payload")
    return {key: _column_value(value) for key, value in data.items()}


async def init_db() -> None:
    """Creates the users, reviews and orders tables if they do not exist."""
    async with connect(configs.db_path) as db:
        for statement in SCHEMA:
            await db.execute(statement)
        await db.commit()
    info("Database ready at %s", configs.db_path)


async def _fetch(query: str, parameters: tuple = ()) -> list[dict]:
    async with connect(configs.db_path) as db:
        db.row_factory = _row_factory
        cursor = await db.cursor()
        await cursor.execute(query, parameters)
        return await cursor.fetchall()


async def find_all(table: str) -> list[dict]:
    table = require_table(table)
    return await _fetch(f"SELECT * FROM {table} ORDER BY id")


async def find_by_id(table: str, record_id: int | str) -> dict | None:
    table = require_table(table)
    rows = await _fetch(f"SELECT * FROM {table} WHERE id = ?", (require_id(record_id),))
    return rows[0] if rows else None


async def find_by(table: str, criteria: dict) -> list[dict]:
    """
    Returns the records of `table` whose columns equal every criteria value.

    Empty criteria return every record.
    """
    table = require_table(table)
    criteria = require_criteria(table, criteria)
    if not criteria:
        return await find_all(table)

    conditions = " AND ".join(f"{column} = ?" for column in criteria)
    return await _fetch(
        f"SELECT * FROM {table} WHERE {conditions} ORDER BY id",
        tuple(criteria.values()),
    )


async def find_one(table: str, criteria: dict) -> dict | None:
    rows = await find_by(table, criteria)
    return rows[0] if rows else None


async def create(table: str, data: dict) -> dict:
    """
    Inserts a record and returns it as stored.

    Raises:
        ValueError: If the table name or payload is rejected.
        LookupError: If the table does not exist.
    """
    table = require_table(table)
    payload = prepare_payload(table, data)

    columns = ", ".join(payload)
    placeholders = ", ".join(["?"] * len(payload))
    async with connect(configs.db_path) as db:
        cursor = await db.cursor()
        await cursor.execute(
            f"INSERT INTO {table} ({columns}) VALUES ({placeholders})",
            tuple(payload.values()),
        )
        record_id = cursor.lastrowid
        await db.commit()

    return await find_by_id(table, record_id)


async def update(table: str, record_id: int | str, data: dict) -> dict | None:
    """Updates a record and returns it, or None if no record has that id."""
    table = require_table(table)
    record_id = require_id(record_id)
    payload = prepare_payload(table, data)

    assignments = ", ".join(f"{column} = ?" for column in payload)
    async with connect(configs.db_path) as db:
        cursor = await db.cursor()
        await cursor.execute(
            f"UPDATE {table} SET {assignments} WHERE id = ?",
            (*payload.values(), record_id),
        )
        await db.commit()

    return await find_by_id(table, record_id)


async def delete(table: str, record_id: int | str) -> bool:
    table = require_table(table)
    record_id = require_id(record_id)
    async with connect(configs.db_path) as db:
        cursor = await db.cursor()
        await cursor.execute(f"DELETE FROM {table} WHERE id = ?", (record_id,))
        await db.commit()
        return cursor.rowcount > 0
