"""Async SQLite storage for the transaction log, user limits and contract lists.

Uses ``aiosqlite`` with WAL mode and dict rows.
"""

import asyncio
import logging
import sqlite3
from pathlib import Path
from typing import Optional, Union

import aiosqlite

logger = logging.getLogger(__name__)

SCHEMA = """\
CREATE TABLE IF NOT EXISTS tx_log (
    id TEXT PRIMARY KEY,
    user_id TEXT NOT NULL,
    chain_id INTEGER NOT NULL,
    from_addr TEXT NOT NULL,
    to_addr TEXT NOT NULL,
    value TEXT NOT NULL,
    value_usd REAL,
    hash TEXT,
    nonce INTEGER,
    status TEXT NOT NULL DEFAULT 'pending',
    skill_name TEXT NOT NULL DEFAULT '',
    intent_description TEXT NOT NULL DEFAULT '',
    simulation_result TEXT,
    guardrail_checks TEXT,
    risk_verdict TEXT,
    gas_used INTEGER,
    gas_price TEXT,
    block_number INTEGER,
    error TEXT,
    error_code TEXT,
    created_at TEXT NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE INDEX IF NOT EXISTS idx_tx_log_user ON tx_log(user_id, created_at);
CREATE INDEX IF NOT EXISTS idx_tx_log_status ON tx_log(status);

CREATE TABLE IF NOT EXISTS tx_log_history (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    tx_id TEXT NOT NULL,
    from_status TEXT,
    to_status TEXT NOT NULL,
    detail TEXT,
    created_at TEXT NOT NULL,
    FOREIGN KEY (tx_id) REFERENCES tx_log(id)
);

CREATE INDEX IF NOT EXISTS idx_tx_log_history_tx ON tx_log_history(tx_id);

CREATE TABLE IF NOT EXISTS user_limits (
    user_id TEXT PRIMARY KEY,
    max_per_tx REAL NOT NULL,
    max_per_day REAL NOT NULL,
    cooldown_seconds INTEGER NOT NULL,
    slippage_bps INTEGER NOT NULL,
    updated_at TEXT NOT NULL
);

CREATE TABLE IF NOT EXISTS contract_list (
    scope TEXT NOT NULL,
    address TEXT NOT NULL,
    chain_id INTEGER NOT NULL,
    action TEXT NOT NULL CHECK (action IN ('allow', 'block')),
    reason TEXT NOT NULL DEFAULT '',
    added_at TEXT NOT NULL,
    PRIMARY KEY (scope, address, chain_id)
);
"""


class Database:
    """Thin async wrapper around an SQLite database.

    Pass ``":memory:"`` for a throwaway database in tests.
    """

    def __init__(self, db_path: Union[Path, str]) -> None:
        self.db_path = db_path
        self._conn: Optional[aiosqlite.Connection] = None
        self._write_lock = asyncio.Lock()  # Serializes write transactions on the shared connection

    @property
    def is_connected(self) -> bool:
        return self._conn is not None

    async def connect(self) -> None:
        """Open the connection, enable WAL mode and create tables."""
        if self._conn is not None:
            return

        target = str(self.db_path)
        if target != ":memory:":
            Path(target).parent.mkdir(parents=True, exist_ok=True)

        self._conn = await aiosqlite.connect(target)
        await self._conn.execute("PRAGMA journal_mode=WAL;")
        self._conn.row_factory = sqlite3.Row
        await self._conn.execute("PRAGMA foreign_keys=ON;")
        await self._conn.executescript(SCHEMA)
        await self._conn.commit()
        logger.debug(f"Database ready at {target}")

    async def close(self) -> None:
        if self._conn is not None:
            await self._conn.close()
            self._conn = None

    async def __aenter__(self) -> "Database":
        await self.connect()
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.close()

    def _require(self) -> aiosqlite.Connection:
        if self._conn is None:
            raise RuntimeError("Database not connected. Call connect() first.")
        return self._conn

    async def execute(self, sql: str, params: tuple = ()) -> aiosqlite.Cursor:
        """Execute a statement and commit."""
        conn = self._require()
        async with self._write_lock:
            cursor = await conn.execute(sql, params)
            await conn.commit()
        return cursor

    async def execute_many(self, statements: list[tuple[str, tuple]]) -> None:
        """Execute several statements in one transaction."""
        conn = self._require()
        async with self._write_lock:
            try:
                for sql, params in statements:
                    await conn.execute(sql, params)
            except Exception:
                await conn.rollback()
                raise
            await conn.commit()

    async def fetch_one(self, sql: str, params: tuple = ()) -> Optional[dict]:
        conn = self._require()
        cursor = await conn.execute(sql, params)
        row = await cursor.fetchone()
        return dict(row) if row is not None else None

    async def fetch_all(self, sql: str, params: tuple = ()) -> list[dict]:
        conn = self._require()
        cursor = await conn.execute(sql, params)
        rows = await cursor.fetchall()
        return [dict(r) for r in rows]
