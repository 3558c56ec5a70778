"""SQLite implementation of the ProgressStore protocol."""

from __future__ import annotations

from datetime import datetime, timezone
from pathlib import Path

import aiosqlite

from contract_feed.models.page import Cursor, ScanMeta
from contract_feed.models.records import ActivityRecord, ProgressRecord

SCHEMA = """
-- Next window to fetch, per pull subscription
CREATE TABLE IF NOT EXISTS progress (
    key TEXT PRIMARY KEY,
    from_block INTEGER NOT NULL,
    to_block INTEGER NOT NULL,
    page_number INTEGER NOT NULL,
    scan_latest_block_number INTEGER NOT NULL,
    scan_latest_block_completed INTEGER NOT NULL,
    updated_at TEXT NOT NULL DEFAULT (datetime('now'))
);

-- Activity log (deliveries, errors, lifecycle)
CREATE TABLE IF NOT EXISTS activity_log (
    id INTEGER PRIMARY KEY AUTOINCREMENT,
    kind TEXT NOT NULL,
    key TEXT,
    message TEXT NOT NULL,
    created_at TEXT NOT NULL DEFAULT (datetime('now'))
);
CREATE INDEX IF NOT EXISTS idx_activity_created ON activity_log(created_at);
"""


def _now() -> str:
    return datetime.now(timezone.utc).isoformat()


def subscription_key(address: str | None, event_names: list[str] | None) -> str:
    """Stable name for a pull subscription's filter."""
    names = ",".join(sorted(event_names or [])) or "*"
    return f"{(address or '*').lower()}|{names}"


class SQLiteProgressStore:
    """SQLite-backed implementation of the ProgressStore protocol."""

    def __init__(self, db_path: str) -> None:
        self._db_path = db_path
        self._db: aiosqlite.Connection | None = None

    async def initialize(self) -> None:
        if self._db_path != ":memory:":
            Path(self._db_path).parent.mkdir(parents=True, exist_ok=True)
        self._db = await aiosqlite.connect(self._db_path)
        self._db.row_factory = aiosqlite.Row
        await self._db.executescript(SCHEMA)
        await self._db.commit()

    async def close(self) -> None:
        if self._db:
            await self._db.close()
            self._db = None

    @property
    def db(self) -> aiosqlite.Connection:
        assert self._db is not None, "Store not initialized. Call initialize() first."
        return self._db

    # ── Progress ───────────────────────────────────────────

    async def get_progress(self, key: str) -> ProgressRecord | None:
        async with self.db.execute("SELECT * FROM progress WHERE key=?", (key,)) as cur:
            row = await cur.fetchone()
            return _row_to_progress(row) if row else None

    async def save_progress(self, key: str, cursor: Cursor, meta: ScanMeta) -> None:
        await self.db.execute(
            "INSERT INTO progress"
            " (key, from_block, to_block, page_number,"
            "  scan_latest_block_number, scan_latest_block_completed, updated_at)"
            " VALUES (?, ?, ?, ?, ?, ?, ?)"
            " ON CONFLICT(key) DO UPDATE SET"
            " from_block=excluded.from_block, to_block=excluded.to_block,"
            " page_number=excluded.page_number,"
            " scan_latest_block_number=excluded.scan_latest_block_number,"
            " scan_latest_block_completed=excluded.scan_latest_block_completed,"
            " updated_at=excluded.updated_at",
            (
                key, cursor.from_block, cursor.to_block, cursor.page_number,
                meta.scan_latest_block_number, int(meta.scan_latest_block_completed),
                _now(),
            ),
        )
        await self.db.commit()

    async def list_progress(self) -> list[ProgressRecord]:
        async with self.db.execute("SELECT * FROM progress ORDER BY key") as cur:
            return [_row_to_progress(row) async for row in cur]

    # ── Activity log ───────────────────────────────────────

    async def log_activity(self, kind: str, message: str, key: str | None = None) -> None:
        await self.db.execute(
            "INSERT INTO activity_log (kind, key, message, created_at) VALUES (?, ?, ?, ?)",
            (kind, key, message, _now()),
        )
        await self.db.commit()

    async def get_recent_activity(self, limit: int = 50) -> list[ActivityRecord]:
        async with self.db.execute(
            "SELECT * FROM activity_log ORDER BY id DESC LIMIT ?", (limit,)
        ) as cur:
            return [
                ActivityRecord(
                    id=row["id"],
                    kind=row["kind"],
                    key=row["key"],
                    message=row["message"],
                    created_at=row["created_at"],
                )
                async for row in cur
            ]


# ── Row converters ─────────────────────────────────────────


def _row_to_progress(row: aiosqlite.Row) -> ProgressRecord:
    return ProgressRecord(
        key=row["key"],
        from_block=row["from_block"],
        to_block=row["to_block"],
        page_number=row["page_number"],
        scan_latest_block_number=row["scan_latest_block_number"],
        scan_latest_block_completed=bool(row["scan_latest_block_completed"]),
        updated_at=row["updated_at"],
    )
