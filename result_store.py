"""
result_store.py — analysis history persistence via aiosqlite.

Tables:
  analysis_results — one row per saved analysis, owned by a user

Images are written next to the database as <id>.jpg under
DATA_DIR/analysis_images/, and image_url holds their file:// URI.
Image upload and deletion are best-effort: a failing image never blocks
the record it belongs to.

The DB file is created automatically on first run.
"""
from __future__ import annotations

import asyncio
import logging
import os
import secrets
import string
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Optional, Union

import aiosqlite

from errors import StorageError
from image_normalizer import decode_data_uri

logger = logging.getLogger(__name__)

# Store the DB in a dedicated data/ directory so Docker volume mounts work
# correctly (mount ./data:/app/data) and the file survives container restarts.
_DATA_DIR = Path(os.getenv("DATA_DIR", "data"))
_DATA_DIR.mkdir(parents=True, exist_ok=True)

DB_PATH   = str(_DATA_DIR / "resell_lens.db")
IMAGE_DIR = _DATA_DIR / "analysis_images"
_lock = asyncio.Lock()          # serialise schema creation

_ID_ALPHABET = string.ascii_letters + string.digits
_ID_LEN = 20


# ── Data model ────────────────────────────────────────────────────────────────

@dataclass
class HistoryEntry:
    user_id: str
    product_name: str
    description: str
    average_sale_price: str
    resell_price: str
    image_url: str = ""         # "" when no image was stored
    timestamp: int = 0          # epoch milliseconds, assigned by the store
    id: str = ""


# ── Schema ────────────────────────────────────────────────────────────────────

_SCHEMA = """
CREATE TABLE IF NOT EXISTS analysis_results (
    id                 TEXT PRIMARY KEY,
    user_id            TEXT NOT NULL,
    product_name       TEXT NOT NULL DEFAULT '',
    description        TEXT NOT NULL DEFAULT '',
    average_sale_price TEXT NOT NULL DEFAULT '',
    resell_price       TEXT NOT NULL DEFAULT '',
    image_url          TEXT NOT NULL DEFAULT '',
    timestamp          TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_results_user_ts ON analysis_results (user_id, timestamp);
"""


async def init_db() -> None:
    """Create tables if they don't exist. Safe to call multiple times."""
    async with _lock:
        try:
            async with aiosqlite.connect(DB_PATH) as db:
                await db.executescript(_SCHEMA)
                await db.commit()
        except aiosqlite.Error as exc:
            raise StorageError(f"Could not initialise the history database: {exc}") from exc
    logger.info("Database initialised at %s", DB_PATH)


# ── Helpers ───────────────────────────────────────────────────────────────────

def _new_id() -> str:
    return "".join(secrets.choice(_ID_ALPHABET) for _ in range(_ID_LEN))


def _image_path(entry_id: str) -> Path:
    return IMAGE_DIR / f"{entry_id}.jpg"


def to_epoch_ms(value: Union[str, int, float, datetime, None]) -> int:
    """Normalize whatever the store holds for a timestamp to epoch milliseconds."""
    if value is None:
        return 0
    if isinstance(value, datetime):
        dt = value
    elif isinstance(value, (int, float)):
        return int(value)
    else:
        text = str(value).strip()
        if text.lstrip("-").isdigit():
            return int(text)
        dt = datetime.fromisoformat(text)
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)
    return int(dt.timestamp() * 1000)


def _row_to_entry(r: aiosqlite.Row) -> HistoryEntry:
    return HistoryEntry(
        id=r["id"],
        user_id=r["user_id"],
        product_name=r["product_name"],
        description=r["description"],
        average_sale_price=r["average_sale_price"],
        resell_price=r["resell_price"],
        image_url=r["image_url"],
        timestamp=to_epoch_ms(r["timestamp"]),
    )


async def _upload_image(entry_id: str, image_data_uri: str) -> str:
    """Write the image keyed by entry id. Returns its URL."""
    _, data = decode_data_uri(image_data_uri)
    path = _image_path(entry_id)
    path.parent.mkdir(parents=True, exist_ok=True)
    await asyncio.to_thread(path.write_bytes, data)
    return path.resolve().as_uri()


async def _delete_image(entry_id: str) -> None:
    await asyncio.to_thread(_image_path(entry_id).unlink, missing_ok=True)


# ── Public API ────────────────────────────────────────────────────────────────

async def save(entry: HistoryEntry, image_data_uri: Optional[str] = None) -> str:
    """
    Persist one analysis and return its new id.
    The stored timestamp is always the server's clock, never the caller's.
    """
    entry_id = _new_id()

    image_url = ""
    if image_data_uri:
        try:
            image_url = await _upload_image(entry_id, image_data_uri)
        except (OSError, ValueError) as exc:
            logger.warning("Image upload for %s failed, saving without image: %s", entry_id, exc)

    now = datetime.now(timezone.utc).isoformat()
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            await db.execute(
                """INSERT INTO analysis_results
                   (id, user_id, product_name, description,
                    average_sale_price, resell_price, image_url, timestamp)
                   VALUES (?, ?, ?, ?, ?, ?, ?, ?)""",
                (entry_id, entry.user_id, entry.product_name, entry.description,
                 entry.average_sale_price, entry.resell_price, image_url, now),
            )
            await db.commit()
    except aiosqlite.Error as exc:
        logger.error("Error saving analysis result: %s", exc)
        raise StorageError(f"Could not save analysis result: {exc}") from exc

    logger.info("Saved analysis %s for user %s", entry_id, entry.user_id)
    return entry_id


async def list_entries(user_id: str) -> list[HistoryEntry]:
    """Return every entry for user_id, newest first."""
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM analysis_results WHERE user_id = ? ORDER BY timestamp DESC",
                (user_id,),
            ) as cursor:
                rows = await cursor.fetchall()
    except aiosqlite.Error as exc:
        logger.error("Error getting analysis results for %s: %s", user_id, exc)
        raise StorageError(f"Could not load history: {exc}") from exc
    entries = [_row_to_entry(r) for r in rows]
    entries.sort(key=lambda e: e.timestamp, reverse=True)
    return entries


async def get_entry(entry_id: str) -> Optional[HistoryEntry]:
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            db.row_factory = aiosqlite.Row
            async with db.execute(
                "SELECT * FROM analysis_results WHERE id = ?", (entry_id,)
            ) as cursor:
                row = await cursor.fetchone()
    except aiosqlite.Error as exc:
        raise StorageError(f"Could not load entry {entry_id}: {exc}") from exc
    return _row_to_entry(row) if row else None


async def delete_entry(entry_id: str) -> bool:
    """Delete one entry and, best-effort, its image. Returns True if a row was deleted."""
    try:
        await _delete_image(entry_id)
    except OSError as exc:
        logger.warning("Could not delete image for %s: %s", entry_id, exc)
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            cursor = await db.execute("DELETE FROM analysis_results WHERE id = ?", (entry_id,))
            await db.commit()
            return cursor.rowcount > 0
    except aiosqlite.Error as exc:
        raise StorageError(f"Could not delete entry {entry_id}: {exc}") from exc


async def clear_all(user_id: str) -> int:
    """
    Delete every entry of user_id and, best-effort, each image.
    A failure on one entry is logged and skipped. Returns the number of rows removed.
    """
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            async with db.execute(
                "SELECT id, image_url FROM analysis_results WHERE user_id = ?", (user_id,)
            ) as cursor:
                rows = await cursor.fetchall()
    except aiosqlite.Error as exc:
        raise StorageError(f"Could not load history for clearing: {exc}") from exc

    removed = 0
    try:
        async with aiosqlite.connect(DB_PATH) as db:
            for entry_id, image_url in rows:
                if image_url:
                    try:
                        await _delete_image(entry_id)
                    except Exception as exc:
                        logger.warning("Could not delete image for %s: %s", entry_id, exc)
                try:
                    cursor = await db.execute(
                        "DELETE FROM analysis_results WHERE id = ?", (entry_id,)
                    )
                    await db.commit()
                    removed += cursor.rowcount
                except aiosqlite.Error as exc:
                    logger.error("Could not delete entry %s: %s", entry_id, exc)
    except aiosqlite.Error as exc:
        logger.error("Error clearing history for %s after %d deletions: %s", user_id, removed, exc)
        raise StorageError(f"Could not clear history: {exc}") from exc

    logger.info("Cleared %d/%d history entries for user %s", removed, len(rows), user_id)
    return removed
