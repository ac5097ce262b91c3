"""Database operations for toastcast."""

import json
import logging
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Iterator

logger = logging.getLogger("toastcast.db")

SCHEMA_PATH = Path(__file__).parent / "schema.sql"

# Ordered (version, script) pairs applied on top of schema.sql (version 1).
# Append only; never edit a shipped entry.
MIGRATIONS: list[tuple[int, str]] = [
    (2, """
        ALTER TABLE toasts ADD COLUMN narration_error TEXT;
        ALTER TABLE toasts ADD COLUMN narrated_at TEXT;
    """),
]

SCHEMA_VERSION = MIGRATIONS[-1][0] if MIGRATIONS else 1


@dataclass
class User:
    id: int
    name: str = ""
    timezone: str = "UTC"
    weekly_toast_day: int = 0
    voice_style: str = "friendly"
    is_system: bool = False


@dataclass
class Note:
    id: int
    user_id: int
    content: str | None
    created_at: datetime


@dataclass
class Toast:
    id: int
    user_id: int
    content: str
    type: str
    interval_start: datetime
    interval_end: datetime
    period_key: str
    note_ids: list[int] = field(default_factory=list)
    audio_url: str | None = None
    narration_error: str | None = None
    created_at: datetime | None = None
    narrated_at: datetime | None = None

    @property
    def audio_marker(self) -> str | None:
        """Audio URL, or an "Error: ..." marker when narration failed.

        None means narration has not completed yet.
        """
        if self.audio_url:
            return self.audio_url
        if self.narration_error:
            from .narration import NarrationError
            return NarrationError.parse(self.narration_error).marker
        return None


def to_db_time(value: datetime) -> str:
    """Format an aware datetime as naive UTC text (matches datetime('now'))."""
    if value.tzinfo is not None:
        value = value.astimezone(timezone.utc).replace(tzinfo=None)
    return value.isoformat(sep=" ", timespec="microseconds")


def from_db_time(value: str | None) -> datetime | None:
    """Parse a naive UTC timestamp from the database into an aware datetime."""
    if not value:
        return None
    parsed = datetime.fromisoformat(value)
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


def get_schema_version(conn: sqlite3.Connection) -> int:
    return conn.execute("PRAGMA user_version").fetchone()[0]


def _apply_migrations(conn: sqlite3.Connection) -> None:
    """Bring the schema up to SCHEMA_VERSION, one recorded step at a time."""
    version = get_schema_version(conn)
    if version == 0:
        conn.executescript(SCHEMA_PATH.read_text())
        conn.execute("PRAGMA user_version = 1")
        version = 1
        logger.info("Created baseline schema")

    for target, script in MIGRATIONS:
        if target <= version:
            continue
        conn.executescript(script)
        conn.execute(f"PRAGMA user_version = {int(target)}")
        version = target
        logger.info("Applied schema migration %d", target)


def init_db(db_path: Path) -> None:
    """Initialize database with schema and pending migrations."""
    Path(db_path).parent.mkdir(parents=True, exist_ok=True)
    with sqlite3.connect(db_path) as conn:
        _apply_migrations(conn)


@contextmanager
def get_db(db_path: Path) -> Iterator[sqlite3.Connection]:
    """Get database connection with row factory."""
    # timeout=30.0 waits up to 30s for locks instead of failing immediately
    conn = sqlite3.connect(db_path, timeout=30.0)
    conn.execute("PRAGMA journal_mode=WAL")
    conn.row_factory = sqlite3.Row
    try:
        yield conn
        conn.commit()
    finally:
        conn.close()


# ---------------------------------------------------------------------------
# Users
# ---------------------------------------------------------------------------


def _row_to_user(row: sqlite3.Row) -> User:
    return User(
        id=row["id"],
        name=row["name"],
        timezone=row["timezone"],
        weekly_toast_day=row["weekly_toast_day"],
        voice_style=row["voice_style"],
        is_system=bool(row["is_system"]),
    )


def create_user(
    conn: sqlite3.Connection,
    user_id: int | None = None,
    name: str = "",
    timezone: str = "UTC",
    weekly_toast_day: int = 0,
    voice_style: str = "friendly",
    is_system: bool = False,
) -> int:
    """Create a user row. Used by seeding, the CLI and tests."""
    cursor = conn.execute(
        """
        INSERT INTO users (id, name, timezone, weekly_toast_day, voice_style, is_system)
        VALUES (?, ?, ?, ?, ?, ?)
        RETURNING id
        """,
        (user_id, name, timezone, weekly_toast_day, voice_style, int(is_system)),
    )
    return cursor.fetchone()[0]


def get_user(conn: sqlite3.Connection, user_id: int) -> User | None:
    row = conn.execute("SELECT * FROM users WHERE id = ?", (user_id,)).fetchone()
    return _row_to_user(row) if row else None


def list_users(conn: sqlite3.Connection) -> list[User]:
    cursor = conn.execute("SELECT * FROM users ORDER BY id")
    return [_row_to_user(row) for row in cursor.fetchall()]


# ---------------------------------------------------------------------------
# Notes
# ---------------------------------------------------------------------------


def create_note(
    conn: sqlite3.Connection,
    user_id: int,
    content: str | None,
    created_at: datetime | None = None,
) -> int:
    if created_at is None:
        cursor = conn.execute(
            "INSERT INTO notes (user_id, content) VALUES (?, ?) RETURNING id",
            (user_id, content),
        )
    else:
        cursor = conn.execute(
            "INSERT INTO notes (user_id, content, created_at) VALUES (?, ?, ?) RETURNING id",
            (user_id, content, to_db_time(created_at)),
        )
    return cursor.fetchone()[0]


def get_notes_in_range(
    conn: sqlite3.Connection,
    user_id: int,
    start: datetime,
    end: datetime,
) -> list[Note]:
    """Notes created in [start, end], oldest first."""
    cursor = conn.execute(
        """
        SELECT id, user_id, content, created_at FROM notes
        WHERE user_id = ? AND created_at >= ? AND created_at <= ?
        ORDER BY created_at, id
        """,
        (user_id, to_db_time(start), to_db_time(end)),
    )
    return [
        Note(
            id=row["id"],
            user_id=row["user_id"],
            content=row["content"],
            created_at=from_db_time(row["created_at"]),
        )
        for row in cursor.fetchall()
    ]


# ---------------------------------------------------------------------------
# Toasts
# ---------------------------------------------------------------------------


def _row_to_toast(row: sqlite3.Row) -> Toast:
    return Toast(
        id=row["id"],
        user_id=row["user_id"],
        content=row["content"],
        type=row["type"],
        interval_start=from_db_time(row["interval_start"]),
        interval_end=from_db_time(row["interval_end"]),
        period_key=row["period_key"],
        note_ids=json.loads(row["note_ids"] or "[]"),
        audio_url=row["audio_url"],
        narration_error=row["narration_error"],
        created_at=from_db_time(row["created_at"]),
        narrated_at=from_db_time(row["narrated_at"]),
    )


def get_toast(conn: sqlite3.Connection, toast_id: int) -> Toast | None:
    row = conn.execute("SELECT * FROM toasts WHERE id = ?", (toast_id,)).fetchone()
    return _row_to_toast(row) if row else None


def list_toasts(conn: sqlite3.Connection, user_id: int, limit: int = 20) -> list[Toast]:
    cursor = conn.execute(
        "SELECT * FROM toasts WHERE user_id = ? ORDER BY created_at DESC, id DESC LIMIT ?",
        (user_id, limit),
    )
    return [_row_to_toast(row) for row in cursor.fetchall()]


def find_overlapping_toasts(
    conn: sqlite3.Connection,
    user_id: int,
    toast_type: str,
    start: datetime,
    end: datetime,
) -> list[Toast]:
    """Toasts of the same type whose [interval_start, interval_end) overlaps [start, end)."""
    cursor = conn.execute(
        """
        SELECT * FROM toasts
        WHERE user_id = ? AND type = ?
          AND interval_start < ? AND interval_end > ?
        ORDER BY interval_end DESC
        """,
        (user_id, toast_type, to_db_time(end), to_db_time(start)),
    )
    return [_row_to_toast(row) for row in cursor.fetchall()]


def insert_toast_guarded(
    conn: sqlite3.Connection,
    user_id: int,
    content: str,
    note_ids: list[int],
    toast_type: str,
    interval_start: datetime,
    interval_end: datetime,
    period_key: str,
) -> int | None:
    """
    Insert a toast unless one of the same type already overlaps its interval.

    The overlap check and the insert share one BEGIN IMMEDIATE transaction,
    so a concurrent writer cannot slip in between them. Returns the new id,
    or None when an overlapping toast exists or the period is already taken.
    """
    if conn.in_transaction:
        conn.commit()
    conn.execute("BEGIN IMMEDIATE")
    try:
        if find_overlapping_toasts(conn, user_id, toast_type, interval_start, interval_end):
            conn.rollback()
            return None
        cursor = conn.execute(
            """
            INSERT INTO toasts
                (user_id, content, note_ids, type, interval_start, interval_end, period_key)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            RETURNING id
            """,
            (
                user_id, content, json.dumps(note_ids), toast_type,
                to_db_time(interval_start), to_db_time(interval_end), period_key,
            ),
        )
        toast_id = cursor.fetchone()[0]
    except sqlite3.IntegrityError as e:
        conn.rollback()
        logger.debug("Toast insert rejected for user %s: %s", user_id, e)
        return None
    except Exception:
        conn.rollback()
        raise
    conn.commit()
    return toast_id


def set_toast_narration(
    conn: sqlite3.Connection,
    toast_id: int,
    audio_url: str | None,
    narration_error: str | None,
    overwrite: bool = False,
) -> bool:
    """
    Record the terminal narration state of a toast.

    Without overwrite the update only applies once (narrated_at still NULL).
    Returns True if a row was updated.
    """
    query = """
        UPDATE toasts
        SET audio_url = ?, narration_error = ?, narrated_at = datetime('now')
        WHERE id = ?
    """
    if not overwrite:
        query += " AND narrated_at IS NULL"
    cursor = conn.execute(query, (audio_url, narration_error, toast_id))
    return cursor.rowcount > 0


# ---------------------------------------------------------------------------
# Activity log
# ---------------------------------------------------------------------------


def log_activity(
    conn: sqlite3.Connection,
    user_id: int,
    event_type: str,
    metadata: dict | None = None,
) -> int:
    cursor = conn.execute(
        "INSERT INTO activity_log (user_id, event_type, metadata) VALUES (?, ?, ?) RETURNING id",
        (user_id, event_type, json.dumps(metadata or {})),
    )
    return cursor.fetchone()[0]


def get_activity(conn: sqlite3.Connection, user_id: int) -> list[dict]:
    cursor = conn.execute(
        "SELECT id, event_type, metadata, created_at FROM activity_log WHERE user_id = ? ORDER BY id",
        (user_id,),
    )
    return [
        {
            "id": row["id"],
            "event_type": row["event_type"],
            "metadata": json.loads(row["metadata"]),
            "created_at": row["created_at"],
        }
        for row in cursor.fetchall()
    ]
