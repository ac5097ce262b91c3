"""Store adapters consumed by the toast pipeline.

SqliteStores is the production adapter for users, notes, toasts and the
activity log. MemoryNoteStore, NullToastStore, NullActivityLog and NullNarrator
back simulated runs behind the same method names, so the pipeline never
branches on where its data lives.
"""

import itertools
import logging
import threading
from datetime import datetime, timezone
from pathlib import Path

from . import db
from .eligibility import Window
from .guard import AlreadyGeneratedError
from .narration import NarrationError, NarrationResult

logger = logging.getLogger("toastcast.stores")


def _type_value(toast_type) -> str:
    return getattr(toast_type, "value", toast_type)


class SqliteStores:
    """All four collaborators over one sqlite database.

    Each call opens its own connection, so one instance can be shared by
    worker threads.
    """

    def __init__(self, db_path: Path):
        self.db_path = Path(db_path)

    # User store

    def get_user(self, user_id: int) -> db.User | None:
        with db.get_db(self.db_path) as conn:
            return db.get_user(conn, user_id)

    def list_users(self) -> list[db.User]:
        with db.get_db(self.db_path) as conn:
            return db.list_users(conn)

    # Note store

    def get_notes_by_user_and_range(
        self, user_id: int, start: datetime, end: datetime,
    ) -> list[db.Note]:
        with db.get_db(self.db_path) as conn:
            return db.get_notes_in_range(conn, user_id, start, end)

    # Toast store

    def query_toasts_by_user_and_type(
        self, user_id: int, toast_type, start: datetime, end: datetime,
    ) -> list[db.Toast]:
        with db.get_db(self.db_path) as conn:
            return db.find_overlapping_toasts(conn, user_id, _type_value(toast_type), start, end)

    def create_toast(
        self,
        user_id: int,
        content: str,
        note_ids: list[int],
        toast_type,
        window: Window,
    ) -> db.Toast:
        """Insert a toast; raises AlreadyGeneratedError if the window is taken."""
        type_value = _type_value(toast_type)
        with db.get_db(self.db_path) as conn:
            toast_id = db.insert_toast_guarded(
                conn,
                user_id=user_id,
                content=content,
                note_ids=note_ids,
                toast_type=type_value,
                interval_start=window.start,
                interval_end=window.end,
                period_key=window.period_key,
            )
            if toast_id is None:
                raise AlreadyGeneratedError(user_id, type_value)
            return db.get_toast(conn, toast_id)

    def update_toast_narration(
        self,
        toast_id: int,
        audio_url: str | None,
        narration_error: str | None,
        overwrite: bool = False,
    ) -> db.Toast | None:
        """Store the narration outcome. Returns the updated toast, or None if unchanged."""
        with db.get_db(self.db_path) as conn:
            updated = db.set_toast_narration(
                conn, toast_id, audio_url, narration_error, overwrite=overwrite,
            )
            if not updated:
                logger.warning("Narration for toast %d already recorded, not overwriting", toast_id)
                return None
            return db.get_toast(conn, toast_id)

    def get_toast(self, toast_id: int) -> db.Toast | None:
        with db.get_db(self.db_path) as conn:
            return db.get_toast(conn, toast_id)

    # Activity log

    def log_activity(self, user_id: int, event_type: str, metadata: dict | None = None) -> None:
        with db.get_db(self.db_path) as conn:
            db.log_activity(conn, user_id, event_type, metadata)


class MemoryNoteStore:
    """Session-scoped note store for simulated runs."""

    def __init__(self):
        self._notes: list[db.Note] = []
        self._ids = itertools.count(1)
        self._lock = threading.Lock()

    def add_note(self, user_id: int, content: str, created_at: datetime | None = None) -> db.Note:
        with self._lock:
            note = db.Note(
                id=next(self._ids),
                user_id=user_id,
                content=content,
                created_at=created_at or datetime.now(timezone.utc),
            )
            self._notes.append(note)
            return note

    def get_notes_by_user_and_range(
        self, user_id: int, start: datetime, end: datetime,
    ) -> list[db.Note]:
        with self._lock:
            matching = [
                n for n in self._notes
                if n.user_id == user_id and start <= n.created_at <= end
            ]
        return sorted(matching, key=lambda n: (n.created_at, n.id))

    def clear(self, user_id: int | None = None) -> None:
        with self._lock:
            if user_id is None:
                self._notes.clear()
            else:
                self._notes = [n for n in self._notes if n.user_id != user_id]


class NullToastStore:
    """Toast store that persists nothing. Never reports prior toasts."""

    def query_toasts_by_user_and_type(self, user_id, toast_type, start, end) -> list[db.Toast]:
        return []

    def create_toast(self, user_id, content, note_ids, toast_type, window: Window) -> db.Toast:
        return db.Toast(
            id=0,
            user_id=user_id,
            content=content,
            type=_type_value(toast_type),
            interval_start=window.start,
            interval_end=window.end,
            period_key=window.period_key,
            note_ids=list(note_ids),
            created_at=datetime.now(timezone.utc),
        )

    def update_toast_narration(self, toast_id, audio_url, narration_error, overwrite=False):
        return None

    def get_toast(self, toast_id):
        return None


class NullActivityLog:
    def log_activity(self, user_id: int, event_type: str, metadata: dict | None = None) -> None:
        logger.debug("Simulated activity for user %s: %s %s", user_id, event_type, metadata or {})


class NullNarrator:
    """Narrator for simulated runs: no speech provider calls, no audio uploads."""

    def narrate(self, text: str, voice_style: str | None, user_id: int) -> NarrationResult:
        logger.debug("Simulated narration for user %s skipped (%d chars)", user_id, len(text))
        return NarrationResult.failure(NarrationError.NOT_CONFIGURED)
