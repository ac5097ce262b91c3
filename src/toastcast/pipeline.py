"""Per-user toast pipeline: eligibility, guard, notes, text, persist, narrate, log."""

import logging
from dataclasses import dataclass, replace
from datetime import datetime, timezone
from enum import Enum

from . import db
from .config import Config
from .eligibility import ToastType, generation_window, is_toast_day
from .guard import AlreadyGeneratedError, has_been_generated
from .narration import build_narrator
from .stores import MemoryNoteStore, NullActivityLog, NullNarrator, NullToastStore, SqliteStores
from .synthesis import ContentSynthesizer, NoReflectionsError, build_language_provider

logger = logging.getLogger("toastcast.pipeline")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


class RunMode(str, Enum):
    PRODUCTION = "production"
    SIMULATED = "simulated"  # no-op persistence, day check bypassed


class PipelineOutcome(str, Enum):
    CREATED = "created"
    NOT_DUE = "not_due"
    ALREADY_GENERATED = "already_generated"
    NO_NOTES = "no_notes"
    FAILED = "failed"


@dataclass
class PipelineResult:
    user_id: int
    outcome: PipelineOutcome
    toast: db.Toast | None = None
    detail: str = ""

    @property
    def created(self) -> bool:
        return self.outcome is PipelineOutcome.CREATED


class Pipeline:
    """
    Generates one toast for one user.

    Collaborators are duck-typed store adapters (see stores.py). Exceptions
    raised before the toast row exists propagate to the caller; once the
    row is written, narration and activity-log problems are recorded but
    never undo it.
    """

    def __init__(
        self,
        toast_store,
        note_store,
        synthesizer: ContentSynthesizer,
        narrator,
        user_store=None,
        activity_log=None,
        default_voice_style: str = "friendly",
        clock=_utcnow,
    ):
        self.toast_store = toast_store
        self.note_store = note_store
        self.synthesizer = synthesizer
        self.narrator = narrator
        self.user_store = user_store
        self.activity_log = activity_log or NullActivityLog()
        self.default_voice_style = default_voice_style
        self._clock = clock

    def _skip(self, user: db.User, outcome: PipelineOutcome, detail: str) -> PipelineResult:
        logger.debug("Skipping user %s: %s", user.id, detail)
        return PipelineResult(user.id, outcome, detail=detail)

    def run_for_user(
        self,
        user: db.User,
        toast_type: ToastType = ToastType.WEEKLY,
        check_day: bool = True,
        mode: RunMode = RunMode.PRODUCTION,
        now: datetime | None = None,
    ) -> PipelineResult:
        now = now or self._clock()
        toast_type = ToastType(toast_type)

        if check_day and mode is RunMode.PRODUCTION:
            if not is_toast_day(user.timezone, user.weekly_toast_day, now):
                return self._skip(user, PipelineOutcome.NOT_DUE, "not toast day")

        window = generation_window(toast_type, now, user.timezone)

        if has_been_generated(self.toast_store, user.id, toast_type.value, window.start, window.end):
            return self._skip(user, PipelineOutcome.ALREADY_GENERATED, "already generated")

        notes = self.note_store.get_notes_by_user_and_range(user.id, window.start, window.end)
        notes = [n for n in sorted(notes, key=lambda n: (n.created_at, n.id)) if n.content and n.content.strip()]
        if not notes:
            return self._skip(user, PipelineOutcome.NO_NOTES, "no notes in window")

        try:
            content = self.synthesizer.synthesize([n.content for n in notes])
        except NoReflectionsError:
            return self._skip(user, PipelineOutcome.NO_NOTES, "no reflections")

        # Durability checkpoint: the text is stored before any narration attempt
        try:
            toast = self.toast_store.create_toast(
                user.id, content, [n.id for n in notes], toast_type, window,
            )
        except AlreadyGeneratedError:
            return self._skip(user, PipelineOutcome.ALREADY_GENERATED, "generated concurrently")

        logger.info(
            "Created %s toast %d for user %s from %d note(s)",
            toast_type.value, toast.id, user.id, len(notes),
        )

        toast = self._narrate(toast, user)
        self._log_activity(user.id, toast, len(notes))
        return PipelineResult(user.id, PipelineOutcome.CREATED, toast=toast)

    def _voice_style(self, user: db.User) -> str:
        return (user.voice_style or "").strip() or self.default_voice_style

    def _narrate(self, toast: db.Toast, user: db.User, overwrite: bool = False) -> db.Toast:
        result = self.narrator.narrate(toast.content, self._voice_style(user), user.id)
        error = result.error.value if result.error else None
        if result.ok:
            logger.info("Toast %d narrated: %s", toast.id, result.url)
        else:
            logger.warning("Toast %d saved without audio (%s)", toast.id, error)

        unsaved = replace(toast, audio_url=result.url, narration_error=error)
        try:
            updated = self.toast_store.update_toast_narration(
                toast.id, result.url, error, overwrite=overwrite,
            )
        except Exception:
            # The toast text is already durable; a later regenerate-audio can repair this
            logger.exception("Could not record narration for toast %d", toast.id)
            return unsaved
        return updated or unsaved

    def _log_activity(self, user_id: int, toast: db.Toast, note_count: int) -> None:
        try:
            self.activity_log.log_activity(user_id, "toast_generated", {
                "toast_id": toast.id,
                "type": toast.type,
                "note_count": note_count,
                "has_audio": bool(toast.audio_url),
            })
        except Exception as e:
            logger.warning("Failed to log activity for user %s: %s", user_id, e)

    def regenerate_audio(self, toast_id: int, force: bool = False) -> db.Toast:
        """Re-narrate a stored toast whose audio is missing or failed.

        Uses the owner's current voice style. A toast that already has audio
        is returned unchanged unless `force` is set.
        """
        toast = self.toast_store.get_toast(toast_id)
        if toast is None:
            raise LookupError(f"Toast {toast_id} not found")
        if toast.audio_url and not force:
            logger.info("Toast %d already has audio, not regenerating", toast_id)
            return toast

        user = self.user_store.get_user(toast.user_id) if self.user_store else None
        if user is None:
            user = db.User(id=toast.user_id, voice_style="")
        return self._narrate(toast, user, overwrite=True)


def build_pipeline(
    config: Config,
    mode: RunMode = RunMode.PRODUCTION,
    note_store=None,
) -> Pipeline:
    """Wire a pipeline from config.

    Simulated runs read users from the database but take notes from an
    in-memory store. They persist nothing and never call the speech provider.
    """
    sqlite_stores = SqliteStores(config.db_path)
    synthesizer = ContentSynthesizer(build_language_provider(config))
    voice_style = config.toasts.default_voice_style

    if mode is RunMode.SIMULATED:
        return Pipeline(
            toast_store=NullToastStore(),
            note_store=note_store if note_store is not None else MemoryNoteStore(),
            synthesizer=synthesizer,
            narrator=NullNarrator(),
            user_store=sqlite_stores,
            activity_log=NullActivityLog(),
            default_voice_style=voice_style,
        )

    return Pipeline(
        toast_store=sqlite_stores,
        note_store=note_store if note_store is not None else sqlite_stores,
        synthesizer=synthesizer,
        narrator=build_narrator(config),
        user_store=sqlite_stores,
        activity_log=sqlite_stores if config.toasts.activity_logging else NullActivityLog(),
        default_voice_style=voice_style,
    )
