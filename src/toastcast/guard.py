"""Idempotency guard: at most one toast per user, type and window."""

import logging
from datetime import datetime

logger = logging.getLogger("toastcast.guard")


class AlreadyGeneratedError(Exception):
    """A toast of this type already covers (part of) the requested window."""

    def __init__(self, user_id: int, toast_type: str):
        super().__init__(f"A {toast_type} toast has already been generated for user {user_id} in this period")
        self.user_id = user_id
        self.toast_type = toast_type


def has_been_generated(
    toast_store,
    user_id: int,
    toast_type: str,
    window_start: datetime,
    window_end: datetime,
) -> bool:
    """
    Check whether a toast of `toast_type` already overlaps the window.

    This is the early check that avoids provider calls. The store repeats it
    atomically when inserting (see ToastStore.create_toast), which closes
    the gap left by slow synthesis between this check and the write.
    """
    existing = toast_store.query_toasts_by_user_and_type(
        user_id, toast_type, window_start, window_end,
    )
    if existing:
        logger.debug(
            "User %s already has %s toast %d (interval %s - %s)",
            user_id, toast_type, existing[0].id,
            existing[0].interval_start, existing[0].interval_end,
        )
        return True
    return False
