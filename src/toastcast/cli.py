"""CLI interface for local testing and administration."""

import argparse
import sys
from datetime import timedelta
from pathlib import Path

from . import db
from .config import load_config
from .eligibility import DAY_NAMES, ToastType, next_toast_date
from .logging_setup import setup_logging
from .pipeline import RunMode, build_pipeline
from .scheduler import ToastScheduler, _now, build_scheduler, run_daemon, run_immediate_generation
from .stores import MemoryNoteStore, SqliteStores


def _load(args):
    return load_config(Path(args.config) if args.config else None)


def cmd_init(args):
    """Initialize the database."""
    config = _load(args)
    db.init_db(config.db_path)
    print(f"Database initialized at {config.db_path} (schema v{db.SCHEMA_VERSION})")


def cmd_tick(args):
    """Run one scheduler tick now."""
    config = _load(args)
    result = run_immediate_generation(config)
    print(result.message)
    if not result.success:
        sys.exit(1)


def cmd_daemon(args):
    """Run the scheduler loop in the foreground."""
    run_daemon(_load(args))


def cmd_generate(args):
    """Generate a toast for one user, ignoring the preferred day."""
    config = _load(args)
    if args.simulate:
        # Seed the in-memory note store with the user's real notes
        stores = SqliteStores(config.db_path)
        pipeline = build_pipeline(config, RunMode.SIMULATED, note_store=_snapshot_notes(stores, args.user))
        scheduler = ToastScheduler(config, pipeline, mode=RunMode.SIMULATED)
    else:
        scheduler = build_scheduler(config)

    try:
        result = scheduler.run_for_user(args.user, ToastType(args.type))
    except LookupError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)

    if not result.created:
        print(f"No toast generated for user {args.user}: {result.outcome.value} {result.detail}".rstrip())
        return

    toast = result.toast
    label = "Simulated toast" if args.simulate else f"Toast {toast.id}"
    print(f"{label} ({toast.type}, {len(toast.note_ids)} note(s))")
    print(f"Audio: {toast.audio_marker or '(none)'}")
    print(f"\n{toast.content}")


def _snapshot_notes(stores: SqliteStores, user_id: int) -> MemoryNoteStore:
    memory = MemoryNoteStore()
    now = _now()
    for note in stores.get_notes_by_user_and_range(user_id, now - timedelta(days=366), now):
        memory.add_note(note.user_id, note.content, note.created_at)
    return memory


def cmd_regenerate_audio(args):
    """Re-narrate a toast whose audio is missing or failed."""
    config = _load(args)
    pipeline = build_pipeline(config)
    try:
        toast = pipeline.regenerate_audio(args.toast_id, force=args.force)
    except LookupError as e:
        print(f"Error: {e}", file=sys.stderr)
        sys.exit(1)
    print(f"Toast {toast.id}: {toast.audio_marker or '(no audio)'}")
    if toast.narration_error:
        sys.exit(1)


def cmd_toasts(args):
    """List a user's toasts."""
    config = _load(args)

    with db.get_db(config.db_path) as conn:
        toasts = db.list_toasts(conn, args.user, limit=args.limit)

    if not toasts:
        print("No toasts found")
        return

    for t in toasts:
        preview = t.content[:60].replace("\n", " ")
        if len(t.content) > 60:
            preview += "..."
        audio = "audio" if t.audio_url else (t.narration_error or "pending")
        print(f"[{t.id}] {t.type:8} {t.period_key} {audio:16} {preview}")


def cmd_next(args):
    """Show when a user's next weekly toast is due."""
    config = _load(args)

    with db.get_db(config.db_path) as conn:
        user = db.get_user(conn, args.user)
    if user is None:
        print(f"User {args.user} not found", file=sys.stderr)
        sys.exit(1)

    next_date = next_toast_date(user.timezone, user.weekly_toast_day, _now())
    day = DAY_NAMES[(next_date.weekday() + 1) % 7]
    print(f"Next toast for user {user.id}: {day} {next_date.date().isoformat()} ({user.timezone})")


def main():
    parser = argparse.ArgumentParser(description="Toastcast CLI")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose (DEBUG) logging")
    subparsers = parser.add_subparsers(dest="command", required=True)

    # init
    subparsers.add_parser("init", help="Initialize database")

    # tick
    subparsers.add_parser("tick", help="Run one scheduler tick now")

    # daemon
    subparsers.add_parser("daemon", help="Run the scheduler loop")

    # generate
    generate_parser = subparsers.add_parser("generate", help="Generate a toast for one user now")
    generate_parser.add_argument("-u", "--user", type=int, required=True, help="User ID")
    generate_parser.add_argument(
        "--type", default=ToastType.WEEKLY.value,
        choices=[t.value for t in ToastType], help="Toast type",
    )
    generate_parser.add_argument(
        "--simulate", action="store_true", help="Persist nothing (notes are read, not written)",
    )

    # regenerate-audio
    regen_parser = subparsers.add_parser("regenerate-audio", help="Re-narrate a toast")
    regen_parser.add_argument("toast_id", type=int, help="Toast ID")
    regen_parser.add_argument("--force", action="store_true", help="Replace existing audio too")

    # toasts
    toasts_parser = subparsers.add_parser("toasts", help="List a user's toasts")
    toasts_parser.add_argument("-u", "--user", type=int, required=True, help="User ID")
    toasts_parser.add_argument("-n", "--limit", type=int, default=20, help="Max toasts to show")

    # next
    next_parser = subparsers.add_parser("next", help="Show the next toast date for a user")
    next_parser.add_argument("-u", "--user", type=int, required=True, help="User ID")

    args = parser.parse_args()

    config = load_config(Path(args.config) if args.config else None)
    simulated = config.simulated or getattr(args, "simulate", False)
    setup_logging(
        config, verbose=args.verbose, daemon_mode=args.command == "daemon", simulated=simulated,
    )

    commands = {
        "init": cmd_init,
        "tick": cmd_tick,
        "daemon": cmd_daemon,
        "generate": cmd_generate,
        "regenerate-audio": cmd_regenerate_audio,
        "toasts": cmd_toasts,
        "next": cmd_next,
    }
    commands[args.command](args)


if __name__ == "__main__":
    main()
