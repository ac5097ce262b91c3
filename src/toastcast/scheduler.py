"""Toast scheduler - recurring tick that runs the toast pipeline for every user."""

import fcntl
import logging
import os
import signal
import threading
import time
from concurrent.futures import ThreadPoolExecutor, as_completed
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path

from croniter import croniter

from . import db
from .config import Config, load_config
from .eligibility import ToastType
from .pipeline import Pipeline, PipelineOutcome, PipelineResult, RunMode, build_pipeline

logger = logging.getLogger("toastcast.scheduler")


def _now(tz=timezone.utc):
    """Current time, patched in tests."""
    return datetime.now(tz)


# Graceful shutdown flag
_shutdown_requested = False


def _signal_handler(signum, frame):
    """Handle shutdown signals."""
    global _shutdown_requested
    logger.info("Received signal %d, shutting down gracefully...", signum)
    _shutdown_requested = True


@dataclass
class TickReport:
    started_at: datetime
    users: int = 0
    results: list[PipelineResult] = field(default_factory=list)

    def _count(self, *outcomes: PipelineOutcome) -> int:
        return sum(1 for r in self.results if r.outcome in outcomes)

    @property
    def generated(self) -> int:
        return self._count(PipelineOutcome.CREATED)

    @property
    def skipped(self) -> int:
        return self._count(
            PipelineOutcome.NOT_DUE, PipelineOutcome.ALREADY_GENERATED, PipelineOutcome.NO_NOTES,
        )

    @property
    def errors(self) -> int:
        return self._count(PipelineOutcome.FAILED)


@dataclass
class TriggerResult:
    success: bool
    message: str


class ToastScheduler:
    """
    Runs the pipeline for every eligible user once per tick.

    Ticks do not overlap within a process: a tick requested while another
    is still running is skipped, not queued. One user's failure never
    affects the others.
    """

    def __init__(self, config: Config, pipeline: Pipeline, user_store=None, mode: RunMode | None = None):
        self.config = config
        self.pipeline = pipeline
        self.user_store = user_store if user_store is not None else pipeline.user_store
        if mode is None:
            mode = RunMode.SIMULATED if config.simulated else RunMode.PRODUCTION
        self.mode = mode
        self._tick_lock = threading.Lock()

    def _is_eligible(self, user: db.User) -> bool:
        return not user.is_system and not self.config.is_excluded_user(user.id)

    def _process_user(self, user: db.User, now: datetime) -> PipelineResult:
        try:
            return self.pipeline.run_for_user(user, mode=self.mode, now=now)
        except Exception as e:
            logger.exception("Toast generation failed for user %s", user.id)
            return PipelineResult(user.id, PipelineOutcome.FAILED, detail=str(e))

    def run_tick(self, now: datetime | None = None) -> TickReport | None:
        """Run one tick. Returns None if a tick was already in progress."""
        if not self._tick_lock.acquire(blocking=False):
            logger.info("Previous tick still running, skipping this one")
            return None
        try:
            return self._run_tick(now or _now())
        finally:
            self._tick_lock.release()

    def _run_tick(self, now: datetime) -> TickReport:
        report = TickReport(started_at=now)

        if self.mode is RunMode.SIMULATED:
            logger.info("Skipping automatic toast generation in simulated mode")
            return report

        try:
            users = self.user_store.list_users()
        except Exception:
            logger.exception("Could not load users, tick aborted")
            return report

        users = [u for u in users if self._is_eligible(u)]
        report.users = len(users)
        logger.debug("Tick at %s: %d user(s) to check", now.isoformat(), len(users))

        workers = self.config.scheduler.max_workers
        if workers > 1 and len(users) > 1:
            with ThreadPoolExecutor(max_workers=workers, thread_name_prefix="toast") as pool:
                futures = [pool.submit(self._process_user, user, now) for user in users]
                for future in as_completed(futures):
                    report.results.append(future.result())
        else:
            for user in users:
                report.results.append(self._process_user(user, now))

        if report.generated or report.errors:
            logger.info(
                "Toast tick complete: %d generated, %d error(s), %d user(s) checked",
                report.generated, report.errors, report.users,
            )
        return report

    def run_for_user(self, user_id: int, toast_type: ToastType = ToastType.WEEKLY) -> PipelineResult:
        """On-demand generation for one user, ignoring the preferred day."""
        user = self.user_store.get_user(user_id)
        if user is None:
            raise LookupError(f"User {user_id} not found")
        return self.pipeline.run_for_user(user, toast_type, check_day=False, mode=self.mode)


def build_scheduler(config: Config) -> ToastScheduler:
    mode = RunMode.SIMULATED if config.simulated else RunMode.PRODUCTION
    return ToastScheduler(config, build_pipeline(config, mode))


def run_immediate_generation(config: Config, scheduler: ToastScheduler | None = None) -> TriggerResult:
    """Run one tick right now (administrative trigger)."""
    try:
        scheduler = scheduler or build_scheduler(config)
        report = scheduler.run_tick()
    except Exception as e:
        logger.exception("Immediate toast generation failed")
        return TriggerResult(False, f"Error: {str(e) or 'Unknown error'}")

    if report is None:
        return TriggerResult(False, "Toast generation already in progress")
    return TriggerResult(
        True,
        f"Immediate toast generation completed: {report.generated} generated, "
        f"{report.skipped} skipped, {report.errors} error(s)",
    )


def run_daemon(config: Config, scheduler: ToastScheduler | None = None) -> None:
    """
    Run the scheduler as a daemon, ticking on the configured cron cadence.
    Handles graceful shutdown via SIGTERM/SIGINT.
    """
    global _shutdown_requested

    # Acquire exclusive lock to prevent multiple daemon instances
    lock_path = Path(config.scheduler.lock_path)
    lock_file = open(lock_path, "w")
    try:
        fcntl.flock(lock_file, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except BlockingIOError:
        logger.error("Another scheduler daemon is already running. Exiting.")
        lock_file.close()
        return

    # Write PID to lock file for debugging
    lock_file.write(str(os.getpid()))
    lock_file.flush()

    signal.signal(signal.SIGTERM, _signal_handler)
    signal.signal(signal.SIGINT, _signal_handler)

    logger.info("STARTUP Toast scheduler starting (pid: %d)", os.getpid())
    logger.info("STARTUP Cadence: %s (UTC)", config.scheduler.cron)
    logger.info("STARTUP Max workers: %d", config.scheduler.max_workers)
    logger.info("STARTUP Run mode: %s", config.toasts.run_mode)

    db.init_db(config.db_path)
    scheduler = scheduler or build_scheduler(config)

    cron = croniter(config.scheduler.cron, _now())
    next_run = cron.get_next(datetime)
    logger.debug("Next tick at %s", next_run.isoformat())

    while not _shutdown_requested:
        now = _now()
        if now >= next_run:
            try:
                scheduler.run_tick(now)
            except Exception as e:
                logger.error("Error running toast tick: %s", e)
            # Ticks missed while busy are not replayed
            cron = croniter(config.scheduler.cron, _now())
            next_run = cron.get_next(datetime)
            logger.debug("Next tick at %s", next_run.isoformat())

        time.sleep(config.scheduler.idle_sleep)

    fcntl.flock(lock_file, fcntl.LOCK_UN)
    lock_file.close()

    logger.info("Shutdown complete.")


def main():
    """Entry point for scheduler script."""
    import argparse

    from .logging_setup import setup_logging

    parser = argparse.ArgumentParser(description="Toastcast toast scheduler")
    parser.add_argument("-c", "--config", help="Path to config file")
    parser.add_argument("--daemon", "-d", action="store_true", help="Run as daemon (continuous loop)")
    parser.add_argument("-v", "--verbose", action="store_true", help="Enable verbose logging")
    args = parser.parse_args()

    config = load_config(Path(args.config) if args.config else None)

    setup_logging(config, verbose=args.verbose, daemon_mode=args.daemon)

    if args.daemon:
        run_daemon(config)
    else:
        db.init_db(config.db_path)
        result = run_immediate_generation(config)
        logger.info(result.message)


if __name__ == "__main__":
    main()
