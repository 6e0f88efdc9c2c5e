"""Periodic driver for the run coordinator.

Built on the ``schedule`` library: either every N seconds or once a day at
HH:MM local time. The loop waits on a threading.Event, so ``stop()`` ends it
within one poll interval. A failed run is logged and the next tick fires as
usual.
"""

from __future__ import annotations

import contextlib
import fcntl
import logging
import os
import threading
from datetime import datetime
from pathlib import Path
from typing import IO

import schedule

from tally.config.schema import SchedulerConfig
from tally.errors import AlreadyRunning, TallyError
from tally.runner.coordinator import RunCoordinator

logger = logging.getLogger(__name__)


# ---------------------------------------------------------------------------
# Process lock
# ---------------------------------------------------------------------------

def acquire_lock(lock_file: str | Path) -> IO[str] | None:
    """Acquire a file lock so only one scheduler drives a store.

    Returns the lock file handle if acquired, None if another instance
    holds it.
    """
    path = Path(lock_file).expanduser()
    path.parent.mkdir(parents=True, exist_ok=True)
    lock_fd = open(path, "w")  # noqa: SIM115
    try:
        fcntl.flock(lock_fd, fcntl.LOCK_EX | fcntl.LOCK_NB)
    except OSError:
        lock_fd.close()
        return None
    lock_fd.write(str(os.getpid()))
    lock_fd.flush()
    return lock_fd


def release_lock(lock_fd: IO[str] | None, lock_file: str | Path) -> None:
    """Release the file lock."""
    if lock_fd is None:
        return
    try:
        fcntl.flock(lock_fd, fcntl.LOCK_UN)
        lock_fd.close()
    except OSError:
        pass
    with contextlib.suppress(OSError):
        os.unlink(Path(lock_file).expanduser())


# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------

class AggregationScheduler:
    """Fires ``coordinator.trigger_now()`` on a fixed schedule."""

    def __init__(self, coordinator: RunCoordinator, config: SchedulerConfig | None = None):
        self.coordinator = coordinator
        self.config = config or SchedulerConfig()
        self._scheduler = schedule.Scheduler()
        self._stop_event = threading.Event()
        self._thread: threading.Thread | None = None
        self._job: schedule.Job | None = None
        self.ticks = 0
        self.failures = 0
        self.last_run_time: datetime | None = None
        self.last_error: str | None = None

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    @property
    def next_run(self) -> datetime | None:
        return self._job.next_run if self._job is not None else None

    def describe(self) -> str:
        if self.config.interval_seconds is not None:
            return f"every {self.config.interval_seconds}s"
        return f"daily at {self.config.daily_at}"

    def _install_job(self) -> None:
        self._scheduler.clear()
        if self.config.interval_seconds is not None:
            self._job = self._scheduler.every(self.config.interval_seconds).seconds.do(self._tick)
        else:
            self._job = self._scheduler.every().day.at(self.config.daily_at).do(self._tick)

    def _tick(self) -> None:
        """One scheduled trigger. Never raises."""
        self.ticks += 1
        self.last_run_time = datetime.now()
        try:
            self.coordinator.trigger_now()
            self.last_error = None
        except AlreadyRunning as e:
            logger.info("Scheduled tick skipped: %s", e)
        except TallyError as e:
            self.failures += 1
            self.last_error = str(e)
            logger.error("Scheduled aggregation failed: %s", e)
        except Exception as e:
            self.failures += 1
            self.last_error = str(e)
            logger.exception("Scheduled aggregation crashed")

    def run_pending(self) -> None:
        self._scheduler.run_pending()

    def run_forever(self, run_immediately: bool = False) -> None:
        """Block, firing runs on schedule until ``stop()`` is called."""
        self._install_job()
        logger.info("Scheduler started (%s), next run at %s", self.describe(), self.next_run)
        if run_immediately:
            self._tick()
        while not self._stop_event.is_set():
            self._scheduler.run_pending()
            self._stop_event.wait(self.config.poll_seconds)
        self._scheduler.clear()
        logger.info("Scheduler stopped after %d tick(s)", self.ticks)

    def start(self, run_immediately: bool = False) -> None:
        """Run the loop in a background daemon thread."""
        if self.is_running:
            logger.warning("Scheduler already running")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(
            target=self.run_forever,
            kwargs={"run_immediately": run_immediately},
            name="tally-scheduler",
            daemon=True,
        )
        self._thread.start()

    def stop(self, cancel_inflight: bool = False, timeout: float | None = None) -> None:
        """Stop the loop; optionally ask the in-flight run to cancel."""
        self._stop_event.set()
        if cancel_inflight:
            self.coordinator.cancel()
        if self._thread is not None:
            self._thread.join(timeout)
            self._thread = None


def run_daemon(
    coordinator: RunCoordinator,
    config: SchedulerConfig,
    run_immediately: bool = False,
) -> bool:
    """Run the scheduler in the foreground under the process lock.

    Returns False without running when another scheduler holds the lock.
    """
    lock_fd = acquire_lock(config.lock_file)
    if lock_fd is None:
        logger.warning("Another scheduler instance is running, exiting")
        return False

    scheduler = AggregationScheduler(coordinator, config)
    try:
        scheduler.run_forever(run_immediately=run_immediately)
    except KeyboardInterrupt:
        logger.info("Scheduler interrupted")
        scheduler.stop(cancel_inflight=True)
    finally:
        release_lock(lock_fd, config.lock_file)
    return True
