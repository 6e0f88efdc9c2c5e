"""Single-flight run coordinator: read -> compute -> commit -> report.

At most one run is in flight per coordinator. What happens to a trigger
that arrives while a run is in flight is the ``overlap_policy``:

  reject    -- the trigger raises AlreadyRunning and is dropped.
  coalesce  -- the trigger raises AlreadyRunning(coalesced=True) and the
               in-flight caller runs exactly once more when it finishes,
               however many triggers arrived meanwhile.

Cancellation is cooperative. ``cancel()`` takes effect at the next stage
boundary (before read, compute or commit). A cancel that arrives while the
commit transaction is open waits for it to commit or roll back.
"""

from __future__ import annotations

import logging
import threading
import time
from datetime import datetime
from typing import Sequence

from tally.config.schema import AggregationConfig, RunnerConfig, TallyConfig
from tally.data.sources import DatabaseSources, InputSources, capture_snapshot
from tally.engine.aggregation import aggregate
from tally.errors import AlreadyRunning, RunCancelled, TallyError
from tally.runner.reporting import (
    STATUS_CANCELLED,
    STATUS_FAILED,
    STATUS_SUCCESS,
    DatabaseRunRecorder,
    Reporter,
    RunOutcome,
    log_run_summary,
)
from tally.storage.aggregation_store import AggregationStore
from tally.storage.database import Database

logger = logging.getLogger(__name__)


class RunCoordinator:
    """Drives aggregation runs against one store."""

    def __init__(
        self,
        sources: InputSources,
        store: AggregationStore,
        base_currency: str,
        *,
        settings: AggregationConfig | None = None,
        runner: RunnerConfig | None = None,
        reporters: Sequence[Reporter] = (log_run_summary,),
    ):
        self.sources = sources
        self.store = store
        self.base_currency = base_currency.upper()
        self.settings = settings or AggregationConfig()
        self.runner = runner or RunnerConfig()
        self.reporters = list(reporters)

        self._state = threading.Lock()
        self._running = False
        self._committing = False
        # None: nothing queued. Otherwise the dry_run flag of the queued rerun.
        self._pending: bool | None = None
        self._cancel_event = threading.Event()

    @classmethod
    def from_config(
        cls,
        config: TallyConfig,
        db: Database,
        reporters: Sequence[Reporter] | None = None,
    ) -> "RunCoordinator":
        """Coordinator over the database's own source tables and store."""
        if reporters is None:
            reporters = (log_run_summary, DatabaseRunRecorder(db))
        return cls(
            DatabaseSources(db),
            AggregationStore(db, config.base_currency),
            config.base_currency,
            settings=config.aggregation,
            runner=config.runner,
            reporters=reporters,
        )

    @property
    def overlap_policy(self) -> str:
        return self.runner.overlap_policy

    @property
    def is_running(self) -> bool:
        with self._state:
            return self._running

    # ------------------------------------------------------------------
    # Triggers
    # ------------------------------------------------------------------

    def trigger_now(self, dry_run: bool = False) -> RunOutcome:
        """Run read -> compute -> commit now and return the outcome.

        With ``dry_run`` the result is computed and reported but the store
        is left untouched.

        Raises:
            AlreadyRunning: another run is in flight.
            RunCancelled: ``cancel()`` was called before the commit stage.
            InputUnavailableError, DataIntegrityError, CommitError: the run
                failed; the previously committed snapshot is unchanged.
        """
        with self._state:
            if self._running:
                if self.overlap_policy == "coalesce":
                    # A queued real run wins over a queued dry run.
                    if self._pending is None:
                        self._pending = dry_run
                    else:
                        self._pending = self._pending and dry_run
                    logger.info("Aggregation in flight; trigger coalesced into one rerun")
                    raise AlreadyRunning(coalesced=True)
                logger.info("Aggregation in flight; trigger rejected")
                raise AlreadyRunning()
            self._running = True
            self._cancel_event.clear()

        try:
            return self._run_once(dry_run)
        finally:
            self._drain_and_release()

    def cancel(self) -> bool:
        """Request cancellation of the in-flight run.

        Also drops any coalesced rerun. Returns False when nothing is running.
        """
        with self._state:
            if not self._running:
                return False
            self._cancel_event.set()
            self._pending = None
            if self._committing:
                logger.info("Cancel requested during commit; deferred until the transaction resolves")
            else:
                logger.info("Cancel requested; run stops at the next stage boundary")
        return True

    # ------------------------------------------------------------------
    # Internals
    # ------------------------------------------------------------------

    def _drain_and_release(self) -> None:
        """Run any coalesced rerun, then release the single-flight guard."""
        while True:
            with self._state:
                if self._pending is None:
                    self._running = False
                    return
                dry_run = self._pending
                self._pending = None
                self._cancel_event.clear()

            logger.info("Starting coalesced aggregation rerun")
            try:
                self._run_once(dry_run)
            except TallyError as e:
                logger.error("Coalesced rerun failed: %s", e)
            except Exception:
                logger.exception("Coalesced rerun crashed")

    def _checkpoint(self, stage: str) -> None:
        if self._cancel_event.is_set():
            raise RunCancelled(stage)

    def _run_once(self, dry_run: bool) -> RunOutcome:
        outcome = RunOutcome(base_currency=self.base_currency, dry_run=dry_run)
        started = time.monotonic()
        logger.info("Starting aggregation run %s (base %s)", outcome.run_id, self.base_currency)

        try:
            self._checkpoint("read")
            snapshot = capture_snapshot(
                self.sources, self.base_currency, self.runner.read_timeout_seconds
            )

            self._checkpoint("compute")
            result = aggregate(
                snapshot.holdings,
                snapshot.quotes,
                snapshot.rates,
                self.base_currency,
                self.settings,
            )
            outcome.stats = result.stats
            outcome.result = result

            self._checkpoint("commit")
            if dry_run:
                logger.info("Dry run: skipping commit of %d rows", len(result))
            else:
                self._commit(result.holdings, outcome)

            outcome.status = STATUS_SUCCESS
            return outcome
        except RunCancelled as e:
            outcome.status = STATUS_CANCELLED
            outcome.error_type = type(e).__name__
            outcome.error_message = str(e)
            raise
        except Exception as e:
            outcome.status = STATUS_FAILED
            outcome.error_type = type(e).__name__
            outcome.error_message = str(e)
            if not isinstance(e, TallyError):
                logger.exception("Unexpected error in run %s", outcome.run_id)
            raise
        finally:
            outcome.duration_seconds = time.monotonic() - started
            outcome.completed_at = datetime.now().isoformat()
            self._report(outcome)

    def _commit(self, holdings, outcome: RunOutcome) -> None:
        with self._state:
            self._committing = True
        try:
            outcome.rows_written = self.store.commit(holdings, outcome.run_id)
        finally:
            with self._state:
                self._committing = False
        if self._cancel_event.is_set():
            logger.info("Run %s finished its commit before the deferred cancel", outcome.run_id)

    def _report(self, outcome: RunOutcome) -> None:
        for reporter in self.reporters:
            try:
                reporter(outcome)
            except Exception:
                logger.exception(
                    "Reporter %s failed for run %s",
                    getattr(reporter, "__name__", type(reporter).__name__),
                    outcome.run_id,
                )
