"""Run coordination: single-flight runs, periodic scheduling, run reporting.

Public API:
  RunCoordinator        -- trigger_now() / cancel() with an overlap policy
  AggregationScheduler  -- interval or daily-at driver for a coordinator
  RunOutcome            -- per-run summary passed to reporters
"""

from tally.runner.coordinator import RunCoordinator
from tally.runner.reporting import DatabaseRunRecorder, RunOutcome, log_run_summary
from tally.runner.scheduler import AggregationScheduler

__all__ = [
    "AggregationScheduler",
    "DatabaseRunRecorder",
    "RunCoordinator",
    "RunOutcome",
    "log_run_summary",
]
