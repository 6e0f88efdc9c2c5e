"""Exception types raised by the aggregation engine and its run coordinator.

Error taxonomy:
- InputUnavailableError: a ledger / quote / rate read failed or timed out.
- DataIntegrityError: an input record is non-numeric, non-finite or ambiguous.
- CommitError: the transactional write to the aggregation store failed and
  was rolled back.
- AlreadyRunning: single-flight rejection (or coalescing) of a trigger. A
  control signal, not a fault.
- RunCancelled: a run stopped cooperatively at a stage boundary.

Missing quotes or exchange rates are never errors; they are counted in
``AggregationStats``.
"""

from __future__ import annotations

from typing import Any

__all__ = [
    "TallyError",
    "InputUnavailableError",
    "DataIntegrityError",
    "CommitError",
    "AlreadyRunning",
    "RunCancelled",
]


class TallyError(Exception):
    """Base class for all aggregation run failures and control signals."""


class InputUnavailableError(TallyError):
    """Reading an input snapshot failed or exceeded its timeout."""

    def __init__(self, source: str, message: str) -> None:
        self.source = source
        super().__init__(f"{source}: {message}")


class DataIntegrityError(TallyError, ValueError):
    """An input record cannot be aggregated.

    ``record`` holds the offending record (or ``None`` when the problem spans
    several records) so operators can locate it in the ledger.
    """

    def __init__(self, message: str, record: Any = None) -> None:
        self.record = record
        if record is not None:
            message = f"{message} (record: {record!r})"
        super().__init__(message)


class CommitError(TallyError):
    """The aggregation store transaction failed and was rolled back."""


class AlreadyRunning(TallyError):
    """A run is already in flight.

    ``coalesced`` is True when the trigger was recorded and will be honoured
    by one extra run right after the in-flight run finishes.
    """

    def __init__(self, coalesced: bool = False) -> None:
        self.coalesced = coalesced
        if coalesced:
            message = "Aggregation already running; rerun queued"
        else:
            message = "Aggregation already running; trigger rejected"
        super().__init__(message)


class RunCancelled(TallyError):
    """A run was cancelled before it reached the commit stage."""

    def __init__(self, stage: str) -> None:
        self.stage = stage
        super().__init__(f"Run cancelled before {stage}")
