"""Default values for the aggregation engine, runner and scheduler."""

# ---------------------------------------------------------------------------
# Aggregation
# ---------------------------------------------------------------------------
BASE_CURRENCY = "CNY"

# Ledger rows whose instrument id starts with this prefix are cash balances.
CASH_PREFIX = "CASH_"

# Denominator policy for cost/value share percentages:
#   all       -- every row, including rows missing a quote or a rate
#   complete  -- only rows with both a quote and a rate
SHARE_BASES = ("all", "complete")
SHARE_BASIS = "all"

# ---------------------------------------------------------------------------
# Treasury normalization
# ---------------------------------------------------------------------------
TREASURY = {
    "enabled": True,
    "instrument_id": "US_TBill",
    "display_name": "US Treasury Bills Aggregate",
    "par_price": 1.0,
    "par_tolerance": 0.01,
    "asset_classes": ["BOND", "Govt"],
    "description_patterns": ["Treasury", "T-Bill"],
    "ticker_aliases": ["US_TBill"],
    "ticker_prefixes": ["TF Float"],
}

# ---------------------------------------------------------------------------
# Runner
# ---------------------------------------------------------------------------
OVERLAP_POLICIES = ("reject", "coalesce")
OVERLAP_POLICY = "reject"
READ_TIMEOUT_SECONDS = 30.0
COMMIT_TIMEOUT_SECONDS = 15.0

# ---------------------------------------------------------------------------
# Scheduler
# ---------------------------------------------------------------------------
SCHEDULE_DAILY_AT = "18:00"
SCHEDULE_POLL_SECONDS = 1.0
SCHEDULER_LOCK_FILE = "~/.tally/.scheduler_lock"

# ---------------------------------------------------------------------------
# Storage
# ---------------------------------------------------------------------------
DATABASE_PATH = "~/.tally/tally.db"
