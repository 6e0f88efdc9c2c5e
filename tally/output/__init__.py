"""Output generation: terminal tables and CSV export of the snapshot."""

from tally.output.report import (
    export_csv,
    format_holdings_table,
    format_stats,
    format_treasury_lines,
    format_treasury_summary,
    holdings_frame,
)

__all__ = [
    "export_csv",
    "format_holdings_table",
    "format_stats",
    "format_treasury_lines",
    "format_treasury_summary",
    "holdings_frame",
]
