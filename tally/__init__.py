"""Tally -- holding aggregation engine."""

__version__ = "0.1.0"
