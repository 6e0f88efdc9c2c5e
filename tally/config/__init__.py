"""Configuration loading, validation, and defaults."""

from tally.config.loader import load_config
from tally.config.schema import TallyConfig

__all__ = ["load_config", "TallyConfig"]
