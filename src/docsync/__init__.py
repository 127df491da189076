"""Documentation source sync and snapshot publishing."""

__version__ = "0.1.0"
