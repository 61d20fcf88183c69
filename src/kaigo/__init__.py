"""Optimistic record lists for nursing-home care records."""

__version__ = "0.1.0"
