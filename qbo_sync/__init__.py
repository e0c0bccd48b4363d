"""Incremental QuickBooks Online sync service."""

__version__ = "0.1.0"
