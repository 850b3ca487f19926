"""Concrete backing store implementations."""

from .sqlite import SQLiteBackingStore

__all__ = ["SQLiteBackingStore"]
