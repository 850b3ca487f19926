"""Pagination-aware search planners."""

from .engine import SearchEngine

__all__ = ["SearchEngine"]
