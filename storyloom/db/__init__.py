"""
Database package for Storyloom.

This package provides SQLite-based persistence for stories, their graphs and
the published version ledger.
"""

from .manager import DatabaseManager
from .versions import VersionStore

__all__ = ["DatabaseManager", "VersionStore"]
