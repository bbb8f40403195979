"""
Persistent Storage Module.

Provides SQLite-backed persistence for:
- Auction state and pending refunds
- Bank balances
- Committed event log
"""

from bidvault.core.storage.sqlite_adapter import SQLiteAdapter
from bidvault.core.storage.storage_manager import StorageManager

__all__ = ["SQLiteAdapter", "StorageManager"]
