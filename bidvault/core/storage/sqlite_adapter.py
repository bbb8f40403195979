import sqlite3
import threading
from pathlib import Path
from typing import Dict, List, Optional, Tuple

from bidvault.utils.logger import get_logger

logger = get_logger("storage.sqlite")


class SQLiteAdapter:
    """
    SQLite backend for persistent storage.

    Provides:
    1. Auction state (scalar fields as key/value rows)
    2. Pending refunds per account
    3. Bank balances per account
    4. Append-only event log
    """

    def __init__(self, db_path: Path):
        self.db_path = db_path
        self._conn_local = threading.local()

        # Ensure directory exists
        if not db_path.parent.exists():
            db_path.parent.mkdir(parents=True, exist_ok=True)

        self._init_schema()

    def _get_conn(self) -> sqlite3.Connection:
        """Get or create connection for current thread."""
        if not hasattr(self._conn_local, "conn"):
            self._conn_local.conn = sqlite3.connect(
                self.db_path,
                timeout=30.0,
                check_same_thread=False
            )
            self._conn_local.conn.row_factory = sqlite3.Row
            # Enable WAL mode for better concurrency
            self._conn_local.conn.execute("PRAGMA journal_mode=WAL;")
            self._conn_local.conn.execute("PRAGMA synchronous=NORMAL;")
        return self._conn_local.conn

    def _init_schema(self):
        """Initialize database schema."""
        conn = self._get_conn()
        with conn:
            # 1. Auction scalar state
            conn.execute("""
                CREATE TABLE IF NOT EXISTS auction_state (
                    key TEXT PRIMARY KEY,
                    value TEXT NOT NULL
                )
            """)

            # 2. Pending refunds (account -> amount)
            # Amounts stored as TEXT: values may exceed SQLite's 64-bit INTEGER
            conn.execute("""
                CREATE TABLE IF NOT EXISTS pending_refunds (
                    account BLOB PRIMARY KEY,
                    amount TEXT NOT NULL
                )
            """)

            # 3. Bank balances (account -> amount)
            conn.execute("""
                CREATE TABLE IF NOT EXISTS balances (
                    account BLOB PRIMARY KEY,
                    amount TEXT NOT NULL
                )
            """)

            # 4. Event log
            conn.execute("""
                CREATE TABLE IF NOT EXISTS events (
                    seq INTEGER PRIMARY KEY AUTOINCREMENT,
                    kind INTEGER NOT NULL,
                    account BLOB,
                    amount TEXT NOT NULL,
                    deadline INTEGER NOT NULL
                )
            """)

    # =========================================================================
    # Auction State
    # =========================================================================

    def get_state(self) -> Dict[str, str]:
        """Get all auction state rows."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT key, value FROM auction_state")
        return {row['key']: row['value'] for row in cursor}

    def get_state_value(self, key: str) -> Optional[str]:
        conn = self._get_conn()
        cursor = conn.execute("SELECT value FROM auction_state WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else None

    def get_pending_refunds(self) -> List[Tuple[bytes, int]]:
        """Get all (account, amount) refund rows."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT account, amount FROM pending_refunds")
        return [(bytes(row['account']), int(row['amount'])) for row in cursor]

    def get_balances(self) -> List[Tuple[bytes, int]]:
        """Get all (account, amount) balance rows."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT account, amount FROM balances")
        return [(bytes(row['account']), int(row['amount'])) for row in cursor]

    def get_events(self) -> List[Tuple]:
        """Get all events ordered by sequence."""
        conn = self._get_conn()
        cursor = conn.execute("SELECT kind, account, amount, deadline FROM events ORDER BY seq ASC")
        return [
            (
                row['kind'],
                bytes(row['account']) if row['account'] is not None else None,
                int(row['amount']),
                row['deadline'],
            )
            for row in cursor
        ]

    def save_snapshot(
        self,
        state: Dict[str, str],
        pending_refunds: Dict[bytes, int],
        balances: Dict[bytes, int],
        new_events: List[Tuple],
    ):
        """
        Atomically replace auction state and append events.

        Args:
            state: Scalar state key/value pairs
            pending_refunds: Full refund mapping (replaces stored rows)
            balances: Full balance mapping (replaces stored rows)
            new_events: (kind, account, amount, deadline) rows to append
        """
        conn = self._get_conn()
        with conn:
            conn.executemany(
                "INSERT OR REPLACE INTO auction_state (key, value) VALUES (?, ?)",
                list(state.items())
            )

            conn.execute("DELETE FROM pending_refunds")
            conn.executemany(
                "INSERT INTO pending_refunds (account, amount) VALUES (?, ?)",
                [(account, str(amount)) for account, amount in pending_refunds.items() if amount > 0]
            )

            conn.execute("DELETE FROM balances")
            conn.executemany(
                "INSERT INTO balances (account, amount) VALUES (?, ?)",
                [(account, str(amount)) for account, amount in balances.items()]
            )

            conn.executemany(
                "INSERT INTO events (kind, account, amount, deadline) VALUES (?, ?, ?, ?)",
                [(kind, account, str(amount), deadline) for kind, account, amount, deadline in new_events]
            )

    def close(self):
        """Close the connection for the current thread."""
        if hasattr(self._conn_local, "conn"):
            self._conn_local.conn.close()
            del self._conn_local.conn
