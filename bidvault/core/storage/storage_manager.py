from pathlib import Path
from typing import Dict, List, Optional, Tuple

from bidvault.core.state.events import AuctionEvent, EventKind
from bidvault.core.storage.sqlite_adapter import SQLiteAdapter
from bidvault.crypto import hex_to_bytes, bytes_to_hex
from bidvault.utils.logger import get_logger

logger = get_logger("storage.manager")

# Key under which the ledger's custody address is stored
ADDRESS_KEY = "address"


class StorageManager:
    """
    Manages persistent storage for an auction.

    Coordinates data persistence using SQLite adapter.
    Handles:
    - Auction state (scalar fields and pending refunds)
    - Bank balances
    - Committed event log
    """

    def __init__(self, data_dir: Path, db_name: str = "auction.db"):
        self.data_dir = Path(data_dir)
        self.db_path = self.data_dir / db_name
        self.adapter = SQLiteAdapter(self.db_path)

        logger.info(f"StorageManager initialized at {self.db_path}")

    # =========================================================================
    # Auction State
    # =========================================================================

    def has_auction(self) -> bool:
        """Whether an auction has been persisted here."""
        return self.adapter.get_state_value(ADDRESS_KEY) is not None

    def persist_auction(
        self,
        address: bytes,
        state: Dict[str, str],
        pending_refunds: Dict[bytes, int],
        balances: Dict[bytes, int],
        new_events: List[AuctionEvent],
    ):
        """Atomically persist the auction after a committed operation."""
        rows = dict(state)
        rows[ADDRESS_KEY] = bytes_to_hex(address)
        self.adapter.save_snapshot(
            rows,
            pending_refunds,
            balances,
            [(int(e.kind), e.account, e.amount, e.deadline) for e in new_events],
        )
        logger.debug(f"Persisted auction state ({len(new_events)} new events)")

    def load_auction(self) -> Optional[Tuple[bytes, Dict[str, str], Dict[bytes, int], Dict[bytes, int], List[AuctionEvent]]]:
        """
        Load full auction state.

        Returns:
            (address, state, pending_refunds, balances, events), or None if
            nothing has been persisted
        """
        state = self.adapter.get_state()
        if ADDRESS_KEY not in state:
            return None

        address = hex_to_bytes(state.pop(ADDRESS_KEY))
        refunds = dict(self.adapter.get_pending_refunds())
        balances = dict(self.adapter.get_balances())
        return address, state, refunds, balances, self.load_events()

    def load_events(self) -> List[AuctionEvent]:
        """Load the committed event log."""
        return [
            AuctionEvent(EventKind(kind), account, amount, deadline)
            for kind, account, amount, deadline in self.adapter.get_events()
        ]

    def close(self) -> None:
        self.adapter.close()
