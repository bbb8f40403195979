"""
Unit tests for SQLite storage.
"""

import pytest

from bidvault.core.state import AuctionEvent, EventKind
from bidvault.core.storage import SQLiteAdapter, StorageManager
from bidvault.crypto import address_from_label


ALICE = address_from_label("alice")
BOB = address_from_label("bob")
CUSTODY = address_from_label("custody")


@pytest.fixture
def adapter(tmp_path):
    adapter = SQLiteAdapter(tmp_path / "nested" / "auction.db")
    yield adapter
    adapter.close()


@pytest.fixture
def manager(tmp_path):
    manager = StorageManager(tmp_path)
    yield manager
    manager.close()


# =============================================================================
# Adapter Tests
# =============================================================================


class TestSQLiteAdapter:
    """Tests for the raw adapter."""

    def test_creates_parent_directory(self, adapter):
        assert adapter.db_path.parent.exists()

    def test_empty_database(self, adapter):
        assert adapter.get_state() == {}
        assert adapter.get_state_value("deadline") is None
        assert adapter.get_pending_refunds() == []
        assert adapter.get_events() == []

    def test_snapshot_replaces_tables(self, adapter):
        adapter.save_snapshot({"deadline": "100"}, {ALICE: 5, BOB: 7}, {ALICE: 1}, [])
        adapter.save_snapshot({"deadline": "200"}, {BOB: 9}, {BOB: 2}, [])

        assert adapter.get_state_value("deadline") == "200"
        assert adapter.get_pending_refunds() == [(BOB, 9)]
        assert adapter.get_balances() == [(BOB, 2)]

    def test_zero_refunds_not_stored(self, adapter):
        adapter.save_snapshot({}, {ALICE: 0, BOB: 3}, {}, [])
        assert adapter.get_pending_refunds() == [(BOB, 3)]

    def test_events_append_in_order(self, adapter):
        adapter.save_snapshot({}, {}, {}, [(0, ALICE, 10, 100)])
        adapter.save_snapshot({}, {}, {}, [(0, BOB, 11, 100), (1, None, 0, 100)])

        assert adapter.get_events() == [
            (0, ALICE, 10, 100),
            (0, BOB, 11, 100),
            (1, None, 0, 100),
        ]

    def test_large_amounts_preserved(self, adapter):
        """Amounts beyond 64 bits survive storage."""
        big = 2**200 + 1
        adapter.save_snapshot({}, {ALICE: big}, {ALICE: big}, [(0, ALICE, big, 1)])
        assert adapter.get_pending_refunds() == [(ALICE, big)]
        assert adapter.get_events()[0][2] == big


# =============================================================================
# Manager Tests
# =============================================================================


class TestStorageManager:
    """Tests for the storage manager."""

    def test_no_auction(self, manager):
        assert not manager.has_auction()
        assert manager.load_auction() is None

    def test_persist_and_load(self, manager):
        events = [
            AuctionEvent(EventKind.BID_ACCEPTED, ALICE, 100, 1000),
            AuctionEvent(EventKind.SETTLEMENT, ALICE, 100, 1000),
        ]
        manager.persist_auction(
            CUSTODY,
            {"deadline": "1000", "settled": "1"},
            {BOB: 50},
            {CUSTODY: 150, ALICE: 900},
            events,
        )

        assert manager.has_auction()
        address, state, refunds, balances, loaded = manager.load_auction()
        assert address == CUSTODY
        assert state == {"deadline": "1000", "settled": "1"}
        assert refunds == {BOB: 50}
        assert balances == {CUSTODY: 150, ALICE: 900}
        assert loaded == events

    def test_db_path(self, tmp_path):
        manager = StorageManager(tmp_path, db_name="other.db")
        assert manager.db_path == tmp_path / "other.db"
        manager.close()

    def test_reopen(self, tmp_path):
        first = StorageManager(tmp_path)
        first.persist_auction(CUSTODY, {"deadline": "5"}, {}, {}, [])
        first.close()

        second = StorageManager(tmp_path)
        assert second.has_auction()
        assert second.load_auction()[1] == {"deadline": "5"}
        second.close()


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
