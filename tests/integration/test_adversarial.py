"""
Adversarial tests: hostile receivers and reentrant calls.

Every payout runs the recipient's receiver hook, which may call back into
the ledger, refuse the payment, or raise. These tests check that the ledger
never pays twice, never leaves partial state behind and only notifies
listeners about operations that actually committed.
"""

import pytest

from bidvault.core.config import AuctionConfig
from bidvault.core.errors import AuctionError
from bidvault.core.state import AuctionLedger, EventKind, ValueBank
from bidvault.crypto import address_from_label


T = 1_000_000

OPERATOR = address_from_label("operator")
SELLER = address_from_label("seller")
ALICE = address_from_label("alice")
BOB = address_from_label("bob")
MALLORY = address_from_label("mallory")


def build(config=None):
    bank = ValueBank({ALICE: 1000, BOB: 1000, MALLORY: 1000})
    ledger = AuctionLedger(OPERATOR, SELLER, deadline=T, bank=bank, config=config)
    return ledger, bank


@pytest.fixture
def outbid_mallory():
    """Mallory bid 100 and was outbid by Bob's 200; bidding has closed."""
    ledger, bank = build()
    assert ledger.bid(MALLORY, 100, T - 3600)
    assert ledger.bid(BOB, 200, T - 3600)
    return ledger, bank


# =============================================================================
# Reentrant Withdrawals
# =============================================================================


class TestReentrantWithdraw:
    """A receiver that re-enters withdraw_excess must be paid once."""

    def test_double_withdraw_blocked(self, outbid_mallory):
        ledger, bank = outbid_mallory
        nested = []

        def attack(sender, amount):
            if len(nested) < 5:
                nested.append(ledger.withdraw_excess(MALLORY, T))

        bank.register_receiver(MALLORY, attack)
        result = ledger.withdraw_excess(MALLORY, T)

        assert result.ok
        assert [r.error for r in nested] == [AuctionError.NOTHING_TO_WITHDRAW]
        assert bank.balance_of(MALLORY) == 1000 - 100 + 98
        assert bank.balance_of(OPERATOR) == 2
        assert ledger.held_balance == 200
        assert ledger.audit().balanced

    def test_reentrant_settlement_during_refund(self, outbid_mallory):
        """Nested success commits together with the outer operation."""
        ledger, bank = outbid_mallory
        published_during_hook = []
        received = []
        ledger.subscribe(received.append)

        def settle_inside(sender, amount):
            assert ledger.end_auction(OPERATOR, T).ok
            published_during_hook.append(len(received))

        bank.register_receiver(MALLORY, settle_inside)
        assert ledger.withdraw_excess(MALLORY, T).ok

        # Listeners only hear about it after the outermost call returns
        assert published_during_hook == [0]
        assert [e.kind for e in received] == [EventKind.SETTLEMENT]
        assert ledger.state.settled
        assert bank.balance_of(SELLER) == 200
        assert ledger.held_balance == 0

    def test_nested_success_rolled_back_with_outer(self, outbid_mallory):
        """A nested call that succeeded is undone when the outer call fails."""
        ledger, bank = outbid_mallory
        received = []
        ledger.subscribe(received.append)

        def settle_then_refuse(sender, amount):
            ledger.end_auction(OPERATOR, T)
            return False

        bank.register_receiver(MALLORY, settle_then_refuse)
        result = ledger.withdraw_excess(MALLORY, T)

        assert result.error == AuctionError.REFUND_TRANSFER_FAILED
        assert not ledger.state.settled
        assert bank.balance_of(SELLER) == 0
        assert bank.balance_of(OPERATOR) == 0
        assert ledger.get_deposit(MALLORY) == 100
        assert ledger.held_balance == 300
        assert received == []
        assert all(e.kind == EventKind.BID_ACCEPTED for e in ledger.events)

    def test_bid_from_refund_hook_rejected_after_close(self, outbid_mallory):
        ledger, bank = outbid_mallory
        nested = []
        bank.register_receiver(MALLORY, lambda s, a: nested.append(ledger.bid(MALLORY, 1000, T)))

        assert ledger.withdraw_excess(MALLORY, T).ok
        assert nested[0].error == AuctionError.AUCTION_CLOSED
        assert ledger.state.leading_bidder == BOB


# =============================================================================
# Hostile Receivers
# =============================================================================


class TestHostileReceivers:
    """Refusing or raising receivers fail the operation atomically."""

    def test_raising_receiver(self, outbid_mallory):
        ledger, bank = outbid_mallory

        def explode(sender, amount):
            raise RuntimeError("no thanks")

        bank.register_receiver(MALLORY, explode)
        result = ledger.withdraw_excess(MALLORY, T)

        assert result.error == AuctionError.REFUND_TRANSFER_FAILED
        assert "RuntimeError" in result.message
        assert ledger.get_deposit(MALLORY) == 100

    def test_refusing_beneficiary_does_not_block_refunds(self, outbid_mallory):
        ledger, bank = outbid_mallory
        bank.register_receiver(SELLER, lambda s, a: False)

        assert ledger.end_auction(OPERATOR, T).error == AuctionError.SETTLEMENT_TRANSFER_FAILED
        assert ledger.withdraw_excess(MALLORY, T).ok
        assert ledger.held_balance == 200
        assert ledger.audit().balanced

    def test_refusing_operator_blocks_withdrawals(self, outbid_mallory):
        """Fee goes first, so a refusing operator stalls every refund."""
        ledger, bank = outbid_mallory
        bank.register_receiver(OPERATOR, lambda s, a: False)

        assert ledger.withdraw_excess(MALLORY, T).error == AuctionError.FEE_TRANSFER_FAILED
        assert bank.balance_of(MALLORY) == 900

        bank.remove_receiver(OPERATOR)
        assert ledger.withdraw_excess(MALLORY, T).ok

    def test_bids_never_notify_the_ledger(self):
        """Bids move value into custody without running any receiver."""
        ledger, bank = build()
        calls = []
        bank.register_receiver(ledger.address, lambda s, a: calls.append(a) or False)

        assert ledger.bid(ALICE, 100, T - 3600).ok
        assert calls == []


# =============================================================================
# Reentrancy Guard
# =============================================================================


class TestReentrancyGuard:
    """Optional guard rejecting all nested mutating calls."""

    def test_guard_rejects_nested_calls(self):
        ledger, bank = build(AuctionConfig(reentrancy_guard=True))
        ledger.bid(MALLORY, 100, T - 3600)
        ledger.bid(BOB, 200, T - 3600)

        nested = []
        bank.register_receiver(MALLORY, lambda s, a: nested.append(ledger.end_auction(OPERATOR, T)))

        assert ledger.withdraw_excess(MALLORY, T).ok
        assert nested[0].error == AuctionError.REENTRANT_CALL
        assert not ledger.state.settled

        # Top-level calls are unaffected
        assert ledger.end_auction(OPERATOR, T).ok

    def test_guard_off_by_default(self, outbid_mallory):
        ledger, _ = outbid_mallory
        assert ledger.config.reentrancy_guard is False


if __name__ == "__main__":
    pytest.main([__file__, "-v"])
