"""
Fees - Bid floor and refund fee arithmetic for bidvault.

Manages:
- Minimum-raise rule for new bids
- Refund fee calculation (operator's cut)
- Fee schedule summary
"""

from dataclasses import dataclass
from typing import Optional

from bidvault.core.config import AuctionConfig


@dataclass
class RefundReceipt:
    """Breakdown of a completed refund withdrawal."""
    account: bytes
    refund: int
    fee: int
    net: int


def bid_floor(leading_amount: int, min_raise_percent: int = 5) -> int:
    """
    Value a new bid must strictly exceed.

    Integer arithmetic, truncating: ``leading * (100 + pct) // 100``.
    With no lead the floor is 0, so any positive bid qualifies.
    """
    return leading_amount * (100 + min_raise_percent) // 100


def split_refund(refund: int, fee_percent: int = 2) -> tuple:
    """
    Split a refund into (fee, net).

    fee = floor(refund * pct / 100); net = refund - fee, so fee + net == refund.
    """
    if refund < 0:
        raise ValueError(f"refund must be >= 0, got {refund}")
    fee = refund * fee_percent // 100
    return fee, refund - fee


class FeeSchedule:
    """
    Applies the configured bidding and refund rules.
    """

    def __init__(self, config: Optional[AuctionConfig] = None):
        self.config = config or AuctionConfig()

    def bid_floor(self, leading_amount: int) -> int:
        """Value a new bid must strictly exceed."""
        return bid_floor(leading_amount, self.config.min_raise_percent)

    def accepts(self, value: int, leading_amount: int) -> bool:
        """Whether ``value`` clears the minimum-raise rule."""
        return value > self.bid_floor(leading_amount)

    def minimum_next_bid(self, leading_amount: int) -> int:
        """Smallest integer bid that would be accepted."""
        return self.bid_floor(leading_amount) + 1

    def refund_receipt(self, account: bytes, refund: int) -> RefundReceipt:
        """Compute the fee breakdown for a refund."""
        fee, net = split_refund(refund, self.config.refund_fee_percent)
        return RefundReceipt(account=account, refund=refund, fee=fee, net=net)

    def stats(self) -> dict:
        """Get fee statistics."""
        return {
            "refund_fee_percent": self.config.refund_fee_percent,
            "min_raise_percent": self.config.min_raise_percent,
        }
