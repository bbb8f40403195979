"""
Error kinds and operation results for the auction ledger.

Operations never raise for business-rule or payout failures. They return an
OperationResult whose error distinguishes "your request was invalid" from
"the payout could not be delivered, retry later".
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Any, Optional


class AuctionError(IntEnum):
    """Reasons an operation was rejected."""
    AUCTION_CLOSED = 1
    BID_TOO_LOW = 2
    AUCTION_STILL_OPEN = 3
    WINNER_CANNOT_WITHDRAW = 4
    NOTHING_TO_WITHDRAW = 5
    FEE_TRANSFER_FAILED = 6
    REFUND_TRANSFER_FAILED = 7
    ALREADY_SETTLED = 8
    SETTLEMENT_TRANSFER_FAILED = 9
    NOT_AUTHORIZED = 10
    INSUFFICIENT_FUNDS = 11
    EMERGENCY_TRANSFER_FAILED = 12
    REENTRANT_CALL = 13

    @property
    def is_transfer_failure(self) -> bool:
        """Whether this is an outbound payout failure (retryable)."""
        return self in _TRANSFER_FAILURES


_TRANSFER_FAILURES = frozenset({
    AuctionError.FEE_TRANSFER_FAILED,
    AuctionError.REFUND_TRANSFER_FAILED,
    AuctionError.SETTLEMENT_TRANSFER_FAILED,
    AuctionError.EMERGENCY_TRANSFER_FAILED,
})


@dataclass
class OperationResult:
    """Outcome of a ledger operation."""
    ok: bool
    error: Optional[AuctionError] = None
    message: str = ""
    receipt: Optional[Any] = None

    @classmethod
    def success(cls, message: str = "", receipt: Any = None) -> "OperationResult":
        return cls(ok=True, message=message, receipt=receipt)

    @classmethod
    def failure(cls, error: AuctionError, message: str = "") -> "OperationResult":
        return cls(ok=False, error=error, message=message or error.name)

    def __bool__(self) -> bool:
        return self.ok


class OperationFailed(Exception):
    """Raised inside an operation to abort it and roll back its journal."""

    def __init__(self, error: AuctionError, message: str = ""):
        super().__init__(message or error.name)
        self.error = error
        self.message = message or error.name
