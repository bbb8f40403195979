"""Auction ledger, value bank and notifications"""
from bidvault.core.state.bank import ValueBank, TransferResult, Receiver
from bidvault.core.state.events import (
    AuctionEvent,
    EventKind,
    EventBus,
    bid_accepted,
    settlement,
)
from bidvault.core.state.ledger import (
    AuctionLedger,
    AuctionDetails,
    AuctionPhase,
    LedgerAudit,
    LedgerState,
    custody_address,
)

__all__ = [
    "ValueBank",
    "TransferResult",
    "Receiver",
    "AuctionEvent",
    "EventKind",
    "EventBus",
    "bid_accepted",
    "settlement",
    "AuctionLedger",
    "AuctionDetails",
    "AuctionPhase",
    "LedgerAudit",
    "LedgerState",
    "custody_address",
]
