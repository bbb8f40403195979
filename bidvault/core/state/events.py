"""
Auction notifications.

Off-chain processes drive delivery of the auctioned good by listening for
these. Notifications raised inside an operation are delivered only after the
outermost operation commits, so a rolled-back call never reaches listeners.
"""

from dataclasses import dataclass
from enum import IntEnum
from typing import Callable, List, Optional

from bidvault.crypto import sha256
from bidvault.utils.logger import get_logger

logger = get_logger("events")


class EventKind(IntEnum):
    BID_ACCEPTED = 0
    SETTLEMENT = 1


@dataclass(frozen=True)
class AuctionEvent:
    """
    A committed ledger notification.

    Attributes:
        kind: BID_ACCEPTED or SETTLEMENT
        account: Bidder (bid) or winner (settlement); None if nobody bid
        amount: Bid value or settled amount
        deadline: Deadline after the event was applied
    """
    kind: EventKind
    account: Optional[bytes]
    amount: int
    deadline: int

    def to_bytes(self) -> bytes:
        return (
            self.kind.to_bytes(1, "big") +
            (self.account or bytes(20)) +
            self.amount.to_bytes(32, "big") +
            self.deadline.to_bytes(8, "big")
        )

    @property
    def digest(self) -> bytes:
        return sha256(self.to_bytes())


def bid_accepted(bidder: bytes, amount: int, deadline: int) -> AuctionEvent:
    return AuctionEvent(EventKind.BID_ACCEPTED, bidder, amount, deadline)


def settlement(winner: Optional[bytes], amount: int, deadline: int) -> AuctionEvent:
    return AuctionEvent(EventKind.SETTLEMENT, winner, amount, deadline)


Listener = Callable[[AuctionEvent], None]


class EventBus:
    """Fan-out of committed events to listeners."""

    def __init__(self):
        self._listeners: List[Listener] = []

    def subscribe(self, listener: Listener) -> None:
        self._listeners.append(listener)

    def unsubscribe(self, listener: Listener) -> None:
        if listener in self._listeners:
            self._listeners.remove(listener)

    def publish(self, events: List[AuctionEvent]) -> None:
        """
        Deliver committed events to every listener.

        The events are already committed, so a failing listener is logged
        and skipped; it cannot undo the operation or starve other listeners.
        """
        for event in events:
            for listener in list(self._listeners):
                try:
                    listener(event)
                except Exception:
                    logger.exception(f"Listener {listener!r} failed on {event.kind.name}")
        if events:
            logger.debug(f"Published {len(events)} event(s) to {len(self._listeners)} listener(s)")
