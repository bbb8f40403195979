"""
AuctionLedger - Open ascending auction with escrowed refunds.

Conceptual Background:
---------------------
The ledger holds every bid it accepts. At any time its custody balance
backs two kinds of claims:

1. **Leading bid**: reserved for the beneficiary until settlement
2. **Pending refunds**: what each displaced bidder may withdraw

Lifecycle:
---------
    OPEN  (now < deadline)              bids accepted, deadline may extend
    CLOSED_UNSETTLED (now >= deadline)  refunds withdrawable, operator may settle
    CLOSED_SETTLED                      settlement paid, refunds still withdrawable

Every value transfer can run untrusted receiver code which may call back
into any operation before the original call returns. Each operation
therefore:

1. Validates its preconditions
2. Commits all of its own state changes
3. Only then issues outbound transfers

Operations run inside a journal: if anything fails, the ledger state, the
bank balances and any buffered notifications are restored to what they were
when the operation started, including changes made by nested calls.
"""

from contextlib import contextmanager
from dataclasses import dataclass, field, replace
from enum import IntEnum
from typing import Callable, Dict, List, Optional, TYPE_CHECKING

from bidvault.core.config import AuctionConfig, apply_stored_rules, rules_to_dict
from bidvault.core.errors import AuctionError, OperationFailed, OperationResult
from bidvault.core.fees import FeeSchedule
from bidvault.core.state.bank import ValueBank
from bidvault.core.state.events import (
    AuctionEvent,
    EventBus,
    Listener,
    bid_accepted,
    settlement,
)
from bidvault.crypto import bytes_to_hex, hex_to_bytes, keccak256, short_address
from bidvault.utils.logger import get_logger
from bidvault.utils.validation import (
    require,
    validate_address,
    validate_amount,
    validate_timestamp,
)

if TYPE_CHECKING:
    from bidvault.core.storage.storage_manager import StorageManager

logger = get_logger("ledger")


# =============================================================================
# State
# =============================================================================


class AuctionPhase(IntEnum):
    """Phase of the auction at a given time."""
    OPEN = 0
    CLOSED_UNSETTLED = 1
    CLOSED_SETTLED = 2


@dataclass
class LedgerState:
    """
    Durable auction state.

    Attributes:
        operator: Sole principal for settlement and emergency drain
        beneficiary: Recipient of the settled amount
        deadline: Unix time after which bids are rejected
        leading_bidder: Current highest bidder (None before any bid)
        leading_amount: Current highest bid
        settled: Whether settlement has been paid
        pending_refunds: Amount owed to each displaced bidder
        fees_collected: Total refund fees paid to the operator
        total_refunded: Total gross refunds withdrawn
    """
    operator: bytes
    beneficiary: bytes
    deadline: int
    leading_bidder: Optional[bytes] = None
    leading_amount: int = 0
    settled: bool = False
    pending_refunds: Dict[bytes, int] = field(default_factory=dict)
    fees_collected: int = 0
    total_refunded: int = 0

    def copy(self) -> "LedgerState":
        return replace(self, pending_refunds=dict(self.pending_refunds))

    def to_dict(self) -> dict:
        """Scalar fields as strings for key/value storage."""
        return {
            "operator": bytes_to_hex(self.operator),
            "beneficiary": bytes_to_hex(self.beneficiary),
            "deadline": str(self.deadline),
            "leading_bidder": bytes_to_hex(self.leading_bidder) if self.leading_bidder else "",
            "leading_amount": str(self.leading_amount),
            "settled": "1" if self.settled else "0",
            "fees_collected": str(self.fees_collected),
            "total_refunded": str(self.total_refunded),
        }

    @classmethod
    def from_dict(cls, data: dict, pending_refunds: Dict[bytes, int]) -> "LedgerState":
        return cls(
            operator=hex_to_bytes(data["operator"]),
            beneficiary=hex_to_bytes(data["beneficiary"]),
            deadline=int(data["deadline"]),
            leading_bidder=hex_to_bytes(data["leading_bidder"]) if data.get("leading_bidder") else None,
            leading_amount=int(data["leading_amount"]),
            settled=data["settled"] == "1",
            pending_refunds=dict(pending_refunds),
            fees_collected=int(data.get("fees_collected", "0")),
            total_refunded=int(data.get("total_refunded", "0")),
        )


@dataclass
class AuctionDetails:
    """Read-only view returned by get_auction_details()."""
    operator: bytes
    beneficiary: bytes
    leading_bidder: Optional[bytes]
    leading_amount: int
    deadline: int
    settled: bool


@dataclass
class LedgerAudit:
    """
    Reconciliation of custody balance against outstanding claims.

    reserved + owed should equal held. After an emergency drain held
    falls short and the difference is reported as shortfall.
    """
    held: int
    reserved: int
    owed: int

    @property
    def claims(self) -> int:
        return self.reserved + self.owed

    @property
    def shortfall(self) -> int:
        return max(0, self.claims - self.held)

    @property
    def surplus(self) -> int:
        return max(0, self.held - self.claims)

    @property
    def balanced(self) -> bool:
        return self.held == self.claims


def custody_address(operator: bytes, beneficiary: bytes, deadline: int) -> bytes:
    """Deterministic address of the ledger's own custody account."""
    seed = b"bidvault.auction" + operator + beneficiary + deadline.to_bytes(8, "big")
    return keccak256(seed)[-20:]


# =============================================================================
# Auction Ledger
# =============================================================================


class AuctionLedger:
    """
    Single auction holding bids in escrow.

    All operations take the caller and current time explicitly. Mutating
    operations return an OperationResult and never raise for rule or payout
    failures; malformed arguments raise ValueError.

    Attributes:
        state: Current LedgerState
        bank: Value-transfer primitive holding the custody balance
        address: Custody account of this ledger in the bank
        events: Committed notifications, oldest first
    """

    def __init__(
        self,
        operator: bytes,
        beneficiary: bytes,
        deadline: int,
        bank: ValueBank,
        config: Optional[AuctionConfig] = None,
        storage_manager: Optional["StorageManager"] = None,
        address: Optional[bytes] = None,
    ):
        """
        Initialize the ledger.

        Args:
            operator: Account allowed to settle and drain
            beneficiary: Account receiving the winning bid
            deadline: Unix time bidding closes (before extensions)
            bank: Value bank holding balances
            config: Auction rules. None = defaults.
            storage_manager: Persistence manager. None = in-memory only.
            address: Custody address override (used when reloading)
        """
        require(validate_address(operator, "operator"))
        require(validate_address(beneficiary, "beneficiary"))
        require(validate_timestamp(deadline, "deadline"))

        self.config = config or AuctionConfig()
        self.fees = FeeSchedule(self.config)
        self.bank = bank
        self.address = address or custody_address(operator, beneficiary, deadline)
        self.state = LedgerState(operator=operator, beneficiary=beneficiary, deadline=deadline)

        # Notifications
        self.events: List[AuctionEvent] = []
        self.bus = EventBus()
        self._pending_events: List[AuctionEvent] = []

        # Nesting depth of in-progress operations (>0 means reentrant)
        self._depth = 0

        # Persistence
        self.storage_manager = storage_manager

    @classmethod
    def deploy(
        cls,
        operator: bytes,
        beneficiary: bytes,
        bidding_time: int,
        now: int,
        bank: ValueBank,
        config: Optional[AuctionConfig] = None,
        storage_manager: Optional["StorageManager"] = None,
    ) -> "AuctionLedger":
        """
        Create a ledger whose bidding closes ``bidding_time`` seconds after ``now``.
        """
        require(validate_amount(bidding_time, "bidding_time"))
        require(validate_timestamp(now))
        ledger = cls(
            operator=operator,
            beneficiary=beneficiary,
            deadline=now + bidding_time,
            bank=bank,
            config=config,
            storage_manager=storage_manager,
        )
        if storage_manager:
            ledger._persist([])
        logger.info(
            f"Auction deployed at {short_address(ledger.address)}: "
            f"operator={short_address(operator)}, beneficiary={short_address(beneficiary)}, "
            f"deadline={ledger.state.deadline}"
        )
        return ledger

    @classmethod
    def load(
        cls,
        storage_manager: "StorageManager",
        bank: Optional[ValueBank] = None,
        config: Optional[AuctionConfig] = None,
    ) -> "AuctionLedger":
        """
        Rebuild a ledger (and its bank balances) from storage.

        The raise, extension and fee rules stored at deployment win over
        those in ``config``; only the guard and paths are taken from it.

        Raises:
            LookupError: if no auction has been deployed in this storage
        """
        stored = storage_manager.load_auction()
        if stored is None:
            raise LookupError(f"No auction found in {storage_manager.db_path}")

        address, data, refunds, balances, events = stored
        state = LedgerState.from_dict(data, refunds)

        # Rules are fixed at deployment; only process settings come from config
        requested = config or AuctionConfig()
        config = apply_stored_rules(requested, data)
        if rules_to_dict(requested) != rules_to_dict(config):
            logger.warning(
                f"Ignoring configured auction rules; using those stored at deployment: "
                f"{rules_to_dict(config)}"
            )

        if bank is None:
            bank = ValueBank(balances)
        else:
            bank.restore(balances)

        ledger = cls(
            operator=state.operator,
            beneficiary=state.beneficiary,
            deadline=state.deadline,
            bank=bank,
            config=config,
            storage_manager=storage_manager,
            address=address,
        )
        ledger.state = state
        ledger.events = list(events)

        logger.info(
            f"Loaded auction {short_address(address)}: lead={state.leading_amount}, "
            f"deadline={state.deadline}, settled={state.settled}, {len(events)} events"
        )
        return ledger

    # =========================================================================
    # Journal
    # =========================================================================

    @contextmanager
    def _journal(self):
        """Restore state, balances and buffered events if the body raises."""
        state_checkpoint = self.state.copy()
        bank_checkpoint = self.bank.snapshot()
        event_mark = len(self._pending_events)

        self._depth += 1
        try:
            yield
        except Exception:
            self.state = state_checkpoint
            self.bank.restore(bank_checkpoint)
            del self._pending_events[event_mark:]
            raise
        finally:
            self._depth -= 1

    def _execute(self, name: str, body: Callable[[], OperationResult]) -> OperationResult:
        """Run an operation body atomically and commit if outermost."""
        if self.config.reentrancy_guard and self._depth > 0:
            logger.warning(f"Rejected reentrant {name} (depth={self._depth})")
            return OperationResult.failure(AuctionError.REENTRANT_CALL, f"Reentrant call to {name}")

        try:
            with self._journal():
                result = body()
        except OperationFailed as e:
            log = logger.warning if e.error.is_transfer_failure else logger.debug
            log(f"{name} rejected: {e.error.name} ({e.message})")
            return OperationResult.failure(e.error, e.message)

        if self._depth == 0:
            self._commit()
        return result

    def _emit(self, event: AuctionEvent) -> None:
        self._pending_events.append(event)

    def _commit(self) -> None:
        """Make buffered events visible, persist, then notify listeners."""
        committed = self._pending_events
        self._pending_events = []
        self.events.extend(committed)

        if self.storage_manager:
            self._persist(committed)

        self.bus.publish(committed)

    def _pay(self, recipient: bytes, amount: int, error: AuctionError) -> None:
        """Outbound transfer from custody; aborts the operation on failure."""
        result = self.bank.transfer(self.address, recipient, amount)
        if not result.success:
            raise OperationFailed(error, result.error)

    # =========================================================================
    # Bidding
    # =========================================================================

    def bid(self, caller: bytes, value: int, now: int) -> OperationResult:
        """
        Place a bid of ``value`` attached from the caller's balance.

        Preconditions:
            now < deadline                        else AUCTION_CLOSED
            value > leading * (100 + raise) // 100  else BID_TOO_LOW
            caller can attach value               else INSUFFICIENT_FUNDS

        The displaced leader's bid is credited to its pending refund. A bid
        within ``extension_window`` of the deadline pushes the deadline out
        by ``extension_seconds``.
        """
        require(validate_address(caller, "caller"))
        require(validate_amount(value, "value"))
        require(validate_timestamp(now))

        def body() -> OperationResult:
            state = self.state

            if now >= state.deadline:
                raise OperationFailed(
                    AuctionError.AUCTION_CLOSED,
                    f"Bidding closed at {state.deadline}",
                )

            if not self.fees.accepts(value, state.leading_amount):
                raise OperationFailed(
                    AuctionError.BID_TOO_LOW,
                    f"Bid {value} must exceed {self.fees.bid_floor(state.leading_amount)}",
                )

            # Attached value moves into custody; no recipient code runs
            custody = self.bank.transfer(caller, self.address, value, notify=False)
            if not custody.success:
                raise OperationFailed(AuctionError.INSUFFICIENT_FUNDS, custody.error)

            previous_bidder = state.leading_bidder
            previous_amount = state.leading_amount

            state.leading_bidder = caller
            state.leading_amount = value

            if previous_bidder is not None:
                state.pending_refunds[previous_bidder] = (
                    state.pending_refunds.get(previous_bidder, 0) + previous_amount
                )

            extended = False
            if now >= state.deadline - self.config.extension_window:
                state.deadline += self.config.extension_seconds
                extended = True

            self._emit(bid_accepted(caller, value, state.deadline))

            logger.info(
                f"Bid accepted: {short_address(caller)} bid {value}"
                + (f", deadline extended to {state.deadline}" if extended else "")
            )
            return OperationResult.success(f"Bid {value} accepted")

        return self._execute("bid", body)

    # =========================================================================
    # Refunds
    # =========================================================================

    def withdraw_excess(self, caller: bytes, now: int) -> OperationResult:
        """
        Withdraw the caller's pending refund, less the refund fee.

        Preconditions:
            now >= deadline              else AUCTION_STILL_OPEN
            caller is not the leader     else WINNER_CANNOT_WITHDRAW
            pending refund > 0           else NOTHING_TO_WITHDRAW

        The refund entry is cleared before any transfer, so a reentrant
        withdrawal sees nothing to withdraw. The fee goes to the operator
        first, then the net amount to the caller.

        Returns:
            OperationResult with a RefundReceipt on success
        """
        require(validate_address(caller, "caller"))
        require(validate_timestamp(now))

        def body() -> OperationResult:
            state = self.state

            if now < state.deadline:
                raise OperationFailed(
                    AuctionError.AUCTION_STILL_OPEN,
                    f"Refunds open at {state.deadline}",
                )

            if caller == state.leading_bidder:
                raise OperationFailed(
                    AuctionError.WINNER_CANNOT_WITHDRAW,
                    "Leading bid is claimed through settlement",
                )

            refund = state.pending_refunds.get(caller, 0)
            if refund <= 0:
                raise OperationFailed(AuctionError.NOTHING_TO_WITHDRAW, "No pending refund")

            receipt = self.fees.refund_receipt(caller, refund)

            # Effects
            del state.pending_refunds[caller]
            state.fees_collected += receipt.fee
            state.total_refunded += receipt.refund

            # Interactions
            self._pay(state.operator, receipt.fee, AuctionError.FEE_TRANSFER_FAILED)
            self._pay(caller, receipt.net, AuctionError.REFUND_TRANSFER_FAILED)

            logger.info(
                f"Refund withdrawn: {short_address(caller)} received {receipt.net} "
                f"(refund={receipt.refund}, fee={receipt.fee})"
            )
            return OperationResult.success(f"Withdrew {receipt.net}", receipt=receipt)

        return self._execute("withdraw_excess", body)

    # =========================================================================
    # Settlement
    # =========================================================================

    def end_auction(self, caller: bytes, now: int) -> OperationResult:
        """
        Settle the auction: pay the leading amount to the beneficiary.

        Preconditions:
            caller == operator   else NOT_AUTHORIZED
            now >= deadline      else AUCTION_STILL_OPEN
            not yet settled      else ALREADY_SETTLED

        A failed payout rolls back the settled flag so settlement can be
        retried.
        """
        require(validate_address(caller, "caller"))
        require(validate_timestamp(now))

        def body() -> OperationResult:
            state = self.state

            if caller != state.operator:
                raise OperationFailed(AuctionError.NOT_AUTHORIZED, "Only the operator may settle")

            if now < state.deadline:
                raise OperationFailed(
                    AuctionError.AUCTION_STILL_OPEN,
                    f"Settlement opens at {state.deadline}",
                )

            if state.settled:
                raise OperationFailed(AuctionError.ALREADY_SETTLED, "Auction already settled")

            winner = state.leading_bidder
            amount = state.leading_amount

            state.settled = True
            self._emit(settlement(winner, amount, state.deadline))

            if amount > 0:
                self._pay(state.beneficiary, amount, AuctionError.SETTLEMENT_TRANSFER_FAILED)

            logger.info(
                f"Auction settled: winner={short_address(winner) if winner else 'none'}, "
                f"amount={amount} to {short_address(state.beneficiary)}"
            )
            return OperationResult.success(f"Settled {amount}")

        return self._execute("end_auction", body)

    def emergency_withdraw(self, caller: bytes) -> OperationResult:
        """
        Drain the entire custody balance to the operator.

        Pending refunds are left untouched and become unbacked: after a
        drain, withdrawals fail with FEE_TRANSFER_FAILED or
        REFUND_TRANSFER_FAILED until value is returned to custody.
        """
        require(validate_address(caller, "caller"))

        def body() -> OperationResult:
            state = self.state

            if caller != state.operator:
                raise OperationFailed(AuctionError.NOT_AUTHORIZED, "Only the operator may drain")

            amount = self.bank.balance_of(self.address)
            stranded = sum(state.pending_refunds.values())
            if not state.settled:
                stranded += state.leading_amount

            if stranded > 0:
                logger.warning(
                    f"Emergency drain of {amount} leaves {stranded} in bidder claims unbacked"
                )

            self._pay(state.operator, amount, AuctionError.EMERGENCY_TRANSFER_FAILED)

            logger.warning(f"Emergency withdraw: {amount} sent to operator {short_address(caller)}")
            return OperationResult.success(f"Drained {amount}")

        return self._execute("emergency_withdraw", body)

    # =========================================================================
    # Queries
    # =========================================================================

    def get_auction_details(self) -> AuctionDetails:
        """Snapshot of the auction's public fields."""
        state = self.state
        return AuctionDetails(
            operator=state.operator,
            beneficiary=state.beneficiary,
            leading_bidder=state.leading_bidder,
            leading_amount=state.leading_amount,
            deadline=state.deadline,
            settled=state.settled,
        )

    def get_deposit(self, account: bytes) -> int:
        """Pending refund owed to ``account`` (0 if none)."""
        return self.state.pending_refunds.get(account, 0)

    def phase(self, now: int) -> AuctionPhase:
        """Phase of the auction at time ``now``."""
        if self.state.settled:
            return AuctionPhase.CLOSED_SETTLED
        if now < self.state.deadline:
            return AuctionPhase.OPEN
        return AuctionPhase.CLOSED_UNSETTLED

    def minimum_next_bid(self) -> int:
        """Smallest bid that would currently clear the raise rule."""
        return self.fees.minimum_next_bid(self.state.leading_amount)

    @property
    def held_balance(self) -> int:
        """Value currently held in custody."""
        return self.bank.balance_of(self.address)

    def audit(self) -> LedgerAudit:
        """Reconcile custody balance against outstanding claims."""
        state = self.state
        return LedgerAudit(
            held=self.held_balance,
            reserved=0 if state.settled else state.leading_amount,
            owed=sum(state.pending_refunds.values()),
        )

    def subscribe(self, listener: Listener) -> None:
        """Receive every committed notification."""
        self.bus.subscribe(listener)

    # =========================================================================
    # Persistence
    # =========================================================================

    def save(self) -> None:
        """Persist current state and balances (e.g. after funding accounts)."""
        if self._depth > 0:
            raise RuntimeError("Cannot save while an operation is in progress")
        if self.storage_manager:
            self._persist([])

    def _persist(self, new_events: List[AuctionEvent]) -> None:
        """Write current state, rules, balances and new events in one transaction."""
        rows = self.state.to_dict()
        rows.update(rules_to_dict(self.config))
        self.storage_manager.persist_auction(
            self.address,
            rows,
            self.state.pending_refunds,
            self.bank.balances,
            new_events,
        )

    # =========================================================================
    # Utility
    # =========================================================================

    def __repr__(self) -> str:
        state = self.state
        return (
            f"AuctionLedger(lead={state.leading_amount}, deadline={state.deadline}, "
            f"settled={state.settled}, refunds={len(state.pending_refunds)})"
        )

    def stats(self) -> dict:
        """Get ledger statistics."""
        state = self.state
        audit = self.audit()
        return {
            "address": bytes_to_hex(self.address),
            "leading_bidder": bytes_to_hex(state.leading_bidder) if state.leading_bidder else None,
            "leading_amount": state.leading_amount,
            "deadline": state.deadline,
            "settled": state.settled,
            "pending_refund_accounts": len(state.pending_refunds),
            "pending_refund_total": audit.owed,
            "held_balance": audit.held,
            "shortfall": audit.shortfall,
            "surplus": audit.surplus,
            "fees_collected": state.fees_collected,
            "total_refunded": state.total_refunded,
            "event_count": len(self.events),
            "last_event_digest": bytes_to_hex(self.events[-1].digest) if self.events else None,
            **self.fees.stats(),
        }
