"""
ValueBank - Account balances and the value-transfer primitive.

Conceptual Background:
---------------------
The auction ledger never moves value itself. It asks the hosting runtime to
"send N units to account X" and gets back success or failure. ValueBank is
that runtime:

1. **Balances**: every account (including the ledger's own custody account)
   holds an integer balance.
2. **Receivers**: an account may register a receiver hook, arbitrary code
   that runs synchronously whenever value is sent to it. The hook may refuse
   the payment or call back into the auction ledger (reentrancy).

Transfer Semantics:
------------------
1. Sender balance must cover the amount
2. Balances move first, then the recipient's hook runs
3. A hook that returns False or raises fails the transfer, and every
   balance change since step 2 is undone before the failure is reported

Snapshots:
---------
snapshot()/restore() let the caller roll back a whole operation, including
transfers made by nested calls, when that operation fails.
"""

from dataclasses import dataclass
from typing import Callable, Dict, Optional

from bidvault.crypto import short_address
from bidvault.utils.logger import get_logger
from bidvault.utils.validation import require, validate_address, validate_amount

logger = get_logger("bank")

# hook(sender, amount) -> accept?
Receiver = Callable[[bytes, int], bool]


@dataclass
class TransferResult:
    """Outcome of a single value transfer."""
    success: bool
    error: str = ""


class ValueBank:
    """
    In-process value ledger with untrusted receiver hooks.

    Attributes:
        balances: Mapping of account address to balance
        receivers: Mapping of account address to receiver hook
    """

    def __init__(self, balances: Optional[Dict[bytes, int]] = None):
        self.balances: Dict[bytes, int] = dict(balances or {})
        self.receivers: Dict[bytes, Receiver] = {}
        self.transfer_count = 0

    # =========================================================================
    # Accounts
    # =========================================================================

    def balance_of(self, account: bytes) -> int:
        """Get the balance of an account."""
        return self.balances.get(account, 0)

    def mint(self, account: bytes, amount: int) -> None:
        """Credit new value to an account (genesis / funding)."""
        require(validate_address(account, "account"))
        require(validate_amount(amount))
        self.balances[account] = self.balance_of(account) + amount
        logger.debug(f"Minted {amount} to {short_address(account)}")

    def register_receiver(self, account: bytes, hook: Receiver) -> None:
        """Install code that runs whenever value is sent to ``account``."""
        require(validate_address(account, "account"))
        self.receivers[account] = hook

    def remove_receiver(self, account: bytes) -> None:
        self.receivers.pop(account, None)

    @property
    def total_supply(self) -> int:
        return sum(self.balances.values())

    # =========================================================================
    # Transfers
    # =========================================================================

    def transfer(
        self,
        sender: bytes,
        recipient: bytes,
        amount: int,
        notify: bool = True,
    ) -> TransferResult:
        """
        Send ``amount`` from ``sender`` to ``recipient``.

        Args:
            sender: Paying account
            recipient: Receiving account
            amount: Value to move (0 is allowed and still notifies)
            notify: Whether to run the recipient's receiver hook

        Returns:
            TransferResult
        """
        require(validate_address(sender, "sender"))
        require(validate_address(recipient, "recipient"))
        require(validate_amount(amount))

        available = self.balance_of(sender)
        if available < amount:
            logger.warning(
                f"Transfer {short_address(sender)} -> {short_address(recipient)} "
                f"failed: insufficient balance ({available} < {amount})"
            )
            return TransferResult(False, f"Insufficient balance: have {available}, need {amount}")

        # Move value before running recipient code
        checkpoint = self.snapshot()
        self.balances[sender] = available - amount
        self.balances[recipient] = self.balance_of(recipient) + amount
        self.transfer_count += 1

        hook = self.receivers.get(recipient) if notify else None
        if hook is None:
            return TransferResult(True)

        try:
            accepted = hook(sender, amount)
        except Exception as e:
            logger.warning(f"Receiver {short_address(recipient)} raised during transfer: {e!r}")
            accepted = False
            reason = f"Receiver raised {type(e).__name__}"
        else:
            reason = "Receiver rejected transfer"

        if accepted is False:
            # Undo the movement and anything the hook did with it
            self.restore(checkpoint)
            logger.warning(f"Transfer of {amount} to {short_address(recipient)} failed: {reason}")
            return TransferResult(False, reason)

        return TransferResult(True)

    # =========================================================================
    # Journal
    # =========================================================================

    def snapshot(self) -> Dict[bytes, int]:
        """Copy of current balances."""
        return dict(self.balances)

    def restore(self, snapshot: Dict[bytes, int]) -> None:
        """Reset balances to a previous snapshot."""
        self.balances = dict(snapshot)

    def __repr__(self) -> str:
        return f"ValueBank(accounts={len(self.balances)}, supply={self.total_supply})"
