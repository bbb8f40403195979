"""
Scenario - Declarative auction runs for demos and regression checks.

A scenario is a JSON document describing the deployment, initial balances,
accounts whose receivers refuse payment, and an ordered list of steps.
Each step may state the outcome it expects; replay reports every mismatch.

Example:
    {
      "operator": "operator",
      "beneficiary": "seller",
      "start": 0,
      "duration": 3600,
      "balances": {"alice": 1000, "bob": 1000},
      "steps": [
        {"action": "bid", "account": "alice", "value": 100, "now": 60},
        {"action": "withdraw", "account": "alice", "now": 4000,
         "expect": "WINNER_CANNOT_WITHDRAW"}
      ]
    }
"""

from dataclasses import dataclass, field
from pathlib import Path
from typing import Dict, List, Literal, Optional, Union

from pydantic import BaseModel, Field, field_validator, model_validator

from bidvault.core.config import AuctionConfig
from bidvault.core.errors import AuctionError, OperationResult
from bidvault.core.state.bank import ValueBank
from bidvault.core.state.ledger import AuctionLedger
from bidvault.crypto import address_from_label, hex_to_bytes, is_valid_address
from bidvault.utils.logger import get_logger
from bidvault.utils.validation import require, validate_label

logger = get_logger("scenario")

EXPECT_OK = "ok"


def resolve_account(name: str) -> bytes:
    """
    Map a label or 0x address to a 20-byte account address.

    Raises:
        ValueError: if ``name`` is neither an address nor a valid label
    """
    require(validate_label(name, "account"))
    if is_valid_address(name):
        return hex_to_bytes(name)
    return address_from_label(name)


# =============================================================================
# Document Models
# =============================================================================


def _label(value: str) -> str:
    require(validate_label(value, "account"))
    return value


class ScenarioStep(BaseModel):
    """One operation in a scenario."""
    action: Literal["bid", "withdraw", "end", "emergency"]
    account: str
    value: Optional[int] = Field(default=None, ge=0)
    now: Optional[int] = Field(default=None, ge=0)
    expect: Optional[str] = None

    @field_validator("account")
    @classmethod
    def _account_label(cls, v: str) -> str:
        return _label(v)

    @field_validator("expect")
    @classmethod
    def _known_outcome(cls, v: Optional[str]) -> Optional[str]:
        if v is None or v == EXPECT_OK:
            return v
        if v not in AuctionError.__members__:
            raise ValueError(f"unknown outcome {v!r}")
        return v

    @model_validator(mode="after")
    def _value_for_bids(self) -> "ScenarioStep":
        if self.action == "bid" and self.value is None:
            raise ValueError("bid steps require a value")
        if self.action != "emergency" and self.now is None:
            raise ValueError(f"{self.action} steps require now")
        return self


class Scenario(BaseModel):
    """A complete auction run."""
    operator: str
    beneficiary: str
    start: int = Field(ge=0)
    duration: int = Field(ge=0)
    balances: Dict[str, int] = Field(default_factory=dict)
    rejecting: List[str] = Field(default_factory=list)
    steps: List[ScenarioStep] = Field(default_factory=list)

    @field_validator("operator", "beneficiary")
    @classmethod
    def _principal_label(cls, v: str) -> str:
        return _label(v)

    @field_validator("rejecting")
    @classmethod
    def _rejecting_labels(cls, v: List[str]) -> List[str]:
        return [_label(name) for name in v]

    @field_validator("balances")
    @classmethod
    def _non_negative(cls, v: Dict[str, int]) -> Dict[str, int]:
        for name, amount in v.items():
            _label(name)
            if amount < 0:
                raise ValueError(f"balance for {name!r} must be >= 0")
        return v


def load_scenario(path: Union[str, Path]) -> Scenario:
    """
    Parse and validate a scenario file.

    Raises:
        pydantic.ValidationError: if the document is malformed
    """
    return Scenario.model_validate_json(Path(path).read_text(encoding="utf-8"))


# =============================================================================
# Replay
# =============================================================================


@dataclass
class StepOutcome:
    """Result of replaying one step."""
    index: int
    step: ScenarioStep
    result: OperationResult

    @property
    def outcome(self) -> str:
        return EXPECT_OK if self.result.ok else self.result.error.name

    @property
    def matched(self) -> bool:
        return self.step.expect is None or self.step.expect == self.outcome


@dataclass
class ScenarioReport:
    """All step outcomes plus final balances."""
    ledger: AuctionLedger
    outcomes: List[StepOutcome] = field(default_factory=list)

    @property
    def mismatches(self) -> List[StepOutcome]:
        return [o for o in self.outcomes if not o.matched]

    @property
    def passed(self) -> bool:
        return not self.mismatches

    def balance(self, name: str) -> int:
        return self.ledger.bank.balance_of(resolve_account(name))


def run_scenario(scenario: Scenario, config: Optional[AuctionConfig] = None) -> ScenarioReport:
    """
    Deploy a fresh in-memory auction and replay every step.

    Args:
        scenario: Validated scenario document
        config: Auction rules. None = defaults.

    Returns:
        ScenarioReport
    """
    bank = ValueBank()
    for name, amount in scenario.balances.items():
        bank.mint(resolve_account(name), amount)

    for name in scenario.rejecting:
        bank.register_receiver(resolve_account(name), lambda sender, amount: False)

    ledger = AuctionLedger.deploy(
        operator=resolve_account(scenario.operator),
        beneficiary=resolve_account(scenario.beneficiary),
        bidding_time=scenario.duration,
        now=scenario.start,
        bank=bank,
        config=config,
    )

    report = ScenarioReport(ledger=ledger)
    for i, step in enumerate(scenario.steps):
        account = resolve_account(step.account)

        if step.action == "bid":
            result = ledger.bid(account, step.value, step.now)
        elif step.action == "withdraw":
            result = ledger.withdraw_excess(account, step.now)
        elif step.action == "end":
            result = ledger.end_auction(account, step.now)
        else:
            result = ledger.emergency_withdraw(account)

        outcome = StepOutcome(index=i, step=step, result=result)
        report.outcomes.append(outcome)

        if not outcome.matched:
            logger.warning(f"Step {i} ({step.action} by {step.account}): expected {step.expect}, got {outcome.outcome}")

    logger.info(f"Scenario replayed: {len(report.outcomes)} steps, {len(report.mismatches)} mismatches")
    return report
