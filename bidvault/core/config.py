"""
Auction configuration parameters for bidvault.

Defines the bidding rules, fee schedule, and operational paths.
"""

import os
from dataclasses import dataclass, field, fields, replace
from pathlib import Path
from typing import Optional

from dotenv import load_dotenv

# Prefix for environment overrides, e.g. BIDVAULT_REFUND_FEE_PERCENT=3
ENV_PREFIX = "BIDVAULT_"


@dataclass
class AuctionConfig:
    """Auction-wide configuration parameters"""

    # Bidding rules
    min_raise_percent: int = 5          # New bid must exceed lead by more than 5%
    extension_window: int = 600         # Bids this close to the deadline extend it (seconds)
    extension_seconds: int = 600        # Amount added to the deadline per late bid

    # Fees
    refund_fee_percent: int = 2         # Cut taken from each refund, paid to the operator

    # Safety
    reentrancy_guard: bool = False      # Reject nested mutating calls outright

    # Paths
    data_dir: Path = field(default_factory=lambda: Path("data"))
    log_dir: Path = field(default_factory=lambda: Path("logs"))

    def __post_init__(self):
        """Validate parameter ranges"""
        self.data_dir = Path(self.data_dir)
        self.log_dir = Path(self.log_dir)

        if self.min_raise_percent < 0:
            raise ValueError(f"min_raise_percent must be >= 0, got {self.min_raise_percent}")
        if not 0 <= self.refund_fee_percent <= 100:
            raise ValueError(f"refund_fee_percent must be 0-100, got {self.refund_fee_percent}")
        if self.extension_window < 0 or self.extension_seconds < 0:
            raise ValueError("extension_window and extension_seconds must be >= 0")


# Fields fixed at deployment and stored with the auction. The rest
# (guard, paths) are per-process settings.
RULE_FIELDS = (
    "min_raise_percent",
    "extension_window",
    "extension_seconds",
    "refund_fee_percent",
)


def rules_to_dict(config: AuctionConfig) -> dict:
    """Auction rules as strings for key/value storage."""
    return {name: str(getattr(config, name)) for name in RULE_FIELDS}


def apply_stored_rules(config: AuctionConfig, stored: dict) -> AuctionConfig:
    """
    Return ``config`` with its auction rules replaced by stored ones.

    Keys missing from ``stored`` keep the value from ``config``.
    """
    rules = {name: int(stored[name]) for name in RULE_FIELDS if name in stored}
    return replace(config, **rules) if rules else config


def _parse_value(raw: str, current):
    """Coerce an environment string to the type of the default value."""
    if isinstance(current, bool):
        lowered = raw.strip().lower()
        if lowered in ("1", "true", "yes", "on"):
            return True
        if lowered in ("0", "false", "no", "off"):
            return False
        raise ValueError(f"Invalid boolean: {raw!r}")
    if isinstance(current, int):
        return int(raw)
    if isinstance(current, Path):
        return Path(raw)
    return raw


def load_config(env_file: Optional[str] = None) -> AuctionConfig:
    """
    Load configuration from environment or use defaults.

    Variables named ``BIDVAULT_<FIELD>`` override the defaults. If
    ``env_file`` is given (or a ``.env`` exists in the working directory)
    it is loaded first; variables already set in the process win.

    Args:
        env_file: Optional path to a dotenv file

    Returns:
        AuctionConfig instance
    """
    if env_file:
        if not Path(env_file).exists():
            raise ValueError(f"Config file not found: {env_file}")
        load_dotenv(env_file, override=False)
    elif Path(".env").exists():
        load_dotenv(".env", override=False)

    config = AuctionConfig()
    overrides = {}

    for f in fields(AuctionConfig):
        raw = os.environ.get(ENV_PREFIX + f.name.upper())
        if raw is None:
            continue
        try:
            overrides[f.name] = _parse_value(raw, getattr(config, f.name))
        except ValueError as e:
            raise ValueError(f"{ENV_PREFIX}{f.name.upper()}: {e}") from e

    return replace(config, **overrides) if overrides else config
