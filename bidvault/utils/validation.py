"""
Input Validation - Shape checks for values entering the ledger.

Provides validation for all external inputs to prevent:
- Malformed account addresses
- Negative or non-integer amounts
- Out-of-range timestamps
"""

from typing import Any, Tuple

from bidvault.crypto import ADDRESS_SIZE

# =============================================================================
# Constants
# =============================================================================

# Field bounds
MIN_AMOUNT = 0
MAX_AMOUNT = 2**256 - 1
MIN_TIMESTAMP = 0
MAX_TIMESTAMP = 2**63 - 1  # SQLite INTEGER range
MAX_LABEL_LENGTH = 64


# =============================================================================
# Validation Functions
# =============================================================================


def validate_bytes(
    data: Any,
    name: str,
    expected_length: int,
) -> Tuple[bool, str]:
    """
    Validate bytes input of a fixed length.

    Args:
        data: Data to validate
        name: Field name for error messages
        expected_length: Exact expected length

    Returns:
        (is_valid, error_message)
    """
    if not isinstance(data, (bytes, bytearray)):
        return False, f"{name} must be bytes, got {type(data).__name__}"

    if len(data) != expected_length:
        return False, f"{name} must be {expected_length} bytes, got {len(data)}"

    return True, ""


def validate_address(address: Any, name: str = "address") -> Tuple[bool, str]:
    """Validate an account address."""
    return validate_bytes(address, name, expected_length=ADDRESS_SIZE)


def validate_integer(
    value: Any,
    name: str,
    min_val: int = MIN_AMOUNT,
    max_val: int = MAX_AMOUNT,
) -> Tuple[bool, str]:
    """
    Validate integer within bounds.

    Args:
        value: Value to validate
        name: Field name for errors
        min_val: Minimum allowed value
        max_val: Maximum allowed value

    Returns:
        (is_valid, error_message)
    """
    # bool is an int subclass; reject it explicitly
    if isinstance(value, bool) or not isinstance(value, int):
        return False, f"{name} must be int, got {type(value).__name__}"

    if value < min_val:
        return False, f"{name} must be >= {min_val}, got {value}"

    if value > max_val:
        return False, f"{name} must be <= {max_val}, got {value}"

    return True, ""


def validate_amount(amount: Any, name: str = "amount") -> Tuple[bool, str]:
    """Validate a value amount."""
    return validate_integer(amount, name, MIN_AMOUNT, MAX_AMOUNT)


def validate_timestamp(timestamp: Any, name: str = "now") -> Tuple[bool, str]:
    """Validate a unix timestamp."""
    return validate_integer(timestamp, name, MIN_TIMESTAMP, MAX_TIMESTAMP)


def validate_label(value: Any, name: str = "label") -> Tuple[bool, str]:
    """Validate a human-readable account label."""
    if not isinstance(value, str):
        return False, f"{name} must be str, got {type(value).__name__}"

    if not value or len(value) > MAX_LABEL_LENGTH:
        return False, f"{name} must be 1-{MAX_LABEL_LENGTH} characters"

    return True, ""


def require(result: Tuple[bool, str]) -> None:
    """Raise ValueError if a validation result failed."""
    valid, error = result
    if not valid:
        raise ValueError(error)


# =============================================================================
# Module Exports
# =============================================================================

__all__ = [
    "validate_bytes",
    "validate_address",
    "validate_integer",
    "validate_amount",
    "validate_timestamp",
    "validate_label",
    "require",
    "MIN_AMOUNT",
    "MAX_AMOUNT",
    "MAX_TIMESTAMP",
    "MAX_LABEL_LENGTH",
]
