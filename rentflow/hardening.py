"""
RentFlow Validation and Hardening Module

Validation, invariant enforcement, and defensive utilities shared by the
lease program, the record store, and the client:

1. Input validation for the fixed-width types of the record layout
2. Constant-time checks on signature digests
3. State machine invariant enforcement
4. Robust ISO 8601 timestamp parsing

Security Model:
    - All inputs are untrusted until validated
    - Digest checks are constant-time
    - No record is persisted while an invariant is violated
"""

from __future__ import annotations

import hmac
import re
from dataclasses import dataclass, field
from datetime import datetime, timezone
from decimal import Decimal, InvalidOperation
from enum import Enum
from typing import Any, Dict, List, Optional, Set


U64_MAX = 2**64 - 1
I64_MIN = -(2**63)
I64_MAX = 2**63 - 1


# =============================================================================
# VALIDATION ERROR TYPES
# =============================================================================

class ValidationError(Exception):
    """Base exception for validation failures."""

    def __init__(self, field: str, message: str, value: Any = None):
        self.field = field
        self.message = message
        self.value = value
        super().__init__(f"{field}: {message}")


class ValidationErrors(Exception):
    """Collection of validation errors."""

    def __init__(self, errors: List[ValidationError]):
        self.errors = errors
        messages = "; ".join(f"{e.field}: {e.message}" for e in errors)
        super().__init__(f"Validation failed: {messages}")


class SecurityViolation(Exception):
    """Security constraint violated."""
    pass


class InvariantViolation(Exception):
    """State machine invariant violated."""
    pass


# =============================================================================
# VALIDATION RESULT
# =============================================================================

@dataclass
class ValidationResult:
    """Result of a validation operation."""
    is_valid: bool
    errors: List[ValidationError] = field(default_factory=list)
    sanitized_value: Any = None

    def raise_if_invalid(self) -> None:
        """Raise the single error, or ValidationErrors if there are several."""
        if self.is_valid:
            return
        if len(self.errors) == 1:
            raise self.errors[0]
        raise ValidationErrors(self.errors)

    def unwrap(self) -> Any:
        """Return the sanitized value or raise."""
        self.raise_if_invalid()
        return self.sanitized_value

    @classmethod
    def success(cls, sanitized_value: Any = None) -> "ValidationResult":
        return cls(is_valid=True, sanitized_value=sanitized_value)

    @classmethod
    def failure(cls, errors: List[ValidationError]) -> "ValidationResult":
        return cls(is_valid=False, errors=errors)


# =============================================================================
# TIMESTAMP UTILITIES
# =============================================================================

def parse_iso_timestamp(timestamp: str) -> datetime:
    """
    Parse ISO 8601 timestamp with robust handling of all common formats.

    Handles:
    - "2026-01-01T00:00:00Z" (Zulu time)
    - "2026-01-01T00:00:00+00:00" (explicit offset)
    - "2026-01-01T00:00:00.123Z" (with milliseconds)
    - "2026-01-01T00:00:00" (no timezone - assumes UTC)
    - "2026-01-01" (date only - midnight UTC)

    Raises:
        ValueError: If timestamp cannot be parsed
    """
    if not timestamp:
        raise ValueError("Empty timestamp")

    normalized = timestamp.strip().replace("Z", "+00:00")

    try:
        dt = datetime.fromisoformat(normalized)
    except ValueError as e:
        raise ValueError(f"Cannot parse timestamp: {timestamp}") from e

    # Timezone-naive input is taken as UTC
    if dt.tzinfo is None:
        dt = dt.replace(tzinfo=timezone.utc)

    return dt


def to_unix_seconds(value: Any) -> int:
    """Convert an int, datetime, date or ISO string to unix seconds."""
    if isinstance(value, bool):
        raise ValueError(f"Cannot convert bool to timestamp: {value}")
    if isinstance(value, int):
        return value
    if isinstance(value, datetime):
        dt = value if value.tzinfo else value.replace(tzinfo=timezone.utc)
        return int(dt.timestamp())
    if hasattr(value, "isoformat"):
        return int(parse_iso_timestamp(value.isoformat()).timestamp())
    if isinstance(value, str):
        s = value.strip()
        if re.fullmatch(r"-?\d+", s):
            return int(s)
        return int(parse_iso_timestamp(s).timestamp())
    raise ValueError(f"Cannot convert {type(value).__name__} to timestamp")


# =============================================================================
# INPUT VALIDATORS
# =============================================================================

class Validators:
    """Collection of input validators for the lease record types."""

    HEX64_PATTERN = re.compile(r'^[a-fA-F0-9]{64}$')

    @classmethod
    def validate_string(
        cls,
        value: Any,
        field_name: str,
        min_length: int = 0,
        max_length: Optional[int] = None,
    ) -> ValidationResult:
        """Validate a string value. Length limits count characters."""
        if not isinstance(value, str):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected string, got {type(value).__name__}", value)
            ])
        if "\x00" in value:
            return ValidationResult.failure([
                ValidationError(field_name, "Contains null bytes", value)
            ])

        errors = []
        if len(value) < min_length:
            errors.append(ValidationError(field_name, f"Too short (min {min_length} chars)", value))
        if max_length is not None and len(value) > max_length:
            errors.append(ValidationError(field_name, f"Too long (max {max_length} chars)", value))

        if errors:
            return ValidationResult.failure(errors)
        return ValidationResult.success(value)

    @classmethod
    def validate_bytes32(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate a fixed 32-byte value. Accepts bytes or 64 hex chars."""
        if isinstance(value, str):
            if not cls.HEX64_PATTERN.match(value.strip()):
                return ValidationResult.failure([
                    ValidationError(field_name, "Must be 64 hex characters", value)
                ])
            value = bytes.fromhex(value.strip())

        if isinstance(value, (bytearray, memoryview)):
            value = bytes(value)

        if not isinstance(value, bytes):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected bytes, got {type(value).__name__}", value)
            ])

        if len(value) != 32:
            return ValidationResult.failure([
                ValidationError(field_name, f"Must be exactly 32 bytes, got {len(value)}", value)
            ])

        return ValidationResult.success(value)

    @classmethod
    def validate_u64(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate an unsigned 64-bit integer."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if value < 0 or value > U64_MAX:
            return ValidationResult.failure([
                ValidationError(field_name, "Out of range for u64", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_i64(cls, value: Any, field_name: str) -> ValidationResult:
        """Validate a signed 64-bit integer (unix timestamps)."""
        if isinstance(value, bool) or not isinstance(value, int):
            return ValidationResult.failure([
                ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
            ])
        if value < I64_MIN or value > I64_MAX:
            return ValidationResult.failure([
                ValidationError(field_name, "Out of range for i64", value)
            ])
        return ValidationResult.success(value)

    @classmethod
    def validate_amount(
        cls,
        value: Any,
        field_name: str = "amount",
        decimals: int = 6,
    ) -> ValidationResult:
        """Validate a decimal currency amount and convert it to base units."""
        try:
            if isinstance(value, Decimal):
                amount = value
            elif isinstance(value, (str, int)) and not isinstance(value, bool):
                amount = Decimal(str(value).strip())
            elif isinstance(value, float):
                amount = Decimal(str(value))
            else:
                return ValidationResult.failure([
                    ValidationError(field_name, f"Cannot convert {type(value).__name__} to Decimal", value)
                ])
        except InvalidOperation:
            return ValidationResult.failure([
                ValidationError(field_name, "Invalid decimal value", value)
            ])

        if not amount.is_finite():
            return ValidationResult.failure([
                ValidationError(field_name, "Must be a finite number", value)
            ])

        scaled = amount.scaleb(decimals)
        if scaled != scaled.to_integral_value():
            return ValidationResult.failure([
                ValidationError(field_name, f"More than {decimals} decimal places", value)
            ])

        return cls.validate_u64(int(scaled), field_name)


# =============================================================================
# CRYPTOGRAPHIC UTILITIES
# =============================================================================

class CryptoUtils:
    """Cryptographic utility functions with security hardening."""

    @staticmethod
    def is_zero(value: bytes) -> bool:
        """True when every byte is zero."""
        return hmac.compare_digest(value, bytes(len(value)))


# =============================================================================
# STATE MACHINE INVARIANTS
# =============================================================================

class InvariantChecker:
    """Enforces state machine invariants."""

    @staticmethod
    def check_state_transition(
        current_state: Enum,
        target_state: Enum,
        valid_transitions: Dict[Enum, Set[Enum]],
    ) -> None:
        """Verify state transition is valid."""
        valid_targets = valid_transitions.get(current_state, set())
        if target_state not in valid_targets:
            raise InvariantViolation(
                f"Invalid state transition: {current_state.name} -> {target_state.name}. "
                f"Valid targets: {sorted(s.name for s in valid_targets)}"
            )

    @staticmethod
    def check_set_once(field_name: str, old_value: bool, new_value: bool) -> None:
        """Ensure a flag only moves false -> true."""
        if old_value and not new_value:
            raise InvariantViolation(f"{field_name} cannot be cleared once set")

    @staticmethod
    def check_unchanged(field_name: str, old_value: Any, new_value: Any) -> None:
        """Ensure an immutable field was not modified."""
        if old_value != new_value:
            raise InvariantViolation(f"{field_name} is immutable")
