"""Lease program and record store errors.

Lease errors are caller-visible validation failures. None of them is
retryable, and every one aborts its operation before anything is written.
Numeric codes start at 6000 in declaration order and are stable.
"""

from __future__ import annotations

from typing import Dict, Type


class LeaseError(Exception):
    """Base class for the lease error taxonomy."""
    code: int = 6000
    message: str = "Lease error"

    def __init__(self, detail: str = ""):
        self.detail = detail
        text = f"{self.message}: {detail}" if detail else self.message
        super().__init__(text)

    @property
    def name(self) -> str:
        return type(self).__name__

    def to_dict(self) -> Dict[str, object]:
        return {"code": self.code, "name": self.name, "message": str(self)}


class LeaseIdTooLong(LeaseError):
    code = 6000
    message = "Lease ID cannot exceed 64 characters"


class InvalidRentAmount(LeaseError):
    code = 6001
    message = "Rent amount must be greater than 0"


class InvalidDateRange(LeaseError):
    code = 6002
    message = "End date must be after start date"


class UnauthorizedSigner(LeaseError):
    code = 6003
    message = "Unauthorized signer - must be manager or tenant"


class LeaseNotPending(LeaseError):
    code = 6004
    message = "Lease is not in pending status"


class AlreadySigned(LeaseError):
    code = 6005
    message = "This party has already signed the lease"


class LeaseNotEnded(LeaseError):
    code = 6006
    message = "Lease has not ended yet"


class InvalidStatusTransition(LeaseError):
    code = 6007
    message = "Invalid status transition"


LEASE_ERRORS: Dict[int, Type[LeaseError]] = {
    cls.code: cls
    for cls in (
        LeaseIdTooLong,
        InvalidRentAmount,
        InvalidDateRange,
        UnauthorizedSigner,
        LeaseNotPending,
        AlreadySigned,
        LeaseNotEnded,
        InvalidStatusTransition,
    )
}


def error_for_code(code: int) -> Type[LeaseError]:
    """Look up the error class for a numeric code."""
    try:
        return LEASE_ERRORS[code]
    except KeyError:
        raise KeyError(f"Unknown lease error code: {code}") from None


# =============================================================================
# RECORD STORE ERRORS
# =============================================================================

class StoreError(Exception):
    """Record store failure."""
    pass


class AccountAlreadyExists(StoreError):
    """A record already exists at the address."""

    def __init__(self, address: object):
        self.address = address
        super().__init__(f"Account already in use: {address}")


class AccountNotFound(StoreError):
    """No record exists at the address."""

    def __init__(self, address: object):
        self.address = address
        super().__init__(f"Account not found: {address}")


class AccountDataError(StoreError):
    """Stored bytes do not decode to a lease record."""
    pass
