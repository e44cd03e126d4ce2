"""
RentFlow Lease Client

The application-facing side of the lease program. It turns human lease
terms (decimal amounts, ISO dates, base58 wallets) into program arguments,
signs every invocation with the caller's key, and reports outcomes as
`ClientResult` objects instead of raising.

    client = LeaseClient(program)
    terms = load_lease_terms("lease.yaml")
    result = client.create_lease(manager_keypair, terms)
    if result.success:
        client.sign_lease(manager_keypair, terms.lease_id)
        client.sign_lease(tenant_keypair, terms.lease_id)
"""

from __future__ import annotations

import pathlib
from dataclasses import dataclass, field
from decimal import Decimal
from typing import Any, Callable, Dict, Optional, Union

from rentflow.address import Address, Pubkey
from rentflow.context import Clock, InvocationContext, SystemClock
from rentflow.core import canonical_json_bytes, load_document, sha256
from rentflow.errors import LeaseError, StoreError
from rentflow.hardening import (
    InvariantViolation,
    SecurityViolation,
    ValidationError,
    ValidationErrors,
    Validators,
    to_unix_seconds,
)
from rentflow.observability import LeaseLayer, get_logger, timed_operation
from rentflow.program import LeaseProgram
from rentflow.record import LeaseRecord, LeaseStatus
from rentflow.schema import LEASE_TERMS_SCHEMA, validate_against_schema
from rentflow.security import InvocationAuthenticator, Keypair, SignedInvocation, signature_digest

logger = get_logger("lease_client", LeaseLayer.CLIENT)

# Errors reported through ClientResult rather than raised
CLIENT_ERRORS = (
    LeaseError,
    StoreError,
    ValidationError,
    ValidationErrors,
    SecurityViolation,
    InvariantViolation,
)


# =============================================================================
# LEASE TERMS
# =============================================================================

def _currency_decimals(decimals: Optional[int]) -> int:
    if decimals is not None:
        return decimals
    from rentflow.config import get_config
    return get_config().client.currency_decimals.get()


def to_base_units(amount: Any, field_name: str = "amount", decimals: Optional[int] = None) -> int:
    """Convert a decimal currency amount to integer base units (1.5 USDC -> 1500000)."""
    return Validators.validate_amount(amount, field_name, _currency_decimals(decimals)).unwrap()


def from_base_units(units: int, decimals: Optional[int] = None) -> Decimal:
    return Decimal(units).scaleb(-_currency_decimals(decimals))


def _to_timestamp(value: Any, field_name: str) -> int:
    try:
        return to_unix_seconds(value)
    except ValueError as e:
        raise ValidationError(field_name, str(e), value) from e


def _parse_wallet(value: str, field_name: str) -> Pubkey:
    try:
        return Pubkey.from_string(value)
    except ValueError as e:
        raise ValidationError(field_name, str(e), value) from e


def _normalize_document(obj: Any) -> Any:
    """Make a loaded YAML/JSON document JSON-schema friendly."""
    if isinstance(obj, dict):
        return {str(k): _normalize_document(v) for k, v in obj.items()}
    if isinstance(obj, list):
        return [_normalize_document(v) for v in obj]
    if isinstance(obj, float):
        return str(Decimal(str(obj)))
    if hasattr(obj, "isoformat"):
        return obj.isoformat()
    return obj


@dataclass(frozen=True)
class LeaseTerms:
    """Lease terms in program units: base-unit amounts and unix seconds."""
    lease_id: str
    property_id: str
    manager_wallet: Pubkey
    tenant_wallet: Pubkey
    monthly_rent: int
    security_deposit: int
    start_time: int
    end_time: int
    extra: Dict[str, Any] = field(default_factory=dict, compare=False)

    @classmethod
    def from_document(cls, doc: Any, decimals: Optional[int] = None) -> "LeaseTerms":
        """Validate a terms document against the schema and convert it."""
        doc = _normalize_document(doc)
        errors = validate_against_schema(doc, LEASE_TERMS_SCHEMA)
        if errors:
            raise ValidationErrors([ValidationError("terms", e) for e in errors])

        known = {
            "lease_id", "property_id", "manager_wallet", "tenant_wallet",
            "monthly_rent", "security_deposit", "start_date", "end_date",
        }
        return cls(
            lease_id=doc["lease_id"],
            property_id=doc["property_id"],
            manager_wallet=_parse_wallet(doc["manager_wallet"], "manager_wallet"),
            tenant_wallet=_parse_wallet(doc["tenant_wallet"], "tenant_wallet"),
            monthly_rent=to_base_units(doc["monthly_rent"], "monthly_rent", decimals),
            security_deposit=to_base_units(doc["security_deposit"], "security_deposit", decimals),
            start_time=_to_timestamp(doc["start_date"], "start_date"),
            end_time=_to_timestamp(doc["end_date"], "end_date"),
            extra={k: v for k, v in doc.items() if k not in known},
        )

    def hash_input(self) -> Dict[str, Any]:
        return {
            "leaseId": self.lease_id,
            "propertyId": self.property_id,
            "managerWallet": str(self.manager_wallet),
            "tenantWallet": str(self.tenant_wallet),
            "monthlyRent": self.monthly_rent,
            "securityDeposit": self.security_deposit,
            "startDate": self.start_time,
            "endDate": self.end_time,
        }

    def terms_hash(self) -> bytes:
        """SHA-256 of the canonical JSON of the hashed terms."""
        return sha256(canonical_json_bytes(self.hash_input()))


def load_lease_terms(path: Union[str, pathlib.Path], decimals: Optional[int] = None) -> LeaseTerms:
    """Load a YAML or JSON lease terms file."""
    p = pathlib.Path(path)
    if not p.exists():
        raise ValidationError("terms", f"File not found: {p}")
    return LeaseTerms.from_document(load_document(p), decimals)


# =============================================================================
# RESULTS
# =============================================================================

@dataclass
class ClientResult:
    """Outcome of a client call."""
    success: bool
    lease_id: str = ""
    address: Optional[str] = None
    activated: Optional[bool] = None
    verified: Optional[bool] = None
    status: Optional[str] = None
    record: Optional[Dict[str, Any]] = None
    error: Optional[str] = None
    error_code: Optional[str] = None

    def to_dict(self) -> Dict[str, Any]:
        return {k: v for k, v in self.__dict__.items() if v is not None}

    @classmethod
    def failure(cls, lease_id: str, exc: Exception) -> "ClientResult":
        code = exc.name if isinstance(exc, LeaseError) else type(exc).__name__
        return cls(success=False, lease_id=lease_id, error=str(exc), error_code=code)


# =============================================================================
# CLIENT
# =============================================================================

class LeaseClient:
    """Signs invocations and drives a LeaseProgram."""

    def __init__(
        self,
        program: LeaseProgram,
        clock: Optional[Clock] = None,
        authenticator: Optional[InvocationAuthenticator] = None,
    ):
        self.program = program
        self.clock = clock or (authenticator.clock if authenticator else SystemClock())
        self.authenticator = authenticator or InvocationAuthenticator(clock=self.clock)

    def lease_address(self, lease_id: str) -> Address:
        return self.program.lease_address(lease_id)[0]

    def _invoke(
        self,
        keypair: Keypair,
        operation: str,
        lease_id: str,
        args: Dict[str, Any],
        call: Callable[[InvocationContext], ClientResult],
    ) -> ClientResult:
        try:
            invocation = SignedInvocation.create(keypair, operation, lease_id, args, clock=self.clock)
            ctx = self.authenticator.authenticate(invocation)
            return call(ctx)
        except CLIENT_ERRORS as e:
            logger.debug(f"{operation} failed", lease_id=lease_id, error=str(e))
            return ClientResult.failure(lease_id, e)

    @timed_operation(logger, "client.create_lease")
    def create_lease(self, keypair: Keypair, terms: LeaseTerms) -> ClientResult:
        """Initialize a lease with the keypair as manager."""
        if keypair.identity != terms.manager_wallet:
            return ClientResult.failure(
                terms.lease_id,
                ValidationError("manager_wallet", "does not match the signing keypair", str(terms.manager_wallet)),
            )

        content_hash = terms.terms_hash()
        args = {
            "content_hash": content_hash.hex(),
            "tenant": str(terms.tenant_wallet),
            "monthly_rent": terms.monthly_rent,
            "security_deposit": terms.security_deposit,
            "start_time": terms.start_time,
            "end_time": terms.end_time,
        }

        def call(ctx: InvocationContext) -> ClientResult:
            address, record = self.program.initialize_lease(
                ctx,
                terms.lease_id,
                content_hash,
                terms.tenant_wallet,
                terms.monthly_rent,
                terms.security_deposit,
                terms.start_time,
                terms.end_time,
            )
            return ClientResult(
                success=True,
                lease_id=terms.lease_id,
                address=str(address),
                status=record.status.label,
            )

        return self._invoke(keypair, "initialize_lease", terms.lease_id, args, call)

    @timed_operation(logger, "client.sign_lease")
    def sign_lease(self, keypair: Keypair, lease_id: str) -> ClientResult:
        """Sign the stored content hash with the keypair and record the digest."""
        try:
            record = self.program.fetch_lease(lease_id)
        except CLIENT_ERRORS as e:
            return ClientResult.failure(lease_id, e)

        digest = signature_digest(keypair, record.content_hash)

        def call(ctx: InvocationContext) -> ClientResult:
            updated = self.program.sign_lease(ctx, lease_id, digest)
            return ClientResult(
                success=True,
                lease_id=lease_id,
                address=str(self.lease_address(lease_id)),
                activated=updated.status == LeaseStatus.ACTIVE,
                status=updated.status.label,
            )

        return self._invoke(keypair, "sign_lease", lease_id, {"signature_hash": digest.hex()}, call)

    @timed_operation(logger, "client.update_status")
    def update_status(self, keypair: Keypair, lease_id: str, new_status: Any) -> ClientResult:
        """Terminate or complete an active lease."""
        label = new_status.label if isinstance(new_status, LeaseStatus) else str(new_status)

        def call(ctx: InvocationContext) -> ClientResult:
            updated = self.program.update_lease_status(ctx, lease_id, new_status)
            return ClientResult(
                success=True,
                lease_id=lease_id,
                address=str(self.lease_address(lease_id)),
                status=updated.status.label,
            )

        return self._invoke(keypair, "update_lease_status", lease_id, {"new_status": label}, call)

    def verify_lease(self, lease_id: str) -> ClientResult:
        try:
            record = self.program.fetch_lease(lease_id)
        except CLIENT_ERRORS as e:
            result = ClientResult.failure(lease_id, e)
            result.verified = False
            return result
        return ClientResult(
            success=True,
            lease_id=lease_id,
            address=str(self.lease_address(lease_id)),
            verified=record.is_in_force(),
            status=record.status.label,
        )

    def get_lease(self, lease_id: str) -> ClientResult:
        try:
            record: LeaseRecord = self.program.fetch_lease(lease_id)
        except CLIENT_ERRORS as e:
            return ClientResult.failure(lease_id, e)
        return ClientResult(
            success=True,
            lease_id=lease_id,
            address=str(self.lease_address(lease_id)),
            status=record.status.label,
            record=record.to_dict(),
        )
