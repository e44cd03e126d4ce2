"""
RentFlow Lease Program

The lease state machine:

    Pending ──(both parties sign)──▶ Active ──▶ Terminated
                                        └─────▶ Completed   (only once end_time has passed)

Four operations act on exactly one record each:

    initialize_lease   create the record at its derived address (caller = manager)
    sign_lease         record one party's signature, activating on the second
    update_lease_status  move an active lease to a terminal status
    verify_lease       read-only: is the lease in force?

Every operation validates all preconditions before it mutates anything, and
the store commits the new record as one write or not at all. Trusted time is
read once per operation. Events are published after commit.

The decision logic lives in the pure `apply_*` functions so it can be tested
without a store; `LeaseProgram` wires them to the store, the invocation
context, logging and events.
"""

from __future__ import annotations

import time
from contextlib import contextmanager
from dataclasses import replace
from typing import Any, Dict, Iterator, List, Optional, Set, Tuple

from rentflow.address import Address, Identity, Pubkey
from rentflow.context import InvocationContext
from rentflow.errors import (
    AlreadySigned,
    InvalidDateRange,
    InvalidRentAmount,
    InvalidStatusTransition,
    LeaseError,
    LeaseIdTooLong,
    LeaseNotEnded,
    LeaseNotPending,
    StoreError,
    UnauthorizedSigner,
)
from rentflow.events import (
    Event,
    EventBus,
    LeaseActivated,
    LeaseCreated,
    LeaseSigned,
    LeaseStatusChanged,
    get_event_bus,
)
from rentflow.hardening import (
    CryptoUtils,
    InvariantChecker,
    ValidationError,
    Validators,
    U64_MAX,
)
from rentflow.observability import (
    LeaseLayer,
    correlation_id_var,
    generate_correlation_id,
    get_logger,
)
from rentflow.record import ACCOUNT_SPACE, LEASE_ID_MAX_BYTES, LeaseRecord, LeaseStatus
from rentflow.store import RecordStore

logger = get_logger("lease_program", LeaseLayer.PROGRAM)


VALID_TRANSITIONS: Dict[LeaseStatus, Set[LeaseStatus]] = {
    LeaseStatus.PENDING: {LeaseStatus.ACTIVE},
    LeaseStatus.ACTIVE: {LeaseStatus.TERMINATED, LeaseStatus.COMPLETED},
    LeaseStatus.TERMINATED: set(),
    LeaseStatus.COMPLETED: set(),
}

_IMMUTABLE_FIELDS = (
    "lease_id",
    "content_hash",
    "manager_identity",
    "tenant_identity",
    "monthly_rent",
    "security_deposit",
    "start_time",
    "end_time",
    "created_at",
    "address_salt",
)


# =============================================================================
# PURE TRANSITIONS
# =============================================================================

def _require_int(value: Any, field_name: str) -> int:
    if isinstance(value, bool) or not isinstance(value, int):
        raise ValidationError(field_name, f"Expected integer, got {type(value).__name__}", value)
    return value


def _require_timestamp(value: Any, field_name: str) -> int:
    return Validators.validate_i64(value, field_name).unwrap()


def apply_initialize(
    lease_id: Any,
    content_hash: Any,
    manager: Identity,
    tenant: Any,
    monthly_rent: Any,
    security_deposit: Any,
    start_time: Any,
    end_time: Any,
    now: int,
    address_salt: int = 0,
) -> LeaseRecord:
    """Build a fresh Pending record, or raise the first failed precondition."""
    if not isinstance(lease_id, str):
        raise ValidationError("lease_id", f"Expected string, got {type(lease_id).__name__}", lease_id)
    try:
        lease_id_len = len(lease_id.encode("utf-8"))
    except UnicodeEncodeError as e:
        raise ValidationError("lease_id", "Not encodable as UTF-8", lease_id) from e
    content_hash = Validators.validate_bytes32(content_hash, "content_hash").unwrap()
    try:
        tenant = Pubkey.coerce(tenant)
    except (TypeError, ValueError) as e:
        raise ValidationError("tenant", str(e), tenant) from e
    monthly_rent = _require_int(monthly_rent, "monthly_rent")
    security_deposit = _require_int(security_deposit, "security_deposit")
    start_time = _require_timestamp(start_time, "start_time")
    end_time = _require_timestamp(end_time, "end_time")

    if lease_id_len > LEASE_ID_MAX_BYTES:
        raise LeaseIdTooLong(f"{lease_id_len} bytes")
    if monthly_rent <= 0:
        raise InvalidRentAmount(str(monthly_rent))
    if end_time <= start_time:
        raise InvalidDateRange(f"start={start_time} end={end_time}")

    if monthly_rent > U64_MAX:
        raise ValidationError("monthly_rent", "Out of range for u64", monthly_rent)
    Validators.validate_u64(security_deposit, "security_deposit").raise_if_invalid()
    Validators.validate_string(lease_id, "lease_id").raise_if_invalid()

    return LeaseRecord(
        lease_id=lease_id,
        content_hash=content_hash,
        manager_identity=manager,
        tenant_identity=tenant,
        monthly_rent=monthly_rent,
        security_deposit=security_deposit,
        start_time=start_time,
        end_time=end_time,
        status=LeaseStatus.PENDING,
        created_at=now,
        activated_at=0,
        address_salt=address_salt,
    )


def apply_sign(
    record: LeaseRecord,
    signer: Identity,
    signature_hash: bytes,
    now: int,
) -> Tuple[LeaseRecord, str]:
    """Record a party's signature. Returns the new record and the signer's role."""
    if record.status != LeaseStatus.PENDING:
        raise LeaseNotPending(record.status.label)

    role = record.role_of(signer)
    if role is None:
        raise UnauthorizedSigner(str(signer))
    if record.has_signed(role):
        raise AlreadySigned(role)

    updated = record.with_signature(role, signature_hash)
    if updated.manager_signed and updated.tenant_signed:
        updated = replace(updated, status=LeaseStatus.ACTIVE, activated_at=now)
    return updated, role


def apply_update_status(
    record: LeaseRecord,
    signer: Identity,
    new_status: LeaseStatus,
    now: int,
) -> LeaseRecord:
    """Move an active lease to Terminated, or to Completed once it has ended."""
    if record.role_of(signer) is None:
        raise UnauthorizedSigner(str(signer))

    if record.status == LeaseStatus.ACTIVE and new_status == LeaseStatus.TERMINATED:
        pass
    elif record.status == LeaseStatus.ACTIVE and new_status == LeaseStatus.COMPLETED:
        if now < record.end_time:
            raise LeaseNotEnded(f"ends at {record.end_time}, now {now}")
    else:
        raise InvalidStatusTransition(f"{record.status.label} -> {new_status.label}")

    return replace(record, status=new_status)


def check_update(old: LeaseRecord, new: LeaseRecord) -> None:
    """Raise InvariantViolation if `new` is not a legal successor of `old`."""
    for name in _IMMUTABLE_FIELDS:
        InvariantChecker.check_unchanged(name, getattr(old, name), getattr(new, name))
    InvariantChecker.check_set_once("manager_signed", old.manager_signed, new.manager_signed)
    InvariantChecker.check_set_once("tenant_signed", old.tenant_signed, new.tenant_signed)
    if old.manager_signed:
        InvariantChecker.check_unchanged("manager_signature", old.manager_signature, new.manager_signature)
    if old.tenant_signed:
        InvariantChecker.check_unchanged("tenant_signature", old.tenant_signature, new.tenant_signature)
    if old.status != new.status:
        InvariantChecker.check_state_transition(old.status, new.status, VALID_TRANSITIONS)
    else:
        InvariantChecker.check_unchanged("activated_at", old.activated_at, new.activated_at)


# =============================================================================
# PROGRAM
# =============================================================================

class LeaseProgram:
    """
    The lease program bound to a record store.

    Args:
        store: Record store collaborator. Its program id is mixed into every
            lease address.
        event_bus: Bus for lifecycle events (defaults to the process bus).
        namespace_tag: Address seed prefix (defaults to configuration).
    """

    def __init__(
        self,
        store: RecordStore,
        event_bus: Optional[EventBus] = None,
        namespace_tag: Optional[str] = None,
    ):
        if namespace_tag is None:
            from rentflow.config import get_config
            namespace_tag = get_config().program.namespace_tag.get()

        self.store = store
        self.event_bus = event_bus or get_event_bus()
        self.namespace_tag = namespace_tag

    @property
    def program_id(self) -> Pubkey:
        return self.store.program_id

    def lease_address(self, lease_id: str) -> Tuple[Address, int]:
        """Derived (address, bump) for a lease id."""
        if not isinstance(lease_id, str):
            raise ValidationError("lease_id", f"Expected string, got {type(lease_id).__name__}", lease_id)
        return self.store.derive_address(self.namespace_tag, lease_id)

    @contextmanager
    def _operation(self, name: str, lease_id: Any) -> Iterator[Dict[str, Any]]:
        """Correlate, time and log one invocation."""
        token = None
        if not correlation_id_var.get():
            token = correlation_id_var.set(generate_correlation_id())
        start = time.monotonic()
        context: Dict[str, Any] = {"lease_id": lease_id}
        try:
            yield context
        except LeaseError as e:
            logger.warning(
                f"{name} rejected: {e}",
                operation=name,
                error_code=e.name,
                **context,
            )
            raise
        except (StoreError, ValidationError) as e:
            logger.warning(
                f"{name} failed: {e}",
                operation=name,
                error_code=type(e).__name__,
                **context,
            )
            raise
        else:
            logger.operation(name, (time.monotonic() - start) * 1000, True, **context)
        finally:
            if token is not None:
                correlation_id_var.reset(token)

    def _publish(self, events: List[Event]) -> None:
        for event in events:
            self.event_bus.publish(event)

    # ------------------------------------------------------------------
    # Operations
    # ------------------------------------------------------------------

    def initialize_lease(
        self,
        ctx: InvocationContext,
        lease_id: str,
        content_hash: bytes,
        tenant: Identity,
        monthly_rent: int,
        security_deposit: int,
        start_time: int,
        end_time: int,
    ) -> Tuple[Address, LeaseRecord]:
        """Create a Pending lease with the caller as manager."""
        with self._operation("initialize_lease", lease_id) as log_ctx:
            manager = ctx.current_signer()
            # Dry run: every precondition fails here, before the store is touched
            apply_initialize(
                lease_id, content_hash, manager, tenant,
                monthly_rent, security_deposit, start_time, end_time, now=0,
            )

            address, bump = self.lease_address(lease_id)
            log_ctx["address"] = str(address)
            with self.store.create(address, payer=manager, size=ACCOUNT_SPACE) as handle:
                now = ctx.current_time()
                record = apply_initialize(
                    lease_id, content_hash, manager, tenant,
                    monthly_rent, security_deposit, start_time, end_time,
                    now=now, address_salt=bump,
                )
                handle.write_record(record)

        self._publish([
            LeaseCreated(
                lease_id=record.lease_id,
                timestamp=now,
                address=str(address),
                manager=str(record.manager_identity),
                tenant=str(record.tenant_identity),
                monthly_rent=record.monthly_rent,
            )
        ])
        return address, record

    def sign_lease(
        self,
        ctx: InvocationContext,
        lease_id: str,
        signature_hash: bytes,
    ) -> LeaseRecord:
        """Record the caller's signature; the second signature activates the lease."""
        with self._operation("sign_lease", lease_id) as log_ctx:
            signature_hash = Validators.validate_bytes32(signature_hash, "signature_hash").unwrap()
            if CryptoUtils.is_zero(signature_hash):
                raise ValidationError("signature_hash", "Must not be all zero", signature_hash.hex())
            signer = ctx.current_signer()
            address, _ = self.lease_address(lease_id)

            with self.store.load_mut(address) as handle:
                current = handle.read_record()
                now = ctx.current_time()
                updated, role = apply_sign(current, signer, signature_hash, now)
                check_update(current, updated)
                handle.write_record(updated)

            log_ctx["role"] = role
            log_ctx["activated"] = updated.status == LeaseStatus.ACTIVE

        events: List[Event] = [
            LeaseSigned(lease_id=lease_id, timestamp=now, signer=str(signer), signer_type=role)
        ]
        if updated.status == LeaseStatus.ACTIVE:
            events.append(LeaseActivated(lease_id=lease_id, timestamp=now))
        self._publish(events)
        return updated

    def update_lease_status(
        self,
        ctx: InvocationContext,
        lease_id: str,
        new_status: Any,
    ) -> LeaseRecord:
        """Move an Active lease to Terminated or Completed."""
        with self._operation("update_lease_status", lease_id) as log_ctx:
            try:
                target = LeaseStatus.parse(new_status)
            except ValueError as e:
                raise ValidationError("new_status", str(e), new_status) from e
            signer = ctx.current_signer()
            address, _ = self.lease_address(lease_id)

            with self.store.load_mut(address) as handle:
                current = handle.read_record()
                now = ctx.current_time()
                updated = apply_update_status(current, signer, target, now)
                check_update(current, updated)
                handle.write_record(updated)

            log_ctx["old_status"] = current.status.label
            log_ctx["new_status"] = updated.status.label

        self._publish([
            LeaseStatusChanged(
                lease_id=lease_id,
                timestamp=now,
                old_status=current.status.label,
                new_status=updated.status.label,
            )
        ])
        return updated

    def fetch_lease(self, lease_id: str) -> LeaseRecord:
        """Decode the record stored for a lease id."""
        address, _ = self.lease_address(lease_id)
        return self.store.load(address).read_record()

    def verify_lease(self, lease_id: str) -> bool:
        """True when both parties have signed and the lease is Active."""
        return self.fetch_lease(lease_id).is_in_force()
