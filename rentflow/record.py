"""Lease record data model and persisted layout.

The record is stored as a fixed-size account:

    discriminator     8 bytes   sha256("account:Lease")[:8]
    lease_id          u32 length + UTF-8 bytes
    content_hash      32 bytes
    manager_identity  32 bytes
    tenant_identity   32 bytes
    monthly_rent      u64
    security_deposit  u64
    start_time        i64
    end_time          i64
    manager_signed    u8 (0/1)
    tenant_signed     u8 (0/1)
    manager_signature 32 bytes
    tenant_signature  32 bytes
    status            u8 (LeaseStatus)
    created_at        i64
    activated_at      i64
    address_salt      u8 (bump)

Integers are little-endian. Unused tail bytes are zero. The field order is
part of the on-ledger format and must not change.
"""

from __future__ import annotations

import hashlib
import struct
from dataclasses import dataclass, replace
from enum import IntEnum
from typing import Any, Dict, Optional

from rentflow.address import Pubkey
from rentflow.errors import AccountDataError
from rentflow.hardening import CryptoUtils, InvariantViolation

LEASE_ID_MAX_BYTES = 64

DISCRIMINATOR = hashlib.sha256(b"account:Lease").digest()[:8]

_TERMS = struct.Struct("<32s32s32sQQqq")
_SIGNATURES = struct.Struct("<??32s32sBqqB")

INIT_SPACE = 4 + LEASE_ID_MAX_BYTES + _TERMS.size + _SIGNATURES.size
ACCOUNT_SPACE = len(DISCRIMINATOR) + INIT_SPACE

ZERO_SIGNATURE = bytes(32)


class LeaseStatus(IntEnum):
    """Lease lifecycle states. Values are the persisted tags."""
    PENDING = 0
    ACTIVE = 1
    TERMINATED = 2
    COMPLETED = 3

    @property
    def is_terminal(self) -> bool:
        return self in (LeaseStatus.TERMINATED, LeaseStatus.COMPLETED)

    @property
    def label(self) -> str:
        return self.name.capitalize()

    @classmethod
    def parse(cls, value: Any) -> "LeaseStatus":
        """Accept a LeaseStatus, its tag, or a case-insensitive name."""
        if isinstance(value, LeaseStatus):
            return value
        if isinstance(value, int) and not isinstance(value, bool):
            return cls(value)
        if isinstance(value, str):
            try:
                return cls[value.strip().upper()]
            except KeyError:
                pass
        raise ValueError(f"Unknown lease status: {value!r}")


@dataclass(frozen=True)
class LeaseRecord:
    """The persisted state of one lease."""
    lease_id: str
    content_hash: bytes
    manager_identity: Pubkey
    tenant_identity: Pubkey
    monthly_rent: int
    security_deposit: int
    start_time: int
    end_time: int
    manager_signed: bool = False
    tenant_signed: bool = False
    manager_signature: bytes = ZERO_SIGNATURE
    tenant_signature: bytes = ZERO_SIGNATURE
    status: LeaseStatus = LeaseStatus.PENDING
    created_at: int = 0
    activated_at: int = 0
    address_salt: int = 0

    def is_in_force(self) -> bool:
        """Both parties signed and the lease is active."""
        return self.manager_signed and self.tenant_signed and self.status == LeaseStatus.ACTIVE

    def role_of(self, identity: Pubkey) -> Optional[str]:
        """Return "manager", "tenant", or None for an identity."""
        if identity == self.manager_identity:
            return "manager"
        if identity == self.tenant_identity:
            return "tenant"
        return None

    def has_signed(self, role: str) -> bool:
        return self.manager_signed if role == "manager" else self.tenant_signed

    def with_signature(self, role: str, signature_hash: bytes) -> "LeaseRecord":
        if role == "manager":
            return replace(self, manager_signed=True, manager_signature=signature_hash)
        return replace(self, tenant_signed=True, tenant_signature=signature_hash)

    def check_invariants(self) -> None:
        """Raise InvariantViolation if the record breaks a lifecycle rule."""
        if self.end_time <= self.start_time:
            raise InvariantViolation("end_time must be after start_time")
        if self.status == LeaseStatus.ACTIVE and not (self.manager_signed and self.tenant_signed):
            raise InvariantViolation("active lease requires both signatures")
        if self.status == LeaseStatus.PENDING and self.activated_at != 0:
            raise InvariantViolation("pending lease cannot have an activation time")
        for role, signed, sig in (
            ("manager", self.manager_signed, self.manager_signature),
            ("tenant", self.tenant_signed, self.tenant_signature),
        ):
            if signed == CryptoUtils.is_zero(sig):
                raise InvariantViolation(f"{role} signature must be set iff {role} has signed")

    # ------------------------------------------------------------------
    # Layout
    # ------------------------------------------------------------------

    def to_bytes(self) -> bytes:
        """Encode to the fixed-size account layout."""
        lease_id = self.lease_id.encode("utf-8")
        if len(lease_id) > LEASE_ID_MAX_BYTES:
            raise InvariantViolation("lease_id exceeds reserved space")

        body = b"".join([
            DISCRIMINATOR,
            struct.pack("<I", len(lease_id)),
            lease_id,
            _TERMS.pack(
                self.content_hash,
                self.manager_identity.raw,
                self.tenant_identity.raw,
                self.monthly_rent,
                self.security_deposit,
                self.start_time,
                self.end_time,
            ),
            _SIGNATURES.pack(
                self.manager_signed,
                self.tenant_signed,
                self.manager_signature,
                self.tenant_signature,
                int(self.status),
                self.created_at,
                self.activated_at,
                self.address_salt,
            ),
        ])
        return body + bytes(ACCOUNT_SPACE - len(body))

    @classmethod
    def from_bytes(cls, data: bytes) -> "LeaseRecord":
        """Decode an account. Raises AccountDataError on malformed input."""
        data = bytes(data)
        if len(data) < len(DISCRIMINATOR) + 4:
            raise AccountDataError("account data too short")
        if data[:8] != DISCRIMINATOR:
            raise AccountDataError("account discriminator mismatch")

        (id_len,) = struct.unpack_from("<I", data, 8)
        if id_len > LEASE_ID_MAX_BYTES:
            raise AccountDataError("lease_id length out of range")
        offset = 12 + id_len
        if len(data) < offset + _TERMS.size + _SIGNATURES.size:
            raise AccountDataError("account data truncated")

        try:
            lease_id = data[12:offset].decode("utf-8")
            content_hash, manager, tenant, rent, deposit, start, end = _TERMS.unpack_from(data, offset)
            offset += _TERMS.size
            (m_signed, t_signed, m_sig, t_sig, status,
             created_at, activated_at, bump) = _SIGNATURES.unpack_from(data, offset)
            status = LeaseStatus(status)
        except (UnicodeDecodeError, ValueError, struct.error) as e:
            raise AccountDataError(f"cannot decode lease account: {e}") from e

        return cls(
            lease_id=lease_id,
            content_hash=content_hash,
            manager_identity=Pubkey(manager),
            tenant_identity=Pubkey(tenant),
            monthly_rent=rent,
            security_deposit=deposit,
            start_time=start,
            end_time=end,
            manager_signed=m_signed,
            tenant_signed=t_signed,
            manager_signature=m_sig,
            tenant_signature=t_sig,
            status=status,
            created_at=created_at,
            activated_at=activated_at,
            address_salt=bump,
        )

    def to_dict(self) -> Dict[str, Any]:
        """JSON-friendly view with base58 keys and hex digests."""
        return {
            "lease_id": self.lease_id,
            "content_hash": self.content_hash.hex(),
            "manager_identity": str(self.manager_identity),
            "tenant_identity": str(self.tenant_identity),
            "monthly_rent": self.monthly_rent,
            "security_deposit": self.security_deposit,
            "start_time": self.start_time,
            "end_time": self.end_time,
            "manager_signed": self.manager_signed,
            "tenant_signed": self.tenant_signed,
            "manager_signature": self.manager_signature.hex(),
            "tenant_signature": self.tenant_signature.hex(),
            "status": self.status.label,
            "created_at": self.created_at,
            "activated_at": self.activated_at,
            "address_salt": self.address_salt,
        }
