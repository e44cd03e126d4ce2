"""Deterministic lease addressing.

Every lease lives at an address computed from a namespace tag, the
application-chosen `lease_id`, a one-byte bump and the program id:

    address = sha256(namespace_tag || lease_id || bump || program_id || MARKER)

Bumps are tried from 255 downwards and the first candidate that is *not* a
valid Ed25519 public key is taken, so no private key can ever sign for a
lease address. The same `lease_id` therefore always yields the same
(address, bump) pair, which is what lets the store refuse a second record
for the same lease without any index.

Changing the namespace tag, the program id or the hashing scheme moves every
existing lease to a new address. Treat them as fixed for the lifetime of a
ledger.
"""

from __future__ import annotations

import hashlib
from dataclasses import dataclass
from typing import List, Sequence, Tuple, Union

from rentflow.core import b58decode, b58encode

PDA_MARKER = b"ProgramDerivedAddress"
MAX_SEEDS = 16
KEY_LENGTH = 32

# Ed25519 field parameters
_P = 2**255 - 19
_D = (-121665 * pow(121666, _P - 2, _P)) % _P


class AddressDerivationError(Exception):
    """No off-curve address exists for the given seeds."""
    pass


@dataclass(frozen=True)
class Pubkey:
    """A 32-byte key rendered in base58. Used for identities and addresses."""
    raw: bytes

    def __post_init__(self):
        if not isinstance(self.raw, (bytes, bytearray)) or len(self.raw) != KEY_LENGTH:
            raise ValueError(f"Pubkey must be {KEY_LENGTH} bytes")
        object.__setattr__(self, "raw", bytes(self.raw))

    @classmethod
    def from_string(cls, value: str) -> "Pubkey":
        """Parse a base58 key."""
        raw = b58decode(value.strip())
        if len(raw) != KEY_LENGTH:
            raise ValueError(f"Base58 key must decode to {KEY_LENGTH} bytes, got {len(raw)}")
        return cls(raw)

    @classmethod
    def coerce(cls, value: Union["Pubkey", bytes, str]) -> "Pubkey":
        if isinstance(value, Pubkey):
            return value
        if isinstance(value, (bytes, bytearray)):
            return cls(bytes(value))
        if isinstance(value, str):
            return cls.from_string(value)
        raise TypeError(f"Cannot convert {type(value).__name__} to Pubkey")

    def is_on_curve(self) -> bool:
        return is_on_curve(self.raw)

    def __bytes__(self) -> bytes:
        return self.raw

    def __str__(self) -> str:
        return b58encode(self.raw)

    def __repr__(self) -> str:
        return f"Pubkey({self})"


Identity = Pubkey
Address = Pubkey


def is_on_curve(point: bytes) -> bool:
    """True when `point` decompresses to a point on the Ed25519 curve.

    x^2 = (y^2 - 1) / (d*y^2 + 1) must have a square root mod p. The sign
    bit only selects the root, so it does not affect the answer.
    """
    if len(point) != KEY_LENGTH:
        return False
    y = int.from_bytes(point, "little") & ((1 << 255) - 1)
    y %= _P
    yy = y * y % _P
    u = (yy - 1) % _P
    v = (_D * yy + 1) % _P
    x2 = u * pow(v, _P - 2, _P) % _P
    if x2 == 0:
        return True
    return pow(x2, (_P - 1) // 2, _P) == 1


def create_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Pubkey:
    """Hash seeds into an address, rejecting candidates that lie on the curve."""
    if len(seeds) > MAX_SEEDS:
        raise AddressDerivationError(f"At most {MAX_SEEDS} seeds allowed")

    h = hashlib.sha256()
    for seed in seeds:
        h.update(seed)
    h.update(program_id.raw)
    h.update(PDA_MARKER)
    digest = h.digest()

    if is_on_curve(digest):
        raise AddressDerivationError("Derived address lies on the Ed25519 curve")
    return Pubkey(digest)


def find_program_address(seeds: Sequence[bytes], program_id: Pubkey) -> Tuple[Pubkey, int]:
    """Return the first off-curve address and its bump, searching 255 -> 0."""
    base: List[bytes] = list(seeds)
    for bump in range(255, -1, -1):
        try:
            return create_program_address(base + [bytes([bump])], program_id), bump
        except AddressDerivationError:
            continue
    raise AddressDerivationError("Unable to find a viable program address bump")


def lease_seeds(namespace_tag: str, lease_id: str) -> List[bytes]:
    return [namespace_tag.encode("utf-8"), lease_id.encode("utf-8")]


def derive_lease_address(
    lease_id: str,
    program_id: Pubkey,
    namespace_tag: str = "lease",
) -> Tuple[Pubkey, int]:
    """Derive the (address, bump) pair for a lease id."""
    return find_program_address(lease_seeds(namespace_tag, lease_id), program_id)
