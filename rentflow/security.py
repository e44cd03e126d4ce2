"""
RentFlow Security Layer

Host-side authentication for lease invocations:

1. Keypairs - Ed25519 keys stored as OKP JWK files
2. Signature digests - the 32-byte value a party records when signing
3. Signed invocations - canonical message + Ed25519 signature
4. Nonce management - replay and stale-timestamp rejection

The lease program itself trusts whatever identity it is handed. This module
is what turns a signed request into that identity.
"""

from __future__ import annotations

import base64
import json
import pathlib
import secrets
import threading
from dataclasses import dataclass, field
from typing import Any, Dict, Optional, Union

from cryptography.exceptions import InvalidSignature
from cryptography.hazmat.primitives import serialization
from cryptography.hazmat.primitives.asymmetric.ed25519 import Ed25519PrivateKey, Ed25519PublicKey

from rentflow.address import Identity, Pubkey
from rentflow.context import Clock, InvocationContext, SystemClock
from rentflow.core import canonical_json_bytes, sha256
from rentflow.hardening import SecurityViolation
from rentflow.observability import LeaseLayer, get_logger

logger = get_logger("security", LeaseLayer.SECURITY)


def b64url_encode(b: bytes) -> str:
    return base64.urlsafe_b64encode(b).rstrip(b"=").decode("ascii")


def b64url_decode(s: str) -> bytes:
    pad = "=" * ((4 - len(s) % 4) % 4)
    return base64.urlsafe_b64decode((s + pad).encode("ascii"))


# =============================================================================
# KEYPAIRS
# =============================================================================

class Keypair:
    """An Ed25519 signing key and its 32-byte identity."""

    def __init__(self, private_key: Ed25519PrivateKey):
        self._private_key = private_key
        raw = private_key.public_key().public_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PublicFormat.Raw,
        )
        self.identity: Identity = Pubkey(raw)

    @classmethod
    def generate(cls) -> "Keypair":
        return cls(Ed25519PrivateKey.generate())

    @classmethod
    def from_seed(cls, seed: bytes) -> "Keypair":
        """Deterministic keypair from a 32-byte seed."""
        if len(seed) != 32:
            raise ValueError(f"Ed25519 seed must be 32 bytes, got {len(seed)}")
        return cls(Ed25519PrivateKey.from_private_bytes(seed))

    def seed(self) -> bytes:
        return self._private_key.private_bytes(
            encoding=serialization.Encoding.Raw,
            format=serialization.PrivateFormat.Raw,
            encryption_algorithm=serialization.NoEncryption(),
        )

    def sign(self, message: bytes) -> bytes:
        return self._private_key.sign(message)

    def to_jwk(self) -> Dict[str, str]:
        return {
            "kty": "OKP",
            "crv": "Ed25519",
            "x": b64url_encode(self.identity.raw),
            "d": b64url_encode(self.seed()),
        }

    @classmethod
    def from_jwk(cls, jwk: Dict[str, Any]) -> "Keypair":
        """Load a private OKP JWK. The `x` member must match `d`."""
        if jwk.get("kty") != "OKP" or jwk.get("crv") != "Ed25519":
            raise ValueError("Only OKP/Ed25519 JWK is supported")
        d = jwk.get("d")
        x = jwk.get("x")
        if not d or not x:
            raise ValueError("JWK must include both 'd' (private) and 'x' (public)")

        keypair = cls.from_seed(b64url_decode(d))
        if keypair.identity.raw != b64url_decode(x):
            raise ValueError("JWK public key does not match private key")
        return keypair

    def save(self, path: Union[str, pathlib.Path]) -> pathlib.Path:
        """Write the keypair as a JWK file readable only by the owner."""
        p = pathlib.Path(path)
        p.parent.mkdir(parents=True, exist_ok=True)
        p.write_text(json.dumps(self.to_jwk(), indent=2) + "\n", encoding="utf-8")
        p.chmod(0o600)
        return p

    @classmethod
    def load(cls, path: Union[str, pathlib.Path]) -> "Keypair":
        obj = json.loads(pathlib.Path(path).read_text(encoding="utf-8"))
        if not isinstance(obj, dict):
            raise ValueError("key file must be a JSON object")
        return cls.from_jwk(obj)

    def __repr__(self) -> str:
        return f"Keypair({self.identity})"


def verify_signature(identity: Identity, message: bytes, signature: bytes) -> bool:
    """Check an Ed25519 signature against a 32-byte identity."""
    try:
        Ed25519PublicKey.from_public_bytes(identity.raw).verify(signature, message)
        return True
    except (InvalidSignature, ValueError):
        return False


def signature_digest(keypair: Keypair, content_hash: bytes) -> bytes:
    """
    The 32-byte value a party records when signing a lease.

    SHA-256 of the party's Ed25519 signature over the content hash. Ed25519
    is deterministic, so a party can always reproduce its own digest.
    """
    if len(content_hash) != 32:
        raise ValueError(f"content_hash must be 32 bytes, got {len(content_hash)}")
    return sha256(keypair.sign(content_hash))


# =============================================================================
# NONCE MANAGEMENT
# =============================================================================

class NonceRegistry:
    """
    Registry for tracking used nonces to prevent replay attacks.

    Nonces are remembered for `ttl_seconds` of clock time. A timestamp is
    accepted for up to twice the allowed clock skew, so forgetting a nonce
    is safe only when `ttl_seconds` is at least that long.
    `ConfigManager.validate()` reports configurations that break this.
    """

    def __init__(self, ttl_seconds: int = 300, clock: Optional[Clock] = None):
        self._nonces: Dict[str, int] = {}
        self._lock = threading.Lock()
        self._ttl = ttl_seconds
        self._clock = clock or SystemClock()

    def check_and_register(self, nonce: str) -> bool:
        """
        Check if nonce is fresh and register it.

        Returns False if the nonce was already used.
        """
        with self._lock:
            now = self._clock.now()
            self._cleanup(now)
            if nonce in self._nonces:
                return False
            self._nonces[nonce] = now
            return True

    def is_fresh(self, nonce: str) -> bool:
        with self._lock:
            return nonce not in self._nonces

    def _cleanup(self, now: int) -> None:
        cutoff = now - self._ttl
        expired = [n for n, t in self._nonces.items() if t < cutoff]
        for nonce in expired:
            del self._nonces[nonce]

    def size(self) -> int:
        with self._lock:
            return len(self._nonces)


# =============================================================================
# SIGNED INVOCATIONS
# =============================================================================

@dataclass(frozen=True)
class SignedInvocation:
    """A lease operation request signed by its caller."""
    operation: str
    lease_id: str
    signer: Identity
    timestamp: int
    nonce: str
    signature: bytes
    args: Dict[str, Any] = field(default_factory=dict)

    @staticmethod
    def signing_input(
        operation: str,
        lease_id: str,
        signer: Identity,
        timestamp: int,
        nonce: str,
        args: Dict[str, Any],
    ) -> bytes:
        return canonical_json_bytes({
            "operation": operation,
            "lease_id": lease_id,
            "signer": str(signer),
            "timestamp": timestamp,
            "nonce": nonce,
            "args": args,
        })

    def message(self) -> bytes:
        return self.signing_input(
            self.operation, self.lease_id, self.signer, self.timestamp, self.nonce, self.args
        )

    @classmethod
    def create(
        cls,
        keypair: Keypair,
        operation: str,
        lease_id: str,
        args: Optional[Dict[str, Any]] = None,
        clock: Optional[Clock] = None,
        nonce: Optional[str] = None,
    ) -> "SignedInvocation":
        args = dict(args or {})
        timestamp = (clock or SystemClock()).now()
        nonce = nonce or secrets.token_hex(16)
        msg = cls.signing_input(operation, lease_id, keypair.identity, timestamp, nonce, args)
        return cls(
            operation=operation,
            lease_id=lease_id,
            signer=keypair.identity,
            timestamp=timestamp,
            nonce=nonce,
            signature=keypair.sign(msg),
            args=args,
        )


class InvocationAuthenticator:
    """
    Turns a SignedInvocation into an InvocationContext.

    Checks run in order: signature, timestamp window, nonce. A request with
    a bad signature never consumes a nonce.
    """

    def __init__(
        self,
        clock: Optional[Clock] = None,
        nonce_registry: Optional[NonceRegistry] = None,
        max_clock_skew: Optional[int] = None,
    ):
        from rentflow.config import get_config

        sec = get_config().security
        self.clock = clock or SystemClock()
        self.nonces = nonce_registry or NonceRegistry(sec.nonce_ttl_seconds.get(), self.clock)
        self.max_clock_skew = (
            max_clock_skew if max_clock_skew is not None else sec.max_clock_skew_seconds.get()
        )

    def authenticate(self, invocation: SignedInvocation) -> InvocationContext:
        if not verify_signature(invocation.signer, invocation.message(), invocation.signature):
            logger.warning(
                "Invocation signature rejected",
                operation=invocation.operation,
                signer=str(invocation.signer),
            )
            raise SecurityViolation("Invalid invocation signature")

        skew = abs(self.clock.now() - invocation.timestamp)
        if skew > self.max_clock_skew:
            logger.warning(
                "Invocation timestamp outside window",
                operation=invocation.operation,
                skew=skew,
            )
            raise SecurityViolation(f"Invocation timestamp outside accepted window ({skew}s)")

        if not self.nonces.check_and_register(invocation.nonce):
            logger.warning(
                "Invocation replay rejected",
                operation=invocation.operation,
                nonce=invocation.nonce,
            )
            raise SecurityViolation("Nonce already used (replay)")

        return InvocationContext(signer=invocation.signer, clock=self.clock)
