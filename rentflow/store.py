"""Record store collaborator.

The lease program never touches storage directly. It asks a `RecordStore`
for four things:

    derive_address(namespace, key)  -> (address, bump)
    create(address, payer, size)     -> writable handle, create-if-absent
    load_mut(address)                -> writable handle
    load(address)                    -> read-only handle

`create` and `load_mut` are context managers. The handle holds a private
copy of the account bytes. Leaving the block normally commits that copy as
one write, and leaving it with an exception discards it. Invocations on the
same address are serialized by a per-address lock; different addresses
never contend.

Two backends are provided: an in-memory store for tests and embedding, and
a file-backed store that keeps one JSON document per account.
"""

from __future__ import annotations

import json
import os
import pathlib
import tempfile
import threading
from abc import ABC, abstractmethod
from contextlib import contextmanager
from dataclasses import dataclass
from typing import Dict, Iterator, List, Optional, Tuple, Union

from rentflow.address import Address, Pubkey, derive_lease_address
from rentflow.core import canonical_json_bytes
from rentflow.errors import AccountAlreadyExists, AccountDataError, AccountNotFound, StoreError
from rentflow.observability import LeaseLayer, get_logger
from rentflow.record import LeaseRecord

logger = get_logger("store", LeaseLayer.STORE)


@dataclass
class StoredAccount:
    """Committed account state."""
    data: bytes
    payer: Pubkey


class _AddressLock:
    """A lock plus the number of invocations holding or waiting on it."""

    __slots__ = ("lock", "holders")

    def __init__(self):
        self.lock = threading.RLock()
        self.holders = 0


class AccountHandle:
    """A view of one account for the duration of an invocation."""

    def __init__(self, address: Address, data: bytes, payer: Pubkey, writable: bool):
        self.address = address
        self.payer = payer
        self.writable = writable
        self._data = bytes(data)
        self._size = len(data)
        self.dirty = False

    @property
    def data(self) -> bytes:
        return self._data

    @property
    def size(self) -> int:
        return self._size

    def write(self, data: bytes) -> None:
        if not self.writable:
            raise StoreError(f"Account is read-only in this invocation: {self.address}")
        if len(data) != self._size:
            raise StoreError(f"Account data must be {self._size} bytes, got {len(data)}")
        self._data = bytes(data)
        self.dirty = True

    def read_record(self) -> LeaseRecord:
        return LeaseRecord.from_bytes(self._data)

    def write_record(self, record: LeaseRecord) -> None:
        """Validate invariants and stage the encoded record."""
        record.check_invariants()
        self.write(record.to_bytes())


class RecordStore(ABC):
    """Abstract record store with atomic per-address invocations."""

    def __init__(self, program_id: Pubkey):
        self.program_id = program_id
        # Entries live only while some invocation uses the address
        self._locks: Dict[Address, _AddressLock] = {}
        self._locks_guard = threading.Lock()

    def derive_address(self, namespace: str, key: str) -> Tuple[Address, int]:
        """Deterministic (address, bump) for a key within a namespace."""
        return derive_lease_address(key, self.program_id, namespace)

    @contextmanager
    def _address_lock(self, address: Address) -> Iterator[None]:
        with self._locks_guard:
            entry = self._locks.get(address)
            if entry is None:
                entry = self._locks[address] = _AddressLock()
            entry.holders += 1
        try:
            with entry.lock:
                yield
        finally:
            with self._locks_guard:
                entry.holders -= 1
                if entry.holders == 0:
                    del self._locks[address]

    @contextmanager
    def create(self, address: Address, payer: Pubkey, size: int) -> Iterator[AccountHandle]:
        """Create a zeroed account; fails if one already exists."""
        with self._address_lock(address):
            if self._read(address) is not None:
                raise AccountAlreadyExists(address)
            handle = AccountHandle(address, bytes(size), payer, writable=True)
            yield handle
            self._insert(address, StoredAccount(handle.data, payer))
            logger.debug("Account created", operation="create", address=str(address), size=size)

    @contextmanager
    def load_mut(self, address: Address) -> Iterator[AccountHandle]:
        """Open an account for read-modify-write."""
        with self._address_lock(address):
            stored = self._read(address)
            if stored is None:
                raise AccountNotFound(address)
            handle = AccountHandle(address, stored.data, stored.payer, writable=True)
            yield handle
            if handle.dirty:
                self._update(address, StoredAccount(handle.data, stored.payer))
                logger.debug("Account updated", operation="update", address=str(address))

    def load(self, address: Address) -> AccountHandle:
        """Read-only snapshot of an account."""
        with self._address_lock(address):
            stored = self._read(address)
        if stored is None:
            raise AccountNotFound(address)
        return AccountHandle(address, stored.data, stored.payer, writable=False)

    def exists(self, address: Address) -> bool:
        with self._address_lock(address):
            return self._read(address) is not None

    @abstractmethod
    def _read(self, address: Address) -> Optional[StoredAccount]:
        """Committed account or None."""

    @abstractmethod
    def _insert(self, address: Address, account: StoredAccount) -> None:
        """Store a new account. Raise AccountAlreadyExists if present."""

    @abstractmethod
    def _update(self, address: Address, account: StoredAccount) -> None:
        """Replace an existing account in one write."""

    @abstractmethod
    def addresses(self) -> List[Address]:
        """All committed addresses."""


class InMemoryRecordStore(RecordStore):
    """Dictionary-backed store."""

    def __init__(self, program_id: Pubkey):
        super().__init__(program_id)
        self._accounts: Dict[Address, StoredAccount] = {}
        self._data_lock = threading.Lock()

    def _read(self, address: Address) -> Optional[StoredAccount]:
        with self._data_lock:
            return self._accounts.get(address)

    def _insert(self, address: Address, account: StoredAccount) -> None:
        with self._data_lock:
            if address in self._accounts:
                raise AccountAlreadyExists(address)
            self._accounts[address] = account

    def _update(self, address: Address, account: StoredAccount) -> None:
        with self._data_lock:
            if address not in self._accounts:
                raise AccountNotFound(address)
            self._accounts[address] = account

    def addresses(self) -> List[Address]:
        with self._data_lock:
            return list(self._accounts)


class FileRecordStore(RecordStore):
    """
    One JSON document per account under a root directory.

    New accounts are published with a hard link, which fails if the target
    exists, so two processes racing to create the same lease cannot both
    succeed. Updates are written to a temporary file and renamed into place.
    Read-modify-write serialization is per process.
    """

    SUFFIX = ".account.json"

    def __init__(self, program_id: Pubkey, root: Union[str, pathlib.Path]):
        super().__init__(program_id)
        self.root = pathlib.Path(root)
        self.root.mkdir(parents=True, exist_ok=True)

    def _path(self, address: Address) -> pathlib.Path:
        return self.root / f"{address}{self.SUFFIX}"

    def _encode(self, address: Address, account: StoredAccount) -> bytes:
        doc = {
            "address": str(address),
            "payer": str(account.payer),
            "size": len(account.data),
            "data": account.data.hex(),
        }
        return canonical_json_bytes(doc) + b"\n"

    def _write_temp(self, payload: bytes) -> pathlib.Path:
        fd, tmp = tempfile.mkstemp(dir=self.root, prefix=".tmp-", suffix=".json")
        with os.fdopen(fd, "wb") as f:
            f.write(payload)
            f.flush()
            os.fsync(f.fileno())
        return pathlib.Path(tmp)

    def _read(self, address: Address) -> Optional[StoredAccount]:
        path = self._path(address)
        try:
            doc = json.loads(path.read_text(encoding="utf-8"))
        except FileNotFoundError:
            return None
        except json.JSONDecodeError as e:
            raise AccountDataError(f"corrupt account file {path}: {e}") from e

        try:
            if doc.get("address") != str(address):
                raise AccountDataError(f"account file {path} holds {doc.get('address')}")
            data = bytes.fromhex(doc["data"])
            if len(data) != int(doc["size"]):
                raise AccountDataError(f"account file {path} size mismatch")
            return StoredAccount(data=data, payer=Pubkey.from_string(doc["payer"]))
        except (KeyError, TypeError, ValueError) as e:
            raise AccountDataError(f"corrupt account file {path}: {e}") from e

    def _insert(self, address: Address, account: StoredAccount) -> None:
        tmp = self._write_temp(self._encode(address, account))
        try:
            os.link(tmp, self._path(address))
        except FileExistsError:
            raise AccountAlreadyExists(address) from None
        finally:
            tmp.unlink()

    def _update(self, address: Address, account: StoredAccount) -> None:
        if not self._path(address).exists():
            raise AccountNotFound(address)
        tmp = self._write_temp(self._encode(address, account))
        os.replace(tmp, self._path(address))

    def addresses(self) -> List[Address]:
        out: List[Address] = []
        for p in sorted(self.root.glob(f"*{self.SUFFIX}")):
            out.append(Pubkey.from_string(p.name[: -len(self.SUFFIX)]))
        return out


def create_store(
    backend: Optional[str] = None,
    path: Optional[Union[str, pathlib.Path]] = None,
    program_id: Optional[Pubkey] = None,
) -> RecordStore:
    """Build a store from explicit arguments, falling back to configuration."""
    from rentflow.config import get_config

    cfg = get_config()
    backend = backend or cfg.store.backend.get()
    program_id = program_id or Pubkey.from_string(cfg.program.program_id.get())

    if backend == "memory":
        return InMemoryRecordStore(program_id)
    if backend == "file":
        return FileRecordStore(program_id, path or cfg.store.path.get())
    raise StoreError(f"Unknown store backend: {backend}")
