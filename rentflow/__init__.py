"""
RentFlow — Bilateral Lease Ledger

A lease lives at an address derived from its `lease_id`. The manager creates
it, both parties sign it, and either party can later terminate it or, once
its end date has passed, complete it.

Architecture
────────────

    ┌─────────────────────────────────────────────────────────────────────────┐
    │                            RENTFLOW                                      │
    │                                                                          │
    │  SURFACE                                                                 │
    │    cli.py          rentflow command line                                 │
    │    client.py       Terms documents, signing, ClientResult                │
    │                                                                          │
    │  LEASE PROGRAM                                                           │
    │    program.py      Initialize / Sign / UpdateStatus / Verify             │
    │    record.py       LeaseRecord, LeaseStatus, account layout              │
    │    errors.py       Lease error taxonomy (codes 6000-6007)                │
    │    events.py       Lifecycle events and event bus                        │
    │                                                                          │
    │  COLLABORATORS                                                           │
    │    store.py        Record store (memory, file)                           │
    │    address.py      Deterministic lease addresses                         │
    │    context.py      Invocation signer and trusted clock                   │
    │    security.py     Ed25519 keys, signed invocations, nonces              │
    │                                                                          │
    │  FOUNDATION                                                              │
    │    core.py  hardening.py  config.py  observability.py  schema.py         │
    │                                                                          │
    └─────────────────────────────────────────────────────────────────────────┘

Design Principles
─────────────────

    Validate, then mutate: every precondition is checked before the record
    is touched, and the store commits all of an invocation or none of it.

    Injected context: identity and time come from the invocation context, so
    the program is deterministic under test.

    Addresses, not indexes: one lease id maps to one address, which is what
    makes a second Initialize for the same id fail.
"""

__version__ = "0.3.0"


# Lazy imports to avoid circular dependencies
def __getattr__(name):
    """Lazy import RentFlow modules on first access."""

    if name in ("LeaseProgram", "apply_initialize", "apply_sign", "apply_update_status",
                "VALID_TRANSITIONS"):
        from rentflow import program
        return getattr(program, name)

    if name in ("LeaseRecord", "LeaseStatus", "ACCOUNT_SPACE", "LEASE_ID_MAX_BYTES"):
        from rentflow import record
        return getattr(record, name)

    if name in ("LeaseError", "LeaseIdTooLong", "InvalidRentAmount", "InvalidDateRange",
                "UnauthorizedSigner", "LeaseNotPending", "AlreadySigned", "LeaseNotEnded",
                "InvalidStatusTransition", "StoreError", "AccountAlreadyExists",
                "AccountNotFound", "AccountDataError"):
        from rentflow import errors
        return getattr(errors, name)

    if name in ("RecordStore", "InMemoryRecordStore", "FileRecordStore", "create_store"):
        from rentflow import store
        return getattr(store, name)

    if name in ("Pubkey", "Identity", "Address", "derive_lease_address", "find_program_address"):
        from rentflow import address
        return getattr(address, name)

    if name in ("InvocationContext", "SystemClock", "FixedClock"):
        from rentflow import context
        return getattr(context, name)

    if name in ("Keypair", "SignedInvocation", "InvocationAuthenticator", "NonceRegistry",
                "signature_digest"):
        from rentflow import security
        return getattr(security, name)

    if name in ("Event", "EventBus", "LeaseCreated", "LeaseSigned", "LeaseActivated",
                "LeaseStatusChanged", "get_event_bus"):
        from rentflow import events
        return getattr(events, name)

    if name in ("LeaseClient", "LeaseTerms", "ClientResult", "load_lease_terms"):
        from rentflow import client
        return getattr(client, name)

    raise AttributeError(f"module 'rentflow' has no attribute '{name}'")


__all__ = [
    "__version__",
    # Program
    "LeaseProgram",
    "LeaseRecord",
    "LeaseStatus",
    # Errors
    "LeaseError",
    "LeaseIdTooLong",
    "InvalidRentAmount",
    "InvalidDateRange",
    "UnauthorizedSigner",
    "LeaseNotPending",
    "AlreadySigned",
    "LeaseNotEnded",
    "InvalidStatusTransition",
    # Collaborators
    "RecordStore",
    "InMemoryRecordStore",
    "FileRecordStore",
    "InvocationContext",
    "FixedClock",
    "Keypair",
    # Client
    "LeaseClient",
    "LeaseTerms",
    "ClientResult",
]
