"""Tests for the lease record model and its persisted layout."""

import struct
from dataclasses import replace

import pytest

from rentflow.errors import AccountDataError
from rentflow.hardening import InvariantViolation
from rentflow.record import (
    ACCOUNT_SPACE,
    DISCRIMINATOR,
    INIT_SPACE,
    LeaseRecord,
    LeaseStatus,
)


@pytest.fixture
def record(manager, tenant):
    return LeaseRecord(
        lease_id="L1",
        content_hash=b"\xab" * 32,
        manager_identity=manager.identity,
        tenant_identity=tenant.identity,
        monthly_rent=1_000_000_000,
        security_deposit=500_000_000,
        start_time=1_735_689_600,
        end_time=1_767_225_600,
        manager_signed=True,
        tenant_signed=True,
        manager_signature=b"\x01" * 32,
        tenant_signature=b"\x02" * 32,
        status=LeaseStatus.ACTIVE,
        created_at=1_735_000_000,
        activated_at=1_735_100_000,
        address_salt=254,
    )


class TestLeaseStatus:
    """Tests for status tags and parsing."""

    def test_tags_are_stable(self):
        assert [s.value for s in LeaseStatus] == [0, 1, 2, 3]
        assert [s.label for s in LeaseStatus] == ["Pending", "Active", "Terminated", "Completed"]

    def test_terminal(self):
        assert {s for s in LeaseStatus if s.is_terminal} == {LeaseStatus.TERMINATED, LeaseStatus.COMPLETED}

    @pytest.mark.parametrize("value,expected", [
        ("Active", LeaseStatus.ACTIVE),
        (" completed ", LeaseStatus.COMPLETED),
        (2, LeaseStatus.TERMINATED),
        (LeaseStatus.PENDING, LeaseStatus.PENDING),
    ])
    def test_parse(self, value, expected):
        assert LeaseStatus.parse(value) == expected

    @pytest.mark.parametrize("value", ["evicted", 7, True, None])
    def test_parse_rejects(self, value):
        with pytest.raises(ValueError):
            LeaseStatus.parse(value)


class TestLayout:
    """Tests for the fixed-size account encoding."""

    def test_space(self):
        # discriminator + u32 len + 64 reserved id bytes + terms + signatures/status
        assert INIT_SPACE == 4 + 64 + 128 + 84
        assert ACCOUNT_SPACE == 288
        assert ACCOUNT_SPACE == 8 + INIT_SPACE

    def test_encoding_is_fixed_size(self, record):
        short = record.to_bytes()
        long = replace(record, lease_id="x" * 64).to_bytes()
        assert len(short) == len(long) == ACCOUNT_SPACE

    def test_field_order(self, record):
        data = record.to_bytes()
        assert data[:8] == DISCRIMINATOR
        assert struct.unpack_from("<I", data, 8) == (2,)
        assert data[12:14] == b"L1"
        assert data[14:46] == record.content_hash
        assert data[46:78] == record.manager_identity.raw
        assert data[78:110] == record.tenant_identity.raw
        assert struct.unpack_from("<QQqq", data, 110) == (
            record.monthly_rent, record.security_deposit, record.start_time, record.end_time,
        )
        # signed flags, signatures, status
        assert data[142:144] == b"\x01\x01"
        assert data[144:176] == record.manager_signature
        assert data[176:208] == record.tenant_signature
        assert data[208] == LeaseStatus.ACTIVE
        assert struct.unpack_from("<qqB", data, 209) == (
            record.created_at, record.activated_at, record.address_salt,
        )
        assert data[226:] == bytes(ACCOUNT_SPACE - 226)

    def test_decode(self, record):
        assert LeaseRecord.from_bytes(record.to_bytes()) == record

    def test_negative_timestamps_survive(self, record):
        early = replace(record, start_time=-10, end_time=-1)
        assert LeaseRecord.from_bytes(early.to_bytes()).start_time == -10

    def test_wrong_discriminator(self, record):
        data = bytearray(record.to_bytes())
        data[0] ^= 0xFF
        with pytest.raises(AccountDataError):
            LeaseRecord.from_bytes(bytes(data))

    def test_truncated(self, record):
        with pytest.raises(AccountDataError):
            LeaseRecord.from_bytes(record.to_bytes()[:100])

    def test_unknown_status_tag(self, record):
        data = bytearray(record.to_bytes())
        data[208] = 9
        with pytest.raises(AccountDataError):
            LeaseRecord.from_bytes(bytes(data))

    def test_oversized_id_length(self, record):
        data = bytearray(record.to_bytes())
        struct.pack_into("<I", data, 8, 10_000)
        with pytest.raises(AccountDataError):
            LeaseRecord.from_bytes(bytes(data))

    def test_to_dict(self, record):
        d = record.to_dict()
        assert d["status"] == "Active"
        assert d["content_hash"] == "ab" * 32
        assert d["manager_identity"] == str(record.manager_identity)


class TestInvariants:
    """Tests for record-level lifecycle invariants."""

    def test_valid_record_passes(self, record):
        record.check_invariants()

    def test_end_after_start(self, record):
        with pytest.raises(InvariantViolation):
            replace(record, end_time=record.start_time).check_invariants()

    def test_active_requires_both_signatures(self, record):
        with pytest.raises(InvariantViolation):
            replace(record, tenant_signed=False, tenant_signature=bytes(32)).check_invariants()

    def test_pending_has_no_activation_time(self, record):
        pending = replace(
            record,
            status=LeaseStatus.PENDING,
            tenant_signed=False,
            tenant_signature=bytes(32),
        )
        with pytest.raises(InvariantViolation):
            pending.check_invariants()
        replace(pending, activated_at=0).check_invariants()

    @pytest.mark.parametrize("changes", [
        {"manager_signature": bytes(32)},
        {"status": LeaseStatus.PENDING, "activated_at": 0, "tenant_signed": False},
    ])
    def test_signature_iff_flag(self, record, changes):
        with pytest.raises(InvariantViolation):
            replace(record, **changes).check_invariants()

    def test_role_of(self, record, manager, tenant, stranger):
        assert record.role_of(manager.identity) == "manager"
        assert record.role_of(tenant.identity) == "tenant"
        assert record.role_of(stranger.identity) is None

    def test_in_force(self, record):
        assert record.is_in_force()
        assert not replace(record, status=LeaseStatus.TERMINATED).is_in_force()
