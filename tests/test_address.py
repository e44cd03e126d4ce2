"""Tests for keys and deterministic lease addressing."""

import pytest

from rentflow.address import (
    MAX_SEEDS,
    AddressDerivationError,
    Pubkey,
    create_program_address,
    derive_lease_address,
    find_program_address,
    is_on_curve,
    lease_seeds,
)
from rentflow.security import Keypair


class TestPubkey:
    """Tests for 32-byte keys and their base58 form."""

    def test_base58_round_trip(self, program_id):
        assert str(program_id) == "RentF1ow11111111111111111111111111111111111"
        assert Pubkey.from_string(str(program_id)) == program_id

    def test_zero_key_renders_as_ones(self):
        zero = Pubkey(bytes(32))
        assert str(zero) == "1" * 32
        assert Pubkey.from_string("1" * 32) == zero

    @pytest.mark.parametrize("raw", [b"", b"\x01" * 31, b"\x01" * 33])
    def test_wrong_length_rejected(self, raw):
        with pytest.raises(ValueError):
            Pubkey(raw)

    def test_from_string_rejects_short_keys(self):
        with pytest.raises(ValueError):
            Pubkey.from_string("abc")

    def test_from_string_rejects_bad_alphabet(self):
        with pytest.raises(ValueError):
            Pubkey.from_string("0OIl" * 8)

    def test_coerce(self, manager):
        key = manager.identity
        assert Pubkey.coerce(key) is key
        assert Pubkey.coerce(key.raw) == key
        assert Pubkey.coerce(str(key)) == key
        with pytest.raises(TypeError):
            Pubkey.coerce(42)

    def test_hashable(self, manager, tenant):
        assert len({manager.identity, tenant.identity, Pubkey(manager.identity.raw)}) == 2


class TestCurveCheck:
    """Tests for the Ed25519 on-curve predicate."""

    def test_real_public_keys_are_on_curve(self):
        for _ in range(5):
            assert Keypair.generate().identity.is_on_curve()

    def test_wrong_length_is_not_on_curve(self):
        assert not is_on_curve(b"\x00" * 31)

    def test_identity_point_is_on_curve(self):
        # y = 1 encodes the neutral element
        assert is_on_curve((1).to_bytes(32, "little"))


class TestProgramAddress:
    """Tests for bump search and lease address derivation."""

    def test_derivation_is_deterministic(self, program_id):
        assert derive_lease_address("L1", program_id) == derive_lease_address("L1", program_id)

    def test_derived_address_is_off_curve(self, program_id):
        for lease_id in ("L1", "L2", "lease-2026-0001", "é" * 64):
            address, _ = derive_lease_address(lease_id, program_id)
            assert not address.is_on_curve()

    def test_bump_is_highest_viable(self, program_id):
        seeds = lease_seeds("lease", "L1")
        address, bump = find_program_address(seeds, program_id)

        assert create_program_address(seeds + [bytes([bump])], program_id) == address
        for higher in range(bump + 1, 256):
            with pytest.raises(AddressDerivationError):
                create_program_address(seeds + [bytes([higher])], program_id)

    def test_inputs_change_address(self, program_id):
        base, _ = derive_lease_address("L1", program_id)
        other_program = Pubkey(bytes(range(32)))

        assert derive_lease_address("L2", program_id)[0] != base
        assert derive_lease_address("L1", program_id, namespace_tag="agreement")[0] != base
        assert derive_lease_address("L1", other_program)[0] != base

    def test_too_many_seeds(self, program_id):
        with pytest.raises(AddressDerivationError):
            create_program_address([b"s"] * (MAX_SEEDS + 1), program_id)

    def test_store_uses_same_derivation(self, store, program_id):
        assert store.derive_address("lease", "L1") == derive_lease_address("L1", program_id, "lease")
