"""Tests for validators, timestamp parsing and invariant checks."""

from datetime import date, datetime, timedelta, timezone
from enum import Enum

import pytest

from rentflow.hardening import (
    U64_MAX,
    CryptoUtils,
    InvariantChecker,
    InvariantViolation,
    ValidationError,
    ValidationErrors,
    ValidationResult,
    Validators,
    parse_iso_timestamp,
    to_unix_seconds,
)


class TestTimestamps:
    @pytest.mark.parametrize("text", [
        "2025-01-01",
        "2025-01-01T00:00:00",
        "2025-01-01T00:00:00Z",
        "2025-01-01T00:00:00+00:00",
        "2025-01-01T02:00:00+02:00",
    ])
    def test_iso_forms(self, text):
        assert to_unix_seconds(text) == 1_735_689_600

    def test_parse_assumes_utc(self):
        assert parse_iso_timestamp("2025-01-01T00:00:00").tzinfo == timezone.utc

    @pytest.mark.parametrize("value,expected", [
        (42, 42),
        ("-5", -5),
        (" 1700000000 ", 1_700_000_000),
        (date(2026, 1, 1), 1_767_225_600),
        (datetime(2026, 1, 1, tzinfo=timezone(timedelta(hours=1))), 1_767_222_000),
    ])
    def test_other_inputs(self, value, expected):
        assert to_unix_seconds(value) == expected

    @pytest.mark.parametrize("value", ["", "yesterday", True, 1.5, None])
    def test_rejects(self, value):
        with pytest.raises(ValueError):
            to_unix_seconds(value)


class TestValidators:
    def test_string(self):
        assert Validators.validate_string("abc", "f", max_length=3).is_valid
        assert not Validators.validate_string("abcd", "f", max_length=3).is_valid
        assert not Validators.validate_string("a\x00b", "f").is_valid
        assert not Validators.validate_string(b"abc", "f").is_valid

    def test_string_counts_characters(self):
        assert Validators.validate_string("é" * 64, "f", max_length=64).is_valid

    def test_bytes32(self):
        assert Validators.validate_bytes32(b"\x01" * 32, "h").unwrap() == b"\x01" * 32
        assert Validators.validate_bytes32("ab" * 32, "h").unwrap() == b"\xab" * 32
        assert Validators.validate_bytes32(bytearray(32), "h").unwrap() == bytes(32)
        assert not Validators.validate_bytes32(b"\x01" * 31, "h").is_valid
        assert not Validators.validate_bytes32("zz" * 32, "h").is_valid
        assert not Validators.validate_bytes32(123, "h").is_valid

    def test_u64_bounds(self):
        assert Validators.validate_u64(0, "n").is_valid
        assert Validators.validate_u64(U64_MAX, "n").is_valid
        assert not Validators.validate_u64(U64_MAX + 1, "n").is_valid
        assert not Validators.validate_u64(-1, "n").is_valid
        assert not Validators.validate_u64(True, "n").is_valid

    def test_i64_bounds(self):
        assert Validators.validate_i64(-(2**63), "t").is_valid
        assert not Validators.validate_i64(2**63, "t").is_valid
        assert not Validators.validate_i64("5", "t").is_valid

    def test_amount(self):
        assert Validators.validate_amount("1.25", decimals=2).unwrap() == 125
        assert not Validators.validate_amount("1.255", decimals=2).is_valid
        assert not Validators.validate_amount("Infinity").is_valid


class TestValidationResult:
    def test_single_error_raised_directly(self):
        result = ValidationResult.failure([ValidationError("f", "bad")])
        with pytest.raises(ValidationError) as exc:
            result.unwrap()
        assert exc.value.field == "f"

    def test_multiple_errors_grouped(self):
        result = ValidationResult.failure([ValidationError("a", "x"), ValidationError("b", "y")])
        with pytest.raises(ValidationErrors) as exc:
            result.raise_if_invalid()
        assert [e.field for e in exc.value.errors] == ["a", "b"]


class _State(Enum):
    A = 0
    B = 1


class TestInvariantChecker:
    def test_transition(self):
        table = {_State.A: {_State.B}}
        InvariantChecker.check_state_transition(_State.A, _State.B, table)
        with pytest.raises(InvariantViolation):
            InvariantChecker.check_state_transition(_State.B, _State.A, table)

    def test_set_once(self):
        InvariantChecker.check_set_once("flag", False, True)
        InvariantChecker.check_set_once("flag", True, True)
        with pytest.raises(InvariantViolation):
            InvariantChecker.check_set_once("flag", True, False)

    def test_unchanged(self):
        InvariantChecker.check_unchanged("x", 1, 1)
        with pytest.raises(InvariantViolation, match="immutable"):
            InvariantChecker.check_unchanged("x", 1, 2)

    def test_is_zero(self):
        assert CryptoUtils.is_zero(bytes(32))
        assert not CryptoUtils.is_zero(b"\x00" * 31 + b"\x01")
