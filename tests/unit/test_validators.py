"""Tests for input validators and datetime helpers."""

from datetime import datetime, timedelta, timezone
from decimal import Decimal

import pytest

from stockbook.utils.datetime_utils import ensure_utc, from_epoch_ms, to_epoch_ms
from stockbook.utils.validators import (
    collect_errors,
    to_decimal,
    validate_non_negative_number,
    validate_payment_method,
    validate_positive_number,
    validate_required_string,
    validate_string_length,
)


class TestToDecimal:
    def test_float_goes_through_str(self):
        assert to_decimal(0.1) == Decimal("0.1")

    def test_numeric_string(self):
        assert to_decimal("12.50") == Decimal("12.50")

    @pytest.mark.parametrize("value", [None, True, "abc", "NaN", "Infinity", [1]])
    def test_non_numeric_returns_none(self, value):
        assert to_decimal(value) is None


class TestNumberValidators:
    def test_positive(self):
        assert validate_positive_number(1, "Quantity") == (True, "")
        assert validate_positive_number(0, "Quantity") == (False, "Quantity: Must be greater than zero")
        assert validate_positive_number("x", "Quantity") == (False, "Quantity: Must be a valid number")

    def test_non_negative(self):
        assert validate_non_negative_number(0, "Unit cost") == (True, "")
        assert validate_non_negative_number(-1, "Unit cost") == (False, "Unit cost: Cannot be negative")


class TestStringValidators:
    def test_required(self):
        assert validate_required_string("Flour", "Product name") == (True, "")
        assert validate_required_string("   ", "Product name")[0] is False
        assert validate_required_string(None, "Product name")[0] is False

    def test_length(self):
        assert validate_string_length("abc", 3, "Label") == (True, "")
        assert validate_string_length("abcd", 3, "Label") == (False, "Label: Must be 3 characters or less")
        assert validate_string_length(None, 3, "Label") == (True, "")


def test_payment_method():
    assert validate_payment_method("CASH") == (True, "")
    assert validate_payment_method("BANK") == (True, "")
    assert validate_payment_method("CARD")[0] is False


def test_collect_errors_keeps_only_failures():
    errors = collect_errors(
        validate_positive_number(5, "Quantity"),
        validate_positive_number(-5, "Amount"),
        validate_required_string("", "Source"),
    )
    assert errors == ["Amount: Must be greater than zero", "Source: This field is required"]


class TestDatetimeUtils:
    def test_ensure_utc_attaches_utc_to_naive(self):
        value = ensure_utc(datetime(2024, 5, 1, 12, 0))
        assert value.tzinfo == timezone.utc
        assert value.hour == 12

    def test_ensure_utc_converts_other_zones(self):
        plus_two = timezone(timedelta(hours=2))
        value = ensure_utc(datetime(2024, 5, 1, 12, 0, tzinfo=plus_two))
        assert value.hour == 10

    def test_epoch_ms_round_trip(self):
        moment = datetime(2024, 5, 1, 12, 30, 15, 250000, tzinfo=timezone.utc)
        assert to_epoch_ms(moment) == 1714566615250
        assert from_epoch_ms(1714566615250) == moment

    def test_none_passes_through(self):
        assert ensure_utc(None) is None
        assert to_epoch_ms(None) is None
        assert from_epoch_ms(None) is None
