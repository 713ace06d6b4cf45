from __future__ import annotations

from datetime import datetime, timedelta, timezone
from decimal import Decimal
from zoneinfo import ZoneInfo

import pytest

from freight_sync.common.normalize import (
    as_record,
    ensure_array,
    is_store_reference_candidate,
    max_date,
    max_number,
    normalize_bearer_token,
    normalize_order_code,
    parse_date,
    parse_partner_date,
    pick_boolean,
    pick_number,
    pick_numeric_string,
    pick_string,
    product_sku_from_partner_sku,
    split_store_reference,
    to_decimal,
    to_numeric_string,
)

SAO_PAULO = ZoneInfo("America/Sao_Paulo")


def test_as_record_and_ensure_array_reject_other_shapes() -> None:
    assert as_record({"a": 1}) == {"a": 1}
    assert as_record([1]) is None
    assert as_record("x") is None
    assert ensure_array([1, 2]) == [1, 2]
    assert ensure_array({"a": 1}) == []
    assert ensure_array(None) == []


def test_pick_string_stringifies_and_trims() -> None:
    payload = {"a": "  hi ", "b": "   ", "c": 12, "d": 3.0, "e": True, "f": None}
    assert pick_string(payload, "a") == "hi"
    assert pick_string(payload, "b") is None
    assert pick_string(payload, "c") == "12"
    assert pick_string(payload, "d") == "3"
    assert pick_string(payload, "e") == "true"
    assert pick_string(payload, "f") is None
    assert pick_string(payload, "missing") is None


def test_pick_number_parses_numeric_strings_only() -> None:
    payload = {
        "int": 7,
        "float": 2.5,
        "text": " 12.75 ",
        "signed": "-3",
        "bad": "abc",
        "double_sign": "--5",
        "empty": "",
        "flag": True,
        "inf": float("inf"),
        "nan_text": "nan",
    }
    assert pick_number(payload, "int") == 7
    assert pick_number(payload, "float") == 2.5
    assert pick_number(payload, "text") == 12.75
    assert pick_number(payload, "signed") == -3
    assert pick_number(payload, "bad") is None
    assert pick_number(payload, "double_sign") is None
    assert pick_number(payload, "empty") is None
    assert pick_number(payload, "flag") is None
    assert pick_number(payload, "inf") is None
    assert pick_number(payload, "nan_text") is None


def test_pick_numeric_string_requires_digits() -> None:
    payload = {"a": "00123", "b": "12a", "c": 456, "d": True}
    assert pick_numeric_string(payload, "a") == "00123"
    assert pick_numeric_string(payload, "b") is None
    assert pick_numeric_string(payload, "c") == "456"
    assert pick_numeric_string(payload, "d") is None


@pytest.mark.parametrize(
    "value, expected",
    [
        ("12.50", "12.5"),
        (10.0, "10"),
        ("10", "10"),
        (0.1, "0.1"),
        ("abc", None),
        (None, None),
        (True, None),
        (float("nan"), None),
    ],
)
def test_to_numeric_string_canonical_form(value, expected) -> None:
    assert to_numeric_string(value) == expected


def test_to_decimal() -> None:
    assert to_decimal("25.50") == Decimal("25.5")
    assert to_decimal(15) == Decimal("15")
    assert to_decimal("x") is None


@pytest.mark.parametrize(
    "value, expected",
    [
        (True, True),
        (False, False),
        ("sim", True),
        ("NÃO", False),
        ("nao", False),
        ("Yes", True),
        ("f", False),
        (1, True),
        (0, False),
        ("2", True),
        ("0", False),
        ("", None),
        (None, None),
        ("maybe", None),
    ],
)
def test_pick_boolean(value, expected) -> None:
    assert pick_boolean(value) is expected


def test_parse_date_keeps_offsets_and_localizes_naive_values() -> None:
    aware = parse_date("2024-03-10T15:30:00-03:00", tz=SAO_PAULO)
    assert aware is not None
    assert aware.utcoffset() == timedelta(hours=-3)

    naive = parse_date("2024-03-10T15:30:00", tz=SAO_PAULO)
    assert naive == datetime(2024, 3, 10, 15, 30, tzinfo=SAO_PAULO)

    assert parse_date("not a date", tz=SAO_PAULO) is None
    assert parse_date("", tz=SAO_PAULO) is None
    assert parse_date(None, tz=SAO_PAULO) is None


def test_parse_partner_date_accepts_space_separated_values() -> None:
    parsed = parse_partner_date("2024-05-02 08:15:00", tz=SAO_PAULO)
    assert parsed == datetime(2024, 5, 2, 8, 15, tzinfo=SAO_PAULO)
    assert parse_partner_date("  ", tz=SAO_PAULO) is None


def test_product_sku_from_partner_sku() -> None:
    assert product_sku_from_partner_sku("253-1657") == "253"
    assert product_sku_from_partner_sku("77_2") == "77"
    assert product_sku_from_partner_sku("ABC-1") is None
    assert product_sku_from_partner_sku("") is None


def test_store_reference_helpers() -> None:
    assert is_store_reference_candidate("45145") is True
    assert is_store_reference_candidate("999") is False
    assert is_store_reference_candidate("253-1657") is False
    assert is_store_reference_candidate("12a45") is False

    assert split_store_reference("45145[160151]") == ("45145", "160151")
    assert split_store_reference("45145") == ("45145", None)
    assert split_store_reference("  ") == (None, None)


def test_normalize_order_code_keeps_trailing_digits() -> None:
    assert normalize_order_code("VTEX-1234567") == "1234567"
    assert normalize_order_code("ABC") == "ABC"
    assert normalize_order_code("   ") is None


def test_normalize_bearer_token() -> None:
    assert normalize_bearer_token("Bearer abc ") == "abc"
    assert normalize_bearer_token("bearer   xyz") == "xyz"
    assert normalize_bearer_token(" raw ") == "raw"


def test_max_helpers_ignore_missing_values() -> None:
    earlier = datetime(2024, 1, 1, tzinfo=timezone.utc)
    later = datetime(2024, 1, 2, tzinfo=timezone.utc)
    assert max_date(None, later) == later
    assert max_date(later, earlier) == later
    assert max_date(None, None) is None
    assert max_number(None, 3) == 3
    assert max_number(5, 3) == 5
    assert max_number(-1, None) == -1
