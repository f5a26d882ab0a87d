import pytest

from compete_tracker.utils.parsing import (
    coerce_int,
    coerce_number,
    extract_rating,
    parse_compact,
    parse_price_currency,
    stock_status,
)


@pytest.mark.parametrize(
    "value, expected",
    [
        (12, 12.0),
        (12.5, 12.5),
        ("12", 12.0),
        ("$1,299.00", 1299.0),
        ("C $45.10", 45.10),
        ("abc", None),
        (None, None),
        (True, None),
        (float("nan"), None),
        ([1], None),
    ],
)
def test_coerce_number(value, expected):
    assert coerce_number(value) == expected


def test_compact_counts():
    assert coerce_int("1.2K") == 1200
    assert parse_compact("3M") == 3_000_000
    assert parse_compact("15,300") == 15300
    assert parse_compact(7) == 7
    assert coerce_int("2.5k") == 2500
    assert coerce_int("n/a") is None


def test_extract_rating():
    assert extract_rating("99.8% positive feedback") == 99.8
    assert extract_rating("") is None
    assert extract_rating(None) is None


def test_price_and_currency():
    assert parse_price_currency("US $19.99") == (19.99, "USD")
    assert parse_price_currency("C $45.10") == (45.10, "CAD")
    assert parse_price_currency("£12.00") == (12.0, "GBP")
    assert parse_price_currency("€8.50") == (8.5, "EUR")
    assert parse_price_currency(None) == (None, None)


def test_stock_status():
    assert stock_status(None) == "Unknown"
    assert stock_status(0) == "Out of Stock"
    assert stock_status(3) == "In Stock"
