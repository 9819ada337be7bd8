# test_stock_utils.py
import pytest

from smart_stock.utils.stock_utils import parse_quantity_string, is_out_of_stock, format_price


@pytest.mark.parametrize("quantity, expected", [
    ("5 ctns", 5.0),
    ("10 pkts", 10.0),
    ("20", 20.0),
    ("2.5kg", 2.5),
    ("0", 0.0),
    ("", 0.0),
    (None, 0.0),
    ("about 5", 0.0),
    ("-3", 0.0),
])
def test_parse_quantity_string(quantity, expected):
    assert parse_quantity_string(quantity) == expected


@pytest.mark.parametrize("quantity, expected", [
    ("0 units", True),
    ("none left", True),
    (None, True),
    ("1 unit", False),
    ("0.5 m", False),
])
def test_is_out_of_stock(quantity, expected):
    assert is_out_of_stock(quantity) is expected


@pytest.mark.parametrize("price, unit, expected", [
    (1200, None, "MK 1,200"),
    (1200.0, "box", "MK 1,200 / box"),
    (1234567.5, None, "MK 1,234,567.5"),
    (0.125, "g", "MK 0.125 / g"),
    (None, "box", "N/A"),
])
def test_format_price(price, unit, expected):
    assert format_price(price, unit) == expected
