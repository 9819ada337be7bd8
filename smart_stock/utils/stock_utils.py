# stock_utils.py
# Description: Helpers for free-text stock quantities and price display.
#
# Imports
import re
from typing import Optional, Union
#
# Third-Party Imports
#
# Local Imports
#
#######################################################################################################################
#
# Functions:

CURRENCY_PREFIX = "MK"
_LEADING_NUMBER_RE = re.compile(r"^(\d+(\.\d+)?)")


def parse_quantity_string(quantity: Optional[str]) -> float:
    """
    Extracts the leading number from a quantity string such as "5 ctns", "2.5kg" or "20".

    Returns 0 when the string is empty or does not start with a number.
    """
    if not quantity:
        return 0.0
    match = _LEADING_NUMBER_RE.match(str(quantity))
    if match:
        return float(match.group(1))
    return 0.0


def is_out_of_stock(quantity: Optional[str]) -> bool:
    return parse_quantity_string(quantity) == 0


def _format_number(value: Union[int, float]) -> str:
    # Grouped thousands, at most three decimals, no trailing zeros.
    if float(value).is_integer():
        return f"{int(value):,}"
    text = f"{round(float(value), 3):,.3f}".rstrip("0").rstrip(".")
    return text


def format_price(price: Optional[Union[int, float]], unit: Optional[str] = None) -> str:
    """
    Display form of a price: "MK 1,200", "MK 1,200 / box", or "N/A" when unset.
    """
    if price is None:
        return "N/A"
    text = f"{CURRENCY_PREFIX} {_format_number(price)}"
    if unit:
        text += f" / {unit}"
    return text

#
# End of stock_utils.py
#######################################################################################################################
