import math
from decimal import Decimal, ROUND_HALF_UP
from typing import Any, Optional, Union

Number = Union[int, float]

# A percent sign is cosmetic: "12%" normalizes to 12, not 0.12.
PERCENT_SCALES = False

_DIGITS = {}
for i in range(10):
    _DIGITS[0x06F0 + i] = str(i)  # Eastern Arabic-Indic (Persian)
    _DIGITS[0x0660 + i] = str(i)  # Arabic-Indic

_PERCENT = "%\u066a\ufe6a\uff05"
_THOUSANDS = ",\u066c\u060c' \u00a0\u202f\u2009"
_DIRECTIONAL = "\u200e\u200f\u061c\u202a\u202b\u202c\u202d\u202e\u2066\u2067\u2068\u2069"

_TABLE = dict(_DIGITS)
_TABLE.update({ord(c): None for c in _THOUSANDS + _DIRECTIONAL})
_TABLE[0x066B] = "."  # Arabic decimal separator

_TWO_PLACES = Decimal("0.01")


def normalize_number(value: Any) -> Optional[Number]:
    """
    Turn a number or a locale-formatted token ("۱۲٫۵", "3,200%") into a finite
    number. Returns None for anything that does not parse.
    """
    if isinstance(value, bool):
        return None
    if isinstance(value, int):
        return value
    if isinstance(value, float):
        return value if math.isfinite(value) else None
    if not isinstance(value, str):
        return None

    text = value.strip().translate(_TABLE)
    has_percent = any(c in text for c in _PERCENT)
    for c in _PERCENT:
        text = text.replace(c, "")
    if not text:
        return None

    try:
        out = float(text)
    except ValueError:
        return None
    if not math.isfinite(out):
        return None
    if has_percent and PERCENT_SCALES:
        out = out / 100.0
    return out


def round_if_needed(x: Optional[Number]) -> Optional[Number]:
    if x is None or isinstance(x, int):
        return x
    if x.is_integer():
        return int(x)
    # str() gives the shortest repr, so 2.675 rounds up as a person would expect
    out = float(Decimal(str(x)).quantize(_TWO_PLACES, rounding=ROUND_HALF_UP))
    return int(out) if out.is_integer() else out


def normalize_and_round(value: Any) -> Optional[Number]:
    return round_if_needed(normalize_number(value))


def to_count(value: Any) -> Optional[int]:
    """Floor to a non-negative integer (row counts, sample sizes)."""
    x = normalize_number(value)
    if x is None:
        return None
    return max(0, int(math.floor(x)))
