from decimal import Decimal, ROUND_HALF_UP
from typing import Optional

from .config import settings


ZERO = Decimal("0")
HUNDRED = Decimal("100")


def to_decimal(v) -> Decimal:
    # Route everything through str() so floats never leak binary noise into amounts.
    if v is None or v == "":
        return ZERO
    if isinstance(v, Decimal):
        return v
    return Decimal(str(v))


def display_quantum(places: Optional[int] = None) -> Decimal:
    p = settings.money_display_places if places is None else places
    return Decimal(1).scaleb(-p)


def q_display(v: Decimal, places: Optional[int] = None) -> Decimal:
    # Display-time rounding only; stored and intermediate amounts stay unrounded.
    return to_decimal(v).quantize(display_quantum(places), rounding=ROUND_HALF_UP)


def clamp_zero(v: Decimal) -> Decimal:
    return v if v > ZERO else ZERO
