from __future__ import annotations

from typing import Annotated, Literal

from pydantic import BeforeValidator


def _to_upper_str(v):
    if v is None:
        return v
    return str(v).strip().upper()


# Canonical codes mirror Postgres enums in `backend/db/migrations/001_init.sql`.
DiscountType = Annotated[Literal["PERCENT", "AMOUNT"], BeforeValidator(_to_upper_str)]
PaymentMethod = Annotated[Literal["CASH", "CARD"], BeforeValidator(_to_upper_str)]


def normalize_coupon_code(v) -> str:
    return str(v or "").strip().upper()
