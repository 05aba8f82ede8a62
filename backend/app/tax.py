from datetime import datetime, timezone
from decimal import Decimal
from typing import Optional

from .errors import NotFoundError, ValidationError
from .money import ZERO, to_decimal
from .pricing import INCLUSIVE, Coupon, TaxRate
from .validation import normalize_coupon_code


def tax_rate_from_row(row: Optional[dict]) -> Optional[TaxRate]:
    if not row:
        return None
    return TaxRate(id=str(row["id"]), name=row.get("name") or "", percent=to_decimal(row.get("percent")))


def resolve_exchange_tax(repo, sale: dict):
    """
    Replacement goods are taxed the way the sale they replace was: returns
    (cart_tax, tax_percent_for) for the pricing of the replacement lines.

    A sale taxed line by line prices replacements at their own product rates. A sale
    with one rate reuses the active tax with that percent, else the tenant default.
    A sale recorded without tax stays without tax.
    """
    tax_mode = sale.get("tax_mode")
    if sale.get("per_line_tax"):
        default_tax = tax_rate_from_row(repo.find_default_tax())
        return None, lambda product: line_tax_percent(product, tax_mode, default_tax)
    percent = to_decimal(sale.get("tax_percent"))
    if percent == ZERO:
        return None, None
    return tax_rate_from_row(repo.find_tax_by_percent(percent)) or tax_rate_from_row(repo.find_default_tax()), None


def resolve_checkout_tax(repo, tax_id: Optional[str]) -> tuple[Optional[TaxRate], Optional[TaxRate]]:
    """
    Returns (cart_tax, default_tax). `tax_id="none"` disables the cart tax; no tax_id
    means the tenant default.
    """
    default_tax = tax_rate_from_row(repo.find_default_tax())
    raw = (tax_id or "").strip()
    if raw.lower() == "none":
        return None, default_tax
    if raw:
        row = repo.get_tax(raw)
        if not row:
            raise NotFoundError("tax not found")
        return tax_rate_from_row(row), default_tax
    return default_tax, default_tax


def line_tax_percent(product: dict, tax_mode: str, default_tax: Optional[TaxRate]) -> Decimal:
    # Only used when the cart carries no tax of its own.
    if tax_mode == INCLUSIVE:
        # Inclusive prices always embed the default rate, never a product-specific one.
        return default_tax.percent if default_tax else ZERO
    if product.get("default_tax_id"):
        return to_decimal(product.get("default_tax_percent"))
    return ZERO


def load_coupon(repo, code, now: Optional[datetime] = None) -> dict:
    code = normalize_coupon_code(code)
    if not code:
        raise ValidationError("coupon code is required")
    row = repo.find_coupon(code)
    if not row:
        raise NotFoundError("invalid coupon code")
    now = now or datetime.now(timezone.utc)
    if not row.get("is_active"):
        raise ValidationError("this coupon code is not active")
    if row.get("starts_at") and row["starts_at"] > now:
        raise ValidationError("this coupon code is not yet valid")
    if row.get("ends_at") and row["ends_at"] < now:
        raise ValidationError("this coupon code has expired")
    return row


def resolve_coupon(repo, code, now: Optional[datetime] = None) -> Optional[Coupon]:
    if not normalize_coupon_code(code):
        return None
    row = load_coupon(repo, code, now)
    return Coupon(code=row["code"], type=str(row["type"]).upper(), value=to_decimal(row["value"]))
