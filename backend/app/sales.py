"""
Sale aggregate helpers shared by checkout, exchange and refund.

A sale item's `quantity`, `price`, `discount`, `tax` and `total` are captured at sale
time and never change; only `returned_quantity` grows, bounded by `quantity`.
`total` is the line after its own discount, tax included; `cart_discount` and
`coupon_discount` hold the line's share of the basket discounts, which come off on top.
"""
from decimal import Decimal
from typing import Optional

from .errors import NotFoundError, ValidationError
from .inventory import stock_model_for
from .money import HUNDRED, ZERO, q_display, to_decimal
from .pricing import PERCENT, PricingLine, item_discount_rule, resolve_unit_price


def load_sale_or_404(repo, sale_id: str, lock: bool = False) -> dict:
    sale = repo.load_sale(sale_id, lock=lock)
    if not sale:
        raise NotFoundError("sale not found")
    return sale


SALE_MONEY_FIELDS = ("subtotal", "discount", "coupon_value", "tax", "total")
ITEM_MONEY_FIELDS = ("price", "discount", "tax", "total", "cart_discount", "coupon_discount")


def display_money(row: dict, fields) -> dict:
    # Amounts are stored unrounded; responses carry them at display precision.
    return {**row, **{f: q_display(row[f]) for f in fields if row.get(f) is not None}}


def sale_view(repo, sale_id: str) -> dict:
    sale = load_sale_or_404(repo, sale_id)
    items = [display_money(i, ITEM_MONEY_FIELDS) for i in repo.load_sale_items(sale_id)]
    return {**display_money(sale, SALE_MONEY_FIELDS), "items": items}


def remaining_quantity(item: dict) -> int:
    return int(item["quantity"]) - int(item.get("returned_quantity") or 0)


def returned_value(item: dict, qty: int) -> Decimal:
    # Per-unit value paid at sale time, scaled to the returned units.
    return to_decimal(item["total"]) * qty / int(item["quantity"])


def recompute_totals(items: list[dict]) -> dict:
    """
    Sale totals from the units still kept (sold minus returned) of every item. Basket
    discounts follow the kept units, so `discount` always includes `coupon_value`.
    """
    subtotal = discount = coupon_value = tax = total = ZERO
    for item in items:
        net_qty = remaining_quantity(item)
        if net_qty <= 0:
            continue
        qty = int(item["quantity"])
        cart_share = to_decimal(item.get("cart_discount")) * net_qty / qty
        coupon_share = to_decimal(item.get("coupon_discount")) * net_qty / qty
        subtotal += to_decimal(item["price"]) * net_qty
        discount += to_decimal(item["discount"]) * net_qty / qty + cart_share + coupon_share
        coupon_value += coupon_share
        tax += to_decimal(item["tax"]) * net_qty / qty
        total += to_decimal(item["total"]) * net_qty / qty - cart_share - coupon_share
    return {"subtotal": subtotal, "discount": discount, "coupon_value": coupon_value, "tax": tax, "total": total}


def check_distinct(ids: list[str], label: str) -> None:
    seen = set()
    for i in ids:
        if i in seen:
            raise ValidationError(f"duplicate {label} {i}")
        seen.add(i)


def check_discount(discount_type: Optional[str], discount_value) -> None:
    if discount_type == PERCENT and discount_value is not None and to_decimal(discount_value) > HUNDRED:
        raise ValidationError("percent discount cannot exceed 100")


def build_priced_lines(products: dict, requests, tax_percent_for=None) -> tuple[list[PricingLine], list]:
    """
    Turns requested lines (product_id, variant_id, quantity, discount_type, discount_value)
    into calculator input plus the stock model each line will draw from.
    `tax_percent_for(product)` supplies a per-line rate when the cart has no tax.
    """
    lines: list[PricingLine] = []
    models = []
    for req in requests:
        product = products.get(str(req.product_id))
        if product is None:
            raise NotFoundError(f"product not found: {req.product_id}")
        check_discount(req.discount_type, req.discount_value)
        model = stock_model_for(product, req.variant_id)
        variant = None
        if req.variant_id:
            variant = next(v for v in product["variants"] if str(v["id"]) == str(req.variant_id))
        lines.append(
            PricingLine(
                product_id=str(product["id"]),
                product_name=product.get("name") or "",
                variant_id=str(variant["id"]) if variant else None,
                variant_name=(variant.get("name") if variant else None),
                quantity=int(req.quantity),
                unit_price=resolve_unit_price(product, variant),
                discount=item_discount_rule(req.discount_type, req.discount_value),
                tax_percent=tax_percent_for(product) if tax_percent_for else None,
            )
        )
        models.append(model)
    return lines, models


def persist_lines(repo, sale_id: str, priced_lines, models) -> None:
    """Writes the sale items and deducts the stock they consume."""
    for line, model in zip(priced_lines, models):
        repo.insert_sale_item(sale_id, line)
        model.adjust(repo, line.quantity)
