from datetime import datetime, timezone
from typing import Optional

from .errors import ValidationError
from .inventory import check_availability
from .logs import json_log
from .order_ids import allocate_unique, generate_order_id
from .pricing import calculate_totals, cart_discount_rule
from .sales import build_priced_lines, check_discount, persist_lines, sale_view
from .schemas import CheckoutIn
from .tax import line_tax_percent, resolve_checkout_tax, resolve_coupon


def process_checkout(repo, data: CheckoutIn, now: Optional[datetime] = None) -> dict:
    """
    Prices the cart, checks stock across every line, then writes the sale, its items and
    the stock deductions in the caller's transaction.
    """
    if not data.items:
        raise ValidationError("cart is empty")
    check_discount(data.cart_discount_type, data.cart_discount_value)
    now = now or datetime.now(timezone.utc)

    tax_mode = repo.get_tax_mode()
    cart_tax, default_tax = resolve_checkout_tax(repo, data.tax_id)
    coupon = resolve_coupon(repo, data.coupon_code, now)

    products = repo.load_products(sorted({str(i.product_id) for i in data.items}))
    lines, models = build_priced_lines(
        products,
        data.items,
        tax_percent_for=lambda product: line_tax_percent(product, tax_mode, default_tax),
    )
    totals = calculate_totals(
        lines,
        cart_rule=cart_discount_rule(data.cart_discount_type, data.cart_discount_value),
        coupon=coupon,
        tax=cart_tax,
        tax_mode=tax_mode,
    )
    check_availability([(model, line.quantity) for model, line in zip(models, totals.lines)])

    sale_id, order_id = allocate_unique(
        lambda candidate: repo.insert_sale(
            order_id=candidate,
            sale_type="SALE",
            payment_method=data.payment_method,
            tax_mode=totals.tax_mode,
            subtotal=totals.subtotal,
            discount=totals.discount_total,
            tax_percent=totals.tax_percent,
            tax=totals.tax_amount,
            total=totals.total,
            coupon_code=coupon.code if coupon else None,
            coupon_value=totals.coupon_value if coupon else None,
            per_line_tax=cart_tax is None,
        ),
        lambda: generate_order_id(now),
        kind="order_id",
    )
    persist_lines(repo, sale_id, totals.lines, models)

    json_log(
        "info",
        "checkout.committed",
        sale_id=sale_id,
        order_id=order_id,
        lines=len(totals.lines),
        total=totals.total,
        coupon=coupon.code if coupon else None,
    )
    return sale_view(repo, sale_id)
