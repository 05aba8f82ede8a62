"""
Order pricing: item discounts, cart discount, coupon and inclusive/exclusive tax.

`calculate_totals` is pure. All arithmetic is Decimal and nothing is rounded here;
rounding happens when amounts are rendered (see `money.q_display`).

Tax is always computed on each line's own net amount. Cart discounts and coupons
reduce what the customer pays but never shrink the tax base.
"""
from dataclasses import dataclass, field, replace
from decimal import Decimal
from typing import Optional

from .money import HUNDRED, ZERO, clamp_zero, to_decimal


PERCENT = "PERCENT"
AMOUNT = "AMOUNT"
EXCLUSIVE = "EXCLUSIVE"
INCLUSIVE = "INCLUSIVE"


@dataclass(frozen=True)
class DiscountRule:
    type: str
    value: Decimal
    scope: str = "ITEM"


@dataclass(frozen=True)
class Coupon:
    code: str
    type: str
    value: Decimal


@dataclass(frozen=True)
class TaxRate:
    id: Optional[str]
    name: str
    percent: Decimal


@dataclass(frozen=True)
class PricingLine:
    product_id: str
    quantity: int
    unit_price: Decimal
    product_name: str = ""
    variant_id: Optional[str] = None
    variant_name: Optional[str] = None
    discount: Optional[DiscountRule] = None
    # Per-line rate, only consulted when no cart-level tax is given.
    tax_percent: Optional[Decimal] = None


@dataclass(frozen=True)
class LineTotals:
    product_id: str
    product_name: str
    variant_id: Optional[str]
    variant_name: Optional[str]
    quantity: int
    unit_price: Decimal
    base: Decimal
    discount: Decimal
    net: Decimal
    tax_percent: Decimal
    tax: Decimal
    total: Decimal
    # Line share of the cart discount and coupon; `total` is before these come off.
    cart_discount: Decimal = ZERO
    coupon_discount: Decimal = ZERO


@dataclass(frozen=True)
class Totals:
    tax_mode: str
    subtotal: Decimal
    item_discount_total: Decimal
    cart_discount_total: Decimal
    coupon_value: Decimal
    tax_percent: Decimal
    tax_amount: Decimal
    total: Decimal
    lines: list = field(default_factory=list)

    @property
    def discount_total(self) -> Decimal:
        return self.item_discount_total + self.cart_discount_total + self.coupon_value


def resolve_unit_price(product: dict, variant: Optional[dict] = None, override=None) -> Decimal:
    if override is not None:
        return to_decimal(override)
    if variant is not None and variant.get("price") is not None:
        return to_decimal(variant["price"])
    return to_decimal(product.get("price"))


def item_discount_rule(discount_type: Optional[str], discount_value) -> Optional[DiscountRule]:
    if not discount_type or discount_value is None:
        return None
    return DiscountRule(type=discount_type, value=to_decimal(discount_value), scope="ITEM")


def cart_discount_rule(discount_type: Optional[str], discount_value) -> Optional[DiscountRule]:
    if not discount_type or discount_value is None:
        return None
    return DiscountRule(type=discount_type, value=to_decimal(discount_value), scope="CART")


def _item_discount(base: Decimal, quantity: int, rule: Optional[DiscountRule]) -> Decimal:
    if rule is None or rule.scope != "ITEM":
        return ZERO
    if rule.type == PERCENT:
        amount = base * rule.value / HUNDRED
    else:
        amount = rule.value * quantity
    # A discount can wipe out a line, never take it below zero.
    return min(clamp_zero(amount), base)


def _basket_discount(base: Decimal, kind: str, value: Decimal) -> Decimal:
    amount = base * value / HUNDRED if kind == PERCENT else value
    return min(clamp_zero(amount), base)


def _spread(priced: list[LineTotals], amount: Decimal, attr: str) -> list[LineTotals]:
    """Splits a basket amount over the lines by net; the last line takes the remainder."""
    weight = sum((p.net for p in priced), ZERO)
    if amount == ZERO or weight == ZERO:
        return priced
    out = []
    given = ZERO
    for idx, p in enumerate(priced):
        share = amount - given if idx == len(priced) - 1 else amount * p.net / weight
        given += share
        out.append(replace(p, **{attr: share}))
    return out


def line_tax(net: Decimal, rate: Decimal, tax_mode: str) -> Decimal:
    if rate == ZERO:
        return ZERO
    if tax_mode == INCLUSIVE:
        return net * rate / (HUNDRED + rate)
    return net * rate / HUNDRED


def price_line(line: PricingLine, rate: Decimal, tax_mode: str) -> LineTotals:
    unit_price = to_decimal(line.unit_price)
    base = unit_price * line.quantity
    discount = _item_discount(base, line.quantity, line.discount)
    net = clamp_zero(base - discount)
    tax = line_tax(net, rate, tax_mode)
    total = net if tax_mode == INCLUSIVE else net + tax
    return LineTotals(
        product_id=line.product_id,
        product_name=line.product_name,
        variant_id=line.variant_id,
        variant_name=line.variant_name,
        quantity=line.quantity,
        unit_price=unit_price,
        base=base,
        discount=discount,
        net=net,
        tax_percent=rate,
        tax=tax,
        total=total,
    )


def calculate_totals(
    lines: list[PricingLine],
    cart_rule: Optional[DiscountRule] = None,
    coupon: Optional[Coupon] = None,
    tax: Optional[TaxRate] = None,
    tax_mode: str = EXCLUSIVE,
) -> Totals:
    tax_mode = (tax_mode or EXCLUSIVE).upper()
    cart_rate = to_decimal(tax.percent) if tax is not None else None

    priced: list[LineTotals] = []
    for line in lines:
        rate = cart_rate if cart_rate is not None else to_decimal(line.tax_percent)
        priced.append(price_line(line, rate, tax_mode))

    subtotal = sum((p.base for p in priced), ZERO)
    item_discount_total = sum((p.discount for p in priced), ZERO)
    tax_amount = sum((p.tax for p in priced), ZERO)

    cart_discount = ZERO
    if cart_rule is not None and cart_rule.scope == "CART":
        cart_discount = _basket_discount(clamp_zero(subtotal - item_discount_total), cart_rule.type, cart_rule.value)

    coupon_value = ZERO
    if coupon is not None:
        coupon_base = clamp_zero(subtotal - item_discount_total - cart_discount)
        coupon_value = _basket_discount(coupon_base, coupon.type, to_decimal(coupon.value))

    priced = _spread(priced, cart_discount, "cart_discount")
    priced = _spread(priced, coupon_value, "coupon_discount")

    total = clamp_zero(subtotal - item_discount_total - cart_discount - coupon_value)
    if tax_mode != INCLUSIVE:
        # Inclusive tax is already inside the prices.
        total += tax_amount

    return Totals(
        tax_mode=tax_mode,
        subtotal=subtotal,
        item_discount_total=item_discount_total,
        cart_discount_total=cart_discount,
        coupon_value=coupon_value,
        tax_percent=cart_rate if cart_rate is not None else ZERO,
        tax_amount=tax_amount,
        total=total,
        lines=priced,
    )
