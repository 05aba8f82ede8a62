from decimal import Decimal

from backend.app.pricing import (
    Coupon,
    PricingLine,
    TaxRate,
    calculate_totals,
    cart_discount_rule,
    item_discount_rule,
    resolve_unit_price,
)


def _line(price, qty=1, discount=None, tax_percent=None):
    return PricingLine(
        product_id="p1",
        quantity=qty,
        unit_price=Decimal(price),
        discount=discount,
        tax_percent=Decimal(tax_percent) if tax_percent is not None else None,
    )


def test_inclusive_tax_is_extracted_not_added():
    vat = TaxRate(id="t1", name="VAT 10%", percent=Decimal("10"))
    totals = calculate_totals([_line("110")], tax=vat, tax_mode="INCLUSIVE")
    assert totals.tax_amount == Decimal("10")
    assert totals.total == Decimal("110")
    assert totals.lines[0].total == Decimal("110")
    assert totals.tax_percent == Decimal("10")


def test_exclusive_tax_is_added_on_line_net():
    vat = TaxRate(id="t1", name="VAT 10%", percent=Decimal("10"))
    totals = calculate_totals(
        [_line("50", qty=2, discount=item_discount_rule("PERCENT", "10"))],
        tax=vat,
        tax_mode="EXCLUSIVE",
    )
    line = totals.lines[0]
    assert line.base == Decimal("100")
    assert line.discount == Decimal("10")
    assert line.net == Decimal("90")
    assert line.tax == Decimal("9")
    assert totals.total == Decimal("99")


def test_cart_discount_then_coupon_stack_on_what_is_left():
    totals = calculate_totals(
        [_line("60"), _line("40")],
        cart_rule=cart_discount_rule("PERCENT", "10"),
        coupon=Coupon(code="SAVE5", type="AMOUNT", value=Decimal("5")),
    )
    assert totals.subtotal == Decimal("100")
    assert totals.cart_discount_total == Decimal("10")
    assert totals.coupon_value == Decimal("5")
    assert totals.discount_total == Decimal("15")
    assert totals.total == Decimal("85")
    assert [(p.cart_discount, p.coupon_discount) for p in totals.lines] == [
        (Decimal("6"), Decimal("3")),
        (Decimal("4"), Decimal("2")),
    ]


def test_basket_discount_shares_add_up_exactly():
    totals = calculate_totals(
        [_line("10"), _line("10"), _line("10")],
        coupon=Coupon(code="TEN", type="AMOUNT", value=Decimal("10")),
    )
    assert sum(p.coupon_discount for p in totals.lines) == Decimal("10")
    assert all(p.cart_discount == 0 for p in totals.lines)
    # line totals stay before the basket discounts
    assert [p.total for p in totals.lines] == [Decimal("10")] * 3


def test_amount_item_discount_is_capped_at_the_line():
    totals = calculate_totals([_line("10", qty=2, discount=item_discount_rule("AMOUNT", "15"))])
    line = totals.lines[0]
    assert line.discount == Decimal("20")
    assert line.net == Decimal("0")
    assert totals.total == Decimal("0")


def test_coupon_larger_than_basket_never_goes_negative():
    totals = calculate_totals([_line("8")], coupon=Coupon(code="BIG", type="AMOUNT", value=Decimal("20")))
    assert totals.coupon_value == Decimal("8")
    assert totals.total == Decimal("0")


def test_cart_discount_does_not_shrink_the_tax_base():
    vat = TaxRate(id="t1", name="VAT 10%", percent=Decimal("10"))
    totals = calculate_totals([_line("100")], cart_rule=cart_discount_rule("AMOUNT", "20"), tax=vat)
    assert totals.tax_amount == Decimal("10")
    assert totals.total == Decimal("90")


def test_line_rate_is_used_without_a_cart_tax():
    totals = calculate_totals([_line("100", tax_percent="5"), _line("50")])
    assert totals.tax_amount == Decimal("5")
    assert totals.total == Decimal("155")
    assert totals.tax_percent == Decimal("0")


def test_no_rounding_inside_the_calculator():
    vat = TaxRate(id="t1", name="VAT 7%", percent=Decimal("7"))
    totals = calculate_totals([_line("0.99", qty=3)], tax=vat)
    assert totals.tax_amount == Decimal("0.2079")
    assert totals.total == Decimal("3.1779")


def test_resolve_unit_price_prefers_variant_price():
    product = {"id": "p1", "price": Decimal("10")}
    assert resolve_unit_price(product) == Decimal("10")
    assert resolve_unit_price(product, {"id": "v1", "price": Decimal("12.5")}) == Decimal("12.5")
    assert resolve_unit_price(product, {"id": "v2", "price": None}) == Decimal("10")
    assert resolve_unit_price(product, None, override="9") == Decimal("9")


def test_discount_rules_need_type_and_value():
    assert item_discount_rule(None, "5") is None
    assert item_discount_rule("PERCENT", None) is None
    assert cart_discount_rule("AMOUNT", 5).scope == "CART"
