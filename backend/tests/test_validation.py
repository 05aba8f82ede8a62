from decimal import Decimal

import pytest
from pydantic import BaseModel, ValidationError

from backend.app.schemas import CheckoutIn, ExchangeIn, RefundIn
from backend.app.validation import DiscountType, PaymentMethod, normalize_coupon_code


class _M(BaseModel):
    discount: DiscountType
    method: PaymentMethod


def test_validation_types_normalize_case():
    m = _M(discount=" percent ", method="Cash")
    assert m.discount == "PERCENT"
    assert m.method == "CASH"


def test_validation_types_reject_unknown_codes():
    with pytest.raises(ValidationError):
        _M(discount="bogo", method="cash")
    with pytest.raises(ValidationError):
        _M(discount="amount", method="cheque")


def test_exchange_body_accepts_camel_and_snake_case():
    camel = ExchangeIn.model_validate({
        "returnItems": [{"saleItemId": "i1", "returnQuantity": 2}],
        "replacementItems": [{"productId": "p1", "variantId": "v1", "discountType": "amount", "discountValue": "1.5"}],
    })
    snake = ExchangeIn.model_validate({
        "return_items": [{"sale_item_id": "i1", "return_quantity": 2}],
        "replacement_items": [{"product_id": "p1", "variant_id": "v1", "discount_type": "AMOUNT", "discount_value": 1.5}],
    })
    assert camel == snake
    assert camel.replacement_items[0].quantity == 1
    assert camel.replacement_items[0].discount_value == Decimal("1.5")


@pytest.mark.parametrize(
    "body",
    [
        {"returnItems": [{"saleItemId": "i1", "returnQuantity": 0}]},
        {"replacementItems": [{"productId": "p1", "quantity": -1}]},
        {"replacementItems": [{"productId": "p1", "discountValue": -5}]},
    ],
)
def test_exchange_quantities_must_be_positive(body):
    with pytest.raises(ValidationError):
        ExchangeIn.model_validate(body)


def test_refund_quantity_must_be_positive():
    with pytest.raises(ValidationError):
        RefundIn.model_validate({"saleId": "s1", "items": [{"saleItemId": "i1", "quantity": 0}]})


def test_checkout_defaults():
    body = CheckoutIn.model_validate({"items": [{"productId": "p1"}]})
    assert body.payment_method == "CASH"
    assert body.tax_id is None
    assert normalize_coupon_code(" summer10 ") == "SUMMER10"
    assert normalize_coupon_code(None) == ""
