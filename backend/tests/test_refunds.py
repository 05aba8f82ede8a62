import re
from decimal import Decimal

import pytest

from backend.app.checkout import process_checkout
from backend.app.errors import IdempotencyConflict, NotFoundError, ValidationError
from backend.app.refunds import process_refund
from backend.app.schemas import CheckoutIn, RefundIn
from backend.tests.fakes import FakeRepository, atomic


def _sell(repo, *lines):
    return process_checkout(
        repo,
        CheckoutIn.model_validate({"items": [{"productId": pid, "quantity": qty} for pid, qty in lines]}),
    )


def _refund(repo, body, key=None):
    with atomic(repo):
        return process_refund(repo, RefundIn.model_validate(body), idempotency_key=key)


def test_refund_restores_stock_and_counts_returned_units():
    repo = FakeRepository()
    mug = repo.add_product("Mug", "20", stock="10")
    sale = _sell(repo, (mug, 3))
    assert repo.products[mug]["stock"] == Decimal("7")
    item = sale["items"][0]

    refund = _refund(repo, {"saleId": sale["id"], "items": [{"saleItemId": item["id"], "quantity": 2}], "reason": " chipped "})

    assert repo.products[mug]["stock"] == Decimal("9")
    assert repo.sale_items[item["id"]]["returned_quantity"] == 2
    assert refund["total"] == 40
    assert refund["reason"] == "chipped"
    assert refund["order_id"] == sale["order_id"]
    assert re.match(r"^REF-\d{8}-[0-9A-Z]{5}$", refund["refund_no"])
    assert [(i["quantity"], i["refund_amount"]) for i in refund["items"]] == [(2, 40)]
    # refunds never rewrite the sale of record
    assert repo.sales[sale["id"]]["total"] == Decimal("60")


def test_refund_amount_uses_what_the_customer_paid():
    repo = FakeRepository()
    repo.add_tax("VAT 10%", "10", is_default=True)
    lamp = repo.add_product("Lamp", "30", stock="5")
    sale = process_checkout(
        repo,
        CheckoutIn.model_validate({
            "items": [{"productId": lamp, "quantity": 3, "discountType": "AMOUNT", "discountValue": "5"}],
        }),
    )
    # 3 x 30 = 90, minus 15, plus 10% tax on 75
    assert sale["total"] == Decimal("82.50")

    refund = _refund(repo, {"saleId": sale["id"], "items": [{"saleItemId": sale["items"][0]["id"], "quantity": 1}]})
    assert refund["total"] == 27.5


def test_refund_cannot_exceed_what_is_left():
    repo = FakeRepository()
    mug = repo.add_product("Mug", "20", stock="10")
    sale = _sell(repo, (mug, 3))
    item_id = sale["items"][0]["id"]
    _refund(repo, {"saleId": sale["id"], "items": [{"saleItemId": item_id, "quantity": 2}]})
    before = repo.snapshot()

    with pytest.raises(ValidationError):
        _refund(repo, {"saleId": sale["id"], "items": [{"saleItemId": item_id, "quantity": 2}]})
    assert repo.snapshot() == before
    assert repo.sale_items[item_id]["returned_quantity"] == 2


def test_refund_request_validation():
    repo = FakeRepository()
    mug = repo.add_product("Mug", "20", stock="10")
    sale = _sell(repo, (mug, 3))
    item_id = sale["items"][0]["id"]
    with pytest.raises(ValidationError):
        _refund(repo, {"saleId": sale["id"], "items": []})
    with pytest.raises(ValidationError):
        _refund(repo, {
            "saleId": sale["id"],
            "items": [{"saleItemId": item_id, "quantity": 1}, {"saleItemId": item_id, "quantity": 1}],
        })
    with pytest.raises(NotFoundError):
        _refund(repo, {"saleId": sale["id"], "items": [{"saleItemId": "item-missing", "quantity": 1}]})
    with pytest.raises(NotFoundError):
        _refund(repo, {"saleId": "sale-missing", "items": [{"saleItemId": item_id, "quantity": 1}]})
    assert repo.refunds == {}


def test_refund_of_composite_restores_materials():
    repo = FakeRepository()
    pizza = repo.add_product("Pizza", "12", type="COMPOSITE")
    flour = repo.add_material("Flour", "10")
    cheese = repo.add_material("Cheese", "3")
    repo.add_bom_line(pizza, flour, "2")
    repo.add_bom_line(pizza, cheese, "0.5")
    sale = _sell(repo, (pizza, 5))
    assert repo.materials[flour]["stock"] == Decimal("0")

    _refund(repo, {"saleId": sale["id"], "items": [{"saleItemId": sale["items"][0]["id"], "quantity": 2}]})
    assert repo.materials[flour]["stock"] == Decimal("4")
    assert repo.materials[cheese]["stock"] == Decimal("1.5")


def test_refund_idempotency():
    repo = FakeRepository()
    mug = repo.add_product("Mug", "20", stock="10")
    sale = _sell(repo, (mug, 3))
    other = _sell(repo, (mug, 1))
    body = {"saleId": sale["id"], "items": [{"saleItemId": sale["items"][0]["id"], "quantity": 1}]}

    first = _refund(repo, body, key="refund-1")
    second = _refund(repo, body, key="refund-1")
    assert first == second
    assert len(repo.refunds) == 1
    assert repo.products[mug]["stock"] == Decimal("7")

    with pytest.raises(IdempotencyConflict):
        _refund(repo, {"saleId": other["id"], "items": [{"saleItemId": other["items"][0]["id"], "quantity": 1}]}, key="refund-1")
