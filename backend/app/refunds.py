"""
Refunds hand money back for returned units.

A refund restores stock and bumps `returned_quantity`, then records an append-only
Refund with its items. The sale's own totals are left as sold; net figures are
derived from `returned_quantity`. Rewriting sale totals is the exchange's job only.
"""
from typing import Optional

from .errors import NotFoundError, ValidationError
from .idempotency import remember, replay
from .inventory import stock_model_for
from .logs import json_log
from .money import ZERO
from .order_ids import allocate_unique, generate_refund_no
from .sales import check_distinct, display_money, load_sale_or_404, remaining_quantity, returned_value
from .schemas import RefundIn


OPERATION = "refund"


def refund_view(repo, refund_id: str) -> dict:
    refund = repo.load_refund(refund_id)
    if not refund:
        raise NotFoundError("refund not found")
    items = [display_money(i, ("refund_amount",)) for i in refund["items"]]
    return {**display_money(refund, ("total",)), "items": items}


def _plan_refund(items: list[dict], data: RefundIn) -> list[tuple[dict, int]]:
    if not data.items:
        raise ValidationError("no items to refund")
    check_distinct([r.sale_item_id for r in data.items], "sale item")
    by_id = {str(i["id"]): i for i in items}
    planned = []
    for req in data.items:
        item = by_id.get(str(req.sale_item_id))
        if item is None:
            raise NotFoundError(f"sale item not found: {req.sale_item_id}")
        left = remaining_quantity(item)
        # Unlike exchanges, refunds are not clamped: money is leaving the till.
        if req.quantity > left:
            raise ValidationError(
                f"cannot refund {req.quantity} of item {item['id']}: only {left} left to refund"
            )
        planned.append((item, int(req.quantity)))
    return planned


def process_refund(repo, data: RefundIn, idempotency_key: Optional[str] = None) -> dict:
    sale_id = str(data.sale_id)
    load_sale_or_404(repo, sale_id, lock=True)
    stored = replay(repo, idempotency_key, OPERATION, sale_id)
    if stored is not None:
        return stored

    planned = _plan_refund(repo.load_sale_items(sale_id), data)
    products = repo.load_products(sorted({str(i["product_id"]) for i, _ in planned}))

    lines = []
    for item, qty in planned:
        product = products.get(str(item["product_id"]))
        if product is None:
            raise NotFoundError(f"product not found: {item['product_id']}")
        lines.append((item, qty, stock_model_for(product, item.get("variant_id")), returned_value(item, qty)))

    total = sum((amount for *_, amount in lines), ZERO)
    reason = (data.reason or "").strip() or None
    refund_id, refund_no = allocate_unique(
        lambda number: repo.insert_refund(refund_no=number, sale_id=sale_id, total=total, reason=reason),
        generate_refund_no,
        kind="refund_no",
    )

    for item, qty, model, amount in lines:
        repo.insert_refund_item(refund_id, item, qty, amount)
        if repo.increment_returned_quantity(sale_id, str(item["id"]), qty) is None:
            raise ValidationError(f"refund quantity exceeds remaining quantity for item {item['id']}")
        model.adjust(repo, -qty)

    response = remember(repo, idempotency_key, OPERATION, sale_id, refund_view(repo, refund_id))
    json_log(
        "info",
        "refund.committed",
        sale_id=sale_id,
        refund_id=refund_id,
        refund_no=refund_no,
        units=sum(qty for _, qty in planned),
        total=total,
    )
    return response
