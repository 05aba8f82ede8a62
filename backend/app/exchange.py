"""
Exchange: return some units of a completed sale and/or take replacement goods.

Runs inside the caller's unit of work with the sale row locked and moves through
LOADED -> RETURNS_APPLIED -> REPLACEMENTS_APPLIED -> RECALCULATED -> PERSISTED.
Everything that can fail (unknown rows, the value rule, stock) is checked while
LOADED, before the first write; an error in a later stage still rolls back the whole
transaction and is logged with the stage it interrupted.

Value rule: the store never hands cash back. When units are returned the replacement
must be worth at least what was returned; with no returns it must be worth at least
the original sale.
"""
from decimal import Decimal
from enum import Enum
from typing import Optional

from .errors import InvariantViolation, NotFoundError, PosError, ValidationError
from .idempotency import remember, replay
from .inventory import check_availability, stock_model_for
from .logs import json_log
from .money import ZERO, to_decimal
from .order_ids import allocate_unique, generate_order_id
from .pricing import Totals, calculate_totals
from .sales import (
    build_priced_lines,
    check_distinct,
    load_sale_or_404,
    persist_lines,
    recompute_totals,
    remaining_quantity,
    returned_value,
    sale_view,
)
from .schemas import ExchangeIn
from .tax import resolve_exchange_tax


class ResultPolicy(str, Enum):
    # New EXCHANGE sale linked to the original; the original keeps its totals.
    CREATE_NEW_LINKED = "create_new_linked"
    # Replacement items are appended to the original sale and its totals recomputed.
    APPEND_TO_EXISTING = "append_to_existing"


class Stage(str, Enum):
    LOADED = "loaded"
    RETURNS_APPLIED = "returns_applied"
    REPLACEMENTS_APPLIED = "replacements_applied"
    RECALCULATED = "recalculated"
    PERSISTED = "persisted"


def _validate_request(data: ExchangeIn) -> None:
    if not data.return_items and not data.replacement_items:
        raise ValidationError("nothing to exchange")
    check_distinct([r.sale_item_id for r in data.return_items], "sale item")


def _plan_returns(items: list[dict], data: ExchangeIn) -> list[tuple[dict, int]]:
    by_id = {str(i["id"]): i for i in items}
    planned = []
    for req in data.return_items:
        item = by_id.get(str(req.sale_item_id))
        if item is None:
            raise NotFoundError(f"sale item not found: {req.sale_item_id}")
        # Asking for more than is left returns what is left.
        qty = min(int(req.return_quantity), remaining_quantity(item))
        if qty <= 0:
            continue
        planned.append((item, qty))
    return planned


def enforce_value_rule(replacement_total: Decimal, total_returned: Decimal, has_replacements: bool, original_total) -> None:
    if total_returned > ZERO:
        if replacement_total < total_returned:
            raise InvariantViolation(basis="returned_value", required=total_returned, actual=replacement_total)
    elif has_replacements:
        original_total = to_decimal(original_total)
        if replacement_total < original_total:
            raise InvariantViolation(basis="original_total", required=original_total, actual=replacement_total)


def _create_linked_sale(repo, sale: dict, totals: Totals) -> str:
    new_sale_id, _ = allocate_unique(
        lambda order_id: repo.insert_sale(
            order_id=order_id,
            sale_type="EXCHANGE",
            payment_method=sale["payment_method"],
            tax_mode=totals.tax_mode,
            subtotal=totals.subtotal,
            discount=totals.discount_total,
            tax_percent=totals.tax_percent,
            tax=totals.tax_amount,
            total=totals.total,
            linked_sale_id=str(sale["id"]),
            per_line_tax=bool(sale.get("per_line_tax")),
        ),
        generate_order_id,
        kind="order_id",
    )
    return new_sale_id


def process_exchange(
    repo,
    sale_id: str,
    data: ExchangeIn,
    policy: ResultPolicy,
    idempotency_key: Optional[str] = None,
) -> dict:
    _validate_request(data)
    operation = f"exchange:{policy.value}"

    sale = load_sale_or_404(repo, sale_id, lock=True)
    stored = replay(repo, idempotency_key, operation, sale_id)
    if stored is not None:
        return stored

    items = repo.load_sale_items(sale_id)
    returns = _plan_returns(items, data)
    if not returns and not data.replacement_items:
        # Every requested unit was already returned.
        raise ValidationError("nothing to exchange")

    product_ids = {str(i["product_id"]) for i, _ in returns}
    product_ids.update(str(r.product_id) for r in data.replacement_items)
    products = repo.load_products(sorted(product_ids))

    return_models = []
    for item, qty in returns:
        product = products.get(str(item["product_id"]))
        if product is None:
            raise NotFoundError(f"product not found: {item['product_id']}")
        return_models.append((stock_model_for(product, item.get("variant_id")), qty))

    tax, tax_percent_for = resolve_exchange_tax(repo, sale)
    lines, models = build_priced_lines(products, data.replacement_items, tax_percent_for=tax_percent_for)
    totals = calculate_totals(lines, tax=tax, tax_mode=sale.get("tax_mode"))

    total_returned = sum((returned_value(item, qty) for item, qty in returns), ZERO)
    try:
        enforce_value_rule(totals.total, total_returned, bool(lines), sale["total"])
    except InvariantViolation as ex:
        json_log(
            "warning",
            "exchange.rejected",
            sale_id=sale_id,
            policy=policy.value,
            basis=ex.basis,
            required=ex.required,
            actual=ex.actual,
            shortfall=ex.shortfall,
        )
        raise

    # Units coming back in this exchange may be handed straight out again.
    check_availability(
        [(model, line.quantity) for model, line in zip(models, totals.lines)],
        credits=return_models,
    )

    stage = Stage.LOADED
    new_sale_id = None
    try:
        for (item, qty), (model, _) in zip(returns, return_models):
            if repo.increment_returned_quantity(sale_id, str(item["id"]), qty) is None:
                raise ValidationError(f"return quantity exceeds remaining quantity for item {item['id']}")
            model.adjust(repo, -qty)
        stage = Stage.RETURNS_APPLIED

        if policy == ResultPolicy.CREATE_NEW_LINKED:
            if totals.lines:
                new_sale_id = _create_linked_sale(repo, sale, totals)
                persist_lines(repo, new_sale_id, totals.lines, models)
            stage = Stage.REPLACEMENTS_APPLIED
        else:
            persist_lines(repo, sale_id, totals.lines, models)
            stage = Stage.REPLACEMENTS_APPLIED
            repo.update_sale_totals(sale_id, **recompute_totals(repo.load_sale_items(sale_id)))
            stage = Stage.RECALCULATED

        if policy == ResultPolicy.CREATE_NEW_LINKED:
            response = {
                "original_sale": sale_view(repo, sale_id),
                "new_sale": sale_view(repo, new_sale_id) if new_sale_id else None,
            }
        else:
            response = {"sale": sale_view(repo, sale_id)}
        response = remember(repo, idempotency_key, operation, sale_id, response)
        stage = Stage.PERSISTED
    except PosError as ex:
        json_log("error", "exchange.aborted", sale_id=sale_id, policy=policy.value, stage=stage.value, error=ex.detail)
        raise

    json_log(
        "info",
        "exchange.committed",
        sale_id=sale_id,
        new_sale_id=new_sale_id,
        policy=policy.value,
        returned_units=sum(qty for _, qty in returns),
        replacement_units=sum(line.quantity for line in totals.lines),
        returned_value=total_returned,
        replacement_total=totals.total,
    )
    return response
