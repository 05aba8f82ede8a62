from fastapi import APIRouter, Depends, Header, Query
from typing import Optional
from datetime import date
from ..checkout import process_checkout
from ..deps import get_tenant_context
from ..exchange import ResultPolicy, process_exchange
from ..idempotency import normalize_key
from ..repository import TenantContext, unit_of_work
from ..sales import sale_view
from ..schemas import CheckoutIn, ExchangeIn

router = APIRouter(prefix="/sales", tags=["sales"])


@router.post("", status_code=201)
def create_sale(data: CheckoutIn, ctx: TenantContext = Depends(get_tenant_context)):
    with unit_of_work(ctx) as repo:
        return {"sale": process_checkout(repo, data)}


@router.get("")
def list_sales(
    ctx: TenantContext = Depends(get_tenant_context),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    cashier_id: Optional[str] = Query(None, alias="cashierId"),
    order_id: Optional[str] = Query(None, alias="orderId"),
):
    with unit_of_work(ctx) as repo:
        sales = repo.list_sales(
            start_date=start_date,
            end_date=end_date,
            cashier_id=(cashier_id or "").strip() or None,
            order_id=(order_id or "").strip() or None,
        )
        return {"sales": sales}


@router.get("/{sale_id}")
def get_sale(sale_id: str, ctx: TenantContext = Depends(get_tenant_context)):
    with unit_of_work(ctx) as repo:
        return {"sale": sale_view(repo, sale_id)}


@router.post("/{sale_id}/exchange")
def exchange_sale(
    sale_id: str,
    data: ExchangeIn,
    ctx: TenantContext = Depends(get_tenant_context),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    # Returned goods stay on the original sale; replacements become a linked EXCHANGE sale.
    with unit_of_work(ctx) as repo:
        return process_exchange(
            repo, sale_id, data, ResultPolicy.CREATE_NEW_LINKED, idempotency_key=normalize_key(idempotency_key)
        )


@router.patch("/{sale_id}")
def update_sale(
    sale_id: str,
    data: ExchangeIn,
    ctx: TenantContext = Depends(get_tenant_context),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    # Replacements are appended to this sale and its totals recomputed.
    with unit_of_work(ctx) as repo:
        return process_exchange(
            repo, sale_id, data, ResultPolicy.APPEND_TO_EXISTING, idempotency_key=normalize_key(idempotency_key)
        )
