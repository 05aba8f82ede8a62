from fastapi import APIRouter, Depends, Header, Query
from typing import Optional
from datetime import date
from ..deps import get_tenant_context
from ..idempotency import normalize_key
from ..refunds import process_refund, refund_view
from ..repository import TenantContext, unit_of_work
from ..schemas import RefundIn

router = APIRouter(prefix="/refunds", tags=["refunds"])


@router.post("", status_code=201)
def create_refund(
    data: RefundIn,
    ctx: TenantContext = Depends(get_tenant_context),
    idempotency_key: Optional[str] = Header(None, alias="Idempotency-Key"),
):
    with unit_of_work(ctx) as repo:
        return {"refund": process_refund(repo, data, idempotency_key=normalize_key(idempotency_key))}


@router.get("")
def list_refunds(
    ctx: TenantContext = Depends(get_tenant_context),
    start_date: Optional[date] = Query(None, alias="startDate"),
    end_date: Optional[date] = Query(None, alias="endDate"),
    sale_id: Optional[str] = Query(None, alias="saleId"),
):
    with unit_of_work(ctx) as repo:
        refunds = repo.list_refunds(
            start_date=start_date,
            end_date=end_date,
            sale_id=(sale_id or "").strip() or None,
        )
        return {"refunds": refunds}


@router.get("/{refund_id}")
def get_refund(refund_id: str, ctx: TenantContext = Depends(get_tenant_context)):
    with unit_of_work(ctx) as repo:
        return {"refund": refund_view(repo, refund_id)}
