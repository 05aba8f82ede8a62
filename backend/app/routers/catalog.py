from fastapi import APIRouter, Depends, Query
from typing import Optional
from ..deps import get_tenant_context
from ..errors import NotFoundError
from ..inventory import max_sellable
from ..repository import TenantContext, unit_of_work
from ..tax import load_coupon

router = APIRouter(tags=["catalog"])


@router.get("/coupons/validate")
def validate_coupon(code: str = Query(...), ctx: TenantContext = Depends(get_tenant_context)):
    with unit_of_work(ctx) as repo:
        row = load_coupon(repo, code)
        return {
            "coupon": {
                "id": row["id"],
                "code": row["code"],
                "type": row["type"],
                "value": row["value"],
                "starts_at": row.get("starts_at"),
                "ends_at": row.get("ends_at"),
            }
        }


@router.get("/products/{product_id}/availability")
def product_availability(
    product_id: str,
    variant_id: Optional[str] = Query(None, alias="variantId"),
    ctx: TenantContext = Depends(get_tenant_context),
):
    with unit_of_work(ctx) as repo:
        product = repo.load_products([product_id]).get(str(product_id))
        if product is None:
            raise NotFoundError("product not found")
        # null means the product (or every material it uses) is unlimited.
        return {"productId": str(product["id"]), "variantId": variant_id, "maxSellable": max_sellable(product, variant_id)}
