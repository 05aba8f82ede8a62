from decimal import Decimal
from typing import List, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from .validation import DiscountType, PaymentMethod


class _CamelModel(BaseModel):
    # Clients send camelCase; snake_case is accepted too.
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)


class ReturnItemIn(_CamelModel):
    sale_item_id: str
    return_quantity: int = Field(gt=0)


class ReplacementItemIn(_CamelModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(default=1, gt=0)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)


class ExchangeIn(_CamelModel):
    return_items: List[ReturnItemIn] = Field(default_factory=list)
    replacement_items: List[ReplacementItemIn] = Field(default_factory=list)


class RefundItemIn(_CamelModel):
    sale_item_id: str
    quantity: int = Field(gt=0)


class RefundIn(_CamelModel):
    sale_id: str
    items: List[RefundItemIn]
    reason: Optional[str] = None


class CheckoutLineIn(_CamelModel):
    product_id: str
    variant_id: Optional[str] = None
    quantity: int = Field(default=1, gt=0)
    discount_type: Optional[DiscountType] = None
    discount_value: Optional[Decimal] = Field(default=None, ge=0)


class CheckoutIn(_CamelModel):
    items: List[CheckoutLineIn]
    cart_discount_type: Optional[DiscountType] = None
    cart_discount_value: Optional[Decimal] = Field(default=None, ge=0)
    coupon_code: Optional[str] = None
    tax_id: Optional[str] = None
    payment_method: PaymentMethod = "CASH"
