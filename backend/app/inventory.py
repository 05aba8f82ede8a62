"""
Stock for the three product shapes.

- SIMPLE products own a stock counter (or are unlimited).
- VARIANT products keep stock on each variant row.
- COMPOSITE products own no stock; each unit consumes raw materials per its BOM.

`stock_model_for()` picks the shape once; callers then use `max_sellable()` and
`adjust()` without branching on product type. A positive delta deducts (sale,
replacement), a negative delta restores (return, refund).
"""
from dataclasses import dataclass
from decimal import Decimal, ROUND_FLOOR
from typing import Optional, Union

from .errors import InsufficientStock, NotFoundError, StockUnderflow, ValidationError
from .logs import json_log
from .money import ZERO, to_decimal


def _floor_int(v: Decimal) -> int:
    return int(v.to_integral_value(rounding=ROUND_FLOOR))


def _check_underflow(kind: str, row_id: str, delta: Decimal, stock: Optional[Decimal]):
    if stock is None or delta <= ZERO:
        return
    stock = to_decimal(stock)
    if stock < ZERO:
        json_log("error", "inventory.stock_underflow", kind=kind, row_id=row_id, delta=delta, stock=stock)
        raise StockUnderflow(kind, row_id, stock)


@dataclass(frozen=True)
class SimpleStock:
    product_id: str
    label: str
    stock: Decimal
    is_unlimited: bool

    def max_sellable(self) -> Optional[int]:
        if self.is_unlimited:
            return None
        return max(0, _floor_int(self.stock))

    def demand(self, quantity) -> dict:
        if self.is_unlimited:
            return {}
        return {("product", self.product_id): to_decimal(quantity)}

    def available(self) -> dict:
        return {("product", self.product_id): (self.label, self.stock)}

    def adjust(self, repo, quantity_delta) -> None:
        if self.is_unlimited:
            return
        delta = to_decimal(quantity_delta)
        stock = repo.decrement_product_stock(self.product_id, delta)
        _check_underflow("product", self.product_id, delta, stock)


@dataclass(frozen=True)
class VariantStock:
    product_id: str
    variant_id: str
    label: str
    stock: Decimal
    # Inherited from the parent product.
    is_unlimited: bool

    def max_sellable(self) -> Optional[int]:
        if self.is_unlimited:
            return None
        return max(0, _floor_int(self.stock))

    def demand(self, quantity) -> dict:
        if self.is_unlimited:
            return {}
        return {("variant", self.variant_id): to_decimal(quantity)}

    def available(self) -> dict:
        return {("variant", self.variant_id): (self.label, self.stock)}

    def adjust(self, repo, quantity_delta) -> None:
        if self.is_unlimited:
            return
        delta = to_decimal(quantity_delta)
        stock = repo.decrement_variant_stock(self.variant_id, delta)
        if stock is None:
            raise NotFoundError("variant not found")
        _check_underflow("variant", self.variant_id, delta, stock)


@dataclass(frozen=True)
class BomLine:
    raw_material_id: str
    name: str
    quantity_per_unit: Decimal
    stock: Decimal
    is_unlimited: bool


@dataclass(frozen=True)
class CompositeStock:
    product_id: str
    label: str
    materials: tuple

    def _tracked(self):
        return [m for m in self.materials if not m.is_unlimited]

    def max_sellable(self) -> Optional[int]:
        limits = [
            _floor_int(m.stock / m.quantity_per_unit)
            for m in self._tracked()
            if m.quantity_per_unit > ZERO
        ]
        if not limits:
            return None
        return max(0, min(limits))

    def demand(self, quantity) -> dict:
        qty = to_decimal(quantity)
        out: dict = {}
        for m in self._tracked():
            key = ("material", m.raw_material_id)
            out[key] = out.get(key, ZERO) + m.quantity_per_unit * qty
        return out

    def available(self) -> dict:
        return {("material", m.raw_material_id): (m.name, m.stock) for m in self._tracked()}

    def adjust(self, repo, quantity_delta) -> None:
        delta = to_decimal(quantity_delta)
        deltas: dict[str, Decimal] = {}
        for m in self._tracked():
            deltas[m.raw_material_id] = deltas.get(m.raw_material_id, ZERO) + m.quantity_per_unit * delta
        if not deltas:
            return
        stocks = repo.decrement_material_stock(deltas)
        for material_id, stock in stocks.items():
            _check_underflow("raw_material", material_id, delta, stock)


StockModel = Union[SimpleStock, VariantStock, CompositeStock]


def stock_model_for(product: dict, variant_id: Optional[str] = None) -> StockModel:
    ptype = str(product.get("type") or "SIMPLE").upper()
    name = product.get("name") or str(product["id"])
    unlimited = bool(product.get("is_unlimited"))

    if ptype == "VARIANT":
        if not variant_id:
            raise ValidationError(f"variant is required for product {name}")
        variant = next((v for v in (product.get("variants") or []) if str(v["id"]) == str(variant_id)), None)
        if variant is None:
            raise NotFoundError(f"variant not found for product {name}")
        return VariantStock(
            product_id=str(product["id"]),
            variant_id=str(variant["id"]),
            label=f"{name} ({variant.get('name') or variant.get('sku') or variant['id']})",
            stock=to_decimal(variant.get("stock")),
            is_unlimited=unlimited,
        )

    if variant_id:
        raise ValidationError(f"product {name} has no variants")

    if ptype == "COMPOSITE":
        return CompositeStock(
            product_id=str(product["id"]),
            label=name,
            materials=tuple(
                BomLine(
                    raw_material_id=str(m["raw_material_id"]),
                    name=m.get("material_name") or str(m["raw_material_id"]),
                    quantity_per_unit=to_decimal(m.get("quantity")),
                    stock=to_decimal(m.get("stock")),
                    is_unlimited=bool(m.get("is_unlimited")),
                )
                for m in (product.get("materials") or [])
            ),
        )

    return SimpleStock(
        product_id=str(product["id"]),
        label=name,
        stock=to_decimal(product.get("stock")),
        is_unlimited=unlimited,
    )


def max_sellable(product: dict, variant_id: Optional[str] = None) -> Optional[int]:
    """Largest quantity that can be sold right now; None means unlimited."""
    return stock_model_for(product, variant_id).max_sellable()


def adjust_stock(repo, product: dict, variant_id: Optional[str], quantity_delta) -> None:
    stock_model_for(product, variant_id).adjust(repo, quantity_delta)


def check_availability(requests: list, credits: Optional[list] = None) -> None:
    """
    `requests` is a list of (stock_model, quantity). Demand is summed per stock row so two
    lines drawing on the same variant or raw material are checked together.

    `credits` (same shape) is stock about to come back in the same transaction, e.g. units
    returned during an exchange; it counts towards what replacements may draw on.
    """
    demand: dict = {}
    available: dict = {}
    for model, quantity in requests:
        for key, qty in model.demand(quantity).items():
            demand[key] = demand.get(key, ZERO) + qty
        available.update(model.available())
    returned: dict = {}
    for model, quantity in credits or []:
        for key, qty in model.demand(quantity).items():
            returned[key] = returned.get(key, ZERO) + qty
    for key, qty in demand.items():
        label, stock = available[key]
        stock = to_decimal(stock) + returned.get(key, ZERO)
        if qty > stock:
            raise InsufficientStock(label, qty, stock)
