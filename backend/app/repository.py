"""
Tenant-scoped data access.

`unit_of_work(ctx)` is the only way the engine touches the database: it binds the
connection to the tenant (row level security reads `app.current_tenant_id`), opens a
single transaction and hands out a `TenantRepository` whose every statement is also
filtered by `ctx.tenant_id`. Leaving the block commits; any exception rolls back.
"""
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date
from decimal import Decimal
from typing import Optional
import json

from .db import get_conn, set_tenant_context


@dataclass(frozen=True)
class TenantContext:
    tenant_id: str
    cashier_id: str


@contextmanager
def unit_of_work(ctx: TenantContext):
    with get_conn() as conn:
        set_tenant_context(conn, ctx.tenant_id)
        with conn.transaction():
            with conn.cursor() as cur:
                yield TenantRepository(cur, ctx)


SALE_COLUMNS = """
    id, order_id, cashier_id, type, linked_sale_id, payment_method, tax_mode,
    subtotal, discount, coupon_code, coupon_value, tax_percent, per_line_tax, tax, total, created_at
"""


class TenantRepository:
    def __init__(self, cur, ctx: TenantContext):
        self.cur = cur
        self.ctx = ctx

    @property
    def tenant_id(self) -> str:
        return self.ctx.tenant_id

    # -- sales -----------------------------------------------------------------

    def load_sale(self, sale_id: str, lock: bool = False) -> Optional[dict]:
        self.cur.execute(
            f"""
            SELECT {SALE_COLUMNS}
            FROM sales
            WHERE tenant_id = %s AND id = %s
            {"FOR UPDATE" if lock else ""}
            """,
            (self.tenant_id, sale_id),
        )
        return self.cur.fetchone()

    def load_sale_items(self, sale_id: str) -> list[dict]:
        self.cur.execute(
            """
            SELECT si.id, si.sale_id, si.product_id, si.variant_id,
                   si.quantity, si.returned_quantity,
                   si.price, si.discount, si.tax, si.total, si.cart_discount, si.coupon_discount,
                   p.name AS product_name, p.sku AS product_sku,
                   v.name AS variant_name, v.sku AS variant_sku, v.attributes AS variant_attributes
            FROM sale_items si
            JOIN products p ON p.tenant_id = si.tenant_id AND p.id = si.product_id
            LEFT JOIN product_variants v ON v.tenant_id = si.tenant_id AND v.id = si.variant_id
            WHERE si.tenant_id = %s AND si.sale_id = %s
            ORDER BY si.created_at, si.id
            """,
            (self.tenant_id, sale_id),
        )
        return self.cur.fetchall()

    def list_sales(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        cashier_id: Optional[str] = None,
        order_id: Optional[str] = None,
        limit: int = 1000,
    ) -> list[dict]:
        self.cur.execute(
            f"""
            SELECT {SALE_COLUMNS}
            FROM sales
            WHERE tenant_id = %s
              AND (%s::date IS NULL OR created_at >= %s::date)
              AND (%s::date IS NULL OR created_at < %s::date + 1)
              AND (%s::uuid IS NULL OR cashier_id = %s::uuid)
              AND (%s::text IS NULL OR order_id ILIKE '%%' || %s::text || '%%')
            ORDER BY created_at DESC
            LIMIT %s
            """,
            (
                self.tenant_id,
                start_date, start_date,
                end_date, end_date,
                cashier_id, cashier_id,
                order_id, order_id,
                limit,
            ),
        )
        return self.cur.fetchall()

    def insert_sale(
        self,
        *,
        order_id: str,
        sale_type: str,
        payment_method: str,
        tax_mode: str,
        subtotal: Decimal,
        discount: Decimal,
        tax_percent: Decimal,
        tax: Decimal,
        total: Decimal,
        coupon_code: Optional[str] = None,
        coupon_value: Optional[Decimal] = None,
        linked_sale_id: Optional[str] = None,
        per_line_tax: bool = False,
    ) -> Optional[str]:
        """Returns the new sale id, or None when `order_id` is already taken."""
        self.cur.execute(
            """
            INSERT INTO sales
              (id, tenant_id, order_id, cashier_id, type, linked_sale_id, payment_method, tax_mode,
               subtotal, discount, coupon_code, coupon_value, tax_percent, tax, total, per_line_tax)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s, %s)
            ON CONFLICT (tenant_id, order_id) DO NOTHING
            RETURNING id
            """,
            (
                self.tenant_id,
                order_id,
                self.ctx.cashier_id,
                sale_type,
                linked_sale_id,
                payment_method,
                tax_mode,
                subtotal,
                discount,
                coupon_code,
                coupon_value,
                tax_percent,
                tax,
                total,
                per_line_tax,
            ),
        )
        row = self.cur.fetchone()
        return str(row["id"]) if row else None

    def insert_sale_item(self, sale_id: str, line) -> str:
        self.cur.execute(
            """
            INSERT INTO sale_items
              (id, tenant_id, sale_id, product_id, variant_id, quantity, returned_quantity,
               price, discount, tax, total, cart_discount, coupon_discount)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, 0, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                self.tenant_id,
                sale_id,
                line.product_id,
                line.variant_id,
                line.quantity,
                line.unit_price,
                line.discount,
                line.tax,
                line.total,
                line.cart_discount,
                line.coupon_discount,
            ),
        )
        return str(self.cur.fetchone()["id"])

    def increment_returned_quantity(self, sale_id: str, sale_item_id: str, qty: int) -> Optional[dict]:
        # The guard keeps 0 <= returned_quantity <= quantity even if a caller miscounts.
        self.cur.execute(
            """
            UPDATE sale_items
            SET returned_quantity = returned_quantity + %s
            WHERE tenant_id = %s AND sale_id = %s AND id = %s
              AND returned_quantity + %s <= quantity
            RETURNING id, quantity, returned_quantity
            """,
            (qty, self.tenant_id, sale_id, sale_item_id, qty),
        )
        return self.cur.fetchone()

    def update_sale_totals(
        self,
        sale_id: str,
        *,
        subtotal: Decimal,
        discount: Decimal,
        coupon_value: Decimal,
        tax: Decimal,
        total: Decimal,
    ):
        # A sale sold without a coupon keeps a NULL coupon_value.
        self.cur.execute(
            """
            UPDATE sales
            SET subtotal = %s, discount = %s,
                coupon_value = CASE WHEN coupon_code IS NULL THEN NULL ELSE %s END,
                tax = %s, total = %s
            WHERE tenant_id = %s AND id = %s
            """,
            (subtotal, discount, coupon_value, tax, total, self.tenant_id, sale_id),
        )

    # -- catalog ---------------------------------------------------------------

    def load_products(self, product_ids: list[str]) -> dict[str, dict]:
        """Products with their variants and bill of materials, keyed by id."""
        ids = sorted({str(x) for x in (product_ids or []) if str(x).strip()})
        if not ids:
            return {}
        self.cur.execute(
            """
            SELECT p.id, p.name, p.sku, p.type, p.price, p.stock, p.is_unlimited,
                   p.default_tax_id, t.percent AS default_tax_percent
            FROM products p
            LEFT JOIN tax_settings t ON t.tenant_id = p.tenant_id AND t.id = p.default_tax_id
            WHERE p.tenant_id = %s AND p.id = ANY(%s::uuid[])
            """,
            (self.tenant_id, ids),
        )
        products = {}
        for r in self.cur.fetchall():
            products[str(r["id"])] = {**r, "id": str(r["id"]), "variants": [], "materials": []}
        if not products:
            return {}
        found = list(products)

        self.cur.execute(
            """
            SELECT id, product_id, name, sku, attributes, price, cost, stock
            FROM product_variants
            WHERE tenant_id = %s AND product_id = ANY(%s::uuid[])
            ORDER BY product_id, id
            """,
            (self.tenant_id, found),
        )
        for r in self.cur.fetchall():
            products[str(r["product_id"])]["variants"].append({**r, "id": str(r["id"])})

        self.cur.execute(
            """
            SELECT pm.product_id, pm.raw_material_id, pm.quantity,
                   rm.name AS material_name, rm.stock, rm.is_unlimited
            FROM product_materials pm
            JOIN raw_materials rm ON rm.tenant_id = pm.tenant_id AND rm.id = pm.raw_material_id
            WHERE pm.tenant_id = %s AND pm.product_id = ANY(%s::uuid[])
            ORDER BY pm.product_id, pm.raw_material_id
            """,
            (self.tenant_id, found),
        )
        for r in self.cur.fetchall():
            products[str(r["product_id"])]["materials"].append({**r, "raw_material_id": str(r["raw_material_id"])})
        return products

    # -- stock -----------------------------------------------------------------
    # Stock changes are single `stock = stock - delta` statements so concurrent sales of
    # the same row never lose an update. Each returns the post-update stock.

    def decrement_product_stock(self, product_id: str, delta: Decimal) -> Optional[Decimal]:
        self.cur.execute(
            """
            UPDATE products
            SET stock = stock - %s
            WHERE tenant_id = %s AND id = %s AND is_unlimited = false
            RETURNING stock
            """,
            (delta, self.tenant_id, product_id),
        )
        row = self.cur.fetchone()
        return row["stock"] if row else None

    def decrement_variant_stock(self, variant_id: str, delta: Decimal) -> Optional[Decimal]:
        self.cur.execute(
            """
            UPDATE product_variants
            SET stock = stock - %s
            WHERE tenant_id = %s AND id = %s
            RETURNING stock
            """,
            (delta, self.tenant_id, variant_id),
        )
        row = self.cur.fetchone()
        return row["stock"] if row else None

    def decrement_material_stock(self, deltas: dict[str, Decimal]) -> dict[str, Decimal]:
        # One statement for the whole bill of materials: it applies to every row or none.
        if not deltas:
            return {}
        ids = list(deltas)
        self.cur.execute(
            """
            UPDATE raw_materials AS rm
            SET stock = rm.stock - d.delta
            FROM unnest(%s::uuid[], %s::numeric[]) AS d(id, delta)
            WHERE rm.tenant_id = %s AND rm.id = d.id AND rm.is_unlimited = false
            RETURNING rm.id, rm.stock
            """,
            (ids, [deltas[i] for i in ids], self.tenant_id),
        )
        return {str(r["id"]): r["stock"] for r in self.cur.fetchall()}

    # -- tax / discounts -------------------------------------------------------

    def get_tax_mode(self) -> str:
        self.cur.execute(
            "SELECT tax_mode FROM invoice_settings WHERE tenant_id = %s",
            (self.tenant_id,),
        )
        row = self.cur.fetchone()
        return str((row or {}).get("tax_mode") or "EXCLUSIVE").upper()

    def get_tax(self, tax_id: str) -> Optional[dict]:
        self.cur.execute(
            """
            SELECT id, name, percent, is_default, is_active
            FROM tax_settings
            WHERE tenant_id = %s AND id = %s
            """,
            (self.tenant_id, tax_id),
        )
        return self.cur.fetchone()

    def find_tax_by_percent(self, percent: Decimal) -> Optional[dict]:
        self.cur.execute(
            """
            SELECT id, name, percent, is_default, is_active
            FROM tax_settings
            WHERE tenant_id = %s AND percent = %s AND is_active = true
            ORDER BY is_default DESC, name
            LIMIT 1
            """,
            (self.tenant_id, percent),
        )
        return self.cur.fetchone()

    def find_default_tax(self) -> Optional[dict]:
        self.cur.execute(
            """
            SELECT id, name, percent, is_default, is_active
            FROM tax_settings
            WHERE tenant_id = %s AND is_default = true
            LIMIT 1
            """,
            (self.tenant_id,),
        )
        return self.cur.fetchone()

    def find_coupon(self, code: str) -> Optional[dict]:
        self.cur.execute(
            """
            SELECT id, code, type, value, is_active, starts_at, ends_at
            FROM coupons
            WHERE tenant_id = %s AND code = %s
            """,
            (self.tenant_id, code),
        )
        return self.cur.fetchone()

    # -- refunds (append-only) -------------------------------------------------

    def insert_refund(self, *, refund_no: str, sale_id: str, total: Decimal, reason: Optional[str]) -> Optional[str]:
        self.cur.execute(
            """
            INSERT INTO refunds (id, tenant_id, refund_no, sale_id, cashier_id, total, reason)
            VALUES (gen_random_uuid(), %s, %s, %s, %s, %s, %s)
            ON CONFLICT (tenant_id, refund_no) DO NOTHING
            RETURNING id
            """,
            (self.tenant_id, refund_no, sale_id, self.ctx.cashier_id, total, reason),
        )
        row = self.cur.fetchone()
        return str(row["id"]) if row else None

    def insert_refund_item(self, refund_id: str, sale_item: dict, quantity: int, amount: Decimal) -> str:
        self.cur.execute(
            """
            INSERT INTO refund_items
              (id, tenant_id, refund_id, sale_item_id, product_id, variant_id, quantity, refund_amount)
            VALUES
              (gen_random_uuid(), %s, %s, %s, %s, %s, %s, %s)
            RETURNING id
            """,
            (
                self.tenant_id,
                refund_id,
                sale_item["id"],
                sale_item["product_id"],
                sale_item.get("variant_id"),
                quantity,
                amount,
            ),
        )
        return str(self.cur.fetchone()["id"])

    def load_refund(self, refund_id: str) -> Optional[dict]:
        self.cur.execute(
            """
            SELECT r.id, r.refund_no, r.sale_id, s.order_id, r.cashier_id, r.total, r.reason, r.created_at
            FROM refunds r
            JOIN sales s ON s.tenant_id = r.tenant_id AND s.id = r.sale_id
            WHERE r.tenant_id = %s AND r.id = %s
            """,
            (self.tenant_id, refund_id),
        )
        refund = self.cur.fetchone()
        if not refund:
            return None
        self.cur.execute(
            """
            SELECT ri.id, ri.sale_item_id, ri.product_id, ri.variant_id, ri.quantity, ri.refund_amount,
                   p.name AS product_name, p.sku AS product_sku, v.name AS variant_name
            FROM refund_items ri
            JOIN products p ON p.tenant_id = ri.tenant_id AND p.id = ri.product_id
            LEFT JOIN product_variants v ON v.tenant_id = ri.tenant_id AND v.id = ri.variant_id
            WHERE ri.tenant_id = %s AND ri.refund_id = %s
            ORDER BY ri.id
            """,
            (self.tenant_id, refund_id),
        )
        return {**refund, "items": self.cur.fetchall()}

    def list_refunds(
        self,
        start_date: Optional[date] = None,
        end_date: Optional[date] = None,
        sale_id: Optional[str] = None,
        limit: int = 1000,
    ) -> list[dict]:
        self.cur.execute(
            """
            SELECT r.id, r.refund_no, r.sale_id, s.order_id, r.cashier_id, r.total, r.reason, r.created_at
            FROM refunds r
            JOIN sales s ON s.tenant_id = r.tenant_id AND s.id = r.sale_id
            WHERE r.tenant_id = %s
              AND (%s::date IS NULL OR r.created_at >= %s::date)
              AND (%s::date IS NULL OR r.created_at < %s::date + 1)
              AND (%s::uuid IS NULL OR r.sale_id = %s::uuid)
            ORDER BY r.created_at DESC
            LIMIT %s
            """,
            (self.tenant_id, start_date, start_date, end_date, end_date, sale_id, sale_id, limit),
        )
        return self.cur.fetchall()

    # -- idempotency -----------------------------------------------------------

    def find_idempotency_record(self, key: str) -> Optional[dict]:
        self.cur.execute(
            """
            SELECT idempotency_key, operation, sale_id, response_json
            FROM idempotency_keys
            WHERE tenant_id = %s AND idempotency_key = %s
            """,
            (self.tenant_id, key),
        )
        return self.cur.fetchone()

    def save_idempotency_record(self, key: str, operation: str, sale_id: str, response: dict) -> bool:
        self.cur.execute(
            """
            INSERT INTO idempotency_keys (tenant_id, idempotency_key, operation, sale_id, response_json)
            VALUES (%s, %s, %s, %s, %s::jsonb)
            ON CONFLICT (tenant_id, idempotency_key) DO NOTHING
            RETURNING idempotency_key
            """,
            (self.tenant_id, key, operation, sale_id, json.dumps(response, default=str)),
        )
        return self.cur.fetchone() is not None
