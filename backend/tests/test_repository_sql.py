from contextlib import contextmanager
from decimal import Decimal

import pytest

from backend.app import repository
from backend.app.repository import TenantContext, TenantRepository, unit_of_work


def _norm(sql: str) -> str:
    return " ".join(sql.split())


class _FakeCursor:
    def __init__(self, results=None):
        self._results = list(results or [])
        self.executed: list[tuple[str, tuple]] = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    def execute(self, sql, params=None):
        self.executed.append((_norm(sql), tuple(params or ())))

    def fetchone(self):
        return self._results.pop(0) if self._results else None

    def fetchall(self):
        return self._results.pop(0) if self._results else []


class _FakeConn:
    def __init__(self, cursor):
        self._cursor = cursor
        self.transactions = []

    def __enter__(self):
        return self

    def __exit__(self, exc_type, exc, tb):
        return False

    @contextmanager
    def transaction(self):
        state = {"rolled_back": False}
        self.transactions.append(state)
        try:
            yield
        except Exception:
            state["rolled_back"] = True
            raise

    def cursor(self):
        return self._cursor


CTX = TenantContext(tenant_id="t1", cashier_id="u1")


def test_stock_decrement_is_one_atomic_statement():
    cur = _FakeCursor([{"stock": Decimal("7")}])
    repo = TenantRepository(cur, CTX)
    assert repo.decrement_product_stock("p1", Decimal("3")) == Decimal("7")
    sql, params = cur.executed[0]
    assert "SET stock = stock - %s" in sql
    assert "is_unlimited = false" in sql
    assert "RETURNING stock" in sql
    assert params == (Decimal("3"), "t1", "p1")


def test_bom_deduction_updates_all_materials_in_one_statement():
    cur = _FakeCursor([[{"id": "m1", "stock": Decimal("0")}, {"id": "m2", "stock": Decimal("0.5")}]])
    repo = TenantRepository(cur, CTX)
    out = repo.decrement_material_stock({"m1": Decimal("10"), "m2": Decimal("2.5")})
    assert out == {"m1": Decimal("0"), "m2": Decimal("0.5")}
    assert len(cur.executed) == 1
    sql, params = cur.executed[0]
    assert "unnest(%s::uuid[], %s::numeric[])" in sql
    assert "SET stock = rm.stock - d.delta" in sql
    assert params == (["m1", "m2"], [Decimal("10"), Decimal("2.5")], "t1")


def test_empty_bom_deduction_issues_no_statement():
    cur = _FakeCursor()
    assert TenantRepository(cur, CTX).decrement_material_stock({}) == {}
    assert cur.executed == []


def test_sale_is_locked_for_mutation():
    cur = _FakeCursor([{"id": "s1"}, {"id": "s1"}])
    repo = TenantRepository(cur, CTX)
    repo.load_sale("s1", lock=True)
    repo.load_sale("s1")
    assert cur.executed[0][0].endswith("FOR UPDATE")
    assert "FOR UPDATE" not in cur.executed[1][0]
    assert cur.executed[0][1] == ("t1", "s1")


def test_returned_quantity_is_bounded_in_sql():
    cur = _FakeCursor([None])
    repo = TenantRepository(cur, CTX)
    assert repo.increment_returned_quantity("s1", "i1", 2) is None
    sql, params = cur.executed[0]
    assert "returned_quantity + %s <= quantity" in sql
    assert params == (2, "t1", "s1", "i1", 2)


def test_insert_sale_reports_order_id_collision():
    cur = _FakeCursor([None])
    repo = TenantRepository(cur, CTX)
    sale_id = repo.insert_sale(
        order_id="20261016-AAAAA",
        sale_type="SALE",
        payment_method="CASH",
        tax_mode="EXCLUSIVE",
        subtotal=Decimal("10"),
        discount=Decimal("0"),
        tax_percent=Decimal("0"),
        tax=Decimal("0"),
        total=Decimal("10"),
    )
    assert sale_id is None
    sql, params = cur.executed[0]
    assert "ON CONFLICT (tenant_id, order_id) DO NOTHING" in sql
    assert params[:4] == ("t1", "20261016-AAAAA", "u1", "SALE")
    assert params[-1] is False


def test_load_products_groups_variants_and_materials():
    cur = _FakeCursor([
        [{"id": "p1", "name": "Pizza", "type": "COMPOSITE", "price": Decimal("12"), "stock": Decimal("0"),
          "is_unlimited": False, "default_tax_id": None, "default_tax_percent": None, "sku": None}],
        [],
        [{"product_id": "p1", "raw_material_id": "m1", "quantity": Decimal("2"), "material_name": "Flour",
          "stock": Decimal("10"), "is_unlimited": False}],
    ])
    repo = TenantRepository(cur, CTX)
    products = repo.load_products(["p1", "p1"])
    assert list(products) == ["p1"]
    assert products["p1"]["variants"] == []
    assert products["p1"]["materials"][0]["raw_material_id"] == "m1"
    assert len(cur.executed) == 3
    assert cur.executed[0][1] == ("t1", ["p1"])


def test_load_products_without_ids_skips_the_query():
    cur = _FakeCursor()
    assert TenantRepository(cur, CTX).load_products([]) == {}
    assert cur.executed == []


def test_every_statement_carries_the_tenant():
    cur = _FakeCursor()
    repo = TenantRepository(cur, CTX)
    repo.load_sale_items("s1")
    repo.list_sales(order_id="2026")
    repo.get_tax_mode()
    repo.find_tax_by_percent(Decimal("10"))
    repo.find_default_tax()
    repo.find_coupon("SAVE5")
    repo.list_refunds(sale_id="s1")
    repo.find_idempotency_record("k1")
    repo.update_sale_totals(
        "s1", subtotal=Decimal("1"), discount=Decimal("0"), coupon_value=Decimal("0"), tax=Decimal("0"), total=Decimal("1")
    )
    assert len(cur.executed) == 9
    for _sql, params in cur.executed:
        assert "t1" in params


def test_unit_of_work_binds_tenant_and_wraps_one_transaction(monkeypatch):
    cur = _FakeCursor()
    conn = _FakeConn(cur)
    bound = []
    monkeypatch.setattr(repository, "get_conn", lambda: conn)
    monkeypatch.setattr(repository, "set_tenant_context", lambda _conn, tenant_id: bound.append(tenant_id))

    with unit_of_work(CTX) as repo:
        assert isinstance(repo, TenantRepository)
        assert repo.tenant_id == "t1"
    assert bound == ["t1"]
    assert conn.transactions == [{"rolled_back": False}]

    with pytest.raises(RuntimeError):
        with unit_of_work(CTX):
            raise RuntimeError("boom")
    assert conn.transactions[-1] == {"rolled_back": True}


def test_recomputed_totals_keep_coupon_value_null_without_a_coupon():
    cur = _FakeCursor()
    TenantRepository(cur, CTX).update_sale_totals(
        "s1", subtotal=Decimal("60"), discount=Decimal("6"), coupon_value=Decimal("6"), tax=Decimal("0"), total=Decimal("54")
    )
    sql, params = cur.executed[0]
    assert "coupon_value = CASE WHEN coupon_code IS NULL THEN NULL ELSE %s END" in sql
    assert params == (Decimal("60"), Decimal("6"), Decimal("6"), Decimal("0"), Decimal("54"), "t1", "s1")
