import re
from datetime import datetime, timezone

import pytest

from backend.app.errors import PosError
from backend.app.order_ids import allocate_unique, generate_order_id, generate_refund_no


def test_order_id_format():
    now = datetime(2026, 1, 5, 23, 59, tzinfo=timezone.utc)
    order_id = generate_order_id(now)
    assert re.match(r"^20260105-[0-9A-Z]{5}$", order_id)
    assert re.match(r"^REF-20260105-[0-9A-Z]{5}$", generate_refund_no(now))


def test_allocate_unique_retries_on_collision():
    candidates = iter(["A", "B", "C"])
    taken = {"A", "B"}
    seen = []

    def insert(number):
        seen.append(number)
        return None if number in taken else f"row-{number}"

    row_id, number = allocate_unique(insert, lambda: next(candidates), kind="order_id")
    assert (row_id, number) == ("row-C", "C")
    assert seen == ["A", "B", "C"]


def test_allocate_unique_gives_up():
    calls = []

    def insert(number):
        calls.append(number)
        return None

    with pytest.raises(PosError):
        allocate_unique(insert, lambda: "SAME", kind="refund_no", max_attempts=3)
    assert len(calls) == 3
