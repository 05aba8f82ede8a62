import secrets
import string
from datetime import datetime, timezone
from typing import Callable, Optional

from .config import settings
from .errors import PosError
from .logs import json_log


_SUFFIX_ALPHABET = string.digits + string.ascii_uppercase


def _suffix(length: int = 5) -> str:
    return "".join(secrets.choice(_SUFFIX_ALPHABET) for _ in range(length))


def generate_order_id(now: Optional[datetime] = None) -> str:
    # YYYYMMDD-XXXXX
    now = now or datetime.now(timezone.utc)
    return f"{now:%Y%m%d}-{_suffix()}"


def generate_refund_no(now: Optional[datetime] = None) -> str:
    return f"REF-{generate_order_id(now)}"


def allocate_unique(
    insert: Callable[[str], Optional[str]],
    generate: Callable[[], str],
    *,
    kind: str,
    max_attempts: Optional[int] = None,
) -> tuple[str, str]:
    """
    `insert(candidate)` must return the new row id, or None when the candidate number is
    already taken (INSERT ... ON CONFLICT DO NOTHING RETURNING id). Returns (row_id, number).
    """
    attempts = max_attempts or settings.order_id_max_attempts
    for attempt in range(attempts):
        candidate = generate()
        row_id = insert(candidate)
        if row_id:
            return row_id, candidate
        json_log("warning", "order_id.collision", kind=kind, candidate=candidate, attempt=attempt + 1)
    raise PosError(f"unable to allocate unique {kind}")
