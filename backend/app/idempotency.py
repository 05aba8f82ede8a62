"""
Replay protection for exchange/update/refund calls.

Offline tills replay requests until they see a response. A request carrying an
`Idempotency-Key` stores its response in the same transaction as its effects, so a
replay returns the stored response instead of applying returns or deductions twice.
"""
import json
from typing import Optional

from fastapi.encoders import jsonable_encoder

from .errors import IdempotencyConflict
from .logs import json_log


def normalize_key(raw: Optional[str]) -> Optional[str]:
    key = (raw or "").strip()
    return key[:200] or None


def replay(repo, key: Optional[str], operation: str, sale_id: str) -> Optional[dict]:
    # Call after the sale row is locked so a concurrent twin waits for the first to commit.
    if not key:
        return None
    rec = repo.find_idempotency_record(key)
    if not rec:
        return None
    if rec["operation"] != operation or str(rec["sale_id"]) != str(sale_id):
        raise IdempotencyConflict()
    json_log("info", "idempotency.replayed", operation=operation, sale_id=sale_id, key=key)
    raw = rec["response_json"]
    return json.loads(raw) if isinstance(raw, str) else raw


def remember(repo, key: Optional[str], operation: str, sale_id: str, response: dict) -> dict:
    encoded = jsonable_encoder(response)
    if key:
        repo.save_idempotency_record(key, operation, sale_id, encoded)
    return encoded
