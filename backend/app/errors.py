"""
Error taxonomy for the sale/return engine.

Everything raised from inside a unit of work rolls the whole transaction back;
`main.py` maps these to JSON error bodies.
"""
from decimal import Decimal
from typing import Optional


class PosError(Exception):
    status_code = 500
    detail = "internal error"

    def __init__(self, detail: Optional[str] = None):
        super().__init__(detail or self.detail)
        if detail:
            self.detail = detail

    def to_content(self) -> dict:
        return {"detail": self.detail}


class ValidationError(PosError):
    status_code = 400
    detail = "invalid request"


class InsufficientStock(ValidationError):
    status_code = 409

    def __init__(self, label: str, requested: Decimal, available: Decimal):
        super().__init__(f"insufficient stock for {label}: requested {requested}, available {available}")
        self.label = label
        self.requested = requested
        self.available = available

    def to_content(self) -> dict:
        return {
            "detail": self.detail,
            "requested": str(self.requested),
            "available": str(self.available),
        }


class NotFoundError(PosError):
    # Rows of another tenant are reported exactly like missing rows.
    status_code = 404
    detail = "not found"


class InvariantViolation(PosError):
    """
    Replacement goods are worth less than what they are meant to cover.
    `basis` is "returned_value" or "original_total".
    """

    status_code = 409

    def __init__(self, *, basis: str, required: Decimal, actual: Decimal):
        self.basis = basis
        self.required = required
        self.actual = actual
        self.shortfall = required - actual
        label = "returned value" if basis == "returned_value" else "original total"
        super().__init__(
            f"exchange not allowed: replacement total {actual} must be equal to or greater than {label} {required}"
        )

    def to_content(self) -> dict:
        return {
            "detail": self.detail,
            "basis": self.basis,
            "required": str(self.required),
            "actual": str(self.actual),
            "shortfall": str(self.shortfall),
        }


class StockUnderflow(PosError):
    status_code = 500
    detail = "stock underflow"

    def __init__(self, kind: str, row_id: str, stock: Decimal):
        super().__init__(f"{kind} {row_id} stock went negative ({stock})")
        self.kind = kind
        self.row_id = row_id
        self.stock = stock


class IdempotencyConflict(PosError):
    status_code = 409
    detail = "idempotency key already used for a different request"
