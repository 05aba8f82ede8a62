import os
from typing import List


def _env_int(name: str, default: int) -> int:
    raw = (os.getenv(name) or "").strip()
    if not raw:
        return default
    try:
        return int(raw)
    except Exception:
        return default


class Settings:
    def _split_csv(self, raw: str, *, default: List[str]) -> List[str]:
        parts = [p.strip() for p in (raw or "").split(",")]
        return [p for p in parts if p] or default

    def __init__(self) -> None:
        self.env = os.getenv('APP_ENV', 'local')
        self.db_url = os.getenv('DATABASE_URL', 'postgresql://localhost/amanatpos')
        # Comma-separated list of allowed CORS origins for the cashier/admin clients.
        self.cors_origins = self._split_csv(
            os.getenv("CORS_ORIGINS", "").strip(),
            default=["http://localhost:3000", "http://127.0.0.1:3000"],
        )
        self.api_version = os.getenv("APP_VERSION", "0.1.0").strip() or "0.1.0"
        # Order/refund numbers are random; a collision is retried with a fresh number.
        self.order_id_max_attempts = max(1, _env_int("ORDER_ID_MAX_ATTEMPTS", 10))
        self.money_display_places = max(0, _env_int("MONEY_DISPLAY_PLACES", 2))

    @property
    def exposes_errors(self) -> bool:
        return self.env in {"local", "dev"}

settings = Settings()
