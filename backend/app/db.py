import os
from psycopg.rows import dict_row
from contextlib import contextmanager

# psycopg3 connection pooling lives in a separate package.
from psycopg_pool import ConnectionPool

from .config import _env_int

DATABASE_URL_ADMIN = os.getenv("DATABASE_URL_ADMIN") or os.getenv("DATABASE_URL") or "postgresql://localhost/amanatpos"
DATABASE_URL = os.getenv("APP_DATABASE_URL") or os.getenv("DATABASE_URL") or "postgresql://localhost/amanatpos"

# Pool sizing defaults are conservative for local/dev. Override in prod via env:
# - DB_POOL_MIN_SIZE / DB_POOL_MAX_SIZE
# - DB_ADMIN_POOL_MIN_SIZE / DB_ADMIN_POOL_MAX_SIZE
_POOL_MIN = _env_int("DB_POOL_MIN_SIZE", 1)
_POOL_MAX = _env_int("DB_POOL_MAX_SIZE", 10)
_ADMIN_POOL_MIN = _env_int("DB_ADMIN_POOL_MIN_SIZE", 1)
_ADMIN_POOL_MAX = _env_int("DB_ADMIN_POOL_MAX_SIZE", 5)

# Global pools (one for the tenant-scoped app role, one for admin/health probes).
# Pools open lazily so importing this module never needs a reachable database.
_pool = ConnectionPool(
    conninfo=DATABASE_URL,
    min_size=_POOL_MIN,
    max_size=_POOL_MAX,
    kwargs={"row_factory": dict_row},
    open=False,
)

_admin_pool = ConnectionPool(
    conninfo=DATABASE_URL_ADMIN,
    min_size=_ADMIN_POOL_MIN,
    max_size=_ADMIN_POOL_MAX,
    kwargs={"row_factory": dict_row},
    open=False,
)


def open_pools() -> None:
    _pool.open()
    _admin_pool.open()


@contextmanager
def _pooled_conn(pool: ConnectionPool):
    # `with get_conn() as conn:`
    # - commit on success
    # - rollback on exception
    # - return connection to pool
    with pool.connection() as conn:
        with conn:
            yield conn


def get_conn():
    return _pooled_conn(_pool)

def get_admin_conn():
    return _pooled_conn(_admin_pool)


def close_pools() -> None:
    # Best-effort shutdown hook (e.g. uvicorn shutdown).
    try:
        _pool.close()
    except Exception:
        pass
    try:
        _admin_pool.close()
    except Exception:
        pass


def set_tenant_context(conn, tenant_id: str):
    with conn.cursor() as cur:
        # `SET ... = %s` is not valid when using the extended query protocol (psycopg sends $1).
        # Use set_config() to safely parameterize the value.
        # set_config(name text, value text, is_local boolean)
        cur.execute(
            "SELECT set_config('app.current_tenant_id', %s::text, true)",
            (tenant_id,),
        )
