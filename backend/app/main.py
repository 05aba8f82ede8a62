from fastapi import FastAPI, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from fastapi.exceptions import RequestValidationError
from psycopg import errors as pg_errors
import time
import uuid
from datetime import datetime, timezone
from .routers.sales import router as sales_router
from .routers.refunds import router as refunds_router
from .routers.catalog import router as catalog_router
from .config import settings
from .db import get_admin_conn, open_pools, close_pools
from .errors import PosError, StockUnderflow
from .logs import json_log

app = FastAPI(title="AmanatPOS API", version=settings.api_version)
STARTED_AT_UTC = datetime.now(timezone.utc)


def _current_request_id(req: Request) -> str:
    return getattr(req.state, "request_id", "") or req.headers.get("x-request-id") or "startup"


@app.exception_handler(PosError)
def _pos_error(req: Request, exc: PosError):
    if isinstance(exc, StockUnderflow):
        # Upstream checks should make this impossible; surface it like any other internal error.
        rid = _current_request_id(req)
        json_log("error", "http.request.stock_underflow", request_id=rid, path=req.url.path, error=str(exc))
        content = {"detail": "internal error", "request_id": rid}
        if settings.exposes_errors:
            content["error"] = str(exc)
        return JSONResponse(status_code=exc.status_code, content=content)
    return JSONResponse(status_code=exc.status_code, content=exc.to_content())


# Map common DB constraint/cast errors to 4xx so clients get actionable responses
# instead of generic 500s.
@app.exception_handler(pg_errors.InvalidTextRepresentation)
def _invalid_text_representation(_req: Request, exc: Exception):
    # e.g. a malformed uuid in the path, or an unknown enum value
    content = {"detail": "invalid value"}
    if settings.exposes_errors:
        content["error"] = str(exc)
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(pg_errors.ForeignKeyViolation)
def _foreign_key_violation(_req: Request, exc: Exception):
    content = {"detail": "invalid reference"}
    if settings.exposes_errors:
        content["error"] = str(exc)
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(pg_errors.UniqueViolation)
def _unique_violation(_req: Request, exc: Exception):
    content = {"detail": "conflict"}
    if settings.exposes_errors:
        content["error"] = str(exc)
    return JSONResponse(status_code=409, content=content)


@app.exception_handler(pg_errors.CheckViolation)
def _check_violation(_req: Request, exc: Exception):
    content = {"detail": "constraint violation"}
    if settings.exposes_errors:
        content["error"] = str(exc)
    return JSONResponse(status_code=400, content=content)


@app.exception_handler(RequestValidationError)
def _request_validation_error(_req: Request, exc: Exception):
    content = {"detail": "validation failed"}
    if settings.exposes_errors and hasattr(exc, "errors"):
        content["errors"] = exc.errors()
    return JSONResponse(status_code=422, content=content)


@app.exception_handler(Exception)
def _unhandled_exception(req: Request, exc: Exception):
    rid = _current_request_id(req)
    json_log(
        "error",
        "http.request.unhandled",
        request_id=rid,
        method=req.method,
        path=req.url.path,
        error=str(exc),
    )
    content = {"detail": "internal error", "request_id": rid}
    if settings.exposes_errors:
        content["error"] = str(exc)
    return JSONResponse(status_code=500, content=content)

# Correlation id + basic structured request logging.
@app.middleware("http")
async def _request_logging(request: Request, call_next):
    rid = (request.headers.get("X-Request-Id") or "").strip() or uuid.uuid4().hex
    request.state.request_id = rid
    started = time.time()
    path = request.url.path
    method = request.method
    client_ip = (request.client.host if request.client else None)

    try:
        response = await call_next(request)
    except Exception as exc:
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "error",
            "http.request.error",
            request_id=rid,
            method=method,
            path=path,
            client_ip=client_ip,
            duration_ms=dur_ms,
            error=str(exc),
        )
        raise

    response.headers["X-Request-Id"] = rid
    response.headers["X-Content-Type-Options"] = "nosniff"
    if not path.startswith("/health"):
        dur_ms = int((time.time() - started) * 1000)
        json_log(
            "info",
            "http.request",
            request_id=rid,
            method=method,
            path=path,
            status_code=response.status_code,
            client_ip=client_ip,
            duration_ms=dur_ms,
        )
    return response

app.add_middleware(
    CORSMiddleware,
    allow_origins=settings.cors_origins,
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)
# Each router resolves its TenantContext (session + tenant membership) per request.
app.include_router(sales_router)
app.include_router(refunds_router)
app.include_router(catalog_router)

@app.on_event("startup")
def _startup():
    open_pools()
    try:
        with get_admin_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        json_log("info", "startup.db_connected", env=settings.env, version=settings.api_version)
    except Exception as exc:
        json_log("warning", "startup.db_probe_failed", env=settings.env, error=str(exc))

@app.on_event("shutdown")
def _shutdown():
    close_pools()


def _db_health():
    try:
        with get_admin_conn() as conn:
            with conn.cursor() as cur:
                cur.execute("SELECT 1 AS ok")
                cur.fetchone()
        return True, None
    except Exception as exc:
        return False, str(exc)


@app.get("/health")
def health(req: Request):
    request_id = _current_request_id(req)
    ok, err = _db_health()
    if not ok:
        content = {
            "status": "degraded",
            "env": settings.env,
            "db": "down",
            "service": "amanatpos-backend",
            "version": settings.api_version,
            "started_at": STARTED_AT_UTC.isoformat(),
            "request_id": request_id,
        }
        if settings.exposes_errors:
            content["error"] = err
        return JSONResponse(status_code=503, content=content)
    return {
        "status": "ok",
        "env": settings.env,
        "db": "ok",
        "service": "amanatpos-backend",
        "version": settings.api_version,
        "started_at": STARTED_AT_UTC.isoformat(),
        "request_id": request_id,
    }


@app.get("/health/live")
def health_live(req: Request):
    return {
        "status": "ok",
        "env": settings.env,
        "service": "amanatpos-backend",
        "request_id": _current_request_id(req),
    }
