from fastapi import Header, HTTPException, Depends, Cookie
from .db import get_conn, set_tenant_context
from .repository import TenantContext
from .security import hash_session_token
from datetime import datetime, timezone
from typing import Optional
import uuid


SESSION_COOKIE_NAME = "amanatpos_session"


def _extract_session_token(authorization: Optional[str], cookie_token: Optional[str]) -> str:
    if authorization and authorization.lower().startswith("bearer "):
        return authorization.split(" ", 1)[1]
    if cookie_token:
        return cookie_token
    raise HTTPException(status_code=401, detail="missing token")


def get_session(
    authorization: Optional[str] = Header(None),
    cookie_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
):
    token = _extract_session_token(authorization, cookie_token)
    with get_conn() as conn:
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT s.id AS session_id, s.user_id, u.email, s.expires_at, s.is_active, s.active_tenant_id
                FROM auth_sessions s
                JOIN users u ON u.id = s.user_id
                WHERE s.token_hash = %s
                """,
                (hash_session_token(token),),
            )
            row = cur.fetchone()
            now = datetime.now(timezone.utc)
            if not row or not row["is_active"] or row["expires_at"] < now:
                raise HTTPException(status_code=401, detail="invalid token")
            return {
                "session_id": row["session_id"],
                "user_id": row["user_id"],
                "email": row["email"],
                "active_tenant_id": row["active_tenant_id"],
            }


def get_current_user(session=Depends(get_session)):
    return {"user_id": session["user_id"], "email": session["email"]}


def get_tenant_id(
    x_tenant_id: Optional[str] = Header(None, alias="X-Tenant-Id"),
    session=Depends(get_session),
) -> str:
    if x_tenant_id:
        try:
            return str(uuid.UUID(x_tenant_id))
        except ValueError:
            raise HTTPException(status_code=400, detail="invalid tenant id")
    if session.get("active_tenant_id"):
        return str(session["active_tenant_id"])
    raise HTTPException(status_code=400, detail="missing tenant id")


def require_tenant_access(tenant_id: str = Depends(get_tenant_id), user=Depends(get_current_user)):
    with get_conn() as conn:
        set_tenant_context(conn, tenant_id)
        with conn.cursor() as cur:
            cur.execute(
                """
                SELECT 1 FROM user_tenants
                WHERE user_id = %s AND tenant_id = %s
                """,
                (user["user_id"], tenant_id),
            )
            if not cur.fetchone():
                raise HTTPException(status_code=403, detail="no tenant access")
    return True


def get_tenant_context(
    tenant_id: str = Depends(get_tenant_id),
    user=Depends(get_current_user),
    _access=Depends(require_tenant_access),
) -> TenantContext:
    # The signed-in user is the cashier of record for anything this request writes.
    return TenantContext(tenant_id=tenant_id, cashier_id=str(user["user_id"]))
