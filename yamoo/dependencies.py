from fastapi import Cookie, HTTPException, Request
from sqlalchemy.orm import Session

from yamoo.config import CRON_SECRET
from yamoo.models.subscription import Subscription
from yamoo.models.tenant import Tenant
from yamoo.services.jwt_service import decode_token

ADMIN_ROLES = ("admin", "super_admin")


def _extract_token(request: Request, session_token: str | None = Cookie(None)) -> str | None:
    """Extract JWT from Authorization header or fallback to cookie."""
    auth_header = request.headers.get("authorization", "")
    if auth_header.startswith("Bearer "):
        return auth_header[7:]
    return session_token


def require_auth(request: Request, session_token: str | None = Cookie(None)) -> dict:
    """Require any authenticated user via JWT."""
    token = _extract_token(request, session_token)
    if not token:
        raise HTTPException(status_code=401, detail="로그인이 필요합니다.")
    payload = decode_token(token)
    if not payload or not payload.get("email"):
        raise HTTPException(status_code=401, detail="인증이 만료되었습니다. 다시 로그인해 주세요.")
    return payload


def require_admin(request: Request, session_token: str | None = Cookie(None)) -> dict:
    """Require admin or super_admin role."""
    user = require_auth(request, session_token)
    if user.get("role", "user") not in ADMIN_ROLES:
        raise HTTPException(status_code=403, detail="관리자 권한이 필요합니다.")
    return user


def require_cron_secret(request: Request) -> None:
    """Scheduled jobs authenticate with `Authorization: Bearer <CRON_SECRET>`."""
    auth_header = request.headers.get("authorization", "")
    if not CRON_SECRET or auth_header != f"Bearer {CRON_SECRET}":
        raise HTTPException(status_code=401, detail="Unauthorized")


def is_admin(user: dict) -> bool:
    return user.get("role", "user") in ADMIN_ROLES


def get_owned_tenant(db: Session, tenant_id: str, user: dict) -> Tenant:
    """Tenant owned by the current user (admins may access any tenant)."""
    tenant = (
        db.query(Tenant)
        .filter(Tenant.tenant_id == tenant_id, Tenant.deleted_at == None)
        .first()
    )
    if not tenant:
        raise HTTPException(status_code=404, detail="매장을 찾을 수 없습니다.")
    if tenant.email != user["email"] and not is_admin(user):
        raise HTTPException(status_code=403, detail="권한이 없습니다.")
    return tenant


def get_owned_subscription(db: Session, tenant_id: str, user: dict) -> Subscription:
    get_owned_tenant(db, tenant_id, user)
    subscription = db.query(Subscription).filter(Subscription.tenant_id == tenant_id).first()
    if not subscription:
        raise HTTPException(status_code=404, detail="구독 정보가 없습니다.")
    return subscription
