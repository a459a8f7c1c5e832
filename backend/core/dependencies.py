"""
Dépendances FastAPI : utilisateur authentifié (en-tête Bearer ou `?token=`
pour EventSource), garde de rôle, services construits au démarrage.
"""
from typing import Optional
from fastapi import Depends, Query, Request
from fastapi.security import HTTPBearer, HTTPAuthorizationCredentials

from core.exceptions import credentials_exception, forbidden_exception
from core.security import read_access_token
from database import db
from models.common import UserRole
from services.user_service import PUBLIC_PROJECTION

bearer_scheme = HTTPBearer(auto_error=False)


async def _customer_for(token: Optional[str]) -> dict:
    claims = read_access_token(token) if token else None
    if claims is None:
        raise credentials_exception()

    # Le rôle fait foi en base, pas dans le jeton
    customer = await db.users.find_one({"user_id": claims.sub}, PUBLIC_PROJECTION)
    if customer is None:
        raise credentials_exception()
    if not customer.get("is_active", True):
        raise forbidden_exception("Account disabled")
    return customer


async def get_current_user(
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(bearer_scheme),
) -> dict:
    return await _customer_for(credentials.credentials if credentials else None)


async def get_stream_user(token: str = Query(...)) -> dict:
    return await _customer_for(token)


def require_role(*roles: UserRole):
    """Usage : Depends(require_role(UserRole.ADMIN))"""
    allowed = {r.value for r in roles}

    async def _check(current_user: dict = Depends(get_current_user)) -> dict:
        if current_user.get("role") not in allowed:
            raise forbidden_exception()
        return current_user
    return _check


require_admin = require_role(UserRole.ADMIN)


# ── Services (posés sur app.state par main.lifespan) ─────────────────────────
def _app_service(name: str):
    def _get(request: Request):
        return getattr(request.app.state, name)
    _get.__name__ = f"get_{name}"
    return _get


get_notification_service = _app_service("notification_service")
get_otp_service = _app_service("otp_service")
get_live_connections = _app_service("live_connections")
