# backend/securechat/api/deps.py
from __future__ import annotations

from fastapi import Depends, HTTPException, Request, status
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer

from securechat.core.security import decode_access_token
from securechat.models.user import UserRole
from securechat.services.container import ChatCore

_security = HTTPBearer()


def get_core(request: Request) -> ChatCore:
    core = request.app.state.core
    if core is None:
        raise HTTPException(status_code=status.HTTP_503_SERVICE_UNAVAILABLE, detail="Chat core not started")
    return core


def get_current_admin(
    credentials: HTTPAuthorizationCredentials = Depends(_security),
    core: ChatCore = Depends(get_core),
) -> str:
    """
    Dependency: Authorization: Bearer <token> issued by /auth/login.
    Returns the admin username; 401 for a bad token, 403 for a non-admin one.
    """
    payload = decode_access_token(core.settings, credentials.credentials)
    if not payload or not payload.get("sub"):
        raise HTTPException(
            status_code=status.HTTP_401_UNAUTHORIZED,
            detail="Invalid authentication credentials",
            headers={"WWW-Authenticate": "Bearer"},
        )
    if payload.get("role") != UserRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")
    return payload["sub"]
