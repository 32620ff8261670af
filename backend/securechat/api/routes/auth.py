# backend/securechat/api/routes/auth.py
from __future__ import annotations

from fastapi import APIRouter, Depends, HTTPException, status

from securechat.api.deps import get_core
from securechat.core.security import create_access_token
from securechat.models.user import AdminIdentity
from securechat.schemas.auth import LoginIn, TokenOut
from securechat.services.container import ChatCore

router = APIRouter(prefix="/auth", tags=["auth"])


@router.post("/login", response_model=TokenOut)
async def login(payload: LoginIn, core: ChatCore = Depends(get_core)):
    result = await core.identities.authenticate(payload.username, payload.password)
    if result.error_code == "TOO_MANY_ATTEMPTS":
        raise HTTPException(status_code=status.HTTP_429_TOO_MANY_REQUESTS, detail=result.message)
    # The console is admin-only; ordinary users get the same answer as a bad password
    if not result.success or not isinstance(result.data, AdminIdentity):
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Invalid credentials")

    admin = result.data
    access_token = create_access_token(core.settings, subject=admin.username, extra={"role": admin.role.value})
    return TokenOut(access_token=access_token)
