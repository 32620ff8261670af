# backend/securechat/api/routes/admin.py
from __future__ import annotations

from fastapi import APIRouter, Depends, Query, status

from securechat.api.deps import get_core, get_current_admin
from securechat.schemas.admin import SystemLogOut, UserOut
from securechat.services.container import ChatCore

router = APIRouter(prefix="/admin", tags=["admin"])


@router.get("/logs", response_model=list[SystemLogOut])
async def list_logs(
    limit: int = Query(default=100, ge=1, le=1000),
    core: ChatCore = Depends(get_core),
    _admin: str = Depends(get_current_admin),
):
    """Most recent audit records, newest first."""
    logs = await core.audit.recent(limit)
    return [SystemLogOut.model_validate(entry) for entry in logs]


@router.delete("/logs", status_code=status.HTTP_204_NO_CONTENT)
async def clear_logs(
    core: ChatCore = Depends(get_core),
    _admin: str = Depends(get_current_admin),
):
    # Raises UnsupportedOperation, rendered as 501 by the app handler
    await core.audit.clear()


@router.get("/users", response_model=list[UserOut])
async def list_users(
    core: ChatCore = Depends(get_core),
    _admin: str = Depends(get_current_admin),
):
    users = await core.identities.list_users()
    return [UserOut.from_user(u) for u in users]
