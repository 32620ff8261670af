from __future__ import annotations

from pydantic import BaseModel, ConfigDict

from securechat.models.system_log import LogLevel
from securechat.models.user import User, UserRole


class SystemLogOut(BaseModel):
    model_config = ConfigDict(from_attributes=True)

    id: str
    timestamp: int
    event: str
    details: str
    level: LogLevel


class UserOut(BaseModel):
    """User record as shown in the admin panel. Never carries the verifier."""
    model_config = ConfigDict(from_attributes=True)

    id: str
    username: str
    role: UserRole
    created_at: int
    last_login: int | None = None
    login_history: list[int] = []
    friends: list[str] = []

    @classmethod
    def from_user(cls, user: User) -> UserOut:
        return cls.model_validate(user)
