# securechat/models/user.py
from __future__ import annotations

from dataclasses import dataclass
from enum import Enum
from typing import Union

from pydantic import Field

from securechat.models.common import Document, now_ms


class UserRole(str, Enum):
    ADMIN = "ADMIN"
    USER = "USER"


class User(Document):
    id: str
    username: str
    # Opaque verifier from the authenticator, never the raw secret
    password_hash: str
    role: UserRole = UserRole.USER
    created_at: int = Field(default_factory=now_ms)

    friends: list[str] = Field(default_factory=list)
    friend_requests: list[str] = Field(default_factory=list)

    last_login: int | None = None
    login_history: list[int] = Field(default_factory=list)

    @property
    def is_admin(self) -> bool:
        return self.role == UserRole.ADMIN


@dataclass(frozen=True)
class AdminIdentity:
    """
    The configured administrative identity.

    Exists only in memory: there is no store record behind it, so nothing
    may subscribe to it or write login history for it.
    """
    username: str
    id: str = "admin-root"
    role: UserRole = UserRole.ADMIN

    @property
    def is_admin(self) -> bool:
        return True


Identity = Union[User, AdminIdentity]
