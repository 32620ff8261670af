# securechat/models/room.py
from __future__ import annotations

from enum import Enum

from pydantic import Field

from securechat.models.common import Document, now_ms


class RoomType(str, Enum):
    GROUP = "group"
    PRIVATE = "private"


def private_room_id(user_a: str, user_b: str) -> str:
    """At most one private room per pair: the id is a function of the pair."""
    return "private-" + "-".join(sorted([user_a, user_b]))


class Room(Document):
    id: str
    name: str
    type: RoomType = RoomType.GROUP
    creator_id: str
    created_at: int = Field(default_factory=now_ms)

    participants: list[str] = Field(default_factory=list)
    # Room-scoped; disjoint from participants
    banned_users: list[str] = Field(default_factory=list)
    # Room-scoped; suppresses sending only
    muted_users: list[str] = Field(default_factory=list)

    @property
    def is_private(self) -> bool:
        return self.type == RoomType.PRIVATE

    def has_participant(self, user_id: str) -> bool:
        return user_id in self.participants

    def is_banned(self, user_id: str) -> bool:
        return user_id in self.banned_users

    def is_muted(self, user_id: str) -> bool:
        return user_id in self.muted_users
