"""
Room lifecycle, membership and moderation lists.

Every membership change is a field-level set-union/set-remove against the
store, so concurrent kicks, bans and mutes from different admins compose
without lost updates. A ban removes from participants and adds to
banned_users in one update, keeping the two sets disjoint.

RoomRegistry performs no role checks; callers authorise first.
"""
from __future__ import annotations

import logging
import secrets
from typing import TYPE_CHECKING, Callable

from securechat.core.exceptions import Banned, PrivateRoom, RoomNotFound, UnknownCommand, UserNotFound
from securechat.core.results import Result
from securechat.models.room import Room, RoomType, private_room_id
from securechat.services.audit import AuditEvent, AuditLog
from securechat.store.base import ArrayContains, ArrayRemove, ArrayUnion, DocumentExists, Eq, Query, Store, Subscription

if TYPE_CHECKING:
    from securechat.services.identity import IdentityStore

logger = logging.getLogger(__name__)

ROOMS = "rooms"
SYSTEM_CREATOR = "system"

KICK = "kick"
BAN = "ban"
MUTE = "mute"
ACTIONS = (KICK, BAN, MUTE)

_PAST_TENSE = {KICK: "kicked", BAN: "banned", MUTE: "muted"}


def new_room_code() -> str:
    """7-digit shareable code."""
    return str(1000000 + secrets.randbelow(9000000))


class RoomRegistry:
    def __init__(self, store: Store, audit: AuditLog, identities: IdentityStore, code_attempts: int = 5):
        self.store = store
        self.audit = audit
        self.identities = identities
        self.code_attempts = code_attempts

    async def get(self, room_id: str) -> Room | None:
        doc = await self.store.get(ROOMS, room_id)
        return Room.from_document(doc) if doc else None

    async def create(self, room: Room) -> Room:
        """Persist a new room; its creator is the sole initial participant."""
        room = room.model_copy(update={
            "participants": [room.creator_id] if room.creator_id != SYSTEM_CREATOR else list(room.participants),
            "banned_users": [],
            "muted_users": [],
        })
        await self.store.create(ROOMS, room.id, room.to_document())
        await self.audit.record(AuditEvent.ROOM_CREATE, f"{room.type.value} room {room.id} created by {room.creator_id}")
        return room

    async def create_group(self, name: str, creator_id: str) -> Room:
        for _ in range(self.code_attempts):
            try:
                return await self.create(Room(id=new_room_code(), name=name, type=RoomType.GROUP, creator_id=creator_id))
            except DocumentExists:
                logger.debug("Room code collision, retrying")
        raise RuntimeError("Could not allocate a free room code")

    async def ensure_private(self, user_a: str, user_b: str, name: str) -> Room:
        """Create-if-absent on the pair's deterministic id. Safe to race."""
        room_id = private_room_id(user_a, user_b)
        existing = await self.get(room_id)
        if existing is not None:
            return existing
        room = Room(
            id=room_id,
            name=name,
            type=RoomType.PRIVATE,
            creator_id=SYSTEM_CREATOR,
            participants=sorted([user_a, user_b]),
        )
        try:
            return await self.create(room)
        except DocumentExists:
            # A concurrent accept created it first
            return await self.get(room_id)

    async def join(self, room_id: str, user_id: str, as_admin: bool = False) -> Result[Room]:
        room = await self.get(room_id)
        if room is None:
            return Result.fail(RoomNotFound())

        if not as_admin:
            if room.is_banned(user_id):
                return Result.fail(Banned())
            # Closed membership: only the friend-accept flow places people here
            if room.is_private and not room.has_participant(user_id):
                return Result.fail(PrivateRoom())

        if not room.has_participant(user_id):
            await self.store.update(ROOMS, room_id, {"participants": ArrayUnion(user_id)})
            room = room.model_copy(update={"participants": [*room.participants, user_id]})
        return Result.ok(room)

    async def moderate(self, room_id: str, acting_admin_id: str, action: str, target_username: str) -> Result[str]:
        """
        Apply kick / ban / mute to the user named `target_username`.

        Idempotent: acting on a user already in the target state changes nothing.
        """
        if action not in ACTIONS:
            return Result.fail(UnknownCommand())

        target = await self.identities.find_by_username(target_username)
        if target is None:
            return Result.fail(UserNotFound(f"User {target_username} not found"))

        if await self.get(room_id) is None:
            return Result.fail(RoomNotFound())

        if action == KICK:
            patches = {"participants": ArrayRemove(target.id)}
        elif action == BAN:
            patches = {
                "participants": ArrayRemove(target.id),
                "banned_users": ArrayUnion(target.id),
            }
        else:
            patches = {"muted_users": ArrayUnion(target.id)}
        await self.store.update(ROOMS, room_id, patches)

        message = f"User {target_username} {_PAST_TENSE[action]}."
        await self.audit.record(AuditEvent.ADMIN_COMMAND, f"{acting_admin_id} in {room_id}: {message}")
        logger.info("Moderation in %s by %s: %s", room_id, acting_admin_id, message)
        return Result.ok(message)

    # --- live views ---

    async def watch(self, room_id: str, callback: Callable[[Room | None], None]) -> Subscription:
        return await self.store.subscribe(
            ROOMS,
            room_id,
            lambda doc: callback(Room.from_document(doc) if doc else None),
        )

    async def watch_membership(self, user_id: str, callback: Callable[[list[Room]], None]) -> Subscription:
        """Rooms the user participates in."""
        query = Query(filters=(ArrayContains("participants", user_id),), order_by="created_at")
        return await self.store.subscribe(ROOMS, query, lambda docs: callback([Room.from_document(d) for d in docs]))

    async def watch_public(self, callback: Callable[[list[Room]], None]) -> Subscription:
        """Lobby: every group room."""
        query = Query(filters=(Eq("type", RoomType.GROUP.value),), order_by="created_at")
        return await self.store.subscribe(ROOMS, query, lambda docs: callback([Room.from_document(d) for d in docs]))
