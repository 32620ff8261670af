# tests/test_identity.py: Registration, login and the friend graph
import asyncio

import pytest

from securechat.core.exceptions import ConnectivityError
from securechat.models.room import private_room_id
from securechat.models.user import AdminIdentity
from securechat.services.audit import AuditEvent
from securechat.services.container import ChatCore
from securechat.services.identity import USERNAMES
from securechat.store.memory import MemoryStore
from tests.conftest import ADMIN_PASSWORD, PASSWORD, make_settings, register


class FailingUserWrites(MemoryStore):
    def __init__(self, failures):
        super().__init__()
        self.failures = failures

    async def put(self, collection, doc_id, document):
        if collection == "users" and self.failures:
            self.failures -= 1
            raise ConnectivityError("Store unreachable")
        await super().put(collection, doc_id, document)


@pytest.mark.asyncio
class TestRegistration:
    async def test_register_creates_record(self, core):
        events = []
        core.authenticator.on_auth_state_change(lambda uid, signed_in: events.append((uid, signed_in)))
        result = await core.identities.register("alice", PASSWORD)
        assert result.success
        user = result.data
        stored = await core.identities.get(user.id)
        assert stored.username == "alice"
        assert stored.password_hash != PASSWORD
        assert stored.friends == [] and stored.friend_requests == []
        assert events == [(user.id, True)]
        assert (await core.store.get(USERNAMES, "alice"))["uid"] == user.id

    async def test_duplicate_username_rejected(self, core):
        await register(core, "alice")
        result = await core.identities.register("alice", "another-password")
        assert result.error_code == "USERNAME_TAKEN"

    async def test_concurrent_registration_single_winner(self, core):
        results = await asyncio.gather(
            core.identities.register("alice", PASSWORD),
            core.identities.register("alice", PASSWORD),
        )
        assert sorted(r.success for r in results) == [False, True]
        assert len([u for u in await core.identities.list_users() if u.username == "alice"]) == 1
        assert await core.store.get(USERNAMES, "alice") is not None

    async def test_failed_record_write_releases_username(self):
        store = FailingUserWrites(failures=1)
        core = await ChatCore.build(make_settings(), store=store).open()
        try:
            with pytest.raises(ConnectivityError):
                await core.identities.register("alice", PASSWORD)
            assert await store.get(USERNAMES, "alice") is None
            assert await core.identities.find_by_username("alice") is None

            user = await register(core, "alice")
            result = await core.identities.authenticate("alice", PASSWORD)
            assert result.data.id == user.id
        finally:
            await core.close()

    async def test_admin_name_is_reserved(self, core):
        result = await core.identities.register("admin", PASSWORD)
        assert result.error_code == "USERNAME_TAKEN"

    @pytest.mark.parametrize("username", ["ab", "has space", "<script>", ""])
    async def test_bad_usernames(self, core, username):
        result = await core.identities.register(username, PASSWORD)
        assert result.error_code == "INVALID_INPUT"

    async def test_register_is_audited(self, core):
        await register(core, "alice")
        events = [entry.event for entry in await core.audit.recent()]
        assert AuditEvent.REGISTER in events


@pytest.mark.asyncio
class TestAuthenticate:
    async def test_valid_credentials(self, core):
        user = await register(core, "alice")
        result = await core.identities.authenticate("alice", PASSWORD)
        assert result.success
        assert result.data.id == user.id

    async def test_wrong_password(self, core):
        await register(core, "alice")
        result = await core.identities.authenticate("alice", "wrong-password")
        assert result.error_code == "INVALID_CREDENTIALS"
        logs = await core.audit.recent()
        assert logs[0].event == AuditEvent.LOGIN_FAIL

    async def test_unknown_user(self, core):
        result = await core.identities.authenticate("ghost", PASSWORD)
        assert result.error_code == "USER_NOT_FOUND"

    async def test_empty_input(self, core):
        result = await core.identities.authenticate("", "")
        assert result.error_code == "INVALID_INPUT"

    async def test_admin_identity_is_never_persisted(self, core):
        result = await core.identities.authenticate("admin", ADMIN_PASSWORD)
        assert isinstance(result.data, AdminIdentity)
        assert result.data.is_admin
        assert await core.identities.list_users() == []

    async def test_admin_wrong_password(self, core):
        result = await core.identities.authenticate("admin", "nope")
        assert result.error_code == "INVALID_CREDENTIALS"
        assert result.message == "Admin password is incorrect."

    async def test_repeated_failures_are_throttled(self, core):
        await register(core, "alice")
        for _ in range(core.identities.limiter.max_attempts):
            await core.identities.authenticate("alice", "wrong")
        result = await core.identities.authenticate("alice", PASSWORD)
        assert result.error_code == "TOO_MANY_ATTEMPTS"
        assert result.error.retry_after > 0

    async def test_admin_failures_are_throttled(self, core):
        for _ in range(core.identities.limiter.max_attempts):
            result = await core.identities.authenticate("admin", "wrong")
            assert result.error_code == "INVALID_CREDENTIALS"
        result = await core.identities.authenticate("admin", ADMIN_PASSWORD)
        assert result.error_code == "TOO_MANY_ATTEMPTS"

    async def test_successful_login_clears_failures(self, core):
        await register(core, "alice")
        await core.identities.authenticate("alice", "wrong")
        assert len(core.identities.limiter) == 1
        await core.identities.authenticate("alice", PASSWORD)
        assert len(core.identities.limiter) == 0


@pytest.mark.asyncio
class TestLoginHistory:
    async def test_record_login_appends(self, core):
        user = await register(core, "alice")
        await core.identities.record_login(user)
        stored = await core.identities.get(user.id)
        assert stored.last_login is not None
        assert stored.login_history == [stored.last_login]

    async def test_record_login_skips_admin(self, core):
        await core.identities.record_login(AdminIdentity(username="admin"))
        await core.identities.record_login("admin-root")
        assert await core.identities.list_users() == []


@pytest.mark.asyncio
class TestFriends:
    async def test_request_then_accept(self, core):
        bob = await register(core, "bob")
        alice = await register(core, "alice")

        sent = await core.identities.send_friend_request(alice.id, "bob")
        assert sent.data == "Request sent"
        assert (await core.identities.get(bob.id)).friend_requests == [alice.id]

        result = await core.identities.resolve_friend_request(bob.id, alice.id, accept=True)
        assert result.success
        bob_now = await core.identities.get(bob.id)
        alice_now = await core.identities.get(alice.id)
        assert bob_now.friends == [alice.id] and alice_now.friends == [bob.id]
        assert bob_now.friend_requests == []

        room = await core.rooms.get(private_room_id(alice.id, bob.id))
        assert room.id == "private-" + "-".join(sorted([alice.id, bob.id]))
        assert sorted(room.participants) == sorted([alice.id, bob.id])
        assert room.creator_id == "system"
        assert room.name == "alice & bob"

    async def test_concurrent_accept_creates_one_room(self, core):
        bob = await register(core, "bob")
        alice = await register(core, "alice")
        await core.identities.send_friend_request(alice.id, "bob")

        results = await asyncio.gather(
            core.identities.resolve_friend_request(bob.id, alice.id, accept=True),
            core.identities.resolve_friend_request(bob.id, alice.id, accept=True),
        )
        assert all(r.success for r in results)
        assert results[0].data.id == results[1].data.id
        rooms = await core.store.query("rooms")
        assert len(rooms) == 1
        assert sorted(rooms[0]["participants"]) == sorted([alice.id, bob.id])

    async def test_reject_only_clears_request(self, core):
        bob = await register(core, "bob")
        alice = await register(core, "alice")
        await core.identities.send_friend_request(alice.id, "bob")
        result = await core.identities.resolve_friend_request(bob.id, alice.id, accept=False)
        assert result.success and result.data is None
        bob_now = await core.identities.get(bob.id)
        assert bob_now.friend_requests == [] and bob_now.friends == []
        assert await core.store.query("rooms") == []

    async def test_request_errors(self, core):
        bob = await register(core, "bob")
        alice = await register(core, "alice")
        assert (await core.identities.send_friend_request(alice.id, "ghost")).error_code == "USER_NOT_FOUND"
        assert (await core.identities.send_friend_request(alice.id, "alice")).error_code == "SELF_REQUEST"
        await core.identities.send_friend_request(alice.id, "bob")
        assert (await core.identities.send_friend_request(alice.id, "bob")).error_code == "REQUEST_DUPLICATE"
        await core.identities.resolve_friend_request(bob.id, alice.id, accept=True)
        assert (await core.identities.send_friend_request(alice.id, "bob")).error_code == "ALREADY_FRIENDS"

    async def test_friends_of(self, core):
        bob = await register(core, "bob")
        alice = await register(core, "alice")
        await core.identities.send_friend_request(alice.id, "bob")
        await core.identities.resolve_friend_request(bob.id, alice.id, accept=True)
        friends = await core.identities.friends_of(await core.identities.get(bob.id))
        assert [f.username for f in friends] == ["alice"]
