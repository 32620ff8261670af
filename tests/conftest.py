# tests/conftest.py: Shared test fixtures
import uuid

import pytest
import pytest_asyncio

from securechat.core.config import Settings
from securechat.security.authenticator import Account, Authenticator
from securechat.services.assistant import GenerationClient
from securechat.services.container import ChatCore
from securechat.store.memory import MemoryStore

PASSWORD = "correct-horse-battery"
ADMIN_PASSWORD = "admin-pass-for-tests"


def make_settings(**overrides) -> Settings:
    values = dict(
        _env_file=None,
        MESSAGE_SECRET="test-message-secret",
        ADMIN_USERNAME="admin",
        ADMIN_PASSWORD=ADMIN_PASSWORD,
        JWT_SECRET="test-jwt-secret-key-for-unit-tests-only",
        GENERATION_API_KEY="",
    )
    values.update(overrides)
    return Settings(**values)


class FakeAssistant(GenerationClient):
    """Records prompts; replies with a fixed text or raises a fixed error."""

    def __init__(self, reply="Hello from the terminal.", error=None):
        self.reply = reply
        self.error = error
        self.calls = []

    async def generate(self, prompt, media=None):
        self.calls.append((prompt, media))
        if self.error is not None:
            raise self.error
        return self.reply


class PlainAuthenticator(Authenticator):
    """No password hashing, so tests with tight store timeouts stay fast."""

    async def create_account(self, identifier, password):
        return Account(uid=uuid.uuid4().hex, identifier=identifier, verifier=password)

    async def verify_credentials(self, identifier, password, verifier):
        return password == verifier


@pytest.fixture
def settings():
    return make_settings()


@pytest_asyncio.fixture
async def core(settings):
    core = await ChatCore.build(settings, store=MemoryStore()).open()
    yield core
    await core.close()


async def register(core, username, password=PASSWORD):
    return (await core.identities.register(username, password)).unwrap()


async def signed_in(core, username, password=PASSWORD):
    """A fresh session logged in as `username`."""
    session = core.session()
    result = await session.login(username, password)
    assert result.success, result.message
    return session
