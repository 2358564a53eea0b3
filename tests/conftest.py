import asyncio
import json
from types import SimpleNamespace

import pytest
from fastapi.testclient import TestClient

from app.config import Settings
from app.main import create_app
from app.services.container import build_container
from app.services.verification_service import VerificationService

FRAME = "data:image/jpeg;base64,/9j/4AAQSkZJRgABAQAAAQABAAD"

PASSING_VERDICT = {
    "bin_visible": True,
    "bottle_visible": True,
    "disposal_action": True,
    "item_enters_bin": True,
    "confidence": 0.8,
    "notes": "bottle dropped into blue bin",
    "pass": True,
}


class FakeClock:
    """Manually advanced clock returning epoch seconds."""

    def __init__(self, start: float = 1_700_000_000.0):
        self.now = start

    def __call__(self) -> float:
        return self.now

    def advance_ms(self, ms: int) -> None:
        self.now += ms / 1000


class FakeCompletions:
    def __init__(self):
        self.reply: str | None = json.dumps(PASSING_VERDICT)
        self.error: Exception | None = None
        self.delay: float = 0.0
        self.calls: list[dict] = []

    async def create(self, **kwargs):
        self.calls.append(kwargs)
        if self.delay:
            await asyncio.sleep(self.delay)
        if self.error is not None:
            raise self.error
        return SimpleNamespace(choices=[SimpleNamespace(message=SimpleNamespace(content=self.reply))])


class FakeModelClient:
    """Stands in for AsyncOpenAI: only chat.completions.create is used."""

    def __init__(self):
        self.completions = FakeCompletions()
        self.chat = SimpleNamespace(completions=self.completions)

    def reply_with(self, payload: dict | str) -> None:
        self.completions.reply = payload if isinstance(payload, str) else json.dumps(payload)


class FakeMediaStorage:
    def __init__(self):
        self.saved: dict[str, bytes] = {}

    async def save(self, content: bytes, filename: str | None, content_type: str | None) -> str:
        url = f"/uploads/test-{len(self.saved) + 1}"
        self.saved[url] = content
        return url


def make_settings(**overrides) -> Settings:
    values = {
        "RATE_LIMIT_BACKEND": "memory",
        "EVENT_STORE_BACKEND": "memory",
        "OPENROUTER_API_KEY": "test-key",
    }
    values.update(overrides)
    return Settings(_env_file=None, **values)


@pytest.fixture
def clock():
    return FakeClock()


@pytest.fixture
def model_client():
    return FakeModelClient()


@pytest.fixture
def verifier(model_client):
    return VerificationService(
        api_key="test-key",
        model="test/model",
        timeout_seconds=1.0,
        confidence_threshold=0.65,
        client=model_client,
    )


@pytest.fixture
def media():
    return FakeMediaStorage()


@pytest.fixture
def build(clock, verifier, media):
    """Build a container with fake collaborators and optional setting overrides."""

    def _build(event_store=None, **overrides):
        return build_container(
            make_settings(**overrides),
            clock=clock,
            event_store=event_store,
            verifier=verifier,
            media=media,
        )

    return _build


@pytest.fixture
def container(build):
    return build()


@pytest.fixture
def client(container):
    with TestClient(create_app(container)) as test_client:
        yield test_client
