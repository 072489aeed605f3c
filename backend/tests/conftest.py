"""
Pytest configuration for backend tests.

Adds the backend directory to Python path so imports like
'from src.xxx import ...' work correctly, and provides shared fakes
for sinks and completion providers.
"""
import asyncio
import sys
from pathlib import Path

import pytest

# Add backend directory to path
backend_dir = Path(__file__).parent.parent
if str(backend_dir) not in sys.path:
    sys.path.insert(0, str(backend_dir))

from src.services.streaming import SinkClosedError  # noqa: E402


class RecordingSink:
    """Sink that records every event; can be told to reject writes."""

    def __init__(self, fail: bool = False):
        self.events = []
        self.close_count = 0
        self.fail = fail

    def send(self, event):
        if self.fail:
            raise SinkClosedError("client went away")
        self.events.append(event)

    def close(self):
        self.close_count += 1

    @property
    def types(self) -> list[str]:
        return [e.type.value for e in self.events]


class FakeProvider:
    """
    Completion provider yielding canned fragments.

    ``pause_after`` blocks the stream before fragment N until
    ``resume`` is set; ``paused`` is set when that point is reached.
    """

    def __init__(self, fragments, error=None, pause_after=None):
        self.fragments = list(fragments)
        self.error = error
        self.pause_after = pause_after
        self.paused = asyncio.Event()
        self.resume = asyncio.Event()
        self.calls = []

    async def stream_completion(self, history, model_id, system_prompt=None):
        self.calls.append(
            {
                "history": [(t.role, t.content) for t in history],
                "model_id": model_id,
                "system_prompt": system_prompt,
            }
        )
        for i, fragment in enumerate(self.fragments):
            if i == self.pause_after:
                self.paused.set()
                await self.resume.wait()
            yield fragment
        if self.error is not None:
            raise self.error


class FakeResolver:
    """ProviderResolver that serves one provider for every model."""

    def __init__(self, provider):
        self.provider = provider
        self.model_ids = []

    def for_model(self, model_id):
        self.model_ids.append(model_id)
        return self.provider


@pytest.fixture
def recording_sink():
    """Factory for RecordingSink instances."""
    return RecordingSink


@pytest.fixture
def fake_provider():
    """Factory for FakeProvider instances."""
    return FakeProvider


@pytest.fixture
def fake_resolver():
    """Factory for FakeResolver instances."""
    return FakeResolver


@pytest.fixture
def make_settings(tmp_path):
    """Factory for Settings isolated from the environment and .env files."""
    from src.config import Settings

    def factory(**overrides):
        values = {
            "data_dir": str(tmp_path / "data"),
            "anthropic_api_key": None,
            "openai_api_key": None,
            "google_api_key": None,
            "custom_base_url": None,
            "custom_api_key": None,
            "custom_model_id": None,
            "custom_model_name": None,
            "custom_headers": None,
            "allowed_users": "",
            "system_prompt": None,
        }
        values.update(overrides)
        return Settings(_env_file=None, **values)

    return factory


@pytest.fixture
def chat_store(tmp_path):
    from src.services.chat_store import ChatStore

    return ChatStore(tmp_path / "chats", "test-model")
