import pathlib
import sys
from dataclasses import dataclass

import pytest
from fastapi import FastAPI, Request

sys.path.append(str(pathlib.Path(__file__).resolve().parents[1]))
from support_widget.app_logging import init_logging
from support_widget.config import WidgetConfig
from support_widget.errors import TransientNetworkError
from support_widget.orchestrator import AutoResponseOrchestrator
from support_widget.stores.memory import (
    InMemoryConversationStore,
    InMemoryKeyValueStore,
    InMemoryMessageStore,
    InMemoryPushChannel,
)


@pytest.fixture
def app_factory(monkeypatch):
    def _create_app(log_dir: str, log_request_bodies: bool = False):
        """Create a FastAPI app with logging initialised."""
        monkeypatch.setenv("LOG_DIR", str(log_dir))
        if log_request_bodies:
            monkeypatch.setenv("LOG_REQUEST_BODIES", "true")
        app = FastAPI()

        @app.post("/echo")
        async def echo(request: Request):
            return await request.json()

        init_logging(app)
        return app

    return _create_app


class FlakyConversationStore(InMemoryConversationStore):
    """Conversation store whose calls fail while ``failing`` is set."""

    def __init__(self) -> None:
        super().__init__()
        self.failing = False
        self.create_calls = 0

    async def create_conversation(self, visitor_id, **kwargs):
        self.create_calls += 1
        if self.failing:
            raise TransientNetworkError("conversation service unreachable")
        return await super().create_conversation(visitor_id, **kwargs)


class FlakyMessageStore(InMemoryMessageStore):
    """Message store whose calls fail while ``failing`` is set.

    When ``gate`` holds an event, appends wait for it before storing.
    """

    def __init__(self, channel=None) -> None:
        super().__init__(channel)
        self.failing = False
        self.history_failing = False
        self.append_calls = 0
        self.gate = None

    async def append(self, conversation_id, sender_id, body, **kwargs):
        self.append_calls += 1
        if self.failing:
            raise TransientNetworkError("message service unreachable")
        if self.gate is not None:
            await self.gate.wait()
        return await super().append(conversation_id, sender_id, body, **kwargs)

    async def list_by_conversation(self, conversation_id):
        if self.history_failing:
            raise TransientNetworkError("history unavailable")
        return await super().list_by_conversation(conversation_id)


@dataclass
class Backend:
    channel: InMemoryPushChannel
    conversations: FlakyConversationStore
    messages: FlakyMessageStore
    storage: InMemoryKeyValueStore


@pytest.fixture
def backend() -> Backend:
    channel = InMemoryPushChannel()
    return Backend(
        channel=channel,
        conversations=FlakyConversationStore(),
        messages=FlakyMessageStore(channel),
        storage=InMemoryKeyValueStore(),
    )


@pytest.fixture
def make_orchestrator(backend):
    """Build orchestrators wired to the shared in-memory ``backend``.

    Must be called from inside a running event loop.
    """

    def _make(storage=None, reply_delay: float = 0.0, **options) -> AutoResponseOrchestrator:
        config = WidgetConfig.from_options({"title": "Suporte", **options})
        return AutoResponseOrchestrator(
            config,
            storage=backend.storage if storage is None else storage,
            conversations=backend.conversations,
            messages=backend.messages,
            channel=backend.channel,
            reply_delay=reply_delay,
            resubscribe_delay=0.01,
            resubscribe_max_delay=0.05,
        )

    return _make
