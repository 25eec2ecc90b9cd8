"""Widget instances hosted by the HTTP app.

Each browser tab that embeds the widget gets its own
:class:`AutoResponseOrchestrator`, keyed by a random session id. The
conversation and message stores plus the push channel are shared, so a
message an agent posts to a conversation reaches every tab showing it.

A tab can vanish without deleting its session. Sessions nobody listens to
and nobody touched for ``session_idle_ttl`` seconds are closed by
:meth:`WidgetRegistry.evict_idle`.
"""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Mapping
from dataclasses import dataclass, field
from typing import Any
from uuid import uuid4

from .config import EngineSettings, WidgetConfig
from .conversations.session import CONVERSATION_ID_KEY
from .identity import VISITOR_ID_KEY
from .orchestrator import AutoResponseOrchestrator
from .stores import StoreBundle
from .stores.memory import InMemoryKeyValueStore
from .widget.render import WidgetView

logger = logging.getLogger(__name__)

LISTENER_QUEUE_SIZE = 100


@dataclass
class WidgetSession:
    id: str
    orchestrator: AutoResponseOrchestrator
    storage: InMemoryKeyValueStore
    listeners: list[asyncio.Queue[WidgetView]] = field(default_factory=list)
    last_seen: float = field(default_factory=time.monotonic)

    def touch(self) -> None:
        self.last_seen = time.monotonic()

    def is_idle(self, ttl: float, now: float) -> bool:
        return not self.listeners and now - self.last_seen > ttl

    def broadcast(self, view: WidgetView) -> None:
        for queue in self.listeners:
            if queue.full():
                queue.get_nowait()
            queue.put_nowait(view)

    def listen(self) -> asyncio.Queue[WidgetView]:
        queue: asyncio.Queue[WidgetView] = asyncio.Queue(maxsize=LISTENER_QUEUE_SIZE)
        queue.put_nowait(self.orchestrator.view())
        self.listeners.append(queue)
        return queue

    def unlisten(self, queue: asyncio.Queue[WidgetView]) -> None:
        if queue in self.listeners:
            self.listeners.remove(queue)
        self.touch()


class WidgetRegistry:
    def __init__(self, stores: StoreBundle, settings: EngineSettings) -> None:
        self.stores = stores
        self.settings = settings
        self._sessions: dict[str, WidgetSession] = {}

    def __len__(self) -> int:
        return len(self._sessions)

    async def create(
        self,
        options: Mapping[str, Any],
        *,
        visitor_id: str | None = None,
        conversation_id: str | None = None,
    ) -> WidgetSession:
        """Validate ``options`` and start a new widget instance.

        ``visitor_id`` and ``conversation_id`` are the values the embedding
        page kept in its own storage from a previous visit.
        """

        await self.evict_idle()
        config = WidgetConfig.from_options(options, WidgetConfig.env_defaults())
        initial: dict[str, str] = {}
        if visitor_id:
            initial[VISITOR_ID_KEY] = visitor_id
        if conversation_id:
            initial[CONVERSATION_ID_KEY] = conversation_id
        storage = InMemoryKeyValueStore(initial)

        session_id = uuid4().hex
        orchestrator = AutoResponseOrchestrator(
            config,
            storage=storage,
            conversations=self.stores.conversations,
            messages=self.stores.messages,
            channel=self.stores.channel,
            reply_delay=self.settings.reply_delay,
            resubscribe_delay=self.settings.resubscribe_delay,
            resubscribe_max_delay=self.settings.resubscribe_max_delay,
            resubscribe_warn_threshold=self.settings.resubscribe_warn_threshold,
        )
        session = WidgetSession(session_id, orchestrator, storage)
        orchestrator.on_render = session.broadcast
        await orchestrator.start()
        self._sessions[session_id] = session
        logger.info(
            "Started widget session %s for visitor %s",
            session_id,
            orchestrator.visitor.id,
            extra={
                "session_id": session_id,
                "visitor_id": orchestrator.visitor.id,
                "conversation_id": orchestrator.conversation_id,
            },
        )
        return session

    def get(self, session_id: str) -> WidgetSession:
        try:
            session = self._sessions[session_id]
        except KeyError:
            raise KeyError(f"Widget session '{session_id}' not found") from None
        session.touch()
        return session

    async def close(self, session_id: str) -> None:
        session = self._sessions.pop(session_id, None)
        if session is None:
            raise KeyError(f"Widget session '{session_id}' not found")
        await session.orchestrator.aclose()
        logger.info("Closed widget session %s", session_id, extra={"session_id": session_id})

    async def close_all(self) -> None:
        for session_id in list(self._sessions):
            await self.close(session_id)

    async def evict_idle(self, now: float | None = None) -> int:
        """Close idle sessions without listeners; return how many were closed."""

        now = time.monotonic() if now is None else now
        idle = [
            session_id
            for session_id, session in self._sessions.items()
            if session.is_idle(self.settings.session_idle_ttl, now)
        ]
        for session_id in idle:
            session = self._sessions.pop(session_id)
            await session.orchestrator.aclose()
            logger.info(
                "Evicted idle widget session %s", session_id, extra={"session_id": session_id}
            )
        return len(idle)
