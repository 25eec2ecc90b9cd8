"""In-memory collaborator implementations.

Used by the development server and by the test-suite. The message store
publishes every appended message to an :class:`InMemoryPushChannel`, the same
way database inserts fan out to realtime subscribers in production.
"""

from __future__ import annotations

import asyncio
import logging
from collections import defaultdict
from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any
from uuid import uuid4

from ..conversations.models import Conversation, Message, utcnow
from .base import ChannelDisconnected

logger = logging.getLogger(__name__)

_DISCONNECT = object()


class InMemoryKeyValueStore:
    def __init__(self, initial: dict[str, str] | None = None) -> None:
        self._data: dict[str, str] = dict(initial or {})

    def get(self, key: str) -> str | None:
        return self._data.get(key)

    def set(self, key: str, value: str) -> None:
        self._data[key] = value

    def delete(self, key: str) -> None:
        self._data.pop(key, None)

    def snapshot(self) -> dict[str, str]:
        return dict(self._data)


class _QueueSubscription:
    def __init__(self, channel: "InMemoryPushChannel", conversation_id: str) -> None:
        self._channel = channel
        self.conversation_id = conversation_id
        self.queue: asyncio.Queue[object] = asyncio.Queue()
        self.closed = False

    def __aiter__(self) -> AsyncIterator[Message]:
        return self._iterate()

    async def _iterate(self) -> AsyncIterator[Message]:
        while not self.closed:
            item = await self.queue.get()
            if item is _DISCONNECT:
                self.closed = True
                self._channel._detach(self)
                raise ChannelDisconnected(
                    f"Channel for conversation {self.conversation_id} dropped"
                )
            yield item  # type: ignore[misc]

    async def close(self) -> None:
        if not self.closed:
            self.closed = True
            self._channel._detach(self)


class InMemoryPushChannel:
    """Per-conversation fan-out broker."""

    def __init__(self) -> None:
        self._subscribers: dict[str, list[_QueueSubscription]] = defaultdict(list)

    async def subscribe(self, conversation_id: str) -> _QueueSubscription:
        subscription = _QueueSubscription(self, conversation_id)
        self._subscribers[conversation_id].append(subscription)
        return subscription

    def publish(self, message: Message) -> None:
        if message.conversation_id is None:
            return
        for subscription in list(self._subscribers.get(message.conversation_id, [])):
            subscription.queue.put_nowait(message)

    def disconnect(self, conversation_id: str) -> None:
        """Simulate a transport drop for every subscriber of a conversation."""

        for subscription in list(self._subscribers.get(conversation_id, [])):
            subscription.queue.put_nowait(_DISCONNECT)

    def subscriber_count(self, conversation_id: str) -> int:
        return len(self._subscribers.get(conversation_id, []))

    def _detach(self, subscription: _QueueSubscription) -> None:
        subscribers = self._subscribers.get(subscription.conversation_id, [])
        if subscription in subscribers:
            subscribers.remove(subscription)


class InMemoryConversationStore:
    def __init__(self) -> None:
        self._conversations: dict[str, Conversation] = {}

    async def create_conversation(
        self,
        visitor_id: str,
        *,
        origin_channel: str,
        department_id: str | None = None,
        visitor_data: dict[str, Any] | None = None,
    ) -> Conversation:
        conversation = Conversation(
            id=str(uuid4()),
            visitor_id=visitor_id,
            origin_channel=origin_channel,
            department_id=department_id,
            visitor_data=dict(visitor_data or {}),
        )
        self._conversations[conversation.id] = conversation
        logger.debug("Created conversation %s for %s", conversation.id, visitor_id)
        return conversation

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        return self._conversations.get(conversation_id)

    async def assign_department(
        self, conversation_id: str, department_id: str
    ) -> Conversation:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(f"Conversation {conversation_id} not found")
        conversation.department_id = department_id
        return conversation

    async def update_visitor_data(
        self, conversation_id: str, visitor_data: dict[str, Any]
    ) -> None:
        conversation = self._conversations.get(conversation_id)
        if conversation is None:
            raise KeyError(f"Conversation {conversation_id} not found")
        conversation.visitor_data.update(visitor_data)

    def all(self) -> list[Conversation]:
        return list(self._conversations.values())


class InMemoryMessageStore:
    def __init__(self, channel: InMemoryPushChannel | None = None) -> None:
        self._channel = channel
        self._messages: dict[str, list[Message]] = defaultdict(list)

    async def append(
        self,
        conversation_id: str,
        sender_id: str,
        body: str,
        *,
        sent_at: datetime | None = None,
        client_id: str | None = None,
    ) -> Message:
        history = self._messages[conversation_id]
        if client_id:
            for existing in history:
                if existing.client_id == client_id:
                    return existing
        message = Message(
            id=str(uuid4()),
            conversation_id=conversation_id,
            sender_id=sender_id,
            body=body,
            sent_at=sent_at or utcnow(),
            client_id=client_id,
        )
        history.append(message)
        if self._channel is not None:
            self._channel.publish(message)
        return message

    async def list_by_conversation(self, conversation_id: str) -> list[Message]:
        return sorted(self._messages.get(conversation_id, []), key=lambda m: m.sent_at)

    def seed(self, message: Message) -> Message:
        """Store ``message`` without publishing it (history fixtures)."""

        self._messages[message.conversation_id or ""].append(message)
        return message
