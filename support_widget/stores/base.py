"""Collaborator abstractions consumed by the widget engine.

The engine never talks to a database or a websocket directly. It goes through
four small protocols:

- :class:`ConversationStore` creates and reads conversations.
- :class:`MessageStore` appends messages and lists a conversation's history.
- :class:`PushChannel` delivers new messages for one conversation in real time.
- :class:`KeyValueStore` is the visitor-side durable storage (local storage
  when the widget is embedded in a browser).

Remote failures are reported as :class:`TransientNetworkError`. Callers may
retry them.
"""

from __future__ import annotations

from collections.abc import AsyncIterator
from datetime import datetime
from typing import Any, Protocol

from ..conversations.models import Conversation, Message
from ..errors import ChannelDisconnected, StorageUnavailableError, TransientNetworkError

__all__ = [
    "ChannelDisconnected",
    "ConversationStore",
    "KeyValueStore",
    "MessageStore",
    "PushChannel",
    "StorageUnavailableError",
    "Subscription",
    "TransientNetworkError",
]


class KeyValueStore(Protocol):
    def get(self, key: str) -> str | None: ...

    def set(self, key: str, value: str) -> None: ...

    def delete(self, key: str) -> None: ...


class ConversationStore(Protocol):
    async def create_conversation(
        self,
        visitor_id: str,
        *,
        origin_channel: str,
        department_id: str | None = None,
        visitor_data: dict[str, Any] | None = None,
    ) -> Conversation: ...

    async def get_conversation(self, conversation_id: str) -> Conversation | None: ...

    async def assign_department(
        self, conversation_id: str, department_id: str
    ) -> Conversation: ...

    async def update_visitor_data(
        self, conversation_id: str, visitor_data: dict[str, Any]
    ) -> None: ...


class MessageStore(Protocol):
    async def append(
        self,
        conversation_id: str,
        sender_id: str,
        body: str,
        *,
        sent_at: datetime | None = None,
        client_id: str | None = None,
    ) -> Message:
        """Persist a message and return the stored copy.

        Implementations should treat ``client_id`` as an idempotency key.
        """

    async def list_by_conversation(self, conversation_id: str) -> list[Message]:
        """Return the history of ``conversation_id`` ordered by ``sent_at``."""


class Subscription(Protocol):
    def __aiter__(self) -> AsyncIterator[Message]: ...

    async def close(self) -> None: ...


class PushChannel(Protocol):
    async def subscribe(self, conversation_id: str) -> Subscription:
        """Open a stream of messages inserted into ``conversation_id``.

        Iterating the subscription raises :class:`ChannelDisconnected` when
        the transport drops.
        """
