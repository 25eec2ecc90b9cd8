"""Store backends used by the widget engine."""

from __future__ import annotations

import logging
from typing import NamedTuple

from ..config import ConfigurationError, EngineSettings
from .base import (
    ChannelDisconnected,
    ConversationStore,
    KeyValueStore,
    MessageStore,
    PushChannel,
    StorageUnavailableError,
    Subscription,
    TransientNetworkError,
)
from .files import JsonFileKeyValueStore
from .memory import (
    InMemoryConversationStore,
    InMemoryKeyValueStore,
    InMemoryMessageStore,
    InMemoryPushChannel,
)

logger = logging.getLogger(__name__)


class StoreBundle(NamedTuple):
    conversations: ConversationStore
    messages: MessageStore
    channel: InMemoryPushChannel


def build_stores(settings: EngineSettings) -> StoreBundle:
    """Instantiate the backend selected by ``settings.store_backend``.

    Both backends publish through an in-process :class:`InMemoryPushChannel`.
    """

    channel = InMemoryPushChannel()
    if settings.store_backend == "memory":
        return StoreBundle(
            InMemoryConversationStore(), InMemoryMessageStore(channel), channel
        )
    if settings.store_backend == "postgres":
        if not settings.database_url:
            raise ConfigurationError("DATABASE_URL is required for the postgres backend")
        from .postgres import PostgresConversationStore, PostgresMessageStore

        logger.info("Using PostgreSQL stores")
        return StoreBundle(
            PostgresConversationStore(settings.database_url),
            PostgresMessageStore(settings.database_url, channel),
            channel,
        )
    raise ConfigurationError(f"Unknown store backend '{settings.store_backend}'")


__all__ = [
    "ChannelDisconnected",
    "ConversationStore",
    "InMemoryConversationStore",
    "InMemoryKeyValueStore",
    "InMemoryMessageStore",
    "InMemoryPushChannel",
    "JsonFileKeyValueStore",
    "KeyValueStore",
    "MessageStore",
    "PushChannel",
    "StorageUnavailableError",
    "StoreBundle",
    "Subscription",
    "TransientNetworkError",
    "build_stores",
]
