import asyncio

import pytest

from support_widget.config import EngineSettings
from support_widget.errors import ChannelDisconnected, ConfigurationError
from support_widget.stores import build_stores
from support_widget.stores.memory import (
    InMemoryConversationStore,
    InMemoryMessageStore,
    InMemoryPushChannel,
)


def test_message_store_is_idempotent_by_client_id():
    store = InMemoryMessageStore()

    async def scenario():
        first = await store.append("c1", "visitor_1", "Oi", client_id="local_1")
        second = await store.append("c1", "visitor_1", "Oi", client_id="local_1")
        return first, second, await store.list_by_conversation("c1")

    first, second, history = asyncio.run(scenario())
    assert first is second
    assert history == [first]


def test_appended_messages_reach_subscribers():
    channel = InMemoryPushChannel()
    store = InMemoryMessageStore(channel)

    async def scenario():
        subscription = await channel.subscribe("c1")
        message = await store.append("c1", "agent_1", "Olá")
        received = await subscription.__aiter__().__anext__()
        await subscription.close()
        return message, received

    message, received = asyncio.run(scenario())
    assert received is message
    assert channel.subscriber_count("c1") == 0


def test_disconnect_raises_on_iteration():
    channel = InMemoryPushChannel()

    async def scenario():
        subscription = await channel.subscribe("c1")
        channel.disconnect("c1")
        async for _ in subscription:
            pass

    with pytest.raises(ChannelDisconnected):
        asyncio.run(scenario())
    assert channel.subscriber_count("c1") == 0


def test_conversation_store_updates():
    store = InMemoryConversationStore()

    async def scenario():
        conversation = await store.create_conversation(
            "visitor_1", origin_channel="widget", visitor_data={"name": "Visitante"}
        )
        await store.assign_department(conversation.id, "financeiro")
        await store.update_visitor_data(conversation.id, {"name": "Ana"})
        return await store.get_conversation(conversation.id)

    conversation = asyncio.run(scenario())
    assert conversation.department_id == "financeiro"
    assert conversation.visitor_data == {"name": "Ana"}

    with pytest.raises(KeyError):
        asyncio.run(store.assign_department("missing", "financeiro"))


def test_build_stores_memory_backend():
    bundle = build_stores(EngineSettings())
    assert isinstance(bundle.conversations, InMemoryConversationStore)
    assert isinstance(bundle.messages, InMemoryMessageStore)
    assert isinstance(bundle.channel, InMemoryPushChannel)


def test_build_stores_postgres_backend():
    from support_widget.stores.postgres import PostgresMessageStore

    bundle = build_stores(
        EngineSettings(store_backend="postgres", database_url="postgresql://test")
    )
    assert isinstance(bundle.messages, PostgresMessageStore)


def test_build_stores_rejects_unknown_backend():
    with pytest.raises(ConfigurationError):
        build_stores(EngineSettings(store_backend="redis"))
