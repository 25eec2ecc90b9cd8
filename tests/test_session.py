import asyncio
from datetime import datetime, timedelta, timezone

import pytest

from support_widget.conversations.models import Message, VisitorIdentity
from support_widget.conversations.session import (
    CONVERSATION_ID_KEY,
    ConversationSessionManager,
    has_human_agent,
)
from support_widget.errors import TransientNetworkError

T0 = datetime(2024, 5, 1, 9, 0, tzinfo=timezone.utc)
VISITOR = "visitor_abc"


def _message(id: str, sender: str, minute: int, conversation_id: str = "c1") -> Message:
    return Message(
        id=id,
        conversation_id=conversation_id,
        sender_id=sender,
        body=id,
        sent_at=T0 + timedelta(minutes=minute),
    )


def _manager(backend) -> ConversationSessionManager:
    return ConversationSessionManager(
        backend.conversations,
        backend.messages,
        backend.storage,
        VisitorIdentity(id=VISITOR),
    )


def test_has_human_agent_ignores_visitor_bot_and_system():
    messages = [_message("1", VISITOR, 0), _message("2", "bot", 1), _message("3", "system", 2)]
    assert has_human_agent(messages, VISITOR) is False
    assert has_human_agent(messages + [_message("4", "agent_9", 3)], VISITOR) is True


def test_observe_latches_flag(backend):
    manager = _manager(backend)
    assert manager.observe([_message("1", VISITOR, 0)]) is False
    assert manager.observe([_message("2", "agent_9", 1)]) is True
    assert manager.observe([]) is True


def test_resume_returns_sorted_unique_history(backend):
    for message in (
        _message("m3", "bot", 3),
        _message("m1", VISITOR, 1),
        _message("m2", "agent_1", 2),
        _message("m1", VISITOR, 1),
    ):
        backend.messages.seed(message)
    manager = _manager(backend)

    history = asyncio.run(manager.resume("c1"))

    assert [m.id for m in history] == ["m1", "m2", "m3"]
    assert manager.conversation_id == "c1"
    assert manager.has_human_agent is True
    assert backend.storage.get(CONVERSATION_ID_KEY) == "c1"


def test_failed_resume_does_not_create_conversation(backend):
    backend.messages.history_failing = True
    manager = _manager(backend)

    with pytest.raises(TransientNetworkError):
        asyncio.run(manager.resume("c1"))

    assert manager.conversation_id is None
    assert backend.conversations.create_calls == 0


def test_concurrent_creation_shares_one_request(backend):
    manager = _manager(backend)

    async def scenario():
        return await asyncio.gather(
            manager.ensure_conversation(),
            manager.ensure_conversation(),
            manager.create(),
        )

    ids = asyncio.run(scenario())

    assert len(set(ids[:2])) == 1
    assert ids[2].id == ids[0]
    assert backend.conversations.create_calls == 1
    assert backend.storage.get(CONVERSATION_ID_KEY) == ids[0]


def test_created_conversation_carries_visitor_data_and_department(backend):
    manager = _manager(backend)
    conversation = asyncio.run(manager.create("vendas"))
    assert conversation.department_id == "vendas"
    assert conversation.origin_channel == "widget"
    assert conversation.visitor_data == {"name": "Visitante", "email": None}


def test_failed_creation_can_be_retried(backend):
    backend.conversations.failing = True
    manager = _manager(backend)

    with pytest.raises(TransientNetworkError):
        asyncio.run(manager.ensure_conversation())
    assert manager.conversation_id is None

    backend.conversations.failing = False
    conversation_id = asyncio.run(manager.ensure_conversation())
    assert conversation_id == manager.conversation_id
    assert backend.conversations.create_calls == 2


def test_forget_drops_persisted_id(backend):
    manager = _manager(backend)
    asyncio.run(manager.ensure_conversation())
    manager.forget()
    assert manager.conversation_id is None
    assert backend.storage.get(CONVERSATION_ID_KEY) is None


def test_update_visitor_pushes_participant_data(backend):
    manager = _manager(backend)

    async def scenario():
        conversation_id = await manager.ensure_conversation()
        await manager.update_visitor(
            VisitorIdentity(id=VISITOR, name="Ana", email="ana@example.com")
        )
        return await backend.conversations.get_conversation(conversation_id)

    conversation = asyncio.run(scenario())
    assert conversation.visitor_data == {"name": "Ana", "email": "ana@example.com"}
