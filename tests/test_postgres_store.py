import asyncio
from datetime import datetime, timezone
from uuid import uuid4

import psycopg
import pytest

from support_widget.errors import TransientNetworkError
from support_widget.stores import postgres
from support_widget.stores.memory import InMemoryPushChannel

NOW = datetime(2024, 5, 1, 12, 0, tzinfo=timezone.utc)


class FakeCursor:
    def __init__(self, conn):
        self.conn = conn

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def execute(self, sql, params=None):
        self.conn.executed.append((" ".join(sql.split()), params))

    def fetchone(self):
        return self.conn.rows.pop(0) if self.conn.rows else None

    def fetchall(self):
        rows, self.conn.rows = self.conn.rows, []
        return rows


class FakeConnection:
    def __init__(self, rows=None):
        self.rows = list(rows or [])
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc):
        return False

    def cursor(self, row_factory=None):
        return FakeCursor(self)

    def execute(self, sql, params=None):
        self.executed.append((" ".join(sql.split()), params))


class RecordingChannel(InMemoryPushChannel):
    def __init__(self):
        super().__init__()
        self.published = []

    def publish(self, message):
        self.published.append(message)
        super().publish(message)


@pytest.fixture
def fake_db(monkeypatch):
    conn = FakeConnection()
    monkeypatch.setattr(postgres.psycopg, "connect", lambda conninfo: conn)
    return conn


def _message_row(client_id=None, sender="visitor_1"):
    return {
        "id": uuid4(),
        "conversation_id": "c1",
        "sender_id": sender,
        "body": "Oi",
        "client_id": client_id,
        "sent_at": NOW,
    }


def test_create_conversation(fake_db):
    fake_db.rows = [
        {
            "id": uuid4(),
            "visitor_id": "visitor_1",
            "origin_channel": "widget",
            "department_id": "vendas",
            "status": "active",
            "visitor_data": {"name": "Visitante"},
            "started_at": NOW,
        }
    ]
    store = postgres.PostgresConversationStore("postgresql://test")

    conversation = asyncio.run(
        store.create_conversation(
            "visitor_1",
            origin_channel="widget",
            department_id="vendas",
            visitor_data={"name": "Visitante"},
        )
    )

    assert conversation.visitor_id == "visitor_1"
    assert conversation.department_id == "vendas"
    assert conversation.visitor_data == {"name": "Visitante"}
    sql, params = fake_db.executed[0]
    assert sql.startswith("INSERT INTO widget_conversations")
    assert params[:4] == ("visitor_1", "widget", "vendas", "active")


def test_assign_department_unknown_conversation(fake_db):
    store = postgres.PostgresConversationStore("postgresql://test")
    with pytest.raises(KeyError):
        asyncio.run(store.assign_department("missing", "financeiro"))


def test_append_publishes_new_messages(fake_db):
    channel = RecordingChannel()
    row = _message_row(client_id="local_1")
    fake_db.rows = [row]
    store = postgres.PostgresMessageStore("postgresql://test", channel)

    message = asyncio.run(store.append("c1", "visitor_1", "Oi", client_id="local_1"))

    assert message.id == str(row["id"])
    assert message.client_id == "local_1"
    assert channel.published == [message]
    sql, _ = fake_db.executed[0]
    assert "ON CONFLICT DO NOTHING" in sql


def test_append_is_idempotent_by_client_id(fake_db):
    channel = RecordingChannel()
    existing = _message_row(client_id="local_1")
    fake_db.rows = [None, existing]
    store = postgres.PostgresMessageStore("postgresql://test", channel)

    message = asyncio.run(store.append("c1", "visitor_1", "Oi", client_id="local_1"))

    assert message.id == str(existing["id"])
    assert channel.published == []
    assert fake_db.executed[1][1] == ("c1", "local_1")


def test_list_by_conversation_hydrates_rows(fake_db):
    fake_db.rows = [_message_row(sender="visitor_1"), _message_row(sender="agent_2")]
    store = postgres.PostgresMessageStore("postgresql://test")

    messages = asyncio.run(store.list_by_conversation("c1"))

    assert [m.sender_id for m in messages] == ["visitor_1", "agent_2"]
    assert all(m.conversation_id == "c1" for m in messages)
    assert "ORDER BY sent_at ASC" in fake_db.executed[0][0]


def test_operational_errors_become_transient(monkeypatch):
    def _refuse(conninfo):
        raise psycopg.OperationalError("connection refused")

    monkeypatch.setattr(postgres.psycopg, "connect", _refuse)
    store = postgres.PostgresMessageStore("postgresql://test")

    with pytest.raises(TransientNetworkError):
        asyncio.run(store.list_by_conversation("c1"))


def test_ensure_schema_runs_ddl(fake_db):
    postgres.ensure_schema("postgresql://test")
    assert "CREATE TABLE IF NOT EXISTS widget_conversations" in fake_db.executed[0][0]
