"""PostgreSQL implementations of the conversation and message stores."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable, Iterator
from contextlib import contextmanager
from datetime import datetime
from typing import Any, TypeVar

import psycopg
from psycopg.rows import dict_row
from psycopg.types.json import Jsonb

from ..conversations.models import Conversation, ConversationStatus, Message, utcnow
from .base import TransientNetworkError
from .memory import InMemoryPushChannel

logger = logging.getLogger(__name__)

T = TypeVar("T")

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS widget_conversations (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    visitor_id text NOT NULL,
    origin_channel text NOT NULL DEFAULT 'widget',
    department_id text,
    status text NOT NULL DEFAULT 'active',
    visitor_data jsonb NOT NULL DEFAULT '{}'::jsonb,
    started_at timestamptz NOT NULL DEFAULT now()
);

CREATE TABLE IF NOT EXISTS widget_messages (
    id uuid PRIMARY KEY DEFAULT gen_random_uuid(),
    conversation_id uuid NOT NULL REFERENCES widget_conversations(id) ON DELETE CASCADE,
    sender_id text NOT NULL,
    body text NOT NULL,
    client_id text,
    sent_at timestamptz NOT NULL DEFAULT now()
);

CREATE UNIQUE INDEX IF NOT EXISTS widget_messages_client_id_idx
    ON widget_messages (conversation_id, client_id) WHERE client_id IS NOT NULL;
CREATE INDEX IF NOT EXISTS widget_messages_conversation_sent_idx
    ON widget_messages (conversation_id, sent_at);
"""


class _PostgresStore:
    def __init__(self, conninfo: str) -> None:
        self._conninfo = conninfo

    @contextmanager
    def _cursor(self) -> Iterator[psycopg.Cursor[dict[str, Any]]]:
        try:
            with psycopg.connect(self._conninfo) as conn:
                with conn.cursor(row_factory=dict_row) as cur:
                    yield cur
        except psycopg.OperationalError as exc:
            logger.warning("Database unavailable: %s", exc)
            raise TransientNetworkError(str(exc)) from exc

    async def _run(self, func: Callable[[], T]) -> T:
        return await asyncio.to_thread(func)


def ensure_schema(conninfo: str) -> None:
    """Create the widget tables when they do not exist yet."""

    with psycopg.connect(conninfo) as conn:
        conn.execute(SCHEMA_SQL)


def _hydrate_conversation(row: dict[str, Any]) -> Conversation:
    return Conversation(
        id=str(row["id"]),
        visitor_id=row["visitor_id"],
        origin_channel=row["origin_channel"],
        department_id=row.get("department_id"),
        status=ConversationStatus(row.get("status") or ConversationStatus.ACTIVE.value),
        started_at=row["started_at"],
        visitor_data=dict(row.get("visitor_data") or {}),
    )


def _hydrate_message(row: dict[str, Any]) -> Message:
    return Message(
        id=str(row["id"]),
        conversation_id=str(row["conversation_id"]),
        sender_id=row["sender_id"],
        body=row["body"],
        sent_at=row["sent_at"],
        client_id=row.get("client_id"),
    )


class PostgresConversationStore(_PostgresStore):
    """PostgreSQL implementation of ``ConversationStore``."""

    async def create_conversation(
        self,
        visitor_id: str,
        *,
        origin_channel: str,
        department_id: str | None = None,
        visitor_data: dict[str, Any] | None = None,
    ) -> Conversation:
        def _insert() -> Conversation:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO widget_conversations
                        (visitor_id, origin_channel, department_id, status, visitor_data)
                    VALUES (%s, %s, %s, %s, %s)
                    RETURNING *
                    """,
                    (
                        visitor_id,
                        origin_channel,
                        department_id,
                        ConversationStatus.ACTIVE.value,
                        Jsonb(visitor_data or {}),
                    ),
                )
                row = cur.fetchone()
            if row is None:
                raise TransientNetworkError("Conversation insert returned no row")
            return _hydrate_conversation(row)

        return await self._run(_insert)

    async def get_conversation(self, conversation_id: str) -> Conversation | None:
        def _select() -> Conversation | None:
            with self._cursor() as cur:
                cur.execute(
                    "SELECT * FROM widget_conversations WHERE id = %s",
                    (conversation_id,),
                )
                row = cur.fetchone()
            return _hydrate_conversation(row) if row else None

        return await self._run(_select)

    async def assign_department(
        self, conversation_id: str, department_id: str
    ) -> Conversation:
        def _update() -> Conversation:
            with self._cursor() as cur:
                cur.execute(
                    """
                    UPDATE widget_conversations SET department_id = %s
                    WHERE id = %s
                    RETURNING *
                    """,
                    (department_id, conversation_id),
                )
                row = cur.fetchone()
            if row is None:
                raise KeyError(f"Conversation {conversation_id} not found")
            return _hydrate_conversation(row)

        return await self._run(_update)

    async def update_visitor_data(
        self, conversation_id: str, visitor_data: dict[str, Any]
    ) -> None:
        def _update() -> None:
            with self._cursor() as cur:
                cur.execute(
                    """
                    UPDATE widget_conversations
                    SET visitor_data = visitor_data || %s
                    WHERE id = %s
                    """,
                    (Jsonb(visitor_data), conversation_id),
                )

        await self._run(_update)


class PostgresMessageStore(_PostgresStore):
    """PostgreSQL implementation of ``MessageStore``.

    Appended messages are published to ``channel`` when one is given, which
    keeps single-process deployments realtime without a separate broker.
    """

    def __init__(
        self, conninfo: str, channel: InMemoryPushChannel | None = None
    ) -> None:
        super().__init__(conninfo)
        self._channel = channel

    async def append(
        self,
        conversation_id: str,
        sender_id: str,
        body: str,
        *,
        sent_at: datetime | None = None,
        client_id: str | None = None,
    ) -> Message:
        def _insert() -> tuple[Message, bool]:
            with self._cursor() as cur:
                cur.execute(
                    """
                    INSERT INTO widget_messages
                        (conversation_id, sender_id, body, client_id, sent_at)
                    VALUES (%s, %s, %s, %s, %s)
                    ON CONFLICT DO NOTHING
                    RETURNING *
                    """,
                    (conversation_id, sender_id, body, client_id, sent_at or utcnow()),
                )
                row = cur.fetchone()
                if row is not None:
                    return _hydrate_message(row), True
                cur.execute(
                    """
                    SELECT * FROM widget_messages
                    WHERE conversation_id = %s AND client_id = %s
                    """,
                    (conversation_id, client_id),
                )
                row = cur.fetchone()
            if row is None:
                raise TransientNetworkError("Message insert returned no row")
            return _hydrate_message(row), False

        message, created = await self._run(_insert)
        if created and self._channel is not None:
            self._channel.publish(message)
        return message

    async def list_by_conversation(self, conversation_id: str) -> list[Message]:
        def _select() -> list[Message]:
            with self._cursor() as cur:
                cur.execute(
                    """
                    SELECT * FROM widget_messages
                    WHERE conversation_id = %s
                    ORDER BY sent_at ASC, id ASC
                    """,
                    (conversation_id,),
                )
                rows = cur.fetchall()
            return [_hydrate_message(row) for row in rows]

        return await self._run(_select)
