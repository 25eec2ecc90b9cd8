"""Conversation creation, resumption and hand-off detection."""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Iterable
from typing import TYPE_CHECKING

from ..errors import StorageUnavailableError, TransientNetworkError
from .models import AUTOMATED_SENDER_IDS, WIDGET_ORIGIN, Conversation, Message, VisitorIdentity

if TYPE_CHECKING:
    from ..stores.base import ConversationStore, KeyValueStore, MessageStore

logger = logging.getLogger(__name__)

CONVERSATION_ID_KEY = "support_widget.conversation_id"


def has_human_agent(messages: Iterable[Message], visitor_id: str) -> bool:
    """Return ``True`` when any message was written by someone other than the
    visitor or the automated senders."""

    return any(
        message.sender_id != visitor_id and message.sender_id not in AUTOMATED_SENDER_IDS
        for message in messages
    )


class ConversationSessionManager:
    """Own the durable conversation id of one widget instance."""

    def __init__(
        self,
        conversations: ConversationStore,
        messages: MessageStore,
        storage: KeyValueStore | None,
        visitor: VisitorIdentity,
        *,
        origin_channel: str = WIDGET_ORIGIN,
    ) -> None:
        self._conversations = conversations
        self._messages = messages
        self._storage = storage
        self._visitor = visitor
        self._origin_channel = origin_channel
        self._conversation_id: str | None = None
        self._creating: asyncio.Task[Conversation] | None = None
        self._has_human_agent = False

    # ------------------------------------------------------------------
    # State

    @property
    def conversation_id(self) -> str | None:
        return self._conversation_id

    @property
    def visitor(self) -> VisitorIdentity:
        return self._visitor

    @property
    def has_human_agent(self) -> bool:
        return self._has_human_agent

    def observe(self, messages: Iterable[Message]) -> bool:
        """Recompute the hand-off flag for ``messages``; it never reverts."""

        if not self._has_human_agent and has_human_agent(messages, self._visitor.id):
            self._has_human_agent = True
            logger.info(
                "Human agent joined conversation %s", self._conversation_id
            )
        return self._has_human_agent

    def stored_conversation_id(self) -> str | None:
        if self._storage is None:
            return None
        try:
            return self._storage.get(CONVERSATION_ID_KEY) or None
        except (StorageUnavailableError, OSError) as exc:
            logger.warning("Cannot read stored conversation id: %s", exc)
            return None

    # ------------------------------------------------------------------
    # Operations

    async def resume(self, conversation_id: str) -> list[Message]:
        """Load the history of an existing conversation.

        Raises :class:`TransientNetworkError` when the history cannot be
        fetched; no new conversation is created in that case.
        """

        try:
            history = await self._messages.list_by_conversation(conversation_id)
        except TransientNetworkError:
            logger.warning("Failed to load history for conversation %s", conversation_id)
            raise
        unique: dict[str, Message] = {}
        for message in history:
            unique.setdefault(message.id, message)
        ordered = sorted(unique.values(), key=lambda m: m.sent_at)
        if conversation_id != self._conversation_id:
            self._has_human_agent = False
        self._conversation_id = conversation_id
        self._persist_id(conversation_id)
        self.observe(ordered)
        logger.debug(
            "Resumed conversation %s with %d messages", conversation_id, len(ordered)
        )
        return ordered

    async def create(self, department_override: str | None = None) -> Conversation:
        """Create a conversation, sharing a single in-flight request."""

        if self._creating is None:
            self._creating = asyncio.ensure_future(self._create(department_override))
        task = self._creating
        try:
            return await asyncio.shield(task)
        finally:
            if task.done() and self._creating is task:
                self._creating = None

    async def ensure_conversation(self, department_override: str | None = None) -> str:
        if self._conversation_id is not None:
            return self._conversation_id
        conversation = await self.create(department_override)
        return conversation.id

    async def update_visitor(self, visitor: VisitorIdentity) -> None:
        self._visitor = visitor
        if self._conversation_id is None:
            return
        try:
            await self._conversations.update_visitor_data(
                self._conversation_id, visitor.as_participant_data()
            )
        except (TransientNetworkError, LookupError) as exc:
            logger.warning("Failed to update visitor data: %s", exc)

    def forget(self) -> None:
        self._conversation_id = None
        self._has_human_agent = False
        if self._storage is None:
            return
        try:
            self._storage.delete(CONVERSATION_ID_KEY)
        except (StorageUnavailableError, OSError) as exc:
            logger.warning("Cannot clear stored conversation id: %s", exc)

    async def _create(self, department_override: str | None) -> Conversation:
        try:
            conversation = await self._conversations.create_conversation(
                self._visitor.id,
                origin_channel=self._origin_channel,
                department_id=department_override or None,
                visitor_data=self._visitor.as_participant_data(),
            )
        except TransientNetworkError:
            logger.warning("Failed to create conversation for %s", self._visitor.id)
            raise
        self._conversation_id = conversation.id
        self._persist_id(conversation.id)
        logger.info("Created conversation %s", conversation.id)
        return conversation

    def _persist_id(self, conversation_id: str) -> None:
        if self._storage is None:
            return
        try:
            self._storage.set(CONVERSATION_ID_KEY, conversation_id)
        except (StorageUnavailableError, OSError) as exc:
            logger.warning("Cannot persist conversation id %s: %s", conversation_id, exc)
