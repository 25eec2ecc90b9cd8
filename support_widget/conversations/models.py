"""Domain models shared by the widget engine."""

from __future__ import annotations

from dataclasses import dataclass, field, replace
from datetime import datetime, timezone
from enum import Enum
from typing import Any
from uuid import uuid4

BOT_SENDER_ID = "bot"
SYSTEM_SENDER_ID = "system"
AUTOMATED_SENDER_IDS = frozenset({BOT_SENDER_ID, SYSTEM_SENDER_ID})

WIDGET_ORIGIN = "widget"


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


class SenderRole(str, Enum):
    VISITOR = "visitor"
    BOT = "bot"
    AGENT = "agent"


class ConversationStatus(str, Enum):
    ACTIVE = "active"
    CLOSED = "closed"


class DeliveryStatus(str, Enum):
    """Local delivery state of a message shown in the widget."""

    PENDING = "pending"
    SENT = "sent"
    UNSENT = "unsent"


@dataclass
class VisitorIdentity:
    """Anonymous visitor; ``id`` is opaque and never changes once minted."""

    id: str
    name: str | None = None
    email: str | None = None

    def as_participant_data(self) -> dict[str, Any]:
        return {"name": self.name or "Visitante", "email": self.email}


@dataclass
class Conversation:
    id: str
    visitor_id: str
    origin_channel: str = WIDGET_ORIGIN
    department_id: str | None = None
    status: ConversationStatus = ConversationStatus.ACTIVE
    started_at: datetime = field(default_factory=utcnow)
    visitor_data: dict[str, Any] = field(default_factory=dict)


@dataclass(frozen=True)
class Message:
    """A single entry of a conversation thread.

    ``client_id`` carries the id of the optimistic local copy so the stored
    message can be matched against it when it comes back.
    """

    id: str
    conversation_id: str | None
    sender_id: str
    body: str
    sent_at: datetime = field(default_factory=utcnow)
    client_id: str | None = None
    delivery: DeliveryStatus = DeliveryStatus.SENT

    @classmethod
    def local(
        cls, sender_id: str, body: str, conversation_id: str | None = None
    ) -> "Message":
        """Build an optimistic message that has not reached the store yet."""

        local_id = f"local_{uuid4().hex}"
        return cls(
            id=local_id,
            conversation_id=conversation_id,
            sender_id=sender_id,
            body=body,
            client_id=local_id,
            delivery=DeliveryStatus.PENDING,
        )

    @property
    def is_local(self) -> bool:
        return self.delivery is not DeliveryStatus.SENT

    def sender_role(self, visitor_id: str | None) -> SenderRole:
        if visitor_id is not None and self.sender_id == visitor_id:
            return SenderRole.VISITOR
        if self.sender_id in AUTOMATED_SENDER_IDS:
            return SenderRole.BOT
        return SenderRole.AGENT

    def with_delivery(self, delivery: DeliveryStatus) -> "Message":
        return replace(self, delivery=delivery)
