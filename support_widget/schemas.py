"""Pydantic schemas for the widget HTTP API."""

from __future__ import annotations

from datetime import datetime
from typing import Any

from pydantic import BaseModel, ConfigDict, Field

from .conversations.models import DeliveryStatus, Message
from .widget.render import WidgetView


class _CamelModel(BaseModel):
    model_config = ConfigDict(populate_by_name=True)


class SessionCreateRequest(_CamelModel):
    options: dict[str, Any] = Field(default_factory=dict)
    visitor_id: str | None = Field(default=None, alias="visitorId")
    conversation_id: str | None = Field(default=None, alias="conversationId")


class ComposeRequest(BaseModel):
    text: str = ""


class SendRequest(BaseModel):
    text: str | None = None


class VisitorUpdateRequest(BaseModel):
    name: str | None = None
    email: str | None = None


class AgentMessageRequest(_CamelModel):
    sender_id: str = Field(min_length=1, alias="senderId")
    body: str = Field(min_length=1)


class MessageOut(BaseModel):
    id: str
    conversation_id: str | None
    sender_id: str
    body: str
    sent_at: datetime
    client_id: str | None = None
    delivery: DeliveryStatus

    @classmethod
    def from_message(cls, message: Message) -> "MessageOut":
        return cls(
            id=message.id,
            conversation_id=message.conversation_id,
            sender_id=message.sender_id,
            body=message.body,
            sent_at=message.sent_at,
            client_id=message.client_id,
            delivery=message.delivery,
        )


class SessionOut(BaseModel):
    session_id: str
    visitor_id: str
    conversation_id: str | None = None
    resume_error: str | None = None
    view: WidgetView


class SendResult(BaseModel):
    message: MessageOut | None = None
    conversation_id: str | None = None
    view: WidgetView
