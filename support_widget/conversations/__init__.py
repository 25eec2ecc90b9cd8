"""Conversation models, the message timeline and session management."""

from .models import (
    AUTOMATED_SENDER_IDS,
    BOT_SENDER_ID,
    SYSTEM_SENDER_ID,
    WIDGET_ORIGIN,
    Conversation,
    ConversationStatus,
    DeliveryStatus,
    Message,
    SenderRole,
    VisitorIdentity,
)
from .session import CONVERSATION_ID_KEY, ConversationSessionManager, has_human_agent
from .timeline import MessageTimeline

__all__ = [
    "AUTOMATED_SENDER_IDS",
    "BOT_SENDER_ID",
    "CONVERSATION_ID_KEY",
    "Conversation",
    "ConversationSessionManager",
    "ConversationStatus",
    "DeliveryStatus",
    "Message",
    "MessageTimeline",
    "SYSTEM_SENDER_ID",
    "SenderRole",
    "VisitorIdentity",
    "WIDGET_ORIGIN",
    "has_human_agent",
]
