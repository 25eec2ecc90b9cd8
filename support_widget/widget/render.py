"""Pure render projection of a widget instance."""

from __future__ import annotations

from collections.abc import Sequence
from datetime import datetime

from pydantic import BaseModel, Field

from ..config import WidgetConfig
from ..conversations.models import DeliveryStatus, Message, SenderRole, VisitorIdentity
from .state import Effect, WidgetUIState

IDENTITY_HINT = "Para um atendimento personalizado, informe seu nome e email."


class MessageBubble(BaseModel):
    id: str
    role: SenderRole
    text: str
    sent_at: datetime
    time_label: str
    delivery: DeliveryStatus


class WidgetHeader(BaseModel):
    title: str
    subtitle: str
    logo_url: str | None = None
    primary_color: str


class WidgetView(BaseModel):
    mode: str
    side: str
    launcher_label: str
    panel_visible: bool
    minimized: bool
    header: WidgetHeader
    messages: list[MessageBubble] = Field(default_factory=list)
    compose_buffer: str = ""
    send_enabled: bool = False
    is_sending: bool = False
    typing_indicator: bool = False
    has_human_agent: bool = False
    identity_hint: str | None = None
    effects: list[str] = Field(default_factory=list)


def render(
    state: WidgetUIState,
    messages: Sequence[Message],
    config: WidgetConfig,
    visitor: VisitorIdentity | None,
    *,
    has_human_agent: bool = False,
    effects: Sequence[Effect] = (),
) -> WidgetView:
    visitor_id = visitor.id if visitor else None
    bubbles = [
        MessageBubble(
            id=message.id,
            role=message.sender_role(visitor_id),
            text=message.body,
            sent_at=message.sent_at,
            time_label=message.sent_at.strftime("%H:%M"),
            delivery=message.delivery,
        )
        for message in messages
    ]
    visitor_has_written = any(b.role is SenderRole.VISITOR for b in bubbles)
    show_hint = not (visitor and visitor.name) and not visitor_has_written
    return WidgetView(
        mode=state.mode.value,
        side="left" if config.position == "bottom-left" else "right",
        launcher_label="Fechar chat" if state.is_open else "Abrir chat",
        panel_visible=state.is_open,
        minimized=state.is_minimized,
        header=WidgetHeader(
            title=config.title,
            subtitle=config.subtitle,
            logo_url=config.logo_url,
            primary_color=config.primary_color,
        ),
        messages=bubbles if state.is_open and not state.is_minimized else [],
        compose_buffer=state.compose_buffer,
        send_enabled=state.can_send,
        is_sending=state.is_sending,
        typing_indicator=state.is_agent_typing,
        has_human_agent=has_human_agent,
        identity_hint=IDENTITY_HINT if show_hint else None,
        effects=[effect.value for effect in effects],
    )
