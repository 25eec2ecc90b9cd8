"""Widget session API routes.

The embedding page creates a session with its init options, then drives it
with user actions and reads rendered views back, either from each response
or from the SSE stream.
"""

from __future__ import annotations

import logging

from fastapi import APIRouter, Depends, HTTPException, Request, Response
from fastapi.responses import StreamingResponse

from ..errors import ConfigurationError
from ..limits import limiter, send_rate_limit
from ..registry import WidgetRegistry, WidgetSession
from ..schemas import (
    AgentMessageRequest,
    ComposeRequest,
    MessageOut,
    SendRequest,
    SendResult,
    SessionCreateRequest,
    SessionOut,
    VisitorUpdateRequest,
)
from ..sse_utils import sse_view_stream
from ..stores.base import TransientNetworkError
from ..widget.render import WidgetView
from ..widget.state import WidgetAction

logger = logging.getLogger(__name__)

router = APIRouter(tags=["widget"])

def get_registry(request: Request) -> WidgetRegistry:
    registry = getattr(request.app.state, "widgets", None)
    if registry is None:
        raise HTTPException(status_code=503, detail="Widget registry not configured")
    return registry


def _session(registry: WidgetRegistry, session_id: str) -> WidgetSession:
    try:
        return registry.get(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Widget session not found") from exc


def _session_out(session: WidgetSession) -> SessionOut:
    orchestrator = session.orchestrator
    return SessionOut(
        session_id=session.id,
        visitor_id=orchestrator.visitor.id,
        conversation_id=orchestrator.conversation_id,
        resume_error=orchestrator.resume_error,
        view=orchestrator.view(),
    )


def _check_length(registry: WidgetRegistry, text: str | None) -> None:
    if text is not None and len(text) > registry.settings.max_message_length:
        raise HTTPException(status_code=400, detail="Message too long")


@router.post("/api/widget/sessions", response_model=SessionOut, status_code=201)
async def create_session(
    payload: SessionCreateRequest,
    registry: WidgetRegistry = Depends(get_registry),
) -> SessionOut:
    """Initialise a widget instance from the embed snippet's options."""
    try:
        session = await registry.create(
            payload.options,
            visitor_id=payload.visitor_id,
            conversation_id=payload.conversation_id,
        )
    except ConfigurationError as exc:
        raise HTTPException(status_code=422, detail=str(exc)) from exc
    return _session_out(session)


@router.get("/api/widget/sessions/{session_id}", response_model=SessionOut)
async def get_session(
    session_id: str, registry: WidgetRegistry = Depends(get_registry)
) -> SessionOut:
    return _session_out(_session(registry, session_id))


@router.post("/api/widget/sessions/{session_id}/actions/{action}", response_model=WidgetView)
async def dispatch_action(
    session_id: str, action: str, registry: WidgetRegistry = Depends(get_registry)
) -> WidgetView:
    session = _session(registry, session_id)
    try:
        widget_action = WidgetAction(action)
    except ValueError as exc:
        raise HTTPException(status_code=404, detail=f"Unknown action '{action}'") from exc
    return session.orchestrator.dispatch(widget_action)


@router.put("/api/widget/sessions/{session_id}/compose", response_model=WidgetView)
async def compose(
    session_id: str,
    payload: ComposeRequest,
    registry: WidgetRegistry = Depends(get_registry),
) -> WidgetView:
    _check_length(registry, payload.text)
    return _session(registry, session_id).orchestrator.type(payload.text)


@router.post("/api/widget/sessions/{session_id}/send", response_model=SendResult)
@limiter.limit(send_rate_limit)
async def send_message(
    request: Request,
    session_id: str,
    payload: SendRequest,
    registry: WidgetRegistry = Depends(get_registry),
) -> SendResult:
    """Send the compose buffer, or ``text`` when given, as a visitor message.

    A ``null`` message in the response means nothing was sent (empty buffer
    or a send already in flight) or delivery failed and the message is shown
    as unsent.
    """
    _check_length(registry, payload.text)
    orchestrator = _session(registry, session_id).orchestrator
    message = await orchestrator.send(payload.text)
    return SendResult(
        message=MessageOut.from_message(message) if message else None,
        conversation_id=orchestrator.conversation_id,
        view=orchestrator.view(),
    )


@router.post(
    "/api/widget/sessions/{session_id}/messages/{local_id}/retry",
    response_model=SendResult,
)
async def retry_message(
    session_id: str, local_id: str, registry: WidgetRegistry = Depends(get_registry)
) -> SendResult:
    orchestrator = _session(registry, session_id).orchestrator
    message = await orchestrator.retry(local_id)
    return SendResult(
        message=MessageOut.from_message(message) if message else None,
        conversation_id=orchestrator.conversation_id,
        view=orchestrator.view(),
    )


@router.put("/api/widget/sessions/{session_id}/visitor", response_model=WidgetView)
async def update_visitor(
    session_id: str,
    payload: VisitorUpdateRequest,
    registry: WidgetRegistry = Depends(get_registry),
) -> WidgetView:
    orchestrator = _session(registry, session_id).orchestrator
    return await orchestrator.update_visitor(payload.name, payload.email)


@router.get("/api/widget/sessions/{session_id}/events")
async def session_events(
    session_id: str, request: Request, registry: WidgetRegistry = Depends(get_registry)
) -> StreamingResponse:
    """Stream rendered views as Server-Sent Events."""
    session = _session(registry, session_id)
    queue = session.listen()

    async def event_stream():
        try:
            async for chunk in sse_view_stream(queue):
                if await request.is_disconnected():
                    break
                yield chunk
        finally:
            session.unlisten(queue)

    return StreamingResponse(
        event_stream(),
        media_type="text/event-stream; charset=utf-8",
        headers={
            "Cache-Control": "no-cache",
            "Connection": "keep-alive",
            "X-Accel-Buffering": "no",
        },
    )


@router.delete("/api/widget/sessions/{session_id}", status_code=204)
async def delete_session(
    session_id: str, registry: WidgetRegistry = Depends(get_registry)
) -> Response:
    try:
        await registry.close(session_id)
    except KeyError as exc:
        raise HTTPException(status_code=404, detail="Widget session not found") from exc
    return Response(status_code=204)


@router.post(
    "/api/conversations/{conversation_id}/messages",
    response_model=MessageOut,
    status_code=201,
)
async def post_agent_message(
    conversation_id: str,
    payload: AgentMessageRequest,
    registry: WidgetRegistry = Depends(get_registry),
) -> MessageOut:
    """Post a message into a conversation on behalf of an agent.

    Every widget showing the conversation receives it in real time and stops
    sending automatic replies.
    """
    try:
        conversation = await registry.stores.conversations.get_conversation(
            conversation_id
        )
        if conversation is None:
            raise HTTPException(status_code=404, detail="Conversation not found")
        message = await registry.stores.messages.append(
            conversation_id, payload.sender_id, payload.body
        )
    except TransientNetworkError as exc:
        raise HTTPException(status_code=503, detail=str(exc)) from exc
    logger.info(
        "Agent %s posted message %s to conversation %s",
        payload.sender_id,
        message.id,
        conversation_id,
    )
    return MessageOut.from_message(message)
