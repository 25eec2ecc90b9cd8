"""SSE helpers for streaming widget views.

Every state change of a widget instance produces a :class:`WidgetView`.
Views pile up quickly while a message is sent (local append, persist,
typing indicator), so queued views are coalesced and only the newest one is
emitted. That keeps the UI from replaying intermediate frames.

Event format produced:
- "event: view" with "data: <WidgetView JSON>" for every emitted frame
- ": keep-alive" comments while nothing changes
"""

import asyncio
import json
from typing import Any, AsyncIterator

from .widget.render import WidgetView

KEEP_ALIVE = ": keep-alive\n\n"


def format_event(event: str, data: Any) -> str:
    """Serialise ``data`` as one SSE event block."""
    if isinstance(data, WidgetView):
        payload = data.model_dump_json()
    elif isinstance(data, str):
        payload = data
    else:
        payload = json.dumps(data, ensure_ascii=False, default=str)
    lines = payload.splitlines() or [""]
    return f"event: {event}\n" + "".join(f"data: {line}\n" for line in lines) + "\n"


def _latest(queue: "asyncio.Queue[WidgetView]", view: WidgetView) -> WidgetView:
    while not queue.empty():
        view = queue.get_nowait()
    return view


async def sse_view_stream(
    queue: "asyncio.Queue[WidgetView]", *, keep_alive: float = 15.0
) -> AsyncIterator[str]:
    """Yield SSE blocks for the views put on ``queue``.

    Parameters
    ----------
    queue:
        Queue fed by the widget instance's render callback.
    keep_alive:
        Seconds of silence after which a comment line is sent so proxies do
        not drop the connection.
    """
    while True:
        try:
            view = await asyncio.wait_for(queue.get(), timeout=keep_alive)
        except asyncio.TimeoutError:
            yield KEEP_ALIVE
            continue
        yield format_event("view", _latest(queue, view))
