"""Real-time synchronisation of a conversation's message stream.

The client keeps exactly one subscription open, for the conversation the
widget is showing. Inbound messages are not handled here: they are put on an
``asyncio.Queue`` that the orchestrator drains, so ordering and de-duplication
can be tested without a live transport.

Messages sent by the visitor are skipped because the widget already rendered
them optimistically. When the transport drops the client resubscribes with
exponential backoff. Messages published during the gap are not replayed.
"""

from __future__ import annotations

import asyncio
import logging

from .conversations.models import Message
from .stores.base import ChannelDisconnected, PushChannel, Subscription, TransientNetworkError

logger = logging.getLogger(__name__)


class RealtimeSyncClient:
    def __init__(
        self,
        channel: PushChannel,
        visitor_id: str,
        *,
        retry_delay: float = 1.0,
        max_retry_delay: float = 30.0,
        warn_threshold: int = 3,
    ) -> None:
        self._channel = channel
        self._visitor_id = visitor_id
        self._retry_delay = retry_delay
        self._max_retry_delay = max_retry_delay
        self._warn_threshold = warn_threshold
        self._lock = asyncio.Lock()
        self._conversation_id: str | None = None
        self._listener: asyncio.Task[None] | None = None
        self._subscribed = asyncio.Event()
        self.reconnects = 0

    @property
    def active_conversation_id(self) -> str | None:
        return self._conversation_id

    async def subscribe(
        self, conversation_id: str, outbox: asyncio.Queue[Message]
    ) -> None:
        """Forward messages of ``conversation_id`` onto ``outbox``.

        Subscribing again to the active conversation is a no-op; any other
        active subscription is torn down first.
        """

        async with self._lock:
            if (
                self._conversation_id == conversation_id
                and self._listener is not None
                and not self._listener.done()
            ):
                return
            await self._stop()
            self._conversation_id = conversation_id
            self._subscribed = asyncio.Event()
            self._listener = asyncio.create_task(
                self._listen(conversation_id, outbox),
                name=f"realtime:{conversation_id}",
            )

    async def unsubscribe(self) -> None:
        async with self._lock:
            await self._stop()

    async def wait_subscribed(self) -> None:
        """Wait until the channel accepted the current subscription."""

        await self._subscribed.wait()

    async def _stop(self) -> None:
        listener = self._listener
        self._listener = None
        self._conversation_id = None
        if listener is None:
            return
        listener.cancel()
        try:
            await listener
        except asyncio.CancelledError:
            pass
        except Exception:  # pragma: no cover - listener swallows transport errors
            logger.exception("Realtime listener ended with an error")

    async def _listen(self, conversation_id: str, outbox: asyncio.Queue[Message]) -> None:
        failures = 0
        delay = self._retry_delay
        while True:
            subscription: Subscription | None = None
            try:
                subscription = await self._channel.subscribe(conversation_id)
                self._subscribed.set()
                if failures:
                    logger.info(
                        "Resubscribed to conversation %s after %d failure(s)",
                        conversation_id,
                        failures,
                    )
                    failures = 0
                    delay = self._retry_delay
                async for message in subscription:
                    if message.sender_id == self._visitor_id:
                        continue
                    await outbox.put(message)
                reason = "stream ended"
            except (ChannelDisconnected, TransientNetworkError) as exc:
                reason = str(exc) or exc.__class__.__name__
            finally:
                if subscription is not None:
                    await subscription.close()
            failures += 1
            self.reconnects += 1
            if failures >= self._warn_threshold:
                logger.error(
                    "Realtime channel for %s keeps failing (%d attempts): %s",
                    conversation_id,
                    failures,
                    reason,
                )
            else:
                logger.warning(
                    "Realtime channel for %s dropped (%s); resubscribing in %.1fs",
                    conversation_id,
                    reason,
                    delay,
                )
            await asyncio.sleep(delay)
            delay = min(delay * 2, self._max_retry_delay)
