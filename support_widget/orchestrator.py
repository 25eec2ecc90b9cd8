"""Per-widget coordination of sending, syncing and automatic replies.

One :class:`AutoResponseOrchestrator` backs one widget instance. It owns the
UI state value, the message timeline and the queue the realtime client feeds.
Nothing is shared between instances, so two tabs never see each other's
state.

Sending a visitor message runs these steps:

1. the message is appended locally and the compose buffer is cleared;
2. the conversation is created if needed (a single in-flight request);
3. the message is persisted, and the stored copy replaces the local one;
4. while no human agent took part in the conversation, the message is
   classified, routed when it needs a human, and a canonical bot reply is
   scheduled after a short typing delay.

Remote failures in steps 2 and 3 mark the message ``unsent``. It can be
retried and the widget stays usable. A second visitor message sent while a
reply is pending replaces that reply, so each burst gets one reply. Closing
the widget or leaving the conversation withdraws the pending reply, as well
as the reply a message still being stored would have scheduled.
"""

from __future__ import annotations

import asyncio
import logging
from collections.abc import Callable

from .config import WidgetConfig
from .conversations.models import (
    BOT_SENDER_ID,
    DeliveryStatus,
    Message,
    VisitorIdentity,
)
from .conversations.session import ConversationSessionManager
from .conversations.timeline import MessageTimeline
from .identity import VisitorIdentityManager
from .realtime import RealtimeSyncClient
from .stores.base import (
    ConversationStore,
    KeyValueStore,
    MessageStore,
    PushChannel,
    TransientNetworkError,
)
from .triage import (
    CanonicalReplyStore,
    ClassificationResult,
    DepartmentRouter,
    MessageClassifier,
)
from .widget.render import WidgetView, render
from .widget.state import (
    Effect,
    WidgetAction,
    WidgetUIState,
    apply_action,
    begin_send,
    complete_local_append,
    edit_compose,
    finish_send,
    set_agent_typing,
)

logger = logging.getLogger(__name__)

WELCOME_MESSAGE_ID = "welcome"

RenderCallback = Callable[[WidgetView], None]


class AutoResponseOrchestrator:
    def __init__(
        self,
        config: WidgetConfig,
        *,
        storage: KeyValueStore | None,
        conversations: ConversationStore,
        messages: MessageStore,
        channel: PushChannel,
        classifier: MessageClassifier | None = None,
        router: DepartmentRouter | None = None,
        replies: CanonicalReplyStore | None = None,
        reply_delay: float = 1.0,
        resubscribe_delay: float = 1.0,
        resubscribe_max_delay: float = 30.0,
        resubscribe_warn_threshold: int = 3,
        on_render: RenderCallback | None = None,
    ) -> None:
        self._config = config
        self._messages = messages
        self._conversations = conversations
        self._classifier = classifier or MessageClassifier()
        self._router = router or DepartmentRouter()
        self._replies = replies or CanonicalReplyStore()
        self._reply_delay = reply_delay
        self.on_render = on_render

        self._identity = VisitorIdentityManager(storage)
        visitor = self._identity.get_or_create()
        self._session = ConversationSessionManager(
            conversations, messages, storage, visitor
        )
        self._sync = RealtimeSyncClient(
            channel,
            visitor.id,
            retry_delay=resubscribe_delay,
            max_retry_delay=resubscribe_max_delay,
            warn_threshold=resubscribe_warn_threshold,
        )

        self._state = WidgetUIState()
        self._timeline = MessageTimeline()
        self._inbox: asyncio.Queue[Message] = asyncio.Queue()
        self._pump: asyncio.Task[None] | None = None
        self._pending_reply: asyncio.Task[None] | None = None
        self._in_flight: dict[str, asyncio.Future[Message | None]] = {}
        # local id -> stored id
        self._delivered: dict[str, str] = {}
        self._reply_epoch = 0
        self._resume_pending: str | None = None
        self.resume_error: str | None = None
        self.last_classification: ClassificationResult | None = None
        self.last_department: str | None = None

    # ------------------------------------------------------------------
    # Read-only views

    @property
    def config(self) -> WidgetConfig:
        return self._config

    @property
    def state(self) -> WidgetUIState:
        return self._state

    @property
    def messages(self) -> list[Message]:
        return self._timeline.messages()

    @property
    def visitor(self) -> VisitorIdentity:
        return self._session.visitor

    @property
    def conversation_id(self) -> str | None:
        return self._session.conversation_id

    @property
    def has_human_agent(self) -> bool:
        return self._session.has_human_agent

    @property
    def reply_pending(self) -> bool:
        return self._pending_reply is not None

    @property
    def sync(self) -> RealtimeSyncClient:
        return self._sync

    def view(self) -> WidgetView:
        return self._project(())

    # ------------------------------------------------------------------
    # Lifecycle

    async def start(self) -> WidgetView:
        """Resume the stored conversation or greet a new visitor."""

        if self._pump is None:
            self._pump = asyncio.create_task(self._pump_inbound(), name="widget-inbox")
        stored = self._session.stored_conversation_id()
        if stored:
            await self._resume(stored)
        else:
            self._show_greeting()
        return self._changed()

    async def retry_resume(self) -> bool:
        if self._resume_pending is None:
            return True
        resumed = await self._resume(self._resume_pending)
        self._changed()
        return resumed

    async def switch_conversation(self, conversation_id: str) -> WidgetView:
        self._withdraw_replies()
        self._delivered.clear()
        await self._sync.unsubscribe()
        self._timeline.replace_all(())
        await self._resume(conversation_id)
        return self._changed()

    async def start_new_conversation(self) -> WidgetView:
        """Forget the current conversation; the next send creates a new one."""

        self._withdraw_replies()
        self._delivered.clear()
        await self._sync.unsubscribe()
        self._session.forget()
        self._resume_pending = None
        self.resume_error = None
        self._timeline.replace_all(())
        self._show_greeting()
        return self._changed()

    async def aclose(self) -> None:
        reply = self._pending_reply
        self._withdraw_replies()
        await self._sync.unsubscribe()
        tasks = [t for t in (self._pump, reply, *self._in_flight.values()) if t]
        for task in tasks:
            task.cancel()
        await asyncio.gather(*tasks, return_exceptions=True)
        self._pump = None
        self._in_flight.clear()

    # ------------------------------------------------------------------
    # User actions

    def dispatch(self, action: WidgetAction | str) -> WidgetView:
        transition = apply_action(
            self._state, WidgetAction(action), auto_focus=self._config.auto_focus
        )
        self._state = transition.state
        if Effect.CANCEL_PENDING_REPLY in transition.effects:
            self._withdraw_replies()
        return self._changed(transition.effects)

    def open(self) -> WidgetView:
        return self.dispatch(WidgetAction.OPEN)

    def close(self) -> WidgetView:
        return self.dispatch(WidgetAction.CLOSE)

    def minimize(self) -> WidgetView:
        return self.dispatch(WidgetAction.MINIMIZE)

    def expand(self) -> WidgetView:
        return self.dispatch(WidgetAction.EXPAND)

    def type(self, text: str) -> WidgetView:
        self._state = edit_compose(self._state, text)
        return self._changed()

    async def update_visitor(
        self, name: str | None = None, email: str | None = None
    ) -> WidgetView:
        visitor = self._identity.update_profile(name, email)
        await self._session.update_visitor(visitor)
        return self._changed()

    async def send(self, text: str | None = None) -> Message | None:
        """Submit the compose buffer (or ``text``) as a visitor message.

        Returns the stored message, or ``None`` when nothing was sent or the
        message ended up ``unsent``.
        """

        if text is not None:
            self._state = edit_compose(self._state, text)
        self._state, body = begin_send(self._state)
        if body is None:
            return None
        local = Message.local(self.visitor.id, body, self._session.conversation_id)
        self._timeline.merge(local)
        self._state = complete_local_append(self._state)
        self._changed()
        try:
            return await self._deliver(local.id)
        finally:
            self._state = finish_send(self._state)
            self._changed()

    async def retry(self, local_id: str) -> Message | None:
        """Deliver a message previously marked ``unsent`` again."""

        if local_id in self._delivered:
            return self._timeline.get(self._delivered[local_id])
        message = self._timeline.get(local_id)
        if message is None or message.delivery is DeliveryStatus.SENT:
            return None
        return await self._deliver(local_id)

    # ------------------------------------------------------------------
    # Inbound events

    def drain(self) -> int:
        """Apply every inbound message queued so far."""

        applied = 0
        while not self._inbox.empty():
            self._apply_inbound(self._inbox.get_nowait())
            applied += 1
        return applied

    async def settle(self) -> None:
        """Wait for the pending reply, then apply queued inbound messages."""

        while self._pending_reply is not None:
            await asyncio.gather(self._pending_reply, return_exceptions=True)
        await asyncio.sleep(0)
        self.drain()

    async def _pump_inbound(self) -> None:
        while True:
            message = await self._inbox.get()
            self._apply_inbound(message)

    def _apply_inbound(self, message: Message) -> None:
        if message.conversation_id != self._session.conversation_id:
            logger.debug("Dropping message %s for inactive conversation", message.id)
            return
        if self._timeline.merge(message):
            self._changed()

    # ------------------------------------------------------------------
    # Delivery

    async def _deliver(self, local_id: str) -> Message | None:
        if local_id in self._delivered:
            return self._timeline.get(self._delivered[local_id])
        future = self._in_flight.get(local_id)
        if future is None:
            future = asyncio.ensure_future(self._persist_visitor_message(local_id))
            self._in_flight[local_id] = future
        try:
            return await asyncio.shield(future)
        finally:
            if future.done() and self._in_flight.get(local_id) is future:
                del self._in_flight[local_id]

    async def _persist_visitor_message(self, local_id: str) -> Message | None:
        local = self._timeline.get(local_id)
        if local is None:
            return None
        epoch = self._reply_epoch
        if local.delivery is DeliveryStatus.UNSENT:
            self._timeline.mark(local_id, DeliveryStatus.PENDING)
            self._changed()
        try:
            if self._resume_pending is not None and not await self.retry_resume():
                raise TransientNetworkError(self.resume_error or "conversation unavailable")
            conversation_id = await self._session.ensure_conversation(
                self._config.department_id
            )
            await self._sync.subscribe(conversation_id, self._inbox)
            stored = await self._messages.append(
                conversation_id,
                local.sender_id,
                local.body,
                sent_at=local.sent_at,
                client_id=local.id,
            )
        except TransientNetworkError as exc:
            logger.warning("Message %s left unsent: %s", local_id, exc)
            self._timeline.mark(local_id, DeliveryStatus.UNSENT)
            self._changed()
            return None
        self._timeline.merge(stored)
        self._delivered[local_id] = stored.id
        self._changed()
        await self._after_persist(conversation_id, stored, epoch)
        return stored

    async def _after_persist(
        self, conversation_id: str, stored: Message, epoch: int
    ) -> None:
        self.drain()
        if self._session.has_human_agent:
            logger.debug(
                "Conversation %s is handled by an agent; no auto-reply", conversation_id
            )
            return
        result = self._classifier.classify(stored.body)
        self.last_classification = result
        department = None
        if result.requires_human or self._config.department_id:
            department = self._router.route(result.category, self._config.department_id)
        self.last_department = department
        if department and result.requires_human:
            await self._assign_department(conversation_id, department)
        branch, text = self._replies.select(result.category, department)
        logger.info(
            "Message %s classified as %s (confidence %d, human=%s, department=%s, reply=%s)",
            stored.id,
            result.category.value,
            result.confidence,
            result.requires_human,
            department,
            branch.value,
        )
        if epoch != self._reply_epoch:
            logger.debug("Auto-reply for %s was withdrawn", stored.id)
            return
        self._schedule_reply(conversation_id, text, epoch)

    async def _assign_department(self, conversation_id: str, department: str) -> None:
        try:
            await self._conversations.assign_department(conversation_id, department)
        except (TransientNetworkError, LookupError) as exc:
            logger.warning(
                "Could not assign conversation %s to %s: %s",
                conversation_id,
                department,
                exc,
            )

    # ------------------------------------------------------------------
    # Canonical reply timer

    def _schedule_reply(self, conversation_id: str, text: str, epoch: int) -> None:
        if self._cancel_pending_reply():
            logger.debug("Replacing pending auto-reply for %s", conversation_id)
        self._state = set_agent_typing(self._state, True)
        self._pending_reply = asyncio.create_task(
            self._send_reply_later(conversation_id, text, epoch),
            name=f"auto-reply:{conversation_id}",
        )
        self._changed()

    def _withdraw_replies(self) -> None:
        """Cancel the pending reply and any reply a message in flight would
        schedule once it is stored."""

        self._reply_epoch += 1
        self._cancel_pending_reply()

    def _cancel_pending_reply(self) -> bool:
        task = self._pending_reply
        if task is None:
            return False
        self._pending_reply = None
        task.cancel()
        self._state = set_agent_typing(self._state, False)
        return True

    async def _send_reply_later(self, conversation_id: str, text: str, epoch: int) -> None:
        try:
            await asyncio.sleep(self._reply_delay)
            if (
                epoch != self._reply_epoch
                or self._session.has_human_agent
                or self._session.conversation_id != conversation_id
            ):
                return
            reply = await self._messages.append(conversation_id, BOT_SENDER_ID, text)
        except TransientNetworkError as exc:
            logger.warning("Auto-reply for %s failed: %s", conversation_id, exc)
            return
        finally:
            if self._pending_reply is asyncio.current_task():
                self._pending_reply = None
                self._state = set_agent_typing(self._state, False)
        self._timeline.merge(reply)
        self._changed()

    # ------------------------------------------------------------------
    # Helpers

    async def _resume(self, conversation_id: str) -> bool:
        try:
            history = await self._session.resume(conversation_id)
        except TransientNetworkError as exc:
            self._resume_pending = conversation_id
            self.resume_error = str(exc) or "history unavailable"
            return False
        self._resume_pending = None
        self.resume_error = None
        unsynced = [m for m in self._timeline.messages() if m.is_local]
        self._timeline.replace_all(history)
        for message in unsynced:
            self._timeline.merge(message)
        await self._sync.subscribe(conversation_id, self._inbox)
        return True

    def _show_greeting(self) -> None:
        self._timeline.merge(
            Message(
                id=WELCOME_MESSAGE_ID,
                conversation_id=None,
                sender_id=BOT_SENDER_ID,
                body=self._config.greeting,
            )
        )

    def _changed(self, effects: tuple[Effect, ...] = ()) -> WidgetView:
        was_handled = self._session.has_human_agent
        if self._session.observe(self._timeline.messages()) and not was_handled:
            self._cancel_pending_reply()
        view = self._project(effects)
        if self.on_render is not None:
            self.on_render(view)
        return view

    def _project(self, effects: tuple[Effect, ...]) -> WidgetView:
        return render(
            self._state,
            self._timeline.messages(),
            self._config,
            self.visitor,
            has_human_agent=self._session.has_human_agent,
            effects=effects,
        )
