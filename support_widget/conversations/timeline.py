"""Ordered, de-duplicated message list rendered by the widget."""

from __future__ import annotations

import bisect
import itertools
from collections.abc import Iterable, Iterator
from dataclasses import replace
from datetime import datetime

from .models import DeliveryStatus, Message


class MessageTimeline:
    """Single append path for both local sends and inbound events.

    Every mutation is synchronous, so two coroutines on the same event loop
    cannot interleave inside ``merge``. Entries are kept sorted by
    ``(sent_at, arrival order)``.
    """

    def __init__(self, messages: Iterable[Message] = ()) -> None:
        self._entries: list[tuple[datetime, int, str]] = []
        self._by_id: dict[str, Message] = {}
        self._seq = itertools.count()
        for message in messages:
            self.merge(message)

    def __len__(self) -> int:
        return len(self._entries)

    def __contains__(self, message_id: object) -> bool:
        return message_id in self._by_id

    def __iter__(self) -> Iterator[Message]:
        return iter(self.messages())

    def get(self, message_id: str) -> Message | None:
        return self._by_id.get(message_id)

    def messages(self) -> list[Message]:
        return [self._by_id[message_id] for _, _, message_id in self._entries]

    def merge(self, message: Message) -> bool:
        """Insert ``message`` or reconcile it with a copy already present.

        Returns ``True`` when the visible list changed.
        """

        existing = self._by_id.get(message.id)
        if existing is not None:
            if existing == message:
                return False
            self._by_id[message.id] = message
            return True
        if message.client_id and message.client_id != message.id:
            local = self._by_id.get(message.client_id)
            if local is not None:
                seq = self._remove(message.client_id)
                self._insert(message, seq)
                return True
        self._insert(message, next(self._seq))
        return True

    def mark(self, message_id: str, delivery: DeliveryStatus) -> Message | None:
        message = self._by_id.get(message_id)
        if message is None:
            return None
        updated = replace(message, delivery=delivery)
        self._by_id[message_id] = updated
        return updated

    def discard(self, message_id: str) -> None:
        if message_id in self._by_id:
            self._remove(message_id)

    def replace_all(self, messages: Iterable[Message]) -> None:
        self._entries.clear()
        self._by_id.clear()
        for message in messages:
            self.merge(message)

    def _insert(self, message: Message, seq: int) -> None:
        bisect.insort(self._entries, (message.sent_at, seq, message.id))
        self._by_id[message.id] = message

    def _remove(self, message_id: str) -> int:
        for index, (_, seq, entry_id) in enumerate(self._entries):
            if entry_id == message_id:
                del self._entries[index]
                del self._by_id[message_id]
                return seq
        raise KeyError(message_id)
