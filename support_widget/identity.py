"""Anonymous visitor identity management."""

from __future__ import annotations

import logging
from uuid import uuid4

from .conversations.models import VisitorIdentity
from .stores.base import KeyValueStore, StorageUnavailableError

logger = logging.getLogger(__name__)

VISITOR_ID_KEY = "support_widget.visitor_id"


def mint_visitor_id() -> str:
    return f"visitor_{uuid4().hex}"


class VisitorIdentityManager:
    """Mint and persist the opaque id that identifies a visitor.

    The id is written once and reused on every reload. When durable storage is
    unavailable the manager falls back to an id that only lives as long as
    this instance.
    """

    def __init__(self, storage: KeyValueStore | None) -> None:
        self._storage = storage
        self._identity: VisitorIdentity | None = None
        self.ephemeral = False

    @property
    def identity(self) -> VisitorIdentity | None:
        return self._identity

    def get_or_create(self) -> VisitorIdentity:
        if self._identity is not None:
            return self._identity
        visitor_id = self._load_or_mint()
        self._identity = VisitorIdentity(id=visitor_id)
        return self._identity

    def update_profile(
        self, name: str | None = None, email: str | None = None
    ) -> VisitorIdentity:
        identity = self.get_or_create()
        if name:
            identity.name = name.strip() or identity.name
        if email:
            identity.email = email.strip() or identity.email
        return identity

    def _load_or_mint(self) -> str:
        if self._storage is None:
            return self._fallback("no durable storage configured")
        try:
            stored = self._storage.get(VISITOR_ID_KEY)
            if stored:
                return stored
            visitor_id = mint_visitor_id()
            self._storage.set(VISITOR_ID_KEY, visitor_id)
            return visitor_id
        except (StorageUnavailableError, OSError) as exc:
            return self._fallback(str(exc))

    def _fallback(self, reason: str) -> str:
        self.ephemeral = True
        visitor_id = mint_visitor_id()
        logger.warning(
            "Visitor storage unavailable (%s); using session-scoped id %s",
            reason,
            visitor_id,
        )
        return visitor_id
