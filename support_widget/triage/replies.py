"""Canonical bot replies sent automatically after a visitor message."""

from __future__ import annotations

from collections.abc import Mapping
from enum import Enum

from .classifier import Category


class ReplyBranch(str, Enum):
    GREETING = "greeting"
    FORWARDED = "forwarded"
    ACKNOWLEDGED = "acknowledged"


class CanonicalReplyStore:
    """Select the single automatic reply for a triaged message.

    The branch rule is fixed: greetings get a greeting, messages routed to a
    department are told they are being forwarded, everything else gets a
    generic acknowledgement. Only the texts can be overridden.
    """

    _DEFAULT_REPLIES: Mapping[ReplyBranch, str] = {
        ReplyBranch.GREETING: "Olá! Sou o assistente virtual. Como posso ajudar você hoje?",
        ReplyBranch.FORWARDED: "Estamos encaminhando você para um atendente especializado...",
        ReplyBranch.ACKNOWLEDGED: "Obrigado pelo contato! Um atendente irá responder em breve.",
    }

    def __init__(self, overrides: Mapping[ReplyBranch | str, str] | None = None) -> None:
        self._replies: dict[ReplyBranch, str] = dict(self._DEFAULT_REPLIES)
        for branch, text in (overrides or {}).items():
            if text:
                self._replies[ReplyBranch(branch)] = text

    @staticmethod
    def branch_for(category: Category | str, department_id: str | None) -> ReplyBranch:
        if Category(category) is Category.GREETING:
            return ReplyBranch.GREETING
        if department_id:
            return ReplyBranch.FORWARDED
        return ReplyBranch.ACKNOWLEDGED

    def select(
        self, category: Category | str, department_id: str | None
    ) -> tuple[ReplyBranch, str]:
        branch = self.branch_for(category, department_id)
        return branch, self._replies[branch]
