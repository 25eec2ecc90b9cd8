"""Keyword based triage of visitor messages.

Classification walks an ordered rule table. The first rule with a keyword
present in the text decides the category; text that matches nothing falls
into ``other``. Keywords are case-insensitive stems anchored at the start of
a word, so "problema" also matches "problemas" and "matricula" matches
"matriculado". Keywords of three characters or fewer must match a whole
word: "oi" matches "Oi, tudo bem?" but neither "depois" nor "oito".

Escalation to a human is decided independently of the category. It is
required when the rule asks for it, when the raw message is longer than
200 characters, or when the visitor explicitly asks for a person.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field
from enum import Enum


class Category(str, Enum):
    GREETING = "greeting"
    COURSE_INQUIRY = "course_inquiry"
    FINANCIAL_INQUIRY = "financial_inquiry"
    ENROLLMENT_INQUIRY = "enrollment_inquiry"
    CONTACT_REQUEST = "contact_request"
    COMPLAINT = "complaint"
    COMPLIMENT = "compliment"
    OTHER = "other"


LONG_MESSAGE_THRESHOLD = 200

HUMAN_REQUEST_PHRASES: tuple[str, ...] = (
    "falar com humano",
    "falar com um humano",
    "falar com uma pessoa",
    "atendente",
    "gerente",
)


# Keywords this short only match as whole words.
SHORT_KEYWORD_LENGTH = 3


def _keyword_alternative(keyword: str) -> str:
    escaped = re.escape(keyword.casefold())
    if len(keyword) <= SHORT_KEYWORD_LENGTH:
        return escaped + r"(?!\w)"
    return escaped


def _keyword_pattern(keywords: tuple[str, ...]) -> re.Pattern[str]:
    if not keywords:
        return re.compile(r"(?!x)x")
    alternatives = "|".join(
        _keyword_alternative(k) for k in sorted(keywords, key=len, reverse=True)
    )
    return re.compile(rf"(?<!\w)(?:{alternatives})")


@dataclass(frozen=True)
class CategoryRule:
    category: Category
    keywords: tuple[str, ...]
    confidence: int
    suggested_replies: tuple[str, str, str]
    requires_human: bool = False
    pattern: re.Pattern[str] = field(init=False, repr=False, compare=False)

    def __post_init__(self) -> None:
        object.__setattr__(self, "pattern", _keyword_pattern(self.keywords))

    def match(self, normalized: str) -> str | None:
        found = self.pattern.search(normalized)
        return found.group(0) if found else None


@dataclass(frozen=True)
class ClassificationResult:
    category: Category
    confidence: int
    suggested_replies: tuple[str, ...]
    requires_human: bool
    matched_keyword: str | None = None


CATEGORY_RULES: tuple[CategoryRule, ...] = (
    CategoryRule(
        Category.GREETING,
        ("olá", "ola", "oi", "bom dia", "boa tarde", "boa noite"),
        90,
        (
            "Olá! Como posso ajudar você hoje?",
            "Bem-vindo! Em que posso ser útil?",
            "Olá! Estou aqui para ajudar com informações sobre nossos cursos e serviços.",
        ),
    ),
    CategoryRule(
        Category.COURSE_INQUIRY,
        ("curso", "cursos", "disciplina", "disciplinas", "aula", "aulas", "estudar"),
        75,
        (
            "Temos diversos cursos disponíveis. Qual área específica lhe interessa?",
            "Posso enviar um catálogo completo dos nossos cursos. Você tem preferência por alguma área?",
            "Nossos cursos mais populares são na área de Tecnologia e Gestão. Gostaria de saber mais sobre algum deles?",
        ),
    ),
    CategoryRule(
        Category.FINANCIAL_INQUIRY,
        ("pagar", "pagamento", "boleto", "preço", "preco", "valor", "desconto"),
        65,
        (
            "Oferecemos diversos planos de pagamento. Posso detalhar as opções para você.",
            "Temos condições especiais este mês com até 30% de desconto em cursos selecionados.",
            "Além do pagamento à vista, oferecemos parcelamento em até 12x sem juros.",
        ),
    ),
    CategoryRule(
        Category.ENROLLMENT_INQUIRY,
        ("matricular", "matrícula", "matricula", "inscrever", "inscrição", "inscricao", "começar", "comecar"),
        70,
        (
            "Para realizar sua matrícula, preciso dos seguintes documentos: RG, CPF e comprovante de residência.",
            "O processo de matrícula é simples e pode ser feito 100% online.",
            "Posso iniciar seu processo de matrícula agora mesmo. Você já escolheu o curso?",
        ),
    ),
    CategoryRule(
        Category.CONTACT_REQUEST,
        ("atendente", "falar com", "humano", "contato"),
        85,
        (
            "Vou transferir seu atendimento para um consultor especializado imediatamente.",
            "Entendi que você prefere falar com um atendente humano. Vou providenciar isso agora mesmo.",
            "Um de nossos consultores entrará em contato com você em instantes.",
        ),
        requires_human=True,
    ),
    CategoryRule(
        Category.COMPLAINT,
        ("problema", "ruim", "insatisfeito", "insatisfeita", "erro", "não consegui", "nao consegui"),
        60,
        (
            "Lamento pelo ocorrido. Vamos resolver isso o mais rápido possível.",
            "Pedimos desculpas pelo inconveniente. Poderia detalhar melhor o problema para que possamos ajudar?",
            "Sua satisfação é nossa prioridade. Vamos trabalhar para resolver essa situação.",
        ),
        requires_human=True,
    ),
    CategoryRule(
        Category.COMPLIMENT,
        ("bom", "gostei", "parabéns", "parabens", "obrigado", "obrigada", "ótimo", "otimo"),
        85,
        (
            "Muito obrigado pelo feedback positivo! Ficamos felizes em poder ajudar.",
            "Agradecemos suas palavras! É gratificante saber que estamos no caminho certo.",
            "Que bom que tivemos a oportunidade de lhe proporcionar uma boa experiência!",
        ),
    ),
)

FALLBACK_RULE = CategoryRule(
    Category.OTHER,
    (),
    40,
    (
        "Como posso ajudar você hoje?",
        "Gostaria de informações sobre nossos cursos?",
        "Posso auxiliar com dúvidas sobre matrícula ou pagamentos.",
    ),
)


class MessageClassifier:
    """Evaluate an ordered rule table against visitor text.

    ``classify`` is total: any input, including ``None`` and blank strings,
    yields exactly one :class:`ClassificationResult`.
    """

    def __init__(
        self,
        rules: tuple[CategoryRule, ...] = CATEGORY_RULES,
        *,
        fallback: CategoryRule = FALLBACK_RULE,
        human_phrases: tuple[str, ...] = HUMAN_REQUEST_PHRASES,
        long_message_threshold: int = LONG_MESSAGE_THRESHOLD,
    ) -> None:
        self._rules = rules
        self._fallback = fallback
        self._human_pattern = _keyword_pattern(human_phrases)
        self._long_message_threshold = long_message_threshold

    def classify(self, text: str | None) -> ClassificationResult:
        raw = "" if text is None else str(text)
        normalized = raw.strip().casefold()
        rule, keyword = self._fallback, None
        if normalized:
            for candidate in self._rules:
                keyword = candidate.match(normalized)
                if keyword is not None:
                    rule = candidate
                    break
        return ClassificationResult(
            category=rule.category,
            confidence=rule.confidence,
            suggested_replies=rule.suggested_replies,
            requires_human=self._requires_human(rule, raw, normalized),
            matched_keyword=keyword,
        )

    def _requires_human(self, rule: CategoryRule, raw: str, normalized: str) -> bool:
        if rule.requires_human:
            return True
        if len(raw) > self._long_message_threshold:
            return True
        return self._human_pattern.search(normalized) is not None


_default_classifier = MessageClassifier()


def classify(text: str | None) -> ClassificationResult:
    return _default_classifier.classify(text)
