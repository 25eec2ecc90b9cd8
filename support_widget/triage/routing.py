"""Map triage categories to the department queue that should handle them."""

from __future__ import annotations

from collections.abc import Mapping

from .classifier import Category

DEFAULT_DEPARTMENTS: Mapping[Category, str] = {
    Category.COURSE_INQUIRY: "academico",
    Category.FINANCIAL_INQUIRY: "financeiro",
    Category.ENROLLMENT_INQUIRY: "secretaria",
    Category.CONTACT_REQUEST: "atendimento",
    Category.COMPLAINT: "ouvidoria",
}


class DepartmentRouter:
    """Resolve the department for a classified message.

    An explicit override (the widget's configured department) always wins.
    Categories missing from the table go to the general queue, represented
    by ``None``.
    """

    def __init__(self, table: Mapping[Category | str, str] | None = None) -> None:
        source = DEFAULT_DEPARTMENTS if table is None else table
        self._table: dict[Category, str] = {
            Category(key): value for key, value in source.items() if value
        }

    def route(
        self, category: Category | str, explicit_override: str | None = None
    ) -> str | None:
        if explicit_override and explicit_override.strip():
            return explicit_override.strip()
        return self._table.get(Category(category))
