"""Widget initialisation options and engine settings."""

from __future__ import annotations

import logging
import os
from collections.abc import Mapping
from dataclasses import dataclass
from typing import Any, Literal

from pydantic import BaseModel, ConfigDict, Field, ValidationError, field_validator

from .errors import ConfigurationError

logger = logging.getLogger(__name__)

DEFAULT_GREETING = "Olá! Como posso ajudar você hoje?"


class WidgetConfig(BaseModel):
    """Options recognised when a widget instance is initialised.

    Keys are accepted in the embed snippet's camelCase form (``primaryColor``)
    as well as snake_case.
    """

    model_config = ConfigDict(populate_by_name=True, frozen=True, extra="ignore")

    title: str = Field(min_length=1)
    subtitle: str = "Estamos online e prontos para ajudar"
    primary_color: str = Field(default="#2563EB", alias="primaryColor")
    logo_url: str | None = Field(default=None, alias="logoUrl")
    position: Literal["bottom-right", "bottom-left"] = "bottom-right"
    greeting: str = DEFAULT_GREETING
    department_id: str | None = Field(default=None, alias="departmentId")
    auto_focus: bool = Field(default=False, alias="autoFocus")

    @field_validator("title", "greeting")
    @classmethod
    def _not_blank(cls, value: str) -> str:
        if not value.strip():
            raise ValueError("must not be blank")
        return value.strip()

    @field_validator("primary_color")
    @classmethod
    def _hex_color(cls, value: str) -> str:
        digits = value[1:] if value.startswith("#") else ""
        if len(digits) not in (3, 6) or any(c not in "0123456789abcdefABCDEF" for c in digits):
            raise ValueError("must be a #rgb or #rrggbb colour")
        return value

    @field_validator("department_id")
    @classmethod
    def _blank_department(cls, value: str | None) -> str | None:
        if value is None or not value.strip():
            return None
        return value.strip()

    @classmethod
    def from_options(
        cls, options: Mapping[str, Any], defaults: Mapping[str, Any] | None = None
    ) -> "WidgetConfig":
        """Validate init options, raising :class:`ConfigurationError`."""

        merged: dict[str, Any] = {**(defaults or {}), **dict(options)}
        try:
            return cls.model_validate(merged)
        except ValidationError as exc:
            problems = "; ".join(
                f"{'.'.join(str(p) for p in err['loc']) or 'options'}: {err['msg']}"
                for err in exc.errors()
            )
            logger.error("Invalid widget configuration: %s", problems)
            raise ConfigurationError(problems) from exc

    @classmethod
    def env_defaults(cls) -> dict[str, Any]:
        """Default options taken from ``WIDGET_*`` environment variables."""

        env_map = {
            "title": "WIDGET_TITLE",
            "subtitle": "WIDGET_SUBTITLE",
            "primaryColor": "WIDGET_PRIMARY_COLOR",
            "logoUrl": "WIDGET_LOGO_URL",
            "position": "WIDGET_POSITION",
            "greeting": "WIDGET_GREETING",
            "departmentId": "WIDGET_DEPARTMENT_ID",
        }
        defaults: dict[str, Any] = {
            key: os.environ[var] for key, var in env_map.items() if os.getenv(var)
        }
        auto_focus = os.getenv("WIDGET_AUTO_FOCUS")
        if auto_focus:
            defaults["autoFocus"] = auto_focus.lower() == "true"
        return defaults


@dataclass(frozen=True)
class EngineSettings:
    """Process-wide engine settings read from the environment."""

    reply_delay: float = 1.0
    resubscribe_delay: float = 1.0
    resubscribe_max_delay: float = 30.0
    resubscribe_warn_threshold: int = 3
    store_backend: str = "memory"
    database_url: str | None = None
    max_message_length: int = 5000
    session_idle_ttl: float = 1800.0

    @classmethod
    def from_env(cls) -> "EngineSettings":
        backend = os.getenv("WIDGET_STORE_BACKEND", "memory").lower()
        database_url = os.getenv("DATABASE_URL")
        if backend not in {"memory", "postgres"}:
            raise ConfigurationError(f"Unknown WIDGET_STORE_BACKEND '{backend}'")
        if backend == "postgres" and not database_url:
            raise ConfigurationError("DATABASE_URL is required for the postgres backend")
        return cls(
            reply_delay=float(os.getenv("AUTO_REPLY_DELAY_SECONDS", "1.0")),
            resubscribe_delay=float(os.getenv("RESUBSCRIBE_DELAY_SECONDS", "1.0")),
            resubscribe_max_delay=float(os.getenv("RESUBSCRIBE_MAX_DELAY_SECONDS", "30")),
            resubscribe_warn_threshold=int(os.getenv("RESUBSCRIBE_WARN_THRESHOLD", "3")),
            store_backend=backend,
            database_url=database_url,
            max_message_length=int(os.getenv("CHAT_MAX_MESSAGE_LENGTH", "5000")),
            session_idle_ttl=float(os.getenv("WIDGET_SESSION_IDLE_SECONDS", "1800")),
        )
