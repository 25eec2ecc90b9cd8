"""Widget UI state machine and render projection."""

from .render import WidgetView, render
from .state import Effect, Transition, WidgetAction, WidgetMode, WidgetUIState

__all__ = [
    "Effect",
    "Transition",
    "WidgetAction",
    "WidgetMode",
    "WidgetUIState",
    "WidgetView",
    "render",
]
