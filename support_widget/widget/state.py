"""Widget UI state machine.

The state is an immutable value owned by one widget instance. Every user
action is a pure function ``state -> Transition`` where the transition carries
the next state plus the side effects the host must perform::

    closed --open--> open-expanded <--minimize/expand--> open-minimized
       ^                   |                                  |
       +-------close-------+---------------close--------------+

Actions that do not apply to the current state return the state unchanged
and no effects.
"""

from __future__ import annotations

from dataclasses import dataclass, replace
from enum import Enum


class WidgetMode(str, Enum):
    CLOSED = "closed"
    EXPANDED = "open-expanded"
    MINIMIZED = "open-minimized"


class WidgetAction(str, Enum):
    OPEN = "open"
    CLOSE = "close"
    MINIMIZE = "minimize"
    EXPAND = "expand"
    TOGGLE = "toggle"
    TOGGLE_MINIMIZE = "toggle-minimize"


class Effect(str, Enum):
    FOCUS_INPUT = "focus_input"
    CANCEL_PENDING_REPLY = "cancel_pending_reply"


@dataclass(frozen=True)
class WidgetUIState:
    mode: WidgetMode = WidgetMode.CLOSED
    compose_buffer: str = ""
    is_sending: bool = False
    is_agent_typing: bool = False
    has_expanded: bool = False

    @property
    def is_open(self) -> bool:
        return self.mode is not WidgetMode.CLOSED

    @property
    def is_minimized(self) -> bool:
        return self.mode is WidgetMode.MINIMIZED

    @property
    def can_send(self) -> bool:
        return bool(self.compose_buffer.strip()) and not self.is_sending


@dataclass(frozen=True)
class Transition:
    state: WidgetUIState
    effects: tuple[Effect, ...] = ()


def _expand(state: WidgetUIState, auto_focus: bool) -> Transition:
    effects: tuple[Effect, ...] = ()
    if auto_focus and not state.has_expanded:
        effects = (Effect.FOCUS_INPUT,)
    return Transition(replace(state, mode=WidgetMode.EXPANDED, has_expanded=True), effects)


def open_widget(state: WidgetUIState, *, auto_focus: bool = False) -> Transition:
    if state.is_open:
        return Transition(state)
    return _expand(state, auto_focus)


def close_widget(state: WidgetUIState) -> Transition:
    if not state.is_open:
        return Transition(state)
    closed = replace(state, mode=WidgetMode.CLOSED, is_agent_typing=False)
    return Transition(closed, (Effect.CANCEL_PENDING_REPLY,))


def minimize(state: WidgetUIState) -> Transition:
    if state.mode is not WidgetMode.EXPANDED:
        return Transition(state)
    return Transition(replace(state, mode=WidgetMode.MINIMIZED))


def expand(state: WidgetUIState, *, auto_focus: bool = False) -> Transition:
    if state.mode is not WidgetMode.MINIMIZED:
        return Transition(state)
    return _expand(state, auto_focus)


def toggle(state: WidgetUIState, *, auto_focus: bool = False) -> Transition:
    """Launcher button: open expanded when closed, close otherwise."""

    if state.is_open:
        return close_widget(state)
    return open_widget(state, auto_focus=auto_focus)


def toggle_minimize(state: WidgetUIState, *, auto_focus: bool = False) -> Transition:
    if state.mode is WidgetMode.EXPANDED:
        return minimize(state)
    return expand(state, auto_focus=auto_focus)


def apply_action(
    state: WidgetUIState, action: WidgetAction, *, auto_focus: bool = False
) -> Transition:
    if action is WidgetAction.OPEN:
        return open_widget(state, auto_focus=auto_focus)
    if action is WidgetAction.CLOSE:
        return close_widget(state)
    if action is WidgetAction.MINIMIZE:
        return minimize(state)
    if action is WidgetAction.EXPAND:
        return expand(state, auto_focus=auto_focus)
    if action is WidgetAction.TOGGLE:
        return toggle(state, auto_focus=auto_focus)
    return toggle_minimize(state, auto_focus=auto_focus)


# ----------------------------------------------------------------------
# Compose and send


def edit_compose(state: WidgetUIState, text: str) -> WidgetUIState:
    return replace(state, compose_buffer=text)


def begin_send(state: WidgetUIState) -> tuple[WidgetUIState, str | None]:
    """Claim the compose buffer for sending.

    Returns the trimmed text, or ``None`` when there is nothing to send or a
    send is already in flight.
    """

    if not state.can_send:
        return state, None
    return replace(state, is_sending=True), state.compose_buffer.strip()


def complete_local_append(state: WidgetUIState) -> WidgetUIState:
    return replace(state, compose_buffer="")


def finish_send(state: WidgetUIState) -> WidgetUIState:
    return replace(state, is_sending=False)


def set_agent_typing(state: WidgetUIState, typing: bool) -> WidgetUIState:
    if state.is_agent_typing == typing:
        return state
    return replace(state, is_agent_typing=typing)
