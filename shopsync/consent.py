"""Analytics consent gate.

Tracking operations (history, cart timeline, product interactions,
time-to-action) consult the gate before touching state. Consent starts as
``pending`` and can only move to ``accepted`` or ``declined``.
"""

from typing import Any, Callable

from .types import ConsentState


def parse_consent(value: Any) -> ConsentState:
    """Parse a user-supplied consent value.

    Raises:
        ValueError: For anything other than ``accepted`` or ``declined``.
    """
    if isinstance(value, ConsentState):
        state = value
    else:
        try:
            state = ConsentState(str(value).strip().lower())
        except ValueError:
            raise ValueError(f"Unknown consent value: {value!r}") from None
    if state is ConsentState.PENDING:
        raise ValueError("Consent cannot be reset to pending")
    return state


class ConsentGate:
    """Predicate over the consent flag held by a store."""

    def __init__(
        self,
        get_state: Callable[[], ConsentState],
        set_state: Callable[[ConsentState], None],
    ):
        self._get_state = get_state
        self._set_state = set_state

    @property
    def state(self) -> ConsentState:
        return self._get_state()

    def is_tracking_enabled(self) -> bool:
        return self._get_state() is ConsentState.ACCEPTED

    def set_consent(self, value: Any) -> ConsentState:
        state = parse_consent(value)
        self._set_state(state)
        return state
