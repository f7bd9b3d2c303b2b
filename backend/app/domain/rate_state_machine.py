from __future__ import annotations

from typing import Dict, Literal


ApprovalState = Literal["draft", "pending", "approved", "rejected", "expired"]


_ALLOWED_TRANSITIONS = {
    "draft": {"pending"},
    "pending": {"approved", "rejected"},
    "approved": {"expired"},
    # a rejected rate goes back through review after being edited
    "rejected": {"pending"},
    "expired": set(),
}

_ACTION_TARGETS: Dict[str, str] = {
    "submit": "pending",
    "approve": "approved",
    "reject": "rejected",
    "expire": "expired",
}

DELETABLE_STATES = {"draft", "rejected"}

# Fields whose change on an approved rate sends it back to review.
MATERIAL_FIELDS = {
    "base_pricing",
    "room_types",
    "validity_period",
    "booking_window",
    "stay_restrictions",
    "channels",
    "properties",
}


class RateStateTransitionError(ValueError):
    """Raised when an invalid approval state transition is requested."""

    def __init__(self, current: str, target: str) -> None:
        super().__init__(f"Invalid rate state transition: {current} -> {target}")
        self.current = current
        self.target = target


def target_for_action(action: str) -> str:
    try:
        return _ACTION_TARGETS[action]
    except KeyError:
        raise ValueError(f"Unknown transition action: {action}")


def validate_transition(current: str, target: str) -> None:
    """Validate that a transition from current -> target is allowed.

    Raises RateStateTransitionError if not allowed.
    """

    allowed = _ALLOWED_TRANSITIONS.get(current, set())
    if target not in allowed:
        raise RateStateTransitionError(current=current, target=target)


def is_deletable(current: str) -> bool:
    return current in DELETABLE_STATES


def is_material_change(fields: set[str]) -> bool:
    return bool(fields & MATERIAL_FIELDS)
