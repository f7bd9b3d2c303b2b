from __future__ import annotations

import pytest

from app.domain.rate_state_machine import (
    RateStateTransitionError,
    is_deletable,
    is_material_change,
    target_for_action,
    validate_transition,
)


@pytest.mark.parametrize(
    "current,target",
    [
        ("draft", "pending"),
        ("pending", "approved"),
        ("pending", "rejected"),
        ("rejected", "pending"),
        ("approved", "expired"),
    ],
)
def test_allowed_transitions(current: str, target: str) -> None:
    validate_transition(current, target)


@pytest.mark.parametrize(
    "current,target",
    [
        ("draft", "approved"),
        ("approved", "pending"),
        ("expired", "pending"),
        ("rejected", "approved"),
    ],
)
def test_invalid_transitions_raise(current: str, target: str) -> None:
    with pytest.raises(RateStateTransitionError) as exc:
        validate_transition(current, target)
    assert exc.value.current == current
    assert exc.value.target == target


def test_actions_map_to_states() -> None:
    assert target_for_action("submit") == "pending"
    assert target_for_action("approve") == "approved"
    with pytest.raises(ValueError):
        target_for_action("publish")


def test_deletable_and_material() -> None:
    assert is_deletable("draft")
    assert is_deletable("rejected")
    assert not is_deletable("approved")
    assert is_material_change({"rate_name", "base_pricing"})
    assert not is_material_change({"rate_name", "description", "tags"})
