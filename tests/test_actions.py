from __future__ import annotations

import pytest

from gym_retention.actions import (
    create_action,
    list_actions,
    recommend_actions,
    update_action_status,
)
from gym_retention.errors import NotFoundError, ValidationError
from gym_retention.models import ActionStatus, ActionType, RiskAssessment, RiskFactor

from conftest import NOW, add_assessment, add_member, days_ago


def _assessment(probability: float, *factors: tuple[str, str], tier: str | None = None) -> RiskAssessment:
    if tier is None:
        tier = "high" if probability >= 0.7 else "medium" if probability >= 0.4 else "low"
    return RiskAssessment(
        member_id="m1",
        predicted_at=NOW,
        churn_probability=probability,
        confidence=0.8,
        risk_tier=tier,
        factors=tuple(RiskFactor(kind, f"{kind} signal", impact) for kind, impact in factors),
    )


def test_high_risk_with_attendance_factor_orders_tier_defaults_first() -> None:
    actions = recommend_actions(_assessment(0.85, ("attendance", "high")))

    assert [(a.code, a.priority) for a in actions] == [
        ("call", 1),
        ("attendance_reminder", 1),
        ("discount_offer", 2),
    ]


def test_low_tier_without_factors_yields_single_newsletter() -> None:
    actions = recommend_actions(_assessment(0.1))

    assert len(actions) == 1
    assert actions[0].code == "newsletter"
    assert actions[0].action_type is ActionType.OTHER
    assert actions[0].priority == 3


def test_medium_tier_defaults() -> None:
    actions = recommend_actions(_assessment(0.5))

    assert [a.action_type for a in actions] == [ActionType.MESSAGE, ActionType.FREE_CLASS]


def test_factor_specific_priorities() -> None:
    actions = recommend_actions(
        _assessment(
            0.2,
            ("payment", "medium"),
            ("feedback", "high"),
            ("attendance", "medium"),
            ("other", "high"),
        )
    )
    by_code = {a.code: a.priority for a in actions}

    assert by_code == {"newsletter": 3, "payment_reminder": 2, "feedback_request": 2}
    assert [a.code for a in actions] == ["payment_reminder", "feedback_request", "newsletter"]


def test_repeated_factor_keeps_most_urgent_priority() -> None:
    actions = recommend_actions(_assessment(0.2, ("payment", "low"), ("payment", "high")))

    reminders = [a for a in actions if a.code == "payment_reminder"]
    assert len(reminders) == 1
    assert reminders[0].priority == 1


def test_recommendations_are_deterministic_and_sorted() -> None:
    assessment = _assessment(0.75, ("payment", "high"), ("feedback", "low"), ("attendance", "high"))

    first = recommend_actions(assessment)
    second = recommend_actions(assessment)

    assert first == second
    priorities = [a.priority for a in first]
    assert priorities == sorted(priorities)


def test_recommendation_uses_threshold_tier_when_label_drifts() -> None:
    actions = recommend_actions(_assessment(0.85, tier="low"))

    assert [a.code for a in actions] == ["call", "discount_offer"]


def test_create_and_progress_action(store) -> None:
    add_member(store, "m1")
    assessment = add_assessment(store, "m1", 0.8, days_ago(1))

    action = create_action(
        store, "m1", "call", "Call about schedule", NOW, assessment_id=assessment.id, priority=1
    )
    assert action.status is ActionStatus.PENDING
    assert action.completed_at is None

    started = update_action_status(store, action.id, "in_progress", NOW)
    assert started.status is ActionStatus.IN_PROGRESS
    assert started.completed_at is None

    done = update_action_status(store, action.id, "completed", NOW)
    assert done.status is ActionStatus.COMPLETED
    assert done.completed_at == NOW
    assert store.get_action(action.id) == done


def test_terminal_actions_reject_transitions(store) -> None:
    add_member(store, "m1")
    action = create_action(store, "m1", "message", "Weekly check-in", NOW)
    update_action_status(store, action.id, "cancelled", NOW)

    with pytest.raises(ValidationError):
        update_action_status(store, action.id, "in_progress", NOW)


def test_pending_action_cannot_skip_to_completed(store) -> None:
    add_member(store, "m1")
    action = create_action(store, "m1", "message", "Weekly check-in", NOW)

    with pytest.raises(ValidationError) as excinfo:
        update_action_status(store, action.id, "completed", NOW)
    assert excinfo.value.field == "status"


def test_reapplying_current_status_is_a_no_op(store) -> None:
    add_member(store, "m1")
    action = create_action(store, "m1", "discount", "10% off", NOW)

    assert update_action_status(store, action.id, "pending", NOW) == action


def test_create_action_validates_inputs(store) -> None:
    add_member(store, "m1")

    with pytest.raises(ValidationError) as excinfo:
        create_action(store, "m1", "carrier_pigeon", "Send a bird", NOW)
    assert excinfo.value.field == "action_type"

    with pytest.raises(NotFoundError):
        create_action(store, "ghost", "call", "Call", NOW)

    with pytest.raises(NotFoundError):
        create_action(store, "m1", "call", "Call", NOW, assessment_id="missing")


def test_update_unknown_action_is_not_found(store) -> None:
    with pytest.raises(NotFoundError):
        update_action_status(store, "missing", "completed", NOW)


def test_list_actions_filters_by_status(store) -> None:
    add_member(store, "m1")
    first = create_action(store, "m1", "call", "Call", days_ago(2))
    create_action(store, "m1", "message", "Message", days_ago(1))
    update_action_status(store, first.id, "cancelled", NOW)

    assert [a.description for a in list_actions(store, member_id="m1")] == ["Message", "Call"]
    assert [a.id for a in list_actions(store, status="cancelled")] == [first.id]


def test_completed_action_cannot_be_cancelled(store) -> None:
    add_member(store, "m1")
    action = create_action(store, "m1", "call", "Call", NOW)
    update_action_status(store, action.id, "in_progress", NOW)
    update_action_status(store, action.id, "completed", NOW)

    with pytest.raises(ValidationError) as excinfo:
        update_action_status(store, action.id, "cancelled", NOW)
    assert excinfo.value.constraint == "action is already completed"
    assert store.get_action(action.id).status is ActionStatus.COMPLETED
