from __future__ import annotations

from datetime import datetime, timezone

import pytest

from gym_retention.errors import ValidationError
from gym_retention.models import (
    ActionType,
    FeedbackRecord,
    Level,
    ModelMetricsSnapshot,
    PaymentRecord,
    RiskAssessment,
    elapsed_days,
    to_utc,
)

from conftest import NOW, days_ago


def test_choice_parse_is_case_insensitive_and_closed() -> None:
    assert ActionType.parse(" Free_Class ") is ActionType.FREE_CLASS
    assert str(Level.HIGH) == "high"
    with pytest.raises(ValidationError) as excinfo:
        ActionType.parse("sms", "action_type")
    assert excinfo.value.field == "action_type"


def test_timestamps_are_normalized_to_utc() -> None:
    assert to_utc("2024-09-28 12:00") == NOW
    assert to_utc("2024-09-28T09:00:00-03:00") == NOW
    assert to_utc(datetime(2024, 9, 28, 12, 0)).tzinfo is not None
    with pytest.raises(ValidationError):
        to_utc("not a date")


def test_elapsed_days_floors_partial_days() -> None:
    assert elapsed_days(days_ago(2.9), NOW) == 2
    assert elapsed_days(NOW, NOW) == 0


def test_paid_at_must_match_paid_status() -> None:
    with pytest.raises(ValidationError):
        PaymentRecord(member_id="m1", amount=10, due_date=NOW, status="paid")
    with pytest.raises(ValidationError):
        PaymentRecord(member_id="m1", amount=10, due_date=NOW, status="pending", paid_at=NOW)

    paid = PaymentRecord(member_id="m1", amount=10, due_date=NOW, status="paid", paid_at=NOW)
    assert paid.paid_at == NOW


@pytest.mark.parametrize("rating", [0, 6, 3.5, True])
def test_feedback_rating_is_integer_between_one_and_five(rating: object) -> None:
    with pytest.raises(ValidationError):
        FeedbackRecord(member_id="m1", rating=rating, timestamp=NOW)  # type: ignore[arg-type]


def test_feedback_accepts_integer_valued_float() -> None:
    assert FeedbackRecord(member_id="m1", rating=4.0, timestamp=NOW).rating == 4  # type: ignore[arg-type]


def test_assessment_rejects_unknown_factor_type() -> None:
    with pytest.raises(ValidationError):
        RiskAssessment(
            member_id="m1",
            predicted_at=NOW,
            churn_probability=0.5,
            confidence=0.5,
            risk_tier="medium",
            factors=({"type": "weather", "description": "rain", "impact": "low"},),
        )


def test_metrics_feature_importance_sums_to_at_most_one() -> None:
    with pytest.raises(ValidationError):
        ModelMetricsSnapshot(
            evaluated_at=datetime.now(timezone.utc),
            accuracy=0.5,
            precision=0.5,
            recall=0.5,
            f1=0.5,
            feature_importance={"attendance": 0.8, "payment": 0.4},
            total_predictions=4,
        )
