from __future__ import annotations

from datetime import datetime, timedelta, timezone

import pytest

from gym_retention.models import (
    AttendanceEvent,
    FeedbackRecord,
    Member,
    MemberStatus,
    PaymentRecord,
    PaymentStatus,
    RiskAssessment,
)
from gym_retention.scoring import ScoreResult
from gym_retention.store import FrameStore

NOW = datetime(2024, 9, 28, 12, 0, tzinfo=timezone.utc)


def days_ago(days: float) -> datetime:
    return NOW - timedelta(days=days)


class FakeScorer:
    """Deterministic scorer keyed by member id."""

    def __init__(self, results: dict[str, ScoreResult] | None = None) -> None:
        self.results = results or {}
        self.calls: list[str] = []

    def score_member(self, member_id: str) -> ScoreResult:
        self.calls.append(member_id)
        if member_id not in self.results:
            raise RuntimeError("scoring backend timed out")
        return self.results[member_id]


@pytest.fixture
def now() -> datetime:
    return NOW


@pytest.fixture
def store() -> FrameStore:
    return FrameStore()


def add_member(
    store: FrameStore, member_id: str, name: str | None = None, status: str = "active"
) -> Member:
    return store.add_member(
        Member(id=member_id, name=name or f"Member {member_id}", status=MemberStatus.parse(status))
    )


def add_visit(store: FrameStore, member_id: str, when: datetime) -> AttendanceEvent:
    return store.add_attendance(AttendanceEvent(member_id=member_id, timestamp=when))


def add_payment(
    store: FrameStore, member_id: str, amount: float, due: datetime, status: str = "pending"
) -> PaymentRecord:
    parsed = PaymentStatus.parse(status)
    paid_at = due if parsed is PaymentStatus.PAID else None
    return store.add_payment(
        PaymentRecord(member_id=member_id, amount=amount, due_date=due, status=parsed, paid_at=paid_at)
    )


def add_feedback(store: FrameStore, member_id: str, rating: int, when: datetime) -> FeedbackRecord:
    return store.add_feedback(FeedbackRecord(member_id=member_id, rating=rating, timestamp=when))


def add_assessment(
    store: FrameStore,
    member_id: str,
    probability: float,
    predicted_at: datetime,
    tier: str | None = None,
    factors: tuple = (),
) -> RiskAssessment:
    if tier is None:
        tier = "high" if probability >= 0.7 else "medium" if probability >= 0.4 else "low"
    return store.add_assessment(
        RiskAssessment(
            member_id=member_id,
            predicted_at=predicted_at,
            churn_probability=probability,
            confidence=0.8,
            risk_tier=tier,
            factors=factors,
        )
    )
