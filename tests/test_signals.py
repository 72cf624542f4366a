from __future__ import annotations

import pytest

from gym_retention.errors import NotFoundError
from gym_retention.models import PaymentStatus
from gym_retention.signals import SignalReader

from conftest import NOW, add_feedback, add_member, add_payment, add_visit, days_ago


def test_attendance_is_most_recent_first_and_windowed(store) -> None:
    add_member(store, "m1")
    add_member(store, "m2")
    for days in (10, 2, 30):
        add_visit(store, "m1", days_ago(days))
    add_visit(store, "m2", days_ago(1))
    reader = SignalReader(store)

    events = reader.attendance(member_id="m1")
    assert [e.timestamp for e in events] == [days_ago(2), days_ago(10), days_ago(30)]

    windowed = reader.attendance(member_id="m1", start=days_ago(10), end=days_ago(2))
    assert [e.timestamp for e in windowed] == [days_ago(2), days_ago(10)]

    assert len(reader.attendance()) == 4


def test_last_attendance_respects_reference_time(store) -> None:
    add_member(store, "m1")
    add_visit(store, "m1", days_ago(5))
    add_visit(store, "m1", days_ago(-1))
    reader = SignalReader(store)

    assert reader.last_attendance("m1", before=NOW).timestamp == days_ago(5)
    assert reader.last_attendance("m1").timestamp == days_ago(-1)


def test_empty_results_are_not_errors(store) -> None:
    add_member(store, "m1")
    reader = SignalReader(store)

    assert reader.attendance(member_id="m1") == []
    assert reader.payments(member_id="m1") == []
    assert reader.feedback(member_id="m1") == []
    assert reader.last_attendance("m1") is None


@pytest.mark.parametrize("method", ["attendance", "payments", "feedback"])
def test_unknown_member_is_not_found(store, method: str) -> None:
    with pytest.raises(NotFoundError) as excinfo:
        getattr(SignalReader(store), method)(member_id="ghost")
    assert excinfo.value.entity_id == "ghost"


def test_payments_filter_by_status(store) -> None:
    add_member(store, "m1")
    add_payment(store, "m1", 100, days_ago(40), status="paid")
    add_payment(store, "m1", 100, days_ago(10))
    add_payment(store, "m1", 100, days_ago(5), status="overdue")
    reader = SignalReader(store)

    unpaid = reader.payments(member_id="m1", statuses=[PaymentStatus.PENDING, PaymentStatus.OVERDUE])

    assert [p.due_date for p in unpaid] == [days_ago(5), days_ago(10)]
    assert all(p.status is not PaymentStatus.PAID for p in unpaid)


def test_feedback_window(store) -> None:
    add_member(store, "m1")
    add_feedback(store, "m1", 5, days_ago(200))
    add_feedback(store, "m1", 2, days_ago(3))
    reader = SignalReader(store)

    recent = reader.feedback(member_id="m1", start=days_ago(180))

    assert [f.rating for f in recent] == [2]
