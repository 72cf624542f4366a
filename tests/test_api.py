from __future__ import annotations

import pytest
from fastapi.testclient import TestClient

from gym_retention.api import create_app
from gym_retention.engine import RetentionEngine
from gym_retention.scoring import ScoreResult

from conftest import NOW, FakeScorer, add_assessment, add_member, add_payment, add_visit, days_ago


@pytest.fixture
def scorer() -> FakeScorer:
    return FakeScorer({"m1": ScoreResult(0.82, 0.64)})


@pytest.fixture
def client(store, scorer) -> TestClient:
    engine = RetentionEngine(store=store, scorer=scorer, clock=lambda: NOW)
    return TestClient(create_app(engine))


def test_unknown_member_is_404(client) -> None:
    response = client.get("/members/ghost/risk-assessment")

    assert response.status_code == 404
    error = response.json()["error"]
    assert error["kind"] == "not_found"
    assert error["id"] == "ghost"
    assert error["status"] == 404


def test_score_then_read_assessment(client, store) -> None:
    add_member(store, "m1")

    created = client.post("/members/m1/risk-assessment")
    fetched = client.get("/members/m1/risk-assessment")

    assert created.status_code == 201
    assert created.json()["risk_tier"] == "high"
    assert fetched.json()["id"] == created.json()["id"]


def test_scorer_failure_is_502(client, store) -> None:
    add_member(store, "m2")

    response = client.post("/members/m2/risk-assessment")

    assert response.status_code == 502
    error = response.json()["error"]
    assert error["state"] == "prediction unavailable"
    assert error["member_id"] == "m2"


def test_batch_rescoring_reports_failures(client, store) -> None:
    add_member(store, "m1")
    add_member(store, "m2")

    body = client.post("/risk-assessments/batch").json()

    assert body["processed"] == 1
    assert body["total"] == 2
    assert body["failed"] == ["m2"]


def test_recommended_actions(client, store) -> None:
    add_member(store, "m1")
    add_assessment(store, "m1", 0.85, days_ago(1), factors=({"type": "attendance", "description": "gap", "impact": "high"},))

    response = client.get("/members/m1/recommended-actions")

    assert response.status_code == 200
    assert [a["code"] for a in response.json()] == ["call", "attendance_reminder", "discount_offer"]


def test_action_lifecycle_over_http(client, store) -> None:
    add_member(store, "m1")
    assessment = add_assessment(store, "m1", 0.5, days_ago(1))

    created = client.post(
        "/actions",
        json={
            "userId": "m1",
            "predictionId": assessment.id,
            "actionType": "free_class",
            "actionDescription": "Invite to Saturday class",
        },
    )
    assert created.status_code == 201
    action_id = created.json()["id"]

    invalid = client.put(f"/actions/{action_id}/status", json={"status": "completed"})
    assert invalid.status_code == 400
    assert invalid.json()["error"]["field"] == "status"

    started = client.put(f"/actions/{action_id}/status", json={"status": "in_progress"})
    assert started.json()["status"] == "in_progress"
    assert [a["id"] for a in client.get("/actions", params={"status": "in_progress"}).json()] == [action_id]


def test_invalid_action_type_is_400(client, store) -> None:
    add_member(store, "m1")

    response = client.post(
        "/actions", json={"member_id": "m1", "action_type": "fax", "description": "Send a fax"}
    )

    assert response.status_code == 400
    assert response.json()["error"]["field"] == "action_type"


def test_malformed_body_is_400(client) -> None:
    response = client.post("/actions", json={"description": "missing fields"})

    assert response.status_code == 400
    assert response.json()["error"]["problems"]


def test_generate_and_dismiss_alerts(client, store) -> None:
    add_member(store, "m1")
    add_visit(store, "m1", days_ago(1))
    add_payment(store, "m1", 150, days_ago(10))

    generated = client.post("/alerts/generate").json()
    assert generated["count"] == 1
    assert generated["alerts"][0]["severity"] == "high"
    assert generated["transitioned_payments"][0]["status"] == "overdue"

    alert_id = generated["alerts"][0]["id"]
    dismissed = client.post("/alerts/dismiss-bulk", json={"alertIds": [alert_id, "unknown"]}).json()
    assert dismissed["count"] == 1

    assert client.post("/alerts/generate").json()["count"] == 1


def test_manual_alert_resolve_and_stats(client, store) -> None:
    add_member(store, "m1")

    created = client.post("/alerts", json={"user_id": "m1", "severity": "low", "message": "Check in"})
    assert created.status_code == 201
    alert_id = created.json()["id"]

    assert client.put(f"/alerts/{alert_id}/resolve").json()["status"] == "resolved"
    assert client.put(f"/alerts/{alert_id}/resolve").status_code == 400
    stats = client.get("/alerts/stats").json()
    assert stats["by_status"]["resolved"] == 1
    assert client.get("/alerts", params={"status": "pending"}).json() == []


def test_evaluate_and_fetch_metrics(client, store) -> None:
    assert client.get("/model/metrics").status_code == 404
    assert client.post("/model/evaluate").json()["total"] == 0

    add_member(store, "m1", status="inactive")
    add_assessment(store, "m1", 0.9, days_ago(45))
    add_member(store, "m2")
    add_assessment(store, "m2", 0.1, days_ago(45))

    body = client.post("/model/evaluate", json={"daysAgo": 30}).json()
    assert body["accuracy"] == 1.0
    assert body["confusion_matrix"]["true_positives"] == 1

    metrics = client.get("/model/metrics").json()
    assert metrics["total_predictions"] == 2
    assert set(metrics["feature_importance"]) == {
        "attendance",
        "payment",
        "feedback",
        "demographics",
        "other",
    }


def test_negative_evaluation_window_is_400(client) -> None:
    response = client.post("/model/evaluate", json={"days_ago": -5})

    assert response.status_code == 400


def test_zero_day_evaluation_window_is_400(client, store) -> None:
    add_member(store, "m1")
    add_assessment(store, "m1", 0.9, days_ago(3))

    response = client.post("/model/evaluate", json={"daysAgo": 0})

    assert response.status_code == 400
    assert response.json()["error"]["field"] == "days_ago"
    assert store.latest_metrics() is None
