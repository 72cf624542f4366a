# src/gym_retention/evaluation.py
"""
Retroactive evaluation of churn predictions against observed outcomes.

A member counts as churned when the record is gone or marked inactive; a
prediction counts as churn when its probability exceeds the fixed 0.5
boundary, regardless of the configured tier thresholds.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass
from datetime import datetime, timedelta
from pathlib import Path

import numpy as np
import pandas as pd
from sklearn.metrics import confusion_matrix

from . import config
from .errors import NotFoundError, ValidationError
from .models import MemberStatus, ModelMetricsSnapshot
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class EvaluationResult:
    accuracy: float
    precision: float
    recall: float
    f1: float
    total: int
    true_positives: int = 0
    false_positives: int = 0
    true_negatives: int = 0
    false_negatives: int = 0
    snapshot: ModelMetricsSnapshot | None = None


def _ratio(numerator: float, denominator: float) -> float:
    return float(numerator / denominator) if denominator else 0.0


def evaluate_model(
    store: RecordStore, now: datetime, days_ago: int = config.DEFAULT_EVALUATION_DAYS
) -> EvaluationResult:
    """Score predictions older than ``days_ago`` days and persist a snapshot.

    Store failures abort the whole evaluation. An empty window returns zero
    metrics and persists nothing.
    """
    if isinstance(days_ago, bool) or not isinstance(days_ago, int) or days_ago < 1:
        raise ValidationError("days_ago", f"must be a positive integer (got {days_ago!r})")

    cutoff = now - timedelta(days=days_ago)
    assessments = store.assessments(before=cutoff)
    if not assessments:
        logger.info("No assessments predicted before %s; skipping evaluation", cutoff.isoformat())
        return EvaluationResult(accuracy=0.0, precision=0.0, recall=0.0, f1=0.0, total=0)

    outcomes: dict[str, bool] = {}
    for assessment in assessments:
        if assessment.member_id not in outcomes:
            member = store.get_member(assessment.member_id)
            outcomes[assessment.member_id] = member is None or member.status is MemberStatus.INACTIVE

    frame = pd.DataFrame(
        {
            "member_id": [a.member_id for a in assessments],
            "probability": [a.churn_probability for a in assessments],
        }
    )
    y_true = frame["member_id"].map(outcomes).astype(int).to_numpy()
    y_pred = (frame["probability"] > config.EVALUATION_DECISION_BOUNDARY).astype(int).to_numpy()

    tn, fp, fn, tp = (int(v) for v in confusion_matrix(y_true, y_pred, labels=[0, 1]).ravel())
    total = len(frame)

    accuracy = _ratio(tp + tn, total)
    precision = _ratio(tp, tp + fp)
    recall = _ratio(tp, tp + fn)
    f1 = _ratio(2 * precision * recall, precision + recall)

    snapshot = store.add_metrics(
        ModelMetricsSnapshot(
            evaluated_at=now,
            accuracy=accuracy,
            precision=precision,
            recall=recall,
            f1=f1,
            feature_importance=dict(config.FEATURE_IMPORTANCE),
            total_predictions=total,
        )
    )
    logger.info(
        "Evaluated %d predictions: accuracy=%.3f precision=%.3f recall=%.3f f1=%.3f",
        total,
        accuracy,
        precision,
        recall,
        f1,
    )
    return EvaluationResult(
        accuracy=accuracy,
        precision=precision,
        recall=recall,
        f1=f1,
        total=total,
        true_positives=tp,
        false_positives=fp,
        true_negatives=tn,
        false_negatives=fn,
        snapshot=snapshot,
    )


def latest_metrics(store: RecordStore) -> ModelMetricsSnapshot:
    snapshot = store.latest_metrics()
    if snapshot is None:
        raise NotFoundError("model metrics", "latest")
    return snapshot


def main(argv: list[str] | None = None) -> None:
    from .data_prep import load_store

    parser = argparse.ArgumentParser(description="Evaluate past churn predictions.")
    parser.add_argument("--raw-dir", type=Path, default=config.RAW_DIR)
    parser.add_argument("--days-ago", type=int, default=config.DEFAULT_EVALUATION_DAYS)
    args = parser.parse_args(argv)

    config.setup_logging()
    store = load_store(args.raw_dir)
    result = evaluate_model(store, pd.Timestamp.now(tz="UTC").to_pydatetime(), args.days_ago)

    print(
        f"Predictions evaluated: {result.total}; "
        f"accuracy: {result.accuracy:.3f}; precision: {result.precision:.3f}; "
        f"recall: {result.recall:.3f}; F1: {result.f1:.3f}"
    )
    if result.total:
        matrix = np.array(
            [
                [result.true_negatives, result.false_positives],
                [result.false_negatives, result.true_positives],
            ]
        )
        print("Confusion matrix (rows = actual, cols = predicted; 0 = stayed, 1 = churned):")
        print(matrix)


if __name__ == "__main__":
    main()
