# src/gym_retention/scoring.py
"""
Boundary with the external churn scorer.

The engine never computes probabilities itself: a ``ScoringService`` is
injected. ``ModelScorer`` adapts a joblib-serialized scikit-learn classifier
(any estimator exposing ``predict_proba`` over ``FEATURE_COLUMNS``) to that
contract.
"""

from __future__ import annotations

import logging
from dataclasses import dataclass
from datetime import datetime
from pathlib import Path
from typing import Callable, Protocol, Sequence

import joblib
import pandas as pd

from . import config
from .config import RiskThresholds
from .errors import NotFoundError, RetentionEngineError, UpstreamScoringError, ValidationError
from .factors import FEATURE_COLUMNS, derive_factors, summarize_member
from .models import MemberStatus, RiskAssessment, RiskFactor, check_unit_interval
from .risk_scoring import DEFAULT_THRESHOLDS, build_assessment
from .signals import SignalReader
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class ScoreResult:
    probability: float
    confidence: float
    factors: Sequence[RiskFactor] = ()


class ScoringService(Protocol):
    def score_member(self, member_id: str) -> ScoreResult: ...


@dataclass(frozen=True)
class BatchScoreResult:
    processed: int
    total: int
    failed: tuple[str, ...]


class ModelScorer:
    """Score members with a pre-trained classifier loaded through joblib."""

    def __init__(
        self,
        store: RecordStore,
        model_path: Path,
        clock: Callable[[], datetime],
        inactivity_days: int = config.INACTIVITY_DAYS,
    ) -> None:
        self.reader = SignalReader(store)
        self.model_path = Path(model_path)
        self.clock = clock
        self.inactivity_days = inactivity_days
        self._pipeline = None

    @property
    def pipeline(self):
        if self._pipeline is None:
            if not self.model_path.exists():
                raise FileNotFoundError(f"Model artifact not found: {self.model_path}")
            self._pipeline = joblib.load(self.model_path)
        return self._pipeline

    def score_member(self, member_id: str) -> ScoreResult:
        summary = summarize_member(self.reader, member_id, self.clock())
        features = pd.DataFrame([summary.feature_vector()])[FEATURE_COLUMNS]
        probabilities = self.pipeline.predict_proba(features)[0]
        churn_probability = float(probabilities[1])
        # distance from the decision boundary, rescaled to [0, 1]
        confidence = abs(churn_probability - 0.5) * 2
        return ScoreResult(
            probability=churn_probability,
            confidence=confidence,
            factors=derive_factors(summary, self.inactivity_days),
        )


def score_member(
    store: RecordStore,
    scorer: ScoringService,
    member_id: str,
    now: datetime,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> RiskAssessment:
    """Ask the scorer for one member and persist the resulting assessment."""

    if store.get_member(member_id) is None:
        raise NotFoundError("member", member_id)

    try:
        result = scorer.score_member(member_id)
    except RetentionEngineError:
        raise
    except Exception as exc:
        raise UpstreamScoringError(member_id, str(exc) or type(exc).__name__) from exc

    try:
        probability = check_unit_interval(result.probability, "churn_probability")
        confidence = check_unit_interval(result.confidence, "confidence")
        factors = [f if isinstance(f, RiskFactor) else RiskFactor(**f) for f in result.factors]
    except (ValidationError, TypeError, AttributeError) as exc:
        raise UpstreamScoringError(member_id, f"malformed scorer output: {exc}") from exc

    assessment = build_assessment(member_id, probability, confidence, factors, now, thresholds)
    return store.add_assessment(assessment)


def rescore_population(
    store: RecordStore,
    scorer: ScoringService,
    now: datetime,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> BatchScoreResult:
    """Re-score every active member; one failure does not stop the batch."""

    members = store.list_members(MemberStatus.ACTIVE)
    failed: list[str] = []
    for member in members:
        try:
            score_member(store, scorer, member.id, now, thresholds)
        except (UpstreamScoringError, NotFoundError) as exc:
            logger.error("Scoring failed for member %s: %s", member.id, exc)
            failed.append(member.id)
    processed = len(members) - len(failed)
    logger.info("Batch scoring finished: %d of %d members scored", processed, len(members))
    return BatchScoreResult(processed=processed, total=len(members), failed=tuple(failed))
