# src/gym_retention/risk_scoring.py
"""
Map churn probabilities onto risk tiers and build assessment records.
"""

from __future__ import annotations

import logging
from dataclasses import replace
from datetime import datetime
from typing import Sequence

from .config import RiskThresholds
from .errors import ValidationError
from .models import Level, RiskAssessment, RiskFactor, check_unit_interval

logger = logging.getLogger(__name__)

DEFAULT_THRESHOLDS = RiskThresholds()


def classify(probability: float, thresholds: RiskThresholds = DEFAULT_THRESHOLDS) -> Level:
    """Tier for a churn probability; lower bounds are inclusive."""
    p = check_unit_interval(probability, "churn_probability")
    if p >= thresholds.high:
        return Level.HIGH
    elif p >= thresholds.medium:
        return Level.MEDIUM
    else:
        return Level.LOW


def build_assessment(
    member_id: str,
    probability: float,
    confidence: float,
    factors: Sequence[RiskFactor],
    predicted_at: datetime,
    thresholds: RiskThresholds = DEFAULT_THRESHOLDS,
) -> RiskAssessment:
    return RiskAssessment(
        member_id=member_id,
        predicted_at=predicted_at,
        churn_probability=probability,
        confidence=confidence,
        risk_tier=classify(probability, thresholds),
        factors=tuple(factors),
    )


def reconcile(
    assessment: RiskAssessment, thresholds: RiskThresholds = DEFAULT_THRESHOLDS
) -> RiskAssessment:
    """Return the assessment carrying the threshold-derived tier.

    A disagreeing upstream tier is logged and replaced; the input remains
    usable either way.
    """
    canonical = classify(assessment.churn_probability, thresholds)
    if canonical is assessment.risk_tier:
        return assessment
    logger.warning(
        "Assessment %s for member %s labelled %s but probability %.3f maps to %s; using %s",
        assessment.id,
        assessment.member_id,
        assessment.risk_tier.value,
        assessment.churn_probability,
        canonical.value,
        canonical.value,
    )
    return replace(assessment, risk_tier=canonical)


def parse_thresholds(high: float | None = None, medium: float | None = None) -> RiskThresholds:
    """Build thresholds from optional overrides, reporting bad input as ValidationError."""
    try:
        return RiskThresholds(
            high=DEFAULT_THRESHOLDS.high if high is None else float(high),
            medium=DEFAULT_THRESHOLDS.medium if medium is None else float(medium),
        )
    except ValueError as exc:
        raise ValidationError("risk_thresholds", str(exc)) from exc
