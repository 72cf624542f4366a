"""
Request-scoped facade over the engine components.

The facade owns the clock and the configured thresholds so that the deeper
functions can take ``now`` and settings as explicit arguments.
"""

from __future__ import annotations

from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Callable, Iterable

from . import actions, alerts, evaluation, scoring
from .config import Settings
from .errors import NotFoundError, UpstreamScoringError
from .models import (
    Alert,
    RecommendedAction,
    RetentionAction,
    RiskAssessment,
)
from .risk_scoring import parse_thresholds, reconcile
from .scoring import ScoringService
from .store import RecordStore


def utc_now() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class RetentionEngine:
    store: RecordStore
    scorer: ScoringService | None = None
    settings: Settings = field(default_factory=Settings)
    clock: Callable[[], datetime] = utc_now

    @property
    def thresholds(self):
        return parse_thresholds(
            high=self.settings.high_risk_threshold, medium=self.settings.medium_risk_threshold
        )

    # --- assessments -------------------------------------------------------
    def latest_assessment(self, member_id: str) -> RiskAssessment:
        if self.store.get_member(member_id) is None:
            raise NotFoundError("member", member_id)
        assessment = self.store.latest_assessment(member_id)
        if assessment is None:
            raise NotFoundError("risk assessment for member", member_id)
        return reconcile(assessment, self.thresholds)

    def score_member(self, member_id: str) -> RiskAssessment:
        return scoring.score_member(
            self.store, self._require_scorer(member_id), member_id, self.clock(), self.thresholds
        )

    def rescore_population(self) -> scoring.BatchScoreResult:
        return scoring.rescore_population(
            self.store, self._require_scorer("*"), self.clock(), self.thresholds
        )

    def _require_scorer(self, member_id: str) -> ScoringService:
        if self.scorer is None:
            raise UpstreamScoringError(member_id, "no scoring service configured")
        return self.scorer

    # --- actions -----------------------------------------------------------
    def recommended_actions(
        self, member_id: str, assessment_id: str | None = None
    ) -> list[RecommendedAction]:
        if assessment_id is None:
            assessment = self.latest_assessment(member_id)
        else:
            assessment = self.store.get_assessment(assessment_id)
            if assessment is None or assessment.member_id != str(member_id):
                raise NotFoundError("assessment", assessment_id)
        return actions.recommend_actions(assessment, self.thresholds)

    def create_action(self, **kwargs) -> RetentionAction:
        return actions.create_action(self.store, now=self.clock(), **kwargs)

    def update_action_status(self, action_id: str, status: str) -> RetentionAction:
        return actions.update_action_status(self.store, action_id, status, self.clock())

    def list_actions(self, member_id: str | None = None, status: str | None = None):
        return actions.list_actions(self.store, member_id=member_id, status=status)

    # --- alerts ------------------------------------------------------------
    def generate_alerts(self) -> alerts.AlertRun:
        return alerts.generate_alerts(self.store, self.clock(), self.settings.alert_settings())

    def dismiss_alerts(self, alert_ids: Iterable[str]) -> list[Alert]:
        return alerts.dismiss_alerts(self.store, alert_ids, self.clock())

    def resolve_alert(self, alert_id: str) -> Alert:
        return alerts.resolve_alert(self.store, alert_id, self.clock())

    def create_alert(self, severity: str, message: str, member_id: str | None = None) -> Alert:
        return alerts.create_alert(self.store, severity, message, self.clock(), member_id=member_id)

    def list_alerts(self, status=None, severity=None, member_id=None) -> list[Alert]:
        return alerts.list_alerts(self.store, status=status, severity=severity, member_id=member_id)

    def alert_stats(self) -> dict[str, object]:
        return alerts.alert_stats(self.store, self.clock())

    # --- model evaluation --------------------------------------------------
    def evaluate_model(self, days_ago: int) -> evaluation.EvaluationResult:
        return evaluation.evaluate_model(self.store, self.clock(), days_ago)

    def latest_metrics(self):
        return evaluation.latest_metrics(self.store)
