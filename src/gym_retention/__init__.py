"""Convenience exports for the retention risk and alerting engine."""

from .actions import recommend_actions
from .alerts import generate_alerts
from .engine import RetentionEngine
from .evaluation import evaluate_model
from .risk_scoring import classify
from .store import FrameStore, RecordStore

__all__ = [
    "FrameStore",
    "RecordStore",
    "RetentionEngine",
    "classify",
    "evaluate_model",
    "generate_alerts",
    "recommend_actions",
]
