"""
Typed records exchanged between the engine components.

Category fields are closed enums: unknown values are rejected with
``ValidationError`` at construction time instead of flowing through as
opaque strings. Timestamps are normalized to timezone-aware UTC.
"""

from __future__ import annotations

import math
import uuid
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any, TypeVar

import pandas as pd

from .errors import ValidationError

E = TypeVar("E", bound="Choice")


class Choice(str, Enum):
    """String enum with boundary parsing."""

    @classmethod
    def parse(cls: type[E], value: Any, field_name: str | None = None) -> E:
        if isinstance(value, cls):
            return value
        text = str(value).strip().lower() if value is not None else ""
        for member in cls:
            if member.value == text:
                return member
        allowed = ", ".join(m.value for m in cls)
        raise ValidationError(field_name or cls.__name__, f"{value!r} is not one of [{allowed}]")

    def __str__(self) -> str:
        return self.value


class MemberStatus(Choice):
    ACTIVE = "active"
    INACTIVE = "inactive"


class PaymentStatus(Choice):
    PENDING = "pending"
    PAID = "paid"
    OVERDUE = "overdue"


class FactorType(Choice):
    ATTENDANCE = "attendance"
    PAYMENT = "payment"
    FEEDBACK = "feedback"
    OTHER = "other"


class Level(Choice):
    """Shared by factor impact, risk tier and alert severity."""

    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"


class ActionType(Choice):
    MESSAGE = "message"
    DISCOUNT = "discount"
    CALL = "call"
    FREE_CLASS = "free_class"
    OTHER = "other"


class ActionStatus(Choice):
    PENDING = "pending"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"

    @property
    def is_terminal(self) -> bool:
        return self in (ActionStatus.COMPLETED, ActionStatus.CANCELLED)


class AlertStatus(Choice):
    PENDING = "pending"
    RESOLVED = "resolved"
    DISMISSED = "dismissed"


class AlertCondition(Choice):
    INACTIVITY = "inactivity"
    PAYMENT_OVERDUE = "payment_overdue"
    MANUAL = "manual"


# ---------------------------------------------------------------------------
# Helpers


def new_id() -> str:
    return uuid.uuid4().hex


def to_utc(value: Any, field_name: str = "timestamp") -> datetime:
    """Coerce strings, dates and naive datetimes to an aware UTC datetime."""
    try:
        ts = pd.Timestamp(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(field_name, f"{value!r} is not a valid timestamp") from exc
    if pd.isna(ts):
        raise ValidationError(field_name, "timestamp is required")
    ts = ts.tz_localize("UTC") if ts.tzinfo is None else ts.tz_convert("UTC")
    return ts.to_pydatetime()


def optional_utc(value: Any, field_name: str) -> datetime | None:
    if value is None or (not isinstance(value, str) and pd.isna(value)):
        return None
    return to_utc(value, field_name)


def elapsed_days(earlier: datetime, later: datetime) -> int:
    """Whole days between two instants, floored."""
    return math.floor((later - earlier).total_seconds() / 86_400)


def check_unit_interval(value: Any, field_name: str) -> float:
    try:
        number = float(value)
    except (TypeError, ValueError) as exc:
        raise ValidationError(field_name, f"{value!r} is not a number") from exc
    if math.isnan(number) or not 0.0 <= number <= 1.0:
        raise ValidationError(field_name, f"must be within [0, 1] (got {value})")
    return number


# ---------------------------------------------------------------------------
# Records


@dataclass(frozen=True)
class Member:
    id: str
    name: str
    status: MemberStatus = MemberStatus.ACTIVE
    enrolled_at: datetime | None = None

    def __post_init__(self) -> None:
        object.__setattr__(self, "id", str(self.id))
        object.__setattr__(self, "status", MemberStatus.parse(self.status, "status"))
        object.__setattr__(self, "enrolled_at", optional_utc(self.enrolled_at, "enrolled_at"))


@dataclass(frozen=True)
class AttendanceEvent:
    member_id: str
    timestamp: datetime
    session_type: str = "CrossFit"
    duration_minutes: int = 60
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "member_id", str(self.member_id))
        object.__setattr__(self, "timestamp", to_utc(self.timestamp, "timestamp"))


@dataclass(frozen=True)
class PaymentRecord:
    member_id: str
    amount: float
    due_date: datetime
    status: PaymentStatus = PaymentStatus.PENDING
    paid_at: datetime | None = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "member_id", str(self.member_id))
        object.__setattr__(self, "amount", float(self.amount))
        object.__setattr__(self, "due_date", to_utc(self.due_date, "due_date"))
        object.__setattr__(self, "status", PaymentStatus.parse(self.status, "status"))
        object.__setattr__(self, "paid_at", optional_utc(self.paid_at, "paid_at"))
        if (self.paid_at is not None) != (self.status is PaymentStatus.PAID):
            raise ValidationError("paid_at", "must be set if and only if status is 'paid'")


@dataclass(frozen=True)
class FeedbackRecord:
    member_id: str
    rating: int
    timestamp: datetime
    comment: str | None = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "member_id", str(self.member_id))
        if isinstance(self.rating, bool) or not isinstance(self.rating, int):
            if isinstance(self.rating, float) and self.rating.is_integer():
                object.__setattr__(self, "rating", int(self.rating))
            else:
                raise ValidationError("rating", f"must be an integer (got {self.rating!r})")
        if not 1 <= self.rating <= 5:
            raise ValidationError("rating", f"must be between 1 and 5 (got {self.rating})")
        object.__setattr__(self, "timestamp", to_utc(self.timestamp, "timestamp"))


@dataclass(frozen=True)
class RiskFactor:
    type: FactorType
    description: str
    impact: Level

    def __post_init__(self) -> None:
        object.__setattr__(self, "type", FactorType.parse(self.type, "factor.type"))
        object.__setattr__(self, "impact", Level.parse(self.impact, "factor.impact"))

    def to_dict(self) -> dict[str, str]:
        return {"type": self.type.value, "description": self.description, "impact": self.impact.value}


@dataclass(frozen=True)
class RiskAssessment:
    member_id: str
    predicted_at: datetime
    churn_probability: float
    confidence: float
    risk_tier: Level
    factors: tuple[RiskFactor, ...] = ()
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "member_id", str(self.member_id))
        object.__setattr__(self, "predicted_at", to_utc(self.predicted_at, "predicted_at"))
        object.__setattr__(
            self, "churn_probability", check_unit_interval(self.churn_probability, "churn_probability")
        )
        object.__setattr__(self, "confidence", check_unit_interval(self.confidence, "confidence"))
        object.__setattr__(self, "risk_tier", Level.parse(self.risk_tier, "risk_tier"))
        factors = tuple(
            f if isinstance(f, RiskFactor) else RiskFactor(**f) for f in (self.factors or ())
        )
        object.__setattr__(self, "factors", factors)


@dataclass(frozen=True)
class RecommendedAction:
    """An unpersisted suggestion produced by the action recommender."""

    code: str
    action_type: ActionType
    description: str
    priority: int


@dataclass(frozen=True)
class RetentionAction:
    member_id: str
    assessment_id: str | None
    action_type: ActionType
    description: str
    priority: int
    created_at: datetime
    status: ActionStatus = ActionStatus.PENDING
    completed_at: datetime | None = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "action_type", ActionType.parse(self.action_type, "action_type"))
        object.__setattr__(self, "status", ActionStatus.parse(self.status, "status"))
        object.__setattr__(self, "created_at", to_utc(self.created_at, "created_at"))
        object.__setattr__(self, "completed_at", optional_utc(self.completed_at, "completed_at"))
        if isinstance(self.priority, bool) or not isinstance(self.priority, int):
            raise ValidationError("priority", f"must be an integer (got {self.priority!r})")


@dataclass(frozen=True)
class Alert:
    member_id: str | None
    condition: AlertCondition
    severity: Level
    message: str
    created_at: datetime
    status: AlertStatus = AlertStatus.PENDING
    resolved_at: datetime | None = None
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "condition", AlertCondition.parse(self.condition, "condition"))
        object.__setattr__(self, "severity", Level.parse(self.severity, "severity"))
        object.__setattr__(self, "status", AlertStatus.parse(self.status, "status"))
        object.__setattr__(self, "created_at", to_utc(self.created_at, "created_at"))
        object.__setattr__(self, "resolved_at", optional_utc(self.resolved_at, "resolved_at"))


@dataclass(frozen=True)
class ModelMetricsSnapshot:
    evaluated_at: datetime
    accuracy: float
    precision: float
    recall: float
    f1: float
    feature_importance: dict[str, float]
    total_predictions: int
    id: str = field(default_factory=new_id)

    def __post_init__(self) -> None:
        object.__setattr__(self, "evaluated_at", to_utc(self.evaluated_at, "evaluated_at"))
        for name in ("accuracy", "precision", "recall", "f1"):
            object.__setattr__(self, name, check_unit_interval(getattr(self, name), name))
        if sum(self.feature_importance.values()) > 1.0 + 1e-9:
            raise ValidationError("feature_importance", "weights must sum to at most 1")
