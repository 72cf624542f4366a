"""
Record-store contract consumed by the engine, plus an in-memory pandas
implementation used by the API, the CLI entry points and the tests.
"""

from __future__ import annotations

import functools
import threading
from abc import ABC, abstractmethod
from dataclasses import fields
from datetime import datetime
from enum import Enum
from typing import Any, Callable, Iterable, Mapping, TypeVar

import numpy as np
import pandas as pd

from .errors import NotFoundError, RetentionEngineError, StoreError
from .models import (
    ActionStatus,
    Alert,
    AlertCondition,
    AlertStatus,
    AttendanceEvent,
    FeedbackRecord,
    Level,
    Member,
    MemberStatus,
    ModelMetricsSnapshot,
    PaymentRecord,
    PaymentStatus,
    RetentionAction,
    RiskAssessment,
)

R = TypeVar("R")
F = TypeVar("F", bound=Callable[..., Any])


class RecordStore(ABC):
    """Abstract persistence boundary for every entity the engine touches.

    Implementations raise ``StoreError`` for persistence failures and
    ``NotFoundError`` only where a method documents it.
    """

    # --- members -----------------------------------------------------------
    @abstractmethod
    def add_member(self, member: Member) -> Member: ...

    @abstractmethod
    def get_member(self, member_id: str) -> Member | None: ...

    @abstractmethod
    def list_members(self, status: MemberStatus | None = None) -> list[Member]: ...

    # --- signals -----------------------------------------------------------
    @abstractmethod
    def add_attendance(self, event: AttendanceEvent) -> AttendanceEvent: ...

    @abstractmethod
    def attendance(
        self,
        member_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AttendanceEvent]:
        """Events inside [start, end], most recent first."""

    @abstractmethod
    def add_payment(self, payment: PaymentRecord) -> PaymentRecord: ...

    @abstractmethod
    def get_payment(self, payment_id: str) -> PaymentRecord | None: ...

    @abstractmethod
    def payments(
        self,
        member_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: Iterable[PaymentStatus] | None = None,
    ) -> list[PaymentRecord]:
        """Records whose due date falls inside [start, end], latest due first."""

    @abstractmethod
    def mark_payment_overdue(self, payment_id: str) -> PaymentRecord | None:
        """Move a pending record to overdue.

        Returns the updated record, or None when nothing changed (already
        overdue or paid). Raises ``NotFoundError`` for an unknown id.
        """

    @abstractmethod
    def add_feedback(self, record: FeedbackRecord) -> FeedbackRecord: ...

    @abstractmethod
    def feedback(
        self,
        member_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[FeedbackRecord]: ...

    # --- assessments -------------------------------------------------------
    @abstractmethod
    def add_assessment(self, assessment: RiskAssessment) -> RiskAssessment: ...

    @abstractmethod
    def get_assessment(self, assessment_id: str) -> RiskAssessment | None: ...

    @abstractmethod
    def latest_assessment(self, member_id: str) -> RiskAssessment | None: ...

    @abstractmethod
    def assessments(
        self, member_id: str | None = None, before: datetime | None = None
    ) -> list[RiskAssessment]:
        """Assessments predicted strictly before ``before``, newest first."""

    # --- actions -----------------------------------------------------------
    @abstractmethod
    def add_action(self, action: RetentionAction) -> RetentionAction: ...

    @abstractmethod
    def get_action(self, action_id: str) -> RetentionAction | None: ...

    @abstractmethod
    def save_action(self, action: RetentionAction) -> RetentionAction: ...

    @abstractmethod
    def actions(
        self, member_id: str | None = None, status: ActionStatus | None = None
    ) -> list[RetentionAction]: ...

    # --- alerts ------------------------------------------------------------
    @abstractmethod
    def add_alert(self, alert: Alert) -> Alert: ...

    @abstractmethod
    def insert_alert_if_absent(self, alert: Alert) -> Alert | None:
        """Atomically insert unless a pending alert exists for the same
        member and condition. Returns the inserted alert or None."""

    @abstractmethod
    def get_alert(self, alert_id: str) -> Alert | None: ...

    @abstractmethod
    def save_alert(self, alert: Alert) -> Alert: ...

    @abstractmethod
    def alerts(
        self,
        status: AlertStatus | None = None,
        severity: Level | None = None,
        member_id: str | None = None,
        condition: AlertCondition | None = None,
    ) -> list[Alert]: ...

    # --- metrics -----------------------------------------------------------
    @abstractmethod
    def add_metrics(self, snapshot: ModelMetricsSnapshot) -> ModelMetricsSnapshot: ...

    @abstractmethod
    def latest_metrics(self) -> ModelMetricsSnapshot | None: ...


# ---------------------------------------------------------------------------
# pandas-backed implementation

_TABLES: dict[str, type] = {
    "members": Member,
    "attendance": AttendanceEvent,
    "payments": PaymentRecord,
    "feedback": FeedbackRecord,
    "assessments": RiskAssessment,
    "actions": RetentionAction,
    "alerts": Alert,
    "metrics": ModelMetricsSnapshot,
}


def _guarded(method: F) -> F:
    """Serialize access and surface unexpected failures as StoreError."""

    @functools.wraps(method)
    def wrapper(self: "FrameStore", *args: Any, **kwargs: Any) -> Any:
        with self._lock:
            try:
                return method(self, *args, **kwargs)
            except RetentionEngineError:
                raise
            except Exception as exc:
                raise StoreError(f"{method.__name__} failed: {exc}") from exc

    return wrapper  # type: ignore[return-value]


def record_to_row(record: Any) -> dict[str, Any]:
    row: dict[str, Any] = {}
    for f in fields(record):
        value = getattr(record, f.name)
        if isinstance(value, Enum):
            value = value.value
        elif f.name == "factors":
            value = [factor.to_dict() for factor in value]
        elif f.name == "feature_importance":
            value = dict(value)
        row[f.name] = value
    return row


def row_to_record(cls: type[R], row: Mapping[str, Any]) -> R:
    kwargs: dict[str, Any] = {}
    for f in fields(cls):  # type: ignore[arg-type]
        if f.name not in row:
            continue
        value = row[f.name]
        if isinstance(value, np.ndarray):
            value = value.tolist()
        if isinstance(value, np.generic) and not isinstance(value, np.datetime64):
            value = value.item()
        if not isinstance(value, (list, tuple, dict)) and pd.isna(value):
            value = None
        kwargs[f.name] = value
    return cls(**kwargs)


class FrameStore(RecordStore):
    """Holds one DataFrame per table; every call runs under a single lock."""

    def __init__(self) -> None:
        self._lock = threading.RLock()
        self._tables: dict[str, pd.DataFrame] = {
            name: pd.DataFrame(columns=[f.name for f in fields(cls)])
            for name, cls in _TABLES.items()
        }

    # --- table primitives --------------------------------------------------
    def table_names(self) -> list[str]:
        return list(self._tables)

    def frame(self, table: str) -> pd.DataFrame:
        """Copy of a raw table, for snapshots and diagnostics."""
        with self._lock:
            return self._tables[table].copy()

    def _append(self, table: str, record: R) -> R:
        new_row = pd.DataFrame([record_to_row(record)])
        current = self._tables[table]
        if current.empty:
            self._tables[table] = new_row
        else:
            self._tables[table] = pd.concat([current, new_row], ignore_index=True)
        return record

    def _replace(self, table: str, record: Any) -> Any:
        current = self._tables[table]
        if not (current["id"] == record.id).any():
            raise NotFoundError(table.rstrip("s"), record.id)
        self._tables[table] = current[current["id"] != record.id]
        return self._append(table, record)

    def _select(
        self,
        table: str,
        mask: Callable[[pd.DataFrame], pd.Series] | None = None,
        sort_by: str | None = None,
    ) -> list[Any]:
        df = self._tables[table]
        if df.empty:
            return []
        if mask is not None:
            df = df[mask(df)]
        if sort_by is not None:
            df = df.sort_values(sort_by, ascending=False, kind="stable")
        cls = _TABLES[table]
        return [row_to_record(cls, row) for row in df.to_dict("records")]

    def _get(self, table: str, record_id: str) -> Any:
        rows = self._select(table, lambda df: df["id"] == str(record_id))
        return rows[0] if rows else None

    @staticmethod
    def _window(
        df: pd.DataFrame,
        column: str,
        member_id: str | None,
        start: datetime | None,
        end: datetime | None,
    ) -> pd.Series:
        mask = pd.Series(True, index=df.index)
        if member_id is not None:
            mask &= df["member_id"] == str(member_id)
        if start is not None:
            mask &= df[column] >= pd.Timestamp(start)
        if end is not None:
            mask &= df[column] <= pd.Timestamp(end)
        return mask

    # --- members -----------------------------------------------------------
    @_guarded
    def add_member(self, member: Member) -> Member:
        return self._append("members", member)

    @_guarded
    def get_member(self, member_id: str) -> Member | None:
        return self._get("members", member_id)

    @_guarded
    def list_members(self, status: MemberStatus | None = None) -> list[Member]:
        if status is None:
            return self._select("members")
        return self._select("members", lambda df: df["status"] == MemberStatus.parse(status).value)

    # --- signals -----------------------------------------------------------
    @_guarded
    def add_attendance(self, event: AttendanceEvent) -> AttendanceEvent:
        return self._append("attendance", event)

    @_guarded
    def attendance(self, member_id=None, start=None, end=None) -> list[AttendanceEvent]:
        return self._select(
            "attendance",
            lambda df: self._window(df, "timestamp", member_id, start, end),
            sort_by="timestamp",
        )

    @_guarded
    def add_payment(self, payment: PaymentRecord) -> PaymentRecord:
        return self._append("payments", payment)

    @_guarded
    def get_payment(self, payment_id: str) -> PaymentRecord | None:
        return self._get("payments", payment_id)

    @_guarded
    def payments(self, member_id=None, start=None, end=None, statuses=None) -> list[PaymentRecord]:
        wanted = {PaymentStatus.parse(s).value for s in statuses} if statuses is not None else None

        def mask(df: pd.DataFrame) -> pd.Series:
            selected = self._window(df, "due_date", member_id, start, end)
            if wanted is not None:
                selected &= df["status"].isin(wanted)
            return selected

        return self._select("payments", mask, sort_by="due_date")

    @_guarded
    def mark_payment_overdue(self, payment_id: str) -> PaymentRecord | None:
        payment = self._get("payments", payment_id)
        if payment is None:
            raise NotFoundError("payment", payment_id)
        if payment.status is not PaymentStatus.PENDING:
            return None
        updated = PaymentRecord(
            member_id=payment.member_id,
            amount=payment.amount,
            due_date=payment.due_date,
            status=PaymentStatus.OVERDUE,
            paid_at=None,
            id=payment.id,
        )
        return self._replace("payments", updated)

    @_guarded
    def add_feedback(self, record: FeedbackRecord) -> FeedbackRecord:
        return self._append("feedback", record)

    @_guarded
    def feedback(self, member_id=None, start=None, end=None) -> list[FeedbackRecord]:
        return self._select(
            "feedback",
            lambda df: self._window(df, "timestamp", member_id, start, end),
            sort_by="timestamp",
        )

    # --- assessments -------------------------------------------------------
    @_guarded
    def add_assessment(self, assessment: RiskAssessment) -> RiskAssessment:
        return self._append("assessments", assessment)

    @_guarded
    def get_assessment(self, assessment_id: str) -> RiskAssessment | None:
        return self._get("assessments", assessment_id)

    @_guarded
    def latest_assessment(self, member_id: str) -> RiskAssessment | None:
        rows = self._select(
            "assessments", lambda df: df["member_id"] == str(member_id), sort_by="predicted_at"
        )
        return rows[0] if rows else None

    @_guarded
    def assessments(self, member_id=None, before=None) -> list[RiskAssessment]:
        def mask(df: pd.DataFrame) -> pd.Series:
            selected = pd.Series(True, index=df.index)
            if member_id is not None:
                selected &= df["member_id"] == str(member_id)
            if before is not None:
                selected &= df["predicted_at"] < pd.Timestamp(before)
            return selected

        return self._select("assessments", mask, sort_by="predicted_at")

    # --- actions -----------------------------------------------------------
    @_guarded
    def add_action(self, action: RetentionAction) -> RetentionAction:
        return self._append("actions", action)

    @_guarded
    def get_action(self, action_id: str) -> RetentionAction | None:
        return self._get("actions", action_id)

    @_guarded
    def save_action(self, action: RetentionAction) -> RetentionAction:
        return self._replace("actions", action)

    @_guarded
    def actions(self, member_id=None, status=None) -> list[RetentionAction]:
        def mask(df: pd.DataFrame) -> pd.Series:
            selected = pd.Series(True, index=df.index)
            if member_id is not None:
                selected &= df["member_id"] == str(member_id)
            if status is not None:
                selected &= df["status"] == ActionStatus.parse(status).value
            return selected

        return self._select("actions", mask, sort_by="created_at")

    # --- alerts ------------------------------------------------------------
    @_guarded
    def add_alert(self, alert: Alert) -> Alert:
        return self._append("alerts", alert)

    @_guarded
    def insert_alert_if_absent(self, alert: Alert) -> Alert | None:
        existing = self._select(
            "alerts",
            lambda df: (
                self._same_member(df, alert.member_id)
                & (df["condition"] == alert.condition.value)
                & (df["status"] == AlertStatus.PENDING.value)
            ),
        )
        if existing:
            return None
        return self._append("alerts", alert)

    @staticmethod
    def _same_member(df: pd.DataFrame, member_id: str | None) -> pd.Series:
        if member_id is None:
            return df["member_id"].isna()
        return df["member_id"] == str(member_id)

    @_guarded
    def get_alert(self, alert_id: str) -> Alert | None:
        return self._get("alerts", alert_id)

    @_guarded
    def save_alert(self, alert: Alert) -> Alert:
        return self._replace("alerts", alert)

    @_guarded
    def alerts(self, status=None, severity=None, member_id=None, condition=None) -> list[Alert]:
        def mask(df: pd.DataFrame) -> pd.Series:
            selected = pd.Series(True, index=df.index)
            if status is not None:
                selected &= df["status"] == AlertStatus.parse(status).value
            if severity is not None:
                selected &= df["severity"] == Level.parse(severity).value
            if member_id is not None:
                selected &= df["member_id"] == str(member_id)
            if condition is not None:
                selected &= df["condition"] == AlertCondition.parse(condition).value
            return selected

        return self._select("alerts", mask, sort_by="created_at")

    # --- metrics -----------------------------------------------------------
    @_guarded
    def add_metrics(self, snapshot: ModelMetricsSnapshot) -> ModelMetricsSnapshot:
        return self._append("metrics", snapshot)

    @_guarded
    def latest_metrics(self) -> ModelMetricsSnapshot | None:
        rows = self._select("metrics", sort_by="evaluated_at")
        return rows[0] if rows else None
