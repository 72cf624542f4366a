# src/gym_retention/factors.py
"""
Risk factor normalization.

Raw signal readings (attendance events, payment records, feedback ratings)
are condensed into per-member signal summaries and then into a short list of
typed, human-readable risk factors with an impact level.
"""

from __future__ import annotations

from dataclasses import dataclass
from datetime import datetime, timedelta
from typing import Iterable, Sequence

import pandas as pd

from . import config
from .models import (
    AttendanceEvent,
    FactorType,
    FeedbackRecord,
    Level,
    PaymentRecord,
    PaymentStatus,
    RiskFactor,
)
from .signals import SignalReader
from .store import record_to_row


@dataclass(frozen=True)
class SignalSummary:
    member_id: str
    as_of: datetime
    days_since_last_attendance: int | None
    visits_recent: int
    attendance_frequency: float
    payment_delay_days: int
    overdue_amount: float
    average_rating: float
    feedback_count: int

    @property
    def has_late_payment(self) -> bool:
        return self.payment_delay_days > 0

    def feature_vector(self) -> dict[str, float]:
        """Numeric features in the shape consumed by ModelScorer."""
        gap = self.days_since_last_attendance
        return {
            "attendance_frequency": self.attendance_frequency,
            "days_since_last_attendance": float(
                gap if gap is not None else config.ATTENDANCE_LOOKBACK_DAYS
            ),
            "has_late_payment": float(self.has_late_payment),
            "payment_delay_days": float(self.payment_delay_days),
            "average_rating": self.average_rating,
        }


FEATURE_COLUMNS = [
    "attendance_frequency",
    "days_since_last_attendance",
    "has_late_payment",
    "payment_delay_days",
    "average_rating",
]


def build_signal_frame(
    member_ids: Iterable[str],
    attendance: Sequence[AttendanceEvent],
    payments: Sequence[PaymentRecord],
    feedback: Sequence[FeedbackRecord],
    as_of: datetime,
) -> pd.DataFrame:
    """One row of signal aggregates per member id, indexed by member_id."""

    as_of_ts = pd.Timestamp(as_of)
    base = pd.DataFrame(index=pd.Index([str(m) for m in member_ids], name="member_id"))

    att = _records_frame(attendance, ["member_id", "timestamp"], ["timestamp"])
    att = att[att["timestamp"] <= as_of_ts]
    recent_start = as_of_ts - timedelta(days=config.ATTENDANCE_LOOKBACK_DAYS)
    last_attendance = att.groupby("member_id")["timestamp"].max().rename("last_attendance")
    visits_recent = (
        att[att["timestamp"] >= recent_start].groupby("member_id").size().rename("visits_recent")
    )

    pay = _records_frame(payments, ["member_id", "amount", "due_date", "status"], ["due_date"])
    late = pay[(pay["status"] != PaymentStatus.PAID.value) & (pay["due_date"] < as_of_ts)].copy()
    late["days_overdue"] = (as_of_ts - late["due_date"]).dt.days
    late = late[late["days_overdue"] > 0]
    payment_delay = late.groupby("member_id")["days_overdue"].max().rename("payment_delay_days")
    overdue_amount = late.groupby("member_id")["amount"].sum().rename("overdue_amount")

    fb = _records_frame(feedback, ["member_id", "rating", "timestamp"], ["timestamp"])
    fb_start = as_of_ts - timedelta(days=config.FEEDBACK_LOOKBACK_DAYS)
    fb = fb[fb["timestamp"].between(fb_start, as_of_ts, inclusive="both")]
    fb_grouped = fb.groupby("member_id")["rating"]
    average_rating = fb_grouped.mean().rename("average_rating")
    feedback_count = fb_grouped.count().rename("feedback_count")

    frame = base.join(
        [last_attendance, visits_recent, payment_delay, overdue_amount, average_rating, feedback_count]
    )
    frame["last_attendance"] = pd.to_datetime(frame["last_attendance"], utc=True)
    frame["days_since_last_attendance"] = (as_of_ts - frame["last_attendance"]).dt.days
    frame["visits_recent"] = frame["visits_recent"].fillna(0).astype(int)
    frame["attendance_frequency"] = frame["visits_recent"] / config.ATTENDANCE_LOOKBACK_DAYS
    frame["payment_delay_days"] = frame["payment_delay_days"].fillna(0).astype(int)
    frame["overdue_amount"] = frame["overdue_amount"].fillna(0.0).astype(float)
    frame["average_rating"] = frame["average_rating"].fillna(config.NEUTRAL_RATING).astype(float)
    frame["feedback_count"] = frame["feedback_count"].fillna(0).astype(int)
    return frame.drop(columns=["last_attendance"])


def summarize_member(reader: SignalReader, member_id: str, as_of: datetime) -> SignalSummary:
    """Read one member's signals and aggregate them as of ``as_of``."""

    attendance = reader.attendance(member_id=member_id, end=as_of)
    payments = reader.payments(
        member_id=member_id,
        start=as_of - timedelta(days=config.PAYMENT_LOOKBACK_DAYS),
        end=as_of,
    )
    feedback = reader.feedback(member_id=member_id, end=as_of)
    frame = build_signal_frame([member_id], attendance, payments, feedback, as_of)
    row = frame.loc[str(member_id)]

    gap = row["days_since_last_attendance"]
    return SignalSummary(
        member_id=str(member_id),
        as_of=as_of,
        days_since_last_attendance=None if pd.isna(gap) else int(gap),
        visits_recent=int(row["visits_recent"]),
        attendance_frequency=float(row["attendance_frequency"]),
        payment_delay_days=int(row["payment_delay_days"]),
        overdue_amount=float(row["overdue_amount"]),
        average_rating=float(row["average_rating"]),
        feedback_count=int(row["feedback_count"]),
    )


def derive_factors(
    summary: SignalSummary, inactivity_days: int = config.INACTIVITY_DAYS
) -> list[RiskFactor]:
    """Translate a signal summary into ordered risk factors."""

    factors: list[RiskFactor] = []

    gap = summary.days_since_last_attendance
    if gap is None:
        factors.append(RiskFactor(FactorType.ATTENDANCE, "No attendance recorded", Level.HIGH))
    elif gap > inactivity_days:
        factors.append(
            RiskFactor(FactorType.ATTENDANCE, f"{gap} days without attending", Level.HIGH)
        )

    if summary.has_late_payment:
        factors.append(
            RiskFactor(
                FactorType.PAYMENT,
                f"Payment overdue for {summary.payment_delay_days} days "
                f"({summary.overdue_amount:.2f} outstanding)",
                Level.HIGH,
            )
        )

    if summary.feedback_count and summary.average_rating < config.LOW_RATING_CUTOFF:
        factors.append(
            RiskFactor(
                FactorType.FEEDBACK,
                f"Low average rating: {summary.average_rating:.1f}/5",
                Level.MEDIUM,
            )
        )

    if gap is not None and summary.attendance_frequency < config.LOW_FREQUENCY_VISITS_PER_DAY:
        factors.append(
            RiskFactor(
                FactorType.ATTENDANCE,
                f"Low frequency: {summary.visits_recent} visits in the last "
                f"{config.ATTENDANCE_LOOKBACK_DAYS} days",
                Level.MEDIUM,
            )
        )

    return factors


# ---------------------------------------------------------------------------
# Internal helpers


def _records_frame(records: Sequence[object], columns: list[str], time_columns: list[str]) -> pd.DataFrame:
    if records:
        df = pd.DataFrame([record_to_row(r) for r in records])[columns]
    else:
        df = pd.DataFrame({col: pd.Series(dtype="object") for col in columns})
    for col in time_columns:
        df[col] = pd.to_datetime(df[col], utc=True)
    if "rating" in df.columns:
        df["rating"] = df["rating"].astype(float)
    if "amount" in df.columns:
        df["amount"] = df["amount"].astype(float)
    return df
