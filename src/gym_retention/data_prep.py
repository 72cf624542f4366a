# src/gym_retention/data_prep.py
"""
Data ingestion helpers that load gym-management CSV exports into a record
store, and write store snapshots back out as parquet.
"""

from __future__ import annotations

import functools
import json
from pathlib import Path
from typing import Any, Callable, Iterable

import numpy as np
import pandas as pd

from . import config
from .config import RiskThresholds
from .models import AttendanceEvent, FeedbackRecord, Member, PaymentRecord, RiskAssessment
from .risk_scoring import DEFAULT_THRESHOLDS, classify
from .store import FrameStore

# Legacy exports carry Portuguese labels; map them onto the engine's enums.
MEMBER_STATUS_ALIASES = {
    "ativo": "active",
    "active": "active",
    "inativo": "inactive",
    "inactive": "inactive",
    "cancelled": "inactive",
    "canceled": "inactive",
}
PAYMENT_STATUS_ALIASES = {
    "pendente": "pending",
    "pago": "paid",
    "atrasado": "overdue",
    "late": "overdue",
}
LEVEL_ALIASES = {"alto": "high", "médio": "medium", "medio": "medium", "baixo": "low"}

COLUMN_ALIASES: dict[str, tuple[str, ...]] = {
    "member_id": ("member_id", "memberid", "user_id", "member"),
    "name": ("name", "member_name", "full_name"),
    "status": ("status", "membership_status"),
    "enrolled_at": ("enrolled_at", "member_since", "created_at", "join_date"),
    "timestamp": ("timestamp", "class_ts", "checkin_time", "check_in_time", "datetime", "date"),
    "session_type": ("session_type", "class_type"),
    "duration_minutes": ("duration_minutes", "duration"),
    "amount": ("amount", "value"),
    "due_date": ("due_date", "duedate"),
    "paid_at": ("paid_at", "payment_date", "paid_date"),
    "rating": ("rating", "score"),
    "comment": ("comment", "comments"),
    "predicted_at": ("predicted_at", "prediction_date"),
    "churn_probability": ("churn_probability", "probability"),
    "confidence": ("confidence", "confidence_score"),
    "risk_tier": ("risk_tier", "risk_level"),
    "factors": ("factors",),
}


def normalize_label(value: Any, aliases: dict[str, str]) -> str:
    """Map a free-form status label onto its canonical value."""
    text = "" if _missing(value) else str(value).strip().lower()
    return aliases.get(text, text)


def load_store(
    raw_dir: Path | None = None, thresholds: RiskThresholds = DEFAULT_THRESHOLDS
) -> FrameStore:
    """
    Load the raw exports into a fresh FrameStore.

    Parameters
    ----------
    raw_dir:
        Optional override for the raw directory. Defaults to config.RAW_DIR.
        Members.csv and Attendance.csv are required; Payments.csv,
        Feedback.csv and Assessments.csv are loaded when present.
    thresholds:
        Tier thresholds for imported assessments without a risk tier label.
    """

    base_dir = Path(raw_dir) if raw_dir else Path(config.RAW_DIR)
    if not base_dir.exists():
        raise FileNotFoundError(f"Raw data directory not found: {base_dir}")

    for required in ("Members.csv", "Attendance.csv"):
        if not (base_dir / required).exists():
            raise FileNotFoundError(f"Required file {required} not found in {base_dir}")

    store = FrameStore()
    _ingest(base_dir / "Members.csv", ["member_id"], _member_from_row, store.add_member)
    _ingest(
        base_dir / "Attendance.csv",
        ["member_id", "timestamp"],
        _attendance_from_row,
        store.add_attendance,
    )
    _ingest(
        base_dir / "Payments.csv",
        ["member_id", "amount", "due_date"],
        _payment_from_row,
        store.add_payment,
    )
    _ingest(
        base_dir / "Feedback.csv",
        ["member_id", "rating", "timestamp"],
        _feedback_from_row,
        store.add_feedback,
    )
    _ingest(
        base_dir / "Assessments.csv",
        ["member_id", "predicted_at", "churn_probability"],
        functools.partial(_assessment_from_row, thresholds=thresholds),
        store.add_assessment,
    )
    return store


def save_snapshot(store: FrameStore, out_dir: Path | None = None) -> Path:
    """Write every table of the store to ``<out_dir>/<table>.parquet``."""

    target = Path(out_dir) if out_dir else Path(config.PROCESSED_DIR)
    target.mkdir(parents=True, exist_ok=True)
    for table in store.table_names():
        frame = store.frame(table)
        for col in ("factors", "feature_importance"):
            if col in frame.columns:
                frame[col] = frame[col].apply(json.dumps)
        frame.to_parquet(target / f"{table}.parquet", index=False)
    return target


# ---------------------------------------------------------------------------
# Internal helpers


def _to_snake_case(name: str) -> str:
    return (
        name.replace("-", "_")
        .replace(" ", "_")
        .replace("/", "_")
        .replace("__", "_")
        .strip()
        .lower()
    )


def _missing(value: Any) -> bool:
    return value is None or (not isinstance(value, (list, dict)) and pd.isna(value))


def _clean(value: Any) -> Any:
    if _missing(value):
        return None
    if isinstance(value, np.generic):
        return value.item()
    return value


def _read_export(path: Path, required: Iterable[str]) -> pd.DataFrame:
    df = pd.read_csv(path)
    df.columns = pd.Index([_to_snake_case(col) for col in df.columns])

    for target, candidates in COLUMN_ALIASES.items():
        if target in df.columns:
            continue
        for candidate in candidates:
            if candidate in df.columns:
                df = df.rename(columns={candidate: target})
                break

    if "member_id" not in df.columns and path.name == "Members.csv" and "id" in df.columns:
        df = df.rename(columns={"id": "member_id"})

    missing = set(required).difference(df.columns)
    if missing:
        raise ValueError(
            f"{path.name} is missing required columns: {sorted(missing)}. "
            f"Available columns: {list(df.columns)}"
        )
    df["member_id"] = df["member_id"].astype(str)
    return df


def _ingest(
    path: Path,
    required: list[str],
    build: Callable[[dict[str, Any]], Any],
    add: Callable[[Any], Any],
) -> None:
    if not path.exists():
        return
    df = _read_export(path, required)
    for row in df.to_dict("records"):
        add(build({k: _clean(v) for k, v in row.items()}))


def _member_from_row(row: dict[str, Any]) -> Member:
    name = row.get("name")
    if name is None:
        parts = [row.get("first_name"), row.get("last_name")]
        name = " ".join(str(p) for p in parts if p) or row["member_id"]
    return Member(
        id=row["member_id"],
        name=str(name),
        status=normalize_label(row.get("status") or "active", MEMBER_STATUS_ALIASES),
        enrolled_at=row.get("enrolled_at"),
    )


def _attendance_from_row(row: dict[str, Any]) -> AttendanceEvent:
    return AttendanceEvent(
        member_id=row["member_id"],
        timestamp=row["timestamp"],
        session_type=str(row.get("session_type") or "CrossFit"),
        duration_minutes=int(row.get("duration_minutes") or 60),
    )


def _payment_from_row(row: dict[str, Any]) -> PaymentRecord:
    return PaymentRecord(
        member_id=row["member_id"],
        amount=float(row["amount"]),
        due_date=row["due_date"],
        status=normalize_label(row.get("status") or "pending", PAYMENT_STATUS_ALIASES),
        paid_at=row.get("paid_at"),
    )


def _feedback_from_row(row: dict[str, Any]) -> FeedbackRecord:
    return FeedbackRecord(
        member_id=row["member_id"],
        rating=row["rating"],
        timestamp=row["timestamp"],
        comment=row.get("comment"),
    )


def _assessment_from_row(row: dict[str, Any], thresholds: RiskThresholds) -> RiskAssessment:
    tier = row.get("risk_tier")
    if tier:
        tier = normalize_label(tier, LEVEL_ALIASES)
    else:
        tier = classify(row["churn_probability"], thresholds)
    raw_factors = row.get("factors") or "[]"
    factors = json.loads(raw_factors) if isinstance(raw_factors, str) else raw_factors
    for factor in factors:
        factor["impact"] = normalize_label(factor.get("impact"), LEVEL_ALIASES)
    return RiskAssessment(
        member_id=row["member_id"],
        predicted_at=row["predicted_at"],
        churn_probability=row["churn_probability"],
        confidence=row.get("confidence") or 0.0,
        risk_tier=tier,
        factors=tuple(factors),
    )
