# src/gym_retention/alerts.py
"""
Operational alerts raised from population-wide signals.

Two independent conditions are scanned on every run:
  • inactivity        (no attendance, or a gap longer than the configured days)
  • payment_overdue   (unpaid records past their due date)

At most one pending alert exists per member and condition; the store's
conditional insert enforces it. Pending payments found past due are moved to
overdue and reported in the run result.
"""

from __future__ import annotations

import argparse
import logging
from dataclasses import dataclass, replace
from datetime import datetime, timedelta
from pathlib import Path
from typing import Iterable

import pandas as pd

from . import config
from .config import AlertSettings
from .errors import NotFoundError, RetentionEngineError, ValidationError
from .models import (
    Alert,
    AlertCondition,
    AlertStatus,
    Level,
    Member,
    MemberStatus,
    PaymentRecord,
    PaymentStatus,
    elapsed_days,
)
from .signals import SignalReader
from .store import RecordStore

logger = logging.getLogger(__name__)


@dataclass(frozen=True)
class AlertRun:
    alerts: tuple[Alert, ...]
    transitioned_payments: tuple[PaymentRecord, ...]
    errors: int

    @property
    def count(self) -> int:
        return len(self.alerts)


def generate_alerts(
    store: RecordStore, now: datetime, settings: AlertSettings = AlertSettings()
) -> AlertRun:
    """Scan inactivity and payment delinquency, creating only new alerts."""

    reader = SignalReader(store)
    created: list[Alert] = []
    transitioned: list[PaymentRecord] = []
    errors = 0

    for member in store.list_members(MemberStatus.ACTIVE):
        try:
            alert = _check_inactivity(store, reader, member, now, settings)
        except RetentionEngineError:
            logger.exception("Inactivity check failed for member %s", member.id)
            errors += 1
            continue
        if alert is not None:
            created.append(alert)

    unpaid = reader.payments(end=now, statuses=[PaymentStatus.PENDING, PaymentStatus.OVERDUE])
    # most overdue first, so a member's alert describes the oldest debt
    for payment in reversed(unpaid):
        try:
            alert, moved = _check_payment(store, payment, now, settings)
        except RetentionEngineError:
            logger.exception("Payment check failed for payment %s", payment.id)
            errors += 1
            continue
        if moved is not None:
            transitioned.append(moved)
        if alert is not None:
            created.append(alert)

    logger.info(
        "Alert run finished: %d created, %d payments moved to overdue, %d errors",
        len(created),
        len(transitioned),
        errors,
    )
    return AlertRun(alerts=tuple(created), transitioned_payments=tuple(transitioned), errors=errors)


def _check_inactivity(
    store: RecordStore,
    reader: SignalReader,
    member: Member,
    now: datetime,
    settings: AlertSettings,
) -> Alert | None:
    last = reader.last_attendance(member.id, before=now)
    if last is None:
        message = f"{member.name} has no recorded attendance"
    else:
        gap = elapsed_days(last.timestamp, now)
        if gap <= settings.inactivity_days:
            return None
        message = f"{member.name} has not attended the gym for {gap} days"

    candidate = Alert(
        member_id=member.id,
        condition=AlertCondition.INACTIVITY,
        severity=Level.MEDIUM,
        message=message,
        created_at=now,
    )
    return store.insert_alert_if_absent(candidate)


def _check_payment(
    store: RecordStore, payment: PaymentRecord, now: datetime, settings: AlertSettings
) -> tuple[Alert | None, PaymentRecord | None]:
    days_overdue = elapsed_days(payment.due_date, now)
    if days_overdue <= 0:
        return None, None

    member = store.get_member(payment.member_id)
    if member is None:
        raise NotFoundError("member", payment.member_id)

    severity = Level.HIGH if days_overdue > settings.overdue_high_severity_days else Level.MEDIUM
    candidate = Alert(
        member_id=member.id,
        condition=AlertCondition.PAYMENT_OVERDUE,
        severity=severity,
        message=(
            f"Payment from {member.name} is {days_overdue} days overdue "
            f"(amount {payment.amount:.2f})"
        ),
        created_at=now,
    )
    alert = store.insert_alert_if_absent(candidate)
    moved = store.mark_payment_overdue(payment.id)
    if moved is not None:
        logger.info("Payment %s of member %s moved to overdue", payment.id, member.id)
    return alert, moved


def dismiss_alerts(store: RecordStore, alert_ids: Iterable[str], now: datetime) -> list[Alert]:
    """Dismiss every pending alert in ``alert_ids``.

    Unknown ids are skipped, as are alerts already resolved or dismissed.
    """
    dismissed: list[Alert] = []
    for alert_id in dict.fromkeys(str(a) for a in alert_ids):
        alert = store.get_alert(alert_id)
        if alert is None or alert.status is not AlertStatus.PENDING:
            continue
        dismissed.append(
            store.save_alert(replace(alert, status=AlertStatus.DISMISSED, resolved_at=now))
        )
    return dismissed


def resolve_alert(store: RecordStore, alert_id: str, now: datetime) -> Alert:
    alert = store.get_alert(alert_id)
    if alert is None:
        raise NotFoundError("alert", alert_id)
    if alert.status is not AlertStatus.PENDING:
        raise ValidationError("status", f"alert is already {alert.status.value}")
    return store.save_alert(replace(alert, status=AlertStatus.RESOLVED, resolved_at=now))


def create_alert(
    store: RecordStore,
    severity: Level | str,
    message: str,
    now: datetime,
    member_id: str | None = None,
) -> Alert:
    """Record a manually raised alert; population-level when no member is given."""
    if not message or not message.strip():
        raise ValidationError("message", "must not be empty")
    if member_id is not None and store.get_member(member_id) is None:
        raise NotFoundError("member", member_id)
    alert = Alert(
        member_id=member_id,
        condition=AlertCondition.MANUAL,
        severity=Level.parse(severity, "severity"),
        message=message.strip(),
        created_at=now,
    )
    return store.add_alert(alert)


def list_alerts(
    store: RecordStore,
    status: AlertStatus | str | None = None,
    severity: Level | str | None = None,
    member_id: str | None = None,
) -> list[Alert]:
    return store.alerts(
        status=AlertStatus.parse(status, "status") if status is not None else None,
        severity=Level.parse(severity, "severity") if severity is not None else None,
        member_id=member_id,
    )


def alert_stats(store: RecordStore, now: datetime) -> dict[str, object]:
    """Counts by status and severity, plus alerts raised in the recent window."""
    alerts = store.alerts()
    frame = pd.DataFrame(
        {
            "status": [a.status.value for a in alerts],
            "severity": [a.severity.value for a in alerts],
            "created_at": pd.to_datetime([a.created_at for a in alerts], utc=True),
        }
    )
    by_status = frame["status"].value_counts()
    by_severity = frame["severity"].value_counts()
    recent_start = pd.Timestamp(now - timedelta(days=config.RECENT_ALERT_DAYS))
    return {
        "total": int(len(frame)),
        "by_status": {s.value: int(by_status.get(s.value, 0)) for s in AlertStatus},
        "by_severity": {s.value: int(by_severity.get(s.value, 0)) for s in Level},
        "recent_count": int((frame["created_at"] >= recent_start).sum()),
    }


def main(argv: list[str] | None = None) -> None:
    from .data_prep import load_store, save_snapshot
    from .risk_scoring import parse_thresholds

    parser = argparse.ArgumentParser(description="Generate retention alerts from raw exports.")
    parser.add_argument("--raw-dir", type=Path, default=config.RAW_DIR)
    parser.add_argument(
        "--as_of",
        type=str,
        default=None,
        help="Optional reference time (YYYY-MM-DD). Defaults to now (UTC).",
    )
    parser.add_argument("--out-dir", type=Path, default=None, help="Write a parquet snapshot here.")
    args = parser.parse_args(argv)

    settings = config.Settings()
    config.setup_logging(settings.log_level)
    now = pd.Timestamp(args.as_of or pd.Timestamp.now(tz="UTC"))
    now = (now.tz_localize("UTC") if now.tzinfo is None else now).to_pydatetime()
    store = load_store(
        args.raw_dir, parse_thresholds(settings.high_risk_threshold, settings.medium_risk_threshold)
    )
    run = generate_alerts(store, now, settings.alert_settings())

    print(f"Alerts generated: {run.count} (errors: {run.errors})")
    for alert in run.alerts:
        print(f"  - [{alert.severity.value}] {alert.message}")
    if run.transitioned_payments:
        print(f"Payments moved to overdue: {len(run.transitioned_payments)}")
    if args.out_dir is not None:
        print(f"Wrote snapshot to {save_snapshot(store, args.out_dir)}")


if __name__ == "__main__":
    main()
