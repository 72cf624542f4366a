"""
Signal readers: thin, logic-free access to attendance, payment and feedback
records for one member or for the whole population.
"""

from __future__ import annotations

from datetime import datetime

from .errors import NotFoundError
from .models import AttendanceEvent, FeedbackRecord, PaymentRecord, PaymentStatus
from .store import RecordStore


class SignalReader:
    """Reads behavioral signals, most recent first.

    An explicit ``member_id`` must exist (``NotFoundError`` otherwise); an
    empty result is a normal answer and never an error.
    """

    def __init__(self, store: RecordStore) -> None:
        self.store = store

    def _require_member(self, member_id: str | None) -> None:
        if member_id is not None and self.store.get_member(member_id) is None:
            raise NotFoundError("member", member_id)

    def attendance(
        self,
        member_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[AttendanceEvent]:
        self._require_member(member_id)
        return self.store.attendance(member_id=member_id, start=start, end=end)

    def payments(
        self,
        member_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
        statuses: list[PaymentStatus] | None = None,
    ) -> list[PaymentRecord]:
        self._require_member(member_id)
        return self.store.payments(member_id=member_id, start=start, end=end, statuses=statuses)

    def feedback(
        self,
        member_id: str | None = None,
        start: datetime | None = None,
        end: datetime | None = None,
    ) -> list[FeedbackRecord]:
        self._require_member(member_id)
        return self.store.feedback(member_id=member_id, start=start, end=end)

    def last_attendance(self, member_id: str, before: datetime | None = None) -> AttendanceEvent | None:
        events = self.attendance(member_id=member_id, end=before)
        return events[0] if events else None
