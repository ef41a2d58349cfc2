from __future__ import annotations

import logging
import threading
from collections.abc import Hashable, Iterator
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import date, datetime

from sqlalchemy import select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session

from attendance_engine.errors import ApiError
from attendance_engine.models import Attendance, AttendanceStatus
from attendance_engine.services.policy import EffectivePolicy
from attendance_engine.services.status_classifier import (
    ScanAction,
    classify,
    local_time_of_day,
    normalize_ts,
)

logger = logging.getLogger("attendance_engine.ledger")

MAX_WRITE_ATTEMPTS = 3


class KeyedLocks:
    """One ``threading.Lock`` per key, dropped once nobody holds or waits on it."""

    def __init__(self) -> None:
        self._guard = threading.Lock()
        self._entries: dict[Hashable, list] = {}

    @contextmanager
    def hold(self, key: Hashable) -> Iterator[None]:
        with self._guard:
            entry = self._entries.get(key)
            if entry is None:
                entry = [threading.Lock(), 0]
                self._entries[key] = entry
            entry[1] += 1
        lock: threading.Lock = entry[0]
        lock.acquire()
        try:
            yield
        finally:
            lock.release()
            with self._guard:
                entry[1] -= 1
                if entry[1] == 0:
                    self._entries.pop(key, None)

    def __len__(self) -> int:
        with self._guard:
            return len(self._entries)


_ledger_locks = KeyedLocks()


@dataclass(frozen=True, slots=True)
class LedgerWriteResult:
    record: Attendance
    action: ScanAction
    status: AttendanceStatus
    replaced_checkout: bool = False


def get_day_record(db: Session, *, member_id: int, local_day: date) -> Attendance | None:
    return db.scalar(
        select(Attendance)
        .where(
            Attendance.member_id == member_id,
            Attendance.attendance_date == local_day,
        )
        .execution_options(populate_existing=True)
    )


def decide_action(record: Attendance | None) -> ScanAction:
    if record is None or record.check_in_time is None:
        return ScanAction.CHECK_IN
    return ScanAction.CHECK_OUT


def _write_checkin(
    db: Session,
    *,
    record: Attendance | None,
    member_id: int,
    local_day: date,
    ts_utc: datetime,
    status: AttendanceStatus,
    location: str | None,
) -> Attendance | None:
    if record is None:
        created = Attendance(
            member_id=member_id,
            attendance_date=local_day,
            check_in_time=ts_utc,
            status=status,
            location=location,
            created_at=ts_utc,
            updated_at=ts_utc,
        )
        db.add(created)
        try:
            db.commit()
        except IntegrityError:
            db.rollback()
            return None
        db.refresh(created)
        return created

    result = db.execute(
        update(Attendance)
        .where(
            Attendance.id == record.id,
            Attendance.check_in_time.is_(None),
        )
        .values(
            check_in_time=ts_utc,
            status=status,
            location=location,
            updated_at=ts_utc,
        )
    )
    if result.rowcount != 1:
        db.rollback()
        return None
    db.commit()
    db.refresh(record)
    return record


def _write_checkout(
    db: Session,
    *,
    record: Attendance,
    ts_utc: datetime,
    status: AttendanceStatus,
) -> Attendance | None:
    result = db.execute(
        update(Attendance)
        .where(Attendance.id == record.id)
        .values(
            check_out_time=ts_utc,
            status=status,
            updated_at=ts_utc,
        )
    )
    if result.rowcount != 1:
        db.rollback()
        return None
    db.commit()
    db.refresh(record)
    return record


def commit_scan(
    db: Session,
    *,
    member_id: int,
    local_day: date,
    now_utc: datetime,
    location: str | None,
    policy: EffectivePolicy,
) -> LedgerWriteResult:
    """Read, decide and write today's row as one serialized step.

    Check-in only fills a row whose ``check_in_time`` is still null (or
    creates it); check-out always overwrites. A write that loses a race is
    re-read and decided again rather than applied blindly.
    """
    ts_utc = normalize_ts(now_utc)
    event_time = local_time_of_day(ts_utc)

    with _ledger_locks.hold((member_id, local_day)):
        for attempt in range(1, MAX_WRITE_ATTEMPTS + 1):
            record = get_day_record(db, member_id=member_id, local_day=local_day)
            action = decide_action(record)

            if action == ScanAction.CHECK_IN or record is None:
                status = classify(event_time, policy.start_time, action)
                written = _write_checkin(
                    db,
                    record=record,
                    member_id=member_id,
                    local_day=local_day,
                    ts_utc=ts_utc,
                    status=status,
                    location=location,
                )
                replaced_checkout = False
            else:
                status = classify(event_time, policy.end_time, action)
                replaced_checkout = record.check_out_time is not None
                written = _write_checkout(db, record=record, ts_utc=ts_utc, status=status)

            if written is None:
                logger.warning(
                    "ledger_write_conflict_retry",
                    extra={
                        "member_id": member_id,
                        "local_day": local_day.isoformat(),
                        "action": action.value,
                        "attempt": attempt,
                    },
                )
                continue

            logger.info(
                "ledger_write_committed",
                extra={
                    "member_id": member_id,
                    "attendance_id": written.id,
                    "local_day": local_day.isoformat(),
                    "action": action.value,
                    "status": status.value,
                    "replaced_checkout": replaced_checkout,
                },
            )
            return LedgerWriteResult(
                record=written,
                action=action,
                status=status,
                replaced_checkout=replaced_checkout,
            )

    raise ApiError(
        status_code=409,
        code="ATTENDANCE_WRITE_CONFLICT",
        message="Attendance record changed concurrently. Please scan again.",
    )
