from __future__ import annotations

import logging
from dataclasses import dataclass, field
from datetime import date, datetime
from typing import Any

from sqlalchemy import delete, select, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.orm import Session, selectinload

from attendance_engine.db import SessionLocal
from attendance_engine.models import Attendance, AttendanceHistory, AttendanceStatus, Member
from attendance_engine.services.policy import resolve_effective_policy
from attendance_engine.services.status_classifier import local_now, local_time_of_day, normalize_ts
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.reconciliation")

MAX_BATCH_RETRIES = 3


@dataclass(slots=True)
class NoCheckoutSummary:
    checked: int = 0
    updated: int = 0
    attendance_ids: list[int] = field(default_factory=list)


@dataclass(slots=True)
class ArchiveSummary:
    archived: int = 0
    skipped_existing: int = 0
    deleted: int = 0
    attendance_dates: set[date] = field(default_factory=set)


@dataclass(slots=True)
class ReconciliationSummary:
    ran_at_utc: datetime
    no_checkout: NoCheckoutSummary
    archive: ArchiveSummary

    @property
    def archived(self) -> int:
        return self.archive.archived

    @property
    def updated(self) -> int:
        return self.no_checkout.updated

    def to_dict(self) -> dict[str, Any]:
        return {
            "archived": self.archive.archived,
            "updated": self.no_checkout.updated,
            "checked": self.no_checkout.checked,
            "deleted": self.archive.deleted,
            "skipped_existing": self.archive.skipped_existing,
            "no_checkout_ids": list(self.no_checkout.attendance_ids),
            "archived_dates": sorted(item.isoformat() for item in self.archive.attendance_dates),
            "ran_at_utc": self.ran_at_utc.isoformat(),
        }


def _is_past_end_time(record: Attendance, *, now_utc: datetime) -> bool:
    member = record.member
    if member is None:
        return False
    end_time = resolve_effective_policy(member).end_time
    if end_time is None:
        return False
    current = local_time_of_day(now_utc)
    return (current.hour, current.minute) > (end_time.hour, end_time.minute)


def mark_no_checkout_records(
    now_utc: datetime,
    db: Session | None = None,
) -> NoCheckoutSummary:
    if db is None:
        with SessionLocal() as managed_db:
            return mark_no_checkout_records(now_utc, db=managed_db)

    session = db
    reference_utc = normalize_ts(now_utc)
    local_today = local_now(reference_utc).date()
    summary = NoCheckoutSummary()

    open_records = list(
        session.scalars(
            select(Attendance)
            .options(
                selectinload(Attendance.member).selectinload(Member.group),
                selectinload(Attendance.member).selectinload(Member.department),
            )
            .where(
                Attendance.check_out_time.is_(None),
                Attendance.status != AttendanceStatus.NO_CHECKOUT,
            )
            .order_by(Attendance.id.asc())
        ).all()
    )
    summary.checked = len(open_records)

    for record in open_records:
        if record.attendance_date < local_today:
            reason = "previous_day"
        elif record.attendance_date == local_today and _is_past_end_time(record, now_utc=reference_utc):
            reason = "past_end_time"
        else:
            continue

        result = session.execute(
            update(Attendance)
            .where(
                Attendance.id == record.id,
                Attendance.check_out_time.is_(None),
                Attendance.status != AttendanceStatus.NO_CHECKOUT,
            )
            .values(status=AttendanceStatus.NO_CHECKOUT, updated_at=reference_utc)
        )
        if result.rowcount == 1:
            summary.updated += 1
            summary.attendance_ids.append(record.id)
            logger.info(
                "attendance_marked_no_checkout",
                extra={
                    "attendance_id": record.id,
                    "member_id": record.member_id,
                    "attendance_date": record.attendance_date.isoformat(),
                    "reason": reason,
                },
            )

    session.commit()
    return summary


def _archive_batch(
    session: Session,
    *,
    records: list[Attendance],
    archived_at: datetime,
    summary: ArchiveSummary,
) -> None:
    attendance_ids = [record.id for record in records]
    already_archived = set(
        session.scalars(
            select(AttendanceHistory.attendance_id).where(
                AttendanceHistory.attendance_id.in_(attendance_ids)
            )
        ).all()
    )

    archived = 0
    dates: set[date] = set()
    for record in records:
        dates.add(record.attendance_date)
        if record.id in already_archived:
            continue
        session.add(
            AttendanceHistory(
                attendance_id=record.id,
                member_id=record.member_id,
                attendance_date=record.attendance_date,
                check_in_time=record.check_in_time,
                check_out_time=record.check_out_time,
                status=record.status,
                location=record.location,
                created_at=record.created_at,
                updated_at=record.updated_at,
                archived_at=archived_at,
            )
        )
        archived += 1

    session.flush()
    result = session.execute(
        delete(Attendance)
        .where(Attendance.id.in_(attendance_ids))
        .execution_options(synchronize_session=False)
    )
    session.commit()

    summary.archived += archived
    summary.skipped_existing += len(already_archived)
    summary.deleted += int(result.rowcount or 0)
    summary.attendance_dates.update(dates)


def archive_previous_day_records(
    now_utc: datetime,
    db: Session | None = None,
    *,
    batch_size: int | None = None,
) -> ArchiveSummary:
    """Move every live row from before today into history.

    Copy and delete of a batch share one transaction. History is keyed by the
    live row id, so a row that was copied by an interrupted run is skipped
    rather than duplicated when the job runs again.
    """
    if db is None:
        with SessionLocal() as managed_db:
            return archive_previous_day_records(now_utc, db=managed_db, batch_size=batch_size)

    session = db
    reference_utc = normalize_ts(now_utc)
    local_today = local_now(reference_utc).date()
    size = max(1, int(batch_size or get_settings().reconciliation_batch_size))
    summary = ArchiveSummary()
    retries = 0

    while True:
        records = list(
            session.scalars(
                select(Attendance)
                .where(Attendance.attendance_date < local_today)
                .order_by(Attendance.id.asc())
                .limit(size)
                .execution_options(populate_existing=True)
            ).all()
        )
        if not records:
            break

        try:
            _archive_batch(session, records=records, archived_at=reference_utc, summary=summary)
        except IntegrityError:
            # Another run archived part of this batch first; re-read and skip those rows.
            session.rollback()
            retries += 1
            logger.warning(
                "attendance_archive_batch_conflict",
                extra={"batch_ids": [record.id for record in records], "retry": retries},
            )
            if retries >= MAX_BATCH_RETRIES:
                raise
            continue

        retries = 0
        for record in records:
            session.expunge(record)

    if summary.archived or summary.deleted:
        logger.info(
            "attendance_archived",
            extra={
                "archived": summary.archived,
                "skipped_existing": summary.skipped_existing,
                "deleted": summary.deleted,
                "attendance_dates": sorted(item.isoformat() for item in summary.attendance_dates),
            },
        )
    return summary


def run_reconciliation(
    now_utc: datetime,
    db: Session | None = None,
) -> ReconciliationSummary:
    if db is None:
        with SessionLocal() as managed_db:
            return run_reconciliation(now_utc, db=managed_db)

    reference_utc = normalize_ts(now_utc)
    # Flag prior-day sessions first so they reach history as no_checkout.
    no_checkout = mark_no_checkout_records(reference_utc, db=db)
    archive = archive_previous_day_records(reference_utc, db=db)
    summary = ReconciliationSummary(
        ran_at_utc=reference_utc,
        no_checkout=no_checkout,
        archive=archive,
    )
    logger.info("attendance_reconciled", extra=summary.to_dict())
    return summary
