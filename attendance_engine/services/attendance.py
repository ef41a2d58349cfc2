from __future__ import annotations

import enum
import logging
from dataclasses import dataclass
from datetime import datetime
from typing import Any

from sqlalchemy import select
from sqlalchemy.orm import Session, selectinload

from attendance_engine.models import AttendanceStatus, Member, MemberRole
from attendance_engine.services.face_compare import FaceComparer
from attendance_engine.services.ledger import commit_scan, decide_action, get_day_record
from attendance_engine.services.location import (
    Coordinate,
    GeofenceCheck,
    check_geofence,
    format_location,
)
from attendance_engine.services.matcher import (
    AcceptancePolicy,
    acceptance_policy_from_settings,
    match_identity,
)
from attendance_engine.services.policy import EffectivePolicy, resolve_effective_policy
from attendance_engine.services.status_classifier import ScanAction, local_now, normalize_ts
from attendance_engine.settings import get_settings

logger = logging.getLogger("attendance_engine.scan")

ERROR_USER_NOT_FOUND = "User not found"
ERROR_LOCATION_MISMATCH = "Location mismatch"


class ScanOutcomeKind(str, enum.Enum):
    MATCHED = "MATCHED"
    LOCATION_MISMATCH = "LOCATION_MISMATCH"
    NOT_FOUND = "NOT_FOUND"


@dataclass(frozen=True, slots=True)
class ScanOutcome:
    kind: ScanOutcomeKind
    member: Member | None = None
    confidence: float | None = None
    action: ScanAction | None = None
    status: AttendanceStatus | None = None
    message: str | None = None
    attendance_id: int | None = None
    geofence: GeofenceCheck | None = None
    policy: EffectivePolicy | None = None
    comparisons: int = 0

    @property
    def error(self) -> str | None:
        if self.kind == ScanOutcomeKind.NOT_FOUND:
            return ERROR_USER_NOT_FOUND
        if self.kind == ScanOutcomeKind.LOCATION_MISMATCH:
            return ERROR_LOCATION_MISMATCH
        return None

    def to_flags(self) -> dict[str, Any]:
        flags: dict[str, Any] = {
            "outcome": self.kind.value,
            "comparisons": self.comparisons,
        }
        if self.confidence is not None:
            flags["confidence"] = self.confidence
        if self.action is not None:
            flags["action"] = self.action.value
        if self.status is not None:
            flags["status"] = self.status.value
        if self.geofence is not None:
            flags["geofence"] = self.geofence.to_flags()
        if self.policy is not None:
            flags["policy"] = self.policy.to_flags()
        return flags


def load_candidate_pool(db: Session) -> list[Member]:
    return list(
        db.scalars(
            select(Member)
            .options(
                selectinload(Member.group),
                selectinload(Member.department),
            )
            .where(
                Member.role == MemberRole.MEMBER,
                Member.is_active.is_(True),
                Member.photo_url.is_not(None),
                Member.photo_url != "",
            )
            .order_by(Member.id.asc())
        ).all()
    )


def location_mismatch_message(member: Member, action: ScanAction) -> str:
    verb = "Check-out" if action == ScanAction.CHECK_OUT else "Check-in"
    name = " ".join(part for part in (member.first_name, member.last_name) if part)
    return f"{verb} is unsuccessful due to location mismatch. Please try again, {name}."


def process_scan(
    db: Session,
    *,
    captured_image_url: str,
    latitude: float,
    longitude: float,
    comparer: FaceComparer,
    policy: AcceptancePolicy | None = None,
    parallelism: int | None = None,
    now_utc: datetime | None = None,
) -> ScanOutcome:
    reference_utc = normalize_ts(now_utc)
    local_day = local_now(reference_utc).date()
    acceptance = policy or acceptance_policy_from_settings()
    fan_out = parallelism if parallelism is not None else get_settings().face_match_parallelism

    candidates = load_candidate_pool(db)
    match = match_identity(
        captured_image_url,
        candidates,
        comparer,
        acceptance,
        parallelism=fan_out,
    )
    if match is None:
        logger.info(
            "scan_identity_not_found",
            extra={"candidate_count": len(candidates)},
        )
        return ScanOutcome(
            kind=ScanOutcomeKind.NOT_FOUND,
            message=ERROR_USER_NOT_FOUND,
            comparisons=len(candidates),
        )

    member: Member = match.candidate
    effective_policy = resolve_effective_policy(member)
    scan_point = Coordinate(latitude=latitude, longitude=longitude)

    geofence: GeofenceCheck | None = None
    if effective_policy.center is not None:
        geofence = check_geofence(effective_policy.center, scan_point, effective_policy.radius_m)
        if not geofence.within:
            existing = get_day_record(db, member_id=member.id, local_day=local_day)
            attempted = decide_action(existing)
            logger.info(
                "scan_location_mismatch",
                extra={
                    "member_id": member.id,
                    "action": attempted.value,
                    "distance_m": round(geofence.distance_m, 2),
                    "radius_m": geofence.radius_m,
                    "policy_source": effective_policy.source.value,
                },
            )
            return ScanOutcome(
                kind=ScanOutcomeKind.LOCATION_MISMATCH,
                member=member,
                confidence=match.confidence,
                action=attempted,
                message=location_mismatch_message(member, attempted),
                geofence=geofence,
                policy=effective_policy,
                comparisons=match.comparisons,
            )
    else:
        logger.info(
            "scan_geofence_not_configured",
            extra={"member_id": member.id, "policy_source": effective_policy.source.value},
        )

    written = commit_scan(
        db,
        member_id=member.id,
        local_day=local_day,
        now_utc=reference_utc,
        location=format_location(latitude, longitude),
        policy=effective_policy,
    )
    logger.info(
        "scan_attendance_recorded",
        extra={
            "member_id": member.id,
            "attendance_id": written.record.id,
            "action": written.action.value,
            "status": written.status.value,
            "confidence": match.confidence,
            "replaced_checkout": written.replaced_checkout,
        },
    )
    return ScanOutcome(
        kind=ScanOutcomeKind.MATCHED,
        member=member,
        confidence=match.confidence,
        action=written.action,
        status=written.status,
        attendance_id=written.record.id,
        geofence=geofence,
        policy=effective_policy,
        comparisons=match.comparisons,
    )
