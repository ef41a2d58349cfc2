from __future__ import annotations

import logging
from datetime import datetime, timezone
from typing import Any

from sqlalchemy.orm import Session

from attendance_engine.models import AuditActorType, AuditLog
from attendance_engine.services.attendance import ScanOutcome, ScanOutcomeKind

logger = logging.getLogger("attendance_engine.audit")

SCAN_AUDIT_ACTIONS: dict[ScanOutcomeKind, str] = {
    ScanOutcomeKind.MATCHED: "FACE_SCAN_MATCHED",
    ScanOutcomeKind.LOCATION_MISMATCH: "FACE_SCAN_LOCATION_MISMATCH",
    ScanOutcomeKind.NOT_FOUND: "FACE_SCAN_NOT_FOUND",
}


def log_audit(
    db: Session,
    *,
    actor_type: AuditActorType,
    actor_id: str,
    action: str,
    success: bool,
    entity_type: str | None = None,
    entity_id: str | None = None,
    ip: str | None = None,
    user_agent: str | None = None,
    details: dict[str, Any] | None = None,
    request_id: str | None = None,
) -> None:
    audit = AuditLog(
        ts_utc=datetime.now(timezone.utc),
        actor_type=actor_type,
        actor_id=actor_id,
        action=action,
        entity_type=entity_type,
        entity_id=entity_id,
        ip=ip,
        user_agent=user_agent,
        success=success,
        details=details or {},
    )
    db.add(audit)
    try:
        db.commit()
    except Exception:
        db.rollback()
        logger.exception(
            "audit_log_write_failed",
            extra={
                "request_id": request_id,
                "action": action,
                "actor_type": actor_type.value,
                "actor_id": actor_id,
                "success": success,
            },
        )
        return

    logger.info(
        "audit_event",
        extra={
            "request_id": request_id,
            "action": action,
            "actor_type": actor_type.value,
            "actor_id": actor_id,
            "entity_type": entity_type,
            "entity_id": entity_id,
            "ip": ip,
            "success": success,
            "details": details or {},
        },
    )


def log_scan_audit(
    db: Session,
    *,
    outcome: ScanOutcome,
    ip: str | None,
    user_agent: str | None,
    request_id: str | None,
) -> None:
    member = outcome.member
    if member is not None:
        actor_type = AuditActorType.MEMBER
        actor_id = str(member.id)
    else:
        actor_type = AuditActorType.ANONYMOUS
        actor_id = ip or "unknown"

    log_audit(
        db,
        actor_type=actor_type,
        actor_id=actor_id,
        action=SCAN_AUDIT_ACTIONS[outcome.kind],
        success=outcome.kind == ScanOutcomeKind.MATCHED,
        entity_type="attendance" if outcome.attendance_id is not None else None,
        entity_id=str(outcome.attendance_id) if outcome.attendance_id is not None else None,
        ip=ip,
        user_agent=user_agent,
        details=outcome.to_flags(),
        request_id=request_id,
    )
