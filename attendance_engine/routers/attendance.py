from fastapi import APIRouter, Depends, Request
from sqlalchemy.orm import Session

from attendance_engine.audit import log_scan_audit
from attendance_engine.db import get_db
from attendance_engine.schemas import ScanRequest, ScanResponse, ScanUser
from attendance_engine.services.attendance import ScanOutcome, ScanOutcomeKind, process_scan
from attendance_engine.services.face_compare import FaceComparer, get_face_comparer

router = APIRouter(tags=["attendance"])


def _client_ip(request: Request) -> str | None:
    forwarded_for = request.headers.get("x-forwarded-for")
    if forwarded_for:
        return forwarded_for.split(",")[0].strip()
    if request.client:
        return request.client.host
    return None


def _user_agent(request: Request) -> str | None:
    return request.headers.get("user-agent")


def _to_response(outcome: ScanOutcome) -> ScanResponse:
    if outcome.kind == ScanOutcomeKind.NOT_FOUND or outcome.member is None:
        return ScanResponse(match=False, error=outcome.error, message=outcome.message)

    member = outcome.member
    user = ScanUser(user_id=member.id, first_name=member.first_name, last_name=member.last_name)
    action = outcome.action.value if outcome.action is not None else None

    if outcome.kind == ScanOutcomeKind.LOCATION_MISMATCH:
        return ScanResponse(
            match=True,
            user=user,
            confidence=outcome.confidence,
            error=outcome.error,
            message=outcome.message,
            action=action,
        )

    return ScanResponse(
        match=True,
        user=user,
        confidence=outcome.confidence,
        action=action,
        status=outcome.status.value if outcome.status is not None else None,
    )


@router.post(
    "/api/attendance/scan",
    response_model=ScanResponse,
    response_model_exclude_none=True,
)
def scan(
    payload: ScanRequest,
    request: Request,
    db: Session = Depends(get_db),
    comparer: FaceComparer = Depends(get_face_comparer),
) -> ScanResponse:
    request.state.actor = "scanner"
    outcome = process_scan(
        db,
        captured_image_url=payload.captured_image_url,
        latitude=payload.user_location.latitude,
        longitude=payload.user_location.longitude,
        comparer=comparer,
    )
    request.state.member_id = outcome.member.id if outcome.member is not None else None
    request.state.scan_outcome = outcome.kind.value
    request.state.attendance_id = outcome.attendance_id
    log_scan_audit(
        db,
        outcome=outcome,
        ip=_client_ip(request),
        user_agent=_user_agent(request),
        request_id=getattr(request.state, "request_id", None),
    )
    return _to_response(outcome)
