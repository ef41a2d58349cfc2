import hmac
from datetime import datetime, timezone

from fastapi import APIRouter, Depends, Header, Request
from sqlalchemy.orm import Session

from attendance_engine.audit import log_audit
from attendance_engine.db import get_db
from attendance_engine.errors import ApiError
from attendance_engine.models import AuditActorType
from attendance_engine.schemas import ReconciliationResponse
from attendance_engine.services.reconciliation import run_reconciliation
from attendance_engine.settings import get_settings

router = APIRouter(tags=["jobs"])


def require_job_token(x_job_token: str | None = Header(default=None)) -> None:
    expected = (get_settings().reconciliation_job_token or "").strip()
    if not expected:
        return
    if not x_job_token or not hmac.compare_digest(x_job_token.strip(), expected):
        raise ApiError(
            status_code=401,
            code="INVALID_JOB_TOKEN",
            message="Job token is missing or invalid.",
        )


@router.post(
    "/api/jobs/reconcile",
    response_model=ReconciliationResponse,
    dependencies=[Depends(require_job_token)],
)
def reconcile(
    request: Request,
    db: Session = Depends(get_db),
) -> ReconciliationResponse:
    request.state.actor = "scheduler"
    summary = run_reconciliation(datetime.now(timezone.utc), db=db)
    payload = summary.to_dict()
    log_audit(
        db,
        actor_type=AuditActorType.SYSTEM,
        actor_id="scheduler",
        action="ATTENDANCE_RECONCILED",
        success=True,
        entity_type="attendance",
        details=payload,
        request_id=getattr(request.state, "request_id", None),
    )
    return ReconciliationResponse(**payload)
