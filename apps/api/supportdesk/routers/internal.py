"""
Internal endpoints for scheduled/cron operations.

Protected by X-Internal-Secret header.
Call from external cron when the worker's own scheduler tick is disabled,
or from admin tooling (Telegram setup codes).
"""

import hmac
from uuid import UUID

from fastapi import APIRouter, Depends, Header, HTTPException
from pydantic import BaseModel
from sqlalchemy.orm import Session

from supportdesk.core.config import settings
from supportdesk.core.deps import get_db
from supportdesk.db.models import Organization
from supportdesk.services import job_service, telegram_setup_service
from supportdesk.services.scheduler_service import schedule_periodic_jobs

router = APIRouter(prefix="/internal", tags=["internal"])


def verify_internal_secret(x_internal_secret: str = Header(...)):
    """Verify the internal secret header."""
    expected = settings.INTERNAL_SECRET
    if not expected:
        raise HTTPException(status_code=501, detail="INTERNAL_SECRET not configured")
    if not hmac.compare_digest(x_internal_secret.encode(), expected.encode()):
        raise HTTPException(status_code=403, detail="Invalid internal secret")


class PeriodicJobsResponse(BaseModel):
    recurring_issues: int
    analytics: int
    channel_sync: int


class StalledJobsResponse(BaseModel):
    requeued: int


@router.post("/scheduled/periodic-jobs", response_model=PeriodicJobsResponse)
def run_periodic_jobs(
    x_internal_secret: str = Header(...),
    db: Session = Depends(get_db),
):
    """Enqueue due recurring-issue, analytics and channel-sync jobs."""
    verify_internal_secret(x_internal_secret)
    return PeriodicJobsResponse(**schedule_periodic_jobs(db))


@router.post("/scheduled/stalled-jobs", response_model=StalledJobsResponse)
def requeue_stalled_jobs(
    x_internal_secret: str = Header(...),
    db: Session = Depends(get_db),
):
    """Retry (or fail) running jobs whose worker died mid-execution."""
    verify_internal_secret(x_internal_secret)
    return StalledJobsResponse(requeued=job_service.requeue_stalled_jobs(db))


class SetupCodeResponse(BaseModel):
    code: str
    expires_in_seconds: int


@router.post("/telegram/setup-code/{organization_id}", response_model=SetupCodeResponse)
def create_telegram_setup_code(
    organization_id: UUID,
    x_internal_secret: str = Header(...),
    db: Session = Depends(get_db),
):
    """Issue the code an org admin sends to the shared bot as ``/connect CODE``."""
    verify_internal_secret(x_internal_secret)
    if db.get(Organization, organization_id) is None:
        raise HTTPException(status_code=404, detail="Organization not found")
    return SetupCodeResponse(
        code=telegram_setup_service.generate_setup_code(organization_id),
        expires_in_seconds=telegram_setup_service.SETUP_CODE_TTL_SECONDS,
    )
