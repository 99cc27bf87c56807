from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth import require_principal, require_role
from app.http_errors import raise_marketplace_http_error
from app.models import JobRequest, JobRequestCreate, Principal, StatusChange
from app.services.capability_filter import list_eligible
from app.services.job_board import job_board
from app.services.marketplace_store import MarketplaceError
from app.services.profile_store import profile_store

router = APIRouter(prefix="/jobs", tags=["jobs"])

POSTER_ROLES = ("contractor", "customer")


@router.post("", response_model=JobRequest)
def create_job(
    request: JobRequestCreate,
    principal: Principal = Depends(require_role(*POSTER_ROLES)),
):
    try:
        return job_board.create_job_request(
            poster_id=principal.user_id,
            work_type=request.work_type,
            service_type=request.service_type,
            location=request.location,
            scheduled_at=request.scheduled_at,
            urgency=request.urgency,
            detail=request.detail,
            notes=request.notes,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/eligible", response_model=list[JobRequest])
def list_eligible_jobs(principal: Principal = Depends(require_role("worker"))):
    try:
        profile = profile_store.get_worker_profile(principal.user_id)
        return list_eligible("job", profile, job_board.list_open_jobs())
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/mine", response_model=list[JobRequest])
def list_my_posted_jobs(principal: Principal = Depends(require_role(*POSTER_ROLES))):
    return job_board.list_posted_jobs(principal.user_id)


@router.get("/assigned", response_model=list[JobRequest])
def list_my_assigned_jobs(
    status: Optional[str] = Query(default=None),
    principal: Principal = Depends(require_role("worker")),
):
    try:
        return job_board.list_assigned_jobs(principal.user_id, status=status)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/{job_id}", response_model=JobRequest)
def get_job(job_id: str, principal: Principal = Depends(require_principal)):
    try:
        return job_board.get_job_request(job_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/{job_id}/history", response_model=list[StatusChange])
def get_job_history(job_id: str, principal: Principal = Depends(require_principal)):
    try:
        return job_board.job_history(job_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.post("/{job_id}/accept", response_model=JobRequest)
def accept_job(job_id: str, principal: Principal = Depends(require_role("worker"))):
    try:
        return job_board.accept_job(job_id, worker_id=principal.user_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.post("/{job_id}/complete", response_model=JobRequest)
def complete_job(job_id: str, principal: Principal = Depends(require_principal)):
    try:
        return job_board.complete_job(job_id, actor_user_id=principal.user_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.post("/{job_id}/cancel", response_model=JobRequest)
def cancel_job(job_id: str, principal: Principal = Depends(require_principal)):
    try:
        return job_board.cancel_job_request(job_id, actor_user_id=principal.user_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
