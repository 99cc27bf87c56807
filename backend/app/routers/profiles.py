from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth import require_role
from app.http_errors import raise_marketplace_http_error
from app.models import (
    Principal,
    TechnicianProfile,
    TechnicianProfileUpsertRequest,
    WorkerCapabilityProfile,
    WorkerProfileUpsertRequest,
)
from app.services.marketplace_store import MarketplaceError
from app.services.profile_store import profile_store

router = APIRouter(prefix="/profiles", tags=["profiles"])

POSTER_ROLES = ("contractor", "customer")


@router.put("/worker", response_model=WorkerCapabilityProfile)
def upsert_worker_profile(
    request: WorkerProfileUpsertRequest,
    principal: Principal = Depends(require_role("worker")),
):
    try:
        return profile_store.upsert_worker_profile(
            owner_id=principal.user_id,
            work_type=request.work_type,
            owns_equipment=request.owns_equipment,
            available=request.available,
            bio=request.bio,
            location=request.location,
            experience_years=request.experience_years,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/workers", response_model=list[WorkerCapabilityProfile])
def list_available_workers(
    work_type: Optional[str] = Query(default=None),
    principal: Principal = Depends(require_role(*POSTER_ROLES)),
):
    try:
        return profile_store.list_available_workers(work_type=work_type)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/worker/{owner_id}", response_model=WorkerCapabilityProfile)
def get_worker_profile(owner_id: str):
    try:
        return profile_store.get_worker_profile(owner_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.put("/technician", response_model=TechnicianProfile)
def upsert_technician_profile(
    request: TechnicianProfileUpsertRequest,
    principal: Principal = Depends(require_role("technician")),
):
    try:
        return profile_store.upsert_technician_profile(
            owner_id=principal.user_id,
            specializations=request.specializations,
            available=request.available,
            bio=request.bio,
            location=request.location,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/technician/{owner_id}", response_model=TechnicianProfile)
def get_technician_profile(owner_id: str):
    try:
        return profile_store.get_technician_profile(owner_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
