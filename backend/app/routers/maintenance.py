from typing import Optional

from fastapi import APIRouter, Depends, Query

from app.auth import require_principal, require_role
from app.http_errors import raise_marketplace_http_error
from app.models import Principal, Quote, QuoteSubmitRequest, ServiceRequest, ServiceRequestCreate
from app.services.capability_filter import list_eligible
from app.services.marketplace_store import MarketplaceError
from app.services.profile_store import profile_store
from app.services.quote_market import quote_market
from app.services.service_requests import service_request_desk

router = APIRouter(prefix="/maintenance", tags=["maintenance"])

POSTER_ROLES = ("contractor", "customer")


@router.post("/requests", response_model=ServiceRequest)
def open_service_request(
    request: ServiceRequestCreate,
    principal: Principal = Depends(require_role(*POSTER_ROLES)),
):
    try:
        return service_request_desk.open_service_request(
            poster_id=principal.user_id,
            equipment_type=request.equipment_type,
            maintenance_type=request.maintenance_type,
            location=request.location,
            urgency=request.urgency,
            budget_range=request.budget_range,
            attachments=request.attachments,
            description=request.description,
            equipment_name=request.equipment_name,
            preferred_date=request.preferred_date,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/requests/open", response_model=list[ServiceRequest])
def list_open_service_requests(principal: Principal = Depends(require_role("technician"))):
    try:
        profile = profile_store.get_technician_profile(principal.user_id)
        return list_eligible("service", profile, service_request_desk.list_open_service_requests())
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/requests/mine", response_model=list[ServiceRequest])
def list_my_service_requests(principal: Principal = Depends(require_role(*POSTER_ROLES))):
    return service_request_desk.list_posted_service_requests(principal.user_id)


@router.get("/requests/{request_id}", response_model=ServiceRequest)
def get_service_request(request_id: str, principal: Principal = Depends(require_principal)):
    try:
        return service_request_desk.get_service_request(request_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.post("/requests/{request_id}/cancel", response_model=ServiceRequest)
def cancel_service_request(request_id: str, principal: Principal = Depends(require_principal)):
    try:
        return service_request_desk.cancel_service_request(request_id, actor_user_id=principal.user_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.post("/requests/{request_id}/quotes", response_model=Quote)
def submit_quote(
    request_id: str,
    request: QuoteSubmitRequest,
    principal: Principal = Depends(require_role("technician")),
):
    try:
        return quote_market.submit_quote(
            request_id,
            provider_id=principal.user_id,
            price=request.price,
            description=request.description,
            estimated_duration=request.estimated_duration,
            availability=request.availability,
            arrival_time=request.arrival_time,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/requests/{request_id}/quotes", response_model=list[Quote])
def list_quotes(
    request_id: str,
    sort: str = Query(default="submitted"),
    principal: Principal = Depends(require_principal),
):
    try:
        return quote_market.list_quotes(request_id, actor_user_id=principal.user_id, sort=sort)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/quotes/mine", response_model=list[Quote])
def list_my_quotes(
    status: Optional[str] = Query(default=None),
    principal: Principal = Depends(require_role("technician")),
):
    try:
        return quote_market.list_provider_quotes(principal.user_id, status=status)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.post("/quotes/{quote_id}/accept", response_model=ServiceRequest)
def accept_quote(quote_id: str, principal: Principal = Depends(require_principal)):
    try:
        return quote_market.accept_quote(quote_id, actor_user_id=principal.user_id)
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)
