from fastapi import APIRouter, Depends, Query

from app.auth import require_principal
from app.http_errors import raise_marketplace_http_error
from app.models import Principal, Rating, RatingAggregate, RatingSubmitRequest
from app.services.marketplace_store import MarketplaceError
from app.services.rating_ledger import rating_ledger

router = APIRouter(prefix="/ratings", tags=["ratings"])


@router.post("", response_model=Rating)
def submit_rating(request: RatingSubmitRequest, principal: Principal = Depends(require_principal)):
    try:
        return rating_ledger.submit_rating(
            engagement_kind=request.engagement_kind,
            engagement_id=request.engagement_id,
            rater_id=principal.user_id,
            subject_id=request.subject_id,
            score=request.score,
            review=request.review,
        )
    except MarketplaceError as exc:
        raise_marketplace_http_error(exc)


@router.get("/{subject_id}", response_model=list[Rating])
def list_ratings(subject_id: str, limit: int = Query(default=100, ge=1, le=500)):
    return rating_ledger.list_ratings(subject_id, limit=limit)


@router.get("/{subject_id}/summary", response_model=RatingAggregate)
def get_rating_summary(subject_id: str):
    return rating_ledger.get_aggregate(subject_id)
