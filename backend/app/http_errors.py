from typing import NoReturn

from fastapi import HTTPException

from app.services.marketplace_store import (
    AlreadyAssignedError,
    AlreadyResolvedError,
    DuplicateSubmissionError,
    InvalidStateTransitionError,
    MarketplaceError,
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    SchemaCompatibilityError,
)

CONFLICT_ERRORS = (
    AlreadyAssignedError,
    AlreadyResolvedError,
    DuplicateSubmissionError,
    InvalidStateTransitionError,
)


def raise_marketplace_http_error(exc: MarketplaceError) -> NoReturn:
    detail = {"code": exc.code, "message": str(exc)}
    if isinstance(exc, MarketplaceNotFoundError):
        raise HTTPException(status_code=404, detail=detail) from exc
    if isinstance(exc, MarketplacePermissionError):
        raise HTTPException(status_code=403, detail=detail) from exc
    if isinstance(exc, CONFLICT_ERRORS):
        raise HTTPException(status_code=409, detail=detail) from exc
    if isinstance(exc, SchemaCompatibilityError):
        raise HTTPException(status_code=500, detail=detail) from exc
    raise HTTPException(status_code=400, detail=detail) from exc
