from fastapi import APIRouter, Depends, HTTPException, Query

from app.auth import require_principal
from app.models import NotificationRecord, Principal
from app.services.notification_store import notification_store

router = APIRouter(prefix="/notifications", tags=["notifications"])


@router.get("", response_model=list[NotificationRecord])
def list_notifications(
    unread_only: bool = Query(default=False),
    principal: Principal = Depends(require_principal),
):
    return notification_store.list_for_user(user_id=principal.user_id, unread_only=unread_only)


@router.post("/{notification_id}/read", response_model=NotificationRecord)
def mark_notification_read(notification_id: str, principal: Principal = Depends(require_principal)):
    updated = notification_store.mark_read(user_id=principal.user_id, notification_id=notification_id)
    if not updated:
        raise HTTPException(status_code=404, detail="Notification not found")
    return updated
