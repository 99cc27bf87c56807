import logging
from datetime import datetime, timezone
from threading import Lock
from typing import List, Optional
from uuid import uuid4

from app.models import NotificationRecord
from app.services.domain_events import DomainEventBus, JobAssigned, JobCompleted, QuoteAccepted

logger = logging.getLogger(__name__)


class NotificationStore:
    def __init__(self):
        self._lock = Lock()
        self._notifications: List[NotificationRecord] = []

    def create(
        self,
        user_id: str,
        title: str,
        body: str,
        category: str = "system",
        deep_link: Optional[str] = None,
    ) -> NotificationRecord:
        record = NotificationRecord(
            id=f"ntf_{uuid4().hex[:10]}",
            user_id=user_id,
            title=title,
            body=body,
            category=category,  # type: ignore[arg-type]
            read=False,
            created_at=datetime.now(timezone.utc).isoformat(),
            deep_link=deep_link,
        )
        with self._lock:
            self._notifications.insert(0, record)
        return record

    def list_for_user(self, user_id: str, unread_only: bool = False) -> List[NotificationRecord]:
        with self._lock:
            rows = [n for n in self._notifications if n.user_id == user_id]
            if unread_only:
                rows = [n for n in rows if not n.read]
            return rows[:100]

    def mark_read(self, user_id: str, notification_id: str) -> Optional[NotificationRecord]:
        with self._lock:
            for idx, row in enumerate(self._notifications):
                if row.id == notification_id and row.user_id == user_id:
                    updated = row.model_copy(update={"read": True})
                    self._notifications[idx] = updated
                    return updated
        return None


def register_marketplace_notifications(bus: DomainEventBus, store: NotificationStore) -> None:
    """Subscribe the notification store to engine events.

    Completion events turn into rating prompts for the poster; the rating
    itself is submitted separately through the rating ledger.
    """

    def on_job_assigned(event: JobAssigned) -> None:
        store.create(
            user_id=event.poster_id,
            title="Job accepted",
            body="A worker accepted your job request.",
            category="job",
            deep_link=f"job:{event.job_id}",
        )

    def on_job_completed(event: JobCompleted) -> None:
        store.create(
            user_id=event.poster_id,
            title="Rate your worker",
            body="Your job is complete. How did it go?",
            category="rating",
            deep_link=f"rate:job:{event.job_id}:{event.worker_id}",
        )

    def on_quote_accepted(event: QuoteAccepted) -> None:
        store.create(
            user_id=event.provider_id,
            title="Quote accepted",
            body=f"Your quote of {event.price:.2f} was accepted.",
            category="maintenance",
            deep_link=f"service:{event.request_id}",
        )
        store.create(
            user_id=event.poster_id,
            title="Rate your technician",
            body="You accepted a quote. Rate the technician once the work is done.",
            category="rating",
            deep_link=f"rate:service:{event.quote_id}:{event.provider_id}",
        )

    bus.subscribe(JobAssigned, on_job_assigned)
    bus.subscribe(JobCompleted, on_job_completed)
    bus.subscribe(QuoteAccepted, on_quote_accepted)
    logger.info("Marketplace notification handlers registered")


notification_store = NotificationStore()
