"""In-process domain events emitted by the marketplace engine.

Events are published after the owning transaction commits, once per
successful transition. Subscribers (notifications, rating prompts) run
synchronously in the publishing thread.
"""

import logging
from threading import Lock
from typing import Callable, Dict, List, Optional, Type

from pydantic import BaseModel

logger = logging.getLogger(__name__)


class DomainEvent(BaseModel):
    occurred_at: str


class JobAssigned(DomainEvent):
    job_id: str
    poster_id: str
    worker_id: str


class JobCompleted(DomainEvent):
    job_id: str
    poster_id: str
    worker_id: str


class QuoteAccepted(DomainEvent):
    quote_id: str
    request_id: str
    poster_id: str
    provider_id: str
    price: float
    rejected_quote_ids: List[str] = []


Handler = Callable[[DomainEvent], None]


class DomainEventBus:
    def __init__(self) -> None:
        self._lock = Lock()
        self._handlers: Dict[Type[DomainEvent], List[Handler]] = {}

    def subscribe(self, event_type: Type[DomainEvent], handler: Handler) -> None:
        with self._lock:
            self._handlers.setdefault(event_type, []).append(handler)

    def unsubscribe(self, event_type: Type[DomainEvent], handler: Optional[Handler] = None) -> None:
        with self._lock:
            if handler is None:
                self._handlers.pop(event_type, None)
                return
            handlers = self._handlers.get(event_type, [])
            if handler in handlers:
                handlers.remove(handler)

    def publish(self, event: DomainEvent) -> None:
        with self._lock:
            handlers = list(self._handlers.get(type(event), []))
        for handler in handlers:
            try:
                handler(event)
            except Exception:
                # Handler errors never propagate to the committed transition.
                logger.exception("Domain event handler failed for %s", type(event).__name__)


domain_events = DomainEventBus()
