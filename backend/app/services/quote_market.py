import logging
import math
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from app.models import ESTIMATED_DURATIONS, QUOTE_AVAILABILITY, QUOTE_STATUSES, Quote, ServiceRequest
from app.services.domain_events import DomainEventBus, QuoteAccepted, domain_events
from app.services.marketplace_store import (
    AlreadyResolvedError,
    DuplicateSubmissionError,
    InvalidStateTransitionError,
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceStore,
    MarketplaceValidationError,
    marketplace_store,
    new_id,
    require_choice,
    utc_now_iso,
)

logger = logging.getLogger(__name__)

QUOTE_SORT_ORDERS = {
    "submitted": "created_at ASC, rowid ASC",
    "price": "price ASC, created_at ASC, rowid ASC",
}


@dataclass
class QuoteMarket:
    """Quote submission and resolution for service requests.

    Any number of technicians may bid on an open request. The poster then
    accepts exactly one bid; accepting closes the request and rejects every
    other pending bid in the same transaction.
    """

    store: MarketplaceStore
    events: DomainEventBus

    def submit_quote(
        self,
        request_id: str,
        *,
        provider_id: str,
        price: float,
        description: str = "",
        estimated_duration: Optional[str] = None,
        availability: Optional[str] = None,
        arrival_time: Optional[str] = None,
    ) -> Quote:
        try:
            cleaned_price = float(price)
        except (TypeError, ValueError) as exc:
            raise MarketplaceValidationError("price must be a number") from exc
        if not math.isfinite(cleaned_price) or cleaned_price <= 0:
            raise MarketplaceValidationError("price must be greater than 0")
        cleaned_duration = (
            require_choice(estimated_duration, ESTIMATED_DURATIONS, "estimated_duration")
            if estimated_duration
            else None
        )
        cleaned_availability = (
            require_choice(availability, QUOTE_AVAILABILITY, "availability") if availability else None
        )
        cleaned_arrival_time = (arrival_time or "").strip() or None

        quote_id = new_id("qt")
        with self.store.transaction() as conn:
            request_row = conn.execute("SELECT status FROM service_requests WHERE id = ?", (request_id,)).fetchone()
            if not request_row:
                raise MarketplaceNotFoundError("Service request not found")
            if request_row["status"] != "open":
                raise InvalidStateTransitionError(f"Service request is {request_row['status']}; quotes are closed")
            try:
                conn.execute(
                    """
                    INSERT INTO quotes (
                        id, request_id, provider_id, price, description, estimated_duration, availability, arrival_time,
                        status, created_at
                    ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, 'pending', ?)
                    """,
                    (
                        quote_id,
                        request_id,
                        provider_id,
                        cleaned_price,
                        description.strip(),
                        cleaned_duration,
                        cleaned_availability,
                        cleaned_arrival_time,
                        utc_now_iso(),
                    ),
                )
            except sqlite3.IntegrityError as exc:
                raise DuplicateSubmissionError("Provider already has a live quote on this request") from exc
            row = conn.execute("SELECT * FROM quotes WHERE id = ?", (quote_id,)).fetchone()
        logger.info("Quote %s submitted by %s on %s (%.2f)", quote_id, provider_id, request_id, cleaned_price)
        return self.store.quote_from_row(row)

    def list_quotes(self, request_id: str, *, actor_user_id: str, sort: str = "submitted") -> List[Quote]:
        """List every quote on a request for its poster.

        Default order is submission time ascending; ``sort="price"`` orders by
        price ascending with submission time as the tie-breaker.
        """
        order_by = QUOTE_SORT_ORDERS.get(sort)
        if order_by is None:
            raise MarketplaceValidationError(f"Invalid sort. Allowed: {', '.join(QUOTE_SORT_ORDERS)}")
        with self.store.read() as conn:
            request_row = conn.execute("SELECT poster_id FROM service_requests WHERE id = ?", (request_id,)).fetchone()
            if not request_row:
                raise MarketplaceNotFoundError("Service request not found")
            if request_row["poster_id"] != actor_user_id:
                raise MarketplacePermissionError("Only the poster can view quotes for this request")
            rows = conn.execute(
                f"SELECT * FROM quotes WHERE request_id = ? ORDER BY {order_by}",
                (request_id,),
            ).fetchall()
        return [self.store.quote_from_row(row) for row in rows]

    def list_provider_quotes(self, provider_id: str, status: Optional[str] = None) -> List[Quote]:
        query = "SELECT * FROM quotes WHERE provider_id = ?"
        params: List[str] = [provider_id]
        if status is not None:
            params.append(require_choice(status, QUOTE_STATUSES, "status"))
            query += " AND status = ?"
        query += " ORDER BY created_at DESC"
        with self.store.read() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self.store.quote_from_row(row) for row in rows]

    def get_quote(self, quote_id: str) -> Quote:
        with self.store.read() as conn:
            row = conn.execute("SELECT * FROM quotes WHERE id = ?", (quote_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Quote not found")
        return self.store.quote_from_row(row)

    def accept_quote(self, quote_id: str, *, actor_user_id: str) -> ServiceRequest:
        now_iso = utc_now_iso()
        with self.store.transaction() as conn:
            quote_row = conn.execute("SELECT * FROM quotes WHERE id = ?", (quote_id,)).fetchone()
            if not quote_row:
                raise MarketplaceNotFoundError("Quote not found")
            request_id = quote_row["request_id"]
            request_row = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
            if not request_row:
                raise MarketplaceNotFoundError("Service request not found")
            if request_row["poster_id"] != actor_user_id:
                raise MarketplacePermissionError("Only the poster can accept a quote")

            closed = conn.execute(
                "UPDATE service_requests SET status = 'closed', updated_at = ? WHERE id = ? AND status = 'open'",
                (now_iso, request_id),
            )
            if closed.rowcount == 0:
                logger.info("Accept of quote %s lost: request %s already %s", quote_id, request_id, request_row["status"])
                raise AlreadyResolvedError(f"Service request is already {request_row['status']}")

            accepted = conn.execute(
                "UPDATE quotes SET status = 'accepted' WHERE id = ? AND status = 'pending'",
                (quote_id,),
            )
            if accepted.rowcount == 0:
                raise InvalidStateTransitionError(f"Quote is {quote_row['status']}, not pending")

            rejected_ids = [
                row["id"]
                for row in conn.execute(
                    "SELECT id FROM quotes WHERE request_id = ? AND status = 'pending' AND id != ?",
                    (request_id, quote_id),
                ).fetchall()
            ]
            conn.execute(
                "UPDATE quotes SET status = 'rejected' WHERE request_id = ? AND status = 'pending' AND id != ?",
                (request_id, quote_id),
            )

            self.store.record_status_change(
                conn,
                entity_kind="service_request",
                entity_id=request_id,
                actor_id=actor_user_id,
                from_status="open",
                to_status="closed",
            )
            self.store.record_status_change(
                conn, entity_kind="quote", entity_id=quote_id, actor_id=actor_user_id, from_status="pending", to_status="accepted"
            )
            for rejected_id in rejected_ids:
                self.store.record_status_change(
                    conn,
                    entity_kind="quote",
                    entity_id=rejected_id,
                    actor_id=actor_user_id,
                    from_status="pending",
                    to_status="rejected",
                )
            updated = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()

        service_request = self.store.service_request_from_row(updated)
        logger.info(
            "Quote %s accepted on %s; %d other quote(s) rejected", quote_id, request_id, len(rejected_ids)
        )
        self.events.publish(
            QuoteAccepted(
                quote_id=quote_id,
                request_id=request_id,
                poster_id=service_request.poster_id,
                provider_id=quote_row["provider_id"],
                price=float(quote_row["price"]),
                rejected_quote_ids=rejected_ids,
                occurred_at=now_iso,
            )
        )
        return service_request


quote_market = QuoteMarket(store=marketplace_store, events=domain_events)
