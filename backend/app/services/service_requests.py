import json
import logging
from dataclasses import dataclass
from typing import List, Optional

from app.models import EQUIPMENT_TYPES, MAINTENANCE_TYPES, URGENCY_LEVELS, ServiceRequest
from app.services.marketplace_store import (
    InvalidStateTransitionError,
    MarketplaceNotFoundError,
    MarketplacePermissionError,
    MarketplaceStore,
    MarketplaceValidationError,
    marketplace_store,
    new_id,
    require_choice,
    require_text,
    require_timestamp,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


@dataclass
class ServiceRequestDesk:
    """Maintenance/repair requests opened by posters for technicians to quote on."""

    store: MarketplaceStore

    def open_service_request(
        self,
        *,
        poster_id: str,
        equipment_type: str,
        maintenance_type: str,
        location: str,
        urgency: str = "medium",
        budget_range: Optional[str] = None,
        attachments: Optional[List[str]] = None,
        description: str = "",
        equipment_name: str = "",
        preferred_date: Optional[str] = None,
    ) -> ServiceRequest:
        cleaned_equipment = require_choice(equipment_type, EQUIPMENT_TYPES, "equipment_type")
        cleaned_maintenance = require_choice(maintenance_type, MAINTENANCE_TYPES, "maintenance_type")
        cleaned_urgency = require_choice(urgency, URGENCY_LEVELS, "urgency")
        cleaned_location = require_text(location, "location")
        cleaned_preferred_date = require_timestamp(preferred_date, "preferred_date") if preferred_date else None
        attachment_urls = list(attachments or [])
        if any(not isinstance(url, str) or not url.strip() for url in attachment_urls):
            raise MarketplaceValidationError("Attachments must be non-empty URL strings")
        cleaned_budget = (budget_range or "").strip() or None

        now_iso = utc_now_iso()
        request_id = new_id("sr")
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO service_requests (
                    id, poster_id, equipment_type, maintenance_type, location, urgency, status,
                    budget_range, attachments_json, description, equipment_name, preferred_date,
                    created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, 'open', ?, ?, ?, ?, ?, ?, ?)
                """,
                (
                    request_id,
                    poster_id,
                    cleaned_equipment,
                    cleaned_maintenance,
                    cleaned_location,
                    cleaned_urgency,
                    cleaned_budget,
                    json.dumps(attachment_urls),
                    description.strip(),
                    equipment_name.strip(),
                    cleaned_preferred_date,
                    now_iso,
                    now_iso,
                ),
            )
            self.store.record_status_change(
                conn,
                entity_kind="service_request",
                entity_id=request_id,
                actor_id=poster_id,
                from_status="none",
                to_status="open",
            )
            row = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
        logger.info("Service request %s opened by %s (%s/%s)", request_id, poster_id, cleaned_equipment, cleaned_maintenance)
        return self.store.service_request_from_row(row)

    def get_service_request(self, request_id: str) -> ServiceRequest:
        with self.store.read() as conn:
            row = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Service request not found")
        return self.store.service_request_from_row(row)

    def cancel_service_request(self, request_id: str, *, actor_user_id: str) -> ServiceRequest:
        with self.store.transaction() as conn:
            row = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
            if not row:
                raise MarketplaceNotFoundError("Service request not found")
            if row["poster_id"] != actor_user_id:
                raise MarketplacePermissionError("Only the poster can cancel this service request")
            cursor = conn.execute(
                "UPDATE service_requests SET status = 'cancelled', updated_at = ? WHERE id = ? AND status = 'open'",
                (utc_now_iso(), request_id),
            )
            if cursor.rowcount == 0:
                raise InvalidStateTransitionError(f"Cannot cancel a service request in status {row['status']}")
            self.store.record_status_change(
                conn,
                entity_kind="service_request",
                entity_id=request_id,
                actor_id=actor_user_id,
                from_status="open",
                to_status="cancelled",
            )
            updated = conn.execute("SELECT * FROM service_requests WHERE id = ?", (request_id,)).fetchone()
        logger.info("Service request %s cancelled by %s", request_id, actor_user_id)
        return self.store.service_request_from_row(updated)

    def list_open_service_requests(self) -> List[ServiceRequest]:
        with self.store.read() as conn:
            rows = conn.execute(
                "SELECT * FROM service_requests WHERE status = 'open' ORDER BY created_at DESC"
            ).fetchall()
        return [self.store.service_request_from_row(row) for row in rows]

    def list_posted_service_requests(self, poster_id: str) -> List[ServiceRequest]:
        with self.store.read() as conn:
            rows = conn.execute(
                "SELECT * FROM service_requests WHERE poster_id = ? ORDER BY created_at DESC",
                (poster_id,),
            ).fetchall()
        return [self.store.service_request_from_row(row) for row in rows]


service_request_desk = ServiceRequestDesk(store=marketplace_store)
