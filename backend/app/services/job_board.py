import json
import logging
from dataclasses import dataclass
from typing import List, Optional, Union

from pydantic import ValidationError

from app.models import (
    SERVICE_TYPES,
    URGENCY_LEVELS,
    WORK_TYPES,
    JobDetail,
    JobRequest,
    SandDeliveryDetail,
    StandardDetail,
    StatusChange,
)
from app.services.domain_events import DomainEventBus, JobAssigned, JobCompleted, domain_events
from app.services.marketplace_store import (
    AlreadyAssignedError,
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


def detail_from_notes(notes: Optional[str]) -> Union[StandardDetail, SandDeliveryDetail]:
    """Parse legacy free-text job notes into a typed detail.

    Older clients stored sand deliveries as a JSON object in the notes field,
    e.g. ``{"type": "sand_delivery", "quantity": 3, "sandType": "washed"}``.
    Anything else is kept as plain notes.
    """
    text = (notes or "").strip()
    if not text.startswith("{"):
        return StandardDetail(notes=text)
    try:
        payload = json.loads(text)
    except ValueError:
        return StandardDetail(notes=text)
    if not isinstance(payload, dict) or payload.get("type") != "sand_delivery":
        return StandardDetail(notes=text)
    try:
        return SandDeliveryDetail(
            quantity=payload.get("quantity", 1),
            material=payload.get("material") or payload.get("sandType") or "",
        )
    except ValidationError as exc:
        raise MarketplaceValidationError(f"Invalid sand delivery notes: {exc.errors()[0]['msg']}") from exc


@dataclass
class JobBoard:
    """Job posting service and assignment coordinator."""

    store: MarketplaceStore
    events: DomainEventBus

    def create_job_request(
        self,
        *,
        poster_id: str,
        work_type: str,
        service_type: str,
        location: str,
        scheduled_at: str,
        urgency: str = "medium",
        detail: Optional[JobDetail] = None,
        notes: Optional[str] = None,
    ) -> JobRequest:
        cleaned_work_type = require_choice(work_type, WORK_TYPES, "work_type")
        cleaned_service_type = require_choice(service_type, SERVICE_TYPES, "service_type")
        cleaned_urgency = require_choice(urgency, URGENCY_LEVELS, "urgency")
        cleaned_location = require_text(location, "location")
        cleaned_scheduled_at = require_timestamp(scheduled_at, "scheduled_at")
        if detail is None:
            detail = detail_from_notes(notes)

        now_iso = utc_now_iso()
        job_id = new_id("job")
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO job_requests (
                    id, poster_id, work_type, service_type, location, scheduled_at, urgency,
                    status, assigned_worker_id, detail_json, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, 'open', NULL, ?, ?, ?)
                """,
                (
                    job_id,
                    poster_id,
                    cleaned_work_type,
                    cleaned_service_type,
                    cleaned_location,
                    cleaned_scheduled_at,
                    cleaned_urgency,
                    detail.model_dump_json(),
                    now_iso,
                    now_iso,
                ),
            )
            self.store.record_status_change(
                conn, entity_kind="job", entity_id=job_id, actor_id=poster_id, from_status="none", to_status="open"
            )
            row = conn.execute("SELECT * FROM job_requests WHERE id = ?", (job_id,)).fetchone()
        logger.info("Job %s posted by %s (%s)", job_id, poster_id, cleaned_work_type)
        return self.store.job_from_row(row)

    def get_job_request(self, job_id: str) -> JobRequest:
        with self.store.read() as conn:
            row = conn.execute("SELECT * FROM job_requests WHERE id = ?", (job_id,)).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Job request not found")
        return self.store.job_from_row(row)

    def cancel_job_request(self, job_id: str, *, actor_user_id: str) -> JobRequest:
        with self.store.transaction() as conn:
            row = conn.execute("SELECT * FROM job_requests WHERE id = ?", (job_id,)).fetchone()
            if not row:
                raise MarketplaceNotFoundError("Job request not found")
            if row["poster_id"] != actor_user_id:
                raise MarketplacePermissionError("Only the poster can cancel this job")
            cursor = conn.execute(
                "UPDATE job_requests SET status = 'cancelled', updated_at = ? WHERE id = ? AND status = 'open'",
                (utc_now_iso(), job_id),
            )
            if cursor.rowcount == 0:
                raise InvalidStateTransitionError(f"Cannot cancel a job in status {row['status']}")
            self.store.record_status_change(
                conn, entity_kind="job", entity_id=job_id, actor_id=actor_user_id, from_status="open", to_status="cancelled"
            )
            updated = conn.execute("SELECT * FROM job_requests WHERE id = ?", (job_id,)).fetchone()
        logger.info("Job %s cancelled by %s", job_id, actor_user_id)
        return self.store.job_from_row(updated)

    def accept_job(self, job_id: str, *, worker_id: str) -> JobRequest:
        """Assign an open job to ``worker_id``.

        The assignment is one conditional write keyed on ``status = 'open'``.
        When it matches no row the caller lost the race (or the job was never
        open) and the outcome is final: no retry is attempted.
        """
        now_iso = utc_now_iso()
        with self.store.transaction() as conn:
            cursor = conn.execute(
                """
                UPDATE job_requests
                SET status = 'assigned', assigned_worker_id = ?, updated_at = ?
                WHERE id = ? AND status = 'open'
                """,
                (worker_id, now_iso, job_id),
            )
            if cursor.rowcount == 0:
                row = conn.execute("SELECT status FROM job_requests WHERE id = ?", (job_id,)).fetchone()
                if not row:
                    raise MarketplaceNotFoundError("Job request not found")
                if row["status"] == "cancelled":
                    raise InvalidStateTransitionError("Job request was cancelled")
                logger.info("Worker %s lost accept race on job %s", worker_id, job_id)
                raise AlreadyAssignedError("Job request is already assigned")
            self.store.record_status_change(
                conn, entity_kind="job", entity_id=job_id, actor_id=worker_id, from_status="open", to_status="assigned"
            )
            row = conn.execute("SELECT * FROM job_requests WHERE id = ?", (job_id,)).fetchone()

        job = self.store.job_from_row(row)
        logger.info("Job %s assigned to %s", job_id, worker_id)
        self.events.publish(
            JobAssigned(job_id=job.id, poster_id=job.poster_id, worker_id=worker_id, occurred_at=now_iso)
        )
        return job

    def complete_job(self, job_id: str, *, actor_user_id: str) -> JobRequest:
        now_iso = utc_now_iso()
        with self.store.transaction() as conn:
            row = conn.execute("SELECT * FROM job_requests WHERE id = ?", (job_id,)).fetchone()
            if not row:
                raise MarketplaceNotFoundError("Job request not found")
            if row["poster_id"] != actor_user_id:
                raise MarketplacePermissionError("Only the poster can complete this job")
            cursor = conn.execute(
                "UPDATE job_requests SET status = 'completed', updated_at = ? WHERE id = ? AND status = 'assigned'",
                (now_iso, job_id),
            )
            if cursor.rowcount == 0:
                raise InvalidStateTransitionError(f"Cannot complete a job in status {row['status']}")
            self.store.record_status_change(
                conn,
                entity_kind="job",
                entity_id=job_id,
                actor_id=actor_user_id,
                from_status="assigned",
                to_status="completed",
            )
            updated = conn.execute("SELECT * FROM job_requests WHERE id = ?", (job_id,)).fetchone()

        job = self.store.job_from_row(updated)
        logger.info("Job %s completed by poster %s", job_id, actor_user_id)
        self.events.publish(
            JobCompleted(
                job_id=job.id,
                poster_id=job.poster_id,
                worker_id=job.assigned_worker_id or "",
                occurred_at=now_iso,
            )
        )
        return job

    def list_open_jobs(self) -> List[JobRequest]:
        with self.store.read() as conn:
            rows = conn.execute(
                "SELECT * FROM job_requests WHERE status = 'open' ORDER BY scheduled_at ASC, created_at ASC"
            ).fetchall()
        return [self.store.job_from_row(row) for row in rows]

    def list_posted_jobs(self, poster_id: str) -> List[JobRequest]:
        with self.store.read() as conn:
            rows = conn.execute(
                "SELECT * FROM job_requests WHERE poster_id = ? ORDER BY created_at DESC",
                (poster_id,),
            ).fetchall()
        return [self.store.job_from_row(row) for row in rows]

    def list_assigned_jobs(self, worker_id: str, status: Optional[str] = None) -> List[JobRequest]:
        query = "SELECT * FROM job_requests WHERE assigned_worker_id = ?"
        params: List[str] = [worker_id]
        if status is not None:
            params.append(require_choice(status, ("assigned", "completed"), "status"))
            query += " AND status = ?"
        query += " ORDER BY scheduled_at ASC"
        with self.store.read() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self.store.job_from_row(row) for row in rows]

    def job_history(self, job_id: str) -> List[StatusChange]:
        self.get_job_request(job_id)
        return self.store.status_history(job_id)


job_board = JobBoard(store=marketplace_store, events=domain_events)
