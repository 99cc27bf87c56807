import json
import logging
import os
import sqlite3
from contextlib import contextmanager
from dataclasses import dataclass
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Iterable, Iterator, List, Optional, Sequence
from uuid import uuid4

from pydantic import TypeAdapter

from app.models import (
    ESTIMATED_DURATIONS,
    EQUIPMENT_TYPES,
    JOB_STATUSES,
    MAINTENANCE_TYPES,
    QUOTE_AVAILABILITY,
    QUOTE_STATUSES,
    SERVICE_REQUEST_STATUSES,
    SERVICE_TYPES,
    URGENCY_LEVELS,
    WORK_TYPES,
    JobDetail,
    JobRequest,
    Quote,
    Rating,
    ServiceRequest,
    StatusChange,
)

logger = logging.getLogger(__name__)


def _env_float(name: str, default: float) -> float:
    try:
        value = float(os.getenv(name, str(default)))
    except ValueError:
        return default
    return value if value > 0 else default


BUSY_TIMEOUT_SECONDS = _env_float("SQLITE_BUSY_TIMEOUT_SECONDS", 30.0)

_job_detail_adapter = TypeAdapter(JobDetail)


class MarketplaceError(ValueError):
    """Base class for typed marketplace engine errors."""

    code = "marketplace_error"


class MarketplaceValidationError(MarketplaceError):
    code = "validation_error"


class MarketplaceNotFoundError(MarketplaceError):
    code = "not_found"


class MarketplacePermissionError(MarketplaceError):
    code = "forbidden"


class AlreadyAssignedError(MarketplaceError):
    """Lost an accept race: the job was assigned before this caller's write."""

    code = "already_assigned"


class AlreadyResolvedError(MarketplaceError):
    """The service request is no longer open, so no quote can win it."""

    code = "already_resolved"


class DuplicateSubmissionError(MarketplaceError):
    code = "duplicate_submission"


class AlreadyRatedError(DuplicateSubmissionError):
    code = "already_rated"


class InvalidStateTransitionError(MarketplaceError):
    code = "invalid_state_transition"


class SchemaCompatibilityError(MarketplaceError):
    """A persisted enum column holds a value this build does not know."""

    code = "schema_compatibility"


def utc_now_iso() -> str:
    return datetime.now(timezone.utc).isoformat()


def new_id(prefix: str) -> str:
    return f"{prefix}_{uuid4().hex[:12]}"


def require_text(value: Optional[str], field: str) -> str:
    cleaned = (value or "").strip()
    if not cleaned:
        raise MarketplaceValidationError(f"{field} is required")
    return cleaned


def require_choice(value: Optional[str], allowed: Sequence[str], field: str) -> str:
    cleaned = (value or "").strip().lower()
    if cleaned not in allowed:
        raise MarketplaceValidationError(f"Invalid {field}. Allowed: {', '.join(allowed)}")
    return cleaned


def require_timestamp(value: Optional[str], field: str) -> str:
    """Validate an ISO 8601 date or datetime and return it in UTC.

    Stored timestamps share one offset so that ``ORDER BY`` on the text column
    is chronological. Values without an offset are taken as UTC.
    """
    cleaned = require_text(value, field)
    if cleaned.endswith(("Z", "z")):
        cleaned = cleaned[:-1] + "+00:00"
    try:
        parsed = datetime.fromisoformat(cleaned)
    except ValueError as exc:
        raise MarketplaceValidationError(f"Invalid {field}; expected an ISO 8601 date or datetime") from exc
    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed.astimezone(timezone.utc).isoformat()


def known_value(value: Any, allowed: Iterable[str], column: str) -> str:
    text = str(value)
    if text not in allowed:
        raise SchemaCompatibilityError(f"Unknown {column} value in storage: {text!r}")
    return text


@dataclass
class MarketplaceStore:
    """Shared SQLite database behind every marketplace component.

    Each operation gets its own connection. Mutations run inside
    ``transaction()``, which opens ``BEGIN IMMEDIATE`` so SQLite serializes
    writers; single-winner transitions are conditional updates checked through
    ``rowcount``.
    """

    db_path: str
    busy_timeout: float = BUSY_TIMEOUT_SECONDS

    def __post_init__(self) -> None:
        path = Path(self.db_path)
        path.parent.mkdir(parents=True, exist_ok=True)
        self.db_path = str(path)
        self._init_db()

    def _connect(self) -> sqlite3.Connection:
        conn = sqlite3.connect(
            self.db_path,
            timeout=self.busy_timeout,
            isolation_level=None,
            check_same_thread=False,
        )
        conn.row_factory = sqlite3.Row
        conn.execute("PRAGMA foreign_keys = ON")
        return conn

    @contextmanager
    def read(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            yield conn
        finally:
            conn.close()

    @contextmanager
    def transaction(self) -> Iterator[sqlite3.Connection]:
        conn = self._connect()
        try:
            conn.execute("BEGIN IMMEDIATE")
            try:
                yield conn
            except BaseException:
                conn.execute("ROLLBACK")
                raise
            conn.execute("COMMIT")
        finally:
            conn.close()

    def ping(self) -> bool:
        with self.read() as conn:
            conn.execute("SELECT 1").fetchone()
        return True

    def _init_db(self) -> None:
        with self.read() as conn:
            conn.execute("PRAGMA journal_mode = WAL")
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS job_requests (
                    id TEXT PRIMARY KEY,
                    poster_id TEXT NOT NULL,
                    work_type TEXT NOT NULL,
                    service_type TEXT NOT NULL,
                    location TEXT NOT NULL,
                    scheduled_at TEXT NOT NULL,
                    urgency TEXT NOT NULL,
                    status TEXT NOT NULL,
                    assigned_worker_id TEXT,
                    detail_json TEXT NOT NULL,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL,
                    CHECK ((assigned_worker_id IS NULL) = (status IN ('open', 'cancelled')))
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS worker_profiles (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL UNIQUE,
                    work_type TEXT NOT NULL,
                    owns_equipment INTEGER NOT NULL DEFAULT 0,
                    available INTEGER NOT NULL DEFAULT 1,
                    bio TEXT NOT NULL DEFAULT '',
                    location TEXT NOT NULL DEFAULT '',
                    experience_years INTEGER NOT NULL DEFAULT 0,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS technician_profiles (
                    id TEXT PRIMARY KEY,
                    owner_id TEXT NOT NULL UNIQUE,
                    specializations_json TEXT NOT NULL DEFAULT '[]',
                    available INTEGER NOT NULL DEFAULT 1,
                    bio TEXT NOT NULL DEFAULT '',
                    location TEXT NOT NULL DEFAULT '',
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS service_requests (
                    id TEXT PRIMARY KEY,
                    poster_id TEXT NOT NULL,
                    equipment_type TEXT NOT NULL,
                    maintenance_type TEXT NOT NULL,
                    location TEXT NOT NULL,
                    urgency TEXT NOT NULL,
                    status TEXT NOT NULL,
                    budget_range TEXT,
                    attachments_json TEXT NOT NULL DEFAULT '[]',
                    description TEXT NOT NULL DEFAULT '',
                    equipment_name TEXT NOT NULL DEFAULT '',
                    preferred_date TEXT,
                    created_at TEXT NOT NULL,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS quotes (
                    id TEXT PRIMARY KEY,
                    request_id TEXT NOT NULL REFERENCES service_requests (id),
                    provider_id TEXT NOT NULL,
                    price REAL NOT NULL,
                    description TEXT NOT NULL DEFAULT '',
                    estimated_duration TEXT,
                    availability TEXT,
                    arrival_time TEXT,
                    status TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            # One live bid per provider per request, one winner per request.
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_quotes_live_bid
                ON quotes (request_id, provider_id)
                WHERE status IN ('pending', 'accepted')
                """
            )
            conn.execute(
                """
                CREATE UNIQUE INDEX IF NOT EXISTS ux_quotes_single_winner
                ON quotes (request_id)
                WHERE status = 'accepted'
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS ratings (
                    id TEXT PRIMARY KEY,
                    engagement_kind TEXT NOT NULL,
                    engagement_id TEXT NOT NULL,
                    subject_id TEXT NOT NULL,
                    rater_id TEXT NOT NULL,
                    score INTEGER NOT NULL CHECK (score BETWEEN 1 AND 5),
                    review TEXT,
                    created_at TEXT NOT NULL,
                    UNIQUE (engagement_id, rater_id)
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS rating_aggregates (
                    subject_id TEXT PRIMARY KEY,
                    rating_mean REAL NOT NULL DEFAULT 0.0,
                    rating_count INTEGER NOT NULL DEFAULT 0,
                    updated_at TEXT NOT NULL
                )
                """
            )
            conn.execute(
                """
                CREATE TABLE IF NOT EXISTS status_history (
                    id TEXT PRIMARY KEY,
                    entity_kind TEXT NOT NULL,
                    entity_id TEXT NOT NULL,
                    actor_id TEXT NOT NULL,
                    from_status TEXT NOT NULL,
                    to_status TEXT NOT NULL,
                    created_at TEXT NOT NULL
                )
                """
            )
            conn.execute("CREATE INDEX IF NOT EXISTS ix_job_requests_status ON job_requests (status)")
            conn.execute("CREATE INDEX IF NOT EXISTS ix_quotes_request ON quotes (request_id)")
            conn.execute("CREATE INDEX IF NOT EXISTS ix_status_history_entity ON status_history (entity_id)")
            self._ensure_column(conn, "quotes", "availability", "TEXT")
            self._ensure_column(conn, "quotes", "arrival_time", "TEXT")
            self._ensure_column(conn, "service_requests", "preferred_date", "TEXT")
            self._ensure_column(conn, "worker_profiles", "experience_years", "INTEGER NOT NULL DEFAULT 0")
        logger.info("Marketplace store ready at %s", self.db_path)

    def _ensure_column(self, conn: sqlite3.Connection, table: str, column: str, definition: str) -> None:
        columns = conn.execute(f"PRAGMA table_info({table})").fetchall()
        existing = {row["name"] for row in columns}
        if column in existing:
            return
        conn.execute(f"ALTER TABLE {table} ADD COLUMN {column} {definition}")

    def record_status_change(
        self,
        conn: sqlite3.Connection,
        *,
        entity_kind: str,
        entity_id: str,
        actor_id: str,
        from_status: str,
        to_status: str,
    ) -> None:
        conn.execute(
            """
            INSERT INTO status_history (id, entity_kind, entity_id, actor_id, from_status, to_status, created_at)
            VALUES (?, ?, ?, ?, ?, ?, ?)
            """,
            (new_id("sh"), entity_kind, entity_id, actor_id, from_status, to_status, utc_now_iso()),
        )

    def status_history(self, entity_id: str) -> List[StatusChange]:
        with self.read() as conn:
            rows = conn.execute(
                "SELECT * FROM status_history WHERE entity_id = ? ORDER BY created_at ASC, rowid ASC",
                (entity_id,),
            ).fetchall()
        return [
            StatusChange(
                id=row["id"],
                entity_kind=row["entity_kind"],
                entity_id=row["entity_id"],
                actor_id=row["actor_id"],
                from_status=row["from_status"],
                to_status=row["to_status"],
                created_at=row["created_at"],
            )
            for row in rows
        ]

    def job_from_row(self, row: sqlite3.Row) -> JobRequest:
        return JobRequest(
            id=row["id"],
            poster_id=row["poster_id"],
            work_type=known_value(row["work_type"], WORK_TYPES, "work_type"),
            service_type=known_value(row["service_type"], SERVICE_TYPES, "service_type"),
            location=row["location"],
            scheduled_at=row["scheduled_at"],
            urgency=known_value(row["urgency"], URGENCY_LEVELS, "urgency"),
            status=known_value(row["status"], JOB_STATUSES, "job status"),
            assigned_worker_id=row["assigned_worker_id"],
            detail=_job_detail_adapter.validate_json(row["detail_json"]),
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def service_request_from_row(self, row: sqlite3.Row) -> ServiceRequest:
        return ServiceRequest(
            id=row["id"],
            poster_id=row["poster_id"],
            equipment_type=known_value(row["equipment_type"], EQUIPMENT_TYPES, "equipment_type"),
            maintenance_type=known_value(row["maintenance_type"], MAINTENANCE_TYPES, "maintenance_type"),
            location=row["location"],
            urgency=known_value(row["urgency"], URGENCY_LEVELS, "urgency"),
            status=known_value(row["status"], SERVICE_REQUEST_STATUSES, "service request status"),
            budget_range=row["budget_range"],
            attachments=json.loads(row["attachments_json"] or "[]"),
            description=row["description"] or "",
            equipment_name=row["equipment_name"] or "",
            preferred_date=row["preferred_date"],
            created_at=row["created_at"],
            updated_at=row["updated_at"],
        )

    def quote_from_row(self, row: sqlite3.Row) -> Quote:
        duration = row["estimated_duration"]
        availability = row["availability"]
        return Quote(
            id=row["id"],
            request_id=row["request_id"],
            provider_id=row["provider_id"],
            price=float(row["price"]),
            description=row["description"] or "",
            estimated_duration=known_value(duration, ESTIMATED_DURATIONS, "estimated_duration") if duration else None,
            availability=known_value(availability, QUOTE_AVAILABILITY, "availability") if availability else None,
            arrival_time=row["arrival_time"],
            status=known_value(row["status"], QUOTE_STATUSES, "quote status"),
            created_at=row["created_at"],
        )

    def rating_from_row(self, row: sqlite3.Row) -> Rating:
        return Rating(
            id=row["id"],
            engagement_kind=known_value(row["engagement_kind"], ("job", "service"), "engagement_kind"),
            engagement_id=row["engagement_id"],
            subject_id=row["subject_id"],
            rater_id=row["rater_id"],
            score=int(row["score"]),
            review=row["review"],
            created_at=row["created_at"],
        )


default_db = str(Path(__file__).resolve().parents[2] / "data" / "marketplace.sqlite3")
marketplace_store = MarketplaceStore(db_path=os.getenv("MARKETPLACE_DB_PATH", default_db))
