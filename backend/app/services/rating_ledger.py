import logging
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from app.models import Rating, RatingAggregate
from app.services.marketplace_store import (
    AlreadyRatedError,
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


@dataclass
class RatingLedger:
    """One rating per (engagement, rater) plus a running mean per subject."""

    store: MarketplaceStore

    def _check_job_engagement(self, conn: sqlite3.Connection, engagement_id: str, rater_id: str, subject_id: str) -> None:
        row = conn.execute(
            "SELECT poster_id, status, assigned_worker_id FROM job_requests WHERE id = ?",
            (engagement_id,),
        ).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Job request not found")
        if row["poster_id"] != rater_id:
            raise MarketplacePermissionError("Only the poster can rate this job")
        if row["status"] != "completed":
            raise InvalidStateTransitionError("Only completed jobs can be rated")
        if row["assigned_worker_id"] != subject_id:
            raise MarketplaceValidationError("Rating subject must be the assigned worker")

    def _check_service_engagement(
        self, conn: sqlite3.Connection, engagement_id: str, rater_id: str, subject_id: str
    ) -> None:
        row = conn.execute(
            """
            SELECT q.provider_id, q.status, r.poster_id
            FROM quotes q
            JOIN service_requests r ON r.id = q.request_id
            WHERE q.id = ?
            """,
            (engagement_id,),
        ).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Quote not found")
        if row["poster_id"] != rater_id:
            raise MarketplacePermissionError("Only the poster can rate this service")
        if row["status"] != "accepted":
            raise InvalidStateTransitionError("Only accepted quotes can be rated")
        if row["provider_id"] != subject_id:
            raise MarketplaceValidationError("Rating subject must be the quote provider")

    def submit_rating(
        self,
        *,
        engagement_kind: str,
        engagement_id: str,
        rater_id: str,
        subject_id: str,
        score: int,
        review: Optional[str] = None,
    ) -> Rating:
        kind = require_choice(engagement_kind, ("job", "service"), "engagement_kind")
        if isinstance(score, bool) or not isinstance(score, int) or not 1 <= score <= 5:
            raise MarketplaceValidationError("score must be an integer between 1 and 5")
        cleaned_review = (review or "").strip() or None

        now_iso = utc_now_iso()
        rating_id = new_id("rt")
        with self.store.transaction() as conn:
            if kind == "job":
                self._check_job_engagement(conn, engagement_id, rater_id, subject_id)
            else:
                self._check_service_engagement(conn, engagement_id, rater_id, subject_id)
            try:
                conn.execute(
                    """
                    INSERT INTO ratings (id, engagement_kind, engagement_id, subject_id, rater_id, score, review, created_at)
                    VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                    """,
                    (rating_id, kind, engagement_id, subject_id, rater_id, score, cleaned_review, now_iso),
                )
            except sqlite3.IntegrityError as exc:
                raise AlreadyRatedError("This engagement was already rated by this rater") from exc
            # Single-statement read-modify-write so concurrent ratings never lose an update.
            conn.execute(
                """
                INSERT INTO rating_aggregates (subject_id, rating_mean, rating_count, updated_at)
                VALUES (?, ?, 1, ?)
                ON CONFLICT (subject_id) DO UPDATE SET
                    rating_mean = (rating_aggregates.rating_mean * rating_aggregates.rating_count + excluded.rating_mean)
                        / (rating_aggregates.rating_count + 1),
                    rating_count = rating_aggregates.rating_count + 1,
                    updated_at = excluded.updated_at
                """,
                (subject_id, float(score), now_iso),
            )
            row = conn.execute("SELECT * FROM ratings WHERE id = ?", (rating_id,)).fetchone()
        logger.info("Rating %s recorded for %s (%d/5) on %s %s", rating_id, subject_id, score, kind, engagement_id)
        return self.store.rating_from_row(row)

    def get_aggregate(self, subject_id: str) -> RatingAggregate:
        with self.store.read() as conn:
            row = conn.execute(
                "SELECT rating_mean, rating_count FROM rating_aggregates WHERE subject_id = ?",
                (subject_id,),
            ).fetchone()
        if not row:
            return RatingAggregate(subject_id=subject_id)
        return RatingAggregate(
            subject_id=subject_id,
            rating_mean=float(row["rating_mean"]),
            rating_count=int(row["rating_count"]),
        )

    def list_ratings(self, subject_id: str, limit: int = 100) -> List[Rating]:
        with self.store.read() as conn:
            rows = conn.execute(
                "SELECT * FROM ratings WHERE subject_id = ? ORDER BY created_at DESC, rowid DESC LIMIT ?",
                (subject_id, limit),
            ).fetchall()
        return [self.store.rating_from_row(row) for row in rows]


rating_ledger = RatingLedger(store=marketplace_store)
