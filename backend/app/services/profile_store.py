import json
import logging
import sqlite3
from dataclasses import dataclass
from typing import List, Optional

from app.models import EQUIPMENT_TYPES, WORK_TYPES, TechnicianProfile, WorkerCapabilityProfile
from app.services.marketplace_store import (
    MarketplaceNotFoundError,
    MarketplaceStore,
    MarketplaceValidationError,
    known_value,
    marketplace_store,
    new_id,
    require_choice,
    utc_now_iso,
)

logger = logging.getLogger(__name__)


@dataclass
class ProfileStore:
    store: MarketplaceStore

    def _worker_from_row(self, row: sqlite3.Row) -> WorkerCapabilityProfile:
        return WorkerCapabilityProfile(
            id=row["id"],
            owner_id=row["owner_id"],
            work_type=known_value(row["work_type"], WORK_TYPES, "work_type"),
            owns_equipment=bool(row["owns_equipment"]),
            available=bool(row["available"]),
            rating_mean=float(row["rating_mean"] or 0.0),
            rating_count=int(row["rating_count"] or 0),
            bio=row["bio"] or "",
            location=row["location"] or "",
            experience_years=int(row["experience_years"] or 0),
        )

    def _technician_from_row(self, row: sqlite3.Row) -> TechnicianProfile:
        return TechnicianProfile(
            id=row["id"],
            owner_id=row["owner_id"],
            specializations=json.loads(row["specializations_json"] or "[]"),
            available=bool(row["available"]),
            rating_mean=float(row["rating_mean"] or 0.0),
            rating_count=int(row["rating_count"] or 0),
            bio=row["bio"] or "",
            location=row["location"] or "",
        )

    def upsert_worker_profile(
        self,
        *,
        owner_id: str,
        work_type: str,
        owns_equipment: bool = False,
        available: bool = True,
        bio: str = "",
        location: str = "",
        experience_years: int = 0,
    ) -> WorkerCapabilityProfile:
        cleaned_work_type = require_choice(work_type, WORK_TYPES, "work_type")
        if experience_years < 0:
            raise MarketplaceValidationError("experience_years must be >= 0")
        now_iso = utc_now_iso()
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO worker_profiles (
                    id, owner_id, work_type, owns_equipment, available, bio, location, experience_years, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (owner_id) DO UPDATE SET
                    work_type = excluded.work_type,
                    owns_equipment = excluded.owns_equipment,
                    available = excluded.available,
                    bio = excluded.bio,
                    location = excluded.location,
                    experience_years = excluded.experience_years,
                    updated_at = excluded.updated_at
                """,
                (
                    new_id("wp"),
                    owner_id,
                    cleaned_work_type,
                    int(owns_equipment),
                    int(available),
                    bio.strip(),
                    location.strip(),
                    experience_years,
                    now_iso,
                    now_iso,
                ),
            )
        logger.info("Worker profile saved for %s (%s)", owner_id, cleaned_work_type)
        return self.get_worker_profile(owner_id)

    def get_worker_profile(self, owner_id: str) -> WorkerCapabilityProfile:
        with self.store.read() as conn:
            row = conn.execute(
                """
                SELECT w.*, a.rating_mean, a.rating_count
                FROM worker_profiles w
                LEFT JOIN rating_aggregates a ON a.subject_id = w.owner_id
                WHERE w.owner_id = ?
                """,
                (owner_id,),
            ).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Worker profile not found")
        return self._worker_from_row(row)

    def list_available_workers(self, work_type: Optional[str] = None) -> List[WorkerCapabilityProfile]:
        """Worker directory for posters: available workers, best rated first."""
        query = """
            SELECT w.*, a.rating_mean, a.rating_count
            FROM worker_profiles w
            LEFT JOIN rating_aggregates a ON a.subject_id = w.owner_id
            WHERE w.available = 1
        """
        params: List[str] = []
        if work_type is not None:
            params.append(require_choice(work_type, WORK_TYPES, "work_type"))
            query += " AND w.work_type = ?"
        query += " ORDER BY COALESCE(a.rating_mean, 0) DESC, COALESCE(a.rating_count, 0) DESC, w.created_at ASC"
        with self.store.read() as conn:
            rows = conn.execute(query, tuple(params)).fetchall()
        return [self._worker_from_row(row) for row in rows]

    def upsert_technician_profile(
        self,
        *,
        owner_id: str,
        specializations: Optional[List[str]] = None,
        available: bool = True,
        bio: str = "",
        location: str = "",
    ) -> TechnicianProfile:
        cleaned_specializations = sorted(
            {require_choice(item, EQUIPMENT_TYPES, "specialization") for item in specializations or []}
        )
        now_iso = utc_now_iso()
        with self.store.transaction() as conn:
            conn.execute(
                """
                INSERT INTO technician_profiles (
                    id, owner_id, specializations_json, available, bio, location, created_at, updated_at
                ) VALUES (?, ?, ?, ?, ?, ?, ?, ?)
                ON CONFLICT (owner_id) DO UPDATE SET
                    specializations_json = excluded.specializations_json,
                    available = excluded.available,
                    bio = excluded.bio,
                    location = excluded.location,
                    updated_at = excluded.updated_at
                """,
                (
                    new_id("tp"),
                    owner_id,
                    json.dumps(cleaned_specializations),
                    int(available),
                    bio.strip(),
                    location.strip(),
                    now_iso,
                    now_iso,
                ),
            )
        logger.info("Technician profile saved for %s", owner_id)
        return self.get_technician_profile(owner_id)

    def get_technician_profile(self, owner_id: str) -> TechnicianProfile:
        with self.store.read() as conn:
            row = conn.execute(
                """
                SELECT t.*, a.rating_mean, a.rating_count
                FROM technician_profiles t
                LEFT JOIN rating_aggregates a ON a.subject_id = t.owner_id
                WHERE t.owner_id = ?
                """,
                (owner_id,),
            ).fetchone()
        if not row:
            raise MarketplaceNotFoundError("Technician profile not found")
        return self._technician_from_row(row)


profile_store = ProfileStore(store=marketplace_store)
