import os
import sys

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.services.marketplace_store import MarketplaceNotFoundError, MarketplaceValidationError


def test_worker_profile_upsert_replaces_fields(marketplace):
    first = marketplace.profiles.upsert_worker_profile(owner_id="worker_1", work_type="Loader", owns_equipment=True)
    assert first.work_type == "loader"
    assert first.owns_equipment is True

    second = marketplace.profiles.upsert_worker_profile(
        owner_id="worker_1", work_type="excavator", owns_equipment=False, available=False, bio=" 10 years on site "
    )
    assert second.id == first.id
    assert second.work_type == "excavator"
    assert second.available is False
    assert second.bio == "10 years on site"


def test_worker_profile_validation(marketplace):
    with pytest.raises(MarketplaceValidationError):
        marketplace.profiles.upsert_worker_profile(owner_id="worker_1", work_type="astronaut")
    with pytest.raises(MarketplaceValidationError):
        marketplace.profiles.upsert_worker_profile(owner_id="worker_1", work_type="loader", experience_years=-1)
    with pytest.raises(MarketplaceNotFoundError):
        marketplace.profiles.get_worker_profile("worker_404")


def test_technician_specializations_are_normalized(marketplace):
    profile = marketplace.profiles.upsert_technician_profile(
        owner_id="tech_1", specializations=["Grader", "backhoe", "grader"], location="Karmiel"
    )
    assert profile.specializations == ["backhoe", "grader"]
    assert profile.rating_count == 0

    with pytest.raises(MarketplaceValidationError):
        marketplace.profiles.upsert_technician_profile(owner_id="tech_1", specializations=["spaceship"])
    with pytest.raises(MarketplaceNotFoundError):
        marketplace.profiles.get_technician_profile("tech_404")


def _rate_worker(marketplace, worker_id, score):
    job = marketplace.jobs.create_job_request(
        poster_id="contractor_1",
        work_type="general_labor",
        service_type="operator_only",
        location="Haifa",
        scheduled_at="2026-11-02",
    )
    marketplace.jobs.accept_job(job.id, worker_id=worker_id)
    marketplace.jobs.complete_job(job.id, actor_user_id="contractor_1")
    marketplace.ratings.submit_rating(
        engagement_kind="job", engagement_id=job.id, rater_id="contractor_1", subject_id=worker_id, score=score
    )


def test_worker_directory_lists_available_workers_best_rated_first(marketplace):
    marketplace.profiles.upsert_worker_profile(owner_id="worker_low", work_type="backhoe")
    marketplace.profiles.upsert_worker_profile(owner_id="worker_top", work_type="backhoe")
    marketplace.profiles.upsert_worker_profile(owner_id="worker_new", work_type="loader")
    marketplace.profiles.upsert_worker_profile(owner_id="worker_away", work_type="backhoe", available=False)
    _rate_worker(marketplace, "worker_low", 2)
    _rate_worker(marketplace, "worker_top", 5)
    _rate_worker(marketplace, "worker_away", 5)

    directory = marketplace.profiles.list_available_workers()
    assert [profile.owner_id for profile in directory] == ["worker_top", "worker_low", "worker_new"]
    assert directory[0].rating_mean == pytest.approx(5.0)

    backhoe_only = marketplace.profiles.list_available_workers(work_type="Backhoe")
    assert [profile.owner_id for profile in backhoe_only] == ["worker_top", "worker_low"]

    with pytest.raises(MarketplaceValidationError):
        marketplace.profiles.list_available_workers(work_type="astronaut")
