import os
import sys
import threading
from concurrent.futures import ThreadPoolExecutor

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from conftest import open_request, post_job

from app.services.domain_events import JobAssigned, QuoteAccepted
from app.services.marketplace_store import AlreadyAssignedError, AlreadyResolvedError, AlreadyRatedError

WORKERS = 8


def _race(count, action):
    barrier = threading.Barrier(count)

    def run(index):
        barrier.wait()
        try:
            return "ok", action(index)
        except (AlreadyAssignedError, AlreadyResolvedError, AlreadyRatedError) as exc:
            return "lost", exc

    with ThreadPoolExecutor(max_workers=count) as pool:
        return list(pool.map(run, range(count)))


def test_concurrent_accepts_have_exactly_one_winner(marketplace):
    assigned = []
    marketplace.events.subscribe(JobAssigned, assigned.append)
    job = post_job(marketplace)

    results = _race(WORKERS, lambda index: marketplace.jobs.accept_job(job.id, worker_id=f"worker_{index}"))

    winners = [value for outcome, value in results if outcome == "ok"]
    losers = [value for outcome, value in results if outcome == "lost"]
    assert len(winners) == 1
    assert len(losers) == WORKERS - 1
    assert all(isinstance(exc, AlreadyAssignedError) for exc in losers)

    stored = marketplace.jobs.get_job_request(job.id)
    assert stored.status == "assigned"
    assert stored.assigned_worker_id == winners[0].assigned_worker_id
    assert len(assigned) == 1
    transitions = [row for row in marketplace.jobs.job_history(job.id) if row.to_status == "assigned"]
    assert len(transitions) == 1


def test_concurrent_quote_accepts_resolve_once(marketplace):
    accepted_events = []
    marketplace.events.subscribe(QuoteAccepted, accepted_events.append)
    request = open_request(marketplace)
    quotes = [
        marketplace.quotes.submit_quote(request.id, provider_id=f"tech_{index}", price=100 + index)
        for index in range(WORKERS)
    ]

    results = _race(
        WORKERS, lambda index: marketplace.quotes.accept_quote(quotes[index].id, actor_user_id="customer_1")
    )

    assert sum(1 for outcome, _ in results if outcome == "ok") == 1
    assert all(isinstance(value, AlreadyResolvedError) for outcome, value in results if outcome == "lost")

    statuses = [marketplace.quotes.get_quote(quote.id).status for quote in quotes]
    assert statuses.count("accepted") == 1
    assert statuses.count("rejected") == WORKERS - 1
    assert marketplace.desk.get_service_request(request.id).status == "closed"
    assert len(accepted_events) == 1


def test_concurrent_ratings_do_not_lose_updates(marketplace):
    jobs = []
    for index in range(WORKERS):
        job = post_job(marketplace, poster_id=f"contractor_{index}")
        marketplace.jobs.accept_job(job.id, worker_id="worker_1")
        jobs.append(marketplace.jobs.complete_job(job.id, actor_user_id=f"contractor_{index}"))
    scores = [(index % 5) + 1 for index in range(WORKERS)]

    results = _race(
        WORKERS,
        lambda index: marketplace.ratings.submit_rating(
            engagement_kind="job",
            engagement_id=jobs[index].id,
            rater_id=f"contractor_{index}",
            subject_id="worker_1",
            score=scores[index],
        ),
    )

    assert all(outcome == "ok" for outcome, _ in results)
    aggregate = marketplace.ratings.get_aggregate("worker_1")
    assert aggregate.rating_count == WORKERS
    assert aggregate.rating_mean == pytest.approx(sum(scores) / WORKERS)


def test_concurrent_duplicate_ratings_keep_one(marketplace):
    job = post_job(marketplace)
    marketplace.jobs.accept_job(job.id, worker_id="worker_1")
    marketplace.jobs.complete_job(job.id, actor_user_id="contractor_1")

    results = _race(
        4,
        lambda index: marketplace.ratings.submit_rating(
            engagement_kind="job",
            engagement_id=job.id,
            rater_id="contractor_1",
            subject_id="worker_1",
            score=index + 1,
        ),
    )

    assert sum(1 for outcome, _ in results if outcome == "ok") == 1
    assert marketplace.ratings.get_aggregate("worker_1").rating_count == 1
