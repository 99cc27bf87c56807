import os
import sys
import tempfile
from dataclasses import dataclass

import pytest

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

# Keep the app's module-level store off the developer database.
os.environ.setdefault(
    "MARKETPLACE_DB_PATH",
    os.path.join(tempfile.mkdtemp(prefix="sitecrew-tests-"), "marketplace.sqlite3"),
)

from app.services.domain_events import DomainEventBus
from app.services.job_board import JobBoard
from app.services.marketplace_store import MarketplaceStore
from app.services.profile_store import ProfileStore
from app.services.quote_market import QuoteMarket
from app.services.rating_ledger import RatingLedger
from app.services.service_requests import ServiceRequestDesk


@dataclass
class Marketplace:
    store: MarketplaceStore
    events: DomainEventBus
    jobs: JobBoard
    desk: ServiceRequestDesk
    quotes: QuoteMarket
    ratings: RatingLedger
    profiles: ProfileStore


@pytest.fixture
def marketplace(tmp_path) -> Marketplace:
    store = MarketplaceStore(db_path=str(tmp_path / "marketplace.sqlite3"))
    events = DomainEventBus()
    return Marketplace(
        store=store,
        events=events,
        jobs=JobBoard(store=store, events=events),
        desk=ServiceRequestDesk(store=store),
        quotes=QuoteMarket(store=store, events=events),
        ratings=RatingLedger(store=store),
        profiles=ProfileStore(store=store),
    )


def post_job(marketplace: Marketplace, poster_id: str = "contractor_1", **overrides):
    fields = {
        "poster_id": poster_id,
        "work_type": "backhoe",
        "service_type": "operator_with_equipment",
        "location": "Haifa, Checkpost",
        "scheduled_at": "2026-11-02T07:00:00+00:00",
    }
    fields.update(overrides)
    return marketplace.jobs.create_job_request(**fields)


def open_request(marketplace: Marketplace, poster_id: str = "customer_1", **overrides):
    fields = {
        "poster_id": poster_id,
        "equipment_type": "loader",
        "maintenance_type": "hydraulic_service",
        "location": "Yokneam industrial zone",
    }
    fields.update(overrides)
    return marketplace.desk.open_service_request(**fields)
