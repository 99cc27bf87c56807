import os
import sys
from uuid import uuid4

from fastapi.testclient import TestClient

sys.path.insert(0, os.path.dirname(os.path.dirname(__file__)))

from app.auth import DEMO_PASSWORD
from app.main import app

client = TestClient(app)


def _login(role: str, user_id: str = "") -> tuple[str, dict]:
    user_id = user_id or f"{role}_{uuid4().hex[:8]}"
    response = client.post("/auth/login", json={"user_id": user_id, "role": role, "password": DEMO_PASSWORD})
    assert response.status_code == 200
    return user_id, {"Authorization": f"Bearer {response.json()['access_token']}"}


def _post_job(headers: dict, **overrides) -> dict:
    body = {
        "work_type": "bobcat",
        "service_type": "operator_only",
        "location": "Kiryat Ata",
        "scheduled_at": "2026-11-03T06:30:00+00:00",
        "urgency": "high",
    }
    body.update(overrides)
    response = client.post("/jobs", json=body, headers=headers)
    assert response.status_code == 200
    return response.json()


def test_health_ok():
    response = client.get("/health")
    assert response.status_code == 200
    assert response.json()["status"] == "ok"


def test_ready_checks_database():
    response = client.get("/ready")
    assert response.status_code == 200
    assert response.json()["database"] == "ok"


def test_auth_login_and_me():
    user_id, headers = _login("worker")
    me = client.get("/auth/me", headers=headers)
    assert me.status_code == 200
    assert me.json() == {"user_id": user_id, "role": "worker"}


def test_auth_rejects_bad_password_and_missing_token():
    response = client.post("/auth/login", json={"user_id": "u1", "role": "worker", "password": "nope"})
    assert response.status_code == 401
    assert client.get("/auth/me").status_code == 401
    assert client.get("/auth/me", headers={"Authorization": "Bearer not.a-token"}).status_code == 401


def test_job_lifecycle_over_http():
    poster_id, poster = _login("contractor")
    worker_id, worker = _login("worker")
    _, rival = _login("worker")

    job = _post_job(poster)
    assert job["status"] == "open"
    assert job["poster_id"] == poster_id

    accepted = client.post(f"/jobs/{job['id']}/accept", headers=worker)
    assert accepted.status_code == 200
    assert accepted.json()["assigned_worker_id"] == worker_id

    lost = client.post(f"/jobs/{job['id']}/accept", headers=rival)
    assert lost.status_code == 409
    assert lost.json()["detail"]["code"] == "already_assigned"

    assert client.post(f"/jobs/{job['id']}/complete", headers=worker).status_code == 403
    completed = client.post(f"/jobs/{job['id']}/complete", headers=poster)
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"

    history = client.get(f"/jobs/{job['id']}/history", headers=poster)
    assert [row["to_status"] for row in history.json()] == ["open", "assigned", "completed"]

    assigned = client.get("/jobs/assigned", params={"status": "completed"}, headers=worker)
    assert [row["id"] for row in assigned.json()] == [job["id"]]

    rating = client.post(
        "/ratings",
        json={"engagement_kind": "job", "engagement_id": job["id"], "subject_id": worker_id, "score": 5},
        headers=poster,
    )
    assert rating.status_code == 200
    duplicate = client.post(
        "/ratings",
        json={"engagement_kind": "job", "engagement_id": job["id"], "subject_id": worker_id, "score": 1},
        headers=poster,
    )
    assert duplicate.status_code == 409
    assert duplicate.json()["detail"]["code"] == "already_rated"

    summary = client.get(f"/ratings/{worker_id}/summary")
    assert summary.json() == {"subject_id": worker_id, "rating_mean": 5.0, "rating_count": 1}

    notifications = client.get("/notifications", headers=poster)
    assert "Rate your worker" in [row["title"] for row in notifications.json()]


def test_role_gates():
    _, poster = _login("customer")
    _, technician = _login("technician")

    assert client.post("/jobs", json={"work_type": "loader"}, headers=technician).status_code == 403
    job = _post_job(poster)
    assert client.post(f"/jobs/{job['id']}/accept", headers=poster).status_code == 403

    request = client.post(
        "/maintenance/requests",
        json={"equipment_type": "generator", "maintenance_type": "electrical", "location": "Tiberias"},
        headers=poster,
    ).json()
    assert client.post(f"/maintenance/requests/{request['id']}/quotes", json={"price": 200}, headers=poster).status_code == 403


def test_validation_and_not_found_errors():
    _, poster = _login("contractor")
    _, worker = _login("worker")

    bad = client.post(
        "/jobs",
        json={"work_type": "crane", "location": "Acre", "scheduled_at": "2026-11-03"},
        headers=poster,
    )
    assert bad.status_code == 400
    assert bad.json()["detail"]["code"] == "validation_error"

    missing = client.post("/jobs/job_doesnotexist/accept", headers=worker)
    assert missing.status_code == 404


def test_eligible_jobs_follow_worker_profile():
    _, poster = _login("contractor")
    worker_id, worker = _login("worker")

    assert client.get("/jobs/eligible", headers=worker).status_code == 404

    profile = client.put(
        "/profiles/worker",
        json={"work_type": "grader", "owns_equipment": False, "experience_years": 6},
        headers=worker,
    )
    assert profile.status_code == 200
    assert profile.json()["owner_id"] == worker_id

    matching = _post_job(poster, work_type="grader", service_type="operator_only")
    labor = _post_job(poster, work_type="general_labor", service_type="operator_with_equipment")
    equipment_only = _post_job(poster, work_type="grader", service_type="equipment_only")
    other_type = _post_job(poster, work_type="loader", service_type="operator_only")

    eligible_ids = {row["id"] for row in client.get("/jobs/eligible", headers=worker).json()}
    assert matching["id"] in eligible_ids
    assert labor["id"] in eligible_ids
    assert equipment_only["id"] not in eligible_ids
    assert other_type["id"] not in eligible_ids


def test_sand_delivery_notes_over_http():
    _, poster = _login("contractor")
    job = _post_job(
        poster,
        work_type="truck_driver",
        service_type="operator_with_equipment",
        notes='{"type": "sand_delivery", "quantity": 2, "sandType": "fine"}',
    )
    assert job["detail"] == {"kind": "sand_delivery", "quantity": 2, "material": "fine"}


def test_maintenance_quote_flow():
    _, poster = _login("customer")
    tech_a_id, tech_a = _login("technician")
    tech_b_id, tech_b = _login("technician")

    client.put("/profiles/technician", json={"specializations": ["Generator", "loader"]}, headers=tech_a)
    request = client.post(
        "/maintenance/requests",
        json={
            "equipment_type": "generator",
            "maintenance_type": "repair",
            "location": "Hadera",
            "budget_range": "500-900",
            "attachments": ["https://cdn.example.test/panel.jpg"],
        },
        headers=poster,
    )
    assert request.status_code == 200
    request_id = request.json()["id"]

    open_ids = [row["id"] for row in client.get("/maintenance/requests/open", headers=tech_a).json()]
    assert request_id in open_ids

    quote_a = client.post(
        f"/maintenance/requests/{request_id}/quotes",
        json={"price": 780, "estimated_duration": "full_day"},
        headers=tech_a,
    )
    assert quote_a.status_code == 200
    quote_b = client.post(f"/maintenance/requests/{request_id}/quotes", json={"price": 540}, headers=tech_b)
    assert quote_b.status_code == 200
    again = client.post(f"/maintenance/requests/{request_id}/quotes", json={"price": 500}, headers=tech_b)
    assert again.status_code == 409

    assert client.get(f"/maintenance/requests/{request_id}/quotes", headers=tech_a).status_code == 403
    by_price = client.get(f"/maintenance/requests/{request_id}/quotes", params={"sort": "price"}, headers=poster)
    assert [row["provider_id"] for row in by_price.json()] == [tech_b_id, tech_a_id]

    closed = client.post(f"/maintenance/quotes/{quote_a.json()['id']}/accept", headers=poster)
    assert closed.status_code == 200
    assert closed.json()["status"] == "closed"
    late = client.post(f"/maintenance/quotes/{quote_b.json()['id']}/accept", headers=poster)
    assert late.status_code == 409
    assert late.json()["detail"]["code"] == "already_resolved"

    rejected = client.get("/maintenance/quotes/mine", params={"status": "rejected"}, headers=tech_b)
    assert [row["id"] for row in rejected.json()] == [quote_b.json()["id"]]

    profile = client.get(f"/profiles/technician/{tech_a_id}").json()
    assert profile["specializations"] == ["generator", "loader"]

    tech_inbox = client.get("/notifications", headers=tech_a).json()
    assert tech_inbox[0]["title"] == "Quote accepted"
    read = client.post(f"/notifications/{tech_inbox[0]['id']}/read", headers=tech_a)
    assert read.status_code == 200
    assert read.json()["read"] is True


def test_worker_directory_is_for_posters():
    _, poster = _login("contractor")
    worker_id, worker = _login("worker")
    client.put("/profiles/worker", json={"work_type": "semi_trailer", "available": True}, headers=worker)

    listed = client.get("/profiles/workers", params={"work_type": "semi_trailer"}, headers=poster)
    assert listed.status_code == 200
    assert worker_id in [row["owner_id"] for row in listed.json()]

    assert client.get("/profiles/workers", headers=worker).status_code == 403
    bad = client.get("/profiles/workers", params={"work_type": "astronaut"}, headers=poster)
    assert bad.status_code == 400
