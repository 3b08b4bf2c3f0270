from __future__ import annotations

ADMIN_HEADERS = {"X-API-Key": "dev-admin-key"}
WALLET = "0x" + "Ab12" * 10
OTHER_WALLET = "0x" + "cd34" * 10


def provider_payload(provider_id: str, price: float, region: str = "us-east") -> dict:
    return {
        "id": provider_id,
        "name": provider_id.title(),
        "type": "cloud",
        "pricing_model": "fixed",
        "capabilities": {"gpu_types": ["A100_80GB"], "regions": [region]},
        "metadata": {"reputation_score": 80, "uptime_percentage": 99.5, "avg_latency_ms": 60, "completed_jobs": 100},
        "listed_prices_usd": {"A100_80GB": price},
    }


def register(client, provider_id: str, price: float, region: str = "us-east") -> None:
    response = client.post(
        "/api/v1/admin/providers",
        json=provider_payload(provider_id, price, region),
        headers=ADMIN_HEADERS,
    )
    assert response.status_code == 201


def route(client, **overrides):
    payload = {"buyer_address": WALLET, "gpu_count": 1, "duration_hours": 2}
    payload.update(overrides)
    return client.post("/api/v1/jobs/route", json=payload)


def test_healthz_and_readiness(client):
    assert client.get("/healthz").json() == {"status": "ok"}

    before = client.get("/api/v1/health/readiness").json()
    register(client, "cheap", 1.0)
    after = client.get("/api/v1/health/readiness").json()

    assert before["ready"] is False
    assert before["provider_count"] == 0
    assert after["ready"] is True
    assert after["storage_initialized"] is True


def test_admin_routes_require_api_key(client):
    response = client.post("/api/v1/admin/providers", json=provider_payload("p1", 1.0))
    assert response.status_code == 401

    response = client.post("/api/v1/admin/providers", json=provider_payload("p1", 1.0), headers={"X-API-Key": "wrong"})
    assert response.status_code == 401

    assert client.delete("/api/v1/admin/providers/missing", headers=ADMIN_HEADERS).status_code == 404


def test_provider_listing_and_lookup(client):
    register(client, "b-cloud", 2.0)
    register(client, "a-cloud", 1.0, region="eu-west")

    listing = client.get("/api/v1/providers").json()
    stats = client.get("/api/v1/providers/stats").json()

    assert [item["id"] for item in listing["items"]] == ["a-cloud", "b-cloud"]
    assert stats["total"] == 2
    assert client.get("/api/v1/providers/a-cloud").json()["capabilities"]["regions"] == ["eu-west"]
    assert client.get("/api/v1/providers/nope").status_code == 404


def test_route_job_end_to_end(client):
    register(client, "cheap", 1.0)
    register(client, "pricey", 4.0)

    response = route(client, constraints={"preferred_regions": ["us-east"]})

    assert response.status_code == 201
    result = response.json()
    job_id = result["job_id"]
    assert result["selected_provider_id"] == "cheap"
    assert result["status"] == "confirmed"
    assert result["recommendations"][0]["rank"] == 1
    assert result["provider_counts"]["scored"] == 2

    detail = client.get(f"/api/v1/jobs/{job_id}").json()
    assert detail["identity"]["mode"] == "tracked"
    assert detail["result"]["reasoning_trace_ref"] == result["reasoning_trace_ref"]

    trace = client.get(f"/api/v1/jobs/{job_id}/trace").json()
    assert trace["trace"]["selected_provider_id"] == "cheap"
    assert trace["summary"]["selected_provider_id"] == "cheap"

    jobs = client.get("/api/v1/jobs").json()
    assert [item["job_id"] for item in jobs["items"]] == [job_id]


def test_complete_then_cancel_conflicts(client):
    register(client, "cheap", 1.0)
    job_id = route(client).json()["job_id"]

    completed = client.post(f"/api/v1/jobs/{job_id}/complete", json={"actual_cost_usd": 3.5})
    assert completed.status_code == 200
    assert completed.json()["status"] == "completed"
    assert completed.json()["actual_cost_usd"] == 3.5

    assert client.post(f"/api/v1/jobs/{job_id}/cancel").status_code == 409


def test_untracked_job_hides_wallet_from_audit(client):
    register(client, "cheap", 1.0)
    job_id = route(client, organization_id="org-1", constraints={"identity_mode": "untracked"}).json()["job_id"]

    audit = client.get(f"/api/v1/jobs/{job_id}/audit").json()
    owner = client.post(f"/api/v1/jobs/{job_id}/verify-owner", json={"wallet_address": WALLET}).json()
    stranger = client.post(f"/api/v1/jobs/{job_id}/verify-owner", json={"wallet_address": OTHER_WALLET}).json()

    assert audit["mode"] == "untracked"
    assert audit["wallet_address"] is None
    assert audit["organization_id"] is None
    assert audit["wallet_hash"].startswith("0x")
    assert owner["owner"] is True
    assert stranger["owner"] is False
    assert client.get(f"/api/v1/jobs/{job_id}/team-spending").status_code == 409


def test_tracked_team_spending(client):
    register(client, "cheap", 1.0)
    job_id = route(client, organization_id="org-1", team_member_id="alice").json()["job_id"]
    client.post(f"/api/v1/jobs/{job_id}/complete", json={"actual_cost_usd": 12.0})

    spending = client.get(f"/api/v1/jobs/{job_id}/team-spending").json()

    assert spending["organization_id"] == "org-1"
    assert spending["total_spent_usd"] == 12.0
    assert spending["members"][0]["member_id"] == "alice"


def test_route_errors(client):
    register(client, "cheap", 1.0)

    conflict = route(client, constraints={"required_gpu_type": "H100"})
    assert conflict.status_code == 409
    detail = conflict.json()["detail"]
    assert detail["error"] == "no_eligible_providers"
    assert detail["provider_counts"]["total"] == 1
    assert detail["rejection_summary"] == {"filter": 1}
    assert detail["constraint_failures"] == {"gpu": 1}

    assert route(client, buyer_address="not-a-wallet").status_code == 422
    assert route(client, duration_hours=0).status_code == 422
    assert client.get("/api/v1/jobs/job-missing").status_code == 404
    assert client.get("/api/v1/jobs/job-missing/trace").status_code == 404
