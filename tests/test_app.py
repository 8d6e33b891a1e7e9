"""Tests for the HTTP layer using TestClient."""

import time

import pytest
from fastapi.testclient import TestClient

from services.scenario_analysis.app import app


@pytest.fixture
def client():
    with TestClient(app) as test_client:
        yield test_client


def wait_for_terminal(client, scenario_id, timeout=5.0):
    deadline = time.monotonic() + timeout
    while time.monotonic() < deadline:
        data = client.get(f"/scenarios/{scenario_id}/analysis").json()
        if data["state"] in ("completed", "failed"):
            return data
        time.sleep(0.02)
    raise AssertionError(f"analysis for {scenario_id} did not finish")


class TestServiceEndpoints:
    def test_root(self, client):
        data = client.get("/").json()
        assert data["service"] == "scenario-analysis-service"
        assert data["status"] == "running"

    def test_health(self, client):
        response = client.get("/health")
        assert response.status_code == 200
        data = response.json()
        assert data["status"] == "healthy"
        assert data["checks"]["workers_running"] is True

    def test_metadata(self, client):
        data = client.get("/metadata").json()
        assert data["job_states"] == ["draft", "running", "completed", "failed"]
        assert "co2e_kg_per_kg" in data["estimable_fields"]
        assert "endOfLife" in data["factor_categories"]
        assert data["workers"]["running"] is True


class TestAnalysisEndpoints:
    def test_submit_and_poll(self, client, steel_payload):
        response = client.post("/scenarios/api-1/analysis", json={"scenario": steel_payload})
        assert response.status_code == 202
        body = response.json()
        assert body["scenarioId"] == "api-1"
        assert body["state"] in ("draft", "running")
        assert body["jobId"]

        final = wait_for_terminal(client, "api-1")
        assert final["state"] == "completed"
        assert final["progress"] == 100
        assert final["jobId"] == body["jobId"]
        assert final["result"]["impact"]["carbonFootprint"]["unit"] == "kg CO2e/kg material"
        assert final["result"]["optimizationSuggestions"]

        job = client.get(f"/jobs/{body['jobId']}").json()
        assert job["state"] == "completed"

        jobs = client.get("/jobs", params={"scenarioId": "api-1"}).json()
        assert jobs["total_jobs"] == 1

    def test_invalid_scenario_is_400(self, client, steel_payload):
        payload = {**steel_payload, "energy": {"sources": [], "renewable": 10}}
        response = client.post("/scenarios/api-2/analysis", json={"scenario": payload})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_request"

    def test_unknown_scenario_is_404(self, client):
        response = client.get("/scenarios/never-submitted/analysis")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"

    def test_unknown_job_is_404(self, client):
        assert client.get("/jobs/does-not-exist").status_code == 404

    def test_cancel_without_job_is_404(self, client):
        assert client.delete("/scenarios/api-3/analysis").status_code == 404


class TestSynchronousModels:
    def test_calculate(self, client, steel_payload):
        response = client.post("/calculate", json=steel_payload)
        assert response.status_code == 200
        data = response.json()
        assert data["carbonFootprint"]["breakdown"]["energy"] == pytest.approx(10.2)
        assert data["circularityScore"]["total"] == 65

    def test_calculate_is_deterministic(self, client, steel_payload):
        first = client.post("/calculate", json=steel_payload, params={"seed": 3}).json()
        second = client.post("/calculate", json=steel_payload, params={"seed": 3}).json()
        assert first == second

    def test_estimate(self, client):
        response = client.post("/estimate", json={
            "material": "Steel",
            "process": "Primary",
            "missingFields": ["co2e_kg_per_kg"],
        })
        assert response.status_code == 200
        estimates = response.json()["estimates"]
        assert estimates[0]["field"] == "co2e_kg_per_kg"
        assert estimates[0]["confidence"] == 0.8

    def test_estimate_requires_material(self, client):
        response = client.post("/estimate", json={"process": "Primary", "missingFields": ["x"]})
        assert response.status_code == 400

    def test_optimize(self, client, optimization_payload):
        response = client.post("/optimize", json=optimization_payload)
        assert response.status_code == 200
        candidates = response.json()["candidates"]
        assert [c["id"] for c in candidates][0] == "opt_5"
        assert "co2Reduction" in candidates[0]["improvements"]

    def test_optimize_without_baseline_is_400(self, client, optimization_payload):
        payload = {k: v for k, v in optimization_payload.items() if k != "baseline"}
        response = client.post("/optimize", json=payload)
        assert response.status_code == 400
        assert "baseline" in response.json()["detail"]["message"]


class TestFactorEndpoints:
    def test_list_factors(self, client):
        data = client.get("/factors").json()
        assert data["total_factors"] == 5
        assert data["factors"][0]["id"] == "steel_primary_co2"
        assert data["factors"][0]["lastUpdated"]

    def test_search_factors(self, client):
        response = client.get("/factors", params={"query": "steel", "minConfidence": 0.93})
        assert response.status_code == 200
        assert [f["id"] for f in response.json()["factors"]] == ["steel_primary_co2"]

    def test_invalid_category_is_400(self, client):
        response = client.get("/factors", params={"category": "water"})
        assert response.status_code == 400
        assert response.json()["detail"]["error"] == "invalid_request"

    def test_statistics(self, client):
        data = client.get("/factors/statistics").json()
        assert data["total"] == 5
        assert data["averageConfidence"] == pytest.approx(0.9)
        assert data["lastUpdated"].startswith("2024-01-01")

    def test_factors_by_category(self, client):
        data = client.get("/factors/category/endOfLife").json()
        assert [f["id"] for f in data["factors"]] == ["steel_recycling_rate"]
        assert data["factors"][0]["unit"] == "fraction"

    def test_get_factor(self, client):
        data = client.get("/factors/electricity_grid_intensity").json()
        assert data["value"] == 0.5
        assert data["category"] == "energy"

    def test_unknown_factor_is_404(self, client):
        response = client.get("/factors/unknown")
        assert response.status_code == 404
        assert response.json()["detail"]["error"] == "not_found"


class TestHealthResponse:
    def test_non_critical_failure_degrades(self):
        from shared.health import create_health_response

        data = create_health_response("svc", "1.0", {"workers_running": True, "kafka_connected": False},
                                      critical=("workers_running",))
        assert data["status"] == "degraded"
        assert data["failed_checks"] == ["kafka_connected"]

    def test_critical_failure_is_unhealthy(self):
        from shared.health import create_health_response

        data = create_health_response("svc", "1.0", {"workers_running": False}, critical=("workers_running",))
        assert data["status"] == "unhealthy"
