"""Tests for the job snapshot stores."""

from datetime import datetime, timedelta

import pytest

from shared.models.analysis import AnalysisState
from services.scenario_analysis.database import InMemoryJobStore, DatabaseManager, create_job_store
from services.scenario_analysis.impact import ImpactModel
from services.scenario_analysis.models import AnalysisStatus, AnalysisResult


def _status(job_id, scenario_id="scenario-1", minutes=0, state=AnalysisState.FAILED, result=None):
    created = datetime(2024, 1, 1, 12, 0) + timedelta(minutes=minutes)
    return AnalysisStatus(
        job_id=job_id,
        scenario_id=scenario_id,
        state=state,
        progress=100 if state == AnalysisState.COMPLETED else 10,
        created_at=created,
        started_at=created + timedelta(seconds=1),
        completed_at=created + timedelta(seconds=2),
        result=result,
        failure_reason=None if result else "Analysis cancelled",
    )


@pytest.fixture
def completed_status(steel_scenario):
    impact = ImpactModel().compute(steel_scenario)
    result = AnalysisResult(
        impact=impact,
        circularity_metrics=impact.circularity_score.breakdown,
        optimization_suggestions=["Switch to lower-carbon energy sources"],
    )
    return _status("job-done", state=AnalysisState.COMPLETED, result=result)


@pytest.fixture
def sqlite_store(tmp_path):
    manager = DatabaseManager(
        f"sqlite:///{tmp_path / 'jobs.db'}",
        {"connect_args": {"check_same_thread": False}},
    )
    manager.create_tables()
    return manager


@pytest.fixture(params=["memory", "sqlite"])
def store(request, sqlite_store):
    if request.param == "memory":
        return InMemoryJobStore()
    return sqlite_store


class TestJobStore:
    def test_get_missing_returns_none(self, store):
        assert store.get("nope") is None
        assert store.get_latest("nope") is None

    def test_put_and_get(self, store):
        store.put(_status("job-1"))
        loaded = store.get("job-1")
        assert loaded.job_id == "job-1"
        assert loaded.state == AnalysisState.FAILED
        assert loaded.failure_reason == "Analysis cancelled"

    def test_put_replaces_existing(self, store):
        store.put(_status("job-1"))
        store.put(_status("job-1", minutes=5))
        assert len(store.list()) == 1
        assert store.get("job-1").created_at == datetime(2024, 1, 1, 12, 5)

    def test_latest_per_scenario(self, store):
        store.put(_status("job-1", minutes=0))
        store.put(_status("job-2", minutes=10))
        store.put(_status("job-3", scenario_id="scenario-2", minutes=20))
        assert store.get_latest("scenario-1").job_id == "job-2"

    def test_list_newest_first_with_limit(self, store):
        for i in range(4):
            store.put(_status(f"job-{i}", minutes=i))
        assert [s.job_id for s in store.list(limit=2)] == ["job-3", "job-2"]

    def test_delete(self, store):
        store.put(_status("job-1"))
        assert store.delete("job-1") is True
        assert store.delete("job-1") is False
        assert store.get("job-1") is None

    def test_result_round_trip(self, store, completed_status):
        store.put(completed_status)
        loaded = store.get("job-done")
        assert loaded.result == completed_status.result

    def test_health_check(self, store):
        assert store.health_check() is True


class TestCreateJobStore:
    def test_memory_backend(self):
        class Settings:
            job_store_backend = "memory"

        assert isinstance(create_job_store(Settings()), InMemoryJobStore)

    def test_database_backend(self, tmp_path):
        class Settings:
            job_store_backend = "database"
            database_url = f"sqlite:///{tmp_path / 'svc.db'}"
            database_engine_config = {"connect_args": {"check_same_thread": False}}

        store = create_job_store(Settings())
        assert isinstance(store, DatabaseManager)
        assert store.health_check() is True
