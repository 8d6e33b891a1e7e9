"""Tests for scenario validation and the job record state machine."""

import pytest

from shared.models.analysis import AnalysisState
from shared.models.exceptions import InvalidRequestException
from services.scenario_analysis.impact import ImpactModel
from services.scenario_analysis.models import (
    ScenarioSpec, SubmitAnalysisRequest, AnalysisJob, AnalysisResult, parse_payload,
)


class TestScenarioValidation:
    def test_camel_and_snake_case_accepted(self, steel_payload):
        snake = dict(steel_payload)
        snake["end_of_life"] = {
            "recycling_rate": 0.75,
            "disposal_method": "Recycling",
            "recovery_efficiency": 0.8,
        }
        del snake["endOfLife"]
        assert ScenarioSpec.from_payload(snake) == ScenarioSpec.from_payload(steel_payload)

    def test_unknown_field_rejected(self, steel_payload):
        with pytest.raises(InvalidRequestException):
            ScenarioSpec.from_payload({**steel_payload, "colour": "blue"})

    def test_missing_section_rejected(self, steel_payload):
        payload = {k: v for k, v in steel_payload.items() if k != "energy"}
        with pytest.raises(InvalidRequestException, match="energy"):
            ScenarioSpec.from_payload(payload)

    def test_none_payload_rejected(self):
        with pytest.raises(InvalidRequestException, match="required"):
            ScenarioSpec.from_payload(None)

    @pytest.mark.parametrize("section,values", [
        ("route", {"efficiency": 1.2}),
        ("energy", {"renewable": 120}),
        ("transport", {"distance": -5}),
        ("endOfLife", {"recyclingRate": -0.1}),
    ])
    def test_out_of_range_values_rejected(self, steel_payload, section, values):
        payload = {**steel_payload, section: {**steel_payload[section], **values}}
        with pytest.raises(InvalidRequestException):
            ScenarioSpec.from_payload(payload)

    def test_energy_shares_must_sum_to_hundred(self, steel_payload):
        payload = {**steel_payload, "energy": {
            "sources": [
                {"type": "Grid", "percentage": 60, "carbonIntensity": 0.5},
                {"type": "Solar", "percentage": 20, "carbonIntensity": 0.05},
            ],
            "renewable": 20,
        }}
        with pytest.raises(InvalidRequestException, match="sum to 100"):
            ScenarioSpec.from_payload(payload)

    def test_energy_needs_a_source(self, steel_payload):
        payload = {**steel_payload, "energy": {"sources": [], "renewable": 0}}
        with pytest.raises(InvalidRequestException):
            ScenarioSpec.from_payload(payload)

    def test_weighted_carbon_intensity(self, steel_payload):
        payload = {**steel_payload, "energy": {
            "sources": [
                {"type": "Grid", "percentage": 50, "carbonIntensity": 0.6},
                {"type": "Wind", "percentage": 50, "carbonIntensity": 0.0},
            ],
            "renewable": 50,
        }}
        assert ScenarioSpec.from_payload(payload).energy.weighted_carbon_intensity == pytest.approx(0.3)

    def test_scenario_is_immutable(self, steel_scenario):
        with pytest.raises(Exception):
            steel_scenario.route.efficiency = 0.1

    def test_serializes_with_camel_case_keys(self, steel_scenario):
        dumped = steel_scenario.model_dump(by_alias=True)
        assert "endOfLife" in dumped
        assert "recyclingRate" in dumped["endOfLife"]


class TestSubmitAnalysisRequest:
    def test_estimate_fields_are_cleaned(self, steel_payload):
        request = parse_payload(SubmitAnalysisRequest, {
            "scenario": steel_payload,
            "estimateFields": [" co2e_kg_per_kg ", "", "water_l_per_kg"],
        })
        assert request.estimate_fields == ["co2e_kg_per_kg", "water_l_per_kg"]

    def test_estimate_fields_default_empty(self, steel_payload):
        assert parse_payload(SubmitAnalysisRequest, {"scenario": steel_payload}).estimate_fields == []


@pytest.fixture
def job(steel_scenario):
    return AnalysisJob(job_id="job-1", scenario_id="scenario-1", scenario=steel_scenario)


@pytest.fixture
def result(steel_scenario):
    impact = ImpactModel().compute(steel_scenario)
    return AnalysisResult(
        impact=impact,
        circularity_metrics=impact.circularity_score.breakdown,
        optimization_suggestions=["Implement closed-loop recycling system"],
    )


class TestAnalysisJob:
    def test_new_job_is_draft(self, job):
        snapshot = job.snapshot()
        assert snapshot.state == AnalysisState.DRAFT
        assert snapshot.progress == 0
        assert snapshot.result is None

    def test_happy_path(self, job, result):
        assert job.transition_to(AnalysisState.RUNNING) == AnalysisState.DRAFT
        assert job.started_at is not None
        job.advance_progress(50)
        job.transition_to(AnalysisState.COMPLETED, result=result)

        snapshot = job.snapshot()
        assert snapshot.state == AnalysisState.COMPLETED
        assert snapshot.progress == 100
        assert snapshot.result == result
        assert snapshot.completed_at is not None

    def test_draft_cannot_complete(self, job, result):
        with pytest.raises(ValueError):
            job.transition_to(AnalysisState.COMPLETED, result=result)

    def test_completion_requires_result(self, job):
        job.transition_to(AnalysisState.RUNNING)
        with pytest.raises(ValueError):
            job.transition_to(AnalysisState.COMPLETED)

    def test_terminal_states_are_final(self, job):
        job.transition_to(AnalysisState.FAILED, failure_reason="boom")
        assert job.is_terminal
        for state in AnalysisState:
            with pytest.raises(ValueError):
                job.transition_to(state)
        assert job.failure_reason == "boom"

    def test_progress_is_monotonic(self, job):
        job.transition_to(AnalysisState.RUNNING)
        job.advance_progress(50)
        assert job.advance_progress(10) == 50
        assert job.advance_progress(150) == 100

    def test_progress_only_while_running(self, job):
        with pytest.raises(ValueError):
            job.advance_progress(10)

    def test_snapshot_is_detached(self, job):
        before = job.snapshot()
        job.transition_to(AnalysisState.RUNNING)
        assert before.state == AnalysisState.DRAFT
