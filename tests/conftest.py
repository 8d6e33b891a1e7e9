"""Shared test fixtures for the scenario analysis test suite."""

import os

import pytest

# Keep the service on in-process backends regardless of the host environment
os.environ.setdefault("SCENARIO_ANALYSIS_JOB_STORE_BACKEND", "memory")
os.environ.setdefault("SCENARIO_ANALYSIS_KAFKA_ENABLED", "false")
os.environ.setdefault("SCENARIO_ANALYSIS_LOG_LEVEL", "WARNING")

from services.scenario_analysis.models import ScenarioSpec


@pytest.fixture
def steel_payload():
    """A primary steel route on a partly renewable grid, in camelCase wire format."""
    return {
        "name": "Primary steel baseline",
        "tags": ["steel", "baseline"],
        "material": {
            "type": "Steel",
            "composition": {"Fe": 0.98, "C": 0.02},
            "properties": {"grade": "S355"},
        },
        "route": {
            "process": "Primary",
            "parameters": {"furnace": "BF-BOF"},
            "efficiency": 0.85,
        },
        "energy": {
            "sources": [
                {"type": "Grid", "percentage": 100, "carbonIntensity": 0.5},
            ],
            "renewable": 40,
        },
        "transport": {
            "distance": 100,
            "method": "Truck",
            "carbonIntensity": 0.1,
        },
        "endOfLife": {
            "recyclingRate": 0.75,
            "disposalMethod": "Recycling",
            "recoveryEfficiency": 0.8,
        },
    }


@pytest.fixture
def steel_scenario(steel_payload):
    return ScenarioSpec.from_payload(steel_payload)


@pytest.fixture
def optimization_payload(steel_payload):
    return {
        "objectives": {"minimizeCO2": True, "minimizeCost": True, "maximizeCircularity": True},
        "weights": {"co2": 1, "cost": 1, "circularity": 1},
        "constraints": {},
        "baseline": steel_payload,
    }
