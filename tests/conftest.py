"""
Shared fixtures for engine tests.
"""
from datetime import datetime

import pytest

from resource_engine.engine import OptimizationEngine
from resource_engine.models.data_models import (
    GeneticAlgorithmConfig, OptimizationObjective, OptimizationRequest, ProjectSnapshot, TimeHorizon
)
from resource_engine.providers.snapshot_provider import InMemorySnapshotProvider


HORIZON_START = datetime(2026, 3, 2)
HORIZON_END = datetime(2026, 4, 30)


@pytest.fixture
def horizon():
    """59-day planning window (1416 hours)."""
    return TimeHorizon(HORIZON_START, HORIZON_END)


@pytest.fixture
def small_ga():
    """Search parameters small enough for fast test runs."""
    return GeneticAlgorithmConfig(
        population_size=12,
        max_generations=15,
        convergence_generations=5,
        alternatives_count=2,
        max_workers=2
    )


@pytest.fixture
def make_request(horizon, small_ga):
    """Factory for requests over the p1 project."""
    def factory(**overrides):
        values = dict(
            request_id="req_test",
            project_ids=("p1",),
            objective=OptimizationObjective.BALANCED,
            horizon=horizon,
            ga_config=small_ga,
            seed=42
        )
        values.update(overrides)
        return OptimizationRequest(**values)
    return factory


@pytest.fixture
def chain_data():
    """A -> B -> C finish-to-start, 2/3/1 working days, one always-available worker."""
    return {
        "tasks": [
            {"id": "A", "name": "Clear site", "project_id": "p1", "duration_hours": 16},
            {"id": "B", "name": "Pour slab", "project_id": "p1", "duration_hours": 24,
             "dependencies": ["A"]},
            {"id": "C", "name": "Inspect slab", "project_id": "p1", "duration_hours": 8,
             "dependencies": ["B"]},
        ],
        "resources": [
            {"id": "r1", "name": "Site Crew", "type": "worker", "hourly_rate": 50},
        ],
    }


@pytest.fixture
def chain_snapshot(chain_data):
    return ProjectSnapshot.from_json(chain_data)


@pytest.fixture
def site_data():
    """Small construction project with several eligible resources per task."""
    return {
        "tasks": [
            {"id": "dig", "name": "Dig trench", "project_id": "p1", "duration_hours": 24,
             "required_skills": [{"name": "earthmoving", "level": 1}], "resource_type": "equipment",
             "complexity": 4},
            {"id": "forms", "name": "Set forms", "project_id": "p1", "duration_hours": 16,
             "required_skills": [{"name": "carpentry", "level": 2}], "complexity": 5,
             "dependencies": ["dig"]},
            {"id": "rebar", "name": "Tie rebar", "project_id": "p1", "duration_hours": 16,
             "required_skills": [{"name": "steel_fixing", "level": 1}], "complexity": 6,
             "dependencies": [{"predecessor_id": "forms", "type": "start_to_start", "lag_hours": 8}]},
            {"id": "pour", "name": "Pour concrete", "project_id": "p1", "duration_hours": 8,
             "required_skills": [{"name": "concrete", "level": 2}], "complexity": 8,
             "dependencies": ["forms", "rebar"]},
            {"id": "strip", "name": "Strip forms", "project_id": "p1", "duration_hours": 8,
             "required_skills": [{"name": "carpentry", "level": 1}], "complexity": 2,
             "dependencies": [{"predecessor_id": "pour", "type": "finish_to_start", "lag_hours": 48}]},
        ],
        "resources": [
            {"id": "excavator", "name": "Excavator", "type": "equipment", "hourly_rate": 110,
             "skills": [{"name": "earthmoving", "level": 2}]},
            {"id": "backhoe", "name": "Backhoe", "type": "equipment", "hourly_rate": 75,
             "skills": [{"name": "earthmoving", "level": 1}]},
            {"id": "carpenters", "name": "Carpentry Crew", "type": "worker", "hourly_rate": 65,
             "skills": [{"name": "carpentry", "level": 3}, {"name": "concrete", "level": 2}]},
            {"id": "general", "name": "General Crew", "type": "worker", "hourly_rate": 45,
             "skills": [{"name": "carpentry", "level": 2}, {"name": "steel_fixing", "level": 1},
                        {"name": "concrete", "level": 3}]},
            {"id": "fixers", "name": "Steel Fixers", "type": "worker", "hourly_rate": 60,
             "skills": [{"name": "steel_fixing", "level": 3}],
             "availability": [{"start": 0, "end": 400, "percentage": 100}]},
        ],
        "allocations": [
            {"allocation_id": "other_1", "resource_id": "general", "task_id": "x1",
             "project_id": "p2", "start": 0, "end": 40, "allocation_percentage": 70},
            {"allocation_id": "other_2", "resource_id": "general", "task_id": "x2",
             "project_id": "p2", "start": 20, "end": 60, "allocation_percentage": 70},
        ],
    }


@pytest.fixture
def site_snapshot(site_data):
    return ProjectSnapshot.from_json(site_data)


@pytest.fixture
def make_engine():
    """Factory for engines serving a fixed snapshot."""
    def factory(snapshot, **kwargs):
        return OptimizationEngine(InMemorySnapshotProvider(snapshot), **kwargs)
    return factory
