"""
End-to-end tests for the optimization engine.
"""
from datetime import datetime
import random

import pytest

from resource_engine.exceptions import DependencyCycleError, InvalidRequestError
from resource_engine.models.data_models import (
    DependencyType, GeneticAlgorithmConfig, OptimizationConstraints, OptimizationPreferences,
    ProjectSnapshot, TimeHorizon
)
from resource_engine.models.results import ResultStatus, WarningCategory
from resource_engine.scheduling.critical_path import EPSILON, peak_load


def categories(result):
    return [w.category for w in result.warnings]


class TestExampleScenarios:

    def test_three_task_chain(self, chain_snapshot, make_engine, make_request):
        result = make_engine(chain_snapshot).optimize(make_request())

        plan = result.scheduling_plan
        assert result.status == ResultStatus.SUCCESS
        assert plan.critical_path == ["A", "B", "C"]
        assert plan.total_duration_days == pytest.approx(6)
        assert all(s.slack == 0.0 for s in plan.tasks)

    def test_single_task_single_resource(self, make_engine, make_request):
        snapshot = ProjectSnapshot.from_json({
            "tasks": [{"id": "only", "project_id": "p1", "duration_hours": 8}],
            "resources": [{"id": "r1", "type": "worker", "hourly_rate": 40}],
        })
        result = make_engine(snapshot).optimize(make_request())

        assert result.status == ResultStatus.SUCCESS
        assert result.generations_run == 1
        assert result.confidence_score == 1.0
        assert result.alternatives == []
        assert result.scheduling_plan.total_cost == pytest.approx(320)

    def test_missing_skill_fails(self, make_engine, make_request):
        snapshot = ProjectSnapshot.from_json({
            "tasks": [{"id": "weld", "project_id": "p1", "duration_hours": 8,
                       "required_skills": [{"name": "welding", "level": 2}]}],
            "resources": [{"id": "r1", "type": "worker", "hourly_rate": 40,
                           "skills": [{"name": "carpentry", "level": 3}]}],
        })
        result = make_engine(snapshot).optimize(make_request())

        assert result.status == ResultStatus.FAILED
        assert result.confidence_score == 0.0
        assert result.scheduling_plan is None
        blocking = [w for w in result.warnings if w.category == WarningCategory.UNSATISFIABLE_CONSTRAINT]
        assert blocking and "welding" in blocking[0].message
        assert blocking[0].affected_task_ids == ["weld"]

    def test_capacity_shortage_is_partial(self, make_engine, make_request):
        snapshot = ProjectSnapshot.from_json({
            "tasks": [
                {"id": "A", "project_id": "p1", "duration_hours": 40},
                {"id": "B", "project_id": "p1", "duration_hours": 40, "dependencies": ["A"]},
            ],
            "resources": [{"id": "r1", "type": "worker", "hourly_rate": 40}],
        })
        short = TimeHorizon(datetime(2026, 3, 2), datetime(2026, 3, 4))
        result = make_engine(snapshot).optimize(make_request(horizon=short))

        assert result.status == ResultStatus.PARTIAL
        assert result.scheduling_plan.unscheduled_task_ids == ["B"]
        shortage = [w for w in result.warnings if w.category == WarningCategory.CAPACITY_SHORTAGE]
        assert shortage and shortage[0].affected_task_ids == ["B"]
        assert result.confidence_score <= 0.5

    def test_cycle_rejected_before_optimization(self, make_engine, make_request):
        snapshot = ProjectSnapshot.from_json({
            "tasks": [
                {"id": "A", "project_id": "p1", "duration_hours": 8, "dependencies": ["B"]},
                {"id": "B", "project_id": "p1", "duration_hours": 8, "dependencies": ["A"]},
            ],
            "resources": [{"id": "r1", "type": "worker", "hourly_rate": 40}],
        })
        with pytest.raises(DependencyCycleError):
            make_engine(snapshot).optimize(make_request())


class TestRequestHandling:

    def test_empty_scope_rejected(self, site_snapshot, make_engine, make_request):
        with pytest.raises(InvalidRequestError):
            make_engine(site_snapshot).optimize(make_request(project_ids=("unknown",)))

    def test_unregistered_forecast_model_rejected(self, site_snapshot, make_engine, make_request):
        request = make_request(preferences=OptimizationPreferences(forecast_model="lstm"))
        with pytest.raises(InvalidRequestError):
            make_engine(site_snapshot).optimize(request)

    def test_excluded_mandatory_resource_fails(self, site_snapshot, make_engine, make_request):
        constraints = OptimizationConstraints(mandatory_resources=("fixers",), excluded_resources=("fixers",))
        result = make_engine(site_snapshot).optimize(make_request(constraints=constraints))
        assert result.status == ResultStatus.FAILED
        assert any("Mandatory resource fixers" in w.message for w in result.warnings)

    def test_deadline_overrun_reported(self, chain_snapshot, make_engine, make_request):
        result = make_engine(chain_snapshot).optimize(
            make_request(constraints=OptimizationConstraints(deadline_hours=24))
        )
        assert WarningCategory.SCHEDULE_DELAY in categories(result)
        assert result.metrics.feasibility_score == pytest.approx(0.9)


class TestSiteProject:

    def test_full_result(self, site_snapshot, make_engine, make_request):
        result = make_engine(site_snapshot).optimize(make_request())

        assert result.status == ResultStatus.SUCCESS
        assert 0.0 < result.confidence_score <= 1.0
        assert len(result.alternatives) <= 2
        assert len(result.recommendations) == 5
        assert result.generations_run == len(result.fitness_history)

    def test_background_conflict_reported(self, site_snapshot, make_engine, make_request):
        result = make_engine(site_snapshot).optimize(make_request())

        assert len(result.conflicts) == 1
        assert result.conflicts[0].resource_id == "general"
        assert result.metrics.conflicts_remaining == 1
        assert result.metrics.conflicts_resolved == 0
        assert WarningCategory.RESOURCE_CONFLICT in categories(result)

    def test_other_project_conflict_reschedulable(self, make_engine, make_request):
        snapshot = ProjectSnapshot.from_json({
            "tasks": [
                {"id": "work", "project_id": "p1", "duration_hours": 8},
                {"id": "long", "project_id": "p2", "duration_hours": 200},
                {"id": "late", "project_id": "p2", "duration_hours": 8},
            ],
            "resources": [
                {"id": "crew", "type": "worker", "hourly_rate": 50},
                {"id": "helper", "type": "worker", "hourly_rate": 40},
            ],
            "allocations": [
                {"allocation_id": "a_late", "resource_id": "crew", "task_id": "late",
                 "project_id": "p2", "start": 0, "end": 8},
                {"allocation_id": "a_long", "resource_id": "crew", "task_id": "long",
                 "project_id": "p2", "start": 0, "end": 8},
            ],
        })
        result = make_engine(snapshot).optimize(make_request())

        assert len(result.conflicts) == 1
        conflict = result.conflicts[0]
        assert conflict.task_ids == ["late", "long"]
        assert conflict.can_reschedule
        assert [t.task_id for t in result.scheduling_plan.tasks] == ["work"]

    def test_background_load_respected(self, site_snapshot, make_engine, make_request):
        result = make_engine(site_snapshot).optimize(make_request())
        background = [(a.start, a.end, a.allocation_percentage) for a in site_snapshot.allocations]
        for allocation in result.scheduling_plan.allocations:
            if allocation.resource_id == "general":
                load = peak_load(background, allocation.start, allocation.end)
                assert load + allocation.allocation_percentage <= 100 + EPSILON

    def test_forecasts_and_missing_history(self, site_data, make_engine, make_request):
        site_data["utilization_history"] = [
            {"timestamp": f"2026-02-{day:02d}T00:00:00", "resource_type": "worker", "quantity": q}
            for day, q in ((2, 2.0), (9, 2.5), (16, 2.7), (23, 3.1))
        ]
        result = make_engine(ProjectSnapshot.from_json(site_data)).optimize(make_request())

        assert [f.resource_type.value for f in result.forecasts] == ["worker"]
        assert WarningCategory.INSUFFICIENT_DATA in categories(result)

    def test_same_seed_same_plan(self, site_snapshot, make_engine, make_request):
        first = make_engine(site_snapshot).optimize(make_request(seed=9))
        second = make_engine(site_snapshot).optimize(make_request(seed=9))

        def signature(result):
            return [(s.task_id, s.resource_id, s.start) for s in result.scheduling_plan.tasks]

        assert signature(first) == signature(second)
        assert first.generations_run == second.generations_run

    def test_timeout_lowers_confidence(self, site_snapshot, make_engine, make_request):
        config = GeneticAlgorithmConfig(population_size=30, max_generations=100000,
                                        convergence_generations=100000, max_workers=2)
        result = make_engine(site_snapshot).optimize(make_request(ga_config=config, timeout_seconds=0.05))

        assert WarningCategory.SEARCH_INCOMPLETE in categories(result)
        assert result.generations_run < 100000
        assert result.confidence_score < 1.0
        assert result.status in (ResultStatus.SUCCESS, ResultStatus.PARTIAL)


def generated_project(seed):
    """Random project: dependencies only point backwards, so the graph is acyclic."""
    rng = random.Random(seed)
    tasks = []
    for index in range(rng.randint(4, 8)):
        dependencies = []
        for predecessor in range(index):
            if rng.random() < 0.3:
                dependencies.append({
                    "predecessor_id": f"t{predecessor}",
                    "type": rng.choice(list(DependencyType)).value,
                    "lag_hours": rng.choice([-4, 0, 0, 8]),
                })
        tasks.append({
            "id": f"t{index}",
            "project_id": "p1",
            "duration_hours": rng.choice([4, 8, 16, 24]),
            "allocation_percentage": rng.choice([50, 100]),
            "complexity": rng.randint(1, 10),
            "dependencies": dependencies,
        })
    resources = []
    for index in range(rng.randint(1, 3)):
        resource = {"id": f"r{index}", "type": "worker", "hourly_rate": rng.randint(20, 90)}
        if rng.random() < 0.5:
            resource["availability"] = [
                {"start": 0, "end": 200, "percentage": 100},
                {"start": 240, "end": 1000, "percentage": rng.choice([50, 100])},
            ]
        resources.append(resource)
    return ProjectSnapshot.from_json({"tasks": tasks, "resources": resources})


class TestPlanInvariants:
    """Properties every returned plan satisfies, checked over seeded generated projects."""

    @pytest.mark.parametrize("seed", range(8))
    def test_invariants(self, seed, make_engine, make_request):
        snapshot = generated_project(seed)
        result = make_engine(snapshot).optimize(make_request(seed=seed))
        plan = result.scheduling_plan
        resource_map = snapshot.resource_map
        horizon_hours = make_request().horizon.length_hours

        # Capacity: no resource is loaded beyond the window it works in
        for resource_id, resource in resource_map.items():
            bookings = [(a.start, a.end, a.allocation_percentage)
                        for a in plan.allocations if a.resource_id == resource_id]
            for start, end, _ in bookings:
                capacity = resource.capacity_for(start, end, horizon_hours)
                assert capacity is not None
                assert peak_load(bookings, start, end) <= capacity + EPSILON

        # Dependencies: type and lag hold between resolved times
        schedule = plan.schedule_map
        for task in snapshot.tasks:
            if task.id not in schedule:
                continue
            successor = schedule[task.id]
            for dep in task.dependencies:
                predecessor = schedule[dep.predecessor_id]
                if dep.dependency_type == DependencyType.FINISH_TO_START:
                    assert successor.start >= predecessor.end + dep.lag_hours - EPSILON
                elif dep.dependency_type == DependencyType.START_TO_START:
                    assert successor.start >= predecessor.start + dep.lag_hours - EPSILON
                elif dep.dependency_type == DependencyType.FINISH_TO_FINISH:
                    assert successor.end >= predecessor.end + dep.lag_hours - EPSILON
                else:
                    assert successor.end >= predecessor.start + dep.lag_hours - EPSILON

        # Critical path: closes the project and carries no slack
        if plan.tasks:
            last = schedule[plan.critical_path[-1]]
            assert last.end == pytest.approx(plan.total_duration_hours)
            assert all(schedule[tid].slack == 0.0 for tid in plan.critical_path)
