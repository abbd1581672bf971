"""
Tests for conflict detection in committed allocations.
"""
import pytest

from resource_engine.analysis.conflict_detector import ConflictDetector, severity_for_peak
from resource_engine.models.data_models import (
    Allocation, AvailabilityWindow, Dependency, Resource, ResourceType, Severity, Task
)
from resource_engine.models.results import ConflictType


@pytest.fixture
def crane():
    return Resource("crane", "Crane", ResourceType.EQUIPMENT, [], 150,
                    availability=[AvailabilityWindow(0, 100)])


@pytest.fixture
def tasks():
    # "lift" has 30h of slack against "foundation" in the same project
    return [Task("lift", "Lift beams", 10, project_id="p1"),
            Task("foundation", "Foundation", 40, project_id="p1")]


class TestSeverity:

    @pytest.mark.parametrize("peak, severity", [
        (105, Severity.LOW), (110, Severity.LOW), (115, Severity.MEDIUM),
        (120, Severity.MEDIUM), (140, Severity.HIGH), (150, Severity.HIGH), (151, Severity.CRITICAL),
    ])
    def test_thresholds(self, peak, severity):
        assert severity_for_peak(peak) == severity


class TestOverallocation:

    def test_overlapping_allocations_conflict(self, crane, tasks):
        allocations = [
            Allocation("crane", "lift", 0, 20, 60, allocation_id="a1"),
            Allocation("crane", "foundation", 10, 30, 60, allocation_id="a2"),
        ]
        report = ConflictDetector([crane], tasks, 200).detect(allocations)

        assert len(report.conflicts) == 1
        conflict = report.conflicts[0]
        assert conflict.conflict_id == "conflict_001"
        assert conflict.conflict_type == ConflictType.OVERALLOCATION
        assert (conflict.start, conflict.end) == (10, 20)
        assert conflict.peak_percentage == pytest.approx(120)
        assert conflict.severity == Severity.MEDIUM
        assert conflict.allocation_ids == ["a1", "a2"]
        assert conflict.can_reschedule
        assert report.severity_distribution["medium"] == 1

    def test_touching_segments_merge(self, crane):
        allocations = [
            Allocation("crane", "t1", 0, 20, 80),
            Allocation("crane", "t2", 10, 30, 40),
            Allocation("crane", "t3", 15, 25, 60),
        ]
        report = ConflictDetector([crane], [], 200).detect(allocations)

        assert len(report.conflicts) == 1
        conflict = report.conflicts[0]
        assert (conflict.start, conflict.end) == (10, 20)
        assert conflict.peak_percentage == pytest.approx(180)
        assert conflict.severity == Severity.CRITICAL
        assert not conflict.can_reschedule

    def test_reduced_window_capacity(self):
        resource = Resource("r1", "Part-time", ResourceType.WORKER, [], 30,
                            availability=[AvailabilityWindow(0, 100, 50)])
        report = ConflictDetector([resource], [], 200).detect([Allocation("r1", "t1", 0, 10, 60)])
        assert report.conflicts[0].peak_percentage == pytest.approx(120)

    def test_no_conflict_within_capacity(self, crane, tasks):
        allocations = [
            Allocation("crane", "lift", 0, 20, 50),
            Allocation("crane", "foundation", 10, 30, 50),
        ]
        report = ConflictDetector([crane], tasks, 200).detect(allocations)
        assert not report.has_conflicts
        assert report.utilization["crane"] == pytest.approx(100 * 20 / 100)


class TestUnavailability:

    def test_allocation_outside_windows(self, crane, tasks):
        report = ConflictDetector([crane], tasks, 200).detect(
            [Allocation("crane", "foundation", 120, 140, 100, allocation_id="late")]
        )
        assert len(report.conflicts) == 1
        conflict = report.conflicts[0]
        assert conflict.conflict_type == ConflictType.UNAVAILABILITY
        assert conflict.severity == Severity.HIGH
        assert conflict.allocation_ids == ["late"]
        assert not conflict.can_reschedule

    def test_unknown_resource_ignored(self, crane):
        report = ConflictDetector([crane], [], 200).detect([Allocation("ghost", "t1", 0, 10)])
        assert not report.has_conflicts

    def test_conflict_windows(self, crane):
        allocations = [Allocation("crane", "t1", 0, 20), Allocation("crane", "t2", 10, 30)]
        report = ConflictDetector([crane], [], 200).detect(allocations)
        assert report.conflict_windows() == {"crane": [(10, 20)]}
        assert report.to_dict()["conflicts"][0]["resource_id"] == "crane"


class TestReschedulability:

    def test_slack_from_each_project(self, crane):
        tasks = [Task("long", "Long pour", 200, project_id="p2"),
                 Task("late", "Late fit-out", 8, project_id="p2")]
        allocations = [Allocation("crane", "late", 0, 8, allocation_id="a_late"),
                       Allocation("crane", "long", 0, 8, allocation_id="a_long")]
        conflict = ConflictDetector([crane], tasks, 300).detect(allocations).conflicts[0]

        assert conflict.task_ids == ["late", "long"]
        assert conflict.can_reschedule

    def test_cyclic_project_gets_no_slack(self, crane, tasks):
        cyclic = [
            Task("x1", "Loop one", 8, project_id="p9",
                 dependencies=[Dependency("x2", "x1")]),
            Task("x2", "Loop two", 8, project_id="p9",
                 dependencies=[Dependency("x1", "x2")]),
        ]
        allocations = [
            Allocation("crane", "lift", 0, 20, 60, allocation_id="a1"),
            Allocation("crane", "foundation", 10, 30, 60, allocation_id="a2"),
            Allocation("crane", "x1", 50, 60, 60, allocation_id="a3"),
            Allocation("crane", "x2", 55, 65, 60, allocation_id="a4"),
        ]
        report = ConflictDetector([crane], tasks + cyclic, 200).detect(allocations)

        assert [c.task_ids for c in report.conflicts] == [["lift", "foundation"], ["x1", "x2"]]
        assert [c.can_reschedule for c in report.conflicts] == [True, False]
