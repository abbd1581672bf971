"""
Detection of over-allocation and availability clashes in committed allocations
"""
from dataclasses import dataclass, field
from typing import List, Dict, Sequence, Tuple
import logging

from resource_engine.exceptions import DependencyCycleError
from resource_engine.models.data_models import Task, Resource, Allocation, Severity
from resource_engine.models.results import Conflict, ConflictType
from resource_engine.scheduling.critical_path import dependency_timings, load_segments, EPSILON

logger = logging.getLogger(__name__)


def severity_for_peak(peak_percentage: float) -> Severity:
    """Map a peak load (percent of capacity) to a conflict severity"""
    if peak_percentage > 150:
        return Severity.CRITICAL
    if peak_percentage > 120:
        return Severity.HIGH
    if peak_percentage > 110:
        return Severity.MEDIUM
    return Severity.LOW


@dataclass
class ConflictReport:
    """Conflicts found in one snapshot plus summary figures"""
    conflicts: List[Conflict] = field(default_factory=list)
    severity_distribution: Dict[str, int] = field(default_factory=dict)
    utilization: Dict[str, float] = field(default_factory=dict)  # resource id -> % of available hours

    @property
    def has_conflicts(self) -> bool:
        return bool(self.conflicts)

    def conflict_windows(self) -> Dict[str, List[Tuple[float, float]]]:
        """Time windows per resource that already hold a conflict"""
        windows: Dict[str, List[Tuple[float, float]]] = {}
        for conflict in self.conflicts:
            windows.setdefault(conflict.resource_id, []).append((conflict.start, conflict.end))
        return windows

    def to_dict(self) -> Dict:
        return {
            'conflicts': [c.to_dict() for c in self.conflicts],
            'severity_distribution': dict(self.severity_distribution),
            'utilization': {rid: round(value, 2) for rid, value in self.utilization.items()}
        }


class ConflictDetector:
    """Scans committed allocations against resource capacity and availability"""

    def __init__(self, resources: Sequence[Resource], tasks: Sequence[Task], horizon_hours: float):
        self.resources = list(resources)
        self.resource_map = {r.id: r for r in self.resources}
        self.tasks = list(tasks)
        self.horizon_hours = horizon_hours

    def _task_slack(self) -> Dict[str, float]:
        """Slack of every task in a resource-free CPM of its own project"""
        projects: Dict[str, List[Task]] = {}
        for task in self.tasks:
            projects.setdefault(task.project_id, []).append(task)
        slack = {}
        for project_id, project_tasks in projects.items():
            try:
                timings = dependency_timings(project_tasks)
            except DependencyCycleError as e:
                logger.warning("Project %s has cyclic dependencies, its tasks get no slack: %s", project_id, e)
                continue
            for task_id, timing in timings.items():
                slack[task_id] = timing.slack
        return slack

    def _capacity_at(self, resource: Resource, start: float, end: float) -> float:
        capacity = resource.capacity_for(start, end, self.horizon_hours)
        return 100.0 if capacity is None else capacity

    def detect(self, allocations: Sequence[Allocation]) -> ConflictReport:
        """
        Find conflicts in committed allocations

        Args:
            allocations: Allocations committed before this request

        Returns:
            ConflictReport; the detector has no side effects
        """
        slack = self._task_slack()
        by_resource: Dict[str, List[Allocation]] = {}
        for allocation in allocations:
            if allocation.resource_id not in self.resource_map:
                logger.warning(
                    "Allocation %s references unknown resource %s",
                    allocation.allocation_id, allocation.resource_id
                )
                continue
            if allocation.end <= 0 or allocation.start >= self.horizon_hours:
                continue
            by_resource.setdefault(allocation.resource_id, []).append(allocation)

        conflicts: List[Conflict] = []
        utilization = {}
        for resource in self.resources:
            items = sorted(by_resource.get(resource.id, []), key=lambda a: (a.start, a.end, a.allocation_id))
            conflicts.extend(self._overallocations(resource, items, slack))
            conflicts.extend(self._unavailability(resource, items, slack))
            available = resource.available_hours(self.horizon_hours)
            committed = sum(
                (min(a.end, self.horizon_hours) - max(a.start, 0.0)) * a.allocation_percentage / 100.0
                for a in items
            )
            utilization[resource.id] = 100.0 * committed / available if available > 0 else 0.0

        for index, conflict in enumerate(conflicts, start=1):
            conflict.conflict_id = f"conflict_{index:03d}"

        distribution = {severity.value: 0 for severity in Severity}
        for conflict in conflicts:
            distribution[conflict.severity.value] += 1

        if conflicts:
            logger.info("Detected %d conflicts in committed allocations", len(conflicts))
        return ConflictReport(conflicts, distribution, utilization)

    def _can_reschedule(self, task_ids: List[str], slack: Dict[str, float]) -> bool:
        return any(slack.get(task_id, 0.0) > EPSILON for task_id in task_ids)

    def _overallocations(self, resource: Resource, items: List[Allocation],
                         slack: Dict[str, float]) -> List[Conflict]:
        bookings = [(a.start, a.end, a.allocation_percentage) for a in items]
        overloaded = []
        for seg_start, seg_end, load in load_segments(bookings):
            capacity = self._capacity_at(resource, seg_start, seg_end)
            if load > capacity + EPSILON:
                overloaded.append((seg_start, seg_end, 100.0 * load / capacity))

        # Merge touching overloaded segments into one conflict window
        merged: List[List[float]] = []
        for seg_start, seg_end, peak in overloaded:
            if merged and abs(merged[-1][1] - seg_start) < EPSILON:
                merged[-1][1] = seg_end
                merged[-1][2] = max(merged[-1][2], peak)
            else:
                merged.append([seg_start, seg_end, peak])

        conflicts = []
        for start, end, peak in merged:
            involved = [a for a in items if a.overlaps(start, end)]
            task_ids = [a.task_id for a in involved]
            conflicts.append(Conflict(
                conflict_id="",
                resource_id=resource.id,
                conflict_type=ConflictType.OVERALLOCATION,
                allocation_ids=[a.allocation_id for a in involved],
                task_ids=task_ids,
                start=start,
                end=end,
                peak_percentage=peak,
                severity=severity_for_peak(peak),
                can_reschedule=self._can_reschedule(task_ids, slack)
            ))
        return conflicts

    def _unavailability(self, resource: Resource, items: List[Allocation],
                        slack: Dict[str, float]) -> List[Conflict]:
        conflicts = []
        for allocation in items:
            start = max(allocation.start, 0.0)
            end = min(allocation.end, self.horizon_hours)
            if resource.capacity_for(start, end, self.horizon_hours) is not None:
                continue
            conflicts.append(Conflict(
                conflict_id="",
                resource_id=resource.id,
                conflict_type=ConflictType.UNAVAILABILITY,
                allocation_ids=[allocation.allocation_id],
                task_ids=[allocation.task_id],
                start=start,
                end=end,
                peak_percentage=allocation.allocation_percentage,
                severity=Severity.HIGH,
                can_reschedule=self._can_reschedule([allocation.task_id], slack)
            ))
        return conflicts
