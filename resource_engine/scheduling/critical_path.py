"""
Critical-path scheduling of candidate allocation plans

Forward pass: tasks are placed in topological order at the earliest time that
respects every dependency (type and lag), the gene's preferred start, the
chosen resource's availability windows and its remaining capacity.
Backward pass: latest finish times are propagated from the project end over
the same dependency rules; slack is latest start minus earliest start.
"""
from dataclasses import dataclass
from typing import List, Dict, Optional, Sequence, Tuple, Iterable
import heapq
import logging

from resource_engine.exceptions import DependencyCycleError
from resource_engine.models.data_models import (
    Task, Resource, Allocation, Dependency, DependencyType, Severity
)
from resource_engine.models.results import SchedulingPlan, TaskSchedule, ResourceUtilization
from resource_engine.optimization.genome import Gene

logger = logging.getLogger(__name__)

EPSILON = 1e-6

Booking = Tuple[float, float, float]  # start, end, allocation percentage


@dataclass
class TaskTiming:
    earliest_start: float
    earliest_finish: float
    latest_start: float
    latest_finish: float

    @property
    def slack(self) -> float:
        slack = self.latest_start - self.earliest_start
        return 0.0 if abs(slack) < EPSILON else slack


def find_cycle(tasks: Sequence[Task]) -> List[str]:
    """Return one dependency cycle as a closed list of task ids, or [] if the graph is acyclic"""
    graph = {t.id: [p for p in t.predecessor_ids] for t in tasks}
    state = {}  # 1 = on stack, 2 = done
    stack = []

    def visit(node: str) -> List[str]:
        state[node] = 1
        stack.append(node)
        for nxt in graph.get(node, []):
            if nxt not in graph:
                continue
            if state.get(nxt) == 1:
                cycle = stack[stack.index(nxt):] + [nxt]
                # Report in predecessor -> successor direction
                return list(reversed(cycle))
            if state.get(nxt) is None:
                found = visit(nxt)
                if found:
                    return found
        stack.pop()
        state[node] = 2
        return []

    for task in tasks:
        if state.get(task.id) is None:
            found = visit(task.id)
            if found:
                return found
    return []


def topological_order(tasks: Sequence[Task]) -> List[str]:
    """
    Order tasks so that every predecessor precedes its successors.

    Ties are broken by the position of the task in the input list, so the
    order is stable for a given snapshot. Dependencies on tasks outside the
    given list are ignored.

    Raises:
        DependencyCycleError: if the dependency graph contains a cycle
    """
    index = {t.id: i for i, t in enumerate(tasks)}
    in_degree = {t.id: 0 for t in tasks}
    successors = {t.id: [] for t in tasks}
    for task in tasks:
        for predecessor_id in set(task.predecessor_ids):
            if predecessor_id in index:
                in_degree[task.id] += 1
                successors[predecessor_id].append(task.id)

    ready = [(index[tid], tid) for tid, degree in in_degree.items() if degree == 0]
    heapq.heapify(ready)
    order = []
    while ready:
        _, task_id = heapq.heappop(ready)
        order.append(task_id)
        for successor_id in successors[task_id]:
            in_degree[successor_id] -= 1
            if in_degree[successor_id] == 0:
                heapq.heappush(ready, (index[successor_id], successor_id))

    if len(order) != len(tasks):
        raise DependencyCycleError(find_cycle(tasks))
    return order


def dependency_bound(task: Task, dependency: Dependency,
                     starts: Dict[str, float], finishes: Dict[str, float]) -> float:
    """Earliest start of `task` allowed by one dependency, given resolved predecessor times"""
    p_start = starts[dependency.predecessor_id]
    p_finish = finishes[dependency.predecessor_id]
    lag = dependency.lag_hours
    if dependency.dependency_type == DependencyType.FINISH_TO_START:
        return p_finish + lag
    if dependency.dependency_type == DependencyType.START_TO_START:
        return p_start + lag
    if dependency.dependency_type == DependencyType.FINISH_TO_FINISH:
        return p_finish + lag - task.duration_hours
    # start-to-finish
    return p_start + lag - task.duration_hours


def _latest_finish_bound(predecessor: Task, dependency: Dependency,
                         latest_starts: Dict[str, float], latest_finishes: Dict[str, float]) -> float:
    """Latest finish of `predecessor` allowed by one dependency, given resolved successor times"""
    s_start = latest_starts[dependency.successor_id]
    s_finish = latest_finishes[dependency.successor_id]
    lag = dependency.lag_hours
    if dependency.dependency_type == DependencyType.FINISH_TO_START:
        return s_start - lag
    if dependency.dependency_type == DependencyType.START_TO_START:
        return s_start - lag + predecessor.duration_hours
    if dependency.dependency_type == DependencyType.FINISH_TO_FINISH:
        return s_finish - lag
    # start-to-finish
    return s_finish - lag + predecessor.duration_hours


def backward_pass(order: Sequence[str], task_map: Dict[str, Task],
                  earliest_starts: Dict[str, float], earliest_finishes: Dict[str, float]
                  ) -> Dict[str, TaskTiming]:
    """Compute latest times for every task present in `earliest_starts`"""
    scheduled = [tid for tid in order if tid in earliest_starts]
    if not scheduled:
        return {}
    project_end = max(earliest_finishes[tid] for tid in scheduled)

    # Dependencies seen from the predecessor side
    outgoing = {tid: [] for tid in scheduled}
    for tid in scheduled:
        for dep in task_map[tid].dependencies:
            if dep.predecessor_id in outgoing:
                outgoing[dep.predecessor_id].append(dep)

    latest_starts, latest_finishes = {}, {}
    for tid in reversed(scheduled):
        task = task_map[tid]
        latest_finish = project_end
        for dep in outgoing[tid]:
            latest_finish = min(
                latest_finish, _latest_finish_bound(task, dep, latest_starts, latest_finishes)
            )
        latest_finishes[tid] = latest_finish
        latest_starts[tid] = latest_finish - task.duration_hours

    return {
        tid: TaskTiming(earliest_starts[tid], earliest_finishes[tid],
                        latest_starts[tid], latest_finishes[tid])
        for tid in scheduled
    }


def dependency_timings(tasks: Sequence[Task]) -> Dict[str, TaskTiming]:
    """Resource-free CPM: every task starts as soon as its dependencies allow"""
    task_map = {t.id: t for t in tasks}
    order = topological_order(tasks)
    starts, finishes = {}, {}
    for tid in order:
        task = task_map[tid]
        start = 0.0
        for dep in task.dependencies:
            if dep.predecessor_id in starts:
                start = max(start, dependency_bound(task, dep, starts, finishes))
        starts[tid] = start
        finishes[tid] = start + task.duration_hours
    return backward_pass(order, task_map, starts, finishes)


def peak_load(bookings: Iterable[Booking], start: float, end: float) -> float:
    """Highest summed allocation percentage at any instant of [start, end)"""
    overlapping = [(s, e, pct) for s, e, pct in bookings if s < end - EPSILON and start < e - EPSILON]
    if not overlapping:
        return 0.0
    points = {start} | {s for s, _, _ in overlapping if s > start}
    return max(
        sum(pct for s, e, pct in overlapping if s <= point + EPSILON and point < e - EPSILON)
        for point in points
    )


def load_segments(bookings: Iterable[Booking]) -> List[Tuple[float, float, float]]:
    """Split a set of bookings into maximal segments of constant summed load"""
    bookings = list(bookings)
    boundaries = sorted({s for s, _, _ in bookings} | {e for _, e, _ in bookings})
    segments = []
    for seg_start, seg_end in zip(boundaries, boundaries[1:]):
        load = sum(pct for s, e, pct in bookings if s <= seg_start and seg_end <= e)
        if load > 0:
            segments.append((seg_start, seg_end, load))
    return segments


def task_risk(task: Task, slack: float) -> float:
    """Risk in [0, 1]: complex tasks with little room to slip are the riskiest"""
    buffer = min(max(slack, 0.0) / task.duration_hours, 1.0)
    return (task.complexity / 10.0) * (1.0 - buffer)


def risk_level(risk: float) -> Severity:
    if risk <= 0.25:
        return Severity.LOW
    if risk <= 0.5:
        return Severity.MEDIUM
    if risk <= 0.75:
        return Severity.HIGH
    return Severity.CRITICAL


class CriticalPathScheduler:
    """Time-resolves allocation plans over a fixed task graph and resource pool"""

    def __init__(self, tasks: Sequence[Task], resources: Sequence[Resource], horizon_hours: float,
                 committed_allocations: Sequence[Allocation] = (), allow_overtime: bool = False,
                 max_overtime_percentage: float = 20.0):
        """
        Initialize scheduler

        Args:
            tasks: Tasks in scope
            resources: Resource pool
            horizon_hours: Length of the planning horizon
            committed_allocations: Allocations outside the optimized scope that
                already consume resource capacity
            allow_overtime: Whether capacity may be exceeded by max_overtime_percentage
            max_overtime_percentage: Extra capacity granted when overtime is allowed
        """
        self.tasks = list(tasks)
        self.task_map = {t.id: t for t in self.tasks}
        self.resource_map = {r.id: r for r in resources}
        self.horizon_hours = horizon_hours
        self.allow_overtime = allow_overtime
        self.max_overtime_percentage = max_overtime_percentage
        # Raises DependencyCycleError before any pass can run
        self.order = topological_order(self.tasks)

        self.successors = {t.id: [] for t in self.tasks}
        for task in self.tasks:
            for predecessor_id in task.predecessor_ids:
                if predecessor_id in self.successors:
                    self.successors[predecessor_id].append(task.id)

        self.committed: Dict[str, List[Booking]] = {}
        for allocation in committed_allocations:
            if allocation.resource_id in self.resource_map:
                self.committed.setdefault(allocation.resource_id, []).append(
                    (allocation.start, allocation.end, allocation.allocation_percentage)
                )

    def capacity_limit(self, window_percentage: float) -> float:
        if self.allow_overtime:
            return window_percentage + self.max_overtime_percentage
        return window_percentage

    def earliest_feasible_start(self, resource: Resource, bookings: List[Booking],
                                earliest: float, duration: float, percentage: float) -> Optional[float]:
        """Earliest start >= `earliest` at which the resource can take the task, or None"""
        windows = resource.windows(self.horizon_hours)
        candidates = {earliest}
        candidates.update(e for _, e, _ in bookings if e > earliest)
        candidates.update(w.start for w in windows if w.start > earliest)

        for start in sorted(candidates):
            end = start + duration
            window = next(
                (w for w in windows if w.start <= start + EPSILON and end <= w.end + EPSILON), None
            )
            if window is None:
                continue
            if peak_load(bookings, start, end) + percentage <= self.capacity_limit(window.percentage) + EPSILON:
                return start
        return None

    def schedule(self, genes: Sequence[Gene], plan_id: str = "plan") -> SchedulingPlan:
        """
        Time-resolve one candidate plan

        Args:
            genes: One gene per task (resource, preferred start, percentage)
            plan_id: Identifier of the produced plan

        Returns:
            SchedulingPlan with CPM timings; tasks that cannot be placed are
            listed in unscheduled_task_ids together with all their successors
        """
        gene_map = {gene.task_id: gene for gene in genes}
        bookings = {rid: list(items) for rid, items in self.committed.items()}
        starts, finishes = {}, {}
        unscheduled = []

        for tid in self.order:
            task = self.task_map[tid]
            gene = gene_map.get(tid)
            resource = self.resource_map.get(gene.resource_id) if gene else None
            if resource is None or any(
                p in self.task_map and p not in starts for p in task.predecessor_ids
            ):
                unscheduled.append(tid)
                continue

            earliest = max(0.0, gene.start)
            for dep in task.dependencies:
                if dep.predecessor_id in starts:
                    earliest = max(earliest, dependency_bound(task, dep, starts, finishes))

            resource_bookings = bookings.setdefault(resource.id, [])
            start = self.earliest_feasible_start(
                resource, resource_bookings, earliest, task.duration_hours, gene.allocation_percentage
            )
            if start is None:
                logger.debug("Task %s does not fit on resource %s", tid, resource.id)
                unscheduled.append(tid)
                continue

            starts[tid] = start
            finishes[tid] = start + task.duration_hours
            resource_bookings.append((start, finishes[tid], gene.allocation_percentage))

        timings = backward_pass(self.order, self.task_map, starts, finishes)
        return self._build_plan(plan_id, gene_map, timings, unscheduled)

    def _build_plan(self, plan_id: str, gene_map: Dict[str, Gene],
                    timings: Dict[str, TaskTiming], unscheduled: List[str]) -> SchedulingPlan:
        schedules, allocations = [], []
        total_cost = 0.0

        for tid in self.order:
            if tid not in timings:
                continue
            task, gene, timing = self.task_map[tid], gene_map[tid], timings[tid]
            resource = self.resource_map[gene.resource_id]
            cost = task.duration_hours * resource.hourly_rate * gene.allocation_percentage / 100.0
            total_cost += cost
            slack = timing.slack
            schedules.append(TaskSchedule(
                task_id=tid,
                task_name=task.name,
                start=timing.earliest_start,
                end=timing.earliest_finish,
                slack=slack,
                is_critical=slack == 0.0,
                resource_id=resource.id,
                allocation_percentage=gene.allocation_percentage,
                estimated_cost=cost,
                complexity=task.complexity,
                risk_level=risk_level(task_risk(task, slack)),
                predecessors=[p for p in task.predecessor_ids if p in self.task_map],
                successors=list(self.successors[tid])
            ))
            allocations.append(Allocation(
                resource_id=resource.id,
                task_id=tid,
                start=timing.earliest_start,
                end=timing.earliest_finish,
                allocation_percentage=gene.allocation_percentage,
                estimated_cost=cost,
                project_id=task.project_id
            ))

        # Ordered by finish so the last critical task closes the project
        critical = sorted(
            (s for s in schedules if s.is_critical),
            key=lambda s: (s.end, s.start, self.order.index(s.task_id))
        )
        total_duration = max((s.end for s in schedules), default=0.0)

        return SchedulingPlan(
            plan_id=plan_id,
            tasks=schedules,
            critical_path=[s.task_id for s in critical],
            total_duration_hours=total_duration,
            total_cost=total_cost,
            allocations=allocations,
            unscheduled_task_ids=list(unscheduled),
            resource_utilization=self.resource_utilization(allocations, total_duration)
        )

    def resource_utilization(self, allocations: Sequence[Allocation],
                             span_hours: float) -> List[ResourceUtilization]:
        """Allocated, available, idle and overtime hours per resource over [0, span_hours]"""
        per_resource: Dict[str, List[Booking]] = {}
        for allocation in allocations:
            per_resource.setdefault(allocation.resource_id, []).append(
                (allocation.start, allocation.end, allocation.allocation_percentage)
            )

        utilization = []
        for resource in self.resource_map.values():
            items = per_resource.get(resource.id, [])
            available = 0.0
            for window in resource.windows(self.horizon_hours):
                overlap = min(window.end, span_hours) - window.start
                if overlap > 0:
                    available += overlap * window.percentage / 100.0
            allocated = sum((e - s) * pct / 100.0 for s, e, pct in items)
            overtime = sum(
                (seg_end - seg_start) * (load - 100.0) / 100.0
                for seg_start, seg_end, load in load_segments(items) if load > 100.0
            )
            utilization.append(ResourceUtilization(
                resource_id=resource.id,
                resource_name=resource.name,
                resource_type=resource.resource_type,
                allocated_hours=allocated,
                available_hours=available,
                idle_hours=max(0.0, available - allocated),
                overtime_hours=overtime
            ))
        return utilization
