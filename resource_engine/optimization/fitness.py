"""
Composite fitness of candidate allocation plans

Fitness is never computed from a genome alone: every genome is first
time-resolved by the critical-path scheduler and the resulting plan is scored.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Sequence, Tuple
import logging

from resource_engine.models.data_models import (
    Task, Resource, ResourceType, OptimizationObjective, OptimizationRequest
)
from resource_engine.models.results import SchedulingPlan
from resource_engine.optimization.genome import Genome, genome_id, validate_genome
from resource_engine.scheduling.critical_path import (
    CriticalPathScheduler, dependency_timings, task_risk
)

logger = logging.getLogger(__name__)

# Share of the final score driven by the request objective; the rest is the weighted blend
OBJECTIVE_SHARE = 0.3
VIOLATION_PENALTY = 0.8
SCARCITY_PENALTY = 0.1

Window = Tuple[float, float]


@dataclass
class ConstraintSignals:
    """Pre-optimization findings that tighten the search"""
    conflict_windows: Dict[str, List[Window]] = field(default_factory=dict)
    bottleneck_windows: Dict[ResourceType, List[Window]] = field(default_factory=dict)


@dataclass
class FitnessBreakdown:
    cost_score: float
    duration_score: float
    quality_score: float
    risk_score: float
    utilization: float
    coverage: float
    objective_score: float
    composite: float
    fitness: float
    scarcity_share: float = 0.0
    violations: List[str] = field(default_factory=list)

    @property
    def warning_count(self) -> int:
        return len(self.violations)


class FitnessEvaluator:
    """Scores genomes for one request; safe to share between worker threads"""

    def __init__(self, tasks: Sequence[Task], resources: Sequence[Resource],
                 eligibility: Dict[str, List[Resource]], scheduler: CriticalPathScheduler,
                 request: OptimizationRequest, signals: ConstraintSignals = None):
        self.tasks = list(tasks)
        self.task_map = {t.id: t for t in self.tasks}
        self.resource_map = {r.id: r for r in resources}
        self.eligibility = eligibility
        self.scheduler = scheduler
        self.request = request
        self.signals = signals or ConstraintSignals()
        self.weights = request.preferences.normalized_weights()

        # Normalisation bounds, fixed for the whole run
        self.min_cost = 0.0
        self.max_cost = 0.0
        self.best_match = {}
        for task in self.tasks:
            costs = [
                task.duration_hours * r.hourly_rate * task.allocation_percentage / 100.0
                for r in eligibility[task.id]
            ]
            self.min_cost += min(costs, default=0.0)
            self.max_cost += max(costs, default=0.0)
            self.best_match[task.id] = max(
                (task.skill_match_score(r) for r in eligibility[task.id]), default=0.0
            )

        timings = dependency_timings(self.tasks)
        self.duration_lower_bound = max((t.earliest_finish for t in timings.values()), default=0.0)

    def evaluate(self, genes: Genome) -> Tuple[float, FitnessBreakdown, SchedulingPlan]:
        """
        Schedule and score one genome

        Raises:
            MalformedGenomeError: if the genome does not cover every task with an eligible resource
        """
        validate_genome(genes, self.tasks, self.eligibility)
        plan = self.scheduler.schedule(genes, plan_id=f"plan_{genome_id(genes)[:12]}")
        breakdown = self.score_plan(plan)
        return breakdown.fitness, breakdown, plan

    def _cost_score(self, plan: SchedulingPlan) -> float:
        if self.max_cost - self.min_cost < 1e-9:
            return 1.0
        score = 1.0 - (plan.total_cost - self.min_cost) / (self.max_cost - self.min_cost)
        return min(1.0, max(0.0, score))

    def _duration_score(self, plan: SchedulingPlan) -> float:
        if plan.total_duration_hours <= 0:
            return 0.0
        return min(1.0, self.duration_lower_bound / plan.total_duration_hours)

    def _quality_score(self, plan: SchedulingPlan) -> float:
        if not self.tasks:
            return 0.0
        total = 0.0
        for schedule in plan.tasks:
            task = self.task_map[schedule.task_id]
            best = self.best_match[task.id]
            if best > 0:
                total += task.skill_match_score(self.resource_map[schedule.resource_id]) / best
        return total / len(self.tasks)

    def _risk_score(self, plan: SchedulingPlan) -> float:
        if not self.tasks:
            return 0.0
        total = sum(
            task_risk(self.task_map[s.task_id], s.slack) for s in plan.tasks
        )
        # Tasks left unscheduled carry full risk
        total += len(plan.unscheduled_task_ids)
        return total / len(self.tasks)

    def _utilization(self, plan: SchedulingPlan) -> float:
        used = [u for u in plan.resource_utilization if u.allocated_hours > 0]
        available = sum(u.available_hours for u in used)
        if available <= 0:
            return 0.0
        return min(1.0, sum(u.allocated_hours for u in used) / available)

    def _idle_score(self, plan: SchedulingPlan) -> float:
        """1 minus the share of gaps between the first and last booking of each used resource"""
        per_resource: Dict[str, List[Window]] = {}
        for allocation in plan.allocations:
            per_resource.setdefault(allocation.resource_id, []).append((allocation.start, allocation.end))
        total_span, total_idle = 0.0, 0.0
        for intervals in per_resource.values():
            intervals.sort()
            span = intervals[-1][1] - intervals[0][0]
            busy, cursor = 0.0, intervals[0][0]
            for start, end in intervals:
                if end > cursor:
                    busy += end - max(start, cursor)
                    cursor = end
            total_span += span
            total_idle += max(0.0, span - busy)
        if total_span <= 0:
            return 0.0
        return 1.0 - total_idle / total_span

    def _violations(self, plan: SchedulingPlan) -> List[str]:
        constraints = self.request.constraints
        violations = []
        if constraints.budget_limit is not None and plan.total_cost > constraints.budget_limit:
            violations.append("budget")
        if constraints.deadline_hours is not None and plan.total_duration_hours > constraints.deadline_hours:
            violations.append("deadline")
        used = {s.resource_id for s in plan.tasks}
        for resource_id in constraints.mandatory_resources:
            if resource_id not in used:
                violations.append(f"mandatory:{resource_id}")
        # Reproducing a pre-existing conflict on the same resource and window
        for schedule in plan.tasks:
            for start, end in self.signals.conflict_windows.get(schedule.resource_id, []):
                if schedule.start < end and start < schedule.end:
                    violations.append(f"conflict:{schedule.resource_id}:{schedule.task_id}")
                    break
        return violations

    def _scarcity_share(self, plan: SchedulingPlan) -> float:
        if not plan.tasks or not self.signals.bottleneck_windows:
            return 0.0
        hits = 0
        for schedule in plan.tasks:
            resource_type = self.resource_map[schedule.resource_id].resource_type
            windows = self.signals.bottleneck_windows.get(resource_type, [])
            if any(schedule.start < end and start < schedule.end for start, end in windows):
                hits += 1
        return hits / len(plan.tasks)

    def _objective_score(self, blend: float, cost: float, duration: float,
                         quality: float, utilization: float, idle: float) -> float:
        objective = self.request.objective
        if objective == OptimizationObjective.MINIMIZE_COST:
            return cost
        if objective == OptimizationObjective.MINIMIZE_DURATION:
            return duration
        if objective == OptimizationObjective.MAXIMIZE_QUALITY:
            return quality
        if objective == OptimizationObjective.MAXIMIZE_UTILIZATION:
            return utilization
        if objective == OptimizationObjective.MINIMIZE_IDLE_TIME:
            return idle
        return blend

    def score_plan(self, plan: SchedulingPlan) -> FitnessBreakdown:
        """Weighted composite of normalised cost, duration, quality and risk"""
        cost_weight, time_weight, quality_weight = self.weights
        cost = self._cost_score(plan)
        duration = self._duration_score(plan)
        quality = self._quality_score(plan)
        risk = self._risk_score(plan)
        utilization = self._utilization(plan)
        coverage = len(plan.tasks) / len(self.tasks) if self.tasks else 0.0

        blend = cost_weight * cost + time_weight * duration + quality_weight * quality
        objective_score = self._objective_score(
            blend, cost, duration, quality, utilization, self._idle_score(plan)
        )
        composite = (1.0 - OBJECTIVE_SHARE) * blend + OBJECTIVE_SHARE * objective_score

        risk_weight = min(1.0, max(0.0, self.request.preferences.risk_weight))
        violations = self._violations(plan)
        scarcity = self._scarcity_share(plan)

        fitness = composite * (1.0 - risk_weight * risk)
        fitness *= VIOLATION_PENALTY ** len(violations)
        fitness *= coverage
        fitness *= 1.0 - SCARCITY_PENALTY * scarcity

        return FitnessBreakdown(
            cost_score=cost,
            duration_score=duration,
            quality_score=quality,
            risk_score=risk,
            utilization=utilization,
            coverage=coverage,
            objective_score=objective_score,
            composite=composite,
            fitness=max(0.0, min(1.0, fitness)),
            scarcity_share=scarcity,
            violations=violations
        )
