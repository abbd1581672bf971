"""
Packaging of the chosen plan, alternatives, metrics and warnings into a result
"""
from datetime import datetime
from typing import List, Dict, Optional, Sequence
import logging
import uuid

import numpy as np

from resource_engine.analysis.conflict_detector import ConflictReport
from resource_engine.models.data_models import Task, Resource, Severity, OptimizationRequest
from resource_engine.models.results import (
    AlternativeScenario, OptimizationMetrics, OptimizationResult, OptimizationWarning,
    ResourceDemandForecast, ResourceRecommendation, ResultStatus, SchedulingPlan, WarningCategory
)
from resource_engine.optimization.genetic_optimizer import EvolutionResult
from resource_engine.optimization.genome import Individual
from resource_engine.scheduling.critical_path import task_risk

logger = logging.getLogger(__name__)

ROBUSTNESS_BAND = 0.05
# Confidence factor when the generation cap is reached without convergence
UNCONVERGED_FACTOR = 0.9


class WarningLog:
    """Collects in-band warnings with sequential ids"""

    def __init__(self):
        self.warnings: List[OptimizationWarning] = []

    def add(self, severity: Severity, category: WarningCategory, message: str,
            task_ids: Sequence[str] = (), resource_ids: Sequence[str] = (),
            action: str = "", impact: Optional[Dict[str, float]] = None) -> OptimizationWarning:
        warning = OptimizationWarning(
            warning_id=f"warning_{len(self.warnings) + 1:03d}",
            severity=severity,
            category=category,
            message=message,
            affected_task_ids=list(task_ids),
            affected_resource_ids=list(resource_ids),
            recommended_action=action,
            estimated_impact=dict(impact or {})
        )
        self.warnings.append(warning)
        return warning

    def __len__(self) -> int:
        return len(self.warnings)


def _average_utilization(plan: SchedulingPlan) -> float:
    used = [u.utilization_percentage for u in plan.resource_utilization if u.allocated_hours > 0]
    return float(np.mean(used)) if used else 0.0


class ResultAssembler:
    """Builds the OptimizationResult handed back to the caller"""

    def __init__(self, request: OptimizationRequest, tasks: Sequence[Task],
                 resources: Sequence[Resource], eligibility: Dict[str, List[Resource]]):
        self.request = request
        self.tasks = list(tasks)
        self.task_map = {t.id: t for t in self.tasks}
        self.resource_map = {r.id: r for r in resources}
        self.eligibility = eligibility

    # ------------------------------------------------------------------
    # Metrics
    # ------------------------------------------------------------------

    def metrics(self, primary: Individual, baseline: Individual, population: Sequence[Individual],
                conflict_report: ConflictReport) -> OptimizationMetrics:
        plan, base = primary.plan, baseline.plan
        cost_savings = base.total_cost - plan.total_cost
        time_savings = base.total_duration_hours - plan.total_duration_hours
        utilization = _average_utilization(plan)

        in_scope = set(self.task_map)
        resolved = sum(
            1 for c in conflict_report.conflicts if all(tid in in_scope for tid in c.task_ids)
        )

        best = primary.fitness
        if best > 0:
            close = sum(1 for ind in population if ind.fitness >= best * (1.0 - ROBUSTNESS_BAND))
            robustness = close / len(population)
        else:
            robustness = 0.0

        return OptimizationMetrics(
            cost_savings=cost_savings,
            cost_savings_percentage=100.0 * cost_savings / base.total_cost if base.total_cost > 0 else 0.0,
            time_savings=time_savings,
            time_savings_percentage=(
                100.0 * time_savings / base.total_duration_hours if base.total_duration_hours > 0 else 0.0
            ),
            resource_utilization_avg=utilization,
            resource_utilization_improvement=utilization - _average_utilization(base),
            quality_score_avg=100.0 * primary.breakdown.quality_score,
            risk_score_avg=100.0 * primary.breakdown.risk_score,
            conflicts_resolved=resolved,
            conflicts_remaining=len(conflict_report.conflicts) - resolved,
            feasibility_score=self.feasibility(primary),
            robustness_score=robustness
        )

    @staticmethod
    def feasibility(individual: Individual) -> float:
        """Coverage of the plan, reduced by 10% per constraint violation"""
        breakdown = individual.breakdown
        return max(0.0, breakdown.coverage * (1.0 - 0.1 * len(breakdown.violations)))

    # ------------------------------------------------------------------
    # Status and confidence
    # ------------------------------------------------------------------

    def status_and_confidence(self, primary: Individual, evolution: EvolutionResult,
                              trivial: bool, max_generations: int):
        plan = primary.plan
        if not plan.tasks:
            return ResultStatus.FAILED, 0.0

        feasibility = self.feasibility(primary)
        if trivial or evolution.converged:
            progress = 1.0
        elif evolution.timed_out:
            progress = evolution.generations_run / max_generations
        else:
            progress = UNCONVERGED_FACTOR

        if plan.unscheduled_task_ids:
            status = ResultStatus.PARTIAL
        elif evolution.timed_out and primary.breakdown.violations:
            status = ResultStatus.PARTIAL
        else:
            status = ResultStatus.SUCCESS
        return status, max(0.0, min(1.0, progress * feasibility))

    # ------------------------------------------------------------------
    # Warnings
    # ------------------------------------------------------------------

    def conflict_warnings(self, log: WarningLog, conflict_report: ConflictReport):
        for conflict in conflict_report.conflicts:
            if conflict.can_reschedule:
                action = "Move the affected task into its available slack"
            else:
                action = "Reassign one of the allocations or add capacity"
            log.add(
                conflict.severity, WarningCategory.RESOURCE_CONFLICT,
                f"Resource {conflict.resource_id} has a {conflict.conflict_type.value} conflict "
                f"between {conflict.start:g}h and {conflict.end:g}h "
                f"(peak {conflict.peak_percentage:.0f}%)",
                task_ids=conflict.task_ids, resource_ids=[conflict.resource_id], action=action,
                impact={'excess_percentage': conflict.excess_percentage}
            )

    def forecast_warnings(self, log: WarningLog, forecasts: Sequence[ResourceDemandForecast]):
        for forecast in forecasts:
            for bottleneck in forecast.bottlenecks:
                log.add(
                    bottleneck.severity, WarningCategory.CAPACITY_SHORTAGE,
                    f"Forecast demand for {forecast.resource_type.value} resources "
                    f"({bottleneck.demand:.1f}) exceeds capacity ({bottleneck.capacity:.1f}) "
                    f"from {bottleneck.start.date()} to {bottleneck.end.date()}",
                    action="Secure additional capacity or move work out of this window",
                    impact={'shortfall': bottleneck.shortfall}
                )

    def plan_warnings(self, log: WarningLog, primary: Individual, evolution: EvolutionResult,
                      max_generations: int):
        plan, breakdown = primary.plan, primary.breakdown
        constraints = self.request.constraints

        if plan.unscheduled_task_ids:
            log.add(
                Severity.HIGH, WarningCategory.CAPACITY_SHORTAGE,
                f"{len(plan.unscheduled_task_ids)} task(s) could not be resourced within the horizon",
                task_ids=plan.unscheduled_task_ids,
                action="Extend the time horizon or add eligible resources"
            )
        for violation in breakdown.violations:
            if violation == "budget":
                overrun = plan.total_cost - constraints.budget_limit
                log.add(
                    Severity.HIGH, WarningCategory.BUDGET_OVERRUN,
                    f"Plan cost {plan.total_cost:,.2f} exceeds budget {constraints.budget_limit:,.2f}",
                    action="Relax the budget or favour cheaper resources",
                    impact={'cost': overrun}
                )
            elif violation == "deadline":
                delay = plan.total_duration_hours - constraints.deadline_hours
                log.add(
                    Severity.HIGH, WarningCategory.SCHEDULE_DELAY,
                    f"Plan finishes {delay:g}h after the deadline",
                    task_ids=plan.critical_path,
                    action="Shorten critical-path tasks or allow overtime",
                    impact={'hours': delay}
                )
            elif violation.startswith("mandatory:"):
                resource_id = violation.split(":", 1)[1]
                log.add(
                    Severity.MEDIUM, WarningCategory.UNSATISFIABLE_CONSTRAINT,
                    f"Mandatory resource {resource_id} is not used by the plan",
                    resource_ids=[resource_id],
                    action="Check that the resource is eligible for at least one task"
                )
            elif violation.startswith("conflict:"):
                _, resource_id, task_id = violation.split(":", 2)
                log.add(
                    Severity.MEDIUM, WarningCategory.RESOURCE_CONFLICT,
                    f"Task {task_id} is placed on {resource_id} inside a pre-existing conflict window",
                    task_ids=[task_id], resource_ids=[resource_id],
                    action="Resolve the existing conflict before committing this plan"
                )

        for schedule in plan.tasks:
            if schedule.is_critical and schedule.risk_level == Severity.CRITICAL:
                log.add(
                    Severity.MEDIUM, WarningCategory.QUALITY_RISK,
                    f"Critical-path task {schedule.task_id} is highly complex with no slack",
                    task_ids=[schedule.task_id], resource_ids=[schedule.resource_id],
                    action="Add review time or assign a more experienced resource"
                )

        if evolution.timed_out:
            log.add(
                Severity.MEDIUM, WarningCategory.SEARCH_INCOMPLETE,
                f"Optimization stopped after {evolution.generations_run} of {max_generations} "
                f"generations because the time budget ran out",
                action="Increase the timeout for a more thorough search"
            )

    # ------------------------------------------------------------------
    # Recommendations
    # ------------------------------------------------------------------

    def recommendations(self, plan: SchedulingPlan) -> List[ResourceRecommendation]:
        recommendations = []
        for schedule in plan.tasks:
            task = self.task_map[schedule.task_id]
            resource = self.resource_map[schedule.resource_id]
            candidates = self.eligibility[task.id]
            best = max(task.skill_match_score(r) for r in candidates)
            match = task.skill_match_score(resource) / best if best > 0 else 0.0
            others = sorted(
                (r for r in candidates if r.id != resource.id),
                key=lambda r: (-task.skill_match_score(r), r.hourly_rate, r.id)
            )
            reasoning = (
                f"{resource.name} covers the required skills at {match:.0%} of the best available "
                f"match for {schedule.estimated_cost:,.2f}"
            )
            if schedule.is_critical:
                reasoning += "; task is on the critical path"
            recommendations.append(ResourceRecommendation(
                task_id=task.id,
                task_name=task.name,
                resource_id=resource.id,
                resource_name=resource.name,
                resource_type=resource.resource_type,
                match_score=match,
                estimated_cost=schedule.estimated_cost,
                estimated_duration=schedule.duration,
                quality_score=100.0 * match,
                risk_score=100.0 * task_risk(task, schedule.slack),
                alternatives=[r.id for r in others[:3]],
                reasoning=reasoning
            ))
        return recommendations

    # ------------------------------------------------------------------
    # Assembly
    # ------------------------------------------------------------------

    def assemble(self, primary: Individual, alternatives: List[AlternativeScenario],
                 baseline: Individual, evolution: EvolutionResult, conflict_report: ConflictReport,
                 forecasts: List[ResourceDemandForecast], log: WarningLog, trivial: bool,
                 max_generations: int, started: float, now: float) -> OptimizationResult:
        """
        Build the final result

        Args:
            primary: Chosen individual
            alternatives: Ranked alternative scenarios
            baseline: Naive first-fit individual for savings figures
            evolution: Optimizer outcome
            conflict_report: Pre-optimization conflicts
            forecasts: Demand forecasts that could be computed
            log: Warnings gathered so far; plan warnings are appended
            trivial: Whether the search space had a single candidate
            max_generations: Planned generation cap
            started: Monotonic clock at request start
            now: Monotonic clock at assembly time
        """
        self.plan_warnings(log, primary, evolution, max_generations)
        status, confidence = self.status_and_confidence(primary, evolution, trivial, max_generations)
        logger.info(
            "Request %s finished with status %s (confidence %.2f)",
            self.request.request_id, status.value, confidence
        )
        return OptimizationResult(
            result_id=f"result_{uuid.uuid4().hex[:12]}",
            request_id=self.request.request_id,
            status=status,
            confidence_score=confidence,
            scheduling_plan=primary.plan,
            alternatives=alternatives,
            metrics=self.metrics(primary, baseline, evolution.population, conflict_report),
            warnings=log.warnings,
            recommendations=self.recommendations(primary.plan),
            conflicts=conflict_report.conflicts,
            forecasts=forecasts,
            generations_run=evolution.generations_run,
            convergence_generation=evolution.convergence_generation,
            fitness_history=evolution.fitness_history,
            computed_at=datetime.now(),
            computation_time_ms=(now - started) * 1000.0
        )

    def failed(self, log: WarningLog, conflict_report: ConflictReport,
               forecasts: List[ResourceDemandForecast], started: float, now: float) -> OptimizationResult:
        """Result for a request whose hard constraints cannot be met by any plan"""
        logger.warning("Request %s failed: %d blocking warning(s)", self.request.request_id, len(log))
        return OptimizationResult(
            result_id=f"result_{uuid.uuid4().hex[:12]}",
            request_id=self.request.request_id,
            status=ResultStatus.FAILED,
            confidence_score=0.0,
            scheduling_plan=None,
            alternatives=[],
            metrics=OptimizationMetrics(conflicts_remaining=len(conflict_report.conflicts)),
            warnings=log.warnings,
            conflicts=conflict_report.conflicts,
            forecasts=forecasts,
            computed_at=datetime.now(),
            computation_time_ms=(now - started) * 1000.0
        )
