"""
Ranking of the final population into a primary plan and alternative scenarios
"""
from typing import List, Sequence, Tuple
import logging

from resource_engine.models.data_models import Task, Resource
from resource_engine.models.results import AlternativeScenario, ResourceChange, SchedulingPlan
from resource_engine.optimization.genome import Individual

logger = logging.getLogger(__name__)

# Differences smaller than this (in percent) are not reported as trade-offs
NOTICEABLE_PERCENT = 0.5
SCORE_TOLERANCE = 1e-9


def warning_count(individual: Individual) -> int:
    """Constraint-violation warnings a plan would raise"""
    violations = len(individual.breakdown.violations) if individual.breakdown else 0
    unscheduled = len(individual.plan.unscheduled_task_ids) if individual.plan else 0
    return violations + unscheduled


def _percent_change(value: float, reference: float) -> float:
    if abs(reference) < 1e-9:
        return 0.0
    return 100.0 * (value - reference) / reference


def pareto_frontier(points: Sequence[Tuple[float, float, float]]) -> List[bool]:
    """
    Flag non-dominated points

    Args:
        points: (cost, duration, quality) per candidate; cost and duration are
            minimised, quality maximised

    Returns:
        One flag per point, True when no other point dominates it
    """
    flags = []
    for i, (cost_i, duration_i, quality_i) in enumerate(points):
        dominated = False
        for j, (cost_j, duration_j, quality_j) in enumerate(points):
            if i == j:
                continue
            no_worse = cost_j <= cost_i and duration_j <= duration_i and quality_j >= quality_i
            better = cost_j < cost_i or duration_j < duration_i or quality_j > quality_i
            if no_worse and better:
                dominated = True
                break
        flags.append(not dominated)
    return flags


class ScenarioRanker:
    """Turns the optimizer's top individuals into a primary plan and trade-off alternatives"""

    def __init__(self, tasks: Sequence[Task], resources: Sequence[Resource], alternatives_count: int):
        self.task_map = {t.id: t for t in tasks}
        self.resource_map = {r.id: r for r in resources}
        self.alternatives_count = alternatives_count

    @staticmethod
    def _plan_signature(plan: SchedulingPlan) -> Tuple:
        return tuple((s.task_id, s.resource_id, round(s.start, 4)) for s in plan.tasks)

    def top_distinct(self, population: Sequence[Individual], k: int) -> List[Individual]:
        """Best `k` individuals whose resolved plans differ"""
        ranked = sorted(
            population,
            key=lambda ind: (-round(ind.fitness / SCORE_TOLERANCE) * SCORE_TOLERANCE,
                             warning_count(ind), ind.genome_id)
        )
        seen, distinct = set(), []
        for individual in ranked:
            signature = self._plan_signature(individual.plan)
            if signature in seen:
                continue
            seen.add(signature)
            distinct.append(individual)
            if len(distinct) == k:
                break
        return distinct

    def rank(self, population: Sequence[Individual]) -> Tuple[Individual, List[AlternativeScenario]]:
        """
        Pick the primary plan and build alternative scenarios

        Ties on score go to the individual with fewer constraint-violation warnings.
        """
        top = self.top_distinct(population, self.alternatives_count + 1)
        primary, runners_up = top[0], top[1:]

        points = [
            (ind.plan.total_cost, ind.plan.total_duration_hours, ind.breakdown.quality_score)
            for ind in top
        ]
        frontier = pareto_frontier(points)

        alternatives = []
        for index, individual in enumerate(runners_up, start=1):
            alternatives.append(self._build_alternative(index, primary, individual, frontier[index]))
        logger.debug("Ranked %d alternatives behind plan %s", len(alternatives), primary.plan.plan_id)
        return primary, alternatives

    def _trade_offs(self, primary: Individual, other: Individual) -> Tuple[List[str], List[str]]:
        pros, cons = [], []
        cost_change = _percent_change(other.plan.total_cost, primary.plan.total_cost)
        if cost_change <= -NOTICEABLE_PERCENT:
            pros.append(f"{abs(cost_change):.0f}% cheaper")
        elif cost_change >= NOTICEABLE_PERCENT:
            cons.append(f"{cost_change:.0f}% more expensive")

        duration_change = _percent_change(other.plan.total_duration_hours, primary.plan.total_duration_hours)
        if duration_change <= -NOTICEABLE_PERCENT:
            pros.append(f"{abs(duration_change):.0f}% shorter")
        elif duration_change >= NOTICEABLE_PERCENT:
            cons.append(f"{duration_change:.0f}% longer")

        quality_delta = 100.0 * (other.breakdown.quality_score - primary.breakdown.quality_score)
        if quality_delta >= NOTICEABLE_PERCENT:
            pros.append(f"{quality_delta:.0f} points better skill match")
        elif quality_delta <= -NOTICEABLE_PERCENT:
            cons.append(f"{abs(quality_delta):.0f} points weaker skill match")

        risk_delta = 100.0 * (other.breakdown.risk_score - primary.breakdown.risk_score)
        if risk_delta <= -NOTICEABLE_PERCENT:
            pros.append(f"{abs(risk_delta):.0f} points lower schedule risk")
        elif risk_delta >= NOTICEABLE_PERCENT:
            cons.append(f"{risk_delta:.0f} points higher schedule risk")

        extra_warnings = warning_count(other) - warning_count(primary)
        if extra_warnings > 0:
            cons.append(f"{extra_warnings} more constraint warning(s)")
        elif extra_warnings < 0:
            pros.append(f"{abs(extra_warnings)} fewer constraint warning(s)")

        if not pros and not cons:
            pros.append("Same cost and duration with a different resource mix")
        return pros, cons

    def _resource_changes(self, primary: SchedulingPlan, other: SchedulingPlan) -> List[ResourceChange]:
        primary_map = primary.schedule_map
        changes = []
        for schedule in other.tasks:
            original = primary_map.get(schedule.task_id)
            if original is None or original.resource_id == schedule.resource_id:
                continue
            task = self.task_map[schedule.task_id]
            quality_impact = (
                task.skill_match_score(self.resource_map[schedule.resource_id])
                - task.skill_match_score(self.resource_map[original.resource_id])
            )
            changes.append(ResourceChange(
                task_id=schedule.task_id,
                original_resource_id=original.resource_id,
                alternative_resource_id=schedule.resource_id,
                cost_difference=schedule.estimated_cost - original.estimated_cost,
                time_difference=schedule.end - original.end,
                quality_impact=quality_impact
            ))
        return changes

    @staticmethod
    def _scenario_name(index: int, pros: List[str]) -> str:
        if any("cheaper" in p for p in pros):
            focus = "Lower Cost"
        elif any("shorter" in p for p in pros):
            focus = "Faster Delivery"
        elif any("skill match" in p for p in pros):
            focus = "Higher Quality"
        elif any("risk" in p for p in pros):
            focus = "Lower Risk"
        else:
            focus = "Resource Mix"
        return f"Alternative {index}: {focus}"

    def _build_alternative(self, index: int, primary: Individual, other: Individual,
                           pareto_optimal: bool) -> AlternativeScenario:
        pros, cons = self._trade_offs(primary, other)
        recommendation = other.fitness / primary.fitness if primary.fitness > 0 else 0.0
        return AlternativeScenario(
            scenario_id=f"alternative_{index}",
            scenario_name=self._scenario_name(index, pros),
            description=", ".join(pros + cons) + " compared with the recommended plan",
            plan=other.plan,
            total_cost=other.plan.total_cost,
            total_duration_hours=other.plan.total_duration_hours,
            quality_score=100.0 * other.breakdown.quality_score,
            risk_score=100.0 * other.breakdown.risk_score,
            score=other.fitness,
            recommendation_score=min(1.0, max(0.0, recommendation)),
            warning_count=warning_count(other),
            pareto_optimal=pareto_optimal,
            resource_changes=self._resource_changes(primary.plan, other.plan),
            pros=pros,
            cons=cons
        )
