"""
Genome encoding for the genetic optimizer

A genome is an ordered tuple of genes, one per task in scope. Each gene is a
whole unit (task, resource, preferred start, allocation percentage) and is
never split when genomes are recombined.
"""
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Sequence, Tuple
import hashlib

from resource_engine.exceptions import MalformedGenomeError
from resource_engine.models.data_models import (
    Task, Resource, OptimizationConstraints, DependencyType
)


@dataclass(frozen=True)
class Gene:
    task_id: str
    resource_id: str
    start: float  # preferred start, in hours from horizon start
    allocation_percentage: float = 100.0


Genome = Tuple[Gene, ...]


def genome_id(genes: Sequence[Gene]) -> str:
    """Stable identifier of a genome, used for caching and deterministic tie-breaks"""
    digest = hashlib.sha1()
    for gene in genes:
        digest.update(
            f"{gene.task_id}|{gene.resource_id}|{gene.start:.4f}|{gene.allocation_percentage:.2f};".encode()
        )
    return digest.hexdigest()


@dataclass
class Individual:
    """One candidate solution in the search population"""
    genes: Genome
    fitness: float = 0.0
    generation: int = 0
    age: int = 0
    plan: Optional[object] = None  # SchedulingPlan, set after evaluation
    breakdown: Optional[object] = None  # FitnessBreakdown, set after evaluation
    _id: str = field(default="", repr=False)

    @property
    def genome_id(self) -> str:
        if not self._id:
            self._id = genome_id(self.genes)
        return self._id

    def sort_key(self) -> Tuple[float, str]:
        # Higher fitness first, lexicographically smaller genome id wins ties
        return (-self.fitness, self.genome_id)

    def assignment(self) -> Dict[str, str]:
        return {gene.task_id: gene.resource_id for gene in self.genes}


def build_eligibility(tasks: Sequence[Task], resources: Sequence[Resource],
                      constraints: OptimizationConstraints) -> Dict[str, List[Resource]]:
    """Map every task to the resources allowed to perform it, in pool order"""
    excluded = set(constraints.excluded_resources)
    eligibility = {}
    for task in tasks:
        eligibility[task.id] = [
            resource for resource in resources
            if resource.id not in excluded and task.can_be_done_by(resource)
        ]
    return eligibility


def validate_genome(genes: Sequence[Gene], tasks: Sequence[Task],
                    eligibility: Dict[str, List[Resource]]):
    """Reject genomes that do not give every task exactly one eligible resource"""
    if len(genes) != len(tasks):
        raise MalformedGenomeError(
            f"Genome has {len(genes)} genes for {len(tasks)} tasks"
        )
    for gene, task in zip(genes, tasks):
        if gene.task_id != task.id:
            raise MalformedGenomeError(
                f"Gene for task {gene.task_id} is out of order (expected {task.id})",
                task_id=task.id
            )
        if not any(r.id == gene.resource_id for r in eligibility.get(task.id, [])):
            raise MalformedGenomeError(
                f"Resource {gene.resource_id} is not eligible for task {task.id}",
                task_id=task.id
            )
        if gene.start < 0:
            raise MalformedGenomeError(f"Gene for task {task.id} starts before the horizon",
                                       task_id=task.id)


class GenomeRepairer:
    """
    Restores validity of a genome after recombination or mutation.

    Uncovered or ineligible genes are reassigned to the most available eligible
    resource, preferred starts are pushed past their dependency bounds and a
    gene whose preferred window would overload its resource is moved to a less
    loaded eligible resource when one exists.
    """

    def __init__(self, tasks: Sequence[Task], order: Sequence[str],
                 eligibility: Dict[str, List[Resource]], horizon_hours: float,
                 committed: Optional[Dict[str, List[Tuple[float, float, float]]]] = None):
        self.tasks = list(tasks)
        self.task_map = {t.id: t for t in self.tasks}
        self.order = list(order)
        self.eligibility = eligibility
        self.horizon_hours = horizon_hours
        self.committed = committed or {}

    def _load(self, bookings: List[Tuple[float, float, float]], start: float, end: float) -> float:
        return sum(pct for s, e, pct in bookings if s < end and start < e)

    def _most_available(self, task: Task, start: float, end: float,
                        booked: Dict[str, List[Tuple[float, float, float]]]) -> Resource:
        candidates = self.eligibility[task.id]
        return min(
            candidates,
            key=lambda r: (self._load(booked.get(r.id, []), start, end),
                           task.duration_hours * r.hourly_rate, r.id)
        )

    def repair(self, genes: Sequence[Gene]) -> Genome:
        by_task = {gene.task_id: gene for gene in genes}
        booked = {rid: list(items) for rid, items in self.committed.items()}
        starts, finishes = {}, {}
        repaired = {}

        for task_id in self.order:
            task = self.task_map[task_id]
            gene = by_task.get(task_id)
            duration = task.duration_hours

            # Dependency bound on the preferred start
            earliest = 0.0
            for dep in task.dependencies:
                if dep.predecessor_id not in starts:
                    continue
                p_start, p_finish = starts[dep.predecessor_id], finishes[dep.predecessor_id]
                if dep.dependency_type == DependencyType.FINISH_TO_START:
                    bound = p_finish + dep.lag_hours
                elif dep.dependency_type == DependencyType.START_TO_START:
                    bound = p_start + dep.lag_hours
                elif dep.dependency_type == DependencyType.FINISH_TO_FINISH:
                    bound = p_finish + dep.lag_hours - duration
                else:
                    bound = p_start + dep.lag_hours - duration
                earliest = max(earliest, bound)

            start = max(gene.start if gene else 0.0, earliest, 0.0)
            start = min(start, max(0.0, self.horizon_hours - duration))
            end = start + duration
            pct = gene.allocation_percentage if gene else task.allocation_percentage

            eligible_ids = {r.id for r in self.eligibility[task_id]}
            if gene is None or gene.resource_id not in eligible_ids:
                resource_id = self._most_available(task, start, end, booked).id
            else:
                resource_id = gene.resource_id
                if self._load(booked.get(resource_id, []), start, end) + pct > 100.0:
                    alternative = self._most_available(task, start, end, booked)
                    if self._load(booked.get(alternative.id, []), start, end) + pct <= 100.0:
                        resource_id = alternative.id

            booked.setdefault(resource_id, []).append((start, end, pct))
            starts[task_id], finishes[task_id] = start, end
            repaired[task_id] = Gene(task_id, resource_id, round(start, 2), pct)

        return tuple(repaired[task.id] for task in self.tasks)
