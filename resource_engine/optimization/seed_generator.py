"""
Initial population construction for the genetic optimizer
"""
from typing import List, Dict, Sequence, Tuple
import logging

import numpy as np

from resource_engine.models.data_models import Task, Resource
from resource_engine.optimization.genome import Gene, Genome, GenomeRepairer

logger = logging.getLogger(__name__)


class PopulationSeeder:
    """Build heuristic and random genomes to start the search from"""

    def __init__(self, tasks: Sequence[Task], eligibility: Dict[str, List[Resource]],
                 repairer: GenomeRepairer, rng: np.random.Generator):
        """
        Initialize seeder

        Args:
            tasks: Tasks in scope, in genome order
            eligibility: Eligible resources per task id
            repairer: Repairer used to make heuristic genomes capacity-aware
            rng: Seeded random generator shared with the optimizer
        """
        self.tasks = list(tasks)
        self.eligibility = eligibility
        self.repairer = repairer
        self.rng = rng

    def _genome(self, choose) -> Genome:
        return tuple(
            Gene(task.id, choose(task).id, 0.0, task.allocation_percentage)
            for task in self.tasks
        )

    def first_fit_genome(self) -> Genome:
        """Naive baseline: first eligible resource in pool order, everything as early as possible"""
        return self._genome(lambda task: self.eligibility[task.id][0])

    def cheapest_genome(self) -> Genome:
        """Cheapest capable resource for every task"""
        return self.repairer.repair(self._genome(
            lambda task: min(self.eligibility[task.id], key=lambda r: (r.hourly_rate, r.id))
        ))

    def best_quality_genome(self) -> Genome:
        """Best skill match for every task, cheaper resource on equal match"""
        return self.repairer.repair(self._genome(
            lambda task: min(
                self.eligibility[task.id],
                key=lambda r: (-task.skill_match_score(r), r.hourly_rate, r.id)
            )
        ))

    def balanced_genome(self, weights: Tuple[float, float, float]) -> Genome:
        """Weighted trade-off of cost and skill match per task"""
        cost_weight, _, quality_weight = weights

        def choose(task: Task) -> Resource:
            candidates = self.eligibility[task.id]
            rates = [r.hourly_rate for r in candidates]
            low, high = min(rates), max(rates)
            best_match = max(task.skill_match_score(r) for r in candidates) or 1.0

            def score(resource: Resource) -> float:
                cost_score = 1.0 if high == low else 1.0 - (resource.hourly_rate - low) / (high - low)
                quality_score = task.skill_match_score(resource) / best_match
                return cost_weight * cost_score + quality_weight * quality_score

            return max(candidates, key=score)

        return self.repairer.repair(self._genome(choose))

    def random_genome(self) -> Genome:
        """Random eligible resource per task, with occasional delayed preferred starts"""
        genes = []
        for task in self.tasks:
            candidates = self.eligibility[task.id]
            resource = candidates[int(self.rng.integers(len(candidates)))]
            start = 0.0
            if self.rng.random() < 0.3:
                start = round(float(self.rng.uniform(0.0, task.duration_hours)), 2)
            genes.append(Gene(task.id, resource.id, start, task.allocation_percentage))
        return self.repairer.repair(genes)

    def initial_population(self, size: int, weights: Tuple[float, float, float]) -> List[Genome]:
        """Heuristic seeds first, then random genomes until the population is full"""
        seeds = [
            self.repairer.repair(self.first_fit_genome()),
            self.cheapest_genome(),
            self.best_quality_genome(),
            self.balanced_genome(weights),
        ]
        population = seeds[:size]
        while len(population) < size:
            population.append(self.random_genome())
        logger.debug("Seeded population of %d genomes (%d heuristic)", len(population), min(len(seeds), size))
        return population
