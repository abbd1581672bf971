"""
Genetic search over resource-to-task assignments

Synchronous generational model: every genome of a generation is scheduled and
scored (in parallel worker threads) before selection for the next generation
starts. All random draws happen in the calling thread from one injected
generator, so a fixed seed reproduces a run exactly.
"""
from concurrent.futures import ThreadPoolExecutor
from dataclasses import dataclass, field
from typing import List, Dict, Optional, Sequence, Tuple
import logging
import time

import numpy as np

from resource_engine.models.data_models import (
    Task, Resource, GeneticAlgorithmConfig, SelectionMethod, CrossoverMethod
)
from resource_engine.optimization.fitness import FitnessEvaluator
from resource_engine.optimization.genome import (
    Gene, Genome, GenomeRepairer, Individual, genome_id
)

logger = logging.getLogger(__name__)


@dataclass
class EvolutionResult:
    """Outcome of one optimizer run"""
    best: Individual
    population: List[Individual]
    generations_run: int
    convergence_generation: Optional[int] = None
    timed_out: bool = False
    fitness_history: List[float] = field(default_factory=list)
    execution_time_ms: float = 0.0

    @property
    def converged(self) -> bool:
        return self.convergence_generation is not None


class GeneticOptimizer:
    """Evolves a population of genomes toward higher composite fitness"""

    def __init__(self, tasks: Sequence[Task], eligibility: Dict[str, List[Resource]],
                 evaluator: FitnessEvaluator, repairer: GenomeRepairer,
                 config: GeneticAlgorithmConfig, rng: np.random.Generator,
                 horizon_hours: float, timeout_seconds: Optional[float] = None):
        """
        Initialize optimizer

        Args:
            tasks: Tasks in scope, in genome order
            eligibility: Eligible resources per task id
            evaluator: Schedules and scores genomes
            repairer: Restores genome validity after variation
            config: Search parameters
            rng: Seeded random generator; the only source of randomness
            horizon_hours: Length of the planning horizon
            timeout_seconds: Wall-clock budget for the whole run
        """
        self.tasks = list(tasks)
        self.eligibility = eligibility
        self.evaluator = evaluator
        self.repairer = repairer
        self.config = config
        self.rng = rng
        self.horizon_hours = horizon_hours
        self.timeout_seconds = timeout_seconds
        self._cache: Dict[str, Tuple[float, object, object]] = {}

    # ------------------------------------------------------------------
    # Evaluation
    # ------------------------------------------------------------------

    def _evaluate(self, genomes: Sequence[Genome], generation: int,
                  executor: ThreadPoolExecutor) -> List[Individual]:
        ids = [genome_id(genes) for genes in genomes]
        pending = {}
        for gid, genes in zip(ids, genomes):
            if gid not in self._cache and gid not in pending:
                pending[gid] = genes

        # Results are merged by genome id, so completion order never matters
        if pending:
            outcomes = executor.map(self.evaluator.evaluate, list(pending.values()))
            for gid, outcome in zip(list(pending.keys()), outcomes):
                self._cache[gid] = outcome

        individuals = []
        for gid, genes in zip(ids, genomes):
            fitness, breakdown, plan = self._cache[gid]
            individuals.append(Individual(
                genes=tuple(genes), fitness=fitness, generation=generation,
                plan=plan, breakdown=breakdown, _id=gid
            ))
        return individuals

    @staticmethod
    def _rank(population: List[Individual]) -> List[Individual]:
        return sorted(population, key=lambda ind: ind.sort_key())

    # ------------------------------------------------------------------
    # Selection
    # ------------------------------------------------------------------

    def _select(self, population: List[Individual]) -> Individual:
        method = self.config.selection_method
        if method == SelectionMethod.ROULETTE:
            return self._roulette_selection(population)
        if method == SelectionMethod.RANK:
            return self._rank_selection(population)
        return self._tournament_selection(population)

    def _tournament_selection(self, population: List[Individual]) -> Individual:
        size = min(self.config.tournament_size, len(population))
        contenders = self.rng.choice(len(population), size=size, replace=False)
        # Equal fitness: the lexicographically smaller genome id wins
        return min((population[int(i)] for i in contenders), key=lambda ind: ind.sort_key())

    def _roulette_selection(self, population: List[Individual]) -> Individual:
        fitness = np.array([ind.fitness for ind in population], dtype=float)
        weights = fitness - fitness.min() + 1e-6
        index = self.rng.choice(len(population), p=weights / weights.sum())
        return population[int(index)]

    def _rank_selection(self, population: List[Individual]) -> Individual:
        # Population is ranked best first
        weights = np.arange(len(population), 0, -1, dtype=float)
        index = self.rng.choice(len(population), p=weights / weights.sum())
        return population[int(index)]

    # ------------------------------------------------------------------
    # Variation
    # ------------------------------------------------------------------

    def _crossover(self, first: Genome, second: Genome) -> Tuple[Genome, Genome]:
        """Exchange whole-task genes between two parents"""
        n = len(first)
        if n < 2:
            return first, second
        if self.config.crossover_method == CrossoverMethod.UNIFORM:
            mask = self.rng.random(n) < 0.5
            child1 = tuple(b if m else a for a, b, m in zip(first, second, mask))
            child2 = tuple(a if m else b for a, b, m in zip(first, second, mask))
            return child1, child2
        point = int(self.rng.integers(1, n))
        return first[:point] + second[point:], second[:point] + first[point:]

    def _mutate(self, genes: Genome) -> Genome:
        """Reassign a task's resource or shift its preferred start"""
        mutated = list(genes)
        for i, gene in enumerate(mutated):
            if self.rng.random() >= self.config.mutation_rate:
                continue
            candidates = self.eligibility[gene.task_id]
            task = self.tasks[i]
            if len(candidates) > 1 and self.rng.random() < 0.5:
                resource = candidates[int(self.rng.integers(len(candidates)))]
                mutated[i] = Gene(gene.task_id, resource.id, gene.start, gene.allocation_percentage)
            else:
                shift = float(self.rng.uniform(-task.duration_hours, task.duration_hours))
                latest = max(0.0, self.horizon_hours - task.duration_hours)
                start = round(min(latest, max(0.0, gene.start + shift)), 2)
                mutated[i] = Gene(gene.task_id, gene.resource_id, start, gene.allocation_percentage)
        return tuple(mutated)

    def _next_generation(self, population: List[Individual]) -> List[Genome]:
        elite_count = min(self.config.elite_count, len(population))
        offspring = [ind.genes for ind in population[:elite_count]]
        while len(offspring) < self.config.population_size:
            first = self._select(population).genes
            second = self._select(population).genes
            if self.rng.random() < self.config.crossover_rate:
                first, second = self._crossover(first, second)
            for child in (first, second):
                if len(offspring) >= self.config.population_size:
                    break
                offspring.append(self.repairer.repair(self._mutate(child)))
        return offspring

    # ------------------------------------------------------------------
    # Main loop
    # ------------------------------------------------------------------

    def _has_converged(self, history: List[float]) -> bool:
        window = self.config.convergence_generations
        if len(history) <= window:
            return False
        return history[-1] - history[-1 - window] <= self.config.convergence_threshold

    def run(self, initial_population: Sequence[Genome],
            max_generations: Optional[int] = None) -> EvolutionResult:
        """
        Evolve the population

        Args:
            initial_population: Seed genomes; they form the first generation
            max_generations: Overrides the configured generation cap

        Returns:
            EvolutionResult with the best individual and the final ranked population
        """
        started = time.monotonic()
        deadline = started + self.timeout_seconds if self.timeout_seconds else None
        cap = max_generations or self.config.max_generations
        convergence_generation = None
        timed_out = False

        logger.info(
            "Starting genetic search: %d tasks, population %d, up to %d generations",
            len(self.tasks), len(initial_population), cap
        )

        with ThreadPoolExecutor(max_workers=self.config.max_workers) as executor:
            population = self._rank(self._evaluate(initial_population, 1, executor))
            history = [population[0].fitness]
            generations_run = 1

            while generations_run < cap:
                if deadline is not None and time.monotonic() >= deadline:
                    timed_out = True
                    logger.warning("Genetic search timed out after %d generations", generations_run)
                    break

                genomes = self._next_generation(population)
                generations_run += 1
                population = self._rank(self._evaluate(genomes, generations_run, executor))
                history.append(population[0].fitness)
                logger.debug("Generation %d: best fitness %.4f", generations_run, history[-1])

                if self._has_converged(history):
                    convergence_generation = generations_run
                    logger.info("Converged at generation %d", generations_run)
                    break

        elapsed_ms = (time.monotonic() - started) * 1000.0
        logger.info(
            "Genetic search finished: %d generations, best fitness %.4f (%.0f ms)",
            generations_run, population[0].fitness, elapsed_ms
        )
        return EvolutionResult(
            best=population[0],
            population=population,
            generations_run=generations_run,
            convergence_generation=convergence_generation,
            timed_out=timed_out,
            fitness_history=history,
            execution_time_ms=elapsed_ms
        )
