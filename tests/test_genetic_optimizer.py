"""
Tests for genome handling, fitness scoring and the genetic search loop.
"""
import numpy as np
import pytest

from resource_engine.exceptions import MalformedGenomeError
from resource_engine.models.data_models import (
    CrossoverMethod, GeneticAlgorithmConfig, OptimizationConstraints, OptimizationObjective,
    ResourceType, SelectionMethod
)
from resource_engine.optimization.fitness import (
    SCARCITY_PENALTY, VIOLATION_PENALTY, ConstraintSignals, FitnessEvaluator
)
from resource_engine.optimization.genetic_optimizer import GeneticOptimizer
from resource_engine.optimization.genome import (
    Gene, GenomeRepairer, build_eligibility, genome_id, validate_genome
)
from resource_engine.optimization.seed_generator import PopulationSeeder
from resource_engine.scheduling.critical_path import CriticalPathScheduler


def build_search(snapshot, request, seed=11, timeout_seconds=None):
    tasks, resources = snapshot.tasks, snapshot.resources
    horizon_hours = request.horizon.length_hours
    eligibility = build_eligibility(tasks, resources, request.constraints)
    scheduler = CriticalPathScheduler(tasks, resources, horizon_hours)
    repairer = GenomeRepairer(tasks, scheduler.order, eligibility, horizon_hours)
    rng = np.random.default_rng(seed)
    seeder = PopulationSeeder(tasks, eligibility, repairer, rng)
    evaluator = FitnessEvaluator(tasks, resources, eligibility, scheduler, request)
    optimizer = GeneticOptimizer(
        tasks, eligibility, evaluator, repairer, request.ga_config, rng, horizon_hours, timeout_seconds
    )
    return optimizer, seeder, evaluator, repairer


class TestGenome:

    def test_genome_id_is_stable(self):
        genes = (Gene("a", "r1", 0.0), Gene("b", "r2", 8.0))
        assert genome_id(genes) == genome_id(list(genes))
        assert genome_id(genes) != genome_id((Gene("a", "r2", 0.0), Gene("b", "r2", 8.0)))

    def test_exclusions_remove_eligibility(self, site_snapshot):
        constraints = OptimizationConstraints(excluded_resources=("backhoe",))
        eligibility = build_eligibility(site_snapshot.tasks, site_snapshot.resources, constraints)
        assert [r.id for r in eligibility["dig"]] == ["excavator"]
        assert [r.id for r in eligibility["forms"]] == ["carpenters", "general"]

    def test_validation_rejects_ineligible_resource(self, site_snapshot):
        eligibility = build_eligibility(site_snapshot.tasks, site_snapshot.resources, OptimizationConstraints())
        genes = [Gene(t.id, eligibility[t.id][0].id, 0.0) for t in site_snapshot.tasks]
        validate_genome(genes, site_snapshot.tasks, eligibility)

        genes[0] = Gene("dig", "carpenters", 0.0)
        with pytest.raises(MalformedGenomeError) as exc_info:
            validate_genome(genes, site_snapshot.tasks, eligibility)
        assert exc_info.value.task_id == "dig"

    def test_validation_rejects_missing_gene(self, site_snapshot):
        eligibility = build_eligibility(site_snapshot.tasks, site_snapshot.resources, OptimizationConstraints())
        genes = [Gene(t.id, eligibility[t.id][0].id, 0.0) for t in site_snapshot.tasks[:-1]]
        with pytest.raises(MalformedGenomeError):
            validate_genome(genes, site_snapshot.tasks, eligibility)

    def test_repair_reassigns_and_respects_dependencies(self, site_snapshot, make_request):
        _, _, _, repairer = build_search(site_snapshot, make_request())
        broken = [Gene("dig", "carpenters", 0.0), Gene("forms", "general", 0.0)]

        repaired = repairer.repair(broken)

        assert [g.task_id for g in repaired] == [t.id for t in site_snapshot.tasks]
        by_task = {g.task_id: g for g in repaired}
        assert by_task["dig"].resource_id == "backhoe"
        assert by_task["forms"].start == 24
        assert by_task["strip"].start >= by_task["pour"].start + 8 + 48


class TestSeeding:

    def test_cheapest_genome(self, site_snapshot, make_request):
        _, seeder, _, _ = build_search(site_snapshot, make_request())
        assignment = {g.task_id: g.resource_id for g in seeder.cheapest_genome()}
        assert assignment["dig"] == "backhoe"
        assert assignment["forms"] == "general"

    def test_first_fit_uses_pool_order(self, site_snapshot, make_request):
        _, seeder, _, _ = build_search(site_snapshot, make_request())
        assignment = {g.task_id: g.resource_id for g in seeder.first_fit_genome()}
        assert assignment == {"dig": "excavator", "forms": "carpenters", "rebar": "general",
                              "pour": "carpenters", "strip": "carpenters"}

    def test_population_size(self, site_snapshot, make_request):
        _, seeder, _, _ = build_search(site_snapshot, make_request())
        population = seeder.initial_population(9, (0.4, 0.4, 0.2))
        assert len(population) == 9
        assert all(len(genes) == len(site_snapshot.tasks) for genes in population)


class TestFitness:

    def test_fitness_is_normalised(self, site_snapshot, make_request):
        _, seeder, evaluator, _ = build_search(site_snapshot, make_request())
        for genes in seeder.initial_population(6, (1 / 3, 1 / 3, 1 / 3)):
            fitness, breakdown, plan = evaluator.evaluate(genes)
            assert 0.0 <= fitness <= 1.0
            assert breakdown.coverage == 1.0
            assert plan.is_complete

    def test_budget_violation_is_penalised(self, site_snapshot, make_request):
        _, seeder, relaxed, _ = build_search(site_snapshot, make_request())
        _, _, strict, _ = build_search(
            site_snapshot, make_request(constraints=OptimizationConstraints(budget_limit=100))
        )
        genes = seeder.cheapest_genome()
        relaxed_fitness, _, _ = relaxed.evaluate(genes)
        strict_fitness, breakdown, _ = strict.evaluate(genes)

        assert breakdown.violations == ["budget"]
        assert strict_fitness < relaxed_fitness

    def test_cost_objective_prefers_cheap_plan(self, site_snapshot, make_request):
        _, seeder, evaluator, _ = build_search(
            site_snapshot, make_request(objective=OptimizationObjective.MINIMIZE_COST)
        )
        _, cheap, _ = evaluator.evaluate(seeder.cheapest_genome())
        _, first_fit, _ = evaluator.evaluate(seeder.repairer.repair(seeder.first_fit_genome()))
        assert cheap.cost_score > first_fit.cost_score

    def test_malformed_genome_never_scored(self, site_snapshot, make_request):
        _, _, evaluator, _ = build_search(site_snapshot, make_request())
        with pytest.raises(MalformedGenomeError):
            evaluator.evaluate((Gene("dig", "backhoe", 0.0),))

    def test_reproduced_conflict_is_penalised(self, chain_snapshot, make_request):
        request = make_request()
        _, _, plain, _ = build_search(chain_snapshot, request)
        signalled = FitnessEvaluator(plain.tasks, chain_snapshot.resources, plain.eligibility,
                                     plain.scheduler, request,
                                     ConstraintSignals(conflict_windows={"r1": [(10, 20)]}))
        genes = (Gene("A", "r1", 0.0), Gene("B", "r1", 16.0), Gene("C", "r1", 40.0))

        plain_fitness, plain_breakdown, _ = plain.evaluate(genes)
        fitness, breakdown, plan = signalled.evaluate(genes)

        assert [(s.task_id, s.start, s.end) for s in plan.tasks] == [("A", 0, 16), ("B", 16, 40), ("C", 40, 48)]
        assert plain_breakdown.violations == []
        assert breakdown.violations == ["conflict:r1:A", "conflict:r1:B"]
        assert fitness == pytest.approx(plain_fitness * VIOLATION_PENALTY ** 2)

    def test_bottleneck_overlap_lowers_fitness(self, chain_snapshot, make_request):
        request = make_request()
        _, _, plain, _ = build_search(chain_snapshot, request)
        signalled = FitnessEvaluator(plain.tasks, chain_snapshot.resources, plain.eligibility,
                                     plain.scheduler, request,
                                     ConstraintSignals(bottleneck_windows={ResourceType.WORKER: [(0, 8)]}))
        genes = (Gene("A", "r1", 0.0), Gene("B", "r1", 16.0), Gene("C", "r1", 40.0))

        plain_fitness, plain_breakdown, _ = plain.evaluate(genes)
        fitness, breakdown, _ = signalled.evaluate(genes)

        assert plain_breakdown.scarcity_share == 0.0
        assert breakdown.scarcity_share == pytest.approx(1 / 3)
        assert breakdown.violations == []
        assert fitness == pytest.approx(plain_fitness * (1 - SCARCITY_PENALTY / 3))

    def test_bottleneck_of_other_type_ignored(self, chain_snapshot, make_request):
        request = make_request()
        _, _, plain, _ = build_search(chain_snapshot, request)
        signalled = FitnessEvaluator(plain.tasks, chain_snapshot.resources, plain.eligibility,
                                     plain.scheduler, request,
                                     ConstraintSignals(bottleneck_windows={ResourceType.EQUIPMENT: [(0, 48)]}))
        genes = (Gene("A", "r1", 0.0), Gene("B", "r1", 16.0), Gene("C", "r1", 40.0))

        fitness, breakdown, _ = signalled.evaluate(genes)
        assert breakdown.scarcity_share == 0.0
        assert fitness == pytest.approx(plain.evaluate(genes)[0])


class TestSearch:

    @pytest.mark.parametrize("selection", list(SelectionMethod))
    @pytest.mark.parametrize("crossover", list(CrossoverMethod))
    def test_best_fitness_never_decreases(self, site_snapshot, make_request, selection, crossover):
        config = GeneticAlgorithmConfig(
            population_size=10, max_generations=12, convergence_generations=50,
            selection_method=selection, crossover_method=crossover, max_workers=2
        )
        optimizer, seeder, _, _ = build_search(site_snapshot, make_request(ga_config=config))
        result = optimizer.run(seeder.initial_population(10, (1 / 3, 1 / 3, 1 / 3)))

        history = result.fitness_history
        assert len(history) == result.generations_run == 12
        assert all(later >= earlier for earlier, later in zip(history, history[1:]))
        assert result.best.fitness == history[-1]

    def test_same_seed_same_run(self, site_snapshot, make_request):
        runs = []
        for _ in range(2):
            optimizer, seeder, _, _ = build_search(site_snapshot, make_request(), seed=5)
            runs.append(optimizer.run(seeder.initial_population(12, (1 / 3, 1 / 3, 1 / 3))))

        first, second = runs
        assert first.best.genes == second.best.genes
        assert first.generations_run == second.generations_run
        assert first.fitness_history == second.fitness_history

    def test_convergence_stops_early(self, site_snapshot, make_request):
        config = GeneticAlgorithmConfig(population_size=8, max_generations=500, convergence_generations=3)
        optimizer, seeder, _, _ = build_search(site_snapshot, make_request(ga_config=config))
        result = optimizer.run(seeder.initial_population(8, (1 / 3, 1 / 3, 1 / 3)))

        assert result.converged
        assert result.generations_run == result.convergence_generation < 500
        assert not result.timed_out

    def test_timeout_returns_best_so_far(self, site_snapshot, make_request):
        optimizer, seeder, _, _ = build_search(site_snapshot, make_request(), timeout_seconds=1e-9)
        result = optimizer.run(seeder.initial_population(12, (1 / 3, 1 / 3, 1 / 3)))

        assert result.timed_out
        assert result.generations_run == 1
        assert result.best.plan is not None

    def test_generation_cap_override(self, site_snapshot, make_request):
        optimizer, seeder, _, _ = build_search(site_snapshot, make_request())
        result = optimizer.run([seeder.first_fit_genome()], max_generations=1)
        assert result.generations_run == 1
        assert len(result.population) == 1
