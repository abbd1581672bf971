"""
Tests for ranking the final population into a plan and alternatives.
"""
from dataclasses import replace

import numpy as np
import pytest

from resource_engine.optimization.fitness import FitnessEvaluator
from resource_engine.optimization.genome import GenomeRepairer, Individual, build_eligibility
from resource_engine.optimization.scenario_ranker import ScenarioRanker, pareto_frontier, warning_count
from resource_engine.optimization.seed_generator import PopulationSeeder
from resource_engine.scheduling.critical_path import CriticalPathScheduler


@pytest.fixture
def population(site_snapshot, make_request):
    """Evaluated individuals for a seeded set of site genomes."""
    request = make_request()
    tasks, resources = site_snapshot.tasks, site_snapshot.resources
    horizon_hours = request.horizon.length_hours
    eligibility = build_eligibility(tasks, resources, request.constraints)
    scheduler = CriticalPathScheduler(tasks, resources, horizon_hours)
    repairer = GenomeRepairer(tasks, scheduler.order, eligibility, horizon_hours)
    seeder = PopulationSeeder(tasks, eligibility, repairer, np.random.default_rng(3))
    evaluator = FitnessEvaluator(tasks, resources, eligibility, scheduler, request)

    individuals = []
    for genes in seeder.initial_population(16, (1 / 3, 1 / 3, 1 / 3)):
        fitness, breakdown, plan = evaluator.evaluate(genes)
        individuals.append(Individual(genes=genes, fitness=fitness, plan=plan, breakdown=breakdown))
    return individuals


@pytest.fixture
def ranker(site_snapshot):
    return ScenarioRanker(site_snapshot.tasks, site_snapshot.resources, alternatives_count=3)


class TestParetoFrontier:

    def test_dominated_points_flagged(self):
        points = [(100, 10, 0.5), (90, 10, 0.5), (80, 20, 0.9)]
        assert pareto_frontier(points) == [False, True, True]

    def test_identical_points_are_both_optimal(self):
        assert pareto_frontier([(1, 1, 1), (1, 1, 1)]) == [True, True]


class TestRanking:

    def test_primary_has_best_score(self, ranker, population):
        primary, alternatives = ranker.rank(population)
        assert primary.fitness == max(ind.fitness for ind in population)
        assert all(alt.score <= primary.fitness for alt in alternatives)

    def test_alternatives_are_distinct_and_bounded(self, ranker, population):
        primary, alternatives = ranker.rank(population)
        assert len(alternatives) <= 3
        signatures = {ScenarioRanker._plan_signature(primary.plan)}
        for alternative in alternatives:
            signature = ScenarioRanker._plan_signature(alternative.plan)
            assert signature not in signatures
            signatures.add(signature)

    def test_alternatives_describe_trade_offs(self, ranker, population):
        _, alternatives = ranker.rank(population)
        assert alternatives
        for index, alternative in enumerate(alternatives, start=1):
            assert alternative.scenario_id == f"alternative_{index}"
            assert alternative.scenario_name.startswith(f"Alternative {index}: ")
            assert alternative.pros or alternative.cons
            assert 0.0 <= alternative.recommendation_score <= 1.0
            assert alternative.to_dict()["plan"]["plan_id"] == alternative.plan.plan_id

    def test_resource_changes_list_swaps(self, ranker, population):
        primary, alternatives = ranker.rank(population)
        primary_assignment = {s.task_id: s.resource_id for s in primary.plan.tasks}
        for alternative in alternatives:
            for change in alternative.resource_changes:
                assert change.original_resource_id == primary_assignment[change.task_id]
                assert change.alternative_resource_id != change.original_resource_id

    def test_ties_prefer_fewer_warnings(self, ranker, population):
        best = max(population, key=lambda ind: ind.fitness)
        twin = Individual(genes=best.genes, fitness=best.fitness, plan=best.plan,
                          breakdown=replace(best.breakdown, violations=["budget"]))
        ranked = ranker.top_distinct([twin, best], 1)
        assert ranked[0] is best
        assert warning_count(twin) == warning_count(best) + 1

    def test_no_alternatives_requested(self, site_snapshot, population):
        ranker = ScenarioRanker(site_snapshot.tasks, site_snapshot.resources, alternatives_count=0)
        primary, alternatives = ranker.rank(population)
        assert alternatives == []
        assert primary.plan is not None
