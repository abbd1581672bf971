"""
Resource optimization engine: one bounded batch computation per request
"""
from concurrent.futures import ThreadPoolExecutor
from typing import List, Dict, Optional, Sequence, Tuple
import logging
import time

import numpy as np

from resource_engine.analysis.conflict_detector import ConflictDetector, ConflictReport
from resource_engine.analysis.demand_forecaster import DemandForecaster, forecast_capacity
from resource_engine.analysis.model_registry import ModelRegistry
from resource_engine.config import EngineSettings
from resource_engine.exceptions import InsufficientDataError, InvalidRequestError
from resource_engine.models.data_models import (
    Task, Resource, ProjectSnapshot, OptimizationRequest, ResourceType, Severity
)
from resource_engine.models.results import (
    OptimizationResult, ResourceDemandForecast, WarningCategory
)
from resource_engine.optimization.fitness import ConstraintSignals, FitnessEvaluator
from resource_engine.optimization.genetic_optimizer import GeneticOptimizer
from resource_engine.optimization.genome import GenomeRepairer, Individual, build_eligibility
from resource_engine.optimization.result_assembler import ResultAssembler, WarningLog
from resource_engine.optimization.scenario_ranker import ScenarioRanker
from resource_engine.optimization.seed_generator import PopulationSeeder
from resource_engine.providers.snapshot_provider import SnapshotProvider
from resource_engine.scheduling.critical_path import CriticalPathScheduler, topological_order

logger = logging.getLogger(__name__)

# Smallest time budget handed to the optimizer once pre-processing has eaten into the timeout
MIN_SEARCH_SECONDS = 0.01


class OptimizationEngine:
    """Runs conflict detection, forecasting, genetic search, ranking and assembly for a request"""

    def __init__(self, provider: SnapshotProvider, settings: Optional[EngineSettings] = None,
                 registry: Optional[ModelRegistry] = None):
        """
        Initialize engine

        Args:
            provider: Source of task/resource snapshots
            settings: Defaults for search parameters and forecasting
            registry: Forecasting models available to requests
        """
        self.provider = provider
        self.settings = settings or EngineSettings()
        self.registry = registry if registry is not None else ModelRegistry.default()

    # ------------------------------------------------------------------
    # Pre-optimization analysis (runs in worker threads)
    # ------------------------------------------------------------------

    @staticmethod
    def _detect_conflicts(snapshot: ProjectSnapshot, horizon_hours: float) -> ConflictReport:
        # Every project is visible so other projects' allocations get their own slack
        detector = ConflictDetector(snapshot.resources, snapshot.tasks, horizon_hours)
        return detector.detect(snapshot.allocations)

    @staticmethod
    def _forecast(forecaster: Optional[DemandForecaster], snapshot: ProjectSnapshot,
                  request: OptimizationRequest) -> Tuple[List[ResourceDemandForecast], List[str]]:
        if forecaster is None:
            return [], []
        forecasts, skipped = [], []
        resource_types = sorted({r.resource_type for r in snapshot.resources}, key=lambda t: t.value)
        for resource_type in resource_types:
            try:
                forecasts.append(forecaster.forecast(
                    snapshot.utilization_history, resource_type, request.horizon,
                    forecast_capacity(snapshot.resources, resource_type)
                ))
            except InsufficientDataError as e:
                logger.warning("Demand forecast omitted for %s: %s", resource_type.value, e)
                skipped.append(str(e))
        return forecasts, skipped

    # ------------------------------------------------------------------
    # Hard-constraint pre-check
    # ------------------------------------------------------------------

    def _precheck(self, log: WarningLog, request: OptimizationRequest, tasks: Sequence[Task],
                  resources: Sequence[Resource], eligibility: Dict[str, List[Resource]]) -> bool:
        """Record every unsatisfiable hard constraint; True when the request can be optimized"""
        constraints = request.constraints
        excluded = set(constraints.excluded_resources)
        pool = [r for r in resources if r.id not in excluded]
        blocking = len(log)

        for task in tasks:
            if eligibility[task.id]:
                continue
            missing = [
                skill for skill in task.required_skills
                if not any(s.matches(skill) for r in pool for s in r.skills)
            ]
            if missing:
                for skill in missing:
                    log.add(
                        Severity.CRITICAL, WarningCategory.UNSATISFIABLE_CONSTRAINT,
                        f"No available resource holds required skill '{skill.name}' "
                        f"(level {skill.level}) for task {task.id}",
                        task_ids=[task.id],
                        action=f"Add or free a resource with skill '{skill.name}'"
                    )
            else:
                log.add(
                    Severity.CRITICAL, WarningCategory.UNSATISFIABLE_CONSTRAINT,
                    f"No available resource combines the type and skills required by task {task.id}",
                    task_ids=[task.id],
                    action="Relax the task requirements or add an eligible resource"
                )

        for skill_name in constraints.required_skills:
            if not any(s.name == skill_name for r in pool for s in r.skills):
                log.add(
                    Severity.CRITICAL, WarningCategory.UNSATISFIABLE_CONSTRAINT,
                    f"No available resource holds required skill '{skill_name}'",
                    action=f"Add or free a resource with skill '{skill_name}'"
                )

        pool_ids = {r.id for r in pool}
        for resource_id in constraints.mandatory_resources:
            if resource_id not in pool_ids:
                log.add(
                    Severity.CRITICAL, WarningCategory.UNSATISFIABLE_CONSTRAINT,
                    f"Mandatory resource {resource_id} is not available to this request",
                    resource_ids=[resource_id],
                    action="Remove the resource from the exclusions or the mandatory list"
                )

        return len(log) == blocking

    # ------------------------------------------------------------------
    # Main entry point
    # ------------------------------------------------------------------

    @staticmethod
    def _is_trivial(tasks: Sequence[Task], eligibility: Dict[str, List[Resource]]) -> bool:
        """Every task has one possible resource and no resource is shared between tasks"""
        chosen = []
        for task in tasks:
            if len(eligibility[task.id]) != 1:
                return False
            chosen.append(eligibility[task.id][0].id)
        return len(set(chosen)) == len(chosen)

    def _bottleneck_windows(self, forecasts: Sequence[ResourceDemandForecast],
                            request: OptimizationRequest) -> Dict[ResourceType, List[Tuple[float, float]]]:
        horizon_hours = request.horizon.length_hours
        windows: Dict[ResourceType, List[Tuple[float, float]]] = {}
        for forecast in forecasts:
            for bottleneck in forecast.bottlenecks:
                start = max(0.0, request.horizon.to_hours(bottleneck.start))
                end = min(horizon_hours, request.horizon.to_hours(bottleneck.end))
                if end > start:
                    windows.setdefault(forecast.resource_type, []).append((start, end))
        return windows

    def optimize(self, request: OptimizationRequest) -> OptimizationResult:
        """
        Optimize resource allocation for one request

        Raises:
            InvalidRequestError: for structurally invalid requests or snapshots
            DependencyCycleError: if the task graph in scope contains a cycle
            SnapshotUnavailableError: if the snapshot cannot be fetched
        """
        started = time.monotonic()
        logger.info("Optimizing request %s (%s)", request.request_id, request.objective.value)

        snapshot = self.provider.fetch_snapshot(request.project_ids, request.horizon)
        scoped = snapshot.for_projects(request.project_ids)
        tasks, resources = scoped.tasks, scoped.resources
        if not tasks:
            raise InvalidRequestError("Request scope contains no tasks")

        # Fatal input errors surface before any computation starts
        topological_order(tasks)
        ga_config = request.ga_config or self.settings.ga_config
        model_type = request.preferences.forecast_model or self.settings.forecast_model
        forecaster = DemandForecaster(self.registry, model_type) if self.registry.available() else None
        weights = request.preferences.normalized_weights()

        horizon_hours = request.horizon.length_hours
        constraints = request.constraints
        scope = {t.id for t in tasks}
        # Allocations of tasks being re-planned are replaced, the rest is background load
        background = [a for a in snapshot.allocations if a.task_id not in scope]
        eligibility = build_eligibility(tasks, resources, constraints)

        rng = np.random.default_rng(request.seed)
        log = WarningLog()

        with ThreadPoolExecutor(max_workers=2) as executor:
            conflicts_future = executor.submit(self._detect_conflicts, snapshot, horizon_hours)
            forecast_future = executor.submit(self._forecast, forecaster, snapshot, request)

            feasible = self._precheck(log, request, tasks, resources, eligibility)
            trivial = population = repairer = seeder = None
            if feasible:
                scheduler = CriticalPathScheduler(
                    tasks, resources, horizon_hours, background,
                    allow_overtime=request.preferences.allow_overtime,
                    max_overtime_percentage=constraints.max_overtime_percentage
                )
                committed = {rid: list(items) for rid, items in scheduler.committed.items()}
                repairer = GenomeRepairer(tasks, scheduler.order, eligibility, horizon_hours, committed)
                seeder = PopulationSeeder(tasks, eligibility, repairer, rng)
                trivial = self._is_trivial(tasks, eligibility)
                if trivial:
                    population = [seeder.first_fit_genome()]
                else:
                    population = seeder.initial_population(ga_config.population_size, weights)

            conflict_report = conflicts_future.result()
            forecasts, skipped = forecast_future.result()

        assembler = ResultAssembler(request, tasks, resources, eligibility)
        assembler.conflict_warnings(log, conflict_report)
        assembler.forecast_warnings(log, forecasts)
        for message in skipped:
            log.add(
                Severity.LOW, WarningCategory.INSUFFICIENT_DATA,
                f"Demand forecast omitted: {message}",
                action="Record more utilization history for demand-based planning"
            )

        if not feasible:
            return assembler.failed(log, conflict_report, forecasts, started, time.monotonic())

        signals = ConstraintSignals(
            conflict_windows=conflict_report.conflict_windows(),
            bottleneck_windows=self._bottleneck_windows(forecasts, request)
        )
        evaluator = FitnessEvaluator(tasks, resources, eligibility, scheduler, request, signals)

        timeout = request.timeout_seconds or self.settings.timeout_seconds
        if timeout is not None:
            timeout = max(MIN_SEARCH_SECONDS, timeout - (time.monotonic() - started))
        optimizer = GeneticOptimizer(
            tasks, eligibility, evaluator, repairer, ga_config, rng, horizon_hours, timeout
        )
        evolution = optimizer.run(population, max_generations=1 if trivial else None)

        fitness, breakdown, plan = evaluator.evaluate(seeder.first_fit_genome())
        baseline = Individual(genes=seeder.first_fit_genome(), fitness=fitness, plan=plan, breakdown=breakdown)

        ranker = ScenarioRanker(tasks, resources, 0 if trivial else ga_config.alternatives_count)
        primary, alternatives = ranker.rank(evolution.population)

        return assembler.assemble(
            primary, alternatives, baseline, evolution, conflict_report, forecasts, log,
            trivial, ga_config.max_generations, started, time.monotonic()
        )
