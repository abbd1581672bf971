"""
Result models produced by the optimization engine
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta
from enum import Enum
from typing import List, Dict, Optional, Any

from resource_engine.models.data_models import Allocation, ResourceType, Severity, HOURS_PER_DAY


class ResultStatus(str, Enum):
    SUCCESS = "success"
    PARTIAL = "partial"
    FAILED = "failed"


class WarningCategory(str, Enum):
    RESOURCE_CONFLICT = "resource_conflict"
    BUDGET_OVERRUN = "budget_overrun"
    SCHEDULE_DELAY = "schedule_delay"
    QUALITY_RISK = "quality_risk"
    SAFETY_CONCERN = "safety_concern"
    UNSATISFIABLE_CONSTRAINT = "unsatisfiable_constraint"
    CAPACITY_SHORTAGE = "capacity_shortage"
    INSUFFICIENT_DATA = "insufficient_data"
    SEARCH_INCOMPLETE = "search_incomplete"


class ConflictType(str, Enum):
    OVERALLOCATION = "overallocation"
    UNAVAILABILITY = "unavailability"


@dataclass
class Conflict:
    """A detected violation of the allocation capacity invariant"""
    conflict_id: str
    resource_id: str
    conflict_type: ConflictType
    allocation_ids: List[str]
    task_ids: List[str]
    start: float
    end: float
    peak_percentage: float
    severity: Severity
    can_reschedule: bool

    @property
    def excess_percentage(self) -> float:
        return max(0.0, self.peak_percentage - 100.0)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'conflict_id': self.conflict_id,
            'resource_id': self.resource_id,
            'conflict_type': self.conflict_type.value,
            'allocation_ids': list(self.allocation_ids),
            'task_ids': list(self.task_ids),
            'start': self.start,
            'end': self.end,
            'peak_percentage': round(self.peak_percentage, 2),
            'severity': self.severity.value,
            'can_reschedule': self.can_reschedule
        }


@dataclass
class TaskSchedule:
    """Time-resolved schedule of one task"""
    task_id: str
    task_name: str
    start: float
    end: float
    slack: float
    is_critical: bool
    resource_id: str
    allocation_percentage: float
    estimated_cost: float
    complexity: int
    risk_level: Severity
    predecessors: List[str] = field(default_factory=list)
    successors: List[str] = field(default_factory=list)

    @property
    def duration(self) -> float:
        return self.end - self.start

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task_id': self.task_id,
            'task_name': self.task_name,
            'start': self.start,
            'end': self.end,
            'duration': self.duration,
            'slack': self.slack,
            'is_critical': self.is_critical,
            'resource_id': self.resource_id,
            'allocation_percentage': self.allocation_percentage,
            'estimated_cost': round(self.estimated_cost, 2),
            'complexity': self.complexity,
            'risk_level': self.risk_level.value,
            'predecessors': list(self.predecessors),
            'successors': list(self.successors)
        }


@dataclass
class ResourceUtilization:
    """How one resource is used by a plan"""
    resource_id: str
    resource_name: str
    resource_type: ResourceType
    allocated_hours: float
    available_hours: float
    idle_hours: float
    overtime_hours: float

    @property
    def utilization_percentage(self) -> float:
        if self.available_hours <= 0:
            return 0.0
        return min(100.0, 100.0 * self.allocated_hours / self.available_hours)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource_id': self.resource_id,
            'resource_name': self.resource_name,
            'resource_type': self.resource_type.value,
            'allocated_hours': round(self.allocated_hours, 2),
            'available_hours': round(self.available_hours, 2),
            'utilization_percentage': round(self.utilization_percentage, 2),
            'idle_hours': round(self.idle_hours, 2),
            'overtime_hours': round(self.overtime_hours, 2)
        }


@dataclass
class SchedulingPlan:
    """A fully time-resolved project plan"""
    plan_id: str
    tasks: List[TaskSchedule]
    critical_path: List[str]
    total_duration_hours: float
    total_cost: float
    allocations: List[Allocation]
    unscheduled_task_ids: List[str] = field(default_factory=list)
    resource_utilization: List[ResourceUtilization] = field(default_factory=list)

    @property
    def total_duration_days(self) -> float:
        return self.total_duration_hours / HOURS_PER_DAY

    @property
    def schedule_map(self) -> Dict[str, TaskSchedule]:
        return {t.task_id: t for t in self.tasks}

    @property
    def is_complete(self) -> bool:
        return not self.unscheduled_task_ids

    def to_dict(self, horizon_start: Optional[datetime] = None) -> Dict[str, Any]:
        tasks = []
        for schedule in self.tasks:
            entry = schedule.to_dict()
            if horizon_start is not None:
                entry['start_date'] = (horizon_start + timedelta(hours=schedule.start)).isoformat()
                entry['end_date'] = (horizon_start + timedelta(hours=schedule.end)).isoformat()
            tasks.append(entry)
        return {
            'plan_id': self.plan_id,
            'tasks': tasks,
            'critical_path': list(self.critical_path),
            'total_duration_hours': round(self.total_duration_hours, 2),
            'total_duration_days': round(self.total_duration_days, 2),
            'total_cost': round(self.total_cost, 2),
            'unscheduled_task_ids': list(self.unscheduled_task_ids),
            'allocations': [a.to_dict() for a in self.allocations],
            'resource_utilization': [u.to_dict() for u in self.resource_utilization]
        }


@dataclass
class ResourceChange:
    """A task whose resource differs between an alternative and the primary plan"""
    task_id: str
    original_resource_id: str
    alternative_resource_id: str
    cost_difference: float
    time_difference: float
    quality_impact: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task_id': self.task_id,
            'original_resource_id': self.original_resource_id,
            'alternative_resource_id': self.alternative_resource_id,
            'cost_difference': round(self.cost_difference, 2),
            'time_difference': round(self.time_difference, 2),
            'quality_impact': round(self.quality_impact, 2)
        }


@dataclass
class AlternativeScenario:
    """A ranked runner-up plan with its trade-offs against the primary plan"""
    scenario_id: str
    scenario_name: str
    description: str
    plan: SchedulingPlan
    total_cost: float
    total_duration_hours: float
    quality_score: float  # 0-100
    risk_score: float  # 0-100
    score: float
    recommendation_score: float  # 0-1
    warning_count: int
    pareto_optimal: bool = False
    resource_changes: List[ResourceChange] = field(default_factory=list)
    pros: List[str] = field(default_factory=list)
    cons: List[str] = field(default_factory=list)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'scenario_id': self.scenario_id,
            'scenario_name': self.scenario_name,
            'description': self.description,
            'total_cost': round(self.total_cost, 2),
            'total_duration_hours': round(self.total_duration_hours, 2),
            'quality_score': round(self.quality_score, 2),
            'risk_score': round(self.risk_score, 2),
            'score': round(self.score, 4),
            'recommendation_score': round(self.recommendation_score, 3),
            'warning_count': self.warning_count,
            'pareto_optimal': self.pareto_optimal,
            'resource_changes': [c.to_dict() for c in self.resource_changes],
            'pros': list(self.pros),
            'cons': list(self.cons),
            'plan': self.plan.to_dict()
        }


@dataclass
class OptimizationMetrics:
    """Aggregate quality of the chosen plan against a naive first-fit baseline"""
    cost_savings: float = 0.0
    cost_savings_percentage: float = 0.0
    time_savings: float = 0.0
    time_savings_percentage: float = 0.0
    resource_utilization_avg: float = 0.0
    resource_utilization_improvement: float = 0.0
    quality_score_avg: float = 0.0
    risk_score_avg: float = 0.0
    conflicts_resolved: int = 0
    conflicts_remaining: int = 0
    feasibility_score: float = 0.0
    robustness_score: float = 0.0

    def to_dict(self) -> Dict[str, Any]:
        return {
            key: (round(value, 3) if isinstance(value, float) else value)
            for key, value in self.__dict__.items()
        }


@dataclass
class OptimizationWarning:
    """An in-band diagnostic attached to the result"""
    warning_id: str
    severity: Severity
    category: WarningCategory
    message: str
    affected_task_ids: List[str] = field(default_factory=list)
    affected_resource_ids: List[str] = field(default_factory=list)
    recommended_action: str = ""
    estimated_impact: Dict[str, float] = field(default_factory=dict)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'warning_id': self.warning_id,
            'severity': self.severity.value,
            'category': self.category.value,
            'message': self.message,
            'affected_task_ids': list(self.affected_task_ids),
            'affected_resource_ids': list(self.affected_resource_ids),
            'recommended_action': self.recommended_action,
            'estimated_impact': dict(self.estimated_impact)
        }


@dataclass
class ResourceRecommendation:
    """Per-task explanation of the chosen resource"""
    task_id: str
    task_name: str
    resource_id: str
    resource_name: str
    resource_type: ResourceType
    match_score: float  # 0-1
    estimated_cost: float
    estimated_duration: float
    quality_score: float  # 0-100
    risk_score: float  # 0-100
    alternatives: List[str] = field(default_factory=list)
    reasoning: str = ""

    def to_dict(self) -> Dict[str, Any]:
        return {
            'task_id': self.task_id,
            'task_name': self.task_name,
            'resource_id': self.resource_id,
            'resource_name': self.resource_name,
            'resource_type': self.resource_type.value,
            'match_score': round(self.match_score, 3),
            'estimated_cost': round(self.estimated_cost, 2),
            'estimated_duration': round(self.estimated_duration, 2),
            'quality_score': round(self.quality_score, 2),
            'risk_score': round(self.risk_score, 2),
            'alternatives': list(self.alternatives),
            'reasoning': self.reasoning
        }


@dataclass
class DemandPrediction:
    timestamp: datetime
    demand: float
    lower: float
    upper: float
    confidence: float

    def to_dict(self) -> Dict[str, Any]:
        return {
            'timestamp': self.timestamp.isoformat(),
            'demand': round(self.demand, 3),
            'lower': round(self.lower, 3),
            'upper': round(self.upper, 3),
            'confidence': round(self.confidence, 3)
        }


@dataclass
class ResourceBottleneck:
    """A contiguous window where forecast demand exceeds known capacity"""
    resource_type: ResourceType
    start: datetime
    end: datetime
    demand: float
    capacity: float
    severity: Severity

    @property
    def shortfall(self) -> float:
        return max(0.0, self.demand - self.capacity)

    @property
    def shortfall_percentage(self) -> float:
        if self.capacity <= 0:
            return 100.0
        return min(100.0, 100.0 * self.shortfall / self.capacity)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource_type': self.resource_type.value,
            'start': self.start.isoformat(),
            'end': self.end.isoformat(),
            'demand': round(self.demand, 3),
            'capacity': self.capacity,
            'shortfall': round(self.shortfall, 3),
            'shortfall_percentage': round(self.shortfall_percentage, 2),
            'severity': self.severity.value
        }


@dataclass
class ResourceDemandForecast:
    """Projected demand for one resource type over the horizon"""
    resource_type: ResourceType
    model: str
    predictions: List[DemandPrediction]
    peak_demand_date: datetime
    peak_demand_quantity: float
    total_demand: float
    capacity: float
    bottlenecks: List[ResourceBottleneck] = field(default_factory=list)

    @property
    def has_bottleneck(self) -> bool:
        return bool(self.bottlenecks)

    def to_dict(self) -> Dict[str, Any]:
        return {
            'resource_type': self.resource_type.value,
            'model': self.model,
            'predictions': [p.to_dict() for p in self.predictions],
            'peak_demand_date': self.peak_demand_date.isoformat(),
            'peak_demand_quantity': round(self.peak_demand_quantity, 3),
            'total_demand': round(self.total_demand, 3),
            'capacity': self.capacity,
            'bottleneck': self.has_bottleneck,
            'bottlenecks': [b.to_dict() for b in self.bottlenecks]
        }


@dataclass
class OptimizationResult:
    """The engine's output for one request"""
    result_id: str
    request_id: str
    status: ResultStatus
    confidence_score: float
    scheduling_plan: Optional[SchedulingPlan]
    alternatives: List[AlternativeScenario]
    metrics: OptimizationMetrics
    warnings: List[OptimizationWarning]
    recommendations: List[ResourceRecommendation] = field(default_factory=list)
    conflicts: List[Conflict] = field(default_factory=list)
    forecasts: List[ResourceDemandForecast] = field(default_factory=list)
    generations_run: int = 0
    convergence_generation: Optional[int] = None
    fitness_history: List[float] = field(default_factory=list)
    computed_at: datetime = field(default_factory=datetime.now)
    computation_time_ms: float = 0.0

    def __post_init__(self):
        if not 0.0 <= self.confidence_score <= 1.0:
            raise ValueError(f"Confidence score out of range: {self.confidence_score}")

    def to_dict(self, horizon_start: Optional[datetime] = None) -> Dict[str, Any]:
        """Convert result to dictionary for output"""
        return {
            'result_id': self.result_id,
            'request_id': self.request_id,
            'status': self.status.value,
            'confidence_score': round(self.confidence_score, 3),
            'scheduling_plan': (
                self.scheduling_plan.to_dict(horizon_start) if self.scheduling_plan else None
            ),
            'alternatives': [a.to_dict() for a in self.alternatives],
            'metrics': self.metrics.to_dict(),
            'warnings': [w.to_dict() for w in self.warnings],
            'recommendations': [r.to_dict() for r in self.recommendations],
            'conflicts': [c.to_dict() for c in self.conflicts],
            'forecasts': [f.to_dict() for f in self.forecasts],
            'generations_run': self.generations_run,
            'convergence_generation': self.convergence_generation,
            'fitness_history': [round(f, 6) for f in self.fitness_history],
            'computed_at': self.computed_at.isoformat(),
            'computation_time_ms': round(self.computation_time_ms, 1)
        }
