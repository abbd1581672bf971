"""
Data models for parsing and representing resource optimization inputs
"""
from dataclasses import dataclass, field
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import List, Dict, Optional, Any, Tuple, Union
import json

from resource_engine.exceptions import InvalidRequestError


HOURS_PER_DAY = 8.0


class ResourceType(str, Enum):
    WORKER = "worker"
    EQUIPMENT = "equipment"
    MATERIAL = "material"


class DependencyType(str, Enum):
    FINISH_TO_START = "finish_to_start"
    START_TO_START = "start_to_start"
    FINISH_TO_FINISH = "finish_to_finish"
    START_TO_FINISH = "start_to_finish"


class OptimizationObjective(str, Enum):
    MINIMIZE_COST = "minimize_cost"
    MINIMIZE_DURATION = "minimize_duration"
    MAXIMIZE_QUALITY = "maximize_quality"
    BALANCED = "balanced"
    MAXIMIZE_UTILIZATION = "maximize_utilization"
    MINIMIZE_IDLE_TIME = "minimize_idle_time"


class SelectionMethod(str, Enum):
    TOURNAMENT = "tournament"
    ROULETTE = "roulette"
    RANK = "rank"


class CrossoverMethod(str, Enum):
    SINGLE_POINT = "single_point"
    UNIFORM = "uniform"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"
    CRITICAL = "critical"


def _parse_enum(enum_cls, value, label: str):
    """Coerce a raw value into an enum member, rejecting unknown values"""
    if isinstance(value, enum_cls):
        return value
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise InvalidRequestError(f"Unknown {label} '{value}' (expected one of: {allowed})")


def as_naive_utc(moment: datetime) -> datetime:
    """Engine times are naive UTC; offset-aware values are converted"""
    if moment.tzinfo is None:
        return moment
    return moment.astimezone(timezone.utc).replace(tzinfo=None)


def parse_datetime(value: Union[str, datetime]) -> datetime:
    """Parse an ISO 8601 value (a trailing Z included) into naive UTC"""
    if isinstance(value, datetime):
        return as_naive_utc(value)
    try:
        text = value.strip()
        if text.endswith(("Z", "z")):
            text = text[:-1] + "+00:00"
        return as_naive_utc(datetime.fromisoformat(text))
    except (AttributeError, TypeError, ValueError):
        raise InvalidRequestError(f"Invalid datetime value: {value!r}")


@dataclass
class Skill:
    """Represents a skill requirement or capability"""
    name: str
    level: int = 1

    def matches(self, required_skill: 'Skill') -> bool:
        """Check if this skill meets the requirement"""
        return self.name == required_skill.name and self.level >= required_skill.level

    @classmethod
    def from_json(cls, data: Union[str, Dict[str, Any]]) -> 'Skill':
        if isinstance(data, str):
            return cls(name=data)
        return cls(name=data['name'], level=int(data.get('level', 1)))

    def to_dict(self) -> Dict[str, Any]:
        return {'name': self.name, 'level': self.level}


@dataclass
class AvailabilityWindow:
    """A span of hours (from horizon start) during which a resource can be booked"""
    start: float
    end: float
    percentage: float = 100.0

    def __post_init__(self):
        if self.end <= self.start:
            raise InvalidRequestError(
                f"Availability window must end after it starts ({self.start} >= {self.end})"
            )
        if not 0 < self.percentage <= 100:
            raise InvalidRequestError(f"Availability percentage out of range: {self.percentage}")

    @property
    def length(self) -> float:
        return self.end - self.start

    def contains(self, start: float, end: float) -> bool:
        return self.start <= start and end <= self.end

    def to_dict(self) -> Dict[str, Any]:
        return {'start': self.start, 'end': self.end, 'percentage': self.percentage}


# Type-specific resource details. The optimizer and scheduler never read these;
# they only travel with the resource for the callers that need them.

@dataclass
class WorkerProfile:
    years_experience: float = 0.0
    certifications: List[str] = field(default_factory=list)


@dataclass
class EquipmentProfile:
    owned: bool = True
    condition: int = 3


@dataclass
class MaterialProfile:
    quantity: float = 0.0
    unit: str = "unit"


ResourceProfile = Union[WorkerProfile, EquipmentProfile, MaterialProfile]

PROFILE_TYPES = {
    ResourceType.WORKER: WorkerProfile,
    ResourceType.EQUIPMENT: EquipmentProfile,
    ResourceType.MATERIAL: MaterialProfile,
}


@dataclass
class Resource:
    """Represents a bookable resource (worker, equipment unit or material lot)"""
    id: str
    name: str
    resource_type: ResourceType
    skills: List[Skill]
    hourly_rate: float
    availability: List[AvailabilityWindow] = field(default_factory=list)
    profile: Optional[ResourceProfile] = None

    def __post_init__(self):
        self.resource_type = _parse_enum(ResourceType, self.resource_type, "resource type")
        if self.hourly_rate < 0:
            raise InvalidRequestError(f"Resource {self.id} has a negative cost rate")
        if self.profile is not None and not isinstance(self.profile, PROFILE_TYPES[self.resource_type]):
            raise InvalidRequestError(
                f"Resource {self.id} profile does not match its type '{self.resource_type.value}'"
            )
        # Windows must be chronologically ordered and non-overlapping
        for previous, current in zip(self.availability, self.availability[1:]):
            if current.start < previous.end:
                raise InvalidRequestError(
                    f"Resource {self.id} has overlapping or unordered availability windows"
                )

    def windows(self, horizon_hours: float) -> List[AvailabilityWindow]:
        """Availability windows clipped to the horizon; no windows means always available"""
        if not self.availability:
            return [AvailabilityWindow(0.0, horizon_hours)]
        clipped = []
        for window in self.availability:
            start, end = max(window.start, 0.0), min(window.end, horizon_hours)
            if end > start:
                clipped.append(AvailabilityWindow(start, end, window.percentage))
        return clipped

    def capacity_for(self, start: float, end: float, horizon_hours: float) -> Optional[float]:
        """Capacity percentage of the window holding [start, end], or None if unavailable"""
        for window in self.windows(horizon_hours):
            if window.contains(start, end):
                return window.percentage
        return None

    def available_hours(self, horizon_hours: float) -> float:
        return sum(w.length * w.percentage / 100.0 for w in self.windows(horizon_hours))

    def skill_level(self, skill_name: str) -> int:
        return max((s.level for s in self.skills if s.name == skill_name), default=0)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Resource':
        resource_type = _parse_enum(ResourceType, data.get('type', 'worker'), "resource type")
        profile = None
        if data.get('profile') is not None:
            try:
                profile = PROFILE_TYPES[resource_type](**data['profile'])
            except TypeError:
                raise InvalidRequestError(
                    f"Resource {data['id']} profile does not match its type '{resource_type.value}'"
                )
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            resource_type=resource_type,
            skills=[Skill.from_json(s) for s in data.get('skills', [])],
            hourly_rate=float(data.get('hourly_rate', 0.0)),
            availability=[
                AvailabilityWindow(w['start'], w['end'], w.get('percentage', 100.0))
                for w in data.get('availability', [])
            ],
            profile=profile
        )


@dataclass
class Dependency:
    """Ordering constraint between two tasks"""
    predecessor_id: str
    successor_id: str
    dependency_type: DependencyType = DependencyType.FINISH_TO_START
    lag_hours: float = 0.0  # negative values are lead time

    def __post_init__(self):
        self.dependency_type = _parse_enum(DependencyType, self.dependency_type, "dependency type")
        if self.predecessor_id == self.successor_id:
            raise InvalidRequestError(f"Task {self.successor_id} cannot depend on itself")

    def to_dict(self) -> Dict[str, Any]:
        return {
            'predecessor_id': self.predecessor_id,
            'successor_id': self.successor_id,
            'type': self.dependency_type.value,
            'lag_hours': self.lag_hours
        }


@dataclass
class Task:
    """Represents a unit of project work"""
    id: str
    name: str
    duration_hours: float
    required_skills: List[Skill] = field(default_factory=list)
    complexity: int = 5
    dependencies: List[Dependency] = field(default_factory=list)
    project_id: str = ""
    resource_type: Optional[ResourceType] = None
    allocation_percentage: float = 100.0
    description: str = ""

    def __post_init__(self):
        if self.duration_hours <= 0:
            raise InvalidRequestError(f"Task {self.id} must have a positive duration")
        if not 1 <= self.complexity <= 10:
            raise InvalidRequestError(f"Task {self.id} complexity must be between 1 and 10")
        if not 0 < self.allocation_percentage <= 100:
            raise InvalidRequestError(f"Task {self.id} allocation percentage out of range")
        if self.resource_type is not None:
            self.resource_type = _parse_enum(ResourceType, self.resource_type, "resource type")
        for dependency in self.dependencies:
            if dependency.successor_id != self.id:
                raise InvalidRequestError(
                    f"Dependency {dependency.predecessor_id} -> {dependency.successor_id} "
                    f"is listed on task {self.id}"
                )

    @property
    def predecessor_ids(self) -> List[str]:
        return [d.predecessor_id for d in self.dependencies]

    def can_be_done_by(self, resource: Resource) -> bool:
        """Check if a resource has the type and all required skills for this task"""
        if self.resource_type is not None and resource.resource_type != self.resource_type:
            return False
        for req_skill in self.required_skills:
            if not any(res_skill.matches(req_skill) for res_skill in resource.skills):
                return False
        return True

    def skill_match_score(self, resource: Resource) -> float:
        """Calculate how well a resource's skills match the task requirements"""
        if not self.can_be_done_by(resource):
            return 0.0
        if not self.required_skills:
            return 1.0

        total_score = 0.0
        for req_skill in self.required_skills:
            # Higher score for overqualification
            skill_diff = resource.skill_level(req_skill.name) - req_skill.level
            total_score += 1.0 + (skill_diff * 0.2)

        return total_score / len(self.required_skills)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Task':
        dependencies = []
        for dep in data.get('dependencies', []):
            # Plain ids are shorthand for a finish-to-start dependency without lag
            if isinstance(dep, str):
                dep = {'predecessor_id': dep}
            dependencies.append(Dependency(
                predecessor_id=dep['predecessor_id'],
                successor_id=data['id'],
                dependency_type=dep.get('type', DependencyType.FINISH_TO_START.value),
                lag_hours=float(dep.get('lag_hours', 0.0))
            ))
        return cls(
            id=data['id'],
            name=data.get('name', data['id']),
            duration_hours=float(data['duration_hours']),
            required_skills=[Skill.from_json(s) for s in data.get('required_skills', [])],
            complexity=int(data.get('complexity', 5)),
            dependencies=dependencies,
            project_id=data.get('project_id', ''),
            resource_type=data.get('resource_type'),
            allocation_percentage=float(data.get('allocation_percentage', 100.0)),
            description=data.get('description', '')
        )


@dataclass
class Allocation:
    """Assignment of a resource to a task for a window of hours"""
    resource_id: str
    task_id: str
    start: float  # in hours from horizon start
    end: float
    allocation_percentage: float = 100.0
    estimated_cost: float = 0.0
    project_id: str = ""
    allocation_id: str = ""

    def __post_init__(self):
        if self.end <= self.start:
            raise InvalidRequestError(f"Allocation for task {self.task_id} must end after it starts")
        if not 0 < self.allocation_percentage <= 100:
            raise InvalidRequestError(f"Allocation percentage out of range: {self.allocation_percentage}")
        if not self.allocation_id:
            self.allocation_id = f"{self.resource_id}:{self.task_id}:{self.start:g}"

    @property
    def duration(self) -> float:
        return self.end - self.start

    def overlaps(self, start: float, end: float) -> bool:
        return self.start < end and start < self.end

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'Allocation':
        return cls(
            resource_id=data['resource_id'],
            task_id=data['task_id'],
            start=float(data['start']),
            end=float(data['end']),
            allocation_percentage=float(data.get('allocation_percentage', 100.0)),
            estimated_cost=float(data.get('estimated_cost', 0.0)),
            project_id=data.get('project_id', ''),
            allocation_id=data.get('allocation_id', '')
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            'allocation_id': self.allocation_id,
            'resource_id': self.resource_id,
            'task_id': self.task_id,
            'project_id': self.project_id,
            'start': self.start,
            'end': self.end,
            'allocation_percentage': self.allocation_percentage,
            'estimated_cost': round(self.estimated_cost, 2)
        }


@dataclass
class UtilizationSample:
    """Historical demand observation for one resource type"""
    timestamp: datetime
    resource_type: ResourceType
    quantity: float

    def __post_init__(self):
        self.timestamp = as_naive_utc(self.timestamp)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'UtilizationSample':
        return cls(
            timestamp=parse_datetime(data['timestamp']),
            resource_type=_parse_enum(ResourceType, data['resource_type'], "resource type"),
            quantity=float(data['quantity'])
        )


@dataclass(frozen=True)
class TimeHorizon:
    """Bounded planning window of one optimization request"""
    start: datetime
    end: datetime

    def __post_init__(self):
        object.__setattr__(self, 'start', as_naive_utc(self.start))
        object.__setattr__(self, 'end', as_naive_utc(self.end))
        if self.start >= self.end:
            raise InvalidRequestError("Time horizon start must be before its end")

    @property
    def length_hours(self) -> float:
        return (self.end - self.start).total_seconds() / 3600.0

    def to_datetime(self, hours: float) -> datetime:
        return self.start + timedelta(hours=hours)

    def to_hours(self, moment: datetime) -> float:
        return (as_naive_utc(moment) - self.start).total_seconds() / 3600.0


@dataclass(frozen=True)
class OptimizationConstraints:
    """Hard and soft limits the plan must respect"""
    budget_limit: Optional[float] = None
    deadline_hours: Optional[float] = None
    required_skills: Tuple[str, ...] = ()
    mandatory_resources: Tuple[str, ...] = ()
    excluded_resources: Tuple[str, ...] = ()
    max_overtime_percentage: float = 20.0

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'OptimizationConstraints':
        return cls(
            budget_limit=data.get('budget_limit'),
            deadline_hours=data.get('deadline_hours'),
            required_skills=tuple(data.get('required_skills', ())),
            mandatory_resources=tuple(data.get('mandatory_resources', ())),
            excluded_resources=tuple(data.get('excluded_resources', ())),
            max_overtime_percentage=float(data.get('max_overtime_percentage', 20.0))
        )


@dataclass(frozen=True)
class OptimizationPreferences:
    """Trade-off weights and behavioural switches"""
    cost_weight: Optional[float] = None
    time_weight: Optional[float] = None
    quality_weight: Optional[float] = None
    risk_weight: float = 0.2
    allow_overtime: bool = False
    forecast_model: Optional[str] = None

    def normalized_weights(self) -> Tuple[float, float, float]:
        """Return (cost, time, quality) weights summing to 1; unspecified weights share equally"""
        raw = [self.cost_weight, self.time_weight, self.quality_weight]
        if all(w is None for w in raw):
            return (1 / 3, 1 / 3, 1 / 3)
        values = [w if w is not None else 1 / 3 for w in raw]
        if any(v < 0 for v in values):
            raise InvalidRequestError("Preference weights must be non-negative")
        total = sum(values)
        if total == 0:
            return (1 / 3, 1 / 3, 1 / 3)
        return tuple(v / total for v in values)

    @classmethod
    def from_json(cls, data: Dict[str, Any]) -> 'OptimizationPreferences':
        return cls(
            cost_weight=data.get('cost_weight'),
            time_weight=data.get('time_weight'),
            quality_weight=data.get('quality_weight'),
            risk_weight=float(data.get('risk_weight', 0.2)),
            allow_overtime=bool(data.get('allow_overtime', False)),
            forecast_model=data.get('forecast_model')
        )


@dataclass(frozen=True)
class GeneticAlgorithmConfig:
    """Search parameters of the genetic optimizer"""
    population_size: int = 60
    max_generations: int = 150
    mutation_rate: float = 0.1
    crossover_rate: float = 0.8
    elitism_rate: float = 0.1
    selection_method: SelectionMethod = SelectionMethod.TOURNAMENT
    crossover_method: CrossoverMethod = CrossoverMethod.SINGLE_POINT
    tournament_size: int = 5
    convergence_threshold: float = 0.001
    convergence_generations: int = 20
    alternatives_count: int = 3
    max_workers: int = 4

    def __post_init__(self):
        object.__setattr__(
            self, 'selection_method',
            _parse_enum(SelectionMethod, self.selection_method, "selection method")
        )
        object.__setattr__(
            self, 'crossover_method',
            _parse_enum(CrossoverMethod, self.crossover_method, "crossover method")
        )
        if self.population_size < 2:
            raise InvalidRequestError("Population size must be at least 2")
        if self.max_generations < 1:
            raise InvalidRequestError("At least one generation is required")
        for name in ('mutation_rate', 'crossover_rate', 'elitism_rate'):
            value = getattr(self, name)
            if not 0 <= value <= 1:
                raise InvalidRequestError(f"{name} must be within [0, 1], got {value}")
        if self.tournament_size < 1 or self.convergence_generations < 1:
            raise InvalidRequestError("Tournament size and convergence window must be positive")
        if self.alternatives_count < 0 or self.max_workers < 1:
            raise InvalidRequestError("Invalid alternatives count or worker count")

    @property
    def elite_count(self) -> int:
        # At least one elite keeps the best fitness non-decreasing
        return max(1, int(self.population_size * self.elitism_rate))

    @classmethod
    def from_json(cls, data: Dict[str, Any], defaults: Optional['GeneticAlgorithmConfig'] = None):
        base = defaults or cls()
        values = {name: data[name] for name in base.__dataclass_fields__ if name in data}
        return cls(**{**base.__dict__, **values})


@dataclass(frozen=True)
class OptimizationRequest:
    """One invocation of the engine; immutable once submitted"""
    request_id: str
    project_ids: Tuple[str, ...]
    objective: OptimizationObjective
    horizon: TimeHorizon
    constraints: OptimizationConstraints = field(default_factory=OptimizationConstraints)
    preferences: OptimizationPreferences = field(default_factory=OptimizationPreferences)
    ga_config: Optional[GeneticAlgorithmConfig] = None
    seed: Optional[int] = None
    timeout_seconds: Optional[float] = None
    requested_by: str = ""

    def __post_init__(self):
        object.__setattr__(
            self, 'objective', _parse_enum(OptimizationObjective, self.objective, "objective")
        )
        object.__setattr__(self, 'project_ids', tuple(self.project_ids))
        if self.timeout_seconds is not None and self.timeout_seconds <= 0:
            raise InvalidRequestError("Timeout must be positive")

    @classmethod
    def from_json(cls, data: Dict[str, Any],
                  ga_defaults: Optional[GeneticAlgorithmConfig] = None) -> 'OptimizationRequest':
        horizon = data.get('time_horizon') or {}
        if 'start' not in horizon or 'end' not in horizon:
            raise InvalidRequestError("Request is missing its time horizon")
        ga_data = data.get('ga_config')
        ga_config = None
        if ga_data is not None:
            ga_config = GeneticAlgorithmConfig.from_json(ga_data, ga_defaults)
        elif ga_defaults is not None:
            ga_config = ga_defaults
        return cls(
            request_id=data.get('request_id', 'request'),
            project_ids=tuple(data.get('project_ids', ())),
            objective=data.get('objective', OptimizationObjective.BALANCED.value),
            horizon=TimeHorizon(parse_datetime(horizon['start']), parse_datetime(horizon['end'])),
            constraints=OptimizationConstraints.from_json(data.get('constraints', {})),
            preferences=OptimizationPreferences.from_json(data.get('preferences', {})),
            ga_config=ga_config,
            seed=data.get('seed'),
            timeout_seconds=data.get('timeout_seconds'),
            requested_by=data.get('requested_by', '')
        )


@dataclass
class ProjectSnapshot:
    """Tasks, resources and committed allocations as of request time"""
    tasks: List[Task]
    resources: List[Resource]
    allocations: List[Allocation] = field(default_factory=list)
    utilization_history: List[UtilizationSample] = field(default_factory=list)

    def __post_init__(self):
        task_ids = [t.id for t in self.tasks]
        if len(set(task_ids)) != len(task_ids):
            raise InvalidRequestError("Snapshot contains duplicate task ids")
        resource_ids = [r.id for r in self.resources]
        if len(set(resource_ids)) != len(resource_ids):
            raise InvalidRequestError("Snapshot contains duplicate resource ids")
        known = set(task_ids)
        for task in self.tasks:
            for predecessor_id in task.predecessor_ids:
                if predecessor_id not in known:
                    raise InvalidRequestError(
                        f"Task {task.id} depends on unknown task {predecessor_id}"
                    )

    @property
    def task_map(self) -> Dict[str, Task]:
        return {t.id: t for t in self.tasks}

    @property
    def resource_map(self) -> Dict[str, Resource]:
        return {r.id: r for r in self.resources}

    def for_projects(self, project_ids: Tuple[str, ...]) -> 'ProjectSnapshot':
        """Restrict the snapshot to the requested project scope (empty scope keeps everything)"""
        if not project_ids:
            return self
        scope = set(project_ids)
        return ProjectSnapshot(
            tasks=[t for t in self.tasks if t.project_id in scope],
            resources=self.resources,
            allocations=self.allocations,
            utilization_history=self.utilization_history
        )

    @classmethod
    def from_json(cls, json_data: Dict[str, Any]) -> 'ProjectSnapshot':
        """Parse snapshot from JSON data"""
        return cls(
            tasks=[Task.from_json(t) for t in json_data.get('tasks', [])],
            resources=[Resource.from_json(r) for r in json_data.get('resources', [])],
            allocations=[Allocation.from_json(a) for a in json_data.get('allocations', [])],
            utilization_history=[
                UtilizationSample.from_json(s) for s in json_data.get('utilization_history', [])
            ]
        )

    @classmethod
    def from_json_file(cls, filepath: str) -> 'ProjectSnapshot':
        """Load snapshot from JSON file"""
        with open(filepath, 'r') as f:
            data = json.load(f)
        return cls.from_json(data)
