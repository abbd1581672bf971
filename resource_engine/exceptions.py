"""
Exception hierarchy for the resource optimization engine
"""
from typing import List, Optional


class OptimizationError(Exception):
    """Base class for all engine errors"""


class InvalidRequestError(OptimizationError, ValueError):
    """Raised for structurally invalid requests or entity data"""


class DependencyCycleError(InvalidRequestError):
    """Raised when the task dependency graph contains a cycle"""

    def __init__(self, cycle: List[str]):
        self.cycle = cycle
        super().__init__(f"Dependency cycle detected: {' -> '.join(cycle)}")


class MalformedGenomeError(OptimizationError):
    """Raised when a genome does not cover every task with an eligible resource"""

    def __init__(self, message: str, task_id: Optional[str] = None):
        self.task_id = task_id
        super().__init__(message)


class InsufficientDataError(OptimizationError):
    """Raised by the forecaster when there are too few historical samples"""


class SnapshotUnavailableError(OptimizationError):
    """Raised when the task/resource snapshot cannot be fetched"""


class ConfigurationError(OptimizationError):
    """Raised for malformed engine settings"""
