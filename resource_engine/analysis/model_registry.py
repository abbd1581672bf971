"""
Registry of demand forecasting models

The registry is an immutable value passed to the forecaster explicitly; there
is no process-wide model state.
"""
from enum import Enum
from typing import Dict, List, Optional, Tuple
import logging

import numpy as np

from resource_engine.exceptions import InvalidRequestError

logger = logging.getLogger(__name__)


class MLModelType(str, Enum):
    NEURAL_NETWORK = "neural_network"
    LSTM = "lstm"
    RANDOM_FOREST = "random_forest"
    GENETIC_ALGORITHM = "genetic_algorithm"
    GRADIENT_BOOSTING = "gradient_boosting"
    LINEAR_REGRESSION = "linear_regression"
    WEIGHTED_MOVING_AVERAGE = "weighted_moving_average"


class LinearRegressionModel:
    """Least-squares trend line through the history"""
    model_type = MLModelType.LINEAR_REGRESSION
    version = "1.0"

    def project(self, x: np.ndarray, y: np.ndarray, x_future: np.ndarray) -> Tuple[np.ndarray, float]:
        slope, intercept = np.polyfit(x, y, 1)
        residuals = y - (slope * x + intercept)
        # Two fitted parameters
        dof = max(len(y) - 2, 1)
        sigma = float(np.sqrt(np.sum(residuals ** 2) / dof))
        return slope * x_future + intercept, sigma


class WeightedMovingAverageModel:
    """Flat projection of a linearly weighted average of the latest samples"""
    model_type = MLModelType.WEIGHTED_MOVING_AVERAGE
    version = "1.0"

    def __init__(self, window: int = 5):
        self.window = window

    def project(self, x: np.ndarray, y: np.ndarray, x_future: np.ndarray) -> Tuple[np.ndarray, float]:
        recent = y[-self.window:]
        weights = np.arange(1, len(recent) + 1, dtype=float)
        level = float(np.dot(recent, weights) / weights.sum())
        sigma = float(np.std(recent, ddof=1)) if len(recent) > 1 else 0.0
        return np.full(len(x_future), level), sigma


class ModelRegistry:
    """Read-only mapping from model type to forecasting model"""

    def __init__(self, models: Optional[Dict[MLModelType, object]] = None):
        self._models = dict(models or {})

    @classmethod
    def default(cls) -> 'ModelRegistry':
        return cls({
            MLModelType.LINEAR_REGRESSION: LinearRegressionModel(),
            MLModelType.WEIGHTED_MOVING_AVERAGE: WeightedMovingAverageModel(),
        })

    def with_model(self, model_type: MLModelType, model) -> 'ModelRegistry':
        """Return a new registry that also holds `model`"""
        models = dict(self._models)
        models[MLModelType(model_type)] = model
        return ModelRegistry(models)

    def available(self) -> List[MLModelType]:
        return sorted(self._models, key=lambda m: m.value)

    def __contains__(self, model_type) -> bool:
        try:
            return MLModelType(model_type) in self._models
        except ValueError:
            return False

    def get(self, model_type):
        """Look up a registered model; unknown or unregistered types are rejected"""
        try:
            key = MLModelType(model_type)
        except ValueError:
            raise InvalidRequestError(f"Unknown forecast model '{model_type}'")
        if key not in self._models:
            available = ", ".join(m.value for m in self.available()) or "none"
            raise InvalidRequestError(
                f"Forecast model '{key.value}' is not registered (available: {available})"
            )
        return self._models[key]
