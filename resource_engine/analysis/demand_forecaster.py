"""
Demand forecasting per resource type over the request horizon
"""
from datetime import timedelta
from typing import List, Sequence
import logging
import math

import numpy as np

from resource_engine.analysis.conflict_detector import severity_for_peak
from resource_engine.analysis.model_registry import ModelRegistry, MLModelType
from resource_engine.exceptions import InsufficientDataError
from resource_engine.models.data_models import ResourceType, Severity, TimeHorizon, UtilizationSample
from resource_engine.models.results import DemandPrediction, ResourceBottleneck, ResourceDemandForecast

logger = logging.getLogger(__name__)

MIN_SAMPLES = 3
BOTTLENECK_MIN_PERIODS = 2
MAX_PERIODS = 120
Z_95 = 1.96


class DemandForecaster:
    """Projects historical utilization forward and flags capacity bottlenecks"""

    def __init__(self, registry: ModelRegistry,
                 model_type: MLModelType = MLModelType.LINEAR_REGRESSION,
                 min_samples: int = MIN_SAMPLES):
        """
        Initialize forecaster

        Args:
            registry: Models available to this forecaster
            model_type: Model used for projection; must be registered
            min_samples: Fewest samples a resource type needs to be forecast
        """
        self.model = registry.get(model_type)
        self.model_type = MLModelType(model_type)
        self.min_samples = min_samples

    def _period(self, samples: List[UtilizationSample], horizon: TimeHorizon) -> timedelta:
        """Spacing of the forecast: median sample spacing, widened to cap the point count"""
        gaps = np.diff([s.timestamp.timestamp() for s in samples])
        gaps = gaps[gaps > 0]
        seconds = float(np.median(gaps)) if len(gaps) else 86400.0
        horizon_seconds = (horizon.end - horizon.start).total_seconds()
        seconds = max(seconds, horizon_seconds / MAX_PERIODS)
        return timedelta(seconds=seconds)

    def forecast(self, samples: Sequence[UtilizationSample], resource_type: ResourceType,
                 horizon: TimeHorizon, capacity: float) -> ResourceDemandForecast:
        """
        Forecast demand for one resource type

        Args:
            samples: Historical utilization (any resource type; filtered here)
            resource_type: Resource type to forecast
            horizon: Forecast horizon
            capacity: Units of this resource type known to be available

        Raises:
            InsufficientDataError: if fewer than min_samples samples exist for the type
        """
        history = sorted(
            (s for s in samples if s.resource_type == resource_type), key=lambda s: s.timestamp
        )
        if len(history) < self.min_samples:
            raise InsufficientDataError(
                f"{len(history)} utilization samples for {resource_type.value} "
                f"(at least {self.min_samples} required)"
            )

        period = self._period(history, horizon)
        step = period.total_seconds()
        origin = history[0].timestamp
        x = np.array([(s.timestamp - origin).total_seconds() / step for s in history])
        y = np.array([s.quantity for s in history], dtype=float)

        timestamps = []
        moment = horizon.start
        while moment <= horizon.end and len(timestamps) < MAX_PERIODS:
            timestamps.append(moment)
            moment += period
        x_future = np.array([(t - origin).total_seconds() / step for t in timestamps])

        points, sigma = self.model.project(x, y, x_future)
        # Floor keeps intervals strictly widening even for a perfect fit
        sigma = max(sigma, 0.05 * max(1.0, float(np.mean(np.abs(y)))))
        # Steps between the last observation and the first forecast point
        offset = max(0.0, x_future[0] - x[-1]) if len(x_future) else 0.0

        predictions = []
        for k, (timestamp, point) in enumerate(zip(timestamps, points)):
            steps_ahead = offset + k + 1
            half_width = Z_95 * sigma * math.sqrt(steps_ahead)
            demand = max(0.0, float(point))
            predictions.append(DemandPrediction(
                timestamp=timestamp,
                demand=demand,
                lower=demand - half_width,
                upper=demand + half_width,
                confidence=0.95 / (1.0 + 0.05 * steps_ahead)
            ))

        peak = max(predictions, key=lambda p: p.demand)
        bottlenecks = self._bottlenecks(predictions, resource_type, capacity, period)
        if bottlenecks:
            logger.info(
                "Forecast for %s exceeds capacity %.1f in %d window(s)",
                resource_type.value, capacity, len(bottlenecks)
            )

        return ResourceDemandForecast(
            resource_type=resource_type,
            model=self.model_type.value,
            predictions=predictions,
            peak_demand_date=peak.timestamp,
            peak_demand_quantity=peak.demand,
            total_demand=sum(p.demand for p in predictions),
            capacity=capacity,
            bottlenecks=bottlenecks
        )

    def _bottlenecks(self, predictions: List[DemandPrediction], resource_type: ResourceType,
                     capacity: float, period: timedelta) -> List[ResourceBottleneck]:
        """Contiguous runs of at least BOTTLENECK_MIN_PERIODS points above capacity"""
        runs, current = [], []
        for prediction in predictions:
            if prediction.demand > capacity:
                current.append(prediction)
            else:
                if current:
                    runs.append(current)
                current = []
        if current:
            runs.append(current)

        bottlenecks = []
        for run in runs:
            if len(run) < BOTTLENECK_MIN_PERIODS:
                continue
            demand = max(p.demand for p in run)
            if capacity > 0:
                severity = severity_for_peak(100.0 * demand / capacity)
            else:
                severity = Severity.CRITICAL
            bottlenecks.append(ResourceBottleneck(
                resource_type=resource_type,
                start=run[0].timestamp,
                end=run[-1].timestamp + period,
                demand=demand,
                capacity=capacity,
                severity=severity
            ))
        return bottlenecks


def forecast_capacity(resources, resource_type: ResourceType) -> float:
    """Units of a resource type in the pool, weighted by their best availability"""
    total = 0.0
    for resource in resources:
        if resource.resource_type != resource_type:
            continue
        if resource.availability:
            total += max(w.percentage for w in resource.availability) / 100.0
        else:
            total += 1.0
    return total
