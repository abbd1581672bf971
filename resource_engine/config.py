"""
Engine settings loaded from the environment (and a .env file when present)
"""
from dataclasses import dataclass, field
from typing import Mapping, Optional
import logging
import os

from dotenv import load_dotenv

from resource_engine.analysis.model_registry import MLModelType
from resource_engine.exceptions import ConfigurationError, InvalidRequestError
from resource_engine.models.data_models import GeneticAlgorithmConfig


def _read(environ: Mapping[str, str], key: str, cast, default):
    raw = environ.get(key)
    if raw is None or raw.strip() == "":
        return default
    try:
        return cast(raw)
    except ValueError:
        raise ConfigurationError(f"Invalid value for {key}: {raw!r}")


@dataclass(frozen=True)
class EngineSettings:
    ga_config: GeneticAlgorithmConfig = field(default_factory=GeneticAlgorithmConfig)
    timeout_seconds: Optional[float] = None
    forecast_model: MLModelType = MLModelType.LINEAR_REGRESSION
    snapshot_api_url: Optional[str] = None
    snapshot_api_token: Optional[str] = None
    snapshot_api_timeout: float = 30.0
    log_level: str = "INFO"

    @classmethod
    def from_env(cls, environ: Optional[Mapping[str, str]] = None,
                 use_dotenv: bool = True) -> 'EngineSettings':
        """
        Load settings

        Args:
            environ: Mapping to read instead of os.environ
            use_dotenv: Load a .env file into os.environ first

        Raises:
            ConfigurationError: if a value is malformed
        """
        if environ is None:
            if use_dotenv:
                load_dotenv()
            environ = os.environ

        defaults = GeneticAlgorithmConfig()
        try:
            ga_config = GeneticAlgorithmConfig(
                population_size=_read(environ, "ENGINE_POPULATION_SIZE", int, defaults.population_size),
                max_generations=_read(environ, "ENGINE_MAX_GENERATIONS", int, defaults.max_generations),
                mutation_rate=_read(environ, "ENGINE_MUTATION_RATE", float, defaults.mutation_rate),
                crossover_rate=_read(environ, "ENGINE_CROSSOVER_RATE", float, defaults.crossover_rate),
                elitism_rate=_read(environ, "ENGINE_ELITISM_RATE", float, defaults.elitism_rate),
                alternatives_count=_read(environ, "ENGINE_ALTERNATIVES", int, defaults.alternatives_count),
                max_workers=_read(environ, "ENGINE_MAX_WORKERS", int, defaults.max_workers),
            )
        except InvalidRequestError as e:
            raise ConfigurationError(str(e)) from e

        timeout = _read(environ, "ENGINE_TIMEOUT_SECONDS", float, None)
        if timeout is not None and timeout <= 0:
            raise ConfigurationError("ENGINE_TIMEOUT_SECONDS must be positive")

        forecast_model = _read(environ, "ENGINE_FORECAST_MODEL", MLModelType, MLModelType.LINEAR_REGRESSION)

        log_level = environ.get("LOG_LEVEL", "INFO").upper()
        if not isinstance(logging.getLevelName(log_level), int):
            raise ConfigurationError(f"Invalid value for LOG_LEVEL: {log_level!r}")

        return cls(
            ga_config=ga_config,
            timeout_seconds=timeout,
            forecast_model=forecast_model,
            snapshot_api_url=environ.get("SNAPSHOT_API_URL") or None,
            snapshot_api_token=environ.get("SNAPSHOT_API_TOKEN") or None,
            snapshot_api_timeout=_read(environ, "SNAPSHOT_API_TIMEOUT", float, 30.0),
            log_level=log_level
        )
