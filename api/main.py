from fastapi import FastAPI, HTTPException
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, Field
from typing import Dict, Any, List, Optional
from datetime import datetime
import logging
import os
from dotenv import load_dotenv

from resource_engine.config import EngineSettings
from resource_engine.engine import OptimizationEngine
from resource_engine.exceptions import (
    ConfigurationError, InvalidRequestError, SnapshotUnavailableError
)
from resource_engine.models.data_models import OptimizationRequest, ProjectSnapshot
from resource_engine.providers.snapshot_provider import HttpSnapshotProvider, InMemorySnapshotProvider

# Load environment variables
load_dotenv()

logging.basicConfig(
    level=os.getenv("LOG_LEVEL", "INFO").upper(),
    format="%(asctime)s %(levelname)s %(name)s: %(message)s"
)
logger = logging.getLogger("api")

app = FastAPI(title="Resource Optimization API", version="1.0.0")

app.add_middleware(
    CORSMiddleware,
    allow_origins=os.getenv("CORS_ORIGINS", "*").split(","),
    allow_credentials=True,
    allow_methods=["GET", "POST", "OPTIONS"],
    allow_headers=["Accept", "Content-Type", "Authorization", "X-Requested-With", "Origin"],
)


class TimeHorizonModel(BaseModel):
    start: datetime
    end: datetime


class OptimizeRequest(BaseModel):
    request_id: str
    project_ids: List[str] = Field(default_factory=list)
    objective: str = "balanced"
    time_horizon: TimeHorizonModel
    constraints: Dict[str, Any] = Field(default_factory=dict)
    preferences: Dict[str, Any] = Field(default_factory=dict)
    ga_config: Optional[Dict[str, Any]] = None
    seed: Optional[int] = None
    timeout_seconds: Optional[float] = None
    requested_by: str = ""
    # Inline snapshot in the internal format; fetched from SNAPSHOT_API_URL when absent
    snapshot: Optional[Dict[str, Any]] = None


def load_settings() -> EngineSettings:
    try:
        return EngineSettings.from_env(use_dotenv=False)
    except ConfigurationError as e:
        raise HTTPException(status_code=500, detail=f"Engine misconfigured: {e}")


def build_provider(body: OptimizeRequest, settings: EngineSettings):
    """Pick the snapshot source for a request"""
    if body.snapshot is not None:
        try:
            snapshot = ProjectSnapshot.from_json(body.snapshot)
        except InvalidRequestError:
            raise
        except (KeyError, TypeError, ValueError) as e:
            raise HTTPException(status_code=400, detail=f"Malformed snapshot: missing or invalid field {e}")
        return InMemorySnapshotProvider(snapshot)
    if not settings.snapshot_api_url:
        raise HTTPException(
            status_code=400,
            detail="No inline snapshot given and SNAPSHOT_API_URL is not configured"
        )
    return HttpSnapshotProvider(
        settings.snapshot_api_url,
        token=settings.snapshot_api_token,
        timeout=settings.snapshot_api_timeout
    )


@app.get("/")
async def root():
    return {"message": "Resource Optimization API is running"}


@app.post("/optimize")
def optimize(body: OptimizeRequest):
    """Optimize resource allocation and scheduling for the requested projects"""
    settings = load_settings()
    try:
        request = OptimizationRequest.from_json(
            body.model_dump(exclude={"snapshot"}), settings.ga_config
        )
        provider = build_provider(body, settings)
        result = OptimizationEngine(provider, settings).optimize(request)
    except InvalidRequestError as e:
        raise HTTPException(status_code=400, detail=str(e))
    except SnapshotUnavailableError as e:
        logger.error("Snapshot fetch failed for %s: %s", body.request_id, e)
        raise HTTPException(status_code=502, detail=str(e))

    return result.to_dict(horizon_start=request.horizon.start)


if __name__ == "__main__":
    import uvicorn
    port = int(os.environ.get("PORT", 8002))
    host = os.environ.get("HOST", "0.0.0.0")

    uvicorn.run(app, host=host, port=port)
