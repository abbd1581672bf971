"""
Sources of task/resource snapshots consumed by the engine
"""
from typing import Optional, Protocol, Sequence
import logging

import httpx

from resource_engine.exceptions import InvalidRequestError, SnapshotUnavailableError
from resource_engine.models.data_models import ProjectSnapshot, TimeHorizon
from resource_engine.models.snapshot_transformer import (
    transform_external_snapshot, validate_snapshot_data, get_snapshot_summary
)

logger = logging.getLogger(__name__)


class SnapshotProvider(Protocol):
    def fetch_snapshot(self, project_ids: Sequence[str], horizon: TimeHorizon) -> ProjectSnapshot:
        ...


class InMemorySnapshotProvider:
    """Serves a snapshot held in memory; the engine narrows it to the request scope"""

    def __init__(self, snapshot: ProjectSnapshot):
        self.snapshot = snapshot

    @classmethod
    def from_json_file(cls, filepath: str) -> 'InMemorySnapshotProvider':
        return cls(ProjectSnapshot.from_json_file(filepath))

    def fetch_snapshot(self, project_ids: Sequence[str], horizon: TimeHorizon) -> ProjectSnapshot:
        return self.snapshot


class HttpSnapshotProvider:
    """Fetches snapshots from the project-management REST service"""

    def __init__(self, base_url: str, token: Optional[str] = None, timeout: float = 30.0,
                 transport: Optional[httpx.BaseTransport] = None):
        """
        Initialize provider

        Args:
            base_url: Service root, e.g. https://pm.example.com/api
            token: Bearer token sent with every request
            timeout: Request timeout in seconds
            transport: Custom httpx transport (used by tests)
        """
        self.base_url = base_url.rstrip('/')
        self.token = token
        self.timeout = timeout
        self.transport = transport

    def _headers(self):
        headers = {"Accept": "application/json"}
        if self.token:
            headers["Authorization"] = f"Bearer {self.token}"
        return headers

    def fetch_snapshot(self, project_ids: Sequence[str], horizon: TimeHorizon) -> ProjectSnapshot:
        params = {
            "projectIds": ",".join(project_ids),
            "startDate": horizon.start.isoformat(),
            "endDate": horizon.end.isoformat(),
        }
        try:
            with httpx.Client(base_url=self.base_url, headers=self._headers(),
                              timeout=self.timeout, transport=self.transport) as client:
                response = client.get("/optimization/snapshot", params=params)
        except httpx.HTTPError as e:
            raise SnapshotUnavailableError(f"Snapshot service unreachable: {e}") from e

        if response.status_code != 200:
            raise SnapshotUnavailableError(
                f"Snapshot service returned {response.status_code}: {response.text[:200]}"
            )

        try:
            payload = response.json()
        except ValueError as e:
            raise SnapshotUnavailableError("Snapshot service returned invalid JSON") from e
        if not isinstance(payload, dict):
            raise SnapshotUnavailableError("Snapshot payload is not a JSON object")

        problems = validate_snapshot_data(payload)
        if problems:
            raise SnapshotUnavailableError(
                f"Snapshot payload is missing fields: {', '.join(problems[:10])}"
            )

        summary = get_snapshot_summary(payload)
        logger.info(
            "Fetched snapshot: %d tasks, %s resources, %d committed allocations",
            summary['total_tasks'], summary['resources_by_type'], summary['committed_allocations']
        )
        try:
            return ProjectSnapshot.from_json(transform_external_snapshot(payload, horizon))
        except (KeyError, TypeError) as e:
            raise InvalidRequestError(f"Snapshot payload is malformed: {e!r}") from e
