"""Cluster API routes."""

from datetime import datetime
from typing import Any

from fastapi import APIRouter, HTTPException, Query
from pydantic import BaseModel, Field

from ...app import IApplication
from ...errors import ClusterNotFoundError, ConfigError, PreflightError


class IntakeInput(BaseModel):
    """Task description that becomes the ISSUE_OPENED event."""

    text: str
    data: dict[str, Any] | None = None


class StartClusterRequest(BaseModel):
    """Request model for starting a cluster."""

    config: dict[str, Any]
    input: IntakeInput
    cluster_id: str | None = None


class AgentSummary(BaseModel):
    id: str
    role: str
    model: str


class ClusterResponse(BaseModel):
    """Response model for a cluster."""

    id: str
    state: str
    created_at: datetime
    agents: list[AgentSummary] = Field(default_factory=list)


class EventResponse(BaseModel):
    """Response model for a bus event."""

    id: int
    cluster_id: str
    topic: str
    sender: str
    timestamp: datetime
    content: dict[str, Any]


class ExportResponse(BaseModel):
    markdown: str


def create_clusters_router(app: IApplication) -> APIRouter:
    """Create clusters router."""
    router = APIRouter(prefix="/api/clusters", tags=["clusters"])

    def get_cluster_or_404(cluster_id: str):
        try:
            return app.orchestrator.get_cluster(cluster_id)
        except ClusterNotFoundError as e:
            raise HTTPException(status_code=404, detail=str(e))

    @router.post("", response_model=ClusterResponse, status_code=201)
    async def start_cluster(request: StartClusterRequest) -> dict:
        """Start a cluster and publish its intake event."""
        try:
            cluster = await app.orchestrator.start(
                request.config,
                request.input.model_dump(exclude_none=True),
                cluster_id=request.cluster_id,
            )
        except ConfigError as e:
            raise HTTPException(status_code=422, detail=str(e))
        except PreflightError as e:
            raise HTTPException(
                status_code=412,
                detail={"errors": e.errors, "warnings": e.warnings},
            )
        except ValueError as e:
            raise HTTPException(status_code=409, detail=str(e))
        return cluster.summary()

    @router.get("", response_model=list[ClusterResponse])
    async def list_clusters() -> list[dict]:
        """List clusters known to this process."""
        return [cluster.summary() for cluster in app.orchestrator.list_clusters()]

    @router.get("/{cluster_id}", response_model=ClusterResponse)
    async def get_cluster(cluster_id: str) -> dict:
        """Get one cluster."""
        return get_cluster_or_404(cluster_id).summary()

    @router.post("/{cluster_id}/kill", response_model=ClusterResponse)
    async def kill_cluster(cluster_id: str) -> dict:
        """Kill a cluster and its running agents."""
        get_cluster_or_404(cluster_id)
        cluster = await app.orchestrator.kill(cluster_id)
        return cluster.summary()

    @router.get("/{cluster_id}/messages", response_model=list[EventResponse])
    async def get_messages(
        cluster_id: str,
        topic: str | None = Query(None, description="Filter by topic"),
        sender: str | None = Query(None, description="Filter by sender"),
        since: str | None = Query(None, description="ISO timestamp, exclusive"),
    ) -> list[dict]:
        """Query the cluster's bus history."""
        get_cluster_or_404(cluster_id)

        since_dt = None
        if since:
            try:
                since_dt = datetime.fromisoformat(since.replace("Z", "+00:00"))
            except ValueError:
                raise HTTPException(status_code=400, detail="Invalid since timestamp format")

        try:
            events = app.orchestrator.event_bus.query(
                cluster_id=cluster_id, topic=topic, sender=sender, since=since_dt
            )
        except TypeError:
            # naive vs aware datetime comparison
            raise HTTPException(status_code=400, detail="since must include a timezone offset")
        return [event.to_dict() for event in events]

    @router.get("/{cluster_id}/export", response_model=ExportResponse)
    async def export_cluster(cluster_id: str) -> dict:
        """Markdown report of the cluster."""
        get_cluster_or_404(cluster_id)
        return {"markdown": app.orchestrator.export(cluster_id)}

    return router
