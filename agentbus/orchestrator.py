"""Cluster lifecycle: start, route, complete, kill."""

import asyncio
import uuid
from typing import Callable

from .config import Settings
from .dispatch import ClusterDispatcher
from .errors import BusStorageError, ClusterNotFoundError, ConfigError, PreflightError
from .event_bus import EventBus
from .export import export_markdown
from .logging_config import get_logger
from .models import Cluster, ClusterState, Event, Topic, parse_agents
from .preflight import PreflightOptions, PreflightResult, run_preflight
from .runner import IAgentRunner
from .storage import ClusterRecord, IStorage

logger = get_logger(__name__)

PreflightCheck = Callable[[PreflightOptions], PreflightResult]

TERMINAL_TOPICS = {
    Topic.CLUSTER_COMPLETE: ClusterState.COMPLETED,
    Topic.CLUSTER_FAILED: ClusterState.FAILED,
}

INTAKE_SENDER = "user"


def _preflight_options(config: dict, agents: list) -> PreflightOptions:
    requirements = config.get("preflight") or {}
    if not isinstance(requirements, dict):
        raise ConfigError("preflight must be an object")
    return PreflightOptions(
        providers={agent.provider for agent in agents},
        require_gh=bool(requirements.get("requireGh")),
        require_docker=bool(requirements.get("requireDocker")),
    )


class Orchestrator:
    """Owns every cluster in the process and routes bus events to them."""

    def __init__(
        self,
        event_bus: EventBus,
        runner: IAgentRunner,
        storage: IStorage | None = None,
        settings: Settings | None = None,
        preflight: PreflightCheck = run_preflight,
    ):
        self._event_bus = event_bus
        self._runner = runner
        self._storage = storage
        self._settings = settings or Settings()
        self._preflight = preflight

        self._clusters: dict[str, Cluster] = {}
        self._dispatchers: dict[str, ClusterDispatcher] = {}

        self._event_bus.subscribe(self._route)

    @property
    def event_bus(self) -> EventBus:
        return self._event_bus

    async def start(
        self,
        config: dict,
        input: dict,
        cluster_id: str | None = None,
    ) -> Cluster:
        """Create a cluster from ``config`` and publish the intake event.

        Raises ConfigError for an invalid config and PreflightError when the
        environment cannot run the configured agents.
        """
        agents = parse_agents(config, self._settings.default_provider)

        result = self._preflight(_preflight_options(config, agents))
        for warning in result.warnings:
            logger.warning("Preflight: %s", warning)
        if not result.valid:
            raise PreflightError(result.errors, result.warnings)

        cluster_id = cluster_id or f"cluster-{uuid.uuid4().hex[:8]}"
        if cluster_id in self._clusters:
            raise ValueError(f"Cluster {cluster_id} already exists")

        cluster = Cluster(
            id=cluster_id,
            created_at=self._event_bus.clock(),
            agents=agents,
            config=config,
        )
        self._clusters[cluster.id] = cluster
        self._dispatchers[cluster.id] = ClusterDispatcher(
            cluster, self._event_bus, self._runner, self._settings
        )
        await self._save(cluster)
        logger.info("Cluster %s created with %s agents", cluster.id, len(agents))

        await self._dispatchers[cluster.id].announce()

        content = {"text": input.get("text") or ""}
        if input.get("data") is not None:
            content["data"] = input["data"]
        await self._event_bus.publish(cluster.id, Topic.ISSUE_OPENED, INTAKE_SENDER, content)
        return cluster

    async def restore(self) -> list[Cluster]:
        """Reload stored clusters after a restart.

        Pending and running clusters lost their agents with the previous
        process, so they come back killed. Restored clusters never dispatch.
        """
        if not self._storage:
            return []

        restored = []
        for record in await self._storage.get_clusters():
            if record.id in self._clusters:
                continue
            try:
                cluster = Cluster(
                    id=record.id,
                    created_at=record.created_at,
                    agents=parse_agents(record.config, self._settings.default_provider),
                    state=ClusterState(record.state),
                    config=record.config,
                )
            except (ConfigError, ValueError) as e:
                logger.warning("Skipping stored cluster %s: %s", record.id, e)
                continue

            dispatcher = ClusterDispatcher(cluster, self._event_bus, self._runner, self._settings)
            await dispatcher.close()
            self._clusters[cluster.id] = cluster
            self._dispatchers[cluster.id] = dispatcher
            if not cluster.is_terminal:
                cluster.transition(ClusterState.KILLED)
                await self._save(cluster)
                logger.info("Cluster %s was interrupted by a restart; marked killed", cluster.id)
            restored.append(cluster)

        logger.info("Restored %s clusters from storage", len(restored))
        return restored

    def get_cluster(self, cluster_id: str) -> Cluster:
        cluster = self._clusters.get(cluster_id)
        if cluster is None:
            raise ClusterNotFoundError(cluster_id)
        return cluster

    def list_clusters(self) -> list[Cluster]:
        return list(self._clusters.values())

    def get_dispatcher(self, cluster_id: str) -> ClusterDispatcher:
        self.get_cluster(cluster_id)
        return self._dispatchers[cluster_id]

    async def kill(self, cluster_id: str) -> Cluster:
        """Stop a cluster and terminate its running agents."""
        cluster = self.get_cluster(cluster_id)
        if cluster.is_terminal:
            logger.info("Cluster %s already %s; kill ignored", cluster_id, cluster.state.value)
            return cluster

        cluster.transition(ClusterState.KILLED)
        await self._dispatchers[cluster_id].close()
        await self._save(cluster)
        logger.info("Cluster %s killed", cluster_id)
        return cluster

    async def wait_until_idle(self, cluster_id: str, timeout: float | None = None) -> Cluster:
        """Wait until the cluster has no running actions.

        Re-raises a bus storage failure hit by one of its actions.
        """
        dispatcher = self.get_dispatcher(cluster_id)
        await asyncio.wait_for(dispatcher.wait_idle(), timeout=timeout)
        return self._clusters[cluster_id]

    def export(self, cluster_id: str) -> str:
        """Markdown report of the cluster's history."""
        cluster = self.get_cluster(cluster_id)
        return export_markdown(cluster, self._event_bus.query(cluster_id=cluster_id))

    async def shutdown(self) -> None:
        """Kill every cluster that is still running."""
        for cluster in list(self._clusters.values()):
            if not cluster.is_terminal:
                await self.kill(cluster.id)

    async def reset(self) -> None:
        """Kill every cluster and forget them."""
        await self.shutdown()
        self._clusters.clear()
        self._dispatchers.clear()

    async def _route(self, event: Event) -> None:
        cluster = self._clusters.get(event.cluster_id)
        dispatcher = self._dispatchers.get(event.cluster_id)
        if cluster is None or dispatcher is None or cluster.is_terminal:
            return

        new_state = TERMINAL_TOPICS.get(event.topic)
        if new_state is not None:
            await self._finish(cluster, dispatcher, new_state, event)
            return

        fired = await dispatcher.dispatch(event)
        if fired and cluster.state is ClusterState.PENDING:
            cluster.transition(ClusterState.RUNNING)
            logger.info("Cluster %s running", cluster.id)
            try:
                await self._save(cluster)
            except BusStorageError as e:
                # Handler errors are only logged by the bus; keep it for wait_until_idle
                dispatcher.fatal_error = dispatcher.fatal_error or e
                raise

    async def _finish(
        self,
        cluster: Cluster,
        dispatcher: ClusterDispatcher,
        state: ClusterState,
        event: Event,
    ) -> None:
        cluster.transition(state)
        logger.info(
            "Cluster %s %s (%s from %s)", cluster.id, state.value, event.topic, event.sender
        )
        await dispatcher.close()
        await self._save(cluster)

    async def _save(self, cluster: Cluster) -> None:
        if not self._storage:
            return
        try:
            await self._storage.save_cluster(
                ClusterRecord(
                    id=cluster.id,
                    state=cluster.state.value,
                    config=cluster.config,
                    created_at=cluster.created_at,
                )
            )
        except Exception as e:
            raise BusStorageError(f"Failed to persist cluster {cluster.id}: {e}") from e
