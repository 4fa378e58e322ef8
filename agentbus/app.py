"""Application bootstrap and lifecycle management."""

from typing import Protocol

from .config import Settings, resolve_db_path
from .event_bus import EventBus
from .logging_config import get_logger
from .orchestrator import Orchestrator
from .runner import IAgentRunner, SubprocessRunner
from .storage import IStorage, Storage

logger = get_logger(__name__)


class IApplication(Protocol):
    """Bootstrap and lifecycle."""

    async def start(self) -> None:
        """Initialize components in dependency order."""
        ...

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        ...

    async def reset(self) -> None:
        """Kill running clusters and clear the event log."""
        ...

    @property
    def orchestrator(self) -> Orchestrator:
        ...


class Application:
    """Main application bootstrap."""

    def __init__(
        self,
        db_path: str | None = None,
        settings: Settings | None = None,
        runner: IAgentRunner | None = None,
        orchestrator_options: dict | None = None,
    ):
        self._settings = settings or Settings.from_env()
        env_db_path = self._settings.database_url if db_path is None else db_path
        self._db_path = resolve_db_path(env_db_path)
        self._runner = runner
        self._orchestrator_options = orchestrator_options or {}

        # Components (will be initialized in start())
        self._storage: IStorage | None = None
        self._event_bus: EventBus | None = None
        self._orchestrator: Orchestrator | None = None

    async def start(self) -> None:
        """Initialize components in dependency order."""
        logger.info("Starting application")

        # 1. Storage (no dependencies)
        self._storage = Storage(self._db_path)
        await self._storage.init()
        logger.info("Storage initialized")

        # 2. EventBus (depends on Storage for persistence)
        self._event_bus = EventBus(self._storage)
        await self._event_bus.load()
        logger.info("EventBus initialized")

        # 3. Orchestrator (depends on EventBus, Storage, runner)
        runner = self._runner or SubprocessRunner(self._settings.agent_log_dir)
        self._orchestrator = Orchestrator(
            self._event_bus,
            runner,
            storage=self._storage,
            settings=self._settings,
            **self._orchestrator_options,
        )
        await self._orchestrator.restore()
        logger.info("All components initialized successfully")

    async def stop(self) -> None:
        """Shutdown in reverse order."""
        if self._orchestrator:
            await self._orchestrator.shutdown()
        if self._storage:
            await self._storage.close()
            logger.info("Storage closed")

    async def reset(self) -> None:
        """Kill running clusters and clear the event log."""
        if self._orchestrator:
            await self._orchestrator.reset()

        if self._storage:
            await self._storage.clear()
            logger.info("Storage cleared")

        if self._event_bus:
            self._event_bus.reset()
            logger.info("Reset complete")

    @property
    def storage(self) -> IStorage:
        """Get storage instance."""
        if not self._storage:
            raise RuntimeError("Application not started")
        return self._storage

    @property
    def event_bus(self) -> EventBus:
        """Get event bus instance."""
        if not self._event_bus:
            raise RuntimeError("Application not started")
        return self._event_bus

    @property
    def orchestrator(self) -> Orchestrator:
        """Get orchestrator instance."""
        if not self._orchestrator:
            raise RuntimeError("Application not started")
        return self._orchestrator
