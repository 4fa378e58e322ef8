"""agentbus: multi-agent orchestration over a shared event bus."""

from .app import Application, IApplication
from .errors import (
    AgentBusError,
    AgentTaskError,
    BusStorageError,
    ClusterNotFoundError,
    ConfigError,
    PreflightError,
)
from .event_bus import EventBus, IEventBus
from .models import (
    AgentSpec,
    Cluster,
    ClusterState,
    Event,
    Topic,
)
from .orchestrator import Orchestrator
from .runner import IAgentRunner, SubprocessRunner
from .storage import IStorage, Storage

__all__ = [
    # Application
    "Application",
    "IApplication",
    "Orchestrator",
    # Models
    "AgentSpec",
    "Cluster",
    "ClusterState",
    "Event",
    "Topic",
    # Components
    "IStorage",
    "Storage",
    "IEventBus",
    "EventBus",
    "IAgentRunner",
    "SubprocessRunner",
    # Errors
    "AgentBusError",
    "AgentTaskError",
    "BusStorageError",
    "ClusterNotFoundError",
    "ConfigError",
    "PreflightError",
]
