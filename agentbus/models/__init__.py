"""Core data models for agentbus."""

from .cluster import (
    Action,
    AgentRuntimeState,
    AgentSpec,
    AgentState,
    Cluster,
    ClusterState,
    ContextSource,
    Hook,
    OutputFormat,
    SinceMode,
    Trigger,
    parse_agents,
)
from .events import Event, LifecycleEvent, Topic
from .validation import (
    NO_REASON,
    CriteriaResult,
    CriteriaStatus,
    ValidationResult,
    collect_cannot_validate,
)

__all__ = [
    # Events
    "Event",
    "LifecycleEvent",
    "Topic",
    # Cluster
    "Action",
    "AgentRuntimeState",
    "AgentSpec",
    "AgentState",
    "Cluster",
    "ClusterState",
    "ContextSource",
    "Hook",
    "OutputFormat",
    "SinceMode",
    "Trigger",
    "parse_agents",
    # Validation
    "NO_REASON",
    "CriteriaResult",
    "CriteriaStatus",
    "ValidationResult",
    "collect_cannot_validate",
]
