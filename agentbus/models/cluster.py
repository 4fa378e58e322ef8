"""Cluster and agent configuration models."""

import threading
from dataclasses import dataclass, field
from datetime import datetime
from enum import Enum
from typing import Any

from ..errors import ConfigError


class ClusterState(str, Enum):
    """Lifecycle state of a cluster."""

    PENDING = "pending"
    RUNNING = "running"
    COMPLETED = "completed"
    FAILED = "failed"
    KILLED = "killed"

    @property
    def is_terminal(self) -> bool:
        return self in TERMINAL_STATES


TERMINAL_STATES = frozenset(
    {ClusterState.COMPLETED, ClusterState.FAILED, ClusterState.KILLED}
)

_TRANSITIONS: dict[ClusterState, frozenset[ClusterState]] = {
    ClusterState.PENDING: frozenset(
        {ClusterState.RUNNING, ClusterState.COMPLETED, ClusterState.FAILED, ClusterState.KILLED}
    ),
    ClusterState.RUNNING: frozenset(
        {ClusterState.COMPLETED, ClusterState.FAILED, ClusterState.KILLED}
    ),
    ClusterState.COMPLETED: frozenset(),
    ClusterState.FAILED: frozenset(),
    ClusterState.KILLED: frozenset(),
}


class AgentState(str, Enum):
    """Per-agent task state inside a cluster."""

    IDLE = "idle"
    STARTED = "started"
    TASK_STARTED = "task_started"
    TASK_COMPLETED = "task_completed"
    ERROR = "error"


class Action(str, Enum):
    """Actions a trigger or hook may run."""

    EXECUTE_TASK = "execute_task"
    PUBLISH_MESSAGE = "publish_message"


class OutputFormat(str, Enum):
    JSON = "json"
    TEXT = "text"


class SinceMode(str, Enum):
    """Lower bound used when collecting a context source."""

    CLUSTER_START = "cluster_start"
    LAST_TASK_END = "last_task_end"


HOOK_ACTIONS = frozenset({Action.PUBLISH_MESSAGE})


def _parse_enum(enum_cls, value: Any, where: str):
    try:
        return enum_cls(value)
    except ValueError:
        allowed = ", ".join(member.value for member in enum_cls)
        raise ConfigError(f"{where}: unknown value {value!r} (expected one of: {allowed})")


@dataclass(frozen=True)
class Trigger:
    """Binding from a topic to an action."""

    topic: str
    action: Action = Action.EXECUTE_TASK
    config: dict | None = None

    @classmethod
    def from_dict(cls, raw: Any, where: str) -> "Trigger":
        if not isinstance(raw, dict) or not raw.get("topic"):
            raise ConfigError(f"{where}: trigger must be an object with a topic")
        action = _parse_enum(Action, raw.get("action", Action.EXECUTE_TASK.value), where)
        config = raw.get("config")
        if action is Action.PUBLISH_MESSAGE and not isinstance(config, dict):
            raise ConfigError(f"{where}: publish_message trigger needs a config object")
        return cls(topic=str(raw["topic"]), action=action, config=config)


@dataclass(frozen=True)
class Hook:
    """Action run after an agent task completes."""

    action: Action
    config: dict

    @classmethod
    def from_dict(cls, raw: Any, where: str) -> "Hook":
        if not isinstance(raw, dict):
            raise ConfigError(f"{where}: hook must be an object")
        action = _parse_enum(Action, raw.get("action"), where)
        if action not in HOOK_ACTIONS:
            raise ConfigError(f"{where}: action {action.value!r} is not allowed in hooks")
        config = raw.get("config")
        if not isinstance(config, dict) or not config.get("topic"):
            raise ConfigError(f"{where}: hook config must name a topic")
        return cls(action=action, config=config)


@dataclass(frozen=True)
class ContextSource:
    """Bus history an agent sees in its context."""

    topic: str
    sender: str | None = None
    limit: int | None = None
    since: SinceMode = SinceMode.CLUSTER_START

    @classmethod
    def from_dict(cls, raw: Any, where: str) -> "ContextSource":
        if not isinstance(raw, dict) or not raw.get("topic"):
            raise ConfigError(f"{where}: context source must name a topic")
        limit = raw.get("limit")
        if limit is not None and (not isinstance(limit, int) or limit < 1):
            raise ConfigError(f"{where}: limit must be a positive integer")
        return cls(
            topic=str(raw["topic"]),
            sender=raw.get("sender"),
            limit=limit,
            since=_parse_enum(SinceMode, raw.get("since", SinceMode.CLUSTER_START.value), where),
        )


@dataclass(frozen=True)
class AgentSpec:
    """Immutable declaration of one agent in a cluster."""

    id: str
    role: str
    model: str
    prompt: str
    provider: str
    output_format: OutputFormat = OutputFormat.JSON
    json_schema: dict | None = None
    triggers: tuple[Trigger, ...] = ()
    on_complete: Hook | None = None
    context_sources: tuple[ContextSource, ...] = ()
    timeout: float | None = None

    @property
    def trigger_topics(self) -> list[str]:
        return [trigger.topic for trigger in self.triggers]

    @classmethod
    def from_dict(cls, raw: Any, default_provider: str) -> "AgentSpec":
        """Parse an agent entry of a cluster config (camelCase keys)."""
        if not isinstance(raw, dict) or not raw.get("id"):
            raise ConfigError("agent entries must be objects with an id")
        agent_id = str(raw["id"])
        where = f"agent {agent_id!r}"

        triggers_raw = raw.get("triggers") or []
        if not isinstance(triggers_raw, list):
            raise ConfigError(f"{where}: triggers must be a list")
        triggers = tuple(
            Trigger.from_dict(item, f"{where} trigger #{i}") for i, item in enumerate(triggers_raw)
        )

        hooks = raw.get("hooks") or {}
        if not isinstance(hooks, dict):
            raise ConfigError(f"{where}: hooks must be an object")
        on_complete = hooks.get("onComplete")

        json_schema = raw.get("jsonSchema")
        if json_schema is not None and not isinstance(json_schema, dict):
            raise ConfigError(f"{where}: jsonSchema must be an object")

        strategy = raw.get("contextStrategy") or {}
        if not isinstance(strategy, dict):
            raise ConfigError(f"{where}: contextStrategy must be an object")
        sources_raw = strategy.get("sources") or []
        if not isinstance(sources_raw, list):
            raise ConfigError(f"{where}: contextStrategy.sources must be a list")

        timeout = raw.get("timeout")
        if timeout is not None and (not isinstance(timeout, (int, float)) or timeout <= 0):
            raise ConfigError(f"{where}: timeout must be a positive number of seconds")

        return cls(
            id=agent_id,
            role=str(raw.get("role") or agent_id),
            model=str(raw.get("model") or ""),
            prompt=str(raw.get("prompt") or ""),
            provider=str(raw.get("provider") or default_provider),
            output_format=_parse_enum(OutputFormat, raw.get("outputFormat", "json"), where),
            json_schema=json_schema,
            triggers=triggers,
            on_complete=Hook.from_dict(on_complete, f"{where} onComplete") if on_complete else None,
            context_sources=tuple(
                ContextSource.from_dict(item, f"{where} context source #{i}")
                for i, item in enumerate(sources_raw)
            ),
            timeout=float(timeout) if timeout is not None else None,
        )


def parse_agents(config: Any, default_provider: str) -> list[AgentSpec]:
    """Parse the ``agents`` list of a cluster config."""
    if not isinstance(config, dict):
        raise ConfigError("cluster config must be an object")
    agents_raw = config.get("agents")
    if not isinstance(agents_raw, list) or not agents_raw:
        raise ConfigError("cluster config must declare at least one agent")

    agents = [AgentSpec.from_dict(item, default_provider) for item in agents_raw]
    seen: set[str] = set()
    for agent in agents:
        if agent.id in seen:
            raise ConfigError(f"duplicate agent id {agent.id!r}")
        seen.add(agent.id)
    return agents


@dataclass
class Cluster:
    """One running instance of a multi-agent workflow."""

    id: str
    created_at: datetime
    agents: list[AgentSpec]
    state: ClusterState = ClusterState.PENDING
    config: dict = field(default_factory=dict)

    @property
    def is_terminal(self) -> bool:
        return self.state.is_terminal

    def can_transition(self, new_state: ClusterState) -> bool:
        return new_state in _TRANSITIONS[self.state]

    def transition(self, new_state: ClusterState) -> None:
        """Move to ``new_state``; raises ValueError if not allowed."""
        if not self.can_transition(new_state):
            raise ValueError(
                f"Cluster {self.id}: illegal transition {self.state.value} -> {new_state.value}"
            )
        self.state = new_state

    def get_agent(self, agent_id: str) -> AgentSpec | None:
        for agent in self.agents:
            if agent.id == agent_id:
                return agent
        return None

    def summary(self) -> dict:
        return {
            "id": self.id,
            "state": self.state.value,
            "created_at": self.created_at.isoformat(),
            "agents": [
                {"id": agent.id, "role": agent.role, "model": agent.model}
                for agent in self.agents
            ],
        }


@dataclass
class AgentRuntimeState:
    """Mutable per-agent state, owned by the cluster's dispatcher."""

    iteration: int = 0
    last_state: AgentState = AgentState.IDLE
    processed_trigger_ids: set[int] = field(default_factory=set)
    _claim_lock: threading.Lock = field(
        default_factory=threading.Lock, repr=False, compare=False
    )

    def claim(self, event_id: int) -> bool:
        """Record ``event_id`` as handled; False if it already was."""
        with self._claim_lock:
            if event_id in self.processed_trigger_ids:
                return False
            self.processed_trigger_ids.add(event_id)
            return True
