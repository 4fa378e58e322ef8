"""Exception types raised by agentbus."""


class AgentBusError(Exception):
    """Base class for agentbus errors."""


class BusStorageError(AgentBusError):
    """The durable event log could not be written or read."""


class ConfigError(AgentBusError, ValueError):
    """A cluster configuration is invalid."""


class ClusterNotFoundError(AgentBusError, KeyError):
    """No cluster with the given id is known to the orchestrator."""

    def __str__(self) -> str:
        return f"Cluster not found: {self.args[0]}" if self.args else "Cluster not found"


class PreflightError(AgentBusError):
    """Preflight checks failed; no cluster may start."""

    def __init__(self, errors: list[str], warnings: list[str] | None = None):
        self.errors = list(errors)
        self.warnings = list(warnings or [])
        super().__init__("PREFLIGHT CHECK FAILED\n\n" + "\n\n".join(self.errors))


class AgentTaskError(AgentBusError):
    """An agent invocation failed; carries the trace shown in AGENT_ERROR."""

    def __init__(self, message: str, trace: str | None = None):
        super().__init__(message)
        self.trace = trace
