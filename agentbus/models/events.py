"""Event-related data models."""

from dataclasses import dataclass, field
from datetime import datetime


class Topic:
    """Topics interpreted by the orchestrator core.

    Any string is a valid topic; these are the ones with built-in meaning.
    """

    ISSUE_OPENED = "ISSUE_OPENED"
    AGENT_LIFECYCLE = "AGENT_LIFECYCLE"
    AGENT_ERROR = "AGENT_ERROR"
    AGENT_OUTPUT = "AGENT_OUTPUT"
    VALIDATION_RESULT = "VALIDATION_RESULT"
    CLUSTER_COMPLETE = "CLUSTER_COMPLETE"
    CLUSTER_FAILED = "CLUSTER_FAILED"


class LifecycleEvent:
    """Values of ``content.data.event`` on AGENT_LIFECYCLE events."""

    STARTED = "STARTED"
    TASK_STARTED = "TASK_STARTED"
    TASK_COMPLETED = "TASK_COMPLETED"


@dataclass(frozen=True)
class Event:
    """An immutable record on the event bus."""

    id: int
    cluster_id: str
    topic: str
    sender: str
    timestamp: datetime
    content: dict = field(default_factory=dict)  # {"text"?: str, "data"?: Any}

    @property
    def text(self) -> str | None:
        text = self.content.get("text")
        return text if isinstance(text, str) else None

    @property
    def data(self):
        return self.content.get("data")

    def to_dict(self) -> dict:
        return {
            "id": self.id,
            "cluster_id": self.cluster_id,
            "topic": self.topic,
            "sender": self.sender,
            "timestamp": self.timestamp.isoformat(),
            "content": self.content,
        }
