"""Agent process runner module."""

from .commands import build_agent_command
from .subprocess_runner import IAgentRunner, RunResult, SubprocessRunner

__all__ = ["IAgentRunner", "RunResult", "SubprocessRunner", "build_agent_command"]
