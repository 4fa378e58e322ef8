"""Test doubles shared across the suite."""

import asyncio
import json
from dataclasses import dataclass
from pathlib import Path

from agentbus.preflight import PreflightResult
from agentbus.runner import RunResult


def claude_result(data: dict) -> str:
    """One Claude stream-json result envelope carrying ``data``."""
    return json.dumps({"type": "result", "subtype": "success", "result": json.dumps(data)})


def classifier_config(**overrides) -> dict:
    """Single-agent config: ISSUE_OPENED -> classifier -> CLASSIFICATION_DONE."""
    agent = {
        "id": "classifier",
        "role": "planner",
        "model": "sonnet",
        "prompt": "Classify: {{ISSUE_OPENED.content.text}}",
        "provider": "claude",
        "triggers": [{"topic": "ISSUE_OPENED", "action": "execute_task"}],
        "hooks": {
            "onComplete": {
                "action": "publish_message",
                "config": {
                    "topic": "CLASSIFICATION_DONE",
                    "content": {"text": "classified", "data": {"result": "{{result}}"}},
                },
            }
        },
    }
    agent.update(overrides)
    return {"agents": [agent]}


@dataclass
class FakeRun:
    """Scripted outcome of one agent run."""

    output: str = ""
    exit_code: int = 0
    error: BaseException | None = None
    block: bool = False
    delay: float = 0.0


class FakeRunner:
    """IAgentRunner that replays scripted runs per agent id.

    The last scripted run of an agent repeats once the others are used up.
    """

    def __init__(self, log_dir: Path):
        self.log_dir = Path(log_dir)
        self.calls: list[dict] = []
        self.scripts: dict[str, list[FakeRun]] = {}
        self.started = asyncio.Event()
        self.cancelled = 0

    def script(self, agent_id: str, *runs: FakeRun) -> None:
        self.scripts[agent_id] = list(runs)

    def _next_run(self, agent_id: str) -> FakeRun:
        runs = self.scripts.get(agent_id) or [FakeRun(output=claude_result({}))]
        return runs.pop(0) if len(runs) > 1 else runs[0]

    async def run(self, command, args, env, timeout) -> RunResult:
        agent_id = env.get("AGENTBUS_AGENT_ID", "")
        self.calls.append(
            {"agent": agent_id, "command": command, "args": list(args), "timeout": timeout}
        )
        self.started.set()
        run = self._next_run(agent_id)

        if run.block:
            try:
                await asyncio.Event().wait()
            except asyncio.CancelledError:
                self.cancelled += 1
                raise
        if run.delay:
            await asyncio.sleep(run.delay)
        if run.error is not None:
            raise run.error

        self.log_dir.mkdir(parents=True, exist_ok=True)
        log_path = self.log_dir / f"{agent_id}-{len(self.calls)}.log"
        log_path.write_text(run.output, encoding="utf-8")
        return RunResult(exit_code=run.exit_code, log_path=log_path)


def passing_preflight(options) -> PreflightResult:
    return PreflightResult(valid=True)
