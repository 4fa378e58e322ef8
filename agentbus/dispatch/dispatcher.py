"""Trigger and hook dispatch for one cluster."""

import asyncio
import contextvars
import os
import traceback
from pathlib import Path
from typing import Any, Callable, Coroutine

from jsonschema import Draft202012Validator
from jsonschema.exceptions import SchemaError

from ..config import Settings
from ..context import build_context
from ..errors import AgentTaskError, BusStorageError
from ..event_bus import IEventBus
from ..extraction import extract_json_from_output, extract_text_from_output
from ..logging_config import bind_context, get_logger
from ..models import (
    Action,
    AgentRuntimeState,
    AgentSpec,
    AgentState,
    Cluster,
    Event,
    LifecycleEvent,
    OutputFormat,
    Topic,
    Trigger,
)
from ..runner import IAgentRunner, build_agent_command
from .templates import TemplateResolver

logger = get_logger(__name__)

MAX_TRACE_LINES = 5
LOG_TAIL_LINES = 40

ContextBuilder = Callable[..., str]

# Action task on whose behalf the current code runs. Bus handlers inherit it
# from the publishing task.
_action_task: contextvars.ContextVar[asyncio.Task | None] = contextvars.ContextVar(
    "agentbus_action_task", default=None
)


def first_trace_lines(trace: str | None, limit: int = MAX_TRACE_LINES) -> str:
    """First ``limit`` non-blank lines of a failure trace."""
    if not trace:
        return ""
    lines = [line for line in trace.splitlines() if line.strip()]
    return "\n".join(lines[:limit])


def _read_log(path: Path) -> str:
    return Path(path).read_text(encoding="utf-8", errors="replace")


class ClusterDispatcher:
    """Matches bus events against agent triggers and runs the actions.

    One dispatcher owns the AgentRuntimeState of every agent in its cluster.
    Each claimed action runs on its own task; runs of the same agent are
    serialized.
    """

    def __init__(
        self,
        cluster: Cluster,
        event_bus: IEventBus,
        runner: IAgentRunner,
        settings: Settings | None = None,
        context_builder: ContextBuilder = build_context,
    ):
        self._cluster = cluster
        self._event_bus = event_bus
        self._runner = runner
        self._settings = settings or Settings()
        self._build_context = context_builder

        self._states: dict[str, AgentRuntimeState] = {
            agent.id: AgentRuntimeState() for agent in cluster.agents
        }
        self._agent_locks: dict[str, asyncio.Lock] = {
            agent.id: asyncio.Lock() for agent in cluster.agents
        }
        self._tasks: set[asyncio.Task] = set()
        self._closed = False
        self.fatal_error: BaseException | None = None

    @property
    def cluster(self) -> Cluster:
        return self._cluster

    @property
    def closed(self) -> bool:
        return self._closed

    @property
    def in_flight(self) -> int:
        return len(self._tasks)

    def agent_state(self, agent_id: str) -> AgentRuntimeState:
        return self._states[agent_id]

    async def announce(self) -> None:
        """Publish a STARTED lifecycle event for every agent."""
        for agent in self._cluster.agents:
            await self._publish_lifecycle(
                agent,
                LifecycleEvent.STARTED,
                {"role": agent.role, "triggers": agent.trigger_topics},
            )

    async def dispatch(self, event: Event) -> int:
        """Fire every trigger matching ``event``. Returns how many fired."""
        if self._closed or event.cluster_id != self._cluster.id:
            return 0

        fired = 0
        for agent in self._cluster.agents:
            trigger = next((t for t in agent.triggers if t.topic == event.topic), None)
            if trigger is None:
                continue
            state = self._states[agent.id]
            if not state.claim(event.id):
                logger.debug(
                    "Agent %s already handled %s #%s, skipping", agent.id, event.topic, event.id
                )
                continue

            fired += 1
            logger.info(
                "Trigger %s -> %s fired for agent %s",
                event.topic,
                trigger.action.value,
                agent.id,
                extra={"context": {"cluster_id": self._cluster.id, "event_id": event.id}},
            )
            self._spawn(self._run_action(agent, trigger, event))
        return fired

    async def close(self) -> None:
        """Stop dispatching and cancel in-flight actions.

        Called from a bus handler, the action that published the event being
        handled is left to finish on its own: it is blocked on this handler.
        """
        self._closed = True
        spared = {asyncio.current_task(), _action_task.get()}
        tasks = [task for task in self._tasks if task not in spared]
        for task in tasks:
            task.cancel()
        if tasks:
            await asyncio.gather(*tasks, return_exceptions=True)

    async def wait_idle(self) -> None:
        """Wait until no action task is running, including ones spawned meanwhile."""
        current = asyncio.current_task()
        while True:
            pending = [task for task in self._tasks if task is not current]
            if not pending:
                break
            await asyncio.gather(*pending, return_exceptions=True)
            # Let completed tasks run their done callbacks
            await asyncio.sleep(0)
        if self.fatal_error is not None:
            raise self.fatal_error

    def _spawn(self, coro: Coroutine[Any, Any, None]) -> None:
        task = asyncio.create_task(coro)
        self._tasks.add(task)
        task.add_done_callback(self._task_done)

    def _task_done(self, task: asyncio.Task) -> None:
        self._tasks.discard(task)
        if task.cancelled():
            return
        error = task.exception()
        if error is not None:
            logger.critical(
                "Dispatcher task for cluster %s failed: %s",
                self._cluster.id,
                error,
                exc_info=error,
            )
            if self.fatal_error is None:
                self.fatal_error = error

    async def _run_action(self, agent: AgentSpec, trigger: Trigger, event: Event) -> None:
        _action_task.set(asyncio.current_task())
        with bind_context(cluster_id=self._cluster.id, agent_id=agent.id):
            if trigger.action is Action.EXECUTE_TASK:
                await self._execute_task(agent, event)
            elif trigger.action is Action.PUBLISH_MESSAGE:
                await self._publish_message(agent, trigger.config or {}, event, {})

    def _resolver(self, agent: AgentSpec, event: Event, bindings: dict) -> TemplateResolver:
        def lookup(topic: str) -> Event | None:
            if event.topic == topic:
                return event
            matches = self._event_bus.query(cluster_id=self._cluster.id, topic=topic)
            return matches[-1] if matches else None

        base = {
            "cluster": {"id": self._cluster.id},
            "agent": {"id": agent.id, "role": agent.role},
            "iteration": self._states[agent.id].iteration,
            "triggering": event.to_dict(),
        }
        base.update(bindings)
        return TemplateResolver(lookup, base)

    async def _publish_message(
        self, agent: AgentSpec, config: dict, event: Event, bindings: dict
    ) -> Event:
        resolver = self._resolver(agent, event, bindings)
        topic = resolver.resolve(config.get("topic"))
        content = resolver.resolve(config.get("content") or {})
        resolver.warn_unresolved(f"publish_message of {agent.id}")
        if not isinstance(content, dict):
            content = {"text": str(content)}
        return await self._event_bus.publish(
            self._cluster.id, str(topic), agent.id, content
        )

    async def _publish_lifecycle(
        self, agent: AgentSpec, lifecycle_event: str, data: dict | None = None
    ) -> Event:
        payload = {"event": lifecycle_event, "agent": agent.id}
        payload.update(data or {})
        return await self._event_bus.publish(
            self._cluster.id,
            Topic.AGENT_LIFECYCLE,
            agent.id,
            {"data": payload},
        )

    async def _execute_task(self, agent: AgentSpec, event: Event) -> None:
        async with self._agent_locks[agent.id]:
            if self._closed:
                return
            state = self._states[agent.id]
            state.last_state = AgentState.STARTED
            state.iteration += 1
            iteration = state.iteration

            try:
                await self._publish_lifecycle(
                    agent,
                    LifecycleEvent.TASK_STARTED,
                    {"iteration": iteration, "model": agent.model, "triggeredBy": event.sender},
                )
                state.last_state = AgentState.TASK_STARTED
                result = await self._run_agent(agent, event, iteration)
            except asyncio.CancelledError:
                state.last_state = AgentState.IDLE
                raise
            except BusStorageError:
                state.last_state = AgentState.ERROR
                raise
            except Exception as e:
                state.last_state = AgentState.ERROR
                await self._publish_agent_error(agent, iteration, e)
                state.last_state = AgentState.IDLE
                return

            state.last_state = AgentState.TASK_COMPLETED
            completed = {"iteration": iteration}
            if agent.on_complete is None:
                completed["result"] = result
            await self._publish_lifecycle(agent, LifecycleEvent.TASK_COMPLETED, completed)

            if agent.on_complete is not None:
                await self._publish_message(
                    agent, agent.on_complete.config, event, {"result": result}
                )
            state.last_state = AgentState.IDLE

    async def _run_agent(self, agent: AgentSpec, event: Event, iteration: int) -> Any:
        resolver = self._resolver(agent, event, {})
        prompt = resolver.resolve(agent.prompt)
        resolver.warn_unresolved(f"prompt of {agent.id}")

        context = self._build_context(
            id=agent.id,
            role=agent.role,
            iteration=iteration,
            config=agent,
            event_bus=self._event_bus,
            cluster=self._cluster,
            triggering_event=event,
        )
        full_prompt = f"{context}\n## Task\n\n{prompt}\n"

        command, args = build_agent_command(agent, full_prompt)
        env = dict(os.environ)
        env.update({"AGENTBUS_CLUSTER_ID": self._cluster.id, "AGENTBUS_AGENT_ID": agent.id})
        timeout = agent.timeout or self._settings.agent_timeout

        logger.info(
            "Running agent %s iteration %s (%s/%s)",
            agent.id,
            iteration,
            agent.provider,
            agent.model or "default model",
        )
        run = await self._runner.run(command, args, env, timeout)

        try:
            output = await asyncio.to_thread(_read_log, run.log_path)
        except OSError as e:
            raise AgentTaskError(f"Could not read agent log {run.log_path}: {e}") from e

        await self._publish_output(agent, iteration, output)

        if run.exit_code != 0:
            tail = "\n".join(output.splitlines()[-LOG_TAIL_LINES:])
            raise AgentTaskError(
                f"Agent {agent.id} exited with code {run.exit_code}", trace=tail
            )

        if agent.output_format is OutputFormat.TEXT:
            return extract_text_from_output(output, agent.provider)

        result = extract_json_from_output(output, agent.provider)
        if result is None:
            tail = "\n".join(output.splitlines()[-LOG_TAIL_LINES:])
            raise AgentTaskError(
                f"Agent {agent.id} produced no parseable JSON output", trace=tail
            )

        if agent.json_schema:
            self._validate_schema(agent, result)
        return result

    async def _publish_output(self, agent: AgentSpec, iteration: int, output: str) -> None:
        """Republish the agent log on the bus, one AGENT_OUTPUT event per line."""
        for line in output.splitlines():
            if not line.strip():
                continue
            await self._event_bus.publish(
                self._cluster.id,
                Topic.AGENT_OUTPUT,
                agent.id,
                {
                    "text": line,
                    "data": {"line": line, "agent": agent.id, "iteration": iteration},
                },
            )

    def _validate_schema(self, agent: AgentSpec, result: dict) -> None:
        try:
            validator = Draft202012Validator(agent.json_schema)
            errors = sorted(validator.iter_errors(result), key=lambda err: list(err.path))
        except SchemaError as e:
            raise AgentTaskError(f"Agent {agent.id} has an invalid jsonSchema: {e.message}")
        if errors:
            details = "\n".join(
                f"{'/'.join(str(p) for p in err.path) or '<root>'}: {err.message}"
                for err in errors
            )
            raise AgentTaskError(
                f"Agent {agent.id} output does not match its jsonSchema", trace=details
            )

    async def _publish_agent_error(
        self, agent: AgentSpec, iteration: int, error: Exception
    ) -> None:
        if isinstance(error, AgentTaskError):
            trace = error.trace
        else:
            trace = "".join(traceback.format_exception(error))
        message = str(error) or type(error).__name__
        if isinstance(error, TimeoutError) and not str(error):
            message = f"Agent {agent.id} timed out"

        logger.error(
            "Agent %s iteration %s failed: %s",
            agent.id,
            iteration,
            message,
            extra={"context": {"cluster_id": self._cluster.id}},
        )
        await self._event_bus.publish(
            self._cluster.id,
            Topic.AGENT_ERROR,
            agent.id,
            {
                "text": message,
                "data": {
                    "agent": agent.id,
                    "role": agent.role,
                    "iteration": iteration,
                    "error": message,
                    "stack": first_trace_lines(trace),
                },
            },
        )
