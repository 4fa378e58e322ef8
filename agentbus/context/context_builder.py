"""Assemble the context handed to an agent invocation.

The context is built from the cluster's bus history: the event that triggered
the run, the history selected by the agent's context sources, and for
validators the criteria earlier runs could not verify. Bus content is written
by agents and is not trusted to be well formed; rendering degrades to omission
instead of raising.
"""

import json
from collections.abc import Mapping
from datetime import datetime
from typing import Any

from ..event_bus import IEventBus
from ..logging_config import get_logger
from ..models import (
    CriteriaResult,
    LifecycleEvent,
    OutputFormat,
    SinceMode,
    Topic,
    collect_cannot_validate,
)

logger = get_logger(__name__)

VALIDATOR_ROLE = "validator"
MAX_DATA_CHARS = 4000


def _field(obj: Any, name: str) -> Any:
    if isinstance(obj, Mapping):
        return obj.get(name)
    return getattr(obj, name, None)


def _format_ts(value: Any) -> str:
    if isinstance(value, datetime):
        return value.strftime("%H:%M:%S")
    return str(value) if value is not None else "?"


def _render_event(event: Any) -> str:
    content = _field(event, "content")
    if not isinstance(content, Mapping):
        content = {}
    lines = [
        f"[{_format_ts(_field(event, 'timestamp'))}] "
        f"{_field(event, 'sender') or 'unknown'} -> {_field(event, 'topic') or '?'}"
    ]
    text = content.get("text")
    if isinstance(text, str) and text.strip():
        lines.append(text.strip())
    data = content.get("data")
    if data not in (None, {}, []):
        try:
            rendered = json.dumps(data, indent=2, default=str)
        except (TypeError, ValueError):
            rendered = str(data)
        if len(rendered) > MAX_DATA_CHARS:
            rendered = rendered[:MAX_DATA_CHARS] + "\n... (truncated)"
        lines.extend(["```json", rendered, "```"])
    return "\n".join(lines)


def _last_task_end(event_bus: IEventBus, cluster: Any, agent_id: str) -> datetime | None:
    lifecycle = event_bus.query(
        cluster_id=_field(cluster, "id"),
        topic=Topic.AGENT_LIFECYCLE,
        since=_field(cluster, "created_at"),
    )
    last = None
    for event in lifecycle:
        data = _field(_field(event, "content") or {}, "data")
        if (
            isinstance(data, Mapping)
            and data.get("agent") == agent_id
            and data.get("event") == LifecycleEvent.TASK_COMPLETED
        ):
            last = _field(event, "timestamp")
    return last


def _render_sources(agent_id: str, config: Any, event_bus: IEventBus, cluster: Any) -> list[str]:
    sections = []
    for source in getattr(config, "context_sources", ()) or ():
        events = event_bus.query(
            cluster_id=_field(cluster, "id"),
            topic=source.topic,
            sender=source.sender,
            since=_field(cluster, "created_at"),
        )
        if source.since is SinceMode.LAST_TASK_END:
            boundary = _last_task_end(event_bus, cluster, agent_id)
            if boundary is not None:
                events = [e for e in events if _field(e, "timestamp") > boundary]
        if source.limit:
            events = events[-source.limit:]
        if not events:
            continue
        body = "\n\n".join(_render_event(event) for event in events)
        sections.append(f"## Messages: {source.topic}\n\n{body}")
    return sections


def render_cannot_validate_section(criteria: list[CriteriaResult]) -> str:
    """Render the skip list for criteria earlier runs could not verify."""
    if not criteria:
        return ""
    lines = [
        "## Previously Unverifiable Criteria",
        "",
        "Earlier validation runs in this cluster could not verify these criteria:",
        "",
    ]
    lines.extend(f"- **{item.id}**: {item.display_reason}" for item in criteria)
    lines.extend(
        [
            "",
            "Do NOT re-attempt verifying these criteria. The environment has not "
            "changed, so the attempt would fail the same way. Report them again "
            "as CANNOT_VALIDATE with the same reason and focus on the remaining "
            "criteria.",
        ]
    )
    return "\n".join(lines)


def _render_output_instructions(config: Any) -> str:
    if getattr(config, "output_format", OutputFormat.JSON) is not OutputFormat.JSON:
        return ""
    lines = [
        "## Output Format",
        "",
        "Respond with a single JSON object and nothing else.",
    ]
    schema = getattr(config, "json_schema", None)
    if isinstance(schema, Mapping):
        lines.extend(
            [
                "It must validate against this JSON schema:",
                "```json",
                json.dumps(schema, indent=2),
                "```",
            ]
        )
    return "\n".join(lines)


def build_context(
    id: str,
    role: str,
    iteration: int,
    config: Any,
    event_bus: IEventBus,
    cluster: Any,
    triggering_event: Any = None,
) -> str:
    """Build the context text for one agent invocation."""
    sections = [f"# Agent: {id} (role: {role}, iteration {iteration})"]

    if triggering_event is not None:
        sections.append("## Triggering Message\n\n" + _render_event(triggering_event))

    sections.extend(_render_sources(id, config, event_bus, cluster))

    if role == VALIDATOR_ROLE:
        validations = event_bus.query(
            cluster_id=_field(cluster, "id"),
            topic=Topic.VALIDATION_RESULT,
            since=_field(cluster, "created_at"),
        )
        criteria = collect_cannot_validate(validations)
        if criteria:
            logger.debug(
                "Injecting %s unverifiable criteria into context for %s",
                len(criteria),
                id,
            )
            sections.append(render_cannot_validate_section(criteria))

    instructions = _render_output_instructions(config)
    if instructions:
        sections.append(instructions)

    return "\n\n".join(sections) + "\n"
