"""Markdown export of a cluster's run."""

from collections.abc import Iterable
from datetime import datetime, timezone

from .models import (
    Cluster,
    Event,
    LifecycleEvent,
    Topic,
    ValidationResult,
    collect_cannot_validate,
)


def _format_duration(start: datetime, end: datetime) -> str:
    seconds = max(int((end - start).total_seconds()), 0)
    minutes, seconds = divmod(seconds, 60)
    hours, minutes = divmod(minutes, 60)
    if hours:
        return f"{hours}h {minutes}m {seconds}s"
    if minutes:
        return f"{minutes}m {seconds}s"
    return f"{seconds}s"


def _event_summary(event: Event) -> str:
    data = event.data if isinstance(event.data, dict) else {}
    if event.topic == Topic.AGENT_LIFECYCLE:
        kind = data.get("event")
        if kind == LifecycleEvent.TASK_STARTED:
            return f"task #{data.get('iteration')} started ({data.get('model') or 'default model'})"
        if kind == LifecycleEvent.TASK_COMPLETED:
            return f"task #{data.get('iteration')} completed"
        if kind == LifecycleEvent.STARTED:
            return f"listening for: {', '.join(data.get('triggers') or []) or 'none'}"
        return str(kind or "lifecycle")
    text = event.text or ""
    first_line = text.strip().splitlines()[0] if text.strip() else ""
    return first_line[:120]


def export_markdown(cluster: Cluster, events: Iterable[Event]) -> str:
    """Render a cluster's history as Markdown."""
    events = list(events)
    end = events[-1].timestamp if events else datetime.now(timezone.utc)

    lines = [
        f"# Cluster {cluster.id}",
        "",
        f"- **State:** {cluster.state.value}",
        f"- **Created:** {cluster.created_at.isoformat()}",
        f"- **Duration:** {_format_duration(cluster.created_at, end)}",
        f"- **Agents:** {', '.join(agent.id for agent in cluster.agents)}",
        f"- **Messages:** {len(events)}",
    ]

    issue = next((e for e in events if e.topic == Topic.ISSUE_OPENED), None)
    if issue is not None and issue.text:
        lines.extend(["", "## Task", "", issue.text.strip()])

    validations = [e for e in events if e.topic == Topic.VALIDATION_RESULT]
    if validations:
        latest = ValidationResult.from_data(validations[-1].data)
        lines.extend(["", "## Validation", ""])
        if latest is None:
            lines.append("Latest validation result could not be read.")
        else:
            verdict = "✓ APPROVED" if latest.approved else "✗ REJECTED"
            lines.append(f"**{verdict}** (by {validations[-1].sender})")
            if latest.summary:
                lines.extend(["", latest.summary])

    unverifiable = collect_cannot_validate(validations)
    if unverifiable:
        count = len(unverifiable)
        noun = "criterion" if count == 1 else "criteria"
        lines.extend(
            [
                "",
                f"### ⚠️ Could Not Validate ({count} {noun})",
                "",
                "These criteria were not verified. Check them manually:",
                "",
            ]
        )
        lines.extend(f"- **{item.id}**: {item.display_reason}" for item in unverifiable)

    errors = [e for e in events if e.topic == Topic.AGENT_ERROR]
    if errors:
        lines.extend(["", "## Agent Errors", ""])
        for error in errors:
            lines.append(f"- **{error.sender}**: {error.text or 'unknown error'}")

    terminal = next(
        (e for e in reversed(events) if e.topic in (Topic.CLUSTER_COMPLETE, Topic.CLUSTER_FAILED)),
        None,
    )
    if terminal is not None:
        reason = terminal.data.get("reason") if isinstance(terminal.data, dict) else None
        heading = "Completed" if terminal.topic == Topic.CLUSTER_COMPLETE else "Failed"
        lines.extend(["", f"## {heading}", ""])
        lines.append(reason or terminal.text or terminal.topic)

    if events:
        lines.extend(["", "## Timeline", ""])
        for event in events:
            if event.topic == Topic.AGENT_OUTPUT:
                continue
            summary = _event_summary(event)
            stamp = event.timestamp.strftime("%H:%M:%S")
            entry = f"- `{stamp}` **{event.topic}** from {event.sender}"
            lines.append(f"{entry}: {summary}" if summary else entry)

    return "\n".join(lines) + "\n"
