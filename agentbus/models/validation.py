"""Validation results and CANNOT_VALIDATE bookkeeping.

Validators publish ``VALIDATION_RESULT`` events whose ``content.data`` holds a
ValidationResult. A criterion with status ``CANNOT_VALIDATE`` does not block the
workflow, but it has to stay visible: in the export and in the context handed
to later validator runs. Everything here reads untrusted agent output, so the
helpers never raise on malformed input.
"""

from collections.abc import Iterable, Mapping
from dataclasses import dataclass, field
from enum import Enum
from typing import Any

NO_REASON = "No reason provided"


class CriteriaStatus(str, Enum):
    """Outcome of a single acceptance criterion."""

    PASS = "PASS"
    FAIL = "FAIL"
    CANNOT_VALIDATE = "CANNOT_VALIDATE"


@dataclass
class CriteriaResult:
    """Verdict for one acceptance criterion."""

    id: str
    status: CriteriaStatus
    evidence: Any = None
    reason: str | None = None

    @property
    def display_reason(self) -> str:
        return self.reason or NO_REASON

    @classmethod
    def from_dict(cls, raw: Any) -> "CriteriaResult | None":
        """Parse one criteriaResults entry; None when it is unusable."""
        if not isinstance(raw, Mapping):
            return None
        criterion_id = raw.get("id")
        if criterion_id is None or criterion_id == "":
            return None
        try:
            status = CriteriaStatus(raw.get("status"))
        except ValueError:
            return None
        reason = raw.get("reason")
        return cls(
            id=str(criterion_id),
            status=status,
            evidence=raw.get("evidence"),
            reason=reason if isinstance(reason, str) and reason.strip() else None,
        )


@dataclass
class ValidationResult:
    """Structured output of a validator agent."""

    approved: bool
    summary: str | None = None
    criteria_results: list[CriteriaResult] = field(default_factory=list)

    @classmethod
    def from_data(cls, data: Any) -> "ValidationResult | None":
        """Parse ``content.data`` of a VALIDATION_RESULT event."""
        if not isinstance(data, Mapping):
            return None
        approved = data.get("approved")
        summary = data.get("summary")
        return cls(
            approved=approved is True or approved == "true",
            summary=summary if isinstance(summary, str) else None,
            criteria_results=parse_criteria_results(data.get("criteriaResults")),
        )


def parse_criteria_results(raw: Any) -> list[CriteriaResult]:
    """Parse a criteriaResults value, dropping anything malformed."""
    if not isinstance(raw, list):
        return []
    parsed = (CriteriaResult.from_dict(item) for item in raw)
    return [item for item in parsed if item is not None]


def _event_data(event: Any) -> Any:
    # Events may arrive as Event objects or as plain mappings
    if isinstance(event, Mapping):
        content = event.get("content")
    else:
        content = getattr(event, "content", None)
    if not isinstance(content, Mapping):
        return None
    return content.get("data")


def collect_cannot_validate(events: Iterable[Any]) -> list[CriteriaResult]:
    """Return CANNOT_VALIDATE criteria across events, deduplicated by id.

    The first occurrence of each id is kept and order of first appearance is
    preserved.
    """
    seen: dict[str, CriteriaResult] = {}
    for event in events or ():
        data = _event_data(event)
        if not isinstance(data, Mapping):
            continue
        for criterion in parse_criteria_results(data.get("criteriaResults")):
            if criterion.status is not CriteriaStatus.CANNOT_VALIDATE:
                continue
            seen.setdefault(criterion.id, criterion)
    return list(seen.values())
