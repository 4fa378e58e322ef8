"""``{{...}}`` template resolution against bindings and bus history.

A reference is a dot path. Its first segment is either a binding name
(``result``, ``cluster``, ...) or a topic, in which case the path is walked
through the most relevant event with that topic. A string consisting of one
reference is replaced by the raw value, so ``{"result": "{{result}}"}`` keeps
the result as an object. References that cannot be resolved render as
``<unresolved:KEY>`` and are collected in ``unresolved``.
"""

import json
import re
from collections.abc import Mapping
from typing import Any, Callable

from ..logging_config import get_logger
from ..models import Event

logger = get_logger(__name__)

_TOKEN_RE = re.compile(r"\{\{\s*([^{}]+?)\s*\}\}")

EventLookup = Callable[[str], Event | None]

_MISSING = object()


def unresolved_marker(key: str) -> str:
    return f"<unresolved:{key}>"


def _walk(value: Any, path: list[str]) -> Any:
    for segment in path:
        if isinstance(value, Mapping):
            if segment not in value:
                return _MISSING
            value = value[segment]
        elif isinstance(value, (list, tuple)) and segment.isdigit():
            index = int(segment)
            if index >= len(value):
                return _MISSING
            value = value[index]
        else:
            return _MISSING
    return value


def _stringify(value: Any) -> str:
    if isinstance(value, str):
        return value
    if value is None:
        return ""
    return json.dumps(value, default=str)


class TemplateResolver:
    """Resolves template references for one action invocation."""

    def __init__(self, lookup: EventLookup, bindings: Mapping[str, Any] | None = None):
        self._lookup = lookup
        self._bindings = dict(bindings or {})
        self.unresolved: list[str] = []

    def lookup(self, key: str) -> Any:
        """Resolve one dot path; returns the missing sentinel when absent."""
        head, *rest = key.split(".")
        if head in self._bindings:
            return _walk(self._bindings[head], rest)
        event = self._lookup(head)
        if event is None:
            return _MISSING
        return _walk(event.to_dict(), rest)

    def _resolve_string(self, template: str) -> Any:
        whole = _TOKEN_RE.fullmatch(template.strip())
        if whole:
            key = whole.group(1)
            value = self.lookup(key)
            if value is _MISSING:
                self.unresolved.append(key)
                return unresolved_marker(key)
            return value

        def substitute(match: re.Match) -> str:
            key = match.group(1)
            value = self.lookup(key)
            if value is _MISSING:
                self.unresolved.append(key)
                return unresolved_marker(key)
            return _stringify(value)

        return _TOKEN_RE.sub(substitute, template)

    def resolve(self, value: Any) -> Any:
        """Resolve every template string inside ``value``."""
        if isinstance(value, str):
            return self._resolve_string(value)
        if isinstance(value, Mapping):
            return {key: self.resolve(item) for key, item in value.items()}
        if isinstance(value, list):
            return [self.resolve(item) for item in value]
        return value

    def warn_unresolved(self, where: str) -> None:
        if self.unresolved:
            logger.warning(
                "Unresolved template keys in %s: %s",
                where,
                ", ".join(sorted(set(self.unresolved))),
            )
