"""Recover a structured result from an agent's streaming log.

Agent CLIs emit newline-delimited JSON envelopes whose shape depends on the
provider. When several agents share a terminal or log, every line may carry a
multiplexing prefix such as ``validator    | `` or ``[1700000000000]validator| ``.

Extraction scans the log line by line: strip the prefix, parse the envelope,
ask the provider adapter for a candidate payload, and try to parse that payload
as a JSON object. The last object that parses wins. Nothing in here raises on
malformed input; a missing result is reported as None.
"""

import json
import re
from dataclasses import dataclass
from typing import Any, Protocol

# Optional "[<millis>]" then "<name><spaces>|<space>"; either part may be absent.
_PREFIX_RE = re.compile(r"^(?:\[\d+\])?(?:[^\s|{\[\"][^|{\"]*?\s*\|\s?)?")
_FENCE_RE = re.compile(r"^```(?:json)?\s*(.*?)\s*```$", re.DOTALL)


@dataclass(frozen=True)
class Candidate:
    """Text payload pulled out of one envelope."""

    text: str
    delta: bool = False


class IProviderAdapter(Protocol):
    """Knows one provider's streaming envelope format."""

    def matches(self, provider: str) -> bool:
        """True if this adapter handles ``provider``."""
        ...

    def extract_candidate(self, envelope: dict) -> Candidate | None:
        """Return the payload carried by ``envelope``, if any."""
        ...


class GeminiStreamAdapter:
    """``{"type": "message", "role": "assistant", "content": "...", "delta": true}``"""

    names = frozenset({"google", "gemini"})

    def matches(self, provider: str) -> bool:
        return provider in self.names

    def extract_candidate(self, envelope: dict) -> Candidate | None:
        if envelope.get("type") != "message" or envelope.get("role") != "assistant":
            return None
        content = envelope.get("content")
        if not isinstance(content, str):
            return None
        return Candidate(content, delta=envelope.get("delta") is True)


class OpencodeAdapter:
    """``{"type": "text", "part": {"type": "text", "text": "..."}}``"""

    def matches(self, provider: str) -> bool:
        return provider == "opencode"

    def extract_candidate(self, envelope: dict) -> Candidate | None:
        if envelope.get("type") != "text":
            return None
        part = envelope.get("part")
        if not isinstance(part, dict) or part.get("type") != "text":
            return None
        text = part.get("text")
        return Candidate(text) if isinstance(text, str) else None


class ClaudeStreamAdapter:
    """Claude CLI ``stream-json``: assistant text blocks and the final result."""

    def matches(self, provider: str) -> bool:
        return provider in ("claude", "anthropic")

    def extract_candidate(self, envelope: dict) -> Candidate | None:
        kind = envelope.get("type")
        if kind == "result":
            structured = envelope.get("structured_output")
            if isinstance(structured, dict):
                return Candidate(json.dumps(structured))
            result = envelope.get("result")
            return Candidate(result) if isinstance(result, str) else None
        if kind == "assistant":
            message = envelope.get("message")
            blocks = message.get("content") if isinstance(message, dict) else None
            if not isinstance(blocks, list):
                return None
            texts = [
                block["text"]
                for block in blocks
                if isinstance(block, dict)
                and block.get("type") == "text"
                and isinstance(block.get("text"), str)
            ]
            return Candidate("".join(texts)) if texts else None
        return None


class CodexAdapter:
    """Codex ``exec --json``: completed ``agent_message`` items."""

    def matches(self, provider: str) -> bool:
        return provider in ("codex", "openai")

    def extract_candidate(self, envelope: dict) -> Candidate | None:
        if envelope.get("type") != "item.completed":
            return None
        item = envelope.get("item")
        if not isinstance(item, dict) or item.get("type") != "agent_message":
            return None
        text = item.get("text")
        return Candidate(text) if isinstance(text, str) else None


ADAPTERS: list[IProviderAdapter] = [
    ClaudeStreamAdapter(),
    GeminiStreamAdapter(),
    OpencodeAdapter(),
    CodexAdapter(),
]


def _adapters_for(provider: Any) -> list[IProviderAdapter]:
    name = str(getattr(provider, "value", provider) or "").lower()
    matching = [adapter for adapter in ADAPTERS if adapter.matches(name)]
    return matching or list(ADAPTERS)


def strip_log_prefix(line: str) -> str:
    """Remove a leading ``[millis]name | `` style prefix, if present."""
    return _PREFIX_RE.sub("", line, count=1)


def _parse_object(text: str) -> dict | None:
    text = text.strip()
    if not text:
        return None
    fenced = _FENCE_RE.match(text)
    if fenced:
        text = fenced.group(1)
    if not text.startswith("{"):
        return None
    try:
        value = json.loads(text)
    except ValueError:
        return None
    return value if isinstance(value, dict) else None


def _parse_buffer(buffer: str) -> dict | None:
    parsed = _parse_object(buffer)
    if parsed is not None:
        return parsed
    # Streamed replies may wrap the object in prose or a fence
    start, end = buffer.find("{"), buffer.rfind("}")
    if start == -1 or end < start:
        return None
    return _parse_object(buffer[start : end + 1])


def _iter_candidates(raw_output: str | None, provider: Any):
    if not raw_output:
        return
    adapters = _adapters_for(provider)
    for raw_line in raw_output.splitlines():
        line = strip_log_prefix(raw_line.strip()).strip()
        if not line.startswith("{"):
            continue
        try:
            envelope = json.loads(line)
        except ValueError:
            continue
        if not isinstance(envelope, dict):
            continue
        for adapter in adapters:
            candidate = adapter.extract_candidate(envelope)
            if candidate is not None:
                yield candidate
                break


def extract_json_from_output(raw_output: str | None, provider: Any) -> dict | None:
    """Return the last JSON object recoverable from ``raw_output``.

    A candidate that parses on its own replaces the current result. Delta
    chunks that do not parse alone are concatenated and the buffer is
    re-parsed after every chunk; a complete buffer also replaces the result.
    """
    result: dict | None = None
    buffer = ""

    for candidate in _iter_candidates(raw_output, provider):
        parsed = _parse_object(candidate.text)
        if parsed is not None:
            result = parsed
            buffer = ""
            continue

        if candidate.delta:
            buffer += candidate.text
            parsed = _parse_buffer(buffer)
            if parsed is not None:
                result = parsed
                buffer = ""
        else:
            buffer = ""

    return result


def extract_text_from_output(raw_output: str | None, provider: Any) -> str:
    """Return the assistant text carried by ``raw_output``.

    Used for agents whose output format is plain text. Consecutive deltas are
    joined; complete messages are separated by newlines.
    """
    parts: list[str] = []
    for candidate in _iter_candidates(raw_output, provider):
        if candidate.delta and parts:
            parts[-1] += candidate.text
        else:
            parts.append(candidate.text)
    return "\n".join(part for part in parts if part.strip()).strip()
