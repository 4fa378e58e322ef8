"""Output extraction module."""

from .output_extraction import (
    ADAPTERS,
    Candidate,
    ClaudeStreamAdapter,
    CodexAdapter,
    GeminiStreamAdapter,
    IProviderAdapter,
    OpencodeAdapter,
    extract_json_from_output,
    extract_text_from_output,
    strip_log_prefix,
)

__all__ = [
    "ADAPTERS",
    "Candidate",
    "ClaudeStreamAdapter",
    "CodexAdapter",
    "GeminiStreamAdapter",
    "IProviderAdapter",
    "OpencodeAdapter",
    "extract_json_from_output",
    "extract_text_from_output",
    "strip_log_prefix",
]
