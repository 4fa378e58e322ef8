"""Trigger/hook dispatch module."""

from .dispatcher import ClusterDispatcher, first_trace_lines
from .templates import TemplateResolver, unresolved_marker

__all__ = [
    "ClusterDispatcher",
    "TemplateResolver",
    "first_trace_lines",
    "unresolved_marker",
]
