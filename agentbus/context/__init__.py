"""Context assembly module."""

from .context_builder import build_context, render_cannot_validate_section

__all__ = ["build_context", "render_cannot_validate_section"]
