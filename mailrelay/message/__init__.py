"""
Message body extraction and rendering.

Public API:
    process_message(raw) -> RenderedOutput(html_form, plain_form)
"""

from __future__ import annotations

from .errors import MessageError, NoContentError, ParseError, RenderError
from .extractor import CanonicalBody, extract_body
from .renderer import RenderedOutput, normalize_breaks, process_message, render_body, to_markdown

__all__ = [
    "CanonicalBody",
    "MessageError",
    "NoContentError",
    "ParseError",
    "RenderError",
    "RenderedOutput",
    "extract_body",
    "normalize_breaks",
    "process_message",
    "render_body",
    "to_markdown",
]
