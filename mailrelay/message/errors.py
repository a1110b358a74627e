from __future__ import annotations


class MessageError(ValueError):
    """Base class for failures while turning raw message bytes into text."""


class ParseError(MessageError):
    """Raw bytes are not a well-formed message, or a part could not be read."""


class NoContentError(MessageError):
    """The message has no text/plain or text/html part."""


class RenderError(MessageError):
    """Markup-to-markdown conversion failed."""
