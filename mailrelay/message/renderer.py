# mailrelay/message/renderer.py
from __future__ import annotations

import logging
import re
import warnings
from dataclasses import dataclass
from typing import IO, Any

from bs4 import BeautifulSoup, MarkupResemblesLocatorWarning
from markdownify import ATX, MarkdownConverter

from .errors import RenderError
from .extractor import CanonicalBody, extract_body

logger = logging.getLogger(__name__)

# <br>, <BR>, <br/>, <br />, <BR /> ...
_BREAK_RE = re.compile(r"<br\s*/?>", re.IGNORECASE)
_TAG_RE = re.compile(r"(<[^>]*>)")
_EXTRA_BLANK_LINES_RE = re.compile(r"\n{3,}")

# Stand-in for source line breaks while markdownify collapses text whitespace.
_LINE = "\ue000"
_LINE_RE = re.compile(rf"[ \t]*{_LINE}[ \t]*")


@dataclass(frozen=True)
class RenderedOutput:
    html_form: str
    plain_form: str

    def for_destination(self, wants_markdown: bool) -> str:
        return self.plain_form if wants_markdown else self.html_form


def _wrap_inline(text: str, marker: str) -> str:
    if not text or not text.strip():
        return text
    prefix = " " if text[0].isspace() else ""
    suffix = " " if text[-1].isspace() else ""
    return f"{prefix}{marker}{text.strip()}{marker}{suffix}"


class _RelayConverter(MarkdownConverter):
    """markdownify with `_italic_` emphasis; bold stays `**bold**`."""

    def convert_em(self, el, text, *args, **kwargs):
        return _wrap_inline(text, "_")

    convert_i = convert_em


def _converter() -> MarkdownConverter:
    return _RelayConverter(
        heading_style=ATX,
        strong_em_symbol="*",
        escape_asterisks=False,
        escape_underscores=False,
        escape_misc=False,
    )


def normalize_breaks(text: str) -> str:
    """Replace every <br> variant with a single linefeed."""
    return _BREAK_RE.sub("\n", text)


def _protect_line_breaks(text: str) -> str:
    """
    Swap linefeeds inside text runs for a placeholder so the converter keeps
    them. Whitespace-only runs between two tags are layout and become a space.
    """
    pieces = _TAG_RE.split(text)
    out: list[str] = []
    for i, piece in enumerate(pieces):
        if i % 2 or "\n" not in piece:
            out.append(piece)
        elif not piece.strip() and 0 < i < len(pieces) - 1:
            out.append(" ")
        else:
            out.append(piece.replace("\n", _LINE))
    return "".join(out)


def to_markdown(text: str) -> str:
    """
    Convert HTML-ish text to markdown. Each <br> becomes one linefeed, like in
    normalize_breaks. Text without other tags or entities is returned with
    only its breaks replaced.

    Raises:
        RenderError: the conversion failed.
    """
    prepared = _protect_line_breaks(_BREAK_RE.sub(_LINE, text))
    try:
        with warnings.catch_warnings():
            warnings.simplefilter("ignore", MarkupResemblesLocatorWarning)
            soup = BeautifulSoup(prepared, "html.parser")
        if soup.get_text() == prepared:
            return prepared.replace(_LINE, "\n")
        converted = _converter().convert_soup(soup)
    except Exception as e:
        raise RenderError(f"markdown conversion failed: {e}") from e

    converted = _LINE_RE.sub("\n", converted)
    return _EXTRA_BLANK_LINES_RE.sub("\n\n", converted)


def render_body(body: CanonicalBody) -> RenderedOutput:
    content = body.content.replace("\r\n", "\n")
    out = RenderedOutput(
        html_form=normalize_breaks(content).strip(),
        plain_form=to_markdown(content).strip(),
    )
    logger.debug(
        "rendered body (html=%s): %d chars html, %d chars markdown",
        body.is_html,
        len(out.html_form),
        len(out.plain_form),
    )
    return out


def process_message(raw: bytes | str | IO[Any]) -> RenderedOutput:
    """Extract the body of a raw message and render both forms."""
    return render_body(extract_body(raw))
