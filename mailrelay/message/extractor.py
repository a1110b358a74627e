# mailrelay/message/extractor.py
from __future__ import annotations

import logging
from dataclasses import dataclass
from email import errors as email_errors
from email.message import EmailMessage
from email.parser import BytesParser
from email.policy import default
from typing import IO, Any

from .errors import NoContentError, ParseError

logger = logging.getLogger(__name__)

PLAIN = "text/plain"
HTML = "text/html"

# Defects the stdlib parser tolerates but that mean the message is not usable.
_FATAL_DEFECTS = (
    email_errors.MissingHeaderBodySeparatorDefect,
    email_errors.StartBoundaryNotFoundDefect,
    email_errors.CloseBoundaryNotFoundDefect,
    email_errors.NoBoundaryInMultipartDefect,
    email_errors.MultipartInvariantViolationDefect,
)


@dataclass(frozen=True)
class CanonicalBody:
    """The single text body chosen to represent a message."""

    content: str
    is_html: bool = False


def extract_body(raw: bytes | str | IO[Any]) -> CanonicalBody:
    """
    Parse a complete RFC 5322 message and pick its body.

    Single-part messages: the whole body, HTML only if declared text/html.
    Multipart messages: direct children are scanned in order; the first
    text/html part wins outright, otherwise text/plain parts are joined.

    Raises:
        ParseError: malformed message or unreadable body.
        NoContentError: multipart message without a plain/HTML part.
    """
    msg = _parse(_as_bytes(raw))

    if not msg.is_multipart():
        body = CanonicalBody(_read_text(msg), is_html=msg.get_content_type() == HTML)
        logger.debug("single-part body (%s, %d chars)", msg.get_content_type(), len(body.content))
        return body

    chosen: CanonicalBody | None = None
    for part in msg.iter_parts():
        ctype = part.get_content_type()
        if ctype not in (PLAIN, HTML) or part.is_attachment():
            logger.debug("skipping part %s", ctype)
            continue
        chosen = _prefer(chosen, CanonicalBody(_read_text(part), is_html=ctype == HTML))
        if chosen.is_html:
            break

    if chosen is None:
        raise NoContentError("message has no text/plain or text/html part")
    logger.debug("multipart body chosen (html=%s, %d chars)", chosen.is_html, len(chosen.content))
    return chosen


def _prefer(current: CanonicalBody | None, found: CanonicalBody) -> CanonicalBody:
    """HTML replaces anything seen before it; plain parts accumulate in order."""
    if found.is_html or current is None:
        return found
    return CanonicalBody(current.content.rstrip("\n") + "\n" + found.content, is_html=False)


def _as_bytes(raw: bytes | str | IO[Any]) -> bytes:
    if isinstance(raw, str):
        data: Any = raw.encode("utf-8")
    elif isinstance(raw, (bytes, bytearray, memoryview)):
        data = bytes(raw)
    elif callable(getattr(raw, "read", None)):
        try:
            data = raw.read()
        except OSError as e:
            raise ParseError(f"could not read message stream: {e}") from e
        if isinstance(data, str):
            data = data.encode("utf-8")
    else:
        raise TypeError(f"expected bytes, str or a readable stream, got {type(raw).__name__}")

    if not data or not bytes(data).strip():
        raise ParseError("empty message")
    return bytes(data)


def _parse(data: bytes) -> EmailMessage:
    try:
        msg = BytesParser(policy=default).parsebytes(data)
    except Exception as e:
        raise ParseError(f"could not parse message: {e}") from e

    for part in msg.walk():
        for defect in part.defects:
            if isinstance(defect, _FATAL_DEFECTS):
                raise ParseError(f"malformed message: {type(defect).__name__}")
    return msg


def _read_text(part: EmailMessage) -> str:
    """Decode a leaf part's payload to text with LF line breaks."""
    try:
        payload = part.get_payload(decode=True)
    except Exception as e:
        raise ParseError(f"could not read {part.get_content_type()} part: {e}") from e
    if payload is None:
        raise ParseError(f"{part.get_content_type()} part has no readable body")

    charset = part.get_content_charset() or "utf-8"
    try:
        text = payload.decode(charset)
    except LookupError as e:
        raise ParseError(f"unknown charset {charset!r}") from e
    except UnicodeDecodeError as e:
        raise ParseError(f"{part.get_content_type()} part is not valid {charset}: {e.reason}") from e
    return text.replace("\r\n", "\n")
