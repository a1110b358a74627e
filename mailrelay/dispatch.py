# mailrelay/dispatch.py
from __future__ import annotations

import logging
import time
import uuid
from collections.abc import Sequence
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import IO, Any

from mailrelay import logging_utils
from mailrelay.destinations import Destination, DestinationError
from mailrelay.message import process_message

log = logging.getLogger(__name__)


class DeliveryError(RuntimeError):
    """Raised when one or more destinations refused a message."""

    def __init__(self, failures: list[tuple[str, str]], delivered: list[str] | None = None):
        self.failures = failures
        self.delivered = delivered or []
        names = ", ".join(name for name, _ in failures)
        super().__init__(f"delivery failed for {len(failures)} destination(s): {names}")


@dataclass
class RelayResult:
    relay_id: str
    delivered: list[str] = field(default_factory=list)
    duration_ms: int = 0


def now_iso() -> str:
    return datetime.now(timezone.utc).astimezone().isoformat(timespec="seconds")


def _activity(record: dict[str, Any]) -> None:
    try:
        logging_utils.write_activity_log(record)
    except Exception:
        log.warning("Could not write activity record: %s", record, exc_info=True)


def _error(record: dict[str, Any]) -> None:
    try:
        logging_utils.write_error_log(record)
    except Exception:
        log.warning("Could not write error record: %s", record, exc_info=True)


def relay_message(
    raw: bytes | str | IO[Any],
    destinations: Sequence[Destination],
    *,
    mail_from: str | None = None,
    rcpt_tos: Sequence[str] | None = None,
) -> RelayResult:
    """
    Render a raw message once and hand the matching form to every destination.

    Destinations that want markdown get the markdown form, the rest get the
    break-normalised HTML form. Every destination is attempted even after a
    failure.

    Raises:
        MessageError (ParseError/NoContentError/RenderError) before any send.
        DeliveryError after all sends if at least one destination failed.
    """
    relay_id = uuid.uuid4().hex
    start = time.monotonic()

    try:
        rendered = process_message(raw)
    except Exception as e:
        _error({
            "ts": now_iso(),
            "where": "dispatch.process_message",
            "relay_id": relay_id,
            "mail_from": mail_from,
            "error": repr(e),
        })
        raise

    delivered: list[str] = []
    failures: list[tuple[str, str]] = []
    for dest in destinations:
        text = rendered.for_destination(dest.wants_markdown())
        try:
            dest.send(text)
        except DestinationError as e:
            log.error("Could not send message %s to %s: %s", relay_id, dest.name, e)
            failures.append((dest.name, str(e)))
            _error({
                "ts": now_iso(),
                "where": "dispatch.send",
                "relay_id": relay_id,
                "destination": dest.name,
                "error": str(e),
            })
            continue
        delivered.append(dest.name)

    duration_ms = int((time.monotonic() - start) * 1000)
    _activity({
        "ts": now_iso(),
        "event": "message_relayed",
        "relay_id": relay_id,
        "mail_from": mail_from,
        "rcpt_tos": list(rcpt_tos or []),
        "delivered": delivered,
        "failed": [name for name, _ in failures],
        "duration_ms": duration_ms,
    })

    if failures:
        raise DeliveryError(failures, delivered)

    log.info("Relayed message %s to %d destination(s) in %d ms", relay_id, len(delivered), duration_ms)
    return RelayResult(relay_id=relay_id, delivered=delivered, duration_ms=duration_ms)
