# mailrelay/smtp_listener.py
from __future__ import annotations

import asyncio
import functools
import logging
import threading
from collections.abc import Callable, Sequence
from typing import Any

from aiosmtpd.controller import Controller

from mailrelay.destinations import Destination
from mailrelay.dispatch import DeliveryError, relay_message
from mailrelay.message import MessageError

logger = logging.getLogger(__name__)
if not logger.handlers:
    logger.addHandler(logging.NullHandler())


def _reply_text(exc: Exception) -> str:
    # SMTP replies are single-line
    return " ".join(str(exc).split()) or type(exc).__name__


class RelayHandler:
    """
    aiosmtpd handler: every accepted message is relayed to the destinations.

    The relay itself is blocking (HTTP calls), so it runs in the loop's
    default executor; concurrent sessions are processed in parallel.
    """

    def __init__(
        self,
        destinations: Sequence[Destination],
        relay: Callable[..., Any] = relay_message,
    ):
        self.destinations = list(destinations)
        self._relay = relay

    async def handle_DATA(self, server, session, envelope) -> str:
        peer = getattr(session, "peer", None)
        call = functools.partial(
            self._relay,
            envelope.content,
            self.destinations,
            mail_from=envelope.mail_from,
            rcpt_tos=list(envelope.rcpt_tos),
        )
        loop = asyncio.get_running_loop()
        try:
            await loop.run_in_executor(None, call)
        except MessageError as e:
            logger.warning("[smtp] Rejected message from %s (%s): %s", envelope.mail_from, peer, e)
            return f"554 5.6.0 {_reply_text(e)}"
        except DeliveryError as e:
            logger.error("[smtp] Delivery failed for message from %s: %s", envelope.mail_from, e)
            return f"451 4.3.0 {_reply_text(e)}"
        except Exception:
            logger.exception("[smtp] Unexpected error relaying message from %s", envelope.mail_from)
            return "451 4.3.0 Internal error while relaying message"
        return "250 OK"


class ListenerController:
    def __init__(self, controller: Controller):
        self._controller = controller
        self._stopped = threading.Event()

    def stop(self) -> None:
        """Stop accepting connections and shut the server thread down."""
        if self._stopped.is_set():
            return
        try:
            self._controller.stop()
        finally:
            self._stopped.set()
            logger.info("[smtp] Listener stopped")

    def join(self, timeout: float | None = None) -> None:
        """Wait until stop() has completed."""
        self._stopped.wait(timeout=timeout)

    @property
    def address(self) -> tuple[str, int]:
        return self._controller.hostname, self._controller.port

    @property
    def running(self) -> bool:
        return not self._stopped.is_set()


def start(
    smtp_cfg: dict[str, Any],
    destinations: Sequence[Destination],
    *,
    handler: RelayHandler | None = None,
) -> ListenerController:
    """
    Start the SMTP listener in a background thread (non-blocking).
    Returns a controller with .stop() and .join().

    `smtp_cfg` is the "smtp" section of the loaded config.
    """
    host = smtp_cfg.get("host", "127.0.0.1")
    port = int(smtp_cfg.get("port", 2525))
    controller = Controller(
        handler or RelayHandler(destinations),
        hostname=host,
        port=port,
        ident=smtp_cfg.get("app_name", "mailrelay"),
        data_size_limit=int(smtp_cfg.get("max_message_size", 33554432)),
    )
    controller.start()
    logger.info("[smtp] Listening on %s:%s for %d destination(s)", host, port, len(destinations))
    return ListenerController(controller)
