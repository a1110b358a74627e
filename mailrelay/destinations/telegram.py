# mailrelay/destinations/telegram.py
from __future__ import annotations

import logging
from collections.abc import Mapping
from typing import Any

import requests

from .base import DestinationError

LOG = logging.getLogger(__name__)

DEFAULT_API_URL = "https://api.telegram.org"


class TelegramDestination:
    """
    Delivers messages to one Telegram chat through the Bot API.

    Telegram's HTML parse mode understands <b> and <i> but not <br>; rendered
    bodies carry plain linefeeds instead.
    """

    kind = "telegram"

    def __init__(
        self,
        token: str | None,
        chat_id: str | int | None,
        *,
        api_url: str | None = None,
        markdown: bool = False,
        parse_mode: str | None = None,
        name: str | None = None,
        timeout: float = 15.0,
        session: requests.Session | None = None,
    ):
        if not token:
            raise DestinationError("telegram token not set")
        if chat_id is None or str(chat_id).strip() == "":
            raise DestinationError("telegram chat id not set")

        self.token = str(token).strip()
        self.chat_id = str(chat_id).strip()
        self.api_url = (api_url or DEFAULT_API_URL).rstrip("/")
        self.markdown = bool(markdown)
        if parse_mode is None:
            # markdown bodies go out as plain text
            parse_mode = "" if self.markdown else "HTML"
        self.parse_mode = parse_mode or None
        self.name = name or f"telegram:{self.chat_id}"
        self.timeout = float(timeout)
        self.session = session or requests.Session()
        self.session.headers.update({"User-Agent": "mailrelay/0.1"})

    @classmethod
    def from_config(cls, spec: Mapping[str, Any]) -> TelegramDestination:
        return cls(
            spec.get("token"),
            spec.get("chat_id"),
            api_url=spec.get("api_url"),
            markdown=bool(spec.get("markdown", False)),
            parse_mode=spec.get("parse_mode"),
            name=spec.get("name"),
            timeout=float(spec.get("timeout", 15.0)),
        )

    def __repr__(self) -> str:
        return f"TelegramDestination(name={self.name!r}, api_url={self.api_url!r}, markdown={self.markdown})"

    def wants_markdown(self) -> bool:
        return self.markdown

    def send(self, text: str) -> None:
        payload: dict[str, Any] = {"chat_id": self.chat_id, "text": text}
        if self.parse_mode:
            payload["parse_mode"] = self.parse_mode

        try:
            resp = self.session.post(f"{self.api_url}/bot{self.token}/sendMessage", json=payload, timeout=self.timeout)
        except requests.RequestException as e:
            # The token is part of the URL; keep it out of the message.
            raise DestinationError(f"{self.name}: request failed ({type(e).__name__})") from e

        try:
            body = resp.json()
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if resp.status_code >= 400 or body.get("ok") is False:
            code = body.get("error_code", resp.status_code)
            description = body.get("description") or resp.reason or "unknown error"
            raise DestinationError(f"{self.name}: telegram error {code}: {description}")

        LOG.debug("Delivered %d chars to %s", len(text), self.name)

    def close(self) -> None:
        try:
            self.session.close()
        except Exception:
            LOG.debug("TelegramDestination.close() swallow", exc_info=True)
