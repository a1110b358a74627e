from __future__ import annotations

from typing import Protocol, runtime_checkable


class DestinationError(Exception):
    """Raised when a destination cannot be set up or refuses a message."""


@runtime_checkable
class Destination(Protocol):
    """
    A messaging endpoint that accepts one rendered string per message.

    Contract:
      - wants_markdown() picks which rendered form is delivered
        (markdown when True, break-normalised HTML otherwise).
      - send(text) delivers once and raises DestinationError on failure;
        retrying is the caller's decision.
      - Instances are built at startup and must be safe to call from
        several SMTP sessions at once.
    """

    name: str

    def wants_markdown(self) -> bool: ...

    def send(self, text: str) -> None: ...
