from __future__ import annotations

import logging
from collections.abc import Callable, Iterable, Mapping
from typing import Any

from .base import Destination, DestinationError
from .telegram import TelegramDestination

LOG = logging.getLogger(__name__)

Factory = Callable[[Mapping[str, Any]], Destination]

# kind -> factory building one destination from its config entry
_FACTORIES: dict[str, Factory] = {
    TelegramDestination.kind: TelegramDestination.from_config,
}


def kinds() -> list[str]:
    """Known destination kinds, sorted."""
    return sorted(_FACTORIES)


def get(kind: str) -> Factory:
    """
    Look up a destination factory by kind (case-insensitive).
    Raises KeyError if not found.
    """
    key = (kind or "").strip().lower()
    if key not in _FACTORIES:
        raise KeyError(f"No destination registered for kind {kind!r}.")
    return _FACTORIES[key]


def build_destinations(
    specs: Iterable[Mapping[str, Any]],
    *,
    factories: Mapping[str, Factory] | None = None,
) -> tuple[list[Destination], list[str]]:
    """
    Initialise one destination per config entry.

    A destination that fails to initialise is logged and skipped; the caller
    decides whether an empty result is fatal.

    Returns:
        (destinations, failures) where failures are human-readable reasons.
    """
    lookup = factories if factories is not None else _FACTORIES
    built: list[Destination] = []
    failures: list[str] = []

    for idx, spec in enumerate(specs):
        label = spec.get("name") or f"{spec.get('kind', '?')}#{idx}"
        kind = str(spec.get("kind", "")).strip().lower()
        factory = lookup.get(kind)
        if factory is None:
            failures.append(f"{label}: unknown destination kind {spec.get('kind')!r}")
            LOG.error("Error while initializing destination %s: unknown kind %r", label, spec.get("kind"))
            continue
        try:
            dest = factory(spec)
        except DestinationError as e:
            failures.append(f"{label}: {e}")
            LOG.error("Error while initializing destination %s: %s", label, e)
            continue
        LOG.info("Initialized destination %s (markdown=%s)", dest.name, dest.wants_markdown())
        built.append(dest)

    return built, failures
