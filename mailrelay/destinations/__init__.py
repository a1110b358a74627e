"""
Outbound messaging destinations.

Public API:
    Destination, DestinationError, TelegramDestination,
    build_destinations(specs) -> (destinations, failures)
"""

from __future__ import annotations

from .base import Destination, DestinationError
from .registry import build_destinations, kinds
from .telegram import TelegramDestination

__all__ = ["Destination", "DestinationError", "TelegramDestination", "build_destinations", "kinds"]
