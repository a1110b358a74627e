"""Relay inbound SMTP mail to chat destinations."""

__version__ = "0.1.0"
