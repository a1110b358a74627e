# mailrelay/cli.py
"""
User-facing command-line entrypoints.

Subcommands
-----------
serve [--smtp-host H] [--smtp-port P] [--telegram-token T] [--telegram-chat-id C] [--telegram-api-url U]
    - Builds the destinations from config/env/flags (exit 2 if none initialise)
    - Starts the SMTP listener via mailrelay.smtp_listener.start()
    - Registers signal handlers for graceful shutdown

render FILE [--markdown]
    - Prints the rendered forms of a stored message (.eml)

send-test TEXT [--html HTML] [--subject S] [--host H] [--port P]
    - Submits a test message to a running relay

list-destinations
    - Prints the configured destinations (secrets redacted)

validate-config
    - Loads/validates config and returns nonzero on error
"""

from __future__ import annotations

import argparse
import logging
import os
import signal
import sys
import threading
from collections.abc import Iterable
from datetime import datetime
from types import SimpleNamespace
from typing import Any

from mailrelay import config_schema
from mailrelay import emailer as _emailer
from mailrelay import logging_utils as L
from mailrelay import smtp_listener as _smtp
from mailrelay.destinations import build_destinations
from mailrelay.message import MessageError, process_message

LOG = logging.getLogger("mailrelay.cli")


# ----------------------------- Logging setup ---------------------------------
def _ensure_logging() -> None:
    """Initialize a reasonable logging setup if none exists yet."""
    root = logging.getLogger()
    if not root.handlers:
        level = os.getenv("LOG_LEVEL", "INFO").upper()
        logging.basicConfig(
            level=getattr(logging, level, logging.INFO),
            format="%(asctime)s %(levelname)s [%(name)s] %(message)s",
        )


def _now_iso():
    return datetime.now().astimezone().isoformat()


def _print_table(rows: Iterable[tuple[str, str]], headers: tuple[str, str] = ("NAME", "DETAILS")) -> None:
    """Very simple two-column table printer."""
    rows = list(rows)
    w0 = max(len(headers[0]), *(len(r[0]) for r in rows)) if rows else len(headers[0])
    w1 = max(len(headers[1]), *(len(r[1]) for r in rows)) if rows else len(headers[1])
    sep = f"+-{'-' * w0}-+-{'-' * w1}-+"
    print(sep)
    print(f"| {headers[0].ljust(w0)} | {headers[1].ljust(w1)} |")
    print(sep)
    for c0, c1 in rows:
        print(f"| {c0.ljust(w0)} | {c1.ljust(w1)} |")
    print(sep)


def _load(args: argparse.Namespace) -> dict[str, Any]:
    cfg = config_schema.load_config(args.config)
    return config_schema.apply_cli_overrides(
        cfg,
        smtp_host=getattr(args, "smtp_host", None),
        smtp_port=getattr(args, "smtp_port", None),
        telegram_api_url=getattr(args, "telegram_api_url", None),
        telegram_token=getattr(args, "telegram_token", None),
        telegram_chat_id=getattr(args, "telegram_chat_id", None),
    )


# ------------------------------ Subcommands ----------------------------------
def cmd_validate_config(args: argparse.Namespace) -> int:
    try:
        cfg = _load(args)
        config_schema.validate(cfg)
        print("OK: configuration is valid.")
        return 0
    except KeyboardInterrupt:
        return 130
    except config_schema.ConfigError as e:
        LOG.error("Configuration validation failed: %s", e)
        print(f"ERROR: configuration invalid: {e}", file=sys.stderr)
        return 1


def cmd_list_destinations(args: argparse.Namespace) -> int:
    try:
        cfg = _load(args)
    except config_schema.ConfigError as e:
        print(f"ERROR: failed to load config: {e}", file=sys.stderr)
        return 1
    rows = []
    for idx, dest in enumerate(cfg["destinations"]):
        safe = L.redact(dest)
        name = str(safe.pop("name", None) or f"{safe.get('kind', '?')}#{idx}")
        rows.append((name, ", ".join(f"{k}={v}" for k, v in sorted(safe.items()))))
    if not rows:
        print("No destinations configured.")
        return 0
    _print_table(rows, headers=("DESTINATION", "DETAILS"))
    return 0


def cmd_render(args: argparse.Namespace) -> int:
    try:
        with open(args.file, "rb") as f:
            rendered = process_message(f)
    except OSError as e:
        print(f"ERROR: cannot read {args.file}: {e}", file=sys.stderr)
        return 1
    except MessageError as e:
        print(f"ERROR: {type(e).__name__}: {e}", file=sys.stderr)
        return 1

    if args.markdown:
        print(rendered.plain_form)
    elif args.html:
        print(rendered.html_form)
    else:
        print("----- HTML FORM -----")
        print(rendered.html_form)
        print("\n----- MARKDOWN FORM -----")
        print(rendered.plain_form)
    return 0


def cmd_send_test(args: argparse.Namespace) -> int:
    host, port = args.host, args.port
    if not host or not port:
        try:
            cfg = _load(args)
        except config_schema.ConfigError as e:
            print(f"ERROR: failed to load config: {e}", file=sys.stderr)
            return 1
        host = host or cfg["smtp"]["host"]
        port = port or cfg["smtp"]["port"]
    try:
        message_id = _emailer.send_test_message(
            host,
            int(port),
            text=args.text,
            html=args.html,
            subject=args.subject,
        )
    except _emailer.EmailSendError as e:
        print(f"FAILURE: {e}", file=sys.stderr)
        return 1
    print(f"SUCCESS: submitted {message_id} to {host}:{port}")
    return 0


def cmd_serve(args: argparse.Namespace) -> int:
    """
    Run the SMTP listener until a termination signal is received.
    """
    try:
        cfg = _load(args)
        config_schema.validate(cfg)
    except config_schema.ConfigError as e:
        LOG.error("Invalid configuration: %s", e)
        return 1

    destinations, failures = build_destinations(cfg["destinations"])
    if not destinations:
        LOG.error("Couldn't initialize any messaging destination, exiting. %s", "; ".join(failures))
        return 2

    stop_event = threading.Event()
    running = SimpleNamespace(listener=None)

    def _graceful_shutdown(signum=None, frame=None):
        LOG.info("Signal %s received; initiating shutdown...", signum)
        stop_event.set()

    for sig in (signal.SIGINT, signal.SIGTERM):
        signal.signal(sig, _graceful_shutdown)

    try:
        running.listener = _smtp.start(cfg["smtp"], destinations)
        host, port = running.listener.address
        LOG.info("Starting SMTP server at address %s:%s", host, port)
        L.write_activity_log({
            "ts": _now_iso(),
            "event": "serve_start",
            "address": f"{host}:{port}",
            "destinations": [d.name for d in destinations],
            "failed_destinations": failures,
        })

        while not stop_event.wait(0.3):
            pass
        return 0

    except KeyboardInterrupt:
        return 130
    except Exception as e:
        LOG.exception("Fatal error in serve: %s", e)
        return 1
    finally:
        if running.listener is not None:
            running.listener.stop()
            L.write_activity_log({"ts": _now_iso(), "event": "serve_stop"})
        for dest in destinations:
            close = getattr(dest, "close", None)
            if callable(close):
                close()


# ------------------------------- Argparse ------------------------------------
def _build_parser() -> argparse.ArgumentParser:
    p = argparse.ArgumentParser(
        prog="mailrelay",
        description="Relay inbound SMTP mail to messaging services.",
    )
    p.add_argument(
        "--config",
        help="Path to config file (fallbacks to CONFIG_PATH env or environment defaults).",
    )
    sub = p.add_subparsers(dest="cmd", required=True)

    # serve
    sp = sub.add_parser("serve", help="Run the SMTP listener.")
    sp.add_argument("--smtp-host", help=f"IP address to bind the SMTP server to (env {config_schema.ENV_SMTP_HOST}).")
    sp.add_argument("--smtp-port", type=int, help=f"TCP port to bind the SMTP server to (env {config_schema.ENV_SMTP_PORT}).")
    sp.add_argument(
        "--telegram-api-url",
        help=f"API url used for communicating with Telegram (env {config_schema.ENV_TELEGRAM_API_URL}).",
    )
    sp.add_argument("--telegram-token", help=f"Token used for the Telegram bot (env {config_schema.ENV_TELEGRAM_TOKEN}).")
    sp.add_argument(
        "--telegram-chat-id",
        help=f"Telegram chat the email is transferred to (env {config_schema.ENV_TELEGRAM_CHAT_ID}).",
    )
    sp.set_defaults(func=cmd_serve)

    # render
    sp = sub.add_parser("render", help="Print the rendered forms of a stored message.")
    sp.add_argument("file", help="Path to a raw RFC 5322 message (.eml).")
    group = sp.add_mutually_exclusive_group()
    group.add_argument("--markdown", action="store_true", help="Only print the markdown form.")
    group.add_argument("--html", action="store_true", help="Only print the HTML form.")
    sp.set_defaults(func=cmd_render)

    # send-test
    sp = sub.add_parser("send-test", help="Submit a test message to a running relay.")
    sp.add_argument("text", help="Plain-text body.")
    sp.add_argument("--html", help="Optional HTML alternative body.")
    sp.add_argument("--subject", default="mailrelay test", help="Subject line.")
    sp.add_argument("--host", help="Relay host (defaults to the configured smtp.host).")
    sp.add_argument("--port", type=int, help="Relay port (defaults to the configured smtp.port).")
    sp.set_defaults(func=cmd_send_test)

    # list-destinations
    sp = sub.add_parser("list-destinations", help="Print configured destinations.")
    sp.set_defaults(func=cmd_list_destinations)

    # validate-config
    sp = sub.add_parser("validate-config", help="Verify configuration correctness.")
    sp.set_defaults(func=cmd_validate_config)

    return p


# --------------------------------- Main --------------------------------------
def main(argv: Iterable[str] | None = None) -> int:
    _ensure_logging()
    parser = _build_parser()
    args = parser.parse_args(args=list(argv) if argv is not None else None)
    return args.func(args)


if __name__ == "__main__":  # pragma: no cover
    sys.exit(main())
