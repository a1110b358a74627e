# mailrelay/logging_utils.py
"""
Structured JSONL logs for relay events.

Two daily files live under LOG_DIR: an activity log (one record per relayed
message, plus serve start/stop) and an error log (one record per message or
destination failure). Records are redacted before they touch the disk:
secret-looking keys are masked and Telegram bot tokens are cut out of URLs
and error strings.

Environment (read on every write):
    LOG_DIR                 base directory (default ./local/logs)
    ACTIVITY_LOG_PREFIX     activity file prefix (default "activity")
    ERROR_LOG_PREFIX        error file prefix (default "error")
    ACTIVITY_LOG_MAX_BYTES  rotate a file once it reaches this size; <=0 disables
    LOG_DISABLE             "1" turns both writers into no-ops
"""
from __future__ import annotations

import datetime as _dt
import json
import os
import re
import socket
import threading
from dataclasses import dataclass
from pathlib import Path
from typing import Any

REDACTED = "***REDACTED***"

# Substrings of record keys whose values never reach the log files
SECRET_KEYS = frozenset({"token", "secret", "password", "authorization", "api_key", "apikey", "cookie"})

# https://api.telegram.org/bot<id>:<secret>/sendMessage
_BOT_TOKEN_RE = re.compile(r"/bot\d+:[A-Za-z0-9_-]+")
_BEARER_RE = re.compile(r"(?i)\b(bearer)\s+\S+")

_META = {"app": "mailrelay", "host": socket.gethostname(), "pid": os.getpid()}

# handle_DATA relays run on executor threads; one line per record
_write_lock = threading.Lock()


@dataclass(frozen=True)
class _LogSettings:
    log_dir: Path
    activity_prefix: str
    error_prefix: str
    max_bytes: int
    disabled: bool

    @classmethod
    def from_env(cls) -> _LogSettings:
        try:
            max_bytes = int(os.getenv("ACTIVITY_LOG_MAX_BYTES", "0"))
        except ValueError:
            max_bytes = 0
        return cls(
            log_dir=Path(os.getenv("LOG_DIR") or Path("local") / "logs"),
            activity_prefix=os.getenv("ACTIVITY_LOG_PREFIX") or "activity",
            error_prefix=os.getenv("ERROR_LOG_PREFIX") or "error",
            max_bytes=max_bytes,
            disabled=os.getenv("LOG_DISABLE", "").strip().lower() in {"1", "true", "yes", "on"},
        )

    def path_for(self, prefix: str) -> Path:
        return self.log_dir / f"{prefix}-{_dt.date.today().isoformat()}.jsonl"


def write_activity_log(record: dict[str, Any]) -> None:
    """
    Append one activity record (relay or serve lifecycle event).

    Raises OSError when the log directory cannot be written; callers on the
    relay path catch it. The passed-in dict is not modified.
    """
    settings = _LogSettings.from_env()
    if not settings.disabled:
        _append(settings.path_for(settings.activity_prefix), record, settings.max_bytes)


def write_error_log(record: dict[str, Any]) -> None:
    """Append one error record (see write_activity_log)."""
    settings = _LogSettings.from_env()
    if not settings.disabled:
        _append(settings.path_for(settings.error_prefix), record, settings.max_bytes)


def get_activity_log_path() -> str:
    settings = _LogSettings.from_env()
    return str(settings.path_for(settings.activity_prefix))


def get_error_log_path() -> str:
    settings = _LogSettings.from_env()
    return str(settings.path_for(settings.error_prefix))


def redact(value: Any) -> Any:
    """
    Return a redacted copy of a record (or any JSON-like value).

    Values under keys containing one of SECRET_KEYS are masked. Strings
    elsewhere keep their text with bot tokens and bearer credentials cut out.
    """
    if isinstance(value, dict):
        return {
            k: REDACTED if isinstance(k, str) and _is_secret_key(k) else redact(v)
            for k, v in value.items()
        }
    if isinstance(value, (list, tuple)):
        return type(value)(redact(v) for v in value)
    if isinstance(value, str):
        return _scrub(value)
    return value


def _is_secret_key(key: str) -> bool:
    k = key.lower()
    return any(s in k for s in SECRET_KEYS)


def _scrub(text: str) -> str:
    text = _BOT_TOKEN_RE.sub(f"/bot{REDACTED}", text)
    return _BEARER_RE.sub(rf"\1 {REDACTED}", text)


def _append(path: Path, record: dict[str, Any], max_bytes: int) -> None:
    line = json.dumps(
        {**redact(record), "_meta": _META},
        ensure_ascii=False,
        separators=(",", ":"),
        default=str,
    )
    with _write_lock:
        path.parent.mkdir(parents=True, exist_ok=True)
        if max_bytes > 0 and path.exists() and path.stat().st_size >= max_bytes:
            path.replace(_rotation_target(path))
        with path.open("a", encoding="utf-8") as f:
            f.write(line + "\n")


def _rotation_target(path: Path) -> Path:
    n = 1
    while path.with_name(f"{path.name}.{n}").exists():
        n += 1
    return path.with_name(f"{path.name}.{n}")
