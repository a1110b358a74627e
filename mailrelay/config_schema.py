# mailrelay/config_schema.py
from __future__ import annotations

import copy
import json
import logging
import os
from dataclasses import dataclass
from typing import Any

import yaml

from mailrelay.destinations.registry import kinds as destination_kinds

logger = logging.getLogger(__name__)


class ConfigError(ValueError):
    """Raised when the config is invalid."""


@dataclass
class _LoadResult:
    cfg: dict[str, Any]
    source: str


DEFAULT_SMTP_HOST = "127.0.0.1"
DEFAULT_SMTP_PORT = 2525
DEFAULT_APP_NAME = "mailrelay"
DEFAULT_MAX_MESSAGE_SIZE = 33554432
DEFAULT_TELEGRAM_API_URL = "https://api.telegram.org"

# Environment variables that back the CLI flags
ENV_SMTP_HOST = "RELAY_SMTP_HOST"
ENV_SMTP_PORT = "RELAY_SMTP_PORT"
ENV_TELEGRAM_API_URL = "RELAY_TELEGRAM_API_URL"
ENV_TELEGRAM_TOKEN = "RELAY_TELEGRAM_TOKEN"
ENV_TELEGRAM_CHAT_ID = "RELAY_TELEGRAM_CHAT_ID"

_BOOL_FIELDS = ("markdown",)


def load_config(path: str | None = None) -> dict[str, Any]:
    """
    Load the relay configuration.

    Resolution order:
      1) Explicit `path` argument (if provided)
      2) os.environ['CONFIG_PATH'] (if set)
      3) Internal default (env-only settings, no explicit destinations)

    Returns:
        dict with "smtp" (host/port/app_name/max_message_size) and
        "destinations" (list of dicts, *_env keys resolved).
    """
    resolved_path = path or os.environ.get("CONFIG_PATH")
    if not resolved_path:
        logger.info("CONFIG_PATH not provided; using environment defaults.")
        cfg: dict[str, Any] = {}
    else:
        cfg = _read_any(resolved_path).cfg

    _apply_top_level_defaults(cfg)
    return cfg


def validate(cfg: dict[str, Any]) -> None:
    """
    Validate the configuration. Raise ConfigError on any problem.
    No prints, no sys.exit().
    """
    if not isinstance(cfg, dict):
        raise ConfigError("Config must be a dict.")

    smtp = cfg.get("smtp")
    if not isinstance(smtp, dict):
        raise ConfigError("'smtp' must be an object.")
    if not isinstance(smtp.get("host"), str) or not smtp["host"].strip():
        raise ConfigError("smtp.host must be a non-empty string.")
    port = _to_int(smtp.get("port"), field="smtp.port")
    if not 1 <= port <= 65535:
        raise ConfigError(f"smtp.port must be within 1..65535 (got {port}).")
    if not isinstance(smtp.get("app_name"), str) or not smtp["app_name"].strip():
        raise ConfigError("smtp.app_name must be a non-empty string.")
    if _to_int(smtp.get("max_message_size"), field="smtp.max_message_size") < 0:
        raise ConfigError("smtp.max_message_size must be >= 0.")

    dests = cfg.get("destinations")
    if not isinstance(dests, list):
        raise ConfigError("'destinations' must be a list.")

    known = destination_kinds()
    seen_names: set[str] = set()
    for idx, dest in enumerate(dests):
        if not isinstance(dest, dict):
            raise ConfigError(f"Destination at index {idx} must be an object/dict.")
        kind = dest.get("kind")
        if not isinstance(kind, str) or kind.strip().lower() not in known:
            raise ConfigError(f"Destination {idx}: 'kind' must be one of {', '.join(known)} (got {kind!r}).")
        name = dest.get("name")
        if name is not None:
            if not isinstance(name, str) or not name.strip():
                raise ConfigError(f"Destination {idx}: 'name' must be a non-empty string if provided.")
            if name in seen_names:
                raise ConfigError(f"Duplicate destination name '{name}'.")
            seen_names.add(name)
        for b in _BOOL_FIELDS:
            if b in dest:
                _to_bool(dest[b], field=f"destinations[{idx}].{b}")
        if "timeout" in dest:
            try:
                timeout = float(dest["timeout"])
            except (TypeError, ValueError) as err:
                raise ConfigError(f"Destination {idx}: 'timeout' must be a number.") from err
            if timeout <= 0:
                raise ConfigError(f"Destination {idx}: 'timeout' must be > 0.")


def apply_cli_overrides(
    cfg: dict[str, Any],
    *,
    smtp_host: str | None = None,
    smtp_port: int | str | None = None,
    telegram_api_url: str | None = None,
    telegram_token: str | None = None,
    telegram_chat_id: str | None = None,
) -> dict[str, Any]:
    """
    Return a copy of `cfg` with command-line flags applied on top.

    Telegram flags update the first telegram destination, or add one when the
    config has none and a token was given.
    """
    out = copy.deepcopy(cfg)
    smtp = out.setdefault("smtp", {})
    if smtp_host:
        smtp["host"] = smtp_host
    if smtp_port not in (None, ""):
        smtp["port"] = _to_int(smtp_port, field="smtp.port")

    flags = {"api_url": telegram_api_url, "token": telegram_token, "chat_id": telegram_chat_id}
    flags = {k: v for k, v in flags.items() if v}
    if not flags:
        return out

    dests = out.setdefault("destinations", [])
    telegram = next((d for d in dests if str(d.get("kind", "")).lower() == "telegram"), None)
    if telegram is not None:
        telegram.update(flags)
    elif "token" in flags:
        dests.append(_env_telegram_destination() | flags)
    return out


def _apply_top_level_defaults(cfg: dict[str, Any]) -> None:
    smtp = cfg.get("smtp")
    if not isinstance(smtp, dict):
        smtp = {}
    smtp = dict(smtp)
    smtp.setdefault("host", os.getenv(ENV_SMTP_HOST) or DEFAULT_SMTP_HOST)
    smtp.setdefault("port", os.getenv(ENV_SMTP_PORT) or DEFAULT_SMTP_PORT)
    smtp.setdefault("app_name", DEFAULT_APP_NAME)
    smtp.setdefault("max_message_size", DEFAULT_MAX_MESSAGE_SIZE)
    for n in ("port", "max_message_size"):
        smtp[n] = _to_int(smtp[n], field=f"smtp.{n}")
    cfg["smtp"] = smtp

    dests = cfg.get("destinations")
    if dests is None:
        dests = []
    if not isinstance(dests, list):
        raise ConfigError("'destinations' must be a list.")

    normalized: list[dict[str, Any]] = []
    for idx, dest in enumerate(dests):
        if not isinstance(dest, dict):
            raise ConfigError(f"Destination at index {idx} must be an object/dict.")
        d = dict(dest)

        # Resolve <field>_env -> <field> and hide the variable name
        for key in [k for k in d if k.endswith("_env")]:
            raw = d.pop(key)
            if isinstance(raw, str) and raw.strip():
                d[key[: -len("_env")]] = os.getenv(raw.strip(), "")

        if str(d.get("kind", "")).lower() == "telegram":
            d.setdefault("api_url", os.getenv(ENV_TELEGRAM_API_URL) or DEFAULT_TELEGRAM_API_URL)

        for b in _BOOL_FIELDS:
            if b in d:
                d[b] = _to_bool(d[b], field=f"destinations[{idx}].{b}")
        normalized.append(d)

    # No explicit destinations: fall back to a Telegram bot configured via env
    if not normalized and os.getenv(ENV_TELEGRAM_TOKEN):
        normalized.append(_env_telegram_destination())

    cfg["destinations"] = normalized


def _env_telegram_destination() -> dict[str, Any]:
    return {
        "kind": "telegram",
        "api_url": os.getenv(ENV_TELEGRAM_API_URL) or DEFAULT_TELEGRAM_API_URL,
        "token": os.getenv(ENV_TELEGRAM_TOKEN, ""),
        "chat_id": os.getenv(ENV_TELEGRAM_CHAT_ID, ""),
    }


def _to_bool(value: Any, *, field: str) -> bool:
    if isinstance(value, bool):
        return value
    if isinstance(value, str):
        v = value.strip().lower()
        if v in {"1", "true", "yes", "on"}:
            return True
        if v in {"0", "false", "no", "off"}:
            return False
    raise ConfigError(f"'{field}' must be a boolean (or boolean-like string).")


def _to_int(value: Any, *, field: str) -> int:
    if isinstance(value, bool):
        raise ConfigError(f"'{field}' must be an integer.")
    try:
        return int(value)
    except (TypeError, ValueError) as err:
        raise ConfigError(f"'{field}' must be an integer.") from err


def _read_any(path: str) -> _LoadResult:
    lower = path.lower()
    try:
        with open(path, encoding="utf-8") as f:
            text = f.read()
    except FileNotFoundError as e:
        raise ConfigError(f"Config file not found: {path}") from e
    except OSError as e:
        raise ConfigError(f"Failed to read config file: {path}: {e}") from e

    if lower.endswith(".yml") or lower.endswith(".yaml"):
        try:
            data = yaml.safe_load(text)
        except yaml.YAMLError as e:
            raise ConfigError(f"Invalid YAML in {path}: {e}") from e
        if data is None:
            data = {}
        if not isinstance(data, dict):
            raise ConfigError("Top-level YAML must be a mapping/object.")
        return _LoadResult(cfg=data, source=path)

    try:
        data = json.loads(text)
    except json.JSONDecodeError as e:
        if lower.endswith(".json"):
            raise ConfigError(f"Invalid JSON in {path}: {e}") from e
        raise ConfigError(f"Unsupported config format for {path}. Use .json or .yml/.yaml.") from e
    if not isinstance(data, dict):
        raise ConfigError("Top-level JSON must be an object.")
    return _LoadResult(cfg=data, source=path)
