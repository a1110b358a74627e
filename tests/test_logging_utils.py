import json
import os

from freezegun import freeze_time

from mailrelay import logging_utils as L


def _read(path):
    with open(path, encoding="utf-8") as f:
        return [json.loads(line) for line in f if line.strip()]


@freeze_time("2025-01-01T12:00:00Z")
def test_activity_path_is_dated(tmp_path):
    assert L.get_activity_log_path() == os.path.join(str(tmp_path / "logs"), "activity-test-2025-01-01.jsonl")


def test_secrets_are_redacted_on_write():
    L.write_activity_log({
        "event": "x",
        "telegram_token": "123:abc",
        "nested": {"Authorization": "Bearer abc"},
        "url": "https://api.telegram.org/bot123:abc-DEF_9/sendMessage",
        "note": "Bearer sekrit",
    })
    (rec,) = _read(L.get_activity_log_path())
    assert rec["telegram_token"] == "***REDACTED***"
    assert rec["nested"]["Authorization"] == "***REDACTED***"
    assert rec["url"] == "https://api.telegram.org/bot***REDACTED***/sendMessage"
    assert rec["note"] == "Bearer ***REDACTED***"
    assert rec["_meta"]["pid"] == os.getpid()


def test_redact_does_not_mutate_input():
    record = {"password": "p", "items": [{"api_key": "k"}]}
    out = L.redact(record)
    assert out == {"password": "***REDACTED***", "items": [{"api_key": "***REDACTED***"}]}
    assert record["password"] == "p"


def test_error_log_is_separate_file():
    L.write_error_log({"where": "test", "error": "boom"})
    assert not os.path.exists(L.get_activity_log_path())
    assert _read(L.get_error_log_path())[0]["error"] == "boom"


def test_log_disable_turns_writes_off(monkeypatch):
    monkeypatch.setenv("LOG_DISABLE", "1")
    L.write_activity_log({"event": "x"})
    assert not os.path.exists(L.get_activity_log_path())


def test_size_rotation(monkeypatch):
    monkeypatch.setenv("ACTIVITY_LOG_MAX_BYTES", "10")
    L.write_activity_log({"event": "first"})
    L.write_activity_log({"event": "second"})

    path = L.get_activity_log_path()
    rotated = [n for n in os.listdir(os.path.dirname(path)) if n.startswith(os.path.basename(path) + ".")]
    assert len(rotated) == 1
    assert [r["event"] for r in _read(path)] == ["second"]


def test_bot_token_is_cut_out_of_error_strings():
    L.write_error_log({
        "where": "dispatch.send",
        "relay_id": "abc123",
        "destination": "team",
        "error": "Max retries exceeded with url: /bot123456:AA-secret_x/sendMessage",
    })
    (rec,) = _read(L.get_error_log_path())
    assert "AA-secret_x" not in json.dumps(rec)
    assert rec["relay_id"] == "abc123"
    assert rec["destination"] == "team"
    assert rec["_meta"]["app"] == "mailrelay"


def test_rotated_files_are_numbered(monkeypatch):
    monkeypatch.setenv("ACTIVITY_LOG_MAX_BYTES", "10")
    for event in ("one", "two", "three"):
        L.write_activity_log({"event": event})

    path = L.get_activity_log_path()
    assert [r["event"] for r in _read(path + ".1")] == ["one"]
    assert [r["event"] for r in _read(path + ".2")] == ["two"]
    assert [r["event"] for r in _read(path)] == ["three"]
