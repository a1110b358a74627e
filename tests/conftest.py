import os
import socket
from email.mime.application import MIMEApplication
from email.mime.multipart import MIMEMultipart
from email.mime.text import MIMEText

import pytest

from mailrelay.destinations import DestinationError


# ---------------------------------------------------------------------
# Live tests are opt-in: use --live or RUN_LIVE_TESTS=1
# ---------------------------------------------------------------------
def pytest_addoption(parser: pytest.Parser) -> None:
    parser.addoption(
        "--live",
        action="store_true",
        default=False,
        help="Run tests marked as 'live' (real Telegram Bot API calls).",
    )


def pytest_configure(config: pytest.Config) -> None:
    config.addinivalue_line(
        "markers",
        "live: marks tests that hit external services (skipped by default).",
    )


def pytest_collection_modifyitems(config: pytest.Config, items: list[pytest.Item]) -> None:
    run_live = config.getoption("--live") or os.getenv("RUN_LIVE_TESTS") == "1"
    if run_live:
        return
    skip_live = pytest.mark.skip(reason="live tests disabled (use --live or RUN_LIVE_TESTS=1)")
    for item in items:
        if "live" in item.keywords:
            item.add_marker(skip_live)


# ---------------------------------------------------------------------
# Test-wide env defaults (autouse, function-scoped)
# ---------------------------------------------------------------------
@pytest.fixture(autouse=True)
def _env_defaults(monkeypatch, tmp_path):
    # Write logs to a throwaway dir so real logs stay clean (per test)
    monkeypatch.setenv("LOG_DIR", str(tmp_path / "logs"))
    monkeypatch.setenv("ACTIVITY_LOG_PREFIX", "activity-test")
    monkeypatch.setenv("ERROR_LOG_PREFIX", "error-test")
    monkeypatch.delenv("LOG_DISABLE", raising=False)
    monkeypatch.delenv("ACTIVITY_LOG_MAX_BYTES", raising=False)

    # Never pick up a developer's real relay settings
    for name in (
        "CONFIG_PATH",
        "RELAY_SMTP_HOST",
        "RELAY_SMTP_PORT",
        "RELAY_TELEGRAM_API_URL",
        "RELAY_TELEGRAM_TOKEN",
        "RELAY_TELEGRAM_CHAT_ID",
    ):
        monkeypatch.delenv(name, raising=False)
    yield


# ---------------------------------------------------------------------
# Message builders
# ---------------------------------------------------------------------
def make_single(body: str, content_type: str | None = "text/plain") -> bytes:
    """A single-part message with network (CRLF) line breaks in the headers."""
    headers = [
        "From: sender@example.com",
        "To: relay@example.com",
        "Subject: test",
    ]
    if content_type:
        headers.append(f"Content-Type: {content_type}; charset=utf-8")
    return ("\r\n".join(headers) + "\r\n\r\n" + body).encode("utf-8")


def make_multipart(*parts, subtype: str = "alternative") -> bytes:
    """
    parts: (content_type, content) tuples, or ready-made MIME objects.
    text/* content is base64 encoded (utf-8), like most real clients do.
    """
    msg = MIMEMultipart(subtype)
    msg["From"] = "sender@example.com"
    msg["To"] = "relay@example.com"
    msg["Subject"] = "multipart test"
    for part in parts:
        if isinstance(part, tuple):
            ctype, content = part
            maintype, subtype_ = ctype.split("/", 1)
            if maintype == "text":
                part = MIMEText(content, subtype_, "utf-8")
            else:
                part = MIMEApplication(content.encode("utf-8") if isinstance(content, str) else content, subtype_)
        msg.attach(part)
    return msg.as_bytes()


@pytest.fixture
def single_message():
    return make_single


@pytest.fixture
def multipart_message():
    return make_multipart


# ---------------------------------------------------------------------
# Destinations
# ---------------------------------------------------------------------
class RecorderDestination:
    """Keeps every delivered text; optionally refuses everything."""

    def __init__(self, name: str, *, markdown: bool = False, fail: str | None = None):
        self.name = name
        self.markdown = markdown
        self.fail = fail
        self.messages: list[str] = []

    def wants_markdown(self) -> bool:
        return self.markdown

    def send(self, text: str) -> None:
        if self.fail:
            raise DestinationError(self.fail)
        self.messages.append(text)

    @property
    def last(self) -> str | None:
        return self.messages[-1] if self.messages else None


@pytest.fixture
def html_recorder():
    return RecorderDestination("html-recorder", markdown=False)


@pytest.fixture
def markdown_recorder():
    return RecorderDestination("markdown-recorder", markdown=True)


@pytest.fixture
def recorder_factory():
    return RecorderDestination


@pytest.fixture
def free_port() -> int:
    with socket.socket(socket.AF_INET, socket.SOCK_STREAM) as s:
        s.bind(("127.0.0.1", 0))
        return s.getsockname()[1]
