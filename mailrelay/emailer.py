# mailrelay/emailer.py
from __future__ import annotations

import smtplib
import uuid
from collections.abc import Iterable
from email.message import EmailMessage
from email.utils import formatdate, make_msgid

# ---- Errors -----------------------------------------------------------------


class EmailSendError(RuntimeError):
    """Raised when a test message cannot be submitted."""


# ---- Helpers ----------------------------------------------------------------


def _as_list(values: Iterable[str] | str | None) -> list[str]:
    if not values:
        return []
    if isinstance(values, str):
        values = [values]
    return [v for v in (s.strip() for s in values) if v]


def build_message(
    *,
    subject: str,
    text: str,
    html: str | None = None,
    mail_from: str,
    rcpt_to: list[str],
    headers: dict[str, str] | None = None,
) -> EmailMessage:
    """
    Build a message the relay would receive from a real client: a text/plain
    body, plus a text/html alternative when `html` is given.
    """
    if not text or not text.strip():
        raise EmailSendError("Missing text body.")
    if not rcpt_to:
        raise EmailSendError("No recipients.")

    msg = EmailMessage()
    msg["From"] = mail_from
    msg["To"] = ", ".join(rcpt_to)
    msg["Subject"] = subject or "(no subject)"
    msg["Date"] = formatdate(localtime=True)
    msg["Message-ID"] = make_msgid()
    msg["X-Mailer-Nonce"] = uuid.uuid4().hex

    if headers:
        for k, v in headers.items():
            if k.lower() in {"from", "to", "subject", "date", "message-id"}:
                continue
            msg[k] = v

    msg.set_content(text)
    if html:
        msg.add_alternative(html, subtype="html", charset="utf-8")
    return msg


# ---- Public API --------------------------------------------------------------


def send_test_message(
    host: str,
    port: int,
    *,
    text: str,
    subject: str = "mailrelay test",
    html: str | None = None,
    mail_from: str = "mailrelay@localhost",
    rcpt_to: Iterable[str] | str = ("relay@localhost",),
    timeout: float = 30.0,
) -> str:
    """
    Submit a message to an SMTP server (normally a running relay).

    Returns:
        message_id (str) of the submitted message.

    Raises:
        EmailSendError on any failure, including a rejected DATA command.
    """
    recipients = _as_list(rcpt_to)
    msg = build_message(subject=subject, text=text, html=html, mail_from=mail_from, rcpt_to=recipients)

    try:
        with smtplib.SMTP(host, int(port), timeout=timeout) as server:
            server.ehlo()
            server.send_message(msg, from_addr=mail_from, to_addrs=recipients)
    except smtplib.SMTPDataError as e:
        detail = e.smtp_error.decode("utf-8", "replace") if isinstance(e.smtp_error, bytes) else e.smtp_error
        raise EmailSendError(f"Relay rejected message ({e.smtp_code}): {detail}") from e
    except Exception as e:
        raise EmailSendError(f"SMTP send failed: {e}") from e
    return str(msg["Message-ID"])
