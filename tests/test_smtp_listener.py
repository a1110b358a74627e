# tests/test_smtp_listener.py
import smtplib

import pytest

from mailrelay import emailer, smtp_listener


@pytest.fixture
def start_listener(free_port):
    started = []

    def _start(destinations, **smtp):
        cfg = {"host": "127.0.0.1", "port": free_port, "app_name": "TestRelay", **smtp}
        ctl = smtp_listener.start(cfg, destinations)
        started.append(ctl)
        return ctl

    yield _start
    for ctl in started:
        ctl.stop()


def test_plain_message_reaches_both_destinations(start_listener, html_recorder, markdown_recorder):
    ctl = start_listener([html_recorder, markdown_recorder])
    host, port = ctl.address

    emailer.send_test_message(host, port, text="This is an email\nThis is another line\n")

    assert html_recorder.messages == ["This is an email\nThis is another line"]
    assert markdown_recorder.messages == ["This is an email\nThis is another line"]


def test_html_alternative_is_preferred(start_listener, html_recorder, markdown_recorder):
    ctl = start_listener([html_recorder, markdown_recorder])
    host, port = ctl.address

    emailer.send_test_message(
        host,
        port,
        text="This is a Bold message!",
        html="This is a <b>bold</b> message!",
    )

    assert html_recorder.last == "This is a <b>bold</b> message!"
    assert markdown_recorder.last == "This is a **bold** message!"


def test_banner_uses_app_name(start_listener, html_recorder):
    ctl = start_listener([html_recorder])
    host, port = ctl.address
    client = smtplib.SMTP()
    try:
        code, banner = client.connect(host, port)
    finally:
        client.close()
    assert code == 220
    assert b"TestRelay" in banner


def test_message_without_text_is_rejected_with_554(start_listener, html_recorder, multipart_message):
    ctl = start_listener([html_recorder])
    host, port = ctl.address
    raw = multipart_message(("application/pdf", b"%PDF-1.4"), subtype="mixed")

    with smtplib.SMTP(host, port) as client:
        with pytest.raises(smtplib.SMTPDataError) as excinfo:
            client.sendmail("sender@example.com", ["relay@example.com"], raw)

    assert excinfo.value.smtp_code == 554
    assert html_recorder.messages == []


def test_failed_delivery_is_a_transient_451(start_listener, recorder_factory):
    ctl = start_listener([recorder_factory("broken", fail="bot was blocked by the user")])
    host, port = ctl.address

    with pytest.raises(emailer.EmailSendError, match=r"\(451\)"):
        emailer.send_test_message(host, port, text="hello")


def test_unexpected_errors_become_451(html_recorder, free_port):
    def _explode(*args, **kwargs):
        raise RuntimeError("unexpected")

    handler = smtp_listener.RelayHandler([html_recorder], relay=_explode)
    ctl = smtp_listener.start({"host": "127.0.0.1", "port": free_port}, [html_recorder], handler=handler)
    try:
        with pytest.raises(emailer.EmailSendError, match=r"\(451\)"):
            emailer.send_test_message("127.0.0.1", free_port, text="hello")
    finally:
        ctl.stop()


def test_stop_is_idempotent(start_listener, html_recorder):
    ctl = start_listener([html_recorder])
    assert ctl.running
    ctl.stop()
    ctl.stop()
    ctl.join(timeout=1)
    assert not ctl.running


def test_build_message_requires_text_and_recipients():
    with pytest.raises(emailer.EmailSendError):
        emailer.build_message(subject="s", text="  ", mail_from="a@example.com", rcpt_to=["b@example.com"])
    with pytest.raises(emailer.EmailSendError):
        emailer.build_message(subject="s", text="x", mail_from="a@example.com", rcpt_to=[])
