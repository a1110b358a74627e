import os

import pytest

from mailrelay.destinations import TelegramDestination
from mailrelay.message import process_message

pytestmark = pytest.mark.live


def test_telegram_send_live(single_message):
    token = os.getenv("LIVE_TELEGRAM_TOKEN")
    chat_id = os.getenv("LIVE_TELEGRAM_CHAT_ID")
    if not (token and chat_id):
        pytest.skip("LIVE_TELEGRAM_TOKEN / LIVE_TELEGRAM_CHAT_ID not set")

    rendered = process_message(single_message("<b>mailrelay</b> live test<br>second line", content_type="text/html"))
    dest = TelegramDestination(token, chat_id, api_url=os.getenv("LIVE_TELEGRAM_API_URL"))
    try:
        dest.send(rendered.for_destination(dest.wants_markdown()))
    finally:
        dest.close()
