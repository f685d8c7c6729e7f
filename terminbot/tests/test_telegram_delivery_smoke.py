"""Smoke/integration test for Telegram delivery.

This test talks to the real Telegram API and is skipped by default.
To run it, set:
    TELEGRAM_BOT_TOKEN
    TELEGRAM_STATUS_CHAT_ID

TELEGRAM_STATUS_CHAT_ID may be a single id ("123") or a csv list ("123,456");
only the *first* id is used so nobody gets spammed.

Run:
TELEGRAM_BOT_TOKEN=123 TELEGRAM_STATUS_CHAT_ID=123 python -m pytest -q -m telegram

"""

from __future__ import annotations

import os

import pytest

from terminbot.telegram_notifier import get_telegram_updates, send_telegram_message


pytestmark = pytest.mark.telegram

_requires_telegram = pytest.mark.skipif(
    not os.getenv("TELEGRAM_BOT_TOKEN") or not os.getenv("TELEGRAM_STATUS_CHAT_ID"),
    reason="Set TELEGRAM_BOT_TOKEN and TELEGRAM_STATUS_CHAT_ID to run Telegram smoke test",
)


def _first_chat_id(raw: str) -> str:
    return raw.split(",", 1)[0].strip()


@_requires_telegram
def test_telegram_message_delivery_smoke() -> None:
    send_telegram_message(
        bot_token=os.environ["TELEGRAM_BOT_TOKEN"],
        chat_id=_first_chat_id(os.environ["TELEGRAM_STATUS_CHAT_ID"]),
        text="terminbot: Telegram smoke test (pytest)",
    )


@_requires_telegram
def test_telegram_get_updates_smoke() -> None:
    updates = get_telegram_updates(bot_token=os.environ["TELEGRAM_BOT_TOKEN"], poll_timeout_seconds=0)
    assert isinstance(updates, list)
