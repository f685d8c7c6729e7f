from __future__ import annotations

from typing import Any

import httpx

API_BASE = "https://api.telegram.org"


def _call(
    method: str,
    *,
    bot_token: str,
    payload: dict[str, Any],
    timeout_seconds: float,
    client: httpx.Client | None = None,
) -> Any:
    url = f"{API_BASE}/bot{bot_token}/{method}"

    def _post(c: httpx.Client) -> Any:
        r = c.post(url, json=payload)
        r.raise_for_status()
        data = r.json()
        if not data.get("ok", False):
            raise RuntimeError(f"Telegram API error: {data}")
        return data.get("result")

    if client is not None:
        return _post(client)
    with httpx.Client(timeout=timeout_seconds) as own_client:
        return _post(own_client)


def send_telegram_message(
    *,
    bot_token: str,
    chat_id: str,
    text: str,
    timeout_seconds: float = 20.0,
    client: httpx.Client | None = None,
) -> None:
    _call(
        "sendMessage",
        bot_token=bot_token,
        payload={
            "chat_id": chat_id,
            "text": text,
            "disable_web_page_preview": True,
        },
        timeout_seconds=timeout_seconds,
        client=client,
    )


def get_telegram_updates(
    *,
    bot_token: str,
    offset: int | None = None,
    poll_timeout_seconds: int = 30,
    client: httpx.Client | None = None,
) -> list[dict[str, Any]]:
    payload: dict[str, Any] = {"timeout": poll_timeout_seconds, "allowed_updates": ["message"]}
    if offset is not None:
        payload["offset"] = offset
    # Long polling: the HTTP timeout must outlive the server-side wait.
    result = _call(
        "getUpdates",
        bot_token=bot_token,
        payload=payload,
        timeout_seconds=poll_timeout_seconds + 10,
        client=client,
    )
    return list(result or [])
