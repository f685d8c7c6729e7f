from __future__ import annotations

import os
from dataclasses import dataclass

from dotenv import load_dotenv


def _parse_telegram_chat_ids(raw: str, *, name: str) -> tuple[str, ...]:
    # Supports a single value or a comma-separated list.
    # Examples:
    #   TELEGRAM_STATUS_CHAT_ID=123456789
    #   TELEGRAM_STATUS_CHAT_ID=123456789,-1001234567890
    parts = [p.strip() for p in raw.split(",")]
    parts = [p for p in parts if p]

    seen: set[str] = set()
    result: list[str] = []
    for p in parts:
        # Telegram allows numeric IDs; groups/supergroups can be negative.
        try:
            int(p)
        except ValueError as e:
            raise RuntimeError(f"Invalid {name} value: {p!r}. Expected integer chat id.") from e

        if p == "0":
            raise RuntimeError(f"Invalid {name} value: '0' is not a valid chat id")

        if p in seen:
            continue
        seen.add(p)
        result.append(p)

    return tuple(result)


@dataclass(frozen=True)
class Settings:
    # Where snapshots, subscriptions and notifications live; ":memory:" keeps them in-process.
    state_file: str = "state.json"

    # Daily report discovery and text extraction
    report_home_url: str = "https://www.kccg.me/"
    report_text_proxy: str = "https://r.jina.ai/http://"

    http_timeout_seconds: float = 30.0

    # How many times a report fetch (discovery + text) is retried on failure.
    fetch_retry_attempts: int = 2

    # Parallel outbound deliveries during one sync run.
    delivery_concurrency: int = 8

    telegram_bot_token: str | None = None
    # Operator chats told about failed sync runs.
    telegram_status_chat_ids: tuple[str, ...] = ()

    vapid_public_key: str | None = None
    vapid_private_key: str | None = None
    vapid_subject: str = "mailto:no-reply@example.com"

    log_level: str = "INFO"


def _optional(name: str) -> str | None:
    value = (os.getenv(name) or "").strip()
    return value or None


def _positive_int(name: str, default: str) -> int:
    raw = os.getenv(name, default)
    try:
        value = int(raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid {name} value: {raw!r}. Expected integer.") from e
    if value < 1:
        raise RuntimeError(f"{name} must be >= 1")
    return value


def load_settings(dotenv_path: str | None = None) -> Settings:
    # Prefer .env in repo root; dotenv_path allows overriding in tests.
    load_dotenv(dotenv_path=dotenv_path, override=False)

    timeout_raw = os.getenv("HTTP_TIMEOUT_SECONDS", "30")
    try:
        http_timeout_seconds = float(timeout_raw)
    except ValueError as e:
        raise RuntimeError(f"Invalid HTTP_TIMEOUT_SECONDS value: {timeout_raw!r}") from e
    if http_timeout_seconds <= 0:
        raise RuntimeError("HTTP_TIMEOUT_SECONDS must be > 0")

    return Settings(
        state_file=os.getenv("STATE_FILE", "state.json"),
        report_home_url=os.getenv("REPORT_HOME_URL", "https://www.kccg.me/"),
        report_text_proxy=os.getenv("REPORT_TEXT_PROXY", "https://r.jina.ai/http://"),
        http_timeout_seconds=http_timeout_seconds,
        fetch_retry_attempts=_positive_int("FETCH_RETRY_ATTEMPTS", "2"),
        delivery_concurrency=_positive_int("DELIVERY_CONCURRENCY", "8"),
        telegram_bot_token=_optional("TELEGRAM_BOT_TOKEN"),
        telegram_status_chat_ids=_parse_telegram_chat_ids(
            os.getenv("TELEGRAM_STATUS_CHAT_ID", ""), name="TELEGRAM_STATUS_CHAT_ID"
        ),
        vapid_public_key=_optional("VAPID_PUBLIC_KEY"),
        vapid_private_key=_optional("VAPID_PRIVATE_KEY"),
        vapid_subject=_optional("VAPID_SUBJECT") or "mailto:no-reply@example.com",
        log_level=os.getenv("LOG_LEVEL", "INFO").strip().upper() or "INFO",
    )
