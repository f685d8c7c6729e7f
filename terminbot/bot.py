"""Telegram command surface: ask about slots, manage subscriptions, trigger a sync."""

from __future__ import annotations

import logging
import time
import uuid
from typing import Any, Callable

from terminbot.config import Settings
from terminbot.domain import HAS_SLOTS, NO_SLOTS, SlotsSnapshot, SyncResult, TelegramSubscription
from terminbot.query import QueryResult, answer_query
from terminbot.storage import Store, utc_now_iso
from terminbot.sync import format_sync_result
from terminbot.telegram_notifier import get_telegram_updates, send_telegram_message

logger = logging.getLogger(__name__)

SendMessage = Callable[[str, str], None]
SnapshotLoader = Callable[[], SlotsSnapshot]
SyncRunner = Callable[[str], SyncResult]

MAX_LISTED_SUBSCRIPTIONS = 25


def start_text() -> str:
    return "\n".join(
        [
            "Ima li terminaaa!?",
            "",
            "Kako da dobijas obavjestenja:",
            "1) /sub <specijalista> (npr. /sub reumatolog)",
            "2) /list (vidi pretplate)",
            "3) /unsub <id> ili /unsuball (odjava)",
            "",
            "Provjera: samo posalji rijec (npr. reumatolog).",
            "Test odmah: /sync (pokreni provjeru sad)",
        ]
    )


def split_command(raw: str) -> tuple[str, str]:
    text = raw.strip()
    if not text:
        return "", ""
    head, _, args = text.partition(" ")
    # Group chats send /cmd@botname
    return head.split("@")[0].lower(), args.strip()


def format_now_answer(query: str, result: QueryResult) -> str:
    source = f"Izvjestaj: {result.source_report_date}" if result.source_report_date else None
    answer = result.answer

    # Combined verdicts (endo/cardio/neuro/CT...) carry an explicit status.
    if answer.status == HAS_SLOTS:
        first = answer.first_available or "nepoznato"
        line = f"Prvi dostupni termin: {first} ({answer.specialist})" if answer.specialist else f"Prvi dostupni termin: {first}"
        return "\n".join(x for x in ("IMA TERMINA", line, source) if x)

    if answer.status == NO_SLOTS:
        return "\n".join(x for x in ("NEMA TERMINA", source) if x)

    if not result.items:
        return "\n".join(x for x in (f"Nijesam nasao rezultate za: {query}", source) if x)

    # Items are sorted by status and date: the first one with a date is the earliest.
    best = next((item for item in result.items if item.status == HAS_SLOTS and item.first_available), None)
    if best is not None:
        hint = "Ako zelis preciznije, posalji naziv ambulante iz liste na sajtu." if len(result.items) > 1 else None
        return "\n".join(
            x for x in ("IMA TERMINA", f"Prvi dostupni termin: {best.first_available} ({best.specialist})", source, hint) if x
        )

    return "\n".join(x for x in ("NEMA TERMINA", source) if x)


class CommandBot:
    def __init__(
        self,
        *,
        store: Store,
        send: SendMessage,
        load_snapshot: SnapshotLoader,
        run_sync: SyncRunner,
    ) -> None:
        self._store = store
        self._send = send
        self._load_snapshot = load_snapshot
        self._run_sync = run_sync

    def handle_message(self, chat_id: str, text: str) -> None:
        text = (text or "").strip()
        if not chat_id or not text:
            return

        try:
            self._dispatch(chat_id, text)
        except Exception as e:
            logger.error("Command failed for chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            try:
                self._send(chat_id, "Something went wrong while processing your command. Try again in a minute.")
            except Exception:
                logger.warning("Failed to send error reply to chat_id=%s", chat_id, exc_info=True)

    def _query(self, query: str) -> QueryResult | None:
        try:
            return answer_query(self._load_snapshot(), query)
        except Exception as e:
            logger.warning("Query %r failed (%s: %s)", query, type(e).__name__, e)
            return None

    def _dispatch(self, chat_id: str, text: str) -> None:
        user_id = f"tg:{chat_id}"
        cmd, args = split_command(text)

        if cmd in ("/start", "/help"):
            self._send(chat_id, start_text())
            return

        if cmd == "/test":
            self._send(chat_id, "OK. Bot is alive.")
            return

        if cmd == "/id":
            self._send(chat_id, f"chat_id: {chat_id}\nuser_id: {user_id}")
            return

        if cmd == "/sync":
            self._send(chat_id, "Running sync... (this can take ~10-30s)")
            self._send(chat_id, format_sync_result(self._run_sync("telegram")))
            return

        if cmd == "/list":
            items = self._store.list_subscriptions(user_id)[:MAX_LISTED_SUBSCRIPTIONS]
            if not items:
                self._send(chat_id, "No subscriptions yet. Use /sub <query>.")
                return
            lines = [f"{s.id} | {'ON' if s.active else 'OFF'} | {s.query}" for s in items]
            self._send(chat_id, "\n".join(["Your subscriptions:", *lines]))
            return

        if cmd == "/unsuball":
            count = 0
            for item in self._store.list_subscriptions(user_id):
                if item.active:
                    self._store.disable_subscription(item.id)
                    count += 1
            self._send(chat_id, f"Disabled: {count}")
            return

        if cmd == "/unsub":
            sub_id = args.split()[0] if args else ""
            if not sub_id:
                self._send(chat_id, "Usage: /unsub <id>")
                return
            owned = any(s.id == sub_id for s in self._store.list_subscriptions(user_id))
            if not owned:
                self._send(chat_id, "Not found. Use /list to see ids.")
                return
            self._store.disable_subscription(sub_id)
            self._send(chat_id, f"Disabled: {sub_id}")
            return

        if cmd == "/sub":
            if not args:
                self._send(chat_id, "Usage: /sub <specijalista>")
                return
            self._send(chat_id, "Treba mi 10 sekundi.")
            result = self._query(args)

            now = utc_now_iso()
            subscription = TelegramSubscription(
                id=f"sub_{uuid.uuid4().hex[:8]}",
                user_id=user_id,
                query=args,
                chat_id=chat_id,
                created_at=now,
                updated_at=now,
            )
            self._store.upsert_subscription(subscription)

            status = format_now_answer(args, result) if result else f"Nijesam uspio da provjerim trenutno stanje za: {args}"
            self._send(chat_id, f"{status}\n\nPretplata sacuvana: {subscription.id}")
            return

        # Plain text: current status only, no subscription.
        self._send(chat_id, "Treba mi 10 sekundi.")
        result = self._query(text)
        if result is None:
            self._send(chat_id, f"Nijesam uspio da provjerim trenutno stanje za: {text}")
            return
        self._send(chat_id, format_now_answer(text, result))


def _message_of(update: dict[str, Any]) -> tuple[str, str] | None:
    message = update.get("message") or {}
    chat_id = (message.get("chat") or {}).get("id")
    text = str(message.get("text") or "").strip()
    if chat_id is None or not text:
        return None
    return str(chat_id), text


def run_polling(settings: Settings, bot: CommandBot, *, idle_seconds: float = 5.0) -> None:
    if not settings.telegram_bot_token:
        raise RuntimeError("TELEGRAM_BOT_TOKEN is required to run the bot")

    logger.info("Bot polling started")
    offset: int | None = None
    while True:
        try:
            updates = get_telegram_updates(bot_token=settings.telegram_bot_token, offset=offset)
        except Exception as e:
            logger.error("getUpdates failed (%s: %s)", type(e).__name__, e)
            time.sleep(idle_seconds)
            continue

        for update in updates:
            offset = int(update["update_id"]) + 1
            message = _message_of(update)
            if message is not None:
                bot.handle_message(*message)


def telegram_sender(settings: Settings) -> SendMessage:
    def send(chat_id: str, text: str) -> None:
        # A lost reply must not abort the rest of the command.
        try:
            send_telegram_message(
                bot_token=settings.telegram_bot_token or "",
                chat_id=chat_id,
                text=text,
                timeout_seconds=settings.http_timeout_seconds,
            )
        except Exception as e:
            logger.warning("sendMessage to chat_id=%s failed (%s: %s)", chat_id, type(e).__name__, e)

    return send
