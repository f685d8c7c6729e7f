import argparse
import logging
import uuid

from terminbot.bot import CommandBot, run_polling, telegram_sender
from terminbot.config import Settings, load_settings
from terminbot.delivery import build_deliverer
from terminbot.domain import PushEndpoint, SubscriptionError, build_subscription
from terminbot.query import answer_query
from terminbot.report_source import fetch_report
from terminbot.storage import open_store, utc_now_iso
from terminbot.sync import broadcast_status, format_sync_result, load_or_fetch_snapshot, run_sync

logger = logging.getLogger(__name__)


def _setup_logging(level: str) -> None:
    logging.basicConfig(
        level=getattr(logging, level, logging.INFO),
        format="%(asctime)s %(levelname)s %(name)s - %(message)s",
    )


def _build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(description="terminbot: specialist appointment availability watcher")
    sub = parser.add_subparsers(dest="command", required=True)

    sync = sub.add_parser("sync", help="Fetch today's report, detect changes and notify subscribers")
    sync.add_argument("--trigger", default="cli", help="Who started the run (cli, schedule, ...)")

    query = sub.add_parser("query", help="Ask whether there is a slot for a specialist")
    query.add_argument("text", nargs="*", help="Free-text query, e.g. kardiolog")
    query.add_argument("--limit", type=int, default=50)

    subscribe = sub.add_parser("subscribe", help="Create a subscription")
    subscribe.add_argument("--user", required=True)
    subscribe.add_argument("--query", required=True)
    subscribe.add_argument("--channel", default="in_app", choices=["in_app", "webhook", "telegram", "web_push"])
    subscribe.add_argument("--webhook-url")
    subscribe.add_argument("--chat-id")
    subscribe.add_argument("--push-endpoint")
    subscribe.add_argument("--push-p256dh")
    subscribe.add_argument("--push-auth")

    unsubscribe = sub.add_parser("unsubscribe", help="Disable a subscription")
    unsubscribe.add_argument("id")

    subscriptions = sub.add_parser("subscriptions", help="List subscriptions")
    subscriptions.add_argument("--user")

    notifications = sub.add_parser("notifications", help="Show recent notifications of a user")
    notifications.add_argument("--user", required=True)
    notifications.add_argument("--limit", type=int, default=20)

    sub.add_parser("bot", help="Run the Telegram command bot (long polling)")
    return parser


def _cmd_sync(settings: Settings, store, args) -> int:
    result = run_sync(
        trigger=args.trigger,
        store=store,
        fetch=lambda: fetch_report(settings),
        deliverer=build_deliverer(settings),
    )
    print(format_sync_result(result))

    if not result.ok:
        # Operator alert (best-effort)
        try:
            broadcast_status(settings, f"terminbot: sync ({result.trigger}) failed.\nReason: {result.reason}")
        except Exception:
            logger.warning("Failed to send Telegram status message", exc_info=True)
        return 1
    return 0


def _cmd_query(settings: Settings, store, args) -> int:
    snapshot = load_or_fetch_snapshot(store, lambda: fetch_report(settings))
    result = answer_query(snapshot, " ".join(args.text), limit=args.limit)

    print(f"Report: {result.source_report_date} ({result.source_report_url})")
    print(result.answer.text)
    for suggestion in result.answer.suggestions:
        print(f"  ? {suggestion.label}")
    for item in result.items:
        print(f"- [{item.status}] {item.first_available or '-'} | {item.specialist} | {item.section}")
    if result.related_items:
        print(result.related_title or "Related:")
        for item in result.related_items:
            print(f"  - [{item.status}] {item.first_available or '-'} | {item.specialist} | {item.section}")
    return 0


def _cmd_subscribe(settings: Settings, store, args) -> int:
    push = None
    if args.push_endpoint:
        push = PushEndpoint(endpoint=args.push_endpoint, p256dh=args.push_p256dh, auth=args.push_auth)

    now = utc_now_iso()
    try:
        subscription = build_subscription(
            id=f"sub_{uuid.uuid4().hex[:8]}",
            user_id=args.user,
            query=args.query,
            channel=args.channel,
            webhook_url=args.webhook_url,
            chat_id=args.chat_id,
            push=push,
            created_at=now,
            updated_at=now,
        )
    except SubscriptionError as e:
        print(f"Error: {e}")
        return 2

    store.upsert_subscription(subscription)
    print(f"Subscription saved: {subscription.id}")
    return 0


def _cmd_unsubscribe(settings: Settings, store, args) -> int:
    disabled = store.disable_subscription(args.id)
    if disabled is None:
        print("Subscription not found")
        return 1
    print(f"Disabled: {disabled.id}")
    return 0


def _cmd_subscriptions(settings: Settings, store, args) -> int:
    for s in store.list_subscriptions(args.user):
        print(f"{s.id} | {'ON' if s.active else 'OFF'} | {s.channel} | {s.user_id} | {s.query}")
    return 0


def _cmd_notifications(settings: Settings, store, args) -> int:
    for n in store.get_notifications(args.user, args.limit):
        print(f"{n.created_at} [{n.channel}] {n.title}: {n.message}")
    return 0


def _cmd_bot(settings: Settings, store, args) -> int:
    fetch = lambda: fetch_report(settings)  # noqa: E731
    deliverer = build_deliverer(settings)
    bot = CommandBot(
        store=store,
        send=telegram_sender(settings),
        load_snapshot=lambda: load_or_fetch_snapshot(store, fetch),
        run_sync=lambda trigger: run_sync(trigger=trigger, store=store, fetch=fetch, deliverer=deliverer),
    )
    run_polling(settings, bot)
    return 0


_COMMANDS = {
    "sync": _cmd_sync,
    "query": _cmd_query,
    "subscribe": _cmd_subscribe,
    "unsubscribe": _cmd_unsubscribe,
    "subscriptions": _cmd_subscriptions,
    "notifications": _cmd_notifications,
    "bot": _cmd_bot,
}


def main(argv: list[str] | None = None) -> int:
    args = _build_parser().parse_args(argv)

    settings = load_settings()
    _setup_logging(settings.log_level)
    store = open_store(settings.state_file)

    try:
        return _COMMANDS[args.command](settings, store, args)
    except KeyboardInterrupt:
        logger.info("Interrupted")
        return 130


if __name__ == "__main__":
    raise SystemExit(main())
