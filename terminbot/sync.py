from __future__ import annotations

import hashlib
import json
import logging
from dataclasses import asdict
from typing import Callable

from terminbot.aggregate import build_snapshot
from terminbot.changes import detect_changes
from terminbot.config import Settings
from terminbot.delivery import Deliverer
from terminbot.domain import FetchedReport, ReportFetchError, SlotsSnapshot, SyncResult
from terminbot.notify import fanout_notifications
from terminbot.report_parser import parse_report
from terminbot.storage import Store
from terminbot.telegram_notifier import send_telegram_message

logger = logging.getLogger(__name__)

ReportFetcher = Callable[[], FetchedReport]


def snapshot_fingerprint(snapshot: SlotsSnapshot) -> str:
    payload = json.dumps([asdict(item) for item in snapshot.by_specialist], ensure_ascii=False, sort_keys=True)
    return hashlib.sha256(payload.encode("utf-8")).hexdigest()


def _is_unchanged(previous: SlotsSnapshot | None, current: SlotsSnapshot) -> bool:
    return (
        previous is not None
        and previous.source_report_url == current.source_report_url
        and previous.source_report_date == current.source_report_date
        and snapshot_fingerprint(previous) == snapshot_fingerprint(current)
    )


def fetch_snapshot(fetch: ReportFetcher) -> SlotsSnapshot:
    report = fetch()
    records = parse_report(report.report_text, report.meta)
    if not records:
        # An empty parse means the layout or the extraction broke, not that the hospital closed.
        raise ReportFetchError("Report contained no parseable rows")
    return build_snapshot(records, report.meta)


def load_or_fetch_snapshot(store: Store, fetch: ReportFetcher) -> SlotsSnapshot:
    snapshot = store.get_latest_snapshot()
    if snapshot is None:
        logger.info("No stored snapshot yet, fetching the current report")
        snapshot = fetch_snapshot(fetch)
        store.save_snapshot(snapshot)
    return snapshot


def run_sync(*, trigger: str, store: Store, fetch: ReportFetcher, deliverer: Deliverer) -> SyncResult:
    """One fetch -> parse -> diff -> notify cycle. Never raises."""

    try:
        previous = store.get_latest_snapshot()
        current = fetch_snapshot(fetch)

        if _is_unchanged(previous, current):
            logger.info("Sync (%s): report %s unchanged, skipping", trigger, current.source_report_date)
            return SyncResult(
                ok=True,
                skipped=True,
                trigger=trigger,
                source_report_date=current.source_report_date,
                source_report_url=current.source_report_url,
                records_count=current.records_count,
                specialists_count=len(current.by_specialist),
                reason="No changes since previous snapshot",
            )

        changes = detect_changes(previous, current)
        subscriptions = [s for s in store.list_subscriptions() if s.active]
        notifications = fanout_notifications(subscriptions, changes, deliverer)

        store.save_snapshot(current)
        store.push_notifications(notifications)

        logger.info(
            "Sync (%s): report=%s specialists=%d changes=%d notifications=%d",
            trigger,
            current.source_report_date,
            len(current.by_specialist),
            len(changes),
            len(notifications),
        )
        return SyncResult(
            ok=True,
            skipped=False,
            trigger=trigger,
            source_report_date=current.source_report_date,
            source_report_url=current.source_report_url,
            records_count=current.records_count,
            specialists_count=len(current.by_specialist),
            changes_count=len(changes),
            notifications_count=len(notifications),
        )

    except Exception as e:
        logger.error("Sync (%s) failed (%s: %s)", trigger, type(e).__name__, e)
        return SyncResult(ok=False, skipped=False, trigger=trigger, reason=str(e) or type(e).__name__)


def format_sync_result(result: SyncResult) -> str:
    if not result.ok:
        return f"Sync failed: {result.reason or 'unknown error'}"
    return "\n".join(
        [
            "Sync done.",
            f"report date: {result.source_report_date or '-'}",
            f"changes: {result.changes_count}",
            f"notifications: {result.notifications_count}",
            f"skipped: yes ({result.reason or 'no changes'})" if result.skipped else "skipped: no",
        ]
    )


def broadcast_status(settings: Settings, text: str) -> None:
    if not settings.telegram_bot_token:
        return

    errors: list[tuple[str, Exception]] = []
    for chat_id in settings.telegram_status_chat_ids:
        try:
            send_telegram_message(
                bot_token=settings.telegram_bot_token,
                chat_id=chat_id,
                text=text,
                timeout_seconds=settings.http_timeout_seconds,
            )
        except Exception as e:
            # Best-effort: don't stop sending to other chat_ids.
            logger.warning("Failed to send status message to chat_id=%s (%s: %s)", chat_id, type(e).__name__, e)
            errors.append((chat_id, e))

    if errors:
        failed = ", ".join([cid for cid, _ in errors])
        raise RuntimeError(f"Failed to send status message to some chats: {failed}")
