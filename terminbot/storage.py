"""Persistence for snapshots, subscriptions and per-user notifications.

Every operation reads the whole state, computes the new value and writes the
whole state back. There is no locking: sync runs are expected not to overlap.
"""

from __future__ import annotations

import datetime as dt
import json
import logging
import os
import tempfile
from abc import ABC, abstractmethod
from dataclasses import asdict, dataclass, field, replace
from typing import Any, Iterable, Protocol

from terminbot.domain import (
    PushEndpoint,
    SlotChange,
    SlotsSnapshot,
    SpecialistSlot,
    Subscription,
    UserNotification,
    WebhookSubscription,
    TelegramSubscription,
    WebPushSubscription,
    build_subscription,
)

logger = logging.getLogger(__name__)

MAX_NOTIFICATIONS_PER_USER = 200
MEMORY_STATE = ":memory:"


def utc_now_iso() -> str:
    return dt.datetime.now(dt.timezone.utc).isoformat()


class SnapshotStore(Protocol):
    def get_latest_snapshot(self) -> SlotsSnapshot | None:
        ...

    def get_snapshot_by_date(self, report_date: str) -> SlotsSnapshot | None:
        ...

    def save_snapshot(self, snapshot: SlotsSnapshot) -> None:
        ...


class SubscriptionStore(Protocol):
    def list_subscriptions(self, user_id: str | None = None) -> list[Subscription]:
        ...

    def upsert_subscription(self, subscription: Subscription) -> None:
        ...

    def disable_subscription(self, subscription_id: str) -> Subscription | None:
        ...


class NotificationStore(Protocol):
    def push_notifications(self, notifications: Iterable[UserNotification]) -> None:
        ...

    def get_notifications(self, user_id: str, limit: int = 50) -> list[UserNotification]:
        ...


class Store(SnapshotStore, SubscriptionStore, NotificationStore, Protocol):
    """Everything a sync run or the bot needs from persistence."""


# --- (de)serialization -------------------------------------------------------


def snapshot_to_dict(snapshot: SlotsSnapshot) -> dict[str, Any]:
    data = asdict(snapshot)
    for item in data["by_specialist"]:
        item["codes"] = list(item["codes"])
    data["by_specialist"] = list(data["by_specialist"])
    return data


def snapshot_from_dict(raw: dict[str, Any]) -> SlotsSnapshot:
    return SlotsSnapshot(
        generated_at=str(raw["generated_at"]),
        source_report_date=str(raw["source_report_date"]),
        source_report_url=str(raw["source_report_url"]),
        records_count=int(raw["records_count"]),
        by_specialist=tuple(
            SpecialistSlot(
                key=str(item["key"]),
                section=str(item["section"]),
                specialist=str(item["specialist"]),
                status=item["status"],
                first_available=item.get("first_available"),
                codes=tuple(item.get("codes") or ()),
                variants=int(item.get("variants", 1)),
            )
            for item in raw.get("by_specialist", [])
        ),
    )


def subscription_to_dict(subscription: Subscription) -> dict[str, Any]:
    data: dict[str, Any] = {
        "id": subscription.id,
        "user_id": subscription.user_id,
        "query": subscription.query,
        "channel": subscription.channel,
        "active": subscription.active,
        "created_at": subscription.created_at,
        "updated_at": subscription.updated_at,
    }
    if isinstance(subscription, WebhookSubscription):
        data["webhook_url"] = subscription.webhook_url
    elif isinstance(subscription, TelegramSubscription):
        data["chat_id"] = subscription.chat_id
    elif isinstance(subscription, WebPushSubscription):
        data["push"] = asdict(subscription.push)
    return data


def subscription_from_dict(raw: dict[str, Any]) -> Subscription:
    push_raw = raw.get("push")
    return build_subscription(
        id=str(raw["id"]),
        user_id=str(raw["user_id"]),
        query=str(raw["query"]),
        channel=str(raw.get("channel", "in_app")),
        webhook_url=raw.get("webhook_url"),
        chat_id=raw.get("chat_id"),
        push=PushEndpoint(**push_raw) if push_raw else None,
        active=bool(raw.get("active", True)),
        created_at=str(raw.get("created_at", "")),
        updated_at=str(raw.get("updated_at", "")),
    )


def notification_to_dict(notification: UserNotification) -> dict[str, Any]:
    return asdict(notification)


def notification_from_dict(raw: dict[str, Any]) -> UserNotification:
    return UserNotification(
        id=str(raw["id"]),
        user_id=str(raw["user_id"]),
        created_at=str(raw["created_at"]),
        title=str(raw["title"]),
        message=str(raw["message"]),
        payload=SlotChange(**raw["payload"]),
        channel=raw["channel"],
    )


# --- stores ------------------------------------------------------------------


@dataclass
class _State:
    latest_snapshot: SlotsSnapshot | None = None
    snapshots_by_date: dict[str, SlotsSnapshot] = field(default_factory=dict)
    subscriptions: list[Subscription] = field(default_factory=list)
    notifications_by_user: dict[str, list[UserNotification]] = field(default_factory=dict)


def _safe_limit(limit: int) -> int:
    return max(1, min(int(limit), MAX_NOTIFICATIONS_PER_USER))


class _WholeStateStore(ABC):
    """Store operations on top of a whole-state read/write pair."""

    @abstractmethod
    def _read(self) -> _State:
        ...

    @abstractmethod
    def _write(self, state: _State) -> None:
        ...

    def get_latest_snapshot(self) -> SlotsSnapshot | None:
        return self._read().latest_snapshot

    def get_snapshot_by_date(self, report_date: str) -> SlotsSnapshot | None:
        return self._read().snapshots_by_date.get(report_date)

    def save_snapshot(self, snapshot: SlotsSnapshot) -> None:
        state = self._read()
        state.latest_snapshot = snapshot
        state.snapshots_by_date[snapshot.source_report_date] = snapshot
        self._write(state)

    def list_subscriptions(self, user_id: str | None = None) -> list[Subscription]:
        subscriptions = self._read().subscriptions
        if user_id is None:
            return list(subscriptions)
        return [s for s in subscriptions if s.user_id == user_id]

    def upsert_subscription(self, subscription: Subscription) -> None:
        state = self._read()
        for idx, existing in enumerate(state.subscriptions):
            if existing.id == subscription.id:
                state.subscriptions[idx] = subscription
                break
        else:
            state.subscriptions.append(subscription)
        self._write(state)

    def disable_subscription(self, subscription_id: str) -> Subscription | None:
        state = self._read()
        for idx, existing in enumerate(state.subscriptions):
            if existing.id == subscription_id:
                updated = replace(existing, active=False, updated_at=utc_now_iso())
                state.subscriptions[idx] = updated
                self._write(state)
                return updated
        return None

    def push_notifications(self, notifications: Iterable[UserNotification]) -> None:
        notifications = list(notifications)
        if not notifications:
            return
        state = self._read()
        for item in notifications:
            existing = state.notifications_by_user.get(item.user_id, [])
            state.notifications_by_user[item.user_id] = [item, *existing][:MAX_NOTIFICATIONS_PER_USER]
        self._write(state)

    def get_notifications(self, user_id: str, limit: int = 50) -> list[UserNotification]:
        return self._read().notifications_by_user.get(user_id, [])[: _safe_limit(limit)]


class MemoryStore(_WholeStateStore):
    """In-process store. Create one per process and hand it to whoever needs it."""

    def __init__(self) -> None:
        self._state = _State()

    def _read(self) -> _State:
        s = self._state
        return _State(
            latest_snapshot=s.latest_snapshot,
            snapshots_by_date=dict(s.snapshots_by_date),
            subscriptions=list(s.subscriptions),
            notifications_by_user={k: list(v) for k, v in s.notifications_by_user.items()},
        )

    def _write(self, state: _State) -> None:
        self._state = state


class JsonFileStore(_WholeStateStore):
    """Whole state in one JSON file, replaced atomically on every write."""

    def __init__(self, path: str) -> None:
        self.path = path

    def _read(self) -> _State:
        if not os.path.exists(self.path):
            return _State()

        try:
            with open(self.path, "r", encoding="utf-8") as f:
                raw = json.load(f)
        except json.JSONDecodeError:
            # Corrupted state shouldn't brick the bot; start fresh.
            logger.warning("State file %s is not valid JSON, starting with empty state", self.path)
            return _State()

        if not isinstance(raw, dict):
            logger.warning("State file %s does not hold a JSON object, starting with empty state", self.path)
            return _State()

        latest = raw.get("latest_snapshot")
        return _State(
            latest_snapshot=snapshot_from_dict(latest) if latest else None,
            snapshots_by_date={k: snapshot_from_dict(v) for k, v in (raw.get("snapshots_by_date") or {}).items()},
            subscriptions=[subscription_from_dict(s) for s in raw.get("subscriptions") or []],
            notifications_by_user={
                user_id: [notification_from_dict(n) for n in items]
                for user_id, items in (raw.get("notifications_by_user") or {}).items()
            },
        )

    def _write(self, state: _State) -> None:
        data = {
            "latest_snapshot": snapshot_to_dict(state.latest_snapshot) if state.latest_snapshot else None,
            "snapshots_by_date": {k: snapshot_to_dict(v) for k, v in state.snapshots_by_date.items()},
            "subscriptions": [subscription_to_dict(s) for s in state.subscriptions],
            "notifications_by_user": {
                user_id: [notification_to_dict(n) for n in items]
                for user_id, items in state.notifications_by_user.items()
            },
        }

        folder = os.path.dirname(os.path.abspath(self.path))
        if folder and not os.path.exists(folder):
            os.makedirs(folder, exist_ok=True)

        # Atomic write
        with tempfile.NamedTemporaryFile("w", delete=False, encoding="utf-8", dir=folder, suffix=".tmp") as tf:
            json.dump(data, tf, ensure_ascii=False, indent=2)
            tmp_name = tf.name

        os.replace(tmp_name, self.path)


def open_store(state_file: str) -> Store:
    if state_file == MEMORY_STATE:
        return MemoryStore()
    return JsonFileStore(state_file)

