from __future__ import annotations

from dataclasses import dataclass, field
from typing import Literal, Union

SlotStatus = Literal["HAS_SLOTS", "NO_SLOTS"]
HAS_SLOTS: SlotStatus = "HAS_SLOTS"
NO_SLOTS: SlotStatus = "NO_SLOTS"

ChangeReason = Literal["NEW_SPECIALIST_WITH_SLOTS", "OPENED_SLOTS", "EARLIER_SLOT"]

DeliveryChannel = Literal["in_app", "webhook", "telegram", "web_push"]
CHANNELS: tuple[str, ...] = ("in_app", "webhook", "telegram", "web_push")


@dataclass(frozen=True)
class ReportMeta:
    report_date: str  # dd.mm.yyyy as published, or ISO date when the page has none
    report_url: str


@dataclass(frozen=True)
class FetchedReport:
    report_text: str
    report_date: str
    report_url: str

    @property
    def meta(self) -> ReportMeta:
        return ReportMeta(report_date=self.report_date, report_url=self.report_url)


@dataclass(frozen=True)
class SlotRecord:
    """One parsed row of the daily report."""

    section: str
    code: str
    specialist: str
    status: SlotStatus
    first_available: str | None  # dd.mm.yyyy. hh:mm
    last_booked: str | None
    source_report_date: str
    source_report_url: str


@dataclass(frozen=True)
class SpecialistSlot:
    """All rows of one specialist within a section, collapsed into one status."""

    key: str  # section::specialist
    section: str
    specialist: str
    status: SlotStatus
    first_available: str | None
    codes: tuple[str, ...]
    variants: int


@dataclass(frozen=True)
class SlotsSnapshot:
    generated_at: str
    source_report_date: str
    source_report_url: str
    records_count: int
    by_specialist: tuple[SpecialistSlot, ...]


@dataclass(frozen=True)
class SlotChange:
    key: str
    section: str
    specialist: str
    reason: ChangeReason
    previous_status: SlotStatus | None
    previous_first_available: str | None
    current_status: SlotStatus
    current_first_available: str | None


@dataclass(frozen=True)
class PushEndpoint:
    """Browser push subscription as handed out by the PushManager API."""

    endpoint: str
    p256dh: str | None = None
    auth: str | None = None
    expiration_time: int | None = None


@dataclass(frozen=True, kw_only=True)
class _SubscriptionBase:
    id: str
    user_id: str
    query: str
    active: bool = True
    created_at: str = ""
    updated_at: str = ""


@dataclass(frozen=True, kw_only=True)
class InAppSubscription(_SubscriptionBase):
    channel: Literal["in_app"] = field(default="in_app", init=False)


@dataclass(frozen=True, kw_only=True)
class WebhookSubscription(_SubscriptionBase):
    webhook_url: str
    channel: Literal["webhook"] = field(default="webhook", init=False)


@dataclass(frozen=True, kw_only=True)
class TelegramSubscription(_SubscriptionBase):
    chat_id: str
    channel: Literal["telegram"] = field(default="telegram", init=False)


@dataclass(frozen=True, kw_only=True)
class WebPushSubscription(_SubscriptionBase):
    push: PushEndpoint
    channel: Literal["web_push"] = field(default="web_push", init=False)


Subscription = Union[InAppSubscription, WebhookSubscription, TelegramSubscription, WebPushSubscription]


@dataclass(frozen=True)
class UserNotification:
    id: str
    user_id: str
    created_at: str
    title: str
    message: str
    payload: SlotChange
    channel: DeliveryChannel


@dataclass(frozen=True)
class SyncResult:
    ok: bool
    skipped: bool
    trigger: str
    source_report_date: str | None = None
    source_report_url: str | None = None
    records_count: int = 0
    specialists_count: int = 0
    changes_count: int = 0
    notifications_count: int = 0
    reason: str | None = None


class ReportFetchError(RuntimeError):
    """The daily report could not be located or downloaded."""


class SubscriptionError(ValueError):
    """Subscription input does not describe a deliverable subscription."""


def build_subscription(
    *,
    id: str,
    user_id: str,
    query: str,
    channel: str = "in_app",
    webhook_url: str | None = None,
    chat_id: str | None = None,
    push: PushEndpoint | None = None,
    active: bool = True,
    created_at: str = "",
    updated_at: str = "",
) -> Subscription:
    user_id = user_id.strip()
    query = query.strip()
    if not user_id or not query:
        raise SubscriptionError("user_id and query are required")

    common = dict(
        id=id,
        user_id=user_id,
        query=query,
        active=active,
        created_at=created_at,
        updated_at=updated_at,
    )

    if channel == "in_app":
        return InAppSubscription(**common)
    if channel == "webhook":
        if not (webhook_url or "").strip():
            raise SubscriptionError("webhook_url is required for webhook channel")
        return WebhookSubscription(webhook_url=webhook_url.strip(), **common)
    if channel == "telegram":
        if not (chat_id or "").strip():
            raise SubscriptionError("chat_id is required for telegram channel")
        return TelegramSubscription(chat_id=chat_id.strip(), **common)
    if channel == "web_push":
        if push is None or not push.endpoint:
            raise SubscriptionError("push endpoint is required for web_push channel")
        return WebPushSubscription(push=push, **common)

    raise SubscriptionError(f"channel must be one of: {', '.join(CHANNELS)}")
