from __future__ import annotations

import datetime as dt
import logging
import uuid
from concurrent.futures import ThreadPoolExecutor
from typing import Iterable

from terminbot.delivery import Deliverer
from terminbot.domain import SlotChange, Subscription, UserNotification
from terminbot.normalize import expand_aliases, normalize_for_search

logger = logging.getLogger(__name__)


def subscription_matches_change(subscription: Subscription, change: SlotChange) -> bool:
    if not subscription.active:
        return False
    # "reumatolog" has to hit "Reumatoloska ambulanta": compare every spelling of the query.
    needles = expand_aliases(subscription.query)
    if not needles:
        return False
    haystack = normalize_for_search(f"{change.specialist} {change.section} {change.key}")
    return any(needle in haystack for needle in needles)


def _format_message(change: SlotChange) -> str:
    current = change.current_first_available or "unknown"
    if change.reason == "OPENED_SLOTS":
        return f"Slots opened. First available: {current}"
    if change.reason == "EARLIER_SLOT":
        return f"Earlier slot found: {current} (was {change.previous_first_available or 'unknown'})"
    return f"New specialist with slots. First available: {current}"


def build_notification(subscription: Subscription, change: SlotChange, *, created_at: str | None = None) -> UserNotification:
    return UserNotification(
        id=f"notif_{uuid.uuid4().hex[:8]}",
        user_id=subscription.user_id,
        created_at=created_at or dt.datetime.now(dt.timezone.utc).isoformat(),
        title=f"Slot update: {change.specialist}",
        message=_format_message(change),
        payload=change,
        channel=subscription.channel,
    )


def _deliver_best_effort(deliverer: Deliverer, subscription: Subscription, notification: UserNotification) -> bool:
    try:
        deliverer.deliver(subscription, notification)
        return True
    except Exception as e:
        # Best-effort: the notification stays recorded even if the channel is down.
        logger.warning(
            "Delivery failed channel=%s subscription=%s (%s: %s)",
            subscription.channel,
            subscription.id,
            type(e).__name__,
            e,
        )
        return False


def fanout_notifications(
    subscriptions: Iterable[Subscription],
    changes: Iterable[SlotChange],
    deliverer: Deliverer,
) -> list[UserNotification]:
    """Build one notification per matching (subscription, change) pair and deliver it.

    Deliveries run concurrently (bounded by ``deliverer.max_workers``) and all
    of them are awaited; a failing delivery never affects the others. The
    returned list is in (subscription, change) order and includes
    notifications whose delivery failed.
    """

    changes = list(changes)
    pairs: list[tuple[Subscription, UserNotification]] = []
    for subscription in subscriptions:
        for change in changes:
            if subscription_matches_change(subscription, change):
                pairs.append((subscription, build_notification(subscription, change)))

    if not pairs:
        return []

    with ThreadPoolExecutor(max_workers=max(1, deliverer.max_workers)) as pool:
        outcomes = list(pool.map(lambda pair: _deliver_best_effort(deliverer, *pair), pairs))

    failed = outcomes.count(False)
    logger.info("Fanout: notifications=%d delivery_failures=%d", len(pairs), failed)
    return [notification for _, notification in pairs]
