"""Outbound channels for slot notifications.

Senders raise on failure; deciding what a failure means is left to the caller.
"""

from __future__ import annotations

import json
import logging
from dataclasses import dataclass

import httpx
from pywebpush import webpush

from terminbot.config import Settings
from terminbot.domain import (
    InAppSubscription,
    PushEndpoint,
    Subscription,
    TelegramSubscription,
    UserNotification,
    WebhookSubscription,
    WebPushSubscription,
)
from terminbot.storage import notification_to_dict
from terminbot.telegram_notifier import send_telegram_message

logger = logging.getLogger(__name__)


class WebhookSender:
    def __init__(self, *, timeout_seconds: float = 10.0, client: httpx.Client | None = None) -> None:
        self._timeout_seconds = timeout_seconds
        self._client = client

    def send(self, url: str, notification: UserNotification) -> None:
        body = notification_to_dict(notification)
        if self._client is not None:
            self._client.post(url, json=body).raise_for_status()
            return
        with httpx.Client(timeout=self._timeout_seconds) as client:
            client.post(url, json=body).raise_for_status()


class TelegramSender:
    def __init__(self, *, bot_token: str, timeout_seconds: float = 20.0, client: httpx.Client | None = None) -> None:
        self._bot_token = bot_token
        self._timeout_seconds = timeout_seconds
        self._client = client

    def send(self, chat_id: str, notification: UserNotification) -> None:
        send_telegram_message(
            bot_token=self._bot_token,
            chat_id=chat_id,
            text=f"{notification.title}\n{notification.message}",
            timeout_seconds=self._timeout_seconds,
            client=self._client,
        )


@dataclass(frozen=True)
class VapidCredentials:
    public_key: str
    private_key: str
    subject: str = "mailto:no-reply@example.com"


class WebPushSender:
    """Push delivery with VAPID credentials fixed at construction."""

    def __init__(self, credentials: VapidCredentials, *, timeout_seconds: float = 10.0) -> None:
        self._credentials = credentials
        self._timeout_seconds = timeout_seconds

    @staticmethod
    def subscription_info(push: PushEndpoint) -> dict:
        info: dict = {"endpoint": push.endpoint, "keys": {}}
        if push.p256dh:
            info["keys"]["p256dh"] = push.p256dh
        if push.auth:
            info["keys"]["auth"] = push.auth
        return info

    @staticmethod
    def payload(notification: UserNotification) -> str:
        return json.dumps(
            {
                "title": notification.title,
                "body": notification.message,
                "data": {"id": notification.id, "userId": notification.user_id},
            },
            ensure_ascii=False,
        )

    def send(self, push: PushEndpoint, notification: UserNotification) -> None:
        webpush(
            subscription_info=self.subscription_info(push),
            data=self.payload(notification),
            vapid_private_key=self._credentials.private_key,
            # webpush() fills in aud/exp, so hand it a fresh dict every time.
            vapid_claims={"sub": self._credentials.subject},
            timeout=self._timeout_seconds,
        )


@dataclass
class Deliverer:
    """Routes a notification to the sender of its subscription's channel.

    A channel without a configured sender is skipped, in-app needs no sender.
    """

    webhook: WebhookSender | None = None
    telegram: TelegramSender | None = None
    web_push: WebPushSender | None = None
    max_workers: int = 8

    def deliver(self, subscription: Subscription, notification: UserNotification) -> None:
        if isinstance(subscription, InAppSubscription):
            return
        if isinstance(subscription, WebhookSubscription):
            if self.webhook is not None:
                self.webhook.send(subscription.webhook_url, notification)
                return
        elif isinstance(subscription, TelegramSubscription):
            if self.telegram is not None:
                self.telegram.send(subscription.chat_id, notification)
                return
        elif isinstance(subscription, WebPushSubscription):
            if self.web_push is not None:
                self.web_push.send(subscription.push, notification)
                return
        logger.debug("No sender configured for channel=%s, subscription=%s", subscription.channel, subscription.id)


def build_deliverer(settings: Settings) -> Deliverer:
    telegram = None
    if settings.telegram_bot_token:
        telegram = TelegramSender(bot_token=settings.telegram_bot_token, timeout_seconds=settings.http_timeout_seconds)

    web_push = None
    if settings.vapid_public_key and settings.vapid_private_key:
        web_push = WebPushSender(
            VapidCredentials(
                public_key=settings.vapid_public_key,
                private_key=settings.vapid_private_key,
                subject=settings.vapid_subject,
            ),
            timeout_seconds=settings.http_timeout_seconds,
        )

    return Deliverer(
        webhook=WebhookSender(timeout_seconds=settings.http_timeout_seconds),
        telegram=telegram,
        web_push=web_push,
        max_workers=settings.delivery_concurrency,
    )
