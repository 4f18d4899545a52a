from __future__ import annotations

import logging
import threading
from dataclasses import dataclass, field
from typing import Any, Protocol

import resend

from app.core.config import get_settings


logger = logging.getLogger("app.notifications")


@dataclass(frozen=True, slots=True)
class NotificationMessage:
    kind: str
    recipient: str
    subject: str
    body: str
    cc: tuple[str, ...] = ()
    payload: dict[str, Any] = field(default_factory=dict)


class NotificationDeliveryError(Exception):
    pass


class NotificationGateway(Protocol):
    name: str

    def send(self, message: NotificationMessage) -> None:
        """Deliver one message; raise on failure."""


class LogNotificationGateway:
    name = "log"

    def send(self, message: NotificationMessage) -> None:
        logger.info(
            "notification_logged",
            extra={"notification_kind": message.kind, "recipient": message.recipient, "outcome": "delivered"},
        )


class ResendNotificationGateway:
    name = "resend"

    def __init__(self, api_key: str, sender: str) -> None:
        if not api_key:
            raise ValueError("resend gateway requires an api key")
        self.api_key = api_key
        self.sender = sender

    def send(self, message: NotificationMessage) -> None:
        resend.api_key = self.api_key
        email_data: dict[str, Any] = {
            "from": self.sender,
            "to": [message.recipient],
            "subject": message.subject,
            "text": message.body,
        }
        if message.cc:
            email_data["cc"] = list(message.cc)
        try:
            resend.Emails.send(email_data)
        except Exception as exc:
            raise NotificationDeliveryError(f"resend rejected {message.kind}: {exc}") from exc


class InMemoryNotificationGateway:
    name = "memory"

    def __init__(self, fail_kinds: set[str] | None = None, fail_recipients: set[str] | None = None) -> None:
        self.sent: list[NotificationMessage] = []
        self.fail_kinds = set(fail_kinds or set())
        self.fail_recipients = set(fail_recipients or set())

    def send(self, message: NotificationMessage) -> None:
        if message.kind in self.fail_kinds or message.recipient in self.fail_recipients:
            raise NotificationDeliveryError(f"delivery refused for {message.kind} to {message.recipient}")
        self.sent.append(message)

    def sent_kinds(self) -> list[str]:
        return [message.kind for message in self.sent]


_GATEWAY_LOCK = threading.Lock()
_GATEWAY: NotificationGateway = LogNotificationGateway()


def build_gateway_from_settings() -> NotificationGateway:
    settings = get_settings()
    backend = settings.notification_backend.lower()
    if backend == "resend":
        return ResendNotificationGateway(settings.resend_api_key or "", settings.email_from)
    if backend == "memory":
        return InMemoryNotificationGateway()
    return LogNotificationGateway()


def get_notification_gateway() -> NotificationGateway:
    return _GATEWAY


def set_notification_gateway(gateway: NotificationGateway) -> None:
    global _GATEWAY
    with _GATEWAY_LOCK:
        _GATEWAY = gateway
