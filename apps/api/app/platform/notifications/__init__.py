from app.platform.notifications.gateway import (
    InMemoryNotificationGateway,
    LogNotificationGateway,
    NotificationGateway,
    NotificationMessage,
    build_gateway_from_settings,
    ResendNotificationGateway,
    get_notification_gateway,
    set_notification_gateway,
)
from app.platform.notifications.service import NotificationService, notification_service

__all__ = [
    "InMemoryNotificationGateway",
    "LogNotificationGateway",
    "NotificationGateway",
    "NotificationMessage",
    "NotificationService",
    "ResendNotificationGateway",
    "build_gateway_from_settings",
    "get_notification_gateway",
    "notification_service",
    "set_notification_gateway",
]
