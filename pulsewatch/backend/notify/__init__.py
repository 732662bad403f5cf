"""notify/__init__.py"""
from .channels import BaseChannel, EmailChannel, LogChannel, WebhookChannel, WebSocketChannel
from .dispatch import ROUTES, NotificationDispatcher, route
from .models import Notification, Urgency

__all__ = [
    "BaseChannel",
    "EmailChannel",
    "LogChannel",
    "WebhookChannel",
    "WebSocketChannel",
    "NotificationDispatcher",
    "Notification",
    "ROUTES",
    "Urgency",
    "route",
]
