"""Notification dispatch and delivery-tracking engine."""

from notification_engine.dispatcher import Dispatcher
from notification_engine.engine import NotificationEngine
from notification_engine.receipts import (
    LifetimeUniqueViews,
    ReceiptTracker,
    WindowedUniqueViews,
)
from notification_engine.renderer import render
from notification_engine.resolver import Directory, PreferenceSource, RecipientResolver
from notification_engine.rollup import recompute
from notification_engine.templates import TemplateStore, build_notification

__all__ = [
    "Directory",
    "Dispatcher",
    "LifetimeUniqueViews",
    "NotificationEngine",
    "PreferenceSource",
    "ReceiptTracker",
    "RecipientResolver",
    "TemplateStore",
    "WindowedUniqueViews",
    "build_notification",
    "recompute",
    "render",
]
