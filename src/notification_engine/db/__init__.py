"""Database layer: models, repositories, engine/session utilities."""

from notification_engine.db.base import Base, create_db_engine, create_session_factory
from notification_engine.db.models import NotificationModel, TemplateModel, UserPreference
from notification_engine.db.repositories import (
    NotificationRepository,
    StoredPreferences,
    TemplateRepository,
    UserPreferenceRepository,
)

__all__ = [
    "Base",
    "create_db_engine",
    "create_session_factory",
    "NotificationModel",
    "TemplateModel",
    "UserPreference",
    "NotificationRepository",
    "StoredPreferences",
    "TemplateRepository",
    "UserPreferenceRepository",
]
