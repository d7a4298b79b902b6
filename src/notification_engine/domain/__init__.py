"""Domain models: templates, recipient specifications, the notification aggregate."""

from notification_engine.domain.notification import (
    Analytics,
    ApprovalStatus,
    ChannelStats,
    DeliveryAttempt,
    DeliveryRecord,
    DeliverySettings,
    DeliveryStatus,
    DeviceInfo,
    Notification,
    PlatformStats,
    RelatedEntity,
)
from notification_engine.domain.recipients import (
    AttributeFilter,
    ClassTarget,
    RecipientSpec,
    StudentFilters,
    TeacherFilters,
)
from notification_engine.domain.template import (
    Template,
    TemplateSettings,
    TemplateUsage,
    TemplateVariable,
)

__all__ = [
    "Analytics",
    "ApprovalStatus",
    "ChannelStats",
    "DeliveryAttempt",
    "DeliveryRecord",
    "DeliverySettings",
    "DeliveryStatus",
    "DeviceInfo",
    "Notification",
    "PlatformStats",
    "RelatedEntity",
    "AttributeFilter",
    "ClassTarget",
    "RecipientSpec",
    "StudentFilters",
    "TeacherFilters",
    "Template",
    "TemplateSettings",
    "TemplateUsage",
    "TemplateVariable",
]
