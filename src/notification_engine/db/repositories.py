"""Data access repositories with constructor-injected sessions."""

import datetime
from uuid import UUID

from sqlalchemy import select
from sqlalchemy.orm import Session, sessionmaker
from sqlalchemy.orm.exc import StaleDataError

from notification_engine.domain.notification import Notification
from notification_engine.domain.template import Template
from notification_engine.db.models import NotificationModel, TemplateModel, UserPreference
from notification_engine.enums import ALL_CHANNELS, Channel, NotificationStatus
from notification_engine.errors import ConcurrentUpdateError

_EXPIRABLE = [
    NotificationStatus.DRAFT,
    NotificationStatus.PENDING_APPROVAL,
    NotificationStatus.APPROVED,
    NotificationStatus.SCHEDULED,
]


def _notification_document(notification: Notification) -> dict:
    return notification.model_dump(mode="json", exclude={"version"})


def _to_notification(row: NotificationModel) -> Notification:
    return Notification.model_validate({**row.document, "version": row.version})


class NotificationRepository:
    """Data access for the notifications table."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, notification: Notification) -> Notification:
        """Insert a new aggregate and flush to assign its version."""
        row = NotificationModel(id=notification.id, document={})
        self._fill(row, notification)
        self._session.add(row)
        self._session.flush()
        notification.version = row.version
        return notification

    def get_by_id(self, notification_id: UUID) -> Notification | None:
        """Fetch and rebuild an aggregate by primary key."""
        row = self._session.get(NotificationModel, notification_id)
        if row is None:
            return None
        return _to_notification(row)

    def save(self, notification: Notification) -> Notification:
        """Write the aggregate back in one row update.

        Raises ConcurrentUpdateError if the row changed since *notification*
        was loaded, or if it no longer exists.
        """
        row = self._session.get(NotificationModel, notification.id)
        if row is None or row.version != notification.version:
            raise ConcurrentUpdateError(
                f"Notification {notification.id} was modified concurrently"
            )
        with notification.locked():
            self._fill(row, notification)
            try:
                self._session.flush()
            except StaleDataError as exc:
                raise ConcurrentUpdateError(
                    f"Notification {notification.id} was modified concurrently"
                ) from exc
            notification.version = row.version
        return notification

    def get_status(self, notification_id: UUID) -> NotificationStatus | None:
        """Current stored lifecycle status, without loading the document."""
        stmt = select(NotificationModel.status).where(NotificationModel.id == notification_id)
        status = self._session.scalar(stmt)
        return None if status is None else NotificationStatus(status)

    def get_due_scheduled(
        self, now: datetime.datetime, limit: int = 100
    ) -> list[Notification]:
        """Scheduled notifications whose send time has arrived, oldest first."""
        stmt = (
            select(NotificationModel)
            .where(
                NotificationModel.status == NotificationStatus.SCHEDULED,
                NotificationModel.scheduled_at <= now,
            )
            .order_by(NotificationModel.scheduled_at.asc())
            .limit(limit)
        )
        return [_to_notification(row) for row in self._session.scalars(stmt)]

    def get_expired_unsent(
        self, now: datetime.datetime, limit: int = 100
    ) -> list[Notification]:
        """Not-yet-sending notifications past their expiry."""
        stmt = (
            select(NotificationModel)
            .where(
                NotificationModel.status.in_(_EXPIRABLE),
                NotificationModel.expires_at <= now,
            )
            .order_by(NotificationModel.expires_at.asc())
            .limit(limit)
        )
        return [_to_notification(row) for row in self._session.scalars(stmt)]

    def get_with_pending_deliveries(self, limit: int = 100) -> list[Notification]:
        """Sent or failed notifications that still have retryable recipients."""
        stmt = (
            select(NotificationModel)
            .where(
                NotificationModel.status.in_(
                    [NotificationStatus.SENT, NotificationStatus.FAILED]
                ),
                NotificationModel.pending_count > 0,
            )
            .order_by(NotificationModel.updated_at.asc())
            .limit(limit)
        )
        return [_to_notification(row) for row in self._session.scalars(stmt)]

    def get_stalled_sending(
        self, cutoff: datetime.datetime, limit: int = 100
    ) -> list[Notification]:
        """Sends that have stored no progress since *cutoff*."""
        stmt = (
            select(NotificationModel)
            .where(
                NotificationModel.status == NotificationStatus.SENDING,
                NotificationModel.progress_at <= cutoff,
            )
            .order_by(NotificationModel.progress_at.asc())
            .limit(limit)
        )
        return [_to_notification(row) for row in self._session.scalars(stmt)]

    @staticmethod
    def _fill(row: NotificationModel, notification: Notification) -> None:
        row.type = notification.type
        row.status = notification.status
        row.priority = notification.priority
        row.sender_id = notification.sender_id
        row.template_name = notification.template_name
        row.pending_count = notification.delivery_status.pending
        row.scheduled_at = notification.scheduled_at
        row.expires_at = notification.expires_at
        row.sent_at = notification.sent_at
        row.progress_at = notification.progress_at
        row.document = _notification_document(notification)


class TemplateRepository:
    """Data access for notification templates."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def create(self, template: Template) -> Template:
        row = TemplateModel(
            name=template.name,
            type=template.type,
            category=template.category,
            document=template.model_dump(mode="json"),
            total_used=template.usage.total_used,
            last_used=template.usage.last_used,
            is_active=template.is_active,
        )
        self._session.add(row)
        self._session.flush()
        return template

    def get_by_name(self, name: str, *, active_only: bool = True) -> Template | None:
        """Fetch a template by its unique name."""
        row = self._get_row(name)
        if row is None or (active_only and not row.is_active):
            return None
        return self._to_template(row)

    def list_active(self, category: str | None = None) -> list[Template]:
        """All active templates, optionally limited to one category."""
        stmt = select(TemplateModel).where(TemplateModel.is_active.is_(True))
        if category is not None:
            stmt = stmt.where(TemplateModel.category == category)
        stmt = stmt.order_by(TemplateModel.name)
        return [self._to_template(row) for row in self._session.scalars(stmt)]

    def update(self, template: Template) -> Template | None:
        """Replace a template's definition. Returns None if it does not exist."""
        row = self._get_row(template.name)
        if row is None:
            return None
        row.type = template.type
        row.category = template.category
        row.document = template.model_dump(mode="json")
        row.is_active = template.is_active
        self._session.flush()
        return template

    def record_usage(self, name: str, at: datetime.datetime) -> Template | None:
        """Bump the usage counter and last-used time."""
        row = self._get_row(name)
        if row is None:
            return None
        row.total_used += 1
        row.last_used = at
        self._session.flush()
        return self._to_template(row)

    def _get_row(self, name: str) -> TemplateModel | None:
        stmt = select(TemplateModel).where(TemplateModel.name == name)
        return self._session.scalars(stmt).first()

    @staticmethod
    def _to_template(row: TemplateModel) -> Template:
        template = Template.model_validate(row.document)
        template.usage.total_used = row.total_used
        template.usage.last_used = row.last_used
        template.is_active = row.is_active
        return template


class UserPreferenceRepository:
    """Data access for user channel preferences."""

    def __init__(self, session: Session) -> None:
        self._session = session

    def get_by_user_id(self, user_id: str) -> UserPreference | None:
        """Fetch preferences for a user."""
        return self._session.get(UserPreference, user_id)

    def create_default(self, user_id: str) -> UserPreference:
        """Create default preferences: all channels enabled."""
        preference = UserPreference(user_id=user_id, channels=list(ALL_CHANNELS))
        self._session.add(preference)
        self._session.flush()
        return preference

    def set_channels(self, user_id: str, channels: list[Channel]) -> UserPreference:
        """Create or replace the user's enabled channels."""
        preference = self.get_by_user_id(user_id)
        if preference is None:
            preference = UserPreference(user_id=user_id, channels=[])
            self._session.add(preference)
        preference.channels = [str(c) for c in channels]
        self._session.flush()
        return preference


class StoredPreferences:
    """PreferenceSource backed by the user_preferences table."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def lookup_channel_preferences(self, user_id: str) -> set[Channel] | None:
        with self._session_factory() as session:
            preference = UserPreferenceRepository(session).get_by_user_id(user_id)
            if preference is None:
                return None
            return {Channel(c) for c in preference.channels}
