"""SQLAlchemy ORM models for templates, notifications and preferences.

Each notification row stores the whole aggregate (delivery records, rollup,
analytics) as one JSON document, so records and the rollup that summarises
them are always written together. A few fields are mirrored into columns
for querying.
"""

import datetime
import uuid

from sqlalchemy import (
    Boolean,
    DateTime,
    Integer,
    String,
    Uuid,
    func,
)
from sqlalchemy.orm import Mapped, mapped_column

from notification_engine.db.base import Base
from notification_engine.db.types import JSONBCompatible
from notification_engine.enums import NotificationStatus, Priority


class NotificationModel(Base):
    __tablename__ = "notifications"

    id: Mapped[uuid.UUID] = mapped_column(Uuid, primary_key=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False)
    status: Mapped[str] = mapped_column(
        String(32), nullable=False, default=NotificationStatus.DRAFT, index=True
    )
    priority: Mapped[str] = mapped_column(
        String(16), nullable=False, default=Priority.NORMAL
    )
    sender_id: Mapped[str] = mapped_column(String(64), nullable=False, index=True)
    template_name: Mapped[str | None] = mapped_column(
        String(128), nullable=True, index=True
    )
    pending_count: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    document: Mapped[dict] = mapped_column(JSONBCompatible, nullable=False)
    scheduled_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    expires_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    sent_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    progress_at: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True, index=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )
    version: Mapped[int] = mapped_column(Integer, nullable=False)

    __mapper_args__ = {"version_id_col": version}


class TemplateModel(Base):
    __tablename__ = "notification_templates"

    id: Mapped[uuid.UUID] = mapped_column(
        Uuid, primary_key=True, default=uuid.uuid4
    )
    name: Mapped[str] = mapped_column(String(128), nullable=False, unique=True)
    type: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    category: Mapped[str] = mapped_column(String(32), nullable=False, index=True)
    document: Mapped[dict] = mapped_column(JSONBCompatible, nullable=False)
    total_used: Mapped[int] = mapped_column(Integer, nullable=False, default=0)
    last_used: Mapped[datetime.datetime | None] = mapped_column(
        DateTime(timezone=True), nullable=True
    )
    is_active: Mapped[bool] = mapped_column(
        Boolean, nullable=False, default=True, index=True
    )
    created_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True), nullable=False, server_default=func.now()
    )
    updated_at: Mapped[datetime.datetime] = mapped_column(
        DateTime(timezone=True),
        nullable=False,
        server_default=func.now(),
        onupdate=func.now(),
    )


class UserPreference(Base):
    __tablename__ = "user_preferences"

    user_id: Mapped[str] = mapped_column(String(64), primary_key=True)
    channels: Mapped[list] = mapped_column(JSONBCompatible, nullable=False)
