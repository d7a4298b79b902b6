"""Template store and notification generation from templates."""

import datetime
import logging
from collections.abc import Mapping
from typing import Any

from pydantic import ValidationError
from sqlalchemy.orm import Session, sessionmaker

from notification_engine.db.repositories import TemplateRepository
from notification_engine.domain.notification import (
    ApprovalStatus,
    DeliverySettings,
    Notification,
    RelatedEntity,
)
from notification_engine.domain.recipients import RecipientSpec
from notification_engine.domain.template import SMS_MAX_LENGTH, Template, TemplateVariable
from notification_engine.enums import ApprovalState, Channel, SenderRole, VariableType
from notification_engine.errors import ConfigurationError
from notification_engine.renderer import find_placeholders, render_fields

logger = logging.getLogger(__name__)


def undeclared_placeholders(template: Template) -> set[str]:
    """Placeholders used in any channel's content but not declared."""
    used: set[str] = set()
    for text in template.template_strings():
        used |= find_placeholders(text)
    return used - template.declared_variables.keys()


class TemplateStore:
    """Persistent catalogue of notification templates."""

    def __init__(self, session_factory: sessionmaker[Session]) -> None:
        self._session_factory = session_factory

    def register(self, template: Template, *, strict: bool = True) -> Template:
        """Store a new template.

        With *strict* (the default) a template that references undeclared
        placeholders is rejected; otherwise it is stored and logged.
        """
        self._check_placeholders(template, strict)
        with self._session_factory() as session:
            repo = TemplateRepository(session)
            if repo.get_by_name(template.name, active_only=False) is not None:
                raise ConfigurationError(f"Template {template.name!r} already exists")
            repo.create(template)
            session.commit()
        logger.info("Template registered", extra={"template": template.name})
        return template

    def update(self, template: Template, *, strict: bool = True) -> Template:
        self._check_placeholders(template, strict)
        with self._session_factory() as session:
            if TemplateRepository(session).update(template) is None:
                raise ConfigurationError(f"Unknown template: {template.name!r}")
            session.commit()
        return template

    def get(self, name: str) -> Template:
        """Fetch an active template. Raises ConfigurationError if unknown."""
        with self._session_factory() as session:
            template = TemplateRepository(session).get_by_name(name)
        if template is None:
            raise ConfigurationError(f"Unknown template: {name!r}")
        return template

    def list_active(self, category: str | None = None) -> list[Template]:
        with self._session_factory() as session:
            return TemplateRepository(session).list_active(category)

    def record_usage(self, name: str, at: datetime.datetime) -> None:
        with self._session_factory() as session:
            TemplateRepository(session).record_usage(name, at)
            session.commit()

    @staticmethod
    def _check_placeholders(template: Template, strict: bool) -> None:
        undeclared = undeclared_placeholders(template)
        if not undeclared:
            return
        if strict:
            raise ConfigurationError(
                f"Template {template.name!r} uses undeclared placeholders: "
                f"{', '.join(sorted(undeclared))}"
            )
        logger.warning(
            "Template uses undeclared placeholders",
            extra={"template": template.name, "placeholders": sorted(undeclared)},
        )


def _format_value(variable: TemplateVariable, value: Any) -> str:
    if variable.type == VariableType.NUMBER:
        try:
            float(value)
        except (TypeError, ValueError) as exc:
            raise ConfigurationError(
                f"Variable {variable.name!r} must be a number, got {value!r}"
            ) from exc
        return str(value)
    if variable.type == VariableType.DATE and isinstance(value, (datetime.date, datetime.datetime)):
        return value.isoformat()
    if variable.type == VariableType.BOOLEAN and isinstance(value, bool):
        return "true" if value else "false"
    return str(value)


def prepare_variables(
    template: Template, variables: Mapping[str, Any]
) -> dict[str, str]:
    """Check required variables and convert values to their string form.

    Raises ConfigurationError for a missing required variable that has no
    default, or for a value of the wrong type.
    """
    declared = template.declared_variables
    missing = [
        name
        for name, var in declared.items()
        if var.is_required and variables.get(name) is None and var.default_value is None
    ]
    if missing:
        raise ConfigurationError(
            f"Template {template.name!r} requires variables: {', '.join(sorted(missing))}"
        )

    prepared: dict[str, str] = {}
    for name, value in variables.items():
        if value is None:
            continue
        var = declared.get(name)
        prepared[name] = _format_value(var, value) if var is not None else str(value)
    return prepared


def build_notification(
    template: Template,
    variables: Mapping[str, Any],
    *,
    sender_id: str,
    sender_role: SenderRole,
    now: datetime.datetime,
    recipients: RecipientSpec | None = None,
    require_approval: bool | None = None,
    channel_settings: Mapping[Channel, Mapping[str, str]] | None = None,
    related_entity: RelatedEntity | None = None,
) -> Notification:
    """Render *template* into a draft notification.

    *require_approval* overrides the template setting when given.
    """
    if not template.is_active:
        raise ConfigurationError(f"Template {template.name!r} is inactive")

    prepared = prepare_variables(template, variables)
    declared = template.declared_variables
    content = {
        channel: render_fields(fields, prepared, declared)
        for channel, fields in template.content.items()
    }
    sms = content.get(Channel.SMS)
    if sms is not None and len(sms["message"]) > SMS_MAX_LENGTH:
        raise ConfigurationError(
            f"Template {template.name!r} rendered an SMS of {len(sms['message'])} "
            f"characters (limit {SMS_MAX_LENGTH})"
        )
    approval_required = (
        template.settings.require_approval if require_approval is None else require_approval
    )
    expires_at = now + datetime.timedelta(hours=template.settings.expiry_hours)

    try:
        return Notification(
            type=template.type,
            title=content[Channel.IN_APP]["title"],
            message=content[Channel.IN_APP]["message"],
            content=content,
            priority=template.settings.priority,
            sender_id=sender_id,
            sender_role=sender_role,
            recipients=recipients if recipients is not None else template.default_recipients,
            delivery_config=DeliverySettings(
                channels=list(template.settings.channels),
                expiry_time=expires_at,
                channel_settings={k: dict(v) for k, v in (channel_settings or {}).items()},
            ),
            approval=ApprovalStatus(
                is_required=approval_required,
                status=ApprovalState.PENDING if approval_required else ApprovalState.NOT_REQUIRED,
            ),
            related_entity=related_entity,
            template_name=template.name,
            created_at=now,
            expires_at=expires_at,
        )
    except ValidationError as exc:
        raise ConfigurationError(
            f"Template {template.name!r} rendered invalid content: {exc}"
        ) from exc
