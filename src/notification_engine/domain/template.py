"""Reusable notification templates."""

import datetime
from typing import Self

from pydantic import BaseModel, Field, model_validator

from notification_engine.domain.recipients import RecipientSpec
from notification_engine.enums import (
    Channel,
    Priority,
    TemplateCategory,
    TemplateType,
    VariableType,
)

SMS_MAX_LENGTH = 160

# Content fields each channel must define.
_REQUIRED_FIELDS: dict[Channel, tuple[str, ...]] = {
    Channel.IN_APP: ("title", "message"),
    Channel.EMAIL: ("subject", "body"),
    Channel.SMS: ("message",),
    Channel.PUSH: (),
}


class TemplateVariable(BaseModel):
    name: str = Field(min_length=1, pattern=r"^[A-Za-z_][A-Za-z0-9_]*$")
    description: str | None = None
    type: VariableType = VariableType.TEXT
    is_required: bool = False
    default_value: str | None = None


class TemplateSettings(BaseModel):
    priority: Priority = Priority.NORMAL
    channels: list[Channel] = Field(default_factory=lambda: [Channel.IN_APP])
    expiry_hours: int = Field(default=72, ge=1)
    require_approval: bool = False


class TemplateUsage(BaseModel):
    total_used: int = 0
    last_used: datetime.datetime | None = None


class Template(BaseModel):
    """Per-channel content with ``{{ placeholder }}`` markers plus defaults."""

    name: str = Field(min_length=1)
    description: str | None = Field(default=None, max_length=500)
    type: TemplateType
    category: TemplateCategory
    content: dict[Channel, dict[str, str]]
    variables: list[TemplateVariable] = Field(default_factory=list)
    default_recipients: RecipientSpec = Field(default_factory=RecipientSpec)
    settings: TemplateSettings = Field(default_factory=TemplateSettings)
    usage: TemplateUsage = Field(default_factory=TemplateUsage)
    is_active: bool = True

    @model_validator(mode="after")
    def _check_channel_content(self) -> Self:
        if Channel.IN_APP not in self.content:
            raise ValueError("in-app content (title, message) is required")
        for channel, fields in self.content.items():
            missing = [f for f in _REQUIRED_FIELDS[channel] if not fields.get(f)]
            if missing:
                raise ValueError(
                    f"{channel} content is missing fields: {', '.join(missing)}"
                )
        sms = self.content.get(Channel.SMS)
        if sms is not None and len(sms["message"]) > SMS_MAX_LENGTH:
            raise ValueError(
                f"SMS template cannot exceed {SMS_MAX_LENGTH} characters"
            )
        names = [v.name for v in self.variables]
        if len(names) != len(set(names)):
            raise ValueError("variable names must be unique")
        return self

    @property
    def declared_variables(self) -> dict[str, TemplateVariable]:
        return {v.name: v for v in self.variables}

    def template_strings(self) -> list[str]:
        """All placeholder-bearing strings across every channel."""
        return [text for fields in self.content.values() for text in fields.values()]
