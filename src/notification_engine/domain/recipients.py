"""Recipient specification: who a notification is meant for."""

from pydantic import BaseModel, ConfigDict, Field, field_validator

from notification_engine.enums import FeeStatus, UserRole


class ClassTarget(BaseModel):
    """A class, optionally restricted to some of its sections.

    An empty ``sections`` list means every section of the class.
    """

    model_config = ConfigDict(frozen=True)

    class_id: str = Field(min_length=1)
    sections: tuple[str, ...] = ()


class StudentFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    fee_status: FeeStatus | None = None
    attendance_below: float | None = Field(default=None, ge=0, le=100)
    transport_users: bool | None = None

    def is_empty(self) -> bool:
        return (
            self.fee_status is None
            and self.attendance_below is None
            and self.transport_users is None
        )


class TeacherFilters(BaseModel):
    model_config = ConfigDict(frozen=True)

    departments: tuple[str, ...] = ()
    subjects: tuple[str, ...] = ()

    def is_empty(self) -> bool:
        return not self.departments and not self.subjects


class AttributeFilter(BaseModel):
    """Attribute-based selection evaluated against external record stores."""

    model_config = ConfigDict(frozen=True)

    student_filters: StudentFilters = Field(default_factory=StudentFilters)
    teacher_filters: TeacherFilters = Field(default_factory=TeacherFilters)

    def is_empty(self) -> bool:
        return self.student_filters.is_empty() and self.teacher_filters.is_empty()


class RecipientSpec(BaseModel):
    """Declarative recipient selection, stored unexpanded."""

    model_config = ConfigDict(frozen=True)

    roles: tuple[UserRole, ...] = ()
    classes: tuple[ClassTarget, ...] = ()
    specific_users: tuple[str, ...] = ()
    filters: AttributeFilter = Field(default_factory=AttributeFilter)

    @field_validator("specific_users")
    @classmethod
    def _non_blank_user_ids(cls, value: tuple[str, ...]) -> tuple[str, ...]:
        if any(not user_id.strip() for user_id in value):
            raise ValueError("specific_users must not contain blank ids")
        return value

    def is_empty(self) -> bool:
        return (
            not self.roles
            and not self.classes
            and not self.specific_users
            and self.filters.is_empty()
        )
