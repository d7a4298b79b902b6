from enum import StrEnum


class Channel(StrEnum):
    IN_APP = "in-app"
    EMAIL = "email"
    SMS = "sms"
    PUSH = "push"


ALL_CHANNELS: tuple[Channel, ...] = tuple(Channel)


class Priority(StrEnum):
    LOW = "low"
    NORMAL = "normal"
    HIGH = "high"
    URGENT = "urgent"


class NotificationStatus(StrEnum):
    DRAFT = "draft"
    PENDING_APPROVAL = "pending-approval"
    APPROVED = "approved"
    SCHEDULED = "scheduled"
    SENDING = "sending"
    SENT = "sent"
    FAILED = "failed"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


# States from which a notification can still be cancelled or expired.
PRE_SENT_STATUSES: frozenset[NotificationStatus] = frozenset({
    NotificationStatus.DRAFT,
    NotificationStatus.PENDING_APPROVAL,
    NotificationStatus.APPROVED,
    NotificationStatus.SCHEDULED,
    NotificationStatus.SENDING,
})


class ApprovalState(StrEnum):
    NOT_REQUIRED = "not-required"
    PENDING = "pending-approval"
    APPROVED = "approved"
    REJECTED = "rejected"


class AttemptStatus(StrEnum):
    PENDING = "pending"
    DELIVERED = "delivered"
    FAILED = "failed"
    BOUNCED = "bounced"


class RecipientOutcome(StrEnum):
    DELIVERED = "delivered"
    FAILED = "failed"
    PENDING = "pending"


class SenderRole(StrEnum):
    ADMIN = "admin"
    TEACHER = "teacher"
    SYSTEM = "system"


class UserRole(StrEnum):
    ADMIN = "admin"
    TEACHER = "teacher"
    STUDENT = "student"
    PARENT = "parent"
    ACCOUNTANT = "accountant"
    LIBRARIAN = "librarian"


class TemplateType(StrEnum):
    HOMEWORK_ASSIGNED = "homework-assigned"
    HOMEWORK_DUE = "homework-due"
    EXAM_SCHEDULE = "exam-schedule"
    RESULT_PUBLISHED = "result-published"
    FEE_DUE = "fee-due"
    FEE_OVERDUE = "fee-overdue"
    ATTENDANCE_LOW = "attendance-low"
    LIBRARY_DUE = "library-due"
    TRANSPORT_UPDATE = "transport-update"
    EVENT_ANNOUNCEMENT = "event-announcement"
    HOLIDAY_NOTICE = "holiday-notice"
    MEETING_REMINDER = "meeting-reminder"
    EMERGENCY_ALERT = "emergency-alert"


class TemplateCategory(StrEnum):
    ACADEMIC = "academic"
    ADMINISTRATIVE = "administrative"
    FINANCIAL = "financial"
    EMERGENCY = "emergency"
    GENERAL = "general"


class VariableType(StrEnum):
    TEXT = "text"
    NUMBER = "number"
    DATE = "date"
    BOOLEAN = "boolean"


class FeeStatus(StrEnum):
    ALL = "all"
    PAID = "paid"
    PENDING = "pending"
    OVERDUE = "overdue"


class EntityType(StrEnum):
    HOMEWORK = "homework"
    EXAM = "exam"
    FEE = "fee"
    STUDENT = "student"
    CLASS = "class"
    EVENT = "event"
    LIBRARY = "library"
    TRANSPORT = "transport"
