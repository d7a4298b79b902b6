"""Shared fixtures: in-memory database, directory, providers, engine."""

from collections.abc import Generator
from unittest.mock import MagicMock

import pytest
from sqlalchemy import Engine, create_engine
from sqlalchemy.orm import Session, sessionmaker

from notification_engine.config import DeliveryConfig
from notification_engine.db import Base, StoredPreferences
from notification_engine.dispatcher import Dispatcher
from notification_engine.domain.recipients import (
    AttributeFilter,
    RecipientSpec,
    StudentFilters,
)
from notification_engine.domain.template import (
    Template,
    TemplateSettings,
    TemplateVariable,
)
from notification_engine.engine import NotificationEngine
from notification_engine.enums import (
    Channel,
    FeeStatus,
    Priority,
    TemplateCategory,
    TemplateType,
    UserRole,
    VariableType,
)
from notification_engine.producer import KafkaStatusProducer
from notification_engine.receipts import ReceiptTracker
from notification_engine.resolver import RecipientResolver
from notification_engine.templates import TemplateStore

from tests.helpers import FakeClock, FakeDirectory, RecordingProvider, registry_with


@pytest.fixture(scope="session")
def db_engine() -> Engine:
    """Create a single in-memory SQLite engine for the test session."""
    engine = create_engine("sqlite:///:memory:")
    Base.metadata.create_all(engine)
    return engine


@pytest.fixture()
def db_session(db_engine: Engine) -> Generator[Session, None, None]:
    """Transactional session that rolls back after each test."""
    connection = db_engine.connect()
    transaction = connection.begin()
    session = Session(bind=connection, expire_on_commit=False)

    yield session

    session.close()
    if transaction.is_active:
        transaction.rollback()
    connection.close()


@pytest.fixture()
def session_factory(db_session: Session) -> MagicMock:
    """Session factory that always returns the test session.

    Wraps db_session so that ``with session_factory() as session:``
    returns our transactional test session.
    """
    factory = MagicMock(spec=sessionmaker)
    ctx = MagicMock()
    ctx.__enter__ = MagicMock(return_value=db_session)
    ctx.__exit__ = MagicMock(return_value=False)
    factory.return_value = ctx
    return factory


@pytest.fixture()
def clock() -> FakeClock:
    return FakeClock()


@pytest.fixture()
def directory() -> FakeDirectory:
    """Four parents, two of them with overdue fees; one class of students."""
    return FakeDirectory(
        roles={
            UserRole.PARENT: ["parent-1", "parent-2", "parent-3"],
            UserRole.TEACHER: ["teacher-1"],
        },
        classes={"class-10": {"A": ["student-1", "student-2"], "B": ["student-3"]}},
        attributes=["parent-3", "parent-4"],
    )


@pytest.fixture()
def in_app_provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture()
def sms_provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture()
def email_provider() -> RecordingProvider:
    return RecordingProvider()


@pytest.fixture()
def delivery_config() -> DeliveryConfig:
    return DeliveryConfig(provider_timeout_seconds=5.0)


@pytest.fixture()
def dispatcher(
    in_app_provider: RecordingProvider,
    sms_provider: RecordingProvider,
    email_provider: RecordingProvider,
    delivery_config: DeliveryConfig,
    clock: FakeClock,
) -> Generator[Dispatcher, None, None]:
    registry = registry_with({
        Channel.IN_APP: in_app_provider,
        Channel.SMS: sms_provider,
        Channel.EMAIL: email_provider,
    })
    with Dispatcher(registry, delivery_config, clock=clock) as dispatcher:
        yield dispatcher


@pytest.fixture()
def mock_status_publisher() -> MagicMock:
    return MagicMock(spec=KafkaStatusProducer)


@pytest.fixture()
def template_store(session_factory: MagicMock) -> TemplateStore:
    return TemplateStore(session_factory)


@pytest.fixture()
def engine(
    session_factory: MagicMock,
    template_store: TemplateStore,
    directory: FakeDirectory,
    dispatcher: Dispatcher,
    mock_status_publisher: MagicMock,
    clock: FakeClock,
) -> NotificationEngine:
    return NotificationEngine(
        session_factory=session_factory,
        templates=template_store,
        resolver=RecipientResolver(directory),
        dispatcher=dispatcher,
        receipts=ReceiptTracker(),
        preferences=StoredPreferences(session_factory),
        status_publisher=mock_status_publisher,
        clock=clock,
    )


@pytest.fixture()
def fee_overdue_template() -> Template:
    return Template(
        name="fee-overdue",
        description="Reminder sent to parents when a fee payment is overdue",
        type=TemplateType.FEE_OVERDUE,
        category=TemplateCategory.FINANCIAL,
        content={
            Channel.IN_APP: {
                "title": "Fee overdue for {{ studentName }}",
                "message": "A payment of {{ amount }} for {{ studentName }} is overdue.",
            },
            Channel.EMAIL: {
                "subject": "Overdue fee: {{ studentName }}",
                "body": "Dear parent, {{ amount }} is outstanding. {{ contact }}",
            },
            Channel.SMS: {
                "message": "Fee of {{ amount }} overdue for {{ studentName }}.",
            },
        },
        variables=[
            TemplateVariable(name="studentName", is_required=True),
            TemplateVariable(name="amount", type=VariableType.NUMBER, is_required=True),
            TemplateVariable(name="contact", default_value="Contact the accounts office."),
        ],
        default_recipients=RecipientSpec(
            roles=(UserRole.PARENT,),
            filters=AttributeFilter(
                student_filters=StudentFilters(fee_status=FeeStatus.OVERDUE)
            ),
        ),
        settings=TemplateSettings(
            priority=Priority.HIGH,
            channels=[Channel.IN_APP, Channel.EMAIL],
            expiry_hours=48,
        ),
    )
