"""End-to-end tests for the engine over an in-memory database."""

import datetime
from unittest.mock import MagicMock

import pytest
from sqlalchemy.orm import Session

from notification_engine.db.repositories import UserPreferenceRepository
from notification_engine.domain.notification import Notification
from notification_engine.domain.recipients import RecipientSpec
from notification_engine.domain.template import Template
from notification_engine.engine import NotificationEngine
from notification_engine.enums import (
    ApprovalState,
    AttemptStatus,
    Channel,
    NotificationStatus,
    SenderRole,
    UserRole,
)
from notification_engine.errors import (
    ConfigurationError,
    DispatchRejectedError,
    InvalidTransitionError,
    ResolutionError,
    UnknownRecipientError,
)
from notification_engine.providers.base import DeliveryOutcome
from notification_engine.templates import TemplateStore

from tests.helpers import FakeClock, FakeDirectory, RecordingProvider

S = NotificationStatus

FEE_VARIABLES = {"studentName": "Alex Smith", "amount": "500"}


@pytest.fixture()
def registered(template_store: TemplateStore, fee_overdue_template: Template) -> Template:
    return template_store.register(fee_overdue_template)


def _fee_notification(engine: NotificationEngine, **kwargs: object) -> Notification:
    return engine.create_from_template(
        "fee-overdue",
        FEE_VARIABLES,
        sender_id="accounts-1",
        sender_role=SenderRole.ADMIN,
        **kwargs,
    )


def _ad_hoc(**overrides: object) -> Notification:
    fields: dict = {
        "title": "Parent-teacher meeting",
        "message": "Meeting on Saturday at 10am",
        "sender_id": "teacher-1",
        "sender_role": SenderRole.TEACHER,
        "recipients": RecipientSpec(roles=(UserRole.PARENT,)),
    }
    fields.update(overrides)
    return Notification(**fields)


@pytest.mark.usefixtures("registered")
class TestFeeOverdueFlow:
    def test_dispatch_yields_one_record_per_resolved_parent(
        self,
        engine: NotificationEngine,
        in_app_provider: RecordingProvider,
        email_provider: RecordingProvider,
    ) -> None:
        notification = _fee_notification(engine)
        engine.submit(notification)

        engine.send(notification)

        recipients = sorted(r.recipient_id for r in notification.deliveries)
        assert recipients == ["parent-1", "parent-2", "parent-3", "parent-4"]
        for record in notification.deliveries:
            assert {a.channel for a in record.attempts} == {Channel.IN_APP, Channel.EMAIL}
        rollup = notification.delivery_status
        assert rollup.total_recipients == 4
        assert rollup.delivered + rollup.failed + rollup.pending == 4
        assert notification.status == S.SENT
        assert notification.sent_at is not None
        assert in_app_provider.calls[0][1]["title"] == "Fee overdue for Alex Smith"
        assert len(email_provider.calls) == 4

    def test_stored_state_matches_in_memory(self, engine: NotificationEngine) -> None:
        notification = _fee_notification(engine)
        engine.submit(notification)
        engine.send(notification)

        stored = engine.get(notification.id)

        assert stored is not None
        assert stored.status == S.SENT
        assert stored.delivery_status == notification.delivery_status
        assert len(stored.deliveries) == 4
        assert stored.version == notification.version

    def test_template_usage_recorded(
        self, engine: NotificationEngine, template_store: TemplateStore
    ) -> None:
        _fee_notification(engine)
        _fee_notification(engine)
        assert template_store.get("fee-overdue").usage.total_used == 2

    def test_status_events_published(
        self, engine: NotificationEngine, mock_status_publisher: MagicMock
    ) -> None:
        notification = _fee_notification(engine)
        engine.submit(notification)
        engine.send(notification)

        previous = [c.args[1] for c in mock_status_publisher.publish_status.call_args_list]
        assert previous == ["draft", "approved", "sending"]

    def test_channel_failure_does_not_fail_recipient(
        self, engine: NotificationEngine, email_provider: RecordingProvider
    ) -> None:
        email_provider.outcome = lambda rid, _c: (
            DeliveryOutcome.bounced("mailbox full") if rid == "parent-2"
            else DeliveryOutcome.delivered()
        )
        notification = _fee_notification(engine)
        engine.submit(notification)

        engine.send(notification)

        assert notification.delivery_status.delivered == 4
        assert notification.delivery_status.channel_stats[Channel.EMAIL].failed == 1

    def test_unknown_template(self, engine: NotificationEngine) -> None:
        with pytest.raises(ConfigurationError):
            engine.create_from_template(
                "missing", {}, sender_id="a", sender_role=SenderRole.ADMIN
            )

    def test_missing_required_variable_raises(self, engine: NotificationEngine) -> None:
        with pytest.raises(ConfigurationError):
            engine.create_from_template(
                "fee-overdue", {"studentName": "Alex"},
                sender_id="a", sender_role=SenderRole.ADMIN,
            )


class TestApprovalGate:
    def test_send_blocked_until_approved(
        self, engine: NotificationEngine, in_app_provider: RecordingProvider
    ) -> None:
        notification = engine.create(_ad_hoc(approval={"is_required": True}))
        engine.submit(notification)
        assert notification.status == S.PENDING_APPROVAL

        with pytest.raises(DispatchRejectedError):
            engine.send(notification)
        assert in_app_provider.calls == []

        engine.approve(notification, "principal", "ok")
        engine.send(notification)

        assert notification.status == S.SENT
        assert notification.approval.status == ApprovalState.APPROVED
        assert notification.approval.approver == "principal"

    def test_rejected_notification_cannot_be_sent(self, engine: NotificationEngine) -> None:
        notification = engine.create(_ad_hoc(approval={"is_required": True}))
        engine.submit(notification)

        engine.reject(notification, "principal", "Wrong date")

        assert notification.status == S.CANCELLED
        assert notification.approval.status == ApprovalState.REJECTED
        with pytest.raises(DispatchRejectedError):
            engine.send(notification)
        assert engine.get(notification.id).approval.comments == "Wrong date"

    def test_create_marks_required_approval_pending(self, engine: NotificationEngine) -> None:
        notification = engine.create(_ad_hoc(approval={"is_required": True}))
        assert notification.approval.status == ApprovalState.PENDING

    def test_create_rejects_empty_recipients(self, engine: NotificationEngine) -> None:
        with pytest.raises(ConfigurationError):
            engine.create(_ad_hoc(recipients=RecipientSpec()))

    def test_create_rejects_non_draft(self, engine: NotificationEngine) -> None:
        with pytest.raises(ConfigurationError):
            engine.create(_ad_hoc(status=S.APPROVED))


class TestResolution:
    def test_resolution_failure_rolls_back(
        self,
        engine: NotificationEngine,
        directory: FakeDirectory,
        in_app_provider: RecordingProvider,
    ) -> None:
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        directory.error = TimeoutError("directory timed out")

        with pytest.raises(ResolutionError):
            engine.send(notification)

        assert notification.status == S.APPROVED
        assert notification.resolved_at is None
        assert notification.deliveries == []
        assert engine.get(notification.id).status == S.APPROVED
        assert in_app_provider.calls == []

        directory.error = None
        engine.send(notification)
        assert notification.status == S.SENT

    def test_recipients_frozen_at_first_send(
        self,
        engine: NotificationEngine,
        directory: FakeDirectory,
        in_app_provider: RecordingProvider,
    ) -> None:
        in_app_provider.outcome = lambda _rid, _c: DeliveryOutcome.failed("busy")
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.send(notification)

        directory.roles[UserRole.PARENT].append("parent-new")
        in_app_provider.outcome = lambda _rid, _c: DeliveryOutcome.delivered()
        engine.retry(notification)

        assert "parent-new" not in {r.recipient_id for r in notification.deliveries}
        assert notification.delivery_status.delivered == 3

    def test_zero_recipients_is_sent(
        self, engine: NotificationEngine, directory: FakeDirectory
    ) -> None:
        directory.roles[UserRole.PARENT] = []
        notification = engine.create(_ad_hoc())
        engine.submit(notification)

        engine.send(notification)

        assert notification.status == S.SENT
        assert notification.delivery_status.total_recipients == 0

    def test_channel_preferences_narrow_records(
        self, engine: NotificationEngine, db_session: Session
    ) -> None:
        UserPreferenceRepository(db_session).set_channels("parent-1", [Channel.SMS])
        notification = engine.create(_ad_hoc())
        notification.delivery_config.channels = [Channel.IN_APP, Channel.SMS]
        engine.submit(notification)

        engine.send(notification)

        assert notification.record_for("parent-1").channels == [Channel.SMS]
        assert notification.record_for("parent-2").channels == [Channel.IN_APP, Channel.SMS]

    def test_no_enabled_channel_counts_as_failed(
        self, engine: NotificationEngine, db_session: Session
    ) -> None:
        UserPreferenceRepository(db_session).set_channels("parent-1", [Channel.PUSH])
        notification = engine.create(_ad_hoc())
        engine.submit(notification)

        engine.send(notification)

        assert notification.record_for("parent-1").attempts == []
        assert notification.delivery_status.failed == 1
        assert notification.delivery_status.delivered == 2
        assert notification.status == S.SENT


class TestOutcomes:
    def test_everything_bounced_is_failed(
        self, engine: NotificationEngine, in_app_provider: RecordingProvider
    ) -> None:
        in_app_provider.outcome = lambda _rid, _c: DeliveryOutcome.bounced("blocked")
        notification = engine.create(_ad_hoc())
        engine.submit(notification)

        engine.send(notification)

        assert notification.status == S.FAILED
        assert notification.delivery_status.failed == 3

    def test_retry_delivers_pending_recipients(
        self, engine: NotificationEngine, in_app_provider: RecordingProvider
    ) -> None:
        in_app_provider.outcome = lambda rid, _c: (
            DeliveryOutcome.failed("busy") if rid == "parent-2" else DeliveryOutcome.delivered()
        )
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.send(notification)
        assert notification.status == S.SENT
        assert notification.delivery_status.pending == 1

        in_app_provider.outcome = lambda _rid, _c: DeliveryOutcome.delivered()
        engine.retry(notification)

        assert notification.delivery_status.delivered == 3
        assert in_app_provider.recipients().count("parent-1") == 1
        assert len(notification.record_for("parent-2").attempts) == 2

    def test_failed_notification_retry_stays_failed_when_exhausted(
        self, engine: NotificationEngine, in_app_provider: RecordingProvider
    ) -> None:
        in_app_provider.outcome = lambda _rid, _c: DeliveryOutcome.bounced("blocked")
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.send(notification)

        engine.retry(notification)

        assert notification.status == S.FAILED
        assert len(in_app_provider.calls) == 3

    def test_retry_requires_a_send(self, engine: NotificationEngine) -> None:
        notification = engine.create(_ad_hoc())
        with pytest.raises(DispatchRejectedError):
            engine.retry(notification)

    def test_attempt_history_persisted(
        self, engine: NotificationEngine, in_app_provider: RecordingProvider
    ) -> None:
        in_app_provider.outcome = lambda _rid, _c: DeliveryOutcome.failed("busy")
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.send(notification)

        stored = engine.get(notification.id)

        attempts = stored.record_for("parent-1").attempts
        assert [a.status for a in attempts] == [AttemptStatus.FAILED]
        assert attempts[0].error_message == "busy"


class TestSchedulingAndExpiry:
    def test_scheduled_notification_sent_when_due(
        self, engine: NotificationEngine, clock: FakeClock
    ) -> None:
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.schedule(notification, clock.now + datetime.timedelta(hours=1))

        assert engine.send_due_scheduled() == []

        clock.advance(hours=2)
        sent = engine.send_due_scheduled()

        assert [n.id for n in sent] == [notification.id]
        assert engine.get(notification.id).status == S.SENT

    def test_cancelled_schedule_is_not_sent(
        self, engine: NotificationEngine, clock: FakeClock
    ) -> None:
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.schedule(notification, clock.now + datetime.timedelta(minutes=5))
        engine.cancel(notification)

        clock.advance(hours=1)

        assert engine.send_due_scheduled() == []
        assert engine.get(notification.id).status == S.CANCELLED

    def test_send_after_expiry_expires(
        self,
        engine: NotificationEngine,
        clock: FakeClock,
        mock_status_publisher: MagicMock,
    ) -> None:
        notification = engine.create(_ad_hoc(expires_at=clock.now + datetime.timedelta(hours=1)))
        engine.submit(notification)
        clock.advance(hours=1)

        with pytest.raises(DispatchRejectedError):
            engine.send(notification)

        assert notification.status == S.EXPIRED
        assert engine.get(notification.id).status == S.EXPIRED
        mock_status_publisher.publish_status.assert_called_with(notification, "approved")

    def test_expire_overdue_sweep(self, engine: NotificationEngine, clock: FakeClock) -> None:
        due = engine.create(_ad_hoc(expires_at=clock.now + datetime.timedelta(minutes=1)))
        engine.create(_ad_hoc(expires_at=clock.now + datetime.timedelta(days=1)))
        clock.advance(minutes=5)

        assert engine.expire_overdue() == 1
        assert engine.get(due.id).status == S.EXPIRED

    def test_cancel_after_sent_is_invalid(self, engine: NotificationEngine) -> None:
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.send(notification)

        with pytest.raises(InvalidTransitionError):
            engine.cancel(notification)


class TestReceipts:
    def test_mark_read_and_actioned_persist(
        self, engine: NotificationEngine, clock: FakeClock
    ) -> None:
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.send(notification)

        engine.mark_read(notification, "parent-1")
        engine.mark_read(notification, "parent-1")
        engine.mark_actioned(notification, "parent-1", "rsvp-yes")

        stored = engine.get(notification.id)
        assert stored.analytics.total_views == 2
        assert stored.analytics.unique_views == 1
        assert stored.analytics.views_by_hour == {clock.now.hour: 2}
        assert stored.analytics.actions == {"rsvp-yes": 1}
        assert stored.record_for("parent-1").has_actioned

    def test_receipt_for_unknown_recipient(self, engine: NotificationEngine) -> None:
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.send(notification)

        with pytest.raises(UnknownRecipientError):
            engine.mark_read(notification, "stranger")


class TestSweeps:
    def test_retry_pending_sweep(
        self, engine: NotificationEngine, in_app_provider: RecordingProvider
    ) -> None:
        in_app_provider.outcome = lambda _rid, _c: DeliveryOutcome.failed("busy")
        notification = engine.create(_ad_hoc())
        engine.submit(notification)
        engine.send(notification)

        in_app_provider.outcome = lambda _rid, _c: DeliveryOutcome.delivered()
        retried = engine.retry_pending()

        assert [n.id for n in retried] == [notification.id]
        assert engine.get(notification.id).delivery_status.delivered == 3

    def test_sweep_continues_past_failures(
        self,
        engine: NotificationEngine,
        directory: FakeDirectory,
        clock: FakeClock,
    ) -> None:
        first = engine.create(_ad_hoc())
        engine.submit(first)
        engine.schedule(first, clock.now)
        second = engine.create(_ad_hoc(recipients=RecipientSpec(specific_users=("u-1",))))
        engine.submit(second)
        engine.schedule(second, clock.now)

        directory.error = ConnectionError("down")
        sent = engine.send_due_scheduled()

        assert [n.id for n in sent] == [second.id]
        assert engine.get(first.id).status == S.SCHEDULED
