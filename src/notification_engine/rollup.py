"""Status aggregation derived purely from delivery attempt history."""

from collections.abc import Sequence

from notification_engine.domain.notification import (
    ChannelStats,
    DeliveryRecord,
    DeliveryStatus,
)
from notification_engine.enums import AttemptStatus, Channel, RecipientOutcome

DEFAULT_MAX_ATTEMPTS = 3


def channel_outcome(
    record: DeliveryRecord, channel: Channel, max_attempts: int = DEFAULT_MAX_ATTEMPTS
) -> RecipientOutcome:
    """Outcome of one channel for one recipient.

    Delivered if any attempt succeeded; failed once bounced or after
    ``max_attempts`` failures; pending otherwise.
    """
    attempts = record.attempts_for(channel)
    if any(a.status == AttemptStatus.DELIVERED for a in attempts):
        return RecipientOutcome.DELIVERED
    if any(a.status == AttemptStatus.BOUNCED for a in attempts):
        return RecipientOutcome.FAILED
    failures = sum(1 for a in attempts if a.status == AttemptStatus.FAILED)
    if failures >= max_attempts:
        return RecipientOutcome.FAILED
    return RecipientOutcome.PENDING


def record_channels(record: DeliveryRecord) -> list[Channel]:
    """Channels a record is tracked on: its frozen set, plus any attempted."""
    channels = list(record.channels)
    for attempt in record.attempts:
        if attempt.channel not in channels:
            channels.append(attempt.channel)
    return channels


def recipient_outcome(
    record: DeliveryRecord, max_attempts: int = DEFAULT_MAX_ATTEMPTS
) -> RecipientOutcome:
    """Delivered on any channel wins; failed only when every channel is done."""
    outcomes = [
        channel_outcome(record, channel, max_attempts)
        for channel in record_channels(record)
    ]
    if RecipientOutcome.DELIVERED in outcomes:
        return RecipientOutcome.DELIVERED
    # A record with no deliverable channel can never succeed.
    if all(o == RecipientOutcome.FAILED for o in outcomes):
        return RecipientOutcome.FAILED
    return RecipientOutcome.PENDING


def recompute(
    records: Sequence[DeliveryRecord], max_attempts: int = DEFAULT_MAX_ATTEMPTS
) -> DeliveryStatus:
    """Rebuild the rollup from scratch.

    Counts always satisfy ``delivered + failed + pending == len(records)``.
    """
    status = DeliveryStatus(total_recipients=len(records))
    channel_stats: dict[Channel, ChannelStats] = {}

    for record in records:
        outcome = recipient_outcome(record, max_attempts)
        if outcome == RecipientOutcome.DELIVERED:
            status.delivered += 1
        elif outcome == RecipientOutcome.FAILED:
            status.failed += 1
        else:
            status.pending += 1

        for channel in record_channels(record):
            stats = channel_stats.setdefault(channel, ChannelStats())
            per_channel = channel_outcome(record, channel, max_attempts)
            if per_channel == RecipientOutcome.DELIVERED:
                stats.delivered += 1
            elif per_channel == RecipientOutcome.FAILED:
                stats.failed += 1
            else:
                stats.pending += 1

    status.channel_stats = channel_stats
    return status
