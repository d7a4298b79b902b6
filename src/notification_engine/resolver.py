"""Recipient resolution: expand a RecipientSpec into concrete user ids."""

import datetime
import logging
from collections.abc import Iterable, Sequence
from typing import Protocol, runtime_checkable

from notification_engine.domain.recipients import AttributeFilter, RecipientSpec
from notification_engine.enums import Channel
from notification_engine.errors import ResolutionError

logger = logging.getLogger(__name__)


@runtime_checkable
class Directory(Protocol):
    """Read-only lookups into the user and enrollment stores."""

    def lookup_users_by_role(self, role: str) -> Iterable[str]: ...

    def lookup_users_by_class(
        self, class_id: str, sections: Sequence[str]
    ) -> Iterable[str]: ...

    def lookup_user_attributes(self, filter: AttributeFilter) -> Iterable[str]: ...


@runtime_checkable
class PreferenceSource(Protocol):
    """Per-user channel preferences. None means no preference recorded."""

    def lookup_channel_preferences(self, user_id: str) -> set[Channel] | None: ...


class RecipientResolver:
    """Expands recipient specifications via the directory.

    The result is the union of every expansion, de-duplicated by id.
    Any directory failure is raised as ResolutionError so the caller can
    abort the send and retry it wholesale later.
    """

    def __init__(self, directory: Directory) -> None:
        self._directory = directory

    def resolve(
        self,
        spec: RecipientSpec,
        as_of: datetime.datetime | None = None,
    ) -> frozenset[str]:
        recipients: set[str] = set(spec.specific_users)

        try:
            for role in spec.roles:
                recipients.update(self._directory.lookup_users_by_role(role))
            for target in spec.classes:
                recipients.update(
                    self._directory.lookup_users_by_class(
                        target.class_id, list(target.sections)
                    )
                )
            if not spec.filters.is_empty():
                recipients.update(
                    self._directory.lookup_user_attributes(spec.filters)
                )
        except Exception as exc:
            logger.exception(
                "Directory lookup failed during recipient resolution",
                extra={"as_of": str(as_of) if as_of else None},
            )
            raise ResolutionError(f"Recipient lookup failed: {exc}") from exc

        logger.info(
            "Recipients resolved",
            extra={
                "recipient_count": len(recipients),
                "roles": [str(r) for r in spec.roles],
                "class_count": len(spec.classes),
                "explicit_count": len(spec.specific_users),
                "as_of": str(as_of) if as_of else None,
            },
        )
        return frozenset(recipients)


def effective_channels(
    channels: Sequence[Channel],
    user_id: str,
    preferences: PreferenceSource | None,
) -> list[Channel]:
    """Notification channels narrowed by the user's preferences, order kept."""
    if preferences is None:
        return list(channels)
    allowed = preferences.lookup_channel_preferences(user_id)
    if allowed is None:
        return list(channels)
    return [c for c in channels if c in allowed]
