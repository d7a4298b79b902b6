"""Exception hierarchy for the notification engine."""


class NotificationEngineError(Exception):
    """Base class for all engine errors."""


class ConfigurationError(NotificationEngineError):
    """Unknown template, malformed recipient spec, bad template content.

    The notification is never created (or stays in draft) and nothing is
    dispatched.
    """


class ResolutionError(NotificationEngineError):
    """A directory lookup failed while expanding recipients.

    The sending transition is rolled back; retrying the whole send is safe.
    """


class InvalidTransitionError(NotificationEngineError):
    """A lifecycle transition not allowed from the current status."""


class DispatchRejectedError(NotificationEngineError):
    """Dispatch was requested for a notification that may not be sent."""


class UnknownRecipientError(NotificationEngineError, LookupError):
    """A receipt referenced a recipient with no delivery record."""


class ConcurrentUpdateError(NotificationEngineError):
    """The stored notification changed since it was loaded."""
