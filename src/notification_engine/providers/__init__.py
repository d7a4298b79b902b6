"""Provider registry for channel-based delivery dispatch."""

from notification_engine.enums import Channel
from notification_engine.providers.base import DeliveryOutcome, DeliveryProvider
from notification_engine.providers.email import EmailProvider
from notification_engine.providers.in_app import InAppProvider
from notification_engine.providers.push import PushProvider
from notification_engine.providers.sms import SMSProvider

__all__ = [
    "DeliveryOutcome",
    "DeliveryProvider",
    "ProviderRegistry",
    "create_default_registry",
]


class ProviderRegistry:
    """Maps channel names to delivery provider instances."""

    def __init__(self) -> None:
        self._providers: dict[str, DeliveryProvider] = {}

    def register(self, channel: str, provider: DeliveryProvider) -> None:
        self._providers[channel] = provider

    def get(self, channel: str) -> DeliveryProvider:
        """Return the provider for a channel.

        Raises KeyError if no provider is registered for the channel.
        """
        return self._providers[channel]

    def channels(self) -> set[str]:
        return set(self._providers)


def create_default_registry() -> ProviderRegistry:
    """Create a registry with all built-in providers."""
    registry = ProviderRegistry()
    registry.register(Channel.IN_APP, InAppProvider())
    registry.register(Channel.EMAIL, EmailProvider())
    registry.register(Channel.SMS, SMSProvider())
    registry.register(Channel.PUSH, PushProvider())
    return registry
