"""Wiring helper that assembles a NotificationEngine from its parts."""

from sqlalchemy.orm import Session, sessionmaker

from notification_engine.config import DeliveryConfig
from notification_engine.db.repositories import StoredPreferences
from notification_engine.dispatcher import Dispatcher
from notification_engine.engine import NotificationEngine
from notification_engine.producer import KafkaStatusProducer
from notification_engine.providers import ProviderRegistry, create_default_registry
from notification_engine.rate_limiter import RateLimiter
from notification_engine.receipts import ReceiptTracker, UniqueViewRule
from notification_engine.resolver import Directory, PreferenceSource, RecipientResolver
from notification_engine.templates import TemplateStore


def build_engine(
    session_factory: sessionmaker[Session],
    directory: Directory,
    *,
    delivery_config: DeliveryConfig | None = None,
    registry: ProviderRegistry | None = None,
    rate_limiter: RateLimiter | None = None,
    status_publisher: KafkaStatusProducer | None = None,
    preferences: PreferenceSource | None = None,
    unique_view_rule: UniqueViewRule | None = None,
) -> NotificationEngine:
    """Create an engine with stored preferences and default providers.

    Anything not given falls back to the built-in implementation.
    """
    dispatcher = Dispatcher(
        registry or create_default_registry(),
        delivery_config or DeliveryConfig(),
        rate_limiter=rate_limiter,
    )
    return NotificationEngine(
        session_factory=session_factory,
        templates=TemplateStore(session_factory),
        resolver=RecipientResolver(directory),
        dispatcher=dispatcher,
        receipts=ReceiptTracker(unique_view_rule),
        preferences=preferences or StoredPreferences(session_factory),
        status_publisher=status_publisher,
    )
