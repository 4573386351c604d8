"""Builds a CatalogSyncEngine wired from Settings."""
from typing import Optional

from uxkit.billing.client import StripeBillingClient
from uxkit.billing.rate_limit import FixedIntervalGate
from uxkit.billing.sync_service import CatalogSyncEngine
from uxkit.config import Settings, get_settings


class StripeNotConfiguredError(RuntimeError):
    """Raised when STRIPE_SECRET_KEY is missing."""


def build_sync_engine(engine, settings: Optional[Settings] = None) -> CatalogSyncEngine:
    """
    Args:
        engine: SQLAlchemy engine holding the catalog and queue tables.
        settings: Defaults to get_settings().

    Raises:
        StripeNotConfiguredError: if no Stripe secret key is configured.
    """
    settings = settings or get_settings()
    if not settings.stripe_secret_key:
        raise StripeNotConfiguredError("STRIPE_SECRET_KEY not configured")

    client = StripeBillingClient(
        api_key=settings.stripe_secret_key,
        api_version=settings.stripe_api_version,
        timeout=settings.stripe_timeout_seconds,
    )
    return CatalogSyncEngine(
        client=client,
        engine=engine,
        rate_limiter=FixedIntervalGate(settings.sync_delay_seconds),
        currency=settings.currency,
        max_attempts=settings.queue_max_attempts,
    )
