"""Application wiring for the premium subscription engine."""
from __future__ import annotations

import logging
from datetime import datetime
from functools import lru_cache
from typing import Callable, Optional

from ..subscriptions import (
    AdminGrantAdapter,
    BankTransferAdapter,
    EntitlementQueryService,
    GatewayCheckoutAdapter,
    GatewayVerifier,
    InMemoryEntitlementCache,
    KhaltiGatewayClient,
    NullEntitlementCache,
    StorageBackend,
    SubscriptionAuditEvent,
    SubscriptionConfig,
    SubscriptionEngine,
    SubscriptionEventLogger,
    SubscriptionService,
    load_subscription_config,
    select_backend,
)


logger = logging.getLogger("subscriptions")


class LoggingSubscriptionEventLogger(SubscriptionEventLogger):
    """Simple event logger forwarding subscription audit events to logging."""

    def log(self, event: SubscriptionAuditEvent) -> None:
        logger.info(
            "Subscription event %s account=%s channel=%s ref=%s end=%s actor=%s metadata=%s",
            event.event_type.value,
            event.account_id,
            event.channel.value if event.channel else None,
            event.external_ref,
            event.end_date.isoformat() if event.end_date else None,
            event.actor_id,
            event.metadata,
        )


def build_subscription_service(
    config: SubscriptionConfig,
    *,
    backend: Optional[StorageBackend] = None,
    verifier: Optional[GatewayVerifier] = None,
    event_logger: Optional[SubscriptionEventLogger] = None,
    clock: Optional[Callable[[], datetime]] = None,
) -> SubscriptionService:
    backend = backend or select_backend(config)
    if config.test_mode:
        logger.warning("PREMIUM_TEST_MODE is enabled; admin grants may auto-provision accounts")

    cache = InMemoryEntitlementCache(clock=clock) if config.cache_ttl_seconds else NullEntitlementCache()
    query_service = EntitlementQueryService(
        backend.entitlements,
        cache,
        clock=clock,
        ttl_seconds=config.cache_ttl_seconds,
    )
    engine = SubscriptionEngine(
        backend.entitlements,
        backend.accounts,
        event_logger or LoggingSubscriptionEventLogger(),
        query_service,
        clock=clock,
        max_conflict_retries=config.max_conflict_retries,
        auto_provision_enabled=config.test_mode,
    )
    verifier = verifier or KhaltiGatewayClient(config.gateway_lookup_url, config.gateway_secret_key)
    adapters = [
        GatewayCheckoutAdapter(verifier, timeout_seconds=config.gateway_timeout_seconds),
        BankTransferAdapter(),
        AdminGrantAdapter(allow_auto_provision=config.test_mode),
    ]
    return SubscriptionService(
        engine=engine,
        query_service=query_service,
        adapters=adapters,
        backend_name=backend.name,
    )


@lru_cache(maxsize=1)
def get_subscription_service() -> SubscriptionService:
    config = load_subscription_config()
    return build_subscription_service(config)


__all__ = [
    "LoggingSubscriptionEventLogger",
    "build_subscription_service",
    "get_subscription_service",
]
