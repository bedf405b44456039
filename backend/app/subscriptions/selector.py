"""Startup selection between the primary and fallback entitlement stores."""
from __future__ import annotations

import logging
from typing import Callable, Optional

import psycopg2
from psycopg2.extensions import connection as PgConnection

from .config import SubscriptionConfig
from .local_store import JsonFileAccountDirectory, JsonFileEntitlementStore, probe_local_dir
from .repository import PostgresAccountDirectory, PostgresEntitlementStore
from .exceptions import BackendUnavailableError
from .storage import StorageBackend, UnavailableEntitlementStore


logger = logging.getLogger("subscriptions.selector")

PRIMARY_BACKEND = "postgres"
FALLBACK_BACKEND = "local"
UNAVAILABLE_BACKEND = "unavailable"


def make_connection_factory(config: SubscriptionConfig) -> Callable[[], PgConnection]:
    params = config.db_params()

    def _connect() -> PgConnection:
        return psycopg2.connect(**params)

    return _connect


def probe_primary(connect: Callable[[], PgConnection]) -> None:
    """Open a connection and run a trivial query, raising on any failure."""

    connection = connect()
    try:
        with connection.cursor() as cursor:
            cursor.execute("SELECT 1")
            cursor.fetchone()
    finally:
        connection.close()


def select_backend(
    config: SubscriptionConfig,
    *,
    connect: Optional[Callable[[], PgConnection]] = None,
    probe: Optional[Callable[[Callable[[], PgConnection]], None]] = None,
    ensure_schema: bool = True,
) -> StorageBackend:
    """Pick the backend that serves every entitlement call for this process.

    The primary store wins when its bounded connectivity probe succeeds. The
    local JSON store is used otherwise, provided its directory is writable.
    When neither is usable an always-failing backend is returned.
    """

    connect = connect or make_connection_factory(config)
    probe = probe or probe_primary

    try:
        probe(connect)
        entitlements = PostgresEntitlementStore(connect)
        if ensure_schema:
            entitlements.ensure_schema()
    except (psycopg2.Error, OSError, BackendUnavailableError) as exc:
        logger.warning(
            "Primary entitlement store unreachable (timeout=%ss): %s",
            config.probe_timeout_seconds,
            exc,
        )
    else:
        logger.info("Entitlement storage backend selected: %s", PRIMARY_BACKEND)
        return StorageBackend(
            name=PRIMARY_BACKEND,
            entitlements=entitlements,
            accounts=PostgresAccountDirectory(connect),
        )

    try:
        probe_local_dir(config.local_data_dir)
    except OSError as exc:
        logger.error(
            "Fallback entitlement store unusable at %s: %s",
            config.local_data_dir,
            exc,
        )
        unavailable = UnavailableEntitlementStore(str(exc))
        return StorageBackend(name=UNAVAILABLE_BACKEND, entitlements=unavailable, accounts=unavailable)

    logger.warning(
        "Entitlement storage backend selected: %s (data_dir=%s); writes will not be merged back",
        FALLBACK_BACKEND,
        config.local_data_dir,
    )
    return StorageBackend(
        name=FALLBACK_BACKEND,
        entitlements=JsonFileEntitlementStore(config.local_data_dir),
        accounts=JsonFileAccountDirectory(config.local_data_dir),
    )


__all__ = [
    "FALLBACK_BACKEND",
    "PRIMARY_BACKEND",
    "UNAVAILABLE_BACKEND",
    "make_connection_factory",
    "probe_primary",
    "select_backend",
]
