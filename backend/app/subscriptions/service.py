"""Read-side facade answering whether an account currently holds premium access."""
from __future__ import annotations

import logging
import threading
from dataclasses import dataclass
from datetime import datetime, timedelta, timezone
from typing import Callable, Dict, List, Optional, Union

from .cache import EntitlementCache, account_tag
from .exceptions import BackendUnavailableError
from .models import (
    ELEVATED_ROLES,
    AccessSnapshot,
    AccountRole,
    Entitlement,
    PaymentRecord,
    SavedPaymentMethod,
    SubscriptionStatus,
    days_remaining,
    has_access,
)
from .storage import EntitlementStore


logger = logging.getLogger("subscriptions.query")

RoleLike = Union[AccountRole, str, None]


def is_elevated(role: RoleLike) -> bool:
    """Return ``True`` for roles that bypass the premium predicate."""

    if role is None:
        return False
    try:
        return AccountRole(str(getattr(role, "value", role)).lower()) in ELEVATED_ROLES
    except ValueError:
        return False


@dataclass
class _ReadState:
    readers: int = 0
    generation: int = 0


class EntitlementQueryService:
    """Loads entitlements, applies the validity predicate and caches records.

    Only raw records are cached; validity is recomputed on every call. Caching
    is off unless ``ttl_seconds`` is positive. Cached records are only
    invalidated by writes made through this process.
    """

    def __init__(
        self,
        store: EntitlementStore,
        cache: EntitlementCache,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        ttl_seconds: int = 0,
    ) -> None:
        self._store = store
        self._cache = cache
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._ttl_seconds = max(ttl_seconds, 0)
        self._reads: Dict[str, _ReadState] = {}
        self._reads_lock = threading.Lock()

    def compute_access(self, account_id: str, role: RoleLike = None) -> AccessSnapshot:
        """Return the access snapshot for ``account_id``. Never raises."""

        bypass = is_elevated(role)
        try:
            entitlement = self.load_entitlement(account_id)
        except BackendUnavailableError:
            logger.warning("Entitlement lookup degraded to not entitled account=%s", account_id)
            entitlement = None

        now = self._clock()
        if entitlement is None:
            return AccessSnapshot(valid=bypass, days_remaining=0, bypass=bypass)

        entitled = has_access(entitlement, now)
        status = entitlement.status
        if status == SubscriptionStatus.ACTIVE and not entitled:
            status = SubscriptionStatus.EXPIRED
        return AccessSnapshot(
            valid=entitled or bypass,
            days_remaining=days_remaining(entitlement.end_date, now) if entitled else 0,
            bypass=bypass,
            subscription_type=entitlement.subscription_type,
            status=status,
            end_date=entitlement.end_date,
        )

    def query_access(self, account_id: str) -> AccessSnapshot:
        return self.compute_access(account_id)

    def load_entitlement(self, account_id: str) -> Optional[Entitlement]:
        """Return the stored record, served from cache when fresh.

        Raises :class:`BackendUnavailableError` when storage cannot be read.
        """

        if not self._ttl_seconds:
            return self._store.load_entitlement(account_id)

        key = account_tag(account_id)
        cached = self._cache.get(key)
        if cached is not None:
            return cached

        with self._reads_lock:
            state = self._reads.setdefault(account_id, _ReadState())
            state.readers += 1
            generation = state.generation
        entitlement = None
        try:
            entitlement = self._store.load_entitlement(account_id)
        finally:
            with self._reads_lock:
                state.readers -= 1
                if state.readers == 0:
                    self._reads.pop(account_id, None)
                # A write that landed during the load makes this record stale.
                if entitlement is not None and state.generation == generation:
                    expires_at = self._clock() + timedelta(seconds=self._ttl_seconds)
                    self._cache.set(key, entitlement, expires_at, {key})
        return entitlement

    def payment_history(self, account_id: str) -> List[PaymentRecord]:
        """Payment records for the account, newest first."""

        entitlement = self.load_entitlement(account_id)
        if entitlement is None:
            return []
        return sorted(entitlement.payment_history, key=lambda record: record.date, reverse=True)

    def payment_methods(self, account_id: str) -> List[SavedPaymentMethod]:
        """Saved payment methods, default first, then most recently used."""

        entitlement = self.load_entitlement(account_id)
        if entitlement is None:
            return []
        return sorted(
            entitlement.payment_methods,
            key=lambda method: (not method.is_default, -method.last_used.timestamp()),
        )

    def invalidate_account(self, account_id: str) -> None:
        with self._reads_lock:
            state = self._reads.get(account_id)
            if state is not None:
                state.generation += 1
            self._cache.invalidate({account_tag(account_id)})


__all__ = ["EntitlementQueryService", "is_elevated"]
