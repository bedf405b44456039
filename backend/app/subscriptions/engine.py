"""State-machine core turning grant and cancel requests into entitlement writes."""
from __future__ import annotations

import logging
import threading
import zlib
from contextlib import contextmanager
from datetime import datetime, timezone
from typing import Callable, Iterator, Optional, Protocol, Tuple

from .catalog import PlanDefinition, get_plan_definition
from .exceptions import ConflictError, NotFoundError, ValidationError
from .models import (
    Entitlement,
    EntitlementSnapshot,
    GrantRequest,
    PaymentRecord,
    PaymentStatus,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
    SubscriptionStatus,
    has_access,
    remember_payment_method,
)
from .storage import AccountDirectory, EntitlementStore


logger = logging.getLogger("subscriptions.engine")


class SubscriptionEventLogger(Protocol):
    """Captures structured subscription audit events."""

    def log(self, event: SubscriptionAuditEvent) -> None:
        ...


class EntitlementInvalidator(Protocol):
    """Invalidates read-side caches affected by an entitlement write."""

    def invalidate_account(self, account_id: str) -> None:
        ...


class AccountLockRegistry:
    """Striped mutexes serializing writes per account within the process."""

    def __init__(self, stripes: int = 256) -> None:
        if stripes < 1:
            raise ValueError("stripes must be >= 1")
        self._locks = tuple(threading.Lock() for _ in range(stripes))

    def _lock_for(self, account_id: str) -> threading.Lock:
        index = zlib.crc32(account_id.encode("utf-8")) % len(self._locks)
        return self._locks[index]

    @contextmanager
    def hold(self, account_id: str) -> Iterator[None]:
        lock = self._lock_for(account_id)
        with lock:
            yield


Transition = Callable[[Optional[Entitlement], datetime], Tuple[Entitlement, Optional[SubscriptionAuditEventType]]]


class SubscriptionEngine:
    """Coordinates entitlement transitions against the selected storage backend."""

    def __init__(
        self,
        store: EntitlementStore,
        accounts: AccountDirectory,
        event_logger: SubscriptionEventLogger,
        invalidator: EntitlementInvalidator,
        *,
        clock: Optional[Callable[[], datetime]] = None,
        max_conflict_retries: int = 3,
        auto_provision_enabled: bool = False,
        locks: Optional[AccountLockRegistry] = None,
    ) -> None:
        self._store = store
        self._accounts = accounts
        self._event_logger = event_logger
        self._invalidator = invalidator
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._max_conflict_retries = max(0, max_conflict_retries)
        self._auto_provision_enabled = auto_provision_enabled
        self._locks = locks or AccountLockRegistry()

    def grant(self, request: GrantRequest) -> EntitlementSnapshot:
        """Activate or extend the entitlement named by ``request``."""

        plan = get_plan_definition(request.plan_id)
        if request.amount <= 0:
            raise ValidationError(message="amount must be positive", code="invalid_amount")

        account_id = self._resolve_account(request)

        def _transition(current: Optional[Entitlement], now: datetime):
            return self._apply_grant(current, request, plan, account_id, now)

        saved, event_type, now = self._mutate(account_id, _transition)
        if event_type is not None:
            self._event_logger.log(
                SubscriptionAuditEvent(
                    event_type=event_type,
                    account_id=account_id,
                    channel=request.channel,
                    external_ref=request.external_ref,
                    end_date=saved.end_date,
                    metadata=dict(request.metadata),
                    occurred_at=now,
                )
            )
        return EntitlementSnapshot.from_entitlement(saved, now)

    def cancel(self, account_id: str, *, actor_id: Optional[str] = None) -> EntitlementSnapshot:
        """Cancel immediately. Cancelling a cancelled entitlement is a no-op."""

        def _transition(current: Optional[Entitlement], now: datetime):
            if current is None:
                raise NotFoundError(
                    message="No premium subscription found",
                    detail={"account_id": account_id},
                )
            if current.status == SubscriptionStatus.CANCELLED and not current.is_active:
                return current, None
            updated = current.model_copy(
                update={"is_active": False, "status": SubscriptionStatus.CANCELLED}
            )
            return updated, SubscriptionAuditEventType.CANCELLED

        saved, event_type, now = self._mutate(account_id, _transition)
        if event_type is not None:
            self._event_logger.log(
                SubscriptionAuditEvent(
                    event_type=event_type,
                    account_id=account_id,
                    end_date=saved.end_date,
                    actor_id=actor_id,
                    occurred_at=now,
                )
            )
        return EntitlementSnapshot.from_entitlement(saved, now)

    def _resolve_account(self, request: GrantRequest) -> str:
        if self._accounts.account_exists(request.account_id):
            return request.account_id
        if request.allow_auto_provision and self._auto_provision_enabled:
            account_id = self._accounts.create_placeholder_account()
            logger.warning(
                "Provisioned placeholder account %s for %s grant (test mode)",
                account_id,
                request.channel.value,
            )
            return account_id
        raise NotFoundError(message="Account not found", detail={"account_id": request.account_id})

    def _mutate(
        self,
        account_id: str,
        transition: Transition,
    ) -> Tuple[Entitlement, Optional[SubscriptionAuditEventType], datetime]:
        attempts = self._max_conflict_retries + 1
        with self._locks.hold(account_id):
            for attempt in range(1, attempts + 1):
                now = self._clock()
                current = self._store.load_entitlement(account_id)
                updated, event_type = transition(current, now)
                if event_type is None:
                    return updated, None, now
                try:
                    saved = self._store.save_entitlement(updated)
                except ConflictError:
                    logger.info(
                        "Entitlement write conflict account=%s attempt=%s/%s",
                        account_id,
                        attempt,
                        attempts,
                    )
                    continue
                self._invalidator.invalidate_account(account_id)
                return saved, event_type, now

        raise ConflictError(
            message="Entitlement update kept conflicting; retry later",
            detail={"account_id": account_id, "attempts": attempts},
        )

    def _apply_grant(
        self,
        current: Optional[Entitlement],
        request: GrantRequest,
        plan: PlanDefinition,
        account_id: str,
        now: datetime,
    ) -> Tuple[Entitlement, SubscriptionAuditEventType]:
        if current is None:
            current = Entitlement(
                account_id=account_id,
                is_active=False,
                subscription_type=plan.key,
                start_date=now,
                end_date=now + plan.duration,
                status=SubscriptionStatus.PENDING,
                features=plan.features,
            )

        if has_access(current, now):
            start_date = current.start_date
            end_date = current.end_date + plan.duration if current.end_date is not None else None
            event_type = SubscriptionAuditEventType.RENEWED
        else:
            start_date = now
            end_date = now + plan.duration
            event_type = SubscriptionAuditEventType.ACTIVATED

        record = PaymentRecord(
            amount=request.amount,
            channel=request.channel,
            external_ref=request.external_ref,
            status=PaymentStatus.COMPLETED,
            date=now,
            metadata=dict(request.metadata),
        )
        updated = current.model_copy(
            update={
                "is_active": True,
                "status": SubscriptionStatus.ACTIVE,
                "subscription_type": plan.key,
                "start_date": start_date,
                "end_date": end_date,
                "features": plan.features,
                "payment_history": current.payment_history + (record,),
                "payment_methods": self._payment_methods(current, request, now),
            }
        )
        return updated, event_type

    @staticmethod
    def _payment_methods(current: Entitlement, request: GrantRequest, now: datetime):
        bank_name = request.metadata.get("bank_name")
        if not request.save_payment_method or not bank_name:
            return current.payment_methods
        return remember_payment_method(
            current.payment_methods,
            bank_name=bank_name,
            contact_number=request.metadata.get("contact_number", ""),
            now=now,
        )


__all__ = [
    "AccountLockRegistry",
    "EntitlementInvalidator",
    "SubscriptionEngine",
    "SubscriptionEventLogger",
]
