"""Entry point combining intake adapters, the transition engine and the query side."""
from __future__ import annotations

import logging
from typing import Any, Dict, Iterable, List, Mapping, Optional, Union

from .catalog import PlanDefinition, list_plans
from .engine import SubscriptionEngine
from .exceptions import ValidationError
from .models import AccessSnapshot, EntitlementSnapshot, PaymentChannel, PaymentRecord, SavedPaymentMethod
from .channels import IntakeAdapter
from .service import EntitlementQueryService, RoleLike


logger = logging.getLogger("subscriptions")


class SubscriptionService:
    """Dispatches grants to the adapter registered for each channel."""

    def __init__(
        self,
        *,
        engine: SubscriptionEngine,
        query_service: EntitlementQueryService,
        adapters: Iterable[IntakeAdapter],
        backend_name: str = "unknown",
    ) -> None:
        self._engine = engine
        self._query_service = query_service
        self._adapters: Dict[PaymentChannel, IntakeAdapter] = {
            adapter.channel: adapter for adapter in adapters
        }
        self.backend_name = backend_name

    def grant(
        self,
        account_id: str,
        plan_id: str,
        channel: Union[PaymentChannel, str],
        payload: Mapping[str, Any],
    ) -> EntitlementSnapshot:
        adapter = self._adapter_for(channel)
        request = adapter.build_request(account_id, plan_id, payload)
        snapshot = self._engine.grant(request)
        logger.info(
            "Premium granted account=%s plan=%s channel=%s end=%s",
            snapshot.account_id,
            snapshot.subscription_type.value,
            adapter.channel.value,
            snapshot.end_date,
        )
        return snapshot

    def cancel(self, account_id: str, *, actor_id: Optional[str] = None) -> EntitlementSnapshot:
        return self._engine.cancel(account_id, actor_id=actor_id)

    def query_access(self, account_id: str) -> AccessSnapshot:
        return self._query_service.query_access(account_id)

    def compute_access(self, account_id: str, role: RoleLike = None) -> AccessSnapshot:
        return self._query_service.compute_access(account_id, role)

    def history(self, account_id: str) -> List[PaymentRecord]:
        return self._query_service.payment_history(account_id)

    def payment_methods(self, account_id: str) -> List[SavedPaymentMethod]:
        return self._query_service.payment_methods(account_id)

    def plans(self) -> List[PlanDefinition]:
        return list_plans()

    def close(self) -> None:
        """Release resources held by the intake adapters."""

        for adapter in self._adapters.values():
            close = getattr(adapter, "close", None)
            if callable(close):
                close()

    def _adapter_for(self, channel: Union[PaymentChannel, str]) -> IntakeAdapter:
        try:
            key = PaymentChannel(channel)
        except ValueError as exc:
            raise ValidationError(
                message=f"Unsupported payment channel '{channel}'",
                code="unsupported_channel",
            ) from exc
        adapter = self._adapters.get(key)
        if adapter is None:
            raise ValidationError(
                message=f"Payment channel '{key.value}' is not enabled",
                code="unsupported_channel",
            )
        return adapter


__all__ = ["SubscriptionService"]
