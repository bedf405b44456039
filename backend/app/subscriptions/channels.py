"""Intake adapters normalizing each payment channel into a :class:`GrantRequest`.

Every channel auto-approves once its own fields validate. There is no manual
review queue and no fraud check beyond the gateway lookup.
"""
from __future__ import annotations

import logging
from concurrent.futures import ThreadPoolExecutor
from concurrent.futures import TimeoutError as FutureTimeoutError
from datetime import datetime
from typing import Any, Dict, Mapping, Optional, Protocol

from pydantic import BaseModel, ConfigDict, Field
from pydantic import ValidationError as PydanticValidationError

from .catalog import PlanDefinition, get_plan_definition
from .exceptions import ChannelError, ValidationError
from .gateway import GatewayVerifier
from .models import GrantRequest, PaymentChannel


logger = logging.getLogger("subscriptions.channels")


class IntakeAdapter(Protocol):
    """Validates a channel payload and produces a normalized grant request."""

    channel: PaymentChannel

    def build_request(self, account_id: str, plan_id: str, payload: Mapping[str, Any]) -> GrantRequest:
        ...


class GatewayConfirmation(BaseModel):
    pidx: str = Field(min_length=1)
    amount: Optional[float] = Field(default=None, gt=0)
    purchase_order_id: Optional[str] = Field(default=None, alias="purchaseOrderId")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class BankTransferClaim(BaseModel):
    transaction_id: str = Field(alias="transactionId", min_length=1)
    bank_name: str = Field(alias="bankName", min_length=1)
    amount: float = Field(gt=0)
    contact_number: Optional[str] = Field(default=None, alias="contactNumber")
    payment_date: Optional[datetime] = Field(default=None, alias="paymentDate")
    save_payment_method: bool = Field(default=True, alias="savePaymentMethod")

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


class AdminGrant(BaseModel):
    granted_by: str = Field(alias="grantedBy", min_length=1)
    amount: Optional[float] = Field(default=None, gt=0)
    note: Optional[str] = Field(default=None, max_length=500)

    model_config = ConfigDict(populate_by_name=True, str_strip_whitespace=True)


def _parse(model: type[BaseModel], channel: PaymentChannel, payload: Mapping[str, Any]) -> Any:
    if not isinstance(payload, Mapping):
        raise ValidationError(message=f"Malformed {channel.value} payload", code="malformed_payload")
    try:
        return model.model_validate(dict(payload))
    except PydanticValidationError as exc:
        errors = [
            {"field": ".".join(str(part) for part in error["loc"]), "message": error["msg"]}
            for error in exc.errors()
        ]
        raise ValidationError(
            message=f"Malformed {channel.value} payload",
            code="malformed_payload",
            detail={"channel": channel.value, "errors": errors},
        ) from exc


def _require_account(account_id: str) -> str:
    account_id = (account_id or "").strip()
    if not account_id:
        raise ValidationError(message="account_id is required", code="missing_account")
    return account_id


class GatewayCheckoutAdapter:
    """Confirms a hosted checkout by looking up its transaction handle.

    The lookup runs under a fixed deadline. A timeout, a transport failure or a
    non-completed gateway status fails the grant closed.
    """

    channel = PaymentChannel.GATEWAY

    def __init__(
        self,
        verifier: GatewayVerifier,
        *,
        timeout_seconds: float = 10.0,
        executor: Optional[ThreadPoolExecutor] = None,
    ) -> None:
        self._verifier = verifier
        self._timeout_seconds = timeout_seconds
        self._executor = executor or ThreadPoolExecutor(max_workers=4, thread_name_prefix="gateway-lookup")

    def close(self) -> None:
        """Stop the lookup pool without waiting on lookups still in flight."""

        self._executor.shutdown(wait=False, cancel_futures=True)

    def build_request(self, account_id: str, plan_id: str, payload: Mapping[str, Any]) -> GrantRequest:
        account_id = _require_account(account_id)
        plan = get_plan_definition(plan_id)
        confirmation: GatewayConfirmation = _parse(GatewayConfirmation, self.channel, payload)

        lookup = self._lookup(confirmation.pidx)
        if not lookup.completed:
            raise ChannelError(
                message="Payment was not completed",
                channel=self.channel.value,
                reason=lookup.status,
            )

        amount = lookup.amount if lookup.amount is not None else confirmation.amount
        if amount is None:
            raise ValidationError(message="amount is required", code="missing_amount")
        if amount != plan.price:
            raise ValidationError(
                message=f"Amount must be {plan.price} for the {plan.key.value} plan",
                code="amount_mismatch",
                detail={"amount": amount, "expected": plan.price},
            )

        metadata = {"gateway": "khalti", "pidx": lookup.pidx}
        if confirmation.purchase_order_id:
            metadata["purchase_order_id"] = confirmation.purchase_order_id
        return GrantRequest(
            account_id=account_id,
            plan_id=plan.key.value,
            amount=amount,
            channel=self.channel,
            external_ref=lookup.transaction_id or lookup.pidx,
            metadata=metadata,
        )

    def _lookup(self, pidx: str):
        future = self._executor.submit(self._verifier.lookup, pidx, timeout=self._timeout_seconds)
        try:
            return future.result(timeout=self._timeout_seconds)
        except FutureTimeoutError as exc:
            future.cancel()
            logger.warning("Gateway lookup exceeded %ss deadline pidx=%s", self._timeout_seconds, pidx)
            raise ChannelError(
                message="Payment gateway did not respond in time",
                channel=self.channel.value,
                reason="timeout",
            ) from exc
        except ChannelError:
            raise
        except Exception as exc:
            logger.exception("Unexpected gateway lookup failure pidx=%s", pidx)
            raise ChannelError(
                message="Payment gateway lookup failed",
                channel=self.channel.value,
                reason="lookup_failed",
            ) from exc


class BankTransferAdapter:
    """Accepts a manual bank-transfer claim carrying its transaction reference.

    Unless the claim opts out with ``savePaymentMethod: false`` the bank details
    are remembered on the account for the next checkout.
    """

    channel = PaymentChannel.BANK_TRANSFER

    def build_request(self, account_id: str, plan_id: str, payload: Mapping[str, Any]) -> GrantRequest:
        account_id = _require_account(account_id)
        plan = get_plan_definition(plan_id)
        claim: BankTransferClaim = _parse(BankTransferClaim, self.channel, payload)

        metadata: Dict[str, str] = {"bank_name": claim.bank_name}
        if claim.contact_number:
            metadata["contact_number"] = claim.contact_number
        if claim.payment_date:
            metadata["payment_date"] = claim.payment_date.isoformat()
        return GrantRequest(
            account_id=account_id,
            plan_id=plan.key.value,
            amount=claim.amount,
            channel=self.channel,
            external_ref=claim.transaction_id,
            metadata=metadata,
            save_payment_method=claim.save_payment_method,
        )


class AdminGrantAdapter:
    """Direct grant issued by an administrator.

    ``allow_auto_provision`` lets the grant create a placeholder account when
    the target does not exist. It is only ever enabled in test mode.
    """

    channel = PaymentChannel.ADMIN_GRANT

    def __init__(self, *, allow_auto_provision: bool = False) -> None:
        self._allow_auto_provision = allow_auto_provision

    def build_request(self, account_id: str, plan_id: str, payload: Mapping[str, Any]) -> GrantRequest:
        plan: PlanDefinition = get_plan_definition(plan_id)
        grant: AdminGrant = _parse(AdminGrant, self.channel, payload)
        account_id = (account_id or "").strip()
        if not account_id and not self._allow_auto_provision:
            raise ValidationError(message="account_id is required", code="missing_account")

        metadata = {"granted_by": grant.granted_by}
        if grant.note:
            metadata["note"] = grant.note
        return GrantRequest(
            account_id=account_id or "auto",
            plan_id=plan.key.value,
            amount=grant.amount if grant.amount is not None else plan.price,
            channel=self.channel,
            external_ref=f"admin:{grant.granted_by}",
            metadata=metadata,
            allow_auto_provision=self._allow_auto_provision,
        )


__all__ = [
    "AdminGrant",
    "AdminGrantAdapter",
    "BankTransferAdapter",
    "BankTransferClaim",
    "GatewayCheckoutAdapter",
    "GatewayConfirmation",
    "IntakeAdapter",
]
