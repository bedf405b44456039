"""API routes exposing premium subscription functionality."""
from __future__ import annotations

import logging
import os
from typing import Any, Optional

from fastapi import APIRouter, Cookie, Depends, Header, HTTPException, status

from ..schemas.premium import (
    AdminGrantRequest,
    BankTransferRequest,
    GatewayConfirmRequest,
    PaymentHistoryResponse,
    PaymentMethodsResponse,
    PlanListResponse,
    PlanResponse,
    PremiumStatusResponse,
    SubscriptionResponse,
)
from ..services.subscriptions import get_subscription_service
from ..subscriptions import AccountRole, PaymentChannel, SubscriptionError

try:
    from backend import app_context
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    from ... import app_context  # type: ignore[no-redef]


logger = logging.getLogger("subscriptions.routes")

_SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")


def _get_current_user(
    session_token: Optional[str] = Cookie(None, alias=_SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> Any:
    return app_context.get_current_user(session_token=session_token, authorization=authorization)


def _require_admin(current_user: Any) -> None:
    role = getattr(current_user, "role", "")
    if str(getattr(role, "value", role)).lower() != AccountRole.ADMIN.value:
        raise HTTPException(status_code=status.HTTP_403_FORBIDDEN, detail="Admin access required")


router = APIRouter(prefix="/api/premium", tags=["premium"])


@router.get("/plans", response_model=PlanListResponse)
def list_plans() -> PlanListResponse:
    service = get_subscription_service()
    return PlanListResponse(plans=[PlanResponse.from_plan(plan) for plan in service.plans()])


@router.get("/status", response_model=PremiumStatusResponse)
def get_status(*, current_user=Depends(_get_current_user)) -> PremiumStatusResponse:
    """Premium access for the caller. Storage failures report as not premium."""

    service = get_subscription_service()
    snapshot = service.compute_access(str(current_user.id), getattr(current_user, "role", None))
    return PremiumStatusResponse.from_snapshot(snapshot)


@router.get("/history", response_model=PaymentHistoryResponse)
def get_history(*, current_user=Depends(_get_current_user)) -> PaymentHistoryResponse:
    service = get_subscription_service()
    account_id = str(current_user.id)
    try:
        payments = service.history(account_id)
    except SubscriptionError as exc:
        raise exc.to_http_exception() from exc
    return PaymentHistoryResponse(account_id=account_id, payments=payments)


@router.get("/payment-methods", response_model=PaymentMethodsResponse)
def get_payment_methods(*, current_user=Depends(_get_current_user)) -> PaymentMethodsResponse:
    service = get_subscription_service()
    account_id = str(current_user.id)
    try:
        methods = service.payment_methods(account_id)
    except SubscriptionError as exc:
        raise exc.to_http_exception() from exc
    return PaymentMethodsResponse(account_id=account_id, payment_methods=methods)


@router.post("/cancel", response_model=SubscriptionResponse)
def cancel_subscription(*, current_user=Depends(_get_current_user)) -> SubscriptionResponse:
    service = get_subscription_service()
    account_id = str(current_user.id)
    try:
        snapshot = service.cancel(account_id, actor_id=account_id)
    except SubscriptionError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(message="Premium subscription cancelled", subscription=snapshot)


@router.post("/gateway/confirm", response_model=SubscriptionResponse)
def confirm_gateway_payment(
    payload: GatewayConfirmRequest,
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionResponse:
    service = get_subscription_service()
    try:
        snapshot = service.grant(
            str(current_user.id),
            payload.plan,
            PaymentChannel.GATEWAY,
            payload.channel_payload(),
        )
    except SubscriptionError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(message="Payment verified and premium activated", subscription=snapshot)


@router.post("/bank-transfer", response_model=SubscriptionResponse)
def submit_bank_transfer(
    payload: BankTransferRequest,
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionResponse:
    service = get_subscription_service()
    try:
        snapshot = service.grant(
            str(current_user.id),
            payload.plan,
            PaymentChannel.BANK_TRANSFER,
            payload.channel_payload(),
        )
    except SubscriptionError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(message="Bank transfer recorded and premium activated", subscription=snapshot)


@router.post("/admin/grant", response_model=SubscriptionResponse)
def admin_grant(
    payload: AdminGrantRequest,
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionResponse:
    _require_admin(current_user)
    service = get_subscription_service()
    try:
        snapshot = service.grant(
            payload.account_id or "",
            payload.plan,
            PaymentChannel.ADMIN_GRANT,
            payload.channel_payload(granted_by=str(current_user.id)),
        )
    except SubscriptionError as exc:
        raise exc.to_http_exception() from exc
    logger.info("Admin %s granted %s premium to %s", current_user.id, payload.plan, snapshot.account_id)
    return SubscriptionResponse(message="Premium granted", subscription=snapshot)


@router.post("/admin/accounts/{account_id}/cancel", response_model=SubscriptionResponse)
def admin_cancel(
    account_id: str,
    *,
    current_user=Depends(_get_current_user),
) -> SubscriptionResponse:
    _require_admin(current_user)
    service = get_subscription_service()
    try:
        snapshot = service.cancel(account_id, actor_id=str(current_user.id))
    except SubscriptionError as exc:
        raise exc.to_http_exception() from exc
    return SubscriptionResponse(message="Premium subscription cancelled", subscription=snapshot)
