"""API schemas for premium subscription endpoints."""
from __future__ import annotations

from datetime import datetime
from typing import Any, Dict, List, Optional

from pydantic import BaseModel, ConfigDict, Field

from ..subscriptions import (
    AccessSnapshot,
    EntitlementSnapshot,
    PaymentRecord,
    PlanDefinition,
    PlanId,
    PremiumFeatures,
    SavedPaymentMethod,
    SubscriptionStatus,
)


class PlanResponse(BaseModel):
    id: PlanId
    name: str
    days: int
    price: int
    currency: str
    features: PremiumFeatures

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_plan(cls, plan: PlanDefinition) -> "PlanResponse":
        return cls(
            id=plan.key,
            name=plan.display_name,
            days=plan.days,
            price=plan.price,
            currency=plan.currency,
            features=plan.features,
        )


class PlanListResponse(BaseModel):
    plans: List[PlanResponse]


class PremiumStatusResponse(BaseModel):
    is_premium: bool = Field(alias="isPremium")
    days_remaining: int = Field(alias="daysRemaining")
    bypass: bool = False
    subscription_type: Optional[PlanId] = Field(alias="subscriptionType", default=None)
    status: Optional[SubscriptionStatus] = None
    end_date: Optional[datetime] = Field(alias="endDate", default=None)

    model_config = ConfigDict(populate_by_name=True)

    @classmethod
    def from_snapshot(cls, snapshot: AccessSnapshot) -> "PremiumStatusResponse":
        return cls(
            is_premium=snapshot.valid,
            days_remaining=snapshot.days_remaining,
            bypass=snapshot.bypass,
            subscription_type=snapshot.subscription_type,
            status=snapshot.status,
            end_date=snapshot.end_date,
        )


class PaymentHistoryResponse(BaseModel):
    account_id: str = Field(alias="accountId")
    payments: List[PaymentRecord]

    model_config = ConfigDict(populate_by_name=True)


class PaymentMethodsResponse(BaseModel):
    account_id: str = Field(alias="accountId")
    payment_methods: List[SavedPaymentMethod] = Field(alias="paymentMethods")

    model_config = ConfigDict(populate_by_name=True)


class SubscriptionResponse(BaseModel):
    message: str
    subscription: EntitlementSnapshot


class GatewayConfirmRequest(BaseModel):
    plan: str
    pidx: str
    amount: Optional[float] = None
    purchase_order_id: Optional[str] = Field(alias="purchaseOrderId", default=None)

    model_config = ConfigDict(populate_by_name=True)

    def channel_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"plan"})


class BankTransferRequest(BaseModel):
    plan: str
    transaction_id: str = Field(alias="transactionId")
    bank_name: str = Field(alias="bankName")
    amount: float
    contact_number: Optional[str] = Field(alias="contactNumber", default=None)
    payment_date: Optional[datetime] = Field(alias="paymentDate", default=None)
    save_payment_method: bool = Field(alias="savePaymentMethod", default=True)

    model_config = ConfigDict(populate_by_name=True)

    def channel_payload(self) -> Dict[str, Any]:
        return self.model_dump(by_alias=True, exclude_none=True, exclude={"plan"})


class AdminGrantRequest(BaseModel):
    account_id: Optional[str] = Field(alias="accountId", default=None)
    plan: str
    amount: Optional[float] = None
    note: Optional[str] = None

    model_config = ConfigDict(populate_by_name=True)

    def channel_payload(self, granted_by: str) -> Dict[str, Any]:
        payload = self.model_dump(exclude_none=True, include={"amount", "note"})
        payload["grantedBy"] = granted_by
        return payload


__all__ = [
    "AdminGrantRequest",
    "BankTransferRequest",
    "GatewayConfirmRequest",
    "PaymentHistoryResponse",
    "PaymentMethodsResponse",
    "PlanListResponse",
    "PlanResponse",
    "PremiumStatusResponse",
    "SubscriptionResponse",
]
