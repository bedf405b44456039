"""Domain models for premium subscriptions and entitlement validity."""
from __future__ import annotations

import math
from datetime import datetime, timedelta, timezone
from enum import Enum
from typing import Dict, Optional, Tuple

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator


class PlanId(str, Enum):
    """Canonical identifiers for premium plans."""

    MONTHLY = "monthly"
    YEARLY = "yearly"


class SubscriptionStatus(str, Enum):
    """Stored lifecycle state of an entitlement.

    ``EXPIRED`` is never persisted by the engine. It is only reported by the
    query side once an active record has run past its end date.
    """

    PENDING = "pending"
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"


class PaymentChannel(str, Enum):
    """Pathways through which a grant can be initiated."""

    GATEWAY = "gateway"
    BANK_TRANSFER = "bank_transfer"
    ADMIN_GRANT = "admin_grant"


class PaymentStatus(str, Enum):
    """Status recorded on an individual payment history entry."""

    PENDING = "pending"
    COMPLETED = "completed"
    FAILED = "failed"
    REFUNDED = "refunded"


class AccountRole(str, Enum):
    """Roles issued by the authentication subsystem."""

    READER = "reader"
    AUTHOR = "author"
    ADMIN = "admin"


ELEVATED_ROLES = frozenset({AccountRole.ADMIN, AccountRole.AUTHOR})


def utcnow() -> datetime:
    return datetime.now(timezone.utc)


def ensure_utc(value: datetime) -> datetime:
    """Return ``value`` as an aware UTC datetime."""

    if value.tzinfo is None:
        return value.replace(tzinfo=timezone.utc)
    return value.astimezone(timezone.utc)


class PaymentRecord(BaseModel):
    """Immutable audit entry appended for every successful grant."""

    amount: float = Field(gt=0)
    channel: PaymentChannel
    external_ref: str = Field(alias="externalRef", min_length=1)
    status: PaymentStatus = PaymentStatus.COMPLETED
    date: datetime = Field(default_factory=utcnow)
    metadata: Dict[str, str] = Field(default_factory=dict)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("date")
    @classmethod
    def _normalize_date(cls, value: datetime) -> datetime:
        return ensure_utc(value)


class SavedPaymentMethod(BaseModel):
    """Bank details remembered from an earlier transfer for reuse at checkout."""

    type: PaymentChannel = PaymentChannel.BANK_TRANSFER
    bank_name: str = Field(alias="bankName", min_length=1)
    contact_number: str = Field(default="", alias="contactNumber")
    is_default: bool = Field(default=False, alias="isDefault")
    last_used: datetime = Field(default_factory=utcnow, alias="lastUsed")
    created_at: datetime = Field(default_factory=utcnow, alias="createdAt")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("last_used", "created_at")
    @classmethod
    def _normalize_dates(cls, value: datetime) -> datetime:
        return ensure_utc(value)

    def matches(self, bank_name: str, contact_number: str) -> bool:
        return (
            self.type == PaymentChannel.BANK_TRANSFER
            and self.bank_name == bank_name
            and self.contact_number == contact_number
        )


class PremiumFeatures(BaseModel):
    """Feature flags unlocked by an entitlement."""

    unlimited_reading: bool = Field(default=True, alias="unlimitedReading")
    offline_access: bool = Field(default=True, alias="offlineAccess")
    priority_support: bool = Field(default=True, alias="prioritySupport")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class Entitlement(BaseModel):
    """Server-held premium state for a single account."""

    account_id: str = Field(alias="accountId", min_length=1)
    is_active: bool = Field(default=False, alias="isActive")
    subscription_type: PlanId = Field(alias="subscriptionType")
    start_date: datetime = Field(alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    status: SubscriptionStatus = SubscriptionStatus.PENDING
    payment_history: Tuple[PaymentRecord, ...] = Field(default_factory=tuple, alias="paymentHistory")
    payment_methods: Tuple[SavedPaymentMethod, ...] = Field(default_factory=tuple, alias="paymentMethods")
    features: PremiumFeatures = Field(default_factory=PremiumFeatures)
    version: int = Field(default=0, ge=0)

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @field_validator("start_date", "end_date")
    @classmethod
    def _normalize_dates(cls, value: Optional[datetime]) -> Optional[datetime]:
        return ensure_utc(value) if value is not None else None

    @model_validator(mode="after")
    def _check_window(self) -> "Entitlement":
        if self.end_date is not None and self.end_date <= self.start_date:
            raise ValueError("end_date must be after start_date")
        return self

    def to_record(self) -> Dict[str, object]:
        """Serialize using the persisted record layout shared by both backends."""

        return self.model_dump(mode="json", by_alias=True)

    @classmethod
    def from_record(cls, record: Dict[str, object]) -> "Entitlement":
        return cls.model_validate(record)


class GrantRequest(BaseModel):
    """Channel-neutral request produced by an intake adapter."""

    account_id: str = Field(min_length=1)
    plan_id: str
    amount: float
    channel: PaymentChannel
    external_ref: str = Field(min_length=1)
    metadata: Dict[str, str] = Field(default_factory=dict)
    allow_auto_provision: bool = False
    save_payment_method: bool = False

    model_config = ConfigDict(frozen=True)


class EntitlementSnapshot(BaseModel):
    """Result returned to callers after a grant or cancellation."""

    account_id: str = Field(alias="accountId")
    is_active: bool = Field(alias="isActive")
    subscription_type: PlanId = Field(alias="subscriptionType")
    status: SubscriptionStatus
    start_date: datetime = Field(alias="startDate")
    end_date: Optional[datetime] = Field(default=None, alias="endDate")
    days_remaining: int = Field(alias="daysRemaining")

    model_config = ConfigDict(populate_by_name=True, frozen=True)

    @classmethod
    def from_entitlement(cls, entitlement: Entitlement, now: datetime) -> "EntitlementSnapshot":
        return cls(
            account_id=entitlement.account_id,
            is_active=entitlement.is_active,
            subscription_type=entitlement.subscription_type,
            status=entitlement.status,
            start_date=entitlement.start_date,
            end_date=entitlement.end_date,
            days_remaining=days_remaining(entitlement.end_date, now) if entitlement.is_active else 0,
        )


class AccessSnapshot(BaseModel):
    """Read-side answer consulted by gated features."""

    valid: bool
    days_remaining: int = Field(default=0, alias="daysRemaining")
    bypass: bool = False
    subscription_type: Optional[PlanId] = Field(default=None, alias="subscriptionType")
    status: Optional[SubscriptionStatus] = None
    end_date: Optional[datetime] = Field(default=None, alias="endDate")

    model_config = ConfigDict(populate_by_name=True, frozen=True)


class SubscriptionAuditEventType(str, Enum):
    """Audit event categories emitted by the transition engine."""

    ACTIVATED = "subscription_activated"
    RENEWED = "subscription_renewed"
    CANCELLED = "subscription_cancelled"


class SubscriptionAuditEvent(BaseModel):
    """Structured audit event for a committed entitlement transition."""

    event_type: SubscriptionAuditEventType
    account_id: str
    channel: Optional[PaymentChannel] = None
    external_ref: Optional[str] = None
    end_date: Optional[datetime] = None
    actor_id: Optional[str] = None
    metadata: Dict[str, str] = Field(default_factory=dict)
    occurred_at: datetime = Field(default_factory=utcnow)

    model_config = ConfigDict(frozen=True)


def has_access(entitlement: Entitlement, now: datetime) -> bool:
    """Return whether ``entitlement`` grants premium access at ``now``."""

    return entitlement.is_active and (entitlement.end_date is None or now < entitlement.end_date)


def remember_payment_method(
    methods: Tuple[SavedPaymentMethod, ...],
    *,
    bank_name: str,
    contact_number: str,
    now: datetime,
) -> Tuple[SavedPaymentMethod, ...]:
    """Return ``methods`` with the bank details recorded as used at ``now``.

    A method already on file (same bank and contact number) only has its
    ``last_used`` refreshed. A new one is appended and becomes the default when
    it is the first.
    """

    for index, method in enumerate(methods):
        if method.matches(bank_name, contact_number):
            refreshed = method.model_copy(update={"last_used": now})
            return methods[:index] + (refreshed,) + methods[index + 1 :]
    added = SavedPaymentMethod(
        bank_name=bank_name,
        contact_number=contact_number,
        is_default=not methods,
        last_used=now,
        created_at=now,
    )
    return methods + (added,)


def days_remaining(end_date: Optional[datetime], now: datetime) -> int:
    """Whole days left until ``end_date``, rounded up and floored at zero."""

    if end_date is None:
        return 0
    remaining = (end_date - now) / timedelta(days=1)
    return max(0, math.ceil(remaining))


__all__ = [
    "AccessSnapshot",
    "AccountRole",
    "ELEVATED_ROLES",
    "Entitlement",
    "EntitlementSnapshot",
    "GrantRequest",
    "PaymentChannel",
    "PaymentRecord",
    "PaymentStatus",
    "PlanId",
    "PremiumFeatures",
    "SavedPaymentMethod",
    "SubscriptionAuditEvent",
    "SubscriptionAuditEventType",
    "SubscriptionStatus",
    "days_remaining",
    "ensure_utc",
    "has_access",
    "remember_payment_method",
    "utcnow",
]
