"""Premium subscription engine: entitlement state, intake channels and access queries."""

from .cache import EntitlementCache, InMemoryEntitlementCache, NullEntitlementCache
from .catalog import PLAN_CATALOG, PlanDefinition, get_plan_definition, list_plans
from .channels import AdminGrantAdapter, BankTransferAdapter, GatewayCheckoutAdapter, IntakeAdapter
from .config import SubscriptionConfig, load_subscription_config
from .engine import (
    AccountLockRegistry,
    EntitlementInvalidator,
    SubscriptionEngine,
    SubscriptionEventLogger,
)
from .exceptions import (
    BackendUnavailableError,
    ChannelError,
    ConflictError,
    NotFoundError,
    SubscriptionError,
    ValidationError,
)
from .facade import SubscriptionService
from .gateway import GatewayLookup, GatewayVerifier, KhaltiGatewayClient
from .models import (
    AccessSnapshot,
    AccountRole,
    Entitlement,
    EntitlementSnapshot,
    GrantRequest,
    PaymentChannel,
    PaymentRecord,
    PaymentStatus,
    PlanId,
    PremiumFeatures,
    SavedPaymentMethod,
    SubscriptionAuditEvent,
    SubscriptionAuditEventType,
    SubscriptionStatus,
    days_remaining,
    has_access,
    remember_payment_method,
)
from .selector import select_backend
from .service import EntitlementQueryService, is_elevated
from .storage import AccountDirectory, EntitlementStore, StorageBackend, UnavailableEntitlementStore

__all__ = [
    "PLAN_CATALOG",
    "AccessSnapshot",
    "AccountDirectory",
    "AccountLockRegistry",
    "AccountRole",
    "AdminGrantAdapter",
    "BackendUnavailableError",
    "BankTransferAdapter",
    "ChannelError",
    "ConflictError",
    "Entitlement",
    "EntitlementCache",
    "EntitlementInvalidator",
    "EntitlementQueryService",
    "EntitlementSnapshot",
    "EntitlementStore",
    "GatewayCheckoutAdapter",
    "GatewayLookup",
    "GatewayVerifier",
    "GrantRequest",
    "InMemoryEntitlementCache",
    "IntakeAdapter",
    "KhaltiGatewayClient",
    "NotFoundError",
    "NullEntitlementCache",
    "PaymentChannel",
    "PaymentRecord",
    "PaymentStatus",
    "PlanDefinition",
    "PlanId",
    "PremiumFeatures",
    "SavedPaymentMethod",
    "StorageBackend",
    "SubscriptionAuditEvent",
    "SubscriptionAuditEventType",
    "SubscriptionConfig",
    "SubscriptionEngine",
    "SubscriptionError",
    "SubscriptionEventLogger",
    "SubscriptionService",
    "SubscriptionStatus",
    "UnavailableEntitlementStore",
    "ValidationError",
    "days_remaining",
    "get_plan_definition",
    "has_access",
    "is_elevated",
    "list_plans",
    "load_subscription_config",
    "remember_payment_method",
    "select_backend",
]
