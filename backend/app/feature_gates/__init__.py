"""Feature gating utilities consulting premium entitlement answers."""
from .context import PremiumContext
from .enforcement import (
    ReviewStatus,
    require_book_access,
    require_progress_save,
    review_moderation_status,
)
from .exceptions import FeatureGateError, premium_required

__all__ = [
    "FeatureGateError",
    "PremiumContext",
    "ReviewStatus",
    "premium_required",
    "require_book_access",
    "require_progress_save",
    "review_moderation_status",
]
