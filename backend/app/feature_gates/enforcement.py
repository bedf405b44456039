"""Premium checks applied by book access, review and reading-progress handlers."""
from __future__ import annotations

from enum import Enum

from ..subscriptions.models import AccessSnapshot
from .exceptions import premium_required


class ReviewStatus(str, Enum):
    APPROVED = "approved"
    PENDING = "pending"


def require_book_access(snapshot: AccessSnapshot, *, book_id: str, is_premium: bool) -> None:
    """Allow free books to everyone and premium books to entitled or elevated accounts.

    Parameters
    ----------
    snapshot:
        Access answer from the entitlement query service. Its ``valid`` flag
        already folds in the admin/author bypass.
    book_id:
        Identifier echoed back in the error payload.
    is_premium:
        Whether the book is marked premium in the catalog.
    """

    if is_premium and not snapshot.valid:
        raise premium_required(
            "book",
            book_id,
            message="This book is only available to premium members.",
        )


def review_moderation_status(snapshot: AccessSnapshot) -> ReviewStatus:
    """Reviews from premium members skip the moderation queue."""

    return ReviewStatus.APPROVED if snapshot.valid else ReviewStatus.PENDING


def require_progress_save(snapshot: AccessSnapshot, *, book_id: str, is_premium: bool) -> None:
    if is_premium and not snapshot.valid:
        raise premium_required(
            "reading_progress",
            book_id,
            message="Saving progress on premium books requires an active premium subscription.",
        )


__all__ = [
    "ReviewStatus",
    "require_book_access",
    "require_progress_save",
    "review_moderation_status",
]
