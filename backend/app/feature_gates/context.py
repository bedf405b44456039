"""Convenience wrapper around an access snapshot for feature gating."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Protocol

from ..subscriptions.models import AccessSnapshot
from .enforcement import (
    ReviewStatus,
    require_book_access,
    require_progress_save,
    review_moderation_status,
)


class AccessResolver(Protocol):
    def compute_access(self, account_id: str, role=None) -> AccessSnapshot:
        ...


@dataclass(frozen=True)
class PremiumContext:
    """Facade exposing gating-centric helpers for one account's premium access."""

    account_id: str
    snapshot: AccessSnapshot

    @classmethod
    def for_account(cls, resolver: AccessResolver, account_id: str, role=None) -> "PremiumContext":
        return cls(account_id=account_id, snapshot=resolver.compute_access(account_id, role))

    @property
    def is_premium(self) -> bool:
        return self.snapshot.valid

    @property
    def days_remaining(self) -> int:
        return self.snapshot.days_remaining

    def can_read(self, *, is_premium: bool) -> bool:
        return not is_premium or self.snapshot.valid

    def require_book_access(self, *, book_id: str, is_premium: bool) -> None:
        require_book_access(self.snapshot, book_id=book_id, is_premium=is_premium)

    def require_progress_save(self, *, book_id: str, is_premium: bool) -> None:
        require_progress_save(self.snapshot, book_id=book_id, is_premium=is_premium)

    def review_status(self) -> ReviewStatus:
        """Moderation status for a review written by this account."""

        return review_moderation_status(self.snapshot)
