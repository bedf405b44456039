from __future__ import annotations

import pytest

from backend.app.feature_gates import (
    FeatureGateError,
    PremiumContext,
    ReviewStatus,
    require_book_access,
    require_progress_save,
    review_moderation_status,
)
from backend.app.subscriptions import AccessSnapshot, GrantRequest, PaymentChannel


@pytest.fixture
def premium() -> AccessSnapshot:
    return AccessSnapshot(valid=True, days_remaining=12)


@pytest.fixture
def free() -> AccessSnapshot:
    return AccessSnapshot(valid=False)


def test_free_books_are_open_to_everyone(free: AccessSnapshot) -> None:
    require_book_access(free, book_id="b-1", is_premium=False)


def test_premium_books_require_entitlement(premium: AccessSnapshot, free: AccessSnapshot) -> None:
    require_book_access(premium, book_id="b-2", is_premium=True)

    with pytest.raises(FeatureGateError) as exc:
        require_book_access(free, book_id="b-2", is_premium=True)

    assert exc.value.code == "premium_required"
    assert exc.value.status_code == 403
    assert exc.value.payload["resource_id"] == "b-2"
    http_exc = exc.value.to_http_exception()
    assert http_exc.status_code == 403
    assert http_exc.detail["error"] == "premium_required"


def test_review_status_follows_premium_access(premium: AccessSnapshot, free: AccessSnapshot) -> None:
    assert review_moderation_status(premium) == ReviewStatus.APPROVED
    assert review_moderation_status(free) == ReviewStatus.PENDING


def test_progress_save_gated_on_premium_books(free: AccessSnapshot) -> None:
    require_progress_save(free, book_id="b-1", is_premium=False)

    with pytest.raises(FeatureGateError) as exc:
        require_progress_save(free, book_id="b-9", is_premium=True)

    assert exc.value.payload["resource"] == "reading_progress"


def test_premium_context_reflects_engine_state(engine, query_service) -> None:
    reader = PremiumContext.for_account(query_service, "reader-1", "reader")
    assert reader.is_premium is False
    assert reader.can_read(is_premium=True) is False
    assert reader.review_status() == ReviewStatus.PENDING

    engine.grant(
        GrantRequest(
            account_id="reader-1",
            plan_id="monthly",
            amount=100,
            channel=PaymentChannel.GATEWAY,
            external_ref="pidx-1",
        )
    )

    reader = PremiumContext.for_account(query_service, "reader-1", "reader")
    assert reader.is_premium is True
    assert reader.days_remaining == 30
    reader.require_book_access(book_id="b-2", is_premium=True)
    reader.require_progress_save(book_id="b-2", is_premium=True)
    assert reader.review_status() == ReviewStatus.APPROVED


def test_authors_read_premium_books_without_subscription(query_service) -> None:
    author = PremiumContext.for_account(query_service, "author-1", "author")

    author.require_book_access(book_id="b-2", is_premium=True)
    assert author.review_status() == ReviewStatus.APPROVED
