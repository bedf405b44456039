from __future__ import annotations

from datetime import timedelta

from backend.app.services.subscriptions import build_subscription_service
from backend.app.subscriptions import (
    AccountRole,
    Entitlement,
    EntitlementQueryService,
    GatewayLookup,
    GrantRequest,
    InMemoryEntitlementCache,
    PaymentChannel,
    PlanId,
    StorageBackend,
    SubscriptionStatus,
    is_elevated,
    load_subscription_config,
)


def _grant(engine, ref="txn-1", plan_id="monthly"):
    return engine.grant(
        GrantRequest(
            account_id="reader-1",
            plan_id=plan_id,
            amount=100,
            channel=PaymentChannel.BANK_TRANSFER,
            external_ref=ref,
        )
    )


def test_unknown_account_is_not_entitled(query_service):
    snapshot = query_service.compute_access("nobody")

    assert snapshot.valid is False
    assert snapshot.days_remaining == 0
    assert snapshot.status is None


def test_elevated_roles_bypass_predicate(query_service):
    assert query_service.compute_access("nobody", AccountRole.ADMIN).valid is True
    author = query_service.compute_access("nobody", "author")
    assert author.valid is True
    assert author.bypass is True
    assert query_service.compute_access("nobody", "reader").valid is False


def test_is_elevated_tolerates_unknown_roles():
    assert is_elevated("Admin") is True
    assert is_elevated("moderator") is False
    assert is_elevated(None) is False


def test_lazy_expiry_reports_expired_status(engine, query_service, clock):
    _grant(engine)

    clock.advance(days=30)
    snapshot = query_service.compute_access("reader-1")

    assert snapshot.valid is False
    assert snapshot.days_remaining == 0
    assert snapshot.status == SubscriptionStatus.EXPIRED


def test_days_remaining_counts_down(engine, query_service, clock):
    _grant(engine)

    clock.advance(days=10, hours=6)

    assert query_service.query_access("reader-1").days_remaining == 20


def test_reads_are_served_from_cache_until_invalidated(engine, store, query_service):
    _grant(engine)
    query_service.query_access("reader-1")
    loads_after_first_read = store.loads

    query_service.query_access("reader-1")
    assert store.loads == loads_after_first_read

    _grant(engine, ref="txn-2")
    snapshot = query_service.query_access("reader-1")
    assert snapshot.days_remaining == 60


def test_cache_ttl_expiry_reloads_record(engine, store, query_service, clock):
    _grant(engine)
    query_service.query_access("reader-1")
    loads = store.loads

    clock.advance(seconds=61)
    query_service.query_access("reader-1")

    assert store.loads == loads + 1


def test_direct_store_writes_are_visible_after_ttl(store, query_service, clock):
    store.seed(
        Entitlement(
            account_id="reader-2",
            is_active=True,
            subscription_type=PlanId.YEARLY,
            start_date=clock.now,
            end_date=clock.now + timedelta(days=365),
            status=SubscriptionStatus.ACTIVE,
            version=1,
        )
    )

    snapshot = query_service.compute_access("reader-2")

    assert snapshot.valid is True
    assert snapshot.subscription_type == PlanId.YEARLY
    assert snapshot.days_remaining == 365


def test_payment_history_is_newest_first(engine, query_service, clock):
    _grant(engine, ref="first")
    clock.advance(days=1)
    _grant(engine, ref="second")

    history = query_service.payment_history("reader-1")

    assert [record.external_ref for record in history] == ["second", "first"]
    assert query_service.payment_history("nobody") == []


class _NoGatewayVerifier:
    def lookup(self, pidx: str, *, timeout: float) -> GatewayLookup:
        return GatewayLookup(pidx=pidx, status="Completed")


def test_cancel_in_one_worker_is_seen_by_another(store, accounts, event_logger, clock):
    workers = [
        build_subscription_service(
            load_subscription_config({}),
            backend=StorageBackend(name="memory", entitlements=store, accounts=accounts),
            verifier=_NoGatewayVerifier(),
            event_logger=event_logger,
            clock=clock,
        )
        for _ in range(2)
    ]
    transfer = {"transactionId": "T-1", "bankName": "NIC Asia", "amount": 100}

    workers[0].grant("reader-1", "monthly", PaymentChannel.BANK_TRANSFER, transfer)
    assert workers[1].query_access("reader-1").valid is True

    workers[0].cancel("reader-1")

    assert workers[1].query_access("reader-1").valid is False
    assert workers[1].compute_access("reader-1", "reader").valid is False


def test_uncached_service_reads_the_store_every_time(engine, store, clock):
    _grant(engine)
    uncached = EntitlementQueryService(store, InMemoryEntitlementCache(clock=clock), clock=clock)
    loads = store.loads

    uncached.query_access("reader-1")
    uncached.query_access("reader-1")

    assert store.loads == loads + 2


class _InvalidatingStore:
    """Simulates a write landing while a read is in flight."""

    def __init__(self, store) -> None:
        self.store = store
        self.query_service = None

    def load_entitlement(self, account_id):
        entitlement = self.store.load_entitlement(account_id)
        self.query_service.invalidate_account(account_id)
        return entitlement


def test_record_read_during_a_write_is_not_cached(engine, store, clock):
    _grant(engine)
    racing = _InvalidatingStore(store)
    service = EntitlementQueryService(racing, InMemoryEntitlementCache(clock=clock), clock=clock, ttl_seconds=60)
    racing.query_service = service

    service.query_access("reader-1")
    loads = store.loads
    service.query_access("reader-1")

    assert store.loads == loads + 1


def test_read_tracking_is_released_after_each_load(engine, query_service):
    _grant(engine)

    for account_id in ("reader-1", "reader-2", "nobody"):
        query_service.query_access(account_id)
        query_service.invalidate_account(account_id)

    assert query_service._reads == {}


def test_payment_methods_list_default_first(engine, query_service, clock):
    for bank_name, ref in (("NIC Asia", "T-1"), ("Global IME", "T-2")):
        engine.grant(
            GrantRequest(
                account_id="reader-1",
                plan_id="monthly",
                amount=100,
                channel=PaymentChannel.BANK_TRANSFER,
                external_ref=ref,
                metadata={"bank_name": bank_name},
                save_payment_method=True,
            )
        )
        clock.advance(days=1)

    methods = query_service.payment_methods("reader-1")

    assert [method.bank_name for method in methods] == ["NIC Asia", "Global IME"]
    assert methods[0].is_default is True
    assert methods[1].contact_number == ""
    assert query_service.payment_methods("nobody") == []
