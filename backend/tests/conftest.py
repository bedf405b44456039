from __future__ import annotations

import threading
from datetime import datetime, timedelta, timezone
from typing import Dict, Iterable, List, Optional

import pytest

from backend.app.subscriptions import (
    ConflictError,
    Entitlement,
    EntitlementQueryService,
    InMemoryEntitlementCache,
    SubscriptionAuditEvent,
    SubscriptionEngine,
)


class FakeClock:
    def __init__(self, start: datetime) -> None:
        self.now = start

    def __call__(self) -> datetime:
        return self.now

    def advance(self, **kwargs) -> None:
        self.now = self.now + timedelta(**kwargs)


class InMemoryEntitlementStore:
    def __init__(self) -> None:
        self.records: Dict[str, Entitlement] = {}
        self.conflicts_to_inject = 0
        self.loads = 0
        self._lock = threading.Lock()

    def seed(self, entitlement: Entitlement) -> None:
        self.records[entitlement.account_id] = entitlement

    def load_entitlement(self, account_id: str) -> Optional[Entitlement]:
        self.loads += 1
        return self.records.get(account_id)

    def save_entitlement(self, entitlement: Entitlement) -> Entitlement:
        with self._lock:
            if self.conflicts_to_inject:
                self.conflicts_to_inject -= 1
                raise ConflictError(message="concurrent writer won")
            stored = self.records.get(entitlement.account_id)
            stored_version = stored.version if stored else 0
            if entitlement.version != stored_version:
                raise ConflictError(message="stale version")
            saved = entitlement.model_copy(update={"version": stored_version + 1})
            self.records[entitlement.account_id] = saved
            return saved


class InMemoryAccountDirectory:
    def __init__(self, accounts: Iterable[str] = ()) -> None:
        self.accounts = set(accounts)
        self.created: List[str] = []

    def account_exists(self, account_id: str) -> bool:
        return account_id in self.accounts

    def create_placeholder_account(self) -> str:
        account_id = f"temp-{len(self.created) + 1}"
        self.accounts.add(account_id)
        self.created.append(account_id)
        return account_id


class FakeEventLogger:
    def __init__(self) -> None:
        self.events: List[SubscriptionAuditEvent] = []

    def log(self, event: SubscriptionAuditEvent) -> None:
        self.events.append(event)


@pytest.fixture
def clock() -> FakeClock:
    return FakeClock(datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc))


@pytest.fixture
def store() -> InMemoryEntitlementStore:
    return InMemoryEntitlementStore()


@pytest.fixture
def accounts() -> InMemoryAccountDirectory:
    return InMemoryAccountDirectory({"reader-1", "reader-2"})


@pytest.fixture
def event_logger() -> FakeEventLogger:
    return FakeEventLogger()


@pytest.fixture
def query_service(store, clock) -> EntitlementQueryService:
    return EntitlementQueryService(store, InMemoryEntitlementCache(clock=clock), clock=clock, ttl_seconds=60)


@pytest.fixture
def engine(store, accounts, event_logger, query_service, clock) -> SubscriptionEngine:
    return SubscriptionEngine(store, accounts, event_logger, query_service, clock=clock)
