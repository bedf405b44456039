"""Tests for the entitlement stores and startup backend selection."""
from __future__ import annotations

import json
import multiprocessing
from datetime import datetime, timedelta, timezone

import psycopg2
import pytest
from filelock import FileLock

from backend.app.subscriptions import (
    BackendUnavailableError,
    ConflictError,
    Entitlement,
    EntitlementQueryService,
    NullEntitlementCache,
    PaymentChannel,
    PaymentRecord,
    PlanId,
    SavedPaymentMethod,
    SubscriptionStatus,
    load_subscription_config,
    select_backend,
)
from backend.app.subscriptions.local_store import (
    ENTITLEMENTS_FILENAME,
    JsonFileAccountDirectory,
    JsonFileEntitlementStore,
)
from backend.app.subscriptions.repository import PostgresEntitlementStore
from backend.app.subscriptions.selector import FALLBACK_BACKEND, PRIMARY_BACKEND, UNAVAILABLE_BACKEND


NOW = datetime(2024, 3, 1, 12, 0, tzinfo=timezone.utc)


def _entitlement(version: int = 0) -> Entitlement:
    return Entitlement(
        account_id="reader-1",
        is_active=True,
        subscription_type=PlanId.MONTHLY,
        start_date=NOW,
        end_date=NOW + timedelta(days=30),
        status=SubscriptionStatus.ACTIVE,
        payment_history=(
            PaymentRecord(amount=100, channel=PaymentChannel.BANK_TRANSFER, external_ref="T-1", date=NOW),
        ),
        version=version,
    )


def test_json_store_persists_camel_case_records(tmp_path):
    store = JsonFileEntitlementStore(tmp_path)

    saved = store.save_entitlement(_entitlement())

    assert saved.version == 1
    document = json.loads((tmp_path / ENTITLEMENTS_FILENAME).read_text(encoding="utf-8"))
    record = document["reader-1"]
    assert record["isActive"] is True
    assert record["subscriptionType"] == "monthly"
    assert record["paymentHistory"][0]["externalRef"] == "T-1"
    assert store.load_entitlement("reader-1") == saved
    assert store.load_entitlement("reader-2") is None


def _write_from_worker(data_dir: str, prefix: str, count: int) -> None:
    store = JsonFileEntitlementStore(data_dir)
    directory = JsonFileAccountDirectory(data_dir)
    for index in range(count):
        account_id = f"{prefix}-{index}"
        directory.add_account(account_id, username=account_id)
        store.save_entitlement(_entitlement().model_copy(update={"account_id": account_id}))


@pytest.mark.skipif("fork" not in multiprocessing.get_all_start_methods(), reason="needs fork")
def test_json_store_keeps_writes_from_concurrent_processes(tmp_path):
    context = multiprocessing.get_context("fork")
    workers = [
        context.Process(target=_write_from_worker, args=(str(tmp_path), prefix, 40))
        for prefix in ("worker-a", "worker-b")
    ]
    for worker in workers:
        worker.start()
    for worker in workers:
        worker.join(60)

    assert [worker.exitcode for worker in workers] == [0, 0]
    document = json.loads((tmp_path / ENTITLEMENTS_FILENAME).read_text(encoding="utf-8"))
    assert len(document) == 80
    users = json.loads((tmp_path / "users.json").read_text(encoding="utf-8"))
    assert len(users) == 80


def test_json_store_reports_held_lock_as_unavailable(tmp_path):
    store = JsonFileEntitlementStore(tmp_path, lock_timeout=0.05)
    directory = JsonFileAccountDirectory(tmp_path, lock_timeout=0.05)

    with FileLock(str(tmp_path / f"{ENTITLEMENTS_FILENAME}.lock")), FileLock(str(tmp_path / "users.json.lock")):
        with pytest.raises(BackendUnavailableError):
            store.save_entitlement(_entitlement())
        with pytest.raises(BackendUnavailableError):
            directory.add_account("reader-1", username="reader")

    assert store.save_entitlement(_entitlement()).version == 1


def test_json_store_round_trips_saved_payment_methods(tmp_path):
    store = JsonFileEntitlementStore(tmp_path)
    method = SavedPaymentMethod(bank_name="NIC Asia", contact_number="9800000000", is_default=True, last_used=NOW)

    store.save_entitlement(_entitlement().model_copy(update={"payment_methods": (method,)}))

    document = json.loads((tmp_path / ENTITLEMENTS_FILENAME).read_text(encoding="utf-8"))
    assert document["reader-1"]["paymentMethods"][0]["bankName"] == "NIC Asia"
    assert store.load_entitlement("reader-1").payment_methods == (method,)


def test_json_store_rejects_stale_version(tmp_path):
    store = JsonFileEntitlementStore(tmp_path)
    store.save_entitlement(_entitlement())

    with pytest.raises(ConflictError):
        store.save_entitlement(_entitlement(version=0))


def test_json_store_reports_corrupt_document_as_unavailable(tmp_path):
    (tmp_path / ENTITLEMENTS_FILENAME).write_text("{not json", encoding="utf-8")
    store = JsonFileEntitlementStore(tmp_path)

    with pytest.raises(BackendUnavailableError):
        store.load_entitlement("reader-1")


def test_json_account_directory_provisions_placeholders(tmp_path):
    directory = JsonFileAccountDirectory(tmp_path)
    directory.add_account("reader-1", username="reader")

    placeholder = directory.create_placeholder_account()

    assert directory.account_exists("reader-1") is True
    assert directory.account_exists(placeholder) is True
    assert directory.account_exists("ghost") is False
    users = json.loads((tmp_path / "users.json").read_text(encoding="utf-8"))
    assert users[-1]["username"].startswith("TempUser_")


def _config(tmp_path, data_dir=None):
    return load_subscription_config(
        {"PREMIUM_LOCAL_DATA_DIR": str(data_dir or tmp_path / "data"), "PREMIUM_PROBE_TIMEOUT": "1"}
    )


def _failing_probe(connect):
    raise psycopg2.OperationalError("could not connect to server: timeout expired")


def test_select_backend_prefers_reachable_primary(tmp_path):
    backend = select_backend(
        _config(tmp_path),
        connect=lambda: None,
        probe=lambda connect: None,
        ensure_schema=False,
    )

    assert backend.name == PRIMARY_BACKEND
    assert isinstance(backend.entitlements, PostgresEntitlementStore)


def test_select_backend_falls_back_to_local_store(tmp_path):
    backend = select_backend(_config(tmp_path), connect=lambda: None, probe=_failing_probe)

    assert backend.name == FALLBACK_BACKEND
    assert isinstance(backend.entitlements, JsonFileEntitlementStore)
    assert (tmp_path / "data").is_dir()


def test_select_backend_unavailable_degrades_reads(tmp_path):
    blocker = tmp_path / "not-a-dir"
    blocker.write_text("occupied", encoding="utf-8")

    backend = select_backend(_config(tmp_path, data_dir=blocker), connect=lambda: None, probe=_failing_probe)

    assert backend.name == UNAVAILABLE_BACKEND
    with pytest.raises(BackendUnavailableError):
        backend.entitlements.save_entitlement(_entitlement())
    with pytest.raises(BackendUnavailableError):
        backend.accounts.account_exists("reader-1")

    query_service = EntitlementQueryService(backend.entitlements, NullEntitlementCache())
    assert query_service.query_access("reader-1").valid is False
    assert query_service.compute_access("admin-1", "admin").valid is True


class FakeCursor:
    def __init__(self, rows):
        self.rows = list(rows)
        self.executed = []

    def __enter__(self):
        return self

    def __exit__(self, *exc_info):
        return False

    def execute(self, sql, params=None):
        self.executed.append((sql, params))

    def fetchone(self):
        return self.rows.pop(0) if self.rows else None


class FakeConnection:
    def __init__(self, rows=(), error=None):
        self.cursor_obj = FakeCursor(rows)
        self.error = error
        self.committed = False
        self.rolled_back = False
        self.closed = False

    def cursor(self, cursor_factory=None):
        if self.error is not None:
            raise self.error
        return self.cursor_obj

    def commit(self):
        self.committed = True

    def rollback(self):
        self.rolled_back = True

    def close(self):
        self.closed = True


def _row(version: int) -> dict:
    record = _entitlement().to_record()
    return {
        "account_id": "reader-1",
        "is_active": True,
        "subscription_type": "monthly",
        "start_date": NOW,
        "end_date": NOW + timedelta(days=30),
        "status": "active",
        "payment_history": record["paymentHistory"],
        "features": record["features"],
        "version": version,
    }


def test_postgres_store_inserts_new_records():
    connection = FakeConnection(rows=[_row(1)])
    store = PostgresEntitlementStore(lambda: connection)

    saved = store.save_entitlement(_entitlement())

    sql, params = connection.cursor_obj.executed[0]
    assert "ON CONFLICT (account_id) DO NOTHING" in sql
    assert params["account_id"] == "reader-1"
    assert saved.version == 1
    assert saved.payment_history[0].external_ref == "T-1"
    assert connection.committed is True
    assert connection.closed is True


def test_postgres_store_update_with_stale_version_conflicts():
    connection = FakeConnection(rows=[])
    store = PostgresEntitlementStore(lambda: connection)

    with pytest.raises(ConflictError):
        store.save_entitlement(_entitlement(version=4))

    sql, params = connection.cursor_obj.executed[0]
    assert "WHERE account_id = %(account_id)s AND version = %(version)s" in sql
    assert params["version"] == 4
    assert connection.rolled_back is True


def test_postgres_errors_become_backend_unavailable():
    connection = FakeConnection(error=psycopg2.OperationalError("server closed the connection"))
    store = PostgresEntitlementStore(lambda: connection)

    with pytest.raises(BackendUnavailableError):
        store.load_entitlement("reader-1")


def test_postgres_store_persists_saved_payment_methods():
    method = SavedPaymentMethod(bank_name="NIC Asia", contact_number="9800000000", is_default=True, last_used=NOW)
    row = _row(1)
    row["payment_methods"] = [method.model_dump(mode="json", by_alias=True)]
    connection = FakeConnection(rows=[row])
    store = PostgresEntitlementStore(lambda: connection)

    saved = store.save_entitlement(_entitlement().model_copy(update={"payment_methods": (method,)}))

    _sql, params = connection.cursor_obj.executed[0]
    assert params["payment_methods"].adapted[0]["bankName"] == "NIC Asia"
    assert saved.payment_methods == (method,)


@pytest.mark.parametrize(
    "overrides",
    [
        {"subscription_type": "weekly"},
        {"end_date": NOW - timedelta(days=1)},
        {"payment_history": [{"amount": -5}]},
    ],
)
def test_postgres_unreadable_row_becomes_backend_unavailable(overrides):
    row = dict(_row(1), **overrides)
    store = PostgresEntitlementStore(lambda: FakeConnection(rows=[row]))

    with pytest.raises(BackendUnavailableError):
        store.load_entitlement("reader-1")


def test_unreadable_row_degrades_access_to_not_entitled():
    row = dict(_row(1), subscription_type="weekly")
    store = PostgresEntitlementStore(lambda: FakeConnection(rows=[row]))
    query_service = EntitlementQueryService(store, NullEntitlementCache())

    assert query_service.compute_access("reader-1").valid is False
    assert query_service.compute_access("reader-1", "admin").valid is True
