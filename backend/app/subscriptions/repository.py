"""PostgreSQL persistence for entitlements (the primary backend)."""
from __future__ import annotations

import logging
from contextlib import contextmanager
from secrets import token_hex
from typing import Callable, Iterable, Optional

import psycopg2
import psycopg2.extras
from psycopg2.extensions import connection as PgConnection
from psycopg2.extensions import cursor as PgCursor
from pydantic import ValidationError as PydanticValidationError

from .exceptions import BackendUnavailableError, ConflictError
from .models import (
    Entitlement,
    PaymentRecord,
    PlanId,
    PremiumFeatures,
    SavedPaymentMethod,
    SubscriptionStatus,
)


logger = logging.getLogger("subscriptions.repository")

ConnectionFactory = Callable[[], PgConnection]

SCHEMA_SQL = """
CREATE TABLE IF NOT EXISTS premium_entitlements (
    account_id TEXT PRIMARY KEY,
    is_active BOOLEAN NOT NULL DEFAULT FALSE,
    subscription_type TEXT NOT NULL,
    start_date TIMESTAMPTZ NOT NULL,
    end_date TIMESTAMPTZ,
    status TEXT NOT NULL,
    payment_history JSONB NOT NULL DEFAULT '[]'::jsonb,
    payment_methods JSONB NOT NULL DEFAULT '[]'::jsonb,
    features JSONB NOT NULL DEFAULT '{}'::jsonb,
    version INTEGER NOT NULL DEFAULT 1,
    created_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    updated_at TIMESTAMPTZ NOT NULL DEFAULT NOW(),
    CHECK (end_date IS NULL OR end_date > start_date)
);
ALTER TABLE premium_entitlements ADD COLUMN IF NOT EXISTS payment_methods JSONB NOT NULL DEFAULT '[]'::jsonb;
CREATE INDEX IF NOT EXISTS premium_entitlements_end_date_idx ON premium_entitlements (end_date);
CREATE INDEX IF NOT EXISTS premium_entitlements_status_idx ON premium_entitlements (status);
"""


@contextmanager
def managed_connection(connect: ConnectionFactory, conn: Optional[PgConnection] = None):
    """Context manager that manages transaction boundaries for optional connections."""

    if conn is not None:
        yield conn, False
        return

    connection = connect()
    try:
        yield connection, True
        connection.commit()
    except Exception:
        connection.rollback()
        raise
    finally:
        connection.close()


def _row_to_entitlement(row: dict) -> Entitlement:
    history = tuple(PaymentRecord.model_validate(item) for item in row.get("payment_history") or [])
    methods = tuple(SavedPaymentMethod.model_validate(item) for item in row.get("payment_methods") or [])
    return Entitlement(
        account_id=row["account_id"],
        is_active=bool(row["is_active"]),
        subscription_type=PlanId(row["subscription_type"]),
        start_date=row["start_date"],
        end_date=row.get("end_date"),
        status=SubscriptionStatus(row["status"]),
        payment_history=history,
        payment_methods=methods,
        features=PremiumFeatures.model_validate(row.get("features") or {}),
        version=int(row["version"]),
    )


def _decode_row(row: dict) -> Entitlement:
    try:
        return _row_to_entitlement(row)
    except (PydanticValidationError, ValueError, KeyError, TypeError) as exc:
        logger.error("Unreadable entitlement row account=%s: %s", row.get("account_id"), exc)
        raise BackendUnavailableError(
            message="Primary entitlement store returned an unreadable record",
            detail={"backend": "postgres", "account_id": str(row.get("account_id"))},
        ) from exc


def _entitlement_params(entitlement: Entitlement) -> dict:
    record = entitlement.to_record()
    return {
        "account_id": entitlement.account_id,
        "is_active": entitlement.is_active,
        "subscription_type": entitlement.subscription_type.value,
        "start_date": entitlement.start_date,
        "end_date": entitlement.end_date,
        "status": entitlement.status.value,
        "payment_history": psycopg2.extras.Json(record["paymentHistory"]),
        "payment_methods": psycopg2.extras.Json(record["paymentMethods"]),
        "features": psycopg2.extras.Json(record["features"]),
        "version": entitlement.version,
    }


class _PostgresBase:
    def __init__(self, connect: ConnectionFactory, *, conn: Optional[PgConnection] = None) -> None:
        self._connect = connect
        self._conn = conn

    @contextmanager
    def _cursor(self) -> Iterable[PgCursor]:
        try:
            with managed_connection(self._connect, self._conn) as (connection, _managed):
                with connection.cursor(cursor_factory=psycopg2.extras.RealDictCursor) as cursor:
                    yield cursor
        except psycopg2.Error as exc:
            logger.error("Primary entitlement store failed: %s", exc)
            raise BackendUnavailableError(
                message="Primary entitlement store failed",
                detail={"backend": "postgres"},
            ) from exc


class PostgresEntitlementStore(_PostgresBase):
    """Concrete store persisting entitlements in PostgreSQL."""

    def ensure_schema(self) -> None:
        with self._cursor() as cursor:
            cursor.execute(SCHEMA_SQL)

    def load_entitlement(self, account_id: str) -> Optional[Entitlement]:
        with self._cursor() as cursor:
            cursor.execute(
                """
                SELECT *
                FROM premium_entitlements
                WHERE account_id = %s
                LIMIT 1
                """,
                (account_id,),
            )
            row = cursor.fetchone()
            return _decode_row(row) if row else None

    def save_entitlement(self, entitlement: Entitlement) -> Entitlement:
        params = _entitlement_params(entitlement)
        with self._cursor() as cursor:
            if entitlement.version == 0:
                cursor.execute(
                    """
                    INSERT INTO premium_entitlements (
                        account_id,
                        is_active,
                        subscription_type,
                        start_date,
                        end_date,
                        status,
                        payment_history,
                        payment_methods,
                        features,
                        version
                    )
                    VALUES (%(account_id)s, %(is_active)s, %(subscription_type)s, %(start_date)s,
                            %(end_date)s, %(status)s, %(payment_history)s, %(payment_methods)s, %(features)s, 1)
                    ON CONFLICT (account_id) DO NOTHING
                    RETURNING *
                    """,
                    params,
                )
            else:
                cursor.execute(
                    """
                    UPDATE premium_entitlements
                    SET is_active = %(is_active)s,
                        subscription_type = %(subscription_type)s,
                        start_date = %(start_date)s,
                        end_date = %(end_date)s,
                        status = %(status)s,
                        payment_history = %(payment_history)s,
                        payment_methods = %(payment_methods)s,
                        features = %(features)s,
                        version = version + 1,
                        updated_at = NOW()
                    WHERE account_id = %(account_id)s AND version = %(version)s
                    RETURNING *
                    """,
                    params,
                )
            row = cursor.fetchone()
            if not row:
                raise ConflictError(
                    message="Entitlement was modified concurrently",
                    detail={"account_id": entitlement.account_id, "expected_version": entitlement.version},
                )
            return _decode_row(row)


class PostgresAccountDirectory(_PostgresBase):
    """Account lookups against the application's ``users`` table."""

    def account_exists(self, account_id: str) -> bool:
        with self._cursor() as cursor:
            cursor.execute(
                "SELECT 1 FROM users WHERE id::text = %s LIMIT 1",
                (str(account_id),),
            )
            return cursor.fetchone() is not None

    def create_placeholder_account(self) -> str:
        suffix = token_hex(4)
        with self._cursor() as cursor:
            cursor.execute(
                """
                INSERT INTO users (username, email, password_hash, role)
                VALUES (%s, %s, %s, 'reader')
                RETURNING id
                """,
                (f"TempUser_{suffix}", f"temp_{suffix}@example.com", "!"),
            )
            row = cursor.fetchone()
            if not row:
                raise BackendUnavailableError(message="Failed to provision placeholder account")
            return str(row["id"])


__all__ = [
    "PostgresAccountDirectory",
    "PostgresEntitlementStore",
    "SCHEMA_SQL",
    "managed_connection",
]
