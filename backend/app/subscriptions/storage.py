"""Storage contracts shared by the primary and fallback backends."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Optional, Protocol

from .exceptions import BackendUnavailableError
from .models import Entitlement


class EntitlementStore(Protocol):
    """Persistence operations for entitlement records.

    ``save_entitlement`` is atomic for the one record and performs a
    compare-and-set on ``version``: the stored version must equal the version
    of the entitlement passed in, otherwise :class:`ConflictError` is raised.
    The returned entitlement carries the incremented version.
    """

    def load_entitlement(self, account_id: str) -> Optional[Entitlement]:
        ...

    def save_entitlement(self, entitlement: Entitlement) -> Entitlement:
        ...


class AccountDirectory(Protocol):
    """Account lookups delegated to whichever store owns user records."""

    def account_exists(self, account_id: str) -> bool:
        ...

    def create_placeholder_account(self) -> str:
        ...


@dataclass(frozen=True)
class StorageBackend:
    """The storage implementation selected for the lifetime of the process."""

    name: str
    entitlements: EntitlementStore
    accounts: AccountDirectory


class UnavailableEntitlementStore:
    """Store used when neither backend could be reached at startup."""

    def __init__(self, reason: str) -> None:
        self._reason = reason

    def _fail(self) -> BackendUnavailableError:
        return BackendUnavailableError(
            message="Entitlement storage is unavailable",
            detail={"reason": self._reason},
        )

    def load_entitlement(self, account_id: str) -> Optional[Entitlement]:
        raise self._fail()

    def save_entitlement(self, entitlement: Entitlement) -> Entitlement:
        raise self._fail()

    def account_exists(self, account_id: str) -> bool:
        raise self._fail()

    def create_placeholder_account(self) -> str:
        raise self._fail()


__all__ = [
    "AccountDirectory",
    "EntitlementStore",
    "StorageBackend",
    "UnavailableEntitlementStore",
]
