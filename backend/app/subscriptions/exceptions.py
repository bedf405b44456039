"""Error taxonomy surfaced by the subscription engine."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional

from fastapi import HTTPException, status


@dataclass
class SubscriptionError(Exception):
    """Base class for every error that leaves the subscription engine."""

    message: str
    code: str = "subscription_error"
    status_code: int = status.HTTP_500_INTERNAL_SERVER_ERROR
    detail: Optional[Mapping[str, Any]] = None

    def __post_init__(self) -> None:
        base_detail: Dict[str, Any] = {"error": self.code, "message": self.message}
        if self.detail:
            base_detail.update(self.detail)
        object.__setattr__(self, "_payload", base_detail)
        super().__init__(self.message)

    def __str__(self) -> str:
        return self.message

    @property
    def payload(self) -> Mapping[str, Any]:
        """Serialized representation suitable for JSON responses."""

        return self._payload

    def to_http_exception(self) -> HTTPException:
        return HTTPException(status_code=self.status_code, detail=dict(self.payload))


@dataclass
class ValidationError(SubscriptionError):
    code: str = "validation_error"
    status_code: int = status.HTTP_400_BAD_REQUEST


@dataclass
class NotFoundError(SubscriptionError):
    code: str = "not_found"
    status_code: int = status.HTTP_404_NOT_FOUND


@dataclass
class ConflictError(SubscriptionError):
    code: str = "conflict"
    status_code: int = status.HTTP_409_CONFLICT


@dataclass
class BackendUnavailableError(SubscriptionError):
    code: str = "backend_unavailable"
    status_code: int = status.HTTP_503_SERVICE_UNAVAILABLE


@dataclass
class ChannelError(SubscriptionError):
    """Rejection reported by a payment channel, carrying its reason."""

    code: str = "channel_rejected"
    status_code: int = status.HTTP_402_PAYMENT_REQUIRED
    channel: Optional[str] = None
    reason: Optional[str] = None

    def __post_init__(self) -> None:
        extra: Dict[str, Any] = dict(self.detail or {})
        if self.channel:
            extra.setdefault("channel", self.channel)
        if self.reason:
            extra.setdefault("reason", self.reason)
        self.detail = extra or None
        super().__post_init__()


__all__ = [
    "BackendUnavailableError",
    "ChannelError",
    "ConflictError",
    "NotFoundError",
    "SubscriptionError",
    "ValidationError",
]
