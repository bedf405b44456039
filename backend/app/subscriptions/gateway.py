"""HTTP client for the hosted checkout gateway's payment lookup endpoint."""
from __future__ import annotations

import json
import logging
import socket
from dataclasses import dataclass
from typing import Optional, Protocol
from urllib import error as urllib_error, request as urllib_request

from .exceptions import ChannelError
from .models import PaymentChannel


logger = logging.getLogger("subscriptions.gateway")

GATEWAY_COMPLETED = "Completed"


@dataclass(frozen=True)
class GatewayLookup:
    """Normalized result of a gateway transaction lookup."""

    pidx: str
    status: str
    total_amount: Optional[int] = None
    transaction_id: Optional[str] = None

    @property
    def completed(self) -> bool:
        return self.status == GATEWAY_COMPLETED

    @property
    def amount(self) -> Optional[float]:
        # The gateway reports amounts in paisa.
        if self.total_amount is None:
            return None
        return self.total_amount / 100


class GatewayVerifier(Protocol):
    """Looks up a checkout transaction handle with the payment gateway."""

    def lookup(self, pidx: str, *, timeout: float) -> GatewayLookup:
        ...


def _channel_error(message: str, reason: str) -> ChannelError:
    return ChannelError(message=message, channel=PaymentChannel.GATEWAY.value, reason=reason)


class KhaltiGatewayClient:
    """Gateway verifier speaking the Khalti ePayment lookup API."""

    def __init__(self, lookup_url: str, secret_key: Optional[str]) -> None:
        self._lookup_url = lookup_url
        self._secret_key = secret_key

    def lookup(self, pidx: str, *, timeout: float) -> GatewayLookup:
        if not self._secret_key:
            raise _channel_error("Payment gateway is not configured", "missing_secret_key")

        body = json.dumps({"pidx": pidx}).encode("utf-8")
        http_request = urllib_request.Request(
            self._lookup_url,
            data=body,
            method="POST",
            headers={
                "Authorization": f"Key {self._secret_key}",
                "Content-Type": "application/json",
            },
        )
        try:
            with urllib_request.urlopen(http_request, timeout=timeout) as response:
                payload = json.loads(response.read().decode("utf-8"))
        except urllib_error.HTTPError as exc:
            reason = _http_error_detail(exc)
            logger.warning("Gateway lookup rejected pidx=%s status=%s detail=%s", pidx, exc.code, reason)
            raise _channel_error("Payment gateway rejected the transaction", reason) from exc
        except (socket.timeout, TimeoutError) as exc:
            logger.warning("Gateway lookup timed out pidx=%s after %ss", pidx, timeout)
            raise _channel_error("Payment gateway did not respond in time", "timeout") from exc
        except urllib_error.URLError as exc:
            if isinstance(exc.reason, (socket.timeout, TimeoutError)):
                logger.warning("Gateway lookup timed out pidx=%s after %ss", pidx, timeout)
                raise _channel_error("Payment gateway did not respond in time", "timeout") from exc
            logger.warning("Gateway lookup failed pidx=%s: %s", pidx, exc.reason)
            raise _channel_error("Payment gateway is unreachable", "unreachable") from exc
        except (json.JSONDecodeError, UnicodeDecodeError) as exc:
            raise _channel_error("Payment gateway returned an unreadable response", "malformed_response") from exc

        if not isinstance(payload, dict) or "status" not in payload:
            raise _channel_error("Payment gateway returned an unreadable response", "malformed_response")

        total_amount = payload.get("total_amount")
        return GatewayLookup(
            pidx=str(payload.get("pidx") or pidx),
            status=str(payload["status"]),
            total_amount=int(total_amount) if total_amount is not None else None,
            transaction_id=payload.get("transaction_id") and str(payload.get("transaction_id")),
        )


def _http_error_detail(exc: urllib_error.HTTPError) -> str:
    try:
        payload = json.loads(exc.read().decode("utf-8"))
    except (ValueError, UnicodeDecodeError, OSError):
        return f"http_{exc.code}"
    if isinstance(payload, dict) and payload.get("detail"):
        return str(payload["detail"])
    return f"http_{exc.code}"


__all__ = ["GATEWAY_COMPLETED", "GatewayLookup", "GatewayVerifier", "KhaltiGatewayClient"]
