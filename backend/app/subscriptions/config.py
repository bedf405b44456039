"""Subscription engine configuration helpers."""
from __future__ import annotations

from dataclasses import dataclass
from typing import Any, Dict, Mapping, Optional
import os


@dataclass(frozen=True)
class SubscriptionConfig:
    """Configuration for entitlement storage, intake channels and caching."""

    db_host: str
    db_port: int
    db_name: str
    db_user: str
    db_password: str
    probe_timeout_seconds: int
    local_data_dir: str
    test_mode: bool
    gateway_lookup_url: str
    gateway_secret_key: Optional[str]
    gateway_timeout_seconds: float
    max_conflict_retries: int
    cache_ttl_seconds: int

    def db_params(self) -> Dict[str, Any]:
        return {
            "host": self.db_host,
            "port": self.db_port,
            "dbname": self.db_name,
            "user": self.db_user,
            "password": self.db_password,
            "connect_timeout": self.probe_timeout_seconds,
        }


def _to_bool(value: Optional[str], *, default: bool) -> bool:
    if value is None:
        return default
    lowered = value.strip().lower()
    if lowered in {"1", "true", "yes", "on"}:
        return True
    if lowered in {"0", "false", "no", "off"}:
        return False
    return default


def _to_int(value: Optional[str], *, default: int) -> int:
    if value is None or value == "":
        return default
    try:
        return int(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected integer value, got {value!r}") from exc


def _to_float(value: Optional[str], *, default: float) -> float:
    if value is None or value == "":
        return default
    try:
        return float(value)
    except (TypeError, ValueError) as exc:
        raise ValueError(f"Expected float value, got {value!r}") from exc


def load_subscription_config(env: Optional[Mapping[str, str]] = None) -> SubscriptionConfig:
    """Load :class:`SubscriptionConfig` from environment variables."""

    env_mapping = os.environ if env is None else env

    probe_timeout = _to_int(env_mapping.get("PREMIUM_PROBE_TIMEOUT"), default=0) or _to_int(
        env_mapping.get("DB_CONNECT_TIMEOUT"), default=5
    )

    return SubscriptionConfig(
        db_host=env_mapping.get("DB_HOST", "127.0.0.1"),
        db_port=_to_int(env_mapping.get("DB_PORT"), default=5432),
        db_name=env_mapping.get("DB_NAME", "library_db"),
        db_user=env_mapping.get("DB_USER", "library_user"),
        db_password=env_mapping.get("DB_PASSWORD", "library_pass"),
        probe_timeout_seconds=max(1, probe_timeout),
        local_data_dir=env_mapping.get("PREMIUM_LOCAL_DATA_DIR", "data"),
        test_mode=_to_bool(env_mapping.get("PREMIUM_TEST_MODE"), default=False),
        gateway_lookup_url=env_mapping.get(
            "PREMIUM_GATEWAY_LOOKUP_URL", "https://a.khalti.com/api/v2/epayment/lookup/"
        ),
        gateway_secret_key=env_mapping.get("PREMIUM_GATEWAY_SECRET_KEY") or None,
        gateway_timeout_seconds=max(0.1, _to_float(env_mapping.get("PREMIUM_GATEWAY_TIMEOUT"), default=10.0)),
        max_conflict_retries=max(0, _to_int(env_mapping.get("PREMIUM_MAX_CONFLICT_RETRIES"), default=3)),
        cache_ttl_seconds=max(0, _to_int(env_mapping.get("PREMIUM_CACHE_TTL_SECONDS"), default=0)),
    )


__all__ = ["SubscriptionConfig", "load_subscription_config"]
