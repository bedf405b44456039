"""Shared application context for reusable dependencies."""
from __future__ import annotations

from typing import Any, Callable, Optional

_get_current_user: Optional[Callable[..., Any]] = None


def configure(*, get_current_user: Callable[..., Any]) -> None:
    """Register the authentication dependency required by modular routers."""

    global _get_current_user

    _get_current_user = get_current_user


def _require(value: Optional[Any], name: str) -> Any:
    if value is None:
        raise RuntimeError(f"Application context has not been configured yet: {name}")
    return value


def get_current_user(*args: Any, **kwargs: Any) -> Any:
    dependency = _require(_get_current_user, "get_current_user")
    return dependency(*args, **kwargs)
