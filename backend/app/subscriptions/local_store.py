"""Local JSON file persistence used when the primary store is unreachable."""
from __future__ import annotations

import json
import logging
import os
import tempfile
import threading
from contextlib import contextmanager
from datetime import datetime, timezone
from pathlib import Path
from secrets import token_hex
from typing import Any, Dict, Iterator, List, Optional

from filelock import FileLock, Timeout
from pydantic import ValidationError as PydanticValidationError

from .exceptions import BackendUnavailableError, ConflictError
from .models import Entitlement


logger = logging.getLogger("subscriptions.local_store")

ENTITLEMENTS_FILENAME = "entitlements.json"
USERS_FILENAME = "users.json"
LOCK_TIMEOUT_SECONDS = 10.0

_path_locks: Dict[str, threading.RLock] = {}
_path_locks_guard = threading.Lock()


def _lock_for(path: Path) -> threading.RLock:
    key = str(path.resolve())
    with _path_locks_guard:
        lock = _path_locks.get(key)
        if lock is None:
            lock = threading.RLock()
            _path_locks[key] = lock
        return lock


def _file_lock(path: Path, timeout: float) -> FileLock:
    lock_path = path.parent / f"{path.name}.lock"
    lock_path.parent.mkdir(parents=True, exist_ok=True)
    return FileLock(str(lock_path), timeout=timeout)


@contextmanager
def _exclusive(path: Path, thread_lock: threading.RLock, timeout: float) -> Iterator[None]:
    """Hold the in-process lock and the cross-process lock file for ``path``."""

    with thread_lock:
        try:
            file_lock = _file_lock(path, timeout)
            file_lock.acquire()
        except Timeout as exc:
            logger.error("Local store lock timeout at %s: %s", path, exc)
            raise BackendUnavailableError(
                message="Local entitlement store is busy",
                detail={"backend": "local", "path": str(path)},
            ) from exc
        except OSError as exc:
            raise _unavailable(exc, path) from exc
        try:
            yield
        finally:
            file_lock.release()


def _read_json(path: Path, default: Any) -> Any:
    if not path.exists():
        return default
    with path.open("r", encoding="utf-8") as handle:
        return json.load(handle)


def _write_json_atomic(path: Path, payload: Any) -> None:
    path.parent.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=f".{path.name}.", dir=str(path.parent))
    try:
        with os.fdopen(fd, "w", encoding="utf-8") as handle:
            json.dump(payload, handle, indent=2, sort_keys=True)
            handle.flush()
            os.fsync(handle.fileno())
        os.replace(tmp_name, path)
    except BaseException:
        try:
            os.unlink(tmp_name)
        except FileNotFoundError:
            pass
        raise


def _unavailable(exc: Exception, path: Path) -> BackendUnavailableError:
    logger.error("Local entitlement store failed at %s: %s", path, exc)
    return BackendUnavailableError(
        message="Local entitlement store failed",
        detail={"backend": "local", "path": str(path)},
    )


class JsonFileEntitlementStore:
    """Entitlement store backed by a single JSON document keyed by account id.

    Every write rewrites the document through a temp file and ``os.replace`` so
    readers never observe a partially written record. Writers in other processes
    are excluded by a sibling ``.lock`` file held for the whole read-check-write.
    """

    def __init__(self, data_dir: Path | str, *, lock_timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        self._path = Path(data_dir) / ENTITLEMENTS_FILENAME
        self._lock = _lock_for(self._path)
        self._lock_timeout = lock_timeout

    @property
    def path(self) -> Path:
        return self._path

    def _load_all(self) -> Dict[str, Dict[str, Any]]:
        try:
            data = _read_json(self._path, {})
        except (OSError, json.JSONDecodeError) as exc:
            raise _unavailable(exc, self._path) from exc
        if not isinstance(data, dict):
            raise _unavailable(TypeError("entitlement document must be an object"), self._path)
        return data

    def load_entitlement(self, account_id: str) -> Optional[Entitlement]:
        with self._lock:
            record = self._load_all().get(account_id)
        if record is None:
            return None
        try:
            return Entitlement.from_record(record)
        except PydanticValidationError as exc:
            raise _unavailable(exc, self._path) from exc

    def save_entitlement(self, entitlement: Entitlement) -> Entitlement:
        with _exclusive(self._path, self._lock, self._lock_timeout):
            records = self._load_all()
            existing = records.get(entitlement.account_id)
            stored_version = int(existing.get("version", 0)) if existing else 0
            if stored_version != entitlement.version:
                raise ConflictError(
                    message="Entitlement was modified concurrently",
                    detail={"account_id": entitlement.account_id, "expected_version": entitlement.version},
                )
            saved = entitlement.model_copy(update={"version": entitlement.version + 1})
            records[entitlement.account_id] = saved.to_record()
            try:
                _write_json_atomic(self._path, records)
            except OSError as exc:
                raise _unavailable(exc, self._path) from exc
            return saved


class JsonFileAccountDirectory:
    """Account lookups against the local ``users.json`` document."""

    def __init__(self, data_dir: Path | str, *, lock_timeout: float = LOCK_TIMEOUT_SECONDS) -> None:
        self._path = Path(data_dir) / USERS_FILENAME
        self._lock = _lock_for(self._path)
        self._lock_timeout = lock_timeout

    def _load_users(self) -> List[Dict[str, Any]]:
        try:
            users = _read_json(self._path, [])
        except (OSError, json.JSONDecodeError) as exc:
            raise _unavailable(exc, self._path) from exc
        return users if isinstance(users, list) else []

    def account_exists(self, account_id: str) -> bool:
        with self._lock:
            users = self._load_users()
        return any(str(user.get("_id", user.get("id"))) == str(account_id) for user in users)

    def add_account(self, account_id: str, *, username: str, role: str = "reader") -> None:
        with _exclusive(self._path, self._lock, self._lock_timeout):
            users = self._load_users()
            users.append(
                {
                    "_id": account_id,
                    "username": username,
                    "role": role,
                    "createdAt": datetime.now(timezone.utc).isoformat(),
                }
            )
            try:
                _write_json_atomic(self._path, users)
            except OSError as exc:
                raise _unavailable(exc, self._path) from exc

    def create_placeholder_account(self) -> str:
        account_id = token_hex(12)
        self.add_account(account_id, username=f"TempUser_{account_id[:5]}")
        return account_id


def probe_local_dir(data_dir: Path | str) -> None:
    """Raise ``OSError`` unless ``data_dir`` can be created and written."""

    path = Path(data_dir)
    path.mkdir(parents=True, exist_ok=True)
    fd, tmp_name = tempfile.mkstemp(prefix=".probe.", dir=str(path))
    os.close(fd)
    os.unlink(tmp_name)


__all__ = [
    "ENTITLEMENTS_FILENAME",
    "JsonFileAccountDirectory",
    "JsonFileEntitlementStore",
    "LOCK_TIMEOUT_SECONDS",
    "USERS_FILENAME",
    "probe_local_dir",
]
