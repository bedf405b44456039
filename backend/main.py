import logging
import os
import sys
from datetime import datetime, timedelta, timezone
from pathlib import Path
from typing import Any, Dict, Optional

from fastapi import Cookie, Depends, FastAPI, Header, HTTPException, status
from fastapi.middleware.cors import CORSMiddleware
from pydantic import BaseModel, ConfigDict
from dotenv import load_dotenv
from jose import JWTError, jwt

_project_root = Path(__file__).resolve().parents[1]
if str(_project_root) not in sys.path:
    sys.path.append(str(_project_root))

try:
    from backend.app.routes.premium import router as premium_router
    from backend.app.services.subscriptions import get_subscription_service
    from backend.app.subscriptions import AccountRole
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    from app.routes.premium import router as premium_router  # type: ignore[no-redef]
    from app.services.subscriptions import get_subscription_service  # type: ignore[no-redef]
    from app.subscriptions import AccountRole  # type: ignore[no-redef]


load_dotenv()

JWT_SECRET_KEY = os.getenv("JWT_SECRET_KEY", "dev-secret-change-me")
JWT_ALGORITHM = "HS256"
JWT_EXP_MINUTES = int(os.getenv("JWT_EXP_MINUTES", str(60 * 24 * 7)))  # default: 7 days
SESSION_COOKIE_NAME = os.getenv("SESSION_COOKIE_NAME", "session")

logger = logging.getLogger("auth")


class CurrentUser(BaseModel):
    id: str
    role: AccountRole = AccountRole.READER
    username: Optional[str] = None

    model_config = ConfigDict(frozen=True)


def create_access_token(
    *,
    subject: str,
    role: AccountRole = AccountRole.READER,
    expires_delta: Optional[timedelta] = None,
) -> str:
    payload: Dict[str, Any] = {"sub": subject, "role": AccountRole(role).value}
    if expires_delta is None:
        expires_delta = timedelta(minutes=JWT_EXP_MINUTES)
    payload["exp"] = datetime.now(timezone.utc) + expires_delta
    return jwt.encode(payload, JWT_SECRET_KEY, algorithm=JWT_ALGORITHM)


def resolve_user_from_token(token: str) -> Optional[CurrentUser]:
    try:
        payload = jwt.decode(token, JWT_SECRET_KEY, algorithms=[JWT_ALGORITHM])
    except JWTError:
        return None

    subject = payload.get("sub")
    if not subject:
        return None
    try:
        role = AccountRole(str(payload.get("role") or AccountRole.READER.value).lower())
    except ValueError:
        logger.warning("Token for %s carries unknown role %r", subject, payload.get("role"))
        role = AccountRole.READER
    return CurrentUser(id=str(subject), role=role, username=payload.get("username"))


def _extract_token(session_token: Optional[str], authorization: Optional[str]) -> Optional[str]:
    if authorization:
        scheme, _, credentials = authorization.partition(" ")
        if scheme.lower() == "bearer" and credentials.strip():
            return credentials.strip()
    return session_token or None


def get_current_user(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> CurrentUser:
    token = _extract_token(session_token, authorization)
    if not token:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")

    user = resolve_user_from_token(token)
    if user is None:
        raise HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Not authenticated")
    return user


def get_optional_current_user(
    session_token: Optional[str] = Cookie(None, alias=SESSION_COOKIE_NAME),
    authorization: Optional[str] = Header(None),
) -> Optional[CurrentUser]:
    token = _extract_token(session_token, authorization)
    if not token:
        return None
    return resolve_user_from_token(token)


try:
    from backend import app_context
except ModuleNotFoundError as exc:
    if exc.name != "backend":
        raise
    import app_context  # type: ignore[no-redef]

app_context.configure(get_current_user=get_current_user)

app = FastAPI(title="Bookshelf Premium API")

# Vite proxy origin
app.add_middleware(
    CORSMiddleware,
    allow_origins=["http://localhost:5173"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

app.include_router(premium_router)


@app.on_event("startup")
def select_entitlement_storage() -> None:
    service = get_subscription_service()
    logger.info("Premium subscriptions served from %s storage", service.backend_name)


@app.on_event("shutdown")
def release_subscription_resources() -> None:
    get_subscription_service().close()


@app.get("/api/auth/me", response_model=CurrentUser)
def read_current_user(current_user: CurrentUser = Depends(get_current_user)):
    return current_user


@app.get("/api/healthz")
def healthz():
    return {"ok": True, "storage": get_subscription_service().backend_name}
