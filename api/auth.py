"""
Session-based authentication for the chat API.

Tokens are opaque strings stored in `user_sessions`. A client sends one either
as `Authorization: Bearer <token>` or in the session cookie. Resolved sessions
are cached in-process for a few minutes so chat requests do not hit the
database for every call.
"""

from dataclasses import dataclass
from typing import Optional

import bcrypt
from cachetools import TTLCache
from fastapi import Depends, Request
from fastapi.security import HTTPAuthorizationCredentials, HTTPBearer
from sqlalchemy.ext.asyncio import AsyncSession

from db.auth_repository import AuthRepository, utcnow
from db.database import get_db
from rag_chat.exception.custom_exception import AuthenticationError
from rag_chat.logger import GLOBAL_LOGGER as log
from rag_chat.utils.config_loader import get_config
from rag_chat.utils.thread_pool import run_sync

_auth_cfg = get_config()["auth"]

SESSION_COOKIE = _auth_cfg["session_cookie"]
SESSION_TTL_SECONDS = _auth_cfg["session_ttl_seconds"]

security = HTTPBearer(auto_error=False)

_session_cache: TTLCache = TTLCache(maxsize=1024, ttl=_auth_cfg["session_cache_seconds"])


@dataclass(frozen=True)
class AuthUser:
    id: str
    email: str
    name: Optional[str] = None


def hash_password(password: str) -> str:
    return bcrypt.hashpw(password.encode(), bcrypt.gensalt()).decode()


def verify_password(password: str, stored_hash: str) -> bool:
    try:
        return bcrypt.checkpw(password.encode(), stored_hash.encode())
    except ValueError:
        # malformed hash in the database
        return False


async def hash_password_async(password: str) -> str:
    return await run_sync(hash_password, password)


async def verify_password_async(password: str, stored_hash: str) -> bool:
    return await run_sync(verify_password, password, stored_hash)


def forget_session(token: str) -> None:
    _session_cache.pop(token, None)


def clear_session_cache() -> None:
    _session_cache.clear()


def extract_token(
    request: Request, credentials: Optional[HTTPAuthorizationCredentials]
) -> Optional[str]:
    if credentials and credentials.credentials:
        return credentials.credentials
    return request.cookies.get(SESSION_COOKIE)


async def get_current_user(
    request: Request,
    credentials: Optional[HTTPAuthorizationCredentials] = Depends(security),
    db: AsyncSession = Depends(get_db),
) -> Optional[AuthUser]:
    """Session getter: the signed-in user, or None."""
    token = extract_token(request, credentials)
    if not token:
        return None

    cached = _session_cache.get(token)
    if cached is not None:
        user, expires_at = cached
        if expires_at > utcnow():
            return user
        forget_session(token)

    session = await AuthRepository().get_session(db, token)
    if session is None:
        return None

    user = AuthUser(id=session.user.id, email=session.user.email, name=session.user.name)
    _session_cache[token] = (user, session.expires_at)
    log.debug("Session resolved | user_id=%s", user.id)
    return user


async def require_auth(user: Optional[AuthUser] = Depends(get_current_user)) -> AuthUser:
    """Dependency that rejects the request with 401 unless a valid session is present."""
    if user is None:
        raise AuthenticationError()
    return user
