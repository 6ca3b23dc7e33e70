import secrets
from datetime import datetime, timedelta, timezone
from typing import Optional

from sqlalchemy import delete, select
from sqlalchemy.ext.asyncio import AsyncSession

from rag_chat.logger import GLOBAL_LOGGER as log

from .models import User, UserSession


def utcnow() -> datetime:
    """Naive UTC now, matching the TIMESTAMP columns."""
    return datetime.now(timezone.utc).replace(tzinfo=None)


def generate_session_token() -> str:
    return f"vchat_{secrets.token_hex(32)}"


class AuthRepository:
    """
    Users and their opaque session tokens.
    """

    async def get_user_by_email(self, db: AsyncSession, email: str) -> Optional[User]:
        out = await db.execute(select(User).where(User.email == email.lower()))
        return out.scalar_one_or_none()

    async def create_user(
        self, db: AsyncSession, email: str, password_hash: str, name: Optional[str] = None
    ) -> User:
        user = User(email=email.lower(), password_hash=password_hash, name=name)
        db.add(user)
        await db.commit()
        await db.refresh(user)
        log.info("User created | user_id=%s", user.id)
        return user

    async def create_session(
        self, db: AsyncSession, user_id: str, ttl_seconds: int
    ) -> UserSession:
        s = UserSession(
            token=generate_session_token(),
            user_id=user_id,
            expires_at=utcnow() + timedelta(seconds=ttl_seconds),
        )
        db.add(s)
        await db.commit()
        log.info("Session created | user_id=%s", user_id)
        return s

    async def get_session(self, db: AsyncSession, token: str) -> Optional[UserSession]:
        """Session with its user loaded, or None if unknown or expired."""
        out = await db.execute(select(UserSession).where(UserSession.token == token))
        s = out.scalar_one_or_none()
        if s is None:
            return None
        if s.expires_at <= utcnow():
            log.info("Session expired | user_id=%s", s.user_id)
            return None
        return s

    async def delete_session(self, db: AsyncSession, token: str) -> None:
        await db.execute(delete(UserSession).where(UserSession.token == token))
        await db.commit()
