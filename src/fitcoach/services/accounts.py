"""Account repository -- async access to the users table.

Same session_factory pattern as MeetingRepository: the repository is
built once at startup and opens a session per call.
"""

from __future__ import annotations

from collections.abc import AsyncGenerator, Callable

import structlog
from sqlalchemy import select
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from src.fitcoach.core.identity import Role
from src.fitcoach.models.user import User
from src.fitcoach.schemas.auth import UserRecord

logger = structlog.get_logger(__name__)


class EmailAlreadyRegistered(Exception):
    """Raised when creating an account for an email that is taken."""


def _to_record(user: User) -> UserRecord:
    return UserRecord(
        id=user.id,
        first_name=user.first_name,
        last_name=user.last_name,
        email=user.email,
        hashed_password=user.hashed_password,
        role=user.role,
        created_at=user.created_at,
    )


class AccountRepository:
    """Async persistence for user accounts.

    Args:
        session_factory: Async callable that yields AsyncSession instances.
    """

    def __init__(
        self, session_factory: Callable[..., AsyncGenerator[AsyncSession, None]]
    ) -> None:
        self._session_factory = session_factory

    async def get(self, user_id: int) -> UserRecord | None:
        async for session in self._session_factory():
            user = await session.get(User, user_id)
            return _to_record(user) if user else None

    async def get_by_email(self, email: str) -> UserRecord | None:
        async for session in self._session_factory():
            result = await session.execute(
                select(User).where(User.email == email.lower())
            )
            user = result.scalar_one_or_none()
            return _to_record(user) if user else None

    async def create(
        self,
        first_name: str,
        last_name: str,
        email: str,
        hashed_password: str,
        role: Role = Role.USER,
    ) -> UserRecord:
        """Insert an account. Emails are stored lowercase.

        Raises:
            EmailAlreadyRegistered: If the email is already in use.
        """
        async for session in self._session_factory():
            user = User(
                first_name=first_name,
                last_name=last_name,
                email=email.lower(),
                hashed_password=hashed_password,
                role=role.value,
            )
            session.add(user)
            try:
                await session.commit()
            except IntegrityError:
                await session.rollback()
                raise EmailAlreadyRegistered(email) from None
            await session.refresh(user)
            logger.info("account.created", user_id=user.id, role=user.role)
            return _to_record(user)

    async def list_by_role(self, role: Role) -> list[UserRecord]:
        """Accounts holding ``role``, oldest first."""
        async for session in self._session_factory():
            result = await session.execute(
                select(User).where(User.role == role.value).order_by(User.id)
            )
            return [_to_record(u) for u in result.scalars().all()]
