# backend/userstore.py
"""Credential store: persistence of user records.

Passwords are hashed here, on write, so callers only ever hand over the raw
value. Aggregation queries built elsewhere are executed through
``UserStore.aggregate``.
"""
import logging
from typing import Any, Iterable, Mapping, Optional, Sequence

import bcrypt
from sqlalchemy import Executable, or_, update
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select
from starlette.concurrency import run_in_threadpool

from errors import ValidationError
from models import User

logger = logging.getLogger(__name__)

BCRYPT_MAX_BYTES = 72


def _encode(raw: str) -> Optional[bytes]:
    try:
        encoded = raw.encode("utf-8")
    except UnicodeEncodeError:
        return None
    return encoded if len(encoded) <= BCRYPT_MAX_BYTES else None


def hash_password(raw: str) -> str:
    encoded = _encode(raw)
    if encoded is None:
        raise ValidationError(f"Password must be valid text of at most {BCRYPT_MAX_BYTES} bytes")
    return bcrypt.hashpw(encoded, bcrypt.gensalt()).decode("ascii")


def check_password(raw: Optional[str], hashed: str) -> bool:
    encoded = _encode(raw) if raw else None
    if encoded is None:
        return False
    return bcrypt.checkpw(encoded, hashed.encode("ascii"))


class UserStore:
    """User persistence bound to one ``AsyncSession``."""

    def __init__(self, session: AsyncSession):
        self.session = session

    async def find_by_id(self, user_id: int) -> Optional[User]:
        return await self.session.get(User, user_id, populate_existing=True)

    async def find_one(self, username: Optional[str] = None, email: Optional[str] = None) -> Optional[User]:
        """Find a user matching the username OR the email; unset arguments are ignored."""
        clauses = []
        if username:
            clauses.append(User.username == username)
        if email:
            clauses.append(User.email == email)
        if not clauses:
            return None
        result = await self.session.execute(select(User).where(or_(*clauses)).limit(1))
        return result.scalar_one_or_none()

    async def create(self, **fields: Any) -> User:
        """Insert a user. Raises ``IntegrityError`` on a username/email collision."""
        fields["password"] = await run_in_threadpool(hash_password, fields["password"])
        user = User(**fields)
        self.session.add(user)
        try:
            await self.session.commit()
        except IntegrityError:
            await self.session.rollback()
            raise
        await self.session.refresh(user)
        logger.debug("Created user %s", user.id)
        return user

    async def find_by_id_and_update(
        self,
        user_id: int,
        fields: Optional[Mapping[str, Any]] = None,
        unset: Iterable[str] = (),
        return_updated: bool = True,
    ) -> Optional[User]:
        """Patch individual columns without loading and revalidating the row.

        ``unset`` columns are set to NULL. Returns the updated user (or the
        user as it was before the patch when ``return_updated`` is False).
        """
        before = None if return_updated else await self.find_by_id(user_id)
        values = dict(fields or {})
        values.update({name: None for name in unset})
        if values:
            try:
                await self.session.execute(
                    update(User)
                    .where(User.id == user_id)
                    .values(**values)
                    .execution_options(synchronize_session=False)
                )
                await self.session.commit()
            except IntegrityError:
                await self.session.rollback()
                raise
        return await self.find_by_id(user_id) if return_updated else before

    async def set_password(self, user_id: int, raw: str) -> None:
        hashed = await run_in_threadpool(hash_password, raw)
        await self.find_by_id_and_update(user_id, fields={"password": hashed}, return_updated=False)

    async def verify_password(self, user: User, raw: Optional[str]) -> bool:
        return await run_in_threadpool(check_password, raw, user.password)

    async def swap_refresh_token(self, user_id: int, expected: str, new: str) -> bool:
        """Replace the stored refresh token only if it still equals ``expected``."""
        result = await self.session.execute(
            update(User)
            .where(User.id == user_id, User.refresh_token == expected)
            .values(refresh_token=new)
            .execution_options(synchronize_session=False)
        )
        await self.session.commit()
        return result.rowcount == 1  # type: ignore[attr-defined]

    async def aggregate(self, statement: Executable) -> Sequence[Mapping[str, Any]]:
        result = await self.session.execute(statement)
        return result.mappings().all()
