from __future__ import annotations

from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.access.capabilities import Role
from app.domain.users.db_models import User


async def get_active_user(session: AsyncSession, user_id: int) -> User | None:
    user = await session.get(User, user_id)
    if user is None or not user.is_active:
        return None
    return user


async def load_active_workers(session: AsyncSession, worker_ids: Iterable[int]) -> dict[int, User]:
    ids = set(worker_ids)
    if not ids:
        return {}
    result = await session.execute(
        select(User).where(
            User.id.in_(ids),
            User.role == Role.WORKER.value,
            User.is_active.is_(True),
        )
    )
    return {user.id: user for user in result.scalars().all()}


async def managed_by(session: AsyncSession, manager_id: int, user_ids: Iterable[int]) -> bool:
    """True when any of ``user_ids`` was created by ``manager_id``."""
    ids = set(user_ids)
    if not ids:
        return False
    result = await session.execute(
        select(User.id).where(User.id.in_(ids), User.created_by == manager_id).limit(1)
    )
    return result.scalar_one_or_none() is not None
