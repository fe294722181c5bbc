from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.access.capabilities import Capability, Principal, require_capability
from app.domain.areas.db_models import CleaningArea
from app.domain.errors import ConflictError, NotFoundError

logger = logging.getLogger(__name__)


async def list_areas(session: AsyncSession, *, active_only: bool = True) -> list[CleaningArea]:
    stmt = sa.select(CleaningArea).order_by(CleaningArea.display_order, CleaningArea.id)
    if active_only:
        stmt = stmt.where(CleaningArea.is_active.is_(True))
    result = await session.execute(stmt)
    return list(result.scalars().all())


async def create_area(
    session: AsyncSession,
    principal: Principal,
    *,
    key: str,
    name: str,
    display_order: int = 0,
) -> CleaningArea:
    require_capability(principal, Capability.AREA_MANAGE)
    area = CleaningArea(key=key, name=name.strip(), display_order=display_order, is_active=True)
    session.add(area)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        raise ConflictError(detail=f"An area with key '{key}' already exists", code="area_key_taken")
    logger.info("area_created", extra={"extra": {"area_id": area.id, "key": key, "principal_id": principal.id}})
    return area


async def deactivate_area(session: AsyncSession, principal: Principal, area_id: int) -> None:
    """Hide an area from new assignments; orders that already track it keep it."""
    require_capability(principal, Capability.AREA_MANAGE)
    area = await session.get(CleaningArea, area_id)
    if area is None:
        raise NotFoundError(detail=f"Area {area_id} not found", code="area_not_found")
    area.is_active = False
    await session.commit()
    logger.info("area_deactivated", extra={"extra": {"area_id": area_id, "principal_id": principal.id}})
