from __future__ import annotations

import logging
from datetime import datetime, timezone

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.access.capabilities import Capability, Principal, require_capability
from app.domain.areas.db_models import CleaningArea
from app.domain.errors import ConflictError, NotFoundError, ValidationError
from app.domain.orders import assignments, store
from app.domain.orders.db_models import OrderArea
from app.domain.orders.state_machine import (
    ASSIGNABLE_STATUSES,
    GuardContext,
    OrderStatus,
    OrderType,
    guard_worker_in_progress,
)
from app.infra.metrics import metrics

logger = logging.getLogger(__name__)


def _require_regular(order_type: str) -> None:
    if OrderType(order_type) != OrderType.REGULAR:
        raise ConflictError(
            detail="Areas can only be tracked on regular orders",
            code="order_type_mismatch",
        )


async def list_order_areas(session: AsyncSession, order_id: int) -> list[OrderArea]:
    result = await session.execute(
        sa.select(OrderArea)
        .join(CleaningArea, CleaningArea.id == OrderArea.area_id)
        .where(OrderArea.order_id == order_id)
        .order_by(CleaningArea.display_order, CleaningArea.id)
    )
    return list(result.scalars().unique().all())


async def pending_area_count(session: AsyncSession, order_id: int) -> int:
    result = await session.execute(
        sa.select(sa.func.count(OrderArea.id)).where(
            OrderArea.order_id == order_id,
            OrderArea.is_completed.is_(False),
        )
    )
    return int(result.scalar_one() or 0)


async def all_completed(session: AsyncSession, order_id: int) -> bool:
    return await pending_area_count(session, order_id) == 0


async def assign_areas(
    session: AsyncSession,
    order_id: int,
    area_ids: list[int],
    principal: Principal,
) -> list[OrderArea]:
    require_capability(principal, Capability.ORDER_ASSIGN)
    unique_ids = list(dict.fromkeys(area_ids))
    if not unique_ids:
        raise ValidationError(detail="At least one area must be provided", code="areas_required")

    order = await store.get_order(session, order_id)
    _require_regular(order.order_type)
    if OrderStatus(order.status) not in ASSIGNABLE_STATUSES:
        raise ConflictError(
            detail=f"Areas can only be assigned while pending or assigned (current: {order.status})",
            code="order_not_assignable",
        )

    result = await session.execute(
        sa.select(CleaningArea.id).where(CleaningArea.id.in_(unique_ids), CleaningArea.is_active.is_(True))
    )
    found = set(result.scalars().all())
    missing = [area_id for area_id in unique_ids if area_id not in found]
    if missing:
        raise NotFoundError(
            detail=f"Areas not found or inactive: {', '.join(str(area_id) for area_id in missing)}",
            code="areas_not_found",
        )

    try:
        await store.lock_order(session, order_id)
        await store.replace_set(session, OrderArea, order_id, [{"area_id": area_id} for area_id in unique_ids])
        # Status re-check at write time: a concurrent start must not see its areas swapped.
        touched = await store.conditional_update(session, order_id, ASSIGNABLE_STATUSES, {})
        if not touched:
            raise ConflictError(detail="Order changed status during area assignment", code="status_race_lost")
        store.record_activity(
            session,
            order_id=order_id,
            user_id=principal.id,
            action="areas_assigned",
            description=f"{len(unique_ids)} area(s) assigned",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    logger.info(
        "order_areas_assigned",
        extra={"extra": {"order_id": order_id, "area_count": len(unique_ids), "principal_id": principal.id}},
    )
    return await list_order_areas(session, order_id)


async def complete_area(
    session: AsyncSession,
    order_id: int,
    area_id: int,
    principal: Principal,
    *,
    now: datetime | None = None,
) -> OrderArea:
    order = await store.get_order(session, order_id)
    _require_regular(order.order_type)
    ctx = GuardContext(
        principal=principal,
        status=OrderStatus(order.status),
        order_type=OrderType(order.order_type),
        is_assigned=await assignments.is_assigned(session, order_id, principal.id),
    )
    guard_worker_in_progress(ctx)

    area = await session.scalar(
        sa.select(OrderArea).where(OrderArea.order_id == order_id, OrderArea.area_id == area_id)
    )
    if area is None:
        raise NotFoundError(detail=f"Area {area_id} is not part of order {order_id}", code="area_not_found")
    if area.is_completed:
        raise ConflictError(detail="Area is already completed", code="area_already_completed")

    timestamp = now or datetime.now(timezone.utc)
    try:
        result = await session.execute(
            sa.update(OrderArea)
            .where(OrderArea.id == area.id, OrderArea.is_completed.is_(False))
            .values(is_completed=True, completed_by=principal.id, completed_at=timestamp)
            .execution_options(synchronize_session=False)
        )
        if int(result.rowcount or 0) != 1:
            logger.warning(
                "order_area_completion_race_lost",
                extra={"extra": {"order_id": order_id, "area_id": area_id, "principal_id": principal.id}},
            )
            metrics.record_transition("complete_area", "race_lost")
            raise ConflictError(detail="Area is already completed", code="area_already_completed")
        # The order must still be running when the area is marked.
        still_running = await store.conditional_update(session, order_id, [OrderStatus.IN_PROGRESS], {})
        if not still_running:
            raise ConflictError(detail="Order is no longer in progress", code="order_not_in_progress")
        store.record_activity(
            session,
            order_id=order_id,
            user_id=principal.id,
            action="area_completed",
            description=f"Area {area_id} completed",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    metrics.record_transition("complete_area", "ok")
    logger.info(
        "order_area_completed",
        extra={"extra": {"order_id": order_id, "area_id": area_id, "principal_id": principal.id}},
    )
    await session.refresh(area)
    return area
