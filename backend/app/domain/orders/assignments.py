from __future__ import annotations

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.errors import NotFoundError, ValidationError
from app.domain.orders import store
from app.domain.orders.db_models import OrderAssignment
from app.domain.users.service import load_active_workers


async def list_assignments(session: AsyncSession, order_id: int) -> list[OrderAssignment]:
    result = await session.execute(
        select(OrderAssignment)
        .where(OrderAssignment.order_id == order_id)
        .order_by(OrderAssignment.is_responsible.desc(), OrderAssignment.worker_id)
    )
    return list(result.scalars().all())


async def assigned_worker_ids(session: AsyncSession, order_id: int) -> set[int]:
    result = await session.execute(
        select(OrderAssignment.worker_id).where(OrderAssignment.order_id == order_id)
    )
    return set(result.scalars().all())


async def is_assigned(session: AsyncSession, order_id: int, worker_id: int) -> bool:
    result = await session.execute(
        select(OrderAssignment.id)
        .where(OrderAssignment.order_id == order_id, OrderAssignment.worker_id == worker_id)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def is_responsible(session: AsyncSession, order_id: int, worker_id: int) -> bool:
    result = await session.execute(
        select(OrderAssignment.id)
        .where(
            OrderAssignment.order_id == order_id,
            OrderAssignment.worker_id == worker_id,
            OrderAssignment.is_responsible.is_(True),
        )
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


def normalize_worker_ids(worker_ids: list[int]) -> list[int]:
    seen: set[int] = set()
    ordered: list[int] = []
    for worker_id in worker_ids:
        if worker_id in seen:
            continue
        seen.add(worker_id)
        ordered.append(worker_id)
    return ordered


async def replace_assignments(
    session: AsyncSession,
    order_id: int,
    worker_ids: list[int],
    responsible_id: int,
    assigned_by: int,
) -> tuple[list[OrderAssignment], set[int]]:
    """Swap the assigned set for ``worker_ids`` inside the caller's transaction.

    Returns the new rows and the ids that were not assigned before.
    """
    worker_ids = normalize_worker_ids(worker_ids)
    if responsible_id not in worker_ids:
        raise ValidationError(
            detail="Responsible worker must be one of the assigned workers",
            code="responsible_not_assigned",
        )
    workers = await load_active_workers(session, worker_ids)
    missing = [worker_id for worker_id in worker_ids if worker_id not in workers]
    if missing:
        raise NotFoundError(
            detail=f"Workers not found or inactive: {', '.join(str(worker_id) for worker_id in missing)}",
            code="workers_not_found",
            errors=[{"worker_id": worker_id, "message": "not an active worker"} for worker_id in missing],
        )

    previous = await assigned_worker_ids(session, order_id)
    rows = [
        {
            "worker_id": worker_id,
            "assigned_by": assigned_by,
            "is_responsible": worker_id == responsible_id,
        }
        for worker_id in worker_ids
    ]
    created = await store.replace_set(session, OrderAssignment, order_id, rows)
    return created, set(worker_ids) - previous
