from __future__ import annotations

import logging
from typing import Any, Iterable, Sequence

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.errors import NotFoundError
from app.domain.orders.db_models import Order, OrderActivity
from app.domain.orders.state_machine import OrderStatus

logger = logging.getLogger(__name__)


def _is_sqlite(session: AsyncSession) -> bool:
    bind = session.get_bind()
    return getattr(getattr(bind, "dialect", None), "name", "") == "sqlite"


async def acquire_sqlite_write_lock(session: AsyncSession) -> None:
    if not _is_sqlite(session):
        return
    if session.in_transaction():
        return
    await session.execute(sa.text("BEGIN IMMEDIATE"))


async def get_order(session: AsyncSession, order_id: int) -> Order:
    order = await session.get(Order, order_id, populate_existing=True)
    if order is None:
        raise NotFoundError(detail=f"Order {order_id} not found", code="order_not_found")
    return order


async def lock_order(session: AsyncSession, order_id: int) -> Order:
    """Start a transaction that holds the order's write lock until commit.

    Any transaction already open on ``session`` is committed first, so callers
    must not have unflushed work pending.
    """
    if session.in_transaction():
        await session.commit()
    await acquire_sqlite_write_lock(session)
    result = await session.execute(
        sa.select(Order).where(Order.id == order_id).with_for_update().execution_options(populate_existing=True)
    )
    order = result.scalar_one_or_none()
    if order is None:
        raise NotFoundError(detail=f"Order {order_id} not found", code="order_not_found")
    return order


async def conditional_update(
    session: AsyncSession,
    order_id: int,
    expected_statuses: Iterable[OrderStatus | str],
    patch: dict[str, Any],
    *,
    conditions: Sequence[Any] = (),
) -> bool:
    """Apply ``patch`` only if the order is still in one of ``expected_statuses``
    and every extra ``conditions`` clause holds.

    Returns whether a row changed. Does not commit.
    """
    expected = [OrderStatus(status).value for status in expected_statuses]
    values = {**patch, "updated_at": sa.func.now()}
    result = await session.execute(
        sa.update(Order)
        .where(Order.id == order_id, Order.status.in_(expected), *conditions)
        .values(**values)
        .execution_options(synchronize_session=False)
    )
    return int(result.rowcount or 0) == 1


async def replace_set(
    session: AsyncSession,
    model: type,
    order_id: int,
    rows: Sequence[dict[str, Any]],
) -> list[Any]:
    """Replace every ``model`` row of an order with ``rows``. Does not commit."""
    await session.execute(sa.delete(model).where(model.order_id == order_id))
    created = [model(order_id=order_id, **row) for row in rows]
    session.add_all(created)
    await session.flush()
    return created


async def insert_if_unique(session: AsyncSession, row: Any) -> bool:
    """Insert and commit ``row``; False when a unique constraint rejects it."""
    session.add(row)
    try:
        await session.commit()
    except IntegrityError:
        await session.rollback()
        logger.info(
            "insert_unique_conflict",
            extra={"extra": {"table": getattr(row, "__tablename__", type(row).__name__)}},
        )
        return False
    return True


def record_activity(
    session: AsyncSession,
    *,
    order_id: int,
    user_id: int,
    action: str,
    description: str | None = None,
) -> OrderActivity:
    activity = OrderActivity(order_id=order_id, user_id=user_id, action=action, description=description)
    session.add(activity)
    return activity


async def list_activity(session: AsyncSession, order_id: int) -> list[OrderActivity]:
    result = await session.execute(
        sa.select(OrderActivity)
        .where(OrderActivity.order_id == order_id)
        .order_by(OrderActivity.created_at, OrderActivity.id)
    )
    return list(result.scalars().all())
