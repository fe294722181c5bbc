from __future__ import annotations

import logging
from typing import Iterable

from sqlalchemy import select
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.notifications.db_models import Notification
from app.domain.orders.db_models import Order
from app.domain.outbox.db_models import OutboxEvent
from app.domain.outbox.service import ORDER_COMPLETED, WORKER_ASSIGNED, enqueue_outbox_event

logger = logging.getLogger(__name__)


class InAppNotificationSink:
    """Turns outbox events into rows of the in-app notifications inbox."""

    async def deliver(self, session: AsyncSession, event: OutboxEvent) -> tuple[bool, str | None]:
        payload = event.payload_json or {}
        order = await session.get(Order, payload.get("order_id"))
        if order is None:
            return False, "order_missing"
        if event.kind == WORKER_ASSIGNED:
            recipient_id = payload.get("worker_id")
            title = "New order assigned"
            message = f"You have been assigned to order {order.order_number} ({order.client_name})"
        elif event.kind == ORDER_COMPLETED:
            recipient_id = payload.get("recipient_id") or order.created_by
            title = "Order completed"
            message = f"Order {order.order_number} has been completed"
        else:
            return False, "unknown_kind"
        if recipient_id is None:
            return False, "missing_recipient"

        existing = await session.scalar(
            select(Notification.id).where(
                Notification.source_event_id == event.event_id,
                Notification.user_id == recipient_id,
            )
        )
        if existing is None:
            session.add(
                Notification(
                    user_id=recipient_id,
                    order_id=order.id,
                    kind=event.kind,
                    title=title,
                    message=message,
                    source_event_id=event.event_id,
                )
            )
        return True, None


async def notify_workers_assigned(
    session: AsyncSession,
    *,
    order_id: int,
    worker_ids: Iterable[int],
    actor_id: int,
    batch_key: str,
) -> int:
    """Enqueue one WorkerAssigned event per worker, skipping the actor.

    Best effort: the order transition has already committed, so failures are
    logged and swallowed.
    """
    recipients = sorted({worker_id for worker_id in worker_ids if worker_id != actor_id})
    if not recipients:
        return 0
    try:
        for worker_id in recipients:
            await enqueue_outbox_event(
                session,
                kind=WORKER_ASSIGNED,
                payload={"order_id": order_id, "worker_id": worker_id},
                order_id=order_id,
                dedupe_key=f"{WORKER_ASSIGNED}:{order_id}:{worker_id}:{batch_key}",
            )
        await session.commit()
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.warning(
            "notification_enqueue_failed",
            extra={"extra": {"order_id": order_id, "kind": WORKER_ASSIGNED, "reason": type(exc).__name__}},
        )
        return 0
    return len(recipients)


async def notify_order_completed(session: AsyncSession, *, order_id: int, recipient_id: int) -> bool:
    try:
        await enqueue_outbox_event(
            session,
            kind=ORDER_COMPLETED,
            payload={"order_id": order_id, "recipient_id": recipient_id},
            order_id=order_id,
            dedupe_key=f"{ORDER_COMPLETED}:{order_id}",
        )
        await session.commit()
    except Exception as exc:  # noqa: BLE001
        await session.rollback()
        logger.warning(
            "notification_enqueue_failed",
            extra={"extra": {"order_id": order_id, "kind": ORDER_COMPLETED, "reason": type(exc).__name__}},
        )
        return False
    return True
