from __future__ import annotations

import logging
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Callable, Sequence

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.access.capabilities import Capability, Principal, Role, has_capability, require_capability
from app.domain.errors import ConflictError, DomainError, ForbiddenError, ValidationError
from app.domain.notifications import service as notifications_service
from app.domain.orders import areas, assignments, daily_reports, photos, store
from app.domain.orders.db_models import (
    DailyReport,
    Order,
    OrderActivity,
    OrderArea,
    OrderAssignment,
    OrderPhoto,
)
from app.domain.orders.order_numbers import insert_with_order_number
from app.domain.orders.state_machine import (
    GuardContext,
    OrderStatus,
    OrderType,
    Transition,
    allowed_from,
    cancellation_entry,
    guard_assign,
    guard_cancel,
    guard_complete,
    guard_edit,
    guard_start,
)
from app.domain.users.service import managed_by
from app.infra.metrics import metrics
from app.settings import settings

logger = logging.getLogger(__name__)

EDITABLE_FIELDS = ("client_name", "client_email", "client_phone", "address", "city", "scheduled_date", "notes")


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


@dataclass
class OrderSnapshot:
    order: Order
    assignments: list[OrderAssignment] = field(default_factory=list)
    areas: list[OrderArea] = field(default_factory=list)
    daily_reports: list[DailyReport] = field(default_factory=list)
    photos: list[OrderPhoto] = field(default_factory=list)
    activity: list[OrderActivity] = field(default_factory=list)


def _context(order: Order, principal: Principal, **facts: Any) -> GuardContext:
    return GuardContext(
        principal=principal,
        status=OrderStatus(order.status),
        order_type=OrderType(order.order_type),
        responsible_worker_id=order.responsible_worker_id,
        **facts,
    )


def _check(transition: Transition, order: Order, principal: Principal, guard: Callable[[], None]) -> None:
    try:
        guard()
    except DomainError as exc:
        metrics.record_transition(transition.value, "rejected")
        logger.info(
            "order_transition_rejected",
            extra={
                "extra": {
                    "order_id": order.id,
                    "transition": transition.value,
                    "status": order.status,
                    "principal_id": principal.id,
                    "code": exc.code,
                }
            },
        )
        raise


async def _apply(
    session: AsyncSession,
    transition: Transition,
    order: Order,
    principal: Principal,
    patch: dict[str, Any],
    *,
    action: str,
    description: str,
    conditions: Sequence[Any] = (),
) -> None:
    """Conditional write keyed on the statuses the transition may start from.

    The activity row rides in the same transaction; losing a race rolls
    everything back and surfaces as a Conflict.
    """
    try:
        applied = await store.conditional_update(
            session, order.id, allowed_from(transition), patch, conditions=conditions
        )
        if not applied:
            metrics.record_transition(transition.value, "race_lost")
            logger.warning(
                "order_transition_race_lost",
                extra={"extra": {"order_id": order.id, "transition": transition.value, "principal_id": principal.id}},
            )
            raise ConflictError(
                detail=f"Order {order.order_number} changed state before {transition.value} could be applied",
                code="status_race_lost",
            )
        store.record_activity(
            session, order_id=order.id, user_id=principal.id, action=action, description=description
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    metrics.record_transition(transition.value, "ok")


async def create_order(
    session: AsyncSession,
    principal: Principal,
    *,
    order_type: str,
    client_name: str,
    client_phone: str,
    address: str,
    scheduled_date: datetime,
    client_email: str | None = None,
    city: str | None = None,
    notes: str | None = None,
    now: datetime | None = None,
) -> Order:
    require_capability(principal, Capability.ORDER_CREATE)
    try:
        kind = OrderType(order_type)
    except ValueError as exc:
        raise ValidationError(detail=f"Unknown order type '{order_type}'", code="invalid_order_type") from exc

    def build(number: str) -> Order:
        return Order(
            order_number=number,
            order_type=kind.value,
            status=OrderStatus.PENDING.value,
            client_name=client_name.strip(),
            client_email=client_email.lower() if client_email else None,
            client_phone=client_phone.strip(),
            address=address.strip(),
            city=city.strip() if city and city.strip() else None,
            scheduled_date=scheduled_date,
            notes=notes.strip() if notes and notes.strip() else None,
            created_by=principal.id,
        )

    try:
        order = await insert_with_order_number(session, build, now=now)
        store.record_activity(
            session,
            order_id=order.id,
            user_id=principal.id,
            action="order_created",
            description=f"Order {order.order_number} created",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    metrics.record_transition("create", "ok")
    logger.info(
        "order_created",
        extra={
            "extra": {
                "order_id": order.id,
                "order_number": order.order_number,
                "order_type": order.order_type,
                "principal_id": principal.id,
            }
        },
    )
    return order


async def assign_workers(
    session: AsyncSession,
    order_id: int,
    principal: Principal,
    *,
    worker_ids: list[int],
    responsible_id: int,
) -> Order:
    order = await store.get_order(session, order_id)
    ctx = _context(order, principal)
    _check(Transition.ASSIGN, order, principal, lambda: guard_assign(ctx, worker_ids, responsible_id))

    try:
        await store.lock_order(session, order_id)
        _, added = await assignments.replace_assignments(
            session, order_id, worker_ids, responsible_id, assigned_by=principal.id
        )
    except Exception:
        await session.rollback()
        raise
    unique_ids = assignments.normalize_worker_ids(worker_ids)
    await _apply(
        session,
        Transition.ASSIGN,
        order,
        principal,
        {"responsible_worker_id": responsible_id, "status": OrderStatus.ASSIGNED.value},
        action="workers_assigned",
        description=f"{len(unique_ids)} worker(s) assigned, responsible {responsible_id}",
    )
    logger.info(
        "order_assigned",
        extra={
            "extra": {
                "order_id": order_id,
                "worker_ids": unique_ids,
                "responsible_worker_id": responsible_id,
                "principal_id": principal.id,
            }
        },
    )
    await notifications_service.notify_workers_assigned(
        session,
        order_id=order_id,
        worker_ids=added,
        actor_id=principal.id,
        batch_key=uuid.uuid4().hex,
    )
    return await store.get_order(session, order_id)


async def start_work(
    session: AsyncSession,
    order_id: int,
    principal: Principal,
    *,
    gps_start_latitude: float,
    gps_start_longitude: float,
    now: datetime | None = None,
) -> Order:
    order = await store.get_order(session, order_id)
    ctx = _context(order, principal, is_assigned=await assignments.is_assigned(session, order_id, principal.id))
    _check(Transition.START, order, principal, lambda: guard_start(ctx))

    still_assigned = sa.exists().where(
        OrderAssignment.order_id == order_id, OrderAssignment.worker_id == principal.id
    )
    try:
        await _apply(
            session,
            Transition.START,
            order,
            principal,
            {
                "status": OrderStatus.IN_PROGRESS.value,
                "work_started_at": now or _utcnow(),
                "gps_start_latitude": gps_start_latitude,
                "gps_start_longitude": gps_start_longitude,
            },
            action="work_started",
            description=f"Work started on order {order.order_number}",
            conditions=[still_assigned],
        )
    except ConflictError:
        # The write also misses when a re-assignment dropped this worker.
        if not await assignments.is_assigned(session, order_id, principal.id):
            raise ForbiddenError(
                detail=f"Worker {principal.id} is no longer assigned to this order", code="worker_not_assigned"
            )
        raise
    logger.info("order_started", extra={"extra": {"order_id": order_id, "principal_id": principal.id}})
    return await store.get_order(session, order_id)


async def complete_order(
    session: AsyncSession,
    order_id: int,
    principal: Principal,
    *,
    gps_end_latitude: float | None = None,
    gps_end_longitude: float | None = None,
    signature_worker: str | None = None,
    signature_client: str | None = None,
    now: datetime | None = None,
) -> Order:
    order = await store.get_order(session, order_id)
    pending = 0
    if OrderType(order.order_type) == OrderType.REGULAR:
        pending = await areas.pending_area_count(session, order_id)
    ctx = _context(order, principal, pending_areas=pending)
    _check(Transition.COMPLETE, order, principal, lambda: guard_complete(ctx))

    await _apply(
        session,
        Transition.COMPLETE,
        order,
        principal,
        {
            "status": OrderStatus.COMPLETED.value,
            "work_completed_at": now or _utcnow(),
            "gps_end_latitude": gps_end_latitude,
            "gps_end_longitude": gps_end_longitude,
            "signature_worker": signature_worker,
            "signature_client": signature_client,
        },
        action="order_completed",
        description=f"Order {order.order_number} completed",
    )
    logger.info("order_completed", extra={"extra": {"order_id": order_id, "principal_id": principal.id}})
    await notifications_service.notify_order_completed(session, order_id=order_id, recipient_id=order.created_by)
    return await store.get_order(session, order_id)


async def cancel_order(
    session: AsyncSession,
    order_id: int,
    principal: Principal,
    *,
    reason: str | None = None,
) -> Order:
    order = await store.get_order(session, order_id)
    ctx = _context(order, principal)
    _check(Transition.CANCEL, order, principal, lambda: guard_cancel(ctx))

    text = (reason or "").strip() or settings.cancellation_default_reason
    await _apply(
        session,
        Transition.CANCEL,
        order,
        principal,
        {
            "status": OrderStatus.CANCELLED.value,
            "notes": sa.func.coalesce(Order.notes + "\n\n", "") + cancellation_entry(text),
        },
        action="order_cancelled",
        description=f"Order {order.order_number} cancelled: {text}",
    )
    logger.info(
        "order_cancelled",
        extra={"extra": {"order_id": order_id, "previous_status": order.status, "principal_id": principal.id}},
    )
    return await store.get_order(session, order_id)


async def edit_order(
    session: AsyncSession,
    order_id: int,
    principal: Principal,
    fields: dict[str, Any],
) -> Order:
    updates = {key: value for key, value in fields.items() if key in EDITABLE_FIELDS}
    for key in ("client_name", "client_phone", "address"):
        if key in updates and not (updates[key] or "").strip():
            raise ValidationError(detail=f"{key} cannot be blank", code="invalid_field")
    if "scheduled_date" in updates and updates["scheduled_date"] is None:
        raise ValidationError(detail="scheduled_date cannot be cleared", code="invalid_field")
    for key in ("client_name", "client_phone", "address", "city", "notes"):
        if isinstance(updates.get(key), str):
            updates[key] = updates[key].strip() or None
    if isinstance(updates.get("client_email"), str):
        updates["client_email"] = updates["client_email"].lower() or None

    order = await store.get_order(session, order_id)
    ctx = _context(order, principal)
    _check(Transition.EDIT, order, principal, lambda: guard_edit(ctx, updates))

    await _apply(
        session,
        Transition.EDIT,
        order,
        principal,
        updates,
        action="order_updated",
        description=f"Order {order.order_number} updated: {', '.join(sorted(updates))}",
    )
    logger.info(
        "order_edited",
        extra={"extra": {"order_id": order_id, "fields": sorted(updates), "principal_id": principal.id}},
    )
    return await store.get_order(session, order_id)


async def ensure_can_view(session: AsyncSession, order: Order, principal: Principal) -> None:
    if has_capability(principal, Capability.ORDER_VIEW_ALL):
        return
    if principal.role == Role.WORKER:
        if await assignments.is_assigned(session, order.id, principal.id):
            return
    elif principal.role == Role.MANAGER:
        if order.created_by == principal.id:
            return
        if await managed_by(session, principal.id, await assignments.assigned_worker_ids(session, order.id)):
            return
    raise ForbiddenError(detail="No access to this order", code="order_not_visible")


async def get_snapshot(
    session: AsyncSession, order_id: int, principal: Principal, *, check_visibility: bool = True
) -> OrderSnapshot:
    order = await store.get_order(session, order_id)
    if check_visibility:
        await ensure_can_view(session, order, principal)
    snapshot = OrderSnapshot(
        order=order,
        assignments=await assignments.list_assignments(session, order_id),
        photos=await photos.list_photos(session, order_id),
        activity=await store.list_activity(session, order_id),
    )
    if OrderType(order.order_type) == OrderType.REGULAR:
        snapshot.areas = await areas.list_order_areas(session, order_id)
    else:
        snapshot.daily_reports = await daily_reports.list_reports(session, order_id)
    return snapshot
