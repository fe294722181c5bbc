from __future__ import annotations

import logging

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.access.capabilities import Capability, Principal, has_capability
from app.domain.errors import ConflictError, ForbiddenError, NotFoundError, ValidationError
from app.domain.orders import assignments, store
from app.domain.orders.db_models import DailyReport, OrderPhoto
from app.domain.orders.state_machine import (
    ACTIVE_STATUSES,
    GuardContext,
    OrderStatus,
    OrderType,
    guard_satellite_write,
    guard_worker_in_progress,
)
from app.infra.metrics import metrics
from app.settings import settings

logger = logging.getLogger(__name__)


async def count_photos(session: AsyncSession, order_id: int, daily_report_id: int | None = None) -> int:
    stmt = sa.select(sa.func.count(OrderPhoto.id)).where(OrderPhoto.order_id == order_id)
    if daily_report_id is not None:
        stmt = stmt.where(OrderPhoto.daily_report_id == daily_report_id)
    result = await session.execute(stmt)
    return int(result.scalar_one() or 0)


async def list_photos(session: AsyncSession, order_id: int) -> list[OrderPhoto]:
    result = await session.execute(
        sa.select(OrderPhoto)
        .where(OrderPhoto.order_id == order_id)
        .order_by(OrderPhoto.uploaded_at.desc(), OrderPhoto.id.desc())
    )
    return list(result.scalars().all())


def _reject(code: str, exc: Exception) -> Exception:
    metrics.record_photo_admission(code)
    return exc


async def admit_photo(
    session: AsyncSession,
    order_id: int,
    principal: Principal,
    *,
    photo_url: str,
    thumbnail_url: str | None = None,
    caption: str | None = None,
    daily_report_id: int | None = None,
) -> OrderPhoto:
    """Count-then-insert under the order's write lock.

    The ceiling is ``regular_order_photo_limit`` per order for regular orders
    and ``post_construction_photo_limit`` per daily report (or per order when
    no report is given) for post-construction orders.
    """
    order = await store.lock_order(session, order_id)
    try:
        ctx = GuardContext(
            principal=principal,
            status=OrderStatus(order.status),
            order_type=OrderType(order.order_type),
            is_assigned=await assignments.is_assigned(session, order_id, principal.id),
        )
        try:
            guard_worker_in_progress(ctx)
        except (ForbiddenError, ConflictError) as exc:
            raise _reject(exc.code or "rejected", exc)

        if daily_report_id is not None:
            if ctx.order_type != OrderType.POST_CONSTRUCTION:
                raise _reject(
                    "report_not_allowed",
                    ValidationError(
                        detail="Only post-construction orders attach photos to daily reports",
                        code="report_not_allowed",
                    ),
                )
            report = await session.get(DailyReport, daily_report_id)
            if report is None or report.order_id != order_id:
                raise _reject(
                    "report_not_found",
                    NotFoundError(
                        detail=f"Daily report {daily_report_id} not found for order {order_id}",
                        code="report_not_found",
                    ),
                )

        ceiling = settings.photo_limit_for(ctx.order_type.value)
        current = await count_photos(session, order_id, daily_report_id)
        if current >= ceiling:
            scope = "daily report" if daily_report_id is not None else "order"
            raise _reject(
                "quota_exceeded",
                ConflictError(
                    detail=f"Photo limit of {ceiling} reached for this {scope}",
                    code="photo_quota_exceeded",
                ),
            )

        photo = OrderPhoto(
            order_id=order_id,
            daily_report_id=daily_report_id,
            photo_url=photo_url,
            thumbnail_url=thumbnail_url,
            caption=caption.strip() if caption and caption.strip() else None,
            uploaded_by=principal.id,
        )
        session.add(photo)
        store.record_activity(
            session,
            order_id=order_id,
            user_id=principal.id,
            action="photo_uploaded",
            description=f"Photo {current + 1}/{ceiling} uploaded to order {order.order_number}",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise

    metrics.record_photo_admission("admitted")
    logger.info(
        "order_photo_admitted",
        extra={
            "extra": {
                "order_id": order_id,
                "photo_id": photo.id,
                "daily_report_id": daily_report_id,
                "count": current + 1,
                "ceiling": ceiling,
            }
        },
    )
    return photo


async def _load_photo(session: AsyncSession, photo_id: int) -> OrderPhoto:
    photo = await session.get(OrderPhoto, photo_id)
    if photo is None:
        raise NotFoundError(detail=f"Photo {photo_id} not found", code="photo_not_found")
    return photo


async def update_caption(
    session: AsyncSession, photo_id: int, principal: Principal, caption: str | None
) -> OrderPhoto:
    photo = await _load_photo(session, photo_id)
    if photo.uploaded_by != principal.id:
        raise ForbiddenError(detail="Only the uploader can edit this caption", code="not_uploader")
    order = await store.get_order(session, photo.order_id)
    guard_satellite_write(
        GuardContext(principal=principal, status=OrderStatus(order.status), order_type=OrderType(order.order_type))
    )
    try:
        touched = await store.conditional_update(session, order.id, ACTIVE_STATUSES, {})
        if not touched:
            raise ConflictError(detail="Order was closed while editing", code="order_terminal")
        photo.caption = caption.strip() if caption and caption.strip() else None
        store.record_activity(
            session,
            order_id=order.id,
            user_id=principal.id,
            action="photo_caption_updated",
            description=f"Caption updated on photo {photo_id}",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(photo)
    return photo


async def delete_photo(session: AsyncSession, photo_id: int, principal: Principal) -> None:
    photo = await _load_photo(session, photo_id)
    if photo.uploaded_by != principal.id and not has_capability(principal, Capability.PHOTO_MODERATE):
        raise ForbiddenError(detail="Not allowed to delete this photo", code="not_uploader")
    order = await store.get_order(session, photo.order_id)
    guard_satellite_write(
        GuardContext(principal=principal, status=OrderStatus(order.status), order_type=OrderType(order.order_type))
    )
    try:
        touched = await store.conditional_update(session, order.id, ACTIVE_STATUSES, {})
        if not touched:
            raise ConflictError(detail="Order was closed while deleting", code="order_terminal")
        await session.execute(sa.delete(OrderPhoto).where(OrderPhoto.id == photo_id))
        store.record_activity(
            session,
            order_id=order.id,
            user_id=principal.id,
            action="photo_deleted",
            description=f"Photo {photo_id} deleted",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info(
        "order_photo_deleted",
        extra={"extra": {"order_id": order.id, "photo_id": photo_id, "principal_id": principal.id}},
    )
