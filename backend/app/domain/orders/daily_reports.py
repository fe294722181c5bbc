from __future__ import annotations

import logging
from datetime import date, datetime

import sqlalchemy as sa
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.access.capabilities import Capability, Principal, require_capability
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
from app.settings import settings

logger = logging.getLogger(__name__)

_UNSET = object()


def normalize_report_date(value: date | datetime | str) -> date:
    """Reports are keyed by calendar day; any time-of-day is dropped."""
    if isinstance(value, datetime):
        return value.date()
    if isinstance(value, date):
        return value
    try:
        return datetime.fromisoformat(str(value).strip().replace("Z", "+00:00")).date()
    except ValueError as exc:
        raise ValidationError(detail=f"Invalid report date: {value!r}", code="invalid_report_date") from exc


def validate_description(description: str | None) -> str:
    text = (description or "").strip()
    low, high = settings.daily_report_min_chars, settings.daily_report_max_chars
    if not low <= len(text) <= high:
        raise ValidationError(
            detail=f"Description must be between {low} and {high} characters",
            code="invalid_description",
            errors=[{"field": "description", "message": f"length {len(text)} outside {low}-{high}"}],
        )
    return text


async def list_reports(session: AsyncSession, order_id: int) -> list[DailyReport]:
    result = await session.execute(
        sa.select(DailyReport).where(DailyReport.order_id == order_id).order_by(DailyReport.report_date.desc())
    )
    return list(result.scalars().all())


async def _report_exists(session: AsyncSession, order_id: int, report_date: date) -> bool:
    result = await session.execute(
        sa.select(DailyReport.id)
        .where(DailyReport.order_id == order_id, DailyReport.report_date == report_date)
        .limit(1)
    )
    return result.scalar_one_or_none() is not None


async def create_report(
    session: AsyncSession,
    order_id: int,
    principal: Principal,
    *,
    report_date: date | datetime | str,
    description: str,
    signature_worker: str | None = None,
) -> DailyReport:
    day = normalize_report_date(report_date)
    text = validate_description(description)

    order = await store.get_order(session, order_id)
    if OrderType(order.order_type) != OrderType.POST_CONSTRUCTION:
        raise ConflictError(
            detail="Daily reports are only available for post-construction orders",
            code="order_type_mismatch",
        )
    ctx = GuardContext(
        principal=principal,
        status=OrderStatus(order.status),
        order_type=OrderType(order.order_type),
        is_assigned=await assignments.is_assigned(session, order_id, principal.id),
    )
    guard_worker_in_progress(ctx)

    duplicate = ConflictError(
        detail=f"A report for {day.isoformat()} already exists on this order",
        code="duplicate_report_date",
    )
    try:
        still_running = await store.conditional_update(session, order_id, [OrderStatus.IN_PROGRESS], {})
        if not still_running:
            raise ConflictError(detail="Order is no longer in progress", code="order_not_in_progress")
        if await _report_exists(session, order_id, day):
            raise duplicate
    except Exception:
        await session.rollback()
        raise

    report = DailyReport(
        order_id=order_id,
        report_date=day,
        description=text,
        signature_worker=signature_worker or None,
        created_by=principal.id,
    )
    store.record_activity(
        session,
        order_id=order_id,
        user_id=principal.id,
        action="daily_report_created",
        description=f"Daily report for {day.isoformat()} created",
    )
    if not await store.insert_if_unique(session, report):
        logger.warning(
            "daily_report_duplicate_race",
            extra={"extra": {"order_id": order_id, "report_date": day.isoformat()}},
        )
        raise duplicate

    logger.info(
        "daily_report_created",
        extra={"extra": {"order_id": order_id, "report_id": report.id, "report_date": day.isoformat()}},
    )
    return report


async def _load_report(session: AsyncSession, report_id: int) -> DailyReport:
    report = await session.get(DailyReport, report_id)
    if report is None:
        raise NotFoundError(detail=f"Daily report {report_id} not found", code="report_not_found")
    return report


async def update_report(
    session: AsyncSession,
    report_id: int,
    principal: Principal,
    *,
    description: str | None = None,
    signature_worker: object = _UNSET,
) -> DailyReport:
    updates: dict[str, object] = {}
    if description is not None:
        updates["description"] = validate_description(description)
    if signature_worker is not _UNSET:
        updates["signature_worker"] = signature_worker or None
    if not updates:
        raise ValidationError(detail="At least one field must be provided", code="no_fields")

    report = await _load_report(session, report_id)
    if report.created_by != principal.id:
        raise ForbiddenError(detail="Only the report author can edit it", code="not_report_author")
    order = await store.get_order(session, report.order_id)
    guard_satellite_write(
        GuardContext(principal=principal, status=OrderStatus(order.status), order_type=OrderType(order.order_type))
    )

    try:
        touched = await store.conditional_update(session, order.id, ACTIVE_STATUSES, {})
        if not touched:
            raise ConflictError(detail="Order was closed while editing", code="order_terminal")
        for key, value in updates.items():
            setattr(report, key, value)
        store.record_activity(
            session,
            order_id=order.id,
            user_id=principal.id,
            action="daily_report_updated",
            description=f"Daily report {report_id} updated",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    await session.refresh(report)
    logger.info("daily_report_updated", extra={"extra": {"order_id": order.id, "report_id": report_id}})
    return report


async def delete_report(session: AsyncSession, report_id: int, principal: Principal) -> None:
    require_capability(principal, Capability.REPORT_DELETE)
    report = await _load_report(session, report_id)
    order = await store.get_order(session, report.order_id)
    guard_satellite_write(
        GuardContext(principal=principal, status=OrderStatus(order.status), order_type=OrderType(order.order_type))
    )

    try:
        touched = await store.conditional_update(session, order.id, ACTIVE_STATUSES, {})
        if not touched:
            raise ConflictError(detail="Order was closed while deleting", code="order_terminal")
        photos = await session.execute(sa.delete(OrderPhoto).where(OrderPhoto.daily_report_id == report_id))
        await session.execute(sa.delete(DailyReport).where(DailyReport.id == report_id))
        store.record_activity(
            session,
            order_id=order.id,
            user_id=principal.id,
            action="daily_report_deleted",
            description=f"Daily report {report_id} deleted with {int(photos.rowcount or 0)} photo(s)",
        )
        await session.commit()
    except Exception:
        await session.rollback()
        raise
    logger.info("daily_report_deleted", extra={"extra": {"order_id": order.id, "report_id": report_id}})
