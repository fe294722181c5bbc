from __future__ import annotations

import logging
import re
from datetime import datetime, timezone
from typing import Callable

import sqlalchemy as sa
from sqlalchemy.exc import IntegrityError
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.errors import ConflictError
from app.domain.orders.db_models import Order
from app.settings import settings

logger = logging.getLogger(__name__)

_SEQUENCE_WIDTH = 4


def _utcnow() -> datetime:
    return datetime.now(timezone.utc)


def _pattern(prefix: str) -> re.Pattern[str]:
    return re.compile(rf"^{re.escape(prefix)}-(\d{{4}})-(\d{{{_SEQUENCE_WIDTH},}})$")


def format_order_number(year: int, sequence: int, prefix: str | None = None) -> str:
    prefix = prefix or settings.order_number_prefix
    return f"{prefix}-{year}-{sequence:0{_SEQUENCE_WIDTH}d}"


def parse_order_number(value: str, prefix: str | None = None) -> tuple[int, int] | None:
    match = _pattern(prefix or settings.order_number_prefix).match(value or "")
    if match is None:
        return None
    return int(match.group(1)), int(match.group(2))


def is_valid_order_number(value: str, prefix: str | None = None) -> bool:
    return parse_order_number(value, prefix) is not None


async def next_order_number(session: AsyncSession, *, now: datetime | None = None) -> str:
    year = (now or _utcnow()).year
    prefix = settings.order_number_prefix
    # Sequences past 9999 are longer strings, so order by length before value.
    result = await session.execute(
        sa.select(Order.order_number)
        .where(Order.order_number.like(f"{prefix}-{year}-%"))
        .order_by(sa.func.length(Order.order_number).desc(), Order.order_number.desc())
        .limit(1)
    )
    last = result.scalar_one_or_none()
    sequence = 1
    if last:
        parsed = parse_order_number(last, prefix)
        if parsed is not None:
            sequence = parsed[1] + 1
    return format_order_number(year, sequence, prefix)


async def insert_with_order_number(
    session: AsyncSession,
    build: Callable[[str], Order],
    *,
    now: datetime | None = None,
) -> Order:
    """Allocate a number and flush the order built for it.

    A unique-index collision with a concurrent creator rolls back and retries
    with a fresh number, up to ``order_number_max_attempts`` times.
    """
    attempts = settings.order_number_max_attempts
    for attempt in range(1, attempts + 1):
        number = await next_order_number(session, now=now)
        order = build(number)
        session.add(order)
        try:
            await session.flush()
        except IntegrityError:
            await session.rollback()
            logger.warning(
                "order_number_collision",
                extra={"extra": {"order_number": number, "attempt": attempt}},
            )
            continue
        return order
    raise ConflictError(
        detail=f"Could not allocate a unique order number after {attempts} attempts",
        code="order_number_unavailable",
    )
