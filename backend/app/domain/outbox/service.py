from __future__ import annotations

from datetime import datetime, timedelta, timezone
import logging
import uuid
from typing import Iterable, Protocol

from sqlalchemy import func, select
from sqlalchemy.dialects.postgresql import insert as pg_insert
from sqlalchemy.dialects.sqlite import insert as sqlite_insert
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.outbox.db_models import OutboxEvent
from app.infra.logging import clear_log_context
from app.infra.metrics import metrics
from app.settings import settings

logger = logging.getLogger(__name__)

PENDING_STATUSES = {"pending", "retry"}
WORKER_ASSIGNED = "worker_assigned"
ORDER_COMPLETED = "order_completed"
KNOWN_KINDS = {WORKER_ASSIGNED, ORDER_COMPLETED}


class NotificationSink(Protocol):
    async def deliver(self, session: AsyncSession, event: OutboxEvent) -> tuple[bool, str | None]:
        ...


class OutboxAdapters:
    def __init__(self, *, sink: NotificationSink | None = None) -> None:
        self.sink = sink


def _now() -> datetime:
    return datetime.now(tz=timezone.utc)


def _backoff_delay(attempt: int) -> timedelta:
    delay = settings.outbox_base_backoff_seconds * max(1, 2 ** max(0, attempt - 1))
    return timedelta(seconds=delay)


def _next_attempt(attempt: int) -> datetime:
    return _now() + _backoff_delay(attempt)


async def enqueue_outbox_event(
    session: AsyncSession,
    *,
    kind: str,
    payload: dict,
    dedupe_key: str,
    order_id: int | None = None,
) -> OutboxEvent:
    """Insert an outbox row unless one with the same dedupe key exists.

    Does not commit; the caller owns the transaction.
    """
    values = {
        "event_id": str(uuid.uuid4()),
        "kind": kind,
        "order_id": order_id,
        "payload_json": payload,
        "dedupe_key": dedupe_key,
        "status": "pending",
        "attempts": 0,
        "next_attempt_at": _now(),
        "last_error": None,
    }
    bind = session.get_bind()
    dialect = bind.dialect.name if bind else ""
    insert = pg_insert if dialect == "postgresql" else sqlite_insert
    stmt = insert(OutboxEvent).values(**values).on_conflict_do_nothing(index_elements=["dedupe_key"])
    await session.execute(stmt)
    event = await session.scalar(select(OutboxEvent).where(OutboxEvent.dedupe_key == dedupe_key))
    if event is None:
        raise RuntimeError(f"outbox event missing after insert: {dedupe_key}")
    if event.event_id != values["event_id"]:
        logger.info("outbox_event_deduplicated", extra={"extra": {"dedupe_key": dedupe_key, "kind": kind}})
    return event


async def _deliver_event(
    session: AsyncSession, event: OutboxEvent, adapters: OutboxAdapters
) -> tuple[bool, str | None]:
    if event.kind not in KNOWN_KINDS:
        return False, "unknown_kind"
    if adapters.sink is None:
        return False, "sink_unavailable"
    try:
        return await adapters.sink.deliver(session, event)
    except Exception as exc:  # noqa: BLE001
        logger.warning(
            "outbox_delivery_error",
            extra={"extra": {"event_id": event.event_id, "kind": event.kind, "reason": type(exc).__name__}},
        )
        return False, type(exc).__name__


async def deliver_outbox_event(
    session: AsyncSession, event: OutboxEvent, adapters: OutboxAdapters
) -> tuple[bool, str | None]:
    attempts = (event.attempts or 0) + 1
    event.attempts = attempts
    delivered, error = await _deliver_event(session, event, adapters)
    if delivered:
        event.status = "sent"
        event.sent_at = _now()
        event.next_attempt_at = None
        event.last_error = None
        metrics.record_outbox_event(event.kind, "sent")
    else:
        event.last_error = error or "failed"
        if attempts >= settings.outbox_max_attempts:
            event.status = "dead"
            event.next_attempt_at = None
            metrics.record_outbox_event(event.kind, "dead")
            logger.warning(
                "outbox_event_dead",
                extra={"extra": {"event_id": event.event_id, "kind": event.kind, "reason": event.last_error}},
            )
        else:
            event.status = "retry"
            event.next_attempt_at = _next_attempt(attempts)
            metrics.record_outbox_event(event.kind, "retry")
    await session.flush()
    return delivered, event.last_error


async def process_outbox(session: AsyncSession, adapters: OutboxAdapters, *, limit: int = 50) -> dict[str, int]:
    now = _now()
    result = await session.execute(
        select(OutboxEvent)
        .where(OutboxEvent.status.in_(PENDING_STATUSES), OutboxEvent.next_attempt_at <= now)
        .order_by(OutboxEvent.created_at)
        .limit(limit)
    )
    events = result.scalars().all()
    sent = 0
    dead = 0
    for event in events:
        try:
            delivered, _ = await deliver_outbox_event(session, event, adapters)
            if delivered:
                sent += 1
            elif event.status == "dead":
                dead += 1
        finally:
            clear_log_context()
    if events:
        await session.commit()
    await _record_outbox_depth(session)
    return {"sent": sent, "dead": dead, "pending": len(events)}


async def outbox_counts_by_status(session: AsyncSession, statuses: Iterable[str]) -> dict[str, int]:
    statuses = list(statuses)
    counts: dict[str, int] = {status: 0 for status in statuses}
    result = await session.execute(
        select(OutboxEvent.status, func.count()).where(OutboxEvent.status.in_(statuses)).group_by(OutboxEvent.status)
    )
    for status, count in result.all():
        if status in counts:
            counts[status] = int(count)
    return counts


async def _record_outbox_depth(session: AsyncSession) -> None:
    counts = await outbox_counts_by_status(session, ("pending", "retry", "dead"))
    for status, count in counts.items():
        metrics.set_outbox_depth(status, count)


async def events_for_order(session: AsyncSession, order_id: int, kind: str | None = None) -> list[OutboxEvent]:
    stmt = select(OutboxEvent).where(OutboxEvent.order_id == order_id)
    if kind is not None:
        stmt = stmt.where(OutboxEvent.kind == kind)
    result = await session.execute(stmt.order_by(OutboxEvent.created_at, OutboxEvent.event_id))
    return list(result.scalars().all())
