"""Order lifecycle rules.

Everything here is pure: guards receive a ``GuardContext`` describing the
order, the acting principal and whatever satellite facts the transition needs,
and raise a ``DomainError`` when a precondition fails. Persistence lives in
``app.domain.orders.store``; orchestration in ``app.domain.orders.service``.
"""

from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.domain.access.capabilities import Capability, Principal, require_capability
from app.domain.errors import ConflictError, ForbiddenError, ValidationError


class OrderStatus(str, Enum):
    PENDING = "pending"
    ASSIGNED = "assigned"
    IN_PROGRESS = "in_progress"
    COMPLETED = "completed"
    CANCELLED = "cancelled"


class OrderType(str, Enum):
    REGULAR = "regular"
    POST_CONSTRUCTION = "post_construction"


class Transition(str, Enum):
    ASSIGN = "assign"
    START = "start"
    COMPLETE = "complete"
    CANCEL = "cancel"
    EDIT = "edit"


TERMINAL_STATUSES = frozenset({OrderStatus.COMPLETED, OrderStatus.CANCELLED})
ACTIVE_STATUSES = frozenset(set(OrderStatus) - TERMINAL_STATUSES)
ASSIGNABLE_STATUSES = frozenset({OrderStatus.PENDING, OrderStatus.ASSIGNED})

# transition -> (statuses it may start from, status it lands in)
TRANSITIONS: dict[Transition, tuple[frozenset[OrderStatus], OrderStatus | None]] = {
    Transition.ASSIGN: (ASSIGNABLE_STATUSES, OrderStatus.ASSIGNED),
    Transition.START: (frozenset({OrderStatus.ASSIGNED}), OrderStatus.IN_PROGRESS),
    Transition.COMPLETE: (frozenset({OrderStatus.IN_PROGRESS}), OrderStatus.COMPLETED),
    Transition.CANCEL: (ACTIVE_STATUSES, OrderStatus.CANCELLED),
    Transition.EDIT: (ACTIVE_STATUSES, None),
}

_ORDER = [OrderStatus.PENDING, OrderStatus.ASSIGNED, OrderStatus.IN_PROGRESS, OrderStatus.COMPLETED]


@dataclass(frozen=True)
class GuardContext:
    principal: Principal
    status: OrderStatus
    order_type: OrderType
    is_assigned: bool = False
    responsible_worker_id: int | None = None
    pending_areas: int = 0


def allowed_from(transition: Transition) -> frozenset[OrderStatus]:
    return TRANSITIONS[transition][0]


def target_status(transition: Transition, current: OrderStatus) -> OrderStatus:
    target = TRANSITIONS[transition][1]
    return current if target is None else target


def is_terminal(status: OrderStatus | str) -> bool:
    return OrderStatus(status) in TERMINAL_STATUSES


def is_forward(current: OrderStatus, target: OrderStatus) -> bool:
    """No transition moves an order backward; cancellation is a side exit."""
    if current == target:
        return True
    if current in TERMINAL_STATUSES:
        return False
    if target == OrderStatus.CANCELLED:
        return True
    return _ORDER.index(target) > _ORDER.index(current)


def _require_status(ctx: GuardContext, transition: Transition, code: str) -> None:
    if ctx.status not in allowed_from(transition):
        allowed = ", ".join(sorted(status.value for status in allowed_from(transition)))
        raise ConflictError(
            detail=f"Cannot {transition.value} an order in status '{ctx.status.value}' (allowed: {allowed})",
            code=code,
        )


def guard_assign(ctx: GuardContext, worker_ids: list[int], responsible_id: int) -> None:
    require_capability(ctx.principal, Capability.ORDER_ASSIGN)
    if not worker_ids:
        raise ValidationError(detail="At least one worker must be assigned", code="workers_required")
    if responsible_id not in worker_ids:
        raise ValidationError(
            detail="Responsible worker must be one of the assigned workers",
            code="responsible_not_assigned",
        )
    _require_status(ctx, Transition.ASSIGN, "order_not_assignable")


def guard_start(ctx: GuardContext) -> None:
    require_capability(ctx.principal, Capability.ORDER_WORK)
    if not ctx.is_assigned:
        raise ForbiddenError(detail="Worker is not assigned to this order", code="worker_not_assigned")
    _require_status(ctx, Transition.START, "order_not_startable")


def guard_complete(ctx: GuardContext) -> None:
    require_capability(ctx.principal, Capability.ORDER_WORK)
    if ctx.responsible_worker_id is None or ctx.principal.id != ctx.responsible_worker_id:
        raise ForbiddenError(
            detail="Only the responsible worker can complete this order",
            code="not_responsible_worker",
        )
    _require_status(ctx, Transition.COMPLETE, "order_not_in_progress")
    if ctx.order_type == OrderType.REGULAR and ctx.pending_areas > 0:
        raise ConflictError(
            detail=f"{ctx.pending_areas} area(s) still pending completion",
            code="areas_pending",
        )


def guard_cancel(ctx: GuardContext) -> None:
    require_capability(ctx.principal, Capability.ORDER_CANCEL)
    if ctx.status == OrderStatus.CANCELLED:
        raise ConflictError(detail="Order is already cancelled", code="order_already_cancelled")
    if ctx.status == OrderStatus.COMPLETED:
        raise ConflictError(detail="Cannot cancel a completed order", code="order_completed")
    _require_status(ctx, Transition.CANCEL, "order_not_cancellable")


def guard_edit(ctx: GuardContext, fields: dict) -> None:
    require_capability(ctx.principal, Capability.ORDER_EDIT)
    if ctx.status in TERMINAL_STATUSES:
        raise ConflictError(detail="Cannot edit a completed or cancelled order", code="order_terminal")
    if not fields:
        raise ValidationError(detail="At least one field must be provided", code="no_fields")


def guard_satellite_write(ctx: GuardContext) -> None:
    """Terminal orders accept no new or edited satellites."""
    if ctx.status in TERMINAL_STATUSES:
        raise ConflictError(
            detail=f"Order is {ctx.status.value}; no further changes are accepted",
            code="order_terminal",
        )


def guard_worker_in_progress(ctx: GuardContext) -> None:
    """Shared guard for worker actions that need an active, assigned order."""
    require_capability(ctx.principal, Capability.ORDER_WORK)
    if not ctx.is_assigned:
        raise ForbiddenError(detail="Worker is not assigned to this order", code="worker_not_assigned")
    if ctx.status != OrderStatus.IN_PROGRESS:
        raise ConflictError(
            detail=f"Order must be in progress (current: {ctx.status.value})",
            code="order_not_in_progress",
        )


def cancellation_entry(reason: str) -> str:
    return f"CANCELLED: {reason}"
