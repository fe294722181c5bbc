from __future__ import annotations

from dataclasses import dataclass
from enum import Enum

from app.domain.errors import ForbiddenError


class Role(str, Enum):
    ADMIN = "admin"
    SUPERVISOR = "supervisor"
    MANAGER = "manager"
    WORKER = "worker"


class Capability(str, Enum):
    ORDER_CREATE = "order.create"
    ORDER_ASSIGN = "order.assign"
    ORDER_EDIT = "order.edit"
    ORDER_CANCEL = "order.cancel"
    ORDER_WORK = "order.work"
    ORDER_VIEW_ALL = "order.view_all"
    REPORT_DELETE = "report.delete"
    PHOTO_MODERATE = "photo.moderate"
    AREA_MANAGE = "area.manage"


_SUPERVISOR_TIER = {
    Capability.ORDER_CREATE,
    Capability.ORDER_ASSIGN,
    Capability.ORDER_EDIT,
    Capability.ORDER_CANCEL,
    Capability.REPORT_DELETE,
}

_OVERSIGHT = {Capability.ORDER_VIEW_ALL, Capability.PHOTO_MODERATE, Capability.AREA_MANAGE}

ROLE_CAPABILITIES: dict[Role, set[Capability]] = {
    Role.ADMIN: _SUPERVISOR_TIER | _OVERSIGHT,
    Role.SUPERVISOR: _SUPERVISOR_TIER | _OVERSIGHT,
    Role.MANAGER: set(_SUPERVISOR_TIER),
    Role.WORKER: {Capability.ORDER_WORK},
}


@dataclass(frozen=True)
class Principal:
    id: int
    role: Role


def parse_role(value: str | Role | None) -> Role | None:
    if value is None:
        return None
    if isinstance(value, Role):
        return value
    try:
        return Role(str(value).strip().lower())
    except ValueError:
        return None


def capabilities_for_role(role: str | Role | None) -> set[Capability]:
    parsed = parse_role(role)
    if parsed is None:
        return set()
    return set(ROLE_CAPABILITIES.get(parsed, set()))


def has_capability(principal: Principal, capability: Capability) -> bool:
    return capability in capabilities_for_role(principal.role)


def require_capability(principal: Principal, capability: Capability) -> None:
    if not has_capability(principal, capability):
        raise ForbiddenError(
            detail=f"Role '{principal.role.value}' lacks capability '{capability.value}'",
            code="capability_missing",
        )
