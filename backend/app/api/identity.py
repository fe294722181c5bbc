"""Resolves the acting principal for a request.

Authentication happens upstream: the trusted front proxy forwards the
authenticated user id in ``settings.principal_id_header``. This module only
maps that id to a ``Principal`` using the role stored in ``users``.
"""

import logging

from fastapi import Depends, HTTPException, Request, status
from sqlalchemy.ext.asyncio import AsyncSession

from app.domain.access.capabilities import Principal, parse_role
from app.domain.users.service import get_active_user
from app.infra.db import get_db_session
from app.infra.logging import update_log_context
from app.settings import settings

logger = logging.getLogger(__name__)


def _unauthorized(reason: str) -> HTTPException:
    logger.info("principal_rejected", extra={"extra": {"reason": reason}})
    return HTTPException(status_code=status.HTTP_401_UNAUTHORIZED, detail="Authentication required")


async def get_principal(
    request: Request,
    session: AsyncSession = Depends(get_db_session),
) -> Principal:
    raw = request.headers.get(settings.principal_id_header)
    if not raw or not raw.strip():
        raise _unauthorized("missing_principal_header")
    try:
        user_id = int(raw.strip())
    except ValueError:
        raise _unauthorized("malformed_principal_id") from None

    user = await get_active_user(session, user_id)
    if user is None:
        raise _unauthorized("unknown_or_inactive_principal")
    role = parse_role(user.role)
    if role is None:
        raise _unauthorized("unknown_role")

    principal = Principal(id=user.id, role=role)
    request.state.principal = principal
    update_log_context(principal_id=principal.id, role=role.value)
    return principal
