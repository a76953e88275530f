"""Audit trail for platform administrator actions."""

import logging
import math
import uuid
from datetime import datetime

from fastapi import Request
from sqlalchemy import func, or_
from sqlalchemy.exc import SQLAlchemyError
from sqlalchemy.ext.asyncio import AsyncSession
from sqlmodel import select

from timewise.core.rate_limit import client_identifier
from timewise.models.audit_log import AuditAction, AuditLog

logger = logging.getLogger(__name__)


async def record_action(
    session: AsyncSession,
    *,
    actor_id: uuid.UUID,
    actor_email: str,
    action: AuditAction,
    request: Request | None = None,
    tenant_id: uuid.UUID | None = None,
    details: dict | None = None,
) -> None:
    """Append an audit entry and commit it. Never raises.

    Call after the audited change has been committed so a failed write here
    cannot roll it back.
    """
    entry = AuditLog(
        actor_id=actor_id,
        actor_email=actor_email,
        tenant_id=tenant_id,
        action=action,
        details=details or {},
        ip_address=client_identifier(request) if request else "unknown",
        user_agent=(request.headers.get("user-agent") or "unknown")[:512] if request else "unknown",
    )
    try:
        session.add(entry)
        await session.commit()
    except SQLAlchemyError:
        await session.rollback()
        logger.exception("Failed to write audit log for %s", action)


async def list_actions(
    session: AsyncSession,
    *,
    page: int = 1,
    per_page: int = 50,
    search: str | None = None,
    action: AuditAction | None = None,
    tenant_id: uuid.UUID | None = None,
    date_from: datetime | None = None,
    date_to: datetime | None = None,
) -> tuple[list[AuditLog], int, int]:
    """Return ``(logs, total, total_pages)``, newest first."""
    filters = []
    if search:
        pattern = f"%{search}%"
        filters.append(or_(
            AuditLog.actor_email.ilike(pattern),  # type: ignore[attr-defined]
            AuditLog.action.ilike(pattern),  # type: ignore[attr-defined]
        ))
    if action:
        filters.append(AuditLog.action == action)
    if tenant_id:
        filters.append(AuditLog.tenant_id == tenant_id)
    if date_from:
        filters.append(AuditLog.created_at >= date_from)
    if date_to:
        filters.append(AuditLog.created_at <= date_to)

    total = (await session.execute(
        select(func.count()).select_from(AuditLog).where(*filters)
    )).scalar_one()
    stmt = (
        select(AuditLog)
        .where(*filters)
        .order_by(AuditLog.created_at.desc())  # type: ignore[attr-defined]
        .offset((page - 1) * per_page)
        .limit(per_page)
    )
    logs = list((await session.execute(stmt)).scalars().all())
    return logs, total, math.ceil(total / per_page) if per_page else 0
