"""Shared base fields for all models."""

import uuid
from datetime import datetime, timezone

from sqlmodel import Field, SQLModel


def utcnow() -> datetime:
    return datetime.now(timezone.utc).replace(tzinfo=None)


def new_uuid() -> uuid.UUID:
    return uuid.uuid4()


class TimestampMixin(SQLModel):
    """Created / updated timestamps injected into every table."""

    created_at: datetime = Field(default_factory=utcnow, nullable=False)
    updated_at: datetime = Field(default_factory=utcnow, nullable=False)


class TenantOwnedMixin(SQLModel):
    """Rows that belong to exactly one organization.

    Only tables carrying this column may be handed to ``TenantDB``.
    """

    tenant_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
