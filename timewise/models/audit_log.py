"""AuditLog model — append-only record of platform administrator actions."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlalchemy import JSON
from sqlmodel import Column, Field, SQLModel

from timewise.models.base import new_uuid, utcnow


class AuditAction(StrEnum):
    LOGIN = "LOGIN"
    VIEW_ORGANIZATIONS = "VIEW_ORGANIZATIONS"
    SUSPEND_ORGANIZATION = "SUSPEND_ORGANIZATION"
    ACTIVATE_ORGANIZATION = "ACTIVATE_ORGANIZATION"
    UPDATE_SUBSCRIPTION = "UPDATE_SUBSCRIPTION"
    VIEW_ANALYTICS = "VIEW_ANALYTICS"
    VIEW_USERS = "VIEW_USERS"
    SUSPEND_USER = "SUSPEND_USER"
    ACTIVATE_USER = "ACTIVATE_USER"
    RESET_PASSWORD = "RESET_PASSWORD"


class AuditLog(SQLModel, table=True):
    __tablename__ = "audit_logs"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    actor_id: uuid.UUID = Field(nullable=False, index=True)
    actor_email: str = Field(max_length=320)
    actor_role: str = Field(default="super_admin", max_length=20)
    tenant_id: uuid.UUID | None = Field(default=None, index=True)
    action: AuditAction = Field(nullable=False, index=True)
    details: dict = Field(default_factory=dict, sa_column=Column(JSON, nullable=False))
    ip_address: str = Field(default="unknown", max_length=64)
    user_agent: str = Field(default="unknown", max_length=512)
    created_at: datetime = Field(default_factory=utcnow, nullable=False, index=True)


# ── Pydantic schemas ─────────────────────────────────────────

class AuditLogRead(SQLModel):
    id: uuid.UUID
    actor_id: uuid.UUID
    actor_email: str
    actor_role: str
    tenant_id: uuid.UUID | None
    action: AuditAction
    details: dict
    ip_address: str
    user_agent: str
    created_at: datetime
