"""Subscription model — one per organization, read by the feature gate."""

import uuid
from datetime import datetime
from enum import StrEnum

from sqlmodel import Field, SQLModel

from timewise.models.base import TimestampMixin, new_uuid


class SubscriptionStatus(StrEnum):
    ACTIVE = "active"
    CANCELLED = "cancelled"
    EXPIRED = "expired"
    PAST_DUE = "past_due"


class Subscription(TimestampMixin, SQLModel, table=True):
    __tablename__ = "subscriptions"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    tenant_id: uuid.UUID = Field(
        foreign_key="organizations.id", nullable=False, unique=True, index=True,
    )
    plan: str = Field(default="starter", max_length=20)
    status: SubscriptionStatus = Field(default=SubscriptionStatus.ACTIVE)

    # Trial window
    is_trial_active: bool = Field(default=False)
    trial_start_date: datetime | None = Field(default=None)
    trial_end_date: datetime | None = Field(default=None)

    # Paystack linkage
    paystack_subscription_code: str | None = Field(default=None, max_length=255)
    paystack_customer_code: str | None = Field(default=None, max_length=255)
    amount: int | None = Field(default=None)  # naira
    currency: str = Field(default="NGN", max_length=3)
    last_payment_date: datetime | None = Field(default=None)
    next_payment_date: datetime | None = Field(default=None, index=True)
    subscription_end_date: datetime | None = Field(default=None)

    # Pending downgrade, applied by the sweep once downgrade_scheduled_for passes
    downgrade_target_plan: str | None = Field(default=None, max_length=20)
    downgrade_scheduled_for: datetime | None = Field(default=None, index=True)
    downgrade_requested_at: datetime | None = Field(default=None)


class ProcessedPayment(TimestampMixin, SQLModel, table=True):
    """One row per provider reference ever applied; the unique index is the idempotency guard."""

    __tablename__ = "processed_payments"

    id: uuid.UUID = Field(default_factory=new_uuid, primary_key=True)
    reference: str = Field(max_length=255, unique=True, nullable=False, index=True)
    tenant_id: uuid.UUID = Field(foreign_key="organizations.id", nullable=False, index=True)
    plan: str = Field(max_length=20)
    amount: int = Field(default=0)  # naira
    source: str = Field(default="verify", max_length=20)  # "verify" | "webhook"


# ── Pydantic schemas ─────────────────────────────────────────

class ScheduledDowngradeRead(SQLModel):
    target_plan: str
    scheduled_for: datetime
    requested_at: datetime


class SubscriptionRead(SQLModel):
    plan: str
    status: SubscriptionStatus
    is_trial_active: bool
    trial_end_date: datetime | None
    trial_days_remaining: int
    needs_upgrade: bool
    amount: int | None
    currency: str
    last_payment_date: datetime | None
    next_payment_date: datetime | None
    subscription_end_date: datetime | None
    scheduled_downgrade: ScheduledDowngradeRead | None
