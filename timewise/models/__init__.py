"""Import all models so SQLModel.metadata picks them up."""

from timewise.models.attendance import (
    AttendanceLog,
    AttendanceRead,
    AttendanceStatus,
    AttendanceType,
)
from timewise.models.audit_log import AuditAction, AuditLog, AuditLogRead
from timewise.models.credential import CredentialCreate, CredentialRead, StaffCredential
from timewise.models.organization import (
    CheckInMethod,
    Organization,
    OrganizationRead,
    OrganizationSettings,
    OrganizationSettingsRead,
    OrganizationSettingsUpdate,
    OrganizationStatus,
)
from timewise.models.staff import Staff, StaffCreate, StaffRead, StaffUpdate
from timewise.models.subscription import (
    ProcessedPayment,
    ScheduledDowngradeRead,
    Subscription,
    SubscriptionRead,
    SubscriptionStatus,
)
from timewise.models.user import User, UserRead, UserRole

__all__ = [
    "AttendanceLog",
    "AttendanceRead",
    "AttendanceStatus",
    "AttendanceType",
    "AuditAction",
    "AuditLog",
    "AuditLogRead",
    "CheckInMethod",
    "CredentialCreate",
    "CredentialRead",
    "Organization",
    "OrganizationRead",
    "OrganizationSettings",
    "OrganizationSettingsRead",
    "OrganizationSettingsUpdate",
    "OrganizationStatus",
    "ProcessedPayment",
    "ScheduledDowngradeRead",
    "Staff",
    "StaffCredential",
    "StaffCreate",
    "StaffRead",
    "StaffUpdate",
    "Subscription",
    "SubscriptionRead",
    "SubscriptionStatus",
    "User",
    "UserRead",
    "UserRole",
]
