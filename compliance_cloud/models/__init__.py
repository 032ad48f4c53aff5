"""
Compliance Cloud - Database Models

Import all models here so Base.metadata knows every table.
"""

from compliance_cloud.models.base import BaseModel, TimestampMixin, TenantScopedMixin
from compliance_cloud.models.tenant import Tenant, User, Role, TenantUser
from compliance_cloud.models.client import (
    Client,
    Document,
    DocumentStatus,
    DocumentType,
    DocumentVersion,
    Filing,
    FilingStatus,
    FilingType,
    Task,
)
from compliance_cloud.models.compliance import (
    ComplianceLevel,
    ComplianceRule,
    ComplianceRuleSet,
    ComplianceScore,
    RuleType,
)
from compliance_cloud.models.notification import (
    ChannelStatus,
    EntityKind,
    Notification,
    NotificationType,
    ReminderMarker,
    UrgencyLevel,
)

__all__ = [
    "BaseModel",
    "TimestampMixin",
    "TenantScopedMixin",
    "Tenant",
    "User",
    "Role",
    "TenantUser",
    "Client",
    "Document",
    "DocumentStatus",
    "DocumentType",
    "DocumentVersion",
    "Filing",
    "FilingStatus",
    "FilingType",
    "Task",
    "ComplianceLevel",
    "ComplianceRule",
    "ComplianceRuleSet",
    "ComplianceScore",
    "RuleType",
    "ChannelStatus",
    "EntityKind",
    "Notification",
    "NotificationType",
    "ReminderMarker",
    "UrgencyLevel",
]
