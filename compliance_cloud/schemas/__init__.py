"""
Compliance Cloud - Schemas Package

Pydantic schemas for rule conditions, results, job payloads and responses.
"""

from compliance_cloud.schemas.compliance import (
    ClientWithIssues,
    ComplianceBreakdown,
    ComplianceResult,
    ComplianceScoreResponse,
    ComplianceSummary,
    DocumentRuleCondition,
    FilingRuleCondition,
    RuleSetApplicability,
    TenantRefreshResult,
)
from compliance_cloud.schemas.jobs import (
    BatchJobPayload,
    ComplianceRefreshResult,
    JobName,
    QueueName,
    ReminderRunResult,
    TriggerSource,
)
from compliance_cloud.schemas.notification import (
    EmailJob,
    EmailTemplate,
    NotificationMetadata,
)

__all__ = [
    "ClientWithIssues",
    "ComplianceBreakdown",
    "ComplianceResult",
    "ComplianceScoreResponse",
    "ComplianceSummary",
    "DocumentRuleCondition",
    "FilingRuleCondition",
    "RuleSetApplicability",
    "TenantRefreshResult",
    "BatchJobPayload",
    "ComplianceRefreshResult",
    "JobName",
    "QueueName",
    "ReminderRunResult",
    "TriggerSource",
    "EmailJob",
    "EmailTemplate",
    "NotificationMetadata",
]
