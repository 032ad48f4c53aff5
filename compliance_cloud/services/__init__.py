"""
Compliance Cloud - Services Package

Business logic services.
"""

from compliance_cloud.services.compliance_engine import ComplianceEngine, ScoringPolicy, score_snapshot
from compliance_cloud.services.score_store import ComplianceScoreStore
from compliance_cloud.services.compliance_service import ComplianceService
from compliance_cloud.services.threshold_scanner import ThresholdScanner, ScanResult, TenantScan
from compliance_cloud.services.recipient_resolver import RecipientResolver, Recipient, EntityRef
from compliance_cloud.services.notification_service import NotificationDispatcher, NotificationService
from compliance_cloud.services.email_service import EmailService, EmailMessage, render_email

__all__ = [
    "ComplianceEngine",
    "ScoringPolicy",
    "score_snapshot",
    "ComplianceScoreStore",
    "ComplianceService",
    "ThresholdScanner",
    "ScanResult",
    "TenantScan",
    "RecipientResolver",
    "Recipient",
    "EntityRef",
    "NotificationDispatcher",
    "NotificationService",
    "EmailService",
    "EmailMessage",
    "render_email",
]
