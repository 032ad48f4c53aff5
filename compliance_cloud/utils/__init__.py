"""
Compliance Cloud - Utilities
"""

from compliance_cloud.utils.dates import as_utc, days_until, utcnow

__all__ = ["as_utc", "days_until", "utcnow"]
