"""
Compliance Cloud - API Routers
"""

from compliance_cloud.routers import admin_jobs, compliance, notifications

__all__ = ["admin_jobs", "compliance", "notifications"]
