"""
Compliance Cloud - Job Queues
"""

from compliance_cloud.queue.registry import QueueRegistry

__all__ = ["QueueRegistry"]
