"""
Compliance Cloud - compliance scoring and deadline reminder core.
"""

__version__ = "1.0.0"
