"""
Rule storage adapter.
"""

from .adapter import RuleAdapter

__all__ = ["RuleAdapter"]
