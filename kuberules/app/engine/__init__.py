"""
Policy engine interfaces and the in-memory rule set engine.
"""

from .interfaces import PolicyEngine, PolicyModel, RuleSets
from .model import RuleSetModel
from .engine import RuleSetEngine, POLICY_SECTION, GROUPING_SECTION

__all__ = [
    "PolicyEngine", "PolicyModel", "RuleSets",
    "RuleSetModel", "RuleSetEngine", "POLICY_SECTION", "GROUPING_SECTION",
]
