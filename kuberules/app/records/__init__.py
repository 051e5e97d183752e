"""
Rule records and stored object models.
"""

from .models import ObjectMeta, StoredObject, RuleSpec, RuleObject, ObjectList
from .codec import (
    RuleRecord, trim, project, canonical_key, rule_values, policy_line,
    from_object, to_object, policy_params
)

__all__ = [
    "ObjectMeta", "StoredObject", "RuleSpec", "RuleObject", "ObjectList",
    "RuleRecord", "trim", "project", "canonical_key", "rule_values", "policy_line",
    "from_object", "to_object", "policy_params",
]
