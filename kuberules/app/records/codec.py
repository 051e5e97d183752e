"""
Conversion between rule tuples and stored rule objects.

The load path (adapter -> engine) and the watch path (informer -> engine)
both project objects through :func:`trim`, so the same stored object always
yields the same rule tuple regardless of how it reached the engine.
"""

import hashlib
from dataclasses import dataclass
from typing import Dict, List, Optional, Sequence, Tuple

from .models import ObjectMeta, RuleObject, RuleSpec, VALUE_FIELDS


DELIMITER = "\x1f"  # unit separator, never part of a rule value
KEY_PREFIX = "rule-"
FIELD_COUNT = len(VALUE_FIELDS)


@dataclass(frozen=True)
class RuleRecord:
    """Fixed-width rule: a rule type plus six positional values."""
    ptype: str
    v0: str = ""
    v1: str = ""
    v2: str = ""
    v3: str = ""
    v4: str = ""
    v5: str = ""

    @property
    def values(self) -> Tuple[str, ...]:
        return (self.v0, self.v1, self.v2, self.v3, self.v4, self.v5)

    @property
    def fields(self) -> Tuple[str, ...]:
        return (self.ptype,) + self.values


def trim(fields: Sequence[str]) -> List[str]:
    """Drop trailing empty strings, keeping interior ones."""
    end = len(fields)
    while end > 0 and fields[end - 1] == "":
        end -= 1
    return list(fields[:end])


def project(ptype: str, values: Sequence[str]) -> RuleRecord:
    """Place values by index into the six slots; extra values are dropped."""
    padded = list(values[:FIELD_COUNT]) + [""] * (FIELD_COUNT - min(len(values), FIELD_COUNT))
    return RuleRecord(ptype, *padded)


def canonical_key(record: RuleRecord, labels: Optional[Dict[str, str]] = None) -> str:
    """Content-addressed object name for a record.

    A non-empty label set is folded into the digest so that scopes sharing a
    namespace never collide on the same name.
    """
    parts = list(record.fields)
    if labels:
        parts.extend(f"{key}={value}" for key, value in sorted(labels.items()))
    digest = hashlib.sha256(DELIMITER.join(parts).encode("utf-8")).hexdigest()
    return KEY_PREFIX + digest


def rule_values(record: RuleRecord) -> List[str]:
    """Variable-length rule as the engine stores it."""
    return trim(record.values)


def policy_line(record: RuleRecord) -> List[str]:
    """Rule type followed by its trimmed values."""
    return trim([record.ptype, *record.values])


def from_object(obj: RuleObject) -> RuleRecord:
    spec = obj.spec
    return RuleRecord(spec.ptype, spec.v0, spec.v1, spec.v2, spec.v3, spec.v4, spec.v5)


def to_object(record: RuleRecord,
              namespace: Optional[str] = None,
              labels: Optional[Dict[str, str]] = None) -> RuleObject:
    """Build the stored object for a record within a scope."""
    return RuleObject(
        metadata=ObjectMeta(
            name=canonical_key(record, labels),
            namespace=namespace or None,
            labels=dict(labels) if labels else None
        ),
        spec=RuleSpec(
            ptype=record.ptype,
            v0=record.v0,
            v1=record.v1,
            v2=record.v2,
            v3=record.v3,
            v4=record.v4,
            v5=record.v5
        )
    )


def policy_params(obj: RuleObject) -> Tuple[str, str, List[str]]:
    """Section, rule type and trimmed rule for an object seen on the watch path."""
    ptype = obj.spec.ptype
    if not ptype:
        return "", "", []
    return ptype[0], ptype, rule_values(from_object(obj))
