"""
In-memory rule set keyed by section and rule type.
"""

from typing import Dict, List, Optional, Sequence

from kuberules.app.records.codec import FIELD_COUNT, trim
from kuberules.shared.logging import get_logger
from .interfaces import RuleSets


class RuleSetModel:
    """Ordered, duplicate-free rules per (section, ptype)."""

    def __init__(self):
        self.logger = get_logger("kuberules.engine.model")
        self.rules: RuleSets = {}

    def _bucket(self, sec: str, ptype: str, create: bool = False) -> Optional[List[List[str]]]:
        if create:
            return self.rules.setdefault(sec, {}).setdefault(ptype, [])
        return self.rules.get(sec, {}).get(ptype)

    def has_rule(self, sec: str, ptype: str, rule: Sequence[str]) -> bool:
        bucket = self._bucket(sec, ptype)
        return bucket is not None and list(rule) in bucket

    def add_rule(self, sec: str, ptype: str, rule: Sequence[str]) -> bool:
        """Append a rule; returns False if it is already present."""
        if self.has_rule(sec, ptype, rule):
            return False
        self._bucket(sec, ptype, create=True).append(list(rule))
        return True

    def remove_rule(self, sec: str, ptype: str, rule: Sequence[str]) -> bool:
        bucket = self._bucket(sec, ptype)
        if bucket is None or list(rule) not in bucket:
            return False
        bucket.remove(list(rule))
        return True

    def update_rule(self, sec: str, ptype: str, old_rule: Sequence[str], new_rule: Sequence[str]) -> bool:
        """Replace a rule in place, keeping its position."""
        bucket = self._bucket(sec, ptype)
        if bucket is None or list(old_rule) not in bucket:
            return False
        bucket[bucket.index(list(old_rule))] = list(new_rule)
        return True

    def get_rules(self, sec: str, ptype: str) -> List[List[str]]:
        return [list(rule) for rule in self._bucket(sec, ptype) or []]

    def remove_filtered_rules(self, sec: str, ptype: str, field_index: int, *field_values: str) -> List[List[str]]:
        """Remove rules matching the non-empty values from ``field_index`` on.

        ``field_index == -1`` removes every rule of ``ptype``. Values that fall
        past the last stored field are ignored.
        """
        bucket = self._bucket(sec, ptype)
        if not bucket:
            return []
        if field_index == -1:
            cleared = list(bucket)
            bucket.clear()
            return cleared

        removed: List[List[str]] = []
        kept: List[List[str]] = []
        for rule in bucket:
            matched = True
            for offset, value in enumerate(field_values):
                position = field_index + offset
                if position >= FIELD_COUNT:
                    break
                if value and (position >= len(rule) or rule[position] != value):
                    matched = False
                    break
            (removed if matched else kept).append(rule)

        bucket[:] = kept
        return removed

    def clear(self) -> None:
        self.rules.clear()

    def load_policy_line(self, line: Sequence[str]) -> None:
        line = trim(list(line))
        if not line or not line[0]:
            return
        ptype = line[0]
        self.add_rule(ptype[0], ptype, line[1:])

    def rule_sets(self) -> RuleSets:
        return {
            sec: {ptype: [list(rule) for rule in rules] for ptype, rules in ptypes.items()}
            for sec, ptypes in self.rules.items()
        }

    def count(self) -> int:
        return sum(len(rules) for ptypes in self.rules.values() for rules in ptypes.values())

    def summary(self) -> Dict[str, int]:
        return {
            ptype: len(rules)
            for ptypes in self.rules.values()
            for ptype, rules in ptypes.items()
        }
