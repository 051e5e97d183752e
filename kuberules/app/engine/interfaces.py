"""
Narrow interfaces the adapter and synchronizer need from a policy engine.
"""

from typing import Dict, List, Protocol, Sequence, runtime_checkable


RuleSets = Dict[str, Dict[str, List[List[str]]]]


@runtime_checkable
class PolicyModel(Protocol):
    """Rule container the adapter loads into and saves from."""

    def load_policy_line(self, line: Sequence[str]) -> None:
        """Add one ``[ptype, *values]`` line; the section is ``ptype[0]``."""

    def rule_sets(self) -> RuleSets:
        """Rules keyed by section, then by rule type."""


@runtime_checkable
class PolicyEngine(Protocol):
    """Mutation surface used to mirror remote changes into a live engine.

    The ``self_*`` calls change the in-memory rule set without writing back
    through the adapter or notifying watchers.
    """

    def self_add_policy(self, sec: str, ptype: str, rule: List[str]) -> bool:
        ...

    def self_update_policy(self, sec: str, ptype: str, old_rule: List[str], new_rule: List[str]) -> bool:
        ...

    def self_remove_policy(self, sec: str, ptype: str, rule: List[str]) -> bool:
        ...

    def enable_auto_save(self, enabled: bool) -> None:
        ...

    def enable_auto_notify_watcher(self, enabled: bool) -> None:
        ...
