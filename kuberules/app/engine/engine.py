"""
In-memory policy engine with adapter-backed persistence.
"""

from typing import TYPE_CHECKING, Any, Callable, Dict, List, Optional, Set

from kuberules.shared.logging import get_logger
from .model import RuleSetModel

if TYPE_CHECKING:
    from kuberules.app.adapter.adapter import RuleAdapter


POLICY_SECTION = "p"
GROUPING_SECTION = "g"


class RuleSetEngine:
    """Policy engine holding subject/object/action rules and role groupings.

    Public mutations write through the adapter when auto-save is enabled and
    then update the in-memory model. ``self_*`` mutations touch only the
    model; they are what a synchronizer uses to mirror remote changes.
    """

    def __init__(self, adapter: Optional["RuleAdapter"] = None):
        self.logger = get_logger("kuberules.engine")
        self.model = RuleSetModel()
        self.adapter = adapter
        self.auto_save = True
        self.auto_notify_watcher = True
        self.watcher: Optional[Callable[[], Any]] = None

    def enable_auto_save(self, enabled: bool) -> None:
        self.auto_save = enabled

    def enable_auto_notify_watcher(self, enabled: bool) -> None:
        self.auto_notify_watcher = enabled

    def set_watcher(self, callback: Optional[Callable[[], Any]]) -> None:
        """Register a callback invoked after every persisted change."""
        self.watcher = callback

    def _notify(self) -> None:
        if self.auto_notify_watcher and self.watcher is not None:
            self.watcher()

    def _persisting(self) -> bool:
        return self.auto_save and self.adapter is not None

    async def load_policy(self) -> None:
        """Replace the in-memory rules with the adapter's contents."""
        if self.adapter is None:
            return
        self.model.clear()
        await self.adapter.load_policy(self.model)
        self.logger.info("Policy loaded", rules=self.model.count())

    async def save_policy(self) -> None:
        if self.adapter is None:
            return
        await self.adapter.save_policy(self.model)
        self._notify()

    async def add_named_policy(self, ptype: str, *rule: str) -> bool:
        sec = ptype[0]
        values = list(rule)
        if self.model.has_rule(sec, ptype, values):
            return False
        if self._persisting():
            await self.adapter.add_policy(sec, ptype, values)
        self.model.add_rule(sec, ptype, values)
        self._notify()
        return True

    async def add_policy(self, *rule: str) -> bool:
        return await self.add_named_policy(POLICY_SECTION, *rule)

    async def add_grouping_policy(self, *rule: str) -> bool:
        return await self.add_named_policy(GROUPING_SECTION, *rule)

    async def add_named_policies(self, ptype: str, rules: List[List[str]]) -> bool:
        """Add several rules; nothing is added if any of them already exists."""
        sec = ptype[0]
        if any(self.model.has_rule(sec, ptype, rule) for rule in rules):
            return False
        if self._persisting():
            await self.adapter.add_policies(sec, ptype, rules)
        for rule in rules:
            self.model.add_rule(sec, ptype, rule)
        self._notify()
        return True

    async def remove_named_policy(self, ptype: str, *rule: str) -> bool:
        sec = ptype[0]
        values = list(rule)
        if not self.model.has_rule(sec, ptype, values):
            return False
        if self._persisting():
            await self.adapter.remove_policy(sec, ptype, values)
        self.model.remove_rule(sec, ptype, values)
        self._notify()
        return True

    async def remove_policy(self, *rule: str) -> bool:
        return await self.remove_named_policy(POLICY_SECTION, *rule)

    async def remove_grouping_policy(self, *rule: str) -> bool:
        return await self.remove_named_policy(GROUPING_SECTION, *rule)

    async def remove_filtered_named_policy(self, ptype: str, field_index: int, *field_values: str) -> bool:
        sec = ptype[0]
        if self._persisting():
            await self.adapter.remove_filtered_policy(sec, ptype, field_index, *field_values)
        removed = self.model.remove_filtered_rules(sec, ptype, field_index, *field_values)
        if removed:
            self._notify()
        return bool(removed)

    async def remove_filtered_policy(self, field_index: int, *field_values: str) -> bool:
        return await self.remove_filtered_named_policy(POLICY_SECTION, field_index, *field_values)

    def self_add_policy(self, sec: str, ptype: str, rule: List[str]) -> bool:
        added = self.model.add_rule(sec, ptype, rule)
        if added:
            self.logger.debug("Mirrored rule added", ptype=ptype, rule=rule)
        return added

    def self_update_policy(self, sec: str, ptype: str, old_rule: List[str], new_rule: List[str]) -> bool:
        updated = self.model.update_rule(sec, ptype, old_rule, new_rule)
        if updated:
            self.logger.debug("Mirrored rule updated", ptype=ptype, old_rule=old_rule, new_rule=new_rule)
        return updated

    def self_remove_policy(self, sec: str, ptype: str, rule: List[str]) -> bool:
        removed = self.model.remove_rule(sec, ptype, rule)
        if removed:
            self.logger.debug("Mirrored rule removed", ptype=ptype, rule=rule)
        return removed

    def has_policy(self, *rule: str) -> bool:
        return self.model.has_rule(POLICY_SECTION, POLICY_SECTION, list(rule))

    def has_named_policy(self, ptype: str, *rule: str) -> bool:
        return self.model.has_rule(ptype[0], ptype, list(rule))

    def get_policy(self) -> List[List[str]]:
        return self.model.get_rules(POLICY_SECTION, POLICY_SECTION)

    def get_named_policy(self, ptype: str) -> List[List[str]]:
        return self.model.get_rules(ptype[0], ptype)

    def get_grouping_policy(self) -> List[List[str]]:
        return self.model.get_rules(GROUPING_SECTION, GROUPING_SECTION)

    def get_roles_for_user(self, user: str) -> List[str]:
        """Roles reachable from a user through ``g`` rules."""
        edges: Dict[str, List[str]] = {}
        for rule in self.get_grouping_policy():
            if len(rule) >= 2:
                edges.setdefault(rule[0], []).append(rule[1])

        seen: Set[str] = set()
        pending = list(edges.get(user, []))
        roles: List[str] = []
        while pending:
            role = pending.pop(0)
            if role in seen:
                continue
            seen.add(role)
            roles.append(role)
            pending.extend(edges.get(role, []))
        return roles

    def enforce(self, sub: str, obj: str, act: str) -> bool:
        """Allow if a ``p`` rule matches the subject or one of its roles."""
        subjects = {sub, *self.get_roles_for_user(sub)}
        for rule in self.get_policy():
            if len(rule) >= 3 and rule[0] in subjects and rule[1] == obj and rule[2] == act:
                return True
        return False

    def get_engine_stats(self) -> Dict[str, Any]:
        """Get engine statistics."""
        return {
            "total_rules": self.model.count(),
            "rules_by_type": self.model.summary(),
            "auto_save": self.auto_save,
            "auto_notify_watcher": self.auto_notify_watcher
        }
