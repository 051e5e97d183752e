"""
Unit tests for the in-memory rule set engine.
"""

from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import CollectorRegistry

from kuberules.app.adapter.adapter import RuleAdapter
from kuberules.app.engine import PolicyEngine, PolicyModel, RuleSetEngine, RuleSetModel
from kuberules.app.records.codec import rule_values
from kuberules.app.store.memory import InMemoryObjectStore
from kuberules.shared.errors import ValidationError
from kuberules.shared.metrics import MetricsCollector


class TestRuleSetModel:
    """Test cases for RuleSetModel."""

    @pytest.fixture
    def model(self):
        """Create empty model."""
        return RuleSetModel()

    def test_add_rule_duplicate(self, model):
        assert model.add_rule("p", "p", ["alice", "data1", "read"]) is True
        assert model.add_rule("p", "p", ["alice", "data1", "read"]) is False
        assert model.count() == 1

    def test_remove_rule_not_found(self, model):
        assert model.remove_rule("p", "p", ["alice"]) is False

    def test_update_rule_keeps_position(self, model):
        model.add_rule("p", "p", ["a"])
        model.add_rule("p", "p", ["b"])
        model.add_rule("p", "p", ["c"])

        assert model.update_rule("p", "p", ["b"], ["B"]) is True
        assert model.get_rules("p", "p") == [["a"], ["B"], ["c"]]
        assert model.update_rule("p", "p", ["missing"], ["x"]) is False

    def test_load_policy_line(self, model):
        model.load_policy_line(["p", "alice", "data1", "read", ""])
        model.load_policy_line(["g2", "data1", "group1"])
        model.load_policy_line([])

        assert model.get_rules("p", "p") == [["alice", "data1", "read"]]
        assert model.rule_sets()["g"] == {"g2": [["data1", "group1"]]}

    def test_remove_filtered_rules(self, model):
        model.add_rule("p", "p", ["alice", "data1", "read"])
        model.add_rule("p", "p", ["bob", "data1", "write"])
        model.add_rule("p", "p", ["bob", "data2", "write"])

        removed = model.remove_filtered_rules("p", "p", 1, "data1")

        assert removed == [["alice", "data1", "read"], ["bob", "data1", "write"]]
        assert model.get_rules("p", "p") == [["bob", "data2", "write"]]

    def test_remove_filtered_rules_whole_ptype(self, model):
        model.add_rule("p", "p", ["alice", "data1", "read"])
        model.add_rule("p", "p", ["bob", "data2", "write"])
        model.add_rule("p", "p2", ["carol", "data3", "read"])

        removed = model.remove_filtered_rules("p", "p", -1, "read")

        assert removed == [["alice", "data1", "read"], ["bob", "data2", "write"]]
        assert model.get_rules("p", "p") == []
        assert model.get_rules("p", "p2") == [["carol", "data3", "read"]]

    def test_remove_filtered_rules_ignores_values_past_last_field(self, model):
        model.add_rule("p", "p", ["a", "b", "c", "d", "e", "f"])
        model.add_rule("p", "p", ["a", "b", "c", "d", "e", "g"])

        removed = model.remove_filtered_rules("p", "p", 5, "f", "beyond")

        assert removed == [["a", "b", "c", "d", "e", "f"]]

    def test_rule_sets_is_a_copy(self, model):
        model.add_rule("p", "p", ["alice"])

        model.rule_sets()["p"]["p"].append(["mallory"])

        assert model.get_rules("p", "p") == [["alice"]]

    def test_satisfies_policy_model(self, model):
        assert isinstance(model, PolicyModel)


class TestRuleSetEngine:
    """Test cases for RuleSetEngine."""

    @pytest.fixture
    def adapter(self):
        """Create adapter over an in-memory store."""
        return RuleAdapter.for_backend(InMemoryObjectStore(), metrics=MetricsCollector(CollectorRegistry()))

    @pytest.fixture
    def engine(self, adapter):
        """Create engine with persistence."""
        return RuleSetEngine(adapter)

    def test_satisfies_policy_engine(self, engine):
        assert isinstance(engine, PolicyEngine)

    @pytest.mark.asyncio
    async def test_add_policy_persists(self, engine, adapter):
        assert await engine.add_policy("alice", "data1", "read") is True
        assert await engine.add_policy("alice", "data1", "read") is False

        fresh = RuleSetEngine(adapter)
        await fresh.load_policy()
        assert fresh.get_policy() == [["alice", "data1", "read"]]

    @pytest.mark.asyncio
    async def test_auto_save_disabled(self, engine, adapter):
        engine.enable_auto_save(False)

        await engine.add_policy("alice", "data1", "read")

        assert engine.has_policy("alice", "data1", "read") is True
        assert await adapter.load_all() == []

    @pytest.mark.asyncio
    async def test_save_policy(self, engine, adapter):
        engine.enable_auto_save(False)
        await engine.add_policy("alice", "data1", "read")
        await engine.add_grouping_policy("bob", "admin")

        await engine.save_policy()

        assert len(await adapter.load_all()) == 2

    @pytest.mark.asyncio
    async def test_remove_policy(self, engine, adapter):
        await engine.add_policy("alice", "data1", "read")

        assert await engine.remove_policy("alice", "data1", "read") is True
        assert await engine.remove_policy("alice", "data1", "read") is False
        assert await adapter.load_all() == []

    @pytest.mark.asyncio
    async def test_remove_filtered_policy(self, engine, adapter):
        await engine.add_named_policies("p", [["alice", "data1", "read"], ["bob", "data2", "write"]])

        assert await engine.remove_filtered_policy(1, "data1") is True
        assert engine.get_policy() == [["bob", "data2", "write"]]
        assert [record.v0 for record in await adapter.load_all()] == ["bob"]

    @pytest.mark.asyncio
    async def test_remove_filtered_policy_whole_ptype_matches_store(self, engine, adapter):
        await engine.add_named_policies("p", [["alice", "data1", "read"], ["bob", "data2", "write"]])
        await engine.add_grouping_policy("alice", "admin")

        assert await engine.remove_filtered_policy(-1, "read") is True

        stored = [rule_values(record) for record in await adapter.load_all() if record.ptype == "p"]
        assert engine.get_policy() == stored == []
        assert engine.get_grouping_policy() == [["alice", "admin"]]

    @pytest.mark.asyncio
    async def test_remove_filtered_policy_rejects_values_outside_window(self, engine, adapter):
        await engine.add_named_policies("p", [["alice", "data1", "read"], ["bob", "data2", "write"]])

        with pytest.raises(ValidationError):
            await engine.remove_filtered_policy(5, "", "x")

        assert len(engine.get_policy()) == 2
        assert len(await adapter.load_all()) == 2

    @pytest.mark.asyncio
    async def test_adapter_failure_leaves_model_unchanged(self):
        adapter = MagicMock()
        adapter.add_policy = AsyncMock(side_effect=RuntimeError("store down"))
        engine = RuleSetEngine(adapter)

        with pytest.raises(RuntimeError):
            await engine.add_policy("alice", "data1", "read")

        assert engine.get_policy() == []

    @pytest.mark.asyncio
    async def test_watcher_notified(self, engine):
        watcher = MagicMock()
        engine.set_watcher(watcher)

        await engine.add_policy("alice", "data1", "read")
        engine.enable_auto_notify_watcher(False)
        await engine.add_policy("bob", "data2", "write")

        watcher.assert_called_once()

    def test_self_mutations_bypass_adapter(self):
        adapter = MagicMock()
        engine = RuleSetEngine(adapter)

        assert engine.self_add_policy("p", "p", ["alice", "data1", "read"]) is True
        assert engine.self_update_policy("p", "p", ["alice", "data1", "read"], ["alice", "data1", "write"]) is True
        assert engine.get_policy() == [["alice", "data1", "write"]]
        assert engine.self_remove_policy("p", "p", ["alice", "data1", "write"]) is True
        assert adapter.method_calls == []

    def test_enforce_with_roles(self):
        engine = RuleSetEngine()
        engine.self_add_policy("p", "p", ["data2_admin", "data2", "read"])
        engine.self_add_policy("p", "p", ["alice", "data1", "read"])
        engine.self_add_policy("g", "g", ["alice", "data2_admin"])

        assert engine.enforce("alice", "data1", "read") is True
        assert engine.enforce("alice", "data2", "read") is True
        assert engine.enforce("bob", "data2", "read") is False
        assert engine.get_roles_for_user("alice") == ["data2_admin"]

    def test_get_engine_stats(self):
        engine = RuleSetEngine()
        engine.self_add_policy("p", "p", ["alice", "data1", "read"])
        engine.self_add_policy("g", "g", ["alice", "admin"])

        stats = engine.get_engine_stats()

        assert stats["total_rules"] == 2
        assert stats["rules_by_type"] == {"p": 1, "g": 1}
