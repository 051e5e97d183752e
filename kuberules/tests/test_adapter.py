"""
Unit tests for the rule storage adapter.
"""

import random
from datetime import datetime, timedelta, timezone
from unittest.mock import AsyncMock, MagicMock

import pytest
from prometheus_client import CollectorRegistry

from kuberules.app.adapter.adapter import RuleAdapter
from kuberules.app.engine.model import RuleSetModel
from kuberules.app.records.codec import RuleRecord, canonical_key, project
from kuberules.app.store.backend import ListResult
from kuberules.app.store.memory import InMemoryObjectStore
from kuberules.shared.errors import TransportError, ValidationError
from kuberules.shared.metrics import MetricsCollector


class ShufflingObjectStore(InMemoryObjectStore):
    """Returns listings in a random order."""

    def __init__(self, seed: int = 7, **kwargs):
        super().__init__(**kwargs)
        self.random = random.Random(seed)

    async def list(self, kind, namespace, labels=None) -> ListResult:
        result = await super().list(kind, namespace, labels)
        self.random.shuffle(result.items)
        return result


class TestRuleAdapter:
    """Test cases for RuleAdapter."""

    @pytest.fixture
    def registry(self):
        """Create isolated metrics registry."""
        return CollectorRegistry()

    @pytest.fixture
    def backend(self):
        """Create in-memory backend."""
        return InMemoryObjectStore()

    @pytest.fixture
    def adapter(self, backend, registry):
        """Create adapter over the default scope."""
        return RuleAdapter.for_backend(backend, metrics=MetricsCollector(registry))

    @pytest.fixture
    def sample_rules(self):
        """Policy rules used by the filtered delete cases."""
        return [
            ["alice", "data1", "read"],
            ["bob", "data2", "write"],
            ["data2_admin", "data2", "read"],
            ["data2_admin", "data2", "write"],
        ]

    async def _rules(self, adapter):
        model = RuleSetModel()
        await adapter.load_policy(model)
        return model.get_rules("p", "p")

    @pytest.mark.asyncio
    async def test_add_and_load(self, adapter):
        await adapter.add_policy("p", "p", ["alice", "data1", "read"])
        await adapter.add_policy("g", "g", ["alice", "admin"])

        model = RuleSetModel()
        await adapter.load_policy(model)

        assert model.get_rules("p", "p") == [["alice", "data1", "read"]]
        assert model.get_rules("g", "g") == [["alice", "admin"]]

    @pytest.mark.asyncio
    async def test_add_is_idempotent(self, adapter):
        await adapter.add_policy("p", "p", ["alice", "data1", "read"])
        await adapter.add_policy("p", "p", ["alice", "data1", "read"])

        assert len(await adapter.client.list()) == 1

    @pytest.mark.asyncio
    async def test_object_named_by_canonical_key(self, adapter):
        await adapter.add_policy("p", "p", ["alice", "data1", "read"])

        objects = await adapter.client.list()

        assert objects[0].name == canonical_key(project("p", ["alice", "data1", "read"]))

    @pytest.mark.asyncio
    async def test_remove_policy(self, adapter):
        await adapter.add_policies("p", "p", [["alice", "data1", "read"], ["bob", "data2", "write"]])

        await adapter.remove_policy("p", "p", ["alice", "data1", "read"])

        assert await self._rules(adapter) == [["bob", "data2", "write"]]

    @pytest.mark.asyncio
    async def test_remove_missing_is_success(self, adapter):
        await adapter.remove_policy("p", "p", ["nobody", "nothing", "never"])
        await adapter.remove_policies("p", "p", [["a"], ["b"]])

    @pytest.mark.asyncio
    async def test_remove_policies(self, adapter, sample_rules):
        await adapter.add_policies("p", "p", sample_rules)

        await adapter.remove_policies("p", "p", sample_rules[:2])

        assert sorted(await self._rules(adapter)) == sorted(sample_rules[2:])

    @pytest.mark.asyncio
    async def test_interior_empty_values_survive(self, adapter):
        await adapter.add_policy("p", "p", ["alice", "", "read"])

        assert await self._rules(adapter) == [["alice", "", "read"]]

    @pytest.mark.asyncio
    async def test_remove_filtered_policy_by_object(self, adapter, sample_rules):
        await adapter.add_policies("p", "p", sample_rules)

        await adapter.remove_filtered_policy("p", "p", 1, "data1")

        assert sorted(await self._rules(adapter)) == sorted(sample_rules[1:])

    @pytest.mark.asyncio
    async def test_remove_filtered_policy_empty_value_is_wildcard(self, adapter, sample_rules):
        await adapter.add_policies("p", "p", sample_rules)

        await adapter.remove_filtered_policy("p", "p", 0, "data2_admin", "", "write")

        assert sorted(await self._rules(adapter)) == sorted(sample_rules[:3])

    @pytest.mark.asyncio
    async def test_remove_filtered_policy_keeps_other_ptypes(self, adapter):
        await adapter.add_policy("p", "p", ["alice", "data1", "read"])
        await adapter.add_policy("g", "g", ["alice", "data1"])

        await adapter.remove_filtered_policy("p", "p", 0, "alice")

        model = RuleSetModel()
        await adapter.load_policy(model)
        assert model.get_rules("p", "p") == []
        assert model.get_rules("g", "g") == [["alice", "data1"]]

    @pytest.mark.asyncio
    async def test_remove_filtered_policy_whole_ptype(self, adapter, sample_rules):
        await adapter.add_policies("p", "p", sample_rules)
        await adapter.add_policy("g", "g", ["alice", "admin"])

        await adapter.remove_filtered_policy("p", "p", -1)

        model = RuleSetModel()
        await adapter.load_policy(model)
        assert model.get_rules("p", "p") == []
        assert model.get_rules("g", "g") == [["alice", "admin"]]

    @pytest.mark.asyncio
    async def test_remove_filtered_policy_builds_single_selector(self):
        client = MagicMock()
        client.delete_matching = AsyncMock()
        adapter = RuleAdapter(client, metrics=MetricsCollector(CollectorRegistry()))

        await adapter.remove_filtered_policy("p", "p", 1, "data1", "", "x", "y", "z", "beyond")

        client.delete_matching.assert_awaited_once_with({
            "spec.ptype": "p",
            "spec.v1": "data1",
            "spec.v3": "x",
            "spec.v4": "y",
            "spec.v5": "z",
        })

    @pytest.mark.asyncio
    @pytest.mark.parametrize("field_index,values", [
        (0, ()),
        (1, ("", "")),
        (6, ("alice",)),
        (-2, ("alice",)),
        (5, ("", "x")),
    ])
    async def test_remove_filtered_policy_validation(self, field_index, values):
        client = MagicMock()
        client.delete_matching = AsyncMock()
        adapter = RuleAdapter(client, metrics=MetricsCollector(CollectorRegistry()))

        with pytest.raises(ValidationError):
            await adapter.remove_filtered_policy("p", "p", field_index, *values)

        client.delete_matching.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_save_policy_replaces_scope(self, adapter):
        await adapter.add_policy("p", "p", ["stale", "data", "read"])
        model = RuleSetModel()
        model.add_rule("p", "p", ["alice", "data1", "read"])
        model.add_rule("g", "g", ["alice", "admin"])
        model.add_rule("g", "g2", ["data1", "group1"])

        await adapter.save_policy(model)

        records = await adapter.load_all()
        assert sorted(record.fields for record in records) == sorted([
            RuleRecord("p", "alice", "data1", "read").fields,
            RuleRecord("g", "alice", "admin").fields,
            RuleRecord("g2", "data1", "group1").fields,
        ])

    @pytest.mark.asyncio
    async def test_save_policy_stops_at_first_error(self):
        client = MagicMock()
        client.delete_all = AsyncMock()
        client.create = AsyncMock(side_effect=TransportError("forbidden"))
        client.namespace = "default"
        client.labels = {}
        adapter = RuleAdapter(client, metrics=MetricsCollector(CollectorRegistry()))
        model = RuleSetModel()
        model.add_rule("p", "p", ["alice", "data1", "read"])
        model.add_rule("p", "p", ["bob", "data2", "write"])

        with pytest.raises(TransportError):
            await adapter.save_policy(model)

        assert client.create.await_count == 1

    @pytest.mark.asyncio
    async def test_load_order_follows_creation(self):
        start = datetime(2024, 1, 1, tzinfo=timezone.utc)
        ticks = iter(range(1000))
        backend = ShufflingObjectStore(clock=lambda: start + timedelta(seconds=next(ticks)))
        adapter = RuleAdapter.for_backend(backend, metrics=MetricsCollector(CollectorRegistry()))
        rules = [[f"user{i}", f"data{i}", "read"] for i in range(15)]

        for rule in rules:
            await adapter.add_policy("p", "p", rule)

        assert await self._rules(adapter) == rules
        assert await self._rules(adapter) == rules

    @pytest.mark.asyncio
    async def test_load_order_ties_broken_by_resource_version(self):
        same_instant = datetime(2024, 1, 1, tzinfo=timezone.utc)
        backend = ShufflingObjectStore(seed=3, clock=lambda: same_instant)
        adapter = RuleAdapter.for_backend(backend, metrics=MetricsCollector(CollectorRegistry()))
        rules = [[f"user{i}", "data", "read"] for i in range(12)]

        for rule in rules:
            await adapter.add_policy("p", "p", rule)

        assert await self._rules(adapter) == rules

    @pytest.mark.asyncio
    async def test_soft_deleted_objects_are_not_loaded(self, backend, adapter):
        await adapter.add_policy("p", "p", ["alice", "data1", "read"])
        await adapter.add_policy("p", "p", ["bob", "data2", "write"])
        name = canonical_key(project("p", ["alice", "data1", "read"]))
        stored = await backend.get(adapter.client.kind, "default", name)
        stored["metadata"]["finalizers"] = ["example.com/hold"]
        await backend.replace(adapter.client.kind, "default", stored)
        await backend.delete(adapter.client.kind, "default", name)

        assert await self._rules(adapter) == [["bob", "data2", "write"]]

    @pytest.mark.asyncio
    async def test_scopes_are_isolated(self, backend, registry):
        metrics = MetricsCollector(registry)
        first = RuleAdapter.for_backend(backend, labels={"app": "a"}, metrics=metrics)
        second = RuleAdapter.for_backend(backend, labels={"app": "b"}, metrics=metrics)
        other_ns = RuleAdapter.for_backend(backend, namespace="other", metrics=metrics)

        await first.add_policy("p", "p", ["alice", "data1", "read"])
        await second.add_policy("p", "p", ["alice", "data1", "read"])
        await other_ns.add_policy("p", "p", ["bob", "data2", "write"])
        await first.remove_policy("p", "p", ["alice", "data1", "read"])

        assert await self._rules(first) == []
        assert await self._rules(second) == [["alice", "data1", "read"]]
        assert await self._rules(other_ns) == [["bob", "data2", "write"]]

    @pytest.mark.asyncio
    async def test_transport_error_propagates(self):
        client = MagicMock()
        client.list = AsyncMock(side_effect=TransportError("unreachable"))
        adapter = RuleAdapter(client, metrics=MetricsCollector(CollectorRegistry()))

        with pytest.raises(TransportError):
            await adapter.load_policy(RuleSetModel())

    @pytest.mark.asyncio
    async def test_operations_are_counted(self, adapter, registry):
        await adapter.add_policy("p", "p", ["alice", "data1", "read"])

        value = registry.get_sample_value(
            "rule_store_operations_total",
            {"operation": "add_policy", "status": "ok"}
        )
        assert value == 1.0
