"""
Policy adapter persisting rules as stored Rule objects.
"""

from datetime import datetime
from typing import Dict, List, Optional, Sequence, Tuple

from kuberules.app.engine.interfaces import PolicyModel
from kuberules.app.records.codec import (
    FIELD_COUNT, RuleRecord, canonical_key, from_object, policy_line, project, to_object
)
from kuberules.app.records.models import RuleObject, VALUE_FIELDS
from kuberules.app.store.backend import ObjectStoreBackend, new_rule_registry
from kuberules.app.store.client import StoreClient
from kuberules.app.store.kube import KubeObjectStore
from kuberules.shared.config import DEFAULT_NAMESPACE, StoreConfig
from kuberules.shared.errors import NotFoundError, ValidationError
from kuberules.shared.logging import get_logger, log_duration
from kuberules.shared.metrics import MetricsCollector, get_metrics_collector


def _version_sort_key(resource_version: Optional[str]) -> Tuple[int, int, str]:
    if resource_version and resource_version.isdigit():
        return (0, int(resource_version), "")
    return (1, 0, resource_version or "")


def _load_order(obj: RuleObject) -> Tuple[bool, float, Tuple[int, int, str]]:
    created: Optional[datetime] = obj.metadata.creation_timestamp
    return (
        created is not None,
        created.timestamp() if created is not None else 0.0,
        _version_sort_key(obj.metadata.resource_version)
    )


class RuleAdapter:
    """Loads, saves and incrementally edits rules within one store scope."""

    def __init__(self, client: StoreClient[RuleObject], metrics: Optional[MetricsCollector] = None):
        self.client = client
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger("kuberules.adapter")

    @classmethod
    def for_backend(cls,
                    backend: ObjectStoreBackend,
                    namespace: str = DEFAULT_NAMESPACE,
                    labels: Optional[Dict[str, str]] = None,
                    metrics: Optional[MetricsCollector] = None) -> "RuleAdapter":
        client = StoreClient(backend, new_rule_registry(), RuleObject, namespace=namespace, labels=labels)
        return cls(client, metrics=metrics)

    @classmethod
    def from_config(cls, config: StoreConfig, metrics: Optional[MetricsCollector] = None) -> "RuleAdapter":
        """Adapter against the API server described by ``config``."""
        backend = KubeObjectStore.from_config(config)
        return cls.for_backend(
            backend,
            namespace=config.effective_namespace(),
            labels=config.labels,
            metrics=metrics
        )

    @property
    def namespace(self) -> str:
        return self.client.namespace

    @property
    def labels(self) -> Dict[str, str]:
        return self.client.labels

    def _object_for(self, ptype: str, rule: Sequence[str]) -> RuleObject:
        return to_object(project(ptype, list(rule)), self.namespace, self.labels)

    async def load_all(self) -> List[RuleRecord]:
        """Live records in scope, oldest first."""
        objects = [obj for obj in await self.client.list() if not obj.is_deleting]
        objects.sort(key=_load_order)
        return [from_object(obj) for obj in objects]

    async def load_policy(self, model: PolicyModel) -> None:
        with self.metrics.track_operation("load_policy"), log_duration(self.logger, "load_policy"):
            records = await self.load_all()
            for record in records:
                line = policy_line(record)
                if line:
                    model.load_policy_line(line)
        self.logger.debug("Loaded rules", count=len(records))

    async def save_policy(self, model: PolicyModel) -> None:
        """Replace everything in scope with the model's rules."""
        with self.metrics.track_operation("save_policy"), log_duration(self.logger, "save_policy"):
            await self.client.delete_all()
            for ptypes in model.rule_sets().values():
                for ptype, rules in ptypes.items():
                    for rule in rules:
                        await self.client.create(self._object_for(ptype, rule))

    async def add_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        with self.metrics.track_operation("add_policy"):
            created = await self.client.create(self._object_for(ptype, rule))
        self.logger.debug("Added rule", ptype=ptype, rule=list(rule), created=created)

    async def add_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> None:
        with self.metrics.track_operation("add_policies"):
            for rule in rules:
                await self.client.create(self._object_for(ptype, rule))

    async def _remove(self, ptype: str, rule: Sequence[str]) -> None:
        name = canonical_key(project(ptype, list(rule)), self.labels)
        try:
            obj = await self.client.get(name)
        except NotFoundError:
            return
        await self.client.delete(obj)

    async def remove_policy(self, sec: str, ptype: str, rule: Sequence[str]) -> None:
        with self.metrics.track_operation("remove_policy"):
            await self._remove(ptype, rule)
        self.logger.debug("Removed rule", ptype=ptype, rule=list(rule))

    async def remove_policies(self, sec: str, ptype: str, rules: Sequence[Sequence[str]]) -> None:
        with self.metrics.track_operation("remove_policies"):
            for rule in rules:
                await self._remove(ptype, rule)

    async def remove_filtered_policy(self, sec: str, ptype: str, field_index: int, *field_values: str) -> None:
        """Delete rules of ``ptype`` whose values match from ``field_index`` on.

        Empty filter values match anything. ``field_index == -1`` removes
        every rule of ``ptype``.
        """
        fields = {"spec.ptype": ptype}
        if field_index != -1:
            if not 0 <= field_index < FIELD_COUNT:
                raise ValidationError(
                    f"field_index must be between 0 and {FIELD_COUNT - 1}",
                    details={"field_index": field_index}
                )
            window = field_values[:FIELD_COUNT - field_index]
            if not any(window):
                raise ValidationError(
                    "at least one non-empty field value is required",
                    details={"field_index": field_index, "field_values": list(field_values)}
                )
            for offset, value in enumerate(window):
                if value:
                    fields[f"spec.{VALUE_FIELDS[field_index + offset]}"] = value

        with self.metrics.track_operation("remove_filtered_policy"):
            await self.client.delete_matching(fields)
        self.logger.debug("Removed filtered rules", selector=fields)

    async def close(self) -> None:
        await self.client.close()
