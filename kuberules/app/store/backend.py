"""
Capability interface of the backing object store.
"""

from abc import ABC, abstractmethod
from dataclasses import dataclass, field
from enum import Enum
from typing import Any, AsyncIterator, Dict, Generic, List, Optional, Type

from kuberules.app.records.models import ObjectList, RuleObject, T
from kuberules.app.records.models import RULE_GROUP, RULE_VERSION, RULE_KIND


@dataclass(frozen=True)
class ResourceKind(Generic[T]):
    """Describes one object kind and how to instantiate it."""
    group: str
    version: str
    kind: str
    plural: str
    model: Type[T]

    @property
    def api_version(self) -> str:
        if not self.group:
            return self.version
        return f"{self.group}/{self.version}"

    def new(self) -> T:
        """Empty instance of the kind."""
        return self.model()

    def new_list(self) -> ObjectList[T]:
        """Empty typed list of the kind."""
        return ObjectList[self.model]()

    def parse(self, data: Dict[str, Any]) -> T:
        data = dict(data)
        data.setdefault("apiVersion", self.api_version)
        data.setdefault("kind", self.kind)
        return self.model.model_validate(data)


class KindRegistry:
    """Explicit registry of the object kinds a client may handle."""

    def __init__(self):
        self._by_model: Dict[type, ResourceKind] = {}
        self._by_name: Dict[tuple, ResourceKind] = {}

    def register(self, kind: ResourceKind) -> None:
        self._by_model[kind.model] = kind
        self._by_name[(kind.api_version, kind.kind)] = kind

    def kind_for(self, model: Type[T]) -> ResourceKind[T]:
        """Descriptor registered for a model type."""
        try:
            return self._by_model[model]
        except KeyError:
            raise LookupError(f"Kind not registered for model {model.__name__}") from None

    def lookup(self, api_version: str, kind: str) -> ResourceKind:
        try:
            return self._by_name[(api_version, kind)]
        except KeyError:
            raise LookupError(f"Kind not registered: {api_version}/{kind}") from None


RULES = ResourceKind(
    group=RULE_GROUP,
    version=RULE_VERSION,
    kind=RULE_KIND,
    plural="rules",
    model=RuleObject
)


def new_rule_registry() -> KindRegistry:
    """Registry holding the rule kind."""
    registry = KindRegistry()
    registry.register(RULES)
    return registry


class RawEventType(str, Enum):
    """Event types emitted by a store watch."""
    ADDED = "ADDED"
    MODIFIED = "MODIFIED"
    DELETED = "DELETED"
    BOOKMARK = "BOOKMARK"


@dataclass
class RawWatchEvent:
    """A single store watch event carrying the object's wire form."""
    type: RawEventType
    object: Dict[str, Any]


@dataclass
class ListResult:
    """Wire-form listing plus the version it was read at."""
    items: List[Dict[str, Any]] = field(default_factory=list)
    resource_version: Optional[str] = None


class ObjectStoreBackend(ABC):
    """Create/get/list/delete/watch of named objects in a namespace.

    Implementations raise ``NotFoundError``, ``AlreadyExistsError``,
    ``WatchExpiredError`` and ``TransportError`` from
    ``kuberules.shared.errors``.
    """

    @abstractmethod
    async def create(self, kind: ResourceKind, namespace: str, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """Create an object; returns the stored form."""

    @abstractmethod
    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        """Fetch one object by name."""

    @abstractmethod
    async def list(self, kind: ResourceKind, namespace: str,
                   labels: Optional[Dict[str, str]] = None) -> ListResult:
        """List objects matching an equality label selector."""

    @abstractmethod
    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        """Delete one object immediately."""

    @abstractmethod
    async def delete_collection(self, kind: ResourceKind, namespace: str,
                                labels: Optional[Dict[str, str]] = None,
                                fields: Optional[Dict[str, str]] = None) -> None:
        """Delete every object matching label and field selectors."""

    @abstractmethod
    def watch(self, kind: ResourceKind, namespace: str,
              labels: Optional[Dict[str, str]] = None,
              resource_version: Optional[str] = None,
              timeout_seconds: Optional[int] = None) -> AsyncIterator[RawWatchEvent]:
        """Stream changes after ``resource_version`` until the timeout elapses."""

    async def close(self) -> None:
        """Release transport resources."""
        return None


def matches_labels(labels: Optional[Dict[str, str]], selector: Optional[Dict[str, str]]) -> bool:
    """Equality label selector match."""
    if not selector:
        return True
    labels = labels or {}
    return all(labels.get(key) == value for key, value in selector.items())


def matches_fields(obj: Dict[str, Any], selector: Optional[Dict[str, str]]) -> bool:
    """Equality field selector match over dotted paths."""
    if not selector:
        return True
    for path, expected in selector.items():
        value: Any = obj
        for part in path.split("."):
            value = value.get(part) if isinstance(value, dict) else None
        if (value if value is not None else "") != expected:
            return False
    return True
