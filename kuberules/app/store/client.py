"""
Scoped store client, generic over one object kind.
"""

from typing import AsyncIterator, Dict, Generic, List, Optional, Type

from kuberules.app.records.models import ObjectList, T
from kuberules.shared.config import DEFAULT_NAMESPACE
from kuberules.shared.errors import AlreadyExistsError, NotFoundError
from kuberules.shared.logging import get_logger
from kuberules.shared.retry import RetryConfig
from .backend import KindRegistry, ObjectStoreBackend, RawWatchEvent, ResourceKind
from .informer import Informer


class StoreClient(Generic[T]):
    """Create/get/list/delete/watch within one (namespace, labels) scope."""

    def __init__(self,
                 backend: ObjectStoreBackend,
                 registry: KindRegistry,
                 model: Type[T],
                 namespace: str = DEFAULT_NAMESPACE,
                 labels: Optional[Dict[str, str]] = None):
        self.backend = backend
        self.kind: ResourceKind[T] = registry.kind_for(model)
        self.namespace = namespace or DEFAULT_NAMESPACE
        self.labels: Dict[str, str] = dict(labels or {})
        self.logger = get_logger("kuberules.store.client")

    def new(self) -> T:
        return self.kind.new()

    def parse(self, data) -> T:
        return self.kind.parse(data)

    async def create(self, obj: T) -> bool:
        """Create an object; an existing object with the same name counts as success."""
        if not obj.metadata.namespace:
            obj.metadata.namespace = self.namespace
        if self.labels:
            obj.metadata.labels = {**(obj.metadata.labels or {}), **self.labels}
        try:
            await self.backend.create(self.kind, obj.metadata.namespace, obj.to_manifest())
            return True
        except AlreadyExistsError:
            self.logger.debug("Object already exists", name=obj.metadata.name)
            return False

    async def get(self, name: str) -> T:
        """Fetch an object by name; raises NotFoundError."""
        data = await self.backend.get(self.kind, self.namespace, name)
        return self.parse(data)

    async def list_with_version(self) -> ObjectList[T]:
        result = await self.backend.list(self.kind, self.namespace, labels=self.labels or None)
        listing = self.kind.new_list()
        listing.items = [self.parse(item) for item in result.items]
        listing.resource_version = result.resource_version
        return listing

    async def list(self) -> List[T]:
        """All objects in scope."""
        listing = await self.list_with_version()
        return listing.items

    async def delete(self, obj: T) -> bool:
        """Delete an object; an absent object counts as success."""
        namespace = obj.metadata.namespace or self.namespace
        try:
            await self.backend.delete(self.kind, namespace, obj.metadata.name)
            return True
        except NotFoundError:
            self.logger.debug("Object already deleted", name=obj.metadata.name)
            return False

    async def delete_all(self) -> None:
        """Delete every object in scope."""
        try:
            await self.backend.delete_collection(self.kind, self.namespace, labels=self.labels or None)
        except NotFoundError:
            pass

    async def delete_matching(self, fields: Dict[str, str]) -> None:
        """Delete every object in scope whose fields equal the given values."""
        try:
            await self.backend.delete_collection(
                self.kind,
                self.namespace,
                labels=self.labels or None,
                fields=fields or None
            )
        except NotFoundError:
            pass

    def watch_raw(self,
                  resource_version: Optional[str] = None,
                  timeout_seconds: Optional[int] = None) -> AsyncIterator[RawWatchEvent]:
        return self.backend.watch(
            self.kind,
            self.namespace,
            labels=self.labels or None,
            resource_version=resource_version,
            timeout_seconds=timeout_seconds
        )

    def watch(self,
              watch_timeout_seconds: Optional[int] = 300,
              retry_config: Optional[RetryConfig] = None) -> Informer[T]:
        """Informer feed over the same scope."""
        return Informer(self, watch_timeout_seconds=watch_timeout_seconds, retry_config=retry_config)

    async def close(self) -> None:
        await self.backend.close()
