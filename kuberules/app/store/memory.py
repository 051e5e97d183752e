"""
In-memory object store with list/watch semantics.

Objects are kept per (kind, namespace) in wire form. Every mutation bumps a
global resource version and is appended to a bounded event history, which
lets watchers resume from an older version until it is compacted away.
"""

import asyncio
import copy
import uuid
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, AsyncIterator, Callable, Dict, List, Optional, Tuple

from kuberules.shared.errors import AlreadyExistsError, NotFoundError, ValidationError, WatchExpiredError
from kuberules.shared.logging import get_logger
from .backend import (
    ListResult, ObjectStoreBackend, RawEventType, RawWatchEvent, ResourceKind,
    matches_fields, matches_labels
)


def _format_timestamp(value: datetime) -> str:
    return value.astimezone(timezone.utc).isoformat().replace("+00:00", "Z")


@dataclass
class _Watcher:
    bucket: Tuple[str, str]
    labels: Optional[Dict[str, str]]
    queue: "asyncio.Queue[RawWatchEvent]" = field(default_factory=asyncio.Queue)


class InMemoryObjectStore(ObjectStoreBackend):
    """Process-local store backend."""

    def __init__(self,
                 clock: Optional[Callable[[], datetime]] = None,
                 history_limit: int = 1000):
        self.logger = get_logger("kuberules.store.memory")
        self._clock = clock or (lambda: datetime.now(timezone.utc))
        self._history_limit = history_limit
        self._objects: Dict[Tuple[str, str], Dict[str, Dict[str, Any]]] = {}
        self._history: List[Tuple[int, Tuple[str, str], RawWatchEvent]] = []
        self._watchers: List[_Watcher] = []
        self._resource_version = 0
        self._compacted_version = 0

    @staticmethod
    def _bucket(kind: ResourceKind, namespace: str) -> Tuple[str, str]:
        return (f"{kind.api_version}/{kind.plural}", namespace)

    def _next_version(self) -> str:
        self._resource_version += 1
        return str(self._resource_version)

    def _emit(self, bucket: Tuple[str, str], event_type: RawEventType, obj: Dict[str, Any]):
        event = RawWatchEvent(event_type, copy.deepcopy(obj))
        self._history.append((self._resource_version, bucket, event))
        if len(self._history) > self._history_limit:
            dropped = self._history[: len(self._history) - self._history_limit]
            self._history = self._history[len(dropped):]
            self._compacted_version = dropped[-1][0]

        for watcher in self._watchers:
            if watcher.bucket == bucket and matches_labels(obj["metadata"].get("labels"), watcher.labels):
                watcher.queue.put_nowait(RawWatchEvent(event_type, copy.deepcopy(obj)))

    def compact(self) -> None:
        """Forget the event history; older watch versions expire."""
        self._history.clear()
        self._compacted_version = self._resource_version

    async def create(self, kind: ResourceKind, namespace: str, manifest: Dict[str, Any]) -> Dict[str, Any]:
        obj = copy.deepcopy(manifest)
        metadata = obj.setdefault("metadata", {})
        name = metadata.get("name")
        if not name:
            raise ValidationError("metadata.name is required")

        objects = self._objects.setdefault(self._bucket(kind, namespace), {})
        if name in objects:
            raise AlreadyExistsError(name)

        metadata["namespace"] = namespace
        metadata["uid"] = str(uuid.uuid4())
        metadata["creationTimestamp"] = _format_timestamp(self._clock())
        metadata["resourceVersion"] = self._next_version()
        metadata.pop("deletionTimestamp", None)
        obj.setdefault("apiVersion", kind.api_version)
        obj.setdefault("kind", kind.kind)

        objects[name] = obj
        self._emit(self._bucket(kind, namespace), RawEventType.ADDED, obj)
        return copy.deepcopy(obj)

    async def get(self, kind: ResourceKind, namespace: str, name: str) -> Dict[str, Any]:
        objects = self._objects.get(self._bucket(kind, namespace), {})
        if name not in objects:
            raise NotFoundError(name)
        return copy.deepcopy(objects[name])

    async def list(self, kind: ResourceKind, namespace: str,
                   labels: Optional[Dict[str, str]] = None) -> ListResult:
        objects = self._objects.get(self._bucket(kind, namespace), {})
        items = [
            copy.deepcopy(objects[name])
            for name in sorted(objects)
            if matches_labels(objects[name]["metadata"].get("labels"), labels)
        ]
        return ListResult(items=items, resource_version=str(self._resource_version))

    async def replace(self, kind: ResourceKind, namespace: str, manifest: Dict[str, Any]) -> Dict[str, Any]:
        """Overwrite an existing object, keeping store-managed metadata."""
        name = manifest.get("metadata", {}).get("name", "")
        bucket = self._bucket(kind, namespace)
        objects = self._objects.get(bucket, {})
        if name not in objects:
            raise NotFoundError(name)

        current = objects[name]
        obj = copy.deepcopy(manifest)
        metadata = obj.setdefault("metadata", {})
        for managed in ("namespace", "uid", "creationTimestamp", "deletionTimestamp"):
            if managed in current["metadata"]:
                metadata[managed] = current["metadata"][managed]
        metadata["resourceVersion"] = self._next_version()

        if metadata.get("deletionTimestamp") and not metadata.get("finalizers"):
            del objects[name]
            self._emit(bucket, RawEventType.DELETED, obj)
        else:
            objects[name] = obj
            self._emit(bucket, RawEventType.MODIFIED, obj)
        return copy.deepcopy(obj)

    def _delete_object(self, bucket: Tuple[str, str], name: str) -> None:
        objects = self._objects[bucket]
        obj = objects[name]
        metadata = obj["metadata"]

        if metadata.get("finalizers"):
            if metadata.get("deletionTimestamp"):
                return
            metadata["deletionTimestamp"] = _format_timestamp(self._clock())
            metadata["resourceVersion"] = self._next_version()
            self._emit(bucket, RawEventType.MODIFIED, obj)
            return

        del objects[name]
        metadata["resourceVersion"] = self._next_version()
        self._emit(bucket, RawEventType.DELETED, obj)

    async def delete(self, kind: ResourceKind, namespace: str, name: str) -> None:
        bucket = self._bucket(kind, namespace)
        if name not in self._objects.get(bucket, {}):
            raise NotFoundError(name)
        self._delete_object(bucket, name)

    async def delete_collection(self, kind: ResourceKind, namespace: str,
                                labels: Optional[Dict[str, str]] = None,
                                fields: Optional[Dict[str, str]] = None) -> None:
        bucket = self._bucket(kind, namespace)
        objects = self._objects.get(bucket, {})
        names = [
            name for name, obj in objects.items()
            if matches_labels(obj["metadata"].get("labels"), labels) and matches_fields(obj, fields)
        ]
        for name in names:
            self._delete_object(bucket, name)
        self.logger.debug("Deleted collection", bucket=bucket, count=len(names))

    async def watch(self, kind: ResourceKind, namespace: str,
                    labels: Optional[Dict[str, str]] = None,
                    resource_version: Optional[str] = None,
                    timeout_seconds: Optional[int] = None) -> AsyncIterator[RawWatchEvent]:
        bucket = self._bucket(kind, namespace)
        since = int(resource_version) if resource_version else self._resource_version
        if since < self._compacted_version:
            raise WatchExpiredError(resource_version)

        # Replay and registration happen without yielding to the loop, so no
        # mutation can fall between them.
        backlog = [
            RawWatchEvent(event.type, copy.deepcopy(event.object))
            for version, event_bucket, event in self._history
            if version > since and event_bucket == bucket
            and matches_labels(event.object["metadata"].get("labels"), labels)
        ]
        watcher = _Watcher(bucket=bucket, labels=dict(labels) if labels else None)
        self._watchers.append(watcher)

        loop = asyncio.get_running_loop()
        deadline = loop.time() + timeout_seconds if timeout_seconds else None
        try:
            for event in backlog:
                yield event
            while True:
                if deadline is None:
                    event = await watcher.queue.get()
                else:
                    remaining = deadline - loop.time()
                    if remaining <= 0:
                        return
                    try:
                        event = await asyncio.wait_for(watcher.queue.get(), remaining)
                    except asyncio.TimeoutError:
                        return
                yield event
        finally:
            self._watchers.remove(watcher)
