"""
List-then-watch feed that turns store events into lifecycle events.
"""

import asyncio
from dataclasses import dataclass
from enum import Enum
from typing import TYPE_CHECKING, AsyncIterator, Dict, Generic, List, Optional

from kuberules.app.records.models import T
from kuberules.shared.errors import TransportError, WatchExpiredError
from kuberules.shared.logging import get_logger
from kuberules.shared.retry import RetryConfig
from .backend import RawEventType, RawWatchEvent

if TYPE_CHECKING:
    from .client import StoreClient


class EventKind(str, Enum):
    """Lifecycle event kinds."""
    ADD = "add"
    UPDATE = "update"
    DELETE = "delete"
    SYNCED = "synced"


@dataclass
class WatchEvent(Generic[T]):
    """Lifecycle event for one object, or the snapshot-complete marker."""
    kind: EventKind
    is_initial: bool = False
    old: Optional[T] = None
    new: Optional[T] = None

    @property
    def object(self) -> Optional[T]:
        return self.new if self.new is not None else self.old


class Informer(Generic[T]):
    """Mirrors one scope: initial listing, then incremental changes."""

    def __init__(self,
                 client: "StoreClient[T]",
                 watch_timeout_seconds: Optional[int] = 300,
                 retry_config: Optional[RetryConfig] = None):
        self.client = client
        self.watch_timeout_seconds = watch_timeout_seconds
        self.retry_config = retry_config or RetryConfig(max_attempts=5, base_delay=1.0, max_delay=30.0)
        self.logger = get_logger("kuberules.store.informer")
        self.resource_version: Optional[str] = None
        self._cache: Dict[str, T] = {}

    @property
    def cached(self) -> List[T]:
        return list(self._cache.values())

    async def _list(self, initial: bool) -> List[WatchEvent[T]]:
        listing = await self.client.list_with_version()
        fresh = {item.metadata.name: item for item in listing.items}
        events: List[WatchEvent[T]] = []

        if initial:
            events = [WatchEvent(EventKind.ADD, is_initial=True, new=item) for item in fresh.values()]
        else:
            for name, item in fresh.items():
                known = self._cache.get(name)
                if known is None:
                    events.append(WatchEvent(EventKind.ADD, new=item))
                elif known.metadata.resource_version != item.metadata.resource_version:
                    events.append(WatchEvent(EventKind.UPDATE, old=known, new=item))
            for name, known in self._cache.items():
                if name not in fresh:
                    events.append(WatchEvent(EventKind.DELETE, old=known))

        self._cache = fresh
        self.resource_version = listing.resource_version
        self.logger.debug(
            "Listed scope",
            count=len(fresh),
            resource_version=self.resource_version,
            initial=initial
        )
        return events

    def _apply(self, raw: RawWatchEvent) -> Optional[WatchEvent[T]]:
        metadata = raw.object.get("metadata") or {}
        if metadata.get("resourceVersion"):
            self.resource_version = metadata["resourceVersion"]
        if raw.type == RawEventType.BOOKMARK:
            return None

        obj = self.client.parse(raw.object)
        name = obj.metadata.name
        if raw.type == RawEventType.DELETED:
            self._cache.pop(name, None)
            return WatchEvent(EventKind.DELETE, old=obj)

        known = self._cache.get(name)
        self._cache[name] = obj
        if known is None:
            return WatchEvent(EventKind.ADD, new=obj)
        return WatchEvent(EventKind.UPDATE, old=known, new=obj)

    async def events(self) -> AsyncIterator[WatchEvent[T]]:
        """Yield the initial snapshot, the SYNCED marker, then changes forever.

        Errors from the initial listing propagate immediately. Later transport
        errors are retried with backoff until ``retry_config.max_attempts``
        consecutive failures.
        """
        for event in await self._list(initial=True):
            yield event
        yield WatchEvent(EventKind.SYNCED)

        failures = 0
        needs_relist = False
        while True:
            try:
                if needs_relist:
                    for event in await self._list(initial=False):
                        yield event
                    needs_relist = False

                async for raw in self.client.watch_raw(self.resource_version, self.watch_timeout_seconds):
                    failures = 0
                    event = self._apply(raw)
                    if event is not None:
                        yield event

                self.logger.debug("Watch stream closed, reopening", resource_version=self.resource_version)

            except WatchExpiredError:
                self.logger.info("Watch expired, relisting", resource_version=self.resource_version)
                needs_relist = True

            except TransportError as e:
                failures += 1
                if failures >= self.retry_config.max_attempts:
                    self.logger.error("Watch failed permanently", attempts=failures, error=str(e))
                    raise
                delay = self.retry_config.delay(failures)
                self.logger.warning("Watch failed, retrying", attempt=failures, delay=delay, error=str(e))
                await asyncio.sleep(delay)
