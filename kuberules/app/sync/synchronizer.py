"""
Watch-driven synchronizer mirroring stored rules into a live engine.
"""

import asyncio
from abc import ABC, abstractmethod
from enum import Enum
from typing import Dict, Optional

from kuberules.app.engine.interfaces import PolicyEngine
from kuberules.app.records.codec import policy_params
from kuberules.app.records.models import RuleObject
from kuberules.app.store.backend import ObjectStoreBackend, new_rule_registry
from kuberules.app.store.client import StoreClient
from kuberules.app.store.informer import EventKind, Informer, WatchEvent
from kuberules.app.store.kube import KubeObjectStore
from kuberules.shared.config import DEFAULT_NAMESPACE, SynchronizerConfig
from kuberules.shared.errors import SyncBarrierTimeout, SyncCancelled, SynchronizerStateError
from kuberules.shared.logging import get_logger, set_scope_context
from kuberules.shared.metrics import MetricsCollector, get_metrics_collector
from kuberules.shared.retry import RetryConfig


class SyncState(str, Enum):
    """Synchronizer lifecycle states."""
    CREATED = "created"
    STARTING = "starting"
    SYNCING = "syncing"
    SYNCED = "synced"
    STOPPED = "stopped"


class RuleEventHandler(ABC):
    """Observer applying rule lifecycle events to an engine."""

    @abstractmethod
    def on_add(self, engine: PolicyEngine, obj: RuleObject, is_initial: bool) -> None:
        pass

    @abstractmethod
    def on_update(self, engine: PolicyEngine, old: RuleObject, new: RuleObject) -> None:
        pass

    @abstractmethod
    def on_delete(self, engine: PolicyEngine, obj: RuleObject) -> None:
        pass


class EngineMirrorHandler(RuleEventHandler):
    """Mirrors events through the engine's self-mutation calls."""

    def on_add(self, engine: PolicyEngine, obj: RuleObject, is_initial: bool) -> None:
        if obj.is_deleting:
            return
        sec, ptype, rule = policy_params(obj)
        if ptype:
            engine.self_add_policy(sec, ptype, rule)

    def on_update(self, engine: PolicyEngine, old: RuleObject, new: RuleObject) -> None:
        old_sec, old_ptype, old_rule = policy_params(old)
        if new.is_deleting:
            if old_ptype:
                engine.self_remove_policy(old_sec, old_ptype, old_rule)
            return

        sec, ptype, rule = policy_params(new)
        if not ptype:
            return
        if old_ptype != ptype:
            if old_ptype:
                engine.self_remove_policy(old_sec, old_ptype, old_rule)
            engine.self_add_policy(sec, ptype, rule)
        elif not engine.self_update_policy(sec, ptype, old_rule, rule):
            engine.self_add_policy(sec, ptype, rule)

    def on_delete(self, engine: PolicyEngine, obj: RuleObject) -> None:
        sec, ptype, rule = policy_params(obj)
        if ptype:
            engine.self_remove_policy(sec, ptype, rule)


class RuleSynchronizer:
    """Keeps one engine's rules in step with one store scope."""

    def __init__(self,
                 engine: PolicyEngine,
                 client: StoreClient[RuleObject],
                 handler: Optional[RuleEventHandler] = None,
                 sync_timeout: float = 30.0,
                 skip_disable_auto: bool = False,
                 watch_timeout_seconds: Optional[int] = 300,
                 retry_config: Optional[RetryConfig] = None,
                 metrics: Optional[MetricsCollector] = None):
        self.engine = engine
        self.client = client
        self.handler = handler or EngineMirrorHandler()
        self.sync_timeout = sync_timeout
        self.watch_timeout_seconds = watch_timeout_seconds
        self.retry_config = retry_config
        self.metrics = metrics or get_metrics_collector()
        self.logger = get_logger("kuberules.sync")

        self._state = SyncState.CREATED
        self.metrics.record_state_transition(None, self._state.value)
        self._synced = asyncio.Event()
        self._stop_requested = asyncio.Event()
        self._task: Optional[asyncio.Task] = None

        if not skip_disable_auto:
            engine.enable_auto_save(False)
            engine.enable_auto_notify_watcher(False)

    @classmethod
    def for_backend(cls,
                    engine: PolicyEngine,
                    backend: ObjectStoreBackend,
                    namespace: str = DEFAULT_NAMESPACE,
                    labels: Optional[Dict[str, str]] = None,
                    **kwargs) -> "RuleSynchronizer":
        client = StoreClient(backend, new_rule_registry(), RuleObject, namespace=namespace, labels=labels)
        return cls(engine, client, **kwargs)

    @classmethod
    def from_config(cls,
                    engine: PolicyEngine,
                    config: SynchronizerConfig,
                    handler: Optional[RuleEventHandler] = None,
                    metrics: Optional[MetricsCollector] = None) -> "RuleSynchronizer":
        """Synchronizer against the API server described by ``config``."""
        return cls.for_backend(
            engine,
            KubeObjectStore.from_config(config),
            namespace=config.effective_namespace(),
            labels=config.labels,
            handler=handler,
            sync_timeout=config.sync_timeout,
            skip_disable_auto=config.skip_disable_auto,
            watch_timeout_seconds=config.watch_timeout_seconds,
            retry_config=RetryConfig(
                max_attempts=config.watch_max_attempts,
                base_delay=config.watch_base_delay,
                max_delay=30.0
            ),
            metrics=metrics
        )

    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def done(self) -> bool:
        if self._task is None:
            return self._state == SyncState.STOPPED
        return self._task.done()

    def _set_state(self, state: SyncState) -> None:
        if self._state == state or self._state == SyncState.STOPPED:
            return
        self.metrics.record_state_transition(self._state.value, state.value)
        self.logger.info("Synchronizer state changed", old_state=self._state.value, new_state=state.value)
        self._state = state

    async def start(self) -> None:
        """Start the feed and block until the initial snapshot is applied."""
        if self._state != SyncState.CREATED:
            raise SynchronizerStateError(f"Cannot start synchronizer in state {self._state.value}")

        self._set_state(SyncState.STARTING)
        informer = self.client.watch(self.watch_timeout_seconds, self.retry_config)
        self._task = asyncio.create_task(self._run(informer))
        self._task.add_done_callback(self._on_feed_done)

        synced_wait = asyncio.ensure_future(self._synced.wait())
        stop_wait = asyncio.ensure_future(self._stop_requested.wait())
        try:
            await asyncio.wait(
                {synced_wait, stop_wait, self._task},
                timeout=self.sync_timeout,
                return_when=asyncio.FIRST_COMPLETED
            )
        except asyncio.CancelledError:
            await self._shutdown()
            raise
        finally:
            synced_wait.cancel()
            stop_wait.cancel()

        if self._synced.is_set():
            return

        if self._stop_requested.is_set():
            await self._shutdown()
            raise SyncCancelled()

        if self._task.done():
            await self._shutdown()
            error = None if self._task.cancelled() else self._task.exception()
            if error is not None:
                raise error
            raise SyncCancelled("Feed ended before initial sync")

        await self._shutdown()
        raise SyncBarrierTimeout(self.sync_timeout)

    async def stop(self) -> None:
        """Stop the feed; safe to call repeatedly or before start."""
        self._stop_requested.set()
        await self._shutdown()

    async def wait(self) -> None:
        """Wait for the feed to finish, re-raising a fatal feed error."""
        if self._task is None:
            return
        await asyncio.wait({self._task})
        if self._task.cancelled():
            return
        error = self._task.exception()
        if error is not None:
            raise error

    async def _shutdown(self) -> None:
        if self._task is not None and not self._task.done():
            self._task.cancel()
            await asyncio.wait({self._task})
        self._set_state(SyncState.STOPPED)

    def _on_feed_done(self, task: asyncio.Task) -> None:
        if not task.cancelled() and task.exception() is not None:
            self.logger.error("Synchronizer feed failed", error=str(task.exception()))
        self._set_state(SyncState.STOPPED)

    async def _run(self, informer: Informer[RuleObject]) -> None:
        set_scope_context(self.client.namespace, self.client.labels)
        self._set_state(SyncState.SYNCING)
        async for event in informer.events():
            if event.kind == EventKind.SYNCED:
                self._set_state(SyncState.SYNCED)
                self._synced.set()
                self.logger.info("Initial sync completed", rules=len(informer.cached))
                continue
            self._dispatch(event)

    def _dispatch(self, event: WatchEvent[RuleObject]) -> None:
        try:
            if event.kind == EventKind.ADD:
                self.handler.on_add(self.engine, event.new, event.is_initial)
            elif event.kind == EventKind.UPDATE:
                self.handler.on_update(self.engine, event.old, event.new)
            elif event.kind == EventKind.DELETE:
                self.handler.on_delete(self.engine, event.old)
            self.metrics.record_sync_event(event.kind.value, "ok")
        except Exception as e:
            self.metrics.record_sync_event(event.kind.value, "error")
            self.logger.error(
                "Error applying rule event",
                event_kind=event.kind.value,
                name=event.object.name if event.object is not None else None,
                error=str(e)
            )
