"""Generic controller runtime.

A `Controller` watches the store for objects of one kind, filters events
through a predicate and feeds the identifiers of matching objects into a
`WorkQueue`. Worker tasks pop identifiers off the queue and call the
`Reconciler`, which reads the latest state and moves the world toward the
desired state. The `Result` of a reconcile decides if and when the object is
processed again.
"""

import asyncio
from collections.abc import Callable
import logging
from abc import ABC, abstractmethod
from dataclasses import dataclass

from osbuild_operator.exceptions import OSBuildException
from osbuild_operator.manifest import NamedResource, Resource
from osbuild_operator.predicates import Predicate
from osbuild_operator.store import Store, StoreEvent

from .queue import WorkQueue

_LOGGER = logging.getLogger(__name__)


@dataclass
class Result:
    """Outcome of a reconcile."""

    requeue: bool = False
    """Process the object again immediately."""

    requeue_after: float | None = None
    """Process the object again after this many seconds."""


class Reconciler(ABC):
    """Moves the observed state of one object toward its desired state."""

    @abstractmethod
    async def reconcile(self, request: NamedResource) -> Result:
        """Reconcile the object identified by the request.

        Raising an exception requeues the request after the error interval.
        """


@dataclass
class ControllerConfig:
    """Configuration for a Controller."""

    workers: int = 1
    """Number of objects reconciled concurrently."""

    error_requeue_after: float = 10.0
    """Seconds to wait before retrying a reconcile that raised an error."""

    namespace: str | None = None
    """Only watch objects in this namespace, or all namespaces when unset."""


class Controller:
    """Runs a reconciler for every change to objects of a kind."""

    def __init__(
        self,
        name: str,
        store: Store,
        reconciler: Reconciler,
        for_kind: str,
        config: ControllerConfig | None = None,
        predicate: Predicate | None = None,
    ) -> None:
        """Initialize the controller and start watching the store.

        Args:
            name: Name of the controller used in logs
            store: The central store to watch
            reconciler: The reconciler invoked for each request
            for_kind: The kind of object reconciled by this controller
            config: The configuration for the controller
            predicate: Filter for events on objects of `for_kind`
        """
        self.name = name
        self.store = store
        self.reconciler = reconciler
        self.for_kind = for_kind
        self._config = config or ControllerConfig()
        self.queue = WorkQueue(name)
        self._tasks: list[asyncio.Task[None]] = []
        self._remove_listeners = self._watch(
            for_kind, predicate or Predicate(), self._request_for
        )

    def owns(self, kind: str, predicate: Predicate | None = None) -> None:
        """Watch objects of a kind owned by the reconciled objects.

        Events on an owned object enqueue its controlling owner.
        """
        self._remove_listeners.extend(
            self._watch(kind, predicate or Predicate(), self._request_for_owner)
        )

    def _request_for(self, obj: Resource) -> NamedResource | None:
        return obj.resource_id

    def _request_for_owner(self, obj: Resource) -> NamedResource | None:
        if (owner := obj.controller_owner()) is None or owner.kind != self.for_kind:
            return None
        return NamedResource(owner.kind, obj.namespace, owner.name)

    def _watch(
        self,
        kind: str,
        predicate: Predicate,
        mapper: Callable[[Resource], NamedResource | None],
    ) -> list[Callable[[], None]]:
        def enqueue(obj: Resource) -> None:
            if (request := mapper(obj)) is not None:
                self.queue.add(request)

        def matches(resource_id: NamedResource) -> bool:
            if resource_id.kind != kind:
                return False
            namespace = self._config.namespace
            return namespace is None or resource_id.namespace == namespace

        def added(resource_id: NamedResource, obj: Resource) -> None:
            if matches(resource_id) and predicate.create(obj):
                enqueue(obj)

        def updated(resource_id: NamedResource, old: Resource, new: Resource) -> None:
            if matches(resource_id) and predicate.update(old, new):
                enqueue(new)

        def deleted(resource_id: NamedResource, obj: Resource) -> None:
            if matches(resource_id) and predicate.delete(obj):
                enqueue(obj)

        return [
            self.store.add_listener(StoreEvent.OBJECT_ADDED, added, flush=True),
            self.store.add_listener(StoreEvent.OBJECT_UPDATED, updated),
            self.store.add_listener(StoreEvent.OBJECT_DELETED, deleted),
        ]

    async def start(self) -> None:
        """Start the worker tasks."""
        if self._tasks:
            return
        _LOGGER.info("Starting controller %s", self.name)
        self._tasks = [
            asyncio.create_task(self._worker(), name=f"{self.name}-worker-{i}")
            for i in range(self._config.workers)
        ]

    async def close(self) -> None:
        """Stop watching the store and cancel the worker tasks."""
        for remove in self._remove_listeners:
            remove()
        self._remove_listeners.clear()
        self.queue.shutdown()
        for task in self._tasks:
            task.cancel()
            try:
                await task
            except asyncio.CancelledError:
                pass
        self._tasks.clear()

    @property
    def busy(self) -> bool:
        """Return True if requests are queued or being reconciled."""
        return len(self.queue) > 0 or self.queue.processing > 0

    async def _worker(self) -> None:
        while True:
            request = await self.queue.get()
            try:
                await self._reconcile(request)
            finally:
                self.queue.done(request)

    async def _reconcile(self, request: NamedResource) -> None:
        _LOGGER.debug("%s: reconciling %s", self.name, request)
        try:
            result = await self.reconciler.reconcile(request)
        except OSBuildException as err:
            _LOGGER.warning("%s: failed to reconcile %s: %s", self.name, request, err)
            self.queue.add_after(request, self._config.error_requeue_after)
            return
        except Exception as err:
            _LOGGER.exception(
                "%s: failed to reconcile %s: %s", self.name, request, err
            )
            self.queue.add_after(request, self._config.error_requeue_after)
            return
        if result.requeue_after:
            self.queue.add_after(request, result.requeue_after)
        elif result.requeue:
            self.queue.add(request)
