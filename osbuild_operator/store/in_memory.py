"""Module for in memory object store."""

import copy
import itertools
import logging
import uuid
from collections import defaultdict
from collections.abc import Callable
from datetime import datetime, timezone
from typing import Any, DefaultDict, TypeVar

from osbuild_operator.exceptions import (
    ConflictError,
    ObjectExistsError,
    ObjectNotFoundError,
)
from osbuild_operator.manifest import NamedResource, Resource

from .patch import apply_merge_patch, create_merge_patch
from .store import IndexFunc, Store, StoreEvent

_LOGGER = logging.getLogger(__name__)

T = TypeVar("T", bound=Resource)

# Metadata fields owned by the store that are never written by a patch
SERVER_FIELDS = (
    "uid",
    "resourceVersion",
    "generation",
    "creationTimestamp",
    "deletionTimestamp",
)
# Top level fields that represent desired state and bump the generation
SPEC_FIELDS = ("spec", "data")


def _object_doc(obj: Resource) -> dict[str, Any]:
    doc = obj.to_dict()
    doc.pop("status", None)
    metadata = doc.get("metadata", {})
    for key in SERVER_FIELDS:
        metadata.pop(key, None)
    return doc


def _status_doc(obj: Resource) -> dict[str, Any]:
    return {"status": obj.to_dict().get("status", {})}


class InMemoryStore(Store):
    """In-memory implementation of the Store interface.

    Objects are keyed by NamedResource. The store assigns uids, resource
    versions and generations, keeps an index from owner uid to owned objects
    for cascading deletes and maintains any registered lookup indices.
    """

    def __init__(self) -> None:
        """Initialize the InMemoryStore."""
        self._objects: dict[NamedResource, Resource] = {}
        self._listeners: DefaultDict[StoreEvent, list[Callable[..., None]]] = (
            defaultdict(list)
        )
        self._indexers: DefaultDict[str, dict[str, IndexFunc]] = defaultdict(dict)
        self._indices: DefaultDict[
            tuple[str, str], DefaultDict[str, set[NamedResource]]
        ] = defaultdict(lambda: defaultdict(set))
        self._owned: DefaultDict[str, set[NamedResource]] = defaultdict(set)
        self._versions = itertools.count(1)

    def _next_version(self) -> str:
        return str(next(self._versions))

    def _current(self, resource_id: NamedResource) -> Resource:
        if (obj := self._objects.get(resource_id)) is None:
            raise ObjectNotFoundError(str(resource_id))
        return obj

    async def get(self, resource_id: NamedResource, cls: type[T]) -> T:
        """Retrieve an object by resource identity and type."""
        obj = self._current(resource_id)
        if not isinstance(obj, cls):
            raise ValueError(
                f"Object {resource_id.namespaced_name} is not of type {cls.__name__} (was {obj.__class__.__name__})"
            )
        return copy.deepcopy(obj)

    async def create(self, obj: T) -> T:
        """Create a new object, returning it with server assigned metadata."""
        resource_id = obj.resource_id
        if resource_id in self._objects:
            raise ObjectExistsError(f"Object {resource_id} already exists")
        _LOGGER.debug("Adding object %s to store", resource_id)
        new_obj = copy.deepcopy(obj)
        new_obj.metadata.uid = str(uuid.uuid4())
        new_obj.metadata.resource_version = self._next_version()
        new_obj.metadata.generation = 1
        new_obj.metadata.creation_timestamp = datetime.now(timezone.utc)
        new_obj.metadata.deletion_timestamp = None
        self._put(resource_id, None, new_obj)
        self._fire_event(StoreEvent.OBJECT_ADDED, resource_id, copy.deepcopy(new_obj))
        return copy.deepcopy(new_obj)

    async def patch(self, before: T, after: T, optimistic_lock: bool = False) -> T:
        """Apply the changes between two copies of an object, excluding status."""
        current = self._check_write(before, after, optimistic_lock)
        return self._apply(
            current, create_merge_patch(_object_doc(before), _object_doc(after))
        )

    async def patch_status(
        self, before: T, after: T, optimistic_lock: bool = False
    ) -> T:
        """Apply the changes between two copies of an object's status."""
        current = self._check_write(before, after, optimistic_lock)
        return self._apply(
            current, create_merge_patch(_status_doc(before), _status_doc(after))
        )

    async def delete(self, resource_id: NamedResource) -> None:
        """Delete an object and cascade to the objects it owns."""
        self._delete(resource_id)

    async def list_objects(
        self, kind: str, namespace: str | None = None
    ) -> list[Resource]:
        """List objects of a kind, optionally restricted to a namespace."""
        return [
            copy.deepcopy(self._objects[rid])
            for rid in sorted(self._objects)
            if rid.kind == kind and (namespace is None or rid.namespace == namespace)
        ]

    def add_index(self, kind: str, name: str, func: IndexFunc) -> None:
        """Register an index function computing lookup values for objects of a kind."""
        self._indexers[kind][name] = func
        for resource_id, obj in self._objects.items():
            if resource_id.kind != kind:
                continue
            for value in func(obj):
                self._indices[(kind, name)][value].add(resource_id)

    async def list_by_index(
        self, kind: str, index: str, value: str, namespace: str | None = None
    ) -> list[Resource]:
        """List objects of a kind whose index function produced `value`."""
        if index not in self._indexers[kind]:
            raise ValueError(f"Index {index} is not registered for kind {kind}")
        return [
            copy.deepcopy(self._objects[rid])
            for rid in sorted(self._indices[(kind, index)].get(value, set()))
            if namespace is None or rid.namespace == namespace
        ]

    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[..., Any],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a store event."""

        def remove() -> None:
            if callback in self._listeners[event]:
                self._listeners[event].remove(callback)

        self._listeners[event].append(callback)

        if flush and event == StoreEvent.OBJECT_ADDED:
            _LOGGER.debug("Flushing objects for event type %s", event)
            for resource_id in sorted(self._objects):
                callback(resource_id, copy.deepcopy(self._objects[resource_id]))

        return remove

    def _check_write(self, before: T, after: T, optimistic_lock: bool) -> Resource:
        resource_id = after.resource_id
        if before.resource_id != resource_id:
            raise ValueError(
                f"Cannot patch {before.resource_id} into {resource_id}"
            )
        current = self._current(resource_id)
        if optimistic_lock and (
            before.metadata.resource_version != current.metadata.resource_version
        ):
            raise ConflictError(
                str(resource_id),
                before.metadata.resource_version,
                current.metadata.resource_version,
            )
        return current

    def _apply(self, current: T, patch: dict[str, Any]) -> T:
        resource_id = current.resource_id
        if not patch:
            _LOGGER.debug("Empty patch for %s, skipping", resource_id)
            return copy.deepcopy(current)
        _LOGGER.debug("Patching object %s: %s", resource_id, patch)
        new_obj = type(current).from_dict(apply_merge_patch(current.to_dict(), patch))
        new_obj.metadata.resource_version = self._next_version()
        if any(key in patch for key in SPEC_FIELDS):
            new_obj.metadata.generation = (current.metadata.generation or 0) + 1
        self._put(resource_id, current, new_obj)
        self._fire_event(
            StoreEvent.OBJECT_UPDATED,
            resource_id,
            copy.deepcopy(current),
            copy.deepcopy(new_obj),
        )
        if new_obj.metadata.deletion_timestamp and not new_obj.metadata.finalizers:
            self._remove(resource_id)
        return copy.deepcopy(new_obj)

    def _delete(self, resource_id: NamedResource) -> None:
        current = self._current(resource_id)
        if current.metadata.finalizers:
            if current.metadata.deletion_timestamp is None:
                _LOGGER.debug("Marking %s for deletion", resource_id)
                self._apply(
                    current,
                    {
                        "metadata": {
                            "deletionTimestamp": datetime.now(timezone.utc).isoformat()
                        }
                    },
                )
            return
        self._remove(resource_id)

    def _remove(self, resource_id: NamedResource) -> None:
        _LOGGER.debug("Removing object %s from store", resource_id)
        obj = self._objects.pop(resource_id)
        self._unindex(resource_id, obj)
        self._fire_event(StoreEvent.OBJECT_DELETED, resource_id, copy.deepcopy(obj))
        if obj.metadata.uid is None:
            return
        for child in sorted(self._owned.pop(obj.metadata.uid, set())):
            if child in self._objects:
                _LOGGER.debug("Cascading delete from %s to %s", resource_id, child)
                self._delete(child)

    def _put(
        self, resource_id: NamedResource, old: Resource | None, new: Resource
    ) -> None:
        if old is not None:
            self._unindex(resource_id, old)
        self._objects[resource_id] = new
        for ref in new.metadata.owner_references or ():
            self._owned[ref.uid].add(resource_id)
        for name, func in self._indexers[resource_id.kind].items():
            for value in func(new):
                self._indices[(resource_id.kind, name)][value].add(resource_id)

    def _unindex(self, resource_id: NamedResource, obj: Resource) -> None:
        for ref in obj.metadata.owner_references or ():
            self._owned[ref.uid].discard(resource_id)
        for name, func in self._indexers[resource_id.kind].items():
            for value in func(obj):
                self._indices[(resource_id.kind, name)][value].discard(resource_id)

    def _fire_event(self, event: StoreEvent, *args: Any) -> None:
        for cb in list(self._listeners[event]):
            try:
                cb(*args)
            except Exception:
                _LOGGER.exception("Store listener callback failed for event %s", event)
