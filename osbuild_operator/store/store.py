"""Store module for holding the state of the resources managed by the operator."""

from abc import ABC, abstractmethod
from collections.abc import Callable
from enum import Enum
from typing import Any, TypeVar

from osbuild_operator.manifest import NamedResource, Resource

T = TypeVar("T", bound=Resource)

IndexFunc = Callable[[Resource], list[str]]


class StoreEvent(str, Enum):
    """Enum for store events."""

    OBJECT_ADDED = "object_added"
    """Callback receives the resource id and the new object."""

    OBJECT_UPDATED = "object_updated"
    """Callback receives the resource id, the old object and the new object."""

    OBJECT_DELETED = "object_deleted"
    """Callback receives the resource id and the last state of the object."""


class Store(ABC):
    """Abstract base class for the type-safe object store with listener support.

    Objects returned by the store are copies. Callers mutate a copy and write
    it back with `patch` or `patch_status` passing both the copy as originally
    read and the modified copy. The store computes a merge patch between them
    so that unrelated concurrent changes are preserved.
    """

    @abstractmethod
    async def get(self, resource_id: NamedResource, cls: type[T]) -> T:
        """Retrieve an object by resource identity and type.

        Raises:
            ObjectNotFoundError: If the object does not exist.
        """

    @abstractmethod
    async def create(self, obj: T) -> T:
        """Create a new object, returning it with server assigned metadata.

        Raises:
            ObjectExistsError: If an object with the same identity exists.
        """

    @abstractmethod
    async def patch(self, before: T, after: T, optimistic_lock: bool = False) -> T:
        """Apply the changes between two copies of an object, excluding status.

        When `optimistic_lock` is set, the write is rejected with a
        `ConflictError` if the stored object changed since `before` was read.
        """

    @abstractmethod
    async def patch_status(
        self, before: T, after: T, optimistic_lock: bool = False
    ) -> T:
        """Apply the changes between two copies of an object's status."""

    @abstractmethod
    async def delete(self, resource_id: NamedResource) -> None:
        """Delete an object and cascade to the objects it owns.

        An object with finalizers is only marked with a deletion timestamp and
        is removed once its finalizers are cleared.
        """

    @abstractmethod
    async def list_objects(
        self, kind: str, namespace: str | None = None
    ) -> list[Resource]:
        """List objects of a kind, optionally restricted to a namespace."""

    @abstractmethod
    def add_index(self, kind: str, name: str, func: IndexFunc) -> None:
        """Register an index function computing lookup values for objects of a kind."""

    @abstractmethod
    async def list_by_index(
        self, kind: str, index: str, value: str, namespace: str | None = None
    ) -> list[Resource]:
        """List objects of a kind whose index function produced `value`."""

    @abstractmethod
    def add_listener(
        self,
        event: StoreEvent,
        callback: Callable[..., Any],
        flush: bool = False,
    ) -> Callable[[], None]:
        """Register a callback for a store event.

        When `flush` is set, `OBJECT_ADDED` callbacks are invoked immediately
        for every existing object.

        Returns a callable that can be called to remove the listener.
        """
