"""
The store module provides a central, type-safe repository for the resources
managed by the operator.

- Uses NamedResource as the key for all objects.
- Stores values as dataclass instances from manifest.py for type safety.
- Writes are merge patches computed from a before and after copy of an object.
- Notifies listeners of added, updated and deleted objects, which is how
  controllers watch for changes.

This abstract interface allows for various implementations (in-memory,
kubernetes API server, etc.).
"""

from .store import Store, StoreEvent, IndexFunc
from .in_memory import InMemoryStore

__all__ = [
    "Store",
    "StoreEvent",
    "IndexFunc",
    "InMemoryStore",
]
