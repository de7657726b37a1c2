"""Work queue feeding reconcile requests to controller workers.

The queue holds resource identifiers rather than objects since reconcilers
always read the latest state from the store. It guarantees that:

- An item is queued at most once no matter how often it is added.
- An item being processed is never handed to a second worker. If it is added
  again while processing, it is queued again once processing is done.
- Delayed adds keep the earliest requested time.
"""

import asyncio
import logging

from osbuild_operator.manifest import NamedResource

_LOGGER = logging.getLogger(__name__)


class WorkQueue:
    """Deduplicating queue of reconcile requests."""

    def __init__(self, name: str) -> None:
        """Initialize the WorkQueue."""
        self._name = name
        self._queue: asyncio.Queue[NamedResource] = asyncio.Queue()
        self._dirty: set[NamedResource] = set()
        self._processing: set[NamedResource] = set()
        self._timers: dict[NamedResource, asyncio.TimerHandle] = {}
        self._shutting_down = False

    def add(self, item: NamedResource) -> None:
        """Add an item to be processed as soon as a worker is free."""
        if self._shutting_down or item in self._dirty:
            return
        self._dirty.add(item)
        if item in self._processing:
            _LOGGER.debug("%s: %s is processing, deferring", self._name, item)
            return
        self._queue.put_nowait(item)

    def add_after(self, item: NamedResource, delay: float) -> None:
        """Add an item after the delay in seconds has passed."""
        if self._shutting_down:
            return
        if delay <= 0:
            self.add(item)
            return
        loop = asyncio.get_running_loop()
        when = loop.time() + delay
        if (timer := self._timers.get(item)) is not None:
            if timer.when() <= when:
                return
            timer.cancel()
        _LOGGER.debug("%s: requeue %s after %ss", self._name, item, delay)
        self._timers[item] = loop.call_at(when, self._fire, item)

    def _fire(self, item: NamedResource) -> None:
        self._timers.pop(item, None)
        self.add(item)

    async def get(self) -> NamedResource:
        """Wait for the next item and mark it as processing."""
        item = await self._queue.get()
        self._dirty.discard(item)
        self._processing.add(item)
        return item

    def done(self, item: NamedResource) -> None:
        """Mark an item as processed, queueing it again if it was re-added."""
        self._processing.discard(item)
        if item in self._dirty and not self._shutting_down:
            self._queue.put_nowait(item)

    def shutdown(self) -> None:
        """Stop accepting items and cancel pending delayed adds."""
        self._shutting_down = True
        for timer in self._timers.values():
            timer.cancel()
        self._timers.clear()

    @property
    def processing(self) -> int:
        """Number of items currently being processed."""
        return len(self._processing)

    @property
    def scheduled(self) -> int:
        """Number of delayed adds waiting for their timer."""
        return len(self._timers)

    def __len__(self) -> int:
        """Number of items ready to be processed."""
        return self._queue.qsize()
