import asyncio
import logging
import threading
import uuid
from typing import Dict, List, Optional, Set

from core.models.events import Event

logger = logging.getLogger(__name__)

_CLOSED = object()


class Observer:
    """
    A connected party receiving events for the tests it subscribed to.

    Events are queued without blocking the publisher and drained by the
    observer's own transport task (see `next_event`). A queue slot is
    reserved at delivery time, whatever thread publishes, so a full queue
    always fails the delivery. Once bound to a loop, deliveries from other
    threads go through that loop's ready queue; while any are in flight,
    deliveries on the loop follow them there, keeping publish order.
    """

    def __init__(self, observer_id: Optional[str] = None, max_pending: int = 1000):
        self.observer_id = observer_id or uuid.uuid4().hex
        self.closed = False
        self._queue: asyncio.Queue = asyncio.Queue()
        self._max_pending = max_pending
        self._lock = threading.Lock()
        self._reserved = 0  # queued or on their way to the queue
        self._in_flight = 0  # scheduled from other threads, not queued yet
        self._finished = False
        try:
            self._loop: Optional[asyncio.AbstractEventLoop] = asyncio.get_running_loop()
        except RuntimeError:
            self._loop = None

    def bind(self, loop: asyncio.AbstractEventLoop):
        """Attach the observer to the loop its transport task runs on."""
        if self._loop is None:
            self._loop = loop

    @property
    def pending(self) -> int:
        return self._reserved

    def _on_loop(self) -> bool:
        try:
            return asyncio.get_running_loop() is self._loop
        except RuntimeError:
            return False

    def deliver(self, event: Event) -> bool:
        """Queue an event. Returns False if the observer is closed or overflowing."""
        with self._lock:
            if self.closed or self._reserved >= self._max_pending:
                return False
            self._reserved += 1
            try:
                self._schedule(event)
            except RuntimeError:
                # Loop already closed
                self._reserved -= 1
                return False
        return True

    def close(self):
        """Mark the observer closed and wake up a pending `next_event`."""
        with self._lock:
            if self.closed:
                return
            self.closed = True
            try:
                self._schedule(_CLOSED)
            except RuntimeError:
                self._queue.put_nowait(_CLOSED)

    def _schedule(self, item):
        # Called with self._lock held
        if self._loop is not None and not self._on_loop():
            self._in_flight += 1
            try:
                self._loop.call_soon_threadsafe(self._put, item, True)
            except RuntimeError:
                self._in_flight -= 1
                raise
        elif self._in_flight:
            self._loop.call_soon(self._put, item, False)
        else:
            self._queue.put_nowait(item)

    def _put(self, item, from_thread: bool):
        with self._lock:
            if from_thread:
                self._in_flight -= 1
            self._queue.put_nowait(item)

    def _taken(self, item) -> bool:
        if item is _CLOSED:
            self._finished = True
            return False
        with self._lock:
            self._reserved -= 1
        return True

    async def next_event(self) -> Optional[Event]:
        """Wait for the next queued event. Returns None once the observer is closed and drained."""
        if self._finished:
            return None
        item = await self._queue.get()
        return item if self._taken(item) else None

    def drain(self) -> List[Event]:
        """Return every event currently queued without waiting."""
        events = []
        while not self._queue.empty():
            item = self._queue.get_nowait()
            if self._taken(item):
                events.append(item)
        return events


class SubscriptionRegistry:
    """
    Which observers watch which test.

    All maps are guarded by a single lock. The lock is a leaf: no other lock
    is ever acquired while holding it and no observer code runs under it.
    """

    def __init__(self):
        self._lock = threading.Lock()
        self._observers: Dict[str, Observer] = {}
        self._by_test: Dict[str, Set[str]] = {}
        self._by_observer: Dict[str, Set[str]] = {}

    def join(self, observer: Observer, test_id: str) -> bool:
        """Subscribe an observer to a test. Returns False if it was already subscribed."""
        with self._lock:
            self._observers[observer.observer_id] = observer
            tests = self._by_observer.setdefault(observer.observer_id, set())
            if test_id in tests:
                return False
            tests.add(test_id)
            self._by_test.setdefault(test_id, set()).add(observer.observer_id)
        logger.debug(f"Observer {observer.observer_id} subscribed to {test_id}")
        return True

    def leave(self, observer_id: str, test_id: str) -> bool:
        """Unsubscribe an observer from a test. Leaving a non-member is a no-op."""
        with self._lock:
            tests = self._by_observer.get(observer_id)
            if not tests or test_id not in tests:
                return False
            tests.discard(test_id)
            if not tests:
                del self._by_observer[observer_id]
                self._observers.pop(observer_id, None)
            self._discard_member(test_id, observer_id)
        logger.debug(f"Observer {observer_id} unsubscribed from {test_id}")
        return True

    def disconnect(self, observer_id: str) -> List[str]:
        """Remove an observer from every test it watched. Returns those tests."""
        with self._lock:
            tests = self._by_observer.pop(observer_id, set())
            self._observers.pop(observer_id, None)
            for test_id in tests:
                self._discard_member(test_id, observer_id)
        if tests:
            logger.debug(f"Observer {observer_id} disconnected from {len(tests)} test(s)")
        return sorted(tests)

    def _discard_member(self, test_id: str, observer_id: str):
        members = self._by_test.get(test_id)
        if members is not None:
            members.discard(observer_id)
            if not members:
                del self._by_test[test_id]

    def subscribers(self, test_id: str) -> List[Observer]:
        """Current subscribers of a test, read at call time."""
        with self._lock:
            return [self._observers[oid] for oid in self._by_test.get(test_id, ())]

    def subscriptions_of(self, observer_id: str) -> List[str]:
        with self._lock:
            return sorted(self._by_observer.get(observer_id, ()))

    def is_subscribed(self, observer_id: str, test_id: str) -> bool:
        with self._lock:
            return test_id in self._by_observer.get(observer_id, ())

    def stats(self) -> Dict[str, int]:
        with self._lock:
            return {
                "observers": len(self._observers),
                "active_tests": len(self._by_test),
                "total_subscriptions": sum(len(m) for m in self._by_test.values()),
            }


class EventHub:
    """Fans events for a test out to that test's current subscribers."""

    def __init__(self, subscriptions: Optional[SubscriptionRegistry] = None):
        self.subscriptions = subscriptions or SubscriptionRegistry()
        self._connected: Dict[str, Observer] = {}
        self._connected_lock = threading.Lock()
        self._loop: Optional[asyncio.AbstractEventLoop] = None

    def init(self, loop: asyncio.AbstractEventLoop):
        self._loop = loop

    def connect(self, observer: Observer):
        """Track a transport connection, even before it subscribes to anything."""
        if self._loop is not None:
            observer.bind(self._loop)
        with self._connected_lock:
            self._connected[observer.observer_id] = observer

    def join(self, observer: Observer, test_id: str) -> bool:
        self.connect(observer)
        return self.subscriptions.join(observer, test_id)

    def leave(self, observer_id: str, test_id: str) -> bool:
        return self.subscriptions.leave(observer_id, test_id)

    def disconnect(self, observer_id: str) -> List[str]:
        """Must be called whenever an observer's transport drops."""
        with self._connected_lock:
            observer = self._connected.pop(observer_id, None)
        if observer is not None:
            observer.close()
        return self.subscriptions.disconnect(observer_id)

    def publish(self, event: Event) -> int:
        """Deliver an event to every observer subscribed to its test right now.

        Returns the number of observers the event was queued for. Observers
        that cannot keep up are disconnected instead of blocking the others.
        """
        delivered = 0
        for observer in self.subscriptions.subscribers(event.test_id):
            try:
                ok = observer.deliver(event)
            except Exception as e:
                logger.error(f"Error delivering event to observer {observer.observer_id}: {e}")
                ok = False
            if ok:
                delivered += 1
            else:
                logger.warning(
                    f"Observer {observer.observer_id} is not keeping up with test {event.test_id}, disconnecting"
                )
                self.disconnect(observer.observer_id)
        return delivered

    def stats(self) -> Dict[str, int]:
        sub_stats = self.subscriptions.stats()
        with self._connected_lock:
            connected = len(self._connected)
        return {
            "connectedClients": connected,
            "activeTests": sub_stats["active_tests"],
            "totalSubscriptions": sub_stats["total_subscriptions"],
        }

    def close_all(self):
        with self._connected_lock:
            observer_ids = list(self._connected)
        for observer_id in observer_ids:
            self.disconnect(observer_id)
