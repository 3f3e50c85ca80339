"""In-memory store with the same surface as RedisBackend.

Single-process only. Useful for local dev and tests.
"""
import queue
import threading
from typing import Dict, Iterable, List, Optional, Tuple

from backend import MultiMutator, Mutator
from logging_config import get_logger

logger = get_logger(__name__)

_CLOSED = object()


class MemorySubscription:
    def __init__(self, backend: "InMemoryBackend", channels: List[str]):
        self.backend = backend
        self.channels = channels
        self.queue: "queue.Queue" = queue.Queue()

    def get_message(self, timeout: float = 1.0) -> Optional[Tuple[str, str]]:
        try:
            item = self.queue.get(timeout=timeout)
        except queue.Empty:
            return None
        if item is _CLOSED:
            return None
        return item

    def close(self):
        self.backend._unsubscribe(self)
        # wake up a reader blocked in get_message
        self.queue.put(_CLOSED)


class InMemoryBackend:
    def __init__(self):
        self._values: Dict[str, str] = {}
        self._subscriptions: List[MemorySubscription] = []
        self._lock = threading.Lock()

    def ping(self):
        logger.info("Using in-memory store")

    def get(self, key: str) -> Optional[str]:
        with self._lock:
            return self._values.get(key)

    def set(self, key: str, value: str):
        with self._lock:
            self._values[key] = value

    def update(self, key: str, mutate: Mutator) -> str:
        return self.update_many([key], lambda values: {key: mutate(values[key])})[key]

    def update_many(self, keys: Iterable[str], mutate: MultiMutator) -> Dict[str, str]:
        with self._lock:
            new_values = mutate({key: self._values.get(key) for key in keys})
            self._values.update(new_values)
            return new_values

    def publish(self, channel: str, payload: str) -> int:
        with self._lock:
            targets = [s for s in self._subscriptions if channel in s.channels]
        for subscription in targets:
            subscription.queue.put((channel, payload))
        logger.debug(f"Published to channel {channel}, {len(targets)} subscribers")
        return len(targets)

    def subscribe(self, channels: Iterable[str]) -> MemorySubscription:
        subscription = MemorySubscription(self, list(channels))
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def _unsubscribe(self, subscription: MemorySubscription):
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    def close(self):
        with self._lock:
            subscriptions = list(self._subscriptions)
        for subscription in subscriptions:
            subscription.close()
