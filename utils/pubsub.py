"""Channel-per-key broadcast used for live notification streams.

Delivery is best effort to whoever is subscribed at publish time; there is no
backlog and nothing is replayed after a reconnect.
"""
from __future__ import annotations

import queue
import threading
from typing import Any, Dict, Optional, Set

MAX_PENDING = 100


class Subscription:
    def __init__(self, broadcaster: "Broadcaster", key: str, max_pending: int = MAX_PENDING) -> None:
        self.broadcaster = broadcaster
        self.key = key
        self._queue: "queue.Queue[Any]" = queue.Queue(maxsize=max_pending)
        self.closed = False
        self.dropped = 0

    def deliver(self, payload: Any) -> bool:
        """Queue ``payload``; a subscriber that stopped reading loses it once its queue is full."""
        if self.closed:
            return False
        try:
            self._queue.put_nowait(payload)
        except queue.Full:
            self.dropped += 1
            return False
        return True

    def get(self, timeout: Optional[float] = None) -> Any:
        """Block for the next payload; ``None`` when the wait times out."""
        try:
            return self._queue.get(timeout=timeout)
        except queue.Empty:
            return None

    def close(self) -> None:
        if not self.closed:
            self.closed = True
            self.broadcaster.unsubscribe(self)

    def __enter__(self) -> "Subscription":
        return self

    def __exit__(self, *exc) -> None:
        self.close()


class Broadcaster:
    """Interface; swap in a message-bus backed implementation without touching callers."""

    def publish(self, key: str, payload: Any) -> int:
        raise NotImplementedError

    def subscribe(self, key: str) -> Subscription:
        raise NotImplementedError

    def unsubscribe(self, subscription: Subscription) -> None:
        raise NotImplementedError


class InProcessBroadcaster(Broadcaster):
    def __init__(self, max_pending: int = MAX_PENDING) -> None:
        self.max_pending = max_pending
        self._channels: Dict[str, Set[Subscription]] = {}
        self._lock = threading.Lock()

    def publish(self, key: str, payload: Any) -> int:
        with self._lock:
            targets = list(self._channels.get(key, ()))
        return sum(1 for subscription in targets if subscription.deliver(payload))

    def subscribe(self, key: str) -> Subscription:
        subscription = Subscription(self, key, self.max_pending)
        with self._lock:
            self._channels.setdefault(key, set()).add(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            channel = self._channels.get(subscription.key)
            if not channel:
                return
            channel.discard(subscription)
            if not channel:
                self._channels.pop(subscription.key, None)

    def subscriber_count(self, key: str) -> int:
        with self._lock:
            return len(self._channels.get(key, ()))
