"""
Fan-out of pipeline events to live subscribers.

Delivery is best effort: no persistence, no replay, no acknowledgement. A
subscriber sees events in the order they were published from one process;
nothing is guaranteed across subscribers.
"""

import json
import threading
from dataclasses import dataclass
from typing import Any, Callable, Dict, List, Optional, Protocol

from agentboard.events import BroadcastEvent
from agentboard.logging import get_logger
from agentboard.metrics import metrics

log = get_logger(__name__)

Message = Dict[str, Any]
Subscriber = Callable[[Message], None]


class EventPublisher(Protocol):
    def publish(self, event: BroadcastEvent) -> int: ...


@dataclass(eq=False)
class Subscription:
    callback: Subscriber
    name: str = "subscriber"


class Broadcaster:
    """
    In-process broadcaster. Subscribers are plain callables receiving the
    event envelope; one that raises is dropped so it cannot stall the others.
    """

    def __init__(self) -> None:
        self._subscriptions: List[Subscription] = []
        self._lock = threading.Lock()

    def subscribe(self, callback: Subscriber, name: str = "subscriber") -> Subscription:
        subscription = Subscription(callback=callback, name=name)
        with self._lock:
            self._subscriptions.append(subscription)
        return subscription

    def unsubscribe(self, subscription: Subscription) -> None:
        with self._lock:
            if subscription in self._subscriptions:
                self._subscriptions.remove(subscription)

    @property
    def subscriber_count(self) -> int:
        with self._lock:
            return len(self._subscriptions)

    def publish(self, event: BroadcastEvent) -> int:
        return self.publish_message(event.to_message())

    def publish_message(self, message: Message) -> int:
        with self._lock:
            targets = list(self._subscriptions)
        delivered = 0
        for subscription in targets:
            try:
                subscription.callback(message)
                delivered += 1
            except Exception as exc:
                log.warning(
                    "broadcast_subscriber_dropped",
                    extra={"subscriber": subscription.name, "event_type": message.get("type"), "error": str(exc)},
                )
                self.unsubscribe(subscription)
        metrics.inc_event(str(message.get("type")))
        log.debug("broadcast_published", extra={"event_type": message.get("type"), "delivered": delivered})
        return delivered


class RedisBroadcaster:
    """
    Publishes event envelopes on a Redis pub/sub channel so jobs running in
    worker processes reach the subscribers held by the API process.
    """

    def __init__(self, redis_connection: Any, channel: str) -> None:
        self._redis = redis_connection
        self.channel = channel

    def publish(self, event: BroadcastEvent) -> int:
        message = event.to_message()
        receivers = int(self._redis.publish(self.channel, json.dumps(message, default=str)) or 0)
        metrics.inc_event(event.type)
        return receivers


class RedisEventRelay:
    """
    Background thread forwarding envelopes from the Redis channel into a local
    Broadcaster.
    """

    def __init__(self, redis_connection: Any, channel: str, broadcaster: Broadcaster, poll_interval: float = 0.25) -> None:
        self._pubsub = redis_connection.pubsub()
        self.channel = channel
        self.broadcaster = broadcaster
        self.poll_interval = poll_interval
        self._subscribed = False
        self._stop = threading.Event()
        self._thread = threading.Thread(target=self._loop, daemon=True)

    def subscribe(self) -> None:
        if not self._subscribed:
            self._pubsub.subscribe(self.channel)
            self._subscribed = True

    def start(self) -> None:
        self.subscribe()
        self._thread.start()

    def stop(self) -> None:
        self._stop.set()
        self._thread.join(timeout=2)
        self._pubsub.close()

    def relay_pending(self) -> int:
        """Forward every message currently waiting on the channel."""
        relayed = 0
        while True:
            raw = self._pubsub.get_message(timeout=0)
            if raw is None:
                return relayed
            if self._forward(raw):
                relayed += 1

    def _forward(self, raw: Dict[str, Any]) -> bool:
        if raw.get("type") != "message":
            return False
        data = raw.get("data")
        if isinstance(data, bytes):
            data = data.decode("utf-8")
        try:
            message = json.loads(data)
        except (TypeError, ValueError) as exc:
            log.warning("broadcast_relay_bad_payload", extra={"error": str(exc)})
            return False
        if not isinstance(message, dict):
            return False
        self.broadcaster.publish_message(message)
        return True

    def _loop(self) -> None:
        while not self._stop.is_set():
            try:
                raw: Optional[Dict[str, Any]] = self._pubsub.get_message(timeout=self.poll_interval)
            except Exception as exc:  # pragma: no cover - best effort
                log.warning("broadcast_relay_error", extra={"error": str(exc)})
                self._stop.wait(self.poll_interval)
                continue
            if raw is not None:
                self._forward(raw)
