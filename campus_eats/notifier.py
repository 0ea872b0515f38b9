"""
Change Notifier: keyed fan-out of order changes to live subscribers.

Keys: customer:<id>, vendor:<id>, rider:<id> and the global `pool` of
claimable orders. Delivery is at-least-once/best-effort: publish() only
enqueues and never waits on a subscriber, so a slow or gone subscriber can
drop events but never holds up the writer. Subscribers recover by re-listing.
Backends: in-process queues (NOTIFIER_BACKEND=memory) or Redis pub/sub.
"""
import asyncio
import json
import logging
import uuid
from abc import ABC, abstractmethod
from contextlib import asynccontextmanager
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Optional

import redis.asyncio as redis

from campus_eats.metrics import live_subscriptions, notifications_dropped_total, notifications_published_total
from campus_eats.models import Order
from campus_eats.order_state import OrderStatus

logger = logging.getLogger(__name__)

POOL_KEY = "pool"
CHANNEL_PREFIX = "orders:"


def customer_key(customer_id: str) -> str:
    return f"customer:{customer_id}"


def vendor_key(vendor_id: str) -> str:
    return f"vendor:{vendor_id}"


def rider_key(rider_id: str) -> str:
    return f"rider:{rider_id}"


def _sees_otp(key: str) -> bool:
    return key.startswith("customer:") or key.startswith("rider:")


@dataclass(frozen=True)
class OrderEvent:
    """One committed change. event_type is the new status value, or `created` / `reviewed`."""
    event_type: str
    order: Order
    previous_status: Optional[OrderStatus] = None
    previous_rider_id: Optional[str] = None
    event_id: str = field(default_factory=lambda: str(uuid.uuid4()))
    occurred_at: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @classmethod
    def for_change(cls, before: Optional[Order], after: Order, event_type: Optional[str] = None) -> "OrderEvent":
        return cls(
            event_type=event_type or after.status.value,
            order=after,
            previous_status=before.status if before else None,
            previous_rider_id=before.rider_id if before else None,
        )

    @property
    def pool_changed(self) -> bool:
        """Order entered or left the ready-and-unassigned pool."""
        was_claimable = self.previous_status == OrderStatus.READY and self.previous_rider_id is None
        return was_claimable != self.order.is_claimable

    def keys(self) -> list[str]:
        keys = [customer_key(self.order.customer_id), vendor_key(self.order.vendor_id)]
        if self.order.rider_id:
            keys.append(rider_key(self.order.rider_id))
        if self.previous_rider_id and self.previous_rider_id != self.order.rider_id:
            keys.append(rider_key(self.previous_rider_id))
        if self.pool_changed:
            keys.append(POOL_KEY)
        return keys

    def to_payload(self, include_otp: bool = False) -> dict:
        return {
            "event_id": self.event_id,
            "event_type": self.event_type,
            "order": self.order.to_dict(include_otp=include_otp),
            "previous_status": self.previous_status.value if self.previous_status else None,
            "previous_rider_id": self.previous_rider_id,
            "occurred_at": self.occurred_at.isoformat(),
        }


class Subscription(ABC):

    @abstractmethod
    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        """Next event payload, or None if nothing arrived within timeout."""


class ChangeNotifier(ABC):

    @abstractmethod
    def publish(self, event: OrderEvent) -> None:
        """Fan event out to every matching key. Must not block or raise on subscriber trouble."""

    @abstractmethod
    def subscribe(self, key: str):
        """Async context manager yielding a Subscription for key."""

    async def start(self) -> None:
        return None

    async def close(self) -> None:
        return None


class _QueueSubscription(Subscription):
    def __init__(self, queue: asyncio.Queue):
        self.queue = queue

    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        if timeout is None:
            return await self.queue.get()
        try:
            return await asyncio.wait_for(self.queue.get(), timeout)
        except asyncio.TimeoutError:
            return None


class LocalNotifier(ChangeNotifier):
    """Single-process fan-out over bounded asyncio queues."""

    def __init__(self, queue_size: int = 100):
        self.queue_size = queue_size
        self._subscribers: dict[str, set[asyncio.Queue]] = {}

    def publish(self, event: OrderEvent) -> None:
        for key in event.keys():
            queues = self._subscribers.get(key)
            if not queues:
                continue
            payload = event.to_payload(include_otp=_sees_otp(key))
            for queue in list(queues):
                try:
                    queue.put_nowait(payload)
                    notifications_published_total.inc()
                except asyncio.QueueFull:
                    notifications_dropped_total.inc()
                    logger.warning("Subscriber queue full on %s, dropped event_id=%s", key, event.event_id)

    @asynccontextmanager
    async def subscribe(self, key: str):
        queue: asyncio.Queue = asyncio.Queue(maxsize=self.queue_size)
        self._subscribers.setdefault(key, set()).add(queue)
        live_subscriptions.inc()
        try:
            yield _QueueSubscription(queue)
        finally:
            live_subscriptions.dec()
            queues = self._subscribers.get(key)
            if queues is not None:
                queues.discard(queue)
                if not queues:
                    del self._subscribers[key]

    def subscriber_count(self, key: str) -> int:
        return len(self._subscribers.get(key, ()))


class _PubSubSubscription(Subscription):
    def __init__(self, pubsub):
        self.pubsub = pubsub

    async def get(self, timeout: Optional[float] = None) -> Optional[dict]:
        message = await self.pubsub.get_message(ignore_subscribe_messages=True, timeout=timeout)
        if message is None:
            return None
        try:
            return json.loads(message["data"])
        except (TypeError, json.JSONDecodeError):
            logger.warning("Invalid JSON on %s", message.get("channel"))
            return None


class RedisNotifier(ChangeNotifier):
    """
    Redis pub/sub fan-out for multi-process deployments. publish() puts onto a
    bounded in-process outbox; a background task drains it with PUBLISH so
    Redis latency never reaches the request path.
    """

    def __init__(self, client: redis.Redis, outbox_size: int = 10_000):
        self.client = client
        self._outbox: asyncio.Queue = asyncio.Queue(maxsize=outbox_size)
        self._pump: asyncio.Task | None = None

    def publish(self, event: OrderEvent) -> None:
        for key in event.keys():
            data = json.dumps(event.to_payload(include_otp=_sees_otp(key)))
            try:
                self._outbox.put_nowait((CHANNEL_PREFIX + key, data))
            except asyncio.QueueFull:
                notifications_dropped_total.inc()
                logger.warning("Notifier outbox full, dropped event_id=%s for %s", event.event_id, key)

    async def start(self) -> None:
        if self._pump is None:
            self._pump = asyncio.create_task(self._drain())

    async def close(self) -> None:
        if self._pump is not None:
            self._pump.cancel()
            await asyncio.gather(self._pump, return_exceptions=True)
            self._pump = None

    async def _drain(self) -> None:
        while True:
            channel, data = await self._outbox.get()
            try:
                await self.client.publish(channel, data)
                notifications_published_total.inc()
            except redis.RedisError as e:
                notifications_dropped_total.inc()
                logger.exception("Failed to publish on %s: %s", channel, e)

    @asynccontextmanager
    async def subscribe(self, key: str):
        pubsub = self.client.pubsub()
        channel = CHANNEL_PREFIX + key
        await pubsub.subscribe(channel)
        live_subscriptions.inc()
        try:
            yield _PubSubSubscription(pubsub)
        finally:
            live_subscriptions.dec()
            await pubsub.unsubscribe(channel)
            await pubsub.aclose()
