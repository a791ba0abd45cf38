"""
Event channel carrying live-subscription snapshots to the owning thread.

Store listeners fire on whatever thread the store delivers on. They only
publish events here; the session drains the channel on its own thread before
touching observable state. Supports an in-memory queue for a single process and
a Redis-backed list so the consumer can live in another process.
"""

from __future__ import annotations

import json
import queue
from dataclasses import dataclass, field
from typing import Optional, Protocol

import redis
from redis import exceptions as redis_exceptions

from shared.json_utils import to_json_safe


class EventChannel(Protocol):
    """Minimal FIFO interface for snapshot events."""

    def publish(self, event: dict) -> None:
        ...

    def receive(self, *, block: bool = False, timeout: float | None = None) -> Optional[dict]:
        ...


@dataclass
class InMemoryEventChannel:
    """Thread-safe FIFO for a single process."""

    items: queue.Queue = field(default_factory=queue.Queue)

    def publish(self, event: dict) -> None:
        self.items.put(event)

    def receive(self, *, block: bool = False, timeout: float | None = None) -> Optional[dict]:
        try:
            return self.items.get(block=block, timeout=timeout)
        except queue.Empty:
            return None

    def __len__(self) -> int:
        return self.items.qsize()


@dataclass
class RedisEventChannel:
    """Redis-backed channel using list push/pop operations on JSON payloads."""

    url: str
    channel_key: str = "taskflow:events"

    def __post_init__(self):
        self.client = redis.Redis.from_url(self.url)

    def publish(self, event: dict) -> None:
        self.client.rpush(self.channel_key, json.dumps(to_json_safe(event)))

    def receive(self, *, block: bool = False, timeout: float | None = None) -> Optional[dict]:
        try:
            if block:
                result = self.client.blpop(self.channel_key, timeout=timeout or 0)
                if result is None:
                    return None
                _, payload = result
            else:
                payload = self.client.lpop(self.channel_key)
                if payload is None:
                    return None
            return json.loads(payload)
        except redis_exceptions.ConnectionError:
            # Managed Redis drops idle connections; reconnect and report empty.
            self.client = redis.Redis.from_url(self.url)
            return None


def snapshot_event(kind: str, user_id: str, documents: list) -> dict:
    """Builds the event a store listener publishes for a fresh result set."""
    return {
        "kind": kind,
        "user_id": user_id,
        "documents": [{"id": doc.id, "data": doc.data} for doc in documents],
    }


def error_event(kind: str, user_id: str, error: Exception) -> dict:
    return {"kind": kind, "user_id": user_id, "error": str(error)}
