"""Reconciliation state: IPN idempotency keys, notification records, and the
last status observed per tracking id.

`MemoryStore` is process-local. `RedisStore` shares the same state across
workers; Redis failures are logged and processing continues.
"""

import json
import threading
from typing import Any, Protocol

import redis

from pesaproxy.common.logging import logger
from pesaproxy.common.status import StatusObservation


class ReconciliationStore(Protocol):
    def claim(self, key: str, ttl_seconds: int) -> bool: ...

    def append_notification(self, record: dict[str, Any]) -> None: ...

    def notifications(self, tracking_id: str | None = None) -> list[dict[str, Any]]: ...

    def get_observation(self, tracking_id: str) -> StatusObservation | None: ...

    def put_observation(self, observation: StatusObservation) -> None: ...


class MemoryStore:
    """Thread-safe in-process store; state is lost on restart."""

    def __init__(self) -> None:
        self._lock = threading.Lock()
        self._claimed: set[str] = set()
        self._records: list[dict[str, Any]] = []
        self._observations: dict[str, StatusObservation] = {}

    def claim(self, key: str, ttl_seconds: int) -> bool:
        del ttl_seconds
        with self._lock:
            if key in self._claimed:
                return False
            self._claimed.add(key)
            return True

    def append_notification(self, record: dict[str, Any]) -> None:
        with self._lock:
            self._records.append(dict(record))

    def notifications(self, tracking_id: str | None = None) -> list[dict[str, Any]]:
        with self._lock:
            return [r for r in self._records if tracking_id is None or r.get("tracking_id") == tracking_id]

    def get_observation(self, tracking_id: str) -> StatusObservation | None:
        with self._lock:
            return self._observations.get(tracking_id)

    def put_observation(self, observation: StatusObservation) -> None:
        with self._lock:
            self._observations[observation.tracking_id] = observation


class RedisStore:
    """Redis-backed store keyed under a common prefix."""

    def __init__(self, client: redis.Redis, prefix: str = "pesaproxy") -> None:
        self.client = client
        self.prefix = prefix

    @classmethod
    def from_url(cls, url: str) -> "RedisStore":
        return cls(redis.Redis.from_url(url, decode_responses=True))

    def _key(self, *parts: str) -> str:
        return ":".join((self.prefix, *parts))

    def claim(self, key: str, ttl_seconds: int) -> bool:
        try:
            return bool(self.client.set(self._key("ipn", key), "1", nx=True, ex=ttl_seconds))
        except redis.RedisError as exc:
            # Without the dedupe key we may double-process; the gateway still gets its ack.
            logger.warning("ipn_claim_failed key=%s error=%s", key, exc)
            return True

    def append_notification(self, record: dict[str, Any]) -> None:
        tracking_id = record.get("tracking_id") or "unknown"
        self.client.rpush(self._key("notifications", tracking_id), json.dumps(record, default=str))

    def notifications(self, tracking_id: str | None = None) -> list[dict[str, Any]]:
        if tracking_id is None:
            keys = list(self.client.scan_iter(self._key("notifications", "*")))
        else:
            keys = [self._key("notifications", tracking_id)]
        records: list[dict[str, Any]] = []
        for key in keys:
            records.extend(json.loads(raw) for raw in self.client.lrange(key, 0, -1))
        return records

    def get_observation(self, tracking_id: str) -> StatusObservation | None:
        try:
            raw = self.client.get(self._key("observation", tracking_id))
        except redis.RedisError as exc:
            logger.warning("observation_read_failed tracking_id=%s error=%s", tracking_id, exc)
            return None
        if not raw:
            return None
        return StatusObservation.from_dict(json.loads(raw))

    def put_observation(self, observation: StatusObservation) -> None:
        try:
            self.client.set(
                self._key("observation", observation.tracking_id),
                json.dumps(observation.to_dict()),
            )
        except redis.RedisError as exc:
            logger.warning(
                "observation_write_failed tracking_id=%s error=%s", observation.tracking_id, exc
            )


def build_store(redis_url: str | None) -> ReconciliationStore:
    """Pick the Redis store when configured, else the in-process one."""

    if redis_url:
        return RedisStore.from_url(redis_url)
    return MemoryStore()
