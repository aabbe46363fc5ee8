"""Reconciliation stores: in-memory and Redis-backed."""

import json
from unittest.mock import Mock

import redis

from pesaproxy.common.status import PaymentStatus, StatusObservation
from pesaproxy.common.store import MemoryStore, RedisStore, build_store


def test_memory_claim_is_once_only():
    store = MemoryStore()
    assert store.claim("TRK-1:IPNCHANGE:completed", 60) is True
    assert store.claim("TRK-1:IPNCHANGE:completed", 60) is False


def test_memory_notifications_filter_by_tracking_id():
    store = MemoryStore()
    store.append_notification({"tracking_id": "A"})
    store.append_notification({"tracking_id": "B"})
    assert store.notifications("A") == [{"tracking_id": "A"}]
    assert len(store.notifications()) == 2


def test_redis_claim_uses_set_nx_with_ttl():
    client = Mock()
    client.set.return_value = True
    store = RedisStore(client)

    assert store.claim("TRK-1:IPNCHANGE:completed", 300) is True
    client.set.assert_called_once_with("pesaproxy:ipn:TRK-1:IPNCHANGE:completed", "1", nx=True, ex=300)

    client.set.return_value = None
    assert store.claim("TRK-1:IPNCHANGE:completed", 300) is False


def test_redis_claim_failure_does_not_block_processing():
    client = Mock()
    client.set.side_effect = redis.ConnectionError("down")
    assert RedisStore(client).claim("k", 60) is True


def test_redis_observation_round_trip():
    saved = {}
    client = Mock()
    client.set.side_effect = lambda key, value, **_: saved.__setitem__(key, value)
    client.get.side_effect = saved.get
    store = RedisStore(client)

    observation = StatusObservation(tracking_id="TRK-1", status=PaymentStatus.FAILED, source="ipn")
    store.put_observation(observation)

    assert json.loads(saved["pesaproxy:observation:TRK-1"])["status"] == "failed"
    assert store.get_observation("TRK-1") == observation
    assert store.get_observation("TRK-2") is None


def test_redis_notifications_are_listed_per_tracking_id():
    client = Mock()
    client.lrange.return_value = [json.dumps({"tracking_id": "TRK-1"})]
    store = RedisStore(client)

    store.append_notification({"tracking_id": "TRK-1"})

    client.rpush.assert_called_once_with("pesaproxy:notifications:TRK-1", json.dumps({"tracking_id": "TRK-1"}))
    assert store.notifications("TRK-1") == [{"tracking_id": "TRK-1"}]


def test_build_store_defaults_to_memory():
    assert isinstance(build_store(None), MemoryStore)
    assert isinstance(build_store("redis://localhost:6379/0"), RedisStore)
