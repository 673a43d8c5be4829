import json
from unittest.mock import MagicMock, patch

import pytest
import redis
from redis.exceptions import ConnectionError as RedisConnectionError

from services.trauma_engine.models import MalformedPersistedStateError
from services.trauma_engine.session_store import InMemorySessionStore, RedisSessionStore


def test_in_memory_round_trip_and_delete():
    store = InMemorySessionStore(key_prefix="user-1:")
    store.set("trauma_affinities", {"recursion": 1.0})
    assert store.data == {"user-1:trauma_affinities": json.dumps({"recursion": 1.0})}
    assert store.get("trauma_affinities") == {"recursion": 1.0}
    store.delete("trauma_affinities")
    assert store.get("trauma_affinities") is None
    store.delete("trauma_affinities")  # deleting a missing key is a no-op


def test_in_memory_corrupt_value_raises():
    store = InMemorySessionStore()
    store.data["primary_trauma"] = "{not json"
    with pytest.raises(MalformedPersistedStateError, match="not valid JSON"):
        store.get("primary_trauma")


@pytest.fixture
def mock_redis():
    return MagicMock(spec=redis.Redis)


def test_redis_store_prefixes_and_serializes(mock_redis):
    store = RedisSessionStore(mock_redis, key_prefix="voidbloom:u1:")
    store.set("coherence_baseline", 0.62)
    mock_redis.set.assert_called_once_with("voidbloom:u1:coherence_baseline", "0.62")


def test_redis_store_get_decodes_strings_and_bytes(mock_redis):
    store = RedisSessionStore(mock_redis)
    mock_redis.get.return_value = '"fragmentation"'
    assert store.get("primary_trauma") == "fragmentation"
    mock_redis.get.assert_called_with("voidbloom:primary_trauma")

    mock_redis.get.return_value = b"true"
    assert store.get("initiated") is True


def test_redis_store_missing_key_is_none(mock_redis):
    mock_redis.get.return_value = None
    assert RedisSessionStore(mock_redis).get("initiated") is None


def test_redis_store_corrupt_value_raises(mock_redis):
    mock_redis.get.return_value = "nope{"
    with pytest.raises(MalformedPersistedStateError):
        RedisSessionStore(mock_redis).get("trauma_affinities")


def test_redis_store_delete(mock_redis):
    RedisSessionStore(mock_redis, key_prefix="p:").delete("initiated")
    mock_redis.delete.assert_called_once_with("p:initiated")


def test_redis_errors_propagate(mock_redis):
    mock_redis.set.side_effect = RedisConnectionError("down")
    with pytest.raises(RedisConnectionError):
        RedisSessionStore(mock_redis).set("initiated", True)


def test_from_url_builds_client_with_timeouts():
    with patch("services.trauma_engine.session_store.redis.Redis.from_url") as from_url:
        store = RedisSessionStore.from_url("redis://localhost:6379/2", key_prefix="p:")
    assert store.client is from_url.return_value
    assert store.key_prefix == "p:"
    _, kwargs = from_url.call_args
    assert kwargs["socket_connect_timeout"] > 0
    assert kwargs["socket_timeout"] > 0
