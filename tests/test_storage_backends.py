"""
Tests for artwork_service/storage_backends.py.

The Redis tier runs against ``fakeredis``; an unreachable server is
simulated by disconnecting the fake server.  The file tier writes into
pytest's ``tmp_path``.
"""

import json
from unittest.mock import AsyncMock, MagicMock

import fakeredis
import fakeredis.aioredis
import pytest
import pytest_asyncio
import redis.exceptions

import artwork_service.exceptions
import artwork_service.storage_backends


def _prepend(entry):
    def mutation(history):
        return [entry, *history]

    return mutation


def _unchanged(history):
    return None


@pytest.fixture
def fake_redis_server():
    return fakeredis.FakeServer()


@pytest_asyncio.fixture
async def redis_client(fake_redis_server):
    client = fakeredis.aioredis.FakeRedis(server=fake_redis_server, decode_responses=True)
    yield client
    await client.aclose()


class TestDecodeHistory:
    def test_none_is_empty_history(self) -> None:
        assert artwork_service.storage_backends.decode_history(None, "owner", "test") == []

    def test_json_string_is_decoded(self) -> None:
        assert artwork_service.storage_backends.decode_history('[{"id": "1"}]', "owner", "test") == [{"id": "1"}]

    def test_invalid_json_is_empty_history(self) -> None:
        assert artwork_service.storage_backends.decode_history("{not json", "owner", "test") == []

    def test_non_list_is_empty_history(self) -> None:
        assert artwork_service.storage_backends.decode_history('{"id": "1"}', "owner", "test") == []

    def test_list_with_non_objects_is_empty_history(self) -> None:
        assert artwork_service.storage_backends.decode_history([1, 2], "owner", "test") == []


class TestMemoryArtifactHistoryBackend:
    async def test_missing_owner_has_empty_history(self) -> None:
        backend = artwork_service.storage_backends.MemoryArtifactHistoryBackend()

        assert await backend.read_history("owner") == []

    async def test_update_is_visible_to_later_reads(self) -> None:
        backend = artwork_service.storage_backends.MemoryArtifactHistoryBackend()

        await backend.update_history("owner", _prepend({"id": "1"}))
        await backend.update_history("owner", _prepend({"id": "2"}))

        assert await backend.read_history("owner") == [{"id": "2"}, {"id": "1"}]

    async def test_returned_history_is_a_copy(self) -> None:
        backend = artwork_service.storage_backends.MemoryArtifactHistoryBackend()
        await backend.update_history("owner", _prepend({"id": "1"}))

        history = await backend.read_history("owner")
        history[0]["id"] = "tampered"

        assert await backend.read_history("owner") == [{"id": "1"}]

    async def test_mutation_returning_none_changes_nothing(self) -> None:
        backend = artwork_service.storage_backends.MemoryArtifactHistoryBackend()
        await backend.update_history("owner", _prepend({"id": "1"}))

        result = await backend.update_history("owner", _unchanged)

        assert result == [{"id": "1"}]
        assert await backend.read_history("owner") == [{"id": "1"}]


class TestFileArtifactHistoryBackend:
    async def test_update_writes_a_json_object_keyed_by_owner(self, tmp_path) -> None:
        file_path = tmp_path / "data" / "artworks.json"
        backend = artwork_service.storage_backends.FileArtifactHistoryBackend(file_path)

        await backend.update_history("owner", _prepend({"id": "1"}))

        assert json.loads(file_path.read_text(encoding="utf-8")) == {"owner": [{"id": "1"}]}

    async def test_history_survives_a_restart(self, tmp_path) -> None:
        file_path = tmp_path / "artworks.json"
        first_backend = artwork_service.storage_backends.FileArtifactHistoryBackend(file_path)
        await first_backend.update_history("owner", _prepend({"id": "1"}))

        second_backend = artwork_service.storage_backends.FileArtifactHistoryBackend(file_path)

        assert await second_backend.read_history("owner") == [{"id": "1"}]

    async def test_corrupt_file_loads_as_empty(self, tmp_path) -> None:
        file_path = tmp_path / "artworks.json"
        file_path.write_text("{ this is not json", encoding="utf-8")

        backend = artwork_service.storage_backends.FileArtifactHistoryBackend(file_path)

        assert await backend.read_history("owner") == []

    async def test_corrupt_owner_entry_reads_as_empty(self, tmp_path) -> None:
        file_path = tmp_path / "artworks.json"
        file_path.write_text(json.dumps({"owner": "oops", "other": [{"id": "9"}]}), encoding="utf-8")

        backend = artwork_service.storage_backends.FileArtifactHistoryBackend(file_path)

        assert await backend.read_history("owner") == []
        assert await backend.read_history("other") == [{"id": "9"}]

    async def test_failed_write_raises_backend_error_and_keeps_previous_state(self, tmp_path) -> None:
        blocking_file = tmp_path / "not-a-directory"
        blocking_file.write_text("", encoding="utf-8")
        backend = artwork_service.storage_backends.FileArtifactHistoryBackend(blocking_file / "artworks.json")

        with pytest.raises(artwork_service.exceptions.ArtifactBackendError):
            await backend.update_history("owner", _prepend({"id": "1"}))

        assert await backend.read_history("owner") == []

    async def test_no_temporary_files_are_left_behind(self, tmp_path) -> None:
        backend = artwork_service.storage_backends.FileArtifactHistoryBackend(tmp_path / "artworks.json")

        await backend.update_history("owner", _prepend({"id": "1"}))
        await backend.update_history("owner", _prepend({"id": "2"}))

        assert [path.name for path in tmp_path.iterdir()] == ["artworks.json"]

    async def test_unchanged_mutation_does_not_create_the_file(self, tmp_path) -> None:
        file_path = tmp_path / "artworks.json"
        backend = artwork_service.storage_backends.FileArtifactHistoryBackend(file_path)

        await backend.update_history("owner", _unchanged)

        assert not file_path.exists()


class TestRedisArtifactHistoryBackend:
    async def test_update_stores_a_json_array_under_the_prefixed_key(self, redis_client) -> None:
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(redis_client)

        await backend.update_history("owner", _prepend({"id": "1"}))

        assert json.loads(await redis_client.get("artworks:owner")) == [{"id": "1"}]

    async def test_read_returns_the_stored_history(self, redis_client) -> None:
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(redis_client)
        await backend.update_history("owner", _prepend({"id": "1"}))
        await backend.update_history("owner", _prepend({"id": "2"}))

        assert await backend.read_history("owner") == [{"id": "2"}, {"id": "1"}]

    async def test_undecodable_value_reads_as_empty(self, redis_client) -> None:
        await redis_client.set("artworks:owner", "not json")
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(redis_client)

        assert await backend.read_history("owner") == []

    async def test_unchanged_mutation_does_not_create_the_key(self, redis_client) -> None:
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(redis_client)

        await backend.update_history("owner", _unchanged)

        assert await redis_client.exists("artworks:owner") == 0

    async def test_unreachable_server_raises_backend_error_on_read(self, fake_redis_server, redis_client) -> None:
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(redis_client)
        fake_redis_server.connected = False

        with pytest.raises(artwork_service.exceptions.ArtifactBackendError):
            await backend.read_history("owner")

    async def test_unreachable_server_raises_backend_error_on_update(self, fake_redis_server, redis_client) -> None:
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(redis_client)
        fake_redis_server.connected = False

        with pytest.raises(artwork_service.exceptions.ArtifactBackendError):
            await backend.update_history("owner", _prepend({"id": "1"}))

    async def test_health_reflects_server_reachability(self, fake_redis_server, redis_client) -> None:
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(redis_client)

        assert await backend.check_health() is True

        fake_redis_server.connected = False

        assert await backend.check_health() is False


def _build_conflicting_pipeline(execute_side_effect):
    pipeline = MagicMock()
    pipeline.__aenter__ = AsyncMock(return_value=pipeline)
    pipeline.__aexit__ = AsyncMock(return_value=False)
    pipeline.watch = AsyncMock()
    pipeline.unwatch = AsyncMock()
    pipeline.get = AsyncMock(return_value=None)
    pipeline.execute = AsyncMock(side_effect=execute_side_effect)
    return pipeline


class TestRedisOptimisticTransactions:
    async def test_write_conflict_is_retried(self) -> None:
        pipeline = _build_conflicting_pipeline([redis.exceptions.WatchError(), [True]])
        client = MagicMock()
        client.pipeline.return_value = pipeline
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(client)

        result = await backend.update_history("owner", _prepend({"id": "1"}))

        assert result == [{"id": "1"}]
        assert pipeline.execute.await_count == 2

    async def test_persistent_conflicts_raise_backend_error(self) -> None:
        pipeline = _build_conflicting_pipeline(redis.exceptions.WatchError())
        client = MagicMock()
        client.pipeline.return_value = pipeline
        backend = artwork_service.storage_backends.RedisArtifactHistoryBackend(
            client,
            maximum_transaction_attempts=3,
        )

        with pytest.raises(artwork_service.exceptions.ArtifactBackendError):
            await backend.update_history("owner", _prepend({"id": "1"}))

        assert pipeline.execute.await_count == 3
