"""
Storage backends for the tiered artifact store.

Every backend stores an owner's *entire* artwork history as one value: a
JSON array of artifact objects, newest first.  All backends implement the
same small capability interface, so the ``ArtifactStore`` can hold them in
an ordered fallback list and treat them uniformly:

- ``read_history(owner_id)``: return the raw history (list of dicts).
- ``update_history(owner_id, mutation)``: atomically replace the history
  with ``mutation(current)``.  A mutation returning ``None`` leaves the
  stored value untouched.
- ``check_health()`` and ``close()`` for readiness probing and shutdown.

Failures that should send the caller to the next tier (network errors,
timeouts, failed file writes) are raised as ``ArtifactBackendError``.  A
stored value that cannot be decoded is *not* a failure: it is logged and
read as an empty history.

Backends
--------
``RedisArtifactHistoryBackend``
    Remote key-value store.  Single-key read-modify-write uses a
    ``WATCH``/``MULTI`` optimistic transaction, retried a bounded number of
    times when another writer touches the same key.

``MemoryArtifactHistoryBackend``
    Process-lifetime dictionary.  Used as the fallback tier.

``FileArtifactHistoryBackend``
    Durable local JSON file keyed by owner.  The file is read once at
    construction and rewritten wholesale on every mutation.  The in-memory
    copy is only updated after the write has succeeded, so memory and disk
    never disagree.
"""

import abc
import asyncio
import collections.abc
import contextlib
import copy
import json
import os
import pathlib
import tempfile
import typing

import redis.asyncio
import redis.exceptions
import structlog

import artwork_service.exceptions

logger = structlog.get_logger()

RawHistory = list[dict[str, typing.Any]]

HistoryMutation = collections.abc.Callable[[RawHistory], RawHistory | None]


def decode_history(raw_history: typing.Any, owner_id: str, backend_name: str) -> RawHistory:
    """
    Interpret a stored value as a history list.

    Accepts a JSON string (as stored in Redis) or an already decoded value
    (as held by the file and memory tiers).  Anything that is not a list
    of objects is reported and treated as an empty history.
    """
    if raw_history is None:
        return []

    if isinstance(raw_history, (str, bytes)):
        try:
            raw_history = json.loads(raw_history)
        except json.JSONDecodeError:
            logger.warning(
                "artifact_history_undecodable",
                backend=backend_name,
                owner_id=owner_id,
            )
            return []

    if not isinstance(raw_history, list) or not all(isinstance(entry, dict) for entry in raw_history):
        logger.warning(
            "artifact_history_malformed",
            backend=backend_name,
            owner_id=owner_id,
            value_type=type(raw_history).__name__,
        )
        return []

    return raw_history


class ArtifactHistoryBackend(abc.ABC):
    """Common capability interface of every storage tier."""

    name: str = "backend"

    @abc.abstractmethod
    async def read_history(self, owner_id: str) -> RawHistory:
        """Return the stored history of ``owner_id`` (empty when absent)."""

    @abc.abstractmethod
    async def update_history(self, owner_id: str, mutation: HistoryMutation) -> RawHistory:
        """Atomically apply ``mutation`` and return the resulting history."""

    async def check_health(self) -> bool:
        return True

    async def close(self) -> None:
        return None


class MemoryArtifactHistoryBackend(ArtifactHistoryBackend):
    """
    In-process history map scoped to the lifetime of the process.

    All reads and writes are serialised through one ``asyncio.Lock``.
    Values are deep-copied on the way in and out so callers can never
    mutate stored records by accident.
    """

    name = "memory"

    def __init__(self) -> None:
        self._histories: dict[str, RawHistory] = {}
        self._lock = asyncio.Lock()

    async def read_history(self, owner_id: str) -> RawHistory:
        async with self._lock:
            return copy.deepcopy(self._histories.get(owner_id, []))

    async def update_history(self, owner_id: str, mutation: HistoryMutation) -> RawHistory:
        async with self._lock:
            current_history = copy.deepcopy(self._histories.get(owner_id, []))
            updated_history = mutation(current_history)
            if updated_history is None:
                return current_history
            self._histories[owner_id] = copy.deepcopy(updated_history)
            return updated_history


class FileArtifactHistoryBackend(ArtifactHistoryBackend):
    """
    Durable JSON file holding every owner's history in one object.

    File layout::

        {
          "<owner_id>": [ {artifact}, {artifact}, ... ],   # newest first
          ...
        }
    """

    name = "file"

    def __init__(self, file_path: str | os.PathLike[str]) -> None:
        self._file_path = pathlib.Path(file_path)
        self._lock = asyncio.Lock()
        self._histories: dict[str, typing.Any] = self._load_file()

    def _load_file(self) -> dict[str, typing.Any]:
        if not self._file_path.exists():
            return {}

        try:
            file_contents = json.loads(self._file_path.read_text(encoding="utf-8"))
        except (OSError, json.JSONDecodeError) as load_error:
            logger.error(
                "artifact_file_load_failed",
                path=str(self._file_path),
                error=str(load_error),
            )
            return {}

        if not isinstance(file_contents, dict):
            logger.error(
                "artifact_file_malformed",
                path=str(self._file_path),
                value_type=type(file_contents).__name__,
            )
            return {}

        logger.info(
            "artifact_file_loaded",
            path=str(self._file_path),
            owner_count=len(file_contents),
        )
        return file_contents

    async def read_history(self, owner_id: str) -> RawHistory:
        async with self._lock:
            return copy.deepcopy(decode_history(self._histories.get(owner_id), owner_id, self.name))

    async def update_history(self, owner_id: str, mutation: HistoryMutation) -> RawHistory:
        async with self._lock:
            current_history = copy.deepcopy(decode_history(self._histories.get(owner_id), owner_id, self.name))
            updated_history = mutation(current_history)
            if updated_history is None:
                return current_history

            snapshot = {**self._histories, owner_id: updated_history}
            try:
                await asyncio.to_thread(self._write_snapshot, snapshot)
            except (OSError, TypeError, ValueError) as write_error:
                raise artwork_service.exceptions.ArtifactBackendError(
                    detail=f"Writing the artwork file failed: {type(write_error).__name__}.",
                ) from write_error

            self._histories = snapshot
            return copy.deepcopy(updated_history)

    def _write_snapshot(self, snapshot: dict[str, typing.Any]) -> None:
        """Serialise ``snapshot`` to a temporary file, then atomically replace."""
        serialised_snapshot = json.dumps(snapshot, indent=2)
        self._file_path.parent.mkdir(parents=True, exist_ok=True)

        file_descriptor, temporary_path = tempfile.mkstemp(
            dir=self._file_path.parent,
            prefix=f".{self._file_path.name}.",
            suffix=".tmp",
        )
        try:
            with os.fdopen(file_descriptor, "w", encoding="utf-8") as temporary_file:
                temporary_file.write(serialised_snapshot)
            os.replace(temporary_path, self._file_path)
        except BaseException:
            with contextlib.suppress(FileNotFoundError):
                os.unlink(temporary_path)
            raise

    async def check_health(self) -> bool:
        directory = self._file_path.parent
        if not directory.exists():
            directory = directory.parent if directory.parent.exists() else pathlib.Path.cwd()
        return os.access(directory, os.W_OK)


class RedisArtifactHistoryBackend(ArtifactHistoryBackend):
    """
    Remote key-value tier backed by Redis.

    Each owner's history lives under ``{key_prefix}{owner_id}`` as a JSON
    string.  The client's socket timeouts bound every call; a timeout is
    surfaced as ``ArtifactBackendError`` like any other connection failure.
    """

    name = "redis"

    def __init__(
        self,
        redis_client: redis.asyncio.Redis,
        key_prefix: str = "artworks:",
        maximum_transaction_attempts: int = 5,
    ) -> None:
        self._redis_client = redis_client
        self._key_prefix = key_prefix
        self._maximum_transaction_attempts = maximum_transaction_attempts

    @classmethod
    def from_url(
        cls,
        redis_url: str,
        key_prefix: str = "artworks:",
        timeout_seconds: float = 5.0,
    ) -> "RedisArtifactHistoryBackend":
        """Create a backend with its own connection pool for ``redis_url``."""
        redis_client = redis.asyncio.from_url(
            redis_url,
            encoding="utf-8",
            decode_responses=True,
            socket_timeout=timeout_seconds,
            socket_connect_timeout=timeout_seconds,
        )
        return cls(redis_client, key_prefix=key_prefix)

    def _history_key(self, owner_id: str) -> str:
        return f"{self._key_prefix}{owner_id}"

    async def read_history(self, owner_id: str) -> RawHistory:
        try:
            stored_value = await self._redis_client.get(self._history_key(owner_id))
        except (redis.exceptions.RedisError, OSError) as redis_error:
            raise artwork_service.exceptions.ArtifactBackendError(
                detail=f"Reading from Redis failed: {type(redis_error).__name__}.",
            ) from redis_error

        return decode_history(stored_value, owner_id, self.name)

    async def update_history(self, owner_id: str, mutation: HistoryMutation) -> RawHistory:
        history_key = self._history_key(owner_id)

        try:
            async with self._redis_client.pipeline(transaction=True) as pipeline:
                for attempt_number in range(1, self._maximum_transaction_attempts + 1):
                    try:
                        await pipeline.watch(history_key)
                        current_history = decode_history(await pipeline.get(history_key), owner_id, self.name)
                        updated_history = mutation(copy.deepcopy(current_history))
                        if updated_history is None:
                            await pipeline.unwatch()
                            return current_history

                        pipeline.multi()
                        pipeline.set(history_key, json.dumps(updated_history))
                        await pipeline.execute()
                        return updated_history
                    except redis.exceptions.WatchError:
                        logger.debug(
                            "artifact_history_write_conflict",
                            owner_id=owner_id,
                            attempt_number=attempt_number,
                        )
        except (redis.exceptions.RedisError, OSError) as redis_error:
            raise artwork_service.exceptions.ArtifactBackendError(
                detail=f"Writing to Redis failed: {type(redis_error).__name__}.",
            ) from redis_error

        raise artwork_service.exceptions.ArtifactBackendError(
            detail=(
                f"The Redis history of '{owner_id}' kept changing during "
                f"{self._maximum_transaction_attempts} update attempts."
            ),
        )

    async def check_health(self) -> bool:
        try:
            return bool(await self._redis_client.ping())
        except (redis.exceptions.RedisError, OSError):
            return False

    async def close(self) -> None:
        await self._redis_client.aclose()
