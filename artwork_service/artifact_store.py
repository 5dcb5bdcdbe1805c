"""
Tiered, bounded, per-owner artwork history.

The ``ArtifactStore`` sits in front of an ordered list of storage tiers
(see ``storage_backends.py``).  Every operation walks the tiers in order:
when a tier raises ``ArtifactBackendError`` the failure is logged and the
*same call* is retried on the next tier.  There is no circuit breaker and
no reconciliation between tiers; the next call starts from the primary
tier again.

Tier selection
--------------
``ArtifactStore.from_settings`` builds the chain from configuration:

- Redis URL configured:  ``[redis, memory]``
- no Redis URL:          ``[file, memory]``

History rules
-------------
- Each owner's history is newest first and holds at most
  ``history_limit`` records.  Appending to a full history drops the oldest.
- Records are immutable.  The only other change is explicit removal.
- A stored history that cannot be decoded or validated is read as empty.
  Appending to it replaces it with a fresh one-record history.

Mutations (``append`` and ``remove``) are wrapped in ``asyncio.shield`` so
that a client disconnecting mid-request never aborts a write halfway.
"""

import asyncio
import collections.abc
import datetime
import threading
import time
import typing

import pydantic
import structlog

import artwork_service.exceptions
import artwork_service.models
import artwork_service.storage_backends

logger = structlog.get_logger()

DEFAULT_HISTORY_LIMIT = 50

_TierResult = typing.TypeVar("_TierResult")


def _utc_now() -> datetime.datetime:
    return datetime.datetime.now(datetime.UTC)


class ArtifactIdentifierGenerator:
    """
    Issues unique, increasing, time-derived artifact identifiers.

    Identifiers are decimal milliseconds since the Unix epoch.  Two
    artifacts created in the same millisecond (or after the wall clock
    stepped backwards) get the previous identifier plus one instead.
    """

    def __init__(self, clock: collections.abc.Callable[[], float] = time.time) -> None:
        self._clock = clock
        self._last_identifier = 0
        self._lock = threading.Lock()

    def next_identifier(self) -> str:
        with self._lock:
            candidate_identifier = int(self._clock() * 1000)
            self._last_identifier = max(candidate_identifier, self._last_identifier + 1)
            return str(self._last_identifier)


class ArtifactStore:
    """
    Bounded per-owner artwork history over a fallback chain of backends.

    Usage::

        store = ArtifactStore.from_settings(redis_url="", file_path="data/artworks.json")
        record = await store.append("listener-1", {"songs": ["A"], "image_url": "..."})
        history = await store.list("listener-1")
    """

    def __init__(
        self,
        tiers: collections.abc.Sequence[artwork_service.storage_backends.ArtifactHistoryBackend],
        history_limit: int = DEFAULT_HISTORY_LIMIT,
        identifier_generator: ArtifactIdentifierGenerator | None = None,
        now: collections.abc.Callable[[], datetime.datetime] = _utc_now,
    ) -> None:
        if not tiers:
            raise ValueError("At least one storage tier is required.")
        if history_limit < 1:
            raise ValueError("history_limit must be at least 1.")

        self._tiers = list(tiers)
        self._history_limit = history_limit
        self._identifier_generator = identifier_generator or ArtifactIdentifierGenerator()
        self._now = now

    @classmethod
    def from_settings(
        cls,
        redis_url: str,
        file_path: str,
        redis_key_prefix: str = "artworks:",
        redis_timeout_seconds: float = 5.0,
        history_limit: int = DEFAULT_HISTORY_LIMIT,
    ) -> "ArtifactStore":
        """Select the primary tier from configuration and add the memory fallback."""
        primary_tier: artwork_service.storage_backends.ArtifactHistoryBackend
        if redis_url:
            primary_tier = artwork_service.storage_backends.RedisArtifactHistoryBackend.from_url(
                redis_url,
                key_prefix=redis_key_prefix,
                timeout_seconds=redis_timeout_seconds,
            )
        else:
            primary_tier = artwork_service.storage_backends.FileArtifactHistoryBackend(file_path)

        tiers = [primary_tier, artwork_service.storage_backends.MemoryArtifactHistoryBackend()]
        logger.info(
            "artifact_store_tiers_selected",
            tiers=[tier.name for tier in tiers],
            history_limit=history_limit,
        )
        return cls(tiers, history_limit=history_limit)

    @property
    def tier_names(self) -> list[str]:
        return [tier.name for tier in self._tiers]

    # ── Tier traversal ───────────────────────────────────────────────────

    async def _call_with_fallback(
        self,
        operation: str,
        owner_id: str,
        tier_call: collections.abc.Callable[
            [artwork_service.storage_backends.ArtifactHistoryBackend],
            collections.abc.Awaitable[_TierResult],
        ],
    ) -> _TierResult:
        """
        Run ``tier_call`` against each tier in order until one succeeds.

        Raises:
            ArtifactStoreUnavailableError: Every tier raised
                ``ArtifactBackendError``.
        """
        for tier_position, tier in enumerate(self._tiers):
            try:
                result = await tier_call(tier)
            except artwork_service.exceptions.ArtifactBackendError as backend_error:
                self._log_backend_failure(operation, owner_id, tier, backend_error)
                continue

            if tier_position > 0:
                logger.info(
                    "artifact_backend_fallback_used",
                    operation=operation,
                    owner_id=owner_id,
                    backend=tier.name,
                )
            return result

        raise artwork_service.exceptions.ArtifactStoreUnavailableError(
            detail=f"Every artifact storage tier failed during '{operation}'.",
        )

    @staticmethod
    def _log_backend_failure(
        operation: str,
        owner_id: str,
        tier: artwork_service.storage_backends.ArtifactHistoryBackend,
        backend_error: artwork_service.exceptions.ArtifactBackendError,
    ) -> None:
        logger.warning(
            "artifact_backend_failed",
            operation=operation,
            owner_id=owner_id,
            backend=tier.name,
            detail=backend_error.detail,
        )

    def _parse_history(
        self,
        owner_id: str,
        raw_history: artwork_service.storage_backends.RawHistory,
    ) -> list[artwork_service.models.ArtifactRecord]:
        try:
            records = [artwork_service.models.ArtifactRecord.model_validate(entry) for entry in raw_history]
        except pydantic.ValidationError as validation_error:
            logger.warning(
                "artifact_history_invalid",
                owner_id=owner_id,
                error_count=validation_error.error_count(),
            )
            return []
        return records[: self._history_limit]

    @staticmethod
    def _serialise_records(
        records: collections.abc.Iterable[artwork_service.models.ArtifactRecord],
    ) -> artwork_service.storage_backends.RawHistory:
        return [record.model_dump(mode="json") for record in records]

    # ── Operations ───────────────────────────────────────────────────────

    async def append(
        self,
        owner_id: str,
        payload: collections.abc.Mapping[str, typing.Any],
    ) -> artwork_service.models.ArtifactRecord:
        """
        Store a new artwork at the head of the owner's history.

        Returns:
            The stored record, including its generated ``id`` and
            ``created_at``.

        Raises:
            ArtifactStoreUnavailableError: No tier accepted the write, or
                the record could not be built (for example an empty
                ``owner_id``).
        """
        try:
            record = artwork_service.models.ArtifactRecord(
                id=self._identifier_generator.next_identifier(),
                created_at=self._now(),
                owner_id=owner_id,
                payload=dict(payload),
            )
        except pydantic.ValidationError as validation_error:
            logger.error(
                "artifact_record_invalid",
                owner_id=owner_id,
                error_count=validation_error.error_count(),
            )
            raise artwork_service.exceptions.ArtifactStoreUnavailableError(
                detail="The artwork record could not be built for storage.",
            ) from validation_error

        def prepend_record(
            raw_history: artwork_service.storage_backends.RawHistory,
        ) -> artwork_service.storage_backends.RawHistory:
            existing_records = self._parse_history(owner_id, raw_history)
            return self._serialise_records([record, *existing_records][: self._history_limit])

        await self._call_with_fallback(
            "append",
            owner_id,
            lambda tier: asyncio.shield(tier.update_history(owner_id, prepend_record)),
        )

        logger.info("artifact_appended", owner_id=owner_id, artifact_id=record.id)
        return record

    async def list(self, owner_id: str) -> list[artwork_service.models.ArtifactRecord]:
        """Return the owner's history, newest first.  Never raises."""
        try:
            raw_history = await self._call_with_fallback(
                "list",
                owner_id,
                lambda tier: tier.read_history(owner_id),
            )
        except artwork_service.exceptions.ArtifactStoreUnavailableError:
            logger.error("artifact_history_unavailable", owner_id=owner_id)
            return []

        return self._parse_history(owner_id, raw_history)

    async def get(self, owner_id: str, artifact_id: str) -> artwork_service.models.ArtifactRecord | None:
        """Return one of the owner's artworks, or ``None`` when it does not exist."""
        for record in await self.list(owner_id):
            if record.id == artifact_id:
                return record
        return None

    async def remove(self, owner_id: str, artifact_id: str) -> bool:
        """
        Delete one artwork from the owner's history.

        Removal is attempted on every tier, so artworks written to the
        memory fallback while the primary tier was down can still be
        deleted.  A failing tier is logged and skipped.

        Returns:
            ``True`` when at least one tier held and removed the artwork.
        """
        removed_from_any_tier = False

        for tier in self._tiers:
            removed_from_tier = False

            def drop_record(
                raw_history: artwork_service.storage_backends.RawHistory,
            ) -> artwork_service.storage_backends.RawHistory | None:
                nonlocal removed_from_tier
                records = self._parse_history(owner_id, raw_history)
                remaining_records = [record for record in records if record.id != artifact_id]
                if len(remaining_records) == len(records):
                    return None
                removed_from_tier = True
                return self._serialise_records(remaining_records)

            try:
                await asyncio.shield(tier.update_history(owner_id, drop_record))
            except artwork_service.exceptions.ArtifactBackendError as backend_error:
                self._log_backend_failure("remove", owner_id, tier, backend_error)
                continue

            removed_from_any_tier = removed_from_any_tier or removed_from_tier

        if removed_from_any_tier:
            logger.info("artifact_removed", owner_id=owner_id, artifact_id=artifact_id)
        return removed_from_any_tier

    async def stats(self, owner_id: str) -> artwork_service.models.ArtifactStatistics:
        """Summarise the owner's current history."""
        records = await self.list(owner_id)
        distinct_songs = {song for record in records for song in record.songs}

        return artwork_service.models.ArtifactStatistics(
            count=len(records),
            distinct_song_count=len(distinct_songs),
            most_recent_timestamp=records[0].created_at if records else None,
            oldest_timestamp=records[-1].created_at if records else None,
        )

    async def check_health(self) -> dict[str, bool]:
        """Return the health of every tier, keyed by tier name."""
        return {tier.name: await tier.check_health() for tier in self._tiers}

    async def close(self) -> None:
        """Release the resources held by every tier."""
        for tier in self._tiers:
            await tier.close()
