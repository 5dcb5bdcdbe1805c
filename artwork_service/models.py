"""
Pydantic models for request validation, response serialisation, and
persisted artwork records.

``ArtifactRecord`` is also the persisted shape: every storage backend holds
a JSON array of ``ArtifactRecord.model_dump(mode="json")`` objects per
owner, newest first.

Conditional field presence
--------------------------
Optional response fields are omitted from the JSON payload (rather than
set to ``null``) by serialising with ``exclude_unset=True``:

- ``ArtworkGenerationResponse.artwork_id``: absent when no storage tier
  accepted the artwork.
- ``ErrorDetail.details`` and ``ErrorDetail.retry_after_milliseconds``:
  present only for validation failures and admission rejections.
"""

import datetime
import typing

import pydantic

# ──────────────────────────────────────────────────────────────────────────────
#  Constants
# ──────────────────────────────────────────────────────────────────────────────

ANONYMOUS_OWNER_ID = "anonymous"

MAXIMUM_PROMPT_LENGTH = 4000

# ──────────────────────────────────────────────────────────────────────────────
#  Persisted records
# ──────────────────────────────────────────────────────────────────────────────


class ArtifactRecord(pydantic.BaseModel):
    """
    One generated artwork in an owner's history.

    Records are immutable once created; the only permitted change to a
    history is the removal of a whole record.
    """

    id: str = pydantic.Field(
        ...,
        min_length=1,
        description="Time-derived identifier, increasing in creation order.",
    )

    created_at: datetime.datetime = pydantic.Field(
        ...,
        description="UTC instant at which the artwork was stored.",
    )

    owner_id: str = pydantic.Field(
        ...,
        min_length=1,
        description="Resolved listener identity, or 'anonymous'.",
    )

    payload: dict[str, typing.Any] = pydantic.Field(
        default_factory=dict,
        description=(
            "Opaque result data: image URL, source songs, descriptive "
            "details and the prompt text used for generation."
        ),
    )

    model_config = pydantic.ConfigDict(frozen=True)

    @property
    def songs(self) -> list[str]:
        """Song titles recorded in the payload, ignoring malformed entries."""
        songs = self.payload.get("songs")
        if not isinstance(songs, list):
            return []
        return [song for song in songs if isinstance(song, str)]


class ArtifactStatistics(pydantic.BaseModel):
    """Aggregate view over one owner's artwork history."""

    count: int = pydantic.Field(..., ge=0)

    distinct_song_count: int = pydantic.Field(
        ...,
        ge=0,
        description="Number of distinct song titles across the whole history.",
    )

    most_recent_timestamp: datetime.datetime | None = pydantic.Field(
        default=None,
        description="Creation instant of the newest artwork, or null when empty.",
    )

    oldest_timestamp: datetime.datetime | None = pydantic.Field(
        default=None,
        description="Creation instant of the oldest retained artwork, or null when empty.",
    )


# ──────────────────────────────────────────────────────────────────────────────
#  Request Models
# ──────────────────────────────────────────────────────────────────────────────


class ArtworkGenerationRequest(pydantic.BaseModel):
    """
    Request body for the POST /api/generate-image endpoint.

    ``prompt`` is a comma-separated list of song titles.  ``access_token``
    is the listener's music-catalog token, used only to resolve the owner
    of the stored artwork.
    """

    prompt: str = pydantic.Field(
        ...,
        min_length=1,
        max_length=MAXIMUM_PROMPT_LENGTH,
        pattern=r".*[^\s,].*",
        description="Comma-separated song titles. Must name at least one song.",
        examples=["Blue in Green, Clair de Lune, Teardrop"],
    )

    access_token: str | None = pydantic.Field(
        default=None,
        alias="accessToken",
        description="Music-catalog access token of the listener, if signed in.",
    )

    model_config = pydantic.ConfigDict(populate_by_name=True, extra="ignore")


# ──────────────────────────────────────────────────────────────────────────────
#  Response Models
# ──────────────────────────────────────────────────────────────────────────────


class ArtworkGenerationResponse(pydantic.BaseModel):
    """Response body for the POST /api/generate-image endpoint."""

    url: str = pydantic.Field(..., description="URL of the generated image.")

    details: dict[str, str] = pydantic.Field(
        ...,
        description="Descriptive metadata about the composition.",
    )

    user_id: str = pydantic.Field(..., description="Owner the artwork was stored under.")

    artwork_id: str | None = pydantic.Field(
        default=None,
        description="Identifier of the stored artwork. Omitted when storage failed.",
    )


class ListenerProfile(pydantic.BaseModel):
    """Subset of the music-catalog profile echoed back to the client."""

    id: str = pydantic.Field(..., min_length=1)
    display_name: str | None = None
    images: list[dict[str, typing.Any]] = pydantic.Field(default_factory=list)

    model_config = pydantic.ConfigDict(extra="ignore")


class ArtworkHistoryResponse(pydantic.BaseModel):
    """Response body for the GET /api/history endpoint."""

    artworks: list[ArtifactRecord]
    stats: ArtifactStatistics
    user: ListenerProfile | None = None


class ArtworkDeletionResponse(pydantic.BaseModel):
    """Response body for the DELETE /api/artworks/{artwork_id} endpoint."""

    success: bool = True


# ──────────────────────────────────────────────────────────────────────────────
#  Error Models
# ──────────────────────────────────────────────────────────────────────────────


class ErrorDetail(pydantic.BaseModel):
    """
    Detailed error information nested inside the error response.

    ``details`` carries validation errors; ``retry_after_milliseconds``
    carries the admission controller's retry hint on HTTP 429.
    """

    code: str = pydantic.Field(
        ...,
        description="A machine-readable error code in snake_case format.",
    )

    message: str = pydantic.Field(
        ...,
        description="A human-readable error description safe for display to end users.",
    )

    details: str | list | None = pydantic.Field(
        default=None,
        description="Additional context about the error, when available.",
    )

    retry_after_milliseconds: int | None = pydantic.Field(
        default=None,
        ge=0,
        description="How long to wait before retrying a throttled request.",
    )

    correlation_id: str = pydantic.Field(
        ...,
        description="UUID v4 correlation identifier matching the X-Correlation-ID response header.",
    )


class ErrorResponse(pydantic.BaseModel):
    """Standardised error response returned for all error conditions."""

    error: ErrorDetail = pydantic.Field(
        ...,
        description="An object containing error details.",
    )
