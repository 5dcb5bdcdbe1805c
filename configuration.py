"""
Application configuration module.

Loads all configuration values from environment variables with the prefix
SONG_ARTWORK_. Default values are provided for local development. A .env
file is also supported via pydantic-settings.

This module is the single source of truth for all runtime configuration
within the service process.
"""

import pydantic
import pydantic_settings


class ApplicationConfiguration(pydantic_settings.BaseSettings):
    """
    Centralised configuration for the Song Artwork service.

    Every field maps to an environment variable prefixed with SONG_ARTWORK_.
    For example, the field ``artifact_store_redis_url`` is populated from
    the environment variable SONG_ARTWORK_ARTIFACT_STORE_REDIS_URL.

    Configuration categories
    ------------------------
    - **Application**: host, port, CORS, log level, request timeout
    - **Session admission control**: per-session cap, cooldown, sliding
      window, inactivity timeout, reaper interval
    - **Artifact store**: history limit, Redis connection, local file path
    - **Image generation provider**: base URL, API key, model, size, timeout
    - **Music profile provider**: base URL, timeout

    Artifact store tier selection
    -----------------------------
    When ``artifact_store_redis_url`` is non-empty the Redis tier is the
    primary tier and the in-process memory map is its fallback.  When it is
    empty, the local JSON file at ``artifact_store_file_path`` becomes the
    primary tier instead.
    """

    # ── Application settings ─────────────────────────────────────────────

    application_host: str = "127.0.0.1"

    application_port: int = pydantic.Field(default=8888, ge=1, le=65535)

    cors_allowed_origins: list[str] = pydantic.Field(
        default=[],
        description=(
            "Allowed CORS origins as a JSON list. An empty list disables CORS "
            "entirely. Example: '[\"http://localhost:3000\"]'."
        ),
    )

    log_level: str = pydantic.Field(
        default="INFO",
        description=(
            "Minimum log level for structured JSON logging. "
            "Accepted values: DEBUG, INFO, WARNING, ERROR, CRITICAL."
        ),
    )

    timeout_for_requests_in_seconds: float = pydantic.Field(
        default=300.0,
        gt=0,
        description=(
            "Maximum end-to-end duration in seconds for any single HTTP "
            "request. Requests exceeding this ceiling are aborted with "
            "HTTP 504 (request_timeout)."
        ),
    )

    # ── Session admission control settings ───────────────────────────────

    session_maximum_requests: int = pydantic.Field(
        default=10,
        ge=1,
        description=(
            "Lifetime number of accepted artwork generation requests per "
            "session key. Further requests are rejected with reason "
            "'session_limit' until the session is reaped."
        ),
    )

    session_inactivity_timeout_seconds: float = pydantic.Field(
        default=1800.0,
        gt=0,
        description=(
            "Inactivity period after which a session record is evicted by the "
            "background reaper. Also used as the retry hint for 'session_limit' "
            "rejections."
        ),
    )

    session_request_cooldown_seconds: float = pydantic.Field(
        default=30.0,
        ge=0,
        description="Minimum spacing between two accepted requests of one session.",
    )

    session_requests_per_window: int = pydantic.Field(
        default=3,
        ge=1,
        description="Maximum accepted requests inside one sliding window.",
    )

    session_window_seconds: float = pydantic.Field(
        default=60.0,
        gt=0,
        description="Length of the sliding request window in seconds.",
    )

    session_timestamp_retention_seconds: float = pydantic.Field(
        default=120.0,
        gt=0,
        description=(
            "Request timestamps older than this are pruned from a session "
            "record after every accepted request."
        ),
    )

    session_reaper_interval_seconds: float = pydantic.Field(
        default=300.0,
        gt=0,
        description="Period of the background task that evicts inactive sessions.",
    )

    # ── Artifact store settings ───────────────────────────────────────────

    artifact_history_limit: int = pydantic.Field(
        default=50,
        ge=1,
        description="Maximum number of artworks retained per owner, newest first.",
    )

    artifact_store_redis_url: str = pydantic.Field(
        default="",
        description=(
            "Connection URL of the remote Redis key-value store, for example "
            "'redis://localhost:6379/0'. Leave empty to use the local file tier."
        ),
    )

    artifact_store_redis_key_prefix: str = pydantic.Field(
        default="artworks:",
        description="Prefix of the Redis key holding one owner's history.",
    )

    artifact_store_redis_timeout_seconds: float = pydantic.Field(
        default=5.0,
        gt=0,
        description=(
            "Socket connect and read timeout for Redis calls. A timeout is "
            "treated as a backend failure and the call falls back to memory."
        ),
    )

    artifact_store_file_path: str = pydantic.Field(
        default="data/artworks.json",
        description="Location of the JSON file used when no Redis URL is configured.",
    )

    # ── Image generation provider settings ────────────────────────────────

    image_generation_api_base_url: str = pydantic.Field(
        default="https://api.openai.com",
        description=(
            "Base URL of the OpenAI-compatible image generation API. The "
            "service appends /v1/images/generations to this URL."
        ),
    )

    image_generation_api_key: str = pydantic.Field(
        default="",
        description="Bearer token sent to the image generation API.",
    )

    image_generation_model: str = pydantic.Field(
        default="dall-e-3",
        description="Model identifier sent with every image generation request.",
    )

    image_generation_size: str = pydantic.Field(
        default="1024x1024",
        pattern=r"^\d+x\d+$",
        description="Requested image dimensions in WIDTHxHEIGHT format.",
    )

    timeout_for_image_generation_requests_in_seconds: float = pydantic.Field(
        default=120.0,
        gt=0,
        description=(
            "Maximum time in seconds to wait for the image generation API "
            "before treating the request as failed."
        ),
    )

    # ── Music profile provider settings ──────────────────────────────────

    music_profile_api_base_url: str = pydantic.Field(
        default="https://api.spotify.com",
        description="Base URL of the music-catalog API queried for GET /v1/me.",
    )

    timeout_for_music_profile_requests_in_seconds: float = pydantic.Field(
        default=10.0,
        gt=0,
        description=(
            "Maximum time in seconds to wait for the listener profile. On "
            "timeout the artwork owner falls back to 'anonymous'."
        ),
    )

    model_config = pydantic_settings.SettingsConfigDict(
        env_file=".env",
        env_prefix="SONG_ARTWORK_",
    )
