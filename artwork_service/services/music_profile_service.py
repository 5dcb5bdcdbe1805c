"""
Service for resolving the listener behind a music-catalog access token.

The access token is exchanged elsewhere (the OAuth flow is not part of
this service).  Here it is only used to call ``GET /v1/me`` so that stored
artworks can be attributed to the listener.  Every failure is absorbed:
the listener is then treated as anonymous and artworks are stored under
the ``"anonymous"`` owner.
"""

import httpx
import pydantic
import structlog

import artwork_service.models

logger = structlog.get_logger()


class MusicProfileService:
    """Asynchronous HTTP client for the music-catalog profile endpoint."""

    def __init__(
        self,
        music_profile_api_base_url: str,
        request_timeout_seconds: float,
        connection_pool_size: int = 10,
    ) -> None:
        self.music_profile_api_base_url = music_profile_api_base_url
        self.http_client = httpx.AsyncClient(
            base_url=music_profile_api_base_url,
            timeout=httpx.Timeout(request_timeout_seconds),
            limits=httpx.Limits(
                max_connections=connection_pool_size,
                max_keepalive_connections=connection_pool_size,
            ),
        )

    async def fetch_user_profile(self, access_token: str | None) -> artwork_service.models.ListenerProfile | None:
        """
        Look up the profile of the listener owning ``access_token``.

        Returns:
            The listener profile, or ``None`` when no token was given or
            the lookup failed for any reason.
        """
        if not access_token:
            return None

        try:
            http_response = await self.http_client.get(
                "/v1/me",
                headers={"Authorization": f"Bearer {access_token}"},
            )
            http_response.raise_for_status()
        except httpx.HTTPStatusError as http_status_error:
            logger.warning(
                "music_profile_http_error",
                status_code=http_status_error.response.status_code,
            )
            return None
        except httpx.HTTPError as request_error:
            logger.warning(
                "music_profile_request_failed",
                error_type=type(request_error).__name__,
            )
            return None

        try:
            return artwork_service.models.ListenerProfile.model_validate(http_response.json())
        except (ValueError, pydantic.ValidationError):
            logger.warning("music_profile_response_invalid")
            return None

    async def resolve_owner_id(self, access_token: str | None) -> str:
        """Return the listener id for ``access_token``, or ``"anonymous"``."""
        listener_profile = await self.fetch_user_profile(access_token)
        if listener_profile is None:
            return artwork_service.models.ANONYMOUS_OWNER_ID
        return listener_profile.id

    async def close(self) -> None:
        """Close the underlying HTTP client and release network resources."""
        await self.http_client.aclose()
