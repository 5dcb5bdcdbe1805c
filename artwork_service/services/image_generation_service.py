"""
Service for communicating with an OpenAI-compatible image generation API.

The provider must expose ``POST /v1/images/generations``.  This service
sends the composed artwork prompt to that endpoint and returns the URL of
the single generated image.

Failure mapping
---------------
- Connection errors, timeouts, non-success HTTP status codes and any other
  ``httpx`` transport failure raise ``ImageGenerationProviderUnavailableError``
  (HTTP 502, ``upstream_service_unavailable``).
- A successful response whose body does not contain ``data[0].url`` raises
  ``ImageGenerationError`` (HTTP 502, ``image_generation_failed``).

The API key is sent as a bearer token and never logged.
"""

import httpx
import structlog

import artwork_service.exceptions

logger = structlog.get_logger()


class ImageGenerationService:
    """
    Asynchronous HTTP client for the image generation provider.

    The service keeps one ``httpx.AsyncClient`` with a small connection
    pool for its whole lifetime.  It must be closed via ``close`` when the
    application shuts down.
    """

    def __init__(
        self,
        image_generation_api_base_url: str,
        image_generation_api_key: str,
        request_timeout_seconds: float,
        model: str = "dall-e-3",
        image_size: str = "1024x1024",
        connection_pool_size: int = 10,
    ) -> None:
        """
        Initialise the image generation service.

        Args:
            image_generation_api_base_url: Base URL of the provider (e.g.
                ``"https://api.openai.com"``).  The service appends
                ``/v1/images/generations``.
            image_generation_api_key: Bearer token for the provider.  An
                empty key makes the readiness probe report the provider as
                unavailable.
            request_timeout_seconds: Maximum time to wait for the provider
                before treating the request as failed.
            model: Model identifier sent with every request.
            image_size: Requested dimensions in ``WIDTHxHEIGHT`` format.
            connection_pool_size: Maximum number of concurrent connections.
        """
        self.image_generation_api_base_url = image_generation_api_base_url
        self._has_api_key = bool(image_generation_api_key)
        self._model = model
        self._image_size = image_size

        headers = {}
        if image_generation_api_key:
            headers["Authorization"] = f"Bearer {image_generation_api_key}"

        self.http_client = httpx.AsyncClient(
            base_url=image_generation_api_base_url,
            headers=headers,
            timeout=httpx.Timeout(request_timeout_seconds),
            limits=httpx.Limits(
                max_connections=connection_pool_size,
                max_keepalive_connections=connection_pool_size,
            ),
        )

    async def generate_image(self, artwork_prompt: str) -> str:
        """
        Generate one image for ``artwork_prompt``.

        Returns:
            The URL of the generated image.

        Raises:
            ImageGenerationProviderUnavailableError: The provider could not
                be reached, timed out, or returned a non-success status.
            ImageGenerationError: The provider answered without an image URL.
        """
        logger.info(
            "image_generation_initiated",
            prompt_length=len(artwork_prompt),
            model=self._model,
            image_size=self._image_size,
        )

        image_generation_request_body = {
            "model": self._model,
            "prompt": artwork_prompt,
            "n": 1,
            "size": self._image_size,
        }

        try:
            http_response = await self.http_client.post(
                "/v1/images/generations",
                json=image_generation_request_body,
            )
            http_response.raise_for_status()
        except httpx.ConnectError as connection_error:
            logger.error(
                "image_provider_connection_failed",
                error=str(connection_error),
            )
            raise artwork_service.exceptions.ImageGenerationProviderUnavailableError(
                detail="The image generation provider is not reachable.",
            ) from connection_error
        except httpx.HTTPStatusError as http_status_error:
            logger.error(
                "image_provider_http_error",
                status_code=http_status_error.response.status_code,
            )
            raise artwork_service.exceptions.ImageGenerationProviderUnavailableError(
                detail=(
                    f"The image generation provider returned HTTP status "
                    f"{http_status_error.response.status_code}."
                ),
            ) from http_status_error
        except httpx.TimeoutException as timeout_error:
            logger.error(
                "image_provider_timeout",
                error=str(timeout_error),
            )
            raise artwork_service.exceptions.ImageGenerationProviderUnavailableError(
                detail="The request to the image generation provider timed out.",
            ) from timeout_error
        except httpx.RequestError as request_error:
            logger.error(
                "image_provider_request_failed",
                error_type=type(request_error).__name__,
                error=str(request_error),
            )
            raise artwork_service.exceptions.ImageGenerationProviderUnavailableError(
                detail=(
                    f"An unexpected communication error occurred with the "
                    f"image generation provider: {type(request_error).__name__}."
                ),
            ) from request_error

        try:
            response_body = http_response.json()
            image_url = response_body["data"][0]["url"]
        except (ValueError, KeyError, IndexError, TypeError) as parsing_error:
            logger.error(
                "image_provider_response_parsing_failed",
                error="Unexpected response structure from image generation provider",
            )
            raise artwork_service.exceptions.ImageGenerationError(
                detail="The image generation provider returned an unexpected response structure.",
            ) from parsing_error

        if not isinstance(image_url, str) or not image_url.strip():
            raise artwork_service.exceptions.ImageGenerationError(
                detail="The image generation provider returned an empty image URL.",
            )

        logger.info("image_generation_completed")

        return image_url

    async def check_health(self) -> bool:
        """
        Report whether the provider can be used.

        The provider has no cheap unauthenticated health endpoint, so
        readiness only checks that an API key is configured.
        """
        return self._has_api_key

    async def close(self) -> None:
        """Close the underlying HTTP client and release network resources."""
        await self.http_client.aclose()
