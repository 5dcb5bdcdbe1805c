"""
Custom exception classes for the Song Artwork service.

Each exception class maps to a specific category of operational failure.
Client-facing exceptions are translated by ``error_handling.py`` into a
consistent JSON error response with a machine-readable error code;
storage exceptions stay inside the artifact store and its callers.

Exception hierarchy
-------------------
::

    Exception (Python built-in)
    └── ServiceError (base class for all service exceptions)
        ├── ImageGenerationProviderUnavailableError  → HTTP 502
        ├── ImageGenerationError                     → HTTP 502
        ├── SessionAdmissionRejectedError            → HTTP 429
        ├── ArtworkNotFoundError                     → HTTP 404
        ├── ArtifactBackendError                     (recovered by tier fallback)
        └── ArtifactStoreUnavailableError            (logged, never surfaced)
"""

import artwork_service.admission_control


class ServiceError(Exception):
    """
    Base exception for all service-level errors.

    Every service exception carries a ``detail`` attribute containing a
    human-readable description of the failure.  Subclasses define a
    ``default_detail`` class attribute used when no explicit detail is
    passed to the constructor.
    """

    default_detail: str = "A service error occurred."

    def __init__(self, detail: str | None = None) -> None:
        self.detail = detail or self.default_detail
        super().__init__(self.detail)


class ImageGenerationProviderUnavailableError(ServiceError):
    """
    Raised when the image generation API cannot be reached, times out, or
    answers with a non-success HTTP status code.

    Mapped to HTTP 502 with the error code ``upstream_service_unavailable``.
    """

    default_detail = "The image generation provider is unavailable."


class ImageGenerationError(ServiceError):
    """
    Raised when the image generation API answers successfully but the body
    does not contain an image URL.

    Mapped to HTTP 502 with the error code ``image_generation_failed``.
    """

    default_detail = "Image generation failed."


class SessionAdmissionRejectedError(ServiceError):
    """
    Raised by the generation endpoint when the session admission controller
    rejects a request.

    The error-handling layer maps this to HTTP 429 (Too Many Requests).  The
    error code is the rejection reason (``session_limit``, ``cooldown`` or
    ``rate_limit``) and the retry hint is returned both in milliseconds in
    the body and in seconds in the ``Retry-After`` header.
    """

    default_detail = "Too many artwork generation requests."

    def __init__(
        self,
        decision: artwork_service.admission_control.AdmissionRejected,
    ) -> None:
        self.decision = decision
        super().__init__(decision.message)


class ArtworkNotFoundError(ServiceError):
    """Raised when an owner-scoped artwork lookup or deletion finds nothing."""

    default_detail = "The requested artwork does not exist."


class ArtifactBackendError(ServiceError):
    """
    Raised by a storage backend when it cannot complete a read or write.

    The artifact store catches this per tier and retries the same call on
    the next tier of its fallback chain.
    """

    default_detail = "The artifact storage backend failed."


class ArtifactStoreUnavailableError(ServiceError):
    """
    Raised by ``ArtifactStore.append`` when every configured tier failed.

    Generation endpoints log this and still return the generated artwork.
    """

    default_detail = "No artifact storage tier accepted the write."
