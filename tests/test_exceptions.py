"""Tests for artwork_service/exceptions.py: custom exception classes."""

import artwork_service.admission_control
import artwork_service.exceptions


class TestServiceErrorBase:

    def test_all_exceptions_inherit_from_service_error(self):
        for exc_cls in (
            artwork_service.exceptions.ImageGenerationProviderUnavailableError,
            artwork_service.exceptions.ImageGenerationError,
            artwork_service.exceptions.SessionAdmissionRejectedError,
            artwork_service.exceptions.ArtworkNotFoundError,
            artwork_service.exceptions.ArtifactBackendError,
            artwork_service.exceptions.ArtifactStoreUnavailableError,
        ):
            assert issubclass(exc_cls, artwork_service.exceptions.ServiceError)


class TestImageGenerationProviderUnavailableError:

    def test_default_message(self):
        exc = artwork_service.exceptions.ImageGenerationProviderUnavailableError()
        assert exc.detail == "The image generation provider is unavailable."
        assert str(exc) == "The image generation provider is unavailable."

    def test_custom_message(self):
        exc = artwork_service.exceptions.ImageGenerationProviderUnavailableError(
            detail="Custom detail"
        )
        assert exc.detail == "Custom detail"
        assert str(exc) == "Custom detail"


class TestImageGenerationError:

    def test_default_message(self):
        exc = artwork_service.exceptions.ImageGenerationError()
        assert exc.detail == "Image generation failed."


class TestSessionAdmissionRejectedError:

    def test_carries_the_rejection_decision(self):
        decision = artwork_service.admission_control.AdmissionRejected(
            reason=artwork_service.admission_control.REJECTION_REASON_COOLDOWN,
            message="Please wait 12 seconds before making another request.",
            retry_after_milliseconds=12_000,
        )

        exc = artwork_service.exceptions.SessionAdmissionRejectedError(decision)

        assert exc.decision is decision
        assert exc.detail == "Please wait 12 seconds before making another request."


class TestArtifactStorageErrors:

    def test_backend_error_default_message(self):
        exc = artwork_service.exceptions.ArtifactBackendError()
        assert exc.detail == "The artifact storage backend failed."

    def test_store_unavailable_default_message(self):
        exc = artwork_service.exceptions.ArtifactStoreUnavailableError()
        assert exc.detail == "No artifact storage tier accepted the write."

    def test_artwork_not_found_default_message(self):
        exc = artwork_service.exceptions.ArtworkNotFoundError()
        assert exc.detail == "The requested artwork does not exist."
