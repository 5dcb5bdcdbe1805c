"""
FastAPI dependency injection providers.

Each function retrieves a shared instance that the application lifespan
stored on ``app.state``.  Route handlers depend on these functions rather
than on construction details, and tests replace them through
``app.dependency_overrides``.
"""

import fastapi

import artwork_service.admission_control
import artwork_service.artifact_store
import artwork_service.metrics
import artwork_service.services.image_generation_service
import artwork_service.services.music_profile_service


def get_session_admission_controller(
    request: fastapi.Request,
) -> artwork_service.admission_control.SessionAdmissionController:
    return request.app.state.session_admission_controller  # type: ignore[no-any-return]


def get_artifact_store(
    request: fastapi.Request,
) -> artwork_service.artifact_store.ArtifactStore:
    return request.app.state.artifact_store  # type: ignore[no-any-return]


def get_image_generation_service(
    request: fastapi.Request,
) -> artwork_service.services.image_generation_service.ImageGenerationService:
    return request.app.state.image_generation_service  # type: ignore[no-any-return]


def get_music_profile_service(
    request: fastapi.Request,
) -> artwork_service.services.music_profile_service.MusicProfileService:
    return request.app.state.music_profile_service  # type: ignore[no-any-return]


def get_metrics_collector(
    request: fastapi.Request,
) -> artwork_service.metrics.MetricsCollector | None:
    """
    Retrieve the metrics collector, if one was installed.

    Returns ``None`` for applications assembled without the full factory,
    such as the minimal apps used in route tests.
    """
    return getattr(request.app.state, "metrics_collector", None)
