"""Shared fixtures for route integration tests."""

from unittest.mock import AsyncMock

import fastapi
import httpx
import pytest
import pytest_asyncio

import artwork_service.admission_control
import artwork_service.artifact_store
import artwork_service.dependencies
import artwork_service.error_handling
import artwork_service.metrics
import artwork_service.middleware
import artwork_service.models
import artwork_service.routes.artwork_generation_routes
import artwork_service.routes.artwork_history_routes
import artwork_service.routes.health_routes
import artwork_service.storage_backends

LISTENER_ID = "listener-1"

GENERATED_IMAGE_URL = "https://cdn.example.test/artwork.png"


@pytest.fixture
def mock_image_generation_service():
    service = AsyncMock()
    service.generate_image = AsyncMock(return_value=GENERATED_IMAGE_URL)
    service.check_health = AsyncMock(return_value=True)
    return service


@pytest.fixture
def mock_music_profile_service():
    """Resolves every non-empty token to the same listener."""
    listener_profile = artwork_service.models.ListenerProfile(id=LISTENER_ID, display_name="Ada")

    service = AsyncMock()
    service.fetch_user_profile = AsyncMock(return_value=listener_profile)
    service.resolve_owner_id = AsyncMock(return_value=LISTENER_ID)
    return service


@pytest.fixture
def session_admission_controller(manual_clock):
    return artwork_service.admission_control.SessionAdmissionController(clock=manual_clock)


@pytest.fixture
def artifact_store():
    return artwork_service.artifact_store.ArtifactStore(
        [artwork_service.storage_backends.MemoryArtifactHistoryBackend()],
    )


@pytest.fixture
def metrics_collector():
    return artwork_service.metrics.MetricsCollector()


@pytest.fixture
def test_app(
    mock_image_generation_service,
    mock_music_profile_service,
    session_admission_controller,
    artifact_store,
    metrics_collector,
):
    app = fastapi.FastAPI()
    artwork_service.error_handling.register_error_handlers(app)

    app.add_middleware(
        artwork_service.middleware.RequestTimeoutMiddleware,
        request_timeout_seconds=300.0,
    )
    app.add_middleware(
        artwork_service.middleware.CorrelationIdMiddleware,
        metrics_collector=metrics_collector,
    )

    app.include_router(artwork_service.routes.artwork_generation_routes.artwork_generation_router)
    app.include_router(artwork_service.routes.artwork_history_routes.artwork_history_router)
    app.include_router(artwork_service.routes.health_routes.health_router)

    app.dependency_overrides[artwork_service.dependencies.get_image_generation_service] = lambda: (
        mock_image_generation_service
    )
    app.dependency_overrides[artwork_service.dependencies.get_music_profile_service] = lambda: (
        mock_music_profile_service
    )
    app.dependency_overrides[artwork_service.dependencies.get_session_admission_controller] = lambda: (
        session_admission_controller
    )
    app.dependency_overrides[artwork_service.dependencies.get_artifact_store] = lambda: artifact_store

    app.state.image_generation_service = mock_image_generation_service
    app.state.artifact_store = artifact_store
    app.state.metrics_collector = metrics_collector

    return app


@pytest_asyncio.fixture
async def client(test_app):
    transport = httpx.ASGITransport(app=test_app)
    async with httpx.AsyncClient(transport=transport, base_url="http://testserver") as ac:
        yield ac
