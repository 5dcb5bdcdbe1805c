"""
FastAPI application factory.

``create_application`` builds a fully configured application: structured
logging, middleware, error handlers, routers, and a lifespan that owns the
shared components.

Lifespan
--------
On startup the lifespan constructs, in order:

1. the ``SessionAdmissionController`` from the admission settings;
2. the ``SessionReaper``, started as a background task;
3. the ``ArtifactStore`` with its tier chain selected from configuration;
4. the image generation and music profile HTTP clients.

On shutdown it stops the reaper first (no eviction may run against a
half-closed application), then closes the HTTP clients and the store.
"""

import collections.abc
import contextlib

import fastapi
import fastapi.middleware.cors
import structlog

import artwork_service.admission_control
import artwork_service.artifact_store
import artwork_service.error_handling
import artwork_service.logging_config
import artwork_service.metrics
import artwork_service.middleware
import artwork_service.routes.artwork_generation_routes
import artwork_service.routes.artwork_history_routes
import artwork_service.routes.health_routes
import artwork_service.services.image_generation_service
import artwork_service.services.music_profile_service
import artwork_service.session_reaper
import configuration

logger = structlog.get_logger()


def create_application(
    application_configuration: configuration.ApplicationConfiguration | None = None,
) -> fastapi.FastAPI:
    """
    Create and fully configure the FastAPI application.

    Args:
        application_configuration: Settings to build the application
            from.  Read from the environment when omitted.
    """
    if application_configuration is None:
        application_configuration = configuration.ApplicationConfiguration()

    artwork_service.logging_config.configure_logging(
        log_level=application_configuration.log_level,
    )

    metrics_collector = artwork_service.metrics.MetricsCollector()
    in_flight_request_counter = artwork_service.middleware.InFlightRequestCounter()

    @contextlib.asynccontextmanager
    async def application_lifespan(
        fastapi_application: fastapi.FastAPI,
    ) -> collections.abc.AsyncIterator[None]:
        session_admission_controller = artwork_service.admission_control.SessionAdmissionController(
            maximum_requests_per_session=application_configuration.session_maximum_requests,
            session_inactivity_timeout_seconds=application_configuration.session_inactivity_timeout_seconds,
            cooldown_seconds=application_configuration.session_request_cooldown_seconds,
            maximum_requests_per_window=application_configuration.session_requests_per_window,
            window_seconds=application_configuration.session_window_seconds,
            timestamp_retention_seconds=application_configuration.session_timestamp_retention_seconds,
        )

        session_reaper = artwork_service.session_reaper.SessionReaper(
            session_admission_controller,
            interval_seconds=application_configuration.session_reaper_interval_seconds,
        )

        artifact_store = artwork_service.artifact_store.ArtifactStore.from_settings(
            redis_url=application_configuration.artifact_store_redis_url,
            file_path=application_configuration.artifact_store_file_path,
            redis_key_prefix=application_configuration.artifact_store_redis_key_prefix,
            redis_timeout_seconds=application_configuration.artifact_store_redis_timeout_seconds,
            history_limit=application_configuration.artifact_history_limit,
        )

        image_generation_service = artwork_service.services.image_generation_service.ImageGenerationService(
            image_generation_api_base_url=application_configuration.image_generation_api_base_url,
            image_generation_api_key=application_configuration.image_generation_api_key,
            request_timeout_seconds=application_configuration.timeout_for_image_generation_requests_in_seconds,
            model=application_configuration.image_generation_model,
            image_size=application_configuration.image_generation_size,
        )

        music_profile_service = artwork_service.services.music_profile_service.MusicProfileService(
            music_profile_api_base_url=application_configuration.music_profile_api_base_url,
            request_timeout_seconds=application_configuration.timeout_for_music_profile_requests_in_seconds,
        )

        fastapi_application.state.session_admission_controller = session_admission_controller
        fastapi_application.state.session_reaper = session_reaper
        fastapi_application.state.artifact_store = artifact_store
        fastapi_application.state.image_generation_service = image_generation_service
        fastapi_application.state.music_profile_service = music_profile_service
        fastapi_application.state.metrics_collector = metrics_collector

        session_reaper.start()

        logger.info(
            "services_initialised",
            artifact_store_tiers=artifact_store.tier_names,
            image_generation_model=application_configuration.image_generation_model,
            session_maximum_requests=application_configuration.session_maximum_requests,
        )

        yield

        logger.info(
            "graceful_shutdown_initiated",
            in_flight_requests=in_flight_request_counter.count,
            active_sessions=session_admission_controller.active_session_count,
        )

        await session_reaper.stop()
        await image_generation_service.close()
        await music_profile_service.close()
        await artifact_store.close()

        logger.info("services_shutdown_complete")

    fastapi_application = fastapi.FastAPI(
        title="Song Artwork",
        description=(
            "Generates artwork from a listener's song titles, with per-session "
            "admission control and a bounded per-listener artwork history."
        ),
        version="1.0.0",
        lifespan=application_lifespan,
    )

    artwork_service.error_handling.register_error_handlers(fastapi_application)

    if application_configuration.cors_allowed_origins:
        fastapi_application.add_middleware(
            fastapi.middleware.cors.CORSMiddleware,
            allow_origins=application_configuration.cors_allowed_origins,
            allow_methods=["GET", "POST", "DELETE"],
            allow_headers=["Content-Type", "Accept"],
            expose_headers=["Retry-After", "X-Correlation-ID"],
        )

    fastapi_application.add_middleware(
        artwork_service.middleware.RequestTimeoutMiddleware,
        request_timeout_seconds=application_configuration.timeout_for_requests_in_seconds,
    )

    fastapi_application.add_middleware(
        artwork_service.middleware.CorrelationIdMiddleware,
        metrics_collector=metrics_collector,
        in_flight_request_counter=in_flight_request_counter,
    )

    fastapi_application.include_router(
        artwork_service.routes.artwork_generation_routes.artwork_generation_router,
    )
    fastapi_application.include_router(
        artwork_service.routes.artwork_history_routes.artwork_history_router,
    )
    fastapi_application.include_router(
        artwork_service.routes.health_routes.health_router,
    )

    return fastapi_application
