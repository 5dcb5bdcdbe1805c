"""
Route definition for the artwork generation endpoint.

``POST /api/generate-image`` turns a comma-separated list of song titles
into one generated image:

1. The request body is validated.  Invalid bodies are rejected with 400
   before the admission controller sees them, so they never use quota.
   This deliberately reverses the earlier service, which ran the rate
   limit check before looking at the body.
2. The session admission controller decides whether the client may issue
   another request.  A rejection is returned as 429 immediately; neither
   the image provider nor the music-catalog provider is contacted.
3. The prompt is composed from the song titles and sent to the image
   provider.  Provider failures are returned as 502.
4. The listener is resolved from the access token (``"anonymous"`` when
   absent or invalid) and the artwork is appended to their history.
   A storage failure is logged and the generated image is still returned,
   without an ``artwork_id``.
"""

import typing

import fastapi
import fastapi.responses
import structlog

import artwork_service.admission_control
import artwork_service.artifact_store
import artwork_service.dependencies
import artwork_service.exceptions
import artwork_service.identity
import artwork_service.metrics
import artwork_service.models
import artwork_service.services.artwork_prompt_builder
import artwork_service.services.image_generation_service
import artwork_service.services.music_profile_service

logger = structlog.get_logger()

artwork_generation_router = fastapi.APIRouter(
    prefix="/api",
    tags=["Artwork Generation"],
)


@artwork_generation_router.post(
    "/generate-image",
    response_model=artwork_service.models.ArtworkGenerationResponse,
    response_model_exclude_unset=True,
    summary="Generate an artwork from song titles",
    status_code=200,
    responses={
        400: {
            "description": "The request body is not valid JSON or fails validation.",
            "model": artwork_service.models.ErrorResponse,
        },
        429: {
            "description": (
                "The session admission controller rejected the request. The "
                "error code is ``session_limit``, ``cooldown`` or ``rate_limit``; "
                "``Retry-After`` gives the wait in seconds."
            ),
            "model": artwork_service.models.ErrorResponse,
        },
        502: {
            "description": "The image generation provider failed.",
            "model": artwork_service.models.ErrorResponse,
        },
    },
)
async def handle_artwork_generation_request(
    artwork_generation_request: artwork_service.models.ArtworkGenerationRequest,
    session_key: typing.Annotated[
        str,
        fastapi.Depends(artwork_service.identity.resolve_session_key),
    ],
    admission_controller: typing.Annotated[
        artwork_service.admission_control.SessionAdmissionController,
        fastapi.Depends(artwork_service.dependencies.get_session_admission_controller),
    ],
    image_generation_service: typing.Annotated[
        artwork_service.services.image_generation_service.ImageGenerationService,
        fastapi.Depends(artwork_service.dependencies.get_image_generation_service),
    ],
    music_profile_service: typing.Annotated[
        artwork_service.services.music_profile_service.MusicProfileService,
        fastapi.Depends(artwork_service.dependencies.get_music_profile_service),
    ],
    artifact_store: typing.Annotated[
        artwork_service.artifact_store.ArtifactStore,
        fastapi.Depends(artwork_service.dependencies.get_artifact_store),
    ],
    metrics_collector: typing.Annotated[
        artwork_service.metrics.MetricsCollector | None,
        fastapi.Depends(artwork_service.dependencies.get_metrics_collector),
    ],
) -> fastapi.responses.JSONResponse:
    """Admit, generate, attribute and store one artwork."""
    decision = await admission_controller.check(session_key)
    is_rejected = isinstance(decision, artwork_service.admission_control.AdmissionRejected)

    if metrics_collector is not None:
        metrics_collector.record_admission_decision(decision.reason if is_rejected else "allowed")

    if is_rejected:
        raise artwork_service.exceptions.SessionAdmissionRejectedError(decision)

    song_titles = artwork_service.services.artwork_prompt_builder.parse_song_titles(
        artwork_generation_request.prompt,
    )
    artwork_prompt = artwork_service.services.artwork_prompt_builder.build_artwork_prompt(song_titles)

    image_url = await image_generation_service.generate_image(artwork_prompt.prompt)

    owner_id = await music_profile_service.resolve_owner_id(artwork_generation_request.access_token)

    response_keyword_arguments: dict[str, typing.Any] = {
        "url": image_url,
        "details": artwork_prompt.details,
        "user_id": owner_id,
    }

    try:
        stored_record = await artifact_store.append(
            owner_id,
            {
                "image_url": image_url,
                "songs": song_titles,
                "details": artwork_prompt.details,
                "prompt": artwork_prompt.prompt,
            },
        )
    except artwork_service.exceptions.ArtifactStoreUnavailableError as storage_error:
        logger.error(
            "artwork_storage_failed",
            owner_id=owner_id,
            detail=storage_error.detail,
        )
    else:
        response_keyword_arguments["artwork_id"] = stored_record.id

    logger.info(
        "artwork_generated",
        owner_id=owner_id,
        song_count=len(song_titles),
        artwork_id=response_keyword_arguments.get("artwork_id"),
    )

    generation_response = artwork_service.models.ArtworkGenerationResponse(**response_keyword_arguments)

    return fastapi.responses.JSONResponse(
        content=generation_response.model_dump(exclude_unset=True),
        headers={"Cache-Control": "no-store"},
    )
