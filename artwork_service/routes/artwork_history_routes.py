"""
Route definitions for reading and deleting stored artworks.

Every endpoint takes the listener's music-catalog ``access_token`` as a
required query parameter and resolves it to an owner.  A token that cannot
be resolved maps to the shared ``"anonymous"`` owner, matching how the
generation endpoint stores artworks for listeners who are not signed in.

- ``GET /api/history``: the owner's artworks (newest first), statistics
  and profile.
- ``GET /api/artworks/{artwork_id}``: one artwork, or 404.
- ``DELETE /api/artworks/{artwork_id}``: remove one artwork, or 404.
"""

import typing

import fastapi
import fastapi.responses

import artwork_service.artifact_store
import artwork_service.dependencies
import artwork_service.exceptions
import artwork_service.models
import artwork_service.services.music_profile_service

artwork_history_router = fastapi.APIRouter(
    prefix="/api",
    tags=["Artwork History"],
)

AccessTokenQuery = typing.Annotated[
    str,
    fastapi.Query(
        min_length=1,
        description="Music-catalog access token of the listener.",
    ),
]

ArtifactStoreDependency = typing.Annotated[
    artwork_service.artifact_store.ArtifactStore,
    fastapi.Depends(artwork_service.dependencies.get_artifact_store),
]

MusicProfileServiceDependency = typing.Annotated[
    artwork_service.services.music_profile_service.MusicProfileService,
    fastapi.Depends(artwork_service.dependencies.get_music_profile_service),
]

_NOT_FOUND_RESPONSE = {
    404: {
        "description": "The owner has no artwork with this identifier (``artwork_not_found``).",
        "model": artwork_service.models.ErrorResponse,
    },
}


@artwork_history_router.get(
    "/history",
    response_model=artwork_service.models.ArtworkHistoryResponse,
    summary="List the listener's artworks",
)
async def get_artwork_history(
    access_token: AccessTokenQuery,
    artifact_store: ArtifactStoreDependency,
    music_profile_service: MusicProfileServiceDependency,
) -> fastapi.responses.JSONResponse:
    """
    Return the listener's artwork history with summary statistics.

    ``user`` is ``null`` when the token could not be resolved, in which
    case the history shown is that of the anonymous owner.
    """
    listener_profile = await music_profile_service.fetch_user_profile(access_token)
    owner_id = listener_profile.id if listener_profile is not None else artwork_service.models.ANONYMOUS_OWNER_ID

    history_response = artwork_service.models.ArtworkHistoryResponse(
        artworks=await artifact_store.list(owner_id),
        stats=await artifact_store.stats(owner_id),
        user=listener_profile,
    )

    return fastapi.responses.JSONResponse(
        content=history_response.model_dump(mode="json"),
        headers={"Cache-Control": "no-store"},
    )


@artwork_history_router.get(
    "/artworks/{artwork_id}",
    response_model=artwork_service.models.ArtifactRecord,
    summary="Fetch one artwork",
    responses=_NOT_FOUND_RESPONSE,
)
async def get_artwork(
    artwork_id: str,
    access_token: AccessTokenQuery,
    artifact_store: ArtifactStoreDependency,
    music_profile_service: MusicProfileServiceDependency,
) -> fastapi.responses.JSONResponse:
    owner_id = await music_profile_service.resolve_owner_id(access_token)

    stored_record = await artifact_store.get(owner_id, artwork_id)
    if stored_record is None:
        raise artwork_service.exceptions.ArtworkNotFoundError()

    return fastapi.responses.JSONResponse(
        content=stored_record.model_dump(mode="json"),
        headers={"Cache-Control": "no-store"},
    )


@artwork_history_router.delete(
    "/artworks/{artwork_id}",
    response_model=artwork_service.models.ArtworkDeletionResponse,
    summary="Delete one artwork",
    responses=_NOT_FOUND_RESPONSE,
)
async def delete_artwork(
    artwork_id: str,
    access_token: AccessTokenQuery,
    artifact_store: ArtifactStoreDependency,
    music_profile_service: MusicProfileServiceDependency,
) -> artwork_service.models.ArtworkDeletionResponse:
    owner_id = await music_profile_service.resolve_owner_id(access_token)

    if not await artifact_store.remove(owner_id, artwork_id):
        raise artwork_service.exceptions.ArtworkNotFoundError()

    return artwork_service.models.ArtworkDeletionResponse(success=True)
