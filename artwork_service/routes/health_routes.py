"""
Route definitions for health, readiness, and metrics endpoints.

- ``GET /health``: liveness; 200 whenever the process is serving.
- ``GET /health/ready``: readiness; 200 when the image provider is
  configured and at least one artifact storage tier is healthy, otherwise
  503 with ``Retry-After``.  Per-tier results are reported individually,
  so a degraded primary tier is visible even while the service is ready.
- ``GET /metrics``: JSON snapshot of the in-memory metrics collector.

All three responses carry cache-suppression headers; operational data
must never be served stale by an intermediary.
"""

import typing

import fastapi
import fastapi.responses
import structlog

logger = structlog.get_logger()

health_router = fastapi.APIRouter(tags=["Health"])

RETRY_AFTER_NOT_READY_SECONDS = 10

_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS: dict[str, str] = {
    "Cache-Control": "no-store, no-cache",
    "Pragma": "no-cache",
}


@health_router.get(
    "/health",
    summary="Liveness check",
    status_code=200,
)
async def health_check() -> fastapi.responses.JSONResponse:
    return fastapi.responses.JSONResponse(
        content={"status": "healthy"},
        headers=_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS,
    )


async def _probe(probe_name: str, probe: typing.Callable[[], typing.Awaitable[typing.Any]]) -> typing.Any:
    """Run one readiness probe; an exception counts as unhealthy."""
    try:
        return await probe()
    except Exception:
        logger.warning("readiness_probe_failed", probe=probe_name, exc_info=True)
        return None


@health_router.get(
    "/health/ready",
    summary="Readiness check",
    status_code=200,
    responses={
        503: {
            "description": (
                "The image provider is not configured or no artifact storage "
                "tier is healthy. ``Retry-After`` gives the wait in seconds."
            ),
        },
    },
)
async def readiness_check(request: fastapi.Request) -> fastapi.responses.JSONResponse:
    """Aggregate the health of the image provider and every storage tier."""
    checks: dict[str, str] = {}

    image_generation_service = getattr(request.app.state, "image_generation_service", None)
    image_generation_is_healthy = False
    if image_generation_service is not None:
        image_generation_is_healthy = bool(await _probe("image_generation", image_generation_service.check_health))
    checks["image_generation"] = "ok" if image_generation_is_healthy else "unavailable"

    artifact_store = getattr(request.app.state, "artifact_store", None)
    tier_health: dict[str, bool] = {}
    if artifact_store is not None:
        tier_health = await _probe("artifact_store", artifact_store.check_health) or {}
    for tier_name, tier_is_healthy in tier_health.items():
        checks[f"artifact_store_{tier_name}"] = "ok" if tier_is_healthy else "unavailable"

    is_ready = image_generation_is_healthy and any(tier_health.values())

    response_headers = dict(_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS)
    if not is_ready:
        response_headers["Retry-After"] = str(RETRY_AFTER_NOT_READY_SECONDS)

    return fastapi.responses.JSONResponse(
        content={
            "status": "ready" if is_ready else "not_ready",
            "checks": checks,
        },
        status_code=200 if is_ready else 503,
        headers=response_headers,
    )


@health_router.get(
    "/metrics",
    summary="Request and admission metrics",
    status_code=200,
)
async def get_metrics(request: fastapi.Request) -> fastapi.responses.JSONResponse:
    metrics_collector = getattr(request.app.state, "metrics_collector", None)
    if metrics_collector is None:
        content: dict[str, typing.Any] = {
            "request_counts": {},
            "request_latencies": {},
            "admission_decisions": {},
        }
    else:
        content = metrics_collector.snapshot()

    return fastapi.responses.JSONResponse(
        content=content,
        headers=_INFRASTRUCTURE_CACHE_SUPPRESSION_HEADERS,
    )
