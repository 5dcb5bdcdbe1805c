"""
Exception handlers translating failures into the JSON error contract.

    - Invalid JSON body                   →  400 invalid_request_json
    - Request validation failure          →  400 request_validation_failed
    - Artwork not found                   →  404 artwork_not_found
    - Undefined endpoint                  →  404 not_found
    - Wrong HTTP method                   →  405 method_not_allowed (+ Allow)
    - Admission rejection                 →  429 <rejection reason> (+ Retry-After)
    - Image provider unreachable          →  502 upstream_service_unavailable
    - Image provider returned no image    →  502 image_generation_failed
    - Unexpected internal errors          →  500 internal_server_error

Unexpected exceptions are handled by ``CorrelationIdMiddleware`` rather
than here, because Starlette always re-raises after running a handler
registered for ``Exception``.
"""

import math

import fastapi
import fastapi.exceptions
import fastapi.responses
import starlette.exceptions
import starlette.routing
import structlog

import artwork_service.exceptions
import artwork_service.models

logger = structlog.get_logger()

_FRAMEWORK_ERROR_CODES: dict[int, str] = {
    404: "not_found",
    405: "method_not_allowed",
}

_FRAMEWORK_ERROR_MESSAGES: dict[int, str] = {
    404: "The requested endpoint does not exist.",
    405: "The HTTP method is not allowed for this endpoint.",
}

_FRAMEWORK_ERROR_LOG_EVENTS: dict[int, str] = {
    404: "http_not_found",
    405: "http_method_not_allowed",
}


def _get_correlation_id(request: fastapi.Request) -> str:
    return getattr(request.state, "correlation_id", "unknown")


_CANDIDATE_HTTP_METHODS: tuple[str, ...] = ("DELETE", "GET", "HEAD", "OPTIONS", "PATCH", "POST", "PUT")


def _discover_allowed_methods_for_path(
    fastapi_application: fastapi.FastAPI,
    request_path: str,
) -> str:
    """
    Collect the methods registered for ``request_path`` for the ``Allow`` header.

    Each candidate method is offered to every top-level route through the
    routing ``matches`` protocol, so routers added with ``include_router``
    and their prefixes and path parameters are honoured whatever route
    objects the framework stores for them.  ``HEAD`` is advertised
    wherever ``GET`` is.
    """
    allowed_methods: set[str] = set()

    for http_method in _CANDIDATE_HTTP_METHODS:
        scope = {"type": "http", "path": request_path, "root_path": "", "method": http_method}
        if any(route.matches(scope)[0] == starlette.routing.Match.FULL for route in fastapi_application.routes):
            allowed_methods.add(http_method)

    if "GET" in allowed_methods:
        allowed_methods.add("HEAD")

    return ", ".join(sorted(allowed_methods))


def build_error_response(
    status_code: int,
    code: str,
    message: str,
    correlation_id: str,
    details: list | None = None,
    retry_after_milliseconds: int | None = None,
) -> fastapi.responses.JSONResponse:
    """
    Build a JSON error response in the ``ErrorResponse`` shape.

    ``details`` and ``retry_after_milliseconds`` are omitted from the body
    entirely when not given.
    """
    error_detail_keyword_arguments: dict = {
        "code": code,
        "message": message,
        "correlation_id": correlation_id,
    }
    if details is not None:
        error_detail_keyword_arguments["details"] = details
    if retry_after_milliseconds is not None:
        error_detail_keyword_arguments["retry_after_milliseconds"] = retry_after_milliseconds

    error_response = artwork_service.models.ErrorResponse(
        error=artwork_service.models.ErrorDetail(**error_detail_keyword_arguments),
    )

    return fastapi.responses.JSONResponse(
        status_code=status_code,
        content=error_response.model_dump(exclude_unset=True),
    )


def register_error_handlers(fastapi_application: fastapi.FastAPI) -> None:
    """Register every custom exception handler on ``fastapi_application``."""

    @fastapi_application.exception_handler(
        fastapi.exceptions.RequestValidationError,
    )
    async def handle_request_validation_error(
        request: fastapi.Request,
        validation_error: fastapi.exceptions.RequestValidationError,
    ) -> fastapi.responses.JSONResponse:
        """
        Return 400 for malformed JSON or schema violations.

        Only the location, message and type of each validation error are
        echoed back; raw input values never leave the service.
        """
        errors = validation_error.errors()
        logger.warning(
            "http_validation_failed",
            error_count=len(errors),
            error_types=sorted({error.get("type", "") for error in errors}),
        )

        if any(error.get("type", "").startswith("json") for error in errors):
            return build_error_response(
                status_code=400,
                code="invalid_request_json",
                message="The request body contains invalid JSON.",
                correlation_id=_get_correlation_id(request),
            )

        sanitised_validation_error_details = [
            {
                "loc": list(error.get("loc", [])),
                "msg": error.get("msg", ""),
                "type": error.get("type", ""),
            }
            for error in errors
        ]

        return build_error_response(
            status_code=400,
            code="request_validation_failed",
            message="The request failed validation.",
            correlation_id=_get_correlation_id(request),
            details=sanitised_validation_error_details,
        )

    @fastapi_application.exception_handler(
        artwork_service.exceptions.SessionAdmissionRejectedError,
    )
    async def handle_session_admission_rejected(
        request: fastapi.Request,
        rejected_error: artwork_service.exceptions.SessionAdmissionRejectedError,
    ) -> fastapi.responses.JSONResponse:
        """
        Return 429 with the rejection reason as the error code.

        The body carries the exact retry hint in milliseconds; the
        ``Retry-After`` header carries it in whole seconds, rounded up.
        """
        decision = rejected_error.decision

        response = build_error_response(
            429,
            decision.reason,
            decision.message,
            _get_correlation_id(request),
            retry_after_milliseconds=decision.retry_after_milliseconds,
        )
        response.headers["Retry-After"] = str(math.ceil(decision.retry_after_milliseconds / 1000))

        return response

    @fastapi_application.exception_handler(
        artwork_service.exceptions.ImageGenerationProviderUnavailableError,
    )
    async def handle_image_provider_unavailable(
        request: fastapi.Request,
        unavailable_error: artwork_service.exceptions.ImageGenerationProviderUnavailableError,
    ) -> fastapi.responses.JSONResponse:
        logger.error(
            "upstream_service_error",
            upstream="image_generation",
            detail=unavailable_error.detail,
        )
        return build_error_response(
            502,
            "upstream_service_unavailable",
            unavailable_error.detail,
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        artwork_service.exceptions.ImageGenerationError,
    )
    async def handle_image_generation_error(
        request: fastapi.Request,
        generation_error: artwork_service.exceptions.ImageGenerationError,
    ) -> fastapi.responses.JSONResponse:
        logger.error(
            "upstream_service_error",
            upstream="image_generation",
            detail=generation_error.detail,
        )
        return build_error_response(
            502,
            "image_generation_failed",
            generation_error.detail,
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        artwork_service.exceptions.ArtworkNotFoundError,
    )
    async def handle_artwork_not_found(
        request: fastapi.Request,
        not_found_error: artwork_service.exceptions.ArtworkNotFoundError,
    ) -> fastapi.responses.JSONResponse:
        return build_error_response(
            404,
            "artwork_not_found",
            not_found_error.detail,
            _get_correlation_id(request),
        )

    @fastapi_application.exception_handler(
        starlette.exceptions.HTTPException,
    )
    async def handle_starlette_http_exception(
        request: fastapi.Request,
        http_exception: starlette.exceptions.HTTPException,
    ) -> fastapi.responses.JSONResponse:
        """
        Return structured JSON for framework-raised errors (404, 405).

        Unmapped status codes fall back to ``unexpected_error``.  A 405
        response always carries an ``Allow`` header built from the
        application's registered routes.
        """
        error_code = _FRAMEWORK_ERROR_CODES.get(http_exception.status_code, "unexpected_error")
        error_message = _FRAMEWORK_ERROR_MESSAGES.get(
            http_exception.status_code,
            str(http_exception.detail),
        )

        logger.warning(
            _FRAMEWORK_ERROR_LOG_EVENTS.get(http_exception.status_code, "http_framework_error"),
            status_code=http_exception.status_code,
            error_code=error_code,
        )

        response = build_error_response(
            http_exception.status_code,
            error_code,
            error_message,
            _get_correlation_id(request),
        )

        if http_exception.status_code == 405:
            response.headers["Allow"] = _discover_allowed_methods_for_path(
                fastapi_application=request.app,  # type: ignore[arg-type]
                request_path=request.url.path,
            )

        return response
