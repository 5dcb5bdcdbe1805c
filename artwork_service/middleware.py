"""
Pure ASGI middleware for the Song Artwork service.

- **CorrelationIdMiddleware** (outermost): assigns a UUID v4 correlation
  ID to every request, binds it into the structlog context, echoes it in
  the ``X-Correlation-ID`` response header, records request metrics, and
  turns any unhandled exception into a JSON 500 response.
- **RequestTimeoutMiddleware**: aborts requests that exceed the configured
  end-to-end timeout with a JSON 504 response.

Execution order (ASGI middleware runs in reverse registration order)::

    Request → CorrelationId → RequestTimeout → CORS → App

Both are written against the raw ASGI interface rather than
``BaseHTTPMiddleware``, which wraps exceptions in ``ExceptionGroup`` and
would hide them from the 500 boundary.
"""

import asyncio
import json
import threading
import time
import uuid

import starlette.types
import structlog
import structlog.contextvars

import artwork_service.metrics

logger = structlog.get_logger()


class InFlightRequestCounter:
    """
    Number of HTTP requests currently being processed.

    Read at shutdown so the ``graceful_shutdown_initiated`` event reports
    how many requests were still running.
    """

    def __init__(self) -> None:
        self._count: int = 0
        self._lock = threading.Lock()

    def increment(self) -> None:
        with self._lock:
            self._count += 1

    def decrement(self) -> None:
        with self._lock:
            self._count -= 1

    @property
    def count(self) -> int:
        return self._count


async def _send_json_error(
    send: starlette.types.Send,
    status: int,
    code: str,
    message: str,
    correlation_id: str,
) -> int:
    """Send a complete JSON error response and return its body size."""
    response_body = json.dumps(
        {
            "error": {
                "code": code,
                "message": message,
                "correlation_id": correlation_id,
            }
        }
    ).encode()

    await send(
        {
            "type": "http.response.start",
            "status": status,
            "headers": [
                (b"content-type", b"application/json"),
                (b"content-length", str(len(response_body)).encode()),
            ],
        }
    )
    await send(
        {
            "type": "http.response.body",
            "body": response_body,
        }
    )
    return len(response_body)


def _route_template(scope: starlette.types.Scope) -> str:
    """Return the matched route template, or the raw path when nothing matched."""
    matched_route = scope.get("route")
    return getattr(matched_route, "path", None) or scope.get("path", "")


class CorrelationIdMiddleware:
    """
    Assign a correlation ID to every request and contain unhandled errors.

    The ID is stored in ``scope["state"]`` (visible as
    ``request.state.correlation_id``) so error handlers can include it in
    response bodies.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        metrics_collector: artwork_service.metrics.MetricsCollector | None = None,
        in_flight_request_counter: InFlightRequestCounter | None = None,
    ) -> None:
        self.app = app
        self._metrics_collector = metrics_collector
        self._in_flight_request_counter = in_flight_request_counter

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        correlation_id = str(uuid.uuid4())
        method = scope.get("method", "")
        start_time = time.monotonic()
        response_status = 0
        response_started = False

        scope.setdefault("state", {})
        scope["state"]["correlation_id"] = correlation_id

        structlog.contextvars.clear_contextvars()
        structlog.contextvars.bind_contextvars(correlation_id=correlation_id)

        logger.info(
            "http_request_received",
            method=method,
            path=scope.get("path", ""),
        )

        if self._in_flight_request_counter is not None:
            self._in_flight_request_counter.increment()

        async def send_with_correlation_id(message: starlette.types.Message) -> None:
            nonlocal response_status, response_started
            if message["type"] == "http.response.start":
                response_started = True
                response_status = message.get("status", 0)
                message["headers"] = [
                    *message.get("headers", []),
                    (b"x-correlation-id", correlation_id.encode()),
                ]
            await send(message)

        try:
            await self.app(scope, receive, send_with_correlation_id)
        except Exception:
            logger.exception("unexpected_exception")
            if not response_started:
                response_status = 500
                await _send_json_error(
                    send_with_correlation_id,
                    500,
                    "internal_server_error",
                    "An unexpected internal error occurred.",
                    correlation_id,
                )
        finally:
            if self._in_flight_request_counter is not None:
                self._in_flight_request_counter.decrement()

            duration_milliseconds = round((time.monotonic() - start_time) * 1000, 1)
            route_template = _route_template(scope)
            logger.info(
                "http_request_completed",
                method=method,
                path=route_template,
                status=response_status,
                duration_milliseconds=duration_milliseconds,
            )
            if self._metrics_collector is not None:
                self._metrics_collector.record_request(
                    method=method,
                    path=route_template,
                    status=response_status,
                    duration_milliseconds=duration_milliseconds,
                )


class RequestTimeoutMiddleware:
    """
    Enforce an end-to-end ceiling on request processing time.

    Must be registered inside ``CorrelationIdMiddleware`` so that timeout
    responses carry the correlation ID.  If the application has already
    started its response when the timeout fires, the timeout is only
    logged; a started response cannot be replaced.
    """

    def __init__(
        self,
        app: starlette.types.ASGIApp,
        request_timeout_seconds: float = 300.0,
    ) -> None:
        self.app = app
        self._request_timeout_seconds = request_timeout_seconds

    async def __call__(
        self,
        scope: starlette.types.Scope,
        receive: starlette.types.Receive,
        send: starlette.types.Send,
    ) -> None:
        if scope["type"] != "http":
            await self.app(scope, receive, send)
            return

        response_headers_already_sent = False

        async def send_with_header_tracking(message: starlette.types.Message) -> None:
            nonlocal response_headers_already_sent
            if message["type"] == "http.response.start":
                response_headers_already_sent = True
            await send(message)

        try:
            await asyncio.wait_for(
                self.app(scope, receive, send_with_header_tracking),
                timeout=self._request_timeout_seconds,
            )
        except TimeoutError:
            logger.error(
                "request_timeout_exceeded",
                timeout_seconds=self._request_timeout_seconds,
                path=scope.get("path", ""),
                method=scope.get("method", ""),
            )

            if response_headers_already_sent:
                logger.warning(
                    "request_timeout_after_headers_sent",
                    path=scope.get("path", ""),
                )
                return

            await _send_json_error(
                send,
                504,
                "request_timeout",
                "The request exceeded the maximum allowed processing time and was aborted.",
                scope.get("state", {}).get("correlation_id", "unknown"),
            )
