"""
In-memory operational metrics, exposed as JSON on ``GET /metrics``.

Three families of counters are kept:

- ``request_counts``: completed HTTP requests keyed by
  ``"METHOD /route STATUS"``.  Routes with path parameters are recorded by
  their template (``/api/artworks/{artwork_id}``), never by the concrete
  path, so the key space stays bounded.
- ``request_latencies``: bounded sliding window of latency observations per
  ``"METHOD /route"`` with count, min, max, average and 95th percentile.
- ``admission_decisions``: admission controller outcomes keyed by
  ``allowed`` or the rejection reason.

Counters live for the lifetime of the process.  ``service_started_at`` in
every snapshot tells operators when they were last reset.
"""

import collections
import datetime
import threading

DEFAULT_MAXIMUM_OBSERVATIONS_PER_ENDPOINT = 10_000


class MetricsCollector:
    """
    Thread-safe collector for request and admission metrics.

    Guarded by a ``threading.Lock`` because the ASGI middleware and route
    handlers record into it while ``/metrics`` may be snapshotting.
    """

    def __init__(
        self,
        maximum_observations_per_endpoint: int = DEFAULT_MAXIMUM_OBSERVATIONS_PER_ENDPOINT,
    ) -> None:
        self._lock = threading.Lock()
        self._maximum_observations_per_endpoint = maximum_observations_per_endpoint
        self._request_counts: dict[str, int] = {}
        self._request_latencies: dict[str, collections.deque[float]] = {}
        self._admission_decisions: collections.Counter[str] = collections.Counter()
        self._service_started_at: str = _format_current_utc_timestamp()

    def record_request(
        self,
        method: str,
        path: str,
        status: int,
        duration_milliseconds: float,
    ) -> None:
        """Record one completed HTTP request."""
        with self._lock:
            count_key = f"{method} {path} {status}"
            self._request_counts[count_key] = self._request_counts.get(count_key, 0) + 1

            latency_key = f"{method} {path}"
            if latency_key not in self._request_latencies:
                self._request_latencies[latency_key] = collections.deque(
                    maxlen=self._maximum_observations_per_endpoint,
                )
            self._request_latencies[latency_key].append(duration_milliseconds)

    def record_admission_decision(self, outcome: str) -> None:
        """Count one admission decision (``"allowed"`` or a rejection reason)."""
        with self._lock:
            self._admission_decisions[outcome] += 1

    def snapshot(self) -> dict:
        """Return a point-in-time, JSON-serialisable copy of every metric."""
        with self._lock:
            result: dict = {
                "collected_at": _format_current_utc_timestamp(),
                "service_started_at": self._service_started_at,
                "request_counts": dict(self._request_counts),
                "request_latencies": {},
                "admission_decisions": dict(self._admission_decisions),
            }

            for endpoint_key, latency_observations in self._request_latencies.items():
                observation_count = len(latency_observations)
                sorted_observations = sorted(latency_observations)

                # Nearest-rank; converges to the maximum for small samples.
                percentile_95_index = min(
                    int(observation_count * 0.95),
                    observation_count - 1,
                )

                result["request_latencies"][endpoint_key] = {
                    "count": observation_count,
                    "minimum_milliseconds": round(sorted_observations[0], 1),
                    "maximum_milliseconds": round(sorted_observations[-1], 1),
                    "average_milliseconds": round(sum(sorted_observations) / observation_count, 1),
                    "ninety_fifth_percentile_milliseconds": round(sorted_observations[percentile_95_index], 1),
                }

            return result


def _format_current_utc_timestamp() -> str:
    """Current UTC time as ISO 8601 with microseconds and a ``Z`` suffix."""
    return datetime.datetime.now(datetime.UTC).strftime("%Y-%m-%dT%H:%M:%S.%fZ")
