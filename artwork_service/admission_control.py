"""
Per-session admission control for artwork generation requests.

Every generation request is attributed to a session key (derived from the
client address and ``User-Agent`` by ``identity.py``) and evaluated against
three independent policies, in this fixed order.  The first violated policy
decides the rejection:

1. **Session cap** (``session_limit``): a session may only ever have
   ``maximum_requests_per_session`` accepted requests.  The retry hint is
   the session inactivity timeout, after which the reaper forgets the
   session.
2. **Cooldown** (``cooldown``): two accepted requests of one session must
   be at least ``cooldown_seconds`` apart.  The retry hint is the remaining
   cooldown.
3. **Sliding window** (``rate_limit``): at most
   ``maximum_requests_per_window`` accepted requests inside the trailing
   ``window_seconds``.  The retry hint is the time until the oldest counted
   request leaves the window.

Only an accepted check mutates the session record.  A rejected check leaves
the record exactly as it was, so clients may retry freely.

Concurrency
-----------
Each session key has its own ``asyncio.Lock``; checks for one key observe a
total order while checks for different keys never wait on each other.  The
evaluate-and-update step contains no ``await``, so a cancelled caller can
never leave a record half updated.  ``reap_expired_sessions`` takes the
same per-key lock before removing a record.

Usage in route handlers::

    decision = await admission_controller.check(session_key)
    if isinstance(decision, AdmissionRejected):
        ...
"""

import asyncio
import collections.abc
import dataclasses
import math
import time

import structlog

logger = structlog.get_logger()

REJECTION_REASON_SESSION_LIMIT = "session_limit"
REJECTION_REASON_COOLDOWN = "cooldown"
REJECTION_REASON_RATE_LIMIT = "rate_limit"


@dataclasses.dataclass
class SessionRecord:
    """Mutable admission state of one session key."""

    request_timestamps: list[float] = dataclasses.field(default_factory=list)
    total_requests: int = 0
    last_request_at: float | None = None


@dataclasses.dataclass(frozen=True)
class AdmissionAllowed:
    """The request may proceed; counters have already been updated."""

    allowed: bool = dataclasses.field(default=True, init=False)


@dataclasses.dataclass(frozen=True)
class AdmissionRejected:
    """
    The request must be refused without contacting any external provider.

    Attributes:
        reason: Machine-readable rejection reason.
        message: Human-readable explanation safe for display to end users.
        retry_after_milliseconds: How long the client should wait before
            retrying, rounded up to a whole millisecond.
    """

    reason: str
    message: str
    retry_after_milliseconds: int
    allowed: bool = dataclasses.field(default=False, init=False)


AdmissionDecision = AdmissionAllowed | AdmissionRejected


def _to_milliseconds(seconds: float) -> int:
    return max(math.ceil(seconds * 1000), 0)


class SessionAdmissionController:
    """
    Decides whether a session may issue another artwork generation request.

    The controller owns the in-process session map.  It is constructed once
    during application startup and shared by every request handler and by
    the ``SessionReaper``.
    """

    def __init__(
        self,
        maximum_requests_per_session: int = 10,
        session_inactivity_timeout_seconds: float = 1800.0,
        cooldown_seconds: float = 30.0,
        maximum_requests_per_window: int = 3,
        window_seconds: float = 60.0,
        timestamp_retention_seconds: float = 120.0,
        clock: collections.abc.Callable[[], float] = time.monotonic,
    ) -> None:
        """
        Initialise the admission controller.

        Args:
            maximum_requests_per_session: Lifetime cap of accepted requests
                for one session key.
            session_inactivity_timeout_seconds: Idle period after which the
                reaper removes a session.  Also the retry hint returned with
                ``session_limit`` rejections.
            cooldown_seconds: Minimum spacing between accepted requests.
            maximum_requests_per_window: Accepted requests allowed inside
                one sliding window.
            window_seconds: Length of the sliding window.
            timestamp_retention_seconds: Age beyond which request
                timestamps are pruned after an accepted request.  Must not
                be shorter than ``window_seconds``.
            clock: Monotonic time source in seconds.
        """
        if timestamp_retention_seconds < window_seconds:
            raise ValueError("timestamp_retention_seconds must be at least window_seconds.")

        self._maximum_requests_per_session = maximum_requests_per_session
        self._session_inactivity_timeout_seconds = session_inactivity_timeout_seconds
        self._cooldown_seconds = cooldown_seconds
        self._maximum_requests_per_window = maximum_requests_per_window
        self._window_seconds = window_seconds
        self._timestamp_retention_seconds = timestamp_retention_seconds
        self._clock = clock

        self._sessions: dict[str, SessionRecord] = {}
        self._session_locks: dict[str, asyncio.Lock] = {}

    def _lock_for(self, session_key: str) -> asyncio.Lock:
        return self._session_locks.setdefault(session_key, asyncio.Lock())

    async def check(self, session_key: str) -> AdmissionDecision:
        """
        Evaluate the admission policies for one request of ``session_key``.

        Returns:
            ``AdmissionAllowed`` after recording the request, or
            ``AdmissionRejected`` describing the first violated policy.
        """
        async with self._lock_for(session_key):
            now = self._clock()
            record = self._sessions.get(session_key) or SessionRecord()

            rejection = self._evaluate_policies(record, now)
            if rejection is not None:
                logger.info(
                    "admission_rejected",
                    reason=rejection.reason,
                    retry_after_milliseconds=rejection.retry_after_milliseconds,
                    total_requests=record.total_requests,
                )
                return rejection

            record.request_timestamps.append(now)
            record.total_requests += 1
            record.last_request_at = now
            record.request_timestamps = [
                timestamp
                for timestamp in record.request_timestamps
                if now - timestamp < self._timestamp_retention_seconds
            ]
            self._sessions[session_key] = record

            return AdmissionAllowed()

    def _evaluate_policies(self, record: SessionRecord, now: float) -> AdmissionRejected | None:
        if record.total_requests >= self._maximum_requests_per_session:
            return AdmissionRejected(
                reason=REJECTION_REASON_SESSION_LIMIT,
                message=(
                    f"You've reached the maximum of {self._maximum_requests_per_session} "
                    f"requests per session. Please refresh the page to start a new session."
                ),
                retry_after_milliseconds=_to_milliseconds(self._session_inactivity_timeout_seconds),
            )

        if record.last_request_at is not None:
            elapsed_since_last_request = now - record.last_request_at
            if elapsed_since_last_request < self._cooldown_seconds:
                remaining_cooldown = self._cooldown_seconds - elapsed_since_last_request
                return AdmissionRejected(
                    reason=REJECTION_REASON_COOLDOWN,
                    message=(
                        f"Please wait {math.ceil(remaining_cooldown)} seconds "
                        f"before making another request."
                    ),
                    retry_after_milliseconds=_to_milliseconds(remaining_cooldown),
                )

        requests_in_window = [
            timestamp for timestamp in record.request_timestamps if now - timestamp < self._window_seconds
        ]
        if len(requests_in_window) >= self._maximum_requests_per_window:
            time_until_window_opens = self._window_seconds - (now - min(requests_in_window))
            return AdmissionRejected(
                reason=REJECTION_REASON_RATE_LIMIT,
                message=f"Too many requests. Please wait {math.ceil(time_until_window_opens)} seconds.",
                retry_after_milliseconds=_to_milliseconds(time_until_window_opens),
            )

        return None

    async def reap_expired_sessions(self) -> int:
        """
        Remove every session idle for longer than the inactivity timeout.

        Each key is re-examined while holding its lock, so a record that an
        in-flight check is updating is never removed underneath it.

        Returns:
            The number of session records removed.
        """
        removed_session_count = 0

        for session_key in list(self._sessions):
            session_lock = self._lock_for(session_key)
            async with session_lock:
                record = self._sessions.get(session_key)
                if record is None or record.last_request_at is None:
                    continue
                if self._clock() - record.last_request_at <= self._session_inactivity_timeout_seconds:
                    continue

                del self._sessions[session_key]
                removed_session_count += 1

            # Waiters already queued on this lock keep their reference, and
            # their check sees a fresh record either way.
            if not session_lock.locked() and self._session_locks.get(session_key) is session_lock:
                del self._session_locks[session_key]

        return removed_session_count

    def get_session_record(self, session_key: str) -> SessionRecord | None:
        """Return a copy of the record for ``session_key``, if any."""
        record = self._sessions.get(session_key)
        if record is None:
            return None
        return dataclasses.replace(record, request_timestamps=list(record.request_timestamps))

    @property
    def active_session_count(self) -> int:
        """Return the number of session records currently held in memory."""
        return len(self._sessions)

    @property
    def session_inactivity_timeout_seconds(self) -> float:
        return self._session_inactivity_timeout_seconds
