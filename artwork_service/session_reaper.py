"""
Background eviction of inactive admission-control sessions.

The ``SessionReaper`` runs as an ``asyncio`` task alongside request
handling.  Every ``interval_seconds`` it asks the
``SessionAdmissionController`` to drop sessions that have been idle for
longer than the inactivity timeout.  Removal goes through the controller's
per-key locks, so it never races an admission check on the same key.

Reaping only bounds memory.  A late pass never changes an admission
decision because every policy is evaluated from the record itself.
"""

import asyncio

import structlog

import artwork_service.admission_control

logger = structlog.get_logger()


class SessionReaper:
    """
    Periodic task that evicts stale session records.

    Usage::

        reaper = SessionReaper(admission_controller, interval_seconds=300)
        reaper.start()
        ...
        await reaper.stop()
    """

    def __init__(
        self,
        admission_controller: artwork_service.admission_control.SessionAdmissionController,
        interval_seconds: float = 300.0,
    ) -> None:
        self._admission_controller = admission_controller
        self._interval_seconds = interval_seconds
        self._task: asyncio.Task[None] | None = None

    def start(self) -> None:
        """Schedule the reaping loop on the running event loop."""
        if self._task is not None and not self._task.done():
            return
        self._task = asyncio.create_task(self.run(), name="session-reaper")
        logger.info("session_reaper_started", interval_seconds=self._interval_seconds)

    async def stop(self) -> None:
        """Cancel the reaping loop and wait for it to finish."""
        if self._task is None:
            return
        self._task.cancel()
        try:
            await self._task
        except asyncio.CancelledError:
            pass
        self._task = None
        logger.info("session_reaper_stopped")

    async def run(self) -> None:
        """Sleep for one interval, reap, and repeat until cancelled."""
        while True:
            await asyncio.sleep(self._interval_seconds)
            await self.reap_once()

    async def reap_once(self) -> int:
        """
        Run a single reaping pass.

        A failing pass is logged and reported as zero removals so that the
        loop keeps running; the next pass retries the same work.
        """
        try:
            removed_session_count = await self._admission_controller.reap_expired_sessions()
        except Exception:
            logger.exception("session_reaping_failed")
            return 0

        logger.info(
            "sessions_reaped",
            removed_sessions=removed_session_count,
            remaining_sessions=self._admission_controller.active_session_count,
        )
        return removed_session_count

    @property
    def is_running(self) -> bool:
        return self._task is not None and not self._task.done()
