"""
Periodic maintenance: passcode expiry sweep and access record retention.
"""
from typing import Optional
import asyncio
import logging

from sqlalchemy.orm import sessionmaker

from office_access.core.config import settings
from office_access.core.errors import ServiceError
from office_access.services.access_record_service import AccessRecordService
from office_access.services.passcode_service import PasscodeService

logger = logging.getLogger(__name__)

INITIAL_DELAY_SECONDS = 5
STOP_TIMEOUT_SECONDS = 5


def run_maintenance(session_factory: sessionmaker) -> dict:
    """
    Run one maintenance pass in its own session.

    Returns:
        Number of passcodes expired and access records purged
    """
    db = session_factory()
    try:
        expired = PasscodeService(db).cleanup_expired_passcodes()
        purged = AccessRecordService(db).cleanup_old_records()
        return {"expiredPasscodes": expired, "purgedRecords": purged}
    finally:
        db.close()


class MaintenanceLoop:
    """Background task started on application startup and stopped on shutdown."""

    def __init__(self, session_factory: sessionmaker, interval_seconds: Optional[int] = None):
        self.session_factory = session_factory
        self.interval_seconds = interval_seconds or settings.maintenance_interval_seconds
        self._stop_event: Optional[asyncio.Event] = None
        self._task: Optional[asyncio.Task] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    def start(self) -> None:
        if self.running:
            return
        self._stop_event = asyncio.Event()
        self._task = asyncio.create_task(self._loop())
        logger.info(f"Maintenance loop started (every {self.interval_seconds}s)")

    async def stop(self) -> None:
        if self._stop_event is not None:
            self._stop_event.set()
        if self._task is not None:
            try:
                await asyncio.wait_for(self._task, timeout=STOP_TIMEOUT_SECONDS)
            except asyncio.TimeoutError:
                self._task.cancel()
            self._task = None
        logger.info("Maintenance loop stopped")

    async def run_once(self) -> None:
        """Run a pass without blocking the event loop; failures are logged, not raised."""
        try:
            result = await asyncio.to_thread(run_maintenance, self.session_factory)
        except ServiceError as e:
            logger.warning(f"Maintenance pass failed: {e.message}")
            return
        except Exception:
            logger.exception("Maintenance pass crashed; retrying on the next tick")
            return
        logger.info(f"Maintenance pass done: {result['expiredPasscodes']} passcode(s) expired, "
                    f"{result['purgedRecords']} record(s) purged")

    async def _loop(self) -> None:
        assert self._stop_event is not None

        # Small initial delay so startup can finish cleanly
        try:
            await asyncio.wait_for(self._stop_event.wait(), timeout=INITIAL_DELAY_SECONDS)
            return
        except asyncio.TimeoutError:
            pass

        while not self._stop_event.is_set():
            await self.run_once()
            try:
                await asyncio.wait_for(self._stop_event.wait(), timeout=self.interval_seconds)
            except asyncio.TimeoutError:
                continue
