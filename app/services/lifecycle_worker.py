"""
Background driver for the lifecycle.

Nothing else schedules selection, expiry or the sorry notification. The
worker combines a periodic scan over all events with change subscriptions,
so a transition happens promptly when an event changes and eventually when
nothing does. Any number of workers (and API calls) may trigger the same
transition; the latches and preconditions make the duplicates no-ops.
"""

import asyncio
import logging
from typing import List, Optional

from pydantic import ValidationError

from app.core.config import settings
from app.core.errors import AdmissionError, TransientStoreError
from app.schemas.event import Event
from app.services.deadline_service import DeadlineWatcher
from app.services.engine import AdmissionEngine
from app.services.repositories import EVENTS
from app.services.store import DocumentChange, Subscription

logger = logging.getLogger(__name__)


class LifecycleWorker:
    def __init__(self, engine: AdmissionEngine, interval_seconds: Optional[float] = None):
        self.engine = engine
        self.interval = interval_seconds if interval_seconds is not None else settings.SCAN_INTERVAL_SECONDS
        self.watcher = DeadlineWatcher(engine.store, engine.deadlines, clock=engine.clock)
        self._task: Optional[asyncio.Task] = None
        self._subscription: Optional[Subscription] = None

    @property
    def running(self) -> bool:
        return self._task is not None and not self._task.done()

    async def check_event(self, event: Event) -> None:
        """Selection and sorry checks for one event"""
        now = self.engine.clock()
        try:
            if self.engine.selection.is_due(event, now):
                await self.engine.selection.check_and_process(event.id)
            await self.engine.sorry.check_event(event)
        except TransientStoreError as e:
            logger.error(f"Lifecycle check for event {event.id} deferred: {e}")
        except AdmissionError as e:
            logger.warning(f"Lifecycle check for event {event.id} skipped: {e.message}")
        except Exception:
            logger.exception(f"Unexpected error in lifecycle check for event {event.id}")

    async def check_events(self) -> None:
        """Checks every event; a malformed document is logged and skipped"""
        for snapshot in await self.engine.store.query(EVENTS):
            try:
                event = Event.from_doc(snapshot, id=snapshot.id)
            except ValidationError:
                logger.warning(f"Ignoring malformed event document {snapshot.path}")
                continue
            await self.check_event(event)

    async def run_once(self) -> int:
        """One full pass; returns the number of invitations expired"""
        try:
            await self.check_events()
        finally:
            expired = await self.engine.deadlines.scan()
        return expired

    async def _loop(self) -> None:
        while True:
            try:
                await self.run_once()
            except TransientStoreError as e:
                logger.error(f"Lifecycle scan failed, retrying in {self.interval}s: {e}")
            except Exception:
                logger.exception("Unexpected error in lifecycle scan")
            await asyncio.sleep(self.interval)

    async def _on_event_changes(self, changes: List[DocumentChange]) -> None:
        for change in changes:
            if change.type == "REMOVED" or not change.document.exists:
                continue
            try:
                event = Event.from_doc(change.document, id=change.document.id)
            except ValidationError:
                logger.warning(f"Ignoring malformed event document {change.document.path}")
                continue
            await self.check_event(event)

    def start(self) -> None:
        if self.running:
            return
        self._task = asyncio.get_running_loop().create_task(self._loop())
        self._subscription = self.engine.store.subscribe(EVENTS, self._on_event_changes)
        self.watcher.start()
        logger.info(f"Lifecycle worker started (scan every {self.interval}s)")

    async def stop(self) -> None:
        self.watcher.stop()
        if self._subscription is not None:
            self._subscription.unsubscribe()
            self._subscription = None
        if self._task is not None:
            self._task.cancel()
            try:
                await self._task
            except asyncio.CancelledError:
                pass
            self._task = None
        logger.info("Lifecycle worker stopped")
