# Sync_Scheduler.py
# Description: Start-up, periodic and on-demand triggers for the sync engine.
#
# Imports
import logging
import threading
from typing import Optional
#
# Third-Party Imports
#
# Local Imports
from smart_stock.Sync.Sync_Client import InventorySyncEngine, SyncReport, SYNC_INTERVAL_SECONDS
from smart_stock.Sync.exceptions import SyncError
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


class SyncScheduler:
    """
    Drives `InventorySyncEngine.run_sync` from a background daemon thread.

    All three triggers (start-up, timer, user request) call the same entry
    point; the engine's own guard turns an overlapping trigger into a no-op.
    """

    def __init__(self, engine: InventorySyncEngine, interval_seconds: float = SYNC_INTERVAL_SECONDS,
                 sync_on_start: bool = True):
        if interval_seconds <= 0:
            raise ValueError("Sync interval must be positive.")
        self.engine = engine
        self.interval_seconds = interval_seconds
        self.sync_on_start = sync_on_start
        self._stop_event = threading.Event()
        self._thread: Optional[threading.Thread] = None
        self.runs = 0
        self.failures = 0

    @property
    def is_running(self) -> bool:
        return self._thread is not None and self._thread.is_alive()

    def _run_once(self, trigger: str) -> Optional[SyncReport]:
        logger.debug(f"Sync triggered ({trigger}).")
        self.runs += 1
        try:
            return self.engine.run_sync()
        except SyncError as e:
            # Already recorded in the system log by the engine.
            self.failures += 1
            logger.warning(f"{trigger.capitalize()} sync failed: {e}")
        except Exception as e:
            self.failures += 1
            logger.error(f"Unexpected error in {trigger} sync: {e}", exc_info=True)
        return None

    def _loop(self) -> None:
        logger.info(f"Sync scheduler thread started (interval {self.interval_seconds}s).")
        if self.sync_on_start:
            self._run_once("start-up")
        while not self._stop_event.wait(self.interval_seconds):
            self._run_once("periodic")
        logger.info("Sync scheduler thread stopped.")

    def start(self) -> None:
        if self.is_running:
            logger.warning("Sync scheduler already running.")
            return
        self._stop_event.clear()
        self._thread = threading.Thread(target=self._loop, name="SyncScheduler", daemon=True)
        self._thread.start()

    def stop(self, timeout: Optional[float] = None) -> None:
        self._stop_event.set()
        if self._thread is not None:
            self._thread.join(timeout)
            if self._thread.is_alive():
                logger.warning("Sync scheduler thread did not stop within the timeout; a sync is still running.")
            else:
                self._thread = None

    def trigger_now(self) -> Optional[SyncReport]:
        """
        Runs a sync on the caller's thread, for an explicit user request.

        Returns None if a sync is already running. Errors propagate so the
        caller can tell the user.
        """
        logger.info("User requested a sync.")
        return self.engine.run_sync()

#
# End of Sync_Scheduler.py
#######################################################################################################################
