# Sync_Client.py
# Description: Sync orchestrator. Pushes local changes, pulls the remote snapshot, advances the cursor.
#
# Imports
import enum
import logging
import threading
import time
import traceback
import uuid
from dataclasses import dataclass
from typing import Any, Dict, List, Optional
#
# Third-Party Imports
#
# Local Imports
from smart_stock.DB.Inventory_DB import InventoryDB, InventoryDBError
from smart_stock.Metrics.sync_metrics import SyncMetrics, timed_stage
from smart_stock.Sync.Change_Detector import ChangeSet, detect_local_changes
from smart_stock.Sync.Pull_Pipeline import PullResult, pull_changes
from smart_stock.Sync.Push_Pipeline import AUDIT_PUSH_MODES, AUDIT_PUSH_UPSERT, PushResult, push_changes
from smart_stock.Sync.Remote_Store import RemoteStore
from smart_stock.Sync.Sync_State import CursorStore
from smart_stock.Sync.exceptions import SyncError, SyncInProgressError
from smart_stock.utils.time_utils import utc_now_iso
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

# --- Configuration ---
SYNC_INTERVAL_SECONDS = 300  # How often the periodic trigger runs a cycle


class SyncState(enum.Enum):
    IDLE = "idle"
    PUSHING = "pushing"
    PULLING = "pulling"
    FAILED = "failed"


@dataclass
class SyncReport:
    pushed: PushResult
    pulled: PullResult
    started_at: str
    finished_at: str
    previous_cursor: str
    new_cursor: str


class InventorySyncEngine:
    """
    Runs sync cycles between the local InventoryDB and a RemoteStore.

    A cycle is push, then pull, then cursor advance. The cursor only moves
    when both push and pull succeed, and it moves to the time captured when
    the pull started. One cycle runs at a time per engine.
    """

    def __init__(self, db: InventoryDB, remote: RemoteStore, cursor_store: CursorStore, client_id: str,
                 audit_log_push_mode: str = AUDIT_PUSH_UPSERT, metrics: Optional[SyncMetrics] = None):
        if not client_id:
            raise ValueError("Client ID cannot be empty.")
        if audit_log_push_mode not in AUDIT_PUSH_MODES:
            raise ValueError(f"Unknown audit log push mode '{audit_log_push_mode}'.")
        self.db = db
        self.remote = remote
        self.cursor_store = cursor_store
        self.client_id = client_id
        self.audit_log_push_mode = audit_log_push_mode
        self.metrics = metrics or SyncMetrics(client_id)

        self._lock = threading.Lock()
        self._state = SyncState.IDLE
        self.state_history: List[SyncState] = []
        self.last_error: Optional[SyncError] = None
        self.last_report: Optional[SyncReport] = None

        logger.info(f"InventorySyncEngine initialized for client '{self.client_id}'.")
        logger.info(f"  DB Path: {self.db.db_path_str}")
        logger.info(f"  Audit log push mode: {self.audit_log_push_mode}")

    # --- State ---
    @property
    def state(self) -> SyncState:
        return self._state

    @property
    def is_running(self) -> bool:
        return self._lock.locked()

    def _set_state(self, state: SyncState) -> None:
        if state is not self._state:
            logger.debug(f"Sync state {self._state.value} -> {state.value}")
        self._state = state
        self.state_history.append(state)

    # --- System Log (best effort) ---
    def _write_system_log(self, level: str, message: str, context: Optional[Dict[str, Any]] = None,
                          details: Optional[str] = None, last_synced_at: Optional[str] = None) -> None:
        entry = {
            "id": str(uuid.uuid4()),
            "timestamp": utc_now_iso(),
            "log_level": level,
            "error_message": message,
            "context": context,
            "full_error_details": details,
            "phone_info": self.client_id,
            "last_synced_at": last_synced_at,
        }
        try:
            self.db.add_system_log(entry)
        except Exception as e:
            # A failing log write must not hide the sync outcome.
            logger.error(f"Could not write {level} system log entry '{message}': {e}")

    def _record_failure(self, error: SyncError, cursor: Optional[str], started: float) -> None:
        self._set_state(SyncState.FAILED)
        self.last_error = error
        logger.error(f"Sync failed during {error.stage}: {error}")
        details = "".join(traceback.format_exception(type(error), error, error.__traceback__))
        context = {"stage": error.stage, "collection": error.collection}
        if error.__cause__ is not None:
            context["cause"] = f"{type(error.__cause__).__name__}: {error.__cause__}"
        self._write_system_log("ERROR", f"Sync failed: {error}", context=context, details=details,
                               last_synced_at=cursor)
        self.metrics.record_cycle(time.perf_counter() - started, error=error)

    # --- Stages ---
    @timed_stage("push")
    def _push(self, cursor: str) -> PushResult:
        changes: ChangeSet = detect_local_changes(self.db, cursor)
        if changes.is_empty():
            logger.info("No local changes to push.")
            return PushResult()
        return push_changes(self.db, self.remote, changes, audit_log_push_mode=self.audit_log_push_mode)

    @timed_stage("pull")
    def _pull(self) -> PullResult:
        return pull_changes(self.db, self.remote)

    # --- Public Entry Point ---
    def run_sync(self, blocking: bool = False, raise_if_busy: bool = False) -> Optional[SyncReport]:
        """
        Runs one sync cycle. Safe to call from start-up, a timer and user actions.

        Args:
            blocking: Wait for a running cycle to finish instead of skipping.
            raise_if_busy: Raise SyncInProgressError instead of returning None
                when another cycle is running and `blocking` is False.

        Returns:
            A SyncReport, or None if another cycle was already running.

        Raises:
            SyncError: If push, pull or the cursor update fails. The cursor is
                left at its previous value and an ERROR system log is written.
        """
        if not self._lock.acquire(blocking=blocking):
            logger.info("Sync requested while another sync is in progress. Skipping.")
            self._write_system_log("INFO", "Sync skipped: another sync is already in progress.",
                                   context={"stage": "guard"})
            self.metrics.record_skipped()
            if raise_if_busy:
                raise SyncInProgressError()
            return None
        try:
            self.state_history = []
            return self._run_cycle()
        finally:
            self._set_state(SyncState.IDLE)
            self._lock.release()

    def _run_cycle(self) -> SyncReport:
        started = time.perf_counter()
        started_at = utc_now_iso()
        previous_cursor: Optional[str] = None
        stage = "cursor"
        try:
            previous_cursor = self.cursor_store.get_cursor()
            logger.info(f"Starting sync cycle [Client ID: {self.client_id}] from cursor {previous_cursor}...")
            self._write_system_log("INFO", "Sync started.", context={"stage": "start"},
                                   last_synced_at=previous_cursor)

            stage = "push"
            self._set_state(SyncState.PUSHING)
            push_result = self._push(previous_cursor)

            stage = "pull"
            new_cursor = utc_now_iso()
            self._set_state(SyncState.PULLING)
            pull_result = self._pull()

            stage = "cursor"
            try:
                self.cursor_store.set_cursor(new_cursor)
            except (OSError, InventoryDBError, ValueError) as e:
                raise SyncError(f"Could not save sync cursor {new_cursor}: {e}", stage="cursor") from e
        except SyncError as e:
            self._record_failure(e, previous_cursor, started)
            raise
        except Exception as e:
            # Anything unexpected still has to leave a trace in the system log.
            wrapped = SyncError(f"Unexpected error: {e}", stage=stage)
            wrapped.__cause__ = e  # set before logging so the system log names the cause
            self._record_failure(wrapped, previous_cursor, started)
            raise wrapped from e

        report = SyncReport(
            pushed=push_result,
            pulled=pull_result,
            started_at=started_at,
            finished_at=utc_now_iso(),
            previous_cursor=previous_cursor,
            new_cursor=new_cursor,
        )
        self.last_report = report
        self.last_error = None
        logger.info(f"Sync cycle finished. Pushed {push_result.total}, pulled {pull_result.pulled}. "
                    f"Cursor advanced to {new_cursor}.")
        self._write_system_log(
            "INFO",
            f"Sync completed. Pushed {push_result.total} change(s), pulled {pull_result.pulled} record(s).",
            context={
                "stage": "complete",
                "pushed": push_result.counts,
                "pulled": pull_result.fetched,
                "applied": pull_result.applied,
                "failed": pull_result.failed,
            },
            last_synced_at=new_cursor,
        )
        self.metrics.record_cycle(time.perf_counter() - started, report=report)
        return report

#
# End of Sync_Client.py
#######################################################################################################################
