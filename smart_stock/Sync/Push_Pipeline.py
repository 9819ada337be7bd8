# Push_Pipeline.py
# Description: Uploads the local dirty set to the remote store, in dependency order.
#
# Imports
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List
#
# Third-Party Imports
#
# Local Imports
from smart_stock.DB.Inventory_DB import InventoryDB, InventoryDBError, CATEGORIES, HARDWARE, NOTES, AUDIT_LOG
from smart_stock.Sync.Change_Detector import ChangeSet
from smart_stock.Sync.Remote_Store import RemoteStore
from smart_stock.Sync.exceptions import RemoteDuplicateError, RemoteStoreError, SyncError
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

AUDIT_PUSH_UPSERT = "upsert"
AUDIT_PUSH_INSERT = "insert"
AUDIT_PUSH_MODES = (AUDIT_PUSH_UPSERT, AUDIT_PUSH_INSERT)

# Categories go first: hardware rows reference them by id.
PUSH_ORDER = (CATEGORIES, HARDWARE, NOTES)


@dataclass
class PushResult:
    counts: Dict[str, int] = field(default_factory=lambda: {c: 0 for c in (*PUSH_ORDER, AUDIT_LOG)})
    audit_marked_synced: int = 0
    duplicate_audit_batch: bool = False

    @property
    def total(self) -> int:
        return sum(self.counts.values())


def _strip_local_fields(entry: Dict[str, Any]) -> Dict[str, Any]:
    return {k: v for k, v in entry.items() if k != "is_synced"}


def _push_batch(remote: RemoteStore, collection: str, records: List[Dict[str, Any]]) -> None:
    logger.info(f"Pushing {len(records)} {collection} record(s) to the remote store.")
    try:
        remote.upsert(collection, records, on_conflict="id")
    except RemoteStoreError as e:
        logger.error(f"Failed to send {collection} changes to the cloud. Details: {e}")
        raise SyncError(f"Failed to push {collection}: {e}", stage="push", collection=collection) from e


def _insert_skipping_duplicates(remote: RemoteStore, payload: List[Dict[str, Any]]) -> None:
    for entry in payload:
        try:
            remote.insert(AUDIT_LOG, [entry])
        except RemoteDuplicateError:
            logger.debug(f"Audit log entry {entry['id']} already on the remote.")
        except RemoteStoreError as e:
            logger.error(f"Failed to send audit log changes to the cloud. Details: {e}")
            raise SyncError(f"Failed to push {AUDIT_LOG}: {e}", stage="push", collection=AUDIT_LOG) from e


def push_changes(db: InventoryDB, remote: RemoteStore, changes: ChangeSet,
                 audit_log_push_mode: str = AUDIT_PUSH_UPSERT) -> PushResult:
    """
    Sends each non-empty collection of `changes` as one batch, in order
    categories, hardware, notes, audit_log.

    The first failing batch stops the push and raises `SyncError`; batches
    already acknowledged stay on the remote. Audit entries are marked synced
    locally only after their batch is acknowledged.

    Args:
        audit_log_push_mode: "upsert" (idempotent by id) or "insert". In
            insert mode a duplicate-key rejection counts as acknowledged.
    """
    if audit_log_push_mode not in AUDIT_PUSH_MODES:
        raise ValueError(f"Unknown audit log push mode '{audit_log_push_mode}'. Expected one of {AUDIT_PUSH_MODES}.")

    result = PushResult()
    batches = {CATEGORIES: changes.categories, HARDWARE: changes.hardware, NOTES: changes.notes}
    for collection in PUSH_ORDER:
        records = batches[collection]
        if not records:
            continue
        _push_batch(remote, collection, records)
        result.counts[collection] = len(records)

    if changes.audit_logs:
        payload = [_strip_local_fields(entry) for entry in changes.audit_logs]
        logger.info(f"Pushing {len(payload)} audit log entr(ies) to the remote store ({audit_log_push_mode}).")
        try:
            if audit_log_push_mode == AUDIT_PUSH_UPSERT:
                remote.upsert(AUDIT_LOG, payload, on_conflict="id")
            else:
                remote.insert(AUDIT_LOG, payload)
        except RemoteDuplicateError as e:
            if audit_log_push_mode == AUDIT_PUSH_UPSERT:
                # An upsert never collides on id, so this is some other unique constraint.
                logger.error(f"Failed to send audit log changes to the cloud. Details: {e}")
                raise SyncError(f"Failed to push {AUDIT_LOG}: {e}", stage="push", collection=AUDIT_LOG) from e
            # Left over from an earlier cycle that pushed but never marked the rows.
            logger.warning(f"Remote already holds some of these audit log entries; inserting them one by one. "
                           f"Details: {e}")
            result.duplicate_audit_batch = True
            _insert_skipping_duplicates(remote, payload)
        except RemoteStoreError as e:
            logger.error(f"Failed to send audit log changes to the cloud. Details: {e}")
            raise SyncError(f"Failed to push {AUDIT_LOG}: {e}", stage="push", collection=AUDIT_LOG) from e

        try:
            result.audit_marked_synced = db.mark_audit_logs_synced([entry["id"] for entry in changes.audit_logs])
        except InventoryDBError as e:
            logger.error(f"Audit log entries were sent but could not be marked as synced locally: {e}",
                         exc_info=True)
            raise SyncError(f"Failed to mark audit log entries as synced: {e}", stage="push",
                            collection=AUDIT_LOG) from e
        result.counts[AUDIT_LOG] = len(payload)

    logger.info(f"Push complete: {result.total} record(s) sent {result.counts}.")
    return result

#
# End of Push_Pipeline.py
#######################################################################################################################
