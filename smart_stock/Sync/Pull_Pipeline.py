# Pull_Pipeline.py
# Description: Fetches the remote collections and merges them into the local store (last-write-wins).
#
# Imports
import logging
import sqlite3
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional, Tuple
#
# 3rd-party Libraries
from pydantic import ValidationError
#
# Local Imports
from smart_stock.DB.Inventory_DB import (
    InventoryDB,
    InventoryDBError,
    InputError,
    CATEGORIES,
    HARDWARE,
    NOTES,
    AUDIT_LOG,
)
from smart_stock.DB.schemas import validate_remote_record
from smart_stock.Sync.Remote_Store import RemoteStore
from smart_stock.Sync.exceptions import RemoteStoreError, SyncError
from smart_stock.utils.time_utils import parse_timestamp
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

PULL_ORDER = (CATEGORIES, HARDWARE, NOTES, AUDIT_LOG)
_LWW_COLLECTIONS = (HARDWARE, NOTES)


def _zero_counts() -> Dict[str, int]:
    return {c: 0 for c in PULL_ORDER}


@dataclass
class PullResult:
    fetched: Dict[str, int] = field(default_factory=_zero_counts)
    applied: Dict[str, int] = field(default_factory=_zero_counts)
    skipped: Dict[str, int] = field(default_factory=_zero_counts)
    failed: Dict[str, int] = field(default_factory=_zero_counts)
    failures: List[Tuple[str, Optional[str], str]] = field(default_factory=list)

    @property
    def pulled(self) -> int:
        """Total rows fetched from the remote, whether or not they changed anything locally."""
        return sum(self.fetched.values())

    @property
    def total_applied(self) -> int:
        return sum(self.applied.values())

    @property
    def total_failed(self) -> int:
        return sum(self.failed.values())


def should_apply_remote(local: Optional[Dict[str, Any]], remote: Dict[str, Any]) -> bool:
    """
    Last-write-wins rule for hardware and notes.

    The remote copy wins when there is no local copy, or when its
    `updated_at` is strictly later. Equal timestamps keep the local copy.

    Raises:
        ValueError: If either timestamp cannot be parsed.
    """
    if local is None:
        return True
    return parse_timestamp(remote.get("updated_at")) > parse_timestamp(local.get("updated_at"))


def fetch_remote_snapshot(remote: RemoteStore) -> Dict[str, List[Dict[str, Any]]]:
    """Fetches every synced collection. Any failure aborts before anything is written locally."""
    snapshot: Dict[str, List[Dict[str, Any]]] = {}
    for collection in PULL_ORDER:
        try:
            snapshot[collection] = remote.select_all(collection)
        except RemoteStoreError as e:
            logger.error(f"Failed to fetch {collection} from the cloud. Details: {e}")
            raise SyncError(f"Failed to fetch {collection}: {e}", stage="pull", collection=collection) from e
        logger.debug(f"Fetched {len(snapshot[collection])} remote {collection} row(s).")
    return snapshot


def _merge_record(db: InventoryDB, collection: str, row: Dict[str, Any]) -> bool:
    """Applies one remote row. Returns False when the local copy was kept."""
    record = validate_remote_record(collection, row)
    if collection in _LWW_COLLECTIONS:
        local = db.get_record(collection, record["id"])
        if not should_apply_remote(local, record):
            return False
    elif collection == AUDIT_LOG:
        # Present remotely, so by definition already pushed.
        record["is_synced"] = 1
    db.put_record(collection, record)
    return True


def apply_remote_snapshot(db: InventoryDB, snapshot: Dict[str, List[Dict[str, Any]]]) -> PullResult:
    """
    Merges a fetched snapshot inside one local transaction.

    Each row is written under its own SAVEPOINT, so a bad row is rolled back
    and counted without aborting its siblings.
    """
    result = PullResult()
    for collection in PULL_ORDER:
        result.fetched[collection] = len(snapshot.get(collection, []))

    with db.transaction() as conn:
        for collection in PULL_ORDER:
            for row in snapshot.get(collection, []):
                record_id = row.get("id") if isinstance(row, dict) else None
                conn.execute("SAVEPOINT pull_record")
                try:
                    applied = _merge_record(db, collection, row)
                except (ValidationError, InputError, InventoryDBError, ValueError, TypeError,
                        AttributeError, sqlite3.Error) as e:
                    conn.execute("ROLLBACK TO SAVEPOINT pull_record")
                    conn.execute("RELEASE SAVEPOINT pull_record")
                    result.failed[collection] += 1
                    result.failures.append((collection, record_id, str(e)))
                    logger.error(f"Failed to merge remote {collection} record {record_id}: {e}")
                    continue
                conn.execute("RELEASE SAVEPOINT pull_record")
                if applied:
                    result.applied[collection] += 1
                else:
                    result.skipped[collection] += 1
    return result


def pull_changes(db: InventoryDB, remote: RemoteStore) -> PullResult:
    """
    Full pull: fetch categories, hardware, notes and audit_log, then reconcile.

    Categories are overwritten unconditionally. Hardware and notes follow
    `should_apply_remote`. Audit entries are written with `is_synced = 1`.

    Raises:
        SyncError: If a fetch fails (nothing is written) or the local
            transaction cannot be committed.
    """
    snapshot = fetch_remote_snapshot(remote)
    try:
        result = apply_remote_snapshot(db, snapshot)
    except (InventoryDBError, sqlite3.Error) as e:
        logger.error(f"Local reconciliation transaction failed: {e}", exc_info=True)
        raise SyncError(f"Failed to apply pulled changes locally: {e}", stage="pull") from e
    logger.info(f"Pull complete: fetched {result.pulled}, applied {result.applied}, "
                f"kept local {result.skipped}, failed {result.failed}.")
    return result

#
# End of Pull_Pipeline.py
#######################################################################################################################
