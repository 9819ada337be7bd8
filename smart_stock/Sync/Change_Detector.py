# Change_Detector.py
# Description: Selects the local records that must be pushed in a sync cycle.
#
# Imports
import logging
from dataclasses import dataclass, field
from typing import Any, Dict, List, Optional
#
# Third-Party Imports
#
# Local Imports
from smart_stock.DB.Inventory_DB import InventoryDB, CATEGORIES, HARDWARE, NOTES, AUDIT_LOG
from smart_stock.utils.time_utils import EPOCH_ISO
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


@dataclass
class ChangeSet:
    """The dirty set for one sync cycle, one list per collection."""
    categories: List[Dict[str, Any]] = field(default_factory=list)
    hardware: List[Dict[str, Any]] = field(default_factory=list)
    notes: List[Dict[str, Any]] = field(default_factory=list)
    audit_logs: List[Dict[str, Any]] = field(default_factory=list)

    @property
    def total(self) -> int:
        return len(self.categories) + len(self.hardware) + len(self.notes) + len(self.audit_logs)

    def is_empty(self) -> bool:
        return self.total == 0

    def counts(self) -> Dict[str, int]:
        return {
            CATEGORIES: len(self.categories),
            HARDWARE: len(self.hardware),
            NOTES: len(self.notes),
            AUDIT_LOG: len(self.audit_logs),
        }


def detect_local_changes(db: InventoryDB, last_synced_at: Optional[str]) -> ChangeSet:
    """
    Reads the records changed since `last_synced_at`. No writes.

    Categories, hardware and notes are selected by `updated_at > last_synced_at`
    (strictly, tombstones included). Audit entries are selected by
    `is_synced = 0` whatever their timestamp.
    """
    cursor = last_synced_at or EPOCH_ISO
    changes = ChangeSet(
        categories=db.get_records_updated_after(CATEGORIES, cursor),
        hardware=db.get_records_updated_after(HARDWARE, cursor),
        notes=db.get_records_updated_after(NOTES, cursor),
        audit_logs=db.get_unsynced_audit_logs(),
    )
    logger.info(f"Detected {changes.total} local changes since {cursor}: {changes.counts()}")
    return changes

#
# End of Change_Detector.py
#######################################################################################################################
