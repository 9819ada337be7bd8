# Sync_State.py
# Description: Persistence for the sync cursor (`lastSyncedAt`).
#
# Imports
import json
import logging
import os
import threading
from pathlib import Path
from typing import Optional, Union
#
# Third-Party Imports
#
# Local Imports
from smart_stock.DB.Inventory_DB import InventoryDB
from smart_stock.utils.time_utils import EPOCH_ISO, normalize_timestamp
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

CURSOR_KEY = "lastSyncedAt"


class CursorStore:
    """
    Holds the single `lastSyncedAt` scalar.

    An unset cursor reads as the epoch. `set_cursor` raises if the value
    could not be persisted; the sync engine relies on that to report a
    cycle whose bookkeeping failed.
    """

    def get_cursor(self) -> str:
        raise NotImplementedError

    def set_cursor(self, value: str) -> None:
        raise NotImplementedError

    def reset(self) -> None:
        self.set_cursor(EPOCH_ISO)


class MemoryCursorStore(CursorStore):
    def __init__(self, initial: Optional[str] = None):
        self._value = normalize_timestamp(initial, default=EPOCH_ISO)

    def get_cursor(self) -> str:
        return self._value

    def set_cursor(self, value: str) -> None:
        self._value = normalize_timestamp(value, default=EPOCH_ISO)


class DBCursorStore(CursorStore):
    """Keeps the cursor in the local DB's `sync_state` table."""

    def __init__(self, db: InventoryDB, key: str = CURSOR_KEY):
        self.db = db
        self.key = key

    def get_cursor(self) -> str:
        value = self.db.get_state(self.key)
        if not value:
            logger.info(f"No '{self.key}' cursor stored yet. Starting from the epoch.")
            return EPOCH_ISO
        try:
            return normalize_timestamp(value)
        except ValueError:
            logger.error(f"Stored cursor '{self.key}' is not a timestamp ({value!r}). Starting from the epoch.")
            return EPOCH_ISO

    def set_cursor(self, value: str) -> None:
        self.db.set_state(self.key, normalize_timestamp(value, default=EPOCH_ISO))
        logger.debug(f"Saved cursor '{self.key}' = {value}")


class JsonFileCursorStore(CursorStore):
    """
    Keeps the cursor in a small JSON state file.

    A missing or unreadable file initialises the cursor to the epoch and
    writes a fresh file.
    """

    def __init__(self, state_file: Union[str, Path]):
        self.state_file = Path(state_file).expanduser()
        self._lock = threading.Lock()
        self._value = self._load_sync_state()

    def _load_sync_state(self) -> str:
        try:
            if self.state_file.exists():
                with open(self.state_file, 'r', encoding='utf-8') as f:
                    state = json.load(f)
                value = normalize_timestamp(state.get(CURSOR_KEY), default=EPOCH_ISO)
                logger.debug(f"Loaded sync state from {self.state_file}: {value}")
                return value
            logger.info(f"State file {self.state_file} not found, starting from the epoch.")
        except (json.JSONDecodeError, OSError, ValueError, AttributeError) as e:
            logger.error(f"Error loading sync state from {self.state_file}: {e}. Starting from the epoch.",
                         exc_info=True)
        try:
            self._save_sync_state(EPOCH_ISO)
        except OSError as e:
            logger.error(f"Could not write initial sync state to {self.state_file}: {e}")
        return EPOCH_ISO

    def _save_sync_state(self, value: str) -> None:
        self.state_file.parent.mkdir(parents=True, exist_ok=True)
        tmp_path = self.state_file.with_suffix(self.state_file.suffix + ".tmp")
        with open(tmp_path, 'w', encoding='utf-8') as f:
            json.dump({CURSOR_KEY: value}, f, indent=4)
        os.replace(tmp_path, self.state_file)
        logger.debug(f"Saved sync state to {self.state_file}: {value}")

    def get_cursor(self) -> str:
        with self._lock:
            return self._value

    def set_cursor(self, value: str) -> None:
        normalized = normalize_timestamp(value, default=EPOCH_ISO)
        with self._lock:
            # Only update memory once the file write went through.
            self._save_sync_state(normalized)
            self._value = normalized

#
# End of Sync_State.py
#######################################################################################################################
