# app.py
# Description: Wires settings, the local store, the remote store and the sync triggers together.
#
# Imports
import sys
import threading
from typing import Any, Dict, Optional, Tuple
#
# 3rd-party Libraries
from loguru import logger as loguru_logger
#
# Local Imports
from smart_stock.config import get_client_id, get_inventory_db_path, get_sync_state_path, load_settings
from smart_stock.DB.Inventory_DB import InventoryDB, InputError
from smart_stock.Logging_Config import configure_application_logging
from smart_stock.Sync.Remote_Store import InMemoryRemoteStore, PostgrestRemoteStore, RemoteStore
from smart_stock.Sync.Sync_Client import InventorySyncEngine, SYNC_INTERVAL_SECONDS
from smart_stock.Sync.Sync_Scheduler import SyncScheduler
from smart_stock.Sync.Sync_State import CursorStore, DBCursorStore, JsonFileCursorStore
#
#######################################################################################################################
#
# Functions:

IN_MEMORY_REMOTE_URL = "memory://"


def build_remote_store(settings: Dict[str, Any]) -> RemoteStore:
    remote_cfg = settings.get("remote", {})
    url = (remote_cfg.get("url") or "").strip()
    if not url:
        raise InputError("No remote store configured. Set [remote].url in the config file "
                         "or the SMART_STOCK_REMOTE_URL environment variable.")
    if url == IN_MEMORY_REMOTE_URL:
        loguru_logger.warning("Using the in-memory remote store. Nothing will leave this process.")
        return InMemoryRemoteStore()
    return PostgrestRemoteStore(
        base_url=url,
        api_key=remote_cfg.get("api_key") or None,
        timeout=float(remote_cfg.get("timeout_seconds", 30)),
        schema_path=remote_cfg.get("schema", "rest/v1"),
        page_size=int(remote_cfg.get("page_size", 1000)),
    )


def build_cursor_store(settings: Dict[str, Any], db: InventoryDB) -> CursorStore:
    kind = settings.get("database", {}).get("cursor_store", "db")
    if kind == "file":
        return JsonFileCursorStore(get_sync_state_path())
    if kind != "db":
        raise InputError(f"Unknown cursor_store '{kind}'. Expected 'db' or 'file'.")
    return DBCursorStore(db)


def build_sync_engine(settings: Dict[str, Any], db: Optional[InventoryDB] = None) -> InventorySyncEngine:
    """Creates the local DB (unless given), the remote store, the cursor store and the engine."""
    client_id = get_client_id()
    remote = build_remote_store(settings)
    if db is None:
        db = InventoryDB(get_inventory_db_path(), client_id=client_id)
    sync_cfg = settings.get("sync", {})
    return InventorySyncEngine(
        db=db,
        remote=remote,
        cursor_store=build_cursor_store(settings, db),
        client_id=client_id,
        audit_log_push_mode=sync_cfg.get("audit_log_push_mode", "upsert"),
    )


def build_application(settings: Dict[str, Any]) -> Tuple[InventorySyncEngine, SyncScheduler]:
    engine = build_sync_engine(settings)
    sync_cfg = settings.get("sync", {})
    scheduler = SyncScheduler(
        engine,
        interval_seconds=float(sync_cfg.get("interval_seconds", SYNC_INTERVAL_SECONDS)),
        sync_on_start=bool(sync_cfg.get("sync_on_start", True)),
    )
    return engine, scheduler


def main(stop_event: Optional[threading.Event] = None) -> int:
    """Runs the start-up sync and the periodic sync until interrupted."""
    settings = load_settings()
    configure_application_logging(settings)
    try:
        engine, scheduler = build_application(settings)
    except InputError as e:
        loguru_logger.error(f"Cannot start sync: {e}")
        return 1
    loguru_logger.success(f"smart_stock sync running for client '{engine.client_id}'.")
    stop_event = stop_event or threading.Event()
    scheduler.start()
    try:
        while not stop_event.wait(1.0):
            pass
    except KeyboardInterrupt:
        loguru_logger.info("Interrupted. Shutting down sync.")
    finally:
        scheduler.stop(timeout=30)
        engine.remote.close()
        engine.db.close_connection()
    return 0


if __name__ == "__main__":
    sys.exit(main())

#
# End of app.py
#######################################################################################################################
