# smart_stock/Sync/__init__.py
from .exceptions import (
    RemoteStoreError, RemoteConnectionError, RemoteRequestError, RemoteResponseError,
    RemoteAuthenticationError, RemoteDuplicateError, SyncError, SyncInProgressError
)
from .Remote_Store import RemoteStore, PostgrestRemoteStore, InMemoryRemoteStore
from .Change_Detector import ChangeSet, detect_local_changes
from .Sync_State import CursorStore, MemoryCursorStore, DBCursorStore, JsonFileCursorStore
from .Push_Pipeline import PushResult, push_changes
from .Pull_Pipeline import PullResult, pull_changes, should_apply_remote
from .Sync_Client import InventorySyncEngine, SyncReport, SyncState
from .Sync_Scheduler import SyncScheduler

__all__ = [
    "RemoteStoreError", "RemoteConnectionError", "RemoteRequestError", "RemoteResponseError",
    "RemoteAuthenticationError", "RemoteDuplicateError", "SyncError", "SyncInProgressError",
    "RemoteStore", "PostgrestRemoteStore", "InMemoryRemoteStore",
    "ChangeSet", "detect_local_changes",
    "CursorStore", "MemoryCursorStore", "DBCursorStore", "JsonFileCursorStore",
    "PushResult", "push_changes",
    "PullResult", "pull_changes", "should_apply_remote",
    "InventorySyncEngine", "SyncReport", "SyncState",
    "SyncScheduler",
]
