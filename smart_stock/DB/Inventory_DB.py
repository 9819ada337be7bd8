# Inventory_DB.py
# Description: DB Library for the local-first inventory store (categories, hardware, notes, audit log).
#
"""
Inventory_DB.py
---------------

SQLite-based local store for the inventory application.

This library provides:
- Schema management with versioning.
- Thread-safe database connections using `threading.local`.
- Generic per-collection record access (`get_record`, `put_record`, `insert_record`)
  used by the repository layer and by the sync engine.
- Soft deletion via the `is_deleted` tombstone column; nothing in this module
  physically removes a record except `clear_database`.
- Range queries on the indexed `updated_at` and `is_synced` columns that the
  sync Change Detector relies on.
- A write-once `system_logs` collection and a `sync_state` key/value slot,
  both outside the four synchronised collections.
- A transaction context manager for safe and explicit transaction handling.

Collections:
- categories, hardware, notes, audit_log: synchronised with the remote store.
- system_logs: local diagnostics only, never synced.
"""
# Imports
import json
import sqlite3
import threading
import logging
from pathlib import Path
from typing import List, Dict, Optional, Any, Union, Iterable
#
# Third-Party Libraries
#
# Local Imports
from smart_stock.utils.time_utils import normalize_timestamp, utc_now_iso
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)


# --- Custom Exceptions ---
class InventoryDBError(Exception):
    """Base exception for InventoryDB related errors."""
    pass


class SchemaError(InventoryDBError):
    """Exception for schema version mismatches or migration failures."""
    pass


class InputError(ValueError):
    """Custom exception for input validation errors."""
    pass


class ConflictError(InventoryDBError):
    """
    Indicates a unique constraint violation, e.g. inserting a record whose id already exists.

    Attributes:
        entity (Optional[str]): The collection involved in the conflict (e.g., "audit_log").
        entity_id (Any): The id of the record involved.
    """

    def __init__(self, message="Conflict detected.", entity: Optional[str] = None, entity_id: Any = None):
        super().__init__(message)
        self.entity = entity
        self.entity_id = entity_id

    def __str__(self):
        base = super().__str__()
        details = []
        if self.entity:
            details.append(f"Entity: {self.entity}")
        if self.entity_id:
            details.append(f"ID: {self.entity_id}")
        return f"{base} ({', '.join(details)})" if details else base


# --- Collection Layout ---
CATEGORIES = "categories"
HARDWARE = "hardware"
NOTES = "notes"
AUDIT_LOG = "audit_log"
SYSTEM_LOGS = "system_logs"

SYNCED_COLLECTIONS = (CATEGORIES, HARDWARE, NOTES, AUDIT_LOG)
MUTABLE_COLLECTIONS = (CATEGORIES, HARDWARE, NOTES)

COLLECTION_COLUMNS: Dict[str, List[str]] = {
    CATEGORIES: ["id", "name", "color", "is_deleted", "updated_at"],
    HARDWARE: ["id", "description", "category_id", "quantity",
               "wholesale_price", "retail_price", "wholesale_price_unit", "retail_price_unit",
               "is_deleted", "updated_by", "location", "updated_at"],
    NOTES: ["id", "title", "body", "is_deleted", "created_at", "updated_at"],
    AUDIT_LOG: ["id", "item_id", "username", "change_description", "created_at", "is_synced"],
    SYSTEM_LOGS: ["id", "timestamp", "log_level", "error_message", "context",
                  "full_error_details", "phone_info", "last_synced_at"],
}

# Columns that must be present on every stored record of a collection.
_REQUIRED_COLUMNS: Dict[str, List[str]] = {
    CATEGORIES: ["id", "name", "updated_at"],
    HARDWARE: ["id", "updated_at"],
    NOTES: ["id", "updated_at"],
    AUDIT_LOG: ["id", "item_id", "change_description", "created_at"],
    SYSTEM_LOGS: ["id", "timestamp", "log_level", "error_message"],
}

_BOOLEAN_COLUMNS = {"is_deleted"}
_TIMESTAMP_COLUMNS = {"updated_at", "created_at", "timestamp", "last_synced_at"}
_JSON_COLUMNS = {"context"}

SYSTEM_LOG_LEVELS = ("INFO", "WARNING", "ERROR")


# --- Database Class ---
class InventoryDB:
    """
    Manages SQLite connections and operations for the local inventory store.

    Attributes:
        db_path (Path): The absolute path to the SQLite database file, or Path(":memory:").
        client_id (str): The identifier for the client instance using this database.
        is_memory_db (bool): True if the database is in-memory.
        db_path_str (str): String representation of the database path for SQLite connection.
    """
    _CURRENT_SCHEMA_VERSION = 1
    _SCHEMA_NAME = "smart_stock_inventory"

    _FULL_SCHEMA_SQL_V1 = """
/*───────────────────────────────────────────────────────────────
  Smart Stock inventory schema  –  Version 1
───────────────────────────────────────────────────────────────*/
CREATE TABLE IF NOT EXISTS db_schema_version(
  schema_name TEXT PRIMARY KEY NOT NULL,
  version     INTEGER NOT NULL
);
INSERT OR IGNORE INTO db_schema_version(schema_name,version)
VALUES('smart_stock_inventory',0);

/*----------------------------------------------------------------
  1. Categories
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS categories(
  id          TEXT PRIMARY KEY NOT NULL,
  name        TEXT NOT NULL,
  color       TEXT,
  is_deleted  INTEGER NOT NULL DEFAULT 0,
  updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_categories_updated_at ON categories(updated_at);
CREATE INDEX IF NOT EXISTS idx_categories_is_deleted ON categories(is_deleted);

/*----------------------------------------------------------------
  2. Hardware items
  category_id is a weak reference: no FOREIGN KEY on purpose.
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS hardware(
  id                    TEXT PRIMARY KEY NOT NULL,
  description           TEXT,
  category_id           TEXT,
  quantity              TEXT,
  wholesale_price       REAL,
  retail_price          REAL,
  wholesale_price_unit  TEXT,
  retail_price_unit     TEXT,
  is_deleted            INTEGER NOT NULL DEFAULT 0,
  updated_by            TEXT,
  location              TEXT,
  updated_at            TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_hardware_updated_at  ON hardware(updated_at);
CREATE INDEX IF NOT EXISTS idx_hardware_category_id ON hardware(category_id);

/*----------------------------------------------------------------
  3. Notes
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS notes(
  id          TEXT PRIMARY KEY NOT NULL,
  title       TEXT,
  body        TEXT,
  is_deleted  INTEGER NOT NULL DEFAULT 0,
  created_at  TEXT,
  updated_at  TEXT NOT NULL
);
CREATE INDEX IF NOT EXISTS idx_notes_updated_at ON notes(updated_at);

/*----------------------------------------------------------------
  4. Audit log (append-only, is_synced is local bookkeeping)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS audit_log(
  id                  TEXT PRIMARY KEY NOT NULL,
  item_id             TEXT NOT NULL,
  username            TEXT,
  change_description  TEXT NOT NULL,
  created_at          TEXT NOT NULL,
  is_synced           INTEGER NOT NULL DEFAULT 0 CHECK(is_synced IN (0,1))
);
CREATE INDEX IF NOT EXISTS idx_audit_log_is_synced  ON audit_log(is_synced);
CREATE INDEX IF NOT EXISTS idx_audit_log_item_id    ON audit_log(item_id);
CREATE INDEX IF NOT EXISTS idx_audit_log_created_at ON audit_log(created_at);

/*----------------------------------------------------------------
  5. System logs (write-once diagnostics, never synced)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS system_logs(
  id                  TEXT PRIMARY KEY NOT NULL,
  timestamp           TEXT NOT NULL,
  log_level           TEXT NOT NULL CHECK(log_level IN ('INFO','WARNING','ERROR')),
  error_message       TEXT NOT NULL,
  context             TEXT,
  full_error_details  TEXT,
  phone_info          TEXT,
  last_synced_at      TEXT
);
CREATE INDEX IF NOT EXISTS idx_system_logs_timestamp ON system_logs(timestamp);

/*----------------------------------------------------------------
  6. Scalar sync state (e.g. lastSyncedAt)
----------------------------------------------------------------*/
CREATE TABLE IF NOT EXISTS sync_state(
  key         TEXT PRIMARY KEY NOT NULL,
  value       TEXT,
  updated_at  TEXT NOT NULL
);

UPDATE db_schema_version
   SET version = 1
 WHERE schema_name = 'smart_stock_inventory'
   AND version < 1;
"""

    def __init__(self, db_path: Union[str, Path], client_id: str):
        """
        Initializes the InventoryDB instance and ensures the schema exists.

        Args:
            db_path: Path to the SQLite database file or ":memory:".
            client_id: Identifier for this client instance. Must not be empty.

        Raises:
            ValueError: If `client_id` is empty or None.
            InventoryDBError: If the database directory cannot be created or
                              initialization fails.
            SchemaError: If the on-disk schema is newer or unknown.
        """
        if isinstance(db_path, Path):
            self.is_memory_db = False
            self.db_path = db_path.resolve()
        else:
            self.is_memory_db = (db_path == ':memory:')
            self.db_path = Path(db_path).resolve() if not self.is_memory_db else Path(":memory:")
        self.db_path_str = str(self.db_path) if not self.is_memory_db else ':memory:'

        if not client_id:
            raise ValueError("Client ID cannot be empty or None.")
        self.client_id = client_id

        if not self.is_memory_db:
            try:
                self.db_path.parent.mkdir(parents=True, exist_ok=True)
            except OSError as e:
                raise InventoryDBError(f"Failed to create database directory {self.db_path.parent}: {e}")

        logger.info(f"Initializing InventoryDB for path: {self.db_path_str} [Client ID: {self.client_id}]")
        self._local = threading.local()
        try:
            self._initialize_schema()
            logger.debug(f"InventoryDB initialization completed successfully for {self.db_path_str}")
        except (InventoryDBError, sqlite3.Error) as e:
            logger.critical(f"FATAL: DB Initialization failed for {self.db_path_str}: {e}", exc_info=True)
            self.close_connection()
            if isinstance(e, SchemaError):
                raise
            raise InventoryDBError(f"Database initialization failed: {e}") from e

    # --- Connection Management ---
    def _get_thread_connection(self) -> sqlite3.Connection:
        """
        Retrieves or creates a thread-local SQLite connection.

        Reopens the connection if the cached one became unusable. Enables WAL
        mode for file-based databases.

        Raises:
            InventoryDBError: If connecting to the database fails.
        """
        conn = getattr(self._local, 'conn', None)
        if conn:
            try:
                conn.execute("SELECT 1")
            except (sqlite3.ProgrammingError, sqlite3.OperationalError):
                logger.warning(
                    f"Thread-local connection for {self.db_path_str} was closed or became unusable. Reopening.")
                try:
                    conn.close()
                except sqlite3.Error:
                    pass
                conn = None

        if not conn:
            try:
                conn = sqlite3.connect(
                    self.db_path_str,
                    check_same_thread=False,
                    timeout=15
                )
                conn.row_factory = sqlite3.Row
                if not self.is_memory_db:
                    conn.execute("PRAGMA journal_mode=WAL;")
                self._local.conn = conn
                logger.debug(f"Opened SQLite connection to {self.db_path_str} for thread {threading.get_ident()}")
            except sqlite3.Error as e:
                logger.error(f"Failed to connect to database {self.db_path_str}: {e}", exc_info=True)
                self._local.conn = None
                raise InventoryDBError(f"Failed to connect to database '{self.db_path_str}': {e}") from e
        return self._local.conn

    def get_connection(self) -> sqlite3.Connection:
        """Public method to get the current thread's database connection."""
        return self._get_thread_connection()

    def close_connection(self):
        """
        Closes the current thread's database connection.

        Rolls back an uncommitted transaction and checkpoints the WAL file
        before closing a file-based database.
        """
        conn = getattr(self._local, 'conn', None)
        if conn is not None:
            try:
                if conn.in_transaction:
                    logger.warning(
                        f"Connection to {self.db_path_str} is in an uncommitted transaction during close. Rolling back.")
                    conn.rollback()
                if not self.is_memory_db:
                    mode_row = conn.execute("PRAGMA journal_mode;").fetchone()
                    if mode_row and mode_row[0].lower() == 'wal':
                        try:
                            conn.execute("PRAGMA wal_checkpoint(TRUNCATE);")
                        except sqlite3.Error as cp_err:
                            logger.warning(f"WAL checkpoint failed for {self.db_path_str}: {cp_err}")
                conn.close()
                logger.debug(f"Closed connection for thread {threading.get_ident()} to {self.db_path_str}.")
            except sqlite3.Error as e:
                logger.warning(f"Error during SQLite connection close for {self.db_path_str}: {e}")
            finally:
                self._local.conn = None

    # --- Query Execution ---
    def execute_query(self, query: str, params: Optional[Union[tuple, Dict[str, Any]]] = None, *,
                      commit: bool = False) -> sqlite3.Cursor:
        """
        Executes a single SQL statement.

        Args:
            query: The SQL statement.
            params: Optional parameters (tuple or dict).
            commit: If True and no explicit transaction is open, commit afterwards.

        Raises:
            ConflictError: On a unique constraint violation.
            InventoryDBError: For other SQLite errors.
        """
        conn = self.get_connection()
        try:
            cursor = conn.cursor()
            if logger.isEnabledFor(logging.DEBUG):
                logger.debug(f"Executing SQL: {query[:300]}... Params: {str(params)[:200]}...")
            cursor.execute(query, params or ())
            if commit and conn.in_transaction and not getattr(self._local, 'explicit_tx', False):
                conn.commit()
            return cursor
        except sqlite3.IntegrityError as e:
            logger.warning(f"Integrity constraint violation: {query[:300]}... Error: {e}")
            if "unique constraint failed" in str(e).lower():
                raise ConflictError(message=f"Unique constraint violation: {e}") from e
            raise InventoryDBError(f"Database constraint violation: {e}") from e
        except sqlite3.Error as e:
            logger.error(f"Query execution failed: {query[:300]}... Error: {e}", exc_info=True)
            raise InventoryDBError(f"Query execution failed: {e}") from e

    # --- Transaction Context ---
    def transaction(self) -> 'TransactionContextManager':
        """
        Returns a context manager for database transactions.

        Usage:
            with db.transaction() as conn:
                conn.execute(...)
        Commit happens on successful exit of the outermost block, rollback on exception.
        """
        return TransactionContextManager(self)

    # --- Schema Initialization ---
    def _get_db_version(self, conn: sqlite3.Connection) -> int:
        try:
            cursor = conn.execute("SELECT version FROM db_schema_version WHERE schema_name = ? LIMIT 1",
                                  (self._SCHEMA_NAME,))
            result = cursor.fetchone()
            return result['version'] if result else 0
        except sqlite3.Error as e:
            if "no such table" in str(e).lower():
                return 0
            raise SchemaError(f"Could not determine schema version for '{self._SCHEMA_NAME}': {e}") from e

    def _initialize_schema(self):
        """
        Applies schema V1 to a fresh database, or verifies an existing one.

        Raises:
            SchemaError: If the stored version is newer than the code supports,
                         or an older version has no migration path.
        """
        conn = self.get_connection()
        current_db_version = self._get_db_version(conn)
        target_version = self._CURRENT_SCHEMA_VERSION
        logger.info(f"Checking DB schema '{self._SCHEMA_NAME}'. Current version: {current_db_version}. "
                    f"Code supports: {target_version}")

        if current_db_version == target_version:
            logger.debug(f"Database schema '{self._SCHEMA_NAME}' is up to date (Version {target_version}).")
            return
        if current_db_version > target_version:
            raise SchemaError(
                f"Database schema '{self._SCHEMA_NAME}' version ({current_db_version}) is newer than supported "
                f"by code ({target_version}). Aborting.")
        if current_db_version != 0:
            raise SchemaError(
                f"Migration path undefined for '{self._SCHEMA_NAME}' from version {current_db_version} "
                f"to {target_version}.")

        try:
            # executescript manages its own transaction.
            conn.executescript(self._FULL_SCHEMA_SQL_V1)
        except sqlite3.Error as e:
            raise SchemaError(f"DB schema V{target_version} setup failed for '{self._SCHEMA_NAME}': {e}") from e

        final_version = self._get_db_version(conn)
        if final_version != target_version:
            raise SchemaError(f"Schema version update check failed. Expected {target_version}, got: {final_version}")
        logger.info(f"Schema V{target_version} applied for DB: {self.db_path_str}.")

    # --- Internal Helpers ---
    @staticmethod
    def _check_collection(collection: str, allowed: Iterable[str] = tuple(COLLECTION_COLUMNS)) -> None:
        if collection not in allowed:
            raise InputError(f"Unknown or unsupported collection '{collection}'.")

    @staticmethod
    def _prepare_record_values(collection: str, record: Dict[str, Any]) -> Dict[str, Any]:
        """
        Maps a record dict onto the collection's columns.

        Booleans become 0/1, timestamps are normalised, JSON columns are
        serialised. Keys that are not columns of the collection are dropped.
        Missing columns become NULL (or the column default for flags), which
        gives `put_record` whole-record replacement semantics.

        Raises:
            InputError: If a required column is missing or a timestamp is malformed.
        """
        for required in _REQUIRED_COLUMNS[collection]:
            if record.get(required) in (None, ""):
                raise InputError(f"Record for '{collection}' is missing required field '{required}'.")

        unknown = set(record) - set(COLLECTION_COLUMNS[collection])
        if unknown:
            logger.debug(f"Ignoring unknown fields for '{collection}' record {record.get('id')}: {sorted(unknown)}")

        values: Dict[str, Any] = {}
        for col in COLLECTION_COLUMNS[collection]:
            value = record.get(col)
            if col in _BOOLEAN_COLUMNS:
                value = 1 if value else 0
            elif col == "is_synced":
                value = 1 if value else 0
            elif col in _TIMESTAMP_COLUMNS and value is not None:
                try:
                    value = normalize_timestamp(value)
                except (TypeError, ValueError) as e:
                    raise InputError(f"Invalid timestamp for '{collection}.{col}': {value!r}") from e
            elif col in _JSON_COLUMNS and value is not None and not isinstance(value, str):
                value = json.dumps(value, default=str)
            values[col] = value
        return values

    @staticmethod
    def _row_to_record(collection: str, row: Optional[sqlite3.Row]) -> Optional[Dict[str, Any]]:
        if row is None:
            return None
        item = dict(row)
        if "is_deleted" in item:
            item["is_deleted"] = bool(item["is_deleted"])
        for field in _JSON_COLUMNS:
            if isinstance(item.get(field), str):
                try:
                    item[field] = json.loads(item[field])
                except json.JSONDecodeError:
                    logger.warning(f"Failed to decode JSON for field '{field}' in {collection} row {item.get('id')}.")
        return item

    # --- Generic Record Access ---
    def get_record(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        """Returns the record with `record_id`, tombstoned or not, or None."""
        self._check_collection(collection)
        cursor = self.execute_query(f"SELECT * FROM {collection} WHERE id = ?", (record_id,))
        return self._row_to_record(collection, cursor.fetchone())

    def put_record(self, collection: str, record: Dict[str, Any]) -> None:
        """
        Upserts a record by id, replacing every column of an existing row.

        Joins the caller's transaction when one is open; otherwise commits.

        Raises:
            InputError: For an unknown collection, missing fields or bad timestamps.
            InventoryDBError: If the write fails.
        """
        self._check_collection(collection, SYNCED_COLLECTIONS)
        values = self._prepare_record_values(collection, record)
        cols = list(values)
        placeholders = ", ".join("?" for _ in cols)
        updates = ", ".join(f"{c} = excluded.{c}" for c in cols if c != "id")
        query = (f"INSERT INTO {collection} ({', '.join(cols)}) VALUES ({placeholders}) "
                 f"ON CONFLICT(id) DO UPDATE SET {updates}")
        self.execute_query(query, tuple(values[c] for c in cols), commit=True)

    def insert_record(self, collection: str, record: Dict[str, Any]) -> str:
        """
        Inserts a new record.

        Raises:
            ConflictError: If a record with the same id already exists.
        """
        self._check_collection(collection)
        values = self._prepare_record_values(collection, record)
        cols = list(values)
        query = f"INSERT INTO {collection} ({', '.join(cols)}) VALUES ({', '.join('?' for _ in cols)})"
        try:
            self.execute_query(query, tuple(values[c] for c in cols), commit=True)
        except ConflictError as e:
            raise ConflictError(f"Record with id '{values['id']}' already exists in {collection}.",
                                entity=collection, entity_id=values['id']) from e
        return values['id']

    def list_records(self, collection: str, include_deleted: bool = False) -> List[Dict[str, Any]]:
        self._check_collection(collection, SYNCED_COLLECTIONS)
        query = f"SELECT * FROM {collection}"
        if not include_deleted and collection in MUTABLE_COLLECTIONS:
            query += " WHERE is_deleted = 0"
        order_col = "created_at" if collection == AUDIT_LOG else "updated_at"
        query += f" ORDER BY {order_col} DESC"
        cursor = self.execute_query(query)
        return [self._row_to_record(collection, row) for row in cursor.fetchall()]

    def count_records(self, collection: str) -> int:
        self._check_collection(collection)
        cursor = self.execute_query(f"SELECT COUNT(*) AS n FROM {collection}")
        return cursor.fetchone()['n']

    # --- Change Tracking Queries ---
    def get_records_updated_after(self, collection: str, cursor_ts: str) -> List[Dict[str, Any]]:
        """
        Range query on the indexed `updated_at` column (strictly greater than `cursor_ts`).

        Tombstoned records are included: a soft delete is a change like any other.
        """
        self._check_collection(collection, MUTABLE_COLLECTIONS)
        try:
            threshold = normalize_timestamp(cursor_ts)
        except (TypeError, ValueError) as e:
            raise InputError(f"Invalid cursor timestamp: {cursor_ts!r}") from e
        cursor = self.execute_query(
            f"SELECT * FROM {collection} WHERE updated_at > ? ORDER BY updated_at ASC", (threshold,))
        return [self._row_to_record(collection, row) for row in cursor.fetchall()]

    def get_unsynced_audit_logs(self) -> List[Dict[str, Any]]:
        cursor = self.execute_query("SELECT * FROM audit_log WHERE is_synced = 0 ORDER BY created_at ASC")
        return [self._row_to_record(AUDIT_LOG, row) for row in cursor.fetchall()]

    def mark_audit_logs_synced(self, audit_ids: List[str]) -> int:
        """
        Flips `is_synced` from 0 to 1 for the given audit entries.

        Rows that are already synced are left alone, so the flag never moves
        backwards and a repeated call changes nothing.

        Returns:
            The number of rows that changed.
        """
        if not audit_ids:
            return 0
        changed = 0
        # SQLite caps the number of bound variables per statement.
        chunk_size = 500
        with self.transaction() as conn:
            for start in range(0, len(audit_ids), chunk_size):
                chunk = audit_ids[start:start + chunk_size]
                placeholders = ", ".join("?" for _ in chunk)
                cursor = conn.execute(
                    f"UPDATE audit_log SET is_synced = 1 WHERE is_synced = 0 AND id IN ({placeholders})",
                    tuple(chunk))
                changed += cursor.rowcount
        logger.debug(f"Marked {changed} of {len(audit_ids)} audit log entries as synced.")
        return changed

    # --- System Logs ---
    def add_system_log(self, entry: Dict[str, Any]) -> str:
        """
        Writes one system log entry. Entries are never updated afterwards.

        The entry is independent of any transaction open on this thread: it
        is validated immediately but written once the outermost transaction
        ends, whether that transaction commits or rolls back.

        Raises:
            InputError: If the log level is not INFO, WARNING or ERROR, or a
                required field is missing.
        """
        level = str(entry.get("log_level", "")).upper()
        if level not in SYSTEM_LOG_LEVELS:
            raise InputError(f"Invalid system log level '{entry.get('log_level')}'.")
        entry = {**entry, "log_level": level}
        if getattr(self._local, 'explicit_tx', False):
            values = self._prepare_record_values(SYSTEM_LOGS, entry)
            if not hasattr(self._local, 'pending_system_logs'):
                self._local.pending_system_logs = []
            self._local.pending_system_logs.append(entry)
            logger.debug(f"System log {values['id']} deferred until the open transaction ends.")
            return values['id']
        return self.insert_record(SYSTEM_LOGS, entry)

    def _flush_pending_system_logs(self) -> None:
        pending = getattr(self._local, 'pending_system_logs', None)
        if not pending:
            return
        self._local.pending_system_logs = []
        for entry in pending:
            try:
                self.insert_record(SYSTEM_LOGS, entry)
            except InventoryDBError as e:
                logger.error(f"Could not write deferred system log {entry.get('id')}: {e}", exc_info=True)

    def list_system_logs(self, limit: Optional[int] = 100, log_level: Optional[str] = None) -> List[Dict[str, Any]]:
        query_parts = ["SELECT * FROM system_logs"]
        params: List[Any] = []
        if log_level:
            query_parts.append("WHERE log_level = ?")
            params.append(log_level.upper())
        query_parts.append("ORDER BY timestamp DESC, rowid DESC")
        if limit is not None:
            query_parts.append("LIMIT ?")
            params.append(limit)
        cursor = self.execute_query(" ".join(query_parts), tuple(params))
        return [self._row_to_record(SYSTEM_LOGS, row) for row in cursor.fetchall()]

    # --- Scalar Sync State ---
    def get_state(self, key: str) -> Optional[str]:
        cursor = self.execute_query("SELECT value FROM sync_state WHERE key = ?", (key,))
        row = cursor.fetchone()
        return row['value'] if row else None

    def set_state(self, key: str, value: Optional[str]) -> None:
        self.execute_query(
            "INSERT INTO sync_state (key, value, updated_at) VALUES (?, ?, ?) "
            "ON CONFLICT(key) DO UPDATE SET value = excluded.value, updated_at = excluded.updated_at",
            (key, value, utc_now_iso()), commit=True)

    # --- Maintenance ---
    def clear_database(self) -> None:
        """Physically empties the four synchronised collections. Not used by the sync engine."""
        with self.transaction() as conn:
            for collection in SYNCED_COLLECTIONS:
                conn.execute(f"DELETE FROM {collection}")
        logger.warning(f"Cleared all inventory collections in {self.db_path_str}.")


# --- Transaction Context Manager Class (Helper for `with db.transaction():`) ---
class TransactionContextManager:
    def __init__(self, db_instance: InventoryDB):
        self.db = db_instance
        self.conn: Optional[sqlite3.Connection] = None
        self.is_outermost_transaction = False

    def __enter__(self) -> sqlite3.Connection:
        self.conn = self.db.get_connection()
        if not getattr(self.db._local, 'explicit_tx', False):
            if self.conn.in_transaction:
                # Implicit transaction left open by a plain execute; settle it first.
                self.conn.commit()
            self.conn.execute("BEGIN")
            self.db._local.explicit_tx = True
            self.is_outermost_transaction = True
            logger.debug(f"Transaction started (outermost) on thread {threading.get_ident()}.")
        return self.conn

    def __exit__(self, exc_type, exc_val, exc_tb):
        if not self.is_outermost_transaction:
            return False
        try:
            if exc_type:
                logger.error(f"Transaction failed, rolling back on thread {threading.get_ident()}: "
                             f"{exc_type.__name__} - {exc_val}")
                try:
                    self.conn.rollback()
                except sqlite3.Error as rb_err:
                    logger.critical(f"Rollback FAILED on thread {threading.get_ident()}: {rb_err}", exc_info=True)
            else:
                try:
                    self.conn.commit()
                except sqlite3.Error as commit_err:
                    logger.error(f"Commit FAILED on thread {threading.get_ident()}, rolling back: {commit_err}",
                                 exc_info=True)
                    try:
                        self.conn.rollback()
                    except sqlite3.Error:
                        logger.critical("Rollback after failed commit also FAILED.", exc_info=True)
                    raise InventoryDBError(f"Commit failed: {commit_err}") from commit_err
        finally:
            self.db._local.explicit_tx = False
            self.db._flush_pending_system_logs()
        return False
#
# End of Inventory_DB.py
#######################################################################################################################
