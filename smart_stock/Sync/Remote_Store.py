# Remote_Store.py
# Description: Remote store clients for sync: a PostgREST/Supabase HTTP client and an in-memory stand-in.
#
# Imports
import copy
import json
import logging
import threading
from typing import Any, Dict, List, Optional, Tuple
#
# 3rd-party Libraries
import requests
#
# Local Imports
from smart_stock.DB.Inventory_DB import COLLECTION_COLUMNS, SYNCED_COLLECTIONS
from smart_stock.Sync.exceptions import (
    RemoteAuthenticationError,
    RemoteConnectionError,
    RemoteDuplicateError,
    RemoteRequestError,
    RemoteResponseError,
)
#
########################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

DEFAULT_TIMEOUT_SECONDS = 30.0
DEFAULT_PAGE_SIZE = 1000
POSTGRES_UNIQUE_VIOLATION = "23505"

# The remote schema has every local column except the local-only `is_synced` flag.
REMOTE_COLUMNS: Dict[str, List[str]] = {
    name: [c for c in COLLECTION_COLUMNS[name] if c != "is_synced"] for name in SYNCED_COLLECTIONS
}


class RemoteStore:
    """
    Interface the sync engine consumes.

    Implementations must treat `upsert` as idempotent by `on_conflict` key,
    and `insert` must reject rows whose primary key already exists with
    `RemoteDuplicateError`.
    """

    def upsert(self, collection: str, records: List[Dict[str, Any]], on_conflict: str = "id") -> None:
        raise NotImplementedError

    def insert(self, collection: str, records: List[Dict[str, Any]]) -> None:
        raise NotImplementedError

    def select_all(self, collection: str) -> List[Dict[str, Any]]:
        raise NotImplementedError

    def close(self) -> None:
        pass

    @staticmethod
    def _check_collection(collection: str) -> None:
        if collection not in SYNCED_COLLECTIONS:
            raise RemoteRequestError(f"Unknown remote collection '{collection}'.")


class PostgrestRemoteStore(RemoteStore):
    """
    Remote store backed by a PostgREST endpoint (e.g. Supabase's `/rest/v1`).

    Every request carries a timeout; a hung call surfaces as
    `RemoteConnectionError` like any other network failure.
    """

    def __init__(self, base_url: str, api_key: Optional[str] = None,
                 timeout: float = DEFAULT_TIMEOUT_SECONDS, schema_path: str = "rest/v1",
                 page_size: int = DEFAULT_PAGE_SIZE, session: Optional[requests.Session] = None):
        if not base_url:
            raise ValueError("PostgrestRemoteStore requires a base URL.")
        self.base_url = base_url.rstrip('/')
        self.schema_path = schema_path.strip('/')
        self.timeout = timeout
        self.page_size = page_size
        self.session = session or requests.Session()
        headers = {"Content-Type": "application/json", "Accept": "application/json"}
        if api_key:
            headers["apikey"] = api_key
            headers["Authorization"] = f"Bearer {api_key}"
        self.session.headers.update(headers)

    def _url(self, collection: str) -> str:
        if self.schema_path:
            return f"{self.base_url}/{self.schema_path}/{collection}"
        return f"{self.base_url}/{collection}"

    @staticmethod
    def _error_detail(response: requests.Response) -> Tuple[str, Any]:
        try:
            data = response.json()
        except ValueError:
            return (response.text or response.reason or "No response body"), {"raw_text": response.text}
        if isinstance(data, dict):
            detail = data.get("message") or data.get("details") or data.get("hint") or str(data)
            return detail, data
        return str(data), data

    def _raise_for_response(self, response: requests.Response, collection: str) -> None:
        try:
            response.raise_for_status()
        except requests.exceptions.HTTPError as e:
            status = response.status_code
            detail, data = self._error_detail(response)
            code = data.get("code") if isinstance(data, dict) else None
            logger.warning(f"Remote rejected request for '{collection}': HTTP {status} {detail}")
            # PostgREST also answers 409 for foreign-key and other conflicts; only 23505 is a duplicate.
            if code == POSTGRES_UNIQUE_VIOLATION:
                raise RemoteDuplicateError(status, f"Duplicate key in '{collection}': {detail}",
                                           response_data=data) from e
            if status in (401, 403):
                raise RemoteAuthenticationError(status, f"Authentication failed: {detail}",
                                                response_data=data) from e
            raise RemoteResponseError(status, detail, response_data=data) from e

    def _send(self, method: str, collection: str, *, params: Optional[Dict[str, Any]] = None,
              rows: Optional[List[Dict[str, Any]]] = None,
              headers: Optional[Dict[str, str]] = None) -> requests.Response:
        self._check_collection(collection)
        url = self._url(collection)
        body = None
        if rows is not None:
            try:
                body = json.dumps(rows, default=str)
            except (TypeError, ValueError) as e:
                raise RemoteRequestError(f"Could not serialise rows for '{collection}': {e}") from e
        try:
            response = self.session.request(method, url, params=params, data=body, headers=headers,
                                            timeout=self.timeout)
        except requests.exceptions.Timeout as e:
            raise RemoteConnectionError(f"Timed out after {self.timeout}s talking to {url}: {e}") from e
        except requests.exceptions.RequestException as e:
            raise RemoteConnectionError(f"Connection error to {url}: {e}") from e
        self._raise_for_response(response, collection)
        return response

    def upsert(self, collection: str, records: List[Dict[str, Any]], on_conflict: str = "id") -> None:
        if not records:
            return
        logger.debug(f"Upserting {len(records)} rows into remote '{collection}'.")
        self._send("POST", collection, params={"on_conflict": on_conflict}, rows=records,
                   headers={"Prefer": "resolution=merge-duplicates,return=minimal"})

    def insert(self, collection: str, records: List[Dict[str, Any]]) -> None:
        if not records:
            return
        logger.debug(f"Inserting {len(records)} rows into remote '{collection}'.")
        self._send("POST", collection, rows=records, headers={"Prefer": "return=minimal"})

    def select_all(self, collection: str) -> List[Dict[str, Any]]:
        """Fetches every row of `collection`, one page at a time, ordered by id."""
        rows: List[Dict[str, Any]] = []
        offset = 0
        while True:
            params = {"select": "*", "order": "id.asc", "limit": self.page_size, "offset": offset}
            response = self._send("GET", collection, params=params)
            try:
                page = response.json()
            except ValueError as e:
                raise RemoteResponseError(response.status_code, f"Failed to decode rows for '{collection}'",
                                          response_data={"raw_text": response.text}) from e
            if not isinstance(page, list):
                raise RemoteResponseError(response.status_code,
                                          f"Expected a list of rows for '{collection}', got {type(page).__name__}",
                                          response_data=page)
            rows.extend(page)
            if len(page) < self.page_size:
                break
            offset += len(page)
        logger.debug(f"Fetched {len(rows)} rows from remote '{collection}'.")
        return rows

    def close(self) -> None:
        self.session.close()


class InMemoryRemoteStore(RemoteStore):
    """
    Dictionary-backed remote store for tests, demos and offline development.

    Rows are stored by id per collection. Rows carrying columns the remote
    schema lacks (such as `is_synced`) are rejected, as a real server would.
    Failures can be injected per operation and collection with `fail_on`.
    """

    def __init__(self, strict_columns: bool = True):
        self.tables: Dict[str, Dict[str, Dict[str, Any]]] = {name: {} for name in SYNCED_COLLECTIONS}
        self.calls: List[Tuple[str, str, int]] = []
        self.strict_columns = strict_columns
        self._failures: Dict[Tuple[str, str], List[Any]] = {}
        self._lock = threading.Lock()

    # --- Test Helpers ---
    def fail_on(self, operation: str, collection: str, error: Optional[Exception] = None,
                times: Optional[int] = None) -> None:
        """
        Makes `operation` ("upsert", "insert" or "select_all") on `collection` raise.

        Args:
            error: The exception to raise; defaults to a RemoteConnectionError.
            times: How many calls fail before the store recovers. None means every call.
        """
        if error is None:
            error = RemoteConnectionError(f"Injected failure on {operation} {collection}")
        self._failures[(operation, collection)] = [error, times]

    def clear_failures(self) -> None:
        self._failures.clear()

    def seed(self, collection: str, records: List[Dict[str, Any]]) -> None:
        """Writes rows directly, as another client would, without recording a call."""
        self._check_collection(collection)
        with self._lock:
            for record in records:
                self.tables[collection][record["id"]] = copy.deepcopy(record)

    def rows(self, collection: str) -> List[Dict[str, Any]]:
        return [copy.deepcopy(r) for r in self.tables[collection].values()]

    def get(self, collection: str, record_id: str) -> Optional[Dict[str, Any]]:
        row = self.tables[collection].get(record_id)
        return copy.deepcopy(row) if row is not None else None

    # --- Internals ---
    def _maybe_fail(self, operation: str, collection: str) -> None:
        entry = self._failures.get((operation, collection))
        if entry is None:
            return
        error, remaining = entry
        if remaining is not None:
            if remaining <= 0:
                del self._failures[(operation, collection)]
                return
            entry[1] = remaining - 1
        raise error

    def _validate_rows(self, collection: str, records: List[Dict[str, Any]]) -> None:
        for record in records:
            if not record.get("id"):
                raise RemoteResponseError(400, f"Row in '{collection}' has no id", response_data=record)
            if self.strict_columns:
                unknown = set(record) - set(REMOTE_COLUMNS[collection])
                if unknown:
                    raise RemoteResponseError(
                        400, f"Could not find column(s) {sorted(unknown)} of '{collection}'",
                        response_data={"code": "PGRST204"})

    # --- RemoteStore API ---
    def upsert(self, collection: str, records: List[Dict[str, Any]], on_conflict: str = "id") -> None:
        self._check_collection(collection)
        self.calls.append(("upsert", collection, len(records)))
        self._maybe_fail("upsert", collection)
        self._validate_rows(collection, records)
        with self._lock:
            table = self.tables[collection]
            for record in records:
                key = record[on_conflict]
                existing = table.get(key, {})
                # merge-duplicates: provided columns overwrite, others stay.
                table[key] = {**existing, **copy.deepcopy(record)}

    def insert(self, collection: str, records: List[Dict[str, Any]]) -> None:
        self._check_collection(collection)
        self.calls.append(("insert", collection, len(records)))
        self._maybe_fail("insert", collection)
        self._validate_rows(collection, records)
        with self._lock:
            table = self.tables[collection]
            duplicates = [r["id"] for r in records if r["id"] in table]
            if duplicates:
                # The whole statement fails, as with a single multi-row INSERT.
                raise RemoteDuplicateError(409, f"duplicate key value violates unique constraint "
                                                f"\"{collection}_pkey\" ({duplicates[0]})",
                                           response_data={"code": POSTGRES_UNIQUE_VIOLATION})
            for record in records:
                table[record["id"]] = copy.deepcopy(record)

    def select_all(self, collection: str) -> List[Dict[str, Any]]:
        self._check_collection(collection)
        self.calls.append(("select_all", collection, len(self.tables[collection])))
        self._maybe_fail("select_all", collection)
        with self._lock:
            return [copy.deepcopy(r) for r in self.tables[collection].values()]

#
# End of Remote_Store.py
########################################################################################################################
