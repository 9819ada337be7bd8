# Inventory_Library.py
# Description: Service layer for inventory mutations. Every write stamps `updated_at` and records an audit entry.
#
# Imports
import logging
import uuid
from typing import List, Dict, Optional, Any, Iterable
#
# Third-Party Imports
#
# Local Imports
from smart_stock.DB.Inventory_DB import (
    InventoryDB,
    InputError,
    CATEGORIES,
    HARDWARE,
    NOTES,
    AUDIT_LOG,
    COLLECTION_COLUMNS,
)
from smart_stock.utils.stock_utils import is_out_of_stock, parse_quantity_string
from smart_stock.utils.time_utils import utc_now_iso
#
#######################################################################################################################
#
# Functions:

logger = logging.getLogger(__name__)

# Keys the service owns; callers cannot set them through `updates`.
_PROTECTED_FIELDS = {"id", "updated_at", "created_at", "is_deleted"}

_AUDIT_LABELS = {
    CATEGORIES: "category",
    HARDWARE: "item",
    NOTES: "note",
}

UNCATEGORIZED = "Uncategorized"
HARDWARE_SORT_FIELDS = ("description", "retail_price", "quantity")


class InventoryService:
    """
    The one place that mutates categories, hardware and notes.

    Each mutation runs in a single local transaction that writes the record
    with a fresh `updated_at` and inserts exactly one pending audit entry,
    so the sync Change Detector sees every change.
    """

    def __init__(self, db: InventoryDB, username: Optional[str] = None):
        if db is None:
            raise ValueError("InventoryService requires an InventoryDB instance.")
        self.db = db
        self.username = username
        logger.info(f"InventoryService initialized for DB {db.db_path_str} (user: {username or 'anonymous'}).")

    # --- Internal Helpers ---
    @staticmethod
    def _new_id() -> str:
        return str(uuid.uuid4())

    def _audit_entry(self, item_id: str, description: str, timestamp: str,
                     username: Optional[str] = None) -> Dict[str, Any]:
        return {
            "id": self._new_id(),
            "item_id": item_id,
            "username": username if username is not None else self.username,
            "change_description": description,
            "created_at": timestamp,
            "is_synced": 0,
        }

    @staticmethod
    def _display_name(collection: str, record: Dict[str, Any]) -> str:
        if collection == CATEGORIES:
            return record.get("name") or record["id"]
        if collection == HARDWARE:
            return record.get("description") or record["id"]
        return record.get("title") or record["id"]

    def _clean_updates(self, collection: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        if not isinstance(updates, dict) or not updates:
            raise InputError("Updates must be a non-empty dictionary.")
        cleaned = {}
        for key, value in updates.items():
            if key in _PROTECTED_FIELDS:
                logger.warning(f"Ignoring protected field '{key}' in {collection} update.")
                continue
            if key not in COLLECTION_COLUMNS[collection]:
                raise InputError(f"Unknown field '{key}' for {collection}.")
            cleaned[key] = value
        return cleaned

    def _require(self, collection: str, record_id: str) -> Dict[str, Any]:
        record = self.db.get_record(collection, record_id)
        if record is None:
            raise InputError(f"No {_AUDIT_LABELS[collection]} with id '{record_id}' exists.")
        return record

    def _create(self, collection: str, record: Dict[str, Any]) -> str:
        now = utc_now_iso()
        record = {**record, "updated_at": now, "is_deleted": False}
        record.setdefault("id", None)
        if not record["id"]:
            record["id"] = self._new_id()
        if collection == NOTES:
            record["created_at"] = now
        description = f"Created {_AUDIT_LABELS[collection]}: {self._display_name(collection, record)}"
        with self.db.transaction():
            self.db.insert_record(collection, record)
            self.db.insert_record(AUDIT_LOG, self._audit_entry(record["id"], description, now))
        logger.info(f"Created {collection} record {record['id']}.")
        return record["id"]

    def _update(self, collection: str, record_id: str, updates: Dict[str, Any],
                stamp: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        """
        Applies `updates` to a live record with one audit entry.

        An update that changes no stored value is not a mutation: nothing is
        written and the current record is returned. `stamp` holds bookkeeping
        columns (e.g. `updated_by`) that are written only alongside a real change.
        """
        cleaned = self._clean_updates(collection, updates)
        now = utc_now_iso()
        with self.db.transaction():
            current = self._require(collection, record_id)
            if current.get("is_deleted"):
                raise InputError(f"Cannot update deleted {_AUDIT_LABELS[collection]} '{record_id}'.")
            changed = {k: v for k, v in cleaned.items() if current.get(k) != v}
            if not changed:
                logger.info(f"Update of {collection} record {record_id} changes nothing. Skipping.")
                return current
            merged = {**current, **(stamp or {}), **changed, "updated_at": now}
            description = f"Updated {_AUDIT_LABELS[collection]}: {self._display_name(collection, merged)}"
            self.db.put_record(collection, merged)
            self.db.insert_record(AUDIT_LOG, self._audit_entry(record_id, description, now))
        logger.info(f"Updated {collection} record {record_id} (fields: {sorted(changed)}).")
        return merged

    def _soft_delete(self, collection: str, record_id: str) -> bool:
        now = utc_now_iso()
        with self.db.transaction():
            current = self._require(collection, record_id)
            if current.get("is_deleted"):
                logger.info(f"{collection} record {record_id} is already deleted. Nothing to do.")
                return False
            tombstone = {**current, "is_deleted": True, "updated_at": now}
            description = f"Deleted {_AUDIT_LABELS[collection]}: {self._display_name(collection, current)}"
            self.db.put_record(collection, tombstone)
            self.db.insert_record(AUDIT_LOG, self._audit_entry(record_id, description, now))
        logger.info(f"Soft-deleted {collection} record {record_id}.")
        return True

    # --- Categories ---
    def add_category(self, name: str, color: Optional[str] = None, category_id: Optional[str] = None) -> str:
        if not isinstance(name, str) or not name.strip():
            raise InputError("Category name cannot be empty.")
        return self._create(CATEGORIES, {"id": category_id, "name": name.strip(), "color": color})

    def update_category(self, category_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        if "name" in updates and (not isinstance(updates["name"], str) or not updates["name"].strip()):
            raise InputError("Category name cannot be empty.")
        return self._update(CATEGORIES, category_id, updates)

    def delete_category(self, category_id: str) -> bool:
        """Tombstones the category. Items that reference it keep their `category_id`."""
        return self._soft_delete(CATEGORIES, category_id)

    def get_category(self, category_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_record(CATEGORIES, category_id)

    def list_categories(self, include_deleted: bool = False) -> List[Dict[str, Any]]:
        return self.db.list_records(CATEGORIES, include_deleted=include_deleted)

    def resolve_category_name(self, category_id: Optional[str], fallback: str = UNCATEGORIZED) -> str:
        """
        Looks up a category name by id.

        `category_id` is a weak reference: a missing or tombstoned category
        resolves to `fallback` rather than raising.
        """
        if not category_id:
            return fallback
        category = self.db.get_record(CATEGORIES, category_id)
        if category is None or category.get("is_deleted"):
            return fallback
        return category.get("name") or fallback

    # --- Hardware ---
    def add_hardware(self, data: Dict[str, Any]) -> str:
        if not isinstance(data, dict):
            raise InputError("Hardware data must be a dictionary.")
        if not (data.get("description") or "").strip():
            raise InputError("Hardware description cannot be empty.")
        unknown = set(data) - set(COLLECTION_COLUMNS[HARDWARE])
        if unknown:
            raise InputError(f"Unknown hardware fields: {sorted(unknown)}")
        record = {k: v for k, v in data.items() if k not in ("updated_at", "is_deleted")}
        if record.get("updated_by") is None:
            record["updated_by"] = self.username
        return self._create(HARDWARE, record)

    def update_hardware(self, item_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        # An anonymous service keeps whoever last edited the item.
        stamp = {"updated_by": self.username} if self.username is not None else None
        return self._update(HARDWARE, item_id, updates, stamp=stamp)

    def delete_hardware(self, item_id: str) -> bool:
        return self._soft_delete(HARDWARE, item_id)

    def get_hardware(self, item_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_record(HARDWARE, item_id)

    def list_hardware(self, include_deleted: bool = False) -> List[Dict[str, Any]]:
        return self.db.list_records(HARDWARE, include_deleted=include_deleted)

    def list_out_of_stock(self) -> List[Dict[str, Any]]:
        return [item for item in self.list_hardware() if is_out_of_stock(item.get("quantity"))]

    def reassign_category(self, item_ids: Iterable[str], new_category_id: Optional[str]) -> int:
        """
        Moves several items to another category in one transaction.

        One audit entry is written per item. Items already in the target
        category are left untouched.

        Returns:
            The number of items that changed.
        """
        item_ids = list(dict.fromkeys(item_ids))
        if not item_ids:
            return 0
        target_name = self.resolve_category_name(new_category_id)
        now = utc_now_iso()
        changed = 0
        with self.db.transaction():
            for item_id in item_ids:
                current = self._require(HARDWARE, item_id)
                if current.get("is_deleted"):
                    raise InputError(f"Cannot reassign deleted item '{item_id}'.")
                if current.get("category_id") == new_category_id:
                    continue
                updated = {**current, "category_id": new_category_id, "updated_at": now,
                           "updated_by": self.username or current.get("updated_by")}
                self.db.put_record(HARDWARE, updated)
                description = (f"Reassigned item: {self._display_name(HARDWARE, current)} "
                               f"to category {target_name}")
                self.db.insert_record(AUDIT_LOG, self._audit_entry(item_id, description, now))
                changed += 1
        logger.info(f"Reassigned {changed} of {len(item_ids)} items to category {new_category_id}.")
        return changed

    def search_hardware(self, text: Optional[str] = None, category_name: Optional[str] = None,
                        sort_by: Optional[str] = None, sort_order: str = "asc",
                        limit: Optional[int] = 20) -> List[Dict[str, Any]]:
        """
        Filters live items by a description substring and/or category name.

        Args:
            text: Case-insensitive substring of the description.
            category_name: Case-insensitive exact category name.
            sort_by: One of "description", "retail_price" or "quantity".
            sort_order: "asc" or "desc".
            limit: Maximum number of results, None for all.

        Raises:
            InputError: If the category does not exist or `sort_by` is invalid.
        """
        results = self.list_hardware()
        if category_name:
            wanted = category_name.strip().lower()
            matches = [c for c in self.list_categories() if (c.get("name") or "").lower() == wanted]
            if not matches:
                raise InputError(f"Category '{category_name}' not found.")
            category_ids = {c["id"] for c in matches}
            results = [item for item in results if item.get("category_id") in category_ids]
        if text:
            needle = text.lower()
            results = [item for item in results if needle in (item.get("description") or "").lower()]
        if sort_by:
            if sort_by not in HARDWARE_SORT_FIELDS:
                raise InputError(f"Cannot sort by '{sort_by}'. Valid fields: {HARDWARE_SORT_FIELDS}")
            if sort_by == "description":
                key = lambda item: (item.get("description") or "").lower()
            elif sort_by == "retail_price":
                key = lambda item: item.get("retail_price") or 0
            else:
                key = lambda item: parse_quantity_string(item.get("quantity"))
            results.sort(key=key, reverse=(sort_order == "desc"))
        if limit is not None:
            results = results[:limit]
        return results

    # --- Notes ---
    def add_note(self, title: str, body: str = "", note_id: Optional[str] = None) -> str:
        if not isinstance(title, str) or not title.strip():
            raise InputError("Note title cannot be empty.")
        return self._create(NOTES, {"id": note_id, "title": title.strip(), "body": body})

    def update_note(self, note_id: str, updates: Dict[str, Any]) -> Dict[str, Any]:
        return self._update(NOTES, note_id, updates)

    def delete_note(self, note_id: str) -> bool:
        return self._soft_delete(NOTES, note_id)

    def get_note(self, note_id: str) -> Optional[Dict[str, Any]]:
        return self.db.get_record(NOTES, note_id)

    def list_notes(self, include_deleted: bool = False) -> List[Dict[str, Any]]:
        return self.db.list_records(NOTES, include_deleted=include_deleted)

    # --- Audit Log ---
    def add_audit_log(self, item_id: str, change_description: str, username: Optional[str] = None) -> str:
        """Records a free-form action against an item, e.g. from the chat assistant."""
        if not item_id:
            raise InputError("Audit log entries need an item_id.")
        if not (change_description or "").strip():
            raise InputError("Audit log entries need a change description.")
        entry = self._audit_entry(item_id, change_description.strip(), utc_now_iso(), username=username)
        return self.db.insert_record(AUDIT_LOG, entry)

    def list_audit_log(self) -> List[Dict[str, Any]]:
        return self.db.list_records(AUDIT_LOG)

#
# End of Inventory_Library.py
#######################################################################################################################
