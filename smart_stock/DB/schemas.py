# schemas.py
# Description: Pydantic models for inventory records as they cross the remote/local boundary.
#
# Imports
from typing import Optional, Dict, Any, Literal, Type
#
# 3rd-party imports
from pydantic import BaseModel, ConfigDict, Field, field_validator
#
# Local Imports
from smart_stock.utils.time_utils import normalize_timestamp
#
#######################################################################################################################
#
# Functions:

LogLevel = Literal["INFO", "WARNING", "ERROR"]


class _SyncedRecord(BaseModel):
    # Remote rows may carry server-side columns we don't store; they are dropped on dump.
    model_config = ConfigDict(extra="ignore", str_strip_whitespace=False)

    id: str = Field(..., min_length=1)

    @field_validator("updated_at", "created_at", mode="before", check_fields=False)
    @classmethod
    def _normalize_timestamps(cls, v):
        if v is None:
            return v
        # Raises ValueError for anything unparsable; pydantic turns it into a ValidationError.
        return normalize_timestamp(v)


class Category(_SyncedRecord):
    name: str
    color: Optional[str] = None
    is_deleted: bool = False
    updated_at: str


class HardwareItem(_SyncedRecord):
    description: Optional[str] = None
    category_id: Optional[str] = None
    quantity: Optional[str] = None
    wholesale_price: Optional[float] = None
    retail_price: Optional[float] = None
    wholesale_price_unit: Optional[str] = None
    retail_price_unit: Optional[str] = None
    is_deleted: bool = False
    updated_by: Optional[str] = None
    location: Optional[str] = None
    updated_at: str

    @field_validator("quantity", mode="before")
    @classmethod
    def _quantity_as_text(cls, v):
        # Quantity is free text; some remotes hand back a bare number.
        if v is None or isinstance(v, str):
            return v
        return str(v)


class Note(_SyncedRecord):
    title: Optional[str] = None
    body: Optional[str] = None
    is_deleted: bool = False
    created_at: Optional[str] = None
    updated_at: str


class AuditLogEntry(_SyncedRecord):
    item_id: str
    username: Optional[str] = None
    change_description: str
    created_at: str
    is_synced: int = Field(0, ge=0, le=1)


class SystemLogEntry(BaseModel):
    id: str
    timestamp: str
    log_level: LogLevel
    error_message: str
    context: Optional[Dict[str, Any]] = None
    full_error_details: Optional[str] = None
    phone_info: Optional[str] = None
    last_synced_at: Optional[str] = None


RECORD_MODELS: Dict[str, Type[_SyncedRecord]] = {
    "categories": Category,
    "hardware": HardwareItem,
    "notes": Note,
    "audit_log": AuditLogEntry,
}


def validate_remote_record(collection: str, row: Dict[str, Any]) -> Dict[str, Any]:
    """
    Validates a row fetched from the remote store and returns it as a plain dict.

    Raises:
        KeyError: If the collection has no model.
        pydantic.ValidationError: If the row is malformed.
    """
    model = RECORD_MODELS[collection]
    return model.model_validate(row).model_dump()

#
# End of schemas.py
#######################################################################################################################
