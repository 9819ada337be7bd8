# smart_stock/Sync/exceptions.py
#
#
#######################################################################################################################
#
# Functions:
from typing import Any, Optional


class RemoteStoreError(Exception):
    """Base exception for remote store errors."""
    pass

class RemoteConnectionError(RemoteStoreError):
    """Raised for network, connection or timeout issues."""
    pass

class RemoteRequestError(RemoteStoreError):
    """Raised for errors in constructing the request (e.g., unknown collection, unserialisable rows)."""
    pass

class RemoteResponseError(RemoteStoreError):
    """Raised for non-2xx responses or issues parsing the response."""
    def __init__(self, status_code: Optional[int], message: str, response_data: Any = None):
        super().__init__(f"Remote Error {status_code}: {message}")
        self.status_code = status_code
        self.response_data = response_data or {}

class RemoteAuthenticationError(RemoteResponseError):
    """Raised when the remote rejects the API key (401/403)."""
    pass

class RemoteDuplicateError(RemoteResponseError):
    """Raised when an insert is rejected because a row with the same primary key exists."""
    pass


class SyncError(Exception):
    """
    Raised by the sync engine when a stage fails.

    Attributes:
        stage: "push", "pull" or "cursor".
        collection: The collection being processed when the failure happened, if any.
    """
    def __init__(self, message: str, stage: str, collection: Optional[str] = None):
        super().__init__(message)
        self.stage = stage
        self.collection = collection

    def __str__(self):
        base = super().__str__()
        where = f"{self.stage}/{self.collection}" if self.collection else self.stage
        return f"[{where}] {base}"

class SyncInProgressError(SyncError):
    """Raised when a sync is requested with `raise_if_busy=True` while another one is running."""
    def __init__(self, message: str = "A sync is already in progress."):
        super().__init__(message, stage="guard")

#
# End of smart_stock/Sync/exceptions.py
########################################################################################################################
