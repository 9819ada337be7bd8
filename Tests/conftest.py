# Tests/conftest.py
# Shared fixtures for the smart_stock test suite.
import time
import uuid

import pytest

from smart_stock.DB.Inventory_DB import InventoryDB
from smart_stock.Inventory.Inventory_Library import InventoryService
from smart_stock.Sync.Remote_Store import InMemoryRemoteStore
from smart_stock.Sync.Sync_Client import InventorySyncEngine
from smart_stock.Sync.Sync_State import MemoryCursorStore


@pytest.fixture
def client_id():
    return f"test_client_{uuid.uuid4().hex[:8]}"


@pytest.fixture
def db_path(tmp_path):
    return tmp_path / "test_inventory.db"


@pytest.fixture
def db_instance(db_path, client_id):
    """File-backed DB; safe to share across threads."""
    db = InventoryDB(db_path, client_id)
    yield db
    db.close_connection()


@pytest.fixture
def mem_db_instance(client_id):
    """In-memory DB. Each thread sees its own copy, so keep it single-threaded."""
    db = InventoryDB(":memory:", client_id)
    yield db
    db.close_connection()


@pytest.fixture
def service(db_instance):
    return InventoryService(db_instance, username="tester")


@pytest.fixture
def remote():
    return InMemoryRemoteStore()


@pytest.fixture
def cursor_store():
    return MemoryCursorStore()


@pytest.fixture
def engine(db_instance, remote, cursor_store, client_id):
    return InventorySyncEngine(db_instance, remote, cursor_store, client_id=client_id)


@pytest.fixture
def tick():
    """Waits long enough for the clock to move past the last stamped mutation."""
    def _tick():
        time.sleep(0.005)
    return _tick
