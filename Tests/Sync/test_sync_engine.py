# test_sync_engine.py
#
#
# Imports
import threading
#
# Third-Party Imports
import pytest
#
# Local Imports
from smart_stock.DB.Inventory_DB import (
    InventoryDB, InventoryDBError, AUDIT_LOG, CATEGORIES, HARDWARE, NOTES,
)
from smart_stock.Inventory.Inventory_Library import InventoryService
from smart_stock.Metrics.sync_metrics import SyncMetrics
from smart_stock.Sync.Remote_Store import InMemoryRemoteStore
from smart_stock.Sync.Sync_Client import InventorySyncEngine, SyncState
from smart_stock.Sync.Sync_State import MemoryCursorStore
from smart_stock.Sync.exceptions import SyncError, SyncInProgressError
from smart_stock.utils.time_utils import EPOCH_ISO
#
#######################################################################################################################
#
# Helpers:

PREVIOUS_CURSOR = "2025-01-01T09:00:00.000000Z"


class BlockingRemoteStore(InMemoryRemoteStore):
    """Holds the first pull open until the test releases it."""

    def __init__(self):
        super().__init__()
        self.entered = threading.Event()
        self.release = threading.Event()

    def select_all(self, collection):
        if collection == CATEGORIES and not self.entered.is_set():
            self.entered.set()
            self.release.wait(timeout=10)
        return super().select_all(collection)


class FailingCursorStore(MemoryCursorStore):
    def set_cursor(self, value):
        raise OSError("disk full")


def _messages(db, level=None):
    return [entry["error_message"] for entry in db.list_system_logs(limit=None, log_level=level)]


#
# Tests:


class TestSuccessfulCycle:
    def test_push_then_pull_then_advance(self, engine, service, remote, cursor_store):
        cat_id = service.add_category("Tools")
        item_id = service.add_hardware({"description": "Hammer", "category_id": cat_id, "quantity": "5"})

        report = engine.run_sync()

        assert report is not None
        assert remote.get(CATEGORIES, cat_id)["name"] == "Tools"
        assert remote.get(HARDWARE, item_id)["quantity"] == "5"
        assert len(remote.rows(AUDIT_LOG)) == 2
        assert service.db.get_unsynced_audit_logs() == []
        assert report.pushed.total == 4
        assert report.pulled.pulled == 4
        assert report.previous_cursor == EPOCH_ISO
        assert cursor_store.get_cursor() == report.new_cursor
        assert report.new_cursor > EPOCH_ISO

    def test_ops_run_in_stage_order(self, engine, service, remote):
        service.add_category("Tools")
        engine.run_sync()
        ops = [op for op, _, _ in remote.calls]
        assert ops == ["upsert", "upsert", "select_all", "select_all", "select_all", "select_all"]

    def test_states(self, engine):
        engine.run_sync()
        assert engine.state_history == [SyncState.PUSHING, SyncState.PULLING, SyncState.IDLE]
        assert engine.state is SyncState.IDLE
        assert engine.is_running is False

    def test_system_logs_on_start_and_success(self, engine, service, db_instance, client_id):
        service.add_note("Restock", "Order nails")
        report = engine.run_sync()

        logs = db_instance.list_system_logs(limit=None)
        assert [log["error_message"] for log in logs] == [
            "Sync completed. Pushed 2 change(s), pulled 2 record(s).",
            "Sync started.",
        ]
        assert all(log["log_level"] == "INFO" for log in logs)
        assert all(log["phone_info"] == client_id for log in logs)
        assert logs[0]["last_synced_at"] == report.new_cursor
        assert logs[0]["context"]["pushed"][NOTES] == 1

    def test_second_cycle_pushes_nothing_new(self, engine, service, remote):
        service.add_hardware({"description": "Hammer"})
        engine.run_sync()
        report = engine.run_sync()
        assert report.pushed.total == 0
        assert len(remote.rows(HARDWARE)) == 1
        assert len(remote.rows(AUDIT_LOG)) == 1

    def test_system_log_failure_does_not_fail_the_cycle(self, engine, db_instance, mocker):
        mocker.patch.object(db_instance, "add_system_log", side_effect=InventoryDBError("log table locked"))
        assert engine.run_sync() is not None


class TestFailedCycle:
    def test_hardware_push_failure_after_categories(self, engine, service, remote, cursor_store, db_instance):
        cursor_store.set_cursor(EPOCH_ISO)
        for name in ("Tools", "Paint", "Garden"):
            service.add_category(name)
        service.add_hardware({"description": "Hammer"})
        remote.fail_on("upsert", HARDWARE)

        with pytest.raises(SyncError) as exc_info:
            engine.run_sync()

        assert exc_info.value.stage == "push"
        assert exc_info.value.collection == HARDWARE
        assert len(remote.rows(CATEGORIES)) == 3
        assert remote.rows(HARDWARE) == []
        assert cursor_store.get_cursor() == EPOCH_ISO
        errors = db_instance.list_system_logs(limit=None, log_level="ERROR")
        assert len(errors) == 1
        assert "hardware" in errors[0]["error_message"]
        assert errors[0]["context"]["stage"] == "push"
        assert "RemoteConnectionError" in errors[0]["context"]["cause"]
        assert "Traceback" in errors[0]["full_error_details"]
        # Push failure skips the pull.
        assert not any(op == "select_all" for op, _, _ in remote.calls)
        assert engine.state_history == [SyncState.PUSHING, SyncState.FAILED, SyncState.IDLE]
        assert engine.last_error is exc_info.value

    def test_pull_failure_leaves_cursor_unchanged(self, db_instance, remote, client_id, service):
        cursor_store = MemoryCursorStore(PREVIOUS_CURSOR)
        engine = InventorySyncEngine(db_instance, remote, cursor_store, client_id=client_id)
        service.add_hardware({"description": "Hammer"})
        remote.seed(NOTES, [{"id": "n_remote", "title": "From elsewhere", "updated_at": PREVIOUS_CURSOR}])
        remote.fail_on("select_all", AUDIT_LOG)

        with pytest.raises(SyncError, match="pull"):
            engine.run_sync()

        assert cursor_store.get_cursor() == PREVIOUS_CURSOR
        assert db_instance.get_record(NOTES, "n_remote") is None
        assert len(remote.rows(HARDWARE)) == 1

    def test_failed_cycle_is_retried_on_next_run(self, engine, service, remote):
        item_id = service.add_hardware({"description": "Hammer"})
        remote.fail_on("upsert", HARDWARE, times=1)
        with pytest.raises(SyncError):
            engine.run_sync()
        engine.run_sync()
        assert remote.get(HARDWARE, item_id) is not None

    def test_cursor_write_failure(self, db_instance, remote, client_id):
        engine = InventorySyncEngine(db_instance, remote, FailingCursorStore(), client_id=client_id)
        with pytest.raises(SyncError) as exc_info:
            engine.run_sync()
        assert exc_info.value.stage == "cursor"
        assert "disk full" in str(exc_info.value)
        assert len(db_instance.list_system_logs(log_level="ERROR")) == 1

    def test_unexpected_error_is_wrapped_and_logged(self, engine, remote, db_instance):
        remote.fail_on("select_all", CATEGORIES, RuntimeError("boom"))
        with pytest.raises(SyncError) as exc_info:
            engine.run_sync()
        assert exc_info.value.stage == "pull"
        assert isinstance(exc_info.value.__cause__, RuntimeError)
        error = db_instance.list_system_logs(log_level="ERROR")[0]
        assert error["context"]["cause"] == "RuntimeError: boom"


class TestConvergence:
    def test_tombstone_reaches_remote_and_other_device(self, engine, service, remote, tmp_path, tick):
        other_db = InventoryDB(tmp_path / "other_phone.db", "other-phone")
        other_engine = InventorySyncEngine(other_db, remote, MemoryCursorStore(), client_id="other-phone")
        try:
            item_id = service.add_hardware({"description": "Hammer"})
            engine.run_sync()
            other_engine.run_sync()
            assert other_db.get_record(HARDWARE, item_id)["is_deleted"] is False

            tick()
            service.delete_hardware(item_id)
            engine.run_sync()
            assert remote.get(HARDWARE, item_id)["is_deleted"] is True
            assert len(remote.rows(HARDWARE)) == 1

            other_engine.run_sync()
            assert other_db.get_record(HARDWARE, item_id)["is_deleted"] is True
            assert other_db.count_records(HARDWARE) == 1
            assert InventoryService(other_db).list_hardware() == []
        finally:
            other_db.close_connection()

    def test_later_remote_edit_wins_on_next_pull(self, db_instance, remote, client_id, mocker):
        cursor_store = MemoryCursorStore()
        engine = InventorySyncEngine(db_instance, remote, cursor_store, client_id=client_id)
        db_instance.put_record(HARDWARE, {"id": "h1", "description": "Hammer", "quantity": "5",
                                          "updated_at": "2025-01-01T10:00:00.000000Z"})
        mocker.patch("smart_stock.Sync.Sync_Client.utc_now_iso", return_value="2025-01-01T10:01:00.000000Z")

        engine.run_sync()
        assert cursor_store.get_cursor() == "2025-01-01T10:01:00.000000Z"
        assert remote.get(HARDWARE, "h1")["quantity"] == "5"

        remote.seed(HARDWARE, [{"id": "h1", "description": "Hammer", "quantity": "3", "is_deleted": False,
                                "updated_at": "2025-01-01T10:01:30.000000Z"}])
        report = engine.run_sync()

        assert report.pushed.total == 0
        local = db_instance.get_record(HARDWARE, "h1")
        assert local["quantity"] == "3"
        assert local["updated_at"] == "2025-01-01T10:01:30.000000Z"


class TestCycleMetrics:
    def test_cycle_and_stages_are_recorded(self, db_instance, remote, cursor_store, client_id, mocker):
        metrics = mocker.MagicMock(spec=SyncMetrics)
        engine = InventorySyncEngine(db_instance, remote, cursor_store, client_id=client_id, metrics=metrics)

        report = engine.run_sync()

        assert [c.args[:2] for c in metrics.record_stage.call_args_list] == [("push", "success"), ("pull", "success")]
        metrics.record_cycle.assert_called_once()
        assert metrics.record_cycle.call_args.kwargs == {"report": report}

    def test_failed_cycle_records_the_error(self, db_instance, remote, cursor_store, client_id, mocker):
        metrics = mocker.MagicMock(spec=SyncMetrics)
        engine = InventorySyncEngine(db_instance, remote, cursor_store, client_id=client_id, metrics=metrics)
        remote.fail_on("select_all", CATEGORIES)

        with pytest.raises(SyncError):
            engine.run_sync()

        assert metrics.record_stage.call_args_list[-1].args[:2] == ("pull", "failure")
        assert metrics.record_cycle.call_args.kwargs["error"].stage == "pull"


class TestReentrancy:
    def test_overlapping_run_is_skipped(self, db_instance, client_id):
        remote = BlockingRemoteStore()
        engine = InventorySyncEngine(db_instance, remote, MemoryCursorStore(), client_id=client_id)
        results = []
        worker = threading.Thread(target=lambda: results.append(engine.run_sync()))
        worker.start()
        try:
            assert remote.entered.wait(timeout=10)
            assert engine.is_running is True
            assert engine.run_sync() is None
            with pytest.raises(SyncInProgressError):
                engine.run_sync(raise_if_busy=True)
        finally:
            remote.release.set()
            worker.join(timeout=10)

        assert results and results[0] is not None
        skipped = [m for m in _messages(db_instance, "INFO") if m.startswith("Sync skipped")]
        assert len(skipped) == 2
        assert _messages(db_instance, "ERROR") == []

    def test_engine_rejects_bad_arguments(self, db_instance, remote, cursor_store):
        with pytest.raises(ValueError):
            InventorySyncEngine(db_instance, remote, cursor_store, client_id="")
        with pytest.raises(ValueError):
            InventorySyncEngine(db_instance, remote, cursor_store, client_id="c", audit_log_push_mode="append")

#
# End of test_sync_engine.py
#######################################################################################################################
