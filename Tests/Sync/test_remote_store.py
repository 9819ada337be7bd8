# test_remote_store.py
#
# Tests for the PostgREST remote store client and the in-memory stand-in.
# HTTP traffic is mocked at `Session.request`; no network access is needed.
#
# Imports
import json
from unittest.mock import MagicMock
#
# Third-Party Imports
import pytest
import requests
#
# Local Imports
from smart_stock.DB.Inventory_DB import AUDIT_LOG, HARDWARE, NOTES
from smart_stock.Sync.Change_Detector import detect_local_changes
from smart_stock.Sync.Push_Pipeline import push_changes
from smart_stock.Sync.Remote_Store import InMemoryRemoteStore, PostgrestRemoteStore, REMOTE_COLUMNS
from smart_stock.Sync.exceptions import (
    RemoteAuthenticationError,
    RemoteConnectionError,
    RemoteDuplicateError,
    RemoteRequestError,
    RemoteResponseError,
    SyncError,
)
from smart_stock.utils.time_utils import EPOCH_ISO
#
#######################################################################################################################
#
# Helpers:

BASE_URL = "https://example.supabase.co"


def create_mock_response(status_code=200, json_data=None, text_data=""):
    """Creates a mock requests.Response object."""
    mock_resp = MagicMock()
    mock_resp.status_code = status_code
    mock_resp.text = text_data
    mock_resp.reason = "Error" if status_code >= 400 else "OK"
    if json_data is None and status_code >= 400:
        mock_resp.json.side_effect = ValueError("No JSON object could be decoded")
    else:
        mock_resp.json.return_value = json_data
    if status_code >= 400:
        mock_resp.raise_for_status.side_effect = requests.exceptions.HTTPError(response=mock_resp)
    else:
        mock_resp.raise_for_status.return_value = None
    return mock_resp


@pytest.fixture
def store():
    return PostgrestRemoteStore(BASE_URL, api_key="anon-key", timeout=5, page_size=2)


@pytest.fixture
def mock_request(store, mocker):
    return mocker.patch.object(store.session, "request", return_value=create_mock_response(201))


#
# Tests:


class TestPostgrestRequests:
    def test_auth_headers_are_set_on_session(self, store):
        assert store.session.headers["apikey"] == "anon-key"
        assert store.session.headers["Authorization"] == "Bearer anon-key"

    def test_requires_base_url(self):
        with pytest.raises(ValueError):
            PostgrestRemoteStore("")

    def test_upsert_posts_with_merge_duplicates(self, store, mock_request):
        rows = [{"id": "h1", "description": "Hammer", "updated_at": "2025-01-01T10:00:00.000000Z"}]
        store.upsert(HARDWARE, rows)

        args, kwargs = mock_request.call_args
        assert args == ("POST", f"{BASE_URL}/rest/v1/hardware")
        assert kwargs["params"] == {"on_conflict": "id"}
        assert kwargs["headers"]["Prefer"] == "resolution=merge-duplicates,return=minimal"
        assert kwargs["timeout"] == 5
        assert json.loads(kwargs["data"]) == rows

    def test_insert_has_no_conflict_target(self, store, mock_request):
        store.insert(AUDIT_LOG, [{"id": "a1"}])
        _, kwargs = mock_request.call_args
        assert kwargs["params"] is None
        assert kwargs["headers"]["Prefer"] == "return=minimal"

    def test_empty_batches_send_nothing(self, store, mock_request):
        store.upsert(NOTES, [])
        store.insert(NOTES, [])
        mock_request.assert_not_called()

    def test_unknown_collection_is_rejected_locally(self, store, mock_request):
        with pytest.raises(RemoteRequestError):
            store.upsert("system_logs", [{"id": "x"}])
        mock_request.assert_not_called()

    def test_select_all_pages_until_short_page(self, store, mock_request):
        mock_request.side_effect = [
            create_mock_response(200, json_data=[{"id": "a"}, {"id": "b"}]),
            create_mock_response(200, json_data=[{"id": "c"}]),
        ]
        rows = store.select_all(NOTES)

        assert [r["id"] for r in rows] == ["a", "b", "c"]
        offsets = [c.kwargs["params"]["offset"] for c in mock_request.call_args_list]
        assert offsets == [0, 2]
        first_params = mock_request.call_args_list[0].kwargs["params"]
        assert first_params["order"] == "id.asc"
        assert first_params["limit"] == 2

    def test_select_all_rejects_non_list_body(self, store, mock_request):
        mock_request.return_value = create_mock_response(200, json_data={"message": "not rows"})
        with pytest.raises(RemoteResponseError):
            store.select_all(NOTES)

    def test_custom_schema_path(self, mocker):
        store = PostgrestRemoteStore(BASE_URL + "/", schema_path="")
        mock = mocker.patch.object(store.session, "request", return_value=create_mock_response(200, json_data=[]))
        store.select_all(HARDWARE)
        assert mock.call_args.args[1] == f"{BASE_URL}/hardware"


class TestPostgrestErrors:
    @pytest.mark.parametrize("status, body, expected", [
        (409, {"code": "23505", "message": "duplicate key"}, RemoteDuplicateError),
        (400, {"code": "23505", "message": "duplicate key"}, RemoteDuplicateError),
        (401, {"message": "JWT expired"}, RemoteAuthenticationError),
        (403, None, RemoteAuthenticationError),
        (400, {"code": "PGRST204", "message": "column missing"}, RemoteResponseError),
        (500, None, RemoteResponseError),
    ])
    def test_http_errors_are_mapped(self, store, mock_request, status, body, expected):
        mock_request.return_value = create_mock_response(status, json_data=body, text_data="server said no")
        with pytest.raises(expected) as exc_info:
            store.insert(AUDIT_LOG, [{"id": "a1"}])
        assert exc_info.value.status_code == status

    def test_duplicate_is_still_a_response_error(self):
        assert issubclass(RemoteDuplicateError, RemoteResponseError)

    @pytest.mark.parametrize("body", [
        {"code": "23503", "message": "insert or update violates foreign key constraint"},
        {"code": "23P01", "message": "conflicting key value violates exclusion constraint"},
        None,
    ])
    def test_conflict_without_unique_violation_is_not_a_duplicate(self, store, mock_request, body):
        mock_request.return_value = create_mock_response(409, json_data=body, text_data="conflict")
        with pytest.raises(RemoteResponseError) as exc_info:
            store.insert(AUDIT_LOG, [{"id": "a1"}])
        assert not isinstance(exc_info.value, RemoteDuplicateError)
        assert exc_info.value.status_code == 409

    def test_foreign_key_conflict_keeps_audit_entries_unsynced(self, service, store, mock_request):
        service.add_category("Tools")
        mock_request.return_value = create_mock_response(
            409, json_data={"code": "23503", "message": "violates foreign key constraint"})
        changes = detect_local_changes(service.db, EPOCH_ISO)
        changes.categories = []

        with pytest.raises(SyncError):
            push_changes(service.db, store, changes, audit_log_push_mode="insert")

        assert mock_request.call_count == 1
        assert len(service.db.get_unsynced_audit_logs()) == 1

    def test_error_message_uses_body_detail(self, store, mock_request):
        mock_request.return_value = create_mock_response(400, json_data={"message": "bad row", "code": "22P02"})
        with pytest.raises(RemoteResponseError, match="bad row"):
            store.upsert(HARDWARE, [{"id": "h1"}])

    @pytest.mark.parametrize("raised", [
        requests.exceptions.Timeout("read timed out"),
        requests.exceptions.ConnectionError("no route to host"),
    ])
    def test_network_errors_become_connection_errors(self, store, mock_request, raised):
        mock_request.side_effect = raised
        with pytest.raises(RemoteConnectionError):
            store.select_all(HARDWARE)


class TestInMemoryRemoteStore:
    def test_upsert_merges_by_id(self):
        store = InMemoryRemoteStore()
        store.upsert(NOTES, [{"id": "n1", "title": "a", "body": "keep"}])
        store.upsert(NOTES, [{"id": "n1", "title": "b"}])
        assert store.get(NOTES, "n1") == {"id": "n1", "title": "b", "body": "keep"}

    def test_insert_rejects_the_whole_batch_on_duplicate(self):
        store = InMemoryRemoteStore()
        store.insert(AUDIT_LOG, [{"id": "a1"}])
        with pytest.raises(RemoteDuplicateError):
            store.insert(AUDIT_LOG, [{"id": "a2"}, {"id": "a1"}])
        assert store.get(AUDIT_LOG, "a2") is None

    def test_fail_on_recovers_after_n_calls(self):
        store = InMemoryRemoteStore()
        store.fail_on("select_all", NOTES, times=2)
        for _ in range(2):
            with pytest.raises(RemoteConnectionError):
                store.select_all(NOTES)
        assert store.select_all(NOTES) == []

    def test_returned_rows_are_copies(self):
        store = InMemoryRemoteStore()
        store.seed(NOTES, [{"id": "n1", "title": "a"}])
        store.select_all(NOTES)[0]["title"] = "changed"
        assert store.get(NOTES, "n1")["title"] == "a"
        assert store.calls == [("select_all", NOTES, 1)]

    def test_remote_columns_exclude_local_flag(self):
        assert "is_synced" not in REMOTE_COLUMNS[AUDIT_LOG]
        assert "is_deleted" in REMOTE_COLUMNS[HARDWARE]

#
# End of test_remote_store.py
#######################################################################################################################
