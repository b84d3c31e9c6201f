"""
Tests for APILoader's mapping of HTTP outcomes onto engine errors.
"""

import json
from unittest.mock import MagicMock, patch

import pytest
import requests

from migration_engine.errors import ConflictError, TransientInfraError, ValidationError
from migration_engine.loaders.api_loader import APILoader


def response(status_code, body=None):
    mock = MagicMock()
    mock.status_code = status_code
    mock.text = json.dumps(body) if body is not None else ""
    if body is None:
        mock.json.side_effect = ValueError("no body")
    else:
        mock.json.return_value = body
    return mock


@pytest.fixture
def loader():
    return APILoader(
        "https://target.example.com/rest/v1/",
        api_key="secret",
        rate_limit=0,
        endpoints={"hc_staff": "/staff"},
    )


class TestSession:
    def test_bearer_header(self, loader):
        assert loader._session.headers["Authorization"] == "Bearer secret"

    def test_custom_header(self):
        loader = APILoader("https://x", api_key="k", auth_type="header", auth_header="apikey", rate_limit=0)
        assert loader._session.headers["apikey"] == "k"

    def test_list_tables_from_endpoints(self, loader):
        assert loader.list_tables() == ["hc_staff"]


class TestErrorMapping:
    @pytest.mark.parametrize("status", [429, 500, 503])
    def test_transient_statuses(self, loader, status):
        with patch.object(loader._session, "request", return_value=response(status)):
            with pytest.raises(TransientInfraError) as exc_info:
                loader.upsert_row("hc_staff", "k1", {"first_name": "Ada"})
        assert exc_info.value.details["status_code"] == status

    def test_connection_error(self, loader):
        with patch.object(loader._session, "request", side_effect=requests.exceptions.ConnectionError("refused")):
            with pytest.raises(TransientInfraError):
                loader.read_table("hc_staff")

    def test_timeout(self, loader):
        with patch.object(loader._session, "request", side_effect=requests.exceptions.Timeout("slow")):
            with pytest.raises(TransientInfraError):
                loader.read_table("hc_staff")

    def test_conflict_carries_existing_key(self, loader):
        with patch.object(loader._session, "request", return_value=response(409, {"row_key": "k1"})):
            with pytest.raises(ConflictError) as exc_info:
                loader.upsert_row("hc_staff", "k2", {"email": "ada@example.com"})
        assert exc_info.value.existing_key == "k1"
        assert exc_info.value.table == "hc_staff"

    def test_conflict_without_body(self, loader):
        with patch.object(loader._session, "request", return_value=response(409)):
            with pytest.raises(ConflictError) as exc_info:
                loader.upsert_row("hc_staff", "k2", {})
        assert exc_info.value.existing_key is None

    def test_rejection_is_permanent(self, loader):
        with patch.object(loader._session, "request", return_value=response(422, {"message": "bad"})):
            with pytest.raises(ValidationError):
                loader.upsert_row("hc_staff", "k1", {"first_name": ""})


class TestOperations:
    def test_upsert_created(self, loader):
        with patch.object(loader._session, "request", return_value=response(201, [{}])) as request:
            assert loader.upsert_row("hc_staff", "k1", {"first_name": "Ada"}) is True

        method, url = request.call_args.args
        assert method == "POST"
        assert url == "https://target.example.com/rest/v1/staff"
        assert request.call_args.kwargs["json"] == {"first_name": "Ada", "row_key": "k1"}

    def test_upsert_replaced(self, loader):
        with patch.object(loader._session, "request", return_value=response(200, [{}])):
            assert loader.upsert_row("hc_staff", "k1", {"first_name": "Ada"}) is False

    def test_read_table_keys_rows(self, loader):
        body = [
            {"row_key": "k1", "first_name": "Ada"},
            {"first_name": "No key"},
            {"row_key": 7, "first_name": "Grace"},
        ]
        with patch.object(loader._session, "request", return_value=response(200, body)):
            rows = loader.read_table("hc_staff")
        assert rows == {"k1": {"first_name": "Ada"}, "7": {"first_name": "Grace"}}

    def test_unmapped_table_uses_table_path(self, loader):
        with patch.object(loader._session, "request", return_value=response(200, [])) as request:
            loader.read_table("hc_facility")
        assert request.call_args.args[1] == "https://target.example.com/rest/v1/hc_facility"

    def test_delete_row(self, loader):
        with patch.object(loader._session, "request", return_value=response(200, [{"row_key": "k1"}])) as request:
            assert loader.delete_row("hc_staff", "k1") is True
        assert request.call_args.kwargs["params"] == {"row_key": "eq.k1"}

    def test_replace_table(self, loader):
        with patch.object(loader._session, "request", return_value=response(201, [])) as request:
            loader.replace_table("hc_staff", {"k1": {"first_name": "Ada"}})

        delete_call, insert_call = request.call_args_list
        assert delete_call.args[0] == "DELETE"
        assert insert_call.kwargs["json"] == [{"first_name": "Ada", "row_key": "k1"}]
