"""
Unit tests for csos/backend.py and csos/utils/auth.py
"""

import pytest
import requests
from starlette.requests import Request

from csos.backend import BackendClient, get_backend
from csos.utils.auth import get_bearer_token, get_user_roles, has_role, require_auth, require_role
from csos.utils.error_handling import AuthenticationError, AuthorizationError, BackendError

from conftest import FakeBackend


class _Response:
    def __init__(self, status_code=200, payload=None, text=""):
        self.status_code = status_code
        self._payload = payload
        self.text = text

    def json(self):
        if self._payload is None:
            raise ValueError("no json")
        return self._payload


class _Session:
    def __init__(self, *responses, error=None):
        self.responses = list(responses)
        self.error = error
        self.calls = []

    def request(self, method, url, **kwargs):
        self.calls.append((method, url, kwargs))
        if self.error:
            raise self.error
        return self.responses.pop(0)

    def get(self, url, **kwargs):
        return self.request("GET", url, **kwargs)


def _request(headers):
    scope = {
        "type": "http",
        "method": "GET",
        "path": "/",
        "headers": [(k.lower().encode(), v.encode()) for k, v in headers.items()],
    }
    return Request(scope)


class TestBackendClient:

    def test_select_builds_postgrest_query(self):
        session = _Session(_Response(200, [{"role": "admin"}]))
        client = BackendClient("https://backend.example/", "svc", session=session)

        rows = client.select("user_role", {"user_id": "U1", "active": True}, columns="role",
                             order="assigned_at.desc", limit=5)

        assert rows == [{"role": "admin"}]
        method, url, kwargs = session.calls[0]
        assert (method, url) == ("GET", "https://backend.example/rest/v1/user_role")
        assert kwargs["params"] == {
            "select": "role",
            "user_id": "eq.U1",
            "active": "eq.true",
            "order": "assigned_at.desc",
            "limit": "5",
        }
        assert kwargs["headers"]["Authorization"] == "Bearer svc"

    def test_insert_returns_stored_row(self):
        session = _Session(_Response(201, [{"id": 7, "role": "ticketing"}]))
        client = BackendClient("https://backend.example", "svc", session=session)

        row = client.insert("user_role", {"role": "ticketing"})

        assert row == {"id": 7, "role": "ticketing"}
        assert session.calls[0][2]["headers"]["Prefer"] == "return=representation"

    def test_error_status_raises(self):
        session = _Session(_Response(409, {"message": "duplicate key value"}))
        client = BackendClient("https://backend.example", "svc", session=session)

        with pytest.raises(BackendError, match="duplicate key") as excinfo:
            client.insert("user_role", {"role": "admin"})
        assert excinfo.value.status_code == 409

    def test_network_error_raises(self):
        client = BackendClient("https://backend.example", "svc",
                               session=_Session(error=requests.Timeout("timed out")))
        with pytest.raises(BackendError, match="timed out"):
            client.select("proposal")

    def test_delete_requires_filters(self):
        client = BackendClient("https://backend.example", "svc", session=_Session())
        with pytest.raises(BackendError):
            client.delete("user_role", {})

    def test_get_user(self):
        session = _Session(_Response(200, {"id": "U1", "email": "a@example.edu"}))
        client = BackendClient("https://backend.example", "svc", anon_key="anon", session=session)

        assert client.get_user("jwt")["id"] == "U1"
        method, url, kwargs = session.calls[0]
        assert url == "https://backend.example/auth/v1/user"
        assert kwargs["headers"] == {"apikey": "anon", "Authorization": "Bearer jwt"}

    def test_get_user_invalid_token(self):
        session = _Session(_Response(401, {"message": "invalid JWT"}))
        client = BackendClient("https://backend.example", "svc", session=session)
        assert client.get_user("bad") is None

    def test_for_user_uses_caller_token(self):
        client = BackendClient("https://backend.example", "svc", anon_key="anon", session=_Session())
        user_client = client.for_user("jwt")

        assert user_client.api_key == "anon"
        assert user_client._headers()["Authorization"] == "Bearer jwt"


class TestAuthGate:

    @pytest.fixture
    def backend(self):
        return FakeBackend(
            tokens={"t-1": "U1"},
            tables={"user_role": [{"user_id": "U1", "role": "ticketing"}]},
        )

    def test_bearer_token_parsing(self):
        assert get_bearer_token(_request({"Authorization": "Bearer abc"})) == "abc"
        assert get_bearer_token(_request({"Authorization": "Basic abc"})) is None
        assert get_bearer_token(_request({})) is None

    def test_require_auth(self, backend):
        auth = require_auth(_request({"Authorization": "Bearer t-1"}), backend)
        assert auth.user_id == "U1"

    def test_missing_header(self, backend):
        with pytest.raises(AuthenticationError, match="Missing authorization header"):
            require_auth(_request({}), backend)

    def test_unknown_token(self, backend):
        with pytest.raises(AuthenticationError, match="Invalid or expired"):
            require_auth(_request({"Authorization": "Bearer nope"}), backend)

    def test_role_helpers(self, backend):
        assert get_user_roles(backend, "U1") == ["ticketing"]
        assert has_role(backend, "U1", "ticketing")
        assert require_role(backend, "U1", ["admin", "ticketing"]) == ["ticketing"]

    def test_require_role_denied(self, backend):
        with pytest.raises(AuthorizationError, match="Required roles: admin, executive"):
            require_role(backend, "U1", ["admin", "executive"])

    def test_role_lookup_failure_means_no_roles(self, backend):
        backend.fail_tables.add("user_role")
        assert get_user_roles(backend, "U1") == []
        with pytest.raises(AuthorizationError):
            require_role(backend, "U1", ["ticketing"])


class TestBackendDependency:

    def test_client_shared_across_calls(self, clean_settings):
        clean_settings.setenv("CSOS_BACKEND_URL", "https://backend.example")
        clean_settings.setenv("CSOS_SERVICE_ROLE_KEY", "svc")

        first = get_backend()

        assert get_backend() is first
        assert first.session is get_backend().session
        assert first.for_user("jwt").session is first.session

    def test_close_releases_session(self):
        closed = []

        class _ClosingSession(_Session):
            def close(self):
                closed.append(True)

        BackendClient("https://backend.example", "svc", session=_ClosingSession()).close()
        assert closed == [True]

    def test_none_filter_is_null(self):
        session = _Session(_Response(200, []))
        client = BackendClient("https://backend.example", "svc", session=session)

        client.select("task_work_item", {"assigned_role": "ticketing", "assigned_user_id": None})

        params = session.calls[0][2]["params"]
        assert params["assigned_user_id"] == "is.null"
        assert params["assigned_role"] == "eq.ticketing"
