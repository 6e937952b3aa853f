import json
import logging
import threading
from urllib.parse import urlparse

import pytest
import requests
from requests.adapters import BaseAdapter

from blogify.client import ApiError, BlogifyClient

BASE_URL = "http://api.test/api"


class FakeApi(BaseAdapter):
    """Transport adapter answering like a tiny slice of the API."""

    def __init__(self, refresh_ok=True, accept_refreshed=True, barrier=None):
        super().__init__()
        self.refresh_ok = refresh_ok
        self.accept_refreshed = accept_refreshed
        self.barrier = barrier
        self.valid_token = "access-0"
        self.refresh_calls = 0
        self.lock = threading.Lock()
        self.seen = []

    def _respond(self, request, status, payload):
        response = requests.Response()
        response.status_code = status
        response._content = json.dumps(payload).encode()
        response.headers["Content-Type"] = "application/json"
        response.request = request
        response.url = request.url
        return response

    def send(self, request, **kwargs):
        path = urlparse(request.url).path
        auth = request.headers.get("Authorization")
        self.seen.append((request.method, path, auth))

        if path == "/api/auth/login":
            return self._respond(request, 200, {"success": True, "data": {
                "user": {"id": 1, "name": "Alice"},
                "accessToken": "stale-token",
                "refreshToken": "refresh-0",
                "expiresIn": "15m",
            }})

        if path == "/api/auth/refresh-token":
            with self.lock:
                self.refresh_calls += 1
                if not self.refresh_ok:
                    return self._respond(request, 401, {"success": False, "message": "Invalid refresh token"})
                self.valid_token = f"access-{self.refresh_calls}"
            if not self.accept_refreshed:
                self.valid_token = "never-valid"
            return self._respond(request, 200, {"success": True, "data": {
                "accessToken": f"access-{self.refresh_calls}",
                "refreshToken": f"refresh-{self.refresh_calls}",
                "expiresIn": "15m",
            }})

        if path == "/api/boom":
            return self._respond(request, 500, {"success": False, "message": "Internal Server Error"})

        if path == "/api/secret":
            if auth != f"Bearer {self.valid_token}":
                if self.barrier is not None and auth == "Bearer stale-token":
                    self.barrier.wait(timeout=5)
                return self._respond(request, 401, {"success": False, "message": "Access token expired"})
            return self._respond(request, 200, {"success": True, "data": {"secret": 42}})

        return self._respond(request, 404, {"success": False, "message": "API endpoint not found"})

    def close(self):
        pass


def make_client(adapter):
    session = requests.Session()
    session.mount("http://api.test", adapter)
    client = BlogifyClient(BASE_URL, session=session)
    client.login("alice@example.com", "Secret123")
    return client


def test_login_stores_tokens():
    client = make_client(FakeApi())

    assert client.access_token == "stale-token"
    assert client.refresh_token == "refresh-0"


def test_expired_token_is_refreshed_and_request_retried():
    adapter = FakeApi()
    client = make_client(adapter)

    assert client.get("/secret") == {"secret": 42}
    assert adapter.refresh_calls == 1
    assert client.access_token == "access-1"
    secret_calls = [auth for method, path, auth in adapter.seen if path == "/api/secret"]
    assert secret_calls == ["Bearer stale-token", "Bearer access-1"]


def test_failed_refresh_clears_credentials_and_raises_original_error():
    adapter = FakeApi(refresh_ok=False)
    client = make_client(adapter)

    with pytest.raises(ApiError) as excinfo:
        client.get("/secret")

    assert excinfo.value.status == 401
    assert excinfo.value.message == "Access token expired"
    assert client.access_token is None
    assert client.refresh_token is None


def test_request_is_retried_at_most_once():
    adapter = FakeApi(accept_refreshed=False)
    client = make_client(adapter)

    with pytest.raises(ApiError) as excinfo:
        client.get("/secret")

    assert excinfo.value.status == 401
    assert adapter.refresh_calls == 1
    assert len([path for _, path, _ in adapter.seen if path == "/api/secret"]) == 2


def test_anonymous_401_does_not_trigger_refresh():
    adapter = FakeApi()
    session = requests.Session()
    session.mount("http://api.test", adapter)
    client = BlogifyClient(BASE_URL, session=session)

    with pytest.raises(ApiError):
        client.get("/secret")

    assert adapter.refresh_calls == 0


def test_restored_refresh_token_recovers_without_access_token():
    adapter = FakeApi()
    session = requests.Session()
    session.mount("http://api.test", adapter)
    client = BlogifyClient(BASE_URL, session=session)
    client.refresh_token = "refresh-0"

    assert client.get("/secret") == {"secret": 42}
    assert adapter.refresh_calls == 1
    assert client.access_token == "access-1"


def test_refresh_cookie_alone_is_enough_to_recover():
    adapter = FakeApi()
    session = requests.Session()
    session.mount("http://api.test", adapter)
    session.cookies.set("refreshToken", "refresh-0", domain="api.test", path="/api/auth")
    client = BlogifyClient(BASE_URL, session=session)

    assert client.can_refresh
    assert client.get("/secret") == {"secret": 42}
    assert adapter.refresh_calls == 1


def test_already_replaced_token_is_reused():
    adapter = FakeApi()
    client = make_client(adapter)
    client.access_token = "access-0"

    assert client._refresh_after("stale-token") == "access-0"
    assert adapter.refresh_calls == 0


def test_concurrent_401s_share_one_refresh():
    adapter = FakeApi(barrier=threading.Barrier(2))
    client = make_client(adapter)
    results, errors = [], []

    def worker():
        try:
            results.append(client.get("/secret"))
        except ApiError as e:
            errors.append(e)

    threads = [threading.Thread(target=worker) for _ in range(2)]
    for thread in threads:
        thread.start()
    for thread in threads:
        thread.join(timeout=10)

    assert errors == []
    assert results == [{"secret": 42}, {"secret": 42}]
    assert adapter.refresh_calls == 1


def test_errors_are_logged_by_status_band(caplog):
    client = make_client(FakeApi())

    with caplog.at_level(logging.INFO, logger="blogify.client"):
        with pytest.raises(ApiError) as server:
            client.get("/boom")
        with pytest.raises(ApiError) as missing:
            client.get("/nowhere")

    assert server.value.status == 500
    assert missing.value.status == 404
    assert any(record.levelno == logging.ERROR and "Server error 500" in record.message
               for record in caplog.records)
    assert any(record.levelno == logging.WARNING and "Client error 404" in record.message
               for record in caplog.records)


def test_network_failure_has_no_status():
    class BrokenTransport(BaseAdapter):
        def send(self, request, **kwargs):
            raise requests.ConnectionError("connection refused")

        def close(self):
            pass

    session = requests.Session()
    session.mount("http://api.test", BrokenTransport())
    client = BlogifyClient(BASE_URL, session=session)

    with pytest.raises(ApiError) as excinfo:
        client.get("/anything")

    assert excinfo.value.status is None


def test_logout_clears_credentials_even_when_server_fails():
    adapter = FakeApi(refresh_ok=False)
    client = make_client(adapter)

    with pytest.raises(ApiError):
        client.logout()

    assert client.access_token is None
