"""
Python client for the Blogify API.

The client keeps the access token in memory and relies on the session
cookie jar for the refresh cookie. A request rejected with 401 is retried
once after a silent refresh.
"""
import logging
import threading
from typing import Any, Optional

import requests

logger = logging.getLogger(__name__)

REFRESH_COOKIE_NAME = "refreshToken"


class ApiError(Exception):
    def __init__(self, status: Optional[int], message: str, payload: Optional[dict] = None):
        super().__init__(message)
        self.status = status
        self.message = message
        self.payload = payload or {}

    def __str__(self):
        if self.status is None:
            return self.message
        return f"{self.status}: {self.message}"


class BlogifyClient:
    def __init__(self, base_url: str, timeout: float = 10, session: Optional[requests.Session] = None):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.session = session or requests.Session()
        self.access_token: Optional[str] = None
        self.refresh_token: Optional[str] = None
        self._refresh_lock = threading.Lock()

    def _url(self, path: str) -> str:
        return f"{self.base_url}/{path.lstrip('/')}"

    def _store_tokens(self, data: dict):
        self.access_token = data.get("accessToken")
        self.refresh_token = data.get("refreshToken", self.refresh_token)

    def clear_credentials(self):
        self.access_token = None
        self.refresh_token = None
        self.session.cookies.clear()

    @property
    def can_refresh(self) -> bool:
        return bool(self.refresh_token) or REFRESH_COOKIE_NAME in self.session.cookies

    @staticmethod
    def _log_error(error: ApiError, method: str, path: str):
        if error.status is None:
            logger.error(f"Network error on {method} {path}: {error.message}")
        elif error.status >= 500:
            logger.error(f"Server error {error.status} on {method} {path}: {error.message}")
        elif error.status >= 400:
            logger.warning(f"Client error {error.status} on {method} {path}: {error.message}")

    def _send(self, method: str, path: str, token: Optional[str], **kwargs) -> requests.Response:
        headers = dict(kwargs.pop("headers", None) or {})
        if token:
            headers["Authorization"] = f"Bearer {token}"
        try:
            return self.session.request(method, self._url(path), headers=headers, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            error = ApiError(None, str(e))
            self._log_error(error, method, path)
            raise error from e

    @staticmethod
    def _error_from(response: requests.Response) -> ApiError:
        try:
            payload = response.json()
        except ValueError:
            payload = {}
        message = payload.get("message") if isinstance(payload, dict) else None
        return ApiError(response.status_code, message or response.reason or "Request failed", payload)

    def _decode(self, response: requests.Response, method: str, path: str) -> dict:
        if response.status_code >= 400:
            error = self._error_from(response)
            self._log_error(error, method, path)
            raise error
        return response.json()

    def refresh(self) -> str:
        """Exchange the refresh token for a new token pair."""
        body = {"refreshToken": self.refresh_token} if self.refresh_token else None
        response = self._send("POST", "/auth/refresh-token", None, json=body)
        payload = self._decode(response, "POST", "/auth/refresh-token")
        self._store_tokens(payload.get("data") or {})
        return self.access_token

    def _refresh_after(self, rejected_token: Optional[str]) -> Optional[str]:
        with self._refresh_lock:
            # Another request already replaced the token we were rejected with
            if self.access_token and self.access_token != rejected_token:
                return self.access_token
            try:
                return self.refresh()
            except ApiError:
                logger.info("Session refresh failed, clearing credentials")
                self.clear_credentials()
                return None

    def request(self, method: str, path: str, **kwargs) -> dict:
        """Send a request and return the decoded envelope."""
        method = method.upper()
        token = self.access_token
        response = self._send(method, path, token, **kwargs)

        if response.status_code == 401 and (token or self.can_refresh):
            new_token = self._refresh_after(token)
            if new_token:
                response = self._send(method, path, new_token, **kwargs)

        return self._decode(response, method, path)

    def get(self, path: str, **kwargs) -> Any:
        return self.request("GET", path, **kwargs).get("data")

    def post(self, path: str, **kwargs) -> Any:
        return self.request("POST", path, **kwargs).get("data")

    def put(self, path: str, **kwargs) -> Any:
        return self.request("PUT", path, **kwargs).get("data")

    def delete(self, path: str, **kwargs) -> Any:
        return self.request("DELETE", path, **kwargs).get("data")

    def register(self, name: str, email: str, password: str) -> dict:
        data = self.post("/auth/register", json={"name": name, "email": email, "password": password})
        self._store_tokens(data)
        return data["user"]

    def login(self, email: str, password: str) -> dict:
        data = self.post("/auth/login", json={"email": email, "password": password})
        self._store_tokens(data)
        return data["user"]

    def logout(self):
        try:
            self.post("/auth/logout", json={"refreshToken": self.refresh_token} if self.refresh_token else None)
        finally:
            self.clear_credentials()

    def logout_all(self):
        try:
            self.post("/auth/logout-all")
        finally:
            self.clear_credentials()
