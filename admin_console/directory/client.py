"""Low-level HTTP client for the Keycloak Admin API.

Handles service-account authentication, token refresh, and maps transport
and HTTP failures onto the directory error taxonomy.
"""
from __future__ import annotations
import threading
from datetime import datetime, timedelta
from typing import Any, Dict, Optional

import requests

from .exceptions import DirectoryAPIError, DirectoryUnreachableError

REQUEST_TIMEOUT = 5


def _retry_after(resp: requests.Response) -> Optional[float]:
    value = resp.headers.get("Retry-After") if resp.headers else None
    if not value:
        return None
    try:
        return max(0.0, float(value))
    except (TypeError, ValueError):
        return None


class KeycloakClient:
    """HTTP client for Keycloak Admin API with automatic token management.

    Usage:
        client = KeycloakClient("http://keycloak:8080")
        client.authenticate_service_account("demo", "automation-cli", "secret")
        response = client.get("/admin/realms/demo/users")
    """

    def __init__(self, base_url: str, timeout: float = REQUEST_TIMEOUT):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self._token: Optional[str] = None
        self._token_expires_at: Optional[datetime] = None
        self._auth_params: Dict[str, Any] = {}
        self._token_lock = threading.Lock()

    def use_service_account(self, auth_realm: str, client_id: str, client_secret: str) -> None:
        """Store client credentials; the token is fetched on first request."""
        self._auth_params = {
            "auth_realm": auth_realm,
            "client_id": client_id,
            "client_secret": client_secret,
        }

    def authenticate_service_account(self, auth_realm: str, client_id: str, client_secret: str) -> str:
        """Authenticate with client credentials and store them for auto-refresh."""
        self.use_service_account(auth_realm, client_id, client_secret)
        with self._token_lock:
            return self._refresh_token()

    def _refresh_token(self) -> str:
        token, expires_in = self._get_service_account_token(**self._auth_params)
        self._token = token
        self._token_expires_at = datetime.now() + timedelta(seconds=expires_in)
        return token

    def _ensure_authenticated(self) -> str:
        """Return a valid token, refreshing if necessary."""
        with self._token_lock:
            if not self._auth_params and not self._token:
                raise DirectoryAPIError(401, "Not authenticated - call authenticate_service_account first", "")
            # Refresh if token expired or expiring soon (within 10 seconds)
            if (
                self._auth_params
                and (not self._token or not self._token_expires_at
                     or datetime.now() >= self._token_expires_at - timedelta(seconds=10))
            ):
                self._refresh_token()
            return self._token or ""

    def request(self, method: str, path: str, **kwargs) -> requests.Response:
        """Execute an authenticated request.

        Raises:
            DirectoryAPIError: On HTTP error status
            DirectoryUnreachableError: On timeout or connection failure
        """
        token = self._ensure_authenticated()
        url = f"{self.base_url}{path}"
        headers = kwargs.pop("headers", {}) or {}
        headers["Authorization"] = f"Bearer {token}"
        try:
            resp = requests.request(method, url, headers=headers, timeout=self.timeout, **kwargs)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise DirectoryUnreachableError(f"{method} {url}: {exc}") from exc
        self._handle_error(resp)
        return resp

    def get(self, path: str, params: Optional[Dict] = None, **kwargs) -> requests.Response:
        return self.request("GET", path, params=params, **kwargs)

    def post(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("POST", path, json=json, **kwargs)

    def put(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("PUT", path, json=json, **kwargs)

    def delete(self, path: str, json: Any = None, **kwargs) -> requests.Response:
        return self.request("DELETE", path, json=json, **kwargs)

    def _get_service_account_token(self, auth_realm: str, client_id: str, client_secret: str) -> tuple[str, int]:
        """Fetch a service account token using client credentials flow."""
        url = f"{self.base_url}/realms/{auth_realm}/protocol/openid-connect/token"
        data = {
            "grant_type": "client_credentials",
            "client_id": client_id,
            "client_secret": client_secret,
        }
        try:
            resp = requests.post(url, data=data, timeout=self.timeout)
        except (requests.Timeout, requests.ConnectionError) as exc:
            raise DirectoryUnreachableError(f"POST {url}: {exc}") from exc
        if resp.status_code != 200:
            raise DirectoryAPIError(resp.status_code, resp.text, url, _retry_after(resp))
        payload = resp.json()
        # Conservative expiry: assume 60 seconds when the server omits it
        return payload["access_token"], int(payload.get("expires_in") or 60)

    def _handle_error(self, resp: requests.Response) -> None:
        if resp.status_code >= 400:
            raise DirectoryAPIError(resp.status_code, resp.text, resp.url, _retry_after(resp))

