"""
Managed Backend Client

Thin HTTP client over the managed backend's auth API (/auth/v1) and its
PostgREST table API (/rest/v1). The default client authenticates with the
service role key (bypasses row-level security); for_user() returns a client
acting with the caller's JWT.
"""

from __future__ import annotations

import functools
import logging
from typing import Any, Dict, List, Optional

import requests

from csos.common.config import Settings, get_settings
from csos.utils.error_handling import BackendError

logger = logging.getLogger(__name__)


def _eq_filters(filters: Optional[Dict[str, Any]]) -> Dict[str, str]:
    """Translate {column: value} into PostgREST equality filters (None means IS NULL)."""
    params = {}
    for column, value in (filters or {}).items():
        if value is None:
            params[column] = "is.null"
            continue
        if isinstance(value, bool):
            value = str(value).lower()
        params[column] = f"eq.{value}"
    return params


class BackendClient:
    """
    Client for the managed backend.

    Args:
        base_url: Backend root URL (e.g. "https://xyz.example.co")
        api_key: Key sent as the apikey header
        access_token: JWT sent as the bearer token (defaults to api_key)
        anon_key: Public key used for token lookups and user clients
        timeout: Per-request timeout in seconds
        session: Optional requests.Session to reuse connections
    """

    def __init__(
        self,
        base_url: str,
        api_key: str,
        access_token: Optional[str] = None,
        anon_key: Optional[str] = None,
        timeout: float = 10,
        session: Optional[requests.Session] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.api_key = api_key
        self.access_token = access_token or api_key
        self.anon_key = anon_key or api_key
        self.timeout = timeout
        self.session = session or requests.Session()

    @classmethod
    def from_settings(cls, settings: Settings) -> "BackendClient":
        return cls(
            settings.backend_url,
            settings.service_role_key,
            anon_key=settings.anon_key,
            timeout=settings.request_timeout_seconds,
        )

    def for_user(self, access_token: str) -> "BackendClient":
        """Client acting as the caller (anon key + caller JWT)."""
        return BackendClient(
            self.base_url,
            self.anon_key,
            access_token=access_token,
            anon_key=self.anon_key,
            timeout=self.timeout,
            session=self.session,
        )

    def close(self) -> None:
        """Release pooled connections."""
        self.session.close()

    def _headers(self, extra: Optional[Dict[str, str]] = None) -> Dict[str, str]:
        headers = {
            "apikey": self.api_key,
            "Authorization": f"Bearer {self.access_token}",
            "Content-Type": "application/json",
        }
        if extra:
            headers.update(extra)
        return headers

    def _request(self, method: str, path: str, **kwargs) -> requests.Response:
        url = f"{self.base_url}{path}"
        try:
            response = self.session.request(method, url, timeout=self.timeout, **kwargs)
        except requests.RequestException as e:
            logger.error(f"Backend {method} {path} failed: {e}")
            raise BackendError(f"Backend request failed: {e}") from e
        if response.status_code >= 400:
            message = _error_message(response)
            logger.error(f"Backend {method} {path} returned {response.status_code}: {message}")
            raise BackendError(message, status_code=response.status_code)
        return response

    # ---------- Auth ----------

    def get_user(self, access_token: str) -> Optional[Dict[str, Any]]:
        """Resolve a JWT to its user record, or None if invalid/expired."""
        try:
            response = self.session.get(
                f"{self.base_url}/auth/v1/user",
                headers={"apikey": self.anon_key, "Authorization": f"Bearer {access_token}"},
                timeout=self.timeout,
            )
        except requests.RequestException as e:
            logger.error(f"Error resolving user from token: {e}")
            return None
        if response.status_code != 200:
            return None
        user = response.json()
        return user if user and user.get("id") else None

    # ---------- Tables ----------

    def select(
        self,
        table: str,
        filters: Optional[Dict[str, Any]] = None,
        columns: str = "*",
        order: Optional[str] = None,
        limit: Optional[int] = None,
    ) -> List[Dict[str, Any]]:
        """
        Select rows.

        Args:
            order: PostgREST order clause, e.g. "assigned_at.desc"
        """
        params = {"select": columns, **_eq_filters(filters)}
        if order:
            params["order"] = order
        if limit:
            params["limit"] = str(limit)
        response = self._request("GET", f"/rest/v1/{table}", params=params, headers=self._headers())
        return response.json() or []

    def select_one(self, table: str, filters: Dict[str, Any], columns: str = "*") -> Optional[Dict[str, Any]]:
        rows = self.select(table, filters, columns=columns, limit=1)
        return rows[0] if rows else None

    def insert(self, table: str, row: Dict[str, Any]) -> Dict[str, Any]:
        """Insert one row and return it as stored."""
        response = self._request(
            "POST",
            f"/rest/v1/{table}",
            json=row,
            headers=self._headers({"Prefer": "return=representation"}),
        )
        rows = response.json() or []
        return rows[0] if rows else {}

    def update(self, table: str, values: Dict[str, Any], filters: Dict[str, Any]) -> List[Dict[str, Any]]:
        response = self._request(
            "PATCH",
            f"/rest/v1/{table}",
            params=_eq_filters(filters),
            json=values,
            headers=self._headers({"Prefer": "return=representation"}),
        )
        return response.json() or []

    def delete(self, table: str, filters: Dict[str, Any]) -> None:
        if not filters:
            raise BackendError(f"Refusing to delete from {table} without filters")
        self._request("DELETE", f"/rest/v1/{table}", params=_eq_filters(filters), headers=self._headers())


def _error_message(response: requests.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or f"HTTP {response.status_code}"
    if isinstance(body, dict):
        return str(body.get("message") or body.get("error") or body)
    return str(body)


@functools.lru_cache(maxsize=1)
def get_backend() -> BackendClient:
    """
    FastAPI dependency: process-wide service-role backend client.

    One client (and one requests.Session) is shared by every request so
    connections are pooled. Tests call get_backend.cache_clear().
    """
    return BackendClient.from_settings(get_settings())
