"""
HTTP client for the remote site's REST API.

Thin glue around httpx: base URL, Basic auth with an application password,
timeouts, and conversion of transport and HTTP failures into SiteError. It
knows nothing about access control; tool handlers call it only after the
filtering middleware has let the call through.
"""

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)

REST_PREFIX = "/wp-json"


class SiteError(Exception):
    """A request to the site failed (network error or HTTP status >= 400)."""

    def __init__(self, message: str, status_code: int | None = None):
        self.message = message
        self.status_code = status_code
        super().__init__(message)


class SiteClient:
    """
    Synchronous REST client. Paths are relative to /wp-json, e.g. "/wp/v2/posts".

    An empty base_url gives an unconfigured client whose requests all raise
    SiteError, so the server can still start (and filter tools) without a site.
    """

    def __init__(
        self,
        base_url: str,
        user: str = "",
        app_password: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        self.base_url = base_url.rstrip("/")
        self._client: httpx.Client | None = None
        if self.base_url:
            self._client = httpx.Client(
                base_url=self.base_url + REST_PREFIX,
                auth=(user, app_password) if user else None,
                timeout=timeout,
                transport=transport,
                headers={"Accept": "application/json"},
            )

    @property
    def configured(self) -> bool:
        return self._client is not None

    def request(
        self,
        method: str,
        path: str,
        *,
        params: dict[str, Any] | None = None,
        json: Any = None,
    ) -> Any:
        if self._client is None:
            raise SiteError("No site configured (set TOOLGATE_SITE_URL)")

        try:
            response = self._client.request(method, path, params=params, json=json)
        except httpx.HTTPError as e:
            raise SiteError(f"{method} {path} failed: {e}") from e

        if response.status_code >= 400:
            raise SiteError(
                f"{method} {path} returned {response.status_code}: {_error_message(response)}",
                status_code=response.status_code,
            )
        if not response.content:
            return None
        try:
            return response.json()
        except ValueError as e:
            raise SiteError(
                f"{method} {path} returned a non-JSON body", status_code=response.status_code
            ) from e

    def get(self, path: str, **params: Any) -> Any:
        return self.request("GET", path, params=_drop_none(params))

    def post(self, path: str, data: dict[str, Any]) -> Any:
        return self.request("POST", path, json=_drop_none(data))

    def delete(self, path: str, **params: Any) -> Any:
        return self.request("DELETE", path, params=_drop_none(params))

    def fetch_capabilities(self) -> list[str]:
        """
        Capabilities granted to the authenticated user, sorted.

        The users/me endpoint returns capabilities as {name: bool}; only the
        names mapped to true are returned.
        """
        data = self.get("/wp/v2/users/me", context="edit")
        capabilities = data.get("capabilities") if isinstance(data, dict) else None
        if not isinstance(capabilities, dict):
            return []
        return sorted(name for name, granted in capabilities.items() if granted is True)

    def close(self) -> None:
        if self._client is not None:
            self._client.close()


def _drop_none(values: dict[str, Any]) -> dict[str, Any]:
    return {key: value for key, value in values.items() if value is not None}


def _error_message(response: httpx.Response) -> str:
    try:
        body = response.json()
    except ValueError:
        return response.text[:200] or response.reason_phrase
    if isinstance(body, dict) and isinstance(body.get("message"), str):
        return body["message"]
    return response.reason_phrase
