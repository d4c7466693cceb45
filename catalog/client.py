"""HTTP client for a remote narrative content store."""

from __future__ import annotations

import logging
from typing import Any

import httpx

logger = logging.getLogger(__name__)


class ContentStoreError(Exception):
    """Raised when narrative content cannot be fetched or read."""

    def __init__(self, message: str, status_code: int = 0):
        self.status_code = status_code
        super().__init__(message)


class ContentClient:
    """Fetches the raw catalog from a content service.

    Usage::

        with ContentClient("https://content.example.com/api", token="...") as store:
            raw = store.load_catalog()
    """

    CATALOG_PATH = "/catalog"

    def __init__(
        self,
        base_url: str,
        token: str = "",
        timeout: float = 30.0,
        transport: httpx.BaseTransport | None = None,
    ):
        headers = {"Accept": "application/json"}
        if token:
            headers["Authorization"] = f"Bearer {token}"
        self._client = httpx.Client(
            base_url=base_url,
            headers=headers,
            timeout=timeout,
            transport=transport,
        )
        self._host = self._client.base_url.host

    def __enter__(self) -> ContentClient:
        return self

    def __exit__(self, *exc: Any) -> None:
        self.close()

    def close(self) -> None:
        self._client.close()

    def _request(self, method: str, path: str, **kwargs: Any) -> dict:
        """Make a request and return the parsed ``data`` payload."""
        # Never send the token anywhere but the configured host
        url = self._client.build_request(method, path).url
        if url.host != self._host:
            raise ContentStoreError(f"Refusing to send credentials to {url.host}")

        try:
            resp = self._client.request(method, path, **kwargs)
        except httpx.HTTPError as exc:
            raise ContentStoreError(f"Content request failed: {exc}") from exc

        try:
            body = resp.json() if resp.content else {}
        except ValueError:
            body = {}
        if not isinstance(body, dict):
            body = {}

        if resp.status_code >= 400:
            raise ContentStoreError(
                body.get("error", f"HTTP {resp.status_code}"),
                status_code=resp.status_code,
            )
        if not body.get("success", True):
            raise ContentStoreError(body.get("error", "Unknown error"))

        return body.get("data", body)

    def load_catalog(self) -> dict[str, Any]:
        data = self._request("GET", self.CATALOG_PATH)
        if not isinstance(data, dict):
            raise ContentStoreError("Catalog payload is not an object")
        logger.info("Fetched catalog from %s", self._client.base_url)
        return data
