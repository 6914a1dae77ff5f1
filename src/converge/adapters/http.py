"""HTTP manifest fetcher backed by httpx.

One synchronous GET per call; the body is returned as text. Transport
failures and non-2xx responses surface as ``NetworkError`` carrying the
URL, so the asset pipeline can mark its condition and the caller can
retry.
"""

from __future__ import annotations

import httpx

from converge.core.errors import NetworkError
from converge.core.logging import get_logger

logger = get_logger(__name__)


class HttpManifestFetcher:
    """Fetch line-oriented listings over HTTP."""

    def __init__(self, client: httpx.Client | None = None, timeout: float = 10.0):
        self._owns_client = client is None
        self._client = client or httpx.Client(timeout=timeout)

    def fetch(self, url: str) -> str:
        try:
            resp = self._client.get(url)
            resp.raise_for_status()
        except httpx.HTTPStatusError as e:
            raise NetworkError(
                f"GET {url} returned {e.response.status_code}", cause=e,
            ).with_context(url=url) from e
        except httpx.HTTPError as e:
            raise NetworkError(f"GET {url} failed: {e}", cause=e).with_context(url=url) from e
        logger.debug("http.fetched", url=url, bytes=len(resp.content))
        return resp.text

    def close(self) -> None:
        if self._owns_client:
            self._client.close()

    def __enter__(self) -> HttpManifestFetcher:
        return self

    def __exit__(self, *args) -> None:
        self.close()
