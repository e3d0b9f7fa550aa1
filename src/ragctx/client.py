"""HTTP client for a remote hybrid search service.

HttpSourceSearch implements the SourceSearch protocol against a service
that exposes one fused (semantic + keyword) search endpoint per source type:

    POST {api_url}/api/search/{source_type}
    {"user_id": ..., "query": ..., "limit": ..., "chat_id": ...}
    -> {"results": [{"id", "content", "score", "created_at_ms", "metadata"}]}
"""

from __future__ import annotations

import logging
import os
from typing import Any

import httpx
from pydantic import ValidationError

from ragctx.config import RagContextConfig
from ragctx.models import ItemType, SearchCandidate

logger = logging.getLogger(__name__)


class SearchClientError(Exception):
    """Base exception for search client errors."""

    def __init__(self, message: str, status_code: int | None = None):
        super().__init__(message)
        self.status_code = status_code


class SearchAuthError(SearchClientError):
    """Authentication error (401/403)."""

    pass


class SearchConnectionError(SearchClientError):
    """Connection error (server unreachable or timed out)."""

    pass


class HttpSourceSearch:
    """Async HTTP client for the hybrid search service.

    Authentication is via API key (Bearer token).

    Example:
        async with HttpSourceSearch(api_url="https://search.example.com", api_key="sk_...") as search:
            engine = ContextEngine(search=search)
            context = await engine.retrieve_context("user-1", "deployment notes")
    """

    def __init__(
        self,
        api_url: str | None = None,
        api_key: str | None = None,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ):
        """Initialize the search client.

        Args:
            api_url: Search service URL. Falls back to RAGCTX_SEARCH_API_URL env var.
            api_key: API key. Falls back to RAGCTX_SEARCH_API_KEY env var.
            timeout: Request timeout in seconds.
            transport: Optional httpx transport (used by tests).

        Raises:
            SearchClientError: If api_url is not provided.
        """
        self.api_url = (api_url or os.environ.get("RAGCTX_SEARCH_API_URL", "")).rstrip("/")
        self.api_key = api_key or os.environ.get("RAGCTX_SEARCH_API_KEY", "")
        self.timeout = timeout
        self._transport = transport
        self._client: httpx.AsyncClient | None = None

        if not self.api_url:
            raise SearchClientError(
                "RAGCTX_SEARCH_API_URL is required. Set it via environment variable or api_url."
            )

        self._headers = {"Content-Type": "application/json"}
        if self.api_key:
            self._headers["Authorization"] = f"Bearer {self.api_key}"

    @classmethod
    def from_config(cls, config: RagContextConfig) -> "HttpSourceSearch":
        return cls(
            api_url=config.search_api_url,
            api_key=config.search_api_key,
            timeout=config.search_timeout,
        )

    async def _get_client(self) -> httpx.AsyncClient:
        """Get or create the async HTTP client."""
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.api_url,
                timeout=self.timeout,
                headers=self._headers,
                transport=self._transport,
            )
        return self._client

    async def hybrid_search(
        self,
        source_type: ItemType,
        user_id: str,
        query: str,
        limit: int,
        chat_id: str | None = None,
    ) -> list[SearchCandidate]:
        """Search one source type on the remote service.

        Raises:
            SearchAuthError: On 401/403 responses
            SearchConnectionError: On connection failures or timeouts
            SearchClientError: On other errors or malformed responses
        """
        payload: dict[str, Any] = {"user_id": user_id, "query": query, "limit": limit}
        if chat_id is not None:
            payload["chat_id"] = chat_id

        data = await self._request("POST", f"/api/search/{source_type.value}", json=payload)

        try:
            results = [SearchCandidate.model_validate(r) for r in data.get("results", [])]
        except (ValidationError, AttributeError, TypeError) as e:
            raise SearchClientError(f"Invalid search response: {e}") from e

        logger.debug(f"[SEARCH] {source_type.value}: {len(results)} results from {self.api_url}")
        return results

    async def _request(
        self,
        method: str,
        endpoint: str,
        json: dict | None = None,
    ) -> dict[str, Any]:
        client = await self._get_client()
        try:
            response = await client.request(method, endpoint, json=json)
        except httpx.ConnectError as e:
            raise SearchConnectionError(f"Cannot connect to {self.api_url}: {e}") from e
        except httpx.TimeoutException as e:
            raise SearchConnectionError(f"Request timed out: {e}") from e
        except httpx.RequestError as e:
            raise SearchClientError(f"Request failed: {e}") from e

        if response.status_code == 401:
            raise SearchAuthError("Invalid API key", status_code=401)
        if response.status_code == 403:
            raise SearchAuthError("Access denied", status_code=403)
        if response.status_code >= 400:
            try:
                error = response.json().get("error", response.text)
            except (ValueError, AttributeError):
                error = response.text
            raise SearchClientError(f"API error: {error}", status_code=response.status_code)

        try:
            data = response.json()
        except ValueError as e:
            raise SearchClientError(f"Invalid JSON response: {e}") from e
        if not isinstance(data, dict):
            raise SearchClientError("Invalid search response: expected a JSON object")
        return data

    async def close(self) -> None:
        """Close the async HTTP client."""
        if self._client:
            await self._client.aclose()
            self._client = None

    async def __aenter__(self) -> "HttpSourceSearch":
        return self

    async def __aexit__(self, *args: Any) -> None:
        await self.close()
