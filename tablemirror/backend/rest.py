"""PostgREST-compatible remote backend.

Counts, page fetches and writes go over HTTP; change events come from an
attached PushChannel (for example MQTTChangeChannel).
"""

import logging
from typing import Any, Mapping

import httpx

from ..config import RestConfig
from ..errors import RemoteTransportError
from ..rows.conditions import equals_param
from .base import (
    ChangeHandler,
    ChannelSpec,
    PushChannel,
    RemoteBackend,
    ScopedQuery,
    Subscription,
)

logger = logging.getLogger(__name__)


def _query_params(query: ScopedQuery) -> list[tuple[str, str]]:
    """Translate prefilter and conditions into PostgREST filter params."""
    params: list[tuple[str, str]] = []
    if query.prefilter is not None:
        params.append(equals_param(query.prefilter.key, query.prefilter.value))
    params.extend(query.conditions.to_params())
    return params


def _parse_content_range(header: str | None) -> int:
    """Extract the total from a ``Content-Range: 0-24/2500`` header."""
    if not header or "/" not in header:
        raise RemoteTransportError(f"Missing row count in Content-Range: {header!r}")
    total = header.rsplit("/", 1)[1]
    if total == "*":
        raise RemoteTransportError("Backend did not report an exact row count")
    try:
        return int(total)
    except ValueError:
        raise RemoteTransportError(f"Invalid Content-Range total: {total!r}") from None


class RestBackend(RemoteBackend):
    """Remote backend talking to a PostgREST endpoint with httpx."""

    def __init__(
        self,
        config: RestConfig,
        channel: PushChannel | None = None,
        client: httpx.AsyncClient | None = None,
    ):
        """Initialize the backend.

        Args:
            config: Endpoint URL, extra headers and timeout.
            channel: Source of push events for subscribe().
            client: Pre-built client (mainly for tests). Created lazily
                when omitted.
        """
        self.config = config
        self.channel = channel
        self._client = client
        self._owns_client = client is None

    def _ensure_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(
                base_url=self.config.url.rstrip("/"),
                headers=self.config.headers,
                timeout=self.config.timeout,
            )
        return self._client

    async def _request(
        self,
        method: str,
        query: ScopedQuery,
        params: list[tuple[str, str]] | None = None,
        json_data: Any = None,
        headers: dict[str, str] | None = None,
    ) -> httpx.Response:
        """Issue one request. No retries.

        Raises:
            RemoteTransportError: On connection problems or timeouts.
        """
        client = self._ensure_client()
        request_headers = dict(headers or {})
        profile_header = "Accept-Profile" if method in ("GET", "HEAD") else "Content-Profile"
        request_headers[profile_header] = query.schema

        try:
            return await client.request(
                method,
                f"/{query.table}",
                params=params,
                json=json_data,
                headers=request_headers,
            )
        except httpx.ConnectError as e:
            logger.warning(f"Connection failed for {method} {query.table}: {e}")
            raise RemoteTransportError(f"Connection failed: {e}") from e
        except httpx.TimeoutException as e:
            logger.warning(f"Request timeout for {method} {query.table}")
            raise RemoteTransportError(f"Request timeout: {e}") from e
        except httpx.HTTPError as e:
            logger.error(f"Request error: {e}")
            raise RemoteTransportError(str(e)) from e

    def _check(self, response: httpx.Response) -> httpx.Response:
        if response.status_code >= 400:
            raise RemoteTransportError(
                f"HTTP {response.status_code}: {response.text}",
                status_code=response.status_code,
            )
        return response

    async def count(self, query: ScopedQuery) -> int:
        response = self._check(
            await self._request(
                "HEAD",
                query,
                params=[("select", "*"), *_query_params(query)],
                headers={"Prefer": "count=exact"},
            )
        )
        return _parse_content_range(response.headers.get("Content-Range"))

    async def fetch_page(
        self, query: ScopedQuery, offset: int, limit: int
    ) -> list[dict[str, Any]]:
        params = [
            ("select", "*"),
            *_query_params(query),
            ("offset", str(offset)),
            ("limit", str(limit)),
        ]
        response = self._check(await self._request("GET", query, params=params))
        data = response.json()
        if not isinstance(data, list):
            raise RemoteTransportError(f"Expected a list of rows, got {type(data).__name__}")
        return data

    async def insert(self, query: ScopedQuery, row: Mapping[str, Any]) -> int:
        response = await self._request(
            "POST", query, json_data=dict(row), headers={"Prefer": "return=minimal"}
        )
        return response.status_code

    async def upsert(self, query: ScopedQuery, row: Mapping[str, Any]) -> int:
        response = await self._request(
            "POST",
            query,
            json_data=dict(row),
            headers={"Prefer": "resolution=merge-duplicates,return=minimal"},
        )
        return response.status_code

    async def delete(self, query: ScopedQuery, match: Mapping[str, Any]) -> int:
        params = [equals_param(key, value) for key, value in match.items()]
        response = await self._request("DELETE", query, params=params)
        return response.status_code

    async def subscribe(self, spec: ChannelSpec, handler: ChangeHandler) -> Subscription:
        if self.channel is None:
            raise RemoteTransportError("No push channel attached to the REST backend")
        return await self.channel.subscribe(spec, handler)

    async def close(self) -> None:
        """Close the HTTP client (if owned) and the attached push channel."""
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None
        if self.channel is not None:
            await self.channel.close()
