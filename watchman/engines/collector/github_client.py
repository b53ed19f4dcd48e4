"""Async GitHub GraphQL client with rate-limit pacing.

The client performs exactly one HTTP round-trip per :meth:`GitHubClient.query`
call and never retries; failed calls are redelivered by the message bus.
"""

from __future__ import annotations

import asyncio
import time
from typing import Any

import httpx
import structlog

from watchman.exceptions import CollectionFailedError

log = structlog.get_logger("watchman.collector")

GRAPHQL_ENDPOINT = "https://api.github.com/graphql"


class GitHubClient:
    """Thin async wrapper around the GitHub GraphQL API."""

    def __init__(
        self,
        token: str | None = None,
        *,
        endpoint: str = GRAPHQL_ENDPOINT,
        timeout: float = 30.0,
        transport: httpx.AsyncBaseTransport | None = None,
    ) -> None:
        headers: dict[str, str] = {
            "Accept": "application/json",
            "Content-Type": "application/json",
            "Cache-Control": "no-cache",
        }
        if token:
            headers["Authorization"] = f"bearer {token}"
        self._endpoint = endpoint
        self._client = httpx.AsyncClient(
            headers=headers,
            timeout=timeout,
            transport=transport,
        )

    # ── lifecycle ──────────────────────────────────────────────────────────

    async def close(self) -> None:
        await self._client.aclose()

    async def __aenter__(self) -> GitHubClient:
        return self

    async def __aexit__(self, *exc: object) -> None:
        await self.close()

    # ── public ─────────────────────────────────────────────────────────────

    async def query(self, query: str, variables: dict[str, Any]) -> dict[str, Any]:
        """Run one GraphQL request and return its ``data`` object.

        Every failure mode (transport error or timeout, non-2xx status
        including authentication failures, a body that is not JSON, a
        GraphQL ``errors`` array, a missing ``data`` object) is raised as
        :class:`CollectionFailedError`.
        """
        try:
            response = await self._client.post(
                self._endpoint, json={"query": query, "variables": variables}
            )
        except httpx.HTTPError as exc:
            log.warning("github.transport_error", error=str(exc))
            raise CollectionFailedError("graphql request failed", exc) from exc

        if response.status_code in (401, 403) and not self._is_rate_limited(response):
            raise CollectionFailedError(
                f"graphql authentication failed (HTTP {response.status_code})"
            )
        try:
            response.raise_for_status()
        except httpx.HTTPStatusError as exc:
            log.warning("github.http_error", status=response.status_code)
            raise CollectionFailedError("graphql request rejected", exc) from exc

        try:
            body = response.json()
        except ValueError as exc:
            raise CollectionFailedError("graphql response is not JSON", exc) from exc

        if not isinstance(body, dict):
            raise CollectionFailedError("graphql response is not an object")
        errors = body.get("errors")
        if errors:
            messages = "; ".join(
                str(e.get("message", e)) if isinstance(e, dict) else str(e) for e in errors
            )
            raise CollectionFailedError(f"graphql errors: {messages}")
        data = body.get("data")
        if not isinstance(data, dict):
            raise CollectionFailedError("graphql response has no data")

        await self._check_rate_limit(response)
        return data

    # ── internal ───────────────────────────────────────────────────────────

    async def _check_rate_limit(self, response: httpx.Response) -> None:
        """Sleep until rate-limit resets if remaining == 0."""
        remaining = self._parse_header_int(response.headers.get("X-RateLimit-Remaining"))
        if remaining is not None and remaining == 0:
            wait = self._get_rate_limit_wait(response)
            log.warning("github.rate_limit_wait", wait_seconds=wait)
            await asyncio.sleep(wait)

    @staticmethod
    def _is_rate_limited(response: httpx.Response) -> bool:
        """Check if a 403 response is due to rate limiting."""
        remaining = response.headers.get("X-RateLimit-Remaining")
        if remaining is not None:
            try:
                return int(remaining) == 0
            except (ValueError, TypeError):
                pass
        # GitHub also uses Retry-After header for secondary rate limits
        return "Retry-After" in response.headers

    @staticmethod
    def _get_rate_limit_wait(response: httpx.Response) -> int:
        """Calculate how long to wait based on rate-limit headers."""
        retry_after = response.headers.get("Retry-After")
        if retry_after is not None:
            try:
                return max(int(retry_after), 1)
            except (ValueError, TypeError):
                pass
        reset_ts = response.headers.get("X-RateLimit-Reset")
        if reset_ts is not None:
            try:
                return max(int(reset_ts) - int(time.time()), 1)
            except (ValueError, TypeError):
                pass
        return 60  # conservative fallback

    @staticmethod
    def _parse_header_int(value: str | None) -> int | None:
        """Safely parse an integer header value."""
        if value is None:
            return None
        try:
            return int(value)
        except (ValueError, TypeError):
            return None
