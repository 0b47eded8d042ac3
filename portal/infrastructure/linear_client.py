"""Resilient Linear Client — GraphQL over httpx with retry, backoff, and error mapping.

Invariants:
    - Rate limits (429): exponential backoff with jitter, respects Retry-After header
    - Transient errors (5xx, connection): max linear_max_retries retries with backoff
    - Client errors (4xx except 429) and timeouts: immediate failure, no retry
    - GraphQL "Entity not found: Team" → ResourceNotFoundError (or None when allowed)
    - All other failures mapped to LinearAPIError (core/errors.py)

Design Decisions:
    - API key resolved lazily on first request: settings first, then the KV store,
      so routes that never touch Linear do not fail when no key is configured
    - ±25% jitter on backoff: prevents thundering herd on shared rate limits
    - httpx.AsyncClient injectable: tests drive the client with httpx.MockTransport
"""

import asyncio
import logging
import random
import re
import time
from collections.abc import Awaitable, Callable

import httpx

from portal.core.errors import (
    ErrorContext, LinearAPIError, LinearNotConfiguredError, ResourceNotFoundError,
)
from portal.core.issue_hierarchy import validate_team_id

logger = logging.getLogger(__name__)

_QUERY_NAME_RE = re.compile(r"(?:query|mutation)\s+(\w+)")
_AUTH_MARKERS = ("authentication", "Unauthorized", "Invalid token", "UNAUTHENTICATED")
USER_AGENT = "Client-Portal-API/2.1"

KeyLoader = Callable[[], Awaitable[str | None]]


def query_name(query: str) -> str:
    match = _QUERY_NAME_RE.search(query)
    return match.group(1) if match else "UnknownQuery"


def _http_error_text(response: httpx.Response) -> str:
    return (
        f"Linear API HTTP Error: {response.status_code} "
        f"{response.reason_phrase} - {response.text}"
    )


class LinearClient:
    """Executes GraphQL documents against Linear with retries and error mapping."""

    def __init__(
        self,
        api_key: str | None = None,
        *,
        key_loader: KeyLoader | None = None,
        api_url: str = "https://api.linear.app/graphql",
        max_retries: int = 3,
        base_delay_ms: int = 500,
        max_delay_ms: int = 8_000,
        timeout_seconds: int = 15,
        http_client: httpx.AsyncClient | None = None,
    ):
        self._api_key = api_key
        self._key_loader = key_loader
        self.api_url = api_url
        self.max_retries = max_retries
        self.base_delay_ms = base_delay_ms
        self.max_delay_ms = max_delay_ms
        self.timeout_seconds = timeout_seconds
        self._http = http_client

    async def execute(
        self,
        query: str,
        variables: dict | None = None,
        *,
        allow_team_not_found: bool = False,
    ) -> dict | None:
        """Run a query/mutation and return its data object.

        Returns None only when allow_team_not_found is set and Linear reports
        the team missing.
        """
        variables = variables or {}
        name = query_name(query)
        payload = await self._post_with_retry(query, variables, name)

        errors = payload.get("errors") or []
        if errors:
            return self._handle_graphql_errors(
                errors, name, variables, allow_team_not_found,
            )
        if payload.get("data") is None:
            logger.warning(
                f"No data in Linear response for {name}", extra={"query_name": name},
            )
            raise LinearAPIError(
                f"No data returned from Linear API for {name}", "empty_response",
            )
        return payload["data"]

    async def aclose(self) -> None:
        if self._http is not None:
            await self._http.aclose()

    # ─── HTTP ────────────────────────────────────────────────────

    async def _post_with_retry(self, query: str, variables: dict, name: str) -> dict:
        headers = {
            "Authorization": await self._resolve_api_key(),
            "Content-Type": "application/json",
            "User-Agent": USER_AGENT,
            "public-file-urls-expire-in": "3600",
        }
        body = {"query": query, "variables": variables}
        for attempt in range(self.max_retries + 1):
            started = time.monotonic()
            try:
                response = await self._client().post(
                    self.api_url, json=body, headers=headers,
                )
            except httpx.TimeoutException:
                raise LinearAPIError(f"Linear API timeout in {name}", "timeout")
            except httpx.TransportError as e:
                await self._handle_transient_error(e, attempt, name)
                continue

            duration_ms = int((time.monotonic() - started) * 1000)
            if response.status_code == 429:
                await self._handle_rate_limit(response, attempt, name)
                continue
            if response.status_code >= 500:
                await self._handle_transient_error(
                    _http_error_text(response), attempt, name,
                )
                continue
            if response.status_code == 401:
                raise LinearAPIError(
                    f"Linear API authentication failed: {_http_error_text(response)}",
                    "authentication",
                )
            if response.status_code >= 400:
                raise LinearAPIError(_http_error_text(response), "client_error")
            if duration_ms > 1000:
                logger.info(
                    f"Slow Linear request {name}",
                    extra={"query_name": name, "duration_ms": duration_ms,
                           "attempt": attempt + 1},
                )
            return response.json()
        raise LinearAPIError(f"Linear API retries exhausted for {name}", "connection_error")

    def _client(self) -> httpx.AsyncClient:
        if self._http is None:
            self._http = httpx.AsyncClient(timeout=self.timeout_seconds)
        return self._http

    async def _resolve_api_key(self) -> str:
        if not self._api_key and self._key_loader is not None:
            self._api_key = await self._key_loader()
        if not self._api_key:
            raise LinearNotConfiguredError()
        return self._api_key

    async def _handle_rate_limit(
        self, response: httpx.Response, attempt: int, name: str,
    ) -> None:
        retry_after_ms = self._extract_retry_after(response)
        if attempt >= self.max_retries:
            raise LinearAPIError(
                "Rate limit exceeded after retries", "rate_limit",
                retry_after_ms=retry_after_ms,
            )
        delay = retry_after_ms or self._backoff(attempt)
        logger.warning(
            f"Linear rate limit hit, retry after {delay}ms",
            extra={"query_name": name, "attempt": attempt + 1},
        )
        await asyncio.sleep(delay / 1000)

    async def _handle_transient_error(self, e, attempt: int, name: str) -> None:
        if attempt >= self.max_retries:
            raise LinearAPIError(
                f"Transient failure after {self.max_retries} retries: {e}",
                "connection_error",
            )
        delay = self._backoff(attempt)
        logger.warning(
            f"Transient Linear error, retry after {delay}ms: {e}",
            extra={"query_name": name, "attempt": attempt + 1},
        )
        await asyncio.sleep(delay / 1000)

    def _backoff(self, attempt: int) -> int:
        """Exponential backoff with ±25% jitter."""
        delay = min(self.max_delay_ms, (2 ** attempt) * self.base_delay_ms)
        return int(delay * random.uniform(0.75, 1.25))  # nosec B311

    @staticmethod
    def _extract_retry_after(response: httpx.Response) -> int | None:
        val = response.headers.get("retry-after")
        if val and val.isdigit():
            return int(val) * 1000
        return None

    # ─── GraphQL errors ──────────────────────────────────────────

    def _handle_graphql_errors(
        self, errors: list, name: str, variables: dict, allow_team_not_found: bool,
    ) -> None:
        first = errors[0] if isinstance(errors[0], dict) else {}
        message = first.get("message") or "Unknown GraphQL error"
        logger.error(
            f"Linear GraphQL errors in {name}: {message}",
            extra={"query_name": name},
        )

        if "Variable" in message and "type" in message and "expecting" in message:
            raise LinearAPIError(
                f"Linear GraphQL Type Error in {name}: {message}", "type_error",
            )

        if "Entity not found: Team" in message:
            if allow_team_not_found:
                return None
            team_id = str(variables.get("teamId") or "")
            label = "UUID team" if validate_team_id(team_id) else "Team"
            raise ResourceNotFoundError(
                "Team", team_id,
                context=ErrorContext(team_id=team_id or None),
                message=f"{label} not found in Linear workspace: {team_id}",
            )

        if any(marker in message for marker in _AUTH_MARKERS):
            raise LinearAPIError("Linear API authentication failed", "authentication")

        code = (first.get("extensions") or {}).get("code")
        suffix = f" ({code})" if code else ""
        raise LinearAPIError(
            f"Linear GraphQL Error in {name}: {message}{suffix}", "graphql_error",
        )
