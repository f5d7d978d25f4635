"""Asana REST API client with rate limiting, retries and pagination."""

from __future__ import annotations

import asyncio
import logging
import time
from collections.abc import Awaitable, Callable
from dataclasses import dataclass, field
from typing import Any

import httpx

from .config import Settings
from .errors import SourceRejected, SourceUnavailable, SourceUnreachable

logger = logging.getLogger(__name__)

SECTION_FIELDS = "name"
TASK_FIELDS = "name,assignee.name,assignee.email,completed,completed_at,due_on,projects.name,created_at"
SUBTASK_FIELDS = (
    "name,assignee.name,assignee.email,completed,created_at,completed_at,due_on,followers.name"
)
USER_FIELDS = "name,email"


@dataclass
class Page:
    """One page of a collection endpoint."""

    items: list[dict[str, Any]] = field(default_factory=list)
    next_page_token: str | None = None


class RateLimiter:
    """Spaces request start times so the process stays under a per-minute budget.

    One instance is shared by every request of a client. Turns are handed out
    under a single lock, so each wait is computed from the start time of the
    request immediately before it.
    """

    def __init__(
        self,
        requests_per_minute: int,
        clock: Callable[[], float] = time.monotonic,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        if requests_per_minute <= 0:
            raise ValueError("requests_per_minute must be positive")
        self.interval = 60.0 / requests_per_minute
        self._clock = clock
        self._sleep = sleep
        self._lock = asyncio.Lock()
        self._last_start: float | None = None

    async def wait_turn(self) -> None:
        async with self._lock:
            if self._last_start is not None:
                wait = self.interval - (self._clock() - self._last_start)
                if wait > 0:
                    await self._sleep(wait)
            self._last_start = self._clock()


class AsanaClient:
    """Client for the Asana REST API (v1.0).

    Every request waits for a rate-limit turn, retries 429/5xx responses and
    timeouts with exponential backoff, and translates failures into the
    ``Source*`` exceptions.
    """

    def __init__(
        self,
        settings: Settings,
        limiter: RateLimiter | None = None,
        transport: httpx.AsyncBaseTransport | None = None,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ) -> None:
        settings.require_source()
        self.settings = settings
        self.project_id: str = settings.project_id
        self.team_id = settings.team_id
        self.limiter = limiter or RateLimiter(settings.requests_per_minute)
        self._sleep = sleep
        self._client = httpx.AsyncClient(
            base_url=settings.base_url,
            headers={
                "Authorization": f"Bearer {settings.token}",
                "Accept": "application/json",
            },
            timeout=settings.timeout,
            transport=transport,
        )

    async def __aenter__(self) -> AsanaClient:
        return self

    async def __aexit__(self, *exc_info: object) -> None:
        await self.aclose()

    async def aclose(self) -> None:
        """Close the HTTP client."""
        await self._client.aclose()

    # ------------------------------------------------------------------
    # Transport
    # ------------------------------------------------------------------

    def _retry_delay(self, attempt: int, response: httpx.Response | None = None) -> float:
        delay = min(self.settings.base_delay * 2**attempt, self.settings.max_delay)
        if response is not None and response.status_code == 429:
            retry_after = response.headers.get("retry-after")
            try:
                if retry_after is not None:
                    delay = min(float(retry_after), self.settings.max_delay)
            except ValueError:
                pass
        return delay

    async def _get(self, path: str, params: dict[str, Any] | None = None) -> dict[str, Any]:
        """GET ``path`` and return the decoded JSON envelope."""
        max_retries = self.settings.max_retries
        attempt = 0
        while True:
            await self.limiter.wait_turn()
            try:
                resp = await self._client.get(path, params=params)
            except httpx.TimeoutException as e:
                if attempt >= max_retries:
                    raise SourceUnavailable(
                        f"Asana API timed out on {path} after {attempt + 1} attempts"
                    ) from e
                delay = self._retry_delay(attempt)
                logger.warning(
                    "Request to %s timed out. Retrying in %.1fs (attempt %d/%d)",
                    path, delay, attempt + 1, max_retries,
                )
            except httpx.TransportError as e:
                raise SourceUnreachable(f"Unable to reach Asana API: {e}") from e
            else:
                status = resp.status_code
                if status == 429 or status >= 500:
                    if attempt >= max_retries:
                        raise SourceUnavailable(
                            f"Asana API returned {status} on {path} after "
                            f"{attempt + 1} attempts",
                            status_code=status,
                        )
                    delay = self._retry_delay(attempt, resp)
                    logger.warning(
                        "API request to %s failed with status %d. Retrying in %.1fs "
                        "(attempt %d/%d)",
                        path, status, delay, attempt + 1, max_retries,
                    )
                elif status >= 400:
                    raise SourceRejected(status, _error_message(resp))
                else:
                    return resp.json()
            await self._sleep(delay)
            attempt += 1

    # ------------------------------------------------------------------
    # Pagination
    # ------------------------------------------------------------------

    async def fetch_page(
        self, path: str, params: dict[str, Any] | None = None
    ) -> Page:
        """Fetch one page of a collection."""
        body = await self._get(path, params)
        data = body.get("data") or []
        if isinstance(data, dict):
            data = [data]
        next_page = body.get("next_page") or {}
        return Page(items=list(data), next_page_token=next_page.get("offset"))

    async def fetch_all(
        self, path: str, params: dict[str, Any] | None = None
    ) -> list[dict[str, Any]]:
        """Fetch every page of a collection and return the concatenated items."""
        query: dict[str, Any] = {"limit": self.settings.page_size, **(params or {})}
        items: list[dict[str, Any]] = []
        seen: set[str] = set()
        while True:
            page = await self.fetch_page(path, query)
            items.extend(page.items)
            token = page.next_page_token
            if not token:
                return items
            if token in seen:
                raise SourceUnavailable(
                    f"Asana API repeated page offset {token!r} on {path}"
                )
            seen.add(token)
            query["offset"] = token

    async def fetch_resource(
        self, path: str, params: dict[str, Any] | None = None
    ) -> dict[str, Any]:
        """Fetch a single object (``{"data": {...}}``)."""
        body = await self._get(path, params)
        return body.get("data") or {}

    # ------------------------------------------------------------------
    # Resources
    # ------------------------------------------------------------------

    async def list_sections(self) -> list[dict[str, Any]]:
        return await self.fetch_all(
            f"/projects/{self.project_id}/sections", {"opt_fields": SECTION_FIELDS}
        )

    async def list_tasks(self, section_gid: str) -> list[dict[str, Any]]:
        return await self.fetch_all(
            f"/sections/{section_gid}/tasks", {"opt_fields": TASK_FIELDS}
        )

    async def list_subtasks(self, task_gid: str) -> list[dict[str, Any]]:
        return await self.fetch_all(
            f"/tasks/{task_gid}/subtasks", {"opt_fields": SUBTASK_FIELDS}
        )

    async def list_team_users(self, team_gid: str) -> list[dict[str, Any]]:
        return await self.fetch_all(f"/teams/{team_gid}/users", {"opt_fields": USER_FIELDS})

    async def get_user(self, user_gid: str) -> dict[str, Any]:
        return await self.fetch_resource(f"/users/{user_gid}", {"opt_fields": USER_FIELDS})

    async def test_connection(self) -> bool:
        """Return True if the credentials are accepted by ``/users/me``."""
        try:
            await self.fetch_resource("/users/me")
        except (SourceRejected, SourceUnavailable, SourceUnreachable) as e:
            logger.error("Asana API connection failed: %s", e)
            return False
        logger.info("Asana API connection successful")
        return True


def _error_message(resp: httpx.Response) -> str:
    """Pull Asana's ``errors[0].message`` out of a failed response."""
    try:
        body = resp.json()
    except ValueError:
        return resp.reason_phrase or resp.text
    errors = body.get("errors") if isinstance(body, dict) else None
    if errors and isinstance(errors, list) and isinstance(errors[0], dict):
        message = errors[0].get("message")
        if message:
            return message
    return resp.reason_phrase or "Unknown API error"
