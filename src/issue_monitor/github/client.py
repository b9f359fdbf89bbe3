"""
GitHub REST client for health probes.

Covers only the two calls the api probe needs: the rate-limit status and
the authenticated identity. GET /rate_limit does not count against the
quota.
"""

from __future__ import annotations

import asyncio
import logging
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, Optional

import aiohttp

logger = logging.getLogger(__name__)


class GitHubAPIError(Exception):
    """Base exception for GitHub API errors."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class AuthenticationError(GitHubAPIError):
    """Token missing, invalid or lacking scope."""
    pass


@dataclass(frozen=True)
class RateLimitStatus:
    """Core REST quota for the authenticated token."""

    limit: int
    remaining: int
    reset: datetime
    used: int = 0

    @property
    def usage(self) -> float:
        """Fraction of the quota consumed, 0-1."""
        if not self.limit:
            return 0.0
        return (self.limit - self.remaining) / self.limit

    def to_dict(self) -> dict:
        return {
            "limit": self.limit,
            "remaining": self.remaining,
            "reset": self.reset.isoformat(),
            "used": self.used,
        }


class GitHubStatusClient:
    """
    Async client for GitHub status calls.

    Usage:
        async with GitHubStatusClient(token) as client:
            rate = await client.check_status()
            user = await client.get_authenticated_identity()
            print(user["login"], rate.remaining)
    """

    API_URL = "https://api.github.com"
    API_VERSION = "2022-11-28"

    def __init__(
        self,
        token: str,
        session: Optional[aiohttp.ClientSession] = None,
        base_url: str = API_URL,
        timeout: float = 10.0,
    ):
        """
        Initialize the client.

        Args:
            token: Personal access token or installation token
            session: Optional aiohttp session (created if not provided)
            base_url: API root (GitHub Enterprise uses https://host/api/v3)
            timeout: Request timeout in seconds
        """
        self._token = token
        self._session = session
        self._owns_session = session is None
        self._base_url = base_url.rstrip("/")
        self._timeout = aiohttp.ClientTimeout(total=timeout)

    async def __aenter__(self) -> "GitHubStatusClient":
        """Async context manager entry."""
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb) -> None:
        """Async context manager exit."""
        await self.close()

    async def close(self) -> None:
        """Close the client session."""
        if self._owns_session and self._session:
            await self._session.close()
            self._session = None

    @property
    def headers(self) -> Dict[str, str]:
        return {
            "Accept": "application/vnd.github+json",
            "Authorization": f"Bearer {self._token}",
            "X-GitHub-Api-Version": self.API_VERSION,
            "User-Agent": "issue-monitor",
        }

    async def _get(self, path: str) -> Any:
        """
        GET a path and return the decoded JSON body.

        Raises:
            AuthenticationError: On 401
            GitHubAPIError: On any other non-2xx status, timeout or connection error
        """
        if self._session is None:
            self._session = aiohttp.ClientSession(timeout=self._timeout)
            self._owns_session = True

        url = f"{self._base_url}{path}"
        try:
            async with self._session.request("GET", url, headers=self.headers) as response:
                if response.status == 401:
                    raise AuthenticationError("Bad credentials", status_code=401)

                if response.status >= 400:
                    text = await response.text()
                    raise GitHubAPIError(
                        f"API error: {response.status} - {text[:200]}",
                        status_code=response.status,
                    )

                return await response.json()

        except asyncio.TimeoutError as e:
            raise GitHubAPIError(f"Request to {path} timed out") from e
        except aiohttp.ClientError as e:
            raise GitHubAPIError(f"Request to {path} failed: {e}") from e

    async def check_status(self) -> RateLimitStatus:
        """Current core rate limit (GET /rate_limit)."""
        data = await self._get("/rate_limit")
        return self.parse_rate_limit(data)

    async def get_authenticated_identity(self) -> Dict[str, Any]:
        """The user the token belongs to (GET /user)."""
        return await self._get("/user")

    @staticmethod
    def parse_rate_limit(data: Dict[str, Any]) -> RateLimitStatus:
        """
        Parse a /rate_limit body.

        Prefers resources.core and falls back to the legacy top-level
        "rate" object.
        """
        core = (data.get("resources") or {}).get("core") or data.get("rate")
        if not core:
            raise GitHubAPIError("Rate limit response missing core quota")

        return RateLimitStatus(
            limit=int(core.get("limit", 0)),
            remaining=int(core.get("remaining", 0)),
            reset=datetime.fromtimestamp(int(core.get("reset", 0)), tz=timezone.utc),
            used=int(core.get("used", 0)),
        )
