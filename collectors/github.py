"""
GitHub API Client for Repo Monitor

Thin async wrapper over the GitHub REST API used by the monitor loop and the
command surface. Tracks the remaining-calls budget from response headers so
callers can skip work before it fails.

Endpoints used:
- GET /users/{user}
- GET /users/{user}/repos?sort=updated&direction=desc
- GET /repos/{owner}/{repo}[/languages|/commits|/stats/commit_activity|...]

Usage:
    async with GitHubClient(token=os.getenv("GITHUB_TOKEN")) as client:
        if client.has_enough_rate_limit(2):
            repos = await client.get_user_repositories("octocat")
"""

from __future__ import annotations

import base64
import logging
import re
from typing import Any, Dict, List, Optional, Tuple

import httpx

from utils.rate_limiter import (
    AsyncRateLimiter,
    RateLimitState,
    RateLimitStatus,
    github_rate_limiter,
)
from utils.stats import MonitorStats

logger = logging.getLogger(__name__)


# =============================================================================
# CONFIGURATION
# =============================================================================

GITHUB_API_URL = "https://api.github.com"
GITHUB_TIMEOUT_SECONDS = 10.0
USER_AGENT = "GitHub-Monitor-Bot"

REPO_URL_PATTERN = re.compile(r"github\.com/([^/]+)/([^/]+)")


# =============================================================================
# ERRORS
# =============================================================================

class GitHubAPIError(Exception):
    """A GitHub request failed."""

    def __init__(self, message: str, status_code: Optional[int] = None):
        super().__init__(message)
        self.status_code = status_code


class MalformedResponseError(GitHubAPIError):
    """GitHub answered with a body of the wrong shape."""


# =============================================================================
# CLIENT
# =============================================================================

class GitHubClient:
    """
    Async GitHub REST client with rate-limit tracking.

    The underlying httpx.AsyncClient is created on first use (or on
    __aenter__) unless one is injected.
    """

    def __init__(
        self,
        token: Optional[str] = None,
        base_url: str = GITHUB_API_URL,
        timeout: float = GITHUB_TIMEOUT_SECONDS,
        http_client: Optional[httpx.AsyncClient] = None,
        stats: Optional[MonitorStats] = None,
        limiter: Optional[AsyncRateLimiter] = None,
    ):
        self.base_url = base_url.rstrip("/")
        self.timeout = timeout
        self.headers = {
            "Accept": "application/vnd.github+json",
            "User-Agent": USER_AGENT,
            "X-GitHub-Api-Version": "2022-11-28",
        }
        if token:
            self.headers["Authorization"] = f"Bearer {token}"

        self.stats = stats or MonitorStats(enabled=False)
        self.rate_limit = RateLimitState()
        self._limiter = limiter or github_rate_limiter()
        self._client = http_client
        self._owns_client = http_client is None

    async def __aenter__(self) -> GitHubClient:
        self._get_client()
        return self

    async def __aexit__(self, exc_type, exc_val, exc_tb):
        await self.close()

    def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=self.timeout)
            self._owns_client = True
        return self._client

    async def close(self) -> None:
        if self._client is not None and self._owns_client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # CORE REQUEST
    # =========================================================================

    async def _request(
        self,
        endpoint: str,
        params: Optional[Dict[str, Any]] = None,
    ) -> httpx.Response:
        """
        GET an endpoint, tracking rate-limit headers and stats.

        Raises GitHubAPIError on non-2xx responses and lets transport errors
        (httpx.TransportError) propagate.
        """
        await self._limiter.acquire()
        self.stats.increment_api_calls()

        client = self._get_client()
        url = f"{self.base_url}{endpoint}"
        logger.debug(f"GitHub API: GET {endpoint} {params or ''}")

        try:
            response = await client.get(url, headers=self.headers, params=params)
        except httpx.HTTPError:
            self.stats.record_error()
            raise

        self.rate_limit.update_from_headers(response.headers)

        if response.status_code == 403 and response.headers.get("x-ratelimit-remaining") == "0":
            reset = self.rate_limit.reset
            logger.warning(
                f"GitHub API rate limit exceeded. Resets at "
                f"{reset.isoformat() if reset else 'unknown time'}"
            )

        if response.is_error:
            self.stats.record_error()
            raise GitHubAPIError(
                f"GitHub API {response.status_code} for {endpoint}",
                status_code=response.status_code,
            )

        return response

    async def _get_json(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Any:
        response = await self._request(endpoint, params=params)
        try:
            return response.json()
        except ValueError as e:
            self.stats.record_error()
            raise MalformedResponseError(f"Invalid JSON from {endpoint}: {e}") from e

    async def _get_object(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> Dict[str, Any]:
        data = await self._get_json(endpoint, params=params)
        if not isinstance(data, dict):
            raise MalformedResponseError(f"Expected an object from {endpoint}, got {type(data).__name__}")
        return data

    async def _get_list(self, endpoint: str, params: Optional[Dict[str, Any]] = None) -> List[Dict[str, Any]]:
        data = await self._get_json(endpoint, params=params)
        if not isinstance(data, list):
            raise MalformedResponseError(f"Expected a list from {endpoint}, got {type(data).__name__}")
        return data

    # =========================================================================
    # USERS
    # =========================================================================

    async def get_user_info(self, username: str) -> Dict[str, Any]:
        try:
            return await self._get_object(f"/users/{username}")
        except Exception as e:
            logger.error(f"Error fetching user info for {username}: {e}")
            raise

    async def get_user_repositories(
        self,
        username: str,
        sort: str = "updated",
        direction: str = "desc",
        per_page: int = 100,
    ) -> List[Dict[str, Any]]:
        try:
            return await self._get_list(
                f"/users/{username}/repos",
                params={"sort": sort, "direction": direction, "per_page": per_page},
            )
        except Exception as e:
            logger.error(f"Error fetching repositories for {username}: {e}")
            raise

    # =========================================================================
    # REPOSITORIES
    # =========================================================================

    async def get_repository_details(self, owner: str, repo: str) -> Dict[str, Any]:
        try:
            return await self._get_object(f"/repos/{owner}/{repo}")
        except Exception as e:
            logger.error(f"Error fetching repository details for {owner}/{repo}: {e}")
            raise

    async def get_repository_languages(self, owner: str, repo: str) -> Dict[str, int]:
        try:
            return await self._get_object(f"/repos/{owner}/{repo}/languages")
        except Exception as e:
            logger.error(f"Error fetching repository languages for {owner}/{repo}: {e}")
            raise

    async def get_repository_contributors(self, owner: str, repo: str, limit: int = 10) -> List[Dict[str, Any]]:
        try:
            return await self._get_list(
                f"/repos/{owner}/{repo}/contributors", params={"per_page": limit}
            )
        except Exception as e:
            logger.error(f"Error fetching repository contributors for {owner}/{repo}: {e}")
            raise

    async def get_repository_commits(self, owner: str, repo: str, limit: int = 10) -> List[Dict[str, Any]]:
        try:
            return await self._get_list(
                f"/repos/{owner}/{repo}/commits", params={"per_page": limit}
            )
        except Exception as e:
            logger.error(f"Error fetching repository commits for {owner}/{repo}: {e}")
            raise

    async def get_repository_commit_activity(self, owner: str, repo: str) -> List[Dict[str, Any]]:
        """
        Weekly commit counts for the last year.

        GitHub answers 202 with an empty body while it computes the stats;
        that is returned as an empty list.
        """
        try:
            response = await self._request(f"/repos/{owner}/{repo}/stats/commit_activity")
            if response.status_code == 202 or not response.content:
                return []
            data = response.json()
            if not isinstance(data, list):
                raise MalformedResponseError(f"Expected a list of weeks for {owner}/{repo}")
            return data
        except Exception as e:
            logger.error(f"Error fetching repository commit activity for {owner}/{repo}: {e}")
            raise

    async def get_repository_readme(self, owner: str, repo: str) -> Optional[Dict[str, str]]:
        try:
            data = await self._get_object(f"/repos/{owner}/{repo}/readme")
        except GitHubAPIError as e:
            if e.status_code == 404:
                logger.info(f"No README found for {owner}/{repo}")
                return None
            logger.error(f"Error fetching repository README for {owner}/{repo}: {e}")
            raise

        return {
            "content": base64.b64decode(data.get("content") or "").decode("utf-8", errors="replace"),
            "name": data.get("name", ""),
            "url": data.get("html_url", ""),
        }

    async def get_repository_releases(self, owner: str, repo: str, limit: int = 5) -> List[Dict[str, Any]]:
        try:
            return await self._get_list(
                f"/repos/{owner}/{repo}/releases", params={"per_page": limit}
            )
        except Exception as e:
            logger.error(f"Error fetching repository releases for {owner}/{repo}: {e}")
            raise

    async def get_repository_tags(self, owner: str, repo: str, limit: int = 5) -> List[Dict[str, Any]]:
        try:
            return await self._get_list(
                f"/repos/{owner}/{repo}/tags", params={"per_page": limit}
            )
        except Exception as e:
            logger.error(f"Error fetching repository tags for {owner}/{repo}: {e}")
            raise

    async def get_repository_issues(self, owner: str, repo: str, limit: int = 5) -> List[Dict[str, Any]]:
        try:
            return await self._get_list(
                f"/repos/{owner}/{repo}/issues", params={"per_page": limit, "state": "open"}
            )
        except Exception as e:
            logger.error(f"Error fetching repository issues for {owner}/{repo}: {e}")
            raise

    async def get_repository_pull_requests(self, owner: str, repo: str, limit: int = 5) -> List[Dict[str, Any]]:
        try:
            return await self._get_list(
                f"/repos/{owner}/{repo}/pulls", params={"per_page": limit, "state": "open"}
            )
        except Exception as e:
            logger.error(f"Error fetching repository pull requests for {owner}/{repo}: {e}")
            raise

    # =========================================================================
    # RATE LIMIT
    # =========================================================================

    def get_rate_limit(self) -> RateLimitStatus:
        return self.rate_limit.status()

    def has_enough_rate_limit(self, required_calls: int = 1) -> bool:
        return self.rate_limit.has_enough(required_calls)


def parse_repo_from_url(url: str) -> Optional[Tuple[str, str]]:
    """
    Extract (owner, repo) from a GitHub URL.

    >>> parse_repo_from_url("https://github.com/octocat/hello.git")
    ('octocat', 'hello')
    """
    match = REPO_URL_PATTERN.search(url or "")
    if not match:
        return None
    owner, repo = match.group(1), match.group(2)
    if repo.endswith(".git"):
        repo = repo[:-4]
    return owner, repo
