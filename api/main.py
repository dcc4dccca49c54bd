"""
Repo Monitor API

Operator command surface over HTTP: trigger a check, list tracked
repositories, read/change the tracked account and the notification
destination, and read bot statistics.

Run:
    python run_monitor.py run --serve --port 8000
"""

from __future__ import annotations

import logging
import platform
from contextlib import asynccontextmanager
from datetime import datetime, timezone
from typing import List, Optional

from fastapi import FastAPI, HTTPException, Query, Request
from fastapi.responses import JSONResponse
from pydantic import BaseModel, Field

from collectors.github import GitHubAPIError
from utils.settings_file import update_env_value
from utils.slack_notifier import mask_webhook_url
from workflows.repo_monitor import CheckStatus, RepoMonitor
from workflows.scheduler import MonitorScheduler

logger = logging.getLogger(__name__)

API_VERSION = "1.0.0"
GENERIC_ERROR = "An error occurred while running the command."


class HealthResponse(BaseModel):
    status: str
    timestamp: str
    version: str
    python_version: str
    scheduler_running: bool = False


class TrackedUserResponse(BaseModel):
    username: str
    name: Optional[str] = None
    public_repos: int = 0
    followers: int = 0
    created_at: Optional[str] = None
    profile_url: Optional[str] = None
    avatar_url: Optional[str] = None
    check_interval_minutes: int


class SetUserRequest(BaseModel):
    username: str = Field(..., min_length=1, max_length=39)


class CheckResponse(BaseModel):
    status: str
    message: str
    new_count: int = 0
    updated_count: int = 0
    notifications_sent: int = 0


class RepositorySummary(BaseModel):
    id: int
    name: str
    full_name: str
    description: Optional[str] = None
    language: Optional[str] = None
    stars: int = 0
    forks: int = 0
    updated_at: str
    url: str


class RepositoryListResponse(BaseModel):
    username: str
    total: int
    showing: int
    message: str
    items: List[RepositorySummary] = Field(default_factory=list)


class ChannelResponse(BaseModel):
    webhook_url: str
    channel: Optional[str] = None
    check_interval_minutes: int


class SetChannelRequest(BaseModel):
    webhook_url: str = Field(..., min_length=8)
    channel: Optional[str] = None


class SetChannelResponse(ChannelResponse):
    test_message_sent: bool


class StatsResponse(BaseModel):
    username: Optional[str] = None
    repository_count: int
    check_interval_minutes: int
    rate_limit_remaining: Optional[int] = None
    rate_limit_reset: Optional[str] = None
    rate_limit_reset_minutes: Optional[int] = None
    stats: dict


CHECK_MESSAGES = {
    CheckStatus.COMPLETED: "Repository check completed.",
    CheckStatus.BOOTSTRAPPED: "Initial repository load completed.",
    CheckStatus.REFRESHED: "Full refresh completed.",
    CheckStatus.SKIPPED_RATE_LIMIT: "Skipped: GitHub rate limit is too low, try again later.",
    CheckStatus.SKIPPED_BUSY: "A repository check is already running.",
}


def create_app(
    monitor: RepoMonitor,
    scheduler: Optional[MonitorScheduler] = None,
) -> FastAPI:
    """Build the API around a shared monitor (and optionally run its scheduler)."""

    @asynccontextmanager
    async def lifespan(app: FastAPI):
        if not monitor.store.is_loaded:
            await monitor.store.load()
        if scheduler is not None:
            scheduler.start()
        try:
            yield
        finally:
            if scheduler is not None:
                await scheduler.stop()

    app = FastAPI(
        title="Repo Monitor API",
        description="Watches a GitHub user's repositories and posts chat notifications",
        version=API_VERSION,
        lifespan=lifespan,
    )

    @app.exception_handler(Exception)
    async def unhandled_exception_handler(request: Request, exc: Exception):
        logger.exception(f"Error handling {request.method} {request.url.path}")
        return JSONResponse(status_code=500, content={"detail": GENERIC_ERROR})

    @app.get("/health", response_model=HealthResponse, tags=["System"])
    async def health_check():
        return HealthResponse(
            status="healthy",
            timestamp=datetime.now(timezone.utc).isoformat(),
            version=API_VERSION,
            python_version=platform.python_version(),
            scheduler_running=bool(scheduler and scheduler.is_running),
        )

    # =========================================================================
    # TRACKED USER
    # =========================================================================

    @app.get("/api/v1/monitor/user", response_model=TrackedUserResponse, tags=["Monitor"])
    async def get_tracked_user():
        username = monitor.config.github_username
        if not username:
            raise HTTPException(status_code=404, detail="No GitHub user has been configured yet.")

        try:
            info = await monitor.client.get_user_info(username)
        except Exception:
            logger.exception("Error getting GitHub user info")
            raise HTTPException(status_code=502, detail="Failed to fetch GitHub user information.")

        return TrackedUserResponse(
            username=username,
            name=info.get("name"),
            public_repos=int(info.get("public_repos") or 0),
            followers=int(info.get("followers") or 0),
            created_at=info.get("created_at"),
            profile_url=info.get("html_url"),
            avatar_url=info.get("avatar_url"),
            check_interval_minutes=monitor.config.check_interval_minutes,
        )

    @app.put("/api/v1/monitor/user", response_model=TrackedUserResponse, tags=["Monitor"])
    async def set_tracked_user(body: SetUserRequest):
        username = body.username.strip()

        try:
            info = await monitor.client.get_user_info(username)
        except GitHubAPIError as e:
            if e.status_code == 404:
                raise HTTPException(status_code=404, detail=f'GitHub user "{username}" not found.')
            logger.exception(f'Error setting GitHub user to "{username}"')
            raise HTTPException(status_code=502, detail="Failed to set the GitHub user.")
        except Exception:
            logger.exception(f'Error setting GitHub user to "{username}"')
            raise HTTPException(status_code=502, detail="Failed to set the GitHub user.")

        update_env_value("GITHUB_USERNAME", username, monitor.config.env_file)
        await monitor.set_tracked_user(username)
        logger.info(f'Monitored GitHub user set to "{username}"')

        return TrackedUserResponse(
            username=username,
            name=info.get("name"),
            public_repos=int(info.get("public_repos") or 0),
            followers=int(info.get("followers") or 0),
            created_at=info.get("created_at"),
            profile_url=info.get("html_url"),
            avatar_url=info.get("avatar_url"),
            check_interval_minutes=monitor.config.check_interval_minutes,
        )

    # =========================================================================
    # CHECK / LIST
    # =========================================================================

    @app.post("/api/v1/monitor/check", response_model=CheckResponse, tags=["Monitor"])
    async def check_now():
        if not monitor.config.github_username:
            raise HTTPException(status_code=404, detail="No GitHub user has been configured yet.")

        try:
            result = await monitor.run_check(force_full_refresh=False)
        except Exception:
            logger.exception("Error during manual repository check")
            raise HTTPException(status_code=500, detail="The repository check failed.")

        if result.status == CheckStatus.FAILED:
            raise HTTPException(status_code=500, detail="The repository check failed.")

        return CheckResponse(
            status=result.status.value,
            message=CHECK_MESSAGES.get(result.status, "Repository check finished."),
            new_count=result.new_count,
            updated_count=result.updated_count,
            notifications_sent=result.notifications_sent,
        )

    @app.get("/api/v1/monitor/repos", response_model=RepositoryListResponse, tags=["Monitor"])
    async def list_repositories(
        limit: int = Query(10, ge=1, le=100, description="Most recently updated repositories to show"),
    ):
        username = monitor.config.github_username
        if not username:
            raise HTTPException(status_code=404, detail="No GitHub user has been configured yet.")

        repos = await monitor.get_known_repositories()
        if not repos:
            return RepositoryListResponse(
                username=username,
                total=0,
                showing=0,
                message="No repositories are being tracked yet.",
            )

        ordered = sorted(repos, key=lambda r: r.updated_at, reverse=True)[:limit]
        message = f"Tracking {len(repos)} repositories for {username}."
        if len(repos) > limit:
            message += f" Showing the {limit} most recently updated."

        return RepositoryListResponse(
            username=username,
            total=len(repos),
            showing=len(ordered),
            message=message,
            items=[
                RepositorySummary(
                    id=repo.id,
                    name=repo.name,
                    full_name=repo.full_name,
                    description=repo.description,
                    language=repo.language,
                    stars=repo.stars,
                    forks=repo.forks,
                    updated_at=repo.updated_at.isoformat(),
                    url=repo.url,
                )
                for repo in ordered
            ],
        )

    # =========================================================================
    # NOTIFICATION CHANNEL
    # =========================================================================

    @app.get("/api/v1/monitor/channel", response_model=ChannelResponse, tags=["Channel"])
    async def get_channel():
        if not monitor.notifier.is_configured:
            raise HTTPException(status_code=404, detail="No notification channel has been configured yet.")

        return ChannelResponse(
            webhook_url=mask_webhook_url(monitor.notifier.config.webhook_url),
            channel=monitor.notifier.config.channel,
            check_interval_minutes=monitor.config.check_interval_minutes,
        )

    @app.put("/api/v1/monitor/channel", response_model=SetChannelResponse, tags=["Channel"])
    async def set_channel(body: SetChannelRequest):
        webhook_url = body.webhook_url.strip()
        if not webhook_url.startswith("https://"):
            raise HTTPException(status_code=422, detail="Webhook URL must use https.")

        update_env_value("SLACK_WEBHOOK_URL", webhook_url, monitor.config.env_file)
        monitor.notifier.set_webhook_url(webhook_url)
        if body.channel:
            update_env_value("SLACK_CHANNEL", body.channel, monitor.config.env_file)
            monitor.notifier.config.channel = body.channel

        sent = await monitor.notifier.send_test_message()
        if not sent:
            logger.warning("Notification channel saved but the test message could not be delivered")

        return SetChannelResponse(
            webhook_url=mask_webhook_url(webhook_url),
            channel=monitor.notifier.config.channel,
            check_interval_minutes=monitor.config.check_interval_minutes,
            test_message_sent=sent,
        )

    # =========================================================================
    # STATS
    # =========================================================================

    @app.get("/api/v1/stats", response_model=StatsResponse, tags=["System"])
    async def get_stats():
        repos = await monitor.get_known_repositories()
        rate_limit = monitor.client.get_rate_limit()

        return StatsResponse(
            username=monitor.config.github_username,
            repository_count=len(repos),
            check_interval_minutes=monitor.config.check_interval_minutes,
            rate_limit_remaining=rate_limit.remaining,
            rate_limit_reset=rate_limit.reset.isoformat() if rate_limit.reset else None,
            rate_limit_reset_minutes=rate_limit.minutes_until_reset(),
            stats=monitor.stats.snapshot(),
        )

    return app
