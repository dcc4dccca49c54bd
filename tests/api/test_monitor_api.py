"""
Tests for the Repo Monitor HTTP command surface.

GitHub is mocked; the snapshot store and .env file live in tmp_path.
"""

import json
from datetime import datetime, timezone
from unittest.mock import AsyncMock, MagicMock

import httpx
import pytest
from fastapi.testclient import TestClient

from api.main import GENERIC_ERROR, create_app
from collectors.github import GitHubAPIError
from storage.snapshot_store import Snapshot, SnapshotStore, TrackedRepository
from utils.rate_limiter import RateLimitStatus
from utils.slack_notifier import SlackConfig, SlackNotifier
from utils.stats import MonitorStats
from workflows.repo_monitor import CheckResult, CheckStatus, MonitorConfig, RepoMonitor

WEBHOOK = "https://hooks.slack.com/services/T000/B000/XXXXabcd"


@pytest.fixture(autouse=True)
def isolated_env(monkeypatch):
    """Endpoints write settings into os.environ; restore them after each test."""
    for key in ("GITHUB_USERNAME", "SLACK_WEBHOOK_URL", "SLACK_CHANNEL"):
        monkeypatch.setenv(key, "")


@pytest.fixture
def slack_requests():
    return []


@pytest.fixture
def monitor(tmp_path, slack_requests):
    def handler(request: httpx.Request) -> httpx.Response:
        slack_requests.append(json.loads(request.content))
        return httpx.Response(200, text="ok")

    config = MonitorConfig(
        github_username="octocat",
        snapshot_path=str(tmp_path / "repositories.json"),
        env_file=str(tmp_path / ".env"),
        retry_delay_seconds=0,
    )
    client = MagicMock()
    client.has_enough_rate_limit = MagicMock(return_value=True)
    client.get_rate_limit = MagicMock(return_value=RateLimitStatus(remaining=4999, reset=None))
    client.get_user_info = AsyncMock(return_value={
        "login": "octocat",
        "name": "The Octocat",
        "public_repos": 8,
        "followers": 100,
        "created_at": "2011-01-25T18:44:36Z",
        "html_url": "https://github.com/octocat",
    })
    client.get_user_repositories = AsyncMock(return_value=[])
    notifier = SlackNotifier(
        SlackConfig(),
        http_client=httpx.AsyncClient(transport=httpx.MockTransport(handler)),
    )
    return RepoMonitor(
        config,
        client,
        SnapshotStore(config.snapshot_path),
        notifier,
        stats=MonitorStats(enabled=True),
    )


@pytest.fixture
def api(monitor):
    with TestClient(create_app(monitor), raise_server_exceptions=False) as client:
        yield client


async def seed(monitor, count):
    repos = [
        TrackedRepository(
            id=i,
            name=f"repo-{i}",
            full_name=f"octocat/repo-{i}",
            description=None,
            url=f"https://github.com/octocat/repo-{i}",
            api_url=f"https://api.github.com/repos/octocat/repo-{i}",
            language="Python",
            stars=i,
            forks=0,
            watchers=i,
            updated_at=datetime(2026, 1, i, tzinfo=timezone.utc),
            created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
        )
        for i in range(1, count + 1)
    ]
    await monitor.store.save(Snapshot.from_repositories(repos, last_check=datetime(2026, 2, 1, tzinfo=timezone.utc)))


class TestHealth:

    def test_health(self, api):
        response = api.get("/health")

        assert response.status_code == 200
        assert response.json()["status"] == "healthy"
        assert response.json()["scheduler_running"] is False


class TestTrackedUser:

    def test_get_user(self, api):
        response = api.get("/api/v1/monitor/user")

        assert response.status_code == 200
        data = response.json()
        assert data["username"] == "octocat"
        assert data["public_repos"] == 8
        assert data["check_interval_minutes"] == 30

    def test_get_user_not_configured(self, api, monitor):
        monitor.config.github_username = None

        response = api.get("/api/v1/monitor/user")

        assert response.status_code == 404

    def test_get_user_fetch_failure(self, api, monitor):
        monitor.client.get_user_info.side_effect = httpx.ConnectError("down")

        response = api.get("/api/v1/monitor/user")

        assert response.status_code == 502

    def test_set_user_persists_and_resets(self, api, monitor, tmp_path):
        response = api.put("/api/v1/monitor/user", json={"username": "hubot"})

        assert response.status_code == 200
        assert monitor.config.github_username == "hubot"
        assert "GITHUB_USERNAME=hubot" in (tmp_path / ".env").read_text()

    def test_set_unknown_user(self, api, monitor, tmp_path):
        monitor.client.get_user_info.side_effect = GitHubAPIError("Not Found", status_code=404)

        response = api.put("/api/v1/monitor/user", json={"username": "nobody-here"})

        assert response.status_code == 404
        assert "not found" in response.json()["detail"]
        assert monitor.config.github_username == "octocat"
        assert not (tmp_path / ".env").exists()

    def test_set_user_validation(self, api):
        assert api.put("/api/v1/monitor/user", json={"username": ""}).status_code == 422


class TestCheck:

    def test_check_bootstraps(self, api, monitor):
        response = api.post("/api/v1/monitor/check")

        assert response.status_code == 200
        assert response.json()["status"] == "bootstrapped"

    def test_check_not_configured(self, api, monitor):
        monitor.config.github_username = None

        assert api.post("/api/v1/monitor/check").status_code == 404

    def test_check_failure_is_generic(self, api, monitor):
        monitor.client.get_user_info.side_effect = httpx.ConnectError("secret internal detail")

        response = api.post("/api/v1/monitor/check")

        assert response.status_code == 500
        assert response.json()["detail"] == "The repository check failed."
        assert "secret" not in response.text

    def test_check_busy(self, api, monitor):
        monitor.run_check = AsyncMock(return_value=CheckResult(status=CheckStatus.SKIPPED_BUSY))

        response = api.post("/api/v1/monitor/check")

        assert response.status_code == 200
        assert response.json()["message"] == "A repository check is already running."


class TestListRepositories:

    def test_empty_is_distinct_from_not_configured(self, api):
        response = api.get("/api/v1/monitor/repos")

        assert response.status_code == 200
        assert response.json()["total"] == 0
        assert response.json()["message"] == "No repositories are being tracked yet."

    def test_not_configured(self, api, monitor):
        monitor.config.github_username = None

        assert api.get("/api/v1/monitor/repos").status_code == 404

    def test_most_recent_first_with_limit(self, api, monitor):
        api.portal.call(seed, monitor, 5)

        response = api.get("/api/v1/monitor/repos", params={"limit": 2})

        data = response.json()
        assert data["total"] == 5
        assert data["showing"] == 2
        assert [item["id"] for item in data["items"]] == [5, 4]
        assert "Showing the 2 most recently updated" in data["message"]


class TestChannel:

    def test_channel_not_configured(self, api):
        assert api.get("/api/v1/monitor/channel").status_code == 404

    def test_set_channel_sends_test_message(self, api, monitor, slack_requests, tmp_path):
        response = api.put("/api/v1/monitor/channel", json={"webhook_url": WEBHOOK, "channel": "#github"})

        assert response.status_code == 200
        data = response.json()
        assert data["test_message_sent"] is True
        assert data["webhook_url"].endswith("…abcd")
        assert len(slack_requests) == 1
        assert monitor.notifier.is_configured
        assert f"SLACK_WEBHOOK_URL={WEBHOOK}" in (tmp_path / ".env").read_text()

        masked = api.get("/api/v1/monitor/channel").json()
        assert "XXXX" not in masked["webhook_url"]
        assert masked["channel"] == "#github"

    def test_set_channel_rejects_plain_http(self, api, slack_requests):
        response = api.put("/api/v1/monitor/channel", json={"webhook_url": "http://example.com/hook"})

        assert response.status_code == 422
        assert slack_requests == []


class TestStats:

    def test_stats(self, api, monitor):
        api.portal.call(seed, monitor, 3)

        response = api.get("/api/v1/stats")

        data = response.json()
        assert data["repository_count"] == 3
        assert data["rate_limit_remaining"] == 4999
        assert "formatted_uptime" in data["stats"]
        assert "max_rss_mb" in data["stats"]["system"]
        assert "load_average" in data["stats"]["system"]

    def test_unexpected_error_is_generic(self, api, monitor):
        monitor.client.get_rate_limit.side_effect = RuntimeError("token abc123 leaked")

        response = api.get("/api/v1/stats")

        assert response.status_code == 500
        assert response.json()["detail"] == GENERIC_ERROR
