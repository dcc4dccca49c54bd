"""
Slack Notifier for Repo Monitor

Sends notifications to Slack via incoming webhook for:
- Newly created repositories
- Updated repositories (with a list of detected changes)
- Completed full refreshes
- Channel test messages

Usage:
    notifier = SlackNotifier(SlackConfig(webhook_url="https://hooks.slack.com/..."))

    await notifier.notify_new_repository(repo, username="octocat")
    await notifier.notify_repository_update(repo, "octocat", ["Stars: 5 ➡️ 9"])

Environment:
    SLACK_WEBHOOK_URL - Slack incoming webhook URL (the notification destination)
    SLACK_CHANNEL     - Optional channel override
"""

from __future__ import annotations

import logging
import os
from dataclasses import dataclass
from datetime import datetime, timezone
from typing import Any, Dict, List, Optional

import httpx
from tenacity import (
    retry,
    retry_if_exception_type,
    stop_after_attempt,
    wait_exponential,
)

from storage.snapshot_store import TrackedRepository
from utils.repo_formatting import RepoEnrichment, get_language_emoji
from utils.stats import MonitorStats

logger = logging.getLogger(__name__)

FOOTER = "GitHub Monitor Bot"


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class SlackConfig:
    """Slack notifier configuration"""
    webhook_url: Optional[str] = None
    channel: Optional[str] = None  # Override channel (optional)
    username: str = "GitHub Monitor"
    icon_emoji: str = ":octocat:"

    @classmethod
    def from_env(cls) -> SlackConfig:
        """Load from environment variables"""
        return cls(
            webhook_url=os.getenv("SLACK_WEBHOOK_URL") or None,
            channel=os.getenv("SLACK_CHANNEL") or None,
        )


def mask_webhook_url(url: Optional[str]) -> Optional[str]:
    """Hide the secret path of a webhook URL, keeping the host and last chars."""
    if not url:
        return None
    if "/services/" in url:
        head = url.split("/services/", 1)[0]
        return f"{head}/services/…{url[-4:]}"
    return f"…{url[-4:]}"


# =============================================================================
# SLACK NOTIFIER
# =============================================================================

class SlackNotifier:
    """
    Async Slack webhook notifier.

    Never raises: every send returns True/False and failures are logged.
    """

    def __init__(
        self,
        config: Optional[SlackConfig] = None,
        http_client: Optional[httpx.AsyncClient] = None,
        stats: Optional[MonitorStats] = None,
    ):
        """
        Args:
            config: SlackConfig instance (loads from env if None)
            http_client: Injected client (created lazily if None)
            stats: Counters to record sent notifications on
        """
        self.config = config or SlackConfig.from_env()
        self.stats = stats or MonitorStats(enabled=False)
        self._client = http_client

    @property
    def is_configured(self) -> bool:
        """Check if the notification destination is resolvable"""
        return bool(self.config.webhook_url)

    def set_webhook_url(self, webhook_url: Optional[str]) -> None:
        self.config.webhook_url = webhook_url or None

    async def _get_client(self) -> httpx.AsyncClient:
        if self._client is None:
            self._client = httpx.AsyncClient(timeout=30.0)
        return self._client

    async def close(self):
        if self._client:
            await self._client.aclose()
            self._client = None

    # =========================================================================
    # CORE SEND
    # =========================================================================

    @retry(
        stop=stop_after_attempt(3),
        wait=wait_exponential(multiplier=1, min=1, max=10),
        retry=retry_if_exception_type(httpx.TransportError),
        reraise=True,
    )
    async def _post(self, payload: Dict[str, Any]) -> httpx.Response:
        client = await self._get_client()
        return await client.post(self.config.webhook_url, json=payload)

    async def _send(self, payload: Dict[str, Any]) -> bool:
        """
        Send payload to the Slack webhook.

        Returns True if sent successfully, False otherwise.
        """
        if not self.is_configured:
            logger.debug("Slack webhook not configured, skipping notification")
            return False

        if self.config.channel:
            payload["channel"] = self.config.channel
        payload.setdefault("username", self.config.username)
        payload.setdefault("icon_emoji", self.config.icon_emoji)

        try:
            response = await self._post(payload)
        except Exception as e:
            logger.error(f"Failed to send Slack notification: {e}")
            return False

        if response.status_code == 200:
            logger.debug("Slack notification sent successfully")
            self.stats.record_notification()
            return True

        logger.warning(f"Slack webhook returned {response.status_code}: {response.text}")
        return False

    # =========================================================================
    # REPOSITORY NOTIFICATIONS
    # =========================================================================

    async def notify_new_repository(
        self,
        repo: TrackedRepository,
        username: str,
        enrichment: Optional[RepoEnrichment] = None,
    ) -> bool:
        """Notify that `username` published a new repository."""
        blocks = [
            _header(":new: New GitHub Repository"),
            _section(f"*{username}* shared a new GitHub repository!"),
            _fields(_repo_fields(repo)),
        ]
        blocks.extend(_enrichment_blocks(enrichment))
        blocks.append(_link_button(repo.url))
        blocks.append(_context())

        payload = {
            "blocks": blocks,
            "text": f"New repository from {username}: {repo.full_name} {repo.url}",
        }
        return await self._send(payload)

    async def notify_repository_update(
        self,
        repo: TrackedRepository,
        username: str,
        changes: List[str],
        enrichment: Optional[RepoEnrichment] = None,
    ) -> bool:
        """Notify that one of `username`'s repositories was updated."""
        blocks = [
            _header(":arrows_counterclockwise: Repository Update"),
            _section(f"*{username}* updated a GitHub repository!"),
            _fields(_repo_fields(repo)),
        ]

        if changes:
            change_text = "\n".join(f"• {change}" for change in changes)
            blocks.append(_section(f"*Changes:*\n{change_text}"))

        blocks.extend(_enrichment_blocks(enrichment))
        blocks.append(_link_button(repo.url))
        blocks.append(_context())

        payload = {
            "blocks": blocks,
            "text": f"Repository updated by {username}: {repo.full_name} {repo.url}",
        }
        return await self._send(payload)

    async def notify_refresh_completed(self, username: str, repo_count: int) -> bool:
        """Status message after a full snapshot refresh."""
        payload = {
            "blocks": [
                _header(":white_check_mark: Repository Refresh Completed"),
                _section(f"Now tracking *{repo_count}* repositories for *{username}*."),
                _context(),
            ],
            "text": f"Refresh completed: {repo_count} repositories tracked for {username}",
        }
        return await self._send(payload)

    async def send_test_message(self) -> bool:
        """Confirm a newly configured destination works."""
        payload = {
            "blocks": [
                _header(":bell: Notification Channel Test"),
                _section(
                    "This channel is now set up to receive GitHub repository "
                    "notifications."
                ),
                _context(),
            ],
            "text": "GitHub Monitor notification channel test",
        }
        return await self._send(payload)

    async def notify_text(self, message: str, emoji: str = ":information_source:") -> bool:
        return await self._send({"text": f"{emoji} {message}"})


# =============================================================================
# BLOCK BUILDERS
# =============================================================================

def _header(text: str) -> Dict[str, Any]:
    return {"type": "header", "text": {"type": "plain_text", "text": text, "emoji": True}}


def _section(text: str) -> Dict[str, Any]:
    return {"type": "section", "text": {"type": "mrkdwn", "text": text}}


def _fields(fields: List[str]) -> Dict[str, Any]:
    return {"type": "section", "fields": [{"type": "mrkdwn", "text": f} for f in fields]}


def _repo_fields(repo: TrackedRepository) -> List[str]:
    language = repo.language or "Not specified"
    return [
        f"*Repository:*\n{repo.name or 'Not specified'}",
        f"*Description:*\n{repo.description or 'No description'}",
        f"*Language:*\n{get_language_emoji(repo.language)} {language}",
        f"*Stats:*\n⭐ {repo.stars} | 🍴 {repo.forks} | 👀 {repo.watchers}",
    ]


def _enrichment_blocks(enrichment: Optional[RepoEnrichment]) -> List[Dict[str, Any]]:
    if enrichment is None or enrichment.is_empty:
        return []

    fields = []
    if enrichment.languages:
        fields.append(f"*Languages:*\n{enrichment.languages}")
    if enrichment.latest_commit:
        fields.append(f"*Latest Commit:*\n{enrichment.latest_commit}")
    if enrichment.commit_activity:
        fields.append(f"*Activity:*\n{enrichment.commit_activity}")
    return [_fields(fields)]


def _link_button(url: str) -> Dict[str, Any]:
    return {
        "type": "actions",
        "elements": [
            {
                "type": "button",
                "text": {"type": "plain_text", "text": "View on GitHub", "emoji": True},
                "url": url,
                "action_id": "view_repository",
            }
        ],
    }


def _context() -> Dict[str, Any]:
    now = datetime.now(timezone.utc).strftime("%Y-%m-%d %H:%M UTC")
    return {
        "type": "context",
        "elements": [{"type": "mrkdwn", "text": f"{FOOTER} • {now}"}],
    }
