"""
Repo Monitor - diff-and-notify loop

Each check:
1. Skip if the GitHub rate-limit budget is below the threshold
2. Fetch the tracked user's info and repository list
3. Bootstrap (empty snapshot) or forced refresh: replace the snapshot, no
   per-repo notifications
4. Otherwise classify each fetched repo as new / updated / unchanged
5. Replace the snapshot wholesale and persist it
6. Notify new repos, then updated repos, in fetched order

Steps 1-5 run under a fixed-delay retry policy. Notification delivery is
best effort and never retried.

Usage:
    monitor = RepoMonitor(config, client, store, notifier)
    result = await monitor.run_check()
    print(result.status.value, result.new_count, result.updated_count)
"""

from __future__ import annotations

import asyncio
import logging
import os
from dataclasses import dataclass, field
from datetime import datetime, timezone
from enum import Enum
from typing import Any, Dict, Iterable, List, Optional

from collectors.github import GitHubClient
from collectors.retry_strategy import RetryConfig, RetryExhaustedError, with_retry
from storage.snapshot_store import Snapshot, SnapshotStore, TrackedRepository
from utils.repo_formatting import (
    RepoEnrichment,
    format_commit_activity,
    format_language_breakdown,
    format_latest_commit,
)
from utils.slack_notifier import SlackNotifier
from utils.stats import MonitorStats

logger = logging.getLogger(__name__)

FALLBACK_CHANGE = "Repository content updated"
CHANGE_ARROW = "➡️"


# =============================================================================
# CONFIGURATION
# =============================================================================

@dataclass
class MonitorConfig:
    """Configuration for the repository monitor"""

    # Tracked account
    github_username: Optional[str] = None
    github_token: Optional[str] = None

    # Storage
    snapshot_path: str = "data/repositories.json"
    env_file: str = ".env"

    # Scheduling
    check_interval_minutes: int = 30
    startup_delay_seconds: float = 5.0
    daily_refresh_time: str = "03:00"  # HH:MM, UTC

    # Rate-limit guards (remaining calls required)
    rate_limit_threshold: int = 2
    enrichment_rate_limit_threshold: int = 3

    # Retry policy for a whole check
    retry_attempts: int = 3
    retry_delay_seconds: float = 10.0

    # Feature flags
    notify_on_refresh: bool = True
    enrich_notifications: bool = True
    enable_stats: bool = False

    @property
    def retry_config(self) -> RetryConfig:
        return RetryConfig(
            max_attempts=self.retry_attempts,
            delay_seconds=self.retry_delay_seconds,
        )

    @classmethod
    def from_env(cls) -> MonitorConfig:
        """Load configuration from environment variables"""
        return cls(
            github_username=os.getenv("GITHUB_USERNAME") or None,
            github_token=os.getenv("GITHUB_TOKEN") or None,
            snapshot_path=os.getenv("SNAPSHOT_PATH", "data/repositories.json"),
            env_file=os.getenv("ENV_FILE", ".env"),
            check_interval_minutes=int(os.getenv("CHECK_INTERVAL", "30")),
            startup_delay_seconds=float(os.getenv("STARTUP_DELAY_SECONDS", "5")),
            daily_refresh_time=os.getenv("DAILY_REFRESH_TIME", "03:00"),
            rate_limit_threshold=int(os.getenv("RATE_LIMIT_THRESHOLD", "2")),
            enrichment_rate_limit_threshold=int(os.getenv("ENRICHMENT_RATE_LIMIT_THRESHOLD", "3")),
            retry_attempts=int(os.getenv("RETRY_ATTEMPTS", "3")),
            retry_delay_seconds=float(os.getenv("RETRY_DELAY_SECONDS", "10")),
            notify_on_refresh=os.getenv("NOTIFY_ON_REFRESH", "true").lower() == "true",
            enrich_notifications=os.getenv("ENRICH_NOTIFICATIONS", "true").lower() == "true",
            enable_stats=os.getenv("ENABLE_STATS", "false").lower() == "true",
        )


# =============================================================================
# RESULTS
# =============================================================================

class CheckStatus(str, Enum):
    COMPLETED = "completed"
    BOOTSTRAPPED = "bootstrapped"
    REFRESHED = "refreshed"
    SKIPPED_RATE_LIMIT = "skipped_rate_limit"
    SKIPPED_BUSY = "skipped_busy"
    NOT_CONFIGURED = "not_configured"
    FAILED = "failed"


@dataclass
class RepositoryUpdate:
    repo: TrackedRepository
    previous: TrackedRepository
    changes: List[str]


@dataclass
class ChangeSet:
    """Per-check classification. Never persisted."""
    new_repos: List[TrackedRepository] = field(default_factory=list)
    updated_repos: List[RepositoryUpdate] = field(default_factory=list)
    removed_repos: List[TrackedRepository] = field(default_factory=list)

    @property
    def has_changes(self) -> bool:
        return bool(self.new_repos or self.updated_repos)


@dataclass
class CheckResult:
    status: CheckStatus
    new_count: int = 0
    updated_count: int = 0
    removed_count: int = 0
    repository_count: int = 0
    notifications_sent: int = 0
    attempts: int = 0
    error_message: Optional[str] = None
    timestamp: datetime = field(default_factory=lambda: datetime.now(timezone.utc))

    @property
    def succeeded(self) -> bool:
        return self.status in (CheckStatus.COMPLETED, CheckStatus.BOOTSTRAPPED, CheckStatus.REFRESHED)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "status": self.status.value,
            "new_count": self.new_count,
            "updated_count": self.updated_count,
            "removed_count": self.removed_count,
            "repository_count": self.repository_count,
            "notifications_sent": self.notifications_sent,
            "attempts": self.attempts,
            "error_message": self.error_message,
            "timestamp": self.timestamp.isoformat(),
        }


@dataclass
class _AttemptOutcome:
    result: CheckResult
    username: str
    change_set: Optional[ChangeSet] = None
    refreshed: bool = False


# =============================================================================
# DIFF
# =============================================================================

def _display(value: Any) -> str:
    if value is None or value == "":
        return "none"
    return str(value)


def describe_changes(old: TrackedRepository, new: TrackedRepository) -> List[str]:
    """
    Human-readable lines for the fields that changed between two observations.

    Always returns at least one line: an update flagged by timestamp with no
    visible field difference gets a generic line.
    """
    changes = []
    compared = (
        ("Description", old.description, new.description),
        ("Stars", old.stars, new.stars),
        ("Forks", old.forks, new.forks),
        ("Language", old.language, new.language),
    )
    for label, before, after in compared:
        if before != after:
            changes.append(f"{label}: {_display(before)} {CHANGE_ARROW} {_display(after)}")

    return changes or [FALLBACK_CHANGE]


def diff_repositories(snapshot: Snapshot, fetched: Iterable[TrackedRepository]) -> ChangeSet:
    """
    Classify fetched repositories against the snapshot.

    new:       id not in snapshot
    updated:   fetched.updated_at newer than both the stored value and the
               snapshot's last check
    unchanged: everything else, whatever other fields differ
    """
    change_set = ChangeSet()
    seen: set[int] = set()

    for repo in fetched:
        if repo.id in seen:
            logger.debug(f"Duplicate repository id {repo.id} in response, ignoring")
            continue
        seen.add(repo.id)

        known = snapshot.get(repo.id)
        if known is None:
            change_set.new_repos.append(repo)
            continue

        if repo.updated_at < known.updated_at:
            logger.warning(
                f"updated_at went backwards for {repo.full_name}: "
                f"{known.updated_at.isoformat()} -> {repo.updated_at.isoformat()}"
            )
            continue

        newer_than_known = repo.updated_at > known.updated_at
        newer_than_check = snapshot.last_check is None or repo.updated_at > snapshot.last_check
        if newer_than_known and newer_than_check:
            change_set.updated_repos.append(
                RepositoryUpdate(repo=repo, previous=known, changes=describe_changes(known, repo))
            )

    change_set.removed_repos = [
        repo for repo_id, repo in snapshot.repositories.items() if repo_id not in seen
    ]
    return change_set


# =============================================================================
# REPO MONITOR
# =============================================================================

class RepoMonitor:
    """
    Owns the snapshot and runs checks one at a time.

    A check requested while another is in flight is skipped, not queued.
    """

    def __init__(
        self,
        config: MonitorConfig,
        client: GitHubClient,
        store: SnapshotStore,
        notifier: SlackNotifier,
        stats: Optional[MonitorStats] = None,
    ):
        self.config = config
        self.client = client
        self.store = store
        self.notifier = notifier
        self.stats = stats or MonitorStats(enabled=config.enable_stats)
        self._tick_lock = asyncio.Lock()

    @property
    def is_running(self) -> bool:
        return self._tick_lock.locked()

    async def get_known_repositories(self) -> List[TrackedRepository]:
        if not self.store.is_loaded:
            await self.store.load()
        return await self.store.get_known_repositories()

    async def set_tracked_user(self, username: str) -> None:
        """Switch accounts. The old snapshot is dropped so the next check bootstraps."""
        async with self._tick_lock:
            if username == self.config.github_username:
                return
            logger.info(f"Tracked GitHub user changed: {self.config.github_username} -> {username}")
            self.config.github_username = username
            await self.store.clear()

    async def run_check(self, force_full_refresh: bool = False) -> CheckResult:
        """
        Run one check against the tracked account.

        Never raises for remote or persistence failures: they are retried,
        then reported as CheckStatus.FAILED.
        """
        if self._tick_lock.locked():
            logger.info("Repository check already in progress, skipping this trigger")
            return CheckResult(status=CheckStatus.SKIPPED_BUSY)

        async with self._tick_lock:
            return await self._run_check_locked(force_full_refresh)

    async def _run_check_locked(self, force_full_refresh: bool) -> CheckResult:
        if not self.config.github_username:
            logger.error("No GitHub username configured, skipping repository check")
            return CheckResult(
                status=CheckStatus.NOT_CONFIGURED,
                error_message="GitHub username not configured",
            )

        attempts = 0

        def _count_attempt(attempt: int) -> None:
            nonlocal attempts
            attempts = attempt

        logger.info(
            f"Checking repositories for {self.config.github_username} "
            f"(force_full_refresh={force_full_refresh})"
        )

        try:
            outcome = await with_retry(
                lambda: self._attempt(force_full_refresh),
                self.config.retry_config,
                on_attempt=_count_attempt,
            )
        except RetryExhaustedError as e:
            logger.error(
                f"Repository check failed after {e.attempts} attempts, "
                f"waiting for next scheduled run: {e.last_error}"
            )
            return CheckResult(
                status=CheckStatus.FAILED,
                attempts=attempts,
                error_message=str(e.last_error),
            )

        outcome.result.attempts = attempts

        if outcome.refreshed:
            await self._notify_refresh(outcome)
        elif outcome.change_set is not None:
            await self._notify_changes(outcome)

        return outcome.result

    async def _attempt(self, force_full_refresh: bool) -> _AttemptOutcome:
        username = self.config.github_username

        if not self.client.has_enough_rate_limit(self.config.rate_limit_threshold):
            rate_limit = self.client.get_rate_limit()
            logger.warning(
                f"Not enough GitHub rate limit for a check "
                f"(remaining={rate_limit.remaining}, reset={rate_limit.reset}), skipping"
            )
            return _AttemptOutcome(
                result=CheckResult(status=CheckStatus.SKIPPED_RATE_LIMIT),
                username=username,
            )

        if not self.store.is_loaded:
            await self.store.load()

        user_info = await self.client.get_user_info(username)
        payload = await self.client.get_user_repositories(username)
        fetched = [TrackedRepository.from_github(item) for item in payload]
        display_name = user_info.get("login") or username

        snapshot = await self.store.get()
        now = datetime.now(timezone.utc)

        if snapshot.is_empty or force_full_refresh:
            stored = await self.store.replace(fetched, last_check=now)
            self.stats.record_check_time(now)
            status = CheckStatus.REFRESHED if force_full_refresh else CheckStatus.BOOTSTRAPPED
            logger.info(
                f"{'Full refresh' if force_full_refresh else 'Initial load'}: "
                f"{len(stored.repositories)} repositories found for {username}"
            )
            return _AttemptOutcome(
                result=CheckResult(status=status, repository_count=len(stored.repositories)),
                username=display_name,
                refreshed=force_full_refresh,
            )

        change_set = diff_repositories(snapshot, fetched)
        stored = await self.store.replace(fetched, last_check=now)
        self.stats.record_check_time(now)

        for removed in change_set.removed_repos:
            logger.info(f"Repository {removed.full_name} (id={removed.id}) no longer listed, dropping it")

        logger.info(
            f"Check complete for {username}: {len(change_set.new_repos)} new, "
            f"{len(change_set.updated_repos)} updated, {len(change_set.removed_repos)} removed"
        )

        return _AttemptOutcome(
            result=CheckResult(
                status=CheckStatus.COMPLETED,
                new_count=len(change_set.new_repos),
                updated_count=len(change_set.updated_repos),
                removed_count=len(change_set.removed_repos),
                repository_count=len(stored.repositories),
            ),
            username=display_name,
            change_set=change_set,
        )

    # =========================================================================
    # NOTIFICATIONS
    # =========================================================================

    async def _notify_refresh(self, outcome: _AttemptOutcome) -> None:
        if not self.config.notify_on_refresh:
            return
        if not self.notifier.is_configured:
            logger.error("Notification destination not configured, refresh status not sent")
            return
        if await self.notifier.notify_refresh_completed(outcome.username, outcome.result.repository_count):
            outcome.result.notifications_sent += 1

    async def _notify_changes(self, outcome: _AttemptOutcome) -> None:
        change_set = outcome.change_set
        self.stats.record_new_repo(len(change_set.new_repos))
        self.stats.record_update(len(change_set.updated_repos))

        if not change_set.has_changes:
            return

        if not self.notifier.is_configured:
            logger.error(
                f"Notification destination not configured, dropping "
                f"{len(change_set.new_repos) + len(change_set.updated_repos)} notifications"
            )
            return

        for repo in change_set.new_repos:
            enrichment = await self._enrich(repo)
            if await self.notifier.notify_new_repository(repo, outcome.username, enrichment):
                outcome.result.notifications_sent += 1

        for update in change_set.updated_repos:
            enrichment = await self._enrich(update.repo)
            if await self.notifier.notify_repository_update(
                update.repo, outcome.username, update.changes, enrichment
            ):
                outcome.result.notifications_sent += 1

    async def _enrich(self, repo: TrackedRepository) -> Optional[RepoEnrichment]:
        """Best-effort extra details for a notification. Never raises."""
        if not self.config.enrich_notifications:
            return None

        if not self.client.has_enough_rate_limit(self.config.enrichment_rate_limit_threshold):
            logger.info(f"Skipping enrichment for {repo.full_name}: rate limit budget low")
            return None

        owner, name = repo.owner, repo.name
        enrichment = RepoEnrichment()

        try:
            languages = await self.client.get_repository_languages(owner, name)
            enrichment.languages = format_language_breakdown(languages) or None
        except Exception as e:
            logger.warning(f"Could not fetch languages for {repo.full_name}: {e}")

        try:
            commits = await self.client.get_repository_commits(owner, name, limit=1)
            if commits:
                enrichment.latest_commit = format_latest_commit(commits[0])
        except Exception as e:
            logger.warning(f"Could not fetch latest commit for {repo.full_name}: {e}")

        try:
            activity = await self.client.get_repository_commit_activity(owner, name)
            if activity:
                enrichment.commit_activity = format_commit_activity(activity)
        except Exception as e:
            logger.warning(f"Could not fetch commit activity for {repo.full_name}: {e}")

        return enrichment
