"""
Bot Statistics for Repo Monitor

In-memory counters for API usage and notification activity, plus process
memory and host load read on demand. Nothing here is persisted; counters
restart with the process.

Usage:
    stats = MonitorStats(enabled=True)
    stats.increment_api_calls()
    stats.snapshot()["formatted_uptime"]
"""

from __future__ import annotations

import logging
import os
import platform
import sys
from dataclasses import dataclass, field
from datetime import datetime, timezone
from typing import Any, Dict, Optional

from utils.repo_formatting import format_uptime

logger = logging.getLogger(__name__)


@dataclass
class MonitorStats:
    """Counters updated by the client, the monitor loop and the notifier."""

    enabled: bool = True
    start_time: datetime = field(default_factory=lambda: datetime.now(timezone.utc))
    api_calls: int = 0
    new_repos_found: int = 0
    updates_detected: int = 0
    notifications_sent: int = 0
    errors: int = 0
    last_check: Optional[datetime] = None

    def increment_api_calls(self) -> None:
        if self.enabled:
            self.api_calls += 1

    def record_new_repo(self, count: int = 1) -> None:
        if self.enabled:
            self.new_repos_found += count

    def record_update(self, count: int = 1) -> None:
        if self.enabled:
            self.updates_detected += count

    def record_notification(self) -> None:
        if self.enabled:
            self.notifications_sent += 1

    def record_error(self) -> None:
        if self.enabled:
            self.errors += 1

    def record_check_time(self, when: Optional[datetime] = None) -> None:
        if self.enabled:
            self.last_check = when or datetime.now(timezone.utc)

    @property
    def uptime_seconds(self) -> float:
        return (datetime.now(timezone.utc) - self.start_time).total_seconds()

    def snapshot(self) -> Dict[str, Any]:
        """Current counters as a JSON-friendly dict."""
        uptime = self.uptime_seconds
        return {
            "enabled": self.enabled,
            "start_time": self.start_time.isoformat(),
            "uptime_seconds": int(uptime),
            "formatted_uptime": format_uptime(uptime),
            "api_calls": self.api_calls,
            "new_repos_found": self.new_repos_found,
            "updates_detected": self.updates_detected,
            "notifications_sent": self.notifications_sent,
            "errors": self.errors,
            "last_check": self.last_check.isoformat() if self.last_check else None,
            "system": system_snapshot(),
        }


def system_snapshot() -> Dict[str, Any]:
    """Process memory and host load, where the platform reports them."""
    data: Dict[str, Any] = {
        "python_version": platform.python_version(),
        "cpu_count": os.cpu_count(),
        "max_rss_mb": None,
        "load_average": None,
    }

    if hasattr(os, "getloadavg"):
        try:
            data["load_average"] = [round(value, 2) for value in os.getloadavg()]
        except OSError as e:
            logger.debug(f"Load average unavailable: {e}")

    if sys.platform != "win32":
        import resource

        max_rss = resource.getrusage(resource.RUSAGE_SELF).ru_maxrss
        # KiB on Linux, bytes on macOS
        divisor = 1024 * 1024 if sys.platform == "darwin" else 1024
        data["max_rss_mb"] = round(max_rss / divisor, 1)

    return data
