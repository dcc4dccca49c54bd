"""
Workflows for Repo Monitor

- repo_monitor.py: diff-and-notify loop
- scheduler.py: startup / interval / daily refresh triggers

Usage:
    from workflows.repo_monitor import RepoMonitor, MonitorConfig
    monitor = RepoMonitor(MonitorConfig.from_env(), client, store, notifier)
    result = await monitor.run_check()
"""

# Lazy imports to avoid circular dependencies
__all__ = [
    "CheckResult",
    "CheckStatus",
    "MonitorConfig",
    "MonitorScheduler",
    "RepoMonitor",
]


def __getattr__(name):
    """Lazy import to avoid circular dependencies."""
    if name == "MonitorScheduler":
        from workflows.scheduler import MonitorScheduler
        return MonitorScheduler
    if name in ("CheckResult", "CheckStatus", "MonitorConfig", "RepoMonitor"):
        from workflows import repo_monitor
        return getattr(repo_monitor, name)
    raise AttributeError(f"module {__name__!r} has no attribute {name!r}")
