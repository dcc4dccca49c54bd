#!/usr/bin/env python3
"""
Repo Monitor - CLI

Watch a GitHub user's repositories and post Slack notifications for new and
updated repositories.

Usage:
    python run_monitor.py run                 # scheduler only
    python run_monitor.py run --serve         # scheduler + HTTP command API
    python run_monitor.py check               # one check now
    python run_monitor.py check --full        # forced full refresh
    python run_monitor.py list --limit 20
    python run_monitor.py stats --json
"""

from __future__ import annotations

import argparse
import asyncio
import json
import logging
import sys

from dotenv import load_dotenv

from collectors.github import GitHubClient
from storage.snapshot_store import SnapshotStore
from utils.repo_formatting import generate_repository_summary
from utils.slack_notifier import SlackConfig, SlackNotifier
from utils.stats import MonitorStats
from workflows.repo_monitor import CheckStatus, MonitorConfig, RepoMonitor
from workflows.scheduler import MonitorScheduler

logger = logging.getLogger("repo_monitor")


def build_monitor(config: MonitorConfig) -> RepoMonitor:
    """Wire the client, store, notifier and stats for one process."""
    stats = MonitorStats(enabled=config.enable_stats)
    client = GitHubClient(token=config.github_token, stats=stats)
    store = SnapshotStore(config.snapshot_path)
    notifier = SlackNotifier(SlackConfig.from_env(), stats=stats)
    return RepoMonitor(config, client, store, notifier, stats=stats)


async def close_monitor(monitor: RepoMonitor) -> None:
    await monitor.client.close()
    await monitor.notifier.close()


def _banner(title: str) -> None:
    print(f"\n{'='*60}")
    print(title)
    print(f"{'='*60}")


# =============================================================================
# COMMANDS
# =============================================================================

async def run_forever(args, config: MonitorConfig) -> int:
    """Run the scheduler (and optionally the HTTP API) until interrupted."""
    if not config.github_username:
        logger.warning("GITHUB_USERNAME not set; checks will be skipped until one is configured")

    monitor = build_monitor(config)
    scheduler = MonitorScheduler.from_config(monitor)

    try:
        if args.serve:
            import uvicorn
            from api.main import create_app

            app = create_app(monitor, scheduler=scheduler)
            server = uvicorn.Server(
                uvicorn.Config(app, host=args.host, port=args.port, log_level="info")
            )
            await server.serve()
        else:
            await monitor.store.load()
            scheduler.start()
            try:
                await asyncio.Event().wait()
            finally:
                await scheduler.stop()
    finally:
        await close_monitor(monitor)

    return 0


async def run_check(args, config: MonitorConfig) -> int:
    monitor = build_monitor(config)

    _banner("GitHub Repository Check")
    print(f"User: {config.github_username or '(not configured)'}")
    print(f"Full refresh: {args.full}")
    print(f"Snapshot: {config.snapshot_path}")

    try:
        await monitor.store.load()
        result = await monitor.run_check(force_full_refresh=args.full)
    finally:
        await close_monitor(monitor)

    _banner("RESULTS")
    print(f"Status: {result.status.value}")
    print(f"New repositories: {result.new_count}")
    print(f"Updated repositories: {result.updated_count}")
    print(f"Notifications sent: {result.notifications_sent}")
    print(f"Attempts: {result.attempts}")
    if result.error_message:
        print("Error: the repository check failed (see log for details)")

    if args.json:
        print(f"\n{json.dumps(result.to_dict(), indent=2)}")

    return 1 if result.status in (CheckStatus.FAILED, CheckStatus.NOT_CONFIGURED) else 0


async def run_list(args, config: MonitorConfig) -> int:
    if not config.github_username:
        print("No GitHub user has been configured yet (set GITHUB_USERNAME).")
        return 1

    store = SnapshotStore(config.snapshot_path)
    await store.load()
    repos = sorted(await store.get_known_repositories(), key=lambda r: r.updated_at, reverse=True)

    if args.json:
        print(json.dumps([repo.to_dict() for repo in repos[:args.limit]], indent=2, ensure_ascii=False))
        return 0

    _banner(f"Tracked repositories for {config.github_username}")
    if not repos:
        print("No repositories are being tracked yet.")
        return 0

    print(f"Tracking {len(repos)} repositories"
          + (f" (showing the {args.limit} most recently updated)" if len(repos) > args.limit else ""))
    for index, repo in enumerate(repos[:args.limit], start=1):
        print(f"\n{index}. {repo.full_name}")
        print(generate_repository_summary(repo))
        print(f"🔗 {repo.url}")
    return 0


async def run_stats(args, config: MonitorConfig) -> int:
    store = SnapshotStore(config.snapshot_path)
    snapshot = await store.load()

    data = {
        "username": config.github_username,
        "repository_count": len(snapshot.repositories),
        "last_check": snapshot.last_check.isoformat() if snapshot.last_check else None,
        "check_interval_minutes": config.check_interval_minutes,
        "daily_refresh_time": config.daily_refresh_time,
        "notification_channel_configured": bool(SlackConfig.from_env().webhook_url),
    }

    if args.json:
        print(json.dumps(data, indent=2))
        return 0

    _banner("Repo Monitor Status")
    for key, value in data.items():
        print(f"{key}: {value if value is not None else '-'}")
    return 0


# =============================================================================
# ENTRY POINT
# =============================================================================

def build_parser() -> argparse.ArgumentParser:
    parser = argparse.ArgumentParser(
        description="GitHub repository monitor",
        formatter_class=argparse.RawDescriptionHelpFormatter,
        epilog="""
Examples:
  python run_monitor.py run --serve --port 8000
  python run_monitor.py check --full
  python run_monitor.py list --limit 20
        """,
    )
    parser.add_argument("--verbose", action="store_true", help="Enable debug logging")
    parser.add_argument("--env-file", default=".env", help="Path to .env file (default: .env)")

    subparsers = parser.add_subparsers(dest="command", help="Command to run")

    run_parser = subparsers.add_parser("run", help="Run scheduled checks until interrupted")
    run_parser.add_argument("--serve", action="store_true", help="Also serve the HTTP command API")
    run_parser.add_argument("--host", default="127.0.0.1", help="API host (default: 127.0.0.1)")
    run_parser.add_argument("--port", type=int, default=8000, help="API port (default: 8000)")

    check_parser = subparsers.add_parser("check", help="Run one repository check now")
    check_parser.add_argument("--full", action="store_true", help="Force a full snapshot refresh")
    check_parser.add_argument("--json", action="store_true", help="Output full JSON result")

    list_parser = subparsers.add_parser("list", help="List tracked repositories")
    list_parser.add_argument("--limit", type=int, default=10, help="Repositories to show (default: 10)")
    list_parser.add_argument("--json", action="store_true", help="Output JSON")

    stats_parser = subparsers.add_parser("stats", help="Show monitor status")
    stats_parser.add_argument("--json", action="store_true", help="Output JSON")

    return parser


COMMANDS = {
    "run": run_forever,
    "check": run_check,
    "list": run_list,
    "stats": run_stats,
}


def main(argv=None) -> int:
    parser = build_parser()
    args = parser.parse_args(argv)

    if not args.command:
        parser.print_help()
        return 1

    logging.basicConfig(
        level=logging.DEBUG if args.verbose else logging.INFO,
        format="%(asctime)s - %(name)s - %(levelname)s - %(message)s",
    )
    logging.getLogger("httpx").setLevel(logging.WARNING)

    load_dotenv(args.env_file)
    config = MonitorConfig.from_env()
    config.env_file = args.env_file

    try:
        return asyncio.run(COMMANDS[args.command](args, config))
    except KeyboardInterrupt:
        print("\nStopped.")
        return 0


if __name__ == "__main__":
    sys.exit(main())
