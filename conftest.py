"""
Root-level pytest configuration for Repo Monitor.

Configures:
- pytest-asyncio for async test support
- Custom markers (integration, etc.)
- Shared fixtures for repository payloads
"""

from datetime import datetime, timezone

import pytest


def pytest_configure(config):
    """Configure pytest with custom markers and settings."""
    config.addinivalue_line(
        "markers",
        "integration: marks tests as integration tests (may require network access)"
    )


pytest_plugins = ["pytest_asyncio"]


def make_repo_payload(
    repo_id: int,
    name: str = None,
    updated_at: str = "2026-01-01T00:00:00Z",
    owner: str = "octocat",
    **overrides,
) -> dict:
    """GitHub /users/{user}/repos item with sensible defaults."""
    name = name or f"repo-{repo_id}"
    payload = {
        "id": repo_id,
        "name": name,
        "full_name": f"{owner}/{name}",
        "description": f"Description of {name}",
        "html_url": f"https://github.com/{owner}/{name}",
        "url": f"https://api.github.com/repos/{owner}/{name}",
        "language": "Python",
        "stargazers_count": 5,
        "forks_count": 1,
        "watchers_count": 5,
        "updated_at": updated_at,
        "created_at": "2025-06-01T00:00:00Z",
        "default_branch": "main",
        "private": False,
        "topics": ["cli"],
        "license": {"spdx_id": "MIT", "name": "MIT License"},
    }
    payload.update(overrides)
    return payload


@pytest.fixture
def repo_payload():
    """Factory fixture for GitHub repository payloads."""
    return make_repo_payload


@pytest.fixture
def utc():
    """Shortcut for building UTC datetimes in tests."""
    def _utc(*args) -> datetime:
        return datetime(*args, tzinfo=timezone.utc)
    return _utc
