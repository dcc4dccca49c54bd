"""
Snapshot Store for Repo Monitor

Persists the last-known state of the tracked account's repositories as a
single JSON document:

    {
      "lastCheck": "2026-01-01T00:00:00+00:00",
      "repositories": [{"id": 1, "name": "...", "updatedAt": "...", ...}]
    }

Loading never raises: a missing or malformed file is treated as "no prior
state". Saving rewrites the whole file through a temp file + os.replace.
File I/O runs in a worker thread so the event loop never blocks on disk.

Usage:
    store = SnapshotStore("data/repositories.json")
    snapshot = await store.load()
    await store.replace(fetched_repos, last_check=datetime.now(timezone.utc))
"""

from __future__ import annotations

import asyncio
import json
import logging
import os
import tempfile
from dataclasses import dataclass, field
from datetime import datetime, timezone
from pathlib import Path
from typing import Any, Dict, Iterable, List, Optional

logger = logging.getLogger(__name__)


def parse_timestamp(value: Any) -> datetime:
    """Parse an ISO-8601 timestamp (GitHub's trailing Z included) as UTC-aware."""
    if isinstance(value, datetime):
        parsed = value
    else:
        text = str(value)
        if text.endswith("Z"):
            text = text[:-1] + "+00:00"
        parsed = datetime.fromisoformat(text)

    if parsed.tzinfo is None:
        parsed = parsed.replace(tzinfo=timezone.utc)
    return parsed


# =============================================================================
# DATA CLASSES
# =============================================================================

@dataclass
class TrackedRepository:
    """One remote repository's last-observed state."""
    id: int
    name: str
    full_name: str
    description: Optional[str]
    url: str
    api_url: str
    language: Optional[str]
    stars: int
    forks: int
    watchers: int
    updated_at: datetime
    created_at: datetime
    default_branch: str = "main"
    is_private: bool = False
    topics: List[str] = field(default_factory=list)
    license: Optional[str] = None

    @property
    def owner(self) -> str:
        return self.full_name.split("/", 1)[0]

    @classmethod
    def from_github(cls, payload: Dict[str, Any]) -> TrackedRepository:
        """Build from a GitHub /repos JSON object."""
        license_info = payload.get("license") or {}
        license_name = license_info.get("spdx_id") or license_info.get("name")
        if license_name == "NOASSERTION":
            license_name = license_info.get("name")

        topics: List[str] = []
        for topic in payload.get("topics") or []:
            if topic not in topics:
                topics.append(topic)

        return cls(
            id=int(payload["id"]),
            name=payload["name"],
            full_name=payload.get("full_name") or payload["name"],
            description=payload.get("description"),
            url=payload.get("html_url", ""),
            api_url=payload.get("url", ""),
            language=payload.get("language"),
            stars=max(0, int(payload.get("stargazers_count") or 0)),
            forks=max(0, int(payload.get("forks_count") or 0)),
            watchers=max(0, int(payload.get("watchers_count") or 0)),
            updated_at=parse_timestamp(payload["updated_at"]),
            created_at=parse_timestamp(payload.get("created_at") or payload["updated_at"]),
            default_branch=payload.get("default_branch") or "main",
            is_private=bool(payload.get("private", False)),
            topics=topics,
            license=license_name,
        )

    def to_dict(self) -> Dict[str, Any]:
        return {
            "id": self.id,
            "name": self.name,
            "fullName": self.full_name,
            "description": self.description,
            "url": self.url,
            "apiUrl": self.api_url,
            "language": self.language,
            "stars": self.stars,
            "forks": self.forks,
            "watchers": self.watchers,
            "updatedAt": self.updated_at.isoformat(),
            "createdAt": self.created_at.isoformat(),
            "defaultBranch": self.default_branch,
            "isPrivate": self.is_private,
            "topics": list(self.topics),
            "license": self.license,
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> TrackedRepository:
        return cls(
            id=int(data["id"]),
            name=data["name"],
            full_name=data.get("fullName") or data["name"],
            description=data.get("description"),
            url=data.get("url", ""),
            api_url=data.get("apiUrl", ""),
            language=data.get("language"),
            stars=int(data.get("stars") or 0),
            forks=int(data.get("forks") or 0),
            watchers=int(data.get("watchers") or 0),
            updated_at=parse_timestamp(data["updatedAt"]),
            created_at=parse_timestamp(data.get("createdAt") or data["updatedAt"]),
            default_branch=data.get("defaultBranch") or "main",
            is_private=bool(data.get("isPrivate", False)),
            topics=list(data.get("topics") or []),
            license=data.get("license"),
        )


@dataclass
class Snapshot:
    """Persisted monitor state: last check time + repositories keyed by id."""
    last_check: Optional[datetime] = None
    repositories: Dict[int, TrackedRepository] = field(default_factory=dict)

    @property
    def is_empty(self) -> bool:
        return not self.repositories

    def get(self, repo_id: int) -> Optional[TrackedRepository]:
        return self.repositories.get(repo_id)

    def copy(self) -> Snapshot:
        return Snapshot(last_check=self.last_check, repositories=dict(self.repositories))

    @classmethod
    def from_repositories(
        cls,
        repositories: Iterable[TrackedRepository],
        last_check: Optional[datetime] = None,
    ) -> Snapshot:
        """Build keyed by id; a repeated id keeps its first occurrence."""
        keyed: Dict[int, TrackedRepository] = {}
        for repo in repositories:
            keyed.setdefault(repo.id, repo)
        return cls(last_check=last_check, repositories=keyed)

    def to_dict(self) -> Dict[str, Any]:
        return {
            "lastCheck": self.last_check.isoformat() if self.last_check else None,
            "repositories": [repo.to_dict() for repo in self.repositories.values()],
        }

    @classmethod
    def from_dict(cls, data: Dict[str, Any]) -> Snapshot:
        if not isinstance(data, dict):
            raise ValueError("Snapshot document must be a JSON object")

        records = data.get("repositories") or []
        if not isinstance(records, list):
            raise ValueError("'repositories' must be a list")

        last_check = data.get("lastCheck")
        return cls.from_repositories(
            (TrackedRepository.from_dict(record) for record in records),
            last_check=parse_timestamp(last_check) if last_check else None,
        )


# =============================================================================
# SNAPSHOT STORE
# =============================================================================

class SnapshotStore:
    """
    JSON-file backed store for the monitor snapshot.

    Holds the loaded snapshot in memory. Writers go through replace(), which
    swaps the in-memory state and rewrites the file under a lock; readers get
    copies taken under the same lock.
    """

    def __init__(self, path: str | os.PathLike = "data/repositories.json"):
        self.path = Path(path)
        self._snapshot = Snapshot()
        self._lock = asyncio.Lock()
        self._loaded = False

    @property
    def is_loaded(self) -> bool:
        return self._loaded

    async def load(self) -> Snapshot:
        """
        Read the snapshot file into memory.

        Returns an empty snapshot if the file is missing or unreadable.
        """
        async with self._lock:
            self._snapshot = await asyncio.to_thread(self._read_file)
            self._loaded = True
            return self._snapshot.copy()

    def _read_file(self) -> Snapshot:
        if not self.path.exists():
            logger.info(f"No snapshot at {self.path}, starting with empty state")
            return Snapshot()

        try:
            with self.path.open("r", encoding="utf-8") as fh:
                data = json.load(fh)
            snapshot = Snapshot.from_dict(data)
        except (OSError, ValueError, KeyError, TypeError) as e:
            logger.warning(f"Could not read snapshot {self.path} ({e}), starting with empty state")
            return Snapshot()

        logger.info(
            f"Loaded snapshot with {len(snapshot.repositories)} repositories "
            f"(last check: {snapshot.last_check})"
        )
        return snapshot

    async def save(self, snapshot: Snapshot) -> None:
        """Overwrite the snapshot file and the in-memory state."""
        async with self._lock:
            await asyncio.to_thread(self._write_file, snapshot)
            self._snapshot = snapshot.copy()

    def _write_file(self, snapshot: Snapshot) -> None:
        self.path.parent.mkdir(parents=True, exist_ok=True)

        fd, tmp_path = tempfile.mkstemp(
            prefix=f".{self.path.name}.", suffix=".tmp", dir=str(self.path.parent)
        )
        try:
            with os.fdopen(fd, "w", encoding="utf-8") as fh:
                json.dump(snapshot.to_dict(), fh, indent=2, ensure_ascii=False)
                fh.flush()
                os.fsync(fh.fileno())
            os.replace(tmp_path, self.path)
        except BaseException:
            try:
                os.unlink(tmp_path)
            except FileNotFoundError:
                pass
            raise

        logger.debug(f"Saved snapshot with {len(snapshot.repositories)} repositories to {self.path}")

    async def replace(
        self,
        repositories: Iterable[TrackedRepository],
        last_check: Optional[datetime] = None,
    ) -> Snapshot:
        """Swap the repository collection wholesale and persist."""
        snapshot = Snapshot.from_repositories(
            repositories,
            last_check=last_check or datetime.now(timezone.utc),
        )
        await self.save(snapshot)
        return snapshot.copy()

    async def clear(self) -> None:
        """Forget all tracked repositories; the next check bootstraps."""
        await self.save(Snapshot())

    async def get(self) -> Snapshot:
        """Copy of the current in-memory snapshot."""
        async with self._lock:
            return self._snapshot.copy()

    async def get_known_repositories(self) -> List[TrackedRepository]:
        async with self._lock:
            return list(self._snapshot.repositories.values())
