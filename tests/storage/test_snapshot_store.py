"""Tests for SnapshotStore - JSON snapshot persistence."""

import json
import os
import threading
from datetime import datetime, timezone
from unittest.mock import patch

import pytest

from storage.snapshot_store import (
    Snapshot,
    SnapshotStore,
    TrackedRepository,
    parse_timestamp,
)


def make_repo(repo_id: int, updated: datetime, **overrides) -> TrackedRepository:
    fields = dict(
        id=repo_id,
        name=f"repo-{repo_id}",
        full_name=f"octocat/repo-{repo_id}",
        description="A repo",
        url=f"https://github.com/octocat/repo-{repo_id}",
        api_url=f"https://api.github.com/repos/octocat/repo-{repo_id}",
        language="Python",
        stars=5,
        forks=1,
        watchers=5,
        updated_at=updated,
        created_at=datetime(2025, 1, 1, tzinfo=timezone.utc),
    )
    fields.update(overrides)
    return TrackedRepository(**fields)


class TestTrackedRepository:

    def test_from_github_payload(self, repo_payload):
        """GitHub field names map onto the tracked attributes"""
        repo = TrackedRepository.from_github(repo_payload(
            42, name="hello", stargazers_count=9, topics=["cli", "cli", "api"]
        ))

        assert repo.id == 42
        assert repo.full_name == "octocat/hello"
        assert repo.url == "https://github.com/octocat/hello"
        assert repo.api_url == "https://api.github.com/repos/octocat/hello"
        assert repo.stars == 9
        assert repo.topics == ["cli", "api"]
        assert repo.license == "MIT"
        assert repo.updated_at == datetime(2026, 1, 1, tzinfo=timezone.utc)
        assert repo.owner == "octocat"

    def test_from_github_without_license(self, repo_payload):
        repo = TrackedRepository.from_github(repo_payload(1, license=None, description=None))

        assert repo.license is None
        assert repo.description is None

    def test_from_github_missing_required_field(self):
        with pytest.raises(KeyError):
            TrackedRepository.from_github({"id": 1})

    def test_dict_uses_camel_case_keys(self):
        repo = make_repo(1, datetime(2026, 1, 2, tzinfo=timezone.utc))
        data = repo.to_dict()

        assert data["fullName"] == "octocat/repo-1"
        assert data["updatedAt"] == "2026-01-02T00:00:00+00:00"
        assert data["isPrivate"] is False
        assert TrackedRepository.from_dict(data) == repo


class TestParseTimestamp:

    def test_trailing_z(self):
        assert parse_timestamp("2026-01-01T10:00:00Z") == datetime(2026, 1, 1, 10, tzinfo=timezone.utc)

    def test_naive_is_utc(self):
        assert parse_timestamp("2026-01-01T10:00:00").tzinfo == timezone.utc


class TestSnapshot:

    def test_duplicate_ids_keep_first(self):
        t = datetime(2026, 1, 1, tzinfo=timezone.utc)
        snapshot = Snapshot.from_repositories([make_repo(1, t, name="first"), make_repo(1, t, name="second")])

        assert len(snapshot.repositories) == 1
        assert snapshot.get(1).name == "first"

    def test_keeps_fetch_order(self):
        t = datetime(2026, 1, 1, tzinfo=timezone.utc)
        snapshot = Snapshot.from_repositories([make_repo(3, t), make_repo(1, t), make_repo(2, t)])

        assert list(snapshot.repositories) == [3, 1, 2]


class TestSnapshotStore:
    """Test suite for SnapshotStore."""

    @pytest.mark.asyncio
    async def test_missing_file_is_empty(self, tmp_path):
        """A first-ever run has no snapshot file"""
        store = SnapshotStore(tmp_path / "repositories.json")

        snapshot = await store.load()

        assert snapshot.is_empty
        assert snapshot.last_check is None
        assert store.is_loaded

    @pytest.mark.asyncio
    async def test_malformed_file_is_empty(self, tmp_path):
        path = tmp_path / "repositories.json"
        path.write_text("{not json", encoding="utf-8")

        snapshot = await SnapshotStore(path).load()

        assert snapshot.is_empty

    @pytest.mark.asyncio
    async def test_wrong_shape_is_empty(self, tmp_path):
        path = tmp_path / "repositories.json"
        path.write_text(json.dumps({"repositories": [{"id": 1}]}), encoding="utf-8")

        snapshot = await SnapshotStore(path).load()

        assert snapshot.is_empty

    @pytest.mark.asyncio
    async def test_save_and_reload(self, tmp_path):
        path = tmp_path / "nested" / "repositories.json"
        last_check = datetime(2026, 1, 5, tzinfo=timezone.utc)
        repos = [make_repo(1, datetime(2026, 1, 2, tzinfo=timezone.utc)),
                 make_repo(2, datetime(2026, 1, 3, tzinfo=timezone.utc))]

        store = SnapshotStore(path)
        await store.replace(repos, last_check=last_check)

        reloaded = await SnapshotStore(path).load()
        assert reloaded.last_check == last_check
        assert list(reloaded.repositories.values()) == repos

        document = json.loads(path.read_text(encoding="utf-8"))
        assert set(document) == {"lastCheck", "repositories"}
        assert document["lastCheck"] == "2026-01-05T00:00:00+00:00"

    @pytest.mark.asyncio
    async def test_replace_is_wholesale(self, tmp_path):
        """No partial merge: repos missing from the new list are gone"""
        store = SnapshotStore(tmp_path / "repositories.json")
        t = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await store.replace([make_repo(1, t), make_repo(2, t)])

        await store.replace([make_repo(2, t, stars=50)])

        known = await store.get_known_repositories()
        assert [r.id for r in known] == [2]
        assert known[0].stars == 50

    @pytest.mark.asyncio
    async def test_failed_write_keeps_previous_file(self, tmp_path):
        """A crash during write must not corrupt the existing snapshot"""
        path = tmp_path / "repositories.json"
        store = SnapshotStore(path)
        t = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await store.replace([make_repo(1, t)], last_check=t)
        before = path.read_text(encoding="utf-8")

        with patch("storage.snapshot_store.os.replace", side_effect=OSError("disk full")):
            with pytest.raises(OSError):
                await store.replace([make_repo(2, t)], last_check=t)

        assert path.read_text(encoding="utf-8") == before
        assert [name for name in os.listdir(tmp_path)] == ["repositories.json"]
        assert [r.id for r in await store.get_known_repositories()] == [1]

    @pytest.mark.asyncio
    async def test_file_io_runs_off_event_loop(self, tmp_path):
        """Reads and writes happen in a worker thread, not the loop thread"""
        store = SnapshotStore(tmp_path / "repositories.json")
        loop_thread = threading.get_ident()
        io_threads = []
        original_read = SnapshotStore._read_file
        original_write = SnapshotStore._write_file

        def read(self):
            io_threads.append(threading.get_ident())
            return original_read(self)

        def write(self, snapshot):
            io_threads.append(threading.get_ident())
            return original_write(self, snapshot)

        with patch.object(SnapshotStore, "_read_file", read), \
                patch.object(SnapshotStore, "_write_file", write):
            await store.replace([make_repo(1, datetime(2026, 1, 1, tzinfo=timezone.utc))])
            snapshot = await store.load()

        assert len(io_threads) == 2
        assert loop_thread not in io_threads
        assert list(snapshot.repositories) == [1]

    @pytest.mark.asyncio
    async def test_get_returns_copy(self, tmp_path):
        store = SnapshotStore(tmp_path / "repositories.json")
        t = datetime(2026, 1, 1, tzinfo=timezone.utc)
        await store.replace([make_repo(1, t)])

        snapshot = await store.get()
        snapshot.repositories.clear()

        assert len(await store.get_known_repositories()) == 1

    @pytest.mark.asyncio
    async def test_clear(self, tmp_path):
        store = SnapshotStore(tmp_path / "repositories.json")
        await store.replace([make_repo(1, datetime(2026, 1, 1, tzinfo=timezone.utc))])

        await store.clear()

        assert (await SnapshotStore(tmp_path / "repositories.json").load()).is_empty
