"""
Tests for the SQL commit store and the Qdrant chunk store.
"""

import pytest
from qdrant_client import AsyncQdrantClient

from conftest import make_commits
from ingestor.models import CommitRecord, CommitStatus, EmbeddedChunk, Project, SummaryResult
from ingestor.qdrant_store import QdrantChunkStore, chunk_point_id
from ingestor.sql_store import SqlCommitStore


def record(sha_index: int, summary: str | None = "did things") -> CommitRecord:
    commit = make_commits(sha_index)[0]
    result = SummaryResult(text=summary, used_fallback=False) if summary else None
    return CommitRecord.from_descriptor("p1", commit, result)


class TestSqlCommitStore:
    @pytest.mark.asyncio
    async def test_find_project(self, commit_store):
        project = await commit_store.find_project("p1")

        assert project == Project(id="p1", name="demo", repo_url="https://github.com/acme/demo")
        assert await commit_store.find_project("missing") is None

    def test_register_project_updates_existing(self, commit_store):
        commit_store.register_project(
            Project(id="p1", name="renamed", repo_url="https://github.com/acme/demo", credentials_ref="TOK")
        )

        [project] = commit_store.list_projects()
        assert project.name == "renamed"
        assert project.credentials_ref == "TOK"

    @pytest.mark.asyncio
    async def test_insert_is_unique_per_project_and_sha(self, commit_store):
        assert await commit_store.insert_commit_record(record(1)) is True
        assert await commit_store.insert_commit_record(record(1, "other")) is False

        stored = await commit_store.get_commit_record("p1", record(1).sha)
        assert stored.summary == "did things"
        assert len(commit_store.list_commit_records("p1")) == 1

    @pytest.mark.asyncio
    async def test_same_sha_in_another_project(self, commit_store):
        commit_store.register_project(Project(id="p2", name="fork", repo_url="https://github.com/acme/fork"))
        other = record(1).model_copy(update={"project_id": "p2"})

        assert await commit_store.insert_commit_record(record(1))
        assert await commit_store.insert_commit_record(other)

    @pytest.mark.asyncio
    async def test_latest_hash_follows_insertion_order(self, commit_store):
        assert await commit_store.latest_commit_hash("p1") is None

        for i in (1, 2, 3):
            await commit_store.insert_commit_record(record(i))

        assert await commit_store.latest_commit_hash("p1") == record(3).sha
        assert await commit_store.list_commit_hashes("p1") == {record(i).sha for i in (1, 2, 3)}

    @pytest.mark.asyncio
    async def test_failed_record_has_no_summary(self, commit_store):
        await commit_store.insert_commit_record(record(1, summary=None))

        stored = await commit_store.get_commit_record("p1", record(1).sha)
        assert stored.status == CommitStatus.FAILED
        assert stored.summary is None
        assert stored.used_fallback is None

    @pytest.mark.asyncio
    async def test_lists_failed_records_oldest_first(self, commit_store):
        for i, summary in ((1, None), (2, "fine"), (3, None)):
            await commit_store.insert_commit_record(record(i, summary))

        failed = await commit_store.list_failed_commits("p1")

        assert [r.sha for r in failed] == [record(1).sha, record(3).sha]
        assert await commit_store.list_failed_commits("p2") == []

    @pytest.mark.asyncio
    async def test_upsert_replaces_summary(self, commit_store):
        await commit_store.insert_commit_record(record(1, summary=None))

        updated = record(1, summary="second try").model_copy(update={"used_fallback": True})
        await commit_store.upsert_commit_record(updated)

        stored = await commit_store.get_commit_record("p1", record(1).sha)
        assert stored.summary == "second try"
        assert stored.used_fallback is True
        assert stored.status == CommitStatus.SUMMARIZED
        assert len(commit_store.list_commit_records("p1")) == 1

    def test_file_database_creates_parent_directory(self, tmp_path):
        db_path = tmp_path / "nested" / "dir" / "ingestor.db"

        store = SqlCommitStore.from_url(f"sqlite:///{db_path}")
        store.close()

        assert db_path.exists()


def chunk(index: int, text: str, vector: list[float]) -> EmbeddedChunk:
    return EmbeddedChunk(chunk_index=index, text=text, vector=vector, content_hash=f"hash-{text}")


@pytest.fixture
def chunk_store() -> QdrantChunkStore:
    return QdrantChunkStore(AsyncQdrantClient(location=":memory:"), "file_chunks")


class TestQdrantChunkStore:
    def test_point_id_is_deterministic(self):
        assert chunk_point_id("p1", "a.py", 0) == chunk_point_id("p1", "a.py", 0)
        assert chunk_point_id("p1", "a.py", 0) != chunk_point_id("p1", "a.py", 1)
        assert chunk_point_id("p1", "a.py", 0) != chunk_point_id("p2", "a.py", 0)

    @pytest.mark.asyncio
    async def test_empty_collection(self, chunk_store):
        assert await chunk_store.find_chunk_content_hash("p1", "a.py", 0) is None
        assert await chunk_store.list_chunk_paths("p1") == set()
        assert await chunk_store.search("p1", [1.0, 0.0, 0.0], 5) == []
        await chunk_store.delete_file_chunks("p1", "a.py")

    @pytest.mark.asyncio
    async def test_upsert_overwrites_same_chunk(self, chunk_store):
        await chunk_store.upsert_file_chunk("p1", "a.py", chunk(0, "v1", [1.0, 0.0, 0.0]))
        await chunk_store.upsert_file_chunk("p1", "a.py", chunk(0, "v2", [1.0, 0.0, 0.0]))

        assert await chunk_store.find_chunk_content_hash("p1", "a.py", 0) == "hash-v2"
        count = await chunk_store._aclient.count(chunk_store.collection_name)
        assert count.count == 1

    @pytest.mark.asyncio
    async def test_delete_stale_chunks_keeps_prefix(self, chunk_store):
        for i in range(4):
            await chunk_store.upsert_file_chunk("p1", "a.py", chunk(i, f"c{i}", [1.0, float(i), 0.0]))
        await chunk_store.upsert_file_chunk("p1", "b.py", chunk(3, "b3", [0.0, 1.0, 0.0]))

        await chunk_store.delete_stale_chunks("p1", "a.py", keep=2)

        assert await chunk_store.find_chunk_content_hash("p1", "a.py", 1) == "hash-c1"
        assert await chunk_store.find_chunk_content_hash("p1", "a.py", 2) is None
        assert await chunk_store.find_chunk_content_hash("p1", "b.py", 3) == "hash-b3"

    @pytest.mark.asyncio
    async def test_paths_and_deletion_are_scoped_to_project(self, chunk_store):
        await chunk_store.upsert_file_chunk("p1", "a.py", chunk(0, "a", [1.0, 0.0, 0.0]))
        await chunk_store.upsert_file_chunk("p1", "b.py", chunk(0, "b", [0.0, 1.0, 0.0]))
        await chunk_store.upsert_file_chunk("p2", "a.py", chunk(0, "other", [1.0, 0.0, 0.0]))

        await chunk_store.delete_file_chunks("p1", "a.py")

        assert await chunk_store.list_chunk_paths("p1") == {"b.py"}
        assert await chunk_store.list_chunk_paths("p2") == {"a.py"}

    @pytest.mark.asyncio
    async def test_search_ranks_within_project(self, chunk_store):
        await chunk_store.upsert_file_chunk("p1", "near.py", chunk(0, "near", [1.0, 0.1, 0.0]))
        await chunk_store.upsert_file_chunk("p1", "far.py", chunk(0, "far", [0.0, 0.0, 1.0]))
        await chunk_store.upsert_file_chunk("p2", "other.py", chunk(0, "other", [1.0, 0.0, 0.0]))

        hits = await chunk_store.search("p1", [1.0, 0.0, 0.0], 5)

        assert [h.file_path for h in hits] == ["near.py", "far.py"]
        assert hits[0].content == "near"
        assert hits[0].score > hits[1].score
