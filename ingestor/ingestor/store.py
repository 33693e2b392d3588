from typing import Protocol

from .models import CommitRecord, EmbeddedChunk, Project, SearchHit


class CommitStore(Protocol):
    """Projects and commit records, keyed by (project_id, sha)."""

    async def find_project(self, project_id: str) -> Project | None: ...

    async def list_commit_hashes(self, project_id: str) -> set[str]: ...

    async def latest_commit_hash(self, project_id: str) -> str | None:
        """Sha of the most recently recorded commit."""
        ...

    async def get_commit_record(self, project_id: str, sha: str) -> CommitRecord | None: ...

    async def list_failed_commits(self, project_id: str) -> list[CommitRecord]:
        """Records left without a summary by an unexpected error, oldest first."""
        ...

    async def insert_commit_record(self, record: CommitRecord) -> bool:
        """Create the record; False when (project_id, sha) already exists."""
        ...

    async def upsert_commit_record(self, record: CommitRecord) -> None: ...


class ChunkStore(Protocol):
    """Embedded file chunks, keyed by (project_id, path, chunk_index)."""

    async def find_chunk_content_hash(self, project_id: str, path: str, index: int) -> str | None: ...

    async def upsert_file_chunk(self, project_id: str, path: str, chunk: EmbeddedChunk) -> None: ...

    async def delete_stale_chunks(self, project_id: str, path: str, keep: int) -> None:
        """Drop chunks of `path` with chunk_index >= keep."""
        ...

    async def list_chunk_paths(self, project_id: str) -> set[str]: ...

    async def delete_file_chunks(self, project_id: str, path: str) -> None: ...

    async def search(self, project_id: str, vector: list[float], top_k: int) -> list[SearchHit]: ...
