import subprocess
from datetime import datetime, timedelta, timezone
from pathlib import Path

import pytest
from pydantic_ai import Agent
from pydantic_ai.messages import ModelMessage, ModelResponse, TextPart
from pydantic_ai.models.function import AgentInfo, FunctionModel

from ingestor.errors import AuthError
from ingestor.fallback import DiffStats
from ingestor.models import CommitDescriptor, CommitDiff, EmbeddedChunk, Project, SearchHit, SummaryResult
from ingestor.sql_store import SqlCommitStore

GIT_IDENTITY = ["-c", "user.name=Test", "-c", "user.email=test@example.com"]


def git(repo: Path, *args: str) -> str:
    result = subprocess.run(
        ["git", *GIT_IDENTITY, *args], cwd=repo, capture_output=True, text=True, check=True
    )
    return result.stdout.strip()


def commit_files(repo: Path, files: dict[str, str | bytes | None], message: str = "update") -> str:
    """Write (or delete, for None) files and commit them. Returns the new HEAD sha."""
    for rel, content in files.items():
        path = repo / rel
        if content is None:
            path.unlink()
            continue
        path.parent.mkdir(parents=True, exist_ok=True)
        if isinstance(content, bytes):
            path.write_bytes(content)
        else:
            path.write_text(content)
    git(repo, "add", "-A")
    git(repo, "commit", "-q", "-m", message)
    return git(repo, "rev-parse", "HEAD")


@pytest.fixture
def source_repo(tmp_path: Path) -> Path:
    repo = tmp_path / "source"
    repo.mkdir()
    git(repo, "init", "-q")
    return repo


def text_agent(text: str) -> Agent[None, str]:
    def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        return ModelResponse(parts=[TextPart(text)])

    return Agent(FunctionModel(respond), output_type=str)


def failing_agent(exc: Exception | None = None) -> Agent[None, str]:
    def respond(messages: list[ModelMessage], info: AgentInfo) -> ModelResponse:
        raise exc or ConnectionError("AI backend unreachable")

    return Agent(FunctionModel(respond), output_type=str)


class RecordingSummarizer:
    def __init__(self):
        self.messages: list[str] = []

    async def summarize(self, message: str, diff_text: str | None, stats: DiffStats | None = None) -> SummaryResult:
        self.messages.append(message)
        return SummaryResult(text=f"summary of {message}", used_fallback=False)


def make_commits(count: int, prefix: str = "c") -> list[CommitDescriptor]:
    """Descriptors newest-first, as the provider returns them."""
    start = datetime(2024, 5, 1, tzinfo=timezone.utc)
    commits = [
        CommitDescriptor(
            sha=f"{prefix}{i}".ljust(40, "0"),
            author="Ada",
            message=f"feat: change number {i}",
            committed_at=start + timedelta(hours=i),
        )
        for i in range(1, count + 1)
    ]
    return list(reversed(commits))


class FakeFetcher:
    def __init__(self, commits: list[CommitDescriptor], *, honor_since: bool = True):
        self.commits = commits
        self.honor_since = honor_since
        self.diff_errors: dict[str, Exception] = {}
        self.page_error: Exception | None = None
        self.since_calls: list[str | None] = []
        self.tokens: list[str | None] = []

    async def fetch_commits(self, repo_url, token, since_sha=None):
        self.since_calls.append(since_sha)
        self.tokens.append(token)
        for i, commit in enumerate(self.commits):
            if self.honor_since and commit.sha == since_sha:
                return
            if self.page_error is not None and i == 1:
                raise self.page_error
            yield commit

    async def fetch_diff(self, repo_url, token, sha):
        if sha in self.diff_errors:
            raise self.diff_errors[sha]
        return CommitDiff(
            text=f"diff --git a/f.py b/f.py\n+++ b/f.py\n+line for {sha[:7]}",
            files_changed=1,
            additions=1,
            deletions=0,
        )


@pytest.fixture
def commit_store() -> SqlCommitStore:
    store = SqlCommitStore.from_url("sqlite://")
    store.register_project(Project(id="p1", name="demo", repo_url="https://github.com/acme/demo"))
    return store


class FakeChunkStore:
    def __init__(self):
        self.chunks: dict[tuple[str, str, int], EmbeddedChunk] = {}
        self.upserts = 0

    async def find_chunk_content_hash(self, project_id, path, index):
        chunk = self.chunks.get((project_id, path, index))
        return chunk.content_hash if chunk else None

    async def upsert_file_chunk(self, project_id, path, chunk):
        self.upserts += 1
        self.chunks[(project_id, path, chunk.chunk_index)] = chunk

    async def delete_stale_chunks(self, project_id, path, keep):
        for key in [k for k in self.chunks if k[0] == project_id and k[1] == path and k[2] >= keep]:
            del self.chunks[key]

    async def list_chunk_paths(self, project_id):
        return {path for pid, path, _ in self.chunks if pid == project_id}

    async def delete_file_chunks(self, project_id, path):
        await self.delete_stale_chunks(project_id, path, 0)

    async def search(self, project_id, vector, top_k):
        hits = [
            SearchHit(file_path=path, chunk_index=index, score=1.0, content=chunk.text)
            for (pid, path, index), chunk in sorted(self.chunks.items())
            if pid == project_id
        ]
        return hits[:top_k]

    def paths(self, project_id: str = "p1") -> set[str]:
        return {path for pid, path, _ in self.chunks if pid == project_id}


class FakeEmbedding:
    """Stand-in for a llama-index embedding model."""

    def __init__(self, fail_times: int = 0, fail_marker: str | None = None, rejected: bool = False):
        self.fail_times = fail_times
        self.fail_marker = fail_marker
        self.rejected = rejected
        self.calls: list[list[str]] = []

    async def aget_text_embedding_batch(self, texts: list[str], **kwargs) -> list[list[float]]:
        self.calls.append(list(texts))
        if self.rejected:
            raise AuthError("401 invalid api key")
        if self.fail_times > 0:
            self.fail_times -= 1
            raise ConnectionError("embedding backend unavailable")
        if self.fail_marker and any(self.fail_marker in t for t in texts):
            raise RuntimeError("quota exceeded")
        return [[float(len(t)), 1.0, 0.0] for t in texts]

    @property
    def embedded_texts(self) -> int:
        return sum(len(batch) for batch in self.calls)


async def no_sleep(seconds: float) -> None:
    return None
