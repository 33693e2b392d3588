from datetime import datetime
from enum import Enum

from pydantic import BaseModel, Field


class Project(BaseModel):
    id: str
    name: str
    repo_url: str
    credentials_ref: str | None = None  # env var holding the provider token


class CommitDescriptor(BaseModel):
    sha: str
    author: str | None = None
    author_avatar: str | None = None
    message: str = ""
    committed_at: datetime | None = None
    html_url: str | None = None


class CommitDiff(BaseModel):
    text: str
    files_changed: int = 0
    additions: int = 0
    deletions: int = 0


class CommitStatus(str, Enum):
    SUMMARIZED = "summarized"
    FAILED = "failed"


class SummaryResult(BaseModel):
    text: str
    used_fallback: bool


class CommitRecord(BaseModel):
    project_id: str
    sha: str
    author: str | None = None
    author_avatar: str | None = None
    message: str = ""
    committed_at: datetime | None = None
    summary: str | None = None          # None until generated, or after an external reset
    used_fallback: bool | None = None
    status: CommitStatus

    @classmethod
    def from_descriptor(
        cls, project_id: str, commit: CommitDescriptor, summary: SummaryResult | None = None
    ) -> "CommitRecord":
        return cls(
            project_id=project_id,
            sha=commit.sha,
            author=commit.author,
            author_avatar=commit.author_avatar,
            message=commit.message,
            committed_at=commit.committed_at,
            summary=summary.text if summary else None,
            used_fallback=summary.used_fallback if summary else None,
            status=CommitStatus.SUMMARIZED if summary else CommitStatus.FAILED,
        )


class RepositorySnapshot(BaseModel):
    git_dir: str      # bare mirror, e.g. /data/repos/<project_id>.git
    sha: str


class FileDescriptor(BaseModel):
    path: str
    size_bytes: int
    content_hash: str  # git blob id


class EmbeddedChunk(BaseModel):
    chunk_index: int
    text: str
    vector: list[float]
    content_hash: str  # sha256 of text


class FileEmbedding(BaseModel):
    chunks: list[EmbeddedChunk] = Field(default_factory=list)
    chunk_count: int = 0
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)


class RunState(str, Enum):
    IDLE = "idle"
    FETCHING = "fetching"
    SUMMARIZING = "summarizing"
    WALKING = "walking"
    EMBEDDING = "embedding"
    DONE = "done"
    FAILED = "failed"


class PollResult(BaseModel):
    state: RunState = RunState.IDLE
    processed_count: int = 0
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)


class IndexResult(BaseModel):
    state: RunState = RunState.IDLE
    success: bool = False
    already_running: bool = False
    processed_count: int = 0
    skipped_count: int = 0
    errors: list[str] = Field(default_factory=list)


class SearchHit(BaseModel):
    file_path: str
    chunk_index: int
    score: float | None
    content: str


class ProjectRequest(BaseModel):
    project_id: str
