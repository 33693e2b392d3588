import os

from pydantic import BaseModel

OPENROUTER_BASE_URL = "https://openrouter.ai/api/v1"


def _env_int(name: str, default: int) -> int:
    return int(os.environ.get(name, str(default)))


def _env_float(name: str, default: float) -> float:
    return float(os.environ.get(name, str(default)))


class Settings(BaseModel):
    database_url: str = "sqlite:///./data/ingestor.db"
    qdrant_url: str = "http://localhost:6333"
    chunk_collection: str = "file_chunks"
    repos_dir: str = "/data/repos"

    openrouter_api_key: str | None = None
    summary_model: str = "google/gemini-2.5-flash"
    embedding_model: str = "text-embedding-3-small"

    github_token: str | None = None
    github_api_url: str = "https://api.github.com"

    # Commit fetching
    fetch_page_size: int = 50
    max_commits: int = 100
    request_timeout: float = 30.0
    rate_limit_max_wait: float = 900.0

    # Shared by page fetches and embedding batches
    retry_attempts: int = 3
    retry_base_delay: float = 1.0

    # Summaries
    ai_timeout: float = 60.0
    max_diff_chars: int = 12_000
    max_summary_chars: int = 500
    max_tokens: int = 1024

    # Indexing
    chunk_size: int = 1000
    chunk_overlap: int = 100
    embed_batch_size: int = 16
    embed_timeout: float = 60.0
    max_file_bytes: int = 500 * 1024
    git_timeout: float = 600.0

    @classmethod
    def from_env(cls) -> "Settings":
        defaults = cls()
        return cls(
            database_url=os.environ.get("DATABASE_URL", defaults.database_url),
            qdrant_url=os.environ.get("QDRANT_URL", defaults.qdrant_url),
            chunk_collection=os.environ.get("CHUNK_COLLECTION", defaults.chunk_collection),
            repos_dir=os.environ.get("REPOS_DIR", defaults.repos_dir),
            openrouter_api_key=os.environ.get("OPENROUTER_API_KEY") or None,
            summary_model=os.environ.get("SUMMARY_MODEL", defaults.summary_model),
            embedding_model=os.environ.get("EMBEDDING_MODEL", defaults.embedding_model),
            github_token=os.environ.get("GITHUB_TOKEN") or None,
            github_api_url=os.environ.get("GITHUB_API_URL", defaults.github_api_url),
            fetch_page_size=_env_int("INGESTOR_FETCH_PAGE_SIZE", defaults.fetch_page_size),
            max_commits=_env_int("INGESTOR_MAX_COMMITS", defaults.max_commits),
            request_timeout=_env_float("INGESTOR_REQUEST_TIMEOUT", defaults.request_timeout),
            rate_limit_max_wait=_env_float("INGESTOR_RATE_LIMIT_MAX_WAIT", defaults.rate_limit_max_wait),
            retry_attempts=_env_int("INGESTOR_RETRY_ATTEMPTS", defaults.retry_attempts),
            retry_base_delay=_env_float("INGESTOR_RETRY_BASE_DELAY", defaults.retry_base_delay),
            ai_timeout=_env_float("INGESTOR_AI_TIMEOUT", defaults.ai_timeout),
            max_diff_chars=_env_int("INGESTOR_MAX_DIFF_CHARS", defaults.max_diff_chars),
            max_summary_chars=_env_int("INGESTOR_MAX_SUMMARY_CHARS", defaults.max_summary_chars),
            max_tokens=_env_int("MAX_TOKENS", defaults.max_tokens),
            chunk_size=_env_int("INGESTOR_CHUNK_SIZE", defaults.chunk_size),
            chunk_overlap=_env_int("INGESTOR_CHUNK_OVERLAP", defaults.chunk_overlap),
            embed_batch_size=_env_int("INGESTOR_EMBED_BATCH_SIZE", defaults.embed_batch_size),
            embed_timeout=_env_float("INGESTOR_EMBED_TIMEOUT", defaults.embed_timeout),
            max_file_bytes=_env_int("INGESTOR_MAX_FILE_BYTES", defaults.max_file_bytes),
            git_timeout=_env_float("INGESTOR_GIT_TIMEOUT", defaults.git_timeout),
        )
