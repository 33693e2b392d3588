import logging

import httpx
from qdrant_client import AsyncQdrantClient

from .agent import build_summary_agent
from .config import Settings
from .embedding import ChunkEmbedder, build_embed_model
from .github import CommitFetcher
from .orchestrator import Ingestor
from .qdrant_store import QdrantChunkStore
from .sql_store import SqlCommitStore
from .summarizer import SummaryGenerator
from .walker import IgnorePolicy, RepositoryWalker

logger = logging.getLogger(__name__)


class Runtime:
    """Wires the pipeline's collaborators from settings and owns their connections."""

    def __init__(self, settings: Settings):
        self.settings = settings
        self.commits = SqlCommitStore.from_url(settings.database_url)
        self.qdrant = AsyncQdrantClient(url=settings.qdrant_url, timeout=int(settings.request_timeout))
        self.chunks = QdrantChunkStore(self.qdrant, settings.chunk_collection)
        self.http = httpx.AsyncClient(timeout=settings.request_timeout, follow_redirects=True)

        agent = build_summary_agent(settings)
        if agent is None:
            logger.warning("OPENROUTER_API_KEY is not set: commit summaries use the heuristic fallback")
        self.embed_model = build_embed_model(settings) if settings.openrouter_api_key else None

        embedder = None
        if self.embed_model is not None:
            embedder = ChunkEmbedder(
                self.embed_model,
                self.chunks,
                chunk_size=settings.chunk_size,
                chunk_overlap=settings.chunk_overlap,
                batch_size=settings.embed_batch_size,
                attempts=settings.retry_attempts,
                base_delay=settings.retry_base_delay,
                timeout=settings.embed_timeout,
            )

        self.ingestor = Ingestor(
            commits=self.commits,
            chunks=self.chunks,
            fetcher=CommitFetcher(
                self.http,
                api_url=settings.github_api_url,
                page_size=settings.fetch_page_size,
                max_commits=settings.max_commits,
                attempts=settings.retry_attempts,
                base_delay=settings.retry_base_delay,
                rate_limit_max_wait=settings.rate_limit_max_wait,
            ),
            summarizer=SummaryGenerator(
                agent,
                timeout=settings.ai_timeout,
                max_diff_chars=settings.max_diff_chars,
                max_summary_chars=settings.max_summary_chars,
            ),
            walker=RepositoryWalker(IgnorePolicy(max_file_bytes=settings.max_file_bytes)),
            embedder=embedder,
            repos_dir=settings.repos_dir,
            default_token=settings.github_token,
            git_timeout=settings.git_timeout,
        )

    async def aclose(self) -> None:
        await self.http.aclose()
        await self.qdrant.close()
        self.commits.close()

    async def __aenter__(self) -> "Runtime":
        return self

    async def __aexit__(self, *exc_info) -> None:
        await self.aclose()
