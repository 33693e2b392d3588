import asyncio
import hashlib
import logging
from collections.abc import Awaitable, Callable

import openai
from llama_index.core.embeddings import BaseEmbedding
from llama_index.embeddings.openai import OpenAIEmbedding

from .config import OPENROUTER_BASE_URL, Settings
from .errors import AuthError
from .models import EmbeddedChunk, FileDescriptor, FileEmbedding
from .splitter import build_splitter, split_text
from .store import ChunkStore

logger = logging.getLogger(__name__)

MODEL_DIMENSIONS = {
    "text-embedding-3-small": 1536,
    "openai/text-embedding-3-small": 1536,
    "text-embedding-3-large": 3072,
    "openai/text-embedding-3-large": 3072,
}


def build_embed_model(settings: Settings) -> OpenAIEmbedding:
    if not settings.openrouter_api_key:
        raise AuthError("OPENROUTER_API_KEY environment variable is not set")
    if settings.embedding_model not in MODEL_DIMENSIONS:
        raise ValueError(
            f"Unknown model '{settings.embedding_model}'. Supported: {', '.join(MODEL_DIMENSIONS)}"
        )
    return OpenAIEmbedding(
        model=settings.embedding_model,
        dimensions=MODEL_DIMENSIONS[settings.embedding_model],
        api_base=OPENROUTER_BASE_URL,
        api_key=settings.openrouter_api_key,
        embed_batch_size=settings.embed_batch_size,
        max_retries=0,
        timeout=settings.embed_timeout,
        default_headers={
            "HTTP-Referer": "https://github.com/repo-ingestor",
            "X-Title": "repo-ingestor-indexer",
        },
    )


def hash_text(text: str) -> str:
    return hashlib.sha256(text.encode("utf-8")).hexdigest()


class ChunkEmbedder:
    """Splits file content into chunks and embeds the ones that changed.

    A chunk whose hash matches the stored chunk at the same path and index is
    skipped. Batches that keep failing after `attempts` tries are reported as
    per-chunk errors and the remaining batches still run. Rejected credentials
    are never retried.
    """

    def __init__(
        self,
        embed_model: BaseEmbedding,
        chunks: ChunkStore,
        *,
        chunk_size: int = 1000,
        chunk_overlap: int = 100,
        batch_size: int = 16,
        attempts: int = 3,
        base_delay: float = 1.0,
        timeout: float = 60.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
    ):
        self._embed_model = embed_model
        self._chunks = chunks
        self._splitter = build_splitter(chunk_size, chunk_overlap)
        self.batch_size = max(1, batch_size)
        self.attempts = max(1, attempts)
        self.base_delay = base_delay
        self.timeout = timeout
        self._sleep = sleep

    async def embed_file(
        self, project_id: str, descriptor: FileDescriptor, content: str
    ) -> FileEmbedding:
        """Embed the chunks of `content` that changed since the last run.

        Raises AuthError when the backend rejects the credentials; every other
        batch failure is reported in the result's `errors`.
        """
        texts = split_text(self._splitter, content)
        result = FileEmbedding(chunk_count=len(texts))

        pending: list[tuple[int, str, str]] = []
        for index, text in enumerate(texts):
            content_hash = hash_text(text)
            stored = await self._chunks.find_chunk_content_hash(project_id, descriptor.path, index)
            if stored == content_hash:
                result.skipped_count += 1
            else:
                pending.append((index, text, content_hash))

        for start in range(0, len(pending), self.batch_size):
            batch = pending[start:start + self.batch_size]
            try:
                vectors = await self._embed_batch([text for _, text, _ in batch])
            except AuthError:
                raise
            except Exception as e:
                reason = str(e) or type(e).__name__
                logger.warning(
                    "Embedding %s chunks %d-%d failed: %s",
                    descriptor.path, batch[0][0], batch[-1][0], reason,
                )
                result.errors.extend(
                    f"{descriptor.path}#{index}: embedding failed: {reason}" for index, _, _ in batch
                )
                continue
            result.chunks.extend(
                EmbeddedChunk(chunk_index=index, text=text, vector=vector, content_hash=content_hash)
                for (index, text, content_hash), vector in zip(batch, vectors)
            )
        return result

    async def _embed_batch(self, texts: list[str]) -> list[list[float]]:
        delay = self.base_delay
        attempt = 0
        while True:
            attempt += 1
            try:
                vectors = await asyncio.wait_for(
                    self._embed_model.aget_text_embedding_batch(texts), timeout=self.timeout
                )
                if len(vectors) != len(texts):
                    raise ValueError(f"expected {len(texts)} embeddings, got {len(vectors)}")
                return vectors
            except AuthError:
                raise
            except (openai.AuthenticationError, openai.PermissionDeniedError) as e:
                raise AuthError(f"Embedding backend rejected the credentials: {e}") from e
            except Exception as e:
                if attempt >= self.attempts:
                    raise
                logger.warning(
                    "Embedding batch failed (attempt %d/%d): %s", attempt, self.attempts, e
                )
                await self._sleep(delay)
                delay *= 2
