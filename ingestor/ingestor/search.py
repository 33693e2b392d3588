from llama_index.core.embeddings import BaseEmbedding

from .models import SearchHit
from .store import ChunkStore

MAX_TOP_K = 20


async def search_project(
    chunks: ChunkStore,
    embed_model: BaseEmbedding,
    project_id: str,
    query: str,
    top_k: int = 5,
) -> list[SearchHit]:
    """Chunks of a project's indexed tree most similar to a natural language query."""
    if not query.strip():
        return []
    top_k = max(1, min(top_k, MAX_TOP_K))
    vector = await embed_model.aget_query_embedding(query)
    return await chunks.search(project_id, vector, top_k)
