import pytest
from llama_index.core.embeddings import MockEmbedding

from conftest import FakeChunkStore
from ingestor.models import EmbeddedChunk
from ingestor.search import MAX_TOP_K, search_project


@pytest.fixture
def store() -> FakeChunkStore:
    store = FakeChunkStore()
    for i in range(30):
        store.chunks[("p1", f"f{i:02d}.py", 0)] = EmbeddedChunk(
            chunk_index=0, text=f"code {i}", vector=[0.0, 0.0, 1.0], content_hash=str(i)
        )
    return store


@pytest.mark.asyncio
async def test_returns_hits_for_project(store):
    hits = await search_project(store, MockEmbedding(embed_dim=3), "p1", "where is code", top_k=3)

    assert [h.file_path for h in hits] == ["f00.py", "f01.py", "f02.py"]


@pytest.mark.asyncio
async def test_top_k_is_capped(store):
    hits = await search_project(store, MockEmbedding(embed_dim=3), "p1", "code", top_k=100)

    assert len(hits) == MAX_TOP_K


@pytest.mark.asyncio
async def test_blank_query_returns_nothing(store):
    assert await search_project(store, MockEmbedding(embed_dim=3), "p1", "   ") == []
