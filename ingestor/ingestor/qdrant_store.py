import uuid

from llama_index.core.schema import TextNode
from llama_index.core.vector_stores.types import MetadataFilter, MetadataFilters, VectorStoreQuery
from llama_index.vector_stores.qdrant import QdrantVectorStore
from qdrant_client import AsyncQdrantClient
from qdrant_client.http import models as qm

from .models import EmbeddedChunk, SearchHit

SCROLL_LIMIT = 250


def chunk_point_id(project_id: str, path: str, index: int) -> str:
    return str(uuid.uuid5(uuid.NAMESPACE_URL, f"{project_id}:{path}:{index}"))


def _match(key: str, value: str | int) -> qm.FieldCondition:
    return qm.FieldCondition(key=key, match=qm.MatchValue(value=value))


class QdrantChunkStore:
    """ChunkStore on a single Qdrant collection, partitioned by project_id payload.

    Points are addressed by a deterministic id derived from (project, path,
    chunk index), so writing the same chunk twice overwrites it in place.
    """

    def __init__(self, aclient: AsyncQdrantClient, collection_name: str):
        self._aclient = aclient
        self.collection_name = collection_name
        self.vector_store = QdrantVectorStore(
            aclient=aclient,
            collection_name=collection_name,
            batch_size=20,
        )

    async def _exists(self) -> bool:
        return await self._aclient.collection_exists(self.collection_name)

    async def find_chunk_content_hash(self, project_id: str, path: str, index: int) -> str | None:
        if not await self._exists():
            return None
        points = await self._aclient.retrieve(
            collection_name=self.collection_name,
            ids=[chunk_point_id(project_id, path, index)],
            with_payload=["content_hash"],
            with_vectors=False,
        )
        if not points:
            return None
        return (points[0].payload or {}).get("content_hash")

    async def upsert_file_chunk(self, project_id: str, path: str, chunk: EmbeddedChunk) -> None:
        node = TextNode(
            id_=chunk_point_id(project_id, path, chunk.chunk_index),
            text=chunk.text,
            embedding=chunk.vector,
            metadata={
                "project_id": project_id,
                "file_path": path,
                "chunk_index": chunk.chunk_index,
                "content_hash": chunk.content_hash,
            },
            excluded_embed_metadata_keys=["project_id", "file_path", "chunk_index", "content_hash"],
        )
        await self.vector_store.async_add([node])

    async def delete_stale_chunks(self, project_id: str, path: str, keep: int) -> None:
        if not await self._exists():
            return
        await self._aclient.delete(
            collection_name=self.collection_name,
            points_selector=qm.FilterSelector(
                filter=qm.Filter(
                    must=[
                        _match("project_id", project_id),
                        _match("file_path", path),
                        qm.FieldCondition(key="chunk_index", range=qm.Range(gte=keep)),
                    ]
                )
            ),
        )

    async def list_chunk_paths(self, project_id: str) -> set[str]:
        if not await self._exists():
            return set()
        paths: set[str] = set()
        offset = None
        while True:
            points, next_offset = await self._aclient.scroll(
                collection_name=self.collection_name,
                scroll_filter=qm.Filter(must=[_match("project_id", project_id)]),
                limit=SCROLL_LIMIT,
                offset=offset,
                with_payload=["file_path"],
                with_vectors=False,
            )
            for point in points:
                file_path = (point.payload or {}).get("file_path")
                if file_path:
                    paths.add(file_path)
            if next_offset is None:
                break
            offset = next_offset
        return paths

    async def delete_file_chunks(self, project_id: str, path: str) -> None:
        await self.delete_stale_chunks(project_id, path, keep=0)

    async def search(self, project_id: str, vector: list[float], top_k: int) -> list[SearchHit]:
        if not await self._exists():
            return []
        result = await self.vector_store.aquery(
            VectorStoreQuery(
                query_embedding=vector,
                similarity_top_k=top_k,
                filters=MetadataFilters(filters=[MetadataFilter(key="project_id", value=project_id)]),
            )
        )
        similarities = result.similarities or []
        hits = []
        for i, node in enumerate(result.nodes or []):
            metadata = node.metadata or {}
            hits.append(
                SearchHit(
                    file_path=metadata.get("file_path", ""),
                    chunk_index=int(metadata.get("chunk_index", 0)),
                    score=round(similarities[i], 4) if i < len(similarities) else None,
                    content=node.get_content(),
                )
            )
        return hits
