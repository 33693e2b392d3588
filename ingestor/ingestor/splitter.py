from llama_index.core.node_parser import SentenceSplitter

DEFAULT_CHUNK_SIZE = 1000
DEFAULT_CHUNK_OVERLAP = 100


def _characters(text: str) -> list[str]:
    return list(text)


def build_splitter(
    chunk_size: int = DEFAULT_CHUNK_SIZE, chunk_overlap: int = DEFAULT_CHUNK_OVERLAP
) -> SentenceSplitter:
    # Sizes are in characters, independent of the embedding model's tokenizer.
    return SentenceSplitter(
        chunk_size=chunk_size,
        chunk_overlap=chunk_overlap,
        tokenizer=_characters,
    )


def split_text(splitter: SentenceSplitter, text: str) -> list[str]:
    return [chunk for chunk in splitter.split_text(text) if chunk.strip()]
