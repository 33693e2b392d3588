import logging
import os

from dotenv import load_dotenv
from fastmcp import FastMCP

from ingestor.config import Settings
from ingestor.runtime import Runtime
from ingestor.search import MAX_TOP_K, search_project

load_dotenv()
logging.basicConfig(level=os.environ.get("LOG_LEVEL", "WARNING"))

settings = Settings.from_env()
if not settings.openrouter_api_key:
    raise RuntimeError("OPENROUTER_API_KEY environment variable is not set")

runtime = Runtime(settings)

mcp = FastMCP(
    name="repo-ingestor-search",
    instructions=(
        "Semantic search over indexed git repositories. "
        "Use list_projects to see available repositories, "
        "then search to find relevant code chunks by natural language query."
    ),
)


@mcp.tool()
def list_projects() -> list[dict]:
    """List registered projects whose repositories can be searched."""
    return [p.model_dump(exclude={"credentials_ref"}) for p in runtime.commits.list_projects()]


@mcp.tool()
async def search(query: str, project_id: str, top_k: int = 5) -> list[dict]:
    """Search for code chunks semantically similar to the query.

    Args:
        query: Natural language search query.
        project_id: Project identifier (from list_projects).
        top_k: Number of results to return (max 20).
    """
    if await runtime.commits.find_project(project_id) is None:
        available = ", ".join(p.id for p in runtime.commits.list_projects())
        raise ValueError(f"Project '{project_id}' not found. Available: {available}")
    hits = await search_project(
        runtime.chunks, runtime.embed_model, project_id, query, min(top_k, MAX_TOP_K)
    )
    return [hit.model_dump() for hit in hits]


def main() -> None:
    transport = os.environ.get("MCP_TRANSPORT", "stdio")
    kwargs = {}
    if transport != "stdio":
        kwargs["host"] = os.environ.get("MCP_HOST", "0.0.0.0")
        kwargs["port"] = int(os.environ.get("MCP_PORT", "8080"))
    mcp.run(transport=transport, **kwargs)


if __name__ == "__main__":
    main()
