import asyncio
import logging
import os
from collections.abc import Awaitable, Callable
from typing import TypeVar

import click
from dotenv import load_dotenv

from .config import Settings
from .errors import IngestError
from .models import Project, RunState
from .runtime import Runtime
from .search import search_project

T = TypeVar("T")


def _run(settings: Settings, action: Callable[[Runtime], Awaitable[T]]) -> T:
    async def runner() -> T:
        async with Runtime(settings) as runtime:
            return await action(runtime)

    return asyncio.run(runner())


@click.group()
@click.option("--database-url", default=None, help="SQLAlchemy URL of the commit store.")
@click.option("--qdrant-url", default=None)
@click.option("--model", default=None, help="Embedding model.")
@click.option("--repos-dir", default=None, type=click.Path(file_okay=False, resolve_path=True))
@click.pass_context
def cli(
    ctx: click.Context,
    database_url: str | None,
    qdrant_url: str | None,
    model: str | None,
    repos_dir: str | None,
) -> None:
    """Summarize commits and index repositories for semantic search."""
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "WARNING"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    overrides = {
        "database_url": database_url,
        "qdrant_url": qdrant_url,
        "embedding_model": model,
        "repos_dir": repos_dir,
    }
    settings = Settings.from_env()
    ctx.obj = settings.model_copy(update={k: v for k, v in overrides.items() if v})


@cli.command("add-project")
@click.argument("project_id")
@click.argument("repo_url")
@click.option("--name", default=None)
@click.option("--credentials-ref", default=None, help="Env var holding the repository token.")
@click.pass_obj
def add_project(
    settings: Settings, project_id: str, repo_url: str, name: str | None, credentials_ref: str | None
) -> None:
    """Register a repository to poll and index."""
    project = Project(
        id=project_id,
        name=name or repo_url.rstrip("/").split("/")[-1],
        repo_url=repo_url,
        credentials_ref=credentials_ref,
    )

    async def action(runtime: Runtime) -> None:
        runtime.commits.register_project(project)

    _run(settings, action)
    click.echo(f"Registered {project.id} -> {project.repo_url}")


@cli.command()
@click.argument("project_id")
@click.pass_obj
def poll(settings: Settings, project_id: str) -> None:
    """Fetch new commits and summarize them."""
    result = _run(settings, lambda runtime: runtime.ingestor.poll_commits(project_id))
    click.echo(
        f"Processed {result.processed_count} commits, "
        f"skipped {result.skipped_count}, {len(result.errors)} errors."
    )
    for error in result.errors:
        click.echo(f"  ! {error}", err=True)
    if result.state == RunState.FAILED:
        raise click.ClickException(f"Polling {project_id} failed")


@cli.command()
@click.argument("project_id")
@click.pass_obj
def index(settings: Settings, project_id: str) -> None:
    """Embed the project's repository tree into Qdrant."""
    result = _run(settings, lambda runtime: runtime.ingestor.index_repository(project_id))
    click.echo(
        f"Embedded {result.processed_count} chunks, "
        f"{result.skipped_count} unchanged, {len(result.errors)} errors."
    )
    for error in result.errors:
        click.echo(f"  ! {error}", err=True)
    if not result.success:
        raise click.ClickException(f"Indexing {project_id} failed")


@cli.command()
@click.argument("project_id")
@click.argument("sha")
@click.pass_obj
def resummarize(settings: Settings, project_id: str, sha: str) -> None:
    """Regenerate the summary of a recorded commit."""
    try:
        record = _run(settings, lambda runtime: runtime.ingestor.resummarize_commit(project_id, sha))
    except IngestError as e:
        raise click.ClickException(str(e))
    source = "heuristic" if record.used_fallback else "AI"
    click.echo(f"[{source}] {record.summary}")


@cli.command()
@click.argument("project_id")
@click.argument("query")
@click.option("--top-k", type=int, default=5, show_default=True)
@click.pass_obj
def search(settings: Settings, project_id: str, query: str, top_k: int) -> None:
    """Semantic search over a project's indexed files."""
    if not settings.openrouter_api_key:
        raise click.ClickException("OPENROUTER_API_KEY environment variable is not set")

    hits = _run(
        settings,
        lambda runtime: search_project(runtime.chunks, runtime.embed_model, project_id, query, top_k),
    )
    if not hits:
        click.echo("No results.")
    for hit in hits:
        click.echo(f"[{hit.score}] {hit.file_path}#{hit.chunk_index}")
        click.echo(f"  {hit.content[:120].strip()}")
        click.echo()


if __name__ == "__main__":
    cli()
