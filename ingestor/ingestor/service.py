import asyncio
import logging
import os

import restate
from dotenv import load_dotenv
from hypercorn.asyncio import serve
from hypercorn.config import Config

from .config import Settings
from .models import IndexResult, PollResult, ProjectRequest
from .orchestrator import Ingestor
from .runtime import Runtime


def create_app(ingestor: Ingestor):
    ingestor_service = restate.Service("Ingestor")

    # Handlers never raise for run failures; the result carries state and errors.
    @ingestor_service.handler("PollCommits")
    async def poll_commits(ctx: restate.Context, req: ProjectRequest) -> PollResult:
        return await ingestor.poll_commits(req.project_id)

    @ingestor_service.handler("IndexRepo")
    async def index_repo(ctx: restate.Context, req: ProjectRequest) -> IndexResult:
        return await ingestor.index_repository(req.project_id)

    return restate.app([ingestor_service])


async def main() -> None:
    load_dotenv()
    logging.basicConfig(
        level=os.environ.get("LOG_LEVEL", "INFO"),
        format="%(asctime)s %(levelname)s %(name)s: %(message)s",
    )
    host = os.environ.get("INGESTOR_HOST", "0.0.0.0")
    port = os.environ.get("INGESTOR_PORT", "9092")

    config = Config()
    config.bind = [f"{host}:{port}"]

    async with Runtime(Settings.from_env()) as runtime:
        await serve(create_app(runtime.ingestor), config)


if __name__ == "__main__":
    asyncio.run(main())
