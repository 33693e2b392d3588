from collections.abc import AsyncIterator
from contextlib import asynccontextmanager


class ProjectLocks:
    """Non-blocking per-project run guard for a single event loop.

    `hold` yields True when the caller now owns the project and False when a
    run is already active. Ownership ends when the block exits, including on
    exceptions and cancellation.
    """

    def __init__(self):
        self._active: set[str] = set()

    def is_held(self, project_id: str) -> bool:
        return project_id in self._active

    @asynccontextmanager
    async def hold(self, project_id: str) -> AsyncIterator[bool]:
        if project_id in self._active:
            yield False
            return
        self._active.add(project_id)
        try:
            yield True
        finally:
            self._active.discard(project_id)
