import asyncio
import logging
import os
import re
from collections.abc import Mapping
from pathlib import Path
from typing import TypeVar

from . import git
from .embedding import ChunkEmbedder
from .errors import (
    AuthError,
    BinaryContent,
    ContentTooLarge,
    FetchError,
    IngestError,
    ProjectNotFound,
    TransientNetworkError,
    UnreadableFile,
    describe_error,
)
from .fallback import DiffStats
from .github import CommitFetcher
from .locks import ProjectLocks
from .models import (
    CommitDescriptor,
    CommitDiff,
    CommitRecord,
    CommitStatus,
    FileDescriptor,
    IndexResult,
    PollResult,
    Project,
    RepositorySnapshot,
    RunState,
    SummaryResult,
)
from .store import ChunkStore, CommitStore
from .summarizer import SummaryGenerator
from .walker import RepositoryWalker

logger = logging.getLogger(__name__)

RunResult = TypeVar("RunResult", PollResult, IndexResult)


def _mirror_name(project_id: str) -> str:
    return re.sub(r"[^a-zA-Z0-9_-]", "_", project_id).strip("_") or "project"


class Ingestor:
    """Runs commit polling and repository indexing for registered projects.

    Both entry points always return a result object: failures of a single
    commit, file or chunk are listed in `errors` and the run carries on, while
    failures that make the whole run pointless (unknown project, rejected
    credentials, unreachable storage) end it with state `failed`.
    """

    def __init__(
        self,
        *,
        commits: CommitStore,
        chunks: ChunkStore,
        fetcher: CommitFetcher,
        summarizer: SummaryGenerator,
        walker: RepositoryWalker,
        embedder: ChunkEmbedder | None,
        repos_dir: str,
        default_token: str | None = None,
        git_timeout: float | None = None,
        locks: ProjectLocks | None = None,
        environ: Mapping[str, str] | None = None,
    ):
        self._commits = commits
        self._chunks = chunks
        self._fetcher = fetcher
        self._summarizer = summarizer
        self._walker = walker
        self._embedder = embedder
        self._repos_dir = repos_dir
        self._default_token = default_token
        self._git_timeout = git_timeout
        self._locks = locks or ProjectLocks()
        self._environ = environ if environ is not None else os.environ

    async def poll_commits(self, project_id: str) -> PollResult:
        run = PollResult()
        logger.info("Polling commits for project %s", project_id)
        try:
            project = await self._require_project(project_id)
            token = self._token_for(project)
            since = await self._commits.latest_commit_hash(project.id)
            known = await self._commits.list_commit_hashes(project.id)
            failed = await self._commits.list_failed_commits(project.id)

            run.state = RunState.FETCHING
            # Collected in full before processing: a page failure must not let
            # newer commits be recorded ahead of older ones never fetched.
            fetched = [c async for c in self._fetcher.fetch_commits(project.repo_url, token, since)]
        except Exception as e:
            return self._fail(run, "Polling", project_id, e)

        logger.info("Fetched %d new commits for project %s", len(fetched), project.id)
        run.state = RunState.SUMMARIZING
        for record in failed:
            try:
                await self._resummarize(project, token, record)
            except AuthError as e:
                return self._fail(run, "Polling", project_id, e)
            except Exception as e:
                logger.exception("Retrying failed commit %s of project %s failed", record.sha[:7], project.id)
                run.errors.append(f"{record.sha[:7]}: {describe_error(e)}")
                continue
            run.processed_count += 1

        for commit in reversed(fetched):
            if commit.sha in known:
                run.skipped_count += 1
                continue
            try:
                created = await self._process_commit(project, token, commit)
            except AuthError as e:
                return self._fail(run, "Polling", project_id, e)
            except Exception as e:
                logger.exception("Failed to process commit %s of project %s", commit.sha[:7], project.id)
                run.errors.append(f"{commit.sha[:7]}: {describe_error(e)}")
                await self._record_failed_commit(project.id, commit)
                continue
            if created:
                run.processed_count += 1
            else:
                run.skipped_count += 1

        run.state = RunState.DONE
        logger.info(
            "Polling project %s done: %d processed, %d skipped, %d errors",
            project.id, run.processed_count, run.skipped_count, len(run.errors),
        )
        return run

    async def _process_commit(self, project: Project, token: str | None, commit: CommitDescriptor) -> bool:
        summary = await self._summarize(project, token, commit.sha, commit.message)
        record = CommitRecord.from_descriptor(project.id, commit, summary)
        created = await self._commits.insert_commit_record(record)
        if not created:
            logger.info("Commit %s already recorded by another run", commit.sha[:7])
        return created

    async def _summarize(self, project: Project, token: str | None, sha: str, message: str) -> SummaryResult:
        diff = await self._load_diff(project, token, sha)
        return await self._summarizer.summarize(
            message,
            diff.text if diff else None,
            DiffStats(diff.files_changed, diff.additions, diff.deletions) if diff else None,
        )

    async def _load_diff(self, project: Project, token: str | None, sha: str) -> CommitDiff | None:
        try:
            return await self._fetcher.fetch_diff(project.repo_url, token, sha)
        except (FetchError, TransientNetworkError) as e:
            logger.warning("No diff for commit %s, summarizing from message only: %s", sha[:7], e)
            return None

    async def _record_failed_commit(self, project_id: str, commit: CommitDescriptor) -> None:
        try:
            await self._commits.insert_commit_record(CommitRecord.from_descriptor(project_id, commit))
        except Exception:
            logger.exception("Could not record failed commit %s", commit.sha[:7])

    async def resummarize_commit(self, project_id: str, sha: str) -> CommitRecord:
        """Regenerate the summary of an already recorded commit."""
        project = await self._require_project(project_id)
        record = await self._commits.get_commit_record(project.id, sha)
        if record is None:
            raise IngestError(f"Commit {sha} is not recorded for project {project_id}")
        return await self._resummarize(project, self._token_for(project), record)

    async def _resummarize(self, project: Project, token: str | None, record: CommitRecord) -> CommitRecord:
        summary = await self._summarize(project, token, record.sha, record.message)
        updated = record.model_copy(
            update={
                "summary": summary.text,
                "used_fallback": summary.used_fallback,
                "status": CommitStatus.SUMMARIZED,
            }
        )
        await self._commits.upsert_commit_record(updated)
        return updated

    async def index_repository(self, project_id: str) -> IndexResult:
        async with self._locks.hold(project_id) as acquired:
            if not acquired:
                logger.info("Indexing already running for project %s", project_id)
                return IndexResult(
                    already_running=True,
                    errors=[f"Indexing already running for project {project_id}"],
                )
            return await self._index(project_id)

    async def _index(self, project_id: str) -> IndexResult:
        run = IndexResult()
        logger.info("Indexing repository of project %s", project_id)
        try:
            project = await self._require_project(project_id)
            if self._embedder is None:
                raise AuthError("OPENROUTER_API_KEY environment variable is not set")

            run.state = RunState.WALKING
            snapshot = await self._snapshot(project)
            files: list[FileDescriptor] = []
            if snapshot is not None:
                files = await asyncio.to_thread(list, self._walker.list_text_files(snapshot))
            indexed_paths = await self._chunks.list_chunk_paths(project.id)
        except Exception as e:
            return self._fail(run, "Indexing", project_id, e)

        run.state = RunState.EMBEDDING
        indexable: set[str] = set()
        for descriptor in files:
            try:
                if await self._index_file(project.id, snapshot, descriptor, run):
                    indexable.add(descriptor.path)
            except AuthError as e:
                return self._fail(run, "Indexing", project_id, e)

        # Deleted files, and files that turned binary or grew past the limit
        for path in sorted(indexed_paths - indexable):
            try:
                await self._chunks.delete_file_chunks(project.id, path)
            except Exception as e:
                logger.exception("Failed to remove chunks of %s", path)
                run.errors.append(f"{path}: failed to remove chunks: {describe_error(e)}")

        run.state = RunState.DONE
        run.success = True
        logger.info(
            "Indexing project %s done: %d chunks embedded, %d unchanged, %d errors",
            project.id, run.processed_count, run.skipped_count, len(run.errors),
        )
        return run

    async def _index_file(
        self,
        project_id: str,
        snapshot: RepositorySnapshot,
        descriptor: FileDescriptor,
        run: IndexResult,
    ) -> bool:
        """Index one file. Returns False when the file can no longer be indexed."""
        try:
            content = await asyncio.to_thread(self._walker.read_text, snapshot, descriptor)
        except BinaryContent:
            logger.debug("Skipping binary file %s", descriptor.path)
            return False
        except ContentTooLarge as e:
            logger.warning("Skipping %s", e)
            run.errors.append(str(e))
            return False
        except UnreadableFile as e:
            logger.warning("Skipping %s", e)
            run.errors.append(str(e))
            return True

        try:
            embedded = await self._embedder.embed_file(project_id, descriptor, content)
            run.skipped_count += embedded.skipped_count
            run.errors.extend(embedded.errors)
            for chunk in embedded.chunks:
                await self._chunks.upsert_file_chunk(project_id, descriptor.path, chunk)
                run.processed_count += 1
            await self._chunks.delete_stale_chunks(project_id, descriptor.path, embedded.chunk_count)
        except AuthError:
            raise
        except Exception as e:
            logger.exception("Failed to index %s", descriptor.path)
            run.errors.append(f"{descriptor.path}: {describe_error(e)}")
        return True

    async def _snapshot(self, project: Project) -> RepositorySnapshot | None:
        dest = str(Path(self._repos_dir) / f"{_mirror_name(project.id)}.git")
        token = self._token_for(project)
        await asyncio.to_thread(git.sync_mirror, project.repo_url, token, dest, self._git_timeout)
        sha = await asyncio.to_thread(git.resolve_head, dest)
        if sha is None:
            logger.info("Repository of project %s has no commits yet", project.id)
            return None
        return RepositorySnapshot(git_dir=dest, sha=sha)

    async def _require_project(self, project_id: str) -> Project:
        project = await self._commits.find_project(project_id)
        if project is None:
            raise ProjectNotFound(f"Project {project_id} not found")
        return project

    def _token_for(self, project: Project) -> str | None:
        if project.credentials_ref:
            token = self._environ.get(project.credentials_ref)
            if token:
                return token
        return self._default_token

    @staticmethod
    def _fail(run: RunResult, flow: str, project_id: str, exc: Exception) -> RunResult:
        if isinstance(exc, IngestError):
            logger.error("%s project %s failed: %s", flow, project_id, exc)
        else:
            logger.exception("%s project %s failed unexpectedly", flow, project_id)
        run.state = RunState.FAILED
        run.errors.append(describe_error(exc))
        return run
