import asyncio
import logging
import re
import time
from collections.abc import AsyncIterator, Awaitable, Callable
from typing import Any
from urllib.parse import urlparse

import httpx

from .errors import (
    AuthError,
    FetchError,
    InvalidRepositoryUrl,
    RateLimited,
    RepositoryNotFound,
    TransientNetworkError,
)
from .models import CommitDescriptor, CommitDiff

logger = logging.getLogger(__name__)

USER_AGENT = "repo-ingestor/0.1"
MAX_PATCH_CHARS = 1000
PATCHED_FILES = 3
DEFAULT_RATE_LIMIT_WAIT = 60.0

_SCP_URL = re.compile(r"^[\w.-]+@[\w.-]+:(?P<path>.+)$")


def parse_repo_url(repo_url: str) -> tuple[str, str]:
    """Split a hosting URL (https or ssh form) into (owner, repo)."""
    url = repo_url.strip()
    match = _SCP_URL.match(url)
    if match:
        path = match.group("path")
    else:
        parsed = urlparse(url)
        if parsed.scheme not in ("http", "https", "ssh") or not parsed.netloc:
            raise InvalidRepositoryUrl(f"Not a repository URL: {repo_url}")
        path = parsed.path

    parts = [p for p in path.split("/") if p]
    if len(parts) < 2:
        raise InvalidRepositoryUrl(f"Missing owner or repository name: {repo_url}")
    owner, repo = parts[0], parts[1]
    if repo.endswith(".git"):
        repo = repo[:-4]
    if not repo:
        raise InvalidRepositoryUrl(f"Missing repository name: {repo_url}")
    return owner, repo


def build_commit_diff(sha: str, payload: dict[str, Any]) -> CommitDiff:
    """Render GitHub's single-commit payload as a compact diff for summarization."""
    commit = payload.get("commit") or {}
    author = commit.get("author") or {}
    stats = payload.get("stats") or {}
    files = payload.get("files") or []
    additions = stats.get("additions", sum(f.get("additions", 0) for f in files))
    deletions = stats.get("deletions", sum(f.get("deletions", 0) for f in files))

    lines = [
        f"COMMIT: {sha[:7]}",
        f"MESSAGE: {commit.get('message', '')}",
        f"AUTHOR: {author.get('name') or 'Unknown'}",
        f"DATE: {author.get('date') or 'Unknown'}",
        f"STATS: +{additions} -{deletions} ({len(files)} files)",
        "",
        "FILES CHANGED:",
    ]
    for f in files:
        lines.append(
            f"- {f.get('filename')} ({f.get('status')}) "
            f"+{f.get('additions', 0)} -{f.get('deletions', 0)}"
        )
    patches = [f for f in files if f.get("patch")][:PATCHED_FILES]
    if patches:
        lines += ["", "SAMPLE CHANGES:"]
        for f in patches:
            lines.append(f"--- {f.get('filename')} ---")
            lines.append(f["patch"][:MAX_PATCH_CHARS])

    return CommitDiff(
        text="\n".join(lines),
        files_changed=len(files),
        additions=additions,
        deletions=deletions,
    )


def _to_descriptor(item: dict[str, Any]) -> CommitDescriptor:
    commit = item.get("commit") or {}
    author = commit.get("author") or {}
    return CommitDescriptor(
        sha=item["sha"],
        author=author.get("name"),
        author_avatar=(item.get("author") or {}).get("avatar_url"),
        message=commit.get("message") or "",
        committed_at=author.get("date"),
        html_url=item.get("html_url"),
    )


class CommitFetcher:
    """Reads commit history from the GitHub REST API.

    Page requests are retried on transient failures with exponential backoff.
    Rate-limit responses pause until the provider's reset time and do not
    count against the retry budget.
    """

    def __init__(
        self,
        client: httpx.AsyncClient,
        *,
        api_url: str = "https://api.github.com",
        page_size: int = 50,
        max_commits: int = 100,
        attempts: int = 3,
        base_delay: float = 1.0,
        rate_limit_max_wait: float = 900.0,
        sleep: Callable[[float], Awaitable[None]] = asyncio.sleep,
        clock: Callable[[], float] = time.time,
    ):
        self._client = client
        self.api_url = api_url.rstrip("/")
        self.page_size = page_size
        self.max_commits = max_commits
        self.attempts = max(1, attempts)
        self.base_delay = base_delay
        self.rate_limit_max_wait = rate_limit_max_wait
        self._sleep = sleep
        self._clock = clock

    async def fetch_commits(
        self, repo_url: str, token: str | None, since_sha: str | None = None
    ) -> AsyncIterator[CommitDescriptor]:
        """Yield commits newest-first, stopping before `since_sha`.

        `max_commits` only bounds the initial backfill. With a `since_sha`
        every commit up to it is yielded, so the caller never records a newer
        commit while older ones stay unfetched.
        """
        owner, repo = parse_repo_url(repo_url)
        endpoint = f"/repos/{owner}/{repo}/commits"
        limit = self.max_commits if since_sha is None else None
        yielded = 0
        page = 1
        while limit is None or yielded < limit:
            items = await self._get_json(
                endpoint,
                token,
                params={"per_page": self.page_size, "page": page},
                what=f"{owner}/{repo} commits page {page}",
            )
            if not items:
                return
            for item in items:
                if item.get("sha") == since_sha:
                    return
                yield _to_descriptor(item)
                yielded += 1
                if limit is not None and yielded >= limit:
                    return
            if len(items) < self.page_size:
                return
            page += 1

    async def fetch_diff(self, repo_url: str, token: str | None, sha: str) -> CommitDiff:
        owner, repo = parse_repo_url(repo_url)
        payload = await self._get_json(
            f"/repos/{owner}/{repo}/commits/{sha}",
            token,
            what=f"{owner}/{repo}@{sha[:7]}",
        )
        return build_commit_diff(sha, payload or {})

    async def _get_json(
        self,
        endpoint: str,
        token: str | None,
        *,
        params: dict[str, Any] | None = None,
        what: str,
    ) -> Any:
        attempt = 0
        delay = self.base_delay
        while True:
            try:
                return await self._request(endpoint, token, params)
            except RateLimited as exc:
                wait = min(exc.wait_seconds, self.rate_limit_max_wait)
                logger.warning("GitHub rate limit reached fetching %s, pausing %.0fs", what, wait)
                await self._sleep(wait)
            except TransientNetworkError as exc:
                attempt += 1
                if attempt >= self.attempts:
                    raise FetchError(
                        f"Failed to fetch {what} after {attempt} attempts: {exc}"
                    ) from exc
                logger.warning(
                    "Fetching %s failed (attempt %d/%d): %s", what, attempt, self.attempts, exc
                )
                await self._sleep(delay)
                delay *= 2

    async def _request(
        self, endpoint: str, token: str | None, params: dict[str, Any] | None
    ) -> Any:
        headers = {
            "Accept": "application/vnd.github+json",
            "X-GitHub-Api-Version": "2022-11-28",
            "User-Agent": USER_AGENT,
        }
        if token:
            headers["Authorization"] = f"Bearer {token}"

        try:
            response = await self._client.get(
                f"{self.api_url}{endpoint}", params=params, headers=headers
            )
        except httpx.TimeoutException as exc:
            raise TransientNetworkError(f"timed out: {exc}") from exc
        except httpx.TransportError as exc:
            raise TransientNetworkError(str(exc) or type(exc).__name__) from exc

        status = response.status_code
        if status < 400:
            try:
                return response.json()
            except ValueError as exc:
                raise TransientNetworkError(f"malformed JSON from {endpoint}") from exc

        # Empty repository
        if status == 409:
            return None
        if status in (403, 429):
            wait = self._rate_limit_wait(response)
            if wait is not None:
                raise RateLimited(wait)
            if status == 429:
                raise RateLimited(DEFAULT_RATE_LIMIT_WAIT)
            raise AuthError(f"GitHub refused access to {endpoint} (403)")
        if status == 401:
            raise AuthError("GitHub rejected the token (401)")
        if status == 404:
            raise RepositoryNotFound(f"Repository not found or not accessible: {endpoint}")
        if status >= 500:
            raise TransientNetworkError(f"GitHub API error {status}")
        raise FetchError(f"GitHub API error {status}: {response.text[:200]}")

    def _rate_limit_wait(self, response: httpx.Response) -> float | None:
        retry_after = response.headers.get("Retry-After")
        if retry_after:
            try:
                return max(float(retry_after), 1.0)
            except ValueError:
                return DEFAULT_RATE_LIMIT_WAIT
        if response.headers.get("X-RateLimit-Remaining") == "0":
            reset = response.headers.get("X-RateLimit-Reset")
            if reset:
                try:
                    return max(float(reset) - self._clock(), 0.0) + 1.0
                except ValueError:
                    pass
            return DEFAULT_RATE_LIMIT_WAIT
        return None
