import base64
import logging
import os
import subprocess
from pathlib import Path

from .errors import AuthError, GitError, RepositoryNotFound

logger = logging.getLogger(__name__)

_AUTH_FAILURES = (
    "authentication failed",
    "could not read username",
    "terminal prompts disabled",
    "permission denied",
    "returned error: 403",
)


def _auth_args(token: str | None) -> list[str]:
    if not token:
        return []
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode()
    return ["-c", f"http.extraHeader=Authorization: Basic {basic}"]


def _scrub(text: str, token: str | None) -> str:
    if not token:
        return text
    basic = base64.b64encode(f"x-access-token:{token}".encode()).decode()
    return text.replace(token, "***").replace(basic, "***")


def _run_git(args: list[str], *, token: str | None = None, timeout: float | None = None) -> bytes:
    env = {**os.environ, "GIT_TERMINAL_PROMPT": "0"}
    try:
        result = subprocess.run(
            ["git", *_auth_args(token), *args],
            capture_output=True,
            env=env,
            timeout=timeout,
        )
    except subprocess.TimeoutExpired as e:
        raise GitError(f"git {args[0]} timed out after {e.timeout:.0f}s") from e

    if result.returncode != 0:
        stderr = _scrub(result.stderr.decode("utf-8", errors="replace").strip(), token)
        lowered = stderr.lower()
        if "repository not found" in lowered:
            raise RepositoryNotFound(f"git {args[0]} failed: {stderr}")
        if any(marker in lowered for marker in _AUTH_FAILURES):
            raise AuthError(f"git {args[0]} failed: {stderr}")
        raise GitError(f"git {args[0]} failed: {stderr}")
    return result.stdout


def sync_mirror(repo_url: str, token: str | None, dest: str, timeout: float | None = None) -> str:
    """Clone or refresh a bare mirror of `repo_url` at `dest`.

    The token is passed as an HTTP header per invocation, so it never lands in
    the mirror's config.
    """
    if (Path(dest) / "HEAD").exists():
        logger.info("Updating mirror %s", dest)
        _run_git(["--git-dir", dest, "remote", "update", "--prune"], token=token, timeout=timeout)
    else:
        logger.info("Cloning mirror into %s", dest)
        Path(dest).parent.mkdir(parents=True, exist_ok=True)
        _run_git(["clone", "--mirror", "--quiet", repo_url, dest], token=token, timeout=timeout)
    return dest


def resolve_head(git_dir: str) -> str | None:
    """SHA of the default branch, or None for a repository without commits."""
    try:
        out = _run_git(["--git-dir", git_dir, "rev-parse", "--verify", "--quiet", "HEAD^{commit}"])
    except GitError:
        return None
    return out.decode().strip() or None


def ls_tree(git_dir: str, sha: str) -> list[str]:
    """Raw `git ls-tree -r -l -z` entries: "<mode> <type> <object> <size>\\t<path>"."""
    out = _run_git(["--git-dir", git_dir, "ls-tree", "-r", "-l", "-z", sha])
    return [entry for entry in out.decode("utf-8", errors="surrogateescape").split("\0") if entry]


def read_blob(git_dir: str, blob_id: str) -> bytes:
    return _run_git(["--git-dir", git_dir, "cat-file", "blob", blob_id])
