import logging
from collections.abc import Iterator
from pathlib import PurePosixPath

from pydantic import BaseModel, Field

from . import git
from .errors import BinaryContent, ContentTooLarge, GitError, UnreadableFile
from .models import FileDescriptor, RepositorySnapshot

logger = logging.getLogger(__name__)

MAX_FILE_BYTES = 500 * 1024  # 500 KB
BINARY_SNIFF_BYTES = 8 * 1024  # 8 KB
SYMLINK_MODE = "120000"

SKIP_DIRS = {
    "node_modules", "__pycache__", ".venv", "venv", "dist", "build", ".next",
    "coverage", "vendor", "target", "__tests__",
}
SKIP_FILES = {
    "package-lock.json", "yarn.lock", "pnpm-lock.yaml", "bun.lockb", "poetry.lock",
    "Cargo.lock", "composer.lock", "Gemfile.lock", "uv.lock",
}
SKIP_SUFFIXES = (".min.js", ".min.css", ".map", ".lock", ".log")
BINARY_EXTENSIONS = {
    ".png", ".jpg", ".jpeg", ".gif", ".bmp", ".ico", ".webp", ".tiff", ".psd",
    ".pdf", ".zip", ".gz", ".tgz", ".bz2", ".xz", ".7z", ".rar", ".tar", ".jar", ".war",
    ".woff", ".woff2", ".ttf", ".otf", ".eot",
    ".mp3", ".mp4", ".wav", ".ogg", ".mov", ".avi", ".webm", ".flac",
    ".exe", ".dll", ".so", ".dylib", ".o", ".a", ".class", ".pyc", ".pyo", ".wasm", ".bin",
    ".sqlite", ".db", ".pkl", ".npy", ".npz", ".parquet",
}


class IgnorePolicy(BaseModel):
    skip_dirs: set[str] = Field(default_factory=lambda: set(SKIP_DIRS))
    skip_files: set[str] = Field(default_factory=lambda: set(SKIP_FILES))
    skip_suffixes: tuple[str, ...] = SKIP_SUFFIXES
    binary_extensions: set[str] = Field(default_factory=lambda: set(BINARY_EXTENSIONS))
    skip_hidden: bool = True
    max_file_bytes: int = MAX_FILE_BYTES

    def excludes(self, path: str) -> bool:
        parts = PurePosixPath(path).parts
        if not parts:
            return True
        if self.skip_hidden and any(p.startswith(".") for p in parts):
            return True
        if any(p in self.skip_dirs for p in parts[:-1]):
            return True
        name = parts[-1]
        if name in self.skip_files or name.lower().endswith(self.skip_suffixes):
            return True
        return PurePosixPath(name).suffix.lower() in self.binary_extensions


class RepositoryWalker:
    """Enumerates text files of a repository snapshot.

    Reads go through git plumbing on a bare mirror, so the snapshot is never
    modified and every call starts from scratch.
    """

    def __init__(self, policy: IgnorePolicy | None = None):
        self.policy = policy or IgnorePolicy()

    def list_text_files(self, snapshot: RepositorySnapshot) -> Iterator[FileDescriptor]:
        for entry in git.ls_tree(snapshot.git_dir, snapshot.sha):
            try:
                meta, path = entry.split("\t", 1)
                mode, kind, object_id, size = meta.split()
                size_bytes = int(size)
            except ValueError:
                logger.warning("Skipping unparseable tree entry %r", entry)
                continue
            # Submodules and symlinks carry no file content of their own
            if kind != "blob" or mode == SYMLINK_MODE:
                continue
            if self.policy.excludes(path):
                continue
            yield FileDescriptor(path=path, size_bytes=size_bytes, content_hash=object_id)

    def read_text(self, snapshot: RepositorySnapshot, descriptor: FileDescriptor) -> str:
        if descriptor.size_bytes > self.policy.max_file_bytes:
            raise ContentTooLarge(
                f"{descriptor.path} is {descriptor.size_bytes} bytes "
                f"(limit {self.policy.max_file_bytes})"
            )
        try:
            raw = git.read_blob(snapshot.git_dir, descriptor.content_hash)
        except GitError as e:
            raise UnreadableFile(f"{descriptor.path}: {e}") from e

        if b"\0" in raw[:BINARY_SNIFF_BYTES]:
            raise BinaryContent(descriptor.path)
        try:
            return raw.decode("utf-8", errors="strict")
        except UnicodeDecodeError as e:
            raise BinaryContent(descriptor.path) from e
