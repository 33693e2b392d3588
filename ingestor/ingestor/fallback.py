import re
from typing import NamedTuple

CONVENTIONAL_PREFIX = re.compile(
    r"^(?P<type>[A-Za-z]+)(?:\((?P<scope>[^)]*)\))?(?P<breaking>!)?:\s*(?P<subject>\S.*)$"
)

TYPE_LABELS = {
    "feat": "Feature",
    "feature": "Feature",
    "fix": "Bug fix",
    "bugfix": "Bug fix",
    "hotfix": "Bug fix",
    "docs": "Documentation",
    "doc": "Documentation",
    "refactor": "Refactor",
    "perf": "Performance",
    "test": "Tests",
    "tests": "Tests",
    "build": "Build",
    "ci": "CI",
    "chore": "Chore",
    "style": "Style",
    "revert": "Revert",
}


class DiffStats(NamedTuple):
    files_changed: int
    additions: int
    deletions: int


def count_diff_stats(diff: str | None) -> DiffStats:
    """Count files and +/- lines in a unified diff."""
    files = additions = deletions = 0
    for line in (diff or "").splitlines():
        if line.startswith("diff --git"):
            files += 1
        elif line.startswith(("+++", "---")):
            continue
        elif line.startswith("+"):
            additions += 1
        elif line.startswith("-"):
            deletions += 1
    return DiffStats(files, additions, deletions)


def _headline(message: str) -> str:
    first_line = next((line.strip() for line in message.splitlines() if line.strip()), "")
    if not first_line:
        return "Commit without a message"

    match = CONVENTIONAL_PREFIX.match(first_line)
    if not match or match.group("type").lower() not in TYPE_LABELS:
        return first_line

    label = TYPE_LABELS[match.group("type").lower()]
    if match.group("breaking"):
        label = f"Breaking {label.lower()}"
    scope = (match.group("scope") or "").strip()
    subject = match.group("subject").strip()
    if scope:
        return f"{label} ({scope}): {subject}"
    return f"{label}: {subject}"


def fallback_summary(
    message: str | None, diff: str | None = None, stats: DiffStats | None = None
) -> str:
    """Summary built from the commit message and change counts, without any model."""
    headline = _headline(message or "")
    files, additions, deletions = stats or count_diff_stats(diff)
    if not (files or additions or deletions):
        return headline
    noun = "file" if files == 1 else "files"
    return f"{headline} ({files} {noun} changed, +{additions}/-{deletions} lines)"
