SYSTEM_PROMPT = """\
You are a senior software engineer writing the changelog entry for a single git \
commit. Read the commit message and the diff and explain what changed and why it \
matters to someone skimming the project history.

Rules:
- Start with the kind of change (feature, bug fix, refactor, docs, tests, build, chore).
- Describe behaviour, not line-by-line edits. Mention the most important files only \
when they help the reader.
- Lines starting with `+` in the diff were added, lines starting with `-` were removed.
- Keep it under 100 words, plain prose, no headings, no bullet lists.
- If the diff is truncated, summarize what is visible and do not guess at the rest.
"""

TRUNCATION_MARKER = "\n... [diff truncated, {remaining} more characters]"


def truncate_diff(diff: str, max_chars: int) -> str:
    if len(diff) <= max_chars:
        return diff
    return diff[:max_chars] + TRUNCATION_MARKER.format(remaining=len(diff) - max_chars)


def build_user_prompt(message: str, diff: str | None, max_diff_chars: int) -> str:
    message = message.strip() or "(no message)"
    excerpt = truncate_diff(diff.strip(), max_diff_chars) if diff and diff.strip() else "(diff unavailable)"
    return (
        f"## Commit message\n{message}\n\n"
        f"## Diff\n"
        f"```diff\n{excerpt}\n```"
    )
