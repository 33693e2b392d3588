import pytest

from ingestor.fallback import DiffStats, count_diff_stats, fallback_summary

DIFF = """\
diff --git a/app.py b/app.py
--- a/app.py
+++ b/app.py
@@ -1,2 +1,3 @@
-old = 1
+new = 1
+extra = 2
diff --git a/README.md b/README.md
--- a/README.md
+++ b/README.md
@@ -1 +1 @@
+docs
"""


def test_count_diff_stats_ignores_file_headers():
    assert count_diff_stats(DIFF) == DiffStats(files_changed=2, additions=3, deletions=1)


def test_count_diff_stats_without_diff():
    assert count_diff_stats(None) == DiffStats(0, 0, 0)


@pytest.mark.parametrize(
    "message,expected",
    [
        ("feat: add search endpoint", "Feature: add search endpoint"),
        ("fix(api): reject empty query", "Bug fix (api): reject empty query"),
        ("refactor!: drop legacy config", "Breaking refactor: drop legacy config"),
        ("docs: update README\n\nLonger body.", "Documentation: update README"),
        ("Update dependencies", "Update dependencies"),
        ("wip: not a known type", "wip: not a known type"),
        ("\n\n  Trailing body only  \n", "Trailing body only"),
        ("", "Commit without a message"),
    ],
)
def test_headline_from_message(message, expected):
    assert fallback_summary(message) == expected


def test_counts_from_diff_are_appended():
    summary = fallback_summary("fix: off by one", DIFF)

    assert summary == "Bug fix: off by one (2 files changed, +3/-1 lines)"


def test_explicit_stats_take_precedence():
    summary = fallback_summary("chore: bump", DIFF, DiffStats(1, 10, 0))

    assert summary == "Chore: bump (1 file changed, +10/-0 lines)"


def test_never_fails_on_missing_input():
    assert fallback_summary(None, None) == "Commit without a message"
