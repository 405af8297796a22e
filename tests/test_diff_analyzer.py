"""Unit tests for diff parsing, format detection and metadata extraction."""

import json
from datetime import datetime, timezone

import pytest

from flowguard.exceptions import DiffParseError
from verification.diff_analyzer import DiffAnalyzer


@pytest.fixture
def analyzer():
    return DiffAnalyzer()


class TestUnifiedParsing:
    """Test git and unified text parsing."""

    def test_parses_files_and_statistics(self, analyzer, sample_git_diff):
        """Test a two-file git diff."""
        parsed = analyzer.parse_diff(sample_git_diff, 'git')

        assert parsed.format == 'git'
        assert parsed.total_files == 2
        assert parsed.additions == 4
        assert parsed.deletions == 1
        assert parsed.total_lines == 5
        assert parsed.parsing_errors == ()

        auth, new_module = parsed.changed_files
        assert auth.path == 'src/auth.py'
        assert auth.status == 'modified'
        assert new_module.path == 'src/new_module.py'
        assert new_module.status == 'added'

    def test_line_numbers_follow_hunk_counters(self, analyzer, sample_git_diff):
        """Test additions use new-file numbering and deletions old-file numbering."""
        parsed = analyzer.parse_diff(sample_git_diff, 'git')
        changes = parsed.changed_files[0].changes

        assert [(c.type, c.line_number, c.content) for c in changes] == [
            ('deletion', 2, 'TIMEOUT = 10'),
            ('addition', 2, 'TIMEOUT = 30'),
            ('addition', 3, 'RETRIES = 3'),
        ]

    def test_context_lines_only_in_full_view(self, analyzer, sample_git_diff):
        """Test unchanged lines are kept in file_changes but not changed_files."""
        parsed = analyzer.parse_diff(sample_git_diff, 'git')

        full = parsed.file_changes[0]
        assert [c.type for c in full.changes].count('unchanged') == 2
        assert full.changes[0].old_line_number == 1
        assert all(c.type != 'unchanged' for c in parsed.changed_files[0].changes)

    def test_single_addition(self, analyzer):
        """Test the smallest useful diff."""
        diff = "diff --git a/f.txt b/f.txt\n@@ -0,0 +1 @@\n+hello\n"

        parsed = analyzer.parse_diff(diff, 'git')

        assert parsed.total_files == 1
        change = parsed.changed_files[0].changes[0]
        assert (change.type, change.line_number, change.content) == ('addition', 1, 'hello')

    def test_deleted_file(self, analyzer):
        diff = (
            "diff --git a/old.py b/old.py\n"
            "deleted file mode 100644\n"
            "--- a/old.py\n"
            "+++ /dev/null\n"
            "@@ -1,2 +0,0 @@\n"
            "-a = 1\n"
            "-b = 2\n"
        )

        parsed = analyzer.parse_diff(diff, 'git')

        assert parsed.changed_files[0].status == 'deleted'
        assert parsed.deletions == 2
        assert parsed.statistics.deleted_files == 1

    def test_rename_reported_as_modified(self, analyzer):
        """Test renames keep the old path but flatten to modified externally."""
        diff = (
            "diff --git a/old_name.py b/new_name.py\n"
            "similarity index 90%\n"
            "rename from old_name.py\n"
            "rename to new_name.py\n"
            "@@ -1 +1 @@\n"
            "-x = 1\n"
            "+x = 2\n"
        )

        parsed = analyzer.parse_diff(diff, 'git')

        assert parsed.file_changes[0].status == 'renamed'
        assert parsed.file_changes[0].old_path == 'old_name.py'
        assert parsed.changed_files[0].status == 'modified'
        assert parsed.statistics.renamed_files == 1

    def test_empty_input(self, analyzer):
        parsed = analyzer.parse_diff("", 'git')

        assert parsed.total_files == 0
        assert parsed.total_lines == 0
        assert parsed.changed_files == ()

    def test_no_newline_marker_ignored(self, analyzer):
        diff = (
            "diff --git a/f b/f\n"
            "@@ -1 +1 @@\n"
            "-a\n"
            "\\ No newline at end of file\n"
            "+b\n"
        )

        parsed = analyzer.parse_diff(diff, 'git')

        assert [c.content for c in parsed.changed_files[0].changes] == ['a', 'b']

    def test_malformed_hunk_header_recorded(self, analyzer):
        diff = "diff --git a/f b/f\n@@ garbage @@\n+line\n"

        parsed = analyzer.parse_diff(diff, 'git')

        assert len(parsed.parsing_errors) == 1
        assert 'malformed hunk header' in parsed.parsing_errors[0]
        assert parsed.changed_files[0].changes == []

    def test_plain_unified_diff_without_git_headers(self, analyzer):
        """Test diff -u output delimited by ---/+++ pairs."""
        diff = (
            "--- a/one.txt\t2024-01-01 10:00:00\n"
            "+++ b/one.txt\t2024-01-01 11:00:00\n"
            "@@ -1 +1,2 @@\n"
            " keep\n"
            "+added\n"
            "--- /dev/null\n"
            "+++ b/two.txt\n"
            "@@ -0,0 +1 @@\n"
            "+fresh\n"
        )

        parsed = analyzer.parse_diff(diff, 'unified')

        assert [f.path for f in parsed.changed_files] == ['one.txt', 'two.txt']
        assert [f.status for f in parsed.changed_files] == ['modified', 'added']
        assert parsed.changed_files[0].changes[0].line_number == 2

    def test_header_like_lines_inside_hunk_are_changes(self, analyzer):
        """Test ---/+++ lines within a hunk's line counts stay changes, not a new file."""
        diff = (
            "--- a/q.sql\n"
            "+++ b/q.sql\n"
            "@@ -1,2 +1,2 @@\n"
            " SELECT 1;\n"
            "--- old note\n"
            "+++ new note\n"
        )

        parsed = analyzer.parse_diff(diff, 'unified')

        assert parsed.total_files == 1
        assert parsed.additions == 1
        assert parsed.deletions == 1
        assert parsed.statistics.renamed_files == 0
        changes = parsed.changed_files[0].changes
        assert [(c.type, c.line_number, c.content) for c in changes] == [
            ('deletion', 2, '-- old note'),
            ('addition', 2, '++ new note'),
        ]

    def test_new_file_with_five_lines(self, analyzer):
        diff = (
            "diff --git a/src/greeting.py b/src/greeting.py\n"
            "new file mode 100644\n"
            "index 0000000..3b18e51\n"
            "--- /dev/null\n"
            "+++ b/src/greeting.py\n"
            "@@ -0,0 +1,5 @@\n"
            "+def greet(name):\n"
            "+    if not name:\n"
            "+        name = 'world'\n"
            "+    message = f'Hello, {name}!'\n"
            "+    return message\n"
        )

        parsed = analyzer.parse_diff(diff, 'git')

        assert parsed.total_files == 1
        assert parsed.additions == 5
        assert parsed.deletions == 0
        assert parsed.changed_files[0].path == 'src/greeting.py'
        assert parsed.changed_files[0].status == 'added'

    def test_unsupported_format_raises(self, analyzer):
        with pytest.raises(DiffParseError):
            analyzer.parse_diff("anything", 'svn')

    def test_parsed_diff_is_frozen(self, analyzer, sample_git_diff):
        parsed = analyzer.parse_diff(sample_git_diff, 'git')

        with pytest.raises(AttributeError):
            parsed.format = 'unified'


class TestProviderParsing:
    """Test GitHub and GitLab JSON parsing."""

    def test_github_files(self, analyzer):
        data = [
            {
                'filename': 'app/main.py',
                'status': 'modified',
                'patch': '@@ -10,2 +10,2 @@\n-old\n+new\n same',
            },
            {
                'filename': 'app/gone.py',
                'status': 'removed',
                'patch': '@@ -1 +0,0 @@\n-bye',
            },
            {
                'filename': 'app/renamed.py',
                'status': 'renamed',
                'previous_filename': 'app/original.py',
            },
        ]

        parsed = analyzer.parse_diff(json.dumps(data), 'github')

        assert parsed.format == 'github'
        assert [f.status for f in parsed.changed_files] == ['modified', 'deleted', 'modified']
        assert parsed.file_changes[2].old_path == 'app/original.py'
        changes = parsed.changed_files[0].changes
        assert (changes[0].type, changes[0].line_number) == ('deletion', 10)
        assert (changes[1].type, changes[1].line_number) == ('addition', 10)
        assert parsed.changed_files[2].changes == []

    def test_github_invalid_json_falls_back_to_unified(self, analyzer):
        diff = "diff --git a/f b/f\n@@ -0,0 +1 @@\n+x\n"

        parsed = analyzer.parse_diff(diff, 'github')

        assert parsed.format == 'unified'
        assert parsed.total_files == 1

    def test_gitlab_changes(self, analyzer):
        data = {
            'changes': [
                {'new_path': 'lib/a.rb', 'old_path': 'lib/a.rb', 'new_file': True,
                 'diff': '@@ -0,0 +1,2 @@\n+one\n+two'},
                {'new_path': 'lib/b.rb', 'old_path': 'lib/old_b.rb', 'renamed_file': True,
                 'diff': ''},
                {'new_path': 'lib/c.rb', 'old_path': 'lib/c.rb', 'deleted_file': True,
                 'diff': '@@ -1 +0,0 @@\n-gone'},
            ]
        }

        parsed = analyzer.parse_diff(json.dumps(data), 'gitlab')

        assert [f.status for f in parsed.file_changes] == ['added', 'renamed', 'deleted']
        assert [f.status for f in parsed.changed_files] == ['added', 'modified', 'deleted']
        assert parsed.additions == 2
        assert parsed.deletions == 1

    def test_gitlab_wrong_shape_falls_back(self, analyzer):
        parsed = analyzer.parse_diff(json.dumps({'files': []}), 'gitlab')

        assert parsed.format == 'unified'
        assert parsed.total_files == 0


class TestDetectFormat:
    """Test format detection."""

    def test_git_header(self, analyzer, sample_git_diff):
        assert analyzer.detect_format(sample_git_diff) == 'git'

    def test_github_json(self, analyzer):
        assert analyzer.detect_format('[{"filename": "a.py"}]') == 'github'

    def test_gitlab_json(self, analyzer):
        assert analyzer.detect_format('{"changes": []}') == 'gitlab'

    def test_fallbacks(self, analyzer):
        assert analyzer.detect_format('{not json') == 'unified'
        assert analyzer.detect_format('[]') == 'unified'
        assert analyzer.detect_format('--- a\n+++ b\n') == 'unified'
        assert analyzer.detect_format('') == 'unified'


class TestExtractMetadata:
    """Test format-patch header extraction."""

    def test_format_patch_headers(self, analyzer):
        patch = (
            "From 0123456789abcdef0123456789abcdef01234567 Mon Sep 17 00:00:00 2001\n"
            "From: Jane Dev <jane@example.com>\n"
            "Date: Tue, 2 Jan 2024 15:04:05 +0000\n"
            "Subject: [PATCH 1/2] Add session timeout\n"
            "\n"
            "diff --git a/f b/f\n"
        )

        metadata = analyzer.extract_metadata(patch, 'git')

        assert metadata.commit_hash == '0123456789abcdef0123456789abcdef01234567'
        assert metadata.author == 'Jane Dev <jane@example.com>'
        assert metadata.timestamp == datetime(2024, 1, 2, 15, 4, 5, tzinfo=timezone.utc)
        assert metadata.message == 'Add session timeout'

    def test_plain_diff_has_no_metadata(self, analyzer, sample_git_diff):
        metadata = analyzer.extract_metadata(sample_git_diff, 'git')

        assert metadata.commit_hash is None
        assert metadata.author is None
        assert metadata.message is None

    def test_json_formats_yield_empty_metadata(self, analyzer):
        metadata = analyzer.extract_metadata('From: A <a@b.c>', 'github')

        assert metadata.author is None

    def test_bad_date_ignored(self, analyzer):
        metadata = analyzer.extract_metadata("Date: not a date\n", 'git')

        assert metadata.timestamp is None
