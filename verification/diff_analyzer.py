"""Parse git, unified, GitHub and GitLab diffs into a normalized ParsedDiff."""

import json
import logging
import re
from email.utils import parsedate_to_datetime
from datetime import datetime
from typing import List, Optional, Any

from flowguard.exceptions import DiffParseError
from flowguard.models import Change, ChangedFile
from .types import (
    DiffMetadata, DiffStatistics, FileChange, LineChange, ParsedDiff,
)

logger = logging.getLogger(__name__)

HUNK_HEADER_RE = re.compile(r'@@ -(\d+)(?:,(\d+))? \+(\d+)(?:,(\d+))? @@')
GIT_HEADER_RE = re.compile(r'diff --git a/(.+) b/(.+)$')

COMMIT_RE = re.compile(r'^From ([a-f0-9]{40})', re.MULTILINE)
AUTHOR_RE = re.compile(r'^From: (.+) <(.+)>', re.MULTILINE)
DATE_RE = re.compile(r'^Date:\s*(.+)$', re.MULTILINE)
SUBJECT_RE = re.compile(r'^Subject:\s*(?:\[PATCH[^\]]*\]\s*)?(.+)$', re.MULTILINE)

GITHUB_STATUS_MAP = {
    'added': 'added',
    'removed': 'deleted',
    'modified': 'modified',
    'renamed': 'renamed',
}

DEV_NULL = '/dev/null'


class _HunkCursor:
    """Running old/new line counters for the lines of one hunk."""

    def __init__(self):
        self.old_line = 0
        self.new_line = 0
        self.old_remaining = 0
        self.new_remaining = 0
        self.in_hunk = False

    def start(self, header: str) -> bool:
        match = HUNK_HEADER_RE.match(header)
        if not match:
            return False
        self.old_line = int(match.group(1))
        self.new_line = int(match.group(3))
        # An omitted count means one line
        self.old_remaining = int(match.group(2) or 1)
        self.new_remaining = int(match.group(4) or 1)
        self.in_hunk = True
        return True

    @property
    def exhausted(self) -> bool:
        """True once the header's old and new line counts are used up."""
        return self.old_remaining <= 0 and self.new_remaining <= 0

    def consume(self, line: str) -> Optional[LineChange]:
        """Turn a hunk body line into a LineChange, or None for lines to skip."""
        if line.startswith('+'):
            change = LineChange('addition', self.new_line, line[1:])
            self.new_line += 1
            self.new_remaining -= 1
        elif line.startswith('-'):
            change = LineChange('deletion', self.old_line, line[1:], old_line_number=self.old_line)
            self.old_line += 1
            self.old_remaining -= 1
        elif line.startswith(' '):
            change = LineChange('unchanged', self.new_line, line[1:], old_line_number=self.old_line)
            self.old_line += 1
            self.new_line += 1
            self.old_remaining -= 1
            self.new_remaining -= 1
        else:
            # "\ No newline at end of file" and anything unrecognised
            return None
        return change


def _strip_header_path(raw: str) -> str:
    path = raw.split('\t')[0].strip()
    if path.startswith(('a/', 'b/')):
        path = path[2:]
    return path


class DiffAnalyzer:
    """Parses raw diff text into a ParsedDiff."""

    def parse_diff(self, diff_text: str, format: str) -> ParsedDiff:
        """Parse diff text in the given format.

        Args:
            diff_text: Raw diff (unified text or provider JSON)
            format: One of git, unified, github, gitlab

        Returns:
            ParsedDiff with per-file changes and statistics

        Raises:
            DiffParseError: If the format name is not supported
        """
        if format in ('git', 'unified'):
            parsed = self._parse_unified_diff(diff_text, format)
        elif format == 'github':
            parsed = self._parse_github_diff(diff_text)
        elif format == 'gitlab':
            parsed = self._parse_gitlab_diff(diff_text)
        else:
            raise DiffParseError(f"Unsupported diff format: {format}")

        logger.debug(
            f"Parsed {parsed.format} diff: {parsed.total_files} files, "
            f"+{parsed.additions}/-{parsed.deletions}"
        )
        return parsed

    def _parse_unified_diff(self, diff_text: str, format: str) -> ParsedDiff:
        lines = diff_text.split('\n')
        file_changes: List[FileChange] = []
        errors: List[str] = []

        # Without any git header, files are delimited by ---/+++ pairs
        has_git_headers = any(line.startswith('diff --git') for line in lines)

        current: Optional[FileChange] = None
        cursor = _HunkCursor()

        for i, line in enumerate(lines):
            if not line:
                continue

            if line.startswith('diff --git'):
                if current:
                    file_changes.append(current)
                match = GIT_HEADER_RE.match(line)
                if match:
                    current = FileChange(path=match.group(2), status='modified')
                else:
                    current = None
                    errors.append(f"Line {i + 1}: unrecognised file header: {line}")
                cursor.in_hunk = False

            elif (
                not has_git_headers
                and (not cursor.in_hunk or cursor.exhausted)
                and line.startswith('--- ')
                and i + 1 < len(lines)
                and lines[i + 1].startswith('+++ ')
            ):
                if current:
                    file_changes.append(current)
                current = self._file_from_header_pair(line[4:], lines[i + 1][4:])
                cursor.in_hunk = False

            elif not cursor.in_hunk and line.startswith('+++ '):
                continue

            elif line.startswith('new file mode'):
                if current:
                    current.status = 'added'

            elif line.startswith('deleted file mode'):
                if current:
                    current.status = 'deleted'

            elif line.startswith('rename from'):
                if current:
                    current.status = 'renamed'
                    current.old_path = line[12:].strip()

            elif line.startswith('@@'):
                if not cursor.start(line):
                    errors.append(f"Line {i + 1}: malformed hunk header: {line}")

            elif cursor.in_hunk and current:
                change = cursor.consume(line)
                if change:
                    current.changes.append(change)

        if current:
            file_changes.append(current)

        return self._build(file_changes, format, errors)

    @staticmethod
    def _file_from_header_pair(old_header: str, new_header: str) -> FileChange:
        old_path = _strip_header_path(old_header)
        new_path = _strip_header_path(new_header)

        if old_path == DEV_NULL:
            return FileChange(path=new_path, status='added')
        if new_path == DEV_NULL:
            return FileChange(path=old_path, status='deleted')
        if old_path != new_path:
            return FileChange(path=new_path, status='renamed', old_path=old_path)
        return FileChange(path=new_path, status='modified')

    def _parse_github_diff(self, diff_text: str) -> ParsedDiff:
        try:
            data = json.loads(diff_text)
        except ValueError:
            return self._parse_unified_diff(diff_text, 'unified')

        if not isinstance(data, list):
            return self._parse_unified_diff(diff_text, 'unified')

        file_changes = []
        for entry in data:
            if not isinstance(entry, dict):
                continue
            file_changes.append(FileChange(
                path=entry.get('filename', ''),
                status=GITHUB_STATUS_MAP.get(entry.get('status'), 'modified'),
                changes=self._parse_patch(entry.get('patch')),
                old_path=entry.get('previous_filename'),
            ))

        return self._build(file_changes, 'github')

    def _parse_gitlab_diff(self, diff_text: str) -> ParsedDiff:
        try:
            data = json.loads(diff_text)
        except ValueError:
            return self._parse_unified_diff(diff_text, 'unified')

        if not isinstance(data, dict) or not isinstance(data.get('changes'), list):
            return self._parse_unified_diff(diff_text, 'unified')

        file_changes = []
        for entry in data['changes']:
            if not isinstance(entry, dict):
                continue
            file_changes.append(FileChange(
                path=entry.get('new_path', ''),
                status=self._map_gitlab_status(entry),
                changes=self._parse_patch(entry.get('diff')),
                old_path=entry.get('old_path'),
            ))

        return self._build(file_changes, 'gitlab')

    @staticmethod
    def _map_gitlab_status(entry: dict) -> str:
        if entry.get('new_file'):
            return 'added'
        if entry.get('deleted_file'):
            return 'deleted'
        if entry.get('renamed_file'):
            return 'renamed'
        return 'modified'

    @staticmethod
    def _parse_patch(patch: Optional[str]) -> List[LineChange]:
        """Parse the hunk-only patch text attached to a provider file entry."""
        if not patch:
            return []

        changes = []
        cursor = _HunkCursor()
        for line in patch.split('\n'):
            if line.startswith('@@'):
                cursor.start(line)
                continue
            change = cursor.consume(line)
            if change:
                changes.append(change)
        return changes

    def _build(
        self,
        file_changes: List[FileChange],
        format: str,
        errors: Optional[List[str]] = None
    ) -> ParsedDiff:
        if errors:
            logger.warning(f"Diff parsed with {len(errors)} problems", extra={'errors': errors})

        return ParsedDiff(
            format=format,
            file_changes=tuple(file_changes),
            changed_files=tuple(self._to_changed_files(file_changes)),
            statistics=self.calculate_statistics(file_changes),
            parsing_errors=tuple(errors or ()),
        )

    @staticmethod
    def calculate_statistics(file_changes: List[FileChange]) -> DiffStatistics:
        status_counts = {'added': 0, 'deleted': 0, 'modified': 0, 'renamed': 0}
        additions = 0
        deletions = 0

        for file in file_changes:
            if file.status in status_counts:
                status_counts[file.status] += 1
            additions += file.additions
            deletions += file.deletions

        return DiffStatistics(
            total_files=len(file_changes),
            total_lines=additions + deletions,
            additions=additions,
            deletions=deletions,
            modified_files=status_counts['modified'],
            added_files=status_counts['added'],
            deleted_files=status_counts['deleted'],
            renamed_files=status_counts['renamed'],
        )

    @staticmethod
    def _to_changed_files(file_changes: List[FileChange]) -> List[ChangedFile]:
        return [
            ChangedFile(
                path=file.path,
                status='modified' if file.status == 'renamed' else file.status,
                changes=[
                    Change(type=c.type, line_number=c.line_number, content=c.content)
                    for c in file.changes
                    if c.type != 'unchanged'
                ],
            )
            for file in file_changes
        ]

    def detect_format(self, text: str) -> str:
        """Guess the diff format. Always returns git, github, gitlab or unified."""
        stripped = text.strip()
        if stripped.startswith('diff --git'):
            return 'git'

        if stripped.startswith(('{', '[')):
            try:
                data: Any = json.loads(stripped)
            except ValueError:
                return 'unified'
            if isinstance(data, list) and data and isinstance(data[0], dict) and data[0].get('filename'):
                return 'github'
            if isinstance(data, dict) and isinstance(data.get('changes'), list):
                return 'gitlab'

        return 'unified'

    def extract_metadata(self, diff_text: str, format: str) -> DiffMetadata:
        """Read git format-patch headers (commit, author, date, subject).

        Provider JSON formats carry no such headers and yield empty metadata.
        """
        metadata = DiffMetadata()
        if format not in ('git', 'unified'):
            return metadata

        commit = COMMIT_RE.search(diff_text)
        if commit:
            metadata.commit_hash = commit.group(1)

        author = AUTHOR_RE.search(diff_text)
        if author:
            metadata.author = f"{author.group(1)} <{author.group(2)}>"

        date = DATE_RE.search(diff_text)
        if date:
            metadata.timestamp = self._parse_date(date.group(1))

        subject = SUBJECT_RE.search(diff_text)
        if subject:
            metadata.message = subject.group(1).strip()

        return metadata

    @staticmethod
    def _parse_date(value: str) -> Optional[datetime]:
        try:
            return parsedate_to_datetime(value.strip())
        except (TypeError, ValueError):
            logger.debug(f"Ignoring unparseable Date header: {value}")
            return None
