"""In-memory types passed between verification pipeline stages."""

from dataclasses import dataclass, field
from datetime import datetime
from typing import List, Optional, Tuple

from flowguard.config import VerificationSettings
from flowguard.models import ChangedFile, DiffAnalysis


DIFF_FORMATS = ('git', 'github', 'gitlab', 'unified')
FILE_STATUSES = ('added', 'modified', 'deleted', 'renamed')
LINE_CHANGE_TYPES = ('addition', 'deletion', 'unchanged')
DEVIATION_TYPES = ('missing', 'extra', 'incorrect')


@dataclass
class LineChange:
    type: str
    line_number: int
    content: str
    old_line_number: Optional[int] = None


@dataclass
class FileChange:
    """A file in a parsed diff, including context lines and rename info."""
    path: str
    status: str = 'modified'
    changes: List[LineChange] = field(default_factory=list)
    old_path: Optional[str] = None

    @property
    def additions(self) -> int:
        return sum(1 for c in self.changes if c.type == 'addition')

    @property
    def deletions(self) -> int:
        return sum(1 for c in self.changes if c.type == 'deletion')


@dataclass(frozen=True)
class DiffStatistics:
    total_files: int = 0
    total_lines: int = 0
    additions: int = 0
    deletions: int = 0
    modified_files: int = 0
    added_files: int = 0
    deleted_files: int = 0
    renamed_files: int = 0


@dataclass
class DiffMetadata:
    pr_url: Optional[str] = None
    commit_hash: Optional[str] = None
    branch: Optional[str] = None
    author: Optional[str] = None
    timestamp: Optional[datetime] = None
    message: Optional[str] = None


@dataclass
class DiffInput:
    format: str
    content: str
    metadata: Optional[DiffMetadata] = None


@dataclass(frozen=True)
class ParsedDiff:
    """Normalized diff. Never mutated after DiffAnalyzer builds it."""
    format: str
    file_changes: Tuple[FileChange, ...]
    changed_files: Tuple[ChangedFile, ...]
    statistics: DiffStatistics
    metadata: Optional[DiffMetadata] = None
    parsing_errors: Tuple[str, ...] = ()

    @property
    def total_files(self) -> int:
        return self.statistics.total_files

    @property
    def total_lines(self) -> int:
        return self.statistics.total_lines

    @property
    def additions(self) -> int:
        return self.statistics.additions

    @property
    def deletions(self) -> int:
        return self.statistics.deletions

    def to_analysis(self) -> DiffAnalysis:
        return DiffAnalysis(
            total_files=self.total_files,
            total_lines=self.total_lines,
            additions=self.additions,
            deletions=self.deletions,
            changed_files=[f.model_copy(deep=True) for f in self.changed_files],
        )


@dataclass
class RequirementMatch:
    requirement_id: str
    requirement_text: str
    relevance: float
    reasoning: str


@dataclass
class Deviation:
    type: str
    description: str
    expected_behavior: str
    actual_behavior: str
    file_path: Optional[str] = None
    line_number: Optional[int] = None


@dataclass
class SpecMatchResult:
    file_changes: List[ChangedFile]
    matched_requirements: List[RequirementMatch] = field(default_factory=list)
    deviations: List[Deviation] = field(default_factory=list)
    confidence: float = 0.0


@dataclass
class SeverityRating:
    severity: str
    reasoning: str
    confidence: float
    impact_areas: List[str] = field(default_factory=list)


@dataclass
class MatchWithRatings:
    match: SpecMatchResult
    ratings: List[SeverityRating]


@dataclass
class RatingContext:
    spec_content: str
    file_path: str
    change_type: str
    project_type: Optional[str] = None


@dataclass
class VerificationOptions:
    """Per-run options. Unset fields fall back to the configured defaults."""
    skip_low_severity: Optional[bool] = None
    auto_approve: Optional[bool] = None
    include_code_examples: Optional[bool] = None
    max_issues: Optional[int] = None

    def resolve(self, defaults: VerificationSettings) -> 'VerificationOptions':
        return VerificationOptions(
            skip_low_severity=(
                defaults.skip_low_severity if self.skip_low_severity is None else self.skip_low_severity
            ),
            auto_approve=defaults.auto_approve if self.auto_approve is None else self.auto_approve,
            include_code_examples=(
                defaults.include_code_examples
                if self.include_code_examples is None else self.include_code_examples
            ),
            max_issues=defaults.max_issues if self.max_issues is None else self.max_issues,
        )


@dataclass
class VerificationInput:
    epic_id: str
    diff_input: DiffInput
    spec_ids: Optional[List[str]] = None
    options: Optional[VerificationOptions] = None
