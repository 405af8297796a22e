"""Pydantic models for FlowGuard artifacts and verification records."""

import json
import re
from datetime import datetime
from typing import Optional, List, Dict, Any

import yaml
from pydantic import BaseModel, Field, field_validator, ConfigDict
from pydantic import ValidationError as PydanticValidationError

from .exceptions import ValidationError


SEVERITY_LEVELS = ('Critical', 'High', 'Medium', 'Low')
ISSUE_CATEGORIES = (
    'security', 'performance', 'style', 'logic',
    'documentation', 'testing', 'architecture',
)
APPROVAL_STATUSES = ('approved', 'approved_with_conditions', 'changes_requested', 'pending')
ISSUE_RESOLUTIONS = ('open', 'fixed', 'ignored')
SPEC_STATUSES = ('draft', 'in_review', 'approved', 'archived')

_FRONTMATTER_RE = re.compile(r'^---\s*\n(.*?)\n---\s*(?:\n|$)(.*)$', re.DOTALL)


def empty_issue_counts() -> Dict[str, int]:
    """Return a severity -> count map with every severity present."""
    return {severity: 0 for severity in SEVERITY_LEVELS}


class Spec(BaseModel):
    """Specification document for an epic."""
    id: str
    epic_id: str
    title: str
    status: str = 'draft'
    author: str = 'unknown'
    tags: List[str] = Field(default_factory=list)
    content: str = ''
    created_at: datetime = Field(default_factory=datetime.now)
    updated_at: datetime = Field(default_factory=datetime.now)

    model_config = ConfigDict(from_attributes=True)

    @field_validator('status')
    @classmethod
    def validate_status(cls, v: str) -> str:
        if v not in SPEC_STATUSES:
            raise ValueError(f"Status must be one of {set(SPEC_STATUSES)}")
        return v

    @classmethod
    def from_markdown(cls, text: str) -> 'Spec':
        """Create a spec from a markdown document with YAML frontmatter.

        Raises:
            ValidationError: If the frontmatter is missing or lacks id, epicId or title
        """
        match = _FRONTMATTER_RE.match(text.lstrip('﻿'))
        if not match:
            raise ValidationError("Spec document has no YAML frontmatter")

        try:
            data = yaml.safe_load(match.group(1)) or {}
        except yaml.YAMLError as e:
            raise ValidationError(f"Invalid spec frontmatter: {e}")

        if not isinstance(data, dict) or not all(data.get(k) for k in ('id', 'epicId', 'title')):
            raise ValidationError("Spec is missing required fields: id, epicId, or title")

        fields: Dict[str, Any] = {
            'id': str(data['id']),
            'epic_id': str(data['epicId']),
            'title': str(data['title']),
            'status': data.get('status', 'draft'),
            'author': data.get('author', 'unknown'),
            'tags': data.get('tags') or [],
            'content': match.group(2).strip('\n'),
        }
        for source, target in (('createdAt', 'created_at'), ('updatedAt', 'updated_at')):
            value = data.get(source)
            if isinstance(value, datetime):
                fields[target] = value
            elif value:
                try:
                    fields[target] = datetime.fromisoformat(str(value).replace('Z', '+00:00'))
                except ValueError:
                    raise ValidationError(f"Invalid {source} timestamp: {value}")

        try:
            return cls(**fields)
        except PydanticValidationError as e:
            raise ValidationError(f"Invalid spec: {e}")


class Change(BaseModel):
    """Line-level change in the persisted diff analysis."""
    type: str
    line_number: int
    content: str

    model_config = ConfigDict(from_attributes=True)

    @field_validator('type')
    @classmethod
    def validate_type(cls, v: str) -> str:
        allowed = {'addition', 'deletion'}
        if v not in allowed:
            raise ValueError(f"Change type must be one of {allowed}")
        return v


class ChangedFile(BaseModel):
    """File touched by a diff; renames are reported as modifications."""
    path: str
    status: str
    changes: List[Change] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)

    @field_validator('status')
    @classmethod
    def validate_status(cls, v: str) -> str:
        allowed = {'added', 'modified', 'deleted'}
        if v not in allowed:
            raise ValueError(f"Status must be one of {allowed}")
        return v


class DiffAnalysis(BaseModel):
    """Flattened view of a parsed diff stored with a verification."""
    total_files: int = 0
    total_lines: int = 0
    additions: int = 0
    deletions: int = 0
    changed_files: List[ChangedFile] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class DiffSource(BaseModel):
    """Where the verified diff came from."""
    commit_hash: str = 'unknown'
    branch: str = 'unknown'
    author: str = 'unknown'
    timestamp: datetime = Field(default_factory=datetime.now)
    message: str = 'No message'
    pr_url: Optional[str] = None

    model_config = ConfigDict(from_attributes=True)


class FixSuggestion(BaseModel):
    """Structured fix proposal for an issue."""
    description: str
    code_example: Optional[str] = None
    automated_fix: bool = False
    steps: List[str] = Field(default_factory=list)

    model_config = ConfigDict(from_attributes=True)


class VerificationIssue(BaseModel):
    """Single finding produced by a verification run."""
    id: str
    severity: str
    category: str
    file: str
    line: Optional[int] = None
    message: str
    suggestion: Optional[str] = None
    code: Optional[str] = None
    spec_requirement_id: Optional[str] = None
    fix_suggestion: Optional[FixSuggestion] = None
    resolution: str = 'open'

    model_config = ConfigDict(from_attributes=True)

    @field_validator('severity')
    @classmethod
    def validate_severity(cls, v: str) -> str:
        if v not in SEVERITY_LEVELS:
            raise ValueError(f"Severity must be one of {set(SEVERITY_LEVELS)}")
        return v

    @field_validator('category')
    @classmethod
    def validate_category(cls, v: str) -> str:
        if v not in ISSUE_CATEGORIES:
            raise ValueError(f"Category must be one of {set(ISSUE_CATEGORIES)}")
        return v

    @field_validator('resolution')
    @classmethod
    def validate_resolution(cls, v: str) -> str:
        if v not in ISSUE_RESOLUTIONS:
            raise ValueError(f"Resolution must be one of {set(ISSUE_RESOLUTIONS)}")
        return v


class VerificationSummary(BaseModel):
    """Pass/fail outcome derived from the issue set."""
    passed: bool
    total_issues: int
    issue_counts: Dict[str, int] = Field(default_factory=empty_issue_counts)
    recommendation: str
    approval_status: str

    model_config = ConfigDict(from_attributes=True)

    @field_validator('issue_counts')
    @classmethod
    def fill_issue_counts(cls, v: Dict[str, int]) -> Dict[str, int]:
        unknown = set(v) - set(SEVERITY_LEVELS)
        if unknown:
            raise ValueError(f"Unknown severities in issue_counts: {unknown}")
        counts = empty_issue_counts()
        counts.update(v)
        return counts

    @field_validator('approval_status')
    @classmethod
    def validate_approval_status(cls, v: str) -> str:
        if v not in APPROVAL_STATUSES:
            raise ValueError(f"Approval status must be one of {set(APPROVAL_STATUSES)}")
        return v


class Verification(BaseModel):
    """Persisted record of one verification run."""
    id: str
    epic_id: str
    diff_source: DiffSource
    analysis: DiffAnalysis
    issues: List[VerificationIssue] = Field(default_factory=list)
    summary: VerificationSummary
    created_at: datetime = Field(default_factory=datetime.now)

    model_config = ConfigDict(from_attributes=True)

    @property
    def open_issues(self) -> List[VerificationIssue]:
        """Issues not yet marked fixed or ignored."""
        return [i for i in self.issues if i.resolution == 'open']

    def get_issue(self, issue_id: str) -> Optional[VerificationIssue]:
        return next((i for i in self.issues if i.id == issue_id), None)

    def to_dict(self) -> Dict[str, Any]:
        """Convert to a JSON-compatible dictionary."""
        return self.model_dump(mode='json')

    def to_json(self) -> str:
        """Convert to JSON string."""
        return json.dumps(self.to_dict(), indent=2)

    def to_markdown(self) -> str:
        """Convert to a short Markdown summary."""
        lines = [
            f"# Verification: {self.id}",
            "",
            f"**Epic**: {self.epic_id}",
            f"**Status**: {self.summary.approval_status}",
            f"**Passed**: {'yes' if self.summary.passed else 'no'}",
            f"**Created**: {self.created_at.isoformat()}",
            f"**Files**: {self.analysis.total_files} "
            f"(+{self.analysis.additions} / -{self.analysis.deletions})",
            "",
            "## Issues",
            "",
        ]

        for severity in SEVERITY_LEVELS:
            lines.append(f"- **{severity}**: {self.summary.issue_counts.get(severity, 0)}")
        lines.append("")

        for issue in self.issues:
            location = f"{issue.file}:{issue.line}" if issue.line else issue.file
            marker = "" if issue.resolution == 'open' else f" ({issue.resolution})"
            first_line = issue.message.splitlines()[0] if issue.message else ""
            lines.append(f"- [{issue.severity}] `{location}` {first_line}{marker}")

        lines.extend(["", f"_{self.summary.recommendation}_"])
        return "\n".join(lines)
