"""
Diff Input Adapters

Turn raw diff text, local repositories, GitHub pull requests and GitLab
merge requests into DiffInput values for the verification engine.
"""

from typing import Optional

from flowguard.exceptions import DiffParseError
from verification.diff_analyzer import DiffAnalyzer
from verification.adapters.base import (
    AdapterError,
    AdapterAPIError,
    AdapterAuthenticationError,
    AdapterNotFoundError,
    DiffAdapter,
    InvalidURLError,
)
from verification.adapters.git_adapter import GitDiffAdapter
from verification.adapters.github_adapter import GitHubAdapter
from verification.adapters.gitlab_adapter import GitLabAdapter


def create_adapter(format: str, token: Optional[str] = None) -> DiffAdapter:
    """Build the adapter for a diff format.

    Raises:
        DiffParseError: If the format is unknown
    """
    if format in ('git', 'unified'):
        return GitDiffAdapter()
    if format == 'github':
        return GitHubAdapter(token=token)
    if format == 'gitlab':
        return GitLabAdapter(token=token)
    raise DiffParseError(f"Unknown diff format: {format}")


def detect_format_from_input(text: str, gitlab_host: str = 'gitlab.com') -> str:
    """Like DiffAnalyzer.detect_format, but also recognises PR/MR URLs."""
    stripped = text.strip()
    if stripped.startswith('diff --git'):
        return 'git'

    is_url = len(stripped.split()) == 1 and not stripped.startswith(('{', '['))
    if is_url and 'github.com/' in stripped and '/pull' in stripped:
        return 'github'
    if is_url and (gitlab_host in stripped or 'gitlab.com' in stripped) and '/merge_requests/' in stripped:
        return 'gitlab'

    return DiffAnalyzer().detect_format(stripped)


__all__ = [
    'AdapterError',
    'AdapterAPIError',
    'AdapterAuthenticationError',
    'AdapterNotFoundError',
    'InvalidURLError',
    'DiffAdapter',
    'GitDiffAdapter',
    'GitHubAdapter',
    'GitLabAdapter',
    'create_adapter',
    'detect_format_from_input',
]
