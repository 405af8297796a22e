"""Adapters for raw git diff text and for local git repositories."""

import logging
import re
from typing import Optional

from git import Repo
from git.exc import GitError, InvalidGitRepositoryError, NoSuchPathError

from ..diff_analyzer import DiffAnalyzer
from ..types import DiffInput, DiffMetadata
from .base import AdapterError, DiffAdapter

logger = logging.getLogger(__name__)

# "diff --git a/x b/x ... feature-branch" style branch annotation
BRANCH_RE = re.compile(r'diff --git .*\.\.\.\s*(.+)')


class GitDiffAdapter(DiffAdapter):
    """Wraps git/unified diff text, reading format-patch headers as metadata."""

    def __init__(self):
        self.analyzer = DiffAnalyzer()

    def adapt(self, source: str) -> DiffInput:
        metadata = self.analyzer.extract_metadata(source, 'git')

        branch = BRANCH_RE.search(source)
        if branch:
            metadata.branch = branch.group(1).strip()

        return DiffInput(format='git', content=source, metadata=metadata)

    def from_repository(
        self,
        repo_path: str,
        staged: bool = False,
        base: Optional[str] = None
    ) -> DiffInput:
        """Diff a local repository's working tree, index, or a base revision.

        Args:
            repo_path: Path to the repository
            staged: Diff the index against HEAD instead of the working tree
            base: Diff the working tree against this revision (e.g. "main")

        Raises:
            AdapterError: If the path is not a usable git repository
        """
        try:
            repo = Repo(repo_path, search_parent_directories=True)
        except (InvalidGitRepositoryError, NoSuchPathError) as e:
            raise AdapterError(f"Not a git repository: {repo_path}") from e

        try:
            if base:
                diff_text = repo.git.diff(base)
            elif staged:
                diff_text = repo.git.diff(cached=True)
            else:
                diff_text = repo.git.diff()
        except GitError as e:
            raise AdapterError(f"git diff failed in {repo_path}: {e}") from e

        metadata = DiffMetadata()
        try:
            metadata.branch = repo.active_branch.name
        except TypeError:
            logger.debug("HEAD is detached, no branch name")

        try:
            commit = repo.head.commit
        except ValueError:
            logger.debug(f"Repository {repo_path} has no commits yet")
        else:
            metadata.commit_hash = commit.hexsha
            metadata.author = f"{commit.author.name} <{commit.author.email}>"
            metadata.timestamp = commit.committed_datetime
            metadata.message = commit.message.strip().splitlines()[0] if commit.message.strip() else None

        logger.info(
            f"Collected {'staged' if staged else 'working tree'} diff from {repo_path}",
            extra={'base': base, 'bytes': len(diff_text)}
        )
        return DiffInput(format='git', content=diff_text, metadata=metadata)
