"""Fetch GitHub pull request files and metadata as a github-format DiffInput."""

import json
import logging
import os
import re
from typing import List, Optional, Tuple

from ..types import DiffInput, DiffMetadata
from .base import HostedDiffAdapter, InvalidURLError, parse_timestamp

logger = logging.getLogger(__name__)

PR_URL_RE = re.compile(r'github\.com/([^/]+)/([^/]+)/pulls?/(\d+)')
FILES_PER_PAGE = 100


def parse_pr_url(url: str) -> Tuple[str, str, int]:
    """Split a PR URL into (owner, repo, number).

    Raises:
        InvalidURLError: If the URL is not a GitHub pull request URL
    """
    match = PR_URL_RE.search(url)
    if not match:
        raise InvalidURLError(f"Invalid GitHub PR URL: {url}")
    return match.group(1), match.group(2), int(match.group(3))


class GitHubAdapter(HostedDiffAdapter):
    """Adapter for https://github.com/<owner>/<repo>/pull/<n> URLs."""

    provider = 'GitHub'
    BASE_URL = "https://api.github.com"

    def __init__(self, token: Optional[str] = None, timeout: float = 30.0):
        super().__init__(token or os.getenv('GITHUB_TOKEN'), timeout)
        self.headers['Accept'] = 'application/vnd.github.v3+json'
        if self.token:
            self.headers['Authorization'] = f'token {self.token}'

    async def adapt(self, source: str) -> DiffInput:
        owner, repo, number = parse_pr_url(source)
        pr_path = f"{self.BASE_URL}/repos/{owner}/{repo}/pulls/{number}"

        files = await self._fetch_files(pr_path)
        pr_data = await self._make_request(pr_path)
        logger.info(f"Fetched {len(files)} files for {owner}/{repo}#{number}")

        head = pr_data.get('head') or {}
        user = pr_data.get('user') or {}
        return DiffInput(
            format='github',
            content=json.dumps(files),
            metadata=DiffMetadata(
                pr_url=source,
                commit_hash=head.get('sha'),
                branch=head.get('ref'),
                author=user.get('login'),
                timestamp=parse_timestamp(pr_data.get('created_at')),
                message=pr_data.get('title'),
            ),
        )

    async def _fetch_files(self, pr_path: str) -> List[dict]:
        files: List[dict] = []
        page = 1
        while True:
            data = await self._make_request(f"{pr_path}/files?page={page}&per_page={FILES_PER_PAGE}")
            if not data:
                break
            files.extend(data)
            if len(data) < FILES_PER_PAGE:
                break
            page += 1
        return files
