"""Fetch GitLab merge request changes and metadata as a gitlab-format DiffInput."""

import json
import logging
import os
import re
from typing import Optional, Tuple
from urllib.parse import quote, urlparse

from ..types import DiffInput, DiffMetadata
from .base import HostedDiffAdapter, InvalidURLError, parse_timestamp

logger = logging.getLogger(__name__)

# <group>[/<subgroup>...]/<project>[/-]/merge_requests/<iid>
MR_PATH_RE = re.compile(r'^/(.+?)(?:/-)?/merge_requests/(\d+)')


def parse_mr_url(url: str) -> Tuple[str, str, int]:
    """Split an MR URL into (api_base, project_path, iid).

    Raises:
        InvalidURLError: If the URL is not a merge request URL
    """
    parsed = urlparse(url if '://' in url else f"https://{url}")
    match = MR_PATH_RE.match(parsed.path)
    if not parsed.netloc or not match:
        raise InvalidURLError(f"Invalid GitLab MR URL: {url}")

    api_base = f"{parsed.scheme}://{parsed.netloc}/api/v4"
    return api_base, match.group(1), int(match.group(2))


class GitLabAdapter(HostedDiffAdapter):
    """Adapter for GitLab merge request URLs, on gitlab.com or self-hosted."""

    provider = 'GitLab'

    def __init__(self, token: Optional[str] = None, timeout: float = 30.0):
        super().__init__(token or os.getenv('GITLAB_TOKEN'), timeout)
        self.headers['Accept'] = 'application/json'
        if self.token:
            self.headers['Private-Token'] = self.token

    async def adapt(self, source: str) -> DiffInput:
        api_base, project, iid = parse_mr_url(source)
        mr_path = f"{api_base}/projects/{quote(project, safe='')}/merge_requests/{iid}"

        changes_data = await self._make_request(f"{mr_path}/changes")
        mr_data = await self._make_request(mr_path)
        logger.info(
            f"Fetched {len(changes_data.get('changes', []))} changes for {project}!{iid}"
        )

        author = mr_data.get('author') or {}
        return DiffInput(
            format='gitlab',
            content=json.dumps(changes_data),
            metadata=DiffMetadata(
                pr_url=source,
                commit_hash=mr_data.get('sha'),
                branch=mr_data.get('source_branch'),
                author=author.get('username'),
                timestamp=parse_timestamp(mr_data.get('created_at')),
                message=mr_data.get('title'),
            ),
        )
