"""Reviewer actions on stored verifications: resolve issues, approve, request changes."""

import logging
from typing import Optional

from flowguard.exceptions import IssueNotFoundError, ValidationError
from flowguard.models import Verification, VerificationIssue
from flowguard.state import ArtifactStore

logger = logging.getLogger(__name__)

APPROVAL_CHOICES = ('approved', 'approved_with_conditions')


class VerificationReviewer:
    """Loads a verification, applies one reviewer decision and saves it back."""

    def __init__(self, store: ArtifactStore):
        self.store = store

    async def mark_issue_fixed(self, verification_id: str, issue_id: str) -> VerificationIssue:
        return await self._set_resolution(verification_id, issue_id, 'fixed')

    async def mark_issue_ignored(self, verification_id: str, issue_id: str) -> VerificationIssue:
        return await self._set_resolution(verification_id, issue_id, 'ignored')

    async def reopen_issue(self, verification_id: str, issue_id: str) -> VerificationIssue:
        return await self._set_resolution(verification_id, issue_id, 'open')

    async def approve(
        self,
        verification_id: str,
        status: str = 'approved',
        comment: Optional[str] = None
    ) -> Verification:
        """Approve a verification, optionally with conditions.

        A comment on a conditional approval is appended to the recommendation.

        Raises:
            ValidationError: If status is not an approval status
            VerificationNotFoundError: If the verification does not exist
        """
        if status not in APPROVAL_CHOICES:
            raise ValidationError(f"Approval status must be one of {set(APPROVAL_CHOICES)}")

        verification = await self.store.load_verification(verification_id)
        summary = verification.summary
        summary.approval_status = status
        summary.passed = True
        if comment and status == 'approved_with_conditions':
            summary.recommendation = f"{summary.recommendation}\n\nConditions: {comment}"

        await self.store.save_verification(verification)
        logger.info(f"Verification {verification_id} marked {status}")
        return verification

    async def request_changes(self, verification_id: str, comment: str) -> Verification:
        """Mark a verification as needing changes, recording the reviewer's comment."""
        verification = await self.store.load_verification(verification_id)
        summary = verification.summary
        summary.approval_status = 'changes_requested'
        summary.passed = False
        summary.recommendation = f"Changes requested: {comment}"

        await self.store.save_verification(verification)
        logger.info(f"Changes requested on verification {verification_id}")
        return verification

    async def _set_resolution(
        self,
        verification_id: str,
        issue_id: str,
        resolution: str
    ) -> VerificationIssue:
        verification = await self.store.load_verification(verification_id)
        issue = verification.get_issue(issue_id)
        if issue is None:
            raise IssueNotFoundError(verification_id, issue_id)

        issue.resolution = resolution
        await self.store.save_verification(verification)
        logger.info(f"Issue {issue_id} in verification {verification_id} marked {resolution}")
        return issue
