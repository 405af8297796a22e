"""Orchestrates diff parsing, spec matching, rating, feedback and persistence."""

import inspect
import logging
import uuid
from datetime import datetime
from typing import List, Optional

from flowguard.config import FlowGuardConfig, get_default_config
from flowguard.models import (
    DiffAnalysis, DiffSource, Verification, VerificationIssue, VerificationSummary,
)
from flowguard.state import ArtifactStore
from plugins.base import ValidationContext
from plugins.registry import RuleRegistry
from .diff_analyzer import DiffAnalyzer
from .feedback_generator import FeedbackGenerator
from .severity_rater import SeverityRater
from .spec_matcher import SpecMatcher
from .types import (
    DiffInput, DiffMetadata, MatchWithRatings, ParsedDiff, RatingContext,
    VerificationInput, VerificationOptions,
)

logger = logging.getLogger(__name__)

SYSTEM_ISSUE_FILE = 'verification-system'


class VerificationEngine:
    """Runs a full verification and always returns a Verification record."""

    def __init__(
        self,
        llm,
        store: ArtifactStore,
        config: Optional[FlowGuardConfig] = None,
        rule_registry: Optional[RuleRegistry] = None,
    ):
        """
        Args:
            llm: Provider exposing async generate_structured(messages, schema)
            store: Artifact store for specs and verifications
            config: FlowGuard configuration (defaults if omitted)
            rule_registry: Optional plugin rules run against every changed file
        """
        self.llm = llm
        self.store = store
        self.config = config or get_default_config()
        self.rule_registry = rule_registry

        self.diff_analyzer = DiffAnalyzer()
        self.spec_matcher = SpecMatcher(llm, store)
        self.severity_rater = SeverityRater(llm)
        self.feedback_generator = FeedbackGenerator(llm)

    async def verify_changes(self, verification_input: VerificationInput) -> Verification:
        """Verify a diff against the epic's specs.

        Never raises: unexpected failures produce a failed Verification with a
        single High severity system issue, which is persisted as well.
        """
        epic_id = verification_input.epic_id
        options = (verification_input.options or VerificationOptions()).resolve(
            self.config.verification
        )

        try:
            verification = await self._run(verification_input, options)
            await self.store.save_verification(verification)
        except Exception as e:
            logger.error(f"Verification failed for epic {epic_id}: {e}", exc_info=True)
            verification = self._failure_record(epic_id, e)
            try:
                await self.store.save_verification(verification)
            except Exception as save_error:
                logger.error(f"Failed to persist failed verification {verification.id}: {save_error}")
            return verification

        logger.info(
            f"Verification {verification.id} completed: {verification.summary.approval_status}",
            extra={
                'epic_id': epic_id,
                'issues': verification.summary.total_issues,
                'passed': verification.summary.passed,
            }
        )
        return verification

    async def _run(
        self,
        verification_input: VerificationInput,
        options: VerificationOptions
    ) -> Verification:
        diff_input = verification_input.diff_input
        parsed_diff = self.diff_analyzer.parse_diff(diff_input.content, diff_input.format)
        diff_source = self._build_diff_source(diff_input)

        spec_ids = verification_input.spec_ids or await self._get_specs_for_epic(
            verification_input.epic_id
        )

        match_results: List[MatchWithRatings] = []
        for spec_id in spec_ids:
            try:
                match_results.extend(await self._match_and_rate(parsed_diff, spec_id))
            except Exception as e:
                logger.error(f"Failed to process spec {spec_id}: {e}")

        issues = await self.feedback_generator.generate_feedback(
            match_results, include_code_examples=options.include_code_examples
        )
        issues.extend(await self._execute_plugin_rules(parsed_diff))

        if options.skip_low_severity:
            issues = [i for i in issues if i.severity != 'Low']

        if options.max_issues is not None and len(issues) > options.max_issues:
            issues = issues[:options.max_issues]

        summary = self.feedback_generator.generate_summary(issues)
        if options.auto_approve and summary.approval_status == 'approved_with_conditions':
            summary.approval_status = 'approved'
            summary.recommendation = 'Auto-approved based on configuration'

        return Verification(
            id=str(uuid.uuid4()),
            epic_id=verification_input.epic_id,
            diff_source=diff_source,
            analysis=parsed_diff.to_analysis(),
            issues=issues,
            summary=summary,
        )

    async def _match_and_rate(self, parsed_diff: ParsedDiff, spec_id: str) -> List[MatchWithRatings]:
        matches = await self.spec_matcher.match_changes_to_spec(parsed_diff, spec_id)
        spec_content = await self.spec_matcher.get_spec_content(spec_id)

        results = []
        for match in matches:
            if not match.deviations:
                continue

            first_file = match.file_changes[0] if match.file_changes else None
            context = RatingContext(
                spec_content=spec_content,
                file_path=first_file.path if first_file else 'unknown',
                change_type=first_file.status if first_file else 'modified',
            )
            ratings = await self.severity_rater.rate_deviations_batch(
                match.deviations, context,
                concurrency=self.config.verification.rating_concurrency,
            )
            results.append(MatchWithRatings(match=match, ratings=ratings))

        return results

    async def _get_specs_for_epic(self, epic_id: str) -> List[str]:
        try:
            specs = await self.store.list_specs(epic_id)
        except Exception as e:
            logger.error(f"Failed to list specs for epic {epic_id}: {e}")
            return []
        return [spec.id for spec in specs]

    def _build_diff_source(self, diff_input: DiffInput) -> DiffSource:
        metadata = diff_input.metadata or self.diff_analyzer.extract_metadata(
            diff_input.content, diff_input.format
        )
        return self._to_diff_source(metadata)

    @staticmethod
    def _to_diff_source(metadata: DiffMetadata) -> DiffSource:
        return DiffSource(
            commit_hash=metadata.commit_hash or 'unknown',
            branch=metadata.branch or 'unknown',
            author=metadata.author or 'unknown',
            timestamp=metadata.timestamp or datetime.now(),
            message=metadata.message or 'No message',
            pr_url=metadata.pr_url,
        )

    async def _execute_plugin_rules(self, parsed_diff: ParsedDiff) -> List[VerificationIssue]:
        if self.rule_registry is None:
            return []

        plugins_config = self.config.plugins
        issues: List[VerificationIssue] = []
        seen_ids = set()

        for rule in self.rule_registry.get_verification_rules():
            if not plugins_config.is_rule_enabled(rule.id, rule.enabled):
                logger.debug(f"Skipping disabled rule {rule.id}")
                continue

            try:
                for changed_file in parsed_diff.changed_files:
                    context = ValidationContext(
                        file_changes=list(parsed_diff.changed_files),
                        spec_content='',
                        file_content="\n".join(c.content for c in changed_file.changes),
                        file_path=changed_file.path,
                        workspace_root=self.config.workspace_root,
                    )
                    result = rule.validate(context)
                    if inspect.isawaitable(result):
                        result = await result
                    for issue in result or []:
                        # Review actions address issues by id
                        if issue.id in seen_ids:
                            issue = issue.model_copy(update={'id': str(uuid.uuid4())})
                        seen_ids.add(issue.id)
                        issues.append(issue)
            except Exception as e:
                logger.error(f"Failed to execute plugin rule {rule.id}: {e}")

        return issues

    @staticmethod
    def _failure_record(epic_id: str, error: Exception) -> Verification:
        return Verification(
            id=str(uuid.uuid4()),
            epic_id=epic_id,
            diff_source=DiffSource(message='Verification failed'),
            analysis=DiffAnalysis(),
            issues=[VerificationIssue(
                id=str(uuid.uuid4()),
                severity='High',
                category='logic',
                file=SYSTEM_ISSUE_FILE,
                message=f"Verification failed: {error}",
                suggestion='Please check the diff input and try again',
            )],
            summary=VerificationSummary(
                passed=False,
                total_issues=1,
                issue_counts={'High': 1},
                recommendation='Verification system error - please retry',
                approval_status='changes_requested',
            ),
        )
