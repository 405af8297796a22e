"""Turn rated deviations into issues and derive the approval summary."""

import logging
import uuid
from typing import List, Optional

from flowguard.models import (
    FixSuggestion, VerificationIssue, VerificationSummary, empty_issue_counts,
)
from .prompts import (
    FIX_SCHEMA, FIX_SYSTEM_PROMPT, FIX_USER_TEMPLATE, FixPayload, MANUAL_FIX_STEPS,
)
from .types import Deviation, MatchWithRatings, SeverityRating, SpecMatchResult

logger = logging.getLogger(__name__)

# First matching keyword group wins
CATEGORY_KEYWORDS = [
    ('security', ('security',)),
    ('performance', ('performance',)),
    ('logic', ('logic', 'functionality')),
    ('style', ('style', 'format')),
    ('documentation', ('document',)),
    ('testing', ('test',)),
    ('architecture', ('architecture', 'design')),
]
DEFAULT_CATEGORY = 'logic'

LINE_SEARCH_PREFIX = 50


def classify_category(impact_areas: List[str]) -> str:
    """Map impact-area tags to an issue category."""
    areas = [a.lower() for a in impact_areas]
    for category, keywords in CATEGORY_KEYWORDS:
        if any(keyword in area for area in areas for keyword in keywords):
            return category
    return DEFAULT_CATEGORY


def build_issue_message(deviation: Deviation, rating: SeverityRating) -> str:
    parts = [f"[{deviation.type.upper()}] {deviation.description}"]
    if deviation.expected_behavior:
        parts.append(f"Expected: {deviation.expected_behavior}")
    if deviation.actual_behavior:
        parts.append(f"Actual: {deviation.actual_behavior}")
    parts.append(f"Severity: {rating.severity} ({rating.reasoning})")
    return "\n".join(parts)


def find_line_number(match: SpecMatchResult, deviation: Deviation) -> Optional[int]:
    """Locate a deviation by searching changed lines for its description."""
    needle = deviation.description[:LINE_SEARCH_PREFIX]
    if not needle:
        return None
    for file in match.file_changes:
        for change in file.changes:
            if needle in change.content:
                return change.line_number
    return None


class FeedbackGenerator:
    """Builds VerificationIssues and the VerificationSummary."""

    def __init__(self, llm):
        self.llm = llm

    async def generate_feedback(
        self,
        match_results: List[MatchWithRatings],
        include_code_examples: bool = True
    ) -> List[VerificationIssue]:
        """Create one issue per (deviation, rating) pair, in input order.

        Matches whose deviation and rating counts disagree are skipped.
        """
        issues = []
        for item in match_results:
            match, ratings = item.match, item.ratings
            if len(match.deviations) != len(ratings):
                logger.warning(
                    f"Mismatch: {len(match.deviations)} deviations vs {len(ratings)} ratings, "
                    f"skipping match"
                )
                continue

            for deviation, rating in zip(match.deviations, ratings):
                issues.append(
                    await self._create_issue(deviation, rating, match, include_code_examples)
                )

        logger.info(f"Generated {len(issues)} issues from {len(match_results)} matches")
        return issues

    async def _create_issue(
        self,
        deviation: Deviation,
        rating: SeverityRating,
        match: SpecMatchResult,
        include_code_examples: bool
    ) -> VerificationIssue:
        file_path = deviation.file_path or (
            match.file_changes[0].path if match.file_changes else 'unknown'
        )
        line = deviation.line_number or find_line_number(match, deviation)

        fix = None
        if include_code_examples:
            fix = await self.generate_fix_suggestion(deviation, rating, file_path, line)

        return VerificationIssue(
            id=str(uuid.uuid4()),
            severity=rating.severity,
            category=classify_category(rating.impact_areas),
            file=file_path,
            line=line,
            message=build_issue_message(deviation, rating),
            suggestion=fix.description if fix else None,
            code=fix.code_example if fix else None,
            fix_suggestion=fix,
        )

    async def generate_fix_suggestion(
        self,
        deviation: Deviation,
        rating: SeverityRating,
        file_path: str,
        line: Optional[int] = None
    ) -> FixSuggestion:
        """Ask the LLM for a fix. Falls back to generic manual-review steps."""
        messages = [
            {"role": "system", "content": FIX_SYSTEM_PROMPT},
            {"role": "user", "content": FIX_USER_TEMPLATE.format(
                type=deviation.type,
                description=deviation.description,
                expected=deviation.expected_behavior,
                actual=deviation.actual_behavior,
                severity=rating.severity,
                impact_areas=", ".join(rating.impact_areas),
                file=file_path,
                line=line or 'N/A',
            )},
        ]

        try:
            data = await self.llm.generate_structured(messages, FIX_SCHEMA)
            payload = FixPayload.model_validate(data)
        except Exception as e:
            logger.warning(f"Fix suggestion failed for {file_path}: {e}")
            return FixSuggestion(
                description=f"Fix suggestion generation failed: {e}",
                steps=list(MANUAL_FIX_STEPS),
            )

        return FixSuggestion(
            description=payload.description,
            code_example=payload.code_example,
            automated_fix=payload.automated_fix,
            steps=payload.steps,
        )

    @staticmethod
    def generate_summary(issues: List[VerificationIssue]) -> VerificationSummary:
        """Derive pass/fail and approval status from issue severities."""
        counts = empty_issue_counts()
        for issue in issues:
            counts[issue.severity] += 1

        if counts['Critical']:
            passed = False
            status = 'changes_requested'
            recommendation = 'Changes requested - Critical issues must be resolved before approval'
        elif counts['High']:
            passed = False
            status = 'changes_requested'
            recommendation = 'Changes requested - High severity issues must be addressed'
        elif counts['Medium']:
            passed = True
            status = 'approved_with_conditions'
            recommendation = 'Approved with conditions - Address medium severity issues when convenient'
        elif counts['Low']:
            passed = True
            status = 'approved_with_conditions'
            recommendation = 'Approved with conditions - Minor issues can be addressed later'
        else:
            passed = True
            status = 'approved'
            recommendation = 'Approved - No issues found'

        return VerificationSummary(
            passed=passed,
            total_issues=len(issues),
            issue_counts=counts,
            recommendation=recommendation,
            approval_status=status,
        )
