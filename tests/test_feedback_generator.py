"""Tests for issue generation and summary derivation."""

import uuid

import pytest

from conftest import FIX_RESPONSE, make_llm
from flowguard.models import Change, ChangedFile, VerificationIssue
from verification.feedback_generator import FeedbackGenerator, classify_category, find_line_number
from verification.prompts import MANUAL_FIX_STEPS
from verification.types import Deviation, MatchWithRatings, SeverityRating, SpecMatchResult


def make_issue(severity: str) -> VerificationIssue:
    return VerificationIssue(
        id=str(uuid.uuid4()),
        severity=severity,
        category='logic',
        file='a.py',
        message='problem',
    )


def make_match(deviations, file_path: str = 'src/auth.py') -> SpecMatchResult:
    return SpecMatchResult(
        file_changes=[ChangedFile(
            path=file_path,
            status='modified',
            changes=[
                Change(type='addition', line_number=12, content='store(password)  # plain text'),
            ],
        )],
        deviations=deviations,
        confidence=0.9,
    )


def make_rating(severity: str = 'High', impact_areas=None) -> SeverityRating:
    return SeverityRating(
        severity=severity,
        reasoning='affects login',
        confidence=0.8,
        impact_areas=impact_areas if impact_areas is not None else ['security'],
    )


DEVIATION = Deviation(
    type='missing',
    description='Password hashing is missing',
    expected_behavior='bcrypt hash',
    actual_behavior='plain text',
)


class TestClassifyCategory:
    """Test impact-area to category mapping."""

    @pytest.mark.parametrize("areas,expected", [
        (['Security'], 'security'),
        (['performance'], 'performance'),
        (['core functionality'], 'logic'),
        (['code formatting'], 'style'),
        (['documentation'], 'documentation'),
        (['unit tests'], 'testing'),
        (['system design'], 'architecture'),
        (['user experience'], 'logic'),
        ([], 'logic'),
    ])
    def test_mapping(self, areas, expected):
        assert classify_category(areas) == expected

    def test_first_group_wins(self):
        assert classify_category(['testing', 'security']) == 'security'


class TestFindLineNumber:
    """Test locating a deviation in the changed lines."""

    def test_found(self):
        deviation = Deviation('incorrect', 'plain text', 'hash', 'plain')

        assert find_line_number(make_match([deviation]), deviation) == 12

    def test_not_found(self):
        assert find_line_number(make_match([DEVIATION]), DEVIATION) is None

    def test_empty_description(self):
        deviation = Deviation('incorrect', '', 'a', 'b')

        assert find_line_number(make_match([deviation]), deviation) is None


class TestGenerateFeedback:
    """Test issue creation from rated matches."""

    @pytest.mark.asyncio
    async def test_issue_fields(self):
        generator = FeedbackGenerator(make_llm())
        results = [MatchWithRatings(match=make_match([DEVIATION]), ratings=[make_rating()])]

        issues = await generator.generate_feedback(results)

        assert len(issues) == 1
        issue = issues[0]
        assert issue.severity == 'High'
        assert issue.category == 'security'
        assert issue.file == 'src/auth.py'
        assert issue.line is None
        assert issue.resolution == 'open'
        assert issue.message == (
            "[MISSING] Password hashing is missing\n"
            "Expected: bcrypt hash\n"
            "Actual: plain text\n"
            "Severity: High (affects login)"
        )
        assert issue.suggestion == FIX_RESPONSE['description']
        assert issue.code == FIX_RESPONSE['codeExample']
        assert issue.fix_suggestion.steps == FIX_RESPONSE['steps']

    @pytest.mark.asyncio
    async def test_deviation_location_preferred(self):
        deviation = Deviation('extra', 'Debug endpoint', 'none', 'exists',
                              file_path='src/debug.py', line_number=7)
        generator = FeedbackGenerator(make_llm())

        issues = await generator.generate_feedback(
            [MatchWithRatings(match=make_match([deviation]), ratings=[make_rating('Low', ['style'])])]
        )

        assert issues[0].file == 'src/debug.py'
        assert issues[0].line == 7
        assert issues[0].category == 'style'

    @pytest.mark.asyncio
    async def test_without_code_examples(self):
        llm = make_llm()
        generator = FeedbackGenerator(llm)

        issues = await generator.generate_feedback(
            [MatchWithRatings(match=make_match([DEVIATION]), ratings=[make_rating()])],
            include_code_examples=False,
        )

        assert issues[0].suggestion is None
        assert issues[0].code is None
        assert issues[0].fix_suggestion is None
        llm.generate_structured.assert_not_awaited()

    @pytest.mark.asyncio
    async def test_mismatched_ratings_skipped(self):
        generator = FeedbackGenerator(make_llm())
        second = Deviation('extra', 'Extra logging', 'none', 'logs')

        issues = await generator.generate_feedback([
            MatchWithRatings(match=make_match([DEVIATION, second]), ratings=[make_rating()]),
            MatchWithRatings(match=make_match([second], 'src/log.py'), ratings=[make_rating('Low')]),
        ])

        assert len(issues) == 1
        assert issues[0].file == 'src/log.py'

    @pytest.mark.asyncio
    async def test_issues_keep_input_order(self):
        generator = FeedbackGenerator(make_llm())
        first = Deviation('missing', 'first', 'a', 'b')
        second = Deviation('missing', 'second', 'a', 'b')

        issues = await generator.generate_feedback([
            MatchWithRatings(match=make_match([first, second]),
                             ratings=[make_rating('Low'), make_rating('Critical')]),
        ])

        assert [i.severity for i in issues] == ['Low', 'Critical']
        assert issues[0].id != issues[1].id

    @pytest.mark.asyncio
    async def test_fix_failure_fallback(self):
        generator = FeedbackGenerator(make_llm(fix=RuntimeError("boom")))

        fix = await generator.generate_fix_suggestion(DEVIATION, make_rating(), 'src/auth.py')

        assert fix.description == 'Fix suggestion generation failed: boom'
        assert fix.steps == MANUAL_FIX_STEPS
        assert fix.code_example is None
        assert fix.automated_fix is False

    @pytest.mark.asyncio
    async def test_fix_missing_optional_fields(self):
        generator = FeedbackGenerator(make_llm(fix={'description': 'Do it', 'steps': None}))

        fix = await generator.generate_fix_suggestion(DEVIATION, make_rating(), 'src/auth.py', 3)

        assert fix.description == 'Do it'
        assert fix.steps == []
        assert fix.automated_fix is False


class TestGenerateSummary:
    """Test the approval decision table."""

    @pytest.mark.parametrize("severities,passed,status,recommendation", [
        (['Critical', 'Low'], False, 'changes_requested',
         'Changes requested - Critical issues must be resolved before approval'),
        (['High', 'Medium'], False, 'changes_requested',
         'Changes requested - High severity issues must be addressed'),
        (['Medium', 'Low'], True, 'approved_with_conditions',
         'Approved with conditions - Address medium severity issues when convenient'),
        (['Low'], True, 'approved_with_conditions',
         'Approved with conditions - Minor issues can be addressed later'),
        ([], True, 'approved', 'Approved - No issues found'),
    ])
    def test_decision(self, severities, passed, status, recommendation):
        summary = FeedbackGenerator.generate_summary([make_issue(s) for s in severities])

        assert summary.passed is passed
        assert summary.approval_status == status
        assert summary.recommendation == recommendation
        assert summary.total_issues == len(severities)

    def test_counts_include_every_severity(self):
        summary = FeedbackGenerator.generate_summary([make_issue('High'), make_issue('High')])

        assert summary.issue_counts == {'Critical': 0, 'High': 2, 'Medium': 0, 'Low': 0}
        assert sum(summary.issue_counts.values()) == summary.total_issues
