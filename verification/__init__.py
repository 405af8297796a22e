"""
Verification Pipeline

Parses diffs, matches them against specs with the LLM, rates deviations,
turns them into issues and records the approval decision.
"""

from verification.types import (
    DiffInput,
    DiffMetadata,
    DiffStatistics,
    Deviation,
    FileChange,
    LineChange,
    MatchWithRatings,
    ParsedDiff,
    RatingContext,
    RequirementMatch,
    SeverityRating,
    SpecMatchResult,
    VerificationInput,
    VerificationOptions,
)
from verification.diff_analyzer import DiffAnalyzer
from verification.spec_matcher import SpecMatcher, extract_requirements
from verification.severity_rater import SeverityRater
from verification.feedback_generator import FeedbackGenerator
from verification.engine import VerificationEngine
from verification.review import VerificationReviewer
from verification.reports import ReportWriter, write_reports

__all__ = [
    # Types
    'DiffInput',
    'DiffMetadata',
    'DiffStatistics',
    'Deviation',
    'FileChange',
    'LineChange',
    'MatchWithRatings',
    'ParsedDiff',
    'RatingContext',
    'RequirementMatch',
    'SeverityRating',
    'SpecMatchResult',
    'VerificationInput',
    'VerificationOptions',
    # Pipeline stages
    'DiffAnalyzer',
    'SpecMatcher',
    'extract_requirements',
    'SeverityRater',
    'FeedbackGenerator',
    'VerificationEngine',
    # Review and reporting
    'VerificationReviewer',
    'ReportWriter',
    'write_reports',
]
