"""Shared fixtures for the FlowGuard test suite."""

import uuid
from datetime import datetime
from typing import Any, Callable, Dict, List, Optional
from unittest.mock import AsyncMock, Mock

import pytest

from flowguard.models import (
    Change, ChangedFile, DiffAnalysis, DiffSource, FixSuggestion, Spec,
    Verification, VerificationIssue, VerificationSummary,
)
from flowguard.state import ArtifactStore
from verification.prompts import FIX_SCHEMA, MATCH_SCHEMA, RATING_SCHEMA


SAMPLE_GIT_DIFF = """diff --git a/src/auth.py b/src/auth.py
index 83db48f..bf269f4 100644
--- a/src/auth.py
+++ b/src/auth.py
@@ -1,3 +1,4 @@
 import os
-TIMEOUT = 10
+TIMEOUT = 30
+RETRIES = 3
 def login():
diff --git a/src/new_module.py b/src/new_module.py
new file mode 100644
index 0000000..e69de29
--- /dev/null
+++ b/src/new_module.py
@@ -0,0 +1,2 @@
+def helper():
+    return True
"""

SAMPLE_SPEC_CONTENT = """# User Authentication

## Functional Requirements
- FR-1: Users can log in with email and password
- [x] FR-2: Sessions time out after 30 minutes

## Non-Functional Requirements
- Login responds within 200ms

## Notes
- Not a requirement
"""


def make_spec(spec_id: str = "spec-auth", epic_id: str = "epic-1", content: str = SAMPLE_SPEC_CONTENT) -> Spec:
    return Spec(
        id=spec_id,
        epic_id=epic_id,
        title="User Authentication",
        content=content,
        created_at=datetime(2024, 1, 1, 10, 0, 0),
        updated_at=datetime(2024, 1, 1, 10, 0, 0),
    )


def make_verification(epic_id: str = 'epic-1', created_at: Optional[datetime] = None, issues=None) -> Verification:
    """Stored-shape verification with one High and one Low issue."""
    issues = issues if issues is not None else [
        VerificationIssue(
            id='issue-1',
            severity='High',
            category='security',
            file='src/auth.py',
            line=12,
            message='[MISSING] Password hashing',
            suggestion='Hash it',
            code='bcrypt.hashpw(...)',
            fix_suggestion=FixSuggestion(description='Hash it', steps=['Add bcrypt']),
        ),
        VerificationIssue(
            id='issue-2',
            severity='Low',
            category='style',
            file='src/auth.py',
            message='[EXTRA] Trailing whitespace',
        ),
    ]
    return Verification(
        id=str(uuid.uuid4()),
        epic_id=epic_id,
        diff_source=DiffSource(commit_hash='abc123', branch='main'),
        analysis=DiffAnalysis(
            total_files=1, total_lines=1, additions=1,
            changed_files=[ChangedFile(
                path='src/auth.py', status='modified',
                changes=[Change(type='addition', line_number=12, content='store(pw)')],
            )],
        ),
        issues=issues,
        summary=VerificationSummary(
            passed=False,
            total_issues=len(issues),
            issue_counts={'High': 1, 'Low': 1},
            recommendation='Changes requested - High severity issues must be addressed',
            approval_status='changes_requested',
        ),
        created_at=created_at or datetime.now(),
    )


def match_response(deviations: Optional[List[Dict[str, Any]]] = None, confidence: float = 0.9) -> Dict[str, Any]:
    return {
        "matchedRequirements": [
            {
                "requirementId": "FR-2",
                "requirementText": "Sessions time out after 30 minutes",
                "relevance": 0.8,
                "reasoning": "Timeout constant changed",
            }
        ],
        "deviations": deviations or [],
        "confidence": confidence,
    }


def deviation_payload(description: str = "Password hashing is missing", type: str = "missing") -> Dict[str, Any]:
    return {
        "type": type,
        "description": description,
        "expectedBehavior": "Passwords are hashed with bcrypt",
        "actualBehavior": "Passwords are stored in plain text",
    }


def rating_response(severity: str = "High", impact_areas: Optional[List[str]] = None) -> Dict[str, Any]:
    return {
        "severity": severity,
        "reasoning": f"{severity} impact on login",
        "confidence": 0.8,
        "impactAreas": impact_areas if impact_areas is not None else ["security"],
    }


FIX_RESPONSE = {
    "description": "Hash passwords before storing them",
    "codeExample": "bcrypt.hashpw(password, bcrypt.gensalt())",
    "automatedFix": False,
    "steps": ["Add bcrypt", "Hash on write"],
}


def make_llm(
    match: Any = None,
    rating: Any = None,
    fix: Any = None,
) -> Mock:
    """Mock LLM whose answer depends on the schema it is asked for.

    Each argument is a response dict, an exception to raise, or a callable
    taking the messages and returning either.
    """
    def pick(value: Any, default: Any, messages: List[Dict[str, str]]) -> Any:
        if value is None:
            value = default
        if callable(value) and not isinstance(value, dict):
            value = value(messages)
        if isinstance(value, Exception):
            raise value
        return value

    async def generate_structured(messages, schema):
        if schema is MATCH_SCHEMA:
            return pick(match, match_response(), messages)
        if schema is RATING_SCHEMA:
            return pick(rating, rating_response(), messages)
        if schema is FIX_SCHEMA:
            return pick(fix, FIX_RESPONSE, messages)
        raise AssertionError(f"Unexpected schema: {schema}")

    llm = Mock()
    llm.generate_structured = AsyncMock(side_effect=generate_structured)
    return llm


@pytest.fixture
def sample_git_diff() -> str:
    return SAMPLE_GIT_DIFF


@pytest.fixture
def sample_spec() -> Spec:
    return make_spec()


@pytest.fixture
async def store(tmp_path):
    """Artifact store backed by a temporary SQLite database."""
    async with ArtifactStore(str(tmp_path / "flowguard.db")) as artifact_store:
        yield artifact_store


@pytest.fixture
def llm_factory() -> Callable[..., Mock]:
    return make_llm
