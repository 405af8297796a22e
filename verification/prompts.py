"""Prompt templates, JSON schemas and response models for the LLM stages."""

from typing import List, Optional

from pydantic import BaseModel, Field, field_validator, ConfigDict

from flowguard.models import SEVERITY_LEVELS
from .types import DEVIATION_TYPES


SPEC_EXCERPT_LIMIT = 3000
RATING_SPEC_EXCERPT_LIMIT = 2000
DIFF_SUMMARY_MAX_CHANGES = 50
DIFF_SUMMARY_MAX_LINE = 100


def truncate(text: str, limit: int) -> str:
    """Cut text to limit characters, marking the cut."""
    if len(text) <= limit:
        return text
    return text[:limit] + "\n... (truncated)"


# Spec matching

MATCH_SYSTEM_PROMPT = (
    "You are a code reviewer analyzing changes against specifications. "
    "Your task is to match code changes to requirements and identify any deviations."
)

MATCH_USER_TEMPLATE = """Please analyze the following code changes against the specification requirements.

## Changed File
Path: {path}
Status: {status}

## Changes
{diff_summary}

## Spec Requirements
{requirements}

## Full Spec Context
{spec_excerpt}

## Instructions
1. Identify which requirements are matched by these changes
2. Identify any deviations from the requirements (missing functionality, extra functionality, incorrect implementation)
3. Provide a confidence score (0-1) for your analysis
4. Be specific about what was expected vs what was implemented

For each deviation, specify:
- type: 'missing' (expected but not implemented), 'extra' (implemented but not required), or 'incorrect' (implemented differently than specified)
- description: Clear description of the deviation
- expectedBehavior: What the spec requires
- actualBehavior: What was actually implemented"""

MATCH_SCHEMA = {
    "type": "object",
    "properties": {
        "matchedRequirements": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "requirementId": {"type": "string"},
                    "requirementText": {"type": "string"},
                    "relevance": {"type": "number", "minimum": 0, "maximum": 1},
                    "reasoning": {"type": "string"},
                },
                "required": ["requirementId", "requirementText", "relevance", "reasoning"],
            },
        },
        "deviations": {
            "type": "array",
            "items": {
                "type": "object",
                "properties": {
                    "type": {"type": "string", "enum": list(DEVIATION_TYPES)},
                    "description": {"type": "string"},
                    "expectedBehavior": {"type": "string"},
                    "actualBehavior": {"type": "string"},
                    "filePath": {"type": "string"},
                    "lineNumber": {"type": "number"},
                },
                "required": ["type", "description", "expectedBehavior", "actualBehavior"],
            },
        },
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
    },
    "required": ["matchedRequirements", "deviations", "confidence"],
}


# Severity rating

RATING_SYSTEM_PROMPT = """You are a code review expert who classifies the severity of deviations from specifications.

Use the following severity criteria:

**Critical**: Security vulnerabilities, data loss risks, breaking changes to public APIs, critical functionality completely broken, production outage risks

**High**: Functional requirements not met, performance degradation, incorrect business logic, data integrity issues

**Medium**: Non-functional requirements partially met, code quality issues, missing edge cases, minor performance concerns

**Low**: Style inconsistencies, documentation gaps, minor optimizations, cosmetic issues

Provide your classification with detailed reasoning and confidence score."""

RATING_USER_TEMPLATE = """Please classify the severity of the following deviation:

## Deviation Details
**Type**: {type}
**Description**: {description}
**Expected Behavior**: {expected}
**Actual Behavior**: {actual}
**File**: {file}
**Line**: {line}

## Context
**File Path**: {context_file}
**Change Type**: {change_type}
**Project Type**: {project_type}

## Spec Context
{spec_excerpt}

## Instructions
1. Classify the severity as Critical, High, Medium, or Low
2. Provide detailed reasoning for your classification
3. Assign a confidence score (0-1)
4. List the impact areas (e.g., security, performance, functionality, user experience, maintainability)"""

RATING_SCHEMA = {
    "type": "object",
    "properties": {
        "severity": {"type": "string", "enum": list(SEVERITY_LEVELS)},
        "reasoning": {"type": "string"},
        "confidence": {"type": "number", "minimum": 0, "maximum": 1},
        "impactAreas": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["severity", "reasoning", "confidence", "impactAreas"],
}


# Fix suggestions

FIX_SYSTEM_PROMPT = (
    "You are a code reviewer generating fix suggestions for identified issues. "
    "Provide clear, actionable guidance with code examples when applicable."
)

FIX_USER_TEMPLATE = """Generate a fix suggestion for the following issue:

## Issue Details
**Type**: {type}
**Description**: {description}
**Expected**: {expected}
**Actual**: {actual}
**Severity**: {severity}
**Impact Areas**: {impact_areas}

## Location
**File**: {file}
**Line**: {line}

## Instructions
1. Provide a clear description of how to fix the issue
2. Include a code example showing the fix (if applicable)
3. Indicate if this can be automated (true/false)
4. List the steps needed to implement the fix"""

FIX_SCHEMA = {
    "type": "object",
    "properties": {
        "description": {"type": "string"},
        "codeExample": {"type": "string"},
        "automatedFix": {"type": "boolean"},
        "steps": {"type": "array", "items": {"type": "string"}},
    },
    "required": ["description", "steps"],
}

MANUAL_FIX_STEPS = [
    'Review the deviation manually',
    'Consult the specification',
    'Implement the expected behavior',
]


# Response models

class MatchedRequirementPayload(BaseModel):
    requirement_id: Optional[str] = Field(None, alias='requirementId')
    requirement_text: str = Field('', alias='requirementText')
    relevance: float = 0.0
    reasoning: str = ''

    model_config = ConfigDict(populate_by_name=True)


class DeviationPayload(BaseModel):
    type: str
    description: str
    expected_behavior: str = Field(alias='expectedBehavior')
    actual_behavior: str = Field(alias='actualBehavior')
    file_path: Optional[str] = Field(None, alias='filePath')
    line_number: Optional[int] = Field(None, alias='lineNumber')

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('type')
    @classmethod
    def validate_type(cls, v: str) -> str:
        if v not in DEVIATION_TYPES:
            raise ValueError(f"Deviation type must be one of {set(DEVIATION_TYPES)}")
        return v


class MatchPayload(BaseModel):
    matched_requirements: List[MatchedRequirementPayload] = Field(alias='matchedRequirements')
    deviations: List[DeviationPayload]
    confidence: float

    model_config = ConfigDict(populate_by_name=True)


class RatingPayload(BaseModel):
    severity: str
    reasoning: str
    confidence: float
    impact_areas: List[str] = Field(default_factory=list, alias='impactAreas')

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('severity')
    @classmethod
    def validate_severity(cls, v: str) -> str:
        if v not in SEVERITY_LEVELS:
            raise ValueError(f"Severity must be one of {set(SEVERITY_LEVELS)}")
        return v

    @field_validator('impact_areas', mode='before')
    @classmethod
    def default_impact_areas(cls, v):
        return v or []

    @field_validator('confidence')
    @classmethod
    def clamp_confidence(cls, v: float) -> float:
        return min(max(v, 0.0), 1.0)


class FixPayload(BaseModel):
    description: str
    code_example: Optional[str] = Field(None, alias='codeExample')
    automated_fix: bool = Field(False, alias='automatedFix')
    steps: List[str] = Field(default_factory=list)

    model_config = ConfigDict(populate_by_name=True)

    @field_validator('automated_fix', 'steps', mode='before')
    @classmethod
    def default_empty(cls, v, info):
        if v is None:
            return False if info.field_name == 'automated_fix' else []
        return v
