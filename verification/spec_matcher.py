"""Match changed files against the requirements written in a spec."""

import logging
import re
from typing import Dict, List

from flowguard.models import ChangedFile
from flowguard.state import ArtifactStore
from .prompts import (
    MATCH_SCHEMA, MATCH_SYSTEM_PROMPT, MATCH_USER_TEMPLATE, MatchPayload,
    SPEC_EXCERPT_LIMIT, DIFF_SUMMARY_MAX_CHANGES, DIFF_SUMMARY_MAX_LINE, truncate,
)
from .types import Deviation, ParsedDiff, RequirementMatch, SpecMatchResult

logger = logging.getLogger(__name__)

_SECTION_END = r'(?=^#+\s|\Z)'
REQUIREMENT_SECTION_PATTERNS = [
    re.compile(r'^#+\s*Functional\s*Requirements?\s*\n(.*?)' + _SECTION_END,
               re.IGNORECASE | re.MULTILINE | re.DOTALL),
    re.compile(r'^#+\s*Non[-\s]?Functional\s*Requirements?\s*\n(.*?)' + _SECTION_END,
               re.IGNORECASE | re.MULTILINE | re.DOTALL),
    re.compile(r'^#+\s*Technical\s*(?:Plan|Requirements?)?\s*\n(.*?)' + _SECTION_END,
               re.IGNORECASE | re.MULTILINE | re.DOTALL),
]
BULLET_RE = re.compile(r'^\s*[-*]\s+(.+)$', re.MULTILINE)
CHECKBOX_RE = re.compile(r'^\[[ xX]\]\s*')
FALLBACK_REQUIREMENT_RE = re.compile(
    r'^\s*[-*]\s*((?:FR|NFR|REQ)-?\d*[:.]?\s*.+)$', re.IGNORECASE | re.MULTILINE
)


def extract_requirements(spec_content: str) -> List[str]:
    """Pull requirement bullets out of the spec's requirement sections.

    Falls back to FR/NFR/REQ-tagged bullets anywhere in the document when no
    requirement section has bullets.
    """
    requirements: List[str] = []

    for pattern in REQUIREMENT_SECTION_PATTERNS:
        section = pattern.search(spec_content)
        if not section:
            continue
        for bullet in BULLET_RE.findall(section.group(1)):
            text = CHECKBOX_RE.sub('', bullet.strip()).strip()
            if text:
                requirements.append(text)

    if not requirements:
        requirements = [m.strip() for m in FALLBACK_REQUIREMENT_RE.findall(spec_content)]

    return requirements


def build_diff_summary(file: ChangedFile) -> str:
    lines = []
    for change in file.changes[:DIFF_SUMMARY_MAX_CHANGES]:
        prefix = {'addition': '+', 'deletion': '-'}.get(change.type, ' ')
        content = change.content
        if len(content) > DIFF_SUMMARY_MAX_LINE:
            content = content[:DIFF_SUMMARY_MAX_LINE] + '...'
        lines.append(f"{prefix} {content}")

    if len(file.changes) > DIFF_SUMMARY_MAX_CHANGES:
        lines.append(f"... and {len(file.changes) - DIFF_SUMMARY_MAX_CHANGES} more changes")

    return "\n".join(lines)


class SpecMatcher:
    """Asks the LLM which requirements each changed file satisfies or violates."""

    def __init__(self, llm, store: ArtifactStore):
        """
        Args:
            llm: Provider exposing async generate_structured(messages, schema)
            store: Artifact store used to load spec content
        """
        self.llm = llm
        self.store = store
        self._spec_cache: Dict[str, str] = {}

    async def match_changes_to_spec(
        self,
        parsed_diff: ParsedDiff,
        spec_id: str
    ) -> List[SpecMatchResult]:
        """Match every changed file of the diff against one spec.

        Returns one result per changed file. LLM failures become a synthetic
        deviation on that file; only spec loading errors propagate.
        """
        spec_content = await self.get_spec_content(spec_id)
        requirements = extract_requirements(spec_content)
        logger.info(
            f"Matching {len(parsed_diff.changed_files)} files against spec {spec_id}",
            extra={'spec_id': spec_id, 'requirements': len(requirements)}
        )

        results = []
        for file in parsed_diff.changed_files:
            results.append(await self._match_file(file, requirements, spec_content))
        return results

    async def get_spec_content(self, spec_id: str) -> str:
        """Return spec content, loading it into the cache on first use."""
        if spec_id in self._spec_cache:
            return self._spec_cache[spec_id]

        spec = await self.store.load_spec(spec_id)
        self._spec_cache[spec_id] = spec.content
        return spec.content

    def clear_cache(self):
        self._spec_cache.clear()

    async def _match_file(
        self,
        file: ChangedFile,
        requirements: List[str],
        spec_content: str
    ) -> SpecMatchResult:
        messages = [
            {"role": "system", "content": MATCH_SYSTEM_PROMPT},
            {"role": "user", "content": MATCH_USER_TEMPLATE.format(
                path=file.path,
                status=file.status,
                diff_summary=build_diff_summary(file),
                requirements="\n".join(f"{i + 1}. {req}" for i, req in enumerate(requirements)),
                spec_excerpt=truncate(spec_content, SPEC_EXCERPT_LIMIT),
            )},
        ]

        try:
            data = await self.llm.generate_structured(messages, MATCH_SCHEMA)
            payload = MatchPayload.model_validate(data)
        except Exception as e:
            logger.warning(f"Spec matching failed for {file.path}: {e}")
            return SpecMatchResult(
                file_changes=[file],
                matched_requirements=[],
                deviations=[Deviation(
                    type='incorrect',
                    description=f"Failed to analyze changes: {e}",
                    expected_behavior='Successful analysis',
                    actual_behavior='Analysis failed',
                    file_path=file.path,
                )],
                confidence=0.0,
            )

        return SpecMatchResult(
            file_changes=[file],
            matched_requirements=[
                RequirementMatch(
                    requirement_id=req.requirement_id or f"req-{idx + 1}",
                    requirement_text=req.requirement_text,
                    relevance=req.relevance,
                    reasoning=req.reasoning,
                )
                for idx, req in enumerate(payload.matched_requirements)
            ],
            deviations=[
                Deviation(
                    type=dev.type,
                    description=dev.description,
                    expected_behavior=dev.expected_behavior,
                    actual_behavior=dev.actual_behavior,
                    file_path=dev.file_path or file.path,
                    line_number=dev.line_number,
                )
                for dev in payload.deviations
            ],
            confidence=min(max(payload.confidence, 0.0), 1.0),
        )
