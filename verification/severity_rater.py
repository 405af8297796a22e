"""Classify deviation severity with the LLM."""

import asyncio
import logging
from typing import List

from .prompts import (
    RATING_SCHEMA, RATING_SYSTEM_PROMPT, RATING_USER_TEMPLATE, RatingPayload,
    RATING_SPEC_EXCERPT_LIMIT, truncate,
)
from .types import Deviation, RatingContext, SeverityRating

logger = logging.getLogger(__name__)


class SeverityRater:
    """Rates deviations as Critical, High, Medium or Low."""

    def __init__(self, llm):
        self.llm = llm

    async def rate_deviation(self, deviation: Deviation, context: RatingContext) -> SeverityRating:
        """Rate one deviation. Never raises; failures rate Medium with confidence 0.5."""
        messages = [
            {"role": "system", "content": RATING_SYSTEM_PROMPT},
            {"role": "user", "content": RATING_USER_TEMPLATE.format(
                type=deviation.type,
                description=deviation.description,
                expected=deviation.expected_behavior,
                actual=deviation.actual_behavior,
                file=deviation.file_path or context.file_path,
                line=deviation.line_number or 'N/A',
                context_file=context.file_path,
                change_type=context.change_type,
                project_type=context.project_type or 'Not specified',
                spec_excerpt=truncate(context.spec_content, RATING_SPEC_EXCERPT_LIMIT),
            )},
        ]

        try:
            data = await self.llm.generate_structured(messages, RATING_SCHEMA)
            payload = RatingPayload.model_validate(data)
        except Exception as e:
            logger.warning(f"Severity rating failed for {context.file_path}: {e}")
            return SeverityRating(
                severity='Medium',
                reasoning=f"Failed to rate severity: {e}",
                confidence=0.5,
                impact_areas=['unknown'],
            )

        return SeverityRating(
            severity=payload.severity,
            reasoning=payload.reasoning,
            confidence=payload.confidence,
            impact_areas=payload.impact_areas,
        )

    async def rate_deviations_batch(
        self,
        deviations: List[Deviation],
        context: RatingContext,
        concurrency: int = 1
    ) -> List[SeverityRating]:
        """Rate deviations with at most `concurrency` LLM calls in flight.

        Ratings come back in the same order as the deviations.
        """
        if concurrency < 1:
            raise ValueError("concurrency must be at least 1")

        if concurrency == 1:
            return [await self.rate_deviation(d, context) for d in deviations]

        semaphore = asyncio.Semaphore(concurrency)

        async def rate(deviation: Deviation) -> SeverityRating:
            async with semaphore:
                return await self.rate_deviation(deviation, context)

        return list(await asyncio.gather(*(rate(d) for d in deviations)))
