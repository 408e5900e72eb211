"""
Batch Orchestrator — bounded fan-out over the generation pipeline.

Specs are cut into chunks of ``max_concurrent``. Chunks run one after
another; items inside a chunk run concurrently. Results are written into
index-addressed slots, so output order always equals input order. A short
delay separates chunks (provider rate limits) and is skipped after the
last chunk.

The pipeline already absorbs generation failures. If an item still blows
up, only that slot is replaced with the hardcoded question.
"""
from __future__ import annotations

import asyncio
import logging
from typing import Optional, Sequence

from app.models.progress import GenerationRequest
from app.models.question import Question
from app.services.content_pipeline import ContentGenerationPipeline, hardcoded_question

logger = logging.getLogger("atlas.batch")

DEFAULT_MAX_CONCURRENT = 3
DEFAULT_CHUNK_DELAY_SECONDS = 0.1


def chunked(items: Sequence, size: int) -> list[list]:
    if size < 1:
        raise ValueError("chunk size must be >= 1")
    return [list(items[i : i + size]) for i in range(0, len(items), size)]


class BatchOrchestrator:
    def __init__(
        self,
        pipeline: ContentGenerationPipeline,
        chunk_delay_seconds: float = DEFAULT_CHUNK_DELAY_SECONDS,
    ):
        self.pipeline = pipeline
        self.chunk_delay_seconds = chunk_delay_seconds

    async def _run_one(self, spec: GenerationRequest) -> Question:
        try:
            return await self.pipeline.generate(spec)
        except Exception as exc:
            logger.error(
                "[batch_orchestrator] Item failed for region=%s: %s", spec.region, exc, exc_info=True,
            )
            return hardcoded_question(spec.region, spec.category, spec.difficulty.tier)

    async def generate_batch(
        self,
        specs: Sequence[GenerationRequest],
        max_concurrent: int = DEFAULT_MAX_CONCURRENT,
    ) -> list[Question]:
        """Generate one question per spec, same length and order as ``specs``."""
        if max_concurrent < 1:
            raise ValueError("max_concurrent must be >= 1")

        results: list[Optional[Question]] = [None] * len(specs)
        chunks = chunked(range(len(specs)), max_concurrent)

        for n, indexes in enumerate(chunks):
            outputs = await asyncio.gather(*(self._run_one(specs[i]) for i in indexes))
            for i, question in zip(indexes, outputs):
                results[i] = question

            if n < len(chunks) - 1 and self.chunk_delay_seconds > 0:
                await asyncio.sleep(self.chunk_delay_seconds)

        logger.info(
            "[batch_orchestrator] Generated %d question(s) in %d chunk(s): %s",
            len(results), len(chunks),
            {src: sum(1 for q in results if q.source == src) for src in ("ai", "bank", "hardcoded")},
        )
        return results  # type: ignore[return-value]
