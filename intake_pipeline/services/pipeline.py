"""
Transcript Pipeline.

Drives one transcript through chunking, per-chunk section extraction
(four concurrent calls per chunk, retried on failure) and the
cross-chunk merge. Chunk failures are absorbed: a chunk that still fails
after its retries is skipped and reported in the result summary. Only a
run where every chunk was skipped raises.

The pipeline keeps no state between runs; persistence of the result and
its citations is the caller's job.
"""

from __future__ import annotations

import asyncio
from typing import Optional, Sequence

from intake_pipeline.config import Settings, get_settings
from intake_pipeline.logging_config import (
    generate_trace_id,
    get_logger,
    trace_id_var,
    transcript_id_var,
)
from intake_pipeline.schemas.extraction import (
    ChunkOutcome,
    ChunkStatus,
    FinalExtraction,
    ProcessingSummary,
)
from intake_pipeline.schemas.transcript import Transcript, Turn
from intake_pipeline.services.chunker import TranscriptChunk, TranscriptChunker, assign_turns
from intake_pipeline.services.data_extraction import (
    ExtractionBackend,
    ExtractionBackendError,
    ExtractionRequest,
    OpenAIExtractionBackend,
    extract_chunk,
)
from intake_pipeline.services.section_merger import merge_chunk_extractions
from intake_pipeline.services.token_estimator import TokenEstimator

logger = get_logger(__name__)


class PipelineError(Exception):
    """Base class for errors surfaced to pipeline callers."""


class NoExtractableDataError(PipelineError):
    """Every chunk of the transcript failed extraction."""

    def __init__(self, outcomes: Sequence[ChunkOutcome]) -> None:
        super().__init__(
            f"No extractable data: all {len(outcomes)} chunk(s) failed to process"
        )
        self.outcomes = list(outcomes)


class TranscriptPipeline:
    """
    Chunk, extract and merge a transcript into one FinalExtraction.

    Usage::

        pipeline = TranscriptPipeline(OpenAIExtractionBackend())
        result = await pipeline.process(transcript, turns)
        if result.summary.is_partial:
            ...
    """

    def __init__(
        self,
        backend: ExtractionBackend,
        settings: Optional[Settings] = None,
        chunker: Optional[TranscriptChunker] = None,
    ) -> None:
        self.backend = backend
        self.settings = settings or get_settings()
        self.chunker = chunker or TranscriptChunker(
            max_tokens_per_chunk=self.settings.max_chunk_tokens,
            overlap_tokens=self.settings.overlap_tokens,
            estimator=TokenEstimator(self.settings.tokens_per_char),
            lookback_chars=self.settings.chunk_break_lookback_chars,
        )

    async def process(
        self,
        transcript: Transcript,
        turns: Optional[Sequence[Turn]] = None,
        transcript_id: Optional[str] = None,
    ) -> FinalExtraction:
        """
        Run the full pipeline.

        Args:
            transcript: The transcript to process.
            turns: Persisted turns with ids. When given, each chunk is
                sent with the turns it contains so the backend can cite them.
            transcript_id: Caller's record id, added to every log entry
                of this run.

        Raises:
            NoExtractableDataError: every chunk failed after retries.
        """
        trace_token = trace_id_var.set(generate_trace_id())
        transcript_token = transcript_id_var.set(transcript_id or "")
        try:
            return await self._process(transcript, turns)
        finally:
            transcript_id_var.reset(transcript_token)
            trace_id_var.reset(trace_token)

    async def _process(
        self,
        transcript: Transcript,
        turns: Optional[Sequence[Turn]],
    ) -> FinalExtraction:
        logger.info(
            "transcript_processing_started",
            segments=len(transcript.segments),
            with_turn_ids=bool(turns),
            max_concurrent_chunks=self.settings.max_concurrent_chunks,
        )

        chunks = self.chunker.chunk(transcript)
        if turns:
            chunks = assign_turns(chunks, turns)

        outcomes = await self._extract_all(chunks)
        succeeded = [o for o in outcomes if o.status == ChunkStatus.SUCCEEDED]

        if not succeeded:
            logger.error("transcript_processing_failed", chunks=len(chunks))
            raise NoExtractableDataError(outcomes)

        merged = merge_chunk_extractions([o.extraction for o in succeeded])
        summary = ProcessingSummary(
            total_chunks=len(chunks),
            succeeded_chunks=len(succeeded),
            outcomes=outcomes,
        )

        log = logger.warning if summary.is_partial else logger.info
        log(
            "transcript_processing_complete",
            chunks=summary.total_chunks,
            succeeded=summary.succeeded_chunks,
            skipped=summary.skipped_chunks,
            case_type=merged.client_info.case_type,
            at_fault=merged.liability.at_fault.value,
            severity=merged.damages.severity.value,
            indications=len(merged.damages.indications),
        )

        return FinalExtraction(
            client_info=merged.client_info,
            liability=merged.liability,
            damages=merged.damages,
            coverage=merged.coverage,
            summary=summary,
        )

    # -- Chunk scheduling --

    async def _extract_all(self, chunks: Sequence[TranscriptChunk]) -> list[ChunkOutcome]:
        """Extract every chunk; outcomes come back in transcript order."""
        total = len(chunks)

        if self.settings.max_concurrent_chunks == 1:
            return [await self._extract_with_retry(chunk, total) for chunk in chunks]

        semaphore = asyncio.Semaphore(self.settings.max_concurrent_chunks)

        async def bounded(chunk: TranscriptChunk) -> ChunkOutcome:
            async with semaphore:
                return await self._extract_with_retry(chunk, total)

        outcomes = await asyncio.gather(*(bounded(chunk) for chunk in chunks))
        return sorted(outcomes, key=lambda o: o.chunk_index)

    async def _extract_with_retry(self, chunk: TranscriptChunk, total: int) -> ChunkOutcome:
        """Try a chunk, retrying the whole 4-way extraction; skip it when retries run out."""
        request = ExtractionRequest(
            text=chunk.text,
            chunk_index=chunk.index,
            total_chunks=total,
            turns=chunk.turns,
        )
        max_attempts = self.settings.chunk_retry_attempts + 1
        last_error: Optional[ExtractionBackendError] = None

        for attempt in range(1, max_attempts + 1):
            try:
                extraction = await extract_chunk(self.backend, request)
            except ExtractionBackendError as e:
                last_error = e
                logger.warning(
                    "chunk_extraction_failed",
                    chunk_index=chunk.index,
                    attempt=attempt,
                    max_attempts=max_attempts,
                    error=str(e),
                )
                if attempt < max_attempts and self.settings.chunk_retry_delay_seconds > 0:
                    await asyncio.sleep(self.settings.chunk_retry_delay_seconds * 2 ** (attempt - 1))
                continue

            if attempt > 1:
                logger.info("chunk_succeeded_on_retry", chunk_index=chunk.index, attempt=attempt)
            return ChunkOutcome(
                chunk_index=chunk.index,
                status=ChunkStatus.SUCCEEDED,
                attempts=attempt,
                extraction=extraction,
            )

        logger.error(
            "chunk_skipped",
            chunk_index=chunk.index,
            attempts=max_attempts,
            error=str(last_error),
        )
        return ChunkOutcome(
            chunk_index=chunk.index,
            status=ChunkStatus.SKIPPED,
            attempts=max_attempts,
            error=str(last_error),
        )


async def process_transcript(
    transcript: Transcript,
    turns: Optional[Sequence[Turn]] = None,
    backend: Optional[ExtractionBackend] = None,
    settings: Optional[Settings] = None,
    transcript_id: Optional[str] = None,
) -> FinalExtraction:
    """Process a transcript with the OpenAI backend unless another backend is given."""
    settings = settings or get_settings()
    pipeline = TranscriptPipeline(backend or OpenAIExtractionBackend(settings), settings)
    return await pipeline.process(transcript, turns, transcript_id)
