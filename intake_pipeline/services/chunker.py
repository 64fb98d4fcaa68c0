"""
Transcript Chunker.

Splits a flattened transcript into overlapping windows sized to a token
budget. Window ends are moved back to the nearest natural break point
(speaker change > paragraph > sentence > word) so the extraction model
rarely sees an utterance cut in half. The output is a pure function of
the inputs: the same transcript and parameters always give the same
boundaries.
"""

from __future__ import annotations

import re
from dataclasses import dataclass, field, replace
from typing import Optional, Sequence

from intake_pipeline.config import get_settings
from intake_pipeline.logging_config import get_logger
from intake_pipeline.schemas.transcript import Transcript, Turn
from intake_pipeline.services.token_estimator import TokenCounter, TokenEstimator

logger = get_logger(__name__)

SPEAKER_BREAK = "\n[Speaker "
PARAGRAPH_BREAK = "\n\n"
_SENTENCE_END = re.compile(r"[.!?]\s+(?=[A-Z])")


@dataclass(frozen=True)
class TranscriptChunk:
    """A contiguous ``[start, end)`` span of the flattened transcript."""

    index: int
    text: str
    start: int
    end: int
    token_estimate: int
    turns: tuple[Turn, ...] = field(default=())


class TranscriptChunker:
    """
    Produces overlapping, token-bounded windows over a transcript.

    Args:
        max_tokens_per_chunk: Token budget for one window.
        overlap_tokens: Approximate overlap between consecutive windows.
        estimator: Token counter; defaults to the character-ratio heuristic.
        lookback_chars: How far back from the budget end to look for a break.
    """

    def __init__(
        self,
        max_tokens_per_chunk: Optional[int] = None,
        overlap_tokens: Optional[int] = None,
        estimator: Optional[TokenCounter] = None,
        lookback_chars: Optional[int] = None,
    ) -> None:
        settings = get_settings()
        self.max_tokens_per_chunk = (
            settings.max_chunk_tokens if max_tokens_per_chunk is None else max_tokens_per_chunk
        )
        self.overlap_tokens = settings.overlap_tokens if overlap_tokens is None else overlap_tokens
        self.lookback_chars = (
            settings.chunk_break_lookback_chars if lookback_chars is None else lookback_chars
        )
        self.estimator = estimator or TokenEstimator(settings.tokens_per_char)

        if self.max_tokens_per_chunk < 1:
            raise ValueError("max_tokens_per_chunk must be at least 1")
        if self.overlap_tokens < 0:
            raise ValueError("overlap_tokens must not be negative")

    # -- Public interface --

    def chunk(self, transcript: Transcript) -> list[TranscriptChunk]:
        """Chunk a transcript after flattening it to ``[Speaker N]: ...`` text."""
        return self.chunk_text(transcript.flatten())

    def chunk_text(self, text: str) -> list[TranscriptChunk]:
        total_tokens = self.estimator.estimate_tokens(text)

        if total_tokens <= self.max_tokens_per_chunk:
            logger.debug("chunking_single_window", total_chars=len(text), total_tokens=total_tokens)
            return [self._make_chunk(0, text, 0, len(text))]

        overlap_chars = self.estimator.estimate_chars_for_tokens(self.overlap_tokens)
        chunks: list[TranscriptChunk] = []
        cursor = 0

        while cursor < len(text):
            end = self._find_chunk_end(text, cursor)
            chunks.append(self._make_chunk(len(chunks), text, cursor, end))
            if end >= len(text):
                # Whole text covered
                break

            next_cursor = end - overlap_chars
            if next_cursor <= cursor:
                # Overlap would stall: continue from the end instead
                next_cursor = end
            cursor = next_cursor

        logger.info(
            "chunking_complete",
            chunks=len(chunks),
            total_chars=len(text),
            total_tokens=total_tokens,
            max_tokens_per_chunk=self.max_tokens_per_chunk,
            overlap_chars=overlap_chars,
        )
        return chunks

    # -- Break point search --

    def _find_chunk_end(self, text: str, start: int) -> int:
        """
        Pick the end of the window starting at ``start``.

        Always returns a position in ``(start, len(text)]``.
        """
        budget = max(1, self.estimator.estimate_chars_for_tokens(self.max_tokens_per_chunk))
        end = min(start + budget, len(text))
        if end >= len(text):
            return len(text)

        # A break exactly at ``start`` would give an empty window
        window_start = max(start + 1, end - self.lookback_chars)
        window = text[window_start:end]

        position = window.rfind(SPEAKER_BREAK)
        if position != -1:
            return window_start + position

        position = window.rfind(PARAGRAPH_BREAK)
        if position != -1:
            return window_start + position

        last_sentence = None
        for match in _SENTENCE_END.finditer(window):
            last_sentence = match
        if last_sentence is not None:
            return window_start + last_sentence.start() + 1

        position = window.rfind(" ")
        if position != -1:
            return window_start + position

        return end

    def _make_chunk(self, index: int, text: str, start: int, end: int) -> TranscriptChunk:
        piece = text[start:end]
        return TranscriptChunk(
            index=index,
            text=piece,
            start=start,
            end=end,
            token_estimate=self.estimator.estimate_tokens(piece),
        )


def chunk_transcript(
    transcript: Transcript,
    max_tokens_per_chunk: Optional[int] = None,
    overlap_tokens: Optional[int] = None,
) -> list[TranscriptChunk]:
    """Chunk ``transcript`` with configured defaults for any omitted parameter."""
    return TranscriptChunker(max_tokens_per_chunk, overlap_tokens).chunk(transcript)


def assign_turns(chunks: Sequence[TranscriptChunk], turns: Sequence[Turn]) -> list[TranscriptChunk]:
    """
    Attach to each chunk the turns whose content appears in its text.

    Containment is a plain substring check, so a turn cut by a chunk
    boundary is attached only to chunks holding its full content. Turns
    with blank content are never attached.
    """
    citable = [turn for turn in turns if turn.content.strip()]
    assigned = []
    for chunk in chunks:
        contained = tuple(turn for turn in citable if turn.content in chunk.text)
        assigned.append(replace(chunk, turns=contained))
        logger.debug(
            "chunk_turns_assigned",
            chunk_index=chunk.index,
            turns=len(contained),
            first_turn_ids=[t.turn_id for t in contained[:5]],
        )
    return assigned
