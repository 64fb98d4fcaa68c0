"""
Data models for call transcripts and their persisted turns.
"""

from __future__ import annotations

from typing import Optional, Sequence

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

SEGMENT_SEPARATOR = "\n\n"


class Segment(BaseModel):
    """One speaker's utterance. Speaker roles are never given, only inferred."""

    model_config = ConfigDict(frozen=True)

    speaker: int = Field(ge=0)
    content: str

    def render(self) -> str:
        return f"[Speaker {self.speaker}]: {self.content}"


class Transcript(BaseModel):
    """An uploaded transcript. Immutable input to the pipeline."""

    model_config = ConfigDict(frozen=True)

    segments: tuple[Segment, ...] = ()

    def flatten(self) -> str:
        """Render every segment as ``[Speaker N]: text`` separated by a blank line."""
        return SEGMENT_SEPARATOR.join(seg.render() for seg in self.segments)

    def to_turns(self, turn_ids: Optional[Sequence[int]] = None) -> list[Turn]:
        """
        Materialize segments as Turns.

        Args:
            turn_ids: Persisted ids in segment order. When omitted, turns
                are numbered from 0 (useful for local citation tracking).
        """
        if turn_ids is None:
            turn_ids = range(len(self.segments))
        if len(turn_ids) != len(self.segments):
            raise ValueError(
                f"Expected {len(self.segments)} turn ids, got {len(turn_ids)}"
            )
        return [
            Turn(turn_id=turn_id, turn_index=index, speaker=seg.speaker, content=seg.content)
            for index, (turn_id, seg) in enumerate(zip(turn_ids, self.segments))
        ]


class Turn(BaseModel):
    """A segment with a stable identifier, used as a citation target."""

    model_config = ConfigDict(frozen=True, alias_generator=to_camel, populate_by_name=True)

    turn_id: int
    turn_index: int = Field(default=0, ge=0)
    speaker: int = Field(ge=0)
    content: str
