"""
Data models for per-chunk and final extraction results.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, ConfigDict, Field
from pydantic.alias_generators import to_camel

from intake_pipeline.schemas.sections import ClientInfo, Coverage, Damages, Liability


class ChunkExtraction(BaseModel):
    """The four sections extracted from one chunk."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    client_info: ClientInfo
    liability: Liability
    damages: Damages
    coverage: Coverage


class ChunkStatus(str, Enum):
    SUCCEEDED = "succeeded"
    SKIPPED = "skipped"


class ChunkOutcome(BaseModel):
    """What happened to one chunk during a pipeline run."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    chunk_index: int
    status: ChunkStatus
    attempts: int = Field(ge=1)
    error: Optional[str] = None
    extraction: Optional[ChunkExtraction] = Field(default=None, exclude=True)


class ProcessingSummary(BaseModel):
    """How many of the transcript's chunks contributed to the result."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    total_chunks: int
    succeeded_chunks: int
    outcomes: list[ChunkOutcome] = Field(default_factory=list)

    @property
    def skipped_chunks(self) -> list[int]:
        return [o.chunk_index for o in self.outcomes if o.status == ChunkStatus.SKIPPED]

    @property
    def is_partial(self) -> bool:
        return self.succeeded_chunks < self.total_chunks

    def describe(self) -> str:
        """Human-readable summary, e.g. for a "some data missing" notice."""
        text = f"Extracted data from {self.succeeded_chunks}/{self.total_chunks} chunks."
        if self.skipped_chunks:
            skipped = ", ".join(str(i + 1) for i in self.skipped_chunks)
            text = f"{text[:-1]}; skipped chunk(s) {skipped}."
        return text


class FinalExtraction(ChunkExtraction):
    """Merged answer for the whole transcript."""

    summary: Optional[ProcessingSummary] = None

    def sections(self) -> ChunkExtraction:
        """The four merged sections without run bookkeeping."""
        return ChunkExtraction(
            client_info=self.client_info,
            liability=self.liability,
            damages=self.damages,
            coverage=self.coverage,
        )

    def collect_citations(self) -> dict[str, dict[str, Any]]:
        """Gather every section's citation map, keyed by camelCase section name."""
        damages: dict[str, Any] = dict(self.damages.citations or {})
        damages["indications"] = [list(i.citations or []) for i in self.damages.indications]
        return {
            "clientInfo": dict(self.client_info.citations or {}),
            "liability": dict(self.liability.citations or {}),
            "damages": damages,
            "coverage": dict(self.coverage.citations or {}),
        }

    def cited_turn_ids(self) -> list[int]:
        ids: set[int] = set()
        for section in (self.client_info, self.liability, self.damages, self.coverage):
            for turn_ids in (section.citations or {}).values():
                ids.update(turn_ids)
        for indication in self.damages.indications:
            ids.update(indication.citations or [])
        return sorted(ids)
