"""Pytest configuration and shared fixtures."""

from __future__ import annotations

import asyncio
from typing import Optional

import pytest

from intake_pipeline.config import Settings
from intake_pipeline.schemas.extraction import ChunkExtraction
from intake_pipeline.schemas.sections import (
    AtFault,
    CaseType,
    ClientInfo,
    Coverage,
    Damages,
    Indication,
    Liability,
    SectionModel,
    SectionType,
    Severity,
)
from intake_pipeline.schemas.transcript import Segment, Transcript
from intake_pipeline.services.data_extraction import ExtractionBackendError, ExtractionRequest


def make_extraction(**overrides) -> ChunkExtraction:
    """Build a ChunkExtraction with realistic defaults; override whole sections by name."""
    sections = {
        "client_info": ClientInfo(
            case_type=CaseType.MVA,
            client_name="Maria Lopez",
            client_phone="555-0142",
            incident_date="2024-03-02",
            incident_location="5th Ave and Main St",
            citations={"clientName": [1], "incidentDate": [3]},
        ),
        "liability": Liability(
            at_fault=AtFault.OTHER_PARTY,
            rationale="- Other driver ran a red light\n- Client had right of way",
            has_police_report=True,
            citations={"rationale": [3], "hasPoliceReport": [5]},
        ),
        "damages": Damages(
            severity=Severity.MEDIUM,
            indications=[
                Indication(description="Whiplash", severity=Severity.MEDIUM, citations=[4]),
            ],
            citations={"severity": [4]},
        ),
        "coverage": Coverage(
            client_has_insurance=True,
            client_insurance_provider="State Farm",
            other_party_has_insurance=None,
            citations={"clientHasInsurance": [6]},
        ),
    }
    sections.update(overrides)
    return ChunkExtraction(**sections)


class StubBackend:
    """
    In-memory extraction backend.

    Args:
        extractions: Per-chunk results keyed by chunk index; ``default``
            answers every other chunk.
        failures: Number of leading attempts that fail for a chunk index.
        delays: Seconds to sleep before answering for a chunk index.
    """

    def __init__(
        self,
        extractions: Optional[dict[int, ChunkExtraction]] = None,
        default: Optional[ChunkExtraction] = None,
        failures: Optional[dict[int, int]] = None,
        delays: Optional[dict[int, float]] = None,
    ) -> None:
        self.extractions = extractions or {}
        self.default = default or make_extraction()
        self.failures = failures or {}
        self.delays = delays or {}
        self.calls: list[tuple[SectionType, ExtractionRequest]] = []

    def attempts(self, chunk_index: int) -> int:
        return sum(
            1
            for section, request in self.calls
            if section == SectionType.LIABILITY and request.chunk_index == chunk_index
        )

    async def extract_section(
        self, section: SectionType, request: ExtractionRequest
    ) -> SectionModel:
        self.calls.append((section, request))
        delay = self.delays.get(request.chunk_index, 0.0)
        if delay:
            await asyncio.sleep(delay)

        if section == SectionType.LIABILITY:
            if self.attempts(request.chunk_index) <= self.failures.get(request.chunk_index, 0):
                raise ExtractionBackendError("simulated timeout", section, request.chunk_index)

        extraction = self.extractions.get(request.chunk_index, self.default)
        return getattr(extraction, section.value)


@pytest.fixture
def settings() -> Settings:
    return Settings(
        openai_api_key="test-key",
        openai_base_url="https://llm.test/v1",
        max_chunk_tokens=30000,
        overlap_tokens=0,
        chunk_retry_attempts=1,
        chunk_retry_delay_seconds=0.0,
        max_concurrent_chunks=1,
    )


@pytest.fixture
def small_chunk_settings(settings: Settings) -> Settings:
    """Settings that split the ``long_transcript`` fixture into several chunks."""
    return settings.model_copy(update={"max_chunk_tokens": 40, "overlap_tokens": 5})


@pytest.fixture
def short_transcript() -> Transcript:
    return Transcript(
        segments=[
            Segment(speaker=0, content="Thanks for calling. What happened?"),
            Segment(speaker=1, content="A car ran a red light and hit me on March 2nd."),
            Segment(speaker=0, content="Was a police report filed?"),
        ]
    )


@pytest.fixture
def long_transcript() -> Transcript:
    return Transcript(
        segments=[
            Segment(speaker=i % 2, content=f"Turn {i} talks about the accident in some detail.")
            for i in range(8)
        ]
    )
