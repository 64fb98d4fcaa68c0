"""
Data Extraction Service.

Runs the four section extractions (client info, liability, damages,
coverage) against one transcript chunk. The extraction backend is
pluggable: anything implementing ``ExtractionBackend`` works, and
``OpenAIExtractionBackend`` talks to an OpenAI-compatible chat
completions API with JSON-mode output.
"""

from __future__ import annotations

import asyncio
import json
from dataclasses import dataclass
from typing import Any, Optional, Protocol, Sequence

import httpx
from pydantic import ValidationError

from intake_pipeline.config import Settings, get_settings
from intake_pipeline.logging_config import get_logger
from intake_pipeline.schemas.extraction import ChunkExtraction
from intake_pipeline.schemas.sections import SECTION_MODELS, SectionModel, SectionType
from intake_pipeline.schemas.transcript import Turn
from intake_pipeline.services.extraction_prompts import SYSTEM_PROMPTS, build_user_prompt

logger = get_logger(__name__)


class ExtractionBackendError(Exception):
    """A section extraction failed (HTTP error, timeout, bad JSON, schema rejection)."""

    def __init__(
        self,
        message: str,
        section: Optional[SectionType] = None,
        chunk_index: Optional[int] = None,
    ) -> None:
        super().__init__(message)
        self.section = section
        self.chunk_index = chunk_index


class ChunkExtractionError(ExtractionBackendError):
    """One or more of a chunk's four section extractions failed."""

    def __init__(self, chunk_index: int, failures: dict[SectionType, BaseException]) -> None:
        names = ", ".join(f"{section.value}: {error}" for section, error in failures.items())
        super().__init__(f"Chunk {chunk_index} extraction failed ({names})", chunk_index=chunk_index)
        self.failures = failures


@dataclass(frozen=True)
class ExtractionRequest:
    """Input for one section extraction: the chunk text plus framing metadata."""

    text: str
    chunk_index: int = 0
    total_chunks: int = 1
    turns: Sequence[Turn] = ()


class ExtractionBackend(Protocol):
    async def extract_section(
        self, section: SectionType, request: ExtractionRequest
    ) -> SectionModel: ...


class OpenAIExtractionBackend:
    """
    Extraction backend over an OpenAI-compatible ``/chat/completions`` API.

    Pass ``client`` to share a connection pool (or a mock transport in
    tests); otherwise a short-lived client is opened per request.
    """

    def __init__(
        self,
        settings: Optional[Settings] = None,
        client: Optional[httpx.AsyncClient] = None,
    ) -> None:
        self.settings = settings or get_settings()
        self._client = client

    async def extract_section(
        self, section: SectionType, request: ExtractionRequest
    ) -> SectionModel:
        payload = {
            "model": self.settings.extraction_model,
            "messages": [
                {"role": "system", "content": SYSTEM_PROMPTS[section]},
                {
                    "role": "user",
                    "content": build_user_prompt(
                        section,
                        request.text,
                        request.chunk_index,
                        request.total_chunks,
                        request.turns,
                    ),
                },
            ],
            "response_format": {"type": "json_object"},
            "temperature": self.settings.extraction_temperature,
        }

        try:
            data = await self._post(payload)
            content = data["choices"][0]["message"]["content"]
            parsed = json.loads(content)
        except httpx.HTTPError as e:
            raise ExtractionBackendError(
                f"LLM request failed: {e!r}", section, request.chunk_index
            ) from e
        except (KeyError, IndexError, TypeError, ValueError) as e:
            raise ExtractionBackendError(
                f"Malformed LLM response: {e!r}", section, request.chunk_index
            ) from e

        if not isinstance(parsed, dict):
            raise ExtractionBackendError(
                f"Expected a JSON object, got {type(parsed).__name__}", section, request.chunk_index
            )

        try:
            return SECTION_MODELS[section].model_validate(parsed)
        except ValidationError as e:
            raise ExtractionBackendError(
                f"LLM output rejected by {section.value} schema: {e.error_count()} error(s)",
                section,
                request.chunk_index,
            ) from e

    async def _post(self, payload: dict[str, Any]) -> dict[str, Any]:
        url = f"{self.settings.openai_base_url.rstrip('/')}/chat/completions"
        headers = {
            "Authorization": f"Bearer {self.settings.openai_api_key}",
            "Content-Type": "application/json",
        }

        if self._client is not None:
            response = await self._client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            return response.json()

        async with httpx.AsyncClient(timeout=self.settings.extraction_timeout_seconds) as client:
            response = await client.post(url, headers=headers, json=payload)
            response.raise_for_status()
            return response.json()


async def extract_chunk(backend: ExtractionBackend, request: ExtractionRequest) -> ChunkExtraction:
    """
    Extract all four sections from one chunk concurrently.

    Waits for every section call to settle before returning, then raises
    ``ChunkExtractionError`` if any of them failed.
    """
    sections = list(SectionType)
    logger.info(
        "chunk_extraction_started",
        chunk_index=request.chunk_index,
        total_chunks=request.total_chunks,
        chunk_chars=len(request.text),
        turns=len(request.turns),
    )

    results = await asyncio.gather(
        *(backend.extract_section(section, request) for section in sections),
        return_exceptions=True,
    )

    values: dict[SectionType, SectionModel] = {}
    failures: dict[SectionType, BaseException] = {}
    for section, result in zip(sections, results):
        if isinstance(result, BaseException):
            if not isinstance(result, Exception):
                raise result
            failures[section] = result
        elif not isinstance(result, SECTION_MODELS[section]):
            failures[section] = TypeError(
                f"expected {SECTION_MODELS[section].__name__}, got {type(result).__name__}"
            )
        else:
            values[section] = result

    if failures:
        for section, error in failures.items():
            logger.warning(
                "section_extraction_failed",
                chunk_index=request.chunk_index,
                section=section.value,
                error=str(error),
            )
        raise ChunkExtractionError(request.chunk_index, failures)

    extraction = ChunkExtraction(
        client_info=values[SectionType.CLIENT_INFO],
        liability=values[SectionType.LIABILITY],
        damages=values[SectionType.DAMAGES],
        coverage=values[SectionType.COVERAGE],
    )

    logger.info(
        "chunk_extraction_complete",
        chunk_index=request.chunk_index,
        case_type=extraction.client_info.case_type,
        at_fault=extraction.liability.at_fault.value,
        police_report=extraction.liability.has_police_report,
        severity=extraction.damages.severity.value,
        indications=len(extraction.damages.indications),
        client_has_insurance=extraction.coverage.client_has_insurance,
    )
    return extraction
