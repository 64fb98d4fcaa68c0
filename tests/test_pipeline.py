"""Tests for the end-to-end transcript pipeline."""

import pytest

from conftest import StubBackend, make_extraction
from intake_pipeline.logging_config import (
    _inject_context_vars,
    trace_id_var,
    transcript_id_var,
)
from intake_pipeline.schemas.extraction import ChunkExtraction, ChunkStatus
from intake_pipeline.schemas.sections import (
    AtFault,
    CaseType,
    ClientInfo,
    Coverage,
    Damages,
    FaultPercentages,
    Indication,
    Liability,
    SectionType,
    Severity,
)
from intake_pipeline.services.chunker import TranscriptChunker
from intake_pipeline.services.pipeline import (
    NoExtractableDataError,
    TranscriptPipeline,
    process_transcript,
)
from intake_pipeline.services.token_estimator import TokenEstimator


def chunk_count(transcript, settings) -> int:
    chunker = TranscriptChunker(
        max_tokens_per_chunk=settings.max_chunk_tokens,
        overlap_tokens=settings.overlap_tokens,
        estimator=TokenEstimator(settings.tokens_per_char),
        lookback_chars=settings.chunk_break_lookback_chars,
    )
    return len(chunker.chunk(transcript))


def named(name: str) -> ChunkExtraction:
    return make_extraction(client_info=ClientInfo(client_name=name))


class TestSingleChunk:
    async def test_output_matches_backend_output(self, short_transcript, settings):
        expected = make_extraction()
        backend = StubBackend(default=expected)

        result = await TranscriptPipeline(backend, settings).process(short_transcript)

        assert result.sections() == expected
        assert result.summary.total_chunks == 1
        assert result.summary.succeeded_chunks == 1
        assert not result.summary.is_partial
        assert len(backend.calls) == 4
        assert {section for section, _ in backend.calls} == set(SectionType)

    async def test_request_carries_flattened_text(self, short_transcript, settings):
        backend = StubBackend()

        await TranscriptPipeline(backend, settings).process(short_transcript)

        request = backend.calls[0][1]
        assert request.text == short_transcript.flatten()
        assert request.chunk_index == 0
        assert request.total_chunks == 1
        assert request.turns == ()


class TestMultiChunk:
    async def test_chunks_merged_in_transcript_order(self, long_transcript, small_chunk_settings):
        total = chunk_count(long_transcript, small_chunk_settings)
        assert total >= 3
        last = total - 1

        backend = StubBackend(
            default=make_extraction(
                client_info=ClientInfo(),
                liability=Liability(),
                damages=Damages(severity=Severity.LOW),
                coverage=Coverage(),
            ),
            extractions={
                0: make_extraction(
                    client_info=ClientInfo(client_name="Alice", case_type=CaseType.DOG_BITES),
                    liability=Liability(
                        at_fault=AtFault.SHARED,
                        fault_percentages=FaultPercentages(client=40, other_party=60),
                        rationale="- Dog was off leash",
                    ),
                    damages=Damages(severity=Severity.MEDIUM, indications=[
                        Indication(description="Bite on forearm", severity=Severity.MEDIUM),
                    ]),
                    coverage=Coverage(client_has_insurance=True),
                ),
                last: make_extraction(
                    client_info=ClientInfo(client_phone="555-0110"),
                    liability=Liability(
                        at_fault=AtFault.SHARED,
                        fault_percentages=FaultPercentages(client=20, other_party=80),
                        rationale="- Dog was off leash\n- Owner ignored warnings",
                        has_police_report=True,
                    ),
                    damages=Damages(severity=Severity.HIGH, indications=[
                        Indication(description="bite on forearm ", severity=Severity.HIGH),
                        Indication(description="Nerve damage", severity=Severity.HIGH),
                    ]),
                    coverage=Coverage(client_has_insurance=False, other_party_has_insurance=True),
                ),
            },
        )

        result = await TranscriptPipeline(backend, small_chunk_settings).process(long_transcript)

        assert result.summary.total_chunks == total
        assert result.summary.succeeded_chunks == total
        assert len(backend.calls) == 4 * total
        assert sorted({r.chunk_index for _, r in backend.calls}) == list(range(total))
        assert {r.total_chunks for _, r in backend.calls} == {total}

        assert result.client_info.client_name == "Alice"
        assert result.client_info.client_phone == "555-0110"
        assert result.client_info.case_type == CaseType.DOG_BITES
        assert result.liability.at_fault == AtFault.SHARED
        assert result.liability.fault_percentages == FaultPercentages(client=30, other_party=70)
        assert result.liability.has_police_report is True
        assert result.liability.rationale == "- Dog was off leash\n- Owner ignored warnings"
        assert result.damages.severity == Severity.HIGH
        assert [i.description for i in result.damages.indications] == ["Bite on forearm", "Nerve damage"]
        assert result.coverage.client_has_insurance is False
        assert result.coverage.other_party_has_insurance is True

    async def test_sequential_by_default(self, long_transcript, small_chunk_settings):
        backend = StubBackend()

        await TranscriptPipeline(backend, small_chunk_settings).process(long_transcript)

        indexes = [request.chunk_index for _, request in backend.calls]
        assert indexes == sorted(indexes)

    async def test_concurrent_chunks_still_merge_in_order(self, long_transcript, small_chunk_settings):
        settings = small_chunk_settings.model_copy(update={"max_concurrent_chunks": 8})
        total = chunk_count(long_transcript, settings)
        backend = StubBackend(
            extractions={i: named(f"Client {i}") for i in range(total)},
            delays={0: 0.05},
        )

        result = await TranscriptPipeline(backend, settings).process(long_transcript)

        assert result.client_info.client_name == f"Client {total - 1}"
        assert [o.chunk_index for o in result.summary.outcomes] == list(range(total))
        assert len(backend.calls) == 4 * total


class TestTurns:
    async def test_chunks_receive_contained_turns(self, long_transcript, small_chunk_settings):
        turns = long_transcript.to_turns([900 + i for i in range(len(long_transcript.segments))])
        backend = StubBackend()

        await TranscriptPipeline(backend, small_chunk_settings).process(long_transcript, turns)

        by_chunk = {
            request.chunk_index: request
            for section, request in backend.calls
            if section == SectionType.CLIENT_INFO
        }
        for request in by_chunk.values():
            assert request.turns
            for turn in request.turns:
                assert turn.content in request.text
        assert by_chunk[0].turns[0].turn_id == 900

    async def test_no_turns_without_ids(self, long_transcript, small_chunk_settings):
        backend = StubBackend()

        await TranscriptPipeline(backend, small_chunk_settings).process(long_transcript)

        assert all(request.turns == () for _, request in backend.calls)


class TestFailures:
    async def test_failed_chunk_is_retried(self, long_transcript, small_chunk_settings):
        backend = StubBackend(failures={1: 1})

        result = await TranscriptPipeline(backend, small_chunk_settings).process(long_transcript)

        assert backend.attempts(1) == 2
        assert not result.summary.is_partial
        outcome = result.summary.outcomes[1]
        assert outcome.status == ChunkStatus.SUCCEEDED
        assert outcome.attempts == 2

    async def test_chunk_skipped_after_retries_exhausted(self, long_transcript, small_chunk_settings):
        total = chunk_count(long_transcript, small_chunk_settings)
        backend = StubBackend(
            failures={1: 10},
            extractions={1: named("Only in skipped chunk")},
        )

        result = await TranscriptPipeline(backend, small_chunk_settings).process(long_transcript)

        assert backend.attempts(1) == 2
        assert result.summary.is_partial
        assert result.summary.succeeded_chunks == total - 1
        assert result.summary.skipped_chunks == [1]
        skipped = result.summary.outcomes[1]
        assert skipped.status == ChunkStatus.SKIPPED
        assert "simulated timeout" in skipped.error
        assert result.client_info.client_name == "Maria Lopez"

    async def test_retry_budget_is_configurable(self, long_transcript, small_chunk_settings):
        settings = small_chunk_settings.model_copy(update={"chunk_retry_attempts": 0})
        backend = StubBackend(failures={0: 1})

        result = await TranscriptPipeline(backend, settings).process(long_transcript)

        assert backend.attempts(0) == 1
        assert result.summary.skipped_chunks == [0]

    async def test_all_chunks_failing_is_terminal(self, long_transcript, small_chunk_settings):
        total = chunk_count(long_transcript, small_chunk_settings)
        backend = StubBackend(failures={i: 10 for i in range(total)})

        with pytest.raises(NoExtractableDataError) as exc_info:
            await TranscriptPipeline(backend, small_chunk_settings).process(long_transcript)

        assert len(exc_info.value.outcomes) == total
        assert all(o.status == ChunkStatus.SKIPPED for o in exc_info.value.outcomes)

    async def test_single_chunk_failure_is_terminal(self, short_transcript, settings):
        backend = StubBackend(failures={0: 10})

        with pytest.raises(NoExtractableDataError, match="No extractable data"):
            await TranscriptPipeline(backend, settings).process(short_transcript)


class TestRunIsolation:
    async def test_trace_id_reset_after_run(self, short_transcript, settings):
        await TranscriptPipeline(StubBackend(), settings).process(short_transcript)
        assert trace_id_var.get() == ""

    async def test_transcript_id_tags_logs_during_run(self, short_transcript, settings):
        seen = []

        class RecordingBackend(StubBackend):
            async def extract_section(self, section, request):
                seen.append(_inject_context_vars(None, "info", {}))
                return await super().extract_section(section, request)

        await TranscriptPipeline(RecordingBackend(), settings).process(
            short_transcript, transcript_id="intake-0412"
        )

        assert len(seen) == 4
        assert {entry["transcript_id"] for entry in seen} == {"intake-0412"}
        assert len({entry["trace_id"] for entry in seen}) == 1
        assert transcript_id_var.get() == ""

    async def test_logs_untagged_without_transcript_id(self, short_transcript, settings):
        seen = []

        class RecordingBackend(StubBackend):
            async def extract_section(self, section, request):
                seen.append(_inject_context_vars(None, "info", {}))
                return await super().extract_section(section, request)

        await TranscriptPipeline(RecordingBackend(), settings).process(short_transcript)

        assert all("transcript_id" not in entry for entry in seen)
        assert all(entry["trace_id"] for entry in seen)

    async def test_process_transcript_helper(self, short_transcript, settings):
        expected = make_extraction()

        result = await process_transcript(
            short_transcript, backend=StubBackend(default=expected), settings=settings
        )

        assert result.sections() == expected
