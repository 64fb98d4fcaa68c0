"""
Section Merger.

Reconciles the per-chunk values of each section into one value for the
whole transcript. Every merge expects its inputs in transcript order and
is deterministic. A single input is returned unchanged; an empty input
is a programming error and raises ``ValueError``.

The precedence rules differ per section on purpose:

- ClientInfo: newest chunk with a value wins, scanning newest to oldest,
  so an earlier value survives later silence.
- Coverage: fold oldest to newest, any non-null value overwrites the
  accumulator. ``False`` is an answer, only ``None`` is skipped.
- Liability: police report is OR-ed, fault takes the first determination
  that is not "unclear", rationale bullets are unioned.
- Damages: worst severity wins, indications are deduplicated by description.
"""

from __future__ import annotations

import math
from typing import Any, Iterable, Optional, Sequence, TypeVar

from pydantic.alias_generators import to_camel

from intake_pipeline.logging_config import get_logger
from intake_pipeline.schemas.extraction import ChunkExtraction
from intake_pipeline.schemas.sections import (
    COVERAGE_FIELDS,
    AtFault,
    CaseType,
    Citations,
    ClientInfo,
    Coverage,
    Damages,
    Evidence,
    FaultPercentages,
    Indication,
    Liability,
)

logger = get_logger(__name__)

T = TypeVar("T")

DEFAULT_CASE_TYPE = CaseType.MVA

CLIENT_INFO_FIELDS: tuple[str, ...] = (
    "case_type",
    "client_name",
    "client_dob",
    "client_phone",
    "client_email",
    "client_address",
    "incident_date",
    "incident_location",
    "brief",
)

_BULLET_PREFIXES = ("-", "*")


# ── Helpers ──────────────────────────────────────────────────────


def _require_items(items: Sequence[T], section: str) -> None:
    if not items:
        raise ValueError(f"No {section} extractions to merge")


def _unique(values: Iterable[T]) -> list[T]:
    """Drop duplicates, keeping first-seen order."""
    seen: set[Any] = set()
    result: list[T] = []
    for value in values:
        if value in seen:
            continue
        seen.add(value)
        result.append(value)
    return result


def _cited(items: Iterable[Any], key: str) -> list[int]:
    """Union of the turn ids each item cites for ``key``."""
    return _unique(
        turn_id for item in items for turn_id in (item.citations or {}).get(key, [])
    )


def _citation_map(entries: dict[str, list[int]]) -> Optional[Citations]:
    kept = {key: ids for key, ids in entries.items() if ids}
    return kept or None


def _round_half_up(value: float) -> int:
    return math.floor(value + 0.5)


def _is_supplied(value: Any) -> bool:
    if value is None:
        return False
    if isinstance(value, str):
        return bool(value.strip())
    return True


# ── Client info ──────────────────────────────────────────────────


def merge_client_info(infos: Sequence[ClientInfo]) -> ClientInfo:
    """
    For every field take the value from the latest chunk that supplied one.

    Blank strings count as not supplied. ``case_type`` falls back to
    ``mva`` when no chunk named a case type.
    """
    _require_items(infos, "client info")
    if len(infos) == 1:
        info = infos[0]
        if info.case_type is None:
            return info.model_copy(update={"case_type": DEFAULT_CASE_TYPE})
        return info

    merged: dict[str, Any] = {}
    citations: dict[str, list[int]] = {}
    for name in CLIENT_INFO_FIELDS:
        winner = next(
            (getattr(info, name) for info in reversed(infos) if _is_supplied(getattr(info, name))),
            None,
        )
        merged[name] = winner
        if winner is not None:
            agreeing = [info for info in infos if getattr(info, name) == winner]
            citations[to_camel(name)] = _cited(agreeing, to_camel(name))

    if merged["case_type"] is None:
        logger.info("case_type_defaulted", case_type=DEFAULT_CASE_TYPE.value, chunks=len(infos))
        merged["case_type"] = DEFAULT_CASE_TYPE

    result = ClientInfo(**merged, citations=_citation_map(citations))
    logger.debug(
        "client_info_merged",
        chunks=len(infos),
        case_type=result.case_type.value,
        has_client_name=result.client_name is not None,
    )
    return result


# ── Liability ────────────────────────────────────────────────────


def _rationale_points(rationale: str) -> list[str]:
    lines = (line.strip() for line in rationale.split("\n"))
    return [line for line in lines if line.startswith(_BULLET_PREFIXES)]


def merge_liability(liabilities: Sequence[Liability]) -> Liability:
    _require_items(liabilities, "liability")
    if len(liabilities) == 1:
        return liabilities[0]

    all_points = [point for item in liabilities for point in _rationale_points(item.rationale)]
    points = _unique(all_points)

    reporting = [item for item in liabilities if item.has_police_report]
    has_police_report = bool(reporting)

    at_fault = next(
        (item.at_fault for item in liabilities if item.at_fault != AtFault.UNCLEAR),
        AtFault.UNCLEAR,
    )

    fault_percentages: Optional[FaultPercentages] = None
    shared: list[Liability] = []
    if at_fault == AtFault.SHARED:
        shared = [
            item
            for item in liabilities
            if item.at_fault == AtFault.SHARED and item.fault_percentages is not None
        ]
        fault_percentages = FaultPercentages(
            client=_round_half_up(sum(i.fault_percentages.client for i in shared) / len(shared)),
            other_party=_round_half_up(
                sum(i.fault_percentages.other_party for i in shared) / len(shared)
            ),
        )

    evidence: list[Evidence] = _unique(e for item in liabilities for e in item.evidence)

    citations = {
        "atFault": _cited([i for i in liabilities if i.at_fault == at_fault], "atFault"),
        "faultPercentages": _cited(shared, "faultPercentages"),
        "rationale": _cited(liabilities, "rationale"),
        "hasPoliceReport": _cited(reporting or liabilities, "hasPoliceReport"),
    }

    logger.debug(
        "liability_merged",
        chunks=len(liabilities),
        points=len(all_points),
        unique_points=len(points),
        at_fault=at_fault.value,
        police_report=has_police_report,
    )
    return Liability(
        at_fault=at_fault,
        fault_percentages=fault_percentages,
        rationale="\n".join(points),
        has_police_report=has_police_report,
        evidence=evidence,
        citations=_citation_map(citations),
    )


# ── Damages ──────────────────────────────────────────────────────


def _indication_key(indication: Indication) -> str:
    return indication.description.strip().lower()


def merge_damages(damages: Sequence[Damages]) -> Damages:
    _require_items(damages, "damages")
    if len(damages) == 1:
        return damages[0]

    severity = max((item.severity for item in damages), key=lambda s: s.rank)

    seen: set[str] = set()
    indications: list[Indication] = []
    for item in damages:
        for indication in item.indications:
            key = _indication_key(indication)
            if key in seen:
                continue
            seen.add(key)
            indications.append(indication)

    citations = {"severity": _cited([d for d in damages if d.severity == severity], "severity")}

    logger.debug(
        "damages_merged",
        chunks=len(damages),
        severity=severity.value,
        indications=len(indications),
    )
    return Damages(
        severity=severity,
        indications=indications,
        citations=_citation_map(citations),
    )


# ── Coverage ─────────────────────────────────────────────────────


def merge_coverage(coverages: Sequence[Coverage]) -> Coverage:
    """Fold in transcript order; a chunk's non-null value replaces what came before."""
    _require_items(coverages, "coverage")
    if len(coverages) == 1:
        return coverages[0]

    merged: dict[str, Any] = {name: None for name in COVERAGE_FIELDS}
    for coverage in coverages:
        for name in COVERAGE_FIELDS:
            value = getattr(coverage, name)
            if value is not None:
                merged[name] = value

    citations: dict[str, list[int]] = {}
    for name, winner in merged.items():
        if winner is None:
            continue
        agreeing = [c for c in coverages if getattr(c, name) == winner]
        citations[to_camel(name)] = _cited(agreeing, to_camel(name))

    logger.debug(
        "coverage_merged",
        chunks=len(coverages),
        client_has_insurance=merged["client_has_insurance"],
        other_party_has_insurance=merged["other_party_has_insurance"],
    )
    return Coverage(**merged, citations=_citation_map(citations))


# ── All sections ─────────────────────────────────────────────────


def merge_chunk_extractions(extractions: Sequence[ChunkExtraction]) -> ChunkExtraction:
    """Merge chunk extractions (in transcript order) section by section."""
    if not extractions:
        raise ValueError("No extractions to merge")

    if len(extractions) == 1:
        logger.info("merge_skipped_single_chunk")
        only = extractions[0]
        if only.client_info.case_type is None:
            return only.model_copy(update={"client_info": merge_client_info([only.client_info])})
        return only

    merged = ChunkExtraction(
        client_info=merge_client_info([e.client_info for e in extractions]),
        liability=merge_liability([e.liability for e in extractions]),
        damages=merge_damages([e.damages for e in extractions]),
        coverage=merge_coverage([e.coverage for e in extractions]),
    )
    logger.info("merge_complete", chunks=len(extractions))
    return merged
