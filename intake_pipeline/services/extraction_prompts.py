"""
Prompts for the four section extractions.

Each section gets its own system prompt; the user prompt frames the
chunk (position within the conversation) and, when turn ids are known,
lists the turns so the model can cite them.
"""

from __future__ import annotations

from typing import Sequence

from intake_pipeline.schemas.sections import SectionType
from intake_pipeline.schemas.transcript import Turn

_SHARED_RULES = """
The transcript is an intake call at a personal injury law firm. Speakers are
numbered, not named: infer from context which speaker is the lawyer and which
is the client.

Rules:
- Use null for anything that was not mentioned. Never guess or invent values.
- Dates must use YYYY-MM-DD.
- Return a single JSON object and nothing else."""

CLIENT_INFO_SYSTEM_PROMPT = """You extract CLIENT BASIC INFORMATION from legal intake call transcripts.

Return JSON with these keys:
{
  "caseType": "dog_bites" | "mva" | "slip_and_fall",
  "clientName": string | null,
  "clientDob": string | null,
  "clientPhone": string | null,
  "clientEmail": string | null,
  "clientAddress": string | null,
  "incidentDate": string | null,
  "incidentLocation": string | null,
  "brief": string | null   (case summary, at most 5 sentences)
}

Extract details about the CLIENT only, never the lawyer.
caseType must be one of dog_bites, mva, slip_and_fall.""" + _SHARED_RULES

LIABILITY_SYSTEM_PROMPT = """You extract LIABILITY INFORMATION from legal intake call transcripts.

Return JSON with these keys:
{
  "atFault": "client" | "other_party" | "shared" | "unclear",
  "faultPercentages": {"client": 0-100, "otherParty": 0-100} | null,
  "rationale": string   (markdown bullet list, one fact per "- " line),
  "hasPoliceReport": boolean,
  "evidence": [{"type": string, "description": string}]
}

- faultPercentages is REQUIRED when atFault is "shared" and should sum to 100.
- Use "unclear" when the conversation does not establish fault.
- hasPoliceReport is true only if a police report was mentioned; otherwise false.
- rationale lists the facts that bear on fault, from the client's account.""" + _SHARED_RULES

DAMAGES_SYSTEM_PROMPT = """You extract DAMAGES INFORMATION from legal intake call transcripts.

Return JSON with these keys:
{
  "severity": "low" | "medium" | "high",
  "indications": [
    {"description": string, "severity": "low" | "medium" | "high"}
  ]
}

- severity is the overall assessment across all harm mentioned.
- indications lists each specific injury or loss: physical injuries, emotional
  distress, property damage, lost wages, medical treatment.""" + _SHARED_RULES

COVERAGE_SYSTEM_PROMPT = """You extract INSURANCE COVERAGE INFORMATION from legal intake call transcripts.

Return JSON with these keys (every value may be null):
{
  "clientHasInsurance": boolean | null,
  "clientInsuranceProvider": string | null,
  "clientPolicyNumber": string | null,
  "clientCoverageEffectiveDate": string | null,
  "clientCoverageExpirationDate": string | null,
  "clientCoverageDetails": string | null,
  "otherPartyHasInsurance": boolean | null,
  "otherPartyInsuranceProvider": string | null,
  "otherPartyPolicyNumber": string | null,
  "otherPartyCoverageEffectiveDate": string | null,
  "otherPartyCoverageExpirationDate": string | null,
  "otherPartyCoverageDetails": string | null,
  "medicalCoverageAvailable": boolean | null,
  "medicalCoverageDetails": string | null,
  "underinsuredMotoristCoverage": boolean | null,
  "policyLimits": string | null,
  "notes": string | null
}

- null means the topic never came up. false means it was explicitly denied
  ("I don't have insurance"). Do not use false for unmentioned topics.""" + _SHARED_RULES

SYSTEM_PROMPTS: dict[SectionType, str] = {
    SectionType.CLIENT_INFO: CLIENT_INFO_SYSTEM_PROMPT,
    SectionType.LIABILITY: LIABILITY_SYSTEM_PROMPT,
    SectionType.DAMAGES: DAMAGES_SYSTEM_PROMPT,
    SectionType.COVERAGE: COVERAGE_SYSTEM_PROMPT,
}

SECTION_LABELS: dict[SectionType, str] = {
    SectionType.CLIENT_INFO: "client basic information",
    SectionType.LIABILITY: "liability information",
    SectionType.DAMAGES: "damages information",
    SectionType.COVERAGE: "insurance coverage information",
}

_CITATION_INSTRUCTIONS = {
    SectionType.DAMAGES: (
        'Add "citations": {"severity": [turn ids]} and, on every indication, '
        '"citations": [turn ids] listing the turns that support it.'
    ),
}
_DEFAULT_CITATION_INSTRUCTION = (
    'Add "citations": an object mapping each field name you filled in to the '
    "list of turn ids that support it. Omit fields you left null."
)


def build_user_prompt(
    section: SectionType,
    text: str,
    chunk_index: int,
    total_chunks: int,
    turns: Sequence[Turn] = (),
) -> str:
    """Build the user message for one section extraction over one chunk."""
    chunk_info = ""
    if total_chunks > 1:
        chunk_info = (
            f" (chunk {chunk_index + 1}/{total_chunks} - this is part of a larger conversation)"
        )

    parts = [f"Extract {SECTION_LABELS[section]} from this transcript segment{chunk_info}."]

    if turns:
        turn_lines = "\n".join(
            f"[Turn {turn.turn_id}] Speaker {turn.speaker}: {turn.content}" for turn in turns
        )
        parts.append(
            "The segment contains these numbered turns:\n"
            f"{turn_lines}\n\n"
            f"{_CITATION_INSTRUCTIONS.get(section, _DEFAULT_CITATION_INSTRUCTION)}"
        )

    parts.append(f"Transcript:\n{text}")
    parts.append("Return only valid JSON, no additional text.")
    return "\n\n".join(parts)
