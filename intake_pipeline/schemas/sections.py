"""
Data models for the four extraction sections.

Each section is extracted independently per chunk and merged across
chunks. Models use snake_case attributes with camelCase aliases, which
is the JSON shape the extraction backend produces and the persistence
layer stores.

Tri-state booleans (``Optional[bool]``): ``None`` means "not mentioned",
``False`` means "explicitly no". Never coerce one into the other.
"""

from __future__ import annotations

from enum import Enum
from typing import Any, ClassVar, Optional, Union

from pydantic import BaseModel, ConfigDict, Field, field_validator, model_validator
from pydantic.alias_generators import to_camel

# Field name (camelCase) -> turn ids that evidenced it
Citations = dict[str, list[int]]


class CaseType(str, Enum):
    DOG_BITES = "dog_bites"
    MVA = "mva"
    SLIP_AND_FALL = "slip_and_fall"


class AtFault(str, Enum):
    CLIENT = "client"
    OTHER_PARTY = "other_party"
    SHARED = "shared"
    UNCLEAR = "unclear"


class Severity(str, Enum):
    LOW = "low"
    MEDIUM = "medium"
    HIGH = "high"

    @property
    def rank(self) -> int:
        return _SEVERITY_RANK[self]


_SEVERITY_RANK = {Severity.LOW: 1, Severity.MEDIUM: 2, Severity.HIGH: 3}


class SectionType(str, Enum):
    """The four independent extraction tasks run against every chunk."""

    CLIENT_INFO = "client_info"
    LIABILITY = "liability"
    DAMAGES = "damages"
    COVERAGE = "coverage"


class _SectionModel(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    # camelCase keys accepted in the ``citations`` map; empty = no map
    citation_keys: ClassVar[frozenset[str]] = frozenset()

    @field_validator("citations", mode="before", check_fields=False)
    @classmethod
    def _drop_unknown_citation_keys(cls, value: Any) -> Any:
        if not isinstance(value, dict):
            return value
        return {
            key: ids
            for key, ids in value.items()
            if key in cls.citation_keys and ids is not None
        }


# ── Client info ──────────────────────────────────────────────────


class ClientInfo(_SectionModel):
    """Client identity, contact and incident basics."""

    citation_keys: ClassVar[frozenset[str]] = frozenset(
        {
            "caseType",
            "clientName",
            "clientDob",
            "clientPhone",
            "clientEmail",
            "clientAddress",
            "incidentDate",
            "incidentLocation",
            "brief",
        }
    )

    case_type: Optional[CaseType] = None
    client_name: Optional[str] = None
    client_dob: Optional[str] = None  # YYYY-MM-DD
    client_phone: Optional[str] = None
    client_email: Optional[str] = None
    client_address: Optional[str] = None
    incident_date: Optional[str] = None  # YYYY-MM-DD
    incident_location: Optional[str] = None
    brief: Optional[str] = None  # AI-written case summary
    citations: Optional[Citations] = None


# ── Liability ────────────────────────────────────────────────────


class Evidence(BaseModel):
    model_config = ConfigDict(frozen=True)

    id: Optional[str] = None
    type: Optional[str] = None
    description: Optional[str] = None
    url: Optional[str] = None


class FaultPercentages(BaseModel):
    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    client: int = Field(ge=0, le=100)
    other_party: int = Field(ge=0, le=100)


class Liability(_SectionModel):
    """
    Fault determination for the incident.

    ``fault_percentages`` is required when ``at_fault`` is shared; the two
    values are expected, not enforced, to sum to 100.
    """

    citation_keys: ClassVar[frozenset[str]] = frozenset(
        {"atFault", "faultPercentages", "rationale", "hasPoliceReport"}
    )

    at_fault: AtFault = AtFault.UNCLEAR
    fault_percentages: Optional[FaultPercentages] = None
    rationale: str = ""  # markdown bullet list
    has_police_report: bool = False
    evidence: list[Evidence] = Field(default_factory=list)
    citations: Optional[Citations] = None

    @field_validator("at_fault", mode="before")
    @classmethod
    def _unmentioned_fault_is_unclear(cls, value: Any) -> Any:
        return AtFault.UNCLEAR if value is None else value

    @field_validator("has_police_report", mode="before")
    @classmethod
    def _unmentioned_report_is_false(cls, value: Any) -> Any:
        return False if value is None else value

    @field_validator("rationale", mode="before")
    @classmethod
    def _null_rationale_is_empty(cls, value: Any) -> Any:
        return "" if value is None else value

    @field_validator("evidence", mode="before")
    @classmethod
    def _null_evidence_is_empty(cls, value: Any) -> Any:
        if value is None:
            return []
        return [item for item in value if item is not None]

    @model_validator(mode="after")
    def _shared_fault_needs_percentages(self) -> Liability:
        if self.at_fault == AtFault.SHARED and self.fault_percentages is None:
            raise ValueError("faultPercentages is required when atFault is 'shared'")
        return self


# ── Damages ──────────────────────────────────────────────────────


class Indication(BaseModel):
    """A single injury or harm mentioned in the conversation."""

    model_config = ConfigDict(alias_generator=to_camel, populate_by_name=True)

    description: str
    severity: Severity
    evidence: list[Evidence] = Field(default_factory=list)
    citations: Optional[list[int]] = None

    @field_validator("evidence", mode="before")
    @classmethod
    def _null_evidence_is_empty(cls, value: Any) -> Any:
        if value is None:
            return []
        return [item for item in value if item is not None]


class Damages(_SectionModel):
    # Citations cover ``severity`` only; indications carry their own
    citation_keys: ClassVar[frozenset[str]] = frozenset({"severity"})

    severity: Severity
    indications: list[Indication] = Field(default_factory=list)
    citations: Optional[Citations] = None

    # Unmentioned severity takes the lowest rank
    @field_validator("severity", mode="before")
    @classmethod
    def _unmentioned_severity_is_low(cls, value: Any) -> Any:
        return Severity.LOW if value is None else value

    @field_validator("indications", mode="before")
    @classmethod
    def _null_indications_is_empty(cls, value: Any) -> Any:
        return [] if value is None else value


# ── Coverage ─────────────────────────────────────────────────────

COVERAGE_FIELDS: tuple[str, ...] = (
    "client_has_insurance",
    "client_insurance_provider",
    "client_policy_number",
    "client_coverage_effective_date",
    "client_coverage_expiration_date",
    "client_coverage_details",
    "other_party_has_insurance",
    "other_party_insurance_provider",
    "other_party_policy_number",
    "other_party_coverage_effective_date",
    "other_party_coverage_expiration_date",
    "other_party_coverage_details",
    "medical_coverage_available",
    "medical_coverage_details",
    "underinsured_motorist_coverage",
    "policy_limits",
    "notes",
)


class Coverage(_SectionModel):
    """Insurance coverage for both parties. Every field is nullable."""

    citation_keys: ClassVar[frozenset[str]] = frozenset(
        to_camel(name) for name in COVERAGE_FIELDS
    )

    client_has_insurance: Optional[bool] = None
    client_insurance_provider: Optional[str] = None
    client_policy_number: Optional[str] = None
    client_coverage_effective_date: Optional[str] = None
    client_coverage_expiration_date: Optional[str] = None
    client_coverage_details: Optional[str] = None

    other_party_has_insurance: Optional[bool] = None
    other_party_insurance_provider: Optional[str] = None
    other_party_policy_number: Optional[str] = None
    other_party_coverage_effective_date: Optional[str] = None
    other_party_coverage_expiration_date: Optional[str] = None
    other_party_coverage_details: Optional[str] = None

    medical_coverage_available: Optional[bool] = None
    medical_coverage_details: Optional[str] = None

    underinsured_motorist_coverage: Optional[bool] = None
    policy_limits: Optional[str] = None

    notes: Optional[str] = None
    citations: Optional[Citations] = None


SectionModel = Union[ClientInfo, Liability, Damages, Coverage]

SECTION_MODELS: dict[SectionType, type[SectionModel]] = {
    SectionType.CLIENT_INFO: ClientInfo,
    SectionType.LIABILITY: Liability,
    SectionType.DAMAGES: Damages,
    SectionType.COVERAGE: Coverage,
}
