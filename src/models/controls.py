"""Data models for security controls and compliance scores."""

from enum import Enum
from typing import Optional, List, Any
from pydantic import BaseModel, Field


class ControlFamily(str, Enum):
    """NIST SP 800-53 Control Families."""

    AC = "AC"  # Access Control
    AT = "AT"  # Awareness and Training
    AU = "AU"  # Audit and Accountability
    CA = "CA"  # Assessment, Authorization, and Monitoring
    CM = "CM"  # Configuration Management
    CP = "CP"  # Contingency Planning
    IA = "IA"  # Identification and Authentication
    IR = "IR"  # Incident Response
    MA = "MA"  # Maintenance
    MP = "MP"  # Media Protection
    PE = "PE"  # Physical and Environmental Protection
    PL = "PL"  # Planning
    PM = "PM"  # Program Management
    PS = "PS"  # Personnel Security
    PT = "PT"  # PII Processing and Transparency
    RA = "RA"  # Risk Assessment
    SA = "SA"  # System and Services Acquisition
    SC = "SC"  # System and Communications Protection
    SI = "SI"  # System and Information Integrity
    SR = "SR"  # Supply Chain Risk Management


CONTROL_FAMILY_NAMES = {
    ControlFamily.AC: "Access Control",
    ControlFamily.AT: "Awareness and Training",
    ControlFamily.AU: "Audit and Accountability",
    ControlFamily.CA: "Assessment, Authorization, and Monitoring",
    ControlFamily.CM: "Configuration Management",
    ControlFamily.CP: "Contingency Planning",
    ControlFamily.IA: "Identification and Authentication",
    ControlFamily.IR: "Incident Response",
    ControlFamily.MA: "Maintenance",
    ControlFamily.MP: "Media Protection",
    ControlFamily.PE: "Physical and Environmental Protection",
    ControlFamily.PL: "Planning",
    ControlFamily.PM: "Program Management",
    ControlFamily.PS: "Personnel Security",
    ControlFamily.PT: "PII Processing and Transparency",
    ControlFamily.RA: "Risk Assessment",
    ControlFamily.SA: "System and Services Acquisition",
    ControlFamily.SC: "System and Communications Protection",
    ControlFamily.SI: "System and Information Integrity",
    ControlFamily.SR: "Supply Chain Risk Management",
}


def get_family_title(family_id: str) -> str:
    """Get the human-readable name of a control family, or the id itself."""
    try:
        return CONTROL_FAMILY_NAMES[ControlFamily(str(family_id).upper())]
    except ValueError:
        return str(family_id)


class ImplementationStatus(str, Enum):
    """Control implementation status."""

    IMPLEMENTED = "Implemented"
    PARTIALLY_IMPLEMENTED = "Partially Implemented"
    PLANNED = "Planned"
    NOT_IMPLEMENTED = "Not Implemented"
    NOT_APPLICABLE = "Not Applicable"
    UNRECOGNIZED = "Unrecognized"


# Points awarded per status; Not Applicable is excluded from scoring entirely
STATUS_POINTS = {
    ImplementationStatus.IMPLEMENTED: 100,
    ImplementationStatus.PARTIALLY_IMPLEMENTED: 50,
    ImplementationStatus.PLANNED: 25,
    ImplementationStatus.NOT_IMPLEMENTED: 0,
    ImplementationStatus.UNRECOGNIZED: 0,
}

# Canonical tags keyed by their compacted lowercase form
_EXACT_TAGS = {
    "implemented": ImplementationStatus.IMPLEMENTED,
    "partiallyimplemented": ImplementationStatus.PARTIALLY_IMPLEMENTED,
    "planned": ImplementationStatus.PLANNED,
    "notimplemented": ImplementationStatus.NOT_IMPLEMENTED,
    "notapplicable": ImplementationStatus.NOT_APPLICABLE,
    "n/a": ImplementationStatus.NOT_APPLICABLE,
    "na": ImplementationStatus.NOT_APPLICABLE,
}


def normalize_status(raw: Any) -> ImplementationStatus:
    """
    Classify a free-text or tagged status label.

    Exact tag matches are tried first, ignoring case, spaces, underscores and
    hyphens. Otherwise the label is classified by substring, in order:
    exact "implemented", contains "partial", exact "planned", contains "not".

    Args:
        raw: Status label as supplied by the caller

    Returns:
        Normalized implementation status
    """
    if isinstance(raw, ImplementationStatus):
        return raw
    if not isinstance(raw, str):
        return ImplementationStatus.UNRECOGNIZED

    lowered = raw.strip().lower()
    compact = lowered.replace(" ", "").replace("_", "").replace("-", "")
    if compact in _EXACT_TAGS:
        return _EXACT_TAGS[compact]

    if lowered == "implemented":
        return ImplementationStatus.IMPLEMENTED
    if "partial" in lowered:
        return ImplementationStatus.PARTIALLY_IMPLEMENTED
    if lowered == "planned":
        return ImplementationStatus.PLANNED
    if "not" in lowered:
        return ImplementationStatus.NOT_IMPLEMENTED
    return ImplementationStatus.UNRECOGNIZED


def format_control_ref(family_id: str, control_id: str) -> str:
    """Build a ``FAMILY-CONTROL`` reference (e.g. AC-2)."""
    family = str(family_id).strip().upper()
    control = str(control_id).strip().upper()
    if control.startswith(f"{family}-"):
        return control
    return f"{family}-{control}"


def normalize_control_ref(control_ref: str) -> str:
    """Normalize a control reference for comparison."""
    return str(control_ref).strip().upper()


class ControlStatus(BaseModel):
    """Implementation state of a single control within a family."""

    family_id: str = Field(..., description="Control family identifier")
    control_id: str = Field(..., description="Control identifier within the family")
    status: ImplementationStatus = Field(..., description="Normalized status")
    raw_status: Optional[str] = Field(None, description="Status label as supplied")
    notes: Optional[str] = Field(None, description="Assessor notes")

    @property
    def control_ref(self) -> str:
        return format_control_ref(self.family_id, self.control_id)

    @property
    def applicable(self) -> bool:
        return self.status != ImplementationStatus.NOT_APPLICABLE


class FamilyScore(BaseModel):
    """Compliance score for one control family."""

    family_id: str = Field(..., description="Control family identifier")
    family_title: str = Field(..., description="Control family name")
    total_controls: int = Field(0, description="All controls in the family")
    implemented: int = Field(0, description="Implemented controls")
    partial: int = Field(0, description="Partially implemented controls")
    planned: int = Field(0, description="Planned controls")
    not_implemented: int = Field(0, description="Not implemented controls")
    not_applicable: int = Field(0, description="Not applicable controls")
    unrecognized: int = Field(0, description="Controls with an unrecognized status")
    applicable: int = Field(0, description="Controls counted in the denominator")
    points: int = Field(0, description="Sum of control points")
    average_score: int = Field(0, ge=0, le=100, description="Average score (0-100)")


class ComplianceSummary(BaseModel):
    """Per-family and overall compliance scores for an assessment."""

    family_scores: List[FamilyScore] = Field(default_factory=list)
    overall_score: int = Field(0, ge=0, le=100)
    total_controls: int = 0
    applicable_controls: int = 0
    implemented_pct: int = 0
    partial_pct: int = 0
    planned_pct: int = 0
    not_implemented_pct: int = 0
