"""Data models for risks."""

from enum import Enum
from typing import Optional, List, Any
from datetime import datetime
from pydantic import BaseModel, Field, model_validator


class RiskStatus(str, Enum):
    """Risk lifecycle status."""

    NEW = "New"
    IN_REVIEW = "In Review"
    ACCEPTED = "Accepted"
    MITIGATED = "Mitigated"
    TRANSFERRED = "Transferred"
    AVOIDED = "Avoided"
    CLOSED = "Closed"


class RiskSeverity(str, Enum):
    """Risk severity levels."""

    CRITICAL = "Critical"
    HIGH = "High"
    MEDIUM = "Medium"
    LOW = "Low"


class RiskEvaluation(BaseModel):
    """Scores derived from an impact/likelihood pair."""

    impact: int = Field(..., ge=1, le=5)
    likelihood: int = Field(..., ge=1, le=5)
    risk_score: int = Field(..., ge=1, le=25, description="impact * likelihood")
    severity: RiskSeverity = Field(..., description="Severity on the 1-25 scale")
    display_score: int = Field(..., ge=0, le=100, description="Inverted 0-100 score")
    display_severity: RiskSeverity = Field(..., description="Severity on the display scale")


class PromotionSource(BaseModel):
    """Provenance of a risk promoted from a control."""

    assessment_id: str
    control_id: str
    control_status: str = "Unknown"


class RiskInput(BaseModel):
    """Caller-supplied fields for a new risk."""

    title: Optional[str] = None
    description: Optional[str] = None
    impact: Optional[Any] = None
    likelihood: Optional[Any] = None
    notes: Optional[str] = None
    status: RiskStatus = RiskStatus.NEW
    control_status: Optional[str] = Field(
        None, description="Status of the source control when promoting"
    )


class Risk(BaseModel):
    """Risk record."""

    id: str = Field(..., description="Unique risk ID")
    assessment_id: str = Field(..., description="Owning assessment")
    title: str = Field(..., description="Risk title")
    description: str = Field("", description="Risk description")
    impact: int = Field(3, ge=1, le=5)
    likelihood: int = Field(3, ge=1, le=5)
    risk_score: int = Field(9, ge=1, le=25)
    notes: Optional[str] = Field(None, description="Risk notes")
    control_id: Optional[str] = Field(None, description="Source control reference")
    status: RiskStatus = Field(RiskStatus.NEW, description="Risk status")
    promoted_from: Optional[PromotionSource] = Field(None)
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)

    @model_validator(mode="after")
    def _sync_risk_score(self) -> "Risk":
        # risk_score is never independent of impact and likelihood
        self.risk_score = self.impact * self.likelihood
        return self


class RiskMatrix(BaseModel):
    """Impact x likelihood count grid."""

    cells: List[List[int]] = Field(
        default_factory=lambda: [[0] * 5 for _ in range(5)],
        description="cells[impact - 1][likelihood - 1] = count",
    )
    by_severity: dict = Field(default_factory=dict)
    total: int = 0
