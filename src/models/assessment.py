"""Data models for assessments."""

from typing import Optional, List, Dict, Any
from datetime import datetime
from pydantic import BaseModel, Field


class Assessment(BaseModel):
    """Assessment record."""

    id: str = Field(..., description="Unique assessment ID")
    client_id: Optional[str] = Field(None, description="Client identifier")
    title: str = Field(..., description="Assessment title")
    description: Optional[str] = Field(None, description="Description")
    organization: Optional[str] = Field(None, description="Assessed organization")
    assessor: Optional[str] = Field(None, description="Assessor name")
    controls: Dict[str, Any] = Field(
        default_factory=dict, description="Raw control statuses keyed by family then control"
    )
    promoted_controls: List[str] = Field(
        default_factory=list, description="Control references already promoted to risks"
    )
    score: Optional[int] = Field(None, description="Last computed overall score")
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)
