"""Data models for the RMF compliance system."""

from .controls import (
    ControlFamily,
    ControlStatus,
    FamilyScore,
    ComplianceSummary,
    ImplementationStatus,
    normalize_status,
)
from .assessment import Assessment
from .risk import (
    Risk,
    RiskEvaluation,
    RiskInput,
    RiskMatrix,
    RiskSeverity,
    RiskStatus,
    PromotionSource,
)
from .objectives import (
    Budget,
    Initiative,
    InitiativeNode,
    Milestone,
    MilestoneNode,
    ObjectiveStatus,
    ObjectiveTree,
    Priority,
    SecurityObjective,
    Task,
    WorkItem,
    WorkItemKind,
    WorkItemStatus,
    WorkItemUpdate,
    WorkItemCreate,
    ObjectiveUpdate,
)

__all__ = [
    "ControlFamily",
    "ControlStatus",
    "FamilyScore",
    "ComplianceSummary",
    "ImplementationStatus",
    "normalize_status",
    "Assessment",
    "Risk",
    "RiskEvaluation",
    "RiskInput",
    "RiskMatrix",
    "RiskSeverity",
    "RiskStatus",
    "PromotionSource",
    "Budget",
    "Initiative",
    "InitiativeNode",
    "Milestone",
    "MilestoneNode",
    "ObjectiveStatus",
    "ObjectiveTree",
    "Priority",
    "SecurityObjective",
    "Task",
    "WorkItem",
    "WorkItemKind",
    "WorkItemStatus",
    "WorkItemUpdate",
    "WorkItemCreate",
    "ObjectiveUpdate",
]
