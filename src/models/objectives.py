"""Data models for security objectives and their work-item hierarchy."""

from enum import Enum, IntEnum
from typing import Optional, List
from datetime import datetime, date
from pydantic import BaseModel, Field


class ObjectiveStatus(str, Enum):
    """Security objective status."""

    PLANNING = "Planning"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    ON_HOLD = "On Hold"
    CANCELLED = "Cancelled"


class WorkItemStatus(str, Enum):
    """Status shared by initiatives, milestones and tasks."""

    NOT_STARTED = "Not Started"
    IN_PROGRESS = "In Progress"
    COMPLETED = "Completed"
    BLOCKED = "Blocked"
    DEFERRED = "Deferred"


class Priority(IntEnum):
    """Work priority (1 = highest)."""

    HIGH = 1
    MEDIUM = 2
    LOW = 3


class WorkItemKind(str, Enum):
    """Levels of the work-item hierarchy below an objective."""

    INITIATIVE = "initiative"
    MILESTONE = "milestone"
    TASK = "task"


# Child kind for each level; tasks are leaves
CHILD_KIND = {
    WorkItemKind.INITIATIVE: WorkItemKind.MILESTONE,
    WorkItemKind.MILESTONE: WorkItemKind.TASK,
    WorkItemKind.TASK: None,
}


class Budget(BaseModel):
    """Objective budget."""

    allocated: float = 0.0
    spent: float = 0.0
    currency: str = "USD"


class SecurityObjective(BaseModel):
    """Security objective record."""

    id: str = Field(..., description="Unique objective ID")
    client_id: Optional[str] = Field(None, description="Client identifier")
    title: str = Field(..., description="Objective title")
    description: str = Field("", description="Objective description")
    status: ObjectiveStatus = Field(ObjectiveStatus.PLANNING)
    priority: Priority = Field(Priority.LOW)
    progress: int = Field(0, ge=0, le=100, description="Completion (0-100)")
    risk_id: Optional[str] = Field(None, description="Originating risk")
    risk_notes: Optional[str] = Field(None, description="Notes copied from the risk")
    start_date: Optional[date] = None
    target_completion_date: Optional[date] = None
    actual_completion_date: Optional[date] = None
    budget: Optional[Budget] = None
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class WorkItem(BaseModel):
    """Fields shared by initiatives, milestones and tasks."""

    id: str = Field(..., description="Unique work item ID")
    parent_id: str = Field(..., description="Owning objective, initiative or milestone")
    title: str = Field(..., description="Title")
    description: str = Field("", description="Description")
    status: WorkItemStatus = Field(WorkItemStatus.NOT_STARTED)
    priority: Priority = Field(Priority.MEDIUM)
    assigned_to: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    completion_percentage: int = Field(0, ge=0, le=100)
    order_index: int = 0
    created_at: datetime = Field(default_factory=datetime.utcnow)
    updated_at: datetime = Field(default_factory=datetime.utcnow)


class Initiative(WorkItem):
    """Initiative under an objective."""

    kind: WorkItemKind = WorkItemKind.INITIATIVE


class Milestone(WorkItem):
    """Milestone under an initiative."""

    kind: WorkItemKind = WorkItemKind.MILESTONE


class Task(WorkItem):
    """Task under a milestone."""

    kind: WorkItemKind = WorkItemKind.TASK
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None


WORK_ITEM_MODELS = {
    WorkItemKind.INITIATIVE: Initiative,
    WorkItemKind.MILESTONE: Milestone,
    WorkItemKind.TASK: Task,
}


class MilestoneNode(BaseModel):
    """A milestone with its tasks."""

    milestone: Milestone
    tasks: List[Task] = Field(default_factory=list)


class InitiativeNode(BaseModel):
    """An initiative with its milestones."""

    initiative: Initiative
    milestones: List[MilestoneNode] = Field(default_factory=list)


class ObjectiveTree(BaseModel):
    """Snapshot of an objective and its full work-item subtree."""

    objective: SecurityObjective
    initiatives: List[InitiativeNode] = Field(default_factory=list)


class ObjectiveUpdate(BaseModel):
    """Partial update of a security objective."""

    client_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[ObjectiveStatus] = None
    priority: Optional[Priority] = None
    progress: Optional[int] = Field(None, ge=0, le=100)
    start_date: Optional[date] = None
    target_completion_date: Optional[date] = None
    actual_completion_date: Optional[date] = None
    budget: Optional[Budget] = None


class WorkItemUpdate(BaseModel):
    """Partial update of a work item; unset fields are left unchanged."""

    title: Optional[str] = None
    description: Optional[str] = None
    status: Optional[WorkItemStatus] = None
    priority: Optional[Priority] = None
    assigned_to: Optional[str] = None
    start_date: Optional[date] = None
    due_date: Optional[date] = None
    completion_percentage: Optional[int] = Field(None, ge=0, le=100)
    order_index: Optional[int] = None
    estimated_hours: Optional[float] = None
    actual_hours: Optional[float] = None


class WorkItemCreate(WorkItemUpdate):
    """Fields for a new work item."""

    title: str
