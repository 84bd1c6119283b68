"""FastAPI application for the RMF Compliance Manager."""

import logging
from typing import List, Dict, Any, Optional

from fastapi import FastAPI, HTTPException, Request
from fastapi.middleware.cors import CORSMiddleware
from fastapi.responses import JSONResponse
from pydantic import BaseModel

from src.coordinator.config import configure_logging, get_config
from src.coordinator.service import RMFCoordinator
from src.engine.compliance import compliance_rating, risk_candidates, score_controls
from src.engine.risk import build_risk_matrix, evaluate_risk
from src.models.objectives import (
    Budget,
    ObjectiveUpdate,
    Priority,
    WorkItemCreate,
    WorkItemKind,
    WorkItemUpdate,
)
from src.models.risk import RiskInput
from src.utils.errors import RMFError

logger = logging.getLogger("rmf_manager.api")

config = get_config()

# Initialize FastAPI app
app = FastAPI(
    title=config.api_title,
    description="Compliance scoring, risk promotion and remediation tracking",
    version=config.api_version,
    docs_url="/docs",
    redoc_url="/redoc",
)

# CORS middleware
app.add_middleware(
    CORSMiddleware,
    allow_origins=["*"],
    allow_credentials=True,
    allow_methods=["*"],
    allow_headers=["*"],
)

# Initialize components
coordinator = RMFCoordinator(config=config)


@app.on_event("startup")
async def load_storage() -> None:
    """Configure logging and load stored records on startup."""
    configure_logging(config.log_level)
    await coordinator.storage.load()


@app.exception_handler(RMFError)
async def rmf_error_handler(request: Request, exc: RMFError) -> JSONResponse:
    """Map domain errors to HTTP responses."""
    logger.info(f"{request.method} {request.url.path} -> {exc.status_code}: {exc.message}")
    return JSONResponse(
        status_code=exc.status_code,
        content={"detail": exc.message, "error": type(exc).__name__, "reference": exc.reference},
    )


# Request/Response Models
class ControlsRequest(BaseModel):
    """Raw control statuses."""

    controls: Optional[Dict[str, Any]] = None


class RiskEvaluationRequest(BaseModel):
    """Impact/likelihood pair."""

    impact: Optional[Any] = None
    likelihood: Optional[Any] = None


class AssessmentRequest(BaseModel):
    """Assessment request model."""

    title: str
    client_id: Optional[str] = None
    description: Optional[str] = None
    organization: Optional[str] = None
    assessor: Optional[str] = None
    controls: Optional[Dict[str, Any]] = None


class PromoteControlRequest(RiskInput):
    """Control promotion request."""

    control_id: Optional[str] = None


class PromoteRiskRequest(BaseModel):
    """Risk promotion request."""

    client_id: Optional[str] = None
    title: Optional[str] = None
    description: Optional[str] = None


class ObjectiveRequest(BaseModel):
    """Objective creation request."""

    title: str
    client_id: Optional[str] = None
    description: str = ""
    priority: Priority = Priority.LOW
    budget: Optional[Budget] = None


class ReorderRequest(BaseModel):
    """Sibling ordering."""

    ids: List[str]


@app.get("/")
async def root():
    """Root endpoint with system info."""
    return {"service": config.api_title, "version": config.api_version}


@app.get("/health")
async def health():
    """Health check endpoint."""
    return {"status": "healthy"}


# Pure computations
@app.post("/api/v1/scoring/controls")
async def score_control_map(request: ControlsRequest):
    """Score a control map without storing it."""
    summary = score_controls(request.controls)
    return {**summary.model_dump(), "rating": compliance_rating(summary.overall_score)}


@app.post("/api/v1/risks/evaluate")
async def evaluate(request: RiskEvaluationRequest):
    """Evaluate an impact/likelihood pair."""
    return evaluate_risk(request.impact, request.likelihood)


# Assessments
@app.post("/api/v1/assessments")
async def create_assessment(request: AssessmentRequest):
    """Create an assessment from imported control statuses."""
    return await coordinator.create_assessment(**request.model_dump())


@app.get("/api/v1/assessments")
async def list_assessments(client_id: Optional[str] = None):
    """List assessments."""
    return {"assessments": await coordinator.list_assessments(client_id)}


@app.get("/api/v1/assessments/{assessment_id}")
async def get_assessment(assessment_id: str):
    """Get an assessment."""
    return await coordinator.get_assessment(assessment_id)


@app.put("/api/v1/assessments/{assessment_id}/controls")
async def replace_controls(assessment_id: str, request: ControlsRequest):
    """Replace an assessment's control statuses."""
    return await coordinator.update_assessment_controls(assessment_id, request.controls or {})


@app.get("/api/v1/assessments/{assessment_id}/scores")
async def assessment_scores(assessment_id: str):
    """Compliance scores and promotion candidates for an assessment."""
    assessment = await coordinator.get_assessment(assessment_id)
    summary = score_controls(assessment.controls)
    candidates = [
        {**c.model_dump(), "control_ref": c.control_ref,
         "promoted": c.control_ref in assessment.promoted_controls}
        for c in risk_candidates(assessment.controls)
    ]
    return {
        **summary.model_dump(),
        "rating": compliance_rating(summary.overall_score),
        "candidates": candidates,
    }


@app.post("/api/v1/assessments/{assessment_id}/promote-risk")
async def promote_control(assessment_id: str, request: PromoteControlRequest):
    """Promote a control of the assessment to a risk."""
    fields = request.model_dump(exclude_unset=True)
    control_id = fields.pop("control_id", None)
    if not control_id:
        raise HTTPException(status_code=400, detail="Control ID is required when promoting to risk")
    return await coordinator.promote_control(assessment_id, control_id, RiskInput(**fields))


@app.get("/api/v1/assessments/{assessment_id}/risk-matrix")
async def risk_matrix(assessment_id: str):
    """Impact/likelihood matrix of an assessment's risks."""
    await coordinator.get_assessment(assessment_id)
    return build_risk_matrix(await coordinator.list_risks(assessment_id))


# Risks
@app.get("/api/v1/risks")
async def list_risks(assessment_id: Optional[str] = None):
    """List risks."""
    return {"risks": await coordinator.list_risks(assessment_id)}


@app.post("/api/v1/assessments/{assessment_id}/risks")
async def create_risk(assessment_id: str, request: RiskInput):
    """Create a risk directly."""
    return await coordinator.create_risk(assessment_id, request)


@app.get("/api/v1/risks/{risk_id}")
async def get_risk(risk_id: str):
    """Get a risk with its evaluation."""
    risk = await coordinator.get_risk(risk_id)
    return {**risk.model_dump(), "evaluation": evaluate_risk(risk.impact, risk.likelihood)}


@app.put("/api/v1/risks/{risk_id}")
async def update_risk(risk_id: str, request: RiskInput):
    """Update a risk."""
    return await coordinator.update_risk(risk_id, request)


@app.delete("/api/v1/risks/{risk_id}")
async def delete_risk(risk_id: str):
    """Delete a risk."""
    await coordinator.delete_risk(risk_id)
    return {"success": True}


@app.post("/api/v1/risks/{risk_id}/promote-objective")
async def promote_risk(risk_id: str, request: PromoteRiskRequest):
    """Promote a risk to a security objective."""
    return await coordinator.promote_risk(risk_id, **request.model_dump())


# Objectives
@app.get("/api/v1/objectives")
async def list_objectives(client_id: Optional[str] = None):
    """List security objectives."""
    return {"objectives": await coordinator.list_objectives(client_id)}


@app.post("/api/v1/objectives")
async def create_objective(request: ObjectiveRequest):
    """Create a security objective."""
    return await coordinator.create_objective(**request.model_dump(exclude_none=True))


@app.get("/api/v1/objectives/{objective_id}")
async def get_objective(objective_id: str):
    """Get a security objective."""
    return await coordinator.get_objective(objective_id)


@app.put("/api/v1/objectives/{objective_id}")
async def update_objective(objective_id: str, request: ObjectiveUpdate):
    """Update a security objective."""
    return await coordinator.update_objective(objective_id, request)


@app.delete("/api/v1/objectives/{objective_id}")
async def delete_objective(objective_id: str):
    """Delete an objective and its work items."""
    removed = await coordinator.delete_objective(objective_id)
    return {"success": True, "work_items_removed": removed}


@app.get("/api/v1/objectives/{objective_id}/tree")
async def objective_tree(objective_id: str):
    """Objective with initiatives, milestones and tasks."""
    return await coordinator.load_tree(objective_id)


# Work items
@app.post("/api/v1/objectives/{objective_id}/initiatives")
async def add_initiative(objective_id: str, request: WorkItemCreate):
    """Add an initiative to an objective."""
    return await coordinator.add_work_item(WorkItemKind.INITIATIVE, objective_id, request)


@app.post("/api/v1/initiatives/{initiative_id}/milestones")
async def add_milestone(initiative_id: str, request: WorkItemCreate):
    """Add a milestone to an initiative."""
    return await coordinator.add_work_item(WorkItemKind.MILESTONE, initiative_id, request)


@app.post("/api/v1/milestones/{milestone_id}/tasks")
async def add_task(milestone_id: str, request: WorkItemCreate):
    """Add a task to a milestone."""
    return await coordinator.add_work_item(WorkItemKind.TASK, milestone_id, request)


@app.post("/api/v1/milestones/reorder")
async def reorder_milestones(request: ReorderRequest):
    """Reorder milestones."""
    items = await coordinator.reorder_work_items(WorkItemKind.MILESTONE, request.ids)
    return {"success": True, "count": len(items)}


@app.post("/api/v1/tasks/reorder")
async def reorder_tasks(request: ReorderRequest):
    """Reorder tasks."""
    items = await coordinator.reorder_work_items(WorkItemKind.TASK, request.ids)
    return {"success": True, "count": len(items)}


@app.put("/api/v1/work-items/{kind}/{item_id}")
async def update_work_item(kind: WorkItemKind, item_id: str, request: WorkItemUpdate):
    """Update an initiative, milestone or task."""
    return await coordinator.update_work_item(kind, item_id, request)


@app.delete("/api/v1/work-items/{kind}/{item_id}")
async def delete_work_item(kind: WorkItemKind, item_id: str):
    """Delete an initiative, milestone or task with everything beneath it."""
    removed = await coordinator.delete_work_item(kind, item_id)
    return {"success": True, "work_items_removed": removed}


if __name__ == "__main__":
    import uvicorn

    uvicorn.run(app, host=config.host, port=config.port)
