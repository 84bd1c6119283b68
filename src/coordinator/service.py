"""Coordinator tying the computation core to record storage."""

import logging
import uuid
from datetime import datetime
from typing import Any, Dict, List, Optional

from src.coordinator.config import RMFConfig, get_config
from src.engine.compliance import find_duplicate_controls, ingest_controls, score_controls
from src.engine.progress import apply_work_item_update, recompute_progress
from src.engine.promotion import (
    promote_control_to_risk,
    promote_risk_to_objective,
    reconcile_promoted_controls,
)
from src.engine.risk import clamp_rating, evaluate_risk
from src.models.assessment import Assessment
from src.models.controls import ComplianceSummary, normalize_control_ref
from src.models.objectives import (
    CHILD_KIND,
    WORK_ITEM_MODELS,
    InitiativeNode,
    MilestoneNode,
    ObjectiveTree,
    ObjectiveUpdate,
    SecurityObjective,
    WorkItem,
    WorkItemCreate,
    WorkItemKind,
    WorkItemUpdate,
)
from src.models.risk import Risk, RiskInput
from src.utils.errors import (
    AlreadyPromotedError,
    InvalidInputError,
    NotFoundError,
    UniqueConstraintError,
)
from src.utils.storage import (
    ASSESSMENTS,
    OBJECTIVES,
    RISKS,
    WORK_ITEMS,
    RecordStore,
    StorageManager,
)
from src.utils.validation import validated_update

logger = logging.getLogger("rmf_manager.coordinator")

# Parent kind for each work-item level; initiatives hang off objectives
PARENT_KIND = {
    WorkItemKind.INITIATIVE: None,
    WorkItemKind.MILESTONE: WorkItemKind.INITIATIVE,
    WorkItemKind.TASK: WorkItemKind.MILESTONE,
}


def _new_id() -> str:
    return str(uuid.uuid4())


class RMFCoordinator:
    """
    Orchestrates scoring, promotion and work-item mutations over a record store.

    Every mutation runs inside one storage transaction, including the
    progress rollup it triggers, so no caller observes a parent whose
    percentage lags behind its children.
    """

    def __init__(self, storage: Optional[RecordStore] = None, config: Optional[RMFConfig] = None):
        """Initialize coordinator."""
        self.config = config or get_config()
        self.storage = storage or StorageManager(
            data_dir=self.config.data_dir, persist=self.config.persist
        )

    # ------------------------------------------------------------------
    # Assessments

    async def create_assessment(
        self,
        title: str,
        controls: Optional[Dict[str, Any]] = None,
        client_id: Optional[str] = None,
        description: Optional[str] = None,
        organization: Optional[str] = None,
        assessor: Optional[str] = None,
    ) -> Assessment:
        """Create an assessment from imported control statuses."""
        controls = controls or {}
        self._check_controls(controls)
        assessment = Assessment(
            id=_new_id(),
            client_id=client_id,
            title=title,
            description=description,
            organization=organization,
            assessor=assessor,
            controls=controls,
        )
        assessment.score = score_controls(controls).overall_score
        if not controls:
            logger.warning(f"Assessment {assessment.id} created without controls")
        await self.storage.insert(ASSESSMENTS, assessment)
        return assessment

    async def get_assessment(self, assessment_id: str) -> Assessment:
        """Get assessment by ID."""
        assessment = await self.storage.get(ASSESSMENTS, assessment_id)
        if not assessment:
            raise NotFoundError(f"Assessment {assessment_id} not found", reference=assessment_id)
        return assessment

    async def list_assessments(self, client_id: Optional[str] = None) -> List[Assessment]:
        """List assessments, optionally for one client."""
        if client_id:
            return await self.storage.list(ASSESSMENTS, client_id=client_id)
        return await self.storage.list(ASSESSMENTS)

    async def update_assessment_controls(
        self, assessment_id: str, controls: Dict[str, Any]
    ) -> Assessment:
        """Replace an assessment's control statuses wholesale."""
        self._check_controls(controls)
        async with self.storage.transaction(f"assessment:{assessment_id}"):
            assessment = await self.get_assessment(assessment_id)
            assessment = assessment.model_copy(
                update={
                    "controls": controls,
                    "score": score_controls(controls).overall_score,
                    "updated_at": datetime.utcnow(),
                }
            )
            await self.storage.update(ASSESSMENTS, assessment)
        return assessment

    async def score_assessment(self, assessment_id: str) -> ComplianceSummary:
        """Compute compliance scores for a stored assessment."""
        assessment = await self.get_assessment(assessment_id)
        return score_controls(assessment.controls)

    def _check_controls(self, controls: Any) -> None:
        if controls is not None and not isinstance(controls, dict):
            raise InvalidInputError("Controls must be a mapping of family to controls")
        duplicates = find_duplicate_controls(controls)
        if duplicates:
            raise InvalidInputError(f"Duplicate controls in assessment: {', '.join(duplicates)}")

    # ------------------------------------------------------------------
    # Risks

    async def create_risk(self, assessment_id: str, risk_input: RiskInput) -> Risk:
        """Create a risk directly, without a source control."""
        async with self.storage.transaction(f"assessment:{assessment_id}"):
            await self.get_assessment(assessment_id)
            evaluation = evaluate_risk(
                clamp_rating(risk_input.impact, self.config.default_impact),
                clamp_rating(risk_input.likelihood, self.config.default_likelihood),
            )
            risk = Risk(
                id=_new_id(),
                assessment_id=assessment_id,
                title=risk_input.title or "Untitled Risk",
                description=risk_input.description or "",
                impact=evaluation.impact,
                likelihood=evaluation.likelihood,
                notes=risk_input.notes,
                status=risk_input.status,
            )
            await self.storage.insert(RISKS, risk)
        return risk

    async def get_risk(self, risk_id: str) -> Risk:
        """Get risk by ID."""
        risk = await self.storage.get(RISKS, risk_id)
        if not risk:
            raise NotFoundError(f"Risk {risk_id} not found", reference=risk_id)
        return risk

    async def list_risks(self, assessment_id: Optional[str] = None) -> List[Risk]:
        """List risks, optionally for one assessment."""
        if assessment_id:
            return await self.storage.list(RISKS, assessment_id=assessment_id)
        return await self.storage.list(RISKS)

    async def update_risk(self, risk_id: str, risk_input: RiskInput) -> Risk:
        """Update a risk's descriptive fields and ratings."""
        async with self.storage.transaction(f"risk:{risk_id}"):
            risk = await self.get_risk(risk_id)
            fields = risk_input.model_dump(exclude_unset=True)
            impact = fields.pop("impact", risk.impact)
            likelihood = fields.pop("likelihood", risk.likelihood)
            fields.pop("control_status", None)
            evaluation = evaluate_risk(
                clamp_rating(impact, risk.impact), clamp_rating(likelihood, risk.likelihood)
            )
            fields.update(
                impact=evaluation.impact,
                likelihood=evaluation.likelihood,
                risk_score=evaluation.risk_score,
                updated_at=datetime.utcnow(),
            )
            risk = validated_update(risk, fields)
            await self.storage.update(RISKS, risk)
        return risk

    async def delete_risk(self, risk_id: str) -> None:
        """Delete a risk and reconcile its assessment's promoted controls."""
        async with self.storage.transaction(f"risk:{risk_id}"):
            risk = await self.get_risk(risk_id)
            await self.storage.delete(RISKS, risk_id)
            assessment = await self.storage.get(ASSESSMENTS, risk.assessment_id)
            if assessment:
                risks = await self.storage.list(RISKS, assessment_id=assessment.id)
                reconciled = reconcile_promoted_controls(assessment, risks)
                if reconciled is not assessment:
                    await self.storage.update(ASSESSMENTS, reconciled)
        logger.info(f"Deleted risk {risk_id}")

    async def promote_control(
        self, assessment_id: str, control_ref: str, risk_input: Optional[RiskInput] = None
    ) -> Risk:
        """
        Promote an assessment control to a risk.

        The existence check, the insert and the cache update happen in one
        transaction. A concurrent duplicate is also caught by the storage
        uniqueness rule and reported the same way.

        Raises:
            NotFoundError: If the assessment does not exist
            AlreadyPromotedError: If the control was promoted before
        """
        risk_input = risk_input or RiskInput()
        async with self.storage.transaction(f"assessment:{assessment_id}"):
            assessment = await self.get_assessment(assessment_id)
            if risk_input.control_status is None:
                risk_input = risk_input.model_copy(
                    update={"control_status": self._control_status(assessment, control_ref)}
                )
            existing = await self.storage.list(RISKS, assessment_id=assessment_id)
            risk = promote_control_to_risk(assessment_id, control_ref, risk_input, existing)
            try:
                await self.storage.insert(RISKS, risk)
            except UniqueConstraintError as e:
                raise AlreadyPromotedError(e.message, reference=e.reference) from e

            reconciled = reconcile_promoted_controls(assessment, existing + [risk])
            if reconciled is not assessment:
                await self.storage.update(ASSESSMENTS, reconciled)
        return risk

    def _control_status(self, assessment: Assessment, control_ref: str) -> Optional[str]:
        ref = normalize_control_ref(control_ref or "")
        for controls in ingest_controls(assessment.controls).values():
            for control in controls:
                if control.control_ref == ref:
                    return control.raw_status or control.status.value
        return None

    async def promote_risk(
        self,
        risk_id: str,
        client_id: Optional[str] = None,
        title: Optional[str] = None,
        description: Optional[str] = None,
    ) -> SecurityObjective:
        """
        Promote a risk to a security objective.

        Raises:
            NotFoundError: If the risk does not exist
            AlreadyPromotedError: If the risk was promoted before
        """
        async with self.storage.transaction("objectives"):
            risk = await self.get_risk(risk_id)
            if client_id is None:
                assessment = await self.storage.get(ASSESSMENTS, risk.assessment_id)
                client_id = assessment.client_id if assessment else None
            objectives = await self.storage.list(OBJECTIVES)
            objective = promote_risk_to_objective(
                risk, objectives, client_id=client_id, title=title, description=description
            )
            try:
                await self.storage.insert(OBJECTIVES, objective)
            except UniqueConstraintError as e:
                raise AlreadyPromotedError(e.message, reference=e.reference) from e
        return objective

    # ------------------------------------------------------------------
    # Objectives

    async def create_objective(
        self, title: str, client_id: Optional[str] = None, **fields: Any
    ) -> SecurityObjective:
        """Create a security objective directly."""
        objective = SecurityObjective(id=_new_id(), title=title, client_id=client_id, **fields)
        try:
            await self.storage.insert(OBJECTIVES, objective)
        except UniqueConstraintError as e:
            raise AlreadyPromotedError(e.message, reference=e.reference) from e
        return objective

    async def get_objective(self, objective_id: str) -> SecurityObjective:
        """Get objective by ID."""
        objective = await self.storage.get(OBJECTIVES, objective_id)
        if not objective:
            raise NotFoundError(f"Objective {objective_id} not found", reference=objective_id)
        return objective

    async def list_objectives(self, client_id: Optional[str] = None) -> List[SecurityObjective]:
        """List objectives, optionally for one client."""
        if client_id:
            return await self.storage.list(OBJECTIVES, client_id=client_id)
        return await self.storage.list(OBJECTIVES)

    async def update_objective(
        self, objective_id: str, update: ObjectiveUpdate
    ) -> SecurityObjective:
        """Update an objective; progress is derived once initiatives exist."""
        async with self.storage.transaction(f"objective:{objective_id}"):
            objective = await self.get_objective(objective_id)
            fields = update.model_dump(exclude_unset=True)
            initiatives = await self._children(WorkItemKind.INITIATIVE, objective_id)
            if initiatives:
                fields.pop("progress", None)
            fields["updated_at"] = datetime.utcnow()
            objective = validated_update(objective, fields)
            await self.storage.update(OBJECTIVES, objective)
            tree = await self._refresh_rollup(objective_id)
        return tree.objective

    async def delete_objective(self, objective_id: str) -> int:
        """
        Delete an objective with its initiatives, milestones and tasks.

        Returns:
            Number of work items removed with it
        """
        async with self.storage.transaction(f"objective:{objective_id}"):
            await self.get_objective(objective_id)
            removed = 0
            for initiative in await self._children(WorkItemKind.INITIATIVE, objective_id):
                removed += await self._delete_subtree(initiative)
            await self.storage.delete(OBJECTIVES, objective_id)
        logger.info(f"Deleted objective {objective_id} with {removed} work items")
        return removed

    # ------------------------------------------------------------------
    # Work items

    async def _children(self, kind: WorkItemKind, parent_id: str) -> List[WorkItem]:
        items = await self.storage.list(WORK_ITEMS, kind=kind, parent_id=parent_id)
        return sorted(items, key=lambda i: (i.order_index, i.created_at))

    async def get_work_item(self, kind: WorkItemKind, item_id: str) -> WorkItem:
        """Get a work item by kind and ID."""
        item = await self.storage.get(WORK_ITEMS, item_id)
        if not item or item.kind != kind:
            raise NotFoundError(f"{kind.value.title()} {item_id} not found", reference=item_id)
        return item

    async def _objective_id_for(self, item: WorkItem) -> str:
        while item.kind != WorkItemKind.INITIATIVE:
            item = await self.get_work_item(PARENT_KIND[item.kind], item.parent_id)
        return item.parent_id

    async def _descendants_progressing(self, item: WorkItem) -> bool:
        child_kind = CHILD_KIND[item.kind]
        if child_kind is None:
            return False
        for child in await self._children(child_kind, item.id):
            if child.completion_percentage > 0 or await self._descendants_progressing(child):
                return True
        return False

    async def add_work_item(
        self, kind: WorkItemKind, parent_id: str, data: WorkItemCreate
    ) -> WorkItem:
        """
        Create a work item under an existing parent and roll progress up.

        Raises:
            NotFoundError: If the parent does not exist
            InvalidInputError: If the initial status and completion conflict
        """
        async with self.storage.transaction(f"{kind.value}:{parent_id}"):
            parent_kind = PARENT_KIND[kind]
            if parent_kind is None:
                objective_id = (await self.get_objective(parent_id)).id
            else:
                parent = await self.get_work_item(parent_kind, parent_id)
                objective_id = await self._objective_id_for(parent)

            siblings = await self._children(kind, parent_id)
            blank = WORK_ITEM_MODELS[kind](
                id=_new_id(),
                parent_id=parent_id,
                title=data.title,
                order_index=len(siblings),
            )
            item = apply_work_item_update(blank, data)
            await self.storage.insert(WORK_ITEMS, item)
            tree = await self._refresh_rollup(objective_id)
        return self._find_in_tree(tree, item.id) or item

    async def update_work_item(
        self, kind: WorkItemKind, item_id: str, update: WorkItemUpdate
    ) -> WorkItem:
        """Update a work item and roll progress up to its objective."""
        async with self.storage.transaction(f"{kind.value}:{item_id}"):
            item = await self.get_work_item(kind, item_id)
            child_kind = CHILD_KIND[kind]
            has_children = bool(child_kind and await self._children(child_kind, item_id))
            updated = apply_work_item_update(
                item,
                update,
                has_children=has_children,
                has_progressing_descendants=await self._descendants_progressing(item),
            )
            await self.storage.update(WORK_ITEMS, updated)
            tree = await self._refresh_rollup(await self._objective_id_for(updated))
        return self._find_in_tree(tree, item_id) or updated

    async def _delete_subtree(self, item: WorkItem) -> int:
        removed = 0
        child_kind = CHILD_KIND[item.kind]
        if child_kind is not None:
            for child in await self._children(child_kind, item.id):
                removed += await self._delete_subtree(child)
        await self.storage.delete(WORK_ITEMS, item.id)
        return removed + 1

    async def delete_work_item(self, kind: WorkItemKind, item_id: str) -> int:
        """
        Delete a work item and everything beneath it, atomically.

        Returns:
            Number of work items removed
        """
        async with self.storage.transaction(f"{kind.value}:{item_id}"):
            item = await self.get_work_item(kind, item_id)
            objective_id = await self._objective_id_for(item)
            removed = await self._delete_subtree(item)
            await self._refresh_rollup(objective_id)
        logger.info(f"Deleted {kind.value} {item_id} ({removed} work items)")
        return removed

    async def reorder_work_items(self, kind: WorkItemKind, item_ids: List[str]) -> List[WorkItem]:
        """Set ``order_index`` of siblings to their position in ``item_ids``."""
        if not isinstance(item_ids, list):
            raise InvalidInputError(f"Invalid {kind.value} IDs provided")
        reordered = []
        async with self.storage.transaction(f"reorder:{kind.value}"):
            for index, item_id in enumerate(item_ids):
                item = await self.get_work_item(kind, item_id)
                item = item.model_copy(update={"order_index": index})
                await self.storage.update(WORK_ITEMS, item)
                reordered.append(item)
        return reordered

    # ------------------------------------------------------------------
    # Progress rollup

    async def load_tree(self, objective_id: str) -> ObjectiveTree:
        """Load an objective with its full work-item subtree."""
        objective = await self.get_objective(objective_id)
        initiatives = []
        for initiative in await self._children(WorkItemKind.INITIATIVE, objective_id):
            milestones = []
            for milestone in await self._children(WorkItemKind.MILESTONE, initiative.id):
                tasks = await self._children(WorkItemKind.TASK, milestone.id)
                milestones.append(MilestoneNode(milestone=milestone, tasks=tasks))
            initiatives.append(InitiativeNode(initiative=initiative, milestones=milestones))
        return ObjectiveTree(objective=objective, initiatives=initiatives)

    async def _refresh_rollup(self, objective_id: str) -> ObjectiveTree:
        """Recompute an objective's tree and store every changed record."""
        before = await self.load_tree(objective_id)
        after = recompute_progress(before)

        if after.objective != before.objective:
            await self.storage.update(OBJECTIVES, after.objective)
        for old, new in zip(before.initiatives, after.initiatives):
            if new.initiative != old.initiative:
                await self.storage.update(WORK_ITEMS, new.initiative)
            for old_m, new_m in zip(old.milestones, new.milestones):
                if new_m.milestone != old_m.milestone:
                    await self.storage.update(WORK_ITEMS, new_m.milestone)
        return after

    def _find_in_tree(self, tree: ObjectiveTree, item_id: str) -> Optional[WorkItem]:
        for initiative in tree.initiatives:
            if initiative.initiative.id == item_id:
                return initiative.initiative
            for milestone in initiative.milestones:
                if milestone.milestone.id == item_id:
                    return milestone.milestone
                for task in milestone.tasks:
                    if task.id == item_id:
                        return task
        return None
