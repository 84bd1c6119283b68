"""Work-item state transitions and bottom-up progress rollup."""

import logging
from datetime import date, datetime
from typing import Iterable, List, Optional

from src.engine.compliance import round_ratio
from src.models.objectives import (
    InitiativeNode,
    MilestoneNode,
    ObjectiveStatus,
    ObjectiveTree,
    SecurityObjective,
    WorkItem,
    WorkItemStatus,
    WorkItemUpdate,
)
from src.utils.errors import InvalidInputError
from src.utils.validation import validated_update

logger = logging.getLogger("rmf_manager.progress")


def weighted_progress(children: Iterable[WorkItem]) -> Optional[int]:
    """
    Completion of a parent derived from its children.

    ``completed/total * 100 + (in_progress/total) * avg(in-progress %)``,
    which reduces to ``(100 * completed + sum(in-progress %)) / total``.
    Blocked, deferred and not started children contribute nothing.

    Args:
        children: Direct children of the parent

    Returns:
        Rounded percentage, or None when there are no children
    """
    children = list(children)
    if not children:
        return None

    earned = 0
    for child in children:
        if child.status == WorkItemStatus.COMPLETED:
            earned += 100
        elif child.status == WorkItemStatus.IN_PROGRESS:
            earned += child.completion_percentage
    return round_ratio(earned, len(children))


def reconcile_status(
    status: WorkItemStatus,
    percentage: int,
    has_progressing_descendants: bool = False,
) -> WorkItemStatus:
    """
    Status implied by a newly set completion percentage.

    Args:
        status: Current status
        percentage: New completion percentage
        has_progressing_descendants: Whether any descendant has non-zero progress

    Returns:
        Resulting status
    """
    if percentage >= 100:
        return WorkItemStatus.COMPLETED
    if percentage <= 0:
        if status != WorkItemStatus.NOT_STARTED and not has_progressing_descendants:
            return WorkItemStatus.NOT_STARTED
        if status == WorkItemStatus.COMPLETED:
            return WorkItemStatus.IN_PROGRESS
        return status
    if status in (WorkItemStatus.NOT_STARTED, WorkItemStatus.COMPLETED):
        return WorkItemStatus.IN_PROGRESS
    return status


def _is_consistent(status: WorkItemStatus, percentage: int) -> bool:
    if status == WorkItemStatus.COMPLETED:
        return percentage == 100
    if status == WorkItemStatus.NOT_STARTED:
        return percentage == 0
    return percentage < 100


def _apply_derived(item: WorkItem, derived: int, has_progressing_descendants: bool) -> WorkItem:
    if derived == item.completion_percentage and _is_consistent(item.status, derived):
        return item
    status = reconcile_status(item.status, derived, has_progressing_descendants)
    logger.debug(
        f"{item.id}: {item.completion_percentage}% {item.status.value} -> "
        f"{derived}% {status.value}"
    )
    return item.model_copy(update={"completion_percentage": derived, "status": status})


def rollup_milestone(node: MilestoneNode) -> MilestoneNode:
    """Recompute a milestone from its tasks."""
    derived = weighted_progress(node.tasks)
    if derived is None:
        return node
    progressing = any(t.completion_percentage > 0 for t in node.tasks)
    milestone = _apply_derived(node.milestone, derived, progressing)
    return MilestoneNode(milestone=milestone, tasks=list(node.tasks))


def _subtree_progressing(milestones: List[MilestoneNode]) -> bool:
    for node in milestones:
        if node.milestone.completion_percentage > 0:
            return True
        if any(t.completion_percentage > 0 for t in node.tasks):
            return True
    return False


def rollup_initiative(node: InitiativeNode) -> InitiativeNode:
    """Recompute an initiative from its milestones, rolling those up first."""
    milestones = [rollup_milestone(m) for m in node.milestones]
    derived = weighted_progress(m.milestone for m in milestones)
    initiative = node.initiative
    if derived is not None:
        initiative = _apply_derived(initiative, derived, _subtree_progressing(milestones))
    return InitiativeNode(initiative=initiative, milestones=milestones)


def _reconcile_objective(
    objective: SecurityObjective, progress: int, has_progressing_descendants: bool = False
) -> SecurityObjective:
    status = objective.status
    if progress >= 100:
        status = ObjectiveStatus.COMPLETED
    elif progress <= 0 and status in (ObjectiveStatus.IN_PROGRESS, ObjectiveStatus.COMPLETED):
        if has_progressing_descendants:
            status = ObjectiveStatus.IN_PROGRESS
        else:
            status = ObjectiveStatus.PLANNING
    elif status == ObjectiveStatus.COMPLETED:
        status = ObjectiveStatus.IN_PROGRESS
    elif status == ObjectiveStatus.PLANNING and progress > 0:
        status = ObjectiveStatus.IN_PROGRESS

    update = {"progress": progress, "status": status}
    if status == ObjectiveStatus.COMPLETED and objective.actual_completion_date is None:
        update["actual_completion_date"] = date.today()
    elif status != ObjectiveStatus.COMPLETED:
        update["actual_completion_date"] = None
    return objective.model_copy(update=update)


def recompute_progress(tree: ObjectiveTree) -> ObjectiveTree:
    """
    Recompute completion percentages for a whole objective tree.

    Milestones aggregate tasks, initiatives aggregate milestones and the
    objective aggregates initiatives. A parent without children keeps its own
    value. Every level is rounded to an integer, so calling this twice in a
    row yields identical results.

    Args:
        tree: Snapshot of the objective and its work items

    Returns:
        New tree with derived percentages and statuses
    """
    initiatives = [rollup_initiative(i) for i in tree.initiatives]
    objective = tree.objective

    if initiatives:
        children = [i.initiative for i in initiatives]
        derived = weighted_progress(children)
        consistent = (objective.status == ObjectiveStatus.COMPLETED) == (derived == 100)
        if derived != objective.progress or not consistent:
            progressing = any(
                i.initiative.completion_percentage > 0 or _subtree_progressing(i.milestones)
                for i in initiatives
            )
            objective = _reconcile_objective(objective, derived, progressing)

    return ObjectiveTree(objective=objective, initiatives=initiatives)


def apply_work_item_update(
    item: WorkItem,
    update: WorkItemUpdate,
    has_children: bool = False,
    has_progressing_descendants: bool = False,
) -> WorkItem:
    """
    Apply a partial update to a work item, enforcing the state machine.

    Completed is only reachable at 100%, and setting 100% completes the item.
    Setting 0% returns the item to Not Started unless a descendant has
    progress. A parent's percentage is derived from its children and cannot be
    set directly once children exist, and a parent whose children have
    progress cannot be set Not Started.

    Args:
        item: Current work item
        update: Fields to change
        has_children: Whether the item currently has children
        has_progressing_descendants: Whether any descendant has non-zero progress

    Returns:
        Updated copy of the work item

    Raises:
        InvalidInputError: On an illegal transition
    """
    fields = update.model_dump(exclude_unset=True)
    status = fields.pop("status", None)
    percentage = fields.pop("completion_percentage", None)

    if has_children and percentage is not None:
        logger.debug(f"{item.id}: ignoring completion set on a parent with children")
        percentage = None

    if status == WorkItemStatus.COMPLETED:
        if has_children:
            if item.completion_percentage != 100:
                raise InvalidInputError(
                    f"{item.id} cannot be completed at {item.completion_percentage}%",
                    reference=item.id,
                )
        elif percentage is not None and percentage != 100:
            raise InvalidInputError(
                f"{item.id} cannot be completed at {percentage}%", reference=item.id
            )
        else:
            percentage = 100
    elif status == WorkItemStatus.NOT_STARTED and has_children:
        if item.completion_percentage > 0 or has_progressing_descendants:
            raise InvalidInputError(
                f"{item.id} cannot be not started at {item.completion_percentage}% "
                f"while its children have progress",
                reference=item.id,
            )
    elif status == WorkItemStatus.NOT_STARTED:
        if percentage is not None and percentage != 0:
            raise InvalidInputError(
                f"{item.id} cannot be not started at {percentage}%", reference=item.id
            )
        percentage = 0

    if status is not None:
        new_status = status
        if percentage == 100:
            new_status = WorkItemStatus.COMPLETED
    elif percentage is not None:
        new_status = reconcile_status(item.status, percentage, has_progressing_descendants)
    else:
        new_status = item.status

    changes = {k: v for k, v in fields.items() if k in type(item).model_fields}
    changes["status"] = new_status
    if percentage is not None:
        changes["completion_percentage"] = percentage
    changes["updated_at"] = datetime.utcnow()
    return validated_update(item, changes)


def collect_progress(tree: ObjectiveTree) -> dict:
    """Flatten a tree into ``{item id: completion}`` for comparison and display."""
    progress = {tree.objective.id: tree.objective.progress}
    for initiative in tree.initiatives:
        progress[initiative.initiative.id] = initiative.initiative.completion_percentage
        for milestone in initiative.milestones:
            progress[milestone.milestone.id] = milestone.milestone.completion_percentage
            for task in milestone.tasks:
                progress[task.id] = task.completion_percentage
    return progress
