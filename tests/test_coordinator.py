"""Tests for storage and the transactional coordinator."""

import asyncio

import pytest

from src.coordinator.config import RMFConfig
from src.coordinator.service import RMFCoordinator
from src.models.assessment import Assessment
from src.models.objectives import (
    ObjectiveStatus,
    ObjectiveUpdate,
    Priority,
    Task,
    WorkItemCreate,
    WorkItemKind,
    WorkItemStatus,
    WorkItemUpdate,
)
from src.models.risk import Risk, RiskInput
from src.utils.errors import (
    AlreadyPromotedError,
    InvalidInputError,
    NotFoundError,
    UniqueConstraintError,
)
from src.utils.storage import ASSESSMENTS, OBJECTIVES, RISKS, WORK_ITEMS, StorageManager

CONTROLS = {
    "AC": {
        "AC-1": {"status": "Implemented"},
        "AC-2": {"status": "Partially Implemented", "notes": "MFA pending"},
        "AC-3": {"status": "Planned"},
        "AC-4": {"status": "Not Applicable"},
    },
    "SC": {"SC-7": {"status": "Not Implemented"}},
}


@pytest.fixture
def storage():
    """In-memory storage."""
    return StorageManager(persist=False)


@pytest.fixture
def coordinator(storage):
    """Coordinator over in-memory storage."""
    return RMFCoordinator(storage=storage, config=RMFConfig(persist=False))


async def build_objective(coordinator):
    """Objective > initiative > milestone with 2 completed, 1 half-done and 1 new task."""
    objective = await coordinator.create_objective("Harden access control", client_id="client-1")
    initiative = await coordinator.add_work_item(
        WorkItemKind.INITIATIVE, objective.id, WorkItemCreate(title="Account management")
    )
    milestone = await coordinator.add_work_item(
        WorkItemKind.MILESTONE, initiative.id, WorkItemCreate(title="Remove shared accounts")
    )
    tasks = []
    for data in [
        WorkItemCreate(title="Inventory", status=WorkItemStatus.COMPLETED),
        WorkItemCreate(title="Notify owners", status=WorkItemStatus.COMPLETED),
        WorkItemCreate(title="Migrate", completion_percentage=50),
        WorkItemCreate(title="Disable", estimated_hours=4),
    ]:
        tasks.append(await coordinator.add_work_item(WorkItemKind.TASK, milestone.id, data))
    return objective, initiative, milestone, tasks


class TestStorageManager:
    """Tests for the storage adapter."""

    @pytest.mark.asyncio
    async def test_returns_copies(self, storage):
        """Test mutating a returned record does not change storage."""
        await storage.insert(ASSESSMENTS, Assessment(id="a1", title="Original"))

        record = await storage.get(ASSESSMENTS, "a1")
        record.title = "Changed"

        assert (await storage.get(ASSESSMENTS, "a1")).title == "Original"

    @pytest.mark.asyncio
    async def test_list_filters(self, storage):
        await storage.insert(RISKS, Risk(id="r1", assessment_id="a1", title="One"))
        await storage.insert(RISKS, Risk(id="r2", assessment_id="a2", title="Two"))

        risks = await storage.list(RISKS, assessment_id="a1")

        assert [r.id for r in risks] == ["r1"]

    @pytest.mark.asyncio
    async def test_unique_control_per_assessment(self, storage):
        """Test two risks cannot reference the same control in one assessment."""
        await storage.insert(RISKS, Risk(id="r1", assessment_id="a1", title="One", control_id="AC-2"))

        with pytest.raises(UniqueConstraintError):
            await storage.insert(
                RISKS, Risk(id="r2", assessment_id="a1", title="Two", control_id="ac-2")
            )

        await storage.insert(RISKS, Risk(id="r3", assessment_id="a2", title="Three", control_id="AC-2"))
        assert await storage.count(RISKS) == 2

    @pytest.mark.asyncio
    async def test_transaction_rollback(self, storage):
        """Test a failing transaction leaves no partial writes."""
        await storage.insert(ASSESSMENTS, Assessment(id="a1", title="Kept"))

        with pytest.raises(RuntimeError):
            async with storage.transaction("test"):
                await storage.insert(ASSESSMENTS, Assessment(id="a2", title="Dropped"))
                await storage.delete(ASSESSMENTS, "a1")
                raise RuntimeError("boom")

        assert await storage.get(ASSESSMENTS, "a1") is not None
        assert await storage.get(ASSESSMENTS, "a2") is None

    @pytest.mark.asyncio
    async def test_persist_and_reload(self, tmp_path):
        """Test records survive a reload from disk."""
        storage = StorageManager(data_dir=str(tmp_path))
        await storage.insert(ASSESSMENTS, Assessment(id="a1", title="Saved", controls=CONTROLS))
        await storage.insert(WORK_ITEMS, Task(id="t1", parent_id="m1", title="Task", estimated_hours=2))

        assert (tmp_path / "assessments.json").exists()

        reloaded = StorageManager(data_dir=str(tmp_path))
        await reloaded.load()

        assessment = await reloaded.get(ASSESSMENTS, "a1")
        task = await reloaded.get(WORK_ITEMS, "t1")
        assert assessment.controls == CONTROLS
        assert isinstance(task, Task)
        assert task.estimated_hours == 2


class TestAssessments:
    """Tests for assessment management."""

    @pytest.mark.asyncio
    async def test_create_scores(self, coordinator):
        """Test a new assessment carries its overall score."""
        assessment = await coordinator.create_assessment("Annual", controls=CONTROLS)

        summary = await coordinator.score_assessment(assessment.id)
        assert summary.family_scores[0].average_score == 58
        assert summary.applicable_controls == 4
        assert assessment.score == summary.overall_score == 44

    @pytest.mark.asyncio
    async def test_duplicate_controls_rejected(self, coordinator):
        with pytest.raises(InvalidInputError):
            await coordinator.create_assessment(
                "Dup", controls={"AC": {"AC-1": "Implemented"}, "ac": {"1": "Planned"}}
            )

    @pytest.mark.asyncio
    async def test_update_controls(self, coordinator):
        assessment = await coordinator.create_assessment("Annual", controls=CONTROLS)

        updated = await coordinator.update_assessment_controls(
            assessment.id, {"AC": {"AC-1": "Implemented"}}
        )

        assert updated.score == 100
        assert (await coordinator.get_assessment(assessment.id)).score == 100

    @pytest.mark.asyncio
    async def test_missing_assessment(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.get_assessment("missing")


class TestPromotion:
    """Tests for transactional promotion."""

    @pytest.mark.asyncio
    async def test_promote_control(self, coordinator):
        """Test promotion creates a risk and updates the cache."""
        assessment = await coordinator.create_assessment("Annual", controls=CONTROLS)

        risk = await coordinator.promote_control(assessment.id, "sc-7")

        assert risk.control_id == "SC-7"
        assert risk.impact == 4
        assert risk.likelihood == 4
        assert risk.promoted_from.control_status == "Not Implemented"
        stored = await coordinator.get_assessment(assessment.id)
        assert stored.promoted_controls == ["SC-7"]

    @pytest.mark.asyncio
    async def test_promote_control_twice(self, coordinator):
        """Test a second promotion fails and creates nothing."""
        assessment = await coordinator.create_assessment("Annual", controls=CONTROLS)
        await coordinator.promote_control(assessment.id, "AC-2")

        with pytest.raises(AlreadyPromotedError):
            await coordinator.promote_control(assessment.id, "AC-2", RiskInput(title="Again"))

        assert len(await coordinator.list_risks(assessment.id)) == 1

    @pytest.mark.asyncio
    async def test_concurrent_promotions(self, coordinator):
        """Test only one of two concurrent promotions succeeds."""
        assessment = await coordinator.create_assessment("Annual", controls=CONTROLS)

        results = await asyncio.gather(
            coordinator.promote_control(assessment.id, "AC-3"),
            coordinator.promote_control(assessment.id, "AC-3"),
            return_exceptions=True,
        )

        assert sum(isinstance(r, Risk) for r in results) == 1
        assert sum(isinstance(r, AlreadyPromotedError) for r in results) == 1
        assert len(await coordinator.list_risks(assessment.id)) == 1

    @pytest.mark.asyncio
    async def test_promote_control_missing_assessment(self, coordinator):
        with pytest.raises(NotFoundError):
            await coordinator.promote_control("missing", "AC-2")

    @pytest.mark.asyncio
    async def test_delete_risk_reconciles_cache(self, coordinator):
        """Test deleting a promoted risk frees the control for promotion."""
        assessment = await coordinator.create_assessment("Annual", controls=CONTROLS)
        risk = await coordinator.promote_control(assessment.id, "AC-2")

        await coordinator.delete_risk(risk.id)

        assert (await coordinator.get_assessment(assessment.id)).promoted_controls == []
        again = await coordinator.promote_control(assessment.id, "AC-2")
        assert again.id != risk.id

    @pytest.mark.asyncio
    async def test_update_risk_rescores(self, coordinator):
        assessment = await coordinator.create_assessment("Annual", controls=CONTROLS)
        risk = await coordinator.create_risk(assessment.id, RiskInput(title="Manual"))

        updated = await coordinator.update_risk(risk.id, RiskInput(impact=5, likelihood=7))

        assert updated.risk_score == 25
        assert updated.title == "Manual"

    @pytest.mark.asyncio
    async def test_promote_risk_twice(self, coordinator):
        """Test R1 (5x4, critical) is promoted once only."""
        assessment = await coordinator.create_assessment(
            "Annual", controls=CONTROLS, client_id="client-1"
        )
        r1 = await coordinator.create_risk(
            assessment.id, RiskInput(title="R1", impact=5, likelihood=4)
        )
        assert r1.risk_score == 20

        objective = await coordinator.promote_risk(r1.id)

        assert objective.priority == Priority.HIGH
        assert objective.client_id == "client-1"
        with pytest.raises(AlreadyPromotedError):
            await coordinator.promote_risk(r1.id)
        assert len(await coordinator.list_objectives()) == 1


class TestWorkItems:
    """Tests for hierarchy mutations and rollup."""

    @pytest.mark.asyncio
    async def test_rollup_after_adds(self, coordinator):
        """Test every level reaches 63 once all tasks are added."""
        objective, initiative, milestone, tasks = await build_objective(coordinator)

        tree = await coordinator.load_tree(objective.id)

        assert tree.initiatives[0].milestones[0].milestone.completion_percentage == 63
        assert tree.initiatives[0].initiative.completion_percentage == 63
        assert tree.objective.progress == 63
        assert tree.objective.status == ObjectiveStatus.IN_PROGRESS
        assert [t.order_index for t in tree.initiatives[0].milestones[0].tasks] == [0, 1, 2, 3]
        assert tasks[2].status == WorkItemStatus.IN_PROGRESS

    @pytest.mark.asyncio
    async def test_update_task_rolls_up(self, coordinator):
        objective, _, milestone, tasks = await build_objective(coordinator)

        await coordinator.update_work_item(
            WorkItemKind.TASK, tasks[3].id, WorkItemUpdate(status=WorkItemStatus.COMPLETED)
        )
        updated = await coordinator.update_work_item(
            WorkItemKind.TASK, tasks[2].id, WorkItemUpdate(completion_percentage=100)
        )

        assert updated.status == WorkItemStatus.COMPLETED
        stored = await coordinator.get_work_item(WorkItemKind.MILESTONE, milestone.id)
        assert stored.status == WorkItemStatus.COMPLETED
        assert (await coordinator.get_objective(objective.id)).status == ObjectiveStatus.COMPLETED

    @pytest.mark.asyncio
    async def test_parent_cannot_complete_early(self, coordinator):
        _, _, milestone, _ = await build_objective(coordinator)

        with pytest.raises(InvalidInputError):
            await coordinator.update_work_item(
                WorkItemKind.MILESTONE, milestone.id, WorkItemUpdate(status=WorkItemStatus.COMPLETED)
            )

    @pytest.mark.asyncio
    async def test_rollup_failure_rolls_back(self, coordinator, monkeypatch):
        """Test a failure during rollup undoes the task change too."""
        _, _, _, tasks = await build_objective(coordinator)

        async def broken(objective_id):
            raise RuntimeError("rollup failed")

        monkeypatch.setattr(coordinator, "_refresh_rollup", broken)
        with pytest.raises(RuntimeError):
            await coordinator.update_work_item(
                WorkItemKind.TASK, tasks[3].id, WorkItemUpdate(completion_percentage=80)
            )

        stored = await coordinator.get_work_item(WorkItemKind.TASK, tasks[3].id)
        assert stored.completion_percentage == 0

    @pytest.mark.asyncio
    async def test_missing_parent(self, coordinator):
        """Test work items need an existing parent of the right kind."""
        objective = await coordinator.create_objective("Orphans")

        with pytest.raises(NotFoundError):
            await coordinator.add_work_item(
                WorkItemKind.MILESTONE, objective.id, WorkItemCreate(title="Wrong parent")
            )
        with pytest.raises(NotFoundError):
            await coordinator.add_work_item(
                WorkItemKind.INITIATIVE, "missing", WorkItemCreate(title="No objective")
            )

    @pytest.mark.asyncio
    async def test_delete_milestone_cascades(self, coordinator, storage):
        _, _, milestone, _ = await build_objective(coordinator)

        removed = await coordinator.delete_work_item(WorkItemKind.MILESTONE, milestone.id)

        assert removed == 5
        assert await storage.count(WORK_ITEMS) == 1

    @pytest.mark.asyncio
    async def test_delete_objective_cascades(self, coordinator, storage):
        """Test deleting an objective removes its whole subtree."""
        objective, _, _, _ = await build_objective(coordinator)

        removed = await coordinator.delete_objective(objective.id)

        assert removed == 6
        assert await storage.count(WORK_ITEMS) == 0
        assert await storage.count(OBJECTIVES) == 0

    @pytest.mark.asyncio
    async def test_objective_progress_derived(self, coordinator):
        """Test objective progress cannot be set once initiatives exist."""
        objective, _, _, _ = await build_objective(coordinator)

        updated = await coordinator.update_objective(
            objective.id, ObjectiveUpdate(progress=10, title="Renamed")
        )

        assert updated.progress == 63
        assert updated.title == "Renamed"

    @pytest.mark.asyncio
    async def test_reorder_tasks(self, coordinator):
        _, _, milestone, tasks = await build_objective(coordinator)

        await coordinator.reorder_work_items(WorkItemKind.TASK, [t.id for t in reversed(tasks)])

        tree_tasks = (await coordinator._children(WorkItemKind.TASK, milestone.id))
        assert [t.id for t in tree_tasks] == [t.id for t in reversed(tasks)]


class TestPartialUpdates:
    """Tests that partial updates never store invalid records."""

    @pytest.fixture
    def persisted(self, tmp_path):
        """Coordinator writing JSON snapshots to a temporary directory."""
        return RMFCoordinator(
            storage=StorageManager(data_dir=str(tmp_path)),
            config=RMFConfig(data_dir=str(tmp_path)),
        )

    @pytest.mark.asyncio
    async def test_null_risk_title_rejected(self, persisted, tmp_path):
        """Test a null risk title is rejected and the store still loads."""
        assessment = await persisted.create_assessment("Annual", controls=CONTROLS)
        risk = await persisted.create_risk(assessment.id, RiskInput(title="Shared accounts"))

        with pytest.raises(InvalidInputError):
            await persisted.update_risk(risk.id, RiskInput(title=None))

        reloaded = StorageManager(data_dir=str(tmp_path))
        await reloaded.load()
        assert (await reloaded.get(RISKS, risk.id)).title == "Shared accounts"

    @pytest.mark.asyncio
    async def test_null_objective_fields_rejected(self, persisted, tmp_path):
        """Test null title, priority or status on an objective is rejected."""
        objective = await persisted.create_objective("Harden access")

        for update in [
            ObjectiveUpdate(title=None),
            ObjectiveUpdate(priority=None),
            ObjectiveUpdate(status=None),
        ]:
            with pytest.raises(InvalidInputError):
                await persisted.update_objective(objective.id, update)

        reloaded = StorageManager(data_dir=str(tmp_path))
        await reloaded.load()
        stored = await reloaded.get(OBJECTIVES, objective.id)
        assert stored.title == "Harden access"
        assert stored.priority == Priority.LOW

    @pytest.mark.asyncio
    async def test_null_work_item_title_rejected(self, persisted, tmp_path):
        """Test a null work-item title is rejected and the store still loads."""
        _, _, _, tasks = await build_objective(persisted)

        with pytest.raises(InvalidInputError):
            await persisted.update_work_item(
                WorkItemKind.TASK, tasks[0].id, WorkItemUpdate(title=None)
            )

        reloaded = StorageManager(data_dir=str(tmp_path))
        await reloaded.load()
        assert (await reloaded.get(WORK_ITEMS, tasks[0].id)).title == "Inventory"


class TestParentStatus:
    """Tests that parent statuses agree with their rollup."""

    @pytest.mark.asyncio
    async def test_progressing_parent_cannot_be_not_started(self, coordinator):
        """Test a milestone with a completed task cannot be reset to Not Started."""
        objective = await coordinator.create_objective("Patch servers")
        initiative = await coordinator.add_work_item(
            WorkItemKind.INITIATIVE, objective.id, WorkItemCreate(title="Linux")
        )
        milestone = await coordinator.add_work_item(
            WorkItemKind.MILESTONE, initiative.id, WorkItemCreate(title="Kernel")
        )
        await coordinator.add_work_item(
            WorkItemKind.TASK, milestone.id,
            WorkItemCreate(title="Stage", status=WorkItemStatus.COMPLETED),
        )
        await coordinator.add_work_item(
            WorkItemKind.TASK, milestone.id, WorkItemCreate(title="Reboot")
        )

        with pytest.raises(InvalidInputError):
            await coordinator.update_work_item(
                WorkItemKind.MILESTONE, milestone.id,
                WorkItemUpdate(status=WorkItemStatus.NOT_STARTED),
            )

        tree = await coordinator.load_tree(objective.id)
        stored = tree.initiatives[0].milestones[0].milestone
        assert stored.status == WorkItemStatus.IN_PROGRESS
        assert stored.completion_percentage == 50
        assert tree.initiatives[0].initiative.completion_percentage == 50
        assert tree.objective.progress == 50

    @pytest.mark.asyncio
    async def test_objective_returns_to_planning(self, coordinator):
        """Test an objective whose progress drops to 0 goes back to Planning."""
        objective = await coordinator.create_objective("Rotate keys")
        initiative = await coordinator.add_work_item(
            WorkItemKind.INITIATIVE, objective.id, WorkItemCreate(title="Keys")
        )
        milestone = await coordinator.add_work_item(
            WorkItemKind.MILESTONE, initiative.id, WorkItemCreate(title="Vault")
        )
        task = await coordinator.add_work_item(
            WorkItemKind.TASK, milestone.id, WorkItemCreate(title="Rotate", completion_percentage=50)
        )
        assert (await coordinator.get_objective(objective.id)).status == ObjectiveStatus.IN_PROGRESS

        await coordinator.update_work_item(
            WorkItemKind.TASK, task.id, WorkItemUpdate(completion_percentage=0)
        )

        tree = await coordinator.load_tree(objective.id)
        assert tree.initiatives[0].milestones[0].milestone.status == WorkItemStatus.NOT_STARTED
        assert tree.initiatives[0].initiative.status == WorkItemStatus.NOT_STARTED
        assert tree.objective.progress == 0
        assert tree.objective.status == ObjectiveStatus.PLANNING
