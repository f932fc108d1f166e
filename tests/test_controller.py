"""
Tests for the phase controller.

Tests:
- Workflow start, resume and abort
- Phase transitions and the transition table
- Task lifecycle and events
- Review approval and revision handling
"""

import asyncio

import pytest

from multimodel_workflow.clients.router import ClientRole, create_client_router
from multimodel_workflow.orchestrator.controller import (
	InvalidTransitionError,
	NoActiveWorkflowError,
	PhaseController,
	PlanParseError,
	TaskNotFoundError,
	WorkflowNotInitializedError,
)
from multimodel_workflow.orchestrator.parsing import (
	ParsedPlan,
	ParsedReview,
	parse_planning_response,
	parse_review_response,
)
from multimodel_workflow.plans.models import (
	TaskPriority,
	TaskResult,
	TaskStatus,
	WorkflowPhase,
)

from .helpers import (
	FakeClientFactory,
	MemoryStore,
	make_config,
	make_plan,
	make_providers,
	planning_response,
	review_response,
)


def make_controller(**kwargs) -> tuple[PhaseController, MemoryStore, list]:
	"""Controller on an in-memory store, with every emitted event recorded."""
	store = MemoryStore()
	controller = PhaseController(store, **kwargs)
	controller.initialize(make_config())
	events = []
	controller.subscribe(events.append)
	return controller, store, events


async def start_implementing(controller: PhaseController, *titles: str):
	"""Start a workflow, plan the given tasks, and move to implementing."""
	await controller.start_workflow("Add user authentication")
	await controller.set_tasks_from_planning_response(
		parse_planning_response(planning_response(*(titles or ("Model", "Endpoint"))))
	)
	await controller.transition_to_phase(WorkflowPhase.IMPLEMENTING)


async def finish_all_tasks(controller: PhaseController):
	while (task := controller.get_next_task()) is not None:
		await controller.start_task(task.id)
		await controller.complete_task(task.id, TaskResult(summary="done"))


class TestLifecycle:
	"""Tests for starting, resuming and aborting workflows."""

	@pytest.mark.asyncio
	async def test_start_creates_planning_plan(self):
		controller, store, events = make_controller()

		plan = await controller.start_workflow("Add caching")

		assert plan.phase == WorkflowPhase.PLANNING
		assert controller.current_plan is plan
		assert controller.current_phase == WorkflowPhase.PLANNING
		assert plan.id in store.plans
		assert [(e.type, e.from_phase, e.to_phase) for e in events] == [
			("phase_changed", WorkflowPhase.IDLE, WorkflowPhase.PLANNING)
		]

	@pytest.mark.asyncio
	async def test_start_without_config_raises(self):
		controller = PhaseController(MemoryStore())

		with pytest.raises(WorkflowNotInitializedError):
			await controller.start_workflow("x")

	@pytest.mark.asyncio
	async def test_start_adopts_existing_plan(self):
		controller, store, _ = make_controller()
		existing = make_plan(phase=WorkflowPhase.PLANNING)

		plan = await controller.start_workflow("ignored", existing_plan=existing)

		assert plan is existing
		assert store.plans[existing.id].original_request == "Add user authentication"

	@pytest.mark.asyncio
	async def test_resume(self):
		controller, store, _ = make_controller()
		saved = make_plan()
		await store.save_workflow(saved)

		plan = await controller.resume_workflow(saved.id)

		assert plan.id == saved.id
		assert controller.current_phase == WorkflowPhase.IMPLEMENTING

	@pytest.mark.asyncio
	async def test_resume_missing(self):
		controller, _, _ = make_controller()

		assert await controller.resume_workflow("plan-missing") is None
		assert controller.current_plan is None
		assert controller.current_phase == WorkflowPhase.IDLE

	@pytest.mark.asyncio
	async def test_abort_keeps_plan_and_resets_running_tasks(self):
		controller, store, events = make_controller()
		await start_implementing(controller)
		plan_id = controller.current_plan.id
		task = controller.get_next_task()
		await controller.start_task(task.id)

		await controller.abort_workflow("user cancelled")

		assert controller.current_plan is None
		assert events[-1].type == "workflow_aborted"
		assert events[-1].reason == "user cancelled"
		stored = store.plans[plan_id]
		assert stored.phase == WorkflowPhase.IDLE
		assert stored.tasks[0].status == TaskStatus.PENDING
		assert stored.tasks[0].attempts == 1

	@pytest.mark.asyncio
	async def test_aborted_plan_is_resumable(self):
		controller, _, _ = make_controller()
		await start_implementing(controller)
		plan_id = controller.current_plan.id
		await controller.abort_workflow("later")

		plan = await controller.resume_workflow(plan_id)

		assert plan.phase == WorkflowPhase.IDLE
		await controller.transition_to_phase(WorkflowPhase.PLANNING)
		assert controller.current_phase == WorkflowPhase.PLANNING

	@pytest.mark.asyncio
	async def test_resume_returns_to_implementation(self):
		controller, _, events = make_controller()
		await start_implementing(controller)
		plan_id = controller.current_plan.id
		await controller.abort_workflow("later")

		await controller.resume_workflow(plan_id)
		await controller.transition_to_phase(WorkflowPhase.IMPLEMENTING)
		await finish_all_tasks(controller)
		await controller.transition_to_phase(WorkflowPhase.REVIEWING)

		assert controller.current_phase == WorkflowPhase.REVIEWING
		phase_changes = [(e.from_phase, e.to_phase) for e in events if e.type == "phase_changed"]
		assert phase_changes[-2:] == [
			(WorkflowPhase.IDLE, WorkflowPhase.IMPLEMENTING),
			(WorkflowPhase.IMPLEMENTING, WorkflowPhase.REVIEWING),
		]
		assert (WorkflowPhase.IDLE, WorkflowPhase.PLANNING) not in phase_changes[1:]

	@pytest.mark.asyncio
	async def test_idle_plan_cannot_jump_to_complete(self):
		controller, _, _ = make_controller()
		await start_implementing(controller)
		plan_id = controller.current_plan.id
		await controller.abort_workflow("later")
		await controller.resume_workflow(plan_id)

		with pytest.raises(InvalidTransitionError):
			await controller.transition_to_phase(WorkflowPhase.COMPLETE)

	@pytest.mark.asyncio
	async def test_abort_without_plan_is_noop(self):
		controller, _, events = make_controller()

		await controller.abort_workflow("nothing")

		assert events == []


class TestTransitions:
	"""Tests for phase changes."""

	@pytest.mark.asyncio
	async def test_transition_persists_and_emits(self):
		controller, store, events = make_controller()
		plan = await controller.start_workflow("x")

		await controller.transition_to_phase(WorkflowPhase.PLAN_REVIEW)

		assert store.plans[plan.id].phase == WorkflowPhase.PLAN_REVIEW
		assert events[-1].from_phase == WorkflowPhase.PLANNING
		assert events[-1].to_phase == WorkflowPhase.PLAN_REVIEW

	@pytest.mark.asyncio
	async def test_illegal_transition_rejected(self):
		controller, store, events = make_controller()
		plan = await controller.start_workflow("x")

		with pytest.raises(InvalidTransitionError):
			await controller.transition_to_phase(WorkflowPhase.COMPLETE)

		assert plan.phase == WorkflowPhase.PLANNING
		assert len(events) == 1

	@pytest.mark.asyncio
	async def test_permissive_mode_allows_any_transition(self):
		controller, _, _ = make_controller(enforce_transitions=False)
		await controller.start_workflow("x")

		await controller.transition_to_phase(WorkflowPhase.COMPLETE)

		assert controller.current_phase == WorkflowPhase.COMPLETE

	@pytest.mark.asyncio
	async def test_transition_without_plan(self):
		controller, _, _ = make_controller()

		with pytest.raises(NoActiveWorkflowError, match="No active workflow"):
			await controller.transition_to_phase(WorkflowPhase.PLANNING)

	@pytest.mark.asyncio
	async def test_client_for_phase(self):
		router = await create_client_router(make_config(), make_providers(), FakeClientFactory())
		controller, _, _ = make_controller(router=router)
		await controller.start_workflow("x")

		planner = controller.get_client_for_phase()
		assert planner is router.get_client(ClientRole.PLANNER)
		assert controller.get_client_for_phase(WorkflowPhase.REVISION) is router.get_client(ClientRole.CODER)
		assert router.get_active_role() == ClientRole.CODER
		assert controller.get_client_for_phase(WorkflowPhase.COMPLETE) is None

	def test_client_for_phase_without_router(self):
		controller, _, _ = make_controller()

		assert controller.get_client_for_phase(WorkflowPhase.PLANNING) is None


class TestTasks:
	"""Tests for the task lifecycle."""

	@pytest.mark.asyncio
	async def test_set_tasks_from_planning_response(self):
		controller, store, _ = make_controller()
		plan = await controller.start_workflow("x")

		await controller.set_tasks_from_planning_response(
			parse_planning_response(planning_response("A", "B", "C"))
		)

		assert [t.id for t in plan.tasks] == ["task-1", "task-2", "task-3"]
		assert plan.context.codebase_notes == "FastAPI app"
		assert len(store.plans[plan.id].tasks) == 3

	@pytest.mark.asyncio
	async def test_set_tasks_from_failed_parse_raises(self):
		controller, _, _ = make_controller()
		await controller.start_workflow("x")

		with pytest.raises(PlanParseError, match="No JSON found"):
			await controller.set_tasks_from_planning_response(parse_planning_response("nothing"))

	@pytest.mark.asyncio
	async def test_set_tasks_keeps_context_when_absent(self):
		controller, _, _ = make_controller()
		plan = await controller.start_workflow("x")
		plan.context.codebase_notes = "kept"

		await controller.set_tasks_from_planning_response(ParsedPlan(success=True, tasks=[]))

		assert plan.context.codebase_notes == "kept"

	@pytest.mark.asyncio
	async def test_dependency_order_through_controller(self):
		controller, _, events = make_controller()
		await start_implementing(controller)

		order = []
		while (task := controller.get_next_task()) is not None:
			order.append(task.id)
			await controller.start_task(task.id)
			await controller.complete_task(task.id, TaskResult(summary="ok", files_modified=["a.py"]))

		assert order == ["task-1", "task-2"]
		assert controller.are_all_tasks_complete()
		assert [e.type for e in events if e.type.startswith("task_")] == [
			"task_started", "task_completed", "task_started", "task_completed"
		]

	@pytest.mark.asyncio
	async def test_start_task_tracks_attempts_and_index(self):
		controller, _, _ = make_controller()
		await start_implementing(controller, "A", "B")
		plan = controller.current_plan

		await controller.start_task("task-1")
		await controller.complete_task("task-1", TaskResult())
		task = await controller.start_task("task-2")

		assert task.status == TaskStatus.IN_PROGRESS
		assert task.attempts == 1
		assert plan.current_task_index == 1

	@pytest.mark.asyncio
	async def test_start_unknown_task_returns_none(self):
		controller, _, events = make_controller()
		await start_implementing(controller)
		count = len(events)

		assert await controller.start_task("task-99") is None
		assert len(events) == count

	@pytest.mark.asyncio
	async def test_complete_unknown_task_raises(self):
		controller, _, _ = make_controller()
		await start_implementing(controller)

		with pytest.raises(TaskNotFoundError):
			await controller.complete_task("task-99", TaskResult())

	@pytest.mark.asyncio
	async def test_complete_without_plan_raises(self):
		controller, _, _ = make_controller()

		with pytest.raises(NoActiveWorkflowError):
			await controller.complete_task("task-1", TaskResult())

	@pytest.mark.asyncio
	async def test_fail_task(self):
		controller, _, events = make_controller()
		await start_implementing(controller)
		await controller.start_task("task-1")

		await controller.fail_task("task-1", "tests broke")

		task = controller.current_plan.get_task("task-1")
		assert task.status == TaskStatus.FAILED
		assert task.result.summary == "Failed: tests broke"
		assert task.result.issues == ["tests broke"]
		assert events[-1].type == "task_failed"
		assert events[-1].error == "tests broke"
		assert controller.get_next_task() is None
		assert not controller.are_all_tasks_complete()

	@pytest.mark.asyncio
	async def test_skipped_counts_as_complete(self):
		controller, _, _ = make_controller()
		await start_implementing(controller, "A")
		controller.current_plan.tasks[0].status = TaskStatus.SKIPPED

		assert controller.are_all_tasks_complete()

	@pytest.mark.asyncio
	async def test_concurrent_task_updates_are_serialized(self):
		controller, store, _ = make_controller()
		await start_implementing(controller, "A")
		controller.current_plan.tasks.append(
			controller.current_plan.tasks[0].model_copy(update={"id": "task-x"})
		)

		await asyncio.gather(
			controller.start_task("task-1"),
			controller.start_task("task-x"),
		)

		stored = store.plans[controller.current_plan.id]
		assert all(t.status == TaskStatus.IN_PROGRESS for t in stored.tasks)


class TestReview:
	"""Tests for applying review results."""

	@pytest.mark.asyncio
	async def test_approval_completes_workflow(self):
		controller, store, events = make_controller()
		await start_implementing(controller)
		await finish_all_tasks(controller)
		await controller.transition_to_phase(WorkflowPhase.REVIEWING)
		events.clear()

		await controller.process_review_result(parse_review_response(review_response(True)))

		assert controller.current_phase == WorkflowPhase.COMPLETE
		types = [e.type for e in events]
		assert types.count("review_completed") == 1
		assert types.count("workflow_completed") == 1
		assert types.index("review_completed") < types.index("workflow_completed")
		assert store.plans[controller.current_plan.id].phase == WorkflowPhase.COMPLETE

	@pytest.mark.asyncio
	async def test_rejection_requests_revision(self):
		controller, store, events = make_controller()
		await start_implementing(controller)
		await finish_all_tasks(controller)
		await controller.transition_to_phase(WorkflowPhase.REVIEWING)
		events.clear()

		await controller.process_review_result(
			parse_review_response(review_response(False, failing=["task-1"]))
		)

		plan = controller.current_plan
		task = plan.get_task("task-1")
		assert task.status == TaskStatus.NEEDS_REVISION
		assert task.revision_notes == "task-1 has no tests"
		assert plan.get_task("task-2").status == TaskStatus.COMPLETED
		assert len(plan.revision_history) == 1
		assert plan.revision_history[0].tasks_affected == ["task-1"]
		assert plan.revision_history[0].review_feedback == "Needs work"
		assert plan.revision_history[0].resolved is False
		assert plan.metadata.total_revisions == 1
		assert controller.current_phase == WorkflowPhase.REVISION
		assert [e.type for e in events] == ["review_completed", "revision_requested", "phase_changed"]
		assert store.plans[plan.id].phase == WorkflowPhase.REVISION

	@pytest.mark.asyncio
	async def test_revision_tasks_appended(self):
		controller, _, _ = make_controller()
		await start_implementing(controller)
		await finish_all_tasks(controller)
		await controller.transition_to_phase(WorkflowPhase.REVIEWING)
		content = review_response(
			False,
			revisionTasks=[
				{"id": "task-3", "title": "Add tests", "dependencies": ["task-2"]},
				{"title": "No id"},
				{"id": "task-1", "title": "Duplicate"},
			],
		)

		await controller.process_review_result(parse_review_response(content))

		plan = controller.current_plan
		assert [t.id for t in plan.tasks] == ["task-1", "task-2", "task-3"]
		added = plan.get_task("task-3")
		assert added.status == TaskStatus.PENDING
		assert added.priority == TaskPriority.HIGH
		assert added.dependencies == ["task-2"]
		assert added.acceptance_criteria == []

	@pytest.mark.asyncio
	async def test_max_revisions_is_advisory(self, caplog):
		controller, _, _ = make_controller(enforce_transitions=False)
		await start_implementing(controller)
		controller.current_plan.metadata.max_revisions = 1

		with caplog.at_level("WARNING"):
			await controller.process_review_result(parse_review_response(review_response(False)))

		assert controller.current_phase == WorkflowPhase.REVISION
		assert "Max revisions reached" in caplog.text

		await controller.process_review_result(parse_review_response(review_response(False)))
		assert controller.current_plan.metadata.total_revisions == 2

	@pytest.mark.asyncio
	async def test_review_in_wrong_phase_changes_nothing(self):
		controller, _, events = make_controller()
		await start_implementing(controller)
		count = len(events)

		with pytest.raises(InvalidTransitionError):
			await controller.process_review_result(parse_review_response(review_response(False)))

		assert controller.current_plan.metadata.total_revisions == 0
		assert len(events) == count

	@pytest.mark.asyncio
	async def test_failed_review_parse_raises(self):
		controller, _, _ = make_controller()
		await start_implementing(controller)

		with pytest.raises(PlanParseError):
			await controller.process_review_result(ParsedReview(success=False, error="bad"))

	@pytest.mark.asyncio
	async def test_reopen_revision_tasks(self):
		controller, _, _ = make_controller()
		await start_implementing(controller)
		await finish_all_tasks(controller)
		await controller.transition_to_phase(WorkflowPhase.REVIEWING)
		await controller.process_review_result(
			parse_review_response(review_response(False, failing=["task-2"]))
		)

		reopened = await controller.reopen_revision_tasks()

		assert [t.id for t in reopened] == ["task-2"]
		task = controller.get_next_task()
		assert task.id == "task-2"
		assert task.revision_notes == "task-2 has no tests"


class TestUIState:
	def test_idle_state(self):
		controller, _, _ = make_controller()

		state = controller.get_ui_state()

		assert state.phase == WorkflowPhase.IDLE
		assert state.plan_id is None
		assert state.tasks.total == 0

	@pytest.mark.asyncio
	async def test_state_during_implementation(self):
		controller, _, _ = make_controller()
		await start_implementing(controller, "A", "B", "C")
		await controller.start_task("task-1")
		await controller.complete_task("task-1", TaskResult())
		await controller.start_task("task-2")

		state = controller.get_ui_state()

		assert state.phase == WorkflowPhase.IMPLEMENTING
		assert state.plan_id == controller.current_plan.id
		assert (state.tasks.total, state.tasks.completed, state.tasks.pending) == (3, 1, 2)
		assert state.current_task.id == "task-2"
		assert state.revision_count == 0
		assert state.last_review is None
		assert state.is_transitioning is False

	@pytest.mark.asyncio
	async def test_transitioning_visible_to_phase_listeners(self):
		controller, _, _ = make_controller()
		await controller.start_workflow("x")
		seen = []
		controller.subscribe(
			lambda e: seen.append(controller.get_ui_state().is_transitioning) if e.type == "phase_changed" else None
		)

		await controller.transition_to_phase(WorkflowPhase.PLAN_REVIEW)

		assert seen == [True]
		assert controller.get_ui_state().is_transitioning is False


class TestStaticParsers:
	def test_delegates_to_parsing(self):
		parsed = PhaseController.parse_planning_response('{"tasks":[{"title":"Add auth"}]}')
		review = PhaseController.parse_review_response('{"approved": true}')

		assert parsed.tasks[0].id == "task-1"
		assert review.review.approved is True
