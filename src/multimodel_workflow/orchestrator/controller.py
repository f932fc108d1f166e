"""
Phase Controller - the workflow state machine.

Drives one ExecutionPlan through planning, implementation and review:

- planning: the planner model's output becomes the task list
- implementing / revision: tasks are handed out in dependency order
- reviewing: the reviewer either approves (complete) or requests a
  revision, which reopens failing tasks and may append new ones

Every mutating call persists the plan before returning and then notifies
the event bus. Calls are serialized on a per-controller lock, so a
controller may be shared by concurrent callers.
"""

import asyncio
import logging
from typing import Optional

from ..clients.router import ClientRouter, LLMClient
from ..plans.graph import calculate_progress, get_next_task
from ..plans.models import (
	ExecutionPlan,
	ReviewResult,
	RevisionEntry,
	RevisionPhase,
	TaskCounts,
	TaskDefinition,
	TaskPriority,
	TaskResult,
	TaskStatus,
	WorkflowConfig,
	WorkflowPhase,
	WorkflowUIState,
	create_plan,
	new_revision_id,
)
from ..plans.store import PersistenceGateway
from .events import (
	EventBus,
	EventCallback,
	PhaseChanged,
	ReviewCompleted,
	RevisionRequested,
	TaskCompleted,
	TaskFailed,
	TaskStarted,
	WorkflowAborted,
	WorkflowCompleted,
)
from .parsing import (
	ParsedPlan,
	ParsedReview,
	normalize_task,
	parse_planning_response,
	parse_review_response,
)
from .phases import is_transition_allowed, role_for_phase

logger = logging.getLogger(__name__)


class WorkflowError(Exception):
	"""Base error for workflow state operations."""
	pass


class NoActiveWorkflowError(WorkflowError):
	"""Raised when a plan-mutating call is made with no plan loaded."""

	def __init__(self, message: str = "No active workflow"):
		super().__init__(message)


class WorkflowNotInitializedError(WorkflowError):
	"""Raised when a workflow is started without a workflow config."""
	pass


class TaskNotFoundError(WorkflowError):
	"""Raised when a task ID is not part of the active plan."""

	def __init__(self, task_id: str):
		self.task_id = task_id
		super().__init__(f"Task '{task_id}' not found")


class InvalidTransitionError(WorkflowError):
	"""Raised when a phase change is not in the transition table."""

	def __init__(self, from_phase: WorkflowPhase, to_phase: WorkflowPhase):
		self.from_phase = from_phase
		self.to_phase = to_phase
		super().__init__(f"Illegal phase transition: {from_phase.value} -> {to_phase.value}")


class PlanParseError(WorkflowError):
	"""Raised when an unsuccessful parse result is applied to the plan."""
	pass


class PhaseController:
	"""
	Owns the active plan and every mutation of it.

	Args:
		store: Persistence gateway the plan is saved to after each change
		router: Client router used to pick the acting model for a phase
		bus: Event bus for observers (a private one is created if omitted)
		enforce_transitions: Reject phase changes outside the transition table
	"""

	def __init__(
		self,
		store: PersistenceGateway,
		router: Optional[ClientRouter] = None,
		bus: Optional[EventBus] = None,
		enforce_transitions: bool = True,
	):
		self.store = store
		self.router = router
		self.bus = bus or EventBus()
		self.enforce_transitions = enforce_transitions

		self._config: Optional[WorkflowConfig] = None
		self._plan: Optional[ExecutionPlan] = None
		self._last_review: Optional[ReviewResult] = None
		self._transitioning = False
		self._lock = asyncio.Lock()

	def initialize(self, config: WorkflowConfig, router: Optional[ClientRouter] = None) -> None:
		"""Record the workflow config (and optionally the client router)."""
		self._config = config
		if router is not None:
			self.router = router
		logger.info(f"Phase controller initialized (router={'yes' if self.router else 'no'})")

	@property
	def config(self) -> Optional[WorkflowConfig]:
		return self._config

	@property
	def current_plan(self) -> Optional[ExecutionPlan]:
		return self._plan

	@property
	def current_phase(self) -> WorkflowPhase:
		return self._plan.phase if self._plan else WorkflowPhase.IDLE

	def subscribe(self, callback: EventCallback):
		"""Subscribe to workflow events. Returns an unsubscribe function."""
		return self.bus.subscribe(callback)

	@staticmethod
	def parse_planning_response(content: str) -> ParsedPlan:
		return parse_planning_response(content)

	@staticmethod
	def parse_review_response(content: str) -> ParsedReview:
		return parse_review_response(content)

	def _require_plan(self) -> ExecutionPlan:
		if self._plan is None:
			raise NoActiveWorkflowError()
		return self._plan

	def _find_task(self, task_id: str) -> TaskDefinition:
		task = self._require_plan().get_task(task_id)
		if task is None:
			raise TaskNotFoundError(task_id)
		return task

	def _check_transition(self, plan: ExecutionPlan, new_phase: WorkflowPhase) -> None:
		if self.enforce_transitions and not is_transition_allowed(plan.phase, new_phase):
			raise InvalidTransitionError(plan.phase, new_phase)

	# ------------------------------------------------------------------
	# Lifecycle
	# ------------------------------------------------------------------

	async def start_workflow(
		self,
		request: str,
		config: Optional[WorkflowConfig] = None,
		existing_plan: Optional[ExecutionPlan] = None,
	) -> ExecutionPlan:
		"""
		Start a new workflow from a user request.

		Args:
			request: The user's request
			config: Workflow config; falls back to the one given to initialize()
			existing_plan: Adopt this plan instead of creating one

		Returns:
			The active ExecutionPlan
		"""
		config = config or self._config
		if config is None:
			raise WorkflowNotInitializedError(
				"Phase controller not initialized. Call initialize() or pass a config."
			)

		async with self._lock:
			self._config = config
			plan = existing_plan or create_plan(request, config)
			self._plan = plan
			self._last_review = None

			await self.store.save_workflow(plan)

			logger.info(f"Workflow started: {plan.id} ({request[:100]!r})")
			self.bus.emit(PhaseChanged(from_phase=WorkflowPhase.IDLE, to_phase=WorkflowPhase.PLANNING))

			return plan

	async def resume_workflow(self, plan_id: str) -> Optional[ExecutionPlan]:
		"""Load a stored plan and make it the active one."""
		async with self._lock:
			plan = await self.store.load_workflow(plan_id)
			if plan is None:
				logger.warning(f"Workflow not found for resume: {plan_id}")
				return None

			self._plan = plan
			self._last_review = None
			progress = calculate_progress(plan)
			logger.info(
				f"Workflow resumed: {plan.id} (phase={plan.phase.value}, "
				f"{progress['completed']}/{progress['total']} tasks)"
			)
			return plan

	async def abort_workflow(self, reason: str) -> None:
		"""
		Abort the active workflow, keeping it stored for a later resume.

		Tasks left in progress go back to pending; their attempt count is kept.
		"""
		async with self._lock:
			plan = self._plan
			if plan is None:
				return

			logger.info(f"Workflow aborted: {plan.id} ({reason})")
			self.bus.emit(WorkflowAborted(reason=reason))

			for task in plan.tasks:
				if task.status == TaskStatus.IN_PROGRESS:
					task.status = TaskStatus.PENDING
					logger.debug(f"Reset interrupted task {task.id} to pending")

			plan.phase = WorkflowPhase.IDLE
			await self.store.save_workflow(plan)

			self._plan = None

	# ------------------------------------------------------------------
	# Phases
	# ------------------------------------------------------------------

	def get_client_for_phase(self, phase: Optional[WorkflowPhase] = None) -> Optional[LLMClient]:
		"""Activate and return the client whose role acts in the given phase."""
		if self.router is None:
			return None

		role = role_for_phase(phase or self.current_phase)
		if role is None:
			return None

		return self.router.switch_to(role)

	async def transition_to_phase(self, new_phase: WorkflowPhase) -> None:
		"""Move the active plan to a new phase."""
		async with self._lock:
			await self._transition(new_phase)

	async def _transition(self, new_phase: WorkflowPhase) -> None:
		plan = self._require_plan()
		self._check_transition(plan, new_phase)

		old_phase = plan.phase
		self._transitioning = True
		try:
			plan.phase = new_phase
			plan.touch()

			await self.store.save_workflow(plan)

			# Listeners of phase_changed see is_transitioning=True
			self.bus.emit(PhaseChanged(from_phase=old_phase, to_phase=new_phase))
		finally:
			self._transitioning = False
		logger.info(f"Workflow {plan.id} phase transition: {old_phase.value} -> {new_phase.value}")

	# ------------------------------------------------------------------
	# Tasks
	# ------------------------------------------------------------------

	async def set_tasks_from_planning_response(self, parsed: ParsedPlan) -> None:
		"""Replace the plan's tasks (and context, if given) with a parsed plan."""
		async with self._lock:
			plan = self._require_plan()
			if not parsed.success or parsed.tasks is None:
				raise PlanParseError(parsed.error or "Failed to parse planning response")

			plan.tasks = parsed.tasks
			if parsed.context is not None:
				plan.context = parsed.context

			await self.store.save_workflow(plan)
			logger.info(f"Workflow {plan.id} planned with {len(plan.tasks)} tasks")

	def get_next_task(self) -> Optional[TaskDefinition]:
		if self._plan is None:
			return None
		return get_next_task(self._plan)

	def get_progress(self) -> dict:
		if self._plan is None:
			return {"completed": 0, "failed": 0, "total": 0, "percentage": 0}
		return calculate_progress(self._plan)

	async def start_task(self, task_id: str) -> Optional[TaskDefinition]:
		"""
		Mark a task as in progress.

		Returns:
			The task, or None if there is no active plan or no such task
		"""
		async with self._lock:
			plan = self._plan
			if plan is None:
				return None

			task = plan.get_task(task_id)
			if task is None:
				return None

			task.status = TaskStatus.IN_PROGRESS
			task.attempts += 1
			plan.current_task_index = plan.tasks.index(task)

			await self.store.save_workflow(plan)

			self.bus.emit(TaskStarted(task=task))
			logger.debug(f"Started task {task_id} (attempt {task.attempts})")
			return task

	async def complete_task(self, task_id: str, result: TaskResult) -> None:
		async with self._lock:
			plan = self._require_plan()
			task = self._find_task(task_id)

			task.status = TaskStatus.COMPLETED
			task.result = result

			await self.store.save_workflow(plan)

			self.bus.emit(TaskCompleted(task=task, result=result))
			logger.info(
				f"Task completed: {task_id} in {plan.id} "
				f"({len(result.files_modified)} files modified)"
			)

	async def fail_task(self, task_id: str, error: str) -> None:
		async with self._lock:
			plan = self._require_plan()
			task = self._find_task(task_id)

			task.status = TaskStatus.FAILED
			task.result = TaskResult(summary=f"Failed: {error}", issues=[error])

			await self.store.save_workflow(plan)

			self.bus.emit(TaskFailed(task=task, error=error))
			logger.warning(f"Task failed: {task_id} in {plan.id}: {error}")

	def are_all_tasks_complete(self) -> bool:
		"""True iff every task is completed or skipped."""
		if self._plan is None:
			return False
		return all(
			t.status in (TaskStatus.COMPLETED, TaskStatus.SKIPPED)
			for t in self._plan.tasks
		)

	async def reopen_revision_tasks(self) -> list[TaskDefinition]:
		"""Move tasks marked needs_revision back to pending so they can run again."""
		async with self._lock:
			plan = self._require_plan()
			reopened = [t for t in plan.tasks if t.status == TaskStatus.NEEDS_REVISION]
			if not reopened:
				return []

			for task in reopened:
				task.status = TaskStatus.PENDING

			await self.store.save_workflow(plan)
			logger.info(f"Reopened {len(reopened)} tasks for revision in {plan.id}")
			return reopened

	# ------------------------------------------------------------------
	# Review
	# ------------------------------------------------------------------

	async def process_review_result(self, parsed: ParsedReview) -> None:
		"""
		Apply a parsed review to the plan.

		Approval completes the workflow. Rejection records a revision,
		marks failing tasks for revision, appends any new tasks, and moves
		the workflow to the revision phase. Reaching max_revisions is only
		logged; the workflow keeps going.
		"""
		async with self._lock:
			plan = self._require_plan()
			if not parsed.success or parsed.review is None:
				raise PlanParseError(parsed.error or "Failed to parse review response")

			review = parsed.review
			target = WorkflowPhase.COMPLETE if review.approved else WorkflowPhase.REVISION
			self._check_transition(plan, target)

			self._last_review = review
			self.bus.emit(ReviewCompleted(result=review))

			if review.approved:
				await self._transition(WorkflowPhase.COMPLETE)
				self.bus.emit(WorkflowCompleted(plan=plan))
				logger.info(f"Workflow {plan.id} approved")
				return

			plan.metadata.total_revisions += 1
			if plan.metadata.total_revisions >= plan.metadata.max_revisions:
				logger.warning(
					f"Max revisions reached for {plan.id}: "
					f"{plan.metadata.total_revisions}/{plan.metadata.max_revisions}"
				)

			failing = [tf for tf in review.task_feedback if not tf.passed]
			revision = RevisionEntry(
				id=new_revision_id(),
				phase=RevisionPhase.IMPLEMENTATION,
				review_feedback=review.overall_feedback,
				tasks_affected=[tf.task_id for tf in failing],
			)
			plan.revision_history.append(revision)

			for feedback in failing:
				task = plan.get_task(feedback.task_id)
				if task:
					task.status = TaskStatus.NEEDS_REVISION
					task.revision_notes = "\n".join(feedback.issues)

			for partial in review.revision_tasks:
				if not (partial.get("id") and partial.get("title")):
					continue
				if plan.get_task(str(partial["id"])):
					logger.warning(f"Skipping revision task with duplicate id: {partial['id']}")
					continue
				plan.tasks.append(
					normalize_task(partial, len(plan.tasks) + 1, default_priority=TaskPriority.HIGH)
				)

			await self.store.save_workflow(plan)

			self.bus.emit(RevisionRequested(revision=revision))
			logger.info(
				f"Revision requested for {plan.id}: {len(failing)} tasks affected, "
				f"{len(plan.tasks)} tasks total"
			)

			await self._transition(WorkflowPhase.REVISION)

	# ------------------------------------------------------------------
	# Observers
	# ------------------------------------------------------------------

	def get_ui_state(self) -> WorkflowUIState:
		"""Snapshot of the workflow for display."""
		plan = self._plan
		if plan is None:
			return WorkflowUIState()

		progress = calculate_progress(plan)
		current_task = next((t for t in plan.tasks if t.status == TaskStatus.IN_PROGRESS), None)

		return WorkflowUIState(
			phase=plan.phase,
			plan_id=plan.id,
			tasks=TaskCounts(
				total=progress["total"],
				completed=progress["completed"],
				failed=progress["failed"],
				pending=progress["total"] - progress["completed"] - progress["failed"],
			),
			current_task=current_task,
			last_review=self._last_review,
			revision_count=plan.metadata.total_revisions,
			is_transitioning=self._transitioning,
		)
