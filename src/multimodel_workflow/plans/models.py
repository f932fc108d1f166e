"""
Plan Models - Pydantic schemas for the planning/coding/review workflow.

An ExecutionPlan is the single persisted aggregate of one workflow run:
the original request, the task list produced by the planner, the phase
the workflow is in, and the history of review rejections.
"""

import uuid
from datetime import datetime
from enum import Enum
from typing import Any, Optional

from pydantic import BaseModel, Field


class WorkflowPhase(str, Enum):
	"""Macro-state of a workflow."""
	IDLE = "idle"
	PLANNING = "planning"
	PLAN_REVIEW = "plan_review"
	IMPLEMENTING = "implementing"
	REVIEWING = "reviewing"
	REVISION = "revision"
	COMPLETE = "complete"


class TaskStatus(str, Enum):
	"""Status of a task within a plan."""
	PENDING = "pending"
	IN_PROGRESS = "in_progress"
	COMPLETED = "completed"
	FAILED = "failed"
	NEEDS_REVISION = "needs_revision"
	SKIPPED = "skipped"


class TaskPriority(str, Enum):
	CRITICAL = "critical"
	HIGH = "high"
	MEDIUM = "medium"
	LOW = "low"


class TaskComplexity(str, Enum):
	TRIVIAL = "trivial"
	SIMPLE = "simple"
	MODERATE = "moderate"
	COMPLEX = "complex"


class ReviewSeverity(str, Enum):
	BLOCKING = "blocking"
	WARNING = "warning"
	INFO = "info"


class RevisionPhase(str, Enum):
	"""Which part of the workflow a revision entry pertains to."""
	PLANNING = "planning"
	IMPLEMENTATION = "implementation"


class TaskResult(BaseModel):
	"""Outcome of executing a single task."""
	files_modified: list[str] = Field(default_factory=list)
	files_created: list[str] = Field(default_factory=list)
	files_deleted: list[str] = Field(default_factory=list)
	summary: str = Field(default="")
	issues: Optional[list[str]] = Field(default=None)
	checkpoint_id: Optional[str] = Field(default=None, description="Checkpoint reference, if one was taken")


class TaskDefinition(BaseModel):
	"""A single unit of work produced by the planner."""
	id: str = Field(description="Unique task identifier within the plan")
	title: str = Field(description="Short task title")
	description: str = Field(default="")
	acceptance_criteria: list[str] = Field(default_factory=list)
	target_files: list[str] = Field(default_factory=list)
	approach: str = Field(default="")
	dependencies: list[str] = Field(default_factory=list, description="Task IDs that must complete first")
	priority: TaskPriority = Field(default=TaskPriority.MEDIUM)
	status: TaskStatus = Field(default=TaskStatus.PENDING)
	estimated_complexity: Optional[TaskComplexity] = Field(default=None)
	result: Optional[TaskResult] = Field(default=None)
	revision_notes: Optional[str] = Field(default=None)
	attempts: int = Field(default=0, description="Incremented each time work starts")


class PlanContext(BaseModel):
	"""Free-form notes gathered during planning."""
	relevant_files: list[str] = Field(default_factory=list)
	codebase_notes: str = Field(default="")
	existing_patterns: list[str] = Field(default_factory=list)
	potential_risks: list[str] = Field(default_factory=list)


class RevisionEntry(BaseModel):
	"""A recorded review rejection, pairing feedback with the tasks it affects."""
	id: str
	timestamp: str = Field(default_factory=lambda: datetime.now().isoformat())
	phase: RevisionPhase = Field(default=RevisionPhase.IMPLEMENTATION)
	review_feedback: str = Field(default="")
	tasks_affected: list[str] = Field(default_factory=list)
	changes: list[str] = Field(default_factory=list)
	resolved: bool = Field(default=False)


class CriterionResult(BaseModel):
	criterion: str = Field(default="")
	met: bool = Field(default=False)
	notes: Optional[str] = Field(default=None)


class TaskReviewFeedback(BaseModel):
	"""Reviewer verdict for one task."""
	task_id: str = Field(default="")
	passed: bool = Field(default=False)
	criteria_results: list[CriterionResult] = Field(default_factory=list)
	issues: list[str] = Field(default_factory=list)
	suggestions: list[str] = Field(default_factory=list)
	severity: ReviewSeverity = Field(default=ReviewSeverity.INFO)


class ReviewResult(BaseModel):
	"""Result of a review pass over the whole plan."""
	approved: bool
	overall_feedback: str = Field(default="")
	task_feedback: list[TaskReviewFeedback] = Field(default_factory=list)
	critical_issues: list[str] = Field(default_factory=list)
	revision_tasks: list[dict[str, Any]] = Field(
		default_factory=list,
		description="Partial task definitions to append to the plan",
	)
	quality_score: Optional[float] = Field(default=None, ge=0, le=100)


class PlanMetadata(BaseModel):
	planning_model: str = Field(default="")
	coding_model: str = Field(default="")
	review_model: str = Field(default="")
	total_revisions: int = Field(default=0)
	max_revisions: int = Field(default=3)


class ModelSelection(BaseModel):
	"""A provider/model pair bound to one workflow role."""
	provider: str
	model: str

	def qualified_name(self) -> str:
		return f"{self.provider}/{self.model}"


class WorkflowConfig(BaseModel):
	"""Workflow configuration, normally read from the [workflow] table of config.toml."""
	planning_model: ModelSelection
	coding_model: ModelSelection
	review_model: ModelSelection
	auto_advance: bool = Field(default=False, description="Proceed between phases without confirmation")
	max_revisions: int = Field(default=3, ge=0, description="Revision cycles before human intervention")
	review_per_task: bool = Field(default=False)
	checkpoint_per_task: bool = Field(default=False)
	parallel_tasks: bool = Field(default=False, description="Accepted but not acted upon")


class ExecutionPlan(BaseModel):
	"""
	The complete execution plan for one workflow run.

	Owned by the PhaseController while the workflow is active and
	persisted as a single unit.
	"""
	id: str = Field(description="Unique plan identifier")
	version: int = Field(default=1)
	original_request: str = Field(default="")

	# Timestamps
	created_at: str = Field(default_factory=lambda: datetime.now().isoformat())
	updated_at: str = Field(default_factory=lambda: datetime.now().isoformat())

	phase: WorkflowPhase = Field(default=WorkflowPhase.PLANNING)
	tasks: list[TaskDefinition] = Field(default_factory=list)
	context: PlanContext = Field(default_factory=PlanContext)
	revision_history: list[RevisionEntry] = Field(default_factory=list)
	current_task_index: int = Field(default=0)
	metadata: PlanMetadata = Field(default_factory=PlanMetadata)

	def get_task(self, task_id: str) -> Optional[TaskDefinition]:
		"""Find a task by ID."""
		for task in self.tasks:
			if task.id == task_id:
				return task
		return None

	def touch(self):
		self.updated_at = datetime.now().isoformat()

	def to_markdown(self) -> str:
		"""Convert plan to markdown format."""
		completed = len([t for t in self.tasks if t.status == TaskStatus.COMPLETED])
		lines = [
			f"# {self.original_request.splitlines()[0] if self.original_request else self.id}",
			"",
			f"**Plan:** {self.id}",
			f"**Phase:** {self.phase.value}",
			f"**Progress:** {completed}/{len(self.tasks)} tasks",
			f"**Revisions:** {self.metadata.total_revisions}/{self.metadata.max_revisions}",
			"",
		]

		if self.context.codebase_notes:
			lines.append("## Context")
			lines.append(self.context.codebase_notes)
			lines.append("")

		lines.append("## Tasks")
		for task in self.tasks:
			task_icon = {
				TaskStatus.PENDING: "[ ]",
				TaskStatus.IN_PROGRESS: "[~]",
				TaskStatus.COMPLETED: "[x]",
				TaskStatus.FAILED: "[!]",
				TaskStatus.NEEDS_REVISION: "[?]",
				TaskStatus.SKIPPED: "[-]",
			}.get(task.status, "[ ]")

			lines.append(f"- {task_icon} **{task.id}** {task.title} _({task.priority.value})_")
			if task.dependencies:
				lines.append(f"  - depends on: {', '.join(task.dependencies)}")
			if task.revision_notes:
				lines.append(f"  - revision notes: {task.revision_notes}")
		lines.append("")

		if self.revision_history:
			lines.append("## Revisions")
			for rev in self.revision_history:
				affected = ", ".join(rev.tasks_affected) or "none"
				lines.append(f"### {rev.id} ({rev.timestamp})")
				lines.append(rev.review_feedback or "_No feedback_")
				lines.append(f"**Tasks affected:** {affected}")
				lines.append("")

		return "\n".join(lines)


class WorkflowSummary(BaseModel):
	"""Summary of a saved workflow for listing."""
	id: str
	original_request: str
	phase: WorkflowPhase
	created_at: str
	updated_at: str
	task_count: int
	completed_tasks: int
	size_bytes: int


class TaskCounts(BaseModel):
	total: int = 0
	completed: int = 0
	failed: int = 0
	pending: int = 0


class WorkflowUIState(BaseModel):
	"""State snapshot for observers rendering workflow progress."""
	phase: WorkflowPhase = WorkflowPhase.IDLE
	plan_id: Optional[str] = None
	tasks: TaskCounts = Field(default_factory=TaskCounts)
	current_task: Optional[TaskDefinition] = None
	last_review: Optional[ReviewResult] = None
	revision_count: int = 0
	is_transitioning: bool = False


def new_plan_id() -> str:
	return f"plan-{datetime.now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:6]}"


def new_revision_id() -> str:
	return f"rev-{datetime.now().strftime('%Y%m%d-%H%M%S')}-{uuid.uuid4().hex[:4]}"


def create_task(task_id: str, title: str, **fields: Any) -> TaskDefinition:
	"""Create a task definition with the standard defaults."""
	return TaskDefinition(id=task_id, title=title, **fields)


def create_plan(request: str, config: WorkflowConfig) -> ExecutionPlan:
	"""Create a fresh plan in the planning phase for a user request."""
	return ExecutionPlan(
		id=new_plan_id(),
		original_request=request,
		phase=WorkflowPhase.PLANNING,
		metadata=PlanMetadata(
			planning_model=config.planning_model.qualified_name(),
			coding_model=config.coding_model.qualified_name(),
			review_model=config.review_model.qualified_name(),
			max_revisions=config.max_revisions,
		),
	)
