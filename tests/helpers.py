"""Shared test fixtures and helpers for multimodel-workflow tests."""

import json
from typing import Optional

from multimodel_workflow.clients.router import ProviderConfig
from multimodel_workflow.plans.models import (
	ExecutionPlan,
	ModelSelection,
	TaskDefinition,
	WorkflowConfig,
	WorkflowPhase,
	WorkflowSummary,
	create_task,
	new_plan_id,
)

PLANNER_MODEL = "planner-model"
CODER_MODEL = "coder-model"
REVIEWER_MODEL = "reviewer-model"


def make_config(provider: str = "local", **overrides) -> WorkflowConfig:
	"""Create a WorkflowConfig with one model per role on a single provider."""
	return WorkflowConfig(
		planning_model=ModelSelection(provider=provider, model=PLANNER_MODEL),
		coding_model=ModelSelection(provider=provider, model=CODER_MODEL),
		review_model=ModelSelection(provider=provider, model=REVIEWER_MODEL),
		**overrides,
	)


def make_providers() -> list[ProviderConfig]:
	return [ProviderConfig(name="local", models=[PLANNER_MODEL, CODER_MODEL, REVIEWER_MODEL])]


def make_plan(
	tasks: Optional[list[TaskDefinition]] = None,
	phase: WorkflowPhase = WorkflowPhase.IMPLEMENTING,
	request: str = "Add user authentication",
) -> ExecutionPlan:
	"""Create a plan with two chained tasks unless tasks are given."""
	if tasks is None:
		tasks = [
			create_task("task-1", "Create user model", target_files=["src/models/user.py"]),
			create_task("task-2", "Add login endpoint", dependencies=["task-1"]),
		]
	return ExecutionPlan(id=new_plan_id(), original_request=request, phase=phase, tasks=tasks)


def planning_response(*titles: str) -> str:
	"""Planner output with a chain of tasks, each depending on the previous one."""
	tasks = []
	for i, title in enumerate(titles, start=1):
		task = {"id": f"task-{i}", "title": title, "acceptanceCriteria": [f"{title} works"]}
		if i > 1:
			task["dependencies"] = [f"task-{i - 1}"]
		tasks.append(task)
	body = json.dumps({"tasks": tasks, "context": {"codebaseNotes": "FastAPI app"}}, indent=2)
	return f"Here is the plan:\n```json\n{body}\n```"


def review_response(approved: bool, failing: Optional[list[str]] = None, **extra) -> str:
	"""Reviewer output approving the work, or failing the given task IDs."""
	feedback = [
		{"taskId": task_id, "passed": False, "issues": [f"{task_id} has no tests"], "severity": "blocking"}
		for task_id in failing or []
	]
	return json.dumps({
		"approved": approved,
		"overallFeedback": "Looks good" if approved else "Needs work",
		"taskFeedback": feedback,
		**extra,
	})


def chat_reply(content: str) -> dict:
	return {"choices": [{"message": {"role": "assistant", "content": content}}]}


class FakeClient:
	"""LLM client that replays scripted responses and records every call."""

	def __init__(self, provider: str, model: str, responses=None, context_size: int = 0):
		self.provider = provider
		self.model = model
		self.responses = list(responses or [])
		self.context_size = context_size
		self.calls: list[list[dict]] = []
		self.cleared = 0
		self.clear_error: Optional[Exception] = None
		self.closed = False

	def set_model(self, model: str) -> None:
		self.model = model

	def get_current_model(self) -> str:
		return self.model

	def get_context_size(self) -> int:
		return self.context_size

	async def clear_context(self) -> None:
		if self.clear_error is not None:
			raise self.clear_error
		self.cleared += 1

	async def chat(self, messages: list[dict], options: Optional[dict] = None) -> dict:
		self.calls.append(list(messages))
		if not self.responses:
			raise RuntimeError(f"No scripted response left for {self.model}")
		response = self.responses.pop(0)
		if isinstance(response, Exception):
			raise response
		return chat_reply(response)

	async def aclose(self) -> None:
		self.closed = True


class FakeClientFactory:
	"""Builds FakeClients, handing each model its own scripted responses."""

	def __init__(self, scripts: Optional[dict[str, list]] = None, context_size: int = 0):
		self.scripts = scripts or {}
		self.context_size = context_size
		self.created: list[FakeClient] = []

	async def __call__(self, provider: ProviderConfig, model: str) -> FakeClient:
		client = FakeClient(provider.name, model, self.scripts.get(model), self.context_size)
		self.created.append(client)
		return client

	def client_for(self, model: str) -> FakeClient:
		return next(c for c in self.created if c.model == model)


class MemoryStore:
	"""In-memory persistence gateway that keeps deep copies of saved plans."""

	def __init__(self):
		self.plans: dict[str, ExecutionPlan] = {}
		self.save_count = 0

	async def save_workflow(self, plan: ExecutionPlan) -> None:
		self.plans[plan.id] = plan.model_copy(deep=True)
		self.save_count += 1

	async def load_workflow(self, plan_id: str) -> Optional[ExecutionPlan]:
		plan = self.plans.get(plan_id)
		return plan.model_copy(deep=True) if plan else None

	async def list_workflows(self) -> list[WorkflowSummary]:
		return [
			WorkflowSummary(
				id=p.id,
				original_request=p.original_request,
				phase=p.phase,
				created_at=p.created_at,
				updated_at=p.updated_at,
				task_count=len(p.tasks),
				completed_tasks=0,
				size_bytes=0,
			)
			for p in self.plans.values()
		]

	async def delete_workflow(self, plan_id: str) -> bool:
		return self.plans.pop(plan_id, None) is not None
