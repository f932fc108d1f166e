"""
Workflow Runner - drives a PhaseController end to end against model clients.

The controller owns state; the runner owns conversations. For each phase
it picks the acting client, keeps one message history per role, prunes
that history against the client's context window, and feeds the model's
answer back into the controller.
"""

import logging
from dataclasses import dataclass
from typing import Awaitable, Callable, Optional

from ..clients.router import ClientRole, ClientRouter
from ..context.budget import (
	ContextBudgetManager,
	ContextBudgetSettings,
	TokenCounter,
	WarningLatch,
	estimate_message_tokens,
)
from ..plans.models import ExecutionPlan, WorkflowConfig, WorkflowPhase
from .controller import PhaseController, WorkflowError
from .parsing import (
	ParsedPlan,
	ParsedReview,
	parse_planning_response,
	parse_review_response,
	parse_task_result,
)
from .phases import role_for_phase
from .prompts import build_coding_prompt, build_planning_prompt, build_review_prompt

logger = logging.getLogger(__name__)

DiffProvider = Callable[[], Awaitable[str]]


@dataclass
class RunOutcome:
	"""How a run() call ended."""
	plan: Optional[ExecutionPlan]
	phase: WorkflowPhase
	approved: bool
	stop_reason: str  # approved, plan_review, planning_failed, stalled, review_failed, max_revisions
	error: Optional[str] = None


class WorkflowRunner:
	"""
	Runs plan -> implement -> review cycles for the controller's workflow.

	Args:
		controller: The phase controller holding the plan
		router: Client router (defaults to the controller's)
		budget_settings: Context thresholds used for every chat turn
		token_counter: Per-message token counter
		diff_provider: Async callable returning the diff shown to the reviewer
	"""

	def __init__(
		self,
		controller: PhaseController,
		router: Optional[ClientRouter] = None,
		budget_settings: Optional[ContextBudgetSettings] = None,
		token_counter: TokenCounter = estimate_message_tokens,
		diff_provider: Optional[DiffProvider] = None,
	):
		self.controller = controller
		self.router = router or controller.router
		self.budget_settings = budget_settings or ContextBudgetSettings()
		self.token_counter = token_counter
		self.diff_provider = diff_provider

		self.warning_latch = WarningLatch()
		self._histories: dict[ClientRole, list[dict]] = {}

		if self.controller.router is None and self.router is not None:
			self.controller.router = self.router

	def history(self, role: ClientRole) -> list[dict]:
		"""Conversation history (without system prompt) kept for a role."""
		return self._histories.setdefault(role, [])

	async def _chat(self, phase: WorkflowPhase, system_prompt: str, user_message: str) -> str:
		client = self.controller.get_client_for_phase(phase)
		role = role_for_phase(phase)
		if client is None or role is None:
			raise WorkflowError(f"No client available for phase '{phase.value}'")

		messages = [
			{"role": "system", "content": system_prompt},
			*self.history(role),
			{"role": "user", "content": user_message},
		]

		budget = ContextBudgetManager(client.get_context_size(), self.token_counter, self.budget_settings)
		usage = budget.usage(messages)
		if self.warning_latch.should_show(usage):
			logger.warning(f"Context usage high for {role.value}: {usage.display_string} ({usage.percent_used}%)")
			self.warning_latch.mark_shown()

		pruned = budget.prune(messages)
		if pruned.pruned:
			messages = pruned.messages
			logger.info(f"Pruned {pruned.removed_count} messages from {role.value} history")

		response = await client.chat(messages)
		content = response["choices"][0]["message"].get("content") or ""

		# Committed only after a successful reply
		self._histories[role] = [
			*(m for m in messages if m.get("role") != "system"),
			{"role": "assistant", "content": content},
		]
		return content

	async def plan(self, request: str, config: Optional[WorkflowConfig] = None) -> ParsedPlan:
		"""
		Start a workflow and ask the planner for its tasks.

		On success the plan moves to plan_review, or straight to
		implementing when the config has auto_advance set. On a parse
		failure the plan stays in planning.
		"""
		plan = await self.controller.start_workflow(request, config)

		content = await self._chat(WorkflowPhase.PLANNING, build_planning_prompt(), request)
		parsed = parse_planning_response(content)
		if not parsed.success:
			logger.warning(f"Planning response for {plan.id} rejected: {parsed.error}")
			return parsed

		await self.controller.set_tasks_from_planning_response(parsed)

		auto_advance = self.controller.config is not None and self.controller.config.auto_advance
		if auto_advance:
			await self.controller.transition_to_phase(WorkflowPhase.IMPLEMENTING)
		else:
			await self.controller.transition_to_phase(WorkflowPhase.PLAN_REVIEW)
		return parsed

	async def approve_plan(self) -> None:
		"""Accept a plan waiting in plan_review and start implementing it."""
		await self.controller.transition_to_phase(WorkflowPhase.IMPLEMENTING)

	async def implement(self) -> bool:
		"""
		Run every runnable task through the coder.

		A task whose chat call raises is marked failed and the loop moves
		on. Returns True (and moves to reviewing) once all tasks are
		complete, False if work stalled on failed or blocked tasks.
		"""
		plan = self.controller.current_plan
		if plan is None:
			raise WorkflowError("No active workflow")

		if plan.phase == WorkflowPhase.REVISION:
			await self.controller.reopen_revision_tasks()
			await self.controller.transition_to_phase(WorkflowPhase.IMPLEMENTING)

		while (task := self.controller.get_next_task()) is not None:
			await self.controller.start_task(task.id)
			try:
				content = await self._chat(
					WorkflowPhase.IMPLEMENTING,
					build_coding_prompt(task, plan),
					f"Implement {task.id}: {task.title}",
				)
			except Exception as e:
				logger.error(f"Task {task.id} failed: {e}")
				await self.controller.fail_task(task.id, str(e))
				continue

			await self.controller.complete_task(task.id, parse_task_result(content))

		if not self.controller.are_all_tasks_complete():
			progress = self.controller.get_progress()
			logger.warning(
				f"Implementation stalled for {plan.id}: "
				f"{progress['completed']}/{progress['total']} complete, {progress['failed']} failed"
			)
			return False

		await self.controller.transition_to_phase(WorkflowPhase.REVIEWING)
		return True

	async def review(self) -> ParsedReview:
		"""Ask the reviewer to judge the implementation and apply the verdict."""
		plan = self.controller.current_plan
		if plan is None:
			raise WorkflowError("No active workflow")

		diff = await self.diff_provider() if self.diff_provider else None
		content = await self._chat(
			WorkflowPhase.REVIEWING,
			build_review_prompt(plan, diff),
			"Review the implementation against the plan.",
		)

		parsed = parse_review_response(content)
		if not parsed.success:
			logger.warning(f"Review response for {plan.id} rejected: {parsed.error}")
			return parsed

		await self.controller.process_review_result(parsed)
		return parsed

	async def run(
		self,
		request: str,
		config: Optional[WorkflowConfig] = None,
		approve_plan: bool = True,
	) -> RunOutcome:
		"""
		Plan, implement and review until the work is approved or cannot go on.

		Args:
			request: The user's request
			config: Workflow config (defaults to the controller's)
			approve_plan: Accept the plan without stopping in plan_review
		"""
		parsed_plan = await self.plan(request, config)
		if not parsed_plan.success:
			return self._outcome("planning_failed", parsed_plan.error)

		if self.controller.current_phase == WorkflowPhase.PLAN_REVIEW:
			if not approve_plan:
				return self._outcome("plan_review")
			await self.approve_plan()

		while True:
			if not await self.implement():
				return self._outcome("stalled")

			parsed_review = await self.review()
			if not parsed_review.success:
				return self._outcome("review_failed", parsed_review.error)

			if self.controller.current_phase == WorkflowPhase.COMPLETE:
				return self._outcome("approved")

			metadata = self.controller.current_plan.metadata
			if metadata.total_revisions >= metadata.max_revisions:
				return self._outcome("max_revisions")

	def _outcome(self, stop_reason: str, error: Optional[str] = None) -> RunOutcome:
		plan = self.controller.current_plan
		outcome = RunOutcome(
			plan=plan,
			phase=self.controller.current_phase,
			approved=self.controller.current_phase == WorkflowPhase.COMPLETE,
			stop_reason=stop_reason,
			error=error,
		)
		logger.info(f"Workflow run finished: {stop_reason} (phase={outcome.phase.value})")
		return outcome

	async def reset(self) -> None:
		"""Forget all conversations, on our side and in the clients."""
		self._histories.clear()
		self.warning_latch.reset()
		if self.router is not None:
			await self.router.clear_all_contexts()
