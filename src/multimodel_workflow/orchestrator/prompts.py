"""System prompts for the planner, coder and reviewer roles."""

import json
from typing import Optional

from ..plans.models import ExecutionPlan, TaskDefinition

NO_DIFF_PLACEHOLDER = "[No diff available]"


def _json_block(data) -> list[str]:
	return ["```json", json.dumps(data, indent=2), "```"]


def build_planning_prompt(request: Optional[str] = None) -> str:
	"""Build the planner's prompt: break the request into dependency-ordered tasks."""
	lines = [
		"# Planning Mode",
		"",
		"You are a software architect. Break the user's request into small,"
		" independently verifiable implementation tasks.",
		"",
	]

	if request:
		lines.extend(["## Request", request, ""])

	lines.extend([
		"## Output Format",
		"",
		"Respond with one JSON object in the following format:",
		"",
		"```json",
		"{",
		'  "tasks": [',
		"    {",
		'      "id": "task-1",',
		'      "title": "Short imperative title",',
		'      "description": "What to change and why",',
		'      "acceptanceCriteria": ["Observable condition"],',
		'      "targetFiles": ["path/to/file.py"],',
		'      "approach": "How to implement it",',
		'      "dependencies": ["ids of tasks that must finish first"],',
		'      "priority": "critical | high | medium | low"',
		"    }",
		"  ],",
		'  "context": {',
		'    "relevantFiles": ["path/to/file.py"],',
		'    "codebaseNotes": "string",',
		'    "existingPatterns": ["string"],',
		'    "potentialRisks": ["string"]',
		"  }",
		"}",
		"```",
		"",
		"IMPORTANT:",
		"- Dependencies may only reference ids of other tasks in the same plan",
		"- Dependencies must not form a cycle",
		"- Every task needs acceptance criteria a reviewer can check",
	])
	return "\n".join(lines)


def build_coding_prompt(task: TaskDefinition, plan: Optional[ExecutionPlan] = None) -> str:
	"""Build the coder's prompt for one task, with revision notes when reopened."""
	lines = [
		"# Implementation Mode",
		"",
		"Implement exactly the task below. Do not work on other tasks.",
		"",
		"## Task",
		"",
		*_json_block(task.model_dump(mode="json", exclude={"result", "attempts", "status"})),
		"",
	]

	if task.revision_notes:
		lines.extend(["## Reviewer Notes From The Previous Attempt", task.revision_notes, ""])

	if plan and plan.context.codebase_notes:
		lines.extend(["## Codebase Notes", plan.context.codebase_notes, ""])

	lines.extend([
		"## Output Format",
		"",
		"When done, respond with a JSON summary of your work:",
		"",
		"```json",
		"{",
		'  "summary": "What was done",',
		'  "filesModified": ["path"],',
		'  "filesCreated": ["path"],',
		'  "filesDeleted": ["path"],',
		'  "issues": ["Anything left unresolved"]',
		"}",
		"```",
	])
	return "\n".join(lines)


def build_review_prompt(plan: ExecutionPlan, diff: Optional[str] = None) -> str:
	"""Build the reviewer's prompt from the original request, the plan, and a diff."""
	lines = [
		"# Review Mode",
		"",
		"You are a code reviewer. Check every task against its acceptance criteria.",
		"",
		"## Original Request",
		plan.original_request,
		"",
		"## Plan",
		"",
		*_json_block(plan.model_dump(mode="json", include={"tasks", "context"})),
		"",
		"## Changes",
		"",
		"```diff",
		diff or NO_DIFF_PLACEHOLDER,
		"```",
		"",
		"## Output Format",
		"",
		"Respond with one JSON object in the following format:",
		"",
		"```json",
		"{",
		'  "approved": true,',
		'  "overallFeedback": "string",',
		'  "taskFeedback": [',
		"    {",
		'      "taskId": "task-1",',
		'      "passed": true,',
		'      "criteriaResults": [{"criterion": "string", "met": true, "notes": "string"}],',
		'      "issues": ["string"],',
		'      "suggestions": ["string"],',
		'      "severity": "blocking | warning | info"',
		"    }",
		"  ],",
		'  "criticalIssues": ["string"],',
		'  "revisionTasks": [{"id": "task-N", "title": "string", "description": "string"}],',
		'  "qualityScore": 85',
		"}",
		"```",
		"",
		"IMPORTANT:",
		"- Set approved to false if any task has a blocking issue",
		"- Only add revisionTasks for work no existing task covers",
	]
	return "\n".join(lines)
