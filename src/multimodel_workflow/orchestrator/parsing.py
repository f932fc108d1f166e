"""
Parsing of free-text model output into plans, reviews and task results.

Model output is untyped text that should contain one JSON object. The
object is located by preferring a ```json fenced block and otherwise
scanning for the first balanced {...} span (string and escape aware).
Parsers never raise: failures come back as a result with success=False
and an error message the caller can show in a retry prompt.
"""

import json
import logging
import re
from dataclasses import dataclass
from typing import Any, Iterator, Optional

from ..plans.graph import find_dependency_cycle
from ..plans.models import (
	CriterionResult,
	PlanContext,
	ReviewResult,
	ReviewSeverity,
	TaskDefinition,
	TaskPriority,
	TaskResult,
	TaskReviewFeedback,
	TaskStatus,
)

logger = logging.getLogger(__name__)

_FENCE_RE = re.compile(r"```json\s*(.*?)\s*```", re.DOTALL)

FALLBACK_SUMMARY_CHARS = 500


@dataclass
class ParsedPlan:
	"""Result of parsing a planning response."""
	success: bool
	tasks: Optional[list[TaskDefinition]] = None
	context: Optional[PlanContext] = None
	error: Optional[str] = None


@dataclass
class ParsedReview:
	"""Result of parsing a review response."""
	success: bool
	review: Optional[ReviewResult] = None
	error: Optional[str] = None


# ---------------------------------------------------------------------------
# JSON extraction
# ---------------------------------------------------------------------------

def _match_braces(text: str, start: int, closing: dict[int, Optional[int]]) -> None:
	"""
	Scan the object opened at text[start], recording where each brace closes.

	Every brace opened outside a string during the scan gets an entry in
	closing: its matching index, or None when the text ends first. A brace
	still open at the end of the scan cannot close when scanned on its own
	either, so those None entries are final.
	"""
	stack: list[int] = []
	in_string = False
	escaped = False

	for i in range(start, len(text)):
		char = text[i]
		if in_string:
			if escaped:
				escaped = False
			elif char == "\\":
				escaped = True
			elif char == '"':
				in_string = False
			continue

		if char == '"':
			in_string = True
		elif char == "{":
			stack.append(i)
		elif char == "}":
			closing[stack.pop()] = i
			if not stack:
				return

	for pos in stack:
		closing[pos] = None


def iter_json_objects(text: str, errors: Optional[list[str]] = None) -> Iterator[dict]:
	"""
	Yield every JSON object found in text, fenced blocks first.

	Decode errors are appended to errors (if given) rather than raised.
	"""
	for match in _FENCE_RE.finditer(text):
		try:
			obj = json.loads(match.group(1))
		except json.JSONDecodeError as e:
			if errors is not None:
				errors.append(str(e))
			continue
		if isinstance(obj, dict):
			yield obj

	# Brace matches are shared between candidate starts, so unbalanced
	# output is scanned once instead of once per opening brace
	closing: dict[int, Optional[int]] = {}
	pos = text.find("{")
	while pos != -1:
		if pos not in closing:
			_match_braces(text, pos, closing)
		end = closing[pos]
		if end is not None:
			try:
				obj = json.loads(text[pos:end + 1])
			except json.JSONDecodeError as e:
				if errors is not None:
					errors.append(str(e))
			else:
				if isinstance(obj, dict):
					yield obj
					pos = text.find("{", end + 1)
					continue
		pos = text.find("{", pos + 1)


def extract_json_object(
	text: str,
	prefer_key: Optional[str] = None,
) -> tuple[Optional[dict], Optional[str]]:
	"""
	Find the JSON object in a model response.

	Args:
		text: Raw model output
		prefer_key: Return the first object containing this key if any does

	Returns:
		Tuple of (object, decode_error). Both are None when the text holds
		no brace-delimited span at all.
	"""
	errors: list[str] = []
	first: Optional[dict] = None

	for obj in iter_json_objects(text, errors):
		if prefer_key is None or prefer_key in obj:
			return obj, None
		if first is None:
			first = obj

	if first is not None:
		return first, None
	if errors:
		return None, errors[0]
	return None, None


# ---------------------------------------------------------------------------
# Field normalization
# ---------------------------------------------------------------------------

def _get(data: dict, camel: str, snake: Optional[str] = None) -> Any:
	"""Read a key in the camelCase of the output contract, snake_case as fallback."""
	if camel in data:
		return data[camel]
	if snake and snake in data:
		return data[snake]
	return None


def _text(value: Any, default: str = "") -> str:
	if isinstance(value, str) and value:
		return value
	if isinstance(value, (int, float)) and not isinstance(value, bool):
		return str(value)
	return default


def _text_list(value: Any) -> list[str]:
	if not isinstance(value, list):
		return []
	return [_text(item) for item in value if _text(item)]


def _enum_value(enum_cls, value: Any, default):
	try:
		return enum_cls(value)
	except ValueError:
		return default


def normalize_task(
	raw: Any,
	index: int,
	default_priority: TaskPriority = TaskPriority.MEDIUM,
) -> TaskDefinition:
	"""
	Build a pending TaskDefinition from a loosely shaped task object.

	Args:
		raw: Task object from model output (a bare string is used as the title)
		index: 1-based position, used for the default id and title
		default_priority: Priority when missing or not one of the known values
	"""
	if isinstance(raw, str):
		raw = {"title": raw}
	elif not isinstance(raw, dict):
		raw = {}

	return TaskDefinition(
		id=_text(raw.get("id"), f"task-{index}"),
		title=_text(raw.get("title"), f"Task {index}"),
		description=_text(raw.get("description")),
		acceptance_criteria=_text_list(_get(raw, "acceptanceCriteria", "acceptance_criteria")),
		target_files=_text_list(_get(raw, "targetFiles", "target_files")),
		approach=_text(raw.get("approach")),
		dependencies=_text_list(raw.get("dependencies")),
		priority=_enum_value(TaskPriority, raw.get("priority"), default_priority),
		status=TaskStatus.PENDING,
		attempts=0,
	)


def _normalize_context(raw: Any) -> PlanContext:
	if not isinstance(raw, dict):
		raw = {}
	return PlanContext(
		relevant_files=_text_list(_get(raw, "relevantFiles", "relevant_files")),
		codebase_notes=_text(_get(raw, "codebaseNotes", "codebase_notes")),
		existing_patterns=_text_list(_get(raw, "existingPatterns", "existing_patterns")),
		potential_risks=_text_list(_get(raw, "potentialRisks", "potential_risks")),
	)


def _normalize_criterion(raw: Any) -> Optional[CriterionResult]:
	if not isinstance(raw, dict):
		return None
	notes = raw.get("notes")
	return CriterionResult(
		criterion=_text(raw.get("criterion")),
		met=bool(raw.get("met")),
		notes=notes if isinstance(notes, str) else None,
	)


def _normalize_feedback(raw: Any) -> TaskReviewFeedback:
	if not isinstance(raw, dict):
		raw = {}
	criteria = _get(raw, "criteriaResults", "criteria_results")
	criteria = criteria if isinstance(criteria, list) else []

	return TaskReviewFeedback(
		task_id=_text(_get(raw, "taskId", "task_id")),
		passed=bool(raw.get("passed")),
		criteria_results=[c for c in (_normalize_criterion(item) for item in criteria) if c],
		issues=_text_list(raw.get("issues")),
		suggestions=_text_list(raw.get("suggestions")),
		severity=_enum_value(ReviewSeverity, raw.get("severity"), ReviewSeverity.INFO),
	)


# ---------------------------------------------------------------------------
# Public parsers
# ---------------------------------------------------------------------------

def parse_planning_response(content: str) -> ParsedPlan:
	"""Parse the planner's output into normalized tasks and context."""
	data, decode_error = extract_json_object(content, prefer_key="tasks")
	if data is None:
		if decode_error:
			return ParsedPlan(success=False, error=f"Failed to parse planning response: {decode_error}")
		return ParsedPlan(success=False, error="No JSON found in planning response")

	raw_tasks = data.get("tasks")
	if not isinstance(raw_tasks, list):
		return ParsedPlan(success=False, error="Invalid plan format: missing tasks array")

	try:
		tasks = [normalize_task(raw, i + 1) for i, raw in enumerate(raw_tasks)]
		context = _normalize_context(data["context"]) if data.get("context") else None
	except (TypeError, ValueError) as e:
		return ParsedPlan(success=False, error=f"Failed to parse planning response: {e}")

	cycle = find_dependency_cycle(tasks)
	if cycle:
		return ParsedPlan(
			success=False,
			error=f"Circular task dependencies: {' -> '.join(cycle)}",
		)

	logger.debug(f"Parsed planning response with {len(tasks)} tasks")
	return ParsedPlan(success=True, tasks=tasks, context=context)


def parse_review_response(content: str) -> ParsedReview:
	"""Parse the reviewer's output into a ReviewResult."""
	data, decode_error = extract_json_object(content, prefer_key="approved")
	if data is None:
		if decode_error:
			return ParsedReview(success=False, error=f"Failed to parse review response: {decode_error}")
		return ParsedReview(success=False, error="No JSON found in review response")

	if not isinstance(data.get("approved"), bool):
		return ParsedReview(success=False, error="Invalid review format: missing approved field")

	task_feedback = _get(data, "taskFeedback", "task_feedback")
	revision_tasks = _get(data, "revisionTasks", "revision_tasks")
	quality_score = _get(data, "qualityScore", "quality_score")
	if isinstance(quality_score, bool) or not isinstance(quality_score, (int, float)):
		quality_score = None
	else:
		quality_score = min(max(float(quality_score), 0.0), 100.0)

	try:
		review = ReviewResult(
			approved=data["approved"],
			overall_feedback=_text(_get(data, "overallFeedback", "overall_feedback")),
			task_feedback=[
				_normalize_feedback(tf)
				for tf in (task_feedback if isinstance(task_feedback, list) else [])
			],
			critical_issues=_text_list(_get(data, "criticalIssues", "critical_issues")),
			revision_tasks=[
				t for t in (revision_tasks if isinstance(revision_tasks, list) else [])
				if isinstance(t, dict)
			],
			quality_score=quality_score,
		)
	except (TypeError, ValueError) as e:
		return ParsedReview(success=False, error=f"Failed to parse review response: {e}")

	return ParsedReview(success=True, review=review)


def parse_task_result(content: str) -> TaskResult:
	"""
	Read a coder's report of what it changed.

	Uses a {summary, filesModified, ...} object when the output contains
	one; otherwise the text itself becomes the summary.
	"""
	data, _ = extract_json_object(content, prefer_key="summary")
	keys = ("summary", "filesModified", "filesCreated", "filesDeleted", "files_modified")
	if data is not None and any(k in data for k in keys):
		issues = _text_list(data.get("issues"))
		return TaskResult(
			files_modified=_text_list(_get(data, "filesModified", "files_modified")),
			files_created=_text_list(_get(data, "filesCreated", "files_created")),
			files_deleted=_text_list(_get(data, "filesDeleted", "files_deleted")),
			summary=_text(data.get("summary")),
			issues=issues or None,
		)

	return TaskResult(summary=content.strip()[:FALLBACK_SUMMARY_CHARS])
