"""Orchestrator module - Phase state machine, events, parsing, and the workflow runner."""

from .controller import (
	InvalidTransitionError,
	NoActiveWorkflowError,
	PhaseController,
	PlanParseError,
	TaskNotFoundError,
	WorkflowError,
	WorkflowNotInitializedError,
)
from .events import (
	EventBus,
	PhaseChanged,
	ReviewCompleted,
	RevisionRequested,
	TaskCompleted,
	TaskFailed,
	TaskStarted,
	WorkflowAborted,
	WorkflowCompleted,
	WorkflowEvent,
)
from .parsing import (
	ParsedPlan,
	ParsedReview,
	parse_planning_response,
	parse_review_response,
	parse_task_result,
)
from .phases import ALLOWED_TRANSITIONS, PHASE_ROLES, is_transition_allowed
from .runner import RunOutcome, WorkflowRunner

__all__ = [
	"PhaseController",
	"WorkflowError",
	"NoActiveWorkflowError",
	"WorkflowNotInitializedError",
	"TaskNotFoundError",
	"InvalidTransitionError",
	"PlanParseError",
	"EventBus",
	"WorkflowEvent",
	"PhaseChanged",
	"TaskStarted",
	"TaskCompleted",
	"TaskFailed",
	"ReviewCompleted",
	"RevisionRequested",
	"WorkflowCompleted",
	"WorkflowAborted",
	"ParsedPlan",
	"ParsedReview",
	"parse_planning_response",
	"parse_review_response",
	"parse_task_result",
	"ALLOWED_TRANSITIONS",
	"PHASE_ROLES",
	"is_transition_allowed",
	"WorkflowRunner",
	"RunOutcome",
]
